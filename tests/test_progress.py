import pytest

from conftest import make_lesson
from lessontrack.models import EmptyLessonError, ProgressStatus
from lessontrack.progress import ProgressSynchronizer, finish_lesson, resume_target


def make_sync(executor, timers, *, delay=2.0, fail=0):
    sent = []
    messages = []
    state = {"fail": fail}

    def send(value, finish):
        if state["fail"] > 0:
            state["fail"] -= 1
            raise OSError("store unavailable")
        sent.append((value, finish))
        return value

    sync = ProgressSynchronizer(send, delay=delay, timer_factory=timers, executor=executor, info_cb=messages.append)
    return sync, sent, messages


def test_debounce_sends_only_latest_value(executor, timers):
    sync, sent, _ = make_sync(executor, timers)
    for value in (1, 2, 3):
        sync.push(value)
    assert len(timers.live) == 1
    assert timers.live[0].interval == 2.0
    assert timers.live[0].daemon is True
    timers.live[0].fire()
    executor.run_all()
    assert sent == [(3, False)]


def test_value_is_read_when_the_timer_fires(executor, timers):
    sync, sent, _ = make_sync(executor, timers)
    sync.push(1)
    first = timers.timers[0]
    sync.push(2)
    assert first.cancelled
    # a stale timer callback still sends the newest value
    first.fn()
    executor.run_all()
    assert sent == [(2, False)]


def test_stale_timer_keeps_the_newer_timer_pending(executor, timers):
    sync, sent, _ = make_sync(executor, timers)
    sync.push(1)
    first = timers.timers[0]
    sync.push(2)
    first.fn()
    assert sync.pending
    sync.push(3)
    assert len(timers.live) == 1
    sync.flush()
    assert not sync.pending
    assert timers.timers[2].cancelled
    executor.run_all()
    assert sent == [(2, False), (3, False)]


def test_repeating_the_same_value_does_not_restart_the_timer(executor, timers):
    sync, sent, _ = make_sync(executor, timers)
    sync.push(5)
    sync.push(5)
    sync.push(5)
    assert len(timers.timers) == 1
    timers.timers[0].fire()
    executor.run_all()
    sync.push(5)
    assert len(timers.timers) == 1
    assert sent == [(5, False)]


def test_close_cancels_pending_write(executor, timers):
    sync, sent, _ = make_sync(executor, timers)
    sync.push(7)
    timer = timers.timers[0]
    sync.close()
    assert timer.cancelled
    assert not sync.pending
    timer.fn()
    executor.run_all()
    assert sent == []
    assert sync.push(8) is None


def test_failed_write_is_logged_and_retried(executor, timers):
    sync, sent, messages = make_sync(executor, timers, fail=1)
    sync.push(4)
    timers.timers[0].fire()
    executor.run_all()
    assert sent == []
    assert sync.failed_writes == 1
    assert any("progress write failed value=4" in m for m in messages)

    sync.push(4)
    assert len(timers.timers) == 2
    timers.timers[1].fire()
    executor.run_all()
    assert sent == [(4, False)]


def test_zero_delay_dispatches_immediately(executor, timers):
    sync, sent, _ = make_sync(executor, timers, delay=0)
    fut = sync.push(3)
    assert timers.timers == []
    executor.run_all()
    assert fut.result() == 3
    assert sent == [(3, False)]


def test_flush_and_finish(executor, timers):
    sync, sent, _ = make_sync(executor, timers)
    sync.push(1)
    assert sync.flush() is not None
    executor.run_all()
    assert sent == [(1, False)]
    assert sync.flush() is None

    sync.push(2)
    sync.finish()
    executor.run_all()
    assert sent == [(1, False), (2, True)]
    assert timers.timers[-1].cancelled


def test_stale_write_cannot_move_progress_back(store):
    lesson_id, ids = make_lesson(store, 12)
    store.upsert_progress(1, lesson_id, ids[8])
    p = store.upsert_progress(1, lesson_id, ids[3])
    assert p.read_till_sentence_id == ids[8]
    p = store.upsert_progress(1, lesson_id, ids[9])
    assert p.read_till_sentence_id == ids[9]


def test_resume_target(store):
    lesson_id, ids = make_lesson(store, 12, step=1.5)
    assert resume_target(store, 1, lesson_id, 5).as_dict() == {
        "page": 1,
        "sentence_id": None,
        "time_sec": 0.0,
        "status": None,
    }
    store.upsert_progress(1, lesson_id, ids[7])
    target = resume_target(store, 1, lesson_id, 5)
    assert target.page == 2
    assert target.sentence_id == ids[7]
    assert target.time_sec == pytest.approx(10.5)
    assert target.status == ProgressStatus.READING


def test_resume_target_untimed_and_empty(store):
    lesson_id, ids = make_lesson(store, 3, timed=False)
    store.upsert_progress(1, lesson_id, ids[2])
    assert resume_target(store, 1, lesson_id, 5).time_sec == 0.0
    empty = store.create_lesson("empty", "ja", "text")
    with pytest.raises(EmptyLessonError):
        resume_target(store, 1, empty, 5)


def test_finish_lesson_keeps_read_till(store):
    lesson_id, ids = make_lesson(store, 6)
    p = finish_lesson(store, 1, lesson_id)
    assert p.read_till_sentence_id == ids[0]
    assert p.status == ProgressStatus.FINISHED

    store.delete_progress(1, lesson_id)
    store.upsert_progress(1, lesson_id, ids[4])
    p = finish_lesson(store, 1, lesson_id)
    assert p.read_till_sentence_id == ids[4]
    assert p.status == ProgressStatus.FINISHED
