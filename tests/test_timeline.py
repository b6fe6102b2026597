from lessontrack.models import Sentence
from lessontrack.timeline import (
    find_active,
    is_last_sentence,
    next_window,
    previous_window,
    resolve_active,
)


def s(id, ordinal, start=None, end=None):
    return Sentence(id=id, lesson_id=1, ordinal=ordinal, original_text=f"s{id}", start_time=start, end_time=end)


def test_shared_boundary_resolves_to_later_sentence():
    a = s(1, 0, 0.0, 2.0)
    b = s(2, 1, 2.0, 4.0)
    assert find_active([a, b], 2.0).id == 2
    assert find_active([a, b], 1.0).id == 1
    assert find_active([a, b], 0.0).id == 1


def test_gap_and_past_end_hold_last_finished_sentence():
    a = s(1, 0, 0.0, 2.0)
    b = s(2, 1, 3.0, 5.0)
    assert find_active([a, b], 2.5).id == 1
    assert find_active([a, b], 10.0).id == 2


def test_cursor_before_first_timed_sentence():
    assert find_active([s(1, 0, 1.0, 2.0)], 0.5) is None
    assert find_active([], 3.0) is None


def test_untimed_sentences_are_ignored():
    pool = [s(1, 0), s(2, 1, 1.0, 2.0), s(3, 2, None, 5.0)]
    assert find_active(pool, 1.5).id == 2
    win = resolve_active(pool, 1.5)
    assert win.previous == [] and win.next == []


def test_windows_are_ascending_and_truncated():
    pool = [s(i, i - 1, float(i), float(i) + 1.0) for i in range(1, 11)]
    active = pool[5]
    assert [x.id for x in previous_window(pool, active, 3)] == [3, 4, 5]
    assert [x.id for x in next_window(pool, active, 3)] == [7, 8, 9]
    assert [x.id for x in next_window(pool, pool[-1], 3)] == []
    assert previous_window(pool, None, 3) == []


def test_resolve_active_uses_unsorted_input():
    pool = [s(3, 2, 4.0, 6.0), s(1, 0, 0.0, 2.0), s(2, 1, 2.0, 4.0)]
    win = resolve_active(pool, 3.0, previous_count=3, next_count=3)
    assert win.active.id == 2
    assert [x.id for x in win.previous] == [1]
    assert [x.id for x in win.next] == [3]
    assert win.as_dict()["active"]["id"] == 2


def test_is_last_sentence():
    pool = [s(1, 0, 0.0, 2.0), s(2, 1, 2.0, 4.0)]
    assert is_last_sentence(pool, pool[1], all_pages_loaded=True)
    assert not is_last_sentence(pool, pool[1], all_pages_loaded=False)
    assert not is_last_sentence(pool, pool[0], all_pages_loaded=True)
    assert not is_last_sentence(pool, None, all_pages_loaded=True)
