import pytest

from conftest import make_lesson
from lessontrack.models import IntegrityViolation, ProgressStatus, SentenceDraft
from lessontrack.store import SQLiteStore


def test_lessons_crud(store):
    lesson_id, ids = make_lesson(store, 4)
    lesson = store.get_lesson(lesson_id)
    assert lesson.title == "lesson"
    assert lesson.lesson_type == "subtitle"
    assert store.list_lessons()[0]["sentences"] == 4

    store.upsert_progress(1, lesson_id, ids[1])
    store.delete_lesson(lesson_id)
    assert store.list_lessons() == []
    assert store.get_progress(1, lesson_id) is None
    with pytest.raises(IntegrityViolation):
        store.get_lesson(lesson_id)
    with pytest.raises(ValueError):
        store.create_lesson("bad", "ja", "video")


def test_insert_continues_ordinals_and_pages(store):
    lesson_id, _ = make_lesson(store, 3, timed=False)
    more = store.insert_sentences(lesson_id, [SentenceDraft(text="extra")])
    assert store.get_sentence(more[0]).ordinal == 3
    assert [x.ordinal for x in store.fetch_sentence_page(lesson_id, 2, 3)] == [3]
    assert store.fetch_sentence_page(lesson_id, 3, 3) == []
    with pytest.raises(ValueError):
        store.fetch_sentence_page(lesson_id, 0, 3)


def test_sentence_ordinal_counts_position(store):
    lesson_id, ids = make_lesson(store, 5)
    assert store.sentence_ordinal(lesson_id, ids[0]) == 0
    assert store.sentence_ordinal(lesson_id, ids[4]) == 4


def test_split_words_round_trip(store):
    lesson_id, ids = make_lesson(store, 1)
    store.set_split_words(ids[0], ["今日", "は"])
    assert store.get_sentence(ids[0]).split_words == ["今日", "は"]


def test_upsert_progress_validation(store):
    lesson_id, ids = make_lesson(store, 3)
    other_id, other_ids = make_lesson(store, 3, title="other")
    with pytest.raises(IntegrityViolation):
        store.upsert_progress(1, lesson_id, other_ids[0])
    with pytest.raises(ValueError):
        store.upsert_progress(1, lesson_id, ids[0], status="paused")

    p = store.upsert_progress(1, lesson_id, ids[0])
    assert p.status == ProgressStatus.READING
    p = store.upsert_progress(1, lesson_id, ids[0], status=ProgressStatus.FINISHED)
    assert p.status == ProgressStatus.FINISHED
    # a lower ordinal still updates status but keeps the sentence
    store.upsert_progress(1, lesson_id, ids[2])
    p = store.upsert_progress(1, lesson_id, ids[1], status=ProgressStatus.READING)
    assert (p.read_till_sentence_id, p.status) == (ids[2], ProgressStatus.READING)


def test_progress_is_per_user(store):
    lesson_id, ids = make_lesson(store, 3)
    store.upsert_progress(1, lesson_id, ids[2])
    store.upsert_progress(2, lesson_id, ids[0])
    assert store.get_progress(1, lesson_id).read_till_sentence_id == ids[2]
    assert store.get_progress(2, lesson_id).read_till_sentence_id == ids[0]
    assert store.delete_progress(2, lesson_id) is True
    assert store.delete_progress(2, lesson_id) is False
    rows = store.list_progress(1)
    assert [r["lesson_id"] for r in rows] == [lesson_id]
    assert rows[0]["lesson_title"] == "lesson"


def test_retime_single_and_cascade(store):
    lesson_id, ids = make_lesson(store, 4)
    assert store.retime_sentence(ids[1], 0.5) == 1
    s1 = store.get_sentence(ids[1])
    assert (s1.start_time, s1.end_time) == (2.5, 4.5)
    assert store.get_sentence(ids[2]).start_time == 4.0

    assert store.retime_sentence(ids[2], -1.0, cascade=True) == 2
    assert store.get_sentence(ids[2]).start_time == 3.0
    assert store.get_sentence(ids[3]).start_time == 5.0
    assert store.get_sentence(ids[0]).start_time == 0.0


def test_retime_rejects_negative_and_untimed(store):
    lesson_id, ids = make_lesson(store, 2)
    with pytest.raises(ValueError):
        store.retime_sentence(ids[0], -0.5)
    assert store.get_sentence(ids[0]).start_time == 0.0

    text_id, text_ids = make_lesson(store, 1, timed=False, title="text")
    with pytest.raises(IntegrityViolation):
        store.retime_sentence(text_ids[0], 1.0)


def test_file_backed_store_persists(tmp_path):
    path = tmp_path / "nested" / "lessons.db"
    first = SQLiteStore(path)
    lesson_id, ids = make_lesson(first, 2)
    first.upsert_progress(1, lesson_id, ids[1])
    first.close()

    second = SQLiteStore(path)
    assert second.get_progress(1, lesson_id).read_till_sentence_id == ids[1]
    second.close()
