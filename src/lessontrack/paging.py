from __future__ import annotations

from typing import Any, Optional

from .models import EmptyLessonError, LessonProgress, PageWindow, ProgressStatus


def _check_page_size(page_size: int) -> int:
    page_size = int(page_size)
    if page_size < 1:
        raise ValueError(f"page_size must be >= 1, got {page_size}")
    return page_size


def page_for_ordinal(ordinal: int, page_size: int) -> int:
    page_size = _check_page_size(page_size)
    if ordinal < 0:
        raise ValueError(f"ordinal must be >= 0, got {ordinal}")
    return ordinal // page_size + 1


def total_pages(total_sentences: int, page_size: int) -> int:
    page_size = _check_page_size(page_size)
    return -(-max(0, int(total_sentences)) // page_size)


def page_window(page: int, page_size: int, total_sentences: Optional[int] = None) -> PageWindow:
    page_size = _check_page_size(page_size)
    if page < 1:
        raise ValueError(f"page must be >= 1, got {page}")
    start = (page - 1) * page_size
    end = start + page_size
    if total_sentences is not None:
        end = max(start, min(end, int(total_sentences)))
    return PageWindow(page_number=page, start=start, end=end)


def _require_sentences(store: Any, lesson_id: int, lesson_file_id: Optional[int] = None) -> int:
    total = int(store.count_sentences(lesson_id, lesson_file_id=lesson_file_id))
    if total <= 0:
        raise EmptyLessonError(f"Lesson {lesson_id} has no sentences")
    return total


def resume_page(
    store: Any,
    lesson_id: int,
    read_till_sentence_id: int,
    page_size: int,
    *,
    lesson_file_id: Optional[int] = None,
) -> int:
    _require_sentences(store, lesson_id, lesson_file_id)
    ordinal = store.sentence_ordinal(lesson_id, read_till_sentence_id, lesson_file_id=lesson_file_id)
    return page_for_ordinal(ordinal, page_size)


def record_page_visit(store: Any, user_id: int, lesson_id: int, page: int, page_size: int) -> LessonProgress:
    total = _require_sentences(store, lesson_id)
    pages = total_pages(total, page_size)
    if page < 1 or page > pages:
        raise ValueError(f"Page {page} out of range 1..{pages} for lesson {lesson_id}")

    first = store.fetch_sentence_page(lesson_id, page, page_size)[0]
    # Reaching the last page leaves status alone; only an explicit finish marks it finished.
    status = None if page >= pages else ProgressStatus.READING
    return store.upsert_progress(user_id, lesson_id, first.id, status=status)
