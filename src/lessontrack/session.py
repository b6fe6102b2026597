from __future__ import annotations

import threading
from concurrent.futures import Executor, Future
from typing import Any, Callable, Dict, List, Optional, Tuple

from .buffer import DEFAULT_LOOK_AHEAD, BufferedPageLoader, SentenceBuffer
from .models import EmptyLessonError, IntegrityViolation, LessonProgress, ProgressStatus, ResumeTarget, Sentence
from .paging import page_for_ordinal, page_window, record_page_visit, total_pages
from .progress import VIDEO_DEBOUNCE_SECONDS, ProgressSynchronizer, finish_lesson, resume_target
from .timeline import DEFAULT_WINDOW, ActiveWindow, is_last_sentence, resolve_active

VIDEO_PAGE_SIZE = 10
PAGED_PAGE_SIZE = 5


def _safe_resume(
    store: Any,
    user_id: int,
    lesson_id: int,
    page_size: int,
    info_cb: Optional[Callable[[str], None]],
    lesson_file_id: Optional[int] = None,
) -> Tuple[ResumeTarget, Optional[str]]:
    try:
        return resume_target(store, user_id, lesson_id, page_size, lesson_file_id=lesson_file_id), None
    except IntegrityViolation as e:
        if info_cb:
            info_cb(f"resume failed lesson={lesson_id} user={user_id}: {e}; starting at page 1")
        return ResumeTarget(page=1), str(e)


class VideoSession:
    """One open video lesson: page buffer, timeline resolution and debounced progress writes."""

    def __init__(
        self,
        store: Any,
        *,
        user_id: int,
        lesson_id: int,
        page_size: int = VIDEO_PAGE_SIZE,
        look_ahead: int = DEFAULT_LOOK_AHEAD,
        window: int = DEFAULT_WINDOW,
        debounce: float = VIDEO_DEBOUNCE_SECONDS,
        lesson_file_id: Optional[int] = None,
        fetch_executor: Optional[Executor] = None,
        write_executor: Optional[Executor] = None,
        timer_factory: Callable[..., Any] = threading.Timer,
        info_cb: Optional[Callable[[str], None]] = None,
    ) -> None:
        total = int(store.count_sentences(lesson_id, lesson_file_id=lesson_file_id))
        if total <= 0:
            raise EmptyLessonError(f"Lesson {lesson_id} has no sentences")
        self.store = store
        self.user_id = user_id
        self.lesson_id = lesson_id
        self.page_size = page_size
        self.window = window
        self.lesson_file_id = lesson_file_id
        self.resume_error: Optional[str] = None
        self.current = ActiveWindow()
        self._info_cb = info_cb
        self._file_pages: Dict[int, int] = {}
        self.buffer = SentenceBuffer(total_sentences=total, page_size=page_size)
        self.loader = BufferedPageLoader(
            lambda page: store.fetch_sentence_page(lesson_id, page, page_size, lesson_file_id=lesson_file_id),
            self.buffer,
            look_ahead=look_ahead,
            page_of=self._page_of if lesson_file_id is not None else None,
            executor=fetch_executor,
            info_cb=info_cb,
        )
        self.sync = ProgressSynchronizer(
            self._write,
            delay=debounce,
            timer_factory=timer_factory,
            executor=write_executor,
            info_cb=info_cb,
        )

    def __enter__(self) -> "VideoSession":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def _write(self, sentence_id: int, finish: bool) -> LessonProgress:
        status = ProgressStatus.FINISHED if finish else ProgressStatus.READING
        progress = self.store.upsert_progress(self.user_id, self.lesson_id, sentence_id, status=status)
        if progress.read_till_sentence_id != sentence_id and self._info_cb:
            self._info_cb(
                f"progress kept at sentence={progress.read_till_sentence_id}; earlier sentence={sentence_id} ignored"
            )
        return progress

    def _page_of(self, sentence: Sentence) -> int:
        # page within the file, counted from its own first sentence
        page = self._file_pages.get(sentence.id)
        if page is None:
            position = self.store.sentence_ordinal(self.lesson_id, sentence.id, lesson_file_id=self.lesson_file_id)
            page = self._file_pages[sentence.id] = page_for_ordinal(position, self.page_size)
        return page

    def open(self) -> ResumeTarget:
        target, self.resume_error = _safe_resume(
            self.store, self.user_id, self.lesson_id, self.page_size, self._info_cb, self.lesson_file_id
        )
        self.request_page(1)
        self.request_page(target.page)
        return target

    def request_page(self, page: int) -> bool:
        return self.loader.request_page(page)

    def resolve_active(self, cursor: float) -> ActiveWindow:
        return resolve_active(self.loader.sentences(), cursor, previous_count=self.window, next_count=self.window)

    def on_cursor_advance(self, cursor: float) -> ActiveWindow:
        win = self.resolve_active(cursor)
        self.current = win
        self.loader.prefetch(win.active)
        if win.active is not None:
            self.sync.push(win.active.id)
        return win

    def is_last_sentence(self) -> bool:
        return is_last_sentence(
            self.loader.sentences(), self.current.active, all_pages_loaded=self.loader.all_pages_loaded()
        )

    def resume_target(self) -> ResumeTarget:
        return resume_target(self.store, self.user_id, self.lesson_id, self.page_size, lesson_file_id=self.lesson_file_id)

    def finish_lesson(self) -> Optional[Future]:
        active = self.current.active
        if active is not None:
            return self.sync.finish(active.id)
        if self.sync.latest is not None:
            return self.sync.finish()
        # nothing played yet; the store keeps any further stored progress
        first = self.loader.sentences() or self.store.fetch_sentence_page(
            self.lesson_id, 1, 1, lesson_file_id=self.lesson_file_id
        )
        return self.sync.finish(first[0].id)

    def close(self) -> None:
        self.sync.close()
        self.loader.close()


class PagedSession:
    """One open paged lesson; every page change is written right away."""

    def __init__(
        self,
        store: Any,
        *,
        user_id: int,
        lesson_id: int,
        page_size: int = PAGED_PAGE_SIZE,
        write_executor: Optional[Executor] = None,
        info_cb: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.total_sentences = int(store.count_sentences(lesson_id))
        if self.total_sentences <= 0:
            raise EmptyLessonError(f"Lesson {lesson_id} has no sentences")
        self.store = store
        self.user_id = user_id
        self.lesson_id = lesson_id
        self.page_size = page_size
        self.current_page: Optional[int] = None
        self.resume_error: Optional[str] = None
        self._info_cb = info_cb
        self.sync = ProgressSynchronizer(self._write, delay=0.0, executor=write_executor, info_cb=info_cb)

    def __enter__(self) -> "PagedSession":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    @property
    def total_pages(self) -> int:
        return total_pages(self.total_sentences, self.page_size)

    def _write(self, page: int, finish: bool) -> LessonProgress:
        if finish:
            return finish_lesson(self.store, self.user_id, self.lesson_id)
        return record_page_visit(self.store, self.user_id, self.lesson_id, page, self.page_size)

    def open(self) -> ResumeTarget:
        target, self.resume_error = _safe_resume(self.store, self.user_id, self.lesson_id, self.page_size, self._info_cb)
        self.current_page = target.page
        return target

    def resume_target(self) -> ResumeTarget:
        return resume_target(self.store, self.user_id, self.lesson_id, self.page_size)

    def sentences(self, page: int) -> List[Sentence]:
        window = page_window(page, self.page_size, self.total_sentences)
        return self.store.fetch_sentence_page(self.lesson_id, window.page_number, self.page_size)

    def visit_page(self, page: int) -> Optional[Future]:
        if page < 1 or page > self.total_pages:
            raise ValueError(f"Page {page} out of range 1..{self.total_pages}")
        self.current_page = page
        return self.sync.push(page)

    def finish_lesson(self) -> Optional[Future]:
        return self.sync.finish(self.current_page or 1)

    def close(self) -> None:
        self.sync.close()
