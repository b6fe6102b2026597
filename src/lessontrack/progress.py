from __future__ import annotations

import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from typing import Any, Callable, Optional

from .models import EmptyLessonError, IntegrityViolation, LessonProgress, ProgressStatus, ResumeTarget
from .paging import resume_page

VIDEO_DEBOUNCE_SECONDS = 2.0


class ProgressSynchronizer:
    """Debounces progress writes for one lesson view.

    The value written is read when the timer fires, not when it was scheduled. Writes go
    through a single worker so they reach the store in the order they were sent.
    """

    def __init__(
        self,
        send: Callable[[Any, bool], Any],
        *,
        delay: float = VIDEO_DEBOUNCE_SECONDS,
        timer_factory: Callable[[float, Callable[[], None]], Any] = threading.Timer,
        executor: Optional[Executor] = None,
        info_cb: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.delay = max(0.0, float(delay))
        self.failed_writes = 0
        self._send = send
        self._timer_factory = timer_factory
        self._info_cb = info_cb
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="lessontrack-progress")
        self._lock = threading.Lock()
        self._timer: Any = None
        self._generation = 0
        self._latest: Any = None
        self._last_sent: Any = None
        self._closed = False

    def _info(self, message: str) -> None:
        if self._info_cb:
            self._info_cb(message)

    @property
    def latest(self) -> Any:
        return self._latest

    @property
    def pending(self) -> bool:
        return self._timer is not None

    def push(self, value: Any) -> Optional[Future]:
        if value is None:
            return None
        timer = None
        with self._lock:
            if self._closed:
                return None
            if value == self._latest and (self._timer is not None or value == self._last_sent):
                return None
            self._latest = value
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            if self.delay > 0:
                self._generation += 1
                generation = self._generation
                timer = self._timer_factory(self.delay, lambda: self._fire(generation))
                timer.daemon = True
                self._timer = timer
        if timer is None:
            return self._fire()
        timer.start()
        return None

    def _fire(self, generation: Optional[int] = None) -> Optional[Future]:
        with self._lock:
            # a superseded timer leaves the newer one in place
            if generation is None or generation == self._generation:
                self._timer = None
            value = self._latest
            if self._closed or value is None or value == self._last_sent:
                return None
            self._last_sent = value
        return self._dispatch(value, False)

    def flush(self) -> Optional[Future]:
        with self._lock:
            if self._timer is None:
                return None
            self._timer.cancel()
        return self._fire()

    def finish(self, value: Any = None) -> Optional[Future]:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            if value is None:
                value = self._latest
            if value is None:
                return None
            self._latest = value
            self._last_sent = value
        return self._dispatch(value, True)

    def _dispatch(self, value: Any, finish: bool) -> Optional[Future]:
        try:
            return self._executor.submit(self._send_logged, value, finish)
        except RuntimeError as e:
            self._info(f"progress write not scheduled value={value}: {e}")
            return None

    def _send_logged(self, value: Any, finish: bool) -> Any:
        try:
            result = self._send(value, finish)
        except Exception as e:
            with self._lock:
                self.failed_writes += 1
                if self._last_sent == value:
                    self._last_sent = None
            self._info(f"progress write failed value={value} finish={finish}: {e}")
            return None
        self._info(f"progress saved value={value} finish={finish}")
        return result

    def close(self) -> None:
        with self._lock:
            self._closed = True
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
        if self._owns_executor:
            # writes already handed to the worker still complete
            self._executor.shutdown(wait=False)


def resume_target(
    store: Any, user_id: int, lesson_id: int, page_size: int, *, lesson_file_id: Optional[int] = None
) -> ResumeTarget:
    if int(store.count_sentences(lesson_id, lesson_file_id=lesson_file_id)) <= 0:
        raise EmptyLessonError(f"Lesson {lesson_id} has no sentences")
    progress = store.get_progress(user_id, lesson_id)
    if progress is None:
        return ResumeTarget(page=1)
    sentence = store.get_sentence(progress.read_till_sentence_id)
    if sentence.lesson_id != lesson_id:
        raise IntegrityViolation(f"Sentence {sentence.id} does not belong to lesson {lesson_id}")
    if lesson_file_id is not None and sentence.lesson_file_id != lesson_file_id:
        # progress sits in another file of the lesson
        return ResumeTarget(page=1, status=progress.status)
    page = resume_page(store, lesson_id, sentence.id, page_size, lesson_file_id=lesson_file_id)
    return ResumeTarget(
        page=page,
        sentence_id=sentence.id,
        time_sec=sentence.start_time if sentence.start_time is not None else 0.0,
        status=progress.status,
    )


def finish_lesson(store: Any, user_id: int, lesson_id: int, sentence_id: Optional[int] = None) -> LessonProgress:
    if sentence_id is None:
        current = store.get_progress(user_id, lesson_id)
        if current is not None:
            sentence_id = current.read_till_sentence_id
        else:
            first = store.fetch_sentence_page(lesson_id, 1, 1)
            if not first:
                raise EmptyLessonError(f"Lesson {lesson_id} has no sentences")
            sentence_id = first[0].id
    return store.upsert_progress(user_id, lesson_id, sentence_id, status=ProgressStatus.FINISHED)
