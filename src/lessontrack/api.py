from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

from . import pipeline
from .models import LessonProgress, ResumeTarget, Sentence
from .progress import finish_lesson
from .session import PAGED_PAGE_SIZE, VIDEO_PAGE_SIZE, PagedSession, VideoSession
from .store import SQLiteStore


class LessonTrack:
    """Programmatic API over the store, ingestion and lesson sessions for one user."""

    def __init__(
        self,
        db_path: str = ":memory:",
        *,
        user_id: int = 1,
        info_cb: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.store = SQLiteStore(Path(db_path).expanduser() if db_path != ":memory:" else db_path)
        self.user_id = int(user_id)
        self.info_cb = info_cb

    def close(self) -> None:
        self.store.close()

    def ingest(
        self,
        inputs: Sequence[str],
        *,
        title: Optional[str] = None,
        language: str = "ja",
        lesson_type: str = "auto",
        progress_cb=None,
    ) -> Dict[str, Any]:
        return pipeline.ingest_lesson(
            self.store,
            [Path(p).expanduser() for p in inputs],
            title=title,
            language_code=language,
            lesson_type=lesson_type,
            progress_cb=progress_cb,
            info_cb=self.info_cb,
        )

    def lessons(self) -> List[Dict[str, Any]]:
        return self.store.list_lessons()

    def delete_lesson(self, lesson_id: int) -> None:
        self.store.delete_lesson(int(lesson_id))

    def sentences(
        self, lesson_id: int, *, page: int = 1, page_size: int = PAGED_PAGE_SIZE, lesson_file_id: Optional[int] = None
    ) -> List[Sentence]:
        return self.store.fetch_sentence_page(int(lesson_id), int(page), int(page_size), lesson_file_id=lesson_file_id)

    def resume_target(self, lesson_id: int, *, page_size: int = PAGED_PAGE_SIZE) -> ResumeTarget:
        with self.open_paged(lesson_id, page_size=page_size) as session:
            return session.resume_target()

    def visit_page(self, lesson_id: int, page: int, *, page_size: int = PAGED_PAGE_SIZE) -> LessonProgress:
        with self.open_paged(lesson_id, page_size=page_size) as session:
            fut = session.visit_page(int(page))
            if fut is not None:
                fut.result()
        return self.store.get_progress(self.user_id, int(lesson_id))

    def finish_lesson(self, lesson_id: int, *, sentence_id: Optional[int] = None) -> LessonProgress:
        return finish_lesson(self.store, self.user_id, int(lesson_id), sentence_id)

    def reset_progress(self, lesson_id: int) -> bool:
        return self.store.delete_progress(self.user_id, int(lesson_id))

    def progress(self, lesson_id: int) -> Optional[LessonProgress]:
        return self.store.get_progress(self.user_id, int(lesson_id))

    def progress_overview(self) -> List[Dict[str, Any]]:
        return self.store.list_progress(self.user_id)

    def retime(self, sentence_id: int, offset: float, *, cascade: bool = False) -> int:
        return self.store.retime_sentence(int(sentence_id), float(offset), cascade=bool(cascade))

    def open_paged(self, lesson_id: int, *, page_size: int = PAGED_PAGE_SIZE, **kwargs: Any) -> PagedSession:
        return PagedSession(
            self.store,
            user_id=self.user_id,
            lesson_id=int(lesson_id),
            page_size=int(page_size),
            info_cb=kwargs.pop("info_cb", self.info_cb),
            **kwargs,
        )

    def open_video(self, lesson_id: int, *, page_size: int = VIDEO_PAGE_SIZE, **kwargs: Any) -> VideoSession:
        return VideoSession(
            self.store,
            user_id=self.user_id,
            lesson_id=int(lesson_id),
            page_size=int(page_size),
            info_cb=kwargs.pop("info_cb", self.info_cb),
            **kwargs,
        )
