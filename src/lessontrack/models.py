from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional


class LessonTrackError(RuntimeError):
    pass


class IntegrityViolation(LessonTrackError):
    """Stored references disagree with each other (e.g. progress pointing outside its lesson)."""


class EmptyLessonError(LessonTrackError):
    pass


LESSON_TYPES = {"text", "subtitle", "manga"}


class ProgressStatus:
    READING = "reading"
    FINISHED = "finished"

    ALL = {READING, FINISHED}


@dataclass
class Caption:
    text: str
    start_ms: int
    end_ms: int


@dataclass
class SentenceDraft:
    text: str
    start_ms: Optional[int] = None
    end_ms: Optional[int] = None

    @property
    def start_time(self) -> Optional[float]:
        return self.start_ms / 1000.0 if self.start_ms is not None else None

    @property
    def end_time(self) -> Optional[float]:
        return self.end_ms / 1000.0 if self.end_ms is not None else None


@dataclass(frozen=True)
class Sentence:
    id: int
    lesson_id: int
    ordinal: int
    original_text: str
    split_words: Optional[List[str]] = None
    start_time: Optional[float] = None
    end_time: Optional[float] = None
    lesson_file_id: Optional[int] = None

    @property
    def timed(self) -> bool:
        return self.start_time is not None and self.end_time is not None


@dataclass
class Lesson:
    id: int
    title: str
    language_code: str
    lesson_type: str
    created_at: str
    file_ids: List[int] = field(default_factory=list)


@dataclass
class LessonProgress:
    user_id: int
    lesson_id: int
    read_till_sentence_id: int
    status: str
    updated_at: str


@dataclass(frozen=True)
class PageWindow:
    page_number: int
    start: int
    end: int

    def __contains__(self, ordinal: object) -> bool:
        return isinstance(ordinal, int) and self.start <= ordinal < self.end


@dataclass
class ResumeTarget:
    page: int
    sentence_id: Optional[int] = None
    time_sec: float = 0.0
    status: Optional[str] = None

    def as_dict(self) -> dict:
        return {
            "page": self.page,
            "sentence_id": self.sentence_id,
            "time_sec": self.time_sec,
            "status": self.status,
        }
