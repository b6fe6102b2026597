from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from .models import Sentence

DEFAULT_WINDOW = 3


@dataclass
class ActiveWindow:
    active: Optional[Sentence] = None
    previous: List[Sentence] = field(default_factory=list)
    next: List[Sentence] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        def brief(s: Sentence) -> Dict[str, Any]:
            return {"id": s.id, "ordinal": s.ordinal, "text": s.original_text, "start": s.start_time, "end": s.end_time}

        return {
            "active": brief(self.active) if self.active else None,
            "previous": [brief(s) for s in self.previous],
            "next": [brief(s) for s in self.next],
        }


def _timed(sentences: Iterable[Sentence]) -> List[Sentence]:
    return [s for s in sentences if s.timed]


def find_active(sentences: Iterable[Sentence], cursor: float) -> Optional[Sentence]:
    timed = _timed(sentences)
    # Inclusive on both ends; on a shared boundary the later-starting sentence wins.
    containing = [s for s in timed if s.start_time <= cursor <= s.end_time]
    if containing:
        return max(containing, key=lambda s: (s.start_time, s.ordinal))
    preceding = [s for s in timed if s.end_time <= cursor]
    if preceding:
        return max(preceding, key=lambda s: (s.end_time, s.ordinal))
    return None


def previous_window(sentences: Iterable[Sentence], active: Optional[Sentence], count: int = DEFAULT_WINDOW) -> List[Sentence]:
    if active is None or not active.timed or count <= 0:
        return []
    before = [s for s in _timed(sentences) if s.start_time < active.start_time]
    before.sort(key=lambda s: (s.start_time, s.ordinal), reverse=True)
    return list(reversed(before[:count]))


def next_window(sentences: Iterable[Sentence], active: Optional[Sentence], count: int = DEFAULT_WINDOW) -> List[Sentence]:
    if active is None or not active.timed or count <= 0:
        return []
    after = [s for s in _timed(sentences) if s.start_time >= active.start_time and s.id != active.id]
    after.sort(key=lambda s: (s.start_time, s.ordinal))
    return after[:count]


def resolve_active(
    sentences: Iterable[Sentence],
    cursor: float,
    *,
    previous_count: int = DEFAULT_WINDOW,
    next_count: int = DEFAULT_WINDOW,
) -> ActiveWindow:
    pool = list(sentences)
    active = find_active(pool, cursor)
    return ActiveWindow(
        active=active,
        previous=previous_window(pool, active, previous_count),
        next=next_window(pool, active, next_count),
    )


def is_last_sentence(sentences: Iterable[Sentence], active: Optional[Sentence], *, all_pages_loaded: bool) -> bool:
    if active is None or not active.timed or not all_pages_loaded:
        return False
    return not any(s.start_time >= active.start_time and s.id != active.id for s in _timed(sentences))
