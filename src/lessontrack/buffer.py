from __future__ import annotations

import threading
from collections import Counter
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional, Set

from .models import Sentence
from .paging import page_for_ordinal, total_pages

DEFAULT_LOOK_AHEAD = 2


@dataclass
class SentenceBuffer:
    """Sentences loaded so far for one viewing session, kept sorted by ordinal and unique by id."""

    total_sentences: int
    page_size: int
    sentences: List[Sentence] = field(default_factory=list)
    loaded_pages: Set[int] = field(default_factory=set)
    pending_pages: Set[int] = field(default_factory=set)

    @property
    def total_pages(self) -> int:
        return total_pages(self.total_sentences, self.page_size)

    @property
    def all_pages_loaded(self) -> bool:
        return len(self.loaded_pages) >= self.total_pages

    @property
    def remaining(self) -> int:
        return max(0, self.total_sentences - len(self.sentences))

    def merge(self, incoming: Iterable[Sentence]) -> int:
        by_id = {s.id: s for s in self.sentences}
        added = 0
        for s in incoming:
            if s.id not in by_id:
                added += 1
            by_id[s.id] = s
        # Rebuild instead of mutating so readers holding the old list see a consistent snapshot.
        self.sentences = sorted(by_id.values(), key=lambda s: (s.ordinal, s.id))
        return added

    def unloaded_pages(self) -> List[int]:
        return [p for p in range(1, self.total_pages + 1) if p not in self.loaded_pages and p not in self.pending_pages]


class BufferedPageLoader:
    def __init__(
        self,
        fetch_page: Callable[[int], List[Sentence]],
        buffer: SentenceBuffer,
        *,
        look_ahead: int = DEFAULT_LOOK_AHEAD,
        page_of: Optional[Callable[[Sentence], int]] = None,
        executor: Optional[Executor] = None,
        info_cb: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.buffer = buffer
        self.look_ahead = max(0, int(look_ahead))
        self.fetch_calls: Counter = Counter()
        self.failed_fetches = 0
        self._fetch_page = fetch_page
        self._page_of = page_of or (lambda s: page_for_ordinal(s.ordinal, self.buffer.page_size))
        self._info_cb = info_cb
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=max(2, self.look_ahead + 1), thread_name_prefix="lessontrack-page"
        )
        self._lock = threading.Lock()
        self._closed = False

    def _info(self, message: str) -> None:
        if self._info_cb:
            self._info_cb(message)

    def sentences(self) -> List[Sentence]:
        with self._lock:
            return self.buffer.sentences

    def all_pages_loaded(self) -> bool:
        with self._lock:
            return self.buffer.all_pages_loaded

    def request_page(self, page: int) -> bool:
        with self._lock:
            if self._closed or page < 1 or page > self.buffer.total_pages:
                return False
            if page in self.buffer.loaded_pages or page in self.buffer.pending_pages:
                return False
            self.buffer.pending_pages.add(page)
            self.fetch_calls[page] += 1
        try:
            self._executor.submit(self._load, page)
        except RuntimeError as e:
            with self._lock:
                self.buffer.pending_pages.discard(page)
            self._info(f"page fetch not scheduled page={page}: {e}")
            return False
        return True

    def _load(self, page: int) -> None:
        try:
            rows = self._fetch_page(page)
        except Exception as e:
            with self._lock:
                self.failed_fetches += 1
                self.buffer.pending_pages.discard(page)
            self._info(f"page fetch failed page={page}: {e}")
            return
        with self._lock:
            try:
                added = self.buffer.merge(rows)
                self.buffer.loaded_pages.add(page)
            finally:
                self.buffer.pending_pages.discard(page)
        self._info(f"page loaded page={page} added={added} buffered={len(self.buffer.sentences)}")

    def prefetch(self, active: Optional[Sentence]) -> List[int]:
        requested: List[int] = []
        if active is not None:
            current = self._page_of(active)
            for step in range(1, self.look_ahead + 1):
                if self.request_page(current + step):
                    requested.append(current + step)

        with self._lock:
            near_end = 0 < self.buffer.remaining <= 2 * self.buffer.page_size
            tail = self.buffer.unloaded_pages() if near_end else []
        for page in tail:
            if self.request_page(page):
                requested.append(page)
        return requested

    def close(self) -> None:
        with self._lock:
            self._closed = True
        if self._owns_executor:
            self._executor.shutdown(wait=False, cancel_futures=True)
