from concurrent.futures import Future

import pytest

from lessontrack.models import SentenceDraft
from lessontrack.store import SQLiteStore


class ManualExecutor:
    """Holds submitted work until a test runs it, in whatever order the test picks."""

    def __init__(self):
        self.jobs = []

    def submit(self, fn, *args, **kwargs):
        fut = Future()
        self.jobs.append((fut, fn, args, kwargs))
        return fut

    def run(self, index=0):
        fut, fn, args, kwargs = self.jobs.pop(index)
        try:
            fut.set_result(fn(*args, **kwargs))
        except Exception as e:
            fut.set_exception(e)
        return fut

    def run_all(self):
        while self.jobs:
            self.run(0)

    def shutdown(self, wait=True, cancel_futures=False):
        self.jobs.clear()


class FakeTimer:
    def __init__(self, interval, fn):
        self.interval = interval
        self.fn = fn
        self.daemon = False
        self.started = False
        self.cancelled = False
        self.fired = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if self.cancelled:
            return None
        self.fired = True
        return self.fn()


class FakeTimerFactory:
    def __init__(self):
        self.timers = []

    def __call__(self, interval, fn):
        t = FakeTimer(interval, fn)
        self.timers.append(t)
        return t

    @property
    def live(self):
        return [t for t in self.timers if t.started and not t.cancelled and not t.fired]


@pytest.fixture
def executor():
    return ManualExecutor()


@pytest.fixture
def timers():
    return FakeTimerFactory()


@pytest.fixture
def store():
    s = SQLiteStore(":memory:")
    yield s
    s.close()


def make_lesson(store, count, *, timed=True, title="lesson", step=2.0):
    lesson_id = store.create_lesson(title, "ja", "subtitle" if timed else "text")
    drafts = []
    for i in range(count):
        if timed:
            drafts.append(SentenceDraft(text=f"sentence {i}", start_ms=int(i * step * 1000), end_ms=int((i + 1) * step * 1000)))
        else:
            drafts.append(SentenceDraft(text=f"sentence {i}"))
    ids = store.insert_sentences(lesson_id, drafts)
    return lesson_id, ids
