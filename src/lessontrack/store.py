from __future__ import annotations

import datetime as dt
import json
import sqlite3
import threading
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from .models import (
    LESSON_TYPES,
    IntegrityViolation,
    Lesson,
    LessonProgress,
    ProgressStatus,
    Sentence,
    SentenceDraft,
)

SENTENCE_COLUMNS = "id, lesson_id, lesson_file_id, ordinal, original_text, split_text, start_time, end_time"


def now_utc_iso() -> str:
    return dt.datetime.now(dt.timezone.utc).replace(microsecond=0).isoformat()


def create_schema(connection: sqlite3.Connection) -> None:
    connection.executescript(
        """
        CREATE TABLE IF NOT EXISTS lessons (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            title TEXT NOT NULL,
            language_code TEXT NOT NULL,
            lesson_type TEXT NOT NULL DEFAULT 'subtitle',
            created_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS lesson_files (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            lesson_id INTEGER NOT NULL,
            source_name TEXT,
            created_at TEXT NOT NULL,
            FOREIGN KEY (lesson_id) REFERENCES lessons(id)
        );

        CREATE TABLE IF NOT EXISTS sentences (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            lesson_id INTEGER NOT NULL,
            lesson_file_id INTEGER,
            ordinal INTEGER NOT NULL,
            original_text TEXT NOT NULL,
            split_text TEXT,
            start_time REAL,
            end_time REAL,
            UNIQUE (lesson_id, ordinal),
            FOREIGN KEY (lesson_id) REFERENCES lessons(id),
            FOREIGN KEY (lesson_file_id) REFERENCES lesson_files(id)
        );

        CREATE INDEX IF NOT EXISTS idx_sentences_file ON sentences(lesson_file_id, ordinal);

        CREATE TABLE IF NOT EXISTS lesson_progress (
            user_id INTEGER NOT NULL,
            lesson_id INTEGER NOT NULL,
            read_till_sentence_id INTEGER NOT NULL,
            status TEXT NOT NULL CHECK (status IN ('reading', 'finished')),
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            PRIMARY KEY (user_id, lesson_id),
            FOREIGN KEY (lesson_id) REFERENCES lessons(id),
            FOREIGN KEY (read_till_sentence_id) REFERENCES sentences(id)
        );
        """
    )


def _row_to_sentence(row: sqlite3.Row) -> Sentence:
    split = json.loads(row["split_text"]) if row["split_text"] else None
    return Sentence(
        id=row["id"],
        lesson_id=row["lesson_id"],
        ordinal=row["ordinal"],
        original_text=row["original_text"],
        split_words=split,
        start_time=row["start_time"],
        end_time=row["end_time"],
        lesson_file_id=row["lesson_file_id"],
    )


def _row_to_progress(row: sqlite3.Row) -> LessonProgress:
    return LessonProgress(
        user_id=row["user_id"],
        lesson_id=row["lesson_id"],
        read_till_sentence_id=row["read_till_sentence_id"],
        status=row["status"],
        updated_at=row["updated_at"],
    )


class SQLiteStore:
    """Lessons, sentences and per-user progress in one sqlite file.

    Progress only moves forward: an upsert naming a sentence earlier than the stored one keeps
    the stored sentence. `delete_progress` is the only way back.
    """

    def __init__(self, db_path: Union[str, Path] = ":memory:") -> None:
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).expanduser().parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON")
        self._lock = threading.RLock()
        with self._lock:
            create_schema(self._conn)

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # lessons

    def create_lesson(self, title: str, language_code: str, lesson_type: str = "subtitle") -> int:
        if lesson_type not in LESSON_TYPES:
            raise ValueError(f"Unknown lesson type: {lesson_type}")
        with self._lock, self._conn:
            cur = self._conn.execute(
                "INSERT INTO lessons(title, language_code, lesson_type, created_at) VALUES (?, ?, ?, ?)",
                (title, language_code, lesson_type, now_utc_iso()),
            )
            return int(cur.lastrowid)

    def add_lesson_file(self, lesson_id: int, source_name: Optional[str] = None) -> int:
        self.get_lesson(lesson_id)
        with self._lock, self._conn:
            cur = self._conn.execute(
                "INSERT INTO lesson_files(lesson_id, source_name, created_at) VALUES (?, ?, ?)",
                (lesson_id, source_name, now_utc_iso()),
            )
            return int(cur.lastrowid)

    def get_lesson(self, lesson_id: int) -> Lesson:
        with self._lock:
            row = self._conn.execute("SELECT * FROM lessons WHERE id = ?", (lesson_id,)).fetchone()
            if row is None:
                raise IntegrityViolation(f"Lesson {lesson_id} not found")
            files = self._conn.execute(
                "SELECT id FROM lesson_files WHERE lesson_id = ? ORDER BY id", (lesson_id,)
            ).fetchall()
        return Lesson(
            id=row["id"],
            title=row["title"],
            language_code=row["language_code"],
            lesson_type=row["lesson_type"],
            created_at=row["created_at"],
            file_ids=[f["id"] for f in files],
        )

    def list_lessons(self) -> List[Dict[str, Any]]:
        with self._lock:
            rows = self._conn.execute(
                """
                SELECT l.id, l.title, l.language_code, l.lesson_type, l.created_at,
                       (SELECT COUNT(*) FROM sentences s WHERE s.lesson_id = l.id) AS sentences
                FROM lessons l
                ORDER BY l.id
                """
            ).fetchall()
        return [dict(r) for r in rows]

    def delete_lesson(self, lesson_id: int) -> None:
        self.get_lesson(lesson_id)
        with self._lock, self._conn:
            self._conn.execute("DELETE FROM lesson_progress WHERE lesson_id = ?", (lesson_id,))
            self._conn.execute("DELETE FROM sentences WHERE lesson_id = ?", (lesson_id,))
            self._conn.execute("DELETE FROM lesson_files WHERE lesson_id = ?", (lesson_id,))
            self._conn.execute("DELETE FROM lessons WHERE id = ?", (lesson_id,))

    # sentences

    def insert_sentences(
        self,
        lesson_id: int,
        sentences: Iterable[SentenceDraft],
        *,
        lesson_file_id: Optional[int] = None,
    ) -> List[int]:
        self.get_lesson(lesson_id)
        drafts = list(sentences)
        with self._lock, self._conn:
            row = self._conn.execute(
                "SELECT COALESCE(MAX(ordinal), -1) AS last FROM sentences WHERE lesson_id = ?", (lesson_id,)
            ).fetchone()
            base = int(row["last"]) + 1
            ids: List[int] = []
            for offset, draft in enumerate(drafts):
                cur = self._conn.execute(
                    """
                    INSERT INTO sentences(lesson_id, lesson_file_id, ordinal, original_text, split_text, start_time, end_time)
                    VALUES (?, ?, ?, ?, NULL, ?, ?)
                    """,
                    (lesson_id, lesson_file_id, base + offset, draft.text, draft.start_time, draft.end_time),
                )
                ids.append(int(cur.lastrowid))
        return ids

    def fetch_sentence_page(
        self,
        lesson_id: int,
        page: int,
        page_size: int,
        *,
        lesson_file_id: Optional[int] = None,
    ) -> List[Sentence]:
        if page < 1 or page_size < 1:
            raise ValueError(f"Invalid page request page={page} page_size={page_size}")
        sql = f"SELECT {SENTENCE_COLUMNS} FROM sentences WHERE lesson_id = ?"
        params: List[Any] = [lesson_id]
        if lesson_file_id is not None:
            sql += " AND lesson_file_id = ?"
            params.append(lesson_file_id)
        sql += " ORDER BY ordinal LIMIT ? OFFSET ?"
        params.extend([page_size, (page - 1) * page_size])
        with self._lock:
            rows = self._conn.execute(sql, params).fetchall()
        return [_row_to_sentence(r) for r in rows]

    def count_sentences(self, lesson_id: int, *, lesson_file_id: Optional[int] = None) -> int:
        sql = "SELECT COUNT(*) AS n FROM sentences WHERE lesson_id = ?"
        params: List[Any] = [lesson_id]
        if lesson_file_id is not None:
            sql += " AND lesson_file_id = ?"
            params.append(lesson_file_id)
        with self._lock:
            return int(self._conn.execute(sql, params).fetchone()["n"])

    def get_sentence(self, sentence_id: int) -> Sentence:
        with self._lock:
            row = self._conn.execute(
                f"SELECT {SENTENCE_COLUMNS} FROM sentences WHERE id = ?", (sentence_id,)
            ).fetchone()
        if row is None:
            raise IntegrityViolation(f"Sentence {sentence_id} not found")
        return _row_to_sentence(row)

    def _sentence_in_lesson(self, lesson_id: int, sentence_id: int) -> Sentence:
        sentence = self.get_sentence(sentence_id)
        if sentence.lesson_id != lesson_id:
            raise IntegrityViolation(f"Sentence {sentence_id} does not belong to lesson {lesson_id}")
        return sentence

    def sentence_ordinal(self, lesson_id: int, sentence_id: int, *, lesson_file_id: Optional[int] = None) -> int:
        sentence = self._sentence_in_lesson(lesson_id, sentence_id)
        sql = "SELECT COUNT(*) AS n FROM sentences WHERE lesson_id = ? AND ordinal < ?"
        params: List[Any] = [lesson_id, sentence.ordinal]
        if lesson_file_id is not None:
            if sentence.lesson_file_id != lesson_file_id:
                raise IntegrityViolation(f"Sentence {sentence_id} does not belong to lesson file {lesson_file_id}")
            sql += " AND lesson_file_id = ?"
            params.append(lesson_file_id)
        with self._lock:
            return int(self._conn.execute(sql, params).fetchone()["n"])

    def set_split_words(self, sentence_id: int, words: Optional[List[str]]) -> None:
        self.get_sentence(sentence_id)
        with self._lock, self._conn:
            self._conn.execute(
                "UPDATE sentences SET split_text = ? WHERE id = ?",
                (json.dumps(words, ensure_ascii=False) if words is not None else None, sentence_id),
            )

    def retime_sentence(self, sentence_id: int, offset_sec: float, cascade: bool = False) -> int:
        target = self.get_sentence(sentence_id)
        if not target.timed:
            raise IntegrityViolation(f"Sentence {sentence_id} has no timing to adjust")
        offset = float(offset_sec)
        with self._lock, self._conn:
            if cascade:
                rows = self._conn.execute(
                    """
                    SELECT id, start_time, end_time FROM sentences
                    WHERE lesson_id = ? AND ordinal >= ? AND start_time IS NOT NULL AND end_time IS NOT NULL
                    """,
                    (target.lesson_id, target.ordinal),
                ).fetchall()
            else:
                rows = self._conn.execute(
                    "SELECT id, start_time, end_time FROM sentences WHERE id = ?", (sentence_id,)
                ).fetchall()
            if any(r["start_time"] + offset < 0 for r in rows):
                raise ValueError(f"Offset {offset:+.3f}s would move a sentence before 0s")
            self._conn.executemany(
                "UPDATE sentences SET start_time = ?, end_time = ? WHERE id = ?",
                [(round(r["start_time"] + offset, 3), round(r["end_time"] + offset, 3), r["id"]) for r in rows],
            )
        return len(rows)

    # progress

    def get_progress(self, user_id: int, lesson_id: int) -> Optional[LessonProgress]:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM lesson_progress WHERE user_id = ? AND lesson_id = ?", (user_id, lesson_id)
            ).fetchone()
        return _row_to_progress(row) if row is not None else None

    def upsert_progress(
        self,
        user_id: int,
        lesson_id: int,
        read_till_sentence_id: int,
        status: Optional[str] = None,
    ) -> LessonProgress:
        if status is not None and status not in ProgressStatus.ALL:
            raise ValueError(f"Unknown progress status: {status}")
        with self._lock, self._conn:
            incoming = self._sentence_in_lesson(lesson_id, read_till_sentence_id)
            current = self.get_progress(user_id, lesson_id)
            ts = now_utc_iso()
            if current is None:
                self._conn.execute(
                    """
                    INSERT INTO lesson_progress(user_id, lesson_id, read_till_sentence_id, status, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (user_id, lesson_id, incoming.id, status or ProgressStatus.READING, ts, ts),
                )
            else:
                stored = self._sentence_in_lesson(lesson_id, current.read_till_sentence_id)
                keep = incoming.ordinal < stored.ordinal
                self._conn.execute(
                    """
                    UPDATE lesson_progress
                    SET read_till_sentence_id = ?, status = ?, updated_at = ?
                    WHERE user_id = ? AND lesson_id = ?
                    """,
                    (
                        stored.id if keep else incoming.id,
                        status or current.status,
                        ts,
                        user_id,
                        lesson_id,
                    ),
                )
            return self.get_progress(user_id, lesson_id)

    def delete_progress(self, user_id: int, lesson_id: int) -> bool:
        with self._lock, self._conn:
            cur = self._conn.execute(
                "DELETE FROM lesson_progress WHERE user_id = ? AND lesson_id = ?", (user_id, lesson_id)
            )
            return cur.rowcount > 0

    def list_progress(self, user_id: int) -> List[Dict[str, Any]]:
        with self._lock:
            rows = self._conn.execute(
                """
                SELECT p.lesson_id, l.title AS lesson_title, p.status, p.read_till_sentence_id, p.updated_at
                FROM lesson_progress p
                JOIN lessons l ON l.id = p.lesson_id
                WHERE p.user_id = ?
                ORDER BY p.updated_at DESC, p.lesson_id DESC
                """,
                (user_id,),
            ).fetchall()
        return [dict(r) for r in rows]
