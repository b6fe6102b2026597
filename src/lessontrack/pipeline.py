from __future__ import annotations

import re
import unicodedata
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from .captions import detect_file_type, normalize_captions, parse_captions
from .models import LESSON_TYPES, Caption, SentenceDraft

SENTENCE_ENDERS = r".!?\u3002\uFF01\uFF1F\uFF5E\u2025\u2026"
SENTENCE_END_RE = re.compile(rf"([{SENTENCE_ENDERS}]+\s+|[{SENTENCE_ENDERS}]+$)")
TRAILING_ENDERS_RE = re.compile(rf"[{SENTENCE_ENDERS}]+$")
CJK_RE = re.compile(r"[\u3040-\u309F\u30A0-\u30FF\u4E00-\u9FAF\uAC00-\uD7AF]")
HALF_WIDTH_KATAKANA_RE = re.compile(r"[\uFF65-\uFF9F]+")
HTML_TAG_RE = re.compile(r"<[^>]*>")


def _read_text(path: Path) -> str:
    data = path.read_bytes()
    for enc in ("utf-8", "utf-8-sig", "cp1252"):
        try:
            return data.decode(enc)
        except UnicodeDecodeError:
            pass
    return data.decode("utf-8", errors="replace")


def normalize_katakana(text: str) -> str:
    # NFKC folds half-width kana into full-width and composes trailing voiced marks.
    return HALF_WIDTH_KATAKANA_RE.sub(lambda m: unicodedata.normalize("NFKC", m.group(0)), text or "")


def clean_caption_text(text: str) -> str:
    cleaned = HTML_TAG_RE.sub("", text or "").replace("\n", " ").strip()
    return normalize_katakana(cleaned)


def split_into_sentences(text: str) -> List[str]:
    parts = SENTENCE_END_RE.split(text or "")
    out: List[str] = []
    cur = ""
    for i, part in enumerate(parts):
        if not part:
            continue
        # re.split with a capture group puts delimiters at odd indices
        if i % 2 == 1:
            cur += part.rstrip()
            if cur.strip():
                out.append(cur.strip())
            cur = ""
        else:
            cur += part
    if cur.strip():
        out.append(cur.strip())

    def keep(sentence: str) -> bool:
        core = TRAILING_ENDERS_RE.sub("", sentence).strip()
        return len(core) >= (1 if CJK_RE.search(core) else 3)

    return [s for s in out if keep(s)]


def _round_ms(value: float) -> int:
    return int(value + 0.5)


def captions_to_drafts(captions: Iterable[Caption]) -> List[SentenceDraft]:
    out: List[SentenceDraft] = []
    for cap in captions:
        text = clean_caption_text(cap.text)
        if not text:
            continue
        pieces = split_into_sentences(text)
        if len(pieces) <= 1:
            out.append(SentenceDraft(text=text, start_ms=cap.start_ms, end_ms=cap.end_ms))
            continue

        total_chars = len(text)
        duration = cap.end_ms - cap.start_ms
        cursor = float(cap.start_ms)
        for piece in pieces:
            piece_end = cursor + (len(piece) / total_chars) * duration
            out.append(SentenceDraft(text=piece, start_ms=_round_ms(cursor), end_ms=_round_ms(piece_end)))
            cursor = piece_end
    return out


def parse_txt_content(content: str) -> List[SentenceDraft]:
    text = normalize_katakana(content.replace("\r\n", "\n").replace("\r", "\n").strip())
    if not text:
        raise ValueError("Text file is empty or contains no readable content")
    return [SentenceDraft(text=s) for s in split_into_sentences(text)]


def process_lesson_file(content: str, file_name: Optional[str] = None) -> List[SentenceDraft]:
    if detect_file_type(content, file_name) == "txt":
        return parse_txt_content(content)
    return captions_to_drafts(normalize_captions(parse_captions(content, file_name)))


def infer_lesson_type(paths: Sequence[Path], contents: Sequence[str]) -> str:
    if len(paths) > 1:
        return "manga"
    if contents and detect_file_type(contents[0], paths[0].name) != "txt":
        return "subtitle"
    return "text"


def ingest_lesson(
    store: Any,
    inputs: Sequence[Path],
    *,
    title: Optional[str] = None,
    language_code: str = "ja",
    lesson_type: str = "auto",
    progress_cb: Optional[Callable[[str, int, int, str], None]] = None,
    info_cb: Optional[Callable[[str], None]] = None,
) -> Dict[str, Any]:
    if not inputs:
        raise ValueError("At least one input file is required")
    for path in inputs:
        if not path.exists():
            raise FileNotFoundError(path)

    contents = [_read_text(p) for p in inputs]
    if lesson_type == "auto":
        lesson_type = infer_lesson_type(inputs, contents)
    if lesson_type not in LESSON_TYPES:
        raise ValueError(f"Unknown lesson type: {lesson_type}")

    total = len(inputs)
    parsed: List[Tuple[Path, List[SentenceDraft]]] = []
    for idx, (path, content) in enumerate(zip(inputs, contents), start=1):
        if progress_cb:
            progress_cb("ingest", idx, total + 1, f"Parsing {path.name}")
        drafts = process_lesson_file(content, path.name)
        if not drafts:
            raise ValueError(f"No sentences found in {path}")
        if info_cb:
            timed = sum(1 for d in drafts if d.start_ms is not None)
            info_cb(f"ingest file={path.name} sentences={len(drafts)} timed={timed}")
        parsed.append((path, drafts))

    if progress_cb:
        progress_cb("ingest", total + 1, total + 1, "Writing sentences")
    lesson_id = store.create_lesson(title or inputs[0].stem, language_code, lesson_type)
    files: List[Dict[str, Any]] = []
    for path, drafts in parsed:
        file_id = store.add_lesson_file(lesson_id, path.name)
        ids = store.insert_sentences(lesson_id, drafts, lesson_file_id=file_id)
        files.append({"name": path.name, "lesson_file_id": file_id, "sentences": len(ids)})

    out = {
        "lesson_id": lesson_id,
        "title": title or inputs[0].stem,
        "lesson_type": lesson_type,
        "language_code": language_code,
        "files": files,
        "sentences": sum(f["sentences"] for f in files),
    }
    if info_cb:
        info_cb(f"ingest lesson_id={lesson_id} type={lesson_type} sentences={out['sentences']}")
    return out
