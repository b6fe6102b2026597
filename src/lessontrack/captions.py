from __future__ import annotations

import re
from typing import Iterable, List, Optional

from .models import Caption

SRT_TIMESTAMP_RE = re.compile(
    r"^(\d{2}):(\d{2}):(\d{2})[,.](\d{3})\s*-->\s*(\d{2}):(\d{2}):(\d{2})[,.](\d{3})$"
)
SRT_SNIFF_RE = re.compile(r"^\d+\s*\n\d{2}:\d{2}:\d{2}[,.]\d{3}\s*-->\s*\d{2}:\d{2}:\d{2}[,.]\d{3}", re.M)
ASS_TIME_RE = re.compile(r"^(\d+):(\d{1,2}):(\d{1,2})(?:\.(\d{1,3}))?$")
ASS_TAG_RE = re.compile(r"\{[^}]*\}")
ASS_DEFAULT_FIELDS = 10


def _normalize_newlines(text: str) -> str:
    return (text or "").replace("\r\n", "\n").replace("\r", "\n")


def _to_ms(h: str, m: str, s: str, millis: str) -> int:
    return int(h) * 3600000 + int(m) * 60000 + int(s) * 1000 + int(millis)


def parse_srt(content: str) -> List[Caption]:
    out: List[Caption] = []
    for block in re.split(r"\n\s*\n", _normalize_newlines(content)):
        lines = [ln.strip() for ln in block.split("\n")]
        lines = [ln for ln in lines if ln]
        # index line + timestamp line at minimum
        if len(lines) < 2:
            continue
        m = SRT_TIMESTAMP_RE.match(lines[1])
        if not m:
            continue
        text = "\n".join(lines[2:]).strip()
        if not text:
            continue
        start = _to_ms(*m.group(1, 2, 3, 4))
        end = _to_ms(*m.group(5, 6, 7, 8))
        if end <= start:
            continue
        out.append(Caption(text=text, start_ms=start, end_ms=end))
    return out


def _ass_time_to_ms(value: str) -> int:
    m = ASS_TIME_RE.match(value.strip())
    if not m:
        raise ValueError(f"Invalid ASS timestamp: {value!r}")
    frac = m.group(4) or "0"
    # H:MM:SS.cc is the norm; tolerate one or three fractional digits.
    millis = int(frac) * {1: 100, 2: 10, 3: 1}[len(frac)]
    return int(m.group(1)) * 3600000 + int(m.group(2)) * 60000 + int(m.group(3)) * 1000 + millis


def _strip_ass_tags(text: str) -> str:
    cleaned = ASS_TAG_RE.sub("", text)
    cleaned = cleaned.replace("\\N", "\n").replace("\\n", "\n").replace("\\h", " ")
    return cleaned.strip()


def parse_ass(content: str) -> List[Caption]:
    out: List[Caption] = []
    in_events = False
    start_idx = end_idx = text_idx = -1

    for raw in _normalize_newlines(content).split("\n"):
        line = raw.strip()
        if line.startswith("[Events]"):
            in_events = True
            continue
        if in_events and line.startswith("[") and line.endswith("]"):
            break
        if not in_events or not line or line.startswith((";", "!")):
            continue

        if line.lower().startswith("format:"):
            fields = [f.strip().lower() for f in line[len("format:"):].split(",")]
            start_idx = fields.index("start") if "start" in fields else -1
            end_idx = fields.index("end") if "end" in fields else -1
            text_idx = fields.index("text") if "text" in fields else -1
            continue
        if not line.startswith("Dialogue:"):
            continue

        parts = line[len("Dialogue:"):].strip().split(",")
        if min(start_idx, end_idx, text_idx) >= 0:
            fields = parts[:text_idx] + [",".join(parts[text_idx:])]
            s_i, e_i, t_i = start_idx, end_idx, text_idx
        elif len(parts) >= ASS_DEFAULT_FIELDS:
            fields = parts[: ASS_DEFAULT_FIELDS - 1] + [",".join(parts[ASS_DEFAULT_FIELDS - 1 :])]
            s_i, e_i, t_i = 1, 2, ASS_DEFAULT_FIELDS - 1
        else:
            fields = parts
            s_i, e_i, t_i = 1, 2, len(parts) - 1

        if len(fields) <= max(s_i, e_i, t_i):
            continue
        try:
            start = _ass_time_to_ms(fields[s_i])
            end = _ass_time_to_ms(fields[e_i])
        except ValueError:
            continue
        text = " ".join(_strip_ass_tags(fields[t_i]).split("\n")).strip()
        if not text or end <= start:
            continue
        out.append(Caption(text=text, start_ms=start, end_ms=end))

    if not out:
        raise ValueError("No valid dialogue events found in ASS content")
    return out


def normalize_captions(captions: Iterable[Caption]) -> List[Caption]:
    ordered = sorted(captions, key=lambda c: c.start_ms)
    out: List[Caption] = []
    for cap in ordered:
        prev = out[-1] if out else None
        if prev is not None and prev.text == cap.text:
            prev.start_ms = min(prev.start_ms, cap.start_ms)
            prev.end_ms = max(prev.end_ms, cap.end_ms)
            continue
        out.append(Caption(text=cap.text, start_ms=cap.start_ms, end_ms=cap.end_ms))
    return out


def detect_file_type(content: str, file_name: Optional[str] = None) -> str:
    name = (file_name or "").lower()
    text = _normalize_newlines(content)
    if name.endswith((".ass", ".ssa")) or re.search(r"^\s*\[Events\]\s*$", text, re.M):
        return "ass"
    if name.endswith(".srt") or SRT_SNIFF_RE.search(text):
        return "srt"
    return "txt"


def parse_captions(content: str, file_name: Optional[str] = None) -> List[Caption]:
    kind = detect_file_type(content, file_name)
    if kind == "ass":
        return parse_ass(content)
    if kind == "srt":
        return parse_srt(content)
    raise ValueError(f"Not a subtitle file: {file_name or '<text>'}")
