from __future__ import annotations

import argparse
import copy
from datetime import datetime
import json
import os
from pathlib import Path
import sys
import threading
import time
import tomllib
from typing import Any, Callable, Optional

from dotenv import load_dotenv
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from .api import LessonTrack
from .models import LessonTrackError, ResumeTarget
from .session import VideoSession

load_dotenv()

console = Console()


DEFAULT_CONFIG: dict[str, Any] = {
    "global": {
        "display": "normal",
        "verbose": 2,
        "logging": 0,
        "logging_file": None,
        "logging_clear": False,
        "db_path": None,
        "user_id": 1,
    },
    "paged": {
        "page_size": 5,
    },
    "video": {
        "page_size": 10,
        "look_ahead": 2,
        "window": 3,
        "debounce_seconds": 2.0,
        "tick_seconds": 0.05,
    },
    "ingest": {
        "language": "ja",
        "lesson_type": "auto",
    },
}


def _merge_config(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = dict(base)
    for k, v in overlay.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            nested = dict(out[k])
            nested.update(v)
            out[k] = nested
        else:
            out[k] = v
    return out


def _config_path() -> Path:
    explicit = os.getenv("LESSONTRACK_CONFIG")
    if explicit:
        return Path(explicit).expanduser()
    return Path.home() / ".config" / "lessontrack" / "config.json"


def _default_db_path() -> Path:
    return Path.home() / ".local" / "share" / "lessontrack" / "lessontrack.db"


def _load_blob(path: Path) -> dict[str, Any]:
    if path.suffix.lower() == ".toml":
        data = tomllib.loads(path.read_text(encoding="utf-8"))
    else:
        data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        return {}
    # Support wrapped payloads where config sits under "lessontrack".
    if isinstance(data.get("lessontrack"), dict):
        return data["lessontrack"]
    return data


def _load_config() -> dict[str, Any]:
    path = _config_path()
    if not path.exists():
        return _merge_config(copy.deepcopy(DEFAULT_CONFIG), {})
    try:
        local_cfg = _load_blob(path)
    except (OSError, ValueError) as e:
        console.print(f"[yellow]Warning:[/yellow] ignoring unreadable config {path}: {e}")
        local_cfg = {}
    return _merge_config(copy.deepcopy(DEFAULT_CONFIG), local_cfg)


def _save_config(cfg: dict[str, Any]) -> Path:
    path = _config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(cfg, indent=2), encoding="utf-8")
    return path


def _coerce_scalar(text: str) -> Any:
    t = text.strip()
    tl = t.lower()
    if tl in {"true", "false"}:
        return tl == "true"
    if tl in {"null", "none"}:
        return None
    try:
        if "." in t:
            return float(t)
        return int(t)
    except ValueError:
        pass
    if (t.startswith("{") and t.endswith("}")) or (t.startswith("[") and t.endswith("]")):
        try:
            return json.loads(t)
        except ValueError:
            pass
    return text


def _cfg_get(cfg: dict[str, Any], path: str, default: Any = None) -> Any:
    cur: Any = cfg
    for part in path.split("."):
        if not isinstance(cur, dict) or part not in cur:
            return default
        cur = cur[part]
    return cur


def _cfg_set(cfg: dict[str, Any], path: str, value: Any) -> None:
    cur: dict[str, Any] = cfg
    parts = path.split(".")
    for p in parts[:-1]:
        nxt = cur.get(p)
        if not isinstance(nxt, dict):
            nxt = {}
            cur[p] = nxt
        cur = nxt
    cur[parts[-1]] = value


def _cfg_flatten_keys(d: dict[str, Any], prefix: str = "") -> list[str]:
    keys: list[str] = []
    for k, v in d.items():
        p = f"{prefix}.{k}" if prefix else k
        if isinstance(v, dict):
            keys.extend(_cfg_flatten_keys(v, p))
        else:
            keys.append(p)
    return keys


def _resolve(cli_value: Any, cfg: dict[str, Any], path: str, fallback: Any) -> Any:
    if cli_value is not None:
        return cli_value
    return _cfg_get(cfg, path, fallback)


def _resolve_db_path(args: argparse.Namespace, cfg: dict[str, Any]) -> str:
    raw = getattr(args, "db", None) or os.getenv("LESSONTRACK_DB") or _cfg_get(cfg, "global.db_path", None)
    if raw == ":memory:":
        return raw
    return str(Path(raw).expanduser() if raw else _default_db_path())


class _CliLogger:
    def __init__(self, level: int, log_path: Optional[Path]) -> None:
        self.level = max(0, min(3, int(level)))
        self.log_path = log_path
        self._enabled = self.level > 0 and self.log_path is not None
        self._lock = threading.Lock()

    def write(self, level: int, message: str) -> None:
        if not self._enabled or int(level) > self.level:
            return
        ts = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        with self._lock:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)
            with self.log_path.open("a", encoding="utf-8") as f:
                f.write(f"[{ts}] {message}\n")


def _derive_primary_input_path(args: argparse.Namespace) -> Optional[Path]:
    inputs = getattr(args, "inputs", None)
    if inputs:
        return Path(inputs[0]).expanduser()
    return None


def _resolve_log_file_path(args: argparse.Namespace, primary_input: Optional[Path], raw: Optional[str]) -> Optional[Path]:
    if raw is None:
        raw = getattr(args, "logging_file", None)
    if int(getattr(args, "logging", 0) or 0) <= 0 and not any(
        [getattr(args, "l1", False), getattr(args, "l2", False), getattr(args, "l3", False)]
    ):
        return None

    ts = datetime.now().strftime("%y%m%d.%H%M")
    base_stem = primary_input.stem if primary_input is not None else "lessontrack"
    default_name = f"{base_stem}-{ts}.log"

    if raw:
        p = Path(raw).expanduser()
        # Existing directory, trailing slash, or no suffix means "put the log in this folder".
        if p.exists() and p.is_dir():
            return p / default_name
        if str(raw).endswith("/") or p.suffix == "":
            return p / default_name
        return p

    if primary_input is not None:
        return primary_input.parent / default_name
    return Path.cwd() / default_name


def _setup_logger(args: argparse.Namespace, cfg: Optional[dict[str, Any]] = None) -> _CliLogger:
    if cfg is None:
        cfg = _load_config()
    cli_logging = getattr(args, "logging", None)
    cfg_logging = _cfg_get(cfg, "global.logging", 0)
    if getattr(args, "l0", False):
        level = 0
    elif getattr(args, "l1", False):
        level = 1
    elif getattr(args, "l2", False):
        level = 2
    elif getattr(args, "l3", False):
        level = 3
    else:
        level = int(cli_logging if cli_logging is not None else cfg_logging or 0)
    args.logging = level
    primary = _derive_primary_input_path(args)
    log_file_raw = getattr(args, "logging_file", None)
    if log_file_raw is None:
        log_file_raw = _cfg_get(cfg, "global.logging_file", None)
    log_path = _resolve_log_file_path(args, primary, log_file_raw)
    clear = bool(getattr(args, "logging_clear", False))
    if not clear:
        clear = bool(_cfg_get(cfg, "global.logging_clear", False))
    if log_path and clear:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        log_path.write_text("", encoding="utf-8")
    logger = _CliLogger(level=level, log_path=log_path)
    if logger.log_path is not None and logger.level > 0:
        logger.write(1, f"log_file={logger.log_path}")
    return logger


def _display_mode(args: argparse.Namespace, cfg: dict[str, Any]) -> str:
    cli = args.display
    if cli is None:
        cli = _cfg_get(cfg, "global.display", "normal")
    if cli in {"r", "rich"}:
        return "rich"
    return "normal"


def _verbosity(args: argparse.Namespace, cfg: dict[str, Any]) -> int:
    if getattr(args, "quiet", False):
        return 0
    if getattr(args, "v0", False):
        return 0
    if getattr(args, "v1", False):
        return 1
    if getattr(args, "v2", False):
        return 2
    if getattr(args, "v3", False):
        return 3
    if args.verbose is not None:
        return max(0, min(3, int(args.verbose)))
    return int(_cfg_get(cfg, "global.verbose", 2))


def _print(obj: Any, *, verbosity: int, display: str) -> None:
    if verbosity <= 0:
        return
    if verbosity == 1:
        if isinstance(obj, dict):
            for _, v in obj.items():
                if isinstance(v, (str, int, float)) and not isinstance(v, bool):
                    print(v)
        elif isinstance(obj, list):
            for item in obj:
                print(json.dumps(item, ensure_ascii=False))
        else:
            print(obj)
        return
    if display == "rich":
        console.print_json(json.dumps(obj, indent=2, ensure_ascii=False))
    else:
        print(json.dumps(obj, indent=2, ensure_ascii=False))


def _print_table(rows: list[dict[str, Any]], columns: list[str], *, title: str, verbosity: int, display: str) -> None:
    if display != "rich" or verbosity < 2:
        _print(rows, verbosity=verbosity, display=display)
        return
    table = Table(title=title)
    for col in columns:
        table.add_column(col)
    for row in rows:
        table.add_row(*["" if row.get(c) is None else str(row.get(c)) for c in columns])
    console.print(table)


def _make_info_cb(logger: _CliLogger, verbosity: int) -> Callable[[str], None]:
    def info_cb(message: str) -> None:
        if verbosity >= 3:
            console.log(message)
        logger.write(2, message)

    return info_cb


def _open_api(args: argparse.Namespace, cfg: dict[str, Any], info_cb: Optional[Callable[[str], None]]) -> LessonTrack:
    user_id = int(_resolve(getattr(args, "user", None), cfg, "global.user_id", 1))
    return LessonTrack(_resolve_db_path(args, cfg), user_id=user_id, info_cb=info_cb)


def _progress_dict(progress: Any) -> Optional[dict[str, Any]]:
    if progress is None:
        return None
    return {
        "user_id": progress.user_id,
        "lesson_id": progress.lesson_id,
        "read_till_sentence_id": progress.read_till_sentence_id,
        "status": progress.status,
        "updated_at": progress.updated_at,
    }


def _cmd_ingest(args: argparse.Namespace) -> None:
    cfg = _load_config()
    display = _display_mode(args, cfg)
    verbosity = _verbosity(args, cfg)
    logger = _setup_logger(args, cfg)
    language = _resolve(args.language, cfg, "ingest.language", "ja")
    lesson_type = _resolve(args.type, cfg, "ingest.lesson_type", "auto")
    logger.write(1, f"command=ingest files={len(args.inputs)} language={language} type={lesson_type}")

    api = _open_api(args, cfg, None)
    try:
        if verbosity < 2:
            api.info_cb = _make_info_cb(logger, verbosity)
            out = api.ingest(args.inputs, title=args.title, language=language, lesson_type=lesson_type)
        else:
            with Progress(
                SpinnerColumn(),
                TextColumn("[bold]{task.description}"),
                BarColumn(),
                TextColumn("{task.completed}/{task.total}"),
                TimeElapsedColumn(),
                console=console,
            ) as progress:
                tasks: dict[str, int] = {}

                def progress_cb(stage: str, current: int, total: int, message: str) -> None:
                    key = stage
                    if key not in tasks:
                        tasks[key] = progress.add_task(message, total=max(total, 1))
                    progress.update(tasks[key], completed=max(0, min(current, max(total, 1))), total=max(total, 1), description=message)
                    logger.write(3, f"progress stage={stage} {current}/{total} msg={message}")

                def info_cb(message: str) -> None:
                    console.log(message)
                    logger.write(2, message)

                api.info_cb = info_cb
                out = api.ingest(
                    args.inputs,
                    title=args.title,
                    language=language,
                    lesson_type=lesson_type,
                    progress_cb=progress_cb,
                )
    finally:
        api.close()
    logger.write(1, f"ingest lesson_id={out['lesson_id']} sentences={out['sentences']}")
    _print(out, verbosity=verbosity, display=display)


def _cmd_lessons(args: argparse.Namespace) -> None:
    cfg = _load_config()
    display = _display_mode(args, cfg)
    verbosity = _verbosity(args, cfg)
    logger = _setup_logger(args, cfg)
    logger.write(1, "command=lessons")
    api = _open_api(args, cfg, _make_info_cb(logger, verbosity))
    try:
        if args.delete is not None:
            api.delete_lesson(args.delete)
            logger.write(1, f"lesson deleted lesson_id={args.delete}")
        rows = api.lessons()
    finally:
        api.close()
    _print_table(
        rows,
        ["id", "title", "lesson_type", "language_code", "sentences", "created_at"],
        title="Lessons",
        verbosity=verbosity,
        display=display,
    )


def _cmd_sentences(args: argparse.Namespace) -> None:
    cfg = _load_config()
    display = _display_mode(args, cfg)
    verbosity = _verbosity(args, cfg)
    logger = _setup_logger(args, cfg)
    page_size = int(_resolve(args.page_size, cfg, "paged.page_size", 5))
    logger.write(1, f"command=sentences lesson={args.lesson} page={args.page} page_size={page_size}")
    api = _open_api(args, cfg, _make_info_cb(logger, verbosity))
    try:
        rows = api.sentences(args.lesson, page=args.page, page_size=page_size, lesson_file_id=args.file)
    finally:
        api.close()
    out = [
        {
            "id": s.id,
            "ordinal": s.ordinal,
            "text": s.original_text,
            "start": s.start_time,
            "end": s.end_time,
        }
        for s in rows
    ]
    _print_table(out, ["id", "ordinal", "start", "end", "text"], title=f"Lesson {args.lesson} page {args.page}", verbosity=verbosity, display=display)


def _cmd_resume(args: argparse.Namespace) -> None:
    cfg = _load_config()
    display = _display_mode(args, cfg)
    verbosity = _verbosity(args, cfg)
    logger = _setup_logger(args, cfg)
    page_size = int(_resolve(args.page_size, cfg, "paged.page_size", 5))
    logger.write(1, f"command=resume lesson={args.lesson} page_size={page_size}")
    api = _open_api(args, cfg, _make_info_cb(logger, verbosity))
    try:
        with api.open_paged(args.lesson, page_size=page_size) as session:
            target = session.open()
            if session.resume_error:
                if verbosity >= 1:
                    console.print(f"[yellow]Warning:[/yellow] stored progress is inconsistent ({session.resume_error}); starting at page 1")
                logger.write(1, f"resume degraded lesson={args.lesson}: {session.resume_error}")
    finally:
        api.close()
    _print(target.as_dict(), verbosity=verbosity, display=display)


def _cmd_visit(args: argparse.Namespace) -> None:
    cfg = _load_config()
    display = _display_mode(args, cfg)
    verbosity = _verbosity(args, cfg)
    logger = _setup_logger(args, cfg)
    page_size = int(_resolve(args.page_size, cfg, "paged.page_size", 5))
    logger.write(1, f"command=visit lesson={args.lesson} page={args.page} page_size={page_size}")
    api = _open_api(args, cfg, _make_info_cb(logger, verbosity))
    try:
        progress = api.visit_page(args.lesson, args.page, page_size=page_size)
    finally:
        api.close()
    _print(_progress_dict(progress), verbosity=verbosity, display=display)


def _cmd_finish(args: argparse.Namespace) -> None:
    cfg = _load_config()
    display = _display_mode(args, cfg)
    verbosity = _verbosity(args, cfg)
    logger = _setup_logger(args, cfg)
    logger.write(1, f"command=finish lesson={args.lesson} sentence={args.sentence}")
    api = _open_api(args, cfg, _make_info_cb(logger, verbosity))
    try:
        progress = api.finish_lesson(args.lesson, sentence_id=args.sentence)
    finally:
        api.close()
    _print(_progress_dict(progress), verbosity=verbosity, display=display)


def _cmd_reset(args: argparse.Namespace) -> None:
    cfg = _load_config()
    display = _display_mode(args, cfg)
    verbosity = _verbosity(args, cfg)
    logger = _setup_logger(args, cfg)
    logger.write(1, f"command=reset lesson={args.lesson}")
    api = _open_api(args, cfg, _make_info_cb(logger, verbosity))
    try:
        removed = api.reset_progress(args.lesson)
    finally:
        api.close()
    _print({"lesson_id": args.lesson, "reset": removed}, verbosity=verbosity, display=display)


def _cmd_retime(args: argparse.Namespace) -> None:
    cfg = _load_config()
    display = _display_mode(args, cfg)
    verbosity = _verbosity(args, cfg)
    logger = _setup_logger(args, cfg)
    logger.write(1, f"command=retime sentence={args.sentence} offset={args.offset} cascade={args.cascade}")
    api = _open_api(args, cfg, _make_info_cb(logger, verbosity))
    try:
        changed = api.retime(args.sentence, args.offset, cascade=args.cascade)
    finally:
        api.close()
    _print({"sentence_id": args.sentence, "offset": args.offset, "updated": changed}, verbosity=verbosity, display=display)


def _cmd_progress(args: argparse.Namespace) -> None:
    cfg = _load_config()
    display = _display_mode(args, cfg)
    verbosity = _verbosity(args, cfg)
    logger = _setup_logger(args, cfg)
    logger.write(1, "command=progress")
    api = _open_api(args, cfg, _make_info_cb(logger, verbosity))
    try:
        rows = api.progress_overview()
    finally:
        api.close()
    _print_table(
        rows,
        ["lesson_id", "lesson_title", "status", "read_till_sentence_id", "updated_at"],
        title="Progress",
        verbosity=verbosity,
        display=display,
    )


class _PlaybackClock:
    """Stands in for a video player's current time."""

    def __init__(self, start: float = 0.0, *, rate: float = 1.0, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._offset = max(0.0, float(start))
        self._started_at: Optional[float] = None
        self.rate = float(rate)

    @property
    def playing(self) -> bool:
        return self._started_at is not None

    def now(self) -> float:
        if self._started_at is None:
            return self._offset
        return self._offset + (self._clock() - self._started_at) * self.rate

    def play(self) -> None:
        if self._started_at is None:
            self._started_at = self._clock()

    def pause(self) -> None:
        if self._started_at is not None:
            self._offset = self.now()
            self._started_at = None

    def toggle(self) -> None:
        if self.playing:
            self.pause()
        else:
            self.play()

    def seek(self, delta: float) -> None:
        was_playing = self.playing
        self.pause()
        self._offset = max(0.0, self._offset + float(delta))
        if was_playing:
            self.play()


def _run_player(session: VideoSession, clock: _PlaybackClock, *, tick: float, title: str) -> dict[str, Any]:
    from prompt_toolkit.application import Application
    from prompt_toolkit.key_binding import KeyBindings
    from prompt_toolkit.layout import Layout
    from prompt_toolkit.layout.containers import HSplit, Window
    from prompt_toolkit.layout.controls import FormattedTextControl
    from prompt_toolkit.styles import Style

    state: dict[str, Any] = {"quit": False, "finished": False}
    kb = KeyBindings()

    @kb.add(" ")
    def _(event: Any) -> None:
        clock.toggle()

    @kb.add("q")
    @kb.add("Q")
    @kb.add("escape")
    def _(event: Any) -> None:
        state["quit"] = True
        event.app.exit()

    @kb.add("left")
    @kb.add("b")
    def _(event: Any) -> None:
        clock.seek(-5.0)

    @kb.add("right")
    def _(event: Any) -> None:
        clock.seek(5.0)

    @kb.add("f")
    def _(event: Any) -> None:
        fut = session.finish_lesson()
        if fut is not None:
            fut.result(timeout=5)
            state["finished"] = True
        state["quit"] = True
        event.app.exit()

    def render() -> list[tuple[str, str]]:
        win = session.current
        t = clock.now()
        mode = "PLAY" if clock.playing else "PAUSE"
        loaded = len(session.loader.sentences())
        info = f"{title}  {mode} {t:7.2f}s  loaded={loaded}/{session.buffer.total_sentences}"
        out: list[tuple[str, str]] = [("class:header", info + "\n\n")]
        for s in win.previous:
            out.append(("class:context", f"  {s.original_text}\n"))
        if win.active is not None:
            out.append(("class:active", f"> {win.active.original_text}\n"))
        else:
            out.append(("class:meta", "  ...\n"))
        for s in win.next:
            out.append(("class:context", f"  {s.original_text}\n"))
        if session.is_last_sentence():
            out.append(("class:meta", "\nLast sentence. Press f to finish the lesson.\n"))
        out.append(("class:meta", "\nspace pause/resume | <-/-> seek 5s | f finish | q/esc quit"))
        return out

    control = FormattedTextControl(render)
    root = HSplit([Window(control, wrap_lines=True)])
    style = Style.from_dict(
        {
            "header": "bold",
            "meta": "fg:#888888",
            "active": "bold fg:#ff3b30",
            "context": "fg:#7a7a7a",
        }
    )
    app = Application(layout=Layout(root), key_bindings=kb, style=style, full_screen=False)

    stop = threading.Event()

    def ticker() -> None:
        while not stop.is_set():
            time.sleep(tick)
            if state["quit"]:
                stop.set()
                return
            session.on_cursor_advance(clock.now())
            app.invalidate()

    session.on_cursor_advance(clock.now())
    clock.play()
    t = threading.Thread(target=ticker, daemon=True)
    t.start()
    try:
        app.run()
    finally:
        stop.set()
        t.join(timeout=1.0)
    return {"position": round(clock.now(), 3), "finished": state["finished"]}


def _cmd_play(args: argparse.Namespace) -> None:
    cfg = _load_config()
    display = _display_mode(args, cfg)
    verbosity = _verbosity(args, cfg)
    logger = _setup_logger(args, cfg)
    if not sys.stdin.isatty():
        raise LessonTrackError("play needs an interactive terminal")
    page_size = int(_cfg_get(cfg, "video.page_size", 10))
    tick = float(_cfg_get(cfg, "video.tick_seconds", 0.05))
    logger.write(1, f"command=play lesson={args.lesson} page_size={page_size}")

    api = _open_api(args, cfg, _make_info_cb(logger, 0))
    try:
        lesson = api.store.get_lesson(args.lesson)
        with api.open_video(
            args.lesson,
            page_size=page_size,
            look_ahead=int(_cfg_get(cfg, "video.look_ahead", 2)),
            window=int(_cfg_get(cfg, "video.window", 3)),
            debounce=float(_cfg_get(cfg, "video.debounce_seconds", 2.0)),
        ) as session:
            target: ResumeTarget = session.open()
            if session.resume_error:
                console.print(f"[yellow]Warning:[/yellow] stored progress is inconsistent ({session.resume_error}); starting at 0s")
            start = float(args.seconds) if args.seconds is not None else target.time_sec
            clock = _PlaybackClock(start, rate=float(args.speed))
            result = _run_player(session, clock, tick=tick, title=lesson.title)
            pending = session.sync.flush()
            if pending is not None:
                pending.result(timeout=5)
            result["lesson_id"] = lesson.id
            result["active_sentence_id"] = session.current.active.id if session.current.active else None
    finally:
        api.close()
    logger.write(1, f"play done lesson={args.lesson} position={result['position']} finished={result['finished']}")
    _print(result, verbosity=verbosity, display=display)


def _cmd_config(args: argparse.Namespace) -> None:
    cfg = _load_config()
    logger = _setup_logger(args, cfg)
    logger.write(1, f"command=config action={args.config_action}")
    if args.config_action == "path":
        print(_config_path())
        return
    if args.config_action == "show":
        print(json.dumps(cfg, indent=2))
        print("\nHow to change settings:")
        print("  lessontrack config set <dotted.key> <value>")
        print("  lessontrack config get <dotted.key>")
        print("\nExamples:")
        print("  lessontrack config set paged.page_size 5")
        print("  lessontrack config set video.debounce_seconds 2.0")
        print("  lessontrack config set global.display rich")
        print("  lessontrack config set global.logging 2")
        print("\nEditable keys:")
        for k in sorted(_cfg_flatten_keys(cfg)):
            print(f"  - {k}")
        return
    if args.config_action == "get":
        val = _cfg_get(cfg, args.key, None)
        print(json.dumps(val, indent=2))
        return
    if args.config_action == "set":
        val = _coerce_scalar(args.value)
        _cfg_set(cfg, args.key, val)
        path = _save_config(cfg)
        print(f"Saved {args.key} in {path}")
        return
    raise ValueError(f"Unknown config action: {args.config_action}")


def _add_common_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--db", default=None, help="SQLite database path (default from config or LESSONTRACK_DB)")
    parser.add_argument("--user", type=int, default=None, help="User id for progress")
    parser.add_argument("--quiet", action="store_true", help="Minimal output")
    parser.add_argument("-d", "--display", choices=["rich", "normal", "r", "n"], default=None, help="Display style")
    parser.add_argument("--verbose", type=int, choices=[0, 1, 2, 3], default=None, help="Verbosity level")
    parser.add_argument("-v0", action="store_true", help="Verbosity 0 (silent)")
    parser.add_argument("-v1", action="store_true", help="Verbosity 1 (minimal)")
    parser.add_argument("-v2", action="store_true", help="Verbosity 2 (default info)")
    parser.add_argument("-v3", action="store_true", help="Verbosity 3 (debug)")
    parser.add_argument("--logging", type=int, choices=[0, 1, 2, 3], default=None, help="File logging level")
    parser.add_argument("-l0", action="store_true", help="Logging level 0 (off)")
    parser.add_argument("-l1", action="store_true", help="Logging level 1")
    parser.add_argument("-l2", action="store_true", help="Logging level 2")
    parser.add_argument("-l3", action="store_true", help="Logging level 3")
    parser.add_argument("--logging-file", default=None, help="Log file path or folder")
    parser.add_argument("--logging-clear", action="store_true", help="Clear log file before writing")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="lessontrack", description="Lesson reader progress tracker")
    _add_common_options(p)

    sub = p.add_subparsers(dest="command", required=True)

    ing = sub.add_parser("ingest", help="Create a lesson from .srt/.ass/.txt files")
    _add_common_options(ing)
    ing.add_argument("inputs", nargs="+", help="One file per lesson part (several files make a manga lesson)")
    ing.add_argument("--title", default=None)
    ing.add_argument("--language", default=None, help="Language code (default from config)")
    ing.add_argument("--type", choices=["auto", "text", "subtitle", "manga"], default=None)
    ing.set_defaults(func=_cmd_ingest)

    ls = sub.add_parser("lessons", help="List lessons")
    _add_common_options(ls)
    ls.add_argument("--delete", type=int, default=None, help="Delete this lesson id first")
    ls.set_defaults(func=_cmd_lessons)

    se = sub.add_parser("sentences", help="Show one page of a lesson's sentences")
    _add_common_options(se)
    se.add_argument("lesson", type=int)
    se.add_argument("--page", type=int, default=1)
    se.add_argument("--page-size", type=int, default=None)
    se.add_argument("--file", type=int, default=None, help="Only sentences of this lesson file (manga page)")
    se.set_defaults(func=_cmd_sentences)

    rs = sub.add_parser("resume", help="Show where to resume a lesson")
    _add_common_options(rs)
    rs.add_argument("lesson", type=int)
    rs.add_argument("--page-size", type=int, default=None)
    rs.set_defaults(func=_cmd_resume)

    vi = sub.add_parser("visit", help="Record a page visit in paged mode")
    _add_common_options(vi)
    vi.add_argument("lesson", type=int)
    vi.add_argument("page", type=int)
    vi.add_argument("--page-size", type=int, default=None)
    vi.set_defaults(func=_cmd_visit)

    fi = sub.add_parser("finish", help="Mark a lesson finished")
    _add_common_options(fi)
    fi.add_argument("lesson", type=int)
    fi.add_argument("--sentence", type=int, default=None)
    fi.set_defaults(func=_cmd_finish)

    re_ = sub.add_parser("reset", help="Forget progress for a lesson")
    _add_common_options(re_)
    re_.add_argument("lesson", type=int)
    re_.set_defaults(func=_cmd_reset)

    rt = sub.add_parser("retime", help="Shift a sentence's timing by OFFSET seconds")
    _add_common_options(rt)
    rt.add_argument("sentence", type=int)
    rt.add_argument("offset", type=float)
    rt.add_argument("--cascade", action="store_true", help="Also shift every later timed sentence")
    rt.set_defaults(func=_cmd_retime)

    pr = sub.add_parser("progress", help="List progress for the user, newest first")
    _add_common_options(pr)
    pr.set_defaults(func=_cmd_progress)

    pl = sub.add_parser("play", help="Follow a subtitle lesson in the terminal with a playback clock")
    _add_common_options(pl)
    pl.add_argument("lesson", type=int)
    pl.add_argument("--seconds", type=float, default=None, help="Start time in seconds (default: resume point)")
    pl.add_argument("--speed", type=float, default=1.0, help="Playback rate")
    pl.set_defaults(func=_cmd_play)

    cfg = sub.add_parser("config", help="Show or update lessontrack defaults config")
    _add_common_options(cfg)
    cfg_sub = cfg.add_subparsers(dest="config_action", required=True)
    cfg_path = cfg_sub.add_parser("path", help="Show config file path")
    _add_common_options(cfg_path)
    cfg_show = cfg_sub.add_parser("show", help="Show effective config")
    _add_common_options(cfg_show)
    cfg_get = cfg_sub.add_parser("get", help="Get config value by dotted path")
    _add_common_options(cfg_get)
    cfg_get.add_argument("key")
    cfg_set = cfg_sub.add_parser("set", help="Set config value by dotted path")
    _add_common_options(cfg_set)
    cfg_set.add_argument("key")
    cfg_set.add_argument("value")
    cfg.set_defaults(func=_cmd_config)

    return p


def main(argv: Optional[list[str]] = None) -> None:
    parser = build_parser()
    try:
        args = parser.parse_args(sys.argv[1:] if argv is None else argv)
        args.func(args)
    except (LessonTrackError, FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise SystemExit(1)
    except KeyboardInterrupt:
        print("Cancelled.")
        raise SystemExit(1)


if __name__ == "__main__":
    main()
