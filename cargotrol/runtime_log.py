from __future__ import annotations

from datetime import datetime
import os
from pathlib import Path
import traceback

RUNTIME_LOG_ENV_VAR = "CARGOTROL_RUNTIME_LOG"
DEFAULT_RUNTIME_LOG_PATH = Path.home() / ".cargotrol_runtime.log"
MAX_RUNTIME_LOG_LINES = 1200


def runtime_log_path() -> Path:
    override = os.environ.get(RUNTIME_LOG_ENV_VAR, "").strip()
    if override:
        return Path(override).expanduser()
    return DEFAULT_RUNTIME_LOG_PATH


def append_runtime_log(level: str, context: str, message: str) -> None:
    level_text = str(level).strip().upper() or "INFO"
    context_text = str(context).strip() or "runtime"
    message_text = str(message).replace("\r", " ").replace("\n", " ").strip()
    if not message_text:
        message_text = "(no details)"

    line = f"{datetime.now().isoformat(timespec='seconds')} [{level_text}] {context_text} :: {message_text}\n"
    log_path = runtime_log_path()

    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        with log_path.open("a", encoding="utf-8") as handle:
            handle.write(line)
    except OSError:
        return

    try:
        lines = log_path.read_text(encoding="utf-8", errors="replace").splitlines()
        if len(lines) > MAX_RUNTIME_LOG_LINES:
            log_path.write_text("\n".join(lines[-MAX_RUNTIME_LOG_LINES:]) + "\n", encoding="utf-8")
    except OSError:
        pass


def log_runtime_warning(context: str, message: str) -> None:
    append_runtime_log("WARN", context, message)


def log_runtime_error(context: str, exc: BaseException) -> None:
    error_summary = f"{exc.__class__.__name__}: {exc}"
    trace_text = traceback.format_exc().strip()
    if trace_text and trace_text != "NoneType: None":
        error_summary = f"{error_summary} | traceback={trace_text}"
    append_runtime_log("ERROR", context, error_summary)


def read_runtime_log_tail(max_lines: int = 120) -> list[str]:
    bounded_lines = max(1, int(max_lines))
    log_path = runtime_log_path()
    try:
        if not log_path.exists():
            return []
        return log_path.read_text(encoding="utf-8", errors="replace").splitlines()[-bounded_lines:]
    except OSError:
        return []


def get_runtime_log_line_count() -> int:
    log_path = runtime_log_path()
    try:
        if not log_path.exists():
            return 0
        return len(log_path.read_text(encoding="utf-8", errors="replace").splitlines())
    except OSError:
        return 0


def clear_runtime_log() -> None:
    try:
        runtime_log_path().unlink(missing_ok=True)
    except OSError:
        pass
