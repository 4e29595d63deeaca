"""Tagged key=value event lines for pipeline and ffmpeg activity.

``log_summary("fine-tune", "off target", measured=-13.0, target=-9)`` becomes
``[summary][fine-tune] off target | measured=-13.00 target=-9`` on the
``quickmaster.events`` logger. EVENT_LOG_LEVEL (error|summary|debug) picks
how much of it is emitted.
"""
import logging
import os
import shlex
from pathlib import Path
from typing import Any

LEVELS = {"error": 0, "summary": 1, "debug": 2}
EVENT_LOG_LEVEL = LEVELS.get(os.getenv("EVENT_LOG_LEVEL", os.getenv("LOG_LEVEL", "error")).lower(), 0)
MAX_VALUE_CHARS = 400
# stderr is most useful at its end
TAIL_KEYS = {"stderr", "error", "reason"}
_STD_LEVELS = {"error": logging.ERROR, "summary": logging.INFO, "debug": logging.DEBUG}

events = logging.getLogger("quickmaster.events")


def _render(key: str, val: Any) -> str:
    if isinstance(val, float):
        text = f"{val:.2f}"
    elif isinstance(val, Path):
        text = str(val)
    elif isinstance(val, (list, tuple)):
        text = shlex.join(str(v) for v in val)
    else:
        text = str(val).strip()
    text = " ".join(text.split()) if key in TAIL_KEYS else text
    if len(text) > MAX_VALUE_CHARS:
        text = "…" + text[-MAX_VALUE_CHARS:] if key in TAIL_KEYS else text[:MAX_VALUE_CHARS] + "…"
    if " " in text and not isinstance(val, (list, tuple)):
        text = shlex.quote(text)
    return text


def fmt_kv(**kv: Any) -> str:
    return " ".join(f"{k}={_render(k, v)}" for k, v in kv.items() if v is not None)


def _log(level: str, tag: str, msg: str, **kv: Any) -> None:
    if LEVELS[level] > EVENT_LOG_LEVEL:
        return
    line = f"[{level}][{tag}] {msg}"
    kvs = fmt_kv(**kv)
    if kvs:
        line = f"{line} | {kvs}"
    events.log(_STD_LEVELS[level], line)


def log_error(tag: str, msg: str, **kv: Any) -> None:
    _log("error", tag, msg, **kv)


def log_summary(tag: str, msg: str, **kv: Any) -> None:
    _log("summary", tag, msg, **kv)


def log_debug(tag: str, msg: str, **kv: Any) -> None:
    _log("debug", tag, msg, **kv)
