from __future__ import annotations

import json
import subprocess
import threading
import time
from pathlib import Path

from .errors import JobCancelled, JobTimeout, MasteringError
from .logging_util import log_debug, log_error
from .tools import resolve_tool

POLL_SEC = 0.25
ALLOWED_TOOLS = {"ffmpeg", "ffprobe"}


class RunControl:
    """Cancellation flag plus wall-clock deadline shared by every command of one job."""

    def __init__(self, timeout_sec: float | None = None, cancel_event: threading.Event | None = None,
                 clock=time.monotonic):
        self._clock = clock
        self.cancel_event = cancel_event or threading.Event()
        self.deadline = clock() + timeout_sec if timeout_sec else None

    def cancel(self) -> None:
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def remaining(self) -> float | None:
        if self.deadline is None:
            return None
        return self.deadline - self._clock()

    def check(self) -> None:
        if self.cancelled:
            raise JobCancelled()
        left = self.remaining()
        if left is not None and left <= 0:
            raise JobTimeout()


def _assert_safe_cmd(cmd: list[str]) -> None:
    if not isinstance(cmd, list) or not cmd or not all(isinstance(c, str) for c in cmd):
        raise ValueError("invalid command")
    if any("\x00" in c for c in cmd):
        raise ValueError("invalid null in command")
    if cmd[0] not in ALLOWED_TOOLS:
        raise ValueError("unexpected executable")


def run_cmd(cmd: list[str], *, stage: str = "ffmpeg", control: RunControl | None = None,
            error_cls: type[MasteringError] = MasteringError, check: bool = True) -> subprocess.CompletedProcess:
    """Run ffmpeg/ffprobe with an argv list (never a shell string).

    The process is polled so a cancelled or expired RunControl kills it. A
    failure to start, or a non-zero exit when ``check`` is set, raises
    ``error_cls`` with the tail of stderr as the message.
    """
    _assert_safe_cmd(cmd)
    if control is not None:
        control.check()
    try:
        argv = [resolve_tool(cmd[0])] + cmd[1:]
    except RuntimeError as exc:
        raise error_cls(str(exc)) from exc
    log_debug(stage, "exec", args=cmd)
    try:
        proc = subprocess.Popen(
            argv,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            encoding="utf-8",
            errors="replace",
        )
    except OSError as exc:
        log_error(stage, "spawn_failed", error=str(exc))
        raise error_cls(f"{cmd[0]} could not be started: {exc}") from exc

    while True:
        try:
            stdout, stderr = proc.communicate(timeout=POLL_SEC)
            break
        except subprocess.TimeoutExpired:
            if control is None:
                continue
            try:
                control.check()
            except MasteringError as exc:
                proc.kill()
                proc.communicate()
                log_error(stage, "killed", reason=str(exc))
                raise

    res = subprocess.CompletedProcess(argv, proc.returncode, stdout, stderr)
    if res.returncode != 0:
        stderr_tail = (res.stderr or "")[-1000:]
        log_error(stage, "returncode", returncode=res.returncode, stderr=stderr_tail)
        if check:
            msg = stderr_tail.strip().splitlines()[-1] if stderr_tail.strip() else f"{cmd[0]} exited with {res.returncode}"
            raise error_cls(f"{stage} failed: {msg}")
    return res


def ffprobe_json(path: Path, *, control: RunControl | None = None,
                 error_cls: type[MasteringError] = MasteringError) -> dict:
    r = run_cmd([
        "ffprobe", "-v", "quiet", "-print_format", "json",
        "-show_format", "-show_streams", str(path)
    ], stage="ffprobe", control=control, error_cls=error_cls)
    try:
        return json.loads(r.stdout or "{}")
    except json.JSONDecodeError as exc:
        raise error_cls(f"ffprobe returned unreadable output for {Path(path).name}") from exc
