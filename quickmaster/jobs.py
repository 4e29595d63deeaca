from __future__ import annotations

import dataclasses
import threading
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from .analyzer import AudioAnalysis
from .ffmpeg import RunControl


class JobStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETE = "complete"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (JobStatus.COMPLETE, JobStatus.FAILED)


@dataclass(frozen=True)
class MasteringResult:
    preset: str
    input: AudioAnalysis
    output: AudioAnalysis
    gain_db: float
    voice_tag_added: bool
    fine_tuned: bool
    within_tolerance: bool
    master_path: Path
    distribution_path: Path

    def to_dict(self, download_prefix: str = "/output") -> dict:
        prefix = download_prefix.rstrip("/")
        return {
            "success": True,
            "preset": self.preset,
            "input": self.input.to_dict(),
            "output": self.output.to_dict(),
            "gainDb": round(self.gain_db, 2),
            "voiceTagAdded": self.voice_tag_added,
            "fineTuned": self.fine_tuned,
            "withinTolerance": self.within_tolerance,
            "downloads": {
                "master": f"{prefix}/{Path(self.master_path).name}",
                "distribution": f"{prefix}/{Path(self.distribution_path).name}",
            },
        }


def new_job_id() -> str:
    return uuid.uuid4().hex


@dataclass
class Job:
    id: str
    status: JobStatus = JobStatus.QUEUED
    progress_percent: int = 0
    stage: str = "init"
    message: str = "Queued"
    result: Optional[MasteringResult] = None
    control: RunControl = field(default_factory=RunControl, repr=False, compare=False)
    created_at: float = 0.0
    expires_at: Optional[float] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.terminal

    def snapshot(self) -> "Job":
        return dataclasses.replace(self)

    def to_progress_dict(self) -> dict:
        return {
            "status": self.status.value,
            "progressPercent": self.progress_percent,
            "stage": self.stage,
            "message": self.message,
        }


class JobRegistry:
    """Lock-guarded job table.

    Callers only ever get copies. Terminal jobs stay readable for
    ``retention_sec`` and are then dropped on the next access.
    """

    def __init__(self, retention_sec: float = 300, clock: Callable[[], float] = time.monotonic):
        self.retention_sec = retention_sec
        self._clock = clock
        self._jobs: dict[str, Job] = {}
        self._lock = threading.Lock()

    def _sweep_locked(self) -> int:
        now = self._clock()
        expired = [jid for jid, job in self._jobs.items()
                   if job.expires_at is not None and job.expires_at <= now]
        for jid in expired:
            self._jobs.pop(jid, None)
        return len(expired)

    def sweep(self) -> int:
        with self._lock:
            return self._sweep_locked()

    def put(self, job: Job) -> Job:
        with self._lock:
            self._sweep_locked()
            if not job.created_at:
                job.created_at = self._clock()
            self._jobs[job.id] = job
            return job.snapshot()

    def get(self, job_id: str) -> Job | None:
        with self._lock:
            self._sweep_locked()
            job = self._jobs.get(job_id)
            return job.snapshot() if job else None

    def update(self, job_id: str, *, status: JobStatus | None = None, progress: int | None = None,
               stage: str | None = None, message: str | None = None) -> Job | None:
        with self._lock:
            self._sweep_locked()
            job = self._jobs.get(job_id)
            if job is None or job.is_terminal:
                return None
            if status is not None and not status.terminal:
                job.status = status
            if progress is not None:
                job.progress_percent = max(job.progress_percent, min(100, int(progress)))
            if stage is not None:
                job.stage = stage
            if message is not None and not job.control.cancelled:
                job.message = message
            return job.snapshot()

    def finish(self, job_id: str, status: JobStatus, message: str,
               result: MasteringResult | None = None) -> Job | None:
        """Move a job to its terminal state. Only the first call has any effect."""
        if not status.terminal:
            raise ValueError(f"not a terminal status: {status}")
        with self._lock:
            self._sweep_locked()
            job = self._jobs.get(job_id)
            if job is None or job.is_terminal:
                return None
            job.status = status
            job.message = message
            job.result = result
            if status is JobStatus.COMPLETE:
                job.progress_percent = 100
                job.stage = "complete"
            else:
                job.stage = "error"
            job.expires_at = self._clock() + self.retention_sec
            return job.snapshot()

    def delete(self, job_id: str) -> bool:
        with self._lock:
            return self._jobs.pop(job_id, None) is not None

    def cancel(self, job_id: str) -> Job | None:
        """Signal cancellation. Returns the job as it was, or None when unknown."""
        with self._lock:
            self._sweep_locked()
            job = self._jobs.get(job_id)
            if job is None:
                return None
            if not job.is_terminal:
                job.control.cancel()
                job.message = "Cancelling..."
            return job.snapshot()

    def __len__(self) -> int:
        with self._lock:
            self._sweep_locked()
            return len(self._jobs)
