"""Background mastering pipeline.

One job runs in one thread and its stages run strictly in order:
analyze, build chain, render, verify, fine-tune, voice tag, mp3. Every
external call goes through the adapters below so a cancelled or expired job
stops at the next command.
"""
from __future__ import annotations

import logging
import re
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from . import analyzer, encode, voicetag
from .render import render as render_chain, render_normalized
from .chain import build_chain
from .errors import MasteringError
from .ffmpeg import RunControl
from .finetune import fine_tune, within_tolerance
from .jobs import Job, JobRegistry, JobStatus, MasteringResult, new_job_id
from .logging_util import log_summary
from .presets import PresetCatalog
from .storage import JOB_TIMEOUT_SEC, MP3_BITRATE_KBPS, Paths

logger = logging.getLogger("quickmaster.pipeline")

STAGE_PROGRESS_START = 25
STAGE_PROGRESS_END = 50


@dataclass(frozen=True)
class Adapters:
    analyze: Callable = analyzer.analyze
    render: Callable = render_chain
    normalize: Callable = render_normalized
    resolve_voice_tag: Callable = voicetag.resolve_voice_tag
    splice: Callable = voicetag.splice_voice_tag
    encode_mp3: Callable = encode.encode_mp3
    tag_mp3: Callable = encode.tag_mp3


@dataclass(frozen=True)
class MasteringRequest:
    input_path: Path
    original_name: str
    preset: Optional[str] = None


def safe_stem(name: str) -> str:
    stem = Path(name or "").stem
    stem = re.sub(r"[^A-Za-z0-9._-]+", "_", stem).strip("._")
    return stem[:80] or "track"


@dataclass(frozen=True)
class JobFiles:
    master: Path
    distribution: Path

    @classmethod
    def for_job(cls, output_dir: Path, original_name: str, job_id: str) -> "JobFiles":
        base = f"{safe_stem(original_name)}_master_{job_id}"
        return cls(output_dir / f"{base}.wav", output_dir / f"{base}.mp3")

    def discard(self) -> None:
        for fp in (self.master, self.distribution):
            try:
                fp.unlink(missing_ok=True)
            except OSError as exc:
                logger.warning("[pipeline] could not remove %s: %s", fp, exc)


class MasteringPipeline:
    def __init__(self, registry: JobRegistry, catalog: PresetCatalog, paths: Paths,
                 adapters: Adapters | None = None, bitrate_kbps: int = MP3_BITRATE_KBPS):
        self.registry = registry
        self.catalog = catalog
        self.paths = paths
        self.adapters = adapters or Adapters()
        self.bitrate_kbps = bitrate_kbps

    def _progress(self, job_id: str, pct: int, stage: str, message: str) -> None:
        self.registry.update(job_id, progress=pct, stage=stage, message=message)

    def run(self, job_id: str, request: MasteringRequest) -> MasteringResult | None:
        job = self.registry.get(job_id)
        if job is None:
            logger.warning("[pipeline] job %s vanished before start", job_id)
            Path(request.input_path).unlink(missing_ok=True)
            return None
        control = job.control
        files = JobFiles.for_job(self.paths.output_dir, request.original_name, job_id)
        try:
            result = self._run(job_id, request, files, control)
        except MasteringError as exc:
            files.discard()
            log_summary("pipeline", "job failed", job_id=job_id, error=str(exc))
            self.registry.finish(job_id, JobStatus.FAILED, str(exc))
            return None
        except Exception:
            files.discard()
            logger.exception("[pipeline] job %s crashed", job_id)
            self.registry.finish(job_id, JobStatus.FAILED, "Mastering failed: internal error")
            return None
        finally:
            Path(request.input_path).unlink(missing_ok=True)
        self.registry.finish(job_id, JobStatus.COMPLETE, "Mastering complete", result)
        log_summary("pipeline", "job complete", job_id=job_id, preset=result.preset)
        return result

    def _run(self, job_id: str, request: MasteringRequest, files: JobFiles,
             control: RunControl) -> MasteringResult:
        a = self.adapters
        self._progress(job_id, 5, "init", "Starting mastering...")
        preset = self.catalog.lookup(request.preset)

        self._progress(job_id, 10, "analyze", "Analyzing input loudness...")
        first_in = a.analyze(request.input_path, control=control)

        self._progress(job_id, 20, "build", f"Building {preset.label} chain...")
        chain, gain_db = build_chain(preset, first_in)
        span = STAGE_PROGRESS_END - STAGE_PROGRESS_START
        for i, stage in enumerate(chain):
            pct = STAGE_PROGRESS_START + round(span * i / max(1, len(chain) - 1))
            self._progress(job_id, pct, stage.group, stage.label)
        control.check()

        self._progress(job_id, 55, "process", "Rendering master...")
        a.render(request.input_path, chain, files.master, control=control)

        self._progress(job_id, 70, "verify", "Verifying output loudness...")
        first_out = a.analyze(files.master, control=control)

        if not within_tolerance(first_out, preset.target_lufs):
            self._progress(job_id, 75, "fine-tune", "Fine-tuning loudness...")
        outcome = fine_tune(files.master, preset, first_out,
                            analyze=a.analyze, normalize=a.normalize, control=control)

        voice_tag_added = False
        tag = a.resolve_voice_tag(self.paths.voice_tag_dir)
        if tag is not None:
            self._progress(job_id, 80, "voice-tag", "Adding voice tag...")
            voice_tag_added = a.splice(files.master, tag, self.paths.tmp_dir, job_id, control=control)
        else:
            log_summary("voice-tag", "no voice tag found", dir=str(self.paths.voice_tag_dir))

        self._progress(job_id, 85, "mp3", "Encoding distribution MP3...")
        a.encode_mp3(files.master, files.distribution, self.bitrate_kbps, control=control)
        a.tag_mp3(files.distribution, safe_stem(request.original_name), f"Mastered with {preset.label}")

        self._progress(job_id, 95, "finalize", "Finalizing...")
        return MasteringResult(
            preset=preset.name,
            input=first_in,
            output=outcome.analysis,
            gain_db=gain_db,
            voice_tag_added=voice_tag_added,
            fine_tuned=outcome.fine_tuned,
            within_tolerance=outcome.within_tolerance,
            master_path=files.master,
            distribution_path=files.distribution,
        )


class JobLauncher:
    """Creates jobs and runs each one on its own daemon thread."""

    def __init__(self, pipeline: MasteringPipeline, timeout_sec: float = JOB_TIMEOUT_SEC):
        self.pipeline = pipeline
        self.timeout_sec = timeout_sec

    @property
    def registry(self) -> JobRegistry:
        return self.pipeline.registry

    def create(self, job_id: str | None = None) -> Job:
        job = Job(id=job_id or new_job_id(), control=RunControl(timeout_sec=self.timeout_sec))
        self.registry.put(job)
        self.registry.update(job.id, status=JobStatus.PROCESSING, message="Processing started")
        return job

    def submit(self, request: MasteringRequest, job_id: str | None = None) -> str:
        job = self.create(job_id)
        threading.Thread(
            target=self.pipeline.run,
            args=(job.id, request),
            name=f"master-{job.id[:8]}",
            daemon=True,
        ).start()
        log_summary("pipeline", "job submitted", job_id=job.id, preset=request.preset or "")
        return job.id

    def run_now(self, request: MasteringRequest) -> Job:
        """Synchronous variant for the CLI; returns the terminal job."""
        job = self.create()
        self.pipeline.run(job.id, request)
        return self.registry.get(job.id)
