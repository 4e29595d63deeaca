import asyncio
import logging
import os
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from .errors import ValidationError
from .jobs import JobRegistry, JobStatus, new_job_id
from .pipeline import Adapters, JobLauncher, MasteringPipeline, MasteringRequest
from .presets import PresetCatalog, load_catalog
from .storage import (
    FILE_MAX_AGE_SEC,
    JOB_RETENTION_SEC,
    JOB_TIMEOUT_SEC,
    MAX_UPLOAD_BYTES,
    SWEEP_INTERVAL_SEC,
    Paths,
    ensure_dirs,
    resolve_paths,
    sweep_stale_files,
)
from .tools import tool_available
from .voicetag import resolve_voice_tag

logging.basicConfig(
    level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO),
    format="%(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger("quickmaster.server")

ALLOWED_UPLOAD_EXT = {".wav", ".mp3", ".flac", ".m4a", ".aac", ".ogg", ".aiff", ".aif"}
CHUNK_SIZE = 4 * 1024 * 1024
OUTPUT_PREFIX = "/output"


def _upload_suffix(name: Optional[str]) -> str:
    # the client name is only used for its extension; uploads are stored as <job_id><ext>
    suffix = Path(name or "").suffix.lower()
    if suffix not in ALLOWED_UPLOAD_EXT:
        raise ValidationError("unsupported_type")
    return suffix


async def _save_upload(file: UploadFile, dest: Path, max_bytes: int) -> int:
    size = 0
    with dest.open("wb") as fout:
        while True:
            chunk = await file.read(CHUNK_SIZE)
            if not chunk:
                break
            size += len(chunk)
            if size > max_bytes:
                fout.close()
                dest.unlink(missing_ok=True)
                raise ValidationError("file_too_large", status_code=413)
            fout.write(chunk)
    if size == 0:
        dest.unlink(missing_ok=True)
        raise ValidationError("empty_file")
    return size


async def _sweep_loop(paths: Paths, interval_sec: int, max_age_sec: int) -> None:
    while True:
        try:
            sweep_stale_files([paths.upload_dir, paths.output_dir], max_age_sec)
        except OSError as exc:
            logger.warning("[sweep] failed: %s", exc)
        await asyncio.sleep(interval_sec)


def create_app(paths: Optional[Paths] = None, catalog: Optional[PresetCatalog] = None,
               adapters: Optional[Adapters] = None, registry: Optional[JobRegistry] = None,
               max_upload_bytes: int = MAX_UPLOAD_BYTES, sweep: bool = True) -> FastAPI:
    paths = ensure_dirs(paths or resolve_paths())
    if catalog is None:
        catalog = load_catalog(paths.preset_dir)
    if registry is None:
        registry = JobRegistry(retention_sec=JOB_RETENTION_SEC)
    pipeline = MasteringPipeline(registry, catalog, paths, adapters=adapters)
    launcher = JobLauncher(pipeline, timeout_sec=JOB_TIMEOUT_SEC)

    app = FastAPI(title="QuickMaster")
    app.state.paths = paths
    app.state.catalog = catalog
    app.state.registry = registry
    app.state.launcher = launcher
    app.mount(OUTPUT_PREFIX, StaticFiles(directory=str(paths.output_dir)), name="output")

    @app.exception_handler(ValidationError)
    async def _validation_error(request: Request, exc: ValidationError):
        logger.info("[upload] rejected path=%s detail=%s", request.url.path, exc.detail)
        return JSONResponse({"success": False, "detail": exc.detail}, status_code=exc.status_code)

    @app.on_event("startup")
    async def _start_sweeper():
        if sweep:
            app.state.sweeper = asyncio.create_task(_sweep_loop(paths, SWEEP_INTERVAL_SEC, FILE_MAX_AGE_SEC))

    @app.on_event("shutdown")
    async def _stop_sweeper():
        task = getattr(app.state, "sweeper", None)
        if task is not None:
            task.cancel()

    @app.post("/api/quick-master")
    async def quick_master(audio: Optional[UploadFile] = File(None), preset: Optional[str] = Form(None)):
        if audio is None:
            raise ValidationError("missing_file")
        suffix = _upload_suffix(audio.filename)
        job_id = new_job_id()
        dest = paths.upload_dir / f"{job_id}{suffix}"
        size = await _save_upload(audio, dest, max_upload_bytes)
        logger.info("[upload] saved job=%s bytes=%d preset=%s", job_id, size, preset or catalog.default_name)
        request = MasteringRequest(input_path=dest, original_name=Path(audio.filename).name, preset=preset)
        launcher.submit(request, job_id=job_id)
        return {
            "success": True,
            "jobId": job_id,
            "progressId": job_id,
            "message": "Mastering started",
        }

    def _job_or_404(job_id: str):
        job = registry.get(job_id)
        if job is None:
            raise HTTPException(status_code=404, detail="job_not_found")
        return job

    @app.get("/api/mastering-progress/{job_id}")
    def mastering_progress(job_id: str):
        return _job_or_404(job_id).to_progress_dict()

    @app.get("/api/mastering-result/{job_id}")
    def mastering_result(job_id: str):
        job = _job_or_404(job_id)
        if job.status is JobStatus.COMPLETE and job.result is not None:
            return job.result.to_dict(OUTPUT_PREFIX)
        return {"status": job.status.value, "message": job.message}

    @app.post("/api/mastering-cancel/{job_id}")
    def mastering_cancel(job_id: str):
        job = registry.cancel(job_id)
        if job is None:
            raise HTTPException(status_code=404, detail="job_not_found")
        if job.is_terminal:
            raise HTTPException(status_code=409, detail=f"job_{job.status.value}")
        return JSONResponse({"status": "cancelling"}, status_code=202)

    @app.get("/api/health")
    def health():
        return {
            "status": "ok",
            "ffmpeg": tool_available("ffmpeg"),
            "ffprobe": tool_available("ffprobe"),
            "voiceTag": resolve_voice_tag(paths.voice_tag_dir) is not None,
            "presets": catalog.names(),
        }

    @app.get("/api/presets")
    def presets():
        return {"default": catalog.default_name, "presets": catalog.describe()}

    return app


app = create_app()
