import os
import logging
import shutil
import time
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger("quickmaster.storage")

MB = 1024 * 1024

JOB_RETENTION_SEC = int(os.getenv("JOB_RETENTION_SEC", "300"))
JOB_TIMEOUT_SEC = int(os.getenv("JOB_TIMEOUT_SEC", "900"))
MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(200 * MB)))
MP3_BITRATE_KBPS = int(os.getenv("MP3_BITRATE_KBPS", "320"))
FILE_MAX_AGE_SEC = int(os.getenv("FILE_MAX_AGE_SEC", str(2 * 60 * 60)))
SWEEP_INTERVAL_SEC = int(os.getenv("SWEEP_INTERVAL_SEC", str(60 * 60)))


@dataclass(frozen=True)
class Paths:
    data_dir: Path
    upload_dir: Path
    output_dir: Path
    tmp_dir: Path
    voice_tag_dir: Path
    preset_dir: Path

    def all_dirs(self) -> list[Path]:
        return [self.upload_dir, self.output_dir, self.tmp_dir, self.voice_tag_dir, self.preset_dir]


def _can_write(root: Path) -> bool:
    test_dir = root / ".quickmaster_write_test"
    test_file = test_dir / "x"
    try:
        test_dir.mkdir(parents=True, exist_ok=True)
        test_file.write_text("ok", encoding="utf-8")
        return True
    except OSError as exc:
        logger.warning("[storage] write test failed at %s err=%r errno=%s", root, exc, getattr(exc, "errno", None))
        return False
    finally:
        shutil.rmtree(test_dir, ignore_errors=True)


def resolve_paths(data_dir: Path | str | None = None) -> Paths:
    """Build the directory layout from the environment (re-read on every call)."""
    root = Path(data_dir) if data_dir else Path(os.getenv("DATA_DIR", "/data"))
    mastering = root / "mastering"
    return Paths(
        data_dir=root,
        upload_dir=Path(os.getenv("UPLOAD_DIR", str(mastering / "uploads"))),
        output_dir=Path(os.getenv("OUTPUT_DIR", str(mastering / "output"))),
        tmp_dir=Path(os.getenv("TMP_DIR", str(mastering / "tmp"))),
        voice_tag_dir=Path(os.getenv("VOICE_TAG_DIR", str(root / "voice-tags"))),
        preset_dir=Path(os.getenv("PRESET_DIR", str(root / "presets"))),
    )


def ensure_dirs(paths: Paths) -> Paths:
    for p in paths.all_dirs():
        p.mkdir(parents=True, exist_ok=True)
    if not _can_write(paths.output_dir):
        raise RuntimeError(f"OUTPUT_DIR not writable: {paths.output_dir}")
    return paths


def sweep_stale_files(dirs: list[Path], max_age_sec: int, now: float | None = None) -> int:
    """Delete plain files older than max_age_sec; returns the number removed."""
    cutoff = (now if now is not None else time.time()) - max_age_sec
    removed = 0
    for d in dirs:
        if not d.exists():
            continue
        for fp in d.iterdir():
            try:
                if fp.is_file() and fp.stat().st_mtime < cutoff:
                    fp.unlink()
                    removed += 1
            except FileNotFoundError:
                continue
            except OSError as exc:
                logger.warning("[storage] sweep failed for %s: %s", fp, exc)
    if removed:
        logger.info("[storage] swept %d stale file(s)", removed)
    return removed
