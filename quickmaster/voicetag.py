from __future__ import annotations

import os
import tempfile
import warnings
from dataclasses import dataclass
from pathlib import Path

from . import analyzer, ffmpeg
from .errors import JobCancelled, JobTimeout, MasteringError, SpliceWarning
from .ffmpeg import RunControl
from .logging_util import log_error, log_summary
from .render import MASTER_CODEC, MASTER_RATE
from .stages import attenuate, fmt_num

VOICE_TAG_EXTS = (".wav", ".mp3")
VOICE_TAG_GAIN_DB = -3.0
TAIL_SECONDS = 3.0
TAIL_FRACTION = 0.8


def resolve_voice_tag(voice_tag_dir: Path, override: str | Path | None = None) -> Path | None:
    """First existing candidate: explicit override, voice-tag.wav, voice-tag.mp3, then any wav/mp3 by name."""
    if override is None:
        override = os.getenv("VOICE_TAG_PATH") or None
    if override:
        p = Path(override)
        if p.is_file():
            return p
        log_summary("voice-tag", "override missing", path=str(p))

    voice_tag_dir = Path(voice_tag_dir)
    for name in ("voice-tag.wav", "voice-tag.mp3"):
        candidate = voice_tag_dir / name
        if candidate.is_file():
            return candidate
    if not voice_tag_dir.is_dir():
        return None
    for fp in sorted(voice_tag_dir.iterdir(), key=lambda p: p.name):
        if fp.is_file() and fp.suffix.lower() in VOICE_TAG_EXTS:
            return fp
    return None


@dataclass(frozen=True)
class SplicePlan:
    master_duration: float
    tag_duration: float
    insert_point: float
    tail_start: float
    has_tail: bool

    @property
    def final_duration(self) -> float:
        return max(self.master_duration, self.tail_start)


def plan_splice(master_duration: float, tag_duration: float) -> SplicePlan:
    d = float(master_duration)
    insert = max(d - TAIL_SECONDS, d * TAIL_FRACTION)
    tail_start = insert + float(tag_duration)
    return SplicePlan(d, float(tag_duration), insert, tail_start, tail_start < d)


def _concat_line(path: Path) -> str:
    escaped = str(path).replace("'", "'\\''")
    return f"file '{escaped}'\n"


def _wav_out(path: Path) -> list[str]:
    return ["-c:a", MASTER_CODEC, "-ar", MASTER_RATE, str(path)]


def _splice(master: Path, tag: Path, work: Path, control: RunControl | None) -> None:
    master_info = analyzer.probe(master, control=control)
    tag_info = analyzer.probe(tag, control=control)
    plan = plan_splice(master_info.duration, tag_info.duration)
    log_summary("voice-tag", "plan", insert=plan.insert_point, tail_start=plan.tail_start, has_tail=plan.has_tail)

    tag_wav = work / "tag.wav"
    head_wav = work / "head.wav"
    tail_wav = work / "tail.wav"
    ffmpeg.run_cmd([
        "ffmpeg", "-hide_banner", "-y", "-i", str(tag),
        "-af", attenuate(VOICE_TAG_GAIN_DB).to_filter(),
        "-ac", str(master_info.channels),
        *_wav_out(tag_wav)
    ], stage="voice-tag", control=control)
    ffmpeg.run_cmd([
        "ffmpeg", "-hide_banner", "-y", "-i", str(master),
        "-t", fmt_num(plan.insert_point),
        *_wav_out(head_wav)
    ], stage="voice-tag", control=control)
    parts = [head_wav, tag_wav]
    if plan.has_tail:
        ffmpeg.run_cmd([
            "ffmpeg", "-hide_banner", "-y", "-i", str(master),
            "-ss", fmt_num(plan.tail_start),
            *_wav_out(tail_wav)
        ], stage="voice-tag", control=control)
        parts.append(tail_wav)

    concat_list = work / "concat.txt"
    concat_list.write_text("".join(_concat_line(p) for p in parts), encoding="utf-8")
    tagged = work / f"{master.stem}_tagged.wav"
    ffmpeg.run_cmd([
        "ffmpeg", "-hide_banner", "-y", "-f", "concat", "-safe", "0", "-i", str(concat_list),
        *_wav_out(tagged)
    ], stage="voice-tag", control=control)
    os.replace(tagged, master)


def splice_voice_tag(master: Path, tag: Path, work_dir: Path, job_id: str,
                     control: RunControl | None = None) -> bool:
    """Insert the voice tag near the end of the master, in place.

    Returns False and leaves the master as it was on any splice failure.
    Cancellation and timeout still propagate.
    """
    master = Path(master)
    work_dir = Path(work_dir)
    work_dir.mkdir(parents=True, exist_ok=True)
    with tempfile.TemporaryDirectory(prefix=f"splice_{job_id}_", dir=work_dir) as tmp:
        try:
            _splice(master, Path(tag), Path(tmp), control)
        except (JobCancelled, JobTimeout):
            raise
        except (MasteringError, OSError) as exc:
            log_error("voice-tag", "splice failed", job_id=job_id, error=str(exc))
            warnings.warn(f"voice tag skipped: {exc}", SpliceWarning, stacklevel=2)
            return False
    return True
