from __future__ import annotations

import math
import re
from dataclasses import dataclass
from pathlib import Path

from . import ffmpeg
from .errors import AnalysisError
from .ffmpeg import RunControl

DEFAULT_LUFS = -23.0
DEFAULT_PEAK = 0.0

_LUFS_RE = re.compile(r"I:\s+(-?[\d.]+|-inf)\s+LUFS")
_PEAK_RE = re.compile(r"Peak:\s+(-?[\d.]+|-inf)\s+dBFS")


@dataclass(frozen=True)
class AudioAnalysis:
    integrated_lufs: float
    peak: float

    def to_dict(self) -> dict:
        return {"integratedLoudness": self.integrated_lufs, "peak": self.peak}


@dataclass(frozen=True)
class StreamInfo:
    duration: float
    channels: int
    sample_rate: int


def _last_float(pattern: re.Pattern, text: str, default: float) -> float:
    matches = pattern.findall(text or "")
    if not matches:
        return default
    try:
        value = float(matches[-1])
    except ValueError:
        return default
    # silent input reads -inf, which JSON cannot carry
    return value if math.isfinite(value) else default


def parse_loudness_report(text: str) -> AudioAnalysis:
    """Pull the summary values out of ebur128 output.

    ebur128 prints running values first and the summary last, so the final
    match of each pattern wins. Missing values fall back to -23 LUFS / 0 dBFS.
    """
    return AudioAnalysis(
        integrated_lufs=_last_float(_LUFS_RE, text, DEFAULT_LUFS),
        peak=_last_float(_PEAK_RE, text, DEFAULT_PEAK),
    )


def analyze(path: Path, control: RunControl | None = None) -> AudioAnalysis:
    r = ffmpeg.run_cmd([
        "ffmpeg", "-hide_banner", "-nostats", "-i", str(path),
        "-filter_complex", "ebur128=peak=true", "-f", "null", "-"
    ], stage="analyze", control=control, error_cls=AnalysisError)
    return parse_loudness_report((r.stderr or "") + "\n" + (r.stdout or ""))


def probe(path: Path, control: RunControl | None = None) -> StreamInfo:
    data = ffmpeg.ffprobe_json(path, control=control, error_cls=AnalysisError)
    streams = [s for s in data.get("streams") or [] if s.get("codec_type") == "audio"]
    audio = streams[0] if streams else {}
    fmt = data.get("format") or {}
    raw_duration = fmt.get("duration") or audio.get("duration")
    try:
        duration = float(raw_duration)
    except (TypeError, ValueError):
        raise AnalysisError(f"no duration for {Path(path).name}")
    return StreamInfo(
        duration=duration,
        channels=int(audio.get("channels") or 2),
        sample_rate=int(audio.get("sample_rate") or 48000),
    )
