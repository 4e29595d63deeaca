from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from .analyzer import AudioAnalysis
from .ffmpeg import RunControl
from .logging_util import log_summary
from .presets import Preset

FINE_TUNE_TOLERANCE = 2.0
FINE_TUNE_LRA = 20


@dataclass(frozen=True)
class FineTuneOutcome:
    analysis: AudioAnalysis
    fine_tuned: bool
    within_tolerance: bool


def within_tolerance(analysis: AudioAnalysis, target: float) -> bool:
    return abs(analysis.integrated_lufs - target) <= FINE_TUNE_TOLERANCE


def fine_tune(master: Path, preset: Preset, first: AudioAnalysis, *,
              analyze: Callable[..., AudioAnalysis],
              normalize: Callable[..., None],
              control: RunControl | None = None) -> FineTuneOutcome:
    """One corrective loudnorm pass when the first render missed the target.

    The outcome always carries the analysis of the file that ends up on disk.
    """
    target = preset.target_lufs
    if within_tolerance(first, target):
        return FineTuneOutcome(first, fine_tuned=False, within_tolerance=True)

    log_summary("fine-tune", "off target", measured=first.integrated_lufs, target=target)
    master = Path(master)
    temp = master.with_name(f"{master.stem}_temp{master.suffix}")
    os.replace(master, temp)
    try:
        normalize(temp, master, target, preset.true_peak, FINE_TUNE_LRA, control=control)
    finally:
        temp.unlink(missing_ok=True)

    second = analyze(master, control=control)
    ok = within_tolerance(second, target)
    if not ok:
        log_summary("fine-tune", "still off target", measured=second.integrated_lufs, target=target)
    return FineTuneOutcome(second, fine_tuned=True, within_tolerance=ok)
