from __future__ import annotations

from .analyzer import AudioAnalysis
from .presets import FixedChainPreset, ParametricPreset, Preset
from .stages import Stage, chain_to_filtergraph, compressor, highshelf, limiter, lowshelf, peak, volume

GAIN_MIN = -6.0
GAIN_MAX = 12.0
# compressor is only inserted for inputs louder than this
COMPRESS_ABOVE_LUFS = -20.0
GAIN_EPSILON_DB = 0.5

__all__ = ["GAIN_MIN", "GAIN_MAX", "clamp_gain", "build_chain", "chain_to_filtergraph"]


def clamp_gain(target_lufs: float, measured_lufs: float) -> float:
    return max(GAIN_MIN, min(GAIN_MAX, float(target_lufs) - float(measured_lufs)))


def _parametric_stages(preset: ParametricPreset, analysis: AudioAnalysis) -> list[Stage]:
    stages: list[Stage] = []
    if preset.bass.gain != 0:
        stages.append(lowshelf("bass", preset.bass.freq, preset.bass.gain, label="Applying bass EQ..."))
    if preset.mid.gain != 0:
        stages.append(peak("mid", preset.mid.freq, preset.mid.gain, preset.mid.q, label="Applying mid EQ..."))
    if preset.high.gain != 0:
        stages.append(highshelf("high", preset.high.freq, preset.high.gain, label="Applying high EQ..."))
    if analysis.integrated_lufs > COMPRESS_ABOVE_LUFS:
        c = preset.compressor
        stages.append(compressor("compressor", c.threshold_db, c.ratio, c.attack_ms, c.release_ms))
    return stages


def build_chain(preset: Preset, analysis: AudioAnalysis) -> tuple[tuple[Stage, ...], float]:
    """Ordered stages for one job plus the applied make-up gain.

    Parametric presets contribute bass/mid/high bands and a level-gated
    compressor; fixed-chain presets contribute their declared stages as-is.
    Both end with the conditional gain stage and the limiter.
    """
    gain_db = clamp_gain(preset.target_lufs, analysis.integrated_lufs)

    if isinstance(preset, FixedChainPreset):
        stages = list(preset.stages)
    elif isinstance(preset, ParametricPreset):
        stages = _parametric_stages(preset, analysis)
    else:
        raise TypeError(f"unsupported preset type: {type(preset).__name__}")

    if abs(gain_db) > GAIN_EPSILON_DB:
        stages.append(volume(gain_db))
    lim = preset.limiter
    stages.append(limiter(lim.ceiling_db, lim.attack_ms, lim.release_ms))
    return tuple(stages), gain_db
