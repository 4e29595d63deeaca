from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Mapping, Union

from .stages import Stage, compressor, highpass, highshelf, lowshelf, peak

logger = logging.getLogger("quickmaster.presets")

DEFAULT_PRESET = "kidandali"


@dataclass(frozen=True)
class ShelfBand:
    freq: float
    gain: float


@dataclass(frozen=True)
class PeakBand:
    freq: float
    gain: float
    q: float = 1.0


@dataclass(frozen=True)
class CompressorSettings:
    threshold_db: float
    ratio: float
    attack_ms: float
    release_ms: float


@dataclass(frozen=True)
class LimiterSettings:
    ceiling_db: float
    attack_ms: float
    release_ms: float


@dataclass(frozen=True)
class ParametricPreset:
    name: str
    label: str
    target_lufs: float
    true_peak: float
    bass: ShelfBand
    mid: PeakBand
    high: ShelfBand
    compressor: CompressorSettings
    limiter: LimiterSettings
    kind = "parametric"


@dataclass(frozen=True)
class FixedChainPreset:
    """Declared stages are used verbatim; the chain builder appends gain and limiter."""
    name: str
    label: str
    target_lufs: float
    true_peak: float
    stages: tuple[Stage, ...]
    limiter: LimiterSettings
    kind = "fixed"


Preset = Union[ParametricPreset, FixedChainPreset]


def preset_from_dict(name: str, data: dict) -> ParametricPreset:
    """Parse the JSON preset schema (same layout as the built-in table below)."""
    def section(key: str) -> dict:
        raw = data.get(key) or {}
        if not isinstance(raw, dict):
            raise ValueError(f"{key} must be an object")
        return raw

    bass, mid, high = section("bass"), section("mid"), section("high")
    comp = section("compressor")
    lim = section("limiter")
    return ParametricPreset(
        name=name,
        label=str(data.get("name") or name),
        target_lufs=float(data.get("lufs", -14.0)),
        true_peak=float(data.get("tp", -1.0)),
        bass=ShelfBand(float(bass.get("freq", 80)), float(bass.get("gain", 0.0))),
        mid=PeakBand(float(mid.get("freq", 3000)), float(mid.get("gain", 0.0)), float(mid.get("q", 1.0))),
        high=ShelfBand(float(high.get("freq", 10000)), float(high.get("gain", 0.0))),
        compressor=CompressorSettings(
            threshold_db=float(comp.get("threshold", -20)),
            ratio=float(comp.get("ratio", 2.0)),
            attack_ms=float(comp.get("attack", 30)),
            release_ms=float(comp.get("release", 250)),
        ),
        limiter=LimiterSettings(
            ceiling_db=float(lim.get("ceiling", -1.0)),
            attack_ms=float(lim.get("attack", 5)),
            release_ms=float(lim.get("release", 50)),
        ),
    )


def _p(label, lufs, tp, bass, mid, high, comp, lim) -> dict:
    return {
        "name": label,
        "lufs": lufs,
        "tp": tp,
        "bass": {"freq": bass[0], "gain": bass[1]},
        "mid": {"freq": mid[0], "gain": mid[1], "q": mid[2]},
        "high": {"freq": high[0], "gain": high[1]},
        "compressor": dict(zip(("threshold", "ratio", "attack", "release"), comp)),
        "limiter": dict(zip(("ceiling", "attack", "release"), lim)),
    }


# name: label, LUFS, dBTP, bass(f,g), mid(f,g,q), high(f,g), comp(thr,ratio,att,rel), limiter(ceil,att,rel)
PARAMETRIC_TABLE = {
    "kidandali": _p("Kidandali", -9, -1.0, (80, 1.5), (3000, 0.5, 1.5), (10000, 0.5), (-12, 2, 25, 100), (-0.5, 5, 50)),
    "kidandali_banger": _p("Kidandali Banger", -9, -0.5, (70, 2), (3500, 0.8, 1.3), (10000, 0.3), (-10, 2.5, 20, 80), (-0.3, 3, 30)),
    "kidandali_2": _p("Kidandali 2", -8.5, -0.5, (75, 1.8), (2500, 0.3, 1.2), (11000, 1.2), (-11, 2.2, 22, 90), (-0.4, 4, 40)),
    "afrobeat": _p("Afrobeat", -10, -1.0, (100, 1.5), (2500, 1, 1.2), (12000, 1), (-14, 2, 30, 120), (-0.5, 5, 50)),
    "amapiano": _p("Amapiano", -8, -0.5, (60, 2.5), (800, -1, 2), (8000, 1.5), (-8, 3, 15, 60), (-0.3, 3, 25)),
    "hiphop": _p("Hip-Hop", -9, -0.5, (60, 2), (3000, 0.5, 1.5), (10000, 1), (-10, 2.5, 20, 80), (-0.3, 3, 30)),
    "pop": _p("Pop", -11, -1.0, (100, 1), (3000, 1, 1.2), (12000, 1.5), (-16, 1.8, 30, 150), (-0.5, 5, 60)),
    "edm": _p("EDM", -7, -0.3, (50, 2.5), (4000, 1, 1), (10000, 2), (-6, 4, 10, 40), (-0.2, 2, 20)),
    "transparent": _p("Transparent", -14, -1.0, (80, 0), (3000, 0, 1), (10000, 0), (-20, 1.5, 50, 200), (-1.0, 10, 100)),
    "reggaeton": _p("Reggaeton", -8, -0.5, (60, 2.5), (2000, 0.5, 1.2), (10000, 1.5), (-8, 3, 15, 60), (-0.3, 3, 25)),
    "dancehall": _p("Dancehall", -8.5, -0.5, (70, 2.2), (2500, 0.8, 1.3), (12000, 1.2), (-9, 2.8, 18, 70), (-0.4, 4, 30)),
    "soca": _p("Soca", -9, -0.5, (80, 2), (3000, 1, 1.2), (10000, 1.5), (-10, 2.5, 20, 80), (-0.3, 3, 30)),
    "kpop": _p("K-Pop", -10, -1.0, (100, 1.5), (3000, 1.2, 1.2), (12000, 2), (-14, 2, 25, 100), (-0.5, 5, 50)),
    "bollywood": _p("Bollywood", -10, -1.0, (90, 1.8), (2800, 1.5, 1.3), (11000, 1.8), (-12, 2.2, 22, 90), (-0.5, 5, 50)),
    "bhangra": _p("Bhangra", -9, -0.5, (70, 2.2), (3200, 1, 1.2), (10000, 1.5), (-10, 2.5, 20, 80), (-0.3, 3, 30)),
    "soukous": _p("Soukous", -9.5, -0.5, (75, 2), (2500, 1.2, 1.3), (10000, 1.3), (-11, 2.3, 22, 85), (-0.4, 4, 35)),
    "highlife": _p("Highlife", -10, -1.0, (85, 1.5), (3000, 1, 1.2), (12000, 1.5), (-13, 2, 28, 110), (-0.5, 5, 50)),
    "samba": _p("Samba", -10, -1.0, (80, 1.8), (3000, 1.2, 1.2), (11000, 1.5), (-12, 2.2, 25, 100), (-0.5, 5, 50)),
    "baile_funk": _p("Baile Funk", -8, -0.5, (60, 2.8), (2000, 0.5, 1.2), (10000, 1.2), (-7, 3.2, 12, 55), (-0.3, 3, 25)),
    "arabic_pop": _p("Arabic Pop", -10, -1.0, (90, 1.6), (2800, 1.3, 1.3), (12000, 1.8), (-13, 2.1, 26, 105), (-0.5, 5, 50)),
    "eurodance": _p("Eurodance", -8.5, -0.5, (70, 2.2), (3000, 1, 1.2), (10000, 1.8), (-9, 2.6, 18, 75), (-0.4, 4, 30)),
    "dembow": _p("Dembow", -8, -0.5, (65, 2.6), (2200, 0.6, 1.2), (10000, 1.3), (-8, 3, 15, 60), (-0.3, 3, 25)),
    "afrohouse": _p("Afrohouse", -9, -0.5, (75, 2.3), (3000, 0.8, 1.2), (10000, 1.4), (-10, 2.5, 20, 80), (-0.3, 3, 30)),
}


def _restore_stages() -> tuple[Stage, ...]:
    return (
        highpass("low_cut", 30, poles=2),
        peak("cut_97", 97, -2.0, 1.0, label="Applying 97 Hz cut..."),
        peak("cut_562", 562, -1.5, 1.2, label="Applying 562 Hz cut..."),
        peak("cut_3k9", 3900, -1.5, 1.5, label="Applying 3.9 kHz cut..."),
        peak("cut_9k4", 9400, -1.0, 1.2, label="Applying 9.4 kHz cut..."),
        compressor("glue", -12, 1.5, 30, 150, label="Applying glue compression..."),
    )


def _afro_dance_stages(vocal_cut: bool) -> tuple[Stage, ...]:
    stages = [
        highpass("low_cut", 25, poles=2),
        peak("boxiness", 300, -1.5, 1.2),
        peak("harshness", 3850, -1.0, 1.5),
        highshelf("air", 11000, -0.5),
        peak("low_mid", 230, -1.5, 1.0),
    ]
    if vocal_cut:
        stages += [
            peak("vocal_2k", 2000, -1.0, 1.4, label="Applying 2.0 kHz vocal cut..."),
            compressor("vocal_2k_dyn", -8, 2, 8, 100),
        ]
    stages += [
        peak("high_mid", 4250, -1.5, 1.5),
        compressor("transient", -10, 1.8, 10, 80),
        lowshelf("low_end", 90, -0.3),
        compressor("low_end_comp", -6, 1.5, 30, 120),
        compressor("bus_glue", -12, 1.4, 30, 150, label="Applying bus compression..."),
    ]
    return tuple(stages)


_FIXED_LIMITER = LimiterSettings(ceiling_db=-1.0, attack_ms=5, release_ms=50)

FIXED_CHAIN_PRESETS = (
    FixedChainPreset("nico_pan_ugandan_clean_restore", "Nico Pan Ugandan Clean Restore", -9, -1.0,
                     _restore_stages(), _FIXED_LIMITER),
    FixedChainPreset("nico_pan_afro_dance", "NICO PAN AFRO DANCE", -9, -1.0,
                     _afro_dance_stages(vocal_cut=False), _FIXED_LIMITER),
    FixedChainPreset("nico_pan_afro_dance_2", "NICO PAN AFRO DANCE 2", -9, -1.0,
                     _afro_dance_stages(vocal_cut=True), _FIXED_LIMITER),
)


class PresetCatalog:
    """Read-only name -> preset table. Unknown names fall back to the default preset."""

    def __init__(self, presets: Mapping[str, Preset], default: str = DEFAULT_PRESET):
        if default not in presets:
            raise ValueError(f"default preset missing: {default}")
        self._presets = MappingProxyType(dict(presets))
        self.default_name = default

    @property
    def default(self) -> Preset:
        return self._presets[self.default_name]

    def lookup(self, name: str | None) -> Preset:
        key = (name or "").strip().lower()
        preset = self._presets.get(key)
        if preset is None:
            if key:
                logger.info("[presets] unknown preset %r, using %s", name, self.default_name)
            return self.default
        return preset

    def names(self) -> list[str]:
        return list(self._presets.keys())

    def __contains__(self, name: str) -> bool:
        return (name or "").strip().lower() in self._presets

    def __len__(self) -> int:
        return len(self._presets)

    def describe(self) -> list[dict]:
        return [
            {
                "name": p.name,
                "label": p.label,
                "kind": p.kind,
                "lufs": p.target_lufs,
                "tp": p.true_peak,
                "default": p.name == self.default_name,
            }
            for p in self._presets.values()
        ]


def _load_user_presets(preset_dir: Path) -> dict[str, ParametricPreset]:
    found: dict[str, ParametricPreset] = {}
    if not preset_dir or not preset_dir.exists():
        return found
    for fp in sorted(preset_dir.glob("*.json")):
        name = fp.stem.strip().lower()
        try:
            data = json.loads(fp.read_text(encoding="utf-8"))
            if not isinstance(data, dict):
                raise ValueError("preset must be a JSON object")
            found[name] = preset_from_dict(name, data)
        except (OSError, ValueError, TypeError) as exc:
            logger.warning("[presets] skipping %s: %s", fp.name, exc)
    return found


def builtin_presets() -> dict[str, Preset]:
    presets: dict[str, Preset] = {name: preset_from_dict(name, data) for name, data in PARAMETRIC_TABLE.items()}
    for fixed in FIXED_CHAIN_PRESETS:
        presets[fixed.name] = fixed
    return presets


def load_catalog(preset_dir: Path | None = None) -> PresetCatalog:
    presets = builtin_presets()
    if preset_dir is not None:
        for name, preset in _load_user_presets(preset_dir).items():
            if name in presets:
                logger.warning("[presets] user preset %s shadows a built-in; ignored", name)
                continue
            presets[name] = preset
    logger.info("[presets] loaded %d preset(s)", len(presets))
    return PresetCatalog(presets)
