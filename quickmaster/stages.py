"""DSP stage descriptors and their mapping onto ffmpeg filter arguments."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Union

ParamValue = Union[float, int, str]


def fmt_num(value: float) -> str:
    """Fixed-point, locale independent, no exponent: 11.0 -> '11', -0.50 -> '-0.5'."""
    text = f"{float(value):.6f}".rstrip("0").rstrip(".")
    return "0" if text in ("", "-0") else text


@dataclass(frozen=True)
class Stage:
    name: str
    filter: str
    params: tuple[tuple[str, ParamValue], ...]
    db_params: frozenset[str] = field(default_factory=frozenset)
    group: str = "eq"
    label: str = ""

    def param(self, key: str) -> ParamValue:
        for k, v in self.params:
            if k == key:
                return v
        raise KeyError(key)

    def args(self) -> list[str]:
        out = []
        for key, val in self.params:
            if isinstance(val, str):
                text = val
            else:
                text = fmt_num(val)
                if key in self.db_params:
                    text += "dB"
            out.append(f"{key}={text}")
        return out

    def to_filter(self) -> str:
        args = self.args()
        return f"{self.filter}={':'.join(args)}" if args else self.filter


def chain_to_filtergraph(chain) -> str:
    return ",".join(stage.to_filter() for stage in chain)


# --- stage factories ---
def lowshelf(name: str, freq: float, gain: float, label: str = "") -> Stage:
    return Stage(name, "lowshelf", (("f", freq), ("g", gain)), label=label or f"Applying {fmt_num(freq)} Hz low shelf...")


def highshelf(name: str, freq: float, gain: float, label: str = "") -> Stage:
    return Stage(name, "highshelf", (("f", freq), ("g", gain)), label=label or f"Applying {fmt_num(freq)} Hz high shelf...")


def peak(name: str, freq: float, gain: float, q: float = 1.0, label: str = "") -> Stage:
    return Stage(
        name,
        "equalizer",
        (("f", freq), ("g", gain), ("t", "q"), ("w", q)),
        label=label or f"Applying {fmt_num(freq)} Hz EQ...",
    )


def highpass(name: str, freq: float, poles: int = 2, label: str = "") -> Stage:
    return Stage(name, "highpass", (("f", freq), ("p", poles)), label=label or "Applying low-cut filter...")


def compressor(name: str, threshold_db: float, ratio: float, attack_ms: float, release_ms: float,
               label: str = "") -> Stage:
    return Stage(
        name,
        "acompressor",
        (("threshold", threshold_db), ("ratio", ratio), ("attack", attack_ms), ("release", release_ms)),
        db_params=frozenset({"threshold"}),
        group="compressor",
        label=label or "Applying compressor...",
    )


def volume(gain_db: float) -> Stage:
    return Stage("gain", "volume", (("volume", gain_db),), db_params=frozenset({"volume"}),
                 group="gain", label="Adjusting gain...")


def limiter(ceiling_db: float, attack_ms: float, release_ms: float) -> Stage:
    return Stage(
        "limiter",
        "alimiter",
        (("limit", ceiling_db), ("attack", attack_ms), ("release", release_ms)),
        db_params=frozenset({"limit"}),
        group="limiter",
        label="Applying limiter...",
    )


def loudnorm(target_lufs: float, true_peak: float, lra: float) -> Stage:
    return Stage(
        "loudnorm",
        "loudnorm",
        (("I", target_lufs), ("TP", true_peak), ("LRA", lra), ("linear", "true")),
        group="fine-tune",
        label="Fine-tuning with loudnorm...",
    )


def attenuate(gain_db: float) -> Stage:
    return Stage("attenuate", "volume", (("volume", gain_db),), db_params=frozenset({"volume"}),
                 group="voice-tag", label="Levelling voice tag...")
