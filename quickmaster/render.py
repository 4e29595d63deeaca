from __future__ import annotations

from pathlib import Path
from typing import Sequence

from . import ffmpeg
from .errors import RenderError
from .ffmpeg import RunControl
from .stages import Stage, chain_to_filtergraph, loudnorm

MASTER_CODEC = "pcm_s24le"
MASTER_RATE = "48000"


def _render_graph(infile: Path, graph: str, outfile: Path, control: RunControl | None, stage: str) -> None:
    ffmpeg.run_cmd([
        "ffmpeg", "-hide_banner", "-y", "-i", str(infile),
        "-af", graph,
        "-c:a", MASTER_CODEC, "-ar", MASTER_RATE,
        str(outfile)
    ], stage=stage, control=control, error_cls=RenderError)


def render(infile: Path, chain: Sequence[Stage], outfile: Path, control: RunControl | None = None) -> None:
    if not chain:
        raise RenderError("empty processing chain")
    _render_graph(infile, chain_to_filtergraph(chain), outfile, control, "process")


def render_normalized(infile: Path, outfile: Path, target_lufs: float, true_peak: float,
                      lra: float = 20, control: RunControl | None = None) -> None:
    """Single-pass loudnorm to the target, same output format as render()."""
    graph = loudnorm(target_lufs, true_peak, lra).to_filter()
    _render_graph(infile, graph, outfile, control, "fine-tune")
