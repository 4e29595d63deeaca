from __future__ import annotations

from pathlib import Path

from mutagen import MutagenError
from mutagen.id3 import COMM, ID3, ID3NoHeaderError, TIT2

from . import ffmpeg
from .errors import EncodeError
from .ffmpeg import RunControl
from .logging_util import log_error


def encode_mp3(master: Path, out: Path, bitrate_kbps: int = 320, control: RunControl | None = None) -> None:
    ffmpeg.run_cmd([
        "ffmpeg", "-y", "-hide_banner", "-loglevel", "error",
        "-i", str(master),
        "-c:a", "libmp3lame",
        "-b:a", f"{int(bitrate_kbps)}k",
        str(out)
    ], stage="mp3", control=control, error_cls=EncodeError)


def tag_mp3(path: Path, title: str, comment: str | None = None) -> bool:
    """Write title/comment ID3 frames. Failure is logged; the mp3 stays usable untagged."""
    try:
        try:
            id3 = ID3(path)
        except ID3NoHeaderError:
            id3 = ID3()
        id3.setall("TIT2", [TIT2(encoding=3, text=[title])])
        if comment:
            id3.setall("COMM", [COMM(encoding=3, lang="eng", desc="", text=[comment])])
        id3.save(path)
    except (MutagenError, OSError) as exc:
        log_error("mp3", "tagging failed", path=str(path), error=str(exc))
        return False
    return True
