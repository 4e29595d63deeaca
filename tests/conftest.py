"""Pytest configuration and shared fixtures."""

import os
import subprocess
import tempfile
from pathlib import Path

import pytest

# server.py builds its app at import; keep it off /data
os.environ.setdefault("DATA_DIR", tempfile.mkdtemp(prefix="quickmaster-tests-"))
os.environ.pop("VOICE_TAG_PATH", None)

from quickmaster import ffmpeg  # noqa: E402
from quickmaster.analyzer import AudioAnalysis  # noqa: E402
from quickmaster.errors import MasteringError  # noqa: E402
from quickmaster.pipeline import Adapters  # noqa: E402
from quickmaster.storage import ensure_dirs, resolve_paths  # noqa: E402


class FakeRunner:
    """Stands in for ffmpeg.run_cmd.

    ``handler(cmd)`` returns (returncode, stdout, stderr). Successful ffmpeg
    calls touch their output path so downstream steps find a file.
    """

    def __init__(self):
        self.calls = []
        self.handler = lambda cmd: (0, "", "")

    def __call__(self, cmd, *, stage="ffmpeg", control=None, error_cls=MasteringError, check=True):
        if control is not None:
            control.check()
        self.calls.append(list(cmd))
        code, out, err = self.handler(cmd)
        if code != 0 and check:
            raise error_cls(f"{stage} failed: {err or 'boom'}")
        if code == 0 and cmd[0] == "ffmpeg" and cmd[-1] != "-":
            Path(cmd[-1]).write_bytes(b"RIFF" + " ".join(cmd).encode())
        return subprocess.CompletedProcess(cmd, code, out, err)

    def ffmpeg_calls(self):
        return [c for c in self.calls if c[0] == "ffmpeg"]


@pytest.fixture
def fake_runner(monkeypatch):
    runner = FakeRunner()
    monkeypatch.setattr(ffmpeg, "run_cmd", runner)
    return runner


@pytest.fixture
def paths(tmp_path, monkeypatch):
    for var in ("UPLOAD_DIR", "OUTPUT_DIR", "TMP_DIR", "VOICE_TAG_DIR", "PRESET_DIR", "VOICE_TAG_PATH"):
        monkeypatch.delenv(var, raising=False)
    return ensure_dirs(resolve_paths(tmp_path / "data"))


class StubAudio:
    """Adapter stubs that write placeholder files and replay scripted loudness readings."""

    def __init__(self, readings=None, voice_tag=None):
        self.readings = list(readings or [AudioAnalysis(-14.0, -3.0), AudioAnalysis(-9.1, -1.0)])
        self.voice_tag = voice_tag
        self.calls = []
        self.fail_on = {}

    def _step(self, name, control):
        if control is not None:
            control.check()
        self.calls.append(name)
        exc = self.fail_on.get(name)
        if exc is not None:
            raise exc

    def analyze(self, path, control=None):
        self._step("analyze", control)
        if len(self.readings) > 1:
            return self.readings.pop(0)
        return self.readings[0]

    def render(self, infile, chain, outfile, control=None):
        self._step("render", control)
        self.chain = chain
        Path(outfile).write_bytes(b"master")

    def normalize(self, infile, outfile, target, true_peak, lra=20, control=None):
        self._step("normalize", control)
        Path(outfile).write_bytes(b"normalized")

    def resolve_voice_tag(self, voice_tag_dir, override=None):
        return self.voice_tag

    def splice(self, master, tag, work_dir, job_id, control=None):
        self._step("splice", control)
        return True

    def encode_mp3(self, master, out, bitrate_kbps=320, control=None):
        self._step("encode", control)
        Path(out).write_bytes(b"ID3")

    def tag_mp3(self, path, title, comment=None):
        self.calls.append("tag")
        return True

    def adapters(self) -> Adapters:
        return Adapters(
            analyze=self.analyze,
            render=self.render,
            normalize=self.normalize,
            resolve_voice_tag=self.resolve_voice_tag,
            splice=self.splice,
            encode_mp3=self.encode_mp3,
            tag_mp3=self.tag_mp3,
        )


@pytest.fixture
def stub_audio():
    return StubAudio()
