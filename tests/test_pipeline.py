import time

import pytest
from conftest import StubAudio

from quickmaster.analyzer import AudioAnalysis
from quickmaster.errors import EncodeError, RenderError
from quickmaster.ffmpeg import RunControl
from quickmaster.jobs import Job, JobRegistry, JobStatus
from quickmaster.pipeline import JobLauncher, MasteringPipeline, MasteringRequest, safe_stem
from quickmaster.presets import load_catalog

CATALOG = load_catalog()


class RecordingRegistry(JobRegistry):
    def __init__(self):
        super().__init__(retention_sec=300)
        self.history = []

    def update(self, job_id, **kw):
        snap = super().update(job_id, **kw)
        if snap is not None:
            self.history.append((snap.progress_percent, snap.stage))
        return snap


@pytest.fixture
def upload(paths):
    fp = paths.upload_dir / "abc123.wav"
    fp.write_bytes(b"RIFFinput")
    return fp


def make_launcher(paths, stub_audio, registry=None):
    if registry is None:
        registry = RecordingRegistry()
    pipeline = MasteringPipeline(registry, CATALOG, paths, adapters=stub_audio.adapters())
    return JobLauncher(pipeline, timeout_sec=60)


def test_completes_without_voice_tag(paths, stub_audio, upload):
    launcher = make_launcher(paths, stub_audio)
    job = launcher.run_now(MasteringRequest(upload, "My Song.wav", "afrobeat"))

    assert job.status is JobStatus.COMPLETE
    assert job.progress_percent == 100
    result = job.result
    assert result.preset == "afrobeat"
    assert result.voice_tag_added is False
    assert result.fine_tuned is False
    assert result.input == AudioAnalysis(-14.0, -3.0)
    assert result.master_path.name == f"My_Song_master_{job.id}.wav"
    assert result.master_path.exists()
    assert result.distribution_path.exists()
    assert "splice" not in stub_audio.calls
    assert list(paths.tmp_dir.iterdir()) == []
    assert not upload.exists()


def test_progress_is_monotonic_and_ordered(paths, stub_audio, upload):
    registry = RecordingRegistry()
    launcher = make_launcher(paths, stub_audio, registry)
    launcher.run_now(MasteringRequest(upload, "a.wav", "kidandali"))

    pcts = [p for p, _ in registry.history]
    assert pcts == sorted(pcts)
    stages = [s for _, s in registry.history]
    for expected in ("init", "analyze", "build", "process", "verify", "mp3", "finalize"):
        assert expected in stages
    # on target and no tag configured: neither optional step reports progress
    assert "fine-tune" not in stages
    assert "voice-tag" not in stages
    assert stages.index("limiter") < stages.index("process")
    spread = [p for p, s in registry.history if s in ("eq", "compressor", "gain", "limiter")]
    assert spread[0] == 25
    assert spread[-1] == 50


def test_optional_steps_report_progress_when_they_run(paths, upload, tmp_path):
    stub = StubAudio(
        readings=[AudioAnalysis(-20.0, -6.0), AudioAnalysis(-13.0, -2.0), AudioAnalysis(-9.2, -1.0)],
        voice_tag=tmp_path / "voice-tag.wav",
    )
    registry = RecordingRegistry()
    make_launcher(paths, stub, registry).run_now(MasteringRequest(upload, "a.wav", "kidandali"))
    assert (75, "fine-tune") in registry.history
    assert (80, "voice-tag") in registry.history
    pcts = [p for p, _ in registry.history]
    assert pcts == sorted(pcts)


def test_unknown_preset_uses_default(paths, stub_audio, upload):
    job = make_launcher(paths, stub_audio).run_now(MasteringRequest(upload, "a.wav", "nope"))
    assert job.result.preset == "kidandali"


def test_fine_tune_records_second_reading(paths, upload):
    stub = StubAudio(readings=[
        AudioAnalysis(-20.0, -6.0),
        AudioAnalysis(-13.0, -2.0),
        AudioAnalysis(-9.3, -1.0),
    ])
    job = make_launcher(paths, stub).run_now(MasteringRequest(upload, "a.wav", "kidandali"))
    assert stub.calls.count("normalize") == 1
    assert job.result.fine_tuned is True
    assert job.result.output == AudioAnalysis(-9.3, -1.0)
    assert job.result.within_tolerance is True


def test_voice_tag_spliced_when_present(paths, upload, tmp_path):
    stub = StubAudio(voice_tag=tmp_path / "voice-tag.wav")
    job = make_launcher(paths, stub).run_now(MasteringRequest(upload, "a.wav", None))
    assert "splice" in stub.calls
    assert job.result.voice_tag_added is True


def test_render_failure_marks_failed_and_cleans_up(paths, stub_audio, upload):
    stub_audio.fail_on["render"] = RenderError("process failed: Invalid argument")
    job = make_launcher(paths, stub_audio).run_now(MasteringRequest(upload, "a.wav", "pop"))
    assert job.status is JobStatus.FAILED
    assert job.stage == "error"
    assert job.message == "process failed: Invalid argument"
    assert job.result is None
    assert list(paths.output_dir.iterdir()) == []
    assert not upload.exists()


def test_encode_failure_removes_partial_outputs(paths, stub_audio, upload):
    stub_audio.fail_on["encode"] = EncodeError("mp3 failed: Unknown encoder")
    job = make_launcher(paths, stub_audio).run_now(MasteringRequest(upload, "a.wav", "pop"))
    assert job.status is JobStatus.FAILED
    assert list(paths.output_dir.iterdir()) == []


def test_unexpected_error_still_fails_job(paths, stub_audio, upload):
    stub_audio.fail_on["analyze"] = KeyError("surprise")
    job = make_launcher(paths, stub_audio).run_now(MasteringRequest(upload, "a.wav", "pop"))
    assert job.status is JobStatus.FAILED
    assert "internal error" in job.message


def test_cancelled_job_fails(paths, stub_audio, upload):
    launcher = make_launcher(paths, stub_audio)
    job = launcher.create()
    launcher.registry.cancel(job.id)
    launcher.pipeline.run(job.id, MasteringRequest(upload, "a.wav", "pop"))
    final = launcher.registry.get(job.id)
    assert final.status is JobStatus.FAILED
    assert final.message == "cancelled"
    assert stub_audio.calls == []
    assert not upload.exists()


def test_expired_deadline_fails(paths, stub_audio, upload):
    launcher = make_launcher(paths, stub_audio)
    now = [0.0]
    job = Job(id="slow", control=RunControl(timeout_sec=10, clock=lambda: now[0]))
    launcher.registry.put(job)
    now[0] = 11.0
    launcher.pipeline.run(job.id, MasteringRequest(upload, "a.wav", "pop"))
    final = launcher.registry.get(job.id)
    assert final.status is JobStatus.FAILED
    assert final.message == "timed out"


def test_submit_runs_in_background(paths, stub_audio, upload):
    launcher = make_launcher(paths, stub_audio)
    job_id = launcher.submit(MasteringRequest(upload, "a.wav", "edm"), job_id="fixedid")
    assert job_id == "fixedid"
    deadline = time.time() + 5
    while time.time() < deadline:
        job = launcher.registry.get(job_id)
        if job.is_terminal:
            break
        time.sleep(0.01)
    assert job.status is JobStatus.COMPLETE


@pytest.mark.parametrize("name,stem", [
    ("My Song.wav", "My_Song"),
    ("../../etc/passwd", "passwd"),
    ("", "track"),
    ("...mp3", "track"),
])
def test_safe_stem(name, stem):
    assert safe_stem(name) == stem
