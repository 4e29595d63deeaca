from pathlib import Path

import pytest

from quickmaster.analyzer import AudioAnalysis
from quickmaster.finetune import fine_tune
from quickmaster.presets import load_catalog

KIDANDALI = load_catalog().lookup("kidandali")


class Recorder:
    def __init__(self, second=None):
        self.normalized = []
        self.analyzed = []
        self.second = second

    def normalize(self, infile, outfile, target, true_peak, lra, control=None):
        assert Path(infile).exists()
        self.normalized.append((Path(infile).name, Path(outfile).name, target, true_peak, lra))
        Path(outfile).write_bytes(b"normalized")

    def analyze(self, path, control=None):
        self.analyzed.append(Path(path).name)
        return self.second


def test_within_tolerance_skips_rerender(tmp_path):
    master = tmp_path / "song_master.wav"
    master.write_bytes(b"first")
    rec = Recorder()
    first = AudioAnalysis(-10.5, -1.0)
    outcome = fine_tune(master, KIDANDALI, first, analyze=rec.analyze, normalize=rec.normalize)
    assert outcome.analysis is first
    assert outcome.fine_tuned is False
    assert outcome.within_tolerance is True
    assert rec.normalized == []
    assert master.read_bytes() == b"first"


def test_off_target_runs_one_pass_and_reports_second_reading(tmp_path):
    master = tmp_path / "song_master.wav"
    master.write_bytes(b"first")
    second = AudioAnalysis(-9.4, -1.1)
    rec = Recorder(second)
    outcome = fine_tune(master, KIDANDALI, AudioAnalysis(-13.0, -2.0),
                        analyze=rec.analyze, normalize=rec.normalize)
    assert rec.normalized == [("song_master_temp.wav", "song_master.wav", -9, -1.0, 20)]
    assert rec.analyzed == ["song_master.wav"]
    assert outcome.analysis == second
    assert outcome.fine_tuned is True
    assert outcome.within_tolerance is True
    assert master.read_bytes() == b"normalized"
    assert not (tmp_path / "song_master_temp.wav").exists()


def test_still_off_target_completes_flagged(tmp_path):
    master = tmp_path / "m.wav"
    master.write_bytes(b"first")
    rec = Recorder(AudioAnalysis(-12.5, -1.0))
    outcome = fine_tune(master, KIDANDALI, AudioAnalysis(-15.0, -2.0),
                        analyze=rec.analyze, normalize=rec.normalize)
    assert len(rec.normalized) == 1
    assert outcome.within_tolerance is False
    assert outcome.analysis.integrated_lufs == -12.5


def test_temp_file_removed_when_normalize_fails(tmp_path):
    master = tmp_path / "m.wav"
    master.write_bytes(b"first")

    def boom(*args, **kwargs):
        raise RuntimeError("loudnorm failed")

    with pytest.raises(RuntimeError):
        fine_tune(master, KIDANDALI, AudioAnalysis(-20.0, -2.0), analyze=lambda p, control=None: None,
                  normalize=boom)
    assert not (tmp_path / "m_temp.wav").exists()
