import os
import time

from quickmaster.storage import ensure_dirs, resolve_paths, sweep_stale_files


def test_resolve_paths_layout(tmp_path, monkeypatch):
    for var in ("UPLOAD_DIR", "OUTPUT_DIR", "TMP_DIR", "VOICE_TAG_DIR", "PRESET_DIR"):
        monkeypatch.delenv(var, raising=False)
    paths = resolve_paths(tmp_path)
    assert paths.upload_dir == tmp_path / "mastering" / "uploads"
    assert paths.output_dir == tmp_path / "mastering" / "output"
    assert paths.voice_tag_dir == tmp_path / "voice-tags"


def test_env_overrides_single_dir(tmp_path, monkeypatch):
    monkeypatch.setenv("OUTPUT_DIR", str(tmp_path / "elsewhere"))
    paths = ensure_dirs(resolve_paths(tmp_path))
    assert paths.output_dir == tmp_path / "elsewhere"
    assert paths.output_dir.is_dir()
    assert not (paths.output_dir / ".quickmaster_write_test").exists()


def test_sweep_removes_only_stale_files(tmp_path):
    old = tmp_path / "old.wav"
    new = tmp_path / "new.wav"
    old.write_bytes(b"x")
    new.write_bytes(b"x")
    (tmp_path / "subdir").mkdir()
    past = time.time() - 3 * 3600
    os.utime(old, (past, past))

    removed = sweep_stale_files([tmp_path, tmp_path / "missing"], max_age_sec=7200)
    assert removed == 1
    assert not old.exists()
    assert new.exists()
    assert (tmp_path / "subdir").is_dir()
