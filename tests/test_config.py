"""Tests for YAML + environment configuration loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from mediaingest.config import IngestConfig, default_config, load_config


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in ("MI_SCRATCH_DIR", "MI_DISK_VOLUME", "MI_LOCK_TTL_SECONDS", "MI_MONITOR_INTERVAL_MINUTES"):
        monkeypatch.delenv(name, raising=False)


class TestLoadConfig:
    """Tests for load_config."""

    def test_defaults(self):
        """Without a file the documented defaults apply."""
        cfg = load_config()
        assert cfg.lock.ttl_seconds == 1800
        assert cfg.disk.warning_percent == 80
        assert cfg.disk.emergency_free_mb == 100
        assert cfg.probe.large_mb == 50
        assert cfg.probe.heavyweight_mb == 100
        assert cfg.stream.max_redirects == 10
        assert cfg.stream.min_file_bytes == 1024 * 1024
        assert cfg.heavyweight.ffmpeg_timeout_seconds == 180

    def test_yaml_deep_merge(self, tmp_path: Path):
        """A partial YAML file overrides only the keys it names."""
        path = tmp_path / "ingest.yaml"
        path.write_text(
            "scratch_dir: {}\n"
            "disk:\n"
            "  critical_percent: 85\n"
            "probe:\n"
            "  large_mb: 25\n".format(tmp_path / "scratch"),
            encoding="utf-8",
        )
        cfg = load_config(path)
        assert cfg.scratch_dir == tmp_path / "scratch"
        assert cfg.disk.critical_percent == 85
        assert cfg.disk.warning_percent == 80
        assert cfg.probe.large_mb == 25
        assert cfg.probe.heavyweight_mb == 100

    def test_empty_file(self, tmp_path: Path):
        """An empty YAML document means defaults."""
        path = tmp_path / "empty.yaml"
        path.write_text("", encoding="utf-8")
        assert load_config(path).lock.ttl_seconds == 1800

    def test_missing_file(self, tmp_path: Path):
        """A missing config path is an error."""
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.yaml")

    def test_non_mapping(self, tmp_path: Path):
        """A YAML list is rejected."""
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ValueError, match="mapping"):
            load_config(path)

    def test_env_overrides(self, tmp_path: Path, monkeypatch):
        """MI_* variables win over file and defaults."""
        monkeypatch.setenv("MI_SCRATCH_DIR", str(tmp_path / "env-scratch"))
        monkeypatch.setenv("MI_DISK_VOLUME", str(tmp_path))
        monkeypatch.setenv("MI_LOCK_TTL_SECONDS", "90")
        monkeypatch.setenv("MI_MONITOR_INTERVAL_MINUTES", "2.5")
        cfg = load_config()
        assert cfg.scratch_dir == tmp_path / "env-scratch"
        assert cfg.disk_volume == tmp_path
        assert cfg.lock.ttl_seconds == 90
        assert cfg.disk.monitor_interval_minutes == 2.5

    def test_bad_env_number(self, monkeypatch):
        """Non-numeric env values are reported."""
        monkeypatch.setenv("MI_LOCK_TTL_SECONDS", "soon")
        with pytest.raises(ValueError, match="MI_LOCK_TTL_SECONDS"):
            load_config()

    def test_unknown_keys_ignored(self):
        """Unknown keys in a section do not break construction."""
        data = default_config()
        data["disk"]["not_a_setting"] = 1
        cfg = IngestConfig.from_dict(data)
        assert cfg.disk.critical_percent == 90

    def test_volume_defaults_to_scratch(self, tmp_path: Path):
        """Without an explicit volume the scratch dir's volume is sampled."""
        cfg = IngestConfig(scratch_dir=tmp_path)
        assert cfg.disk_volume == tmp_path
        assert cfg.to_dict()["scratch_dir"] == str(tmp_path)
