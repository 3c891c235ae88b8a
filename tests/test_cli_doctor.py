"""Tests for the CLI entry points, doctor checks and logging helpers."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from unittest.mock import patch

from mediaingest.cli import main
from mediaingest.config import IngestConfig
from mediaingest.doctor import run_doctor
from mediaingest import logging_config
from mediaingest.logging_config import get_logger, level_from_env, parse_module_levels, setup_logging


class TestDoctor:
    """Tests for run_doctor."""

    def test_all_present(self, tmp_path: Path):
        """ffmpeg, df and a writable scratch dir make the report ok."""
        with patch("mediaingest.doctor._which", side_effect=lambda cmd: f"/usr/bin/{cmd}"), \
                patch("mediaingest.doctor._version", return_value="x 1.0"):
            rep = run_doctor(IngestConfig(scratch_dir=tmp_path / "scratch"))
        assert rep.ok is True
        assert rep.checks["scratch_dir"]["writable"] is True
        assert (tmp_path / "scratch").is_dir()

    def test_missing_ffmpeg(self, tmp_path: Path):
        """Missing ffmpeg fails the report."""
        with patch("mediaingest.doctor._which", side_effect=lambda cmd: None if cmd == "ffmpeg" else "/bin/df"), \
                patch("mediaingest.doctor._version", return_value="x 1.0"):
            rep = run_doctor(IngestConfig(scratch_dir=tmp_path))
        assert rep.ok is False
        assert rep.checks["ffmpeg"]["found"] is False


class TestCli:
    """Tests for offline CLI commands."""

    def test_locks_prints_keys(self, capsys):
        """locks maps URLs to their lock keys."""
        with patch("mediaingest.cli.setup_logging"):
            main(["locks", "https://drive.google.com/open?id=1AbCdEf", "https://example.com/page"])
        data = json.loads(capsys.readouterr().out)
        assert data["keys"][0]["key"] == "1AbCdEf"
        assert data["keys"][0]["site"] == "google_drive"
        assert data["keys"][1]["key"].startswith("https___example_com_page_")
        assert data["keys"][1]["matcher"] is None

    def test_cleanup_uses_config(self, tmp_path: Path, capsys):
        """cleanup sweeps the configured scratch dir."""
        config = tmp_path / "ingest.yaml"
        config.write_text(f"scratch_dir: {tmp_path / 'scratch'}\n", encoding="utf-8")
        with patch("mediaingest.cli.setup_logging"):
            main(["--config", str(config), "cleanup", "--min-age", "0"])
        data = json.loads(capsys.readouterr().out)
        assert data == {"cleaned": True, "files_removed": 0, "space_freed_mb": 0.0}


class TestLoggingHelpers:
    """Tests for logging configuration helpers."""

    def test_parse_module_levels(self):
        """Short names are prefixed and bad levels ignored."""
        levels = parse_module_levels("ingest.stream=DEBUG; mediaingest.ingest.disk:warning, bad=NOPE, junk")
        assert levels == {
            "mediaingest.ingest.stream": logging.DEBUG,
            "mediaingest.ingest.disk": logging.WARNING,
        }

    def test_level_from_env(self, monkeypatch):
        """MI_LOG_LEVEL is honored with a fallback for junk."""
        monkeypatch.setenv("MI_LOG_LEVEL", "debug")
        assert level_from_env() == logging.DEBUG
        monkeypatch.setenv("MI_LOG_LEVEL", "loud")
        assert level_from_env(logging.WARNING) == logging.WARNING

    def test_get_logger_prefixes(self):
        """Loggers live under the package root."""
        assert get_logger("cli").name == "mediaingest.cli"
        assert get_logger("mediaingest.pipeline").name == "mediaingest.pipeline"

    def test_setup_logging_reads_env(self, tmp_path: Path, monkeypatch):
        """MI_LOG_LEVEL and MI_LOG_FILE configure the package logger."""
        log_file = tmp_path / "logs" / "ingest.log"
        monkeypatch.setenv("MI_LOG_LEVEL", "warning")
        monkeypatch.setenv("MI_LOG_FILE", str(log_file))
        monkeypatch.delenv("MI_LOG_MODULE_LEVELS", raising=False)
        monkeypatch.setattr(logging_config, "_configured", False)

        root = logging.getLogger("mediaingest")
        saved_handlers, saved_level, saved_propagate = root.handlers[:], root.level, root.propagate
        try:
            logger = setup_logging()
            assert logger is root
            assert root.level == logging.WARNING
            assert root.propagate is False

            logging.getLogger("mediaingest.ingest.disk").warning("Disk usage at %d%%", 91)
            logging.getLogger("mediaingest.ingest.disk").info("not written")
            for handler in root.handlers:
                handler.flush()

            text = log_file.read_text(encoding="utf-8")
            assert "Disk usage at 91%" in text
            assert "not written" not in text
        finally:
            for handler in root.handlers:
                if handler not in saved_handlers:
                    handler.close()
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)
            root.propagate = saved_propagate
