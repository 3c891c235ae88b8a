from __future__ import annotations

import importlib.util
import shutil
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

from .config import IngestConfig
from .utils import subprocess_flags as _subprocess_flags


@dataclass(frozen=True)
class DoctorReport:
    ok: bool
    checks: Dict[str, Dict[str, object]]


def _which(cmd: str) -> Optional[str]:
    return shutil.which(cmd)


def _version(cmd: str, flag: str = "-version") -> str:
    try:
        out = subprocess.check_output([cmd, flag], text=True, stderr=subprocess.STDOUT, **_subprocess_flags())
        return out.splitlines()[0].strip()
    except Exception as e:
        return f"error: {type(e).__name__}: {e}"


def _scratch_writable(scratch_dir: Path) -> Dict[str, object]:
    try:
        scratch_dir.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(dir=scratch_dir, prefix=".doctor_"):
            pass
    except OSError as e:
        return {"writable": False, "path": str(scratch_dir), "error": str(e)}
    return {"writable": True, "path": str(scratch_dir)}


def run_doctor(config: Optional[IngestConfig] = None) -> DoctorReport:
    config = config or IngestConfig()
    checks: Dict[str, Dict[str, object]] = {}

    ffmpeg_path = _which("ffmpeg")
    df_path = _which("df")

    checks["ffmpeg"] = {
        "found": ffmpeg_path is not None,
        "path": ffmpeg_path,
        "version": _version("ffmpeg") if ffmpeg_path else None,
    }
    checks["df"] = {
        "found": df_path is not None,
        "path": df_path,
        "version": _version("df", "--version") if df_path else None,
    }

    if importlib.util.find_spec("yt_dlp") is not None:
        checks["yt_dlp"] = {"installed": True}
    else:
        checks["yt_dlp"] = {
            "installed": False,
            "note": "Streaming-site downloads need it: pip install yt-dlp",
        }

    checks["scratch_dir"] = _scratch_writable(config.scratch_dir)

    ok = bool(checks["ffmpeg"]["found"] and checks["df"]["found"] and checks["scratch_dir"]["writable"])
    return DoctorReport(ok=ok, checks=checks)
