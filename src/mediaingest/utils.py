"""Shared utility functions for mediaingest.

This module provides common utilities used across multiple modules:
- subprocess_flags(): Windows-specific flags to hide console windows
- utc_iso(): UTC timestamp in ISO format
- require_cmd(): locate an executable on PATH or fail loudly
"""

from __future__ import annotations

import shutil
import sys
from datetime import datetime, timezone
from typing import Any, Dict


def subprocess_flags() -> Dict[str, Any]:
    """Return subprocess flags to hide console window on Windows.

    Usage:
        proc = await asyncio.create_subprocess_exec(*cmd, **subprocess_flags())

    Returns:
        Dict with 'creationflags' on Windows, empty dict otherwise.
    """
    if sys.platform == "win32":
        # CREATE_NO_WINDOW = 0x08000000
        return {"creationflags": 0x08000000}
    return {}


def utc_iso() -> str:
    """Return current UTC time in ISO 8601 format."""
    return datetime.now(timezone.utc).isoformat()


def require_cmd(cmd: str) -> str:
    path = shutil.which(cmd)
    if not path:
        raise RuntimeError(
            f"Required executable '{cmd}' not found in PATH. "
            f"Install {cmd} and ensure it is available on PATH."
        )
    return path
