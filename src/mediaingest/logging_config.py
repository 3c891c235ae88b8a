"""Logging for mediaingest.

The CLI calls ``setup_logging()`` once; every other module just uses
``logging.getLogger(__name__)`` and its records end up on the
``mediaingest`` logger configured here.

Environment:
    MI_LOG_LEVEL          package level, e.g. ``DEBUG`` (default INFO)
    MI_LOG_FILE           also append records to this file
    MI_LOG_MODULE_LEVELS  per-module levels, e.g. ``ingest.stream=DEBUG,ingest.disk:WARNING``
"""

from __future__ import annotations

import logging
import os
import re
import sys
from pathlib import Path
from typing import Dict, List, Optional

ROOT_LOGGER = "mediaingest"

_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"
_MODULE_LEVEL_RE = re.compile(r"^\s*([\w.]+)\s*[=:]\s*(\w+)\s*$")

_configured = False


def _qualified(name: str) -> str:
    return name if name.startswith(ROOT_LOGGER) else f"{ROOT_LOGGER}.{name}"


def _level(name: str) -> Optional[int]:
    level = logging.getLevelName(name.strip().upper())
    return level if isinstance(level, int) else None


def parse_module_levels(raw: str) -> Dict[str, int]:
    """Map ``name=LEVEL`` items (comma or semicolon separated) to logger levels.

    Short names are placed under ``mediaingest``; malformed items and unknown
    levels are skipped.
    """
    levels: Dict[str, int] = {}
    for item in re.split(r"[;,]", raw or ""):
        match = _MODULE_LEVEL_RE.match(item)
        if not match:
            continue
        level = _level(match.group(2))
        if level is not None:
            levels[_qualified(match.group(1))] = level
    return levels


def level_from_env(default: int = logging.INFO) -> int:
    level = _level(os.getenv("MI_LOG_LEVEL", ""))
    return default if level is None else level


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(_qualified(name))


def setup_logging(level: Optional[int] = None, log_file: Optional[Path] = None) -> logging.Logger:
    """Attach stderr (and optional file) handlers to the package logger once.

    Explicit arguments win over ``MI_LOG_LEVEL`` and ``MI_LOG_FILE``.
    """
    global _configured
    root = logging.getLogger(ROOT_LOGGER)
    if _configured:
        return root

    if level is None:
        level = level_from_env()
    if log_file is None and os.getenv("MI_LOG_FILE"):
        log_file = Path(os.environ["MI_LOG_FILE"])

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    formatter = logging.Formatter(_FORMAT, datefmt=_DATEFMT)
    root.handlers.clear()
    for handler in handlers:
        # Handlers stay at NOTSET so per-module DEBUG overrides get through.
        handler.setFormatter(formatter)
        root.addHandler(handler)
    root.setLevel(level)
    root.propagate = False

    for name, module_level in parse_module_levels(os.getenv("MI_LOG_MODULE_LEVELS", "")).items():
        logging.getLogger(name).setLevel(module_level)

    _configured = True
    return root
