# src/playforce/env_loader.py
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Dict, Iterable, Optional

from dotenv import dotenv_values, load_dotenv

_logger = logging.getLogger(__name__)


def load_env_files(
    candidates: Optional[Iterable[Path]] = None,
    *,
    quiet: bool = False,
) -> Optional[Path]:
    """Load the first existing .env file into the process environment.

    - By default looks for .env / .dotenv in the current working directory.
    - First existing file wins; its path is returned.
    - Variables already set in the environment are not overridden.
    """
    if candidates is None:
        cwd = Path.cwd()
        candidates = (cwd / ".env", cwd / ".dotenv")

    for path in candidates:
        if path.exists():
            load_dotenv(path)
            if not quiet:
                _logger.debug("Loaded environment variables from %s", path)
            return path

    if not quiet:
        _logger.debug("No .env/.dotenv file found in %s", Path.cwd())
    return None


def read_env_value(name: str, path: Optional[Path] = None) -> Optional[str]:
    """Return ``name`` from a .env-style file, falling back to the environment.

    The file is parsed without touching ``os.environ`` so a value can be
    re-read (and revoked) between calls.
    """
    if path is not None and path.exists():
        values: Dict[str, Optional[str]] = dotenv_values(path)
        value = values.get(name)
        if value:
            return value.strip()
    value = os.getenv(name)
    return value.strip() if value else None
