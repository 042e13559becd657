"""
Utility functions for the Reviewable data migration tool.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from .exceptions import ConfigurationError


def setup_logging(*, verbosity: int = 0) -> None:
    """Configure logging for the migration process.

    The log file always receives DEBUG output; the console shows warnings by
    default, INFO with one ``-v`` and DEBUG with two or more.
    """
    if verbosity <= 0:
        console_level = logging.WARNING
    elif verbosity == 1:
        console_level = logging.INFO
    else:
        console_level = logging.DEBUG

    console_handler = logging.StreamHandler()
    console_handler.setLevel(console_level)
    file_handler = logging.FileHandler("migration.log", mode="a")
    file_handler.setLevel(logging.DEBUG)

    logging.basicConfig(
        level=logging.DEBUG,
        format="%(asctime)s - %(levelname)s - %(message)s",
        handlers=[console_handler, file_handler],
    )


def load_json_file(path: str | Path, *, description: str) -> Any:
    """Read a JSON input file, turning any failure into a ConfigurationError."""
    try:
        with Path(path).open(encoding="utf-8") as f:
            return json.load(f)
    except OSError as e:
        msg = f"Cannot read {description} file {path}: {e}"
        raise ConfigurationError(msg) from e
    except json.JSONDecodeError as e:
        msg = f"Invalid JSON in {description} file {path}: {e}"
        raise ConfigurationError(msg) from e


def is_empty(value: Any) -> bool:
    """True for None and for empty dicts, lists and strings."""
    if value is None:
        return True
    if isinstance(value, (dict, list, str)):
        return not value
    return False
