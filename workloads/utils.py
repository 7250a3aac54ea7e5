"""
Shared utilities for workloads.

    from workloads.utils import save_json, load_json, Timer
"""

import json
import logging
import time
from pathlib import Path
from typing import Any, Dict


logger = logging.getLogger(__name__)


def save_json(path: Path, data: Dict[str, Any], indent: int = 2) -> None:
    """Save data as JSON to a file, creating the parent directory if needed."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=indent)


def load_json(path: Path) -> Any:
    """Load JSON data from a file."""
    with open(path, encoding="utf-8") as f:
        return json.load(f)


class Timer:
    """Simple context manager for timing code blocks."""

    def __init__(self, name: str = ""):
        self.name = name
        self.elapsed = 0.0

    def __enter__(self):
        self.start = time.perf_counter()
        return self

    def __exit__(self, *args):
        self.elapsed = time.perf_counter() - self.start
        if self.name:
            logger.info("[%s] took %.3fs", self.name, self.elapsed)
