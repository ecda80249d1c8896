"""Append-only text buffer shared by the job thread and status readers."""
from __future__ import annotations

import logging
import threading
from typing import List, Optional

from observability.logger import get_logger

LOGGER = get_logger("jam_api.jobs.log")


class LiveLog:
    """Thread-safe progress log for a single job.

    Every appended line is mirrored to the process logger so progress is
    visible on the console even without API access.
    """

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self._lines: List[str] = []
        self._lock = threading.Lock()
        self._logger = logger or LOGGER

    def append(self, line: str) -> None:
        text = str(line).rstrip("\n")
        self._logger.info(text)
        with self._lock:
            self._lines.append(text + "\n")

    def snapshot(self) -> str:
        with self._lock:
            return "".join(self._lines)

    def take(self) -> str:
        with self._lock:
            content = "".join(self._lines)
            self._lines = []
        return content

    def __len__(self) -> int:  # pragma: no cover - trivial
        with self._lock:
            return len(self._lines)


__all__ = ["LiveLog"]
