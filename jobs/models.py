"""Data models describing the snapshot job and its observable state."""
from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from .live_log import LiveLog

ISO_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def utcnow() -> datetime:
    """Return a timezone-aware UTC datetime."""

    return datetime.now(timezone.utc)


class ExportPhase(str, Enum):
    """Progress of one supervised export run."""

    NOT_STARTED = "not_started"
    POLLING = "polling"
    ARTIFACT_FOUND = "artifact_found"
    TIMED_OUT = "timed_out"

    @property
    def terminal(self) -> bool:
        return self in {ExportPhase.ARTIFACT_FOUND, ExportPhase.TIMED_OUT}


class SubmitStatus(str, Enum):
    ACCEPTED = "accepted"
    ALREADY_RUNNING = "already_running"


@dataclass(frozen=True)
class SubmitResult:
    status: SubmitStatus
    message: str

    @property
    def accepted(self) -> bool:
        return self.status == SubmitStatus.ACCEPTED


@dataclass
class JobState:
    """The single process-wide job record, guarded by the controller lock.

    ``live_log`` is set exactly while ``running`` is true; the ``last_*``
    fields describe the most recently finished job.
    """

    running: bool = False
    started_at: Optional[float] = None
    last_completed: Optional[datetime] = None
    last_success: Optional[bool] = None
    last_output: Optional[str] = None
    live_log: Optional[LiveLog] = None

    def begin(self, log: LiveLog) -> None:
        self.running = True
        self.started_at = time.monotonic()
        self.live_log = log

    def finish(self, *, success: bool) -> None:
        log = self.live_log
        self.running = False
        self.started_at = None
        self.last_completed = utcnow()
        self.last_success = success
        self.last_output = log.take() if log is not None else ""
        self.live_log = None


@dataclass(frozen=True)
class JobStatusView:
    running: bool
    jam_count: int
    running_for_secs: Optional[int] = None
    last_completed: Optional[datetime] = None
    last_success: Optional[bool] = None
    last_output: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "running": self.running,
            "running_for_secs": self.running_for_secs,
            "jam_count": self.jam_count,
            "last_completed": self.last_completed.strftime(ISO_FORMAT) if self.last_completed else None,
            "last_success": self.last_success,
            "last_output": self.last_output,
        }
        return {key: value for key, value in payload.items() if value is not None}


__all__ = [
    "ISO_FORMAT",
    "ExportPhase",
    "JobState",
    "JobStatusView",
    "SubmitResult",
    "SubmitStatus",
    "utcnow",
]
