"""Failure taxonomy for the snapshot pipeline stages."""
from __future__ import annotations

from pathlib import Path
from typing import Optional


class SnapshotError(Exception):
    """Base class for a failure that aborts (or degrades) a snapshot job."""

    stage = "job"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class RemoteUnavailable(SnapshotError):
    """The tip query failed; raised before any side effect."""

    stage = "tip"

    def __init__(self, message: str, *, code: Optional[int] = None) -> None:
        super().__init__(message)
        self.code = code


class ExportFailed(SnapshotError):
    stage = "export"

    def __init__(self, message: str, *, jam_path: Optional[Path] = None) -> None:
        super().__init__(message)
        self.jam_path = jam_path


class RestartFailed(SnapshotError):
    """The node service could not be started again. Logged, never fatal."""

    stage = "restart"


class ManifestEmpty(SnapshotError):
    stage = "manifest"


class ManifestIOFailure(SnapshotError):
    stage = "manifest"


__all__ = [
    "SnapshotError",
    "RemoteUnavailable",
    "ExportFailed",
    "RestartFailed",
    "ManifestEmpty",
    "ManifestIOFailure",
]
