"""Job state, progress log and failure types for the make-jam pipeline.

The controller itself lives in :mod:`jobs.controller`; it is not imported
here because it depends on :mod:`services`, which depends on this package.
"""

from .errors import (  # noqa: F401
    ExportFailed,
    ManifestEmpty,
    ManifestIOFailure,
    RemoteUnavailable,
    RestartFailed,
    SnapshotError,
)
from .live_log import LiveLog  # noqa: F401
from .models import ExportPhase, JobState, JobStatusView, SubmitResult, SubmitStatus  # noqa: F401

__all__ = [
    "ExportFailed",
    "ExportPhase",
    "JobState",
    "JobStatusView",
    "LiveLog",
    "ManifestEmpty",
    "ManifestIOFailure",
    "RemoteUnavailable",
    "RestartFailed",
    "SnapshotError",
    "SubmitResult",
    "SubmitStatus",
]
