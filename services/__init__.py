"""External collaborators of the snapshot job: RPC, systemd, exporter, manifest."""

from .exporter import ExportOutcome, ExportSupervisor  # noqa: F401
from .manifest import ManifestBuilder, VerifyReport, count_artifacts, verify_manifest  # noqa: F401
from .service_control import ServiceController  # noqa: F401
from .tip_client import TipResolver  # noqa: F401

__all__ = [
    "ExportOutcome",
    "ExportSupervisor",
    "ManifestBuilder",
    "VerifyReport",
    "count_artifacts",
    "verify_manifest",
    "ServiceController",
    "TipResolver",
]
