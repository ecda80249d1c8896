"""The linear snapshot pipeline: tip -> export -> manifest."""
from __future__ import annotations

from typing import TYPE_CHECKING

from .errors import SnapshotError
from .live_log import LiveLog

if TYPE_CHECKING:  # pragma: no cover
    from services.exporter import ExportSupervisor
    from services.manifest import ManifestBuilder
    from services.tip_client import TipResolver

STAGE_CONTEXT = {
    "tip": "Failed to get tip block",
    "export": "Failed to export jam",
    "restart": "Failed to restart service",
    "manifest": "Failed to write manifest",
}


def describe_failure(exc: BaseException) -> str:
    if isinstance(exc, SnapshotError):
        context = STAGE_CONTEXT.get(exc.stage)
        return f"{context}: {exc}" if context else str(exc)
    return f"{type(exc).__name__}: {exc}"


def run_snapshot(
    resolver: "TipResolver",
    supervisor: "ExportSupervisor",
    manifest: "ManifestBuilder",
    log: LiveLog,
) -> str:
    """Run one job body and return its summary line.

    The manifest is rebuilt even when the jam already existed, so it always
    reflects the current set of published files.
    """

    tip = resolver.get_tip()
    log.append(f"[jammer] Tip block: {tip}")

    outcome = supervisor.export(tip, log)
    manifest.rebuild(log)

    if outcome.created:
        return f"Exported jam for block {tip}"
    return f"Jam for block {tip} already exported; manifest refreshed"


__all__ = ["run_snapshot", "describe_failure", "STAGE_CONTEXT"]
