"""Supervise the node's state-jam export.

The export binary writes ``<marker>.jam`` and then keeps running, so its exit
status is useless as a completion signal. The supervisor instead polls for the
jam file, and once it appears (or the deadline passes) kills the whole process
group it started.
"""
from __future__ import annotations

import os
import signal
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from config import SnapshotSettings
from jobs.errors import ExportFailed, RestartFailed
from jobs.live_log import LiveLog
from jobs.models import ExportPhase
from observability.logger import get_logger, log_stage

from .service_control import ServiceController

LOGGER = get_logger("jam_api.exporter")

EXPORT_FLAG = "--export-state-jam"
REAP_TIMEOUT_S = 10.0


@dataclass(frozen=True)
class ExportOutcome:
    jam_path: Path
    created: bool
    phase: ExportPhase
    elapsed_s: float = 0.0


class ExportSupervisor:
    def __init__(self, settings: SnapshotSettings, *, service: Optional[ServiceController] = None) -> None:
        self._settings = settings
        self._service = service or ServiceController(settings.nockchain_service)

    @property
    def settings(self) -> SnapshotSettings:
        return self._settings

    def build_command(self, jam_path: Path) -> List[str]:
        command = [str(self._settings.nockchain_bin), EXPORT_FLAG, str(jam_path)]
        if self._settings.nockchain_user:
            return ["sudo", "-u", self._settings.nockchain_user, *command]
        return command

    def export(self, marker: int, log: LiveLog) -> ExportOutcome:
        """Produce the jam for ``marker`` or return the one already on disk.

        When the service was stopped for the export, a restart is issued
        afterwards whatever the export outcome was; restart failures only
        reach the log.
        """

        jam_path = self._settings.jam_path(marker)
        if jam_path.exists():
            log.append(f"[jammer] Jam already exists: {jam_path} (skipping export)")
            log_stage(LOGGER, stage="export", status="skipped", jam_path=str(jam_path))
            return ExportOutcome(jam_path=jam_path, created=False, phase=ExportPhase.ARTIFACT_FOUND)

        try:
            self._settings.jams_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ExportFailed(f"Failed to create jams directory: {exc}", jam_path=jam_path) from exc

        stopped = False
        if self._settings.manage_service:
            self.stop_service(log)
            stopped = True
        else:
            log.append("[jammer] Service management disabled; exporting against a live node")

        try:
            return self._run_export(jam_path, log)
        finally:
            if stopped:
                self.restart_service(log)

    def stop_service(self, log: LiveLog) -> None:
        name = self._service.name
        log.append(f"[jammer] Stopping service: {name}")
        try:
            returncode = self._service.stop()
        except OSError as exc:
            raise ExportFailed(f"Failed to run systemctl stop: {exc}") from exc
        log.append(f"[jammer] Service stopped (exit {returncode}): {name}")
        log_stage(LOGGER, stage="service_stop", status="done", exit_code=returncode)

    def restart_service(self, log: LiveLog) -> bool:
        name = self._service.name
        log.append(f"[jammer] Starting service: {name}")
        try:
            self._service.start()
        except RestartFailed as exc:
            log.append(f"[jammer] WARNING: Failed to restart service: {exc}")
            log_stage(LOGGER, stage="restart", status="failed", error=str(exc))
            return False
        log.append(f"[jammer] Service start issued: {name}")
        log_stage(LOGGER, stage="restart", status="issued")
        return True

    def _run_export(self, jam_path: Path, log: LiveLog) -> ExportOutcome:
        log.append(f"[jammer] Exporting state jam to: {jam_path} (from {self._settings.nockchain_dir})")
        started = time.monotonic()
        proc = self._spawn(jam_path)
        log.append(f"[jammer] Export process started (pid {proc.pid})")
        log_stage(LOGGER, stage="export", status="started", pid=proc.pid, jam_path=str(jam_path))

        phase = ExportPhase.NOT_STARTED
        try:
            phase = self._await_artifact(jam_path, log)
        finally:
            self._kill_group(proc, log)

        elapsed = time.monotonic() - started
        if phase is not ExportPhase.ARTIFACT_FOUND:
            log_stage(LOGGER, stage="export", status="timed_out", elapsed_s=round(elapsed, 1))
            raise ExportFailed(f"Jam file never appeared at {jam_path}", jam_path=jam_path)

        log.append(f"[jammer] Exported: {jam_path}")
        log_stage(LOGGER, stage="export", status="done", elapsed_s=round(elapsed, 1))
        return ExportOutcome(jam_path=jam_path, created=True, phase=phase, elapsed_s=elapsed)

    def _spawn(self, jam_path: Path) -> "subprocess.Popen[bytes]":
        command = self.build_command(jam_path)
        try:
            # Own session, so sudo and everything it forks share one process group.
            return subprocess.Popen(
                command,
                cwd=str(self._settings.nockchain_dir),
                stdin=subprocess.DEVNULL,
                start_new_session=True,
            )
        except OSError as exc:
            raise ExportFailed(f"Failed to spawn nockchain export: {exc}", jam_path=jam_path) from exc

    def _await_artifact(self, jam_path: Path, log: LiveLog) -> ExportPhase:
        timeout = self._settings.export_timeout_s
        interval = self._settings.export_poll_interval_s
        log.append(f"[jammer] Waiting up to {timeout:g}s for {jam_path.name}")
        deadline = time.monotonic() + timeout
        phase = ExportPhase.POLLING
        while not phase.terminal:
            if jam_path.exists():
                phase = ExportPhase.ARTIFACT_FOUND
            elif time.monotonic() >= deadline:
                phase = ExportPhase.TIMED_OUT
            else:
                time.sleep(interval)
        if phase is ExportPhase.TIMED_OUT:
            log.append(f"[jammer] Timed out after {timeout:g}s waiting for {jam_path}")
        else:
            log.append(f"[jammer] Jam file appeared: {jam_path}")
        return phase

    def _kill_group(self, proc: "subprocess.Popen[bytes]", log: LiveLog) -> None:
        log.append(f"[jammer] Killing export process group {proc.pid}")
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        except PermissionError as exc:
            LOGGER.warning("export_kill_denied", extra={"pid": proc.pid, "error": str(exc)})
            try:
                proc.kill()
            except OSError as kill_exc:
                log.append(f"[jammer] WARNING: Could not kill export process {proc.pid}: {kill_exc}")
        try:
            proc.wait(timeout=REAP_TIMEOUT_S)
        except subprocess.TimeoutExpired:
            LOGGER.warning("export_reap_timeout", extra={"pid": proc.pid})


__all__ = ["ExportOutcome", "ExportSupervisor", "EXPORT_FLAG"]
