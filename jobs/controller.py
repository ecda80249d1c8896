"""Single-flight controller for the make-jam job."""
from __future__ import annotations

import threading
import time
import uuid
from typing import Optional, Tuple

from config import SnapshotSettings
from observability.logger import bind_trace_id, get_logger
from observability.metrics import get_registry
from services.exporter import ExportSupervisor
from services.manifest import ManifestBuilder, count_artifacts
from services.tip_client import TipResolver

from .errors import SnapshotError
from .live_log import LiveLog
from .models import JobState, JobStatusView, SubmitResult, SubmitStatus
from .pipeline import describe_failure, run_snapshot

LOGGER = get_logger("jam_api.jobs.controller")
REGISTRY = get_registry()
ACCEPTED_COUNTER = REGISTRY.counter("jobs.accepted_total")
REJECTED_COUNTER = REGISTRY.counter("jobs.rejected_total")
SUCCEEDED_COUNTER = REGISTRY.counter("jobs.succeeded_total")
FAILED_COUNTER = REGISTRY.counter("jobs.failed_total")
RUNNING_GAUGE = REGISTRY.gauge("jobs.running")

ACCEPTED_MESSAGE = "job started"
ALREADY_RUNNING_MESSAGE = "a job is already running"


class JobController:
    """Owns the process-wide :class:`JobState` and runs at most one job.

    ``submit`` never queues: while a job is in flight every other caller is
    turned away. The job body runs on its own daemon thread and publishes its
    outcome only through the shared state.
    """

    def __init__(
        self,
        settings: SnapshotSettings,
        *,
        resolver: Optional[TipResolver] = None,
        supervisor: Optional[ExportSupervisor] = None,
        manifest: Optional[ManifestBuilder] = None,
    ) -> None:
        self._settings = settings
        self._resolver = resolver or TipResolver(settings.nockchain_rpc)
        self._supervisor = supervisor or ExportSupervisor(settings)
        self._manifest = manifest or ManifestBuilder.from_settings(settings)
        self._lock = threading.Lock()
        self._state = JobState()
        self._done: Optional[threading.Event] = None

    @property
    def settings(self) -> SnapshotSettings:
        return self._settings

    def submit(self) -> SubmitResult:
        with self._lock:
            if self._state.running:
                REJECTED_COUNTER.inc()
                LOGGER.warning("[make-jam] rejected: job already running")
                return SubmitResult(SubmitStatus.ALREADY_RUNNING, ALREADY_RUNNING_MESSAGE)
            log = LiveLog()
            done = threading.Event()
            self._state.begin(log)
            self._done = done
            RUNNING_GAUGE.set(1)

        ACCEPTED_COUNTER.inc()
        log.append("[make-jam] starting jam creation")
        trace_id = f"job-{uuid.uuid4().hex[:12]}"
        thread = threading.Thread(target=self._run_job, args=(log, done, trace_id), name="make-jam", daemon=True)
        thread.start()
        return SubmitResult(SubmitStatus.ACCEPTED, ACCEPTED_MESSAGE)

    def run_now(self) -> Tuple[bool, str]:
        """Submit and block until the job ends; used by the command line."""

        result = self.submit()
        if not result.accepted:
            return False, result.message
        self.wait()
        with self._lock:
            return bool(self._state.last_success), self._state.last_output or ""

    def wait(self, timeout: Optional[float] = None) -> bool:
        with self._lock:
            done = self._done
        if done is None:
            return True
        return done.wait(timeout)

    def snapshot_status(self) -> JobStatusView:
        with self._lock:
            state = self._state
            running = state.running
            running_for: Optional[int] = None
            if state.started_at is not None:
                running_for = int(time.monotonic() - state.started_at)
            if state.live_log is not None:
                output = state.live_log.snapshot()
            else:
                output = state.last_output
            last_completed = state.last_completed
            last_success = state.last_success

        return JobStatusView(
            running=running,
            running_for_secs=running_for,
            jam_count=count_artifacts(self._settings.jams_dir),
            last_completed=last_completed,
            last_success=last_success,
            last_output=output,
        )

    def _run_job(self, log: LiveLog, done: threading.Event, trace_id: str) -> None:
        # Fresh thread, fresh context: the id only tags this run.
        bind_trace_id(trace_id)
        started = time.monotonic()
        success = False
        try:
            message = run_snapshot(self._resolver, self._supervisor, self._manifest, log)
            success = True
            log.append(f"[make-jam] completed in {time.monotonic() - started:.1f}s: {message}")
        except SnapshotError as exc:
            LOGGER.warning("job_failed", extra={"stage": exc.stage, "error": str(exc)})
            log.append(f"[make-jam] failed in {time.monotonic() - started:.1f}s: {describe_failure(exc)}")
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("job_crashed", extra={"error": str(exc)})
            log.append(f"[make-jam] failed in {time.monotonic() - started:.1f}s: {describe_failure(exc)}")
        finally:
            with self._lock:
                self._state.finish(success=success)
                RUNNING_GAUGE.set(0)
            (SUCCEEDED_COUNTER if success else FAILED_COUNTER).inc()
            done.set()


__all__ = ["JobController", "ACCEPTED_MESSAGE", "ALREADY_RUNNING_MESSAGE"]
