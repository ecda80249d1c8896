from __future__ import annotations

import pytest

import services.exporter as exporter_module
from conftest import FakeService, wait_until_dead
from jobs.errors import ExportFailed
from jobs.live_log import LiveLog
from jobs.models import ExportPhase
from services.exporter import EXPORT_FLAG, ExportSupervisor


@pytest.fixture()
def service() -> FakeService:
    return FakeService()


@pytest.fixture()
def pidfiles(tmp_path, monkeypatch):
    pidfile = tmp_path / "export.pid"
    childfile = tmp_path / "export-child.pid"
    calls = tmp_path / "export.calls"
    monkeypatch.setenv("FAKE_EXPORT_PIDFILE", str(pidfile))
    monkeypatch.setenv("FAKE_EXPORT_CHILDFILE", str(childfile))
    monkeypatch.setenv("FAKE_EXPORT_CALLS", str(calls))
    return {"pid": pidfile, "child": childfile, "calls": calls}


def _read_pid(path) -> int:
    return int(path.read_text().strip())


def test_export_waits_for_jam_then_kills_process_group(settings, service, pidfiles):
    log = LiveLog()
    supervisor = ExportSupervisor(settings, service=service)

    outcome = supervisor.export(12345, log)

    assert outcome.created is True
    assert outcome.phase == ExportPhase.ARTIFACT_FOUND
    assert outcome.jam_path == settings.jams_dir / "12345.jam"
    assert outcome.jam_path.exists()
    assert service.calls == ["stop", "start"]
    # Neither the exporter nor the process it forked outlives the export.
    assert wait_until_dead(_read_pid(pidfiles["pid"]))
    assert wait_until_dead(_read_pid(pidfiles["child"]))

    text = log.snapshot()
    expected_order = [
        "[jammer] Stopping service: nockchain",
        "[jammer] Service stopped (exit 0): nockchain",
        f"[jammer] Exporting state jam to: {outcome.jam_path}",
        "[jammer] Jam file appeared",
        "[jammer] Killing export process group",
        f"[jammer] Exported: {outcome.jam_path}",
        "[jammer] Starting service: nockchain",
        "[jammer] Service start issued: nockchain",
    ]
    positions = [text.index(fragment) for fragment in expected_order]
    assert positions == sorted(positions)


def test_export_passes_target_path_and_runs_in_node_dir(settings, service, pidfiles):
    supervisor = ExportSupervisor(settings, service=service)

    supervisor.export(7, LiveLog())

    args = pidfiles["calls"].read_text().strip()
    assert args == f"{EXPORT_FLAG} {settings.jams_dir / '7.jam'}"


def test_existing_jam_short_circuits_without_touching_service(settings, service, pidfiles):
    jam = settings.jam_path(42)
    jam.write_bytes(b"already here")
    log = LiveLog()

    outcome = ExportSupervisor(settings, service=service).export(42, log)

    assert outcome.created is False
    assert outcome.jam_path == jam
    assert jam.read_bytes() == b"already here"
    assert service.calls == []
    assert not pidfiles["calls"].exists()
    assert "Jam already exists" in log.snapshot()


def test_second_export_for_same_marker_runs_exporter_once(settings, service, pidfiles):
    supervisor = ExportSupervisor(settings, service=service)

    first = supervisor.export(99, LiveLog())
    second = supervisor.export(99, LiveLog())

    assert first.jam_path == second.jam_path
    assert first.created is True
    assert second.created is False
    assert len(pidfiles["calls"].read_text().splitlines()) == 1
    assert service.calls == ["stop", "start"]


def test_export_times_out_and_leaves_no_process_behind(make_settings, service, pidfiles, monkeypatch):
    monkeypatch.setenv("FAKE_EXPORT_NEVER_WRITES", "1")
    settings = make_settings(export_timeout_s=0.5)
    log = LiveLog()

    with pytest.raises(ExportFailed) as excinfo:
        ExportSupervisor(settings, service=service).export(5, log)

    assert excinfo.value.jam_path == settings.jam_path(5)
    assert str(settings.jam_path(5)) in str(excinfo.value)
    assert wait_until_dead(_read_pid(pidfiles["pid"]))
    assert wait_until_dead(_read_pid(pidfiles["child"]))
    # The node was stopped for the export, so it is started again.
    assert service.calls == ["stop", "start"]
    text = log.snapshot()
    assert "Timed out after 0.5s" in text
    assert "Killing export process group" in text


def test_spawn_failure_is_export_failed_and_service_restarted(make_settings, service, tmp_path):
    settings = make_settings(nockchain_bin=tmp_path / "missing-binary")

    with pytest.raises(ExportFailed, match="Failed to spawn nockchain export"):
        ExportSupervisor(settings, service=service).export(3, LiveLog())

    assert service.calls == ["stop", "start"]


def test_restart_failure_is_logged_not_raised(settings, pidfiles):
    service = FakeService(fail_start=True)
    log = LiveLog()

    outcome = ExportSupervisor(settings, service=service).export(11, log)

    assert outcome.created is True
    assert "WARNING: Failed to restart service" in log.snapshot()


def test_service_cycle_can_be_disabled(make_settings, service, pidfiles):
    settings = make_settings(manage_service=False)
    log = LiveLog()

    outcome = ExportSupervisor(settings, service=service).export(8, log)

    assert outcome.created is True
    assert service.calls == []
    assert "Service management disabled" in log.snapshot()


def test_build_command_runs_as_configured_user(make_settings, service):
    settings = make_settings(nockchain_user="nock")
    supervisor = ExportSupervisor(settings, service=service)
    target = settings.jam_path(1)

    command = supervisor.build_command(target)

    assert command[:3] == ["sudo", "-u", "nock"]
    assert command[3:] == [str(settings.nockchain_bin), EXPORT_FLAG, str(target)]


def test_build_command_without_user(settings, service):
    command = ExportSupervisor(settings, service=service).build_command(settings.jam_path(1))
    assert command[0] == str(settings.nockchain_bin)


class _UnkillableProcess:
    pid = 424242

    def __init__(self) -> None:
        self.waited = False

    def kill(self) -> None:
        raise PermissionError(1, "Operation not permitted")

    def wait(self, timeout=None) -> int:
        self.waited = True
        return -9


def test_kill_group_survives_denied_kill(settings, service, monkeypatch):
    def _denied(pid, sig):
        raise PermissionError(1, "Operation not permitted")

    monkeypatch.setattr(exporter_module.os, "killpg", _denied)
    proc = _UnkillableProcess()
    log = LiveLog()

    ExportSupervisor(settings, service=service)._kill_group(proc, log)

    assert proc.waited is True
    assert "WARNING: Could not kill export process 424242" in log.snapshot()
