from __future__ import annotations

import dataclasses
import os
import stat
import sys
import threading
import time
from pathlib import Path
from typing import List, Optional

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from config import SnapshotSettings  # noqa: E402
from jobs.errors import RestartFailed  # noqa: E402
from jobs.models import ExportPhase  # noqa: E402
from services.exporter import ExportOutcome  # noqa: E402

# Mimics the real exporter: writes the jam, then never exits on its own.
EXPORT_SCRIPT = """#!/bin/sh
[ -n "$FAKE_EXPORT_CALLS" ] && echo "$@" >> "$FAKE_EXPORT_CALLS"
[ -n "$FAKE_EXPORT_PIDFILE" ] && echo $$ > "$FAKE_EXPORT_PIDFILE"
sleep 600 &
[ -n "$FAKE_EXPORT_CHILDFILE" ] && echo $! > "$FAKE_EXPORT_CHILDFILE"
if [ -z "$FAKE_EXPORT_NEVER_WRITES" ]; then
    printf 'jam-bytes-for-%s' "$(basename "$2")" > "$2"
fi
wait
"""


def write_executable(path: Path, body: str) -> Path:
    path.write_text(body, encoding="utf-8")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


def pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    try:
        state = Path(f"/proc/{pid}/stat").read_text().rsplit(")", 1)[1].split()[0]
    except (OSError, IndexError):
        return True
    return state != "Z"


def wait_until_dead(pid: int, timeout: float = 3.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if not pid_alive(pid):
            return True
        time.sleep(0.02)
    return not pid_alive(pid)


class FakeService:
    def __init__(self, name: str = "nockchain", *, fail_start: bool = False) -> None:
        self.name = name
        self.fail_start = fail_start
        self.calls: List[str] = []

    def stop(self) -> int:
        self.calls.append("stop")
        return 0

    def start(self) -> None:
        self.calls.append("start")
        if self.fail_start:
            raise RestartFailed("systemctl start failed with exit code 5")


class FakeResolver:
    """Tip resolver that can be held open to keep a job running."""

    def __init__(self, tip: int = 12345, *, error: Optional[Exception] = None, gate: Optional[threading.Event] = None):
        self.tip = tip
        self.error = error
        self.gate = gate
        self.entered = threading.Event()
        self.calls = 0

    def get_tip(self) -> int:
        self.calls += 1
        self.entered.set()
        if self.gate is not None:
            self.gate.wait(10)
        if self.error is not None:
            raise self.error
        return self.tip


class FakeSupervisor:
    """Writes the jam directly instead of driving a process."""

    def __init__(self, settings: SnapshotSettings, *, error: Optional[Exception] = None) -> None:
        self.settings = settings
        self.error = error
        self.markers: List[int] = []

    def export(self, marker: int, log) -> ExportOutcome:
        self.markers.append(marker)
        if self.error is not None:
            raise self.error
        jam_path = self.settings.jam_path(marker)
        created = not jam_path.exists()
        if created:
            jam_path.parent.mkdir(parents=True, exist_ok=True)
            jam_path.write_bytes(f"jam {marker}".encode())
            log.append(f"[jammer] Exported: {jam_path}")
        return ExportOutcome(jam_path=jam_path, created=created, phase=ExportPhase.ARTIFACT_FOUND)


@pytest.fixture()
def html_root(tmp_path) -> Path:
    root = tmp_path / "html"
    (root / "jams").mkdir(parents=True)
    return root


@pytest.fixture()
def export_script(tmp_path) -> Path:
    return write_executable(tmp_path / "fake-nockchain", EXPORT_SCRIPT)


@pytest.fixture()
def settings(tmp_path, html_root, export_script) -> SnapshotSettings:
    node_dir = tmp_path / "node"
    node_dir.mkdir()
    return SnapshotSettings(
        html_root=html_root,
        jams_dir=html_root / "jams",
        manifest_path=html_root / "jams" / "SHA256SUMS",
        nockchain_bin=export_script,
        nockchain_dir=node_dir,
        nockchain_user=None,
        manage_service=True,
        export_timeout_s=10.0,
        export_poll_interval_s=0.02,
        hash_workers=4,
    )


@pytest.fixture()
def make_settings(settings):
    def _make(**changes) -> SnapshotSettings:
        return dataclasses.replace(settings, **changes)

    return _make


@pytest.fixture()
def entry_documents(html_root) -> List[Path]:
    index = html_root / "index.html"
    privacy = html_root / "privacy.html"
    index.write_text("<html>jams</html>", encoding="utf-8")
    privacy.write_text("<html>privacy</html>", encoding="utf-8")
    return [index, privacy]
