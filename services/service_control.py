"""systemd control for the node service around an export."""
from __future__ import annotations

import logging
import subprocess
from typing import List

from config import NOCKCHAIN_SERVICE
from jobs.errors import RestartFailed

LOGGER = logging.getLogger("jam_api.service")

SYSTEMCTL = "systemctl"


class ServiceController:
    """Stop (and wait) / start (without waiting) a named systemd unit."""

    def __init__(self, name: str = NOCKCHAIN_SERVICE, *, systemctl: str = SYSTEMCTL) -> None:
        self.name = name
        self._systemctl = systemctl

    def _run(self, args: List[str]) -> int:
        LOGGER.debug("%s %s", self._systemctl, " ".join(args))
        completed = subprocess.run(
            [self._systemctl, *args],
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=None,
            check=False,
        )
        return completed.returncode

    def stop(self) -> int:
        """Block until ``systemctl stop`` returns; return its exit code.

        A unit that was already inactive is not an error for the caller, so
        the exit code is reported rather than raised.
        """

        return self._run(["stop", self.name])

    def start(self) -> None:
        """Queue a start job and return immediately (``--no-block``)."""

        try:
            returncode = self._run(["start", "--no-block", self.name])
        except OSError as exc:
            raise RestartFailed(f"Failed to run {self._systemctl} start: {exc}") from exc
        if returncode != 0:
            raise RestartFailed(f"{self._systemctl} start failed with exit code {returncode}")


__all__ = ["ServiceController"]
