# -*- coding: utf-8 -*-
"""Operator command line: export a jam, rebuild or check the manifest."""
from __future__ import annotations

import argparse
import sys
from typing import List, Optional

from config import SnapshotSettings
from jobs.controller import JobController
from jobs.errors import SnapshotError
from jobs.live_log import LiveLog
from jobs.pipeline import describe_failure
from services.manifest import ManifestBuilder

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CHECK_FAILED = 2


def _cmd_jam(settings: SnapshotSettings) -> int:
    success, output = JobController(settings).run_now()
    sys.stdout.write(output)
    return EXIT_OK if success else EXIT_FAILED


def _cmd_hash(settings: SnapshotSettings) -> int:
    builder = ManifestBuilder.from_settings(settings)
    try:
        builder.rebuild(LiveLog())
    except SnapshotError as exc:
        print(f"ERROR: {describe_failure(exc)}", file=sys.stderr)
        return EXIT_FAILED
    return EXIT_OK


def _cmd_check(settings: SnapshotSettings) -> int:
    builder = ManifestBuilder.from_settings(settings)
    try:
        report = builder.verify()
    except SnapshotError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return EXIT_FAILED
    for line in report.lines():
        print(line)
    return EXIT_OK if report.passed else EXIT_CHECK_FAILED


COMMANDS = {
    "jam": _cmd_jam,
    "hash": _cmd_hash,
    "check": _cmd_check,
}


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Export nockchain state jams and publish SHA256SUMS")
    parser.add_argument(
        "command",
        choices=sorted(COMMANDS),
        help="jam: export a new state jam then hash; hash: rebuild the manifest; check: verify files",
    )
    args = parser.parse_args(argv)
    return COMMANDS[args.command](SnapshotSettings.from_env())


if __name__ == "__main__":
    sys.exit(main())
