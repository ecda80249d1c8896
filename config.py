# -*- coding: utf-8 -*-

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

from dotenv import load_dotenv

load_dotenv()


def _env_str(name: str, default: str) -> str:
    value = str(os.getenv(name, "")).strip()
    return value or default


def _env_int(name: str, default: int) -> int:
    value = str(os.getenv(name, "")).strip()
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    value = str(os.getenv(name, "")).strip()
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = str(os.getenv(name, "")).strip().lower()
    if not raw:
        return default
    return raw not in {"0", "false", "off", "no"}


API_KEY = str(os.getenv("API_KEY", "")).strip()
API_PORT = max(1, _env_int("API_PORT", 80))
LOG_LEVEL = _env_str("LOG_LEVEL", "INFO").upper()

HTML_ROOT = _env_str("HTML_ROOT", "/usr/share/nginx/html")
JAMS_DIR = _env_str("JAMS_DIR", f"{HTML_ROOT}/jams")
MANIFEST_PATH = _env_str("MANIFEST", f"{JAMS_DIR}/SHA256SUMS")

# Published alongside the jams; hashed into the manifest when present.
ENTRY_DOCUMENTS = ("index.html", "privacy.html")
JAM_EXTENSION = ".jam"

NOCKCHAIN_RPC = _env_str("NOCKCHAIN_RPC", "localhost:5556")
NOCKCHAIN_BIN = _env_str("NOCKCHAIN_BIN", "/root/.cargo/bin/nockchain")
NOCKCHAIN_DIR = _env_str("NOCKCHAIN_DIR", "/root/nockchain")
NOCKCHAIN_USER = str(os.getenv("NOCKCHAIN_USER", "")).strip() or None
NOCKCHAIN_SERVICE = _env_str("NOCKCHAIN_SERVICE", "nockchain")
MANAGE_SERVICE = _env_bool("MANAGE_SERVICE", True)

GRPCURL_BIN = _env_str("GRPCURL_BIN", "grpcurl")
RPC_CONNECT_TIMEOUT_S = max(1.0, _env_float("RPC_CONNECT_TIMEOUT_S", 10.0))
RPC_TIMEOUT_S = max(RPC_CONNECT_TIMEOUT_S, _env_float("RPC_TIMEOUT_S", 30.0))

# The exporter does not exit after writing the jam, so it is bounded by wall clock.
EXPORT_TIMEOUT_S = max(1.0, _env_float("EXPORT_TIMEOUT_S", 15 * 60.0))
EXPORT_POLL_INTERVAL_S = max(0.01, _env_float("EXPORT_POLL_INTERVAL_S", 0.1))

HASH_WORKERS = max(1, _env_int("HASH_WORKERS", 4))
HASH_CHUNK_SIZE = 8192


@dataclass(frozen=True)
class SnapshotSettings:
    """Resolved paths and knobs for one snapshot pipeline."""

    html_root: Path
    jams_dir: Path
    manifest_path: Path
    nockchain_rpc: str = NOCKCHAIN_RPC
    nockchain_bin: Path = Path(NOCKCHAIN_BIN)
    nockchain_dir: Path = Path(NOCKCHAIN_DIR)
    nockchain_user: Optional[str] = NOCKCHAIN_USER
    nockchain_service: str = NOCKCHAIN_SERVICE
    manage_service: bool = MANAGE_SERVICE
    entry_documents: Tuple[str, ...] = ENTRY_DOCUMENTS
    export_timeout_s: float = EXPORT_TIMEOUT_S
    export_poll_interval_s: float = EXPORT_POLL_INTERVAL_S
    hash_workers: int = HASH_WORKERS

    @classmethod
    def from_env(cls) -> "SnapshotSettings":
        return cls(
            html_root=Path(HTML_ROOT),
            jams_dir=Path(JAMS_DIR),
            manifest_path=Path(MANIFEST_PATH),
        )

    @property
    def checkpoints_dir(self) -> Path:
        return self.nockchain_dir / ".data.nockchain" / "checkpoints"

    def jam_path(self, marker: int) -> Path:
        return self.jams_dir / f"{marker}{JAM_EXTENSION}"

    def describe(self) -> dict:
        return {
            "JAMS_DIR": str(self.jams_dir),
            "HTML_ROOT": str(self.html_root),
            "MANIFEST": str(self.manifest_path),
            "NOCKCHAIN_RPC": self.nockchain_rpc,
            "NOCKCHAIN_BIN": str(self.nockchain_bin),
            "NOCKCHAIN_DIR": str(self.nockchain_dir),
            "NOCKCHAIN_USER": self.nockchain_user or "(none)",
            "NOCKCHAIN_SERVICE": self.nockchain_service,
            "MANAGE_SERVICE": self.manage_service,
            "CHECKPOINTS_DIR": str(self.checkpoints_dir),
        }
