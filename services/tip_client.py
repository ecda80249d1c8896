"""Resolve the node's current tip height over its public block service."""
from __future__ import annotations

import json
import subprocess
from typing import Any, Dict, List, Optional

from config import GRPCURL_BIN, NOCKCHAIN_RPC, RPC_CONNECT_TIMEOUT_S, RPC_TIMEOUT_S
from jobs.errors import RemoteUnavailable
from observability.logger import get_logger

LOGGER = get_logger("jam_api.tip")

GET_BLOCKS_METHOD = "nockchain.public.v2.NockchainBlockService/GetBlocks"
GET_BLOCKS_REQUEST = {"page": {"clientPageItemsLimit": 1}}


class TipResolver:
    """Query ``GetBlocks`` for a single page and return ``current_height``.

    The call is delegated to ``grpcurl`` so the service never has to carry
    compiled protobuf stubs; both timeouts are enforced by grpcurl itself and
    once more around the subprocess.
    """

    def __init__(
        self,
        endpoint: str = NOCKCHAIN_RPC,
        *,
        grpcurl_bin: str = GRPCURL_BIN,
        connect_timeout_s: float = RPC_CONNECT_TIMEOUT_S,
        timeout_s: float = RPC_TIMEOUT_S,
    ) -> None:
        self._endpoint = endpoint
        self._grpcurl_bin = grpcurl_bin
        self._connect_timeout_s = connect_timeout_s
        self._timeout_s = timeout_s

    @property
    def endpoint(self) -> str:
        return self._endpoint

    def build_command(self) -> List[str]:
        return [
            self._grpcurl_bin,
            "-plaintext",
            "-connect-timeout",
            f"{self._connect_timeout_s:g}",
            "-max-time",
            f"{self._timeout_s:g}",
            "-d",
            json.dumps(GET_BLOCKS_REQUEST, separators=(",", ":")),
            self._endpoint,
            GET_BLOCKS_METHOD,
        ]

    def get_tip(self) -> int:
        command = self.build_command()
        try:
            completed = subprocess.run(
                command,
                stdin=subprocess.DEVNULL,
                capture_output=True,
                text=True,
                timeout=self._timeout_s + self._connect_timeout_s,
                check=False,
            )
        except FileNotFoundError as exc:
            raise RemoteUnavailable(f"{self._grpcurl_bin} is not installed") from exc
        except subprocess.TimeoutExpired as exc:
            LOGGER.warning("tip_query_timeout", extra={"endpoint": self._endpoint, "timeout_s": self._timeout_s})
            raise RemoteUnavailable(
                f"GetBlocks RPC to {self._endpoint} timed out after {self._timeout_s:g}s"
            ) from exc

        if completed.returncode != 0:
            detail = (completed.stderr or completed.stdout or "").strip()
            LOGGER.warning(
                "tip_query_failed",
                extra={"endpoint": self._endpoint, "exit_code": completed.returncode, "error": detail},
            )
            raise RemoteUnavailable(
                f"Failed to connect to nockchain gRPC at {self._endpoint}: {detail or 'exit ' + str(completed.returncode)}"
            )
        return parse_get_blocks_response(completed.stdout)


def parse_get_blocks_response(raw: str) -> int:
    """Extract the tip height from a JSON-rendered ``GetBlocksResponse``."""

    text = (raw or "").strip()
    if not text:
        raise RemoteUnavailable("Empty gRPC response")
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise RemoteUnavailable(f"Could not parse block height from gRPC response: {text[:200]}") from exc
    if not isinstance(payload, dict) or not payload:
        raise RemoteUnavailable("Empty gRPC response")

    error = payload.get("error")
    if isinstance(error, dict):
        code = _safe_int(error.get("code")) or 0
        message = str(error.get("message") or "").strip()
        raise RemoteUnavailable(f"gRPC error (code {code}): {message}", code=code)

    blocks: Dict[str, Any] = payload.get("blocks") if isinstance(payload.get("blocks"), dict) else payload
    height = _safe_int(blocks.get("currentHeight", blocks.get("current_height")))
    if height is None or height < 0:
        raise RemoteUnavailable(f"Could not parse block height from gRPC response: {text[:200]}")
    return height


def _safe_int(value: Any) -> Optional[int]:
    # uint64 fields are rendered as JSON strings.
    if isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


__all__ = ["TipResolver", "parse_get_blocks_response", "GET_BLOCKS_METHOD"]
