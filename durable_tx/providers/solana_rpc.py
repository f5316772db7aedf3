"""
Solana JSON-RPC client.

The single network handle every component receives explicitly. Wraps the
handful of RPC methods durable transactions need: account reads, balances,
rent, blockhashes, raw transaction submission and signature status polling.
"""

from __future__ import annotations

import asyncio
import base64
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

import httpx

from ..config import settings
from ..core.errors import LedgerRpcError, SubmissionError


logger = logging.getLogger(__name__)


class Commitment(str, Enum):
    """Ledger commitment levels, weakest first."""
    PROCESSED = "processed"
    CONFIRMED = "confirmed"
    FINALIZED = "finalized"

    def satisfied_by(self, status: Optional[str]) -> bool:
        if status is None:
            return False
        order = [Commitment.PROCESSED.value, Commitment.CONFIRMED.value, Commitment.FINALIZED.value]
        if status not in order:
            return False
        return order.index(status) >= order.index(self.value)


@dataclass
class SolanaRpcConfig:
    """Configuration for Solana RPC connection."""
    rpc_url: str
    commitment: Commitment = Commitment.CONFIRMED
    max_retries: int = 3
    timeout_s: float = 30.0

    @classmethod
    def from_settings(cls) -> "SolanaRpcConfig":
        return cls(
            rpc_url=settings.solana_rpc_url,
            commitment=Commitment(settings.commitment),
            max_retries=settings.max_retries,
            timeout_s=settings.request_timeout_seconds,
        )


@dataclass
class AccountInfo:
    """Raw account as returned by getAccountInfo."""
    address: str
    lamports: int
    owner: str
    data: bytes
    executable: bool = False


@dataclass
class SignatureStatus:
    """Entry of getSignatureStatuses."""
    signature: str
    slot: Optional[int]
    confirmation_status: Optional[str]
    err: Any = None

    @property
    def failed(self) -> bool:
        return self.err is not None


# Methods that never change ledger state and can be re-sent safely.
_IDEMPOTENT_METHODS = {
    "getAccountInfo",
    "getBalance",
    "getMinimumBalanceForRentExemption",
    "getLatestBlockhash",
    "getSignatureStatuses",
}


class LedgerClient:
    """
    Async JSON-RPC client for a single ledger endpoint.

    Usage:
        async with LedgerClient(SolanaRpcConfig(rpc_url="http://localhost:8899")) as client:
            info = await client.get_account_info(address)
    """

    def __init__(
        self,
        config: Optional[SolanaRpcConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._config = config or SolanaRpcConfig.from_settings()
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._request_id = 0

    @property
    def config(self) -> SolanaRpcConfig:
        return self._config

    @property
    def commitment(self) -> Commitment:
        return self._config.commitment

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._config.timeout_s, transport=self._transport)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "LedgerClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def _rpc_call(self, method: str, params: List[Any]) -> Any:
        """Make an RPC call and return its ``result`` member."""
        client = await self._get_client()
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params,
        }
        attempts = self._config.max_retries if method in _IDEMPOTENT_METHODS else 1

        for attempt in range(attempts):
            try:
                response = await client.post(
                    self._config.rpc_url,
                    json=payload,
                    headers={"Content-Type": "application/json"},
                )
                response.raise_for_status()
                data = response.json()
            except (httpx.HTTPError, ValueError) as e:
                if attempt == attempts - 1:
                    raise SubmissionError(f"{method} failed: {e}") from e
                logger.warning("RPC %s attempt %d failed: %s", method, attempt + 1, e)
                await asyncio.sleep(0.5 * (attempt + 1))
                continue

            if "error" in data:
                error = data["error"] or {}
                raise LedgerRpcError(
                    method,
                    error.get("code"),
                    error.get("message", str(error)),
                    error.get("data"),
                )
            return data.get("result")

        raise SubmissionError(f"{method} failed: max retries exceeded")

    async def get_account_info(self, address: str) -> Optional[AccountInfo]:
        """Fetch an account, or None when nothing exists at the address."""
        result = await self._rpc_call(
            "getAccountInfo",
            [address, {"encoding": "base64", "commitment": self.commitment.value}],
        )
        value = (result or {}).get("value")
        if value is None:
            return None

        raw = value.get("data") or ["", "base64"]
        return AccountInfo(
            address=address,
            lamports=int(value.get("lamports", 0)),
            owner=value.get("owner", ""),
            data=base64.b64decode(raw[0]) if raw[0] else b"",
            executable=bool(value.get("executable", False)),
        )

    async def get_balance(self, address: str) -> int:
        """Balance in lamports."""
        result = await self._rpc_call("getBalance", [address, {"commitment": self.commitment.value}])
        return int((result or {}).get("value", 0))

    async def get_minimum_balance_for_rent_exemption(self, size: int) -> int:
        result = await self._rpc_call(
            "getMinimumBalanceForRentExemption",
            [size, {"commitment": self.commitment.value}],
        )
        return int(result)

    async def get_latest_blockhash(self) -> str:
        result = await self._rpc_call("getLatestBlockhash", [{"commitment": self.commitment.value}])
        return result["value"]["blockhash"]

    async def send_transaction(
        self,
        wire: bytes,
        skip_preflight: bool = False,
        preflight_commitment: Optional[Commitment] = None,
    ) -> str:
        """
        Send raw transaction bytes; returns the signature.

        Preflight simulation failures surface as LedgerRpcError whose
        ``transaction_error`` holds the ledger's error value.
        """
        options = {
            "encoding": "base64",
            "skipPreflight": skip_preflight,
            "preflightCommitment": (preflight_commitment or self.commitment).value,
            "maxRetries": 0,
        }
        signature = await self._rpc_call(
            "sendTransaction",
            [base64.b64encode(wire).decode("ascii"), options],
        )
        if not signature:
            raise SubmissionError("No signature returned from sendTransaction")
        return signature

    async def get_signature_statuses(self, signatures: Sequence[str]) -> List[Optional[SignatureStatus]]:
        result = await self._rpc_call(
            "getSignatureStatuses",
            [list(signatures), {"searchTransactionHistory": True}],
        )
        statuses: List[Optional[SignatureStatus]] = []
        for signature, entry in zip(signatures, (result or {}).get("value", [])):
            if entry is None:
                statuses.append(None)
                continue
            statuses.append(
                SignatureStatus(
                    signature=signature,
                    slot=entry.get("slot"),
                    confirmation_status=entry.get("confirmationStatus"),
                    err=entry.get("err"),
                )
            )
        return statuses

    async def wait_for_confirmation(
        self,
        signature: str,
        commitment: Optional[Commitment] = None,
        timeout_s: float = 60.0,
        poll_interval_s: float = 1.0,
    ) -> Optional[SignatureStatus]:
        """
        Poll until the signature reaches the commitment level or fails.

        Returns None on timeout. Uses exponential backoff for polling.
        """
        target = commitment or self.commitment
        start_time = time.monotonic()
        interval = poll_interval_s

        while (time.monotonic() - start_time) < timeout_s:
            (status,) = await self.get_signature_statuses([signature])
            if status is not None and (status.failed or target.satisfied_by(status.confirmation_status)):
                return status

            await asyncio.sleep(interval)
            # Exponential backoff, max 5 seconds
            interval = min(interval * 1.5, 5.0)

        return None

    async def send_and_confirm(
        self,
        wire: bytes,
        skip_preflight: bool = False,
        commitment: Optional[Commitment] = None,
        timeout_s: float = 60.0,
        poll_interval_s: float = 1.0,
    ) -> SignatureStatus:
        """Send and wait for confirmation; the returned status may carry an ``err``."""
        signature = await self.send_transaction(wire, skip_preflight=skip_preflight)
        status = await self.wait_for_confirmation(
            signature,
            commitment=commitment,
            timeout_s=timeout_s,
            poll_interval_s=poll_interval_s,
        )
        if status is None:
            raise SubmissionError("Transaction confirmation timed out", signature=signature)
        return status

    async def request_airdrop(self, address: str, lamports: int) -> str:
        return await self._rpc_call(
            "requestAirdrop",
            [address, lamports, {"commitment": self.commitment.value}],
        )

    async def airdrop(
        self,
        address: str,
        lamports: int,
        timeout_s: float = 60.0,
        poll_interval_s: float = 1.0,
    ) -> int:
        """Request an airdrop, wait for it, and return the new balance."""
        signature = await self.request_airdrop(address, lamports)
        status = await self.wait_for_confirmation(signature, timeout_s=timeout_s, poll_interval_s=poll_interval_s)
        if status is None or status.failed:
            raise SubmissionError(f"Airdrop to {address} did not confirm", signature=signature)
        return await self.get_balance(address)
