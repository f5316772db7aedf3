"""
Durable Transaction Submitter.

Sends a serialized durable transaction and classifies where it ended up:

    PENDING
      ├─ advance (instruction 0) fails ──────────> REJECTED_NO_ADVANCE
      └─ advance succeeds ─> ADVANCED_EXECUTING
                               ├─ payload succeeds ─> CONFIRMED
                               └─ payload fails ───> CONFIRMED_FAILED_PAYLOAD

REJECTED_NO_ADVANCE leaves the nonce untouched, so the same bytes can be
submitted again. Once the advance succeeds the nonce moves even if the
payload fails, and the bytes are spent for good. Nothing is retried here:
on a timeout the caller gets a SubmissionError and must re-check the nonce
before resubmitting.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional, Tuple, Union

import structlog
from pydantic import BaseModel, ConfigDict, Field

from ...config import settings
from ...providers.solana_rpc import Commitment, LedgerClient, SignatureStatus
from ..errors import (
    AccountNotFound,
    ConfirmedFailedPayload,
    LedgerRpcError,
    RejectedNoAdvance,
    SubmissionError,
)
from ..nonce.manager import NonceAccountManager
from ..transaction import codec
from ..transaction.models import DurableTransaction


logger = structlog.stdlib.get_logger(__name__)

# JSON-RPC error codes for transactions the node refused to forward.
RPC_PREFLIGHT_FAILURE = -32002
RPC_SIGNATURE_VERIFICATION_FAILURE = -32003
_REJECTION_CODES = {RPC_PREFLIGHT_FAILURE, RPC_SIGNATURE_VERIFICATION_FAILURE}


class SubmissionState(str, Enum):
    """Where a submitted durable transaction stands."""
    PENDING = "pending"
    REJECTED_NO_ADVANCE = "rejected_no_advance"
    ADVANCED_EXECUTING = "advanced_executing"
    CONFIRMED = "confirmed"
    CONFIRMED_FAILED_PAYLOAD = "confirmed_failed_payload"


class SubmitOptions(BaseModel):
    """
    Options for a single submission.

    ``skip_preflight`` must be True to observe CONFIRMED_FAILED_PAYLOAD: with
    preflight on, the node simulates first and refuses payload failures
    before the ledger ever advances the nonce.
    """

    model_config = ConfigDict(frozen=True)

    skip_preflight: bool = False
    commitment: Commitment = Field(default_factory=lambda: Commitment(settings.commitment))
    timeout_seconds: float = Field(default_factory=lambda: settings.confirm_timeout_seconds, gt=0)
    poll_interval_seconds: float = Field(default_factory=lambda: settings.confirm_poll_interval_seconds, gt=0)


@dataclass
class SubmissionResult:
    """Terminal success of a submission."""
    signature: str
    state: SubmissionState
    nonce_account: str
    pinned_nonce: str
    slot: Optional[int] = None
    transitions: List[SubmissionState] = field(default_factory=list)


def instruction_error(err: Any) -> Tuple[Optional[int], Any]:
    """
    Split a ledger transaction error into (instruction index, detail).

    ``{"InstructionError": [1, {"Custom": 1}]}`` -> ``(1, {"Custom": 1})``;
    transaction-level errors such as ``"BlockhashNotFound"`` -> ``(None, err)``.
    """
    if isinstance(err, dict) and "InstructionError" in err:
        value = err["InstructionError"]
        if isinstance(value, (list, tuple)) and len(value) == 2 and isinstance(value[0], int):
            return value[0], value[1]
    return None, err


class Submitter:
    """
    Submits durable transactions and classifies the outcome.

    Usage:
        submitter = Submitter(client)
        result = await submitter.submit(stored_bytes, SubmitOptions(skip_preflight=True))
    """

    def __init__(self, client: LedgerClient, manager: Optional[NonceAccountManager] = None):
        self.client = client
        self.manager = manager or NonceAccountManager(client)

    async def submit(
        self,
        data: Union[bytes, str],
        options: Optional[SubmitOptions] = None,
    ) -> SubmissionResult:
        """
        Send a serialized durable transaction and wait for its outcome.

        Args:
            data: Wire bytes, or their base58 text form
            options: Preflight / commitment / timeout settings

        Returns:
            SubmissionResult in state CONFIRMED

        Raises:
            MalformedEncoding: ``data`` is not a durable transaction
            RejectedNoAdvance: advance never ran; nonce unchanged, replayable
            ConfirmedFailedPayload: nonce advanced, payload failed; spent
            SubmissionError: transport failure or ambiguous timeout
        """
        options = options or SubmitOptions()
        wire = codec.decode(data) if isinstance(data, str) else bytes(data)
        tx = codec.thaw(wire)
        transitions = [SubmissionState.PENDING]
        log = logger.bind(nonce_account=tx.nonce_account, pinned_nonce=tx.pinned_nonce)

        if not tx.is_fully_signed:
            log.info("submission_rejected", reason="missing_signature", missing=tx.missing_signers)
            raise RejectedNoAdvance(
                f"Missing signatures from {', '.join(tx.missing_signers)}",
                nonce_account=tx.nonce_account,
                reason="missing_signature",
            )

        _valid, invalid = codec.verify_signatures(tx)
        if invalid:
            log.info("submission_rejected", reason="invalid_signature", invalid=invalid)
            raise RejectedNoAdvance(
                f"Signature verification failed for {', '.join(invalid)}",
                nonce_account=tx.nonce_account,
                reason="invalid_signature",
            )

        # Send the stored bytes as they are; the thawed copy is only for classification.
        try:
            signature = await self.client.send_transaction(
                wire,
                skip_preflight=options.skip_preflight,
                preflight_commitment=options.commitment,
            )
        except LedgerRpcError as e:
            if e.code not in _REJECTION_CODES:
                raise SubmissionError(f"sendTransaction failed: {e.message}", nonce_account=tx.nonce_account) from e
            index, _detail = instruction_error(e.transaction_error)
            log.info("submission_rejected", reason="preflight", ledger_error=e.transaction_error, instruction=index)
            raise RejectedNoAdvance(
                f"Node rejected the transaction before execution: {e.message}",
                nonce_account=tx.nonce_account,
                reason="preflight" if e.code == RPC_PREFLIGHT_FAILURE else "signature_verification",
                ledger_error=e.transaction_error,
                preflight=True,
            ) from e

        log = log.bind(signature=signature)
        log.info("submission_sent", skip_preflight=options.skip_preflight)

        status = await self.client.wait_for_confirmation(
            signature,
            commitment=options.commitment,
            timeout_s=options.timeout_seconds,
            poll_interval_s=options.poll_interval_seconds,
        )
        if status is None:
            status = await self._reconcile(tx, signature, log, options.commitment)

        return self._classify(tx, status, transitions, log)

    def _classify(
        self,
        tx: DurableTransaction,
        status: SignatureStatus,
        transitions: List[SubmissionState],
        log: Any,
    ) -> SubmissionResult:
        if status.err is None:
            transitions += [SubmissionState.ADVANCED_EXECUTING, SubmissionState.CONFIRMED]
            log.info("submission_confirmed", slot=status.slot)
            return SubmissionResult(
                signature=status.signature,
                state=SubmissionState.CONFIRMED,
                nonce_account=tx.nonce_account,
                pinned_nonce=tx.pinned_nonce,
                slot=status.slot,
                transitions=transitions,
            )

        index, _detail = instruction_error(status.err)
        if index is None or index == 0:
            transitions.append(SubmissionState.REJECTED_NO_ADVANCE)
            log.info("submission_rejected", reason="advance_failed", ledger_error=status.err)
            raise RejectedNoAdvance(
                f"Nonce advance failed: {status.err}",
                nonce_account=tx.nonce_account,
                reason="advance_failed",
                ledger_error=status.err,
            )

        transitions += [SubmissionState.ADVANCED_EXECUTING, SubmissionState.CONFIRMED_FAILED_PAYLOAD]
        log.warning("submission_payload_failed", instruction=index, ledger_error=status.err)
        raise ConfirmedFailedPayload(
            f"Nonce advanced but instruction {index} failed: {status.err}",
            signature=status.signature,
            instruction_index=index,
            nonce_account=tx.nonce_account,
            ledger_error=status.err,
        )

    async def _reconcile(
        self,
        tx: DurableTransaction,
        signature: str,
        log: Any,
        commitment: Commitment,
    ) -> SignatureStatus:
        """
        Settle a confirmation timeout from on-ledger state.

        The nonce account is read before the signature status: if the nonce
        moved and the signature is still unknown, this transaction can never
        land. An authority that does not match the signed advance means the
        advance cannot succeed either. Anything else stays ambiguous.
        """
        try:
            account = await self.manager.fetch(tx.nonce_account)
        except AccountNotFound as e:
            raise RejectedNoAdvance(
                f"Nonce account {tx.nonce_account} does not exist",
                nonce_account=tx.nonce_account,
                reason="nonce_account_missing",
            ) from e

        (status,) = await self.client.get_signature_statuses([signature])
        if status is not None:
            if status.failed or commitment.satisfied_by(status.confirmation_status):
                return status
            log.warning("submission_timeout", confirmation_status=status.confirmation_status)
            raise SubmissionError(
                f"Transaction landed but is still {status.confirmation_status}, short of {commitment.value}",
                signature=signature,
                nonce_account=tx.nonce_account,
            )

        if account.nonce != tx.pinned_nonce:
            log.info("submission_rejected", reason="stale_nonce", observed_nonce=account.nonce)
            raise RejectedNoAdvance(
                f"Pinned nonce {tx.pinned_nonce} is stale (ledger holds {account.nonce})",
                nonce_account=tx.nonce_account,
                reason="stale_nonce",
            )
        if account.authority != tx.nonce_authority:
            log.info("submission_rejected", reason="authority_mismatch", authority=account.authority)
            raise RejectedNoAdvance(
                f"Advance signed by {tx.nonce_authority} but the nonce authority is {account.authority}",
                nonce_account=tx.nonce_account,
                reason="authority_mismatch",
            )

        log.warning("submission_timeout", observed_nonce=account.nonce)
        raise SubmissionError(
            "Transaction confirmation timed out; nonce unchanged, outcome unknown",
            signature=signature,
            nonce_account=tx.nonce_account,
            observed_nonce=account.nonce,
        )

    async def check_replayable(self, data: Union[bytes, str]) -> bool:
        """True when the stored transaction's pinned nonce and authority still match the ledger."""
        tx = codec.thaw_text(data) if isinstance(data, str) else codec.thaw(data)
        account = await self.manager.fetch(tx.nonce_account)
        return account.nonce == tx.pinned_nonce and account.authority == tx.nonce_authority
