"""
Error Classification

Defines the error taxonomy for durable transactions.

Errors carry an ErrorContext describing whether resubmitting the same
serialized transaction is safe. The two submission outcomes have opposite
replay implications:

- RejectedNoAdvance: the advance instruction never ran, the nonce is
  unchanged and the stored transaction can be submitted again.
- ConfirmedFailedPayload: the nonce advanced, the payload failed and the
  stored transaction is permanently spent.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCategory(str, Enum):
    """Categories of errors for caller decisions."""

    CREATION = "creation"                   # Nonce account could not be created
    NOT_FOUND = "not_found"                 # Address holds no nonce account
    AUTHORIZATION = "authorization"         # Nonce authority mismatch
    ENCODING = "encoding"                   # Wire/text encoding is malformed
    SIGNING = "signing"                     # Signature missing or invalid
    REJECTED = "rejected"                   # Advance failed, nonce unchanged
    PAYLOAD_FAILED = "payload_failed"       # Nonce advanced, payload failed
    NETWORK = "network"                     # Transport failure or timeout
    RPC = "rpc"                             # JSON-RPC error object
    UNKNOWN = "unknown"


@dataclass
class ErrorContext:
    """Additional context about an error."""

    category: ErrorCategory = ErrorCategory.UNKNOWN
    retry_safe: Optional[bool] = None
    suggested_action: Optional[str] = None
    signature: Optional[str] = None
    nonce_account: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


class DurableTxError(Exception):
    """Base class for all durable transaction errors."""

    category = ErrorCategory.UNKNOWN

    def __init__(self, message: str, context: Optional[ErrorContext] = None):
        super().__init__(message)
        self.message = message
        self.context = context or ErrorContext(category=self.category)


class CreationFailed(DurableTxError):
    """The allocate + initialize transaction was rejected."""

    category = ErrorCategory.CREATION

    def __init__(self, message: str, nonce_account: Optional[str] = None, reason: Optional[str] = None):
        super().__init__(
            message,
            ErrorContext(
                category=self.category,
                nonce_account=nonce_account,
                suggested_action="Check the funding balance and that the nonce address is unused",
                details={"reason": reason} if reason else {},
            ),
        )


class AccountNotFound(DurableTxError):
    """The address holds no account, or the account is not a nonce account."""

    category = ErrorCategory.NOT_FOUND

    def __init__(self, address: str, reason: str = "not_found"):
        super().__init__(
            f"No nonce account at {address} ({reason})",
            ErrorContext(category=self.category, nonce_account=address, details={"reason": reason}),
        )
        self.address = address
        self.reason = reason


class AuthorizationFailed(DurableTxError):
    """The signer is not the nonce account's stored authority."""

    category = ErrorCategory.AUTHORIZATION

    def __init__(
        self,
        message: str,
        nonce_account: Optional[str] = None,
        expected: Optional[str] = None,
        actual: Optional[str] = None,
    ):
        super().__init__(
            message,
            ErrorContext(
                category=self.category,
                nonce_account=nonce_account,
                details={"expected_authority": expected, "signer": actual},
            ),
        )


class MalformedEncoding(DurableTxError):
    """Serialized bytes or text do not decode to a durable transaction."""

    category = ErrorCategory.ENCODING


class SigningError(DurableTxError):
    """A required signature is missing, invalid, or from a non-required key."""

    category = ErrorCategory.SIGNING


class RejectedNoAdvance(DurableTxError):
    """
    The advance instruction failed and the whole transaction was rejected.

    The nonce value on ledger did not change, so the same serialized
    transaction stays replayable until the nonce advances by other means.
    """

    category = ErrorCategory.REJECTED

    def __init__(
        self,
        message: str,
        nonce_account: Optional[str] = None,
        reason: Optional[str] = None,
        ledger_error: Any = None,
        preflight: bool = False,
    ):
        super().__init__(
            message,
            ErrorContext(
                category=self.category,
                retry_safe=True,
                nonce_account=nonce_account,
                suggested_action="Fix the cause (nonce, authority) and resubmit the same transaction",
                details={"reason": reason, "ledger_error": ledger_error, "preflight": preflight},
            ),
        )
        self.reason = reason
        self.ledger_error = ledger_error
        self.preflight = preflight


class ConfirmedFailedPayload(DurableTxError):
    """
    The nonce advanced but a payload instruction failed.

    The transaction landed and is permanently spent; it can never be
    submitted again.
    """

    category = ErrorCategory.PAYLOAD_FAILED

    def __init__(
        self,
        message: str,
        signature: str,
        instruction_index: Optional[int] = None,
        nonce_account: Optional[str] = None,
        ledger_error: Any = None,
    ):
        super().__init__(
            message,
            ErrorContext(
                category=self.category,
                retry_safe=False,
                signature=signature,
                nonce_account=nonce_account,
                suggested_action="Build and sign a new transaction against the current nonce",
                details={"instruction_index": instruction_index, "ledger_error": ledger_error},
            ),
        )
        self.signature = signature
        self.instruction_index = instruction_index
        self.ledger_error = ledger_error


class SubmissionError(DurableTxError):
    """
    Transport failure or confirmation timeout.

    The ledger state is unknown from the caller's side: re-fetch the nonce
    account before deciding whether to resubmit.
    """

    category = ErrorCategory.NETWORK

    def __init__(
        self,
        message: str,
        signature: Optional[str] = None,
        nonce_account: Optional[str] = None,
        observed_nonce: Optional[str] = None,
    ):
        super().__init__(
            message,
            ErrorContext(
                category=self.category,
                signature=signature,
                nonce_account=nonce_account,
                suggested_action="Re-fetch the nonce account before resubmitting",
                details={"observed_nonce": observed_nonce} if observed_nonce else {},
            ),
        )
        self.signature = signature
        self.observed_nonce = observed_nonce


class LedgerRpcError(DurableTxError):
    """The ledger answered with a JSON-RPC error object."""

    category = ErrorCategory.RPC

    def __init__(self, method: str, code: Optional[int], message: str, data: Any = None):
        super().__init__(
            f"RPC error from {method}: {message}",
            ErrorContext(category=self.category, details={"code": code, "data": data}),
        )
        self.method = method
        self.code = code
        self.data = data

    @property
    def transaction_error(self) -> Any:
        """The ``err`` value of a preflight simulation failure, if present."""
        if isinstance(self.data, dict):
            return self.data.get("err")
        return None
