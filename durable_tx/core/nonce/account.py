"""Nonce account storage decoding."""

import struct
from dataclasses import dataclass
from typing import Optional

from ..keys import base58_encode
from ..transaction.system_program import NONCE_ACCOUNT_LENGTH, SYSTEM_PROGRAM_ID


NONCE_VERSION_CURRENT = 1
NONCE_STATE_INITIALIZED = 1

_LAYOUT = struct.Struct("<II32s32sQ")


class NonceDecodeError(ValueError):
    """Account data is not an initialized nonce account."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


@dataclass(frozen=True)
class NonceAccount:
    """Decoded state of an on-ledger nonce account."""
    address: str
    authority: str
    nonce: str
    lamports_per_signature: int
    lamports: int = 0

    @classmethod
    def from_account_data(
        cls,
        address: str,
        data: bytes,
        owner: Optional[str] = SYSTEM_PROGRAM_ID,
        lamports: int = 0,
    ) -> "NonceAccount":
        if owner != SYSTEM_PROGRAM_ID:
            raise NonceDecodeError("wrong_owner")
        if len(data) != NONCE_ACCOUNT_LENGTH:
            raise NonceDecodeError("wrong_size")

        _version, state, authority, nonce, lamports_per_signature = _LAYOUT.unpack(data)
        if state != NONCE_STATE_INITIALIZED:
            raise NonceDecodeError("uninitialized")

        return cls(
            address=address,
            authority=base58_encode(authority),
            nonce=base58_encode(nonce),
            lamports_per_signature=lamports_per_signature,
            lamports=lamports,
        )
