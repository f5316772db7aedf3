"""
Wire codec for durable transactions.

freeze/thaw convert between a DurableTransaction and the legacy Solana wire
format; solders does the byte layout and this module adds the checks that
make a blob durable. encode/decode wrap the raw bytes in base58 for text
channels and carry no meaning of their own.
"""

from __future__ import annotations

from typing import List, Tuple

from solders.errors import BincodeError
from solders.signature import Signature
from solders.transaction import Transaction

from ..errors import MalformedEncoding, SigningError
from ..keys import base58_decode, base58_encode, verify_signature
from .models import DurableTransaction, decompile
from .system_program import is_nonce_advance


# Written in place of a signature that has not been produced yet.
SIGNATURE_PLACEHOLDER = bytes(Signature.default())

PACKET_DATA_SIZE = 1232


def freeze(transaction: DurableTransaction, require_all_signatures: bool = False) -> bytes:
    """
    Serialize a transaction to wire bytes.

    Unsigned slots are written as the zero placeholder unless
    ``require_all_signatures`` is set, so partially-signed transactions can
    be stored. Signatures that are present are always verified.
    """
    message_bytes = transaction.message_bytes()
    for signer, signature in transaction.signatures.items():
        if signature is None:
            if require_all_signatures:
                raise SigningError(f"Missing signature for {signer}")
            continue
        if not verify_signature(signer, message_bytes, signature):
            raise SigningError(f"Signature verification failed for {signer}")

    wire = bytes(transaction.transaction)
    if len(wire) > PACKET_DATA_SIZE:
        raise MalformedEncoding(f"Transaction is {len(wire)} bytes, limit is {PACKET_DATA_SIZE}")
    return wire


def thaw(data: bytes) -> DurableTransaction:
    """Parse wire bytes back into a DurableTransaction, keeping the message exactly as compiled."""
    data = bytes(data)
    try:
        tx = Transaction.from_bytes(data)
    except (BincodeError, ValueError) as exc:
        raise MalformedEncoding(f"Undecodable transaction: {exc}") from exc
    if bytes(tx) != data:
        raise MalformedEncoding("Transaction has trailing or non-canonical bytes")

    message = tx.message
    header = message.header
    key_count = len(message.account_keys)
    if len(tx.signatures) != header.num_required_signatures:
        raise MalformedEncoding(
            f"Signature count {len(tx.signatures)} does not match header ({header.num_required_signatures})"
        )
    if (
        header.num_required_signatures == 0
        or header.num_readonly_signed_accounts >= header.num_required_signatures
        or key_count < header.num_required_signatures + header.num_readonly_unsigned_accounts
    ):
        raise MalformedEncoding("Message header is inconsistent with the account list")

    for compiled in message.instructions:
        if compiled.program_id_index >= key_count or any(index >= key_count for index in compiled.accounts):
            raise MalformedEncoding("Instruction references an account index out of range")

    instructions = decompile(message)
    if not instructions or not is_nonce_advance(instructions[0]):
        raise MalformedEncoding("Instruction 0 is not a nonce advance")
    return DurableTransaction(tx)


def encode(data: bytes) -> str:
    return base58_encode(data)


def decode(text: str) -> bytes:
    try:
        return base58_decode(text.strip())
    except ValueError as exc:
        raise MalformedEncoding(f"Invalid base58 transaction text: {exc}") from exc


def freeze_text(transaction: DurableTransaction, require_all_signatures: bool = False) -> str:
    return encode(freeze(transaction, require_all_signatures=require_all_signatures))


def thaw_text(text: str) -> DurableTransaction:
    return thaw(decode(text))


def verify_signatures(transaction: DurableTransaction) -> Tuple[List[str], List[str]]:
    """Split present signers into (valid, invalid) against the message bytes."""
    message_bytes = transaction.message_bytes()
    valid: List[str] = []
    invalid: List[str] = []
    for signer, signature in transaction.signatures.items():
        if signature is None:
            continue
        if verify_signature(signer, message_bytes, signature):
            valid.append(signer)
        else:
            invalid.append(signer)
    return valid, invalid
