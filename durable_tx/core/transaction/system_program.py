"""
System program instructions used by durable transactions.

Address-string wrappers over ``solders.system_program`` for the instructions
needed to create, advance and reauthorize a nonce account, plus a plain
lamport transfer for payloads.
"""

from solders.instruction import Instruction
from solders.pubkey import Pubkey
from solders.system_program import (
    ID,
    AdvanceNonceAccountParams,
    AuthorizeNonceAccountParams,
    CreateAccountParams,
    InitializeNonceAccountParams,
    TransferParams,
    advance_nonce_account,
    authorize_nonce_account,
    create_account as _create_account,
    initialize_nonce_account,
    transfer as _transfer,
)

from .. import keys


SYSTEM_PROGRAM_ID = str(ID)

# u32 version + u32 state + authority + durable nonce + u64 lamports per signature
NONCE_ACCOUNT_LENGTH = 80

# Instruction data of AdvanceNonceAccount; it carries no arguments.
_ADVANCE_NONCE_DATA = bytes(
    advance_nonce_account(
        AdvanceNonceAccountParams(nonce_pubkey=Pubkey.default(), authorized_pubkey=Pubkey.default())
    ).data
)


def create_account(
    from_pubkey: str,
    new_account_pubkey: str,
    lamports: int,
    space: int,
    owner: str = SYSTEM_PROGRAM_ID,
) -> Instruction:
    return _create_account(
        CreateAccountParams(
            from_pubkey=keys.to_pubkey(from_pubkey),
            to_pubkey=keys.to_pubkey(new_account_pubkey),
            lamports=lamports,
            space=space,
            owner=keys.to_pubkey(owner),
        )
    )


def transfer(from_pubkey: str, to_pubkey: str, lamports: int) -> Instruction:
    return _transfer(
        TransferParams(from_pubkey=keys.to_pubkey(from_pubkey), to_pubkey=keys.to_pubkey(to_pubkey), lamports=lamports)
    )


def nonce_initialize(nonce_pubkey: str, authorized_pubkey: str) -> Instruction:
    return initialize_nonce_account(
        InitializeNonceAccountParams(nonce_pubkey=keys.to_pubkey(nonce_pubkey), authority=keys.to_pubkey(authorized_pubkey))
    )


def nonce_advance(nonce_pubkey: str, authorized_pubkey: str) -> Instruction:
    return advance_nonce_account(
        AdvanceNonceAccountParams(nonce_pubkey=keys.to_pubkey(nonce_pubkey), authorized_pubkey=keys.to_pubkey(authorized_pubkey))
    )


def nonce_authorize(nonce_pubkey: str, authorized_pubkey: str, new_authorized_pubkey: str) -> Instruction:
    return authorize_nonce_account(
        AuthorizeNonceAccountParams(
            nonce_pubkey=keys.to_pubkey(nonce_pubkey),
            authorized_pubkey=keys.to_pubkey(authorized_pubkey),
            new_authority=keys.to_pubkey(new_authorized_pubkey),
        )
    )


def is_nonce_advance(ix: Instruction) -> bool:
    """True for a system AdvanceNonceAccount carrying its nonce, sysvar and authority accounts."""
    return (
        ix.program_id == ID
        and bytes(ix.data).startswith(_ADVANCE_NONCE_DATA)
        and len(ix.accounts) >= 3
    )
