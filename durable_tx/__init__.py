"""
Durable (offline-signable) Solana transactions.

Build a transaction pinned to a nonce account value, store it for as long
as needed, and submit it later exactly once:

    from durable_tx import (
        LedgerClient,
        NonceAccountManager,
        DurableTransactionBuilder,
        Submitter,
        SubmitOptions,
        codec,
    )

    async with LedgerClient() as client:
        manager = NonceAccountManager(client)
        nonce_account = await manager.create(payer, nonce_keypair, payer.public_key)

        builder = DurableTransactionBuilder()
        tx = builder.build(payer.public_key, nonce_account, payer.public_key, [payload])
        builder.sign(tx, [payer])
        stored = codec.freeze_text(tx, require_all_signatures=False)

        # ... any time later ...
        result = await Submitter(client, manager).submit(stored, SubmitOptions(skip_preflight=True))
"""

from solders.instruction import AccountMeta, Instruction

from .core.errors import (
    AccountNotFound,
    AuthorizationFailed,
    ConfirmedFailedPayload,
    CreationFailed,
    DurableTxError,
    LedgerRpcError,
    MalformedEncoding,
    RejectedNoAdvance,
    SigningError,
    SubmissionError,
)
from .core.keys import Keypair, make_keypairs
from .core.transaction import codec
from .core.transaction.builder import DurableTransactionBuilder
from .core.transaction.models import DurableTransaction
from .core.nonce.account import NonceAccount
from .core.nonce.manager import NonceAccountManager
from .core.execution.submitter import (
    SubmissionResult,
    SubmissionState,
    SubmitOptions,
    Submitter,
)
from .providers.solana_rpc import Commitment, LedgerClient, SolanaRpcConfig
from .logging_config import setup_logging

__all__ = [
    # Errors
    "AccountNotFound",
    "AuthorizationFailed",
    "ConfirmedFailedPayload",
    "CreationFailed",
    "DurableTxError",
    "LedgerRpcError",
    "MalformedEncoding",
    "RejectedNoAdvance",
    "SigningError",
    "SubmissionError",
    # Keys
    "Keypair",
    "make_keypairs",
    # Transactions
    "AccountMeta",
    "DurableTransaction",
    "DurableTransactionBuilder",
    "Instruction",
    "codec",
    # Nonce accounts
    "NonceAccount",
    "NonceAccountManager",
    # Submission
    "SubmissionResult",
    "SubmissionState",
    "SubmitOptions",
    "Submitter",
    # Ledger client
    "Commitment",
    "LedgerClient",
    "SolanaRpcConfig",
    # Logging
    "setup_logging",
]
