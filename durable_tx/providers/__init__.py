from .solana_rpc import (
    AccountInfo,
    Commitment,
    LedgerClient,
    SignatureStatus,
    SolanaRpcConfig,
)

__all__ = [
    "AccountInfo",
    "Commitment",
    "LedgerClient",
    "SignatureStatus",
    "SolanaRpcConfig",
]
