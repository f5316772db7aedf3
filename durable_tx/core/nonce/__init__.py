from .account import NonceAccount, NonceDecodeError
from .manager import NonceAccountManager

__all__ = ["NonceAccount", "NonceDecodeError", "NonceAccountManager"]
