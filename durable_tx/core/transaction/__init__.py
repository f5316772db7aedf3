"""
Durable transaction construction and encoding.

- models: DurableTransaction over a compiled solders Transaction
- system_program: address-string wrappers for the system instructions nonce accounts need
- codec: wire bytes <-> DurableTransaction, base58 text transport
- builder: DurableTransactionBuilder (advance at index 0, signing)
"""

from . import models, system_program, codec
from .builder import DurableTransactionBuilder

__all__ = ["models", "system_program", "codec", "DurableTransactionBuilder"]
