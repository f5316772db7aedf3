"""
Key pairs and base58 helpers for Solana public keys and signatures.

Addresses travel through the package as base58 ``str`` values; solders
types are produced where messages are compiled and signed.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

from nacl.exceptions import BadSignatureError
from nacl.signing import VerifyKey
from solders.keypair import Keypair as SoldersKeypair
from solders.pubkey import Pubkey


_BASE58_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
_BASE58_INDEX = {char: index for index, char in enumerate(_BASE58_ALPHABET)}

PUBLIC_KEY_LENGTH = 32
SIGNATURE_LENGTH = 64


def base58_decode(value: str) -> bytes:
    if not value:
        return b""
    num = 0
    for char in value:
        if char not in _BASE58_INDEX:
            raise ValueError("Invalid base58 character")
        num = num * 58 + _BASE58_INDEX[char]
    combined = num.to_bytes((num.bit_length() + 7) // 8, "big") if num else b""
    pad = len(value) - len(value.lstrip("1"))
    return b"\x00" * pad + combined


def base58_encode(data: bytes) -> str:
    if not data:
        return ""
    num = int.from_bytes(data, "big")
    encoded = ""
    while num > 0:
        num, rem = divmod(num, 58)
        encoded = _BASE58_ALPHABET[rem] + encoded
    pad = len(data) - len(data.lstrip(b"\x00"))
    return "1" * pad + encoded


@lru_cache(maxsize=1024)
def public_key_bytes(address: str) -> bytes:
    """Decode a base58 public key, rejecting anything that is not 32 bytes."""
    raw = base58_decode(address)
    if len(raw) != PUBLIC_KEY_LENGTH:
        raise ValueError(f"Invalid public key length for {address!r}: {len(raw)}")
    return raw


def to_pubkey(address: str) -> Pubkey:
    return Pubkey.from_bytes(public_key_bytes(address))


def is_valid_public_key(address: str) -> bool:
    try:
        public_key_bytes(address)
    except ValueError:
        return False
    return True


def verify_signature(address: str, message: bytes, signature: bytes) -> bool:
    if len(signature) != SIGNATURE_LENGTH:
        return False
    verify_key = VerifyKey(public_key_bytes(address))
    try:
        verify_key.verify(message, signature)
    except BadSignatureError:
        return False
    return True


@dataclass(frozen=True)
class Keypair:
    """An ed25519 signer with its base58 public key."""

    signer: SoldersKeypair

    @classmethod
    def generate(cls) -> "Keypair":
        return cls(SoldersKeypair())

    @classmethod
    def from_seed(cls, seed: bytes) -> "Keypair":
        if len(seed) != 32:
            raise ValueError("Seed must be 32 bytes")
        return cls(SoldersKeypair.from_seed(bytes(seed)))

    @classmethod
    def from_secret_key(cls, secret: bytes) -> "Keypair":
        """Load the 64-byte ``seed || public key`` form used by Solana keypair files."""
        if len(secret) != 64:
            raise ValueError("Secret key must be 64 bytes")
        keypair = cls.from_seed(secret[:32])
        if keypair.public_key_bytes != bytes(secret[32:]):
            raise ValueError("Secret key does not match its public key")
        return keypair

    @property
    def pubkey(self) -> Pubkey:
        return self.signer.pubkey()

    @property
    def public_key_bytes(self) -> bytes:
        return bytes(self.signer.pubkey())

    @property
    def public_key(self) -> str:
        return str(self.signer.pubkey())

    @property
    def secret_key(self) -> bytes:
        return bytes(self.signer)

    def sign(self, message: bytes) -> bytes:
        return bytes(self.signer.sign_message(message))


def make_keypairs(count: int) -> list[Keypair]:
    return [Keypair.generate() for _ in range(count)]
