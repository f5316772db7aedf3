"""
Durable transaction value type.

A DurableTransaction wraps a legacy solders Transaction whose
recent-blockhash slot holds a nonce account value. The compiled message is
the single source of truth: fee payer, pinned nonce, instructions and signer
slots are all read back from it, so a transaction and its thawed copy agree
field for field and serialize to the same bytes.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction
from solders.message import Message, MessageHeader
from solders.signature import Signature
from solders.transaction import Transaction

from ..errors import SigningError
from ..keys import Keypair, to_pubkey


def is_signer_index(header: MessageHeader, index: int) -> bool:
    return index < header.num_required_signatures


def is_writable_index(header: MessageHeader, key_count: int, index: int) -> bool:
    if index < header.num_required_signatures:
        return index < header.num_required_signatures - header.num_readonly_signed_accounts
    return index < key_count - header.num_readonly_unsigned_accounts


def decompile(message: Message) -> List[Instruction]:
    """Rebuild instructions from a compiled message; account flags come from the header."""
    keys = message.account_keys
    header = message.header
    instructions = []
    for compiled in message.instructions:
        accounts = [
            AccountMeta(keys[index], is_signer_index(header, index), is_writable_index(header, len(keys), index))
            for index in compiled.accounts
        ]
        instructions.append(Instruction(keys[compiled.program_id_index], bytes(compiled.data), accounts))
    return instructions


@dataclass
class DurableTransaction:
    """
    A transaction whose recent-blockhash slot holds a nonce account value.

    Instruction 0 advances the pinned nonce. Signature slots follow the
    compiled signer order; an unsigned slot holds ``Signature.default()``.
    """

    transaction: Transaction

    @classmethod
    def compile(cls, fee_payer: str, pinned_nonce: str, instructions: Sequence[Instruction]) -> "DurableTransaction":
        message = Message.new_with_blockhash(list(instructions), to_pubkey(fee_payer), Hash.from_string(pinned_nonce))
        return cls(Transaction.new_unsigned(message))

    @property
    def message(self) -> Message:
        return self.transaction.message

    def message_bytes(self) -> bytes:
        return bytes(self.transaction.message)

    @property
    def fee_payer(self) -> str:
        return str(self.message.account_keys[0])

    @property
    def pinned_nonce(self) -> str:
        return str(self.message.recent_blockhash)

    @property
    def instructions(self) -> List[Instruction]:
        return decompile(self.message)

    @property
    def required_signers(self) -> Tuple[str, ...]:
        message = self.message
        return tuple(str(key) for key in message.account_keys[: message.header.num_required_signatures])

    @property
    def signatures(self) -> Dict[str, Optional[bytes]]:
        """Signature bytes per required signer, None for an unsigned slot."""
        placeholder = Signature.default()
        return {
            signer: (None if signature == placeholder else bytes(signature))
            for signer, signature in zip(self.required_signers, self.transaction.signatures)
        }

    @property
    def missing_signers(self) -> List[str]:
        return [signer for signer, signature in self.signatures.items() if signature is None]

    @property
    def is_fully_signed(self) -> bool:
        return not self.missing_signers

    def _advance_account(self, position: int) -> str:
        message = self.message
        return str(message.account_keys[message.instructions[0].accounts[position]])

    @property
    def nonce_account(self) -> str:
        return self._advance_account(0)

    @property
    def nonce_authority(self) -> str:
        return self._advance_account(2)

    @property
    def signature(self) -> Optional[str]:
        """The fee payer's signature in base58, which is the transaction id."""
        signature = self.transaction.signatures[0]
        return None if signature == Signature.default() else str(signature)

    def sign(self, signers: Sequence[Keypair]) -> None:
        """Fill the slots of ``signers``; every signer must be a required one."""
        required = set(self.required_signers)
        for signer in signers:
            if signer.public_key not in required:
                raise SigningError(f"{signer.public_key} is not a required signer of this transaction")
        if signers:
            self.transaction.partial_sign([signer.signer for signer in signers], self.message.recent_blockhash)
