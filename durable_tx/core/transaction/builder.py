"""
Durable transaction builder.

Builds transactions keyed to a captured nonce value instead of a recent
blockhash. Pure construction: nothing here talks to the ledger.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Iterable, List, Sequence

from solders.instruction import Instruction

from ..keys import Keypair, to_pubkey
from .models import DurableTransaction
from .system_program import is_nonce_advance, nonce_advance, transfer

if TYPE_CHECKING:
    from ..nonce.account import NonceAccount


logger = logging.getLogger(__name__)


class DurableTransactionBuilder:
    """
    Builds and signs durable transactions.

    The ledger only accepts a nonce in place of a recent blockhash when the
    advance instruction for that nonce account is instruction 0, so the
    builder always puts it there and appends the payload after it.

    Usage:
        builder = DurableTransactionBuilder()
        tx = builder.build(
            fee_payer=payer.public_key,
            nonce_account=nonce_account,
            nonce_authority=payer.public_key,
            payload_instructions=[builder.transfer(payer.public_key, recipient, 100_000_000)],
        )
        builder.sign(tx, [payer])
    """

    def build(
        self,
        fee_payer: str,
        nonce_account: NonceAccount,
        nonce_authority: str,
        payload_instructions: Sequence[Instruction],
    ) -> DurableTransaction:
        """
        Assemble an unsigned durable transaction.

        Args:
            fee_payer: Public key paying network fees (always a signer)
            nonce_account: Snapshot whose nonce value is pinned
            nonce_authority: Public key that will sign the advance instruction
            payload_instructions: Instructions to run after the advance

        Returns:
            DurableTransaction with an empty signature slot per required signer
        """
        pinned_account = to_pubkey(nonce_account.address)
        for ix in payload_instructions:
            if is_nonce_advance(ix) and ix.accounts[0].pubkey == pinned_account:
                raise ValueError("Payload must not advance the pinned nonce account again")

        instructions: List[Instruction] = [nonce_advance(nonce_account.address, nonce_authority)]
        instructions.extend(payload_instructions)

        tx = DurableTransaction.compile(fee_payer, nonce_account.nonce, instructions)

        logger.debug(
            "Built durable transaction nonce_account=%s pinned_nonce=%s instructions=%d",
            nonce_account.address,
            nonce_account.nonce,
            len(instructions),
        )
        return tx

    def sign(self, transaction: DurableTransaction, signers: Iterable[Keypair]) -> DurableTransaction:
        """
        Add signatures from the given signers over the compiled message.

        Signing is idempotent per signer and does not require the full
        signer set. The pinned nonce is not checked against the ledger.
        """
        transaction.sign(list(signers))

        logger.debug(
            "Signed durable transaction signature=%s missing=%s",
            transaction.signature,
            transaction.missing_signers,
        )
        return transaction

    @staticmethod
    def transfer(from_pubkey: str, to_pubkey: str, lamports: int) -> Instruction:
        return transfer(from_pubkey, to_pubkey, lamports)
