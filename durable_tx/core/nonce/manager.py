"""
Nonce account management.

Creates and initializes nonce accounts, reads their current state, and
rotates or advances them. Every call goes through the LedgerClient handed to
the manager; there is no shared connection.
"""

import asyncio
import logging
import time
from typing import Optional

from solders.instruction import Instruction

from ...providers.solana_rpc import LedgerClient
from ..errors import (
    AccountNotFound,
    AuthorizationFailed,
    CreationFailed,
    LedgerRpcError,
    SubmissionError,
)
from ..keys import Keypair
from ..transaction import codec
from ..transaction.models import DurableTransaction
from ..transaction.system_program import (
    NONCE_ACCOUNT_LENGTH,
    create_account,
    nonce_advance,
    nonce_authorize,
    nonce_initialize,
)
from .account import NonceAccount, NonceDecodeError


logger = logging.getLogger(__name__)


class NonceAccountManager:
    """
    Manages the lifecycle of nonce accounts.

    Handles:
    - Allocate + initialize in one atomic transaction
    - Fetch and decode current state
    - Authority rotation
    - Advancing a nonce outside of any durable transaction
    """

    def __init__(
        self,
        client: LedgerClient,
        confirm_timeout_s: float = 60.0,
        poll_interval_s: float = 1.0,
    ):
        self.client = client
        self.confirm_timeout_s = confirm_timeout_s
        self.poll_interval_s = poll_interval_s

    async def _send_with_blockhash(
        self,
        fee_payer: Keypair,
        instructions: list[Instruction],
        signers: list[Keypair],
    ) -> str:
        """Sign with a fresh recent blockhash, send, and wait for success; returns the signature."""
        blockhash = await self.client.get_latest_blockhash()
        tx = DurableTransaction.compile(fee_payer.public_key, blockhash, instructions)
        unique = {signer.public_key: signer for signer in [fee_payer, *signers]}
        tx.sign(list(unique.values()))

        status = await self.client.send_and_confirm(
            codec.freeze(tx, require_all_signatures=True),
            timeout_s=self.confirm_timeout_s,
            poll_interval_s=self.poll_interval_s,
        )
        if status.failed:
            raise LedgerRpcError("sendTransaction", None, f"Transaction failed: {status.err}", {"err": status.err})
        return status.signature

    async def create(
        self,
        funding_account: Keypair,
        nonce_keypair: Keypair,
        authority: str,
    ) -> NonceAccount:
        """
        Allocate, fund and initialize a nonce account.

        Args:
            funding_account: Pays rent and fees; signs
            nonce_keypair: Key of the new account; signs
            authority: Public key allowed to advance / reauthorize the nonce

        Returns:
            The freshly fetched NonceAccount
        """
        address = nonce_keypair.public_key
        try:
            lamports = await self.client.get_minimum_balance_for_rent_exemption(NONCE_ACCOUNT_LENGTH)
            signature = await self._send_with_blockhash(
                funding_account,
                [
                    create_account(
                        from_pubkey=funding_account.public_key,
                        new_account_pubkey=address,
                        lamports=lamports,
                        space=NONCE_ACCOUNT_LENGTH,
                    ),
                    nonce_initialize(address, authority),
                ],
                [nonce_keypair],
            )
        except LedgerRpcError as e:
            raise CreationFailed(f"Nonce account {address} was not created: {e.message}", address, str(e.data)) from e

        logger.info("Created nonce account %s authority=%s signature=%s", address, authority, signature)
        return await self.fetch(address)

    async def fetch(self, address: str) -> NonceAccount:
        """Read and decode the nonce account at ``address``."""
        info = await self.client.get_account_info(address)
        if info is None:
            raise AccountNotFound(address)
        try:
            return NonceAccount.from_account_data(address, info.data, owner=info.owner, lamports=info.lamports)
        except NonceDecodeError as e:
            raise AccountNotFound(address, reason=e.reason) from e

    async def _require_authority(self, address: str, authority: Keypair) -> NonceAccount:
        account = await self.fetch(address)
        if account.authority != authority.public_key:
            raise AuthorizationFailed(
                f"{authority.public_key} is not the authority of nonce account {address}",
                nonce_account=address,
                expected=account.authority,
                actual=authority.public_key,
            )
        return account

    async def reauthorize(
        self,
        address: str,
        current_authority: Keypair,
        new_authority: str,
        fee_payer: Optional[Keypair] = None,
    ) -> str:
        """
        Hand the nonce account over to ``new_authority``.

        Returns:
            Signature of the confirmed authorize transaction
        """
        await self._require_authority(address, current_authority)
        payer = fee_payer or current_authority
        try:
            signature = await self._send_with_blockhash(
                payer,
                [nonce_authorize(address, current_authority.public_key, new_authority)],
                [current_authority],
            )
        except LedgerRpcError as e:
            raise AuthorizationFailed(
                f"Authorize rejected for nonce account {address}: {e.message}",
                nonce_account=address,
                actual=current_authority.public_key,
            ) from e

        logger.info("Reauthorized nonce account %s to %s signature=%s", address, new_authority, signature)
        return signature

    async def advance(
        self,
        address: str,
        authority: Keypair,
        fee_payer: Optional[Keypair] = None,
    ) -> str:
        """
        Advance the nonce with a plain (blockhash) transaction.

        Invalidates every stored durable transaction pinned to the current value.
        """
        await self._require_authority(address, authority)
        payer = fee_payer or authority
        try:
            signature = await self._send_with_blockhash(
                payer,
                [nonce_advance(address, authority.public_key)],
                [authority],
            )
        except LedgerRpcError as e:
            raise SubmissionError(f"Advance of nonce account {address} failed: {e.message}", nonce_account=address) from e

        logger.info("Advanced nonce account %s signature=%s", address, signature)
        return signature

    async def wait_for_change(
        self,
        address: str,
        previous_nonce: str,
        timeout_s: float = 30.0,
        poll_interval_s: float = 0.5,
    ) -> NonceAccount:
        """Poll until the stored nonce differs from ``previous_nonce``."""
        deadline = time.monotonic() + timeout_s
        while True:
            account = await self.fetch(address)
            if account.nonce != previous_nonce:
                return account
            if time.monotonic() >= deadline:
                raise SubmissionError(
                    f"Nonce of {address} did not change within {timeout_s}s",
                    nonce_account=address,
                    observed_nonce=account.nonce,
                )
            await asyncio.sleep(poll_interval_s)
