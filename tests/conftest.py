"""
Shared fixtures and an in-memory ledger that speaks the JSON-RPC subset the
client uses.

The simulator parses wire transactions on its own (it does not reuse the
codec under test) and applies system-program semantics, including the
durable-nonce rules: the nonce is checked when the transaction loads, and
once the advance instruction has run the nonce stays advanced even if a
later instruction fails.
"""

import base64
import hashlib
import json
import os
import struct
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import httpx
import pytest
import pytest_asyncio
from nacl.exceptions import BadSignatureError
from nacl.signing import VerifyKey
from solders.instruction import CompiledInstruction
from solders.message import Message
from solders.transaction import Transaction

from durable_tx.core.keys import Keypair, base58_decode, base58_encode
from durable_tx.core.nonce.manager import NonceAccountManager
from durable_tx.core.transaction.builder import DurableTransactionBuilder
from durable_tx.core.transaction.models import DurableTransaction
from durable_tx.providers.solana_rpc import LedgerClient, SolanaRpcConfig


SYSTEM_PROGRAM = bytes(32)
NONCE_LENGTH = 80
RENT_EXEMPT_NONCE = 1_447_680
FEE_PER_SIGNATURE = 5_000
SOL = 1_000_000_000


@dataclass
class SimAccount:
    lamports: int
    owner: bytes = SYSTEM_PROGRAM
    data: bytes = b""


@dataclass
class ParsedTx:
    signatures: List[bytes]
    message: bytes
    num_required: int
    num_readonly_signed: int
    num_readonly_unsigned: int
    keys: List[bytes]
    recent_blockhash: bytes
    instructions: List[Tuple[int, List[int], bytes]] = field(default_factory=list)

    def is_signer(self, index: int) -> bool:
        return index < self.num_required


class InstructionFailure(Exception):
    def __init__(self, detail: Any):
        super().__init__(str(detail))
        self.detail = detail


def _read_length(data: bytes, offset: int) -> Tuple[int, int]:
    value = 0
    shift = 0
    while True:
        byte = data[offset]
        offset += 1
        value |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return value, offset
        shift += 7


def parse_wire(raw: bytes) -> ParsedTx:
    count, offset = _read_length(raw, 0)
    signatures = [raw[offset + 64 * i: offset + 64 * (i + 1)] for i in range(count)]
    offset += 64 * count
    message = raw[offset:]
    num_required, num_ro_signed, num_ro_unsigned = message[0], message[1], message[2]
    key_count, pos = _read_length(message, 3)
    keys = [message[pos + 32 * i: pos + 32 * (i + 1)] for i in range(key_count)]
    pos += 32 * key_count
    blockhash = message[pos: pos + 32]
    pos += 32
    ix_count, pos = _read_length(message, pos)
    instructions = []
    for _ in range(ix_count):
        program_index = message[pos]
        pos += 1
        n_accounts, pos = _read_length(message, pos)
        accounts = list(message[pos: pos + n_accounts])
        pos += n_accounts
        n_data, pos = _read_length(message, pos)
        instructions.append((program_index, accounts, message[pos: pos + n_data]))
        pos += n_data
    return ParsedTx(signatures, message, num_required, num_ro_signed, num_ro_unsigned, keys, blockhash, instructions)


class LedgerSimulator:
    """A single-node ledger holding system-owned accounts and nonce accounts."""

    def __init__(self) -> None:
        self.accounts: Dict[bytes, SimAccount] = {}
        self.statuses: Dict[str, Dict[str, Any]] = {}
        self.slot = 1
        self.blockhashes: List[bytes] = [os.urandom(32)]
        self.sent: List[Dict[str, Any]] = []
        self._nonce_counter = 0

    # -- helpers used by tests -------------------------------------------------

    def fund(self, address: str, lamports: int) -> None:
        key = base58_decode(address)
        account = self.accounts.setdefault(key, SimAccount(lamports=0))
        account.lamports += lamports

    def balance(self, address: str) -> int:
        account = self.accounts.get(base58_decode(address))
        return account.lamports if account else 0

    def put_raw_account(self, address: str, lamports: int, owner: str, data: bytes) -> None:
        self.accounts[base58_decode(address)] = SimAccount(lamports, base58_decode(owner), data)

    def nonce_of(self, address: str) -> str:
        data = self.accounts[base58_decode(address)].data
        return base58_encode(data[40:72])

    # -- JSON-RPC ----------------------------------------------------------------

    def handle(self, request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        method = payload["method"]
        params = payload.get("params", [])
        try:
            result = getattr(self, f"_rpc_{method}")(*params)
        except RpcFailure as failure:
            body = {"jsonrpc": "2.0", "id": payload["id"], "error": failure.error}
        else:
            body = {"jsonrpc": "2.0", "id": payload["id"], "result": result}
        return httpx.Response(200, json=body)

    def _context(self) -> Dict[str, Any]:
        return {"slot": self.slot}

    def _rpc_getAccountInfo(self, address: str, options: Optional[dict] = None) -> Dict[str, Any]:
        account = self.accounts.get(base58_decode(address))
        if account is None or (account.lamports == 0 and not account.data):
            return {"context": self._context(), "value": None}
        return {
            "context": self._context(),
            "value": {
                "lamports": account.lamports,
                "owner": base58_encode(account.owner),
                "data": [base64.b64encode(account.data).decode(), "base64"],
                "executable": False,
                "rentEpoch": 0,
            },
        }

    def _rpc_getBalance(self, address: str, options: Optional[dict] = None) -> Dict[str, Any]:
        return {"context": self._context(), "value": self.balance(address)}

    def _rpc_getMinimumBalanceForRentExemption(self, size: int, options: Optional[dict] = None) -> int:
        return RENT_EXEMPT_NONCE if size == NONCE_LENGTH else (size + 128) * 6_960

    def _rpc_getLatestBlockhash(self, options: Optional[dict] = None) -> Dict[str, Any]:
        return {
            "context": self._context(),
            "value": {"blockhash": base58_encode(self.blockhashes[-1]), "lastValidBlockHeight": self.slot + 150},
        }

    def _rpc_requestAirdrop(self, address: str, lamports: int, options: Optional[dict] = None) -> str:
        self.fund(address, lamports)
        signature = base58_encode(os.urandom(64))
        self._record(signature, None)
        return signature

    def _rpc_getSignatureStatuses(self, signatures: List[str], options: Optional[dict] = None) -> Dict[str, Any]:
        return {"context": self._context(), "value": [self.statuses.get(sig) for sig in signatures]}

    def _rpc_sendTransaction(self, encoded: str, options: Optional[dict] = None) -> str:
        options = options or {}
        skip_preflight = options.get("skipPreflight", False)
        tx = parse_wire(base64.b64decode(encoded))
        signature = base58_encode(tx.signatures[0])
        self.sent.append({"signature": signature, "skip_preflight": skip_preflight})

        if not self._signatures_valid(tx):
            if skip_preflight:
                return signature  # dropped by the leader
            raise RpcFailure(-32003, "Transaction signature verification failure")

        load_error = self._load_error(tx)
        if load_error is not None:
            if skip_preflight:
                return signature
            raise RpcFailure(-32002, f"Transaction simulation failed: {load_error}", {"err": load_error, "logs": []})

        committed, err = self._execute(tx)
        if err is not None and not skip_preflight:
            raise RpcFailure(-32002, f"Transaction simulation failed: {err}", {"err": err, "logs": []})

        self.accounts = committed
        self.slot += 1
        self.blockhashes.append(hashlib.sha256(self.blockhashes[-1] + b"slot").digest())
        self._record(signature, err)
        return signature

    # -- execution ---------------------------------------------------------------

    def _record(self, signature: str, err: Any) -> None:
        self.statuses[signature] = {
            "slot": self.slot,
            "confirmations": None,
            "err": err,
            "status": {"Ok": None} if err is None else {"Err": err},
            "confirmationStatus": "finalized",
        }

    def _signatures_valid(self, tx: ParsedTx) -> bool:
        if len(tx.signatures) != tx.num_required:
            return False
        for key, signature in zip(tx.keys, tx.signatures):
            try:
                VerifyKey(key).verify(tx.message, signature)
            except BadSignatureError:
                return False
        return True

    def _durable_nonce_key(self, tx: ParsedTx) -> Optional[bytes]:
        if not tx.instructions:
            return None
        program, accounts, data = tx.instructions[0]
        if tx.keys[program] != SYSTEM_PROGRAM or data[:4] != struct.pack("<I", 4) or len(accounts) < 3:
            return None
        return tx.keys[accounts[0]]

    def _load_error(self, tx: ParsedTx) -> Optional[Any]:
        fee_payer = self.accounts.get(tx.keys[0])
        if tx.recent_blockhash not in self.blockhashes[-150:]:
            nonce_key = self._durable_nonce_key(tx)
            if nonce_key is None:
                return "BlockhashNotFound"
            account = self.accounts.get(nonce_key)
            if account is None or len(account.data) != NONCE_LENGTH:
                return "BlockhashNotFound"
            _version, state, authority, stored_nonce, _fee = struct.unpack("<II32s32sQ", account.data)
            _program, accounts, _data = tx.instructions[0]
            authority_index = accounts[2]
            if (
                state != 1
                or stored_nonce != tx.recent_blockhash
                or tx.keys[authority_index] != authority
                or not tx.is_signer(authority_index)
            ):
                return "BlockhashNotFound"
        if fee_payer is None or fee_payer.lamports < FEE_PER_SIGNATURE * tx.num_required:
            return "InsufficientFundsForFee"
        return None

    def _copy_accounts(self) -> Dict[bytes, SimAccount]:
        return {key: SimAccount(a.lamports, a.owner, a.data) for key, a in self.accounts.items()}

    def _execute(self, tx: ParsedTx) -> Tuple[Dict[bytes, SimAccount], Any]:
        working = self._copy_accounts()
        working[tx.keys[0]].lamports -= FEE_PER_SIGNATURE * tx.num_required
        durable = tx.recent_blockhash not in self.blockhashes[-150:]
        after_advance: Optional[Dict[bytes, SimAccount]] = None

        for index, (program, accounts, data) in enumerate(tx.instructions):
            try:
                if tx.keys[program] != SYSTEM_PROGRAM:
                    raise InstructionFailure("IncorrectProgramId")
                self._system_instruction(working, tx, accounts, data)
            except InstructionFailure as failure:
                err = {"InstructionError": [index, failure.detail]}
                rolled_back = after_advance if after_advance is not None else self._copy_accounts()
                if after_advance is None:
                    rolled_back[tx.keys[0]].lamports -= FEE_PER_SIGNATURE * tx.num_required
                return rolled_back, err
            if durable and index == 0:
                after_advance = {key: SimAccount(a.lamports, a.owner, a.data) for key, a in working.items()}

        return working, None

    def _next_nonce(self) -> bytes:
        self._nonce_counter += 1
        return hashlib.sha256(b"DURABLE_NONCE" + self.blockhashes[-1] + struct.pack("<Q", self._nonce_counter)).digest()

    def _system_instruction(
        self,
        working: Dict[bytes, SimAccount],
        tx: ParsedTx,
        accounts: List[int],
        data: bytes,
    ) -> None:
        (kind,) = struct.unpack_from("<I", data)
        keys = [tx.keys[i] for i in accounts]

        def require_signer(position: int) -> None:
            if not tx.is_signer(accounts[position]):
                raise InstructionFailure("MissingRequiredSignature")

        if kind == 0:  # CreateAccount
            require_signer(0)
            require_signer(1)
            lamports, space = struct.unpack_from("<QQ", data, 4)
            owner = data[20:52]
            existing = working.get(keys[1])
            if existing is not None and (existing.lamports or existing.data):
                raise InstructionFailure({"Custom": 0})
            if working[keys[0]].lamports < lamports:
                raise InstructionFailure({"Custom": 1})
            working[keys[0]].lamports -= lamports
            working[keys[1]] = SimAccount(lamports, owner, bytes(space))
        elif kind == 2:  # Transfer
            require_signer(0)
            (lamports,) = struct.unpack_from("<Q", data, 4)
            source = working.get(keys[0])
            if source is None or source.lamports < lamports:
                raise InstructionFailure({"Custom": 1})
            source.lamports -= lamports
            working.setdefault(keys[1], SimAccount(0)).lamports += lamports
        elif kind == 6:  # InitializeNonceAccount
            account = working.get(keys[0])
            if account is None or len(account.data) != NONCE_LENGTH or account.owner != SYSTEM_PROGRAM:
                raise InstructionFailure("InvalidAccountData")
            if struct.unpack_from("<I", account.data, 4)[0] != 0:
                raise InstructionFailure("InvalidAccountData")
            if account.lamports < RENT_EXEMPT_NONCE:
                raise InstructionFailure("InsufficientFunds")
            account.data = struct.pack("<II32s32sQ", 1, 1, data[4:36], self._next_nonce(), FEE_PER_SIGNATURE)
        elif kind in (4, 7):  # AdvanceNonceAccount / AuthorizeNonceAccount
            account = working.get(keys[0])
            if account is None or len(account.data) != NONCE_LENGTH:
                raise InstructionFailure("InvalidAccountData")
            version, state, authority, nonce, fee = struct.unpack("<II32s32sQ", account.data)
            if state != 1:
                raise InstructionFailure("InvalidAccountData")
            authority_position = 2 if kind == 4 else 1
            if keys[authority_position] != authority:
                raise InstructionFailure("MissingRequiredSignature")
            require_signer(authority_position)
            if kind == 4:
                nonce = self._next_nonce()
            else:
                authority = data[4:36]
            account.data = struct.pack("<II32s32sQ", version, state, authority, nonce, fee)
        else:
            raise InstructionFailure("InvalidInstructionData")


class RpcFailure(Exception):
    def __init__(self, code: int, message: str, data: Any = None):
        super().__init__(message)
        self.error = {"code": code, "message": message}
        if data is not None:
            self.error["data"] = data


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def ledger() -> LedgerSimulator:
    return LedgerSimulator()


@pytest_asyncio.fixture
async def client(ledger):
    client = LedgerClient(
        SolanaRpcConfig(rpc_url="http://ledger.test", max_retries=1, timeout_s=5.0),
        transport=httpx.MockTransport(ledger.handle),
    )
    yield client
    await client.close()


@pytest.fixture
def manager(client) -> NonceAccountManager:
    return NonceAccountManager(client, confirm_timeout_s=1.0, poll_interval_s=0.01)


@pytest.fixture
def builder() -> DurableTransactionBuilder:
    return DurableTransactionBuilder()


@pytest.fixture
def payer(ledger) -> Keypair:
    keypair = Keypair.generate()
    ledger.fund(keypair.public_key, 3 * SOL)
    return keypair


@pytest.fixture
def reorder_readonly_keys():
    """Recompile a transaction with its last two read-only unsigned keys swapped.

    The result is as valid on the ledger as the input but is not the key
    order the builder compiles.
    """

    def reorder(tx: DurableTransaction) -> DurableTransaction:
        message = tx.message
        header = message.header
        assert header.num_readonly_unsigned_accounts >= 2
        keys = list(message.account_keys)
        last = len(keys) - 1
        keys[last - 1], keys[last] = keys[last], keys[last - 1]
        swap = {last - 1: last, last: last - 1}
        instructions = [
            CompiledInstruction(
                swap.get(ix.program_id_index, ix.program_id_index),
                bytes(ix.data),
                bytes(swap.get(index, index) for index in ix.accounts),
            )
            for ix in message.instructions
        ]
        reordered = Message.new_with_compiled_instructions(
            header.num_required_signatures,
            header.num_readonly_signed_accounts,
            header.num_readonly_unsigned_accounts,
            keys,
            message.recent_blockhash,
            instructions,
        )
        return DurableTransaction(Transaction.new_unsigned(reordered))

    return reorder
