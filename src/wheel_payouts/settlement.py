from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, TypeVar

from eth_abi.exceptions import DecodingError
from eth_utils import to_checksum_address

from .chain import UNRECOGNIZED_CHAIN, NetworkSpec, WalletRpcClient
from .contracts import (
    decode_uint,
    encode_allowance,
    encode_approve,
    encode_balance_of,
    encode_batch_transfer,
    encode_decimals,
    from_raw,
    to_raw,
)
from .errors import (
    AllowanceTooLow,
    NetworkMismatch,
    RewardEngineError,
    RpcError,
    SettlementBusy,
    UserCancellation,
    ValidationError,
)
from .participants import SpinResult
from .project_constants import (
    BLOCK_EXPLORER_URL,
    DEFAULT_AVALANCHE_RPC_URL,
    NATIVE_CURRENCY,
    REQUIRED_CHAIN_ID,
    REQUIRED_CHAIN_NAME,
)

log = logging.getLogger("settlement")

T = TypeVar("T")

AVALANCHE = NetworkSpec(
    chain_id=REQUIRED_CHAIN_ID,
    name=REQUIRED_CHAIN_NAME,
    rpc_url=DEFAULT_AVALANCHE_RPC_URL,
    native_currency=NATIVE_CURRENCY,
    explorer_url=BLOCK_EXPLORER_URL,
)


class SettlementPhase(Enum):
    IDLE = "idle"
    APPROVING = "approving"
    SETTLING = "settling"
    ERROR = "error"


@dataclass(frozen=True)
class SettlementStatus:
    phase: SettlementPhase = SettlementPhase.IDLE
    reason: Optional[str] = None


@dataclass(frozen=True)
class SettlementBatch:
    token_address: str
    recipients: List[str]
    amounts: List[Decimal]
    raw_amounts: List[int]

    @property
    def total(self) -> Decimal:
        return sum(self.amounts, Decimal(0))

    @property
    def raw_total(self) -> int:
        return sum(self.raw_amounts)


@dataclass(frozen=True)
class SettlementRecord:
    tx_hash: str
    recipients: List[str]
    amounts: List[Decimal]
    total: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tx_hash": self.tx_hash,
            "recipients": list(self.recipients),
            "amounts": [str(a) for a in self.amounts],
            "total": str(self.total),
        }

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "SettlementRecord":
        return SettlementRecord(
            tx_hash=d["tx_hash"],
            recipients=list(d["recipients"]),
            amounts=[Decimal(a) for a in d["amounts"]],
            total=Decimal(d["total"]),
        )


@dataclass
class WalletSession:
    address: str
    chain_id: int
    token_decimals: int
    allowance: int
    balance: int

    def allowance_tokens(self) -> Decimal:
        return from_raw(self.allowance, self.token_decimals)

    def balance_tokens(self) -> Decimal:
        return from_raw(self.balance, self.token_decimals)


def build_batch(
    results: Sequence[SpinResult], token_address: str, decimals: int
) -> SettlementBatch:
    if not results:
        raise ValidationError("There are no results to settle")
    recipients = [to_checksum_address(r.participant.wallet_address) for r in results]
    amounts = [r.prize_value for r in results]
    try:
        raw_amounts = [to_raw(a, decimals) for a in amounts]
    except ValueError as e:
        raise ValidationError(str(e))
    return SettlementBatch(
        token_address=to_checksum_address(token_address),
        recipients=recipients,
        amounts=amounts,
        raw_amounts=raw_amounts,
    )


@dataclass
class SettlementManager:
    """
    Pays the completed log out in two wallet transactions: approve the payout
    contract for the total, then one batchTransfer.
    """

    wallet: WalletRpcClient
    token_address: str
    payout_contract: str
    network: NetworkSpec = AVALANCHE
    status: SettlementStatus = field(default_factory=SettlementStatus)
    session: Optional[WalletSession] = None
    history: List[SettlementRecord] = field(default_factory=list)

    @property
    def busy(self) -> bool:
        return self.status.phase in (SettlementPhase.APPROVING, SettlementPhase.SETTLING)

    async def ensure_network(self) -> None:
        current = await self.wallet.chain_id()
        if current == self.network.chain_id:
            return
        log.info("Wallet on chain %d; requesting switch to %d", current, self.network.chain_id)
        try:
            await self.wallet.switch_chain(self.network)
        except RpcError as e:
            if e.code != UNRECOGNIZED_CHAIN:
                raise NetworkMismatch(current, self.network.chain_id)
            log.info("Wallet does not know %s; adding it", self.network.name)
            try:
                await self.wallet.add_chain(self.network)
                await self.wallet.switch_chain(self.network)
            except RpcError:
                raise NetworkMismatch(current, self.network.chain_id)

        current = await self.wallet.chain_id()
        if current != self.network.chain_id:
            raise NetworkMismatch(current, self.network.chain_id)

    async def refresh_session(self) -> WalletSession:
        accounts = await self.wallet.accounts()
        if not accounts:
            raise UserCancellation("No wallet account is connected")
        address = to_checksum_address(accounts[0])
        self.session = WalletSession(
            address=address,
            chain_id=await self.wallet.chain_id(),
            token_decimals=await self._read_uint(encode_decimals()),
            allowance=await self._read_uint(encode_allowance(address, self.payout_contract)),
            balance=await self._read_uint(encode_balance_of(address)),
        )
        log.debug("Wallet session: %s", self.session)
        return self.session

    async def _read_uint(self, data: str) -> int:
        raw = await self.wallet.eth_call(self.token_address, data)
        try:
            return decode_uint(raw)
        except (DecodingError, TypeError, ValueError) as e:
            raise RpcError(None, f"Token {self.token_address} gave an unreadable answer: {e}")

    async def prepare_batch(self, results: Sequence[SpinResult]) -> SettlementBatch:
        session = await self.refresh_session()
        return build_batch(results, self.token_address, session.token_decimals)

    async def can_settle(self, results: Sequence[SpinResult]) -> bool:
        if not results:
            return False
        session = await self.refresh_session()
        batch = build_batch(results, self.token_address, session.token_decimals)
        return session.allowance >= batch.raw_total

    async def approve(self, results: Sequence[SpinResult]) -> str:
        return await self._attempt(SettlementPhase.APPROVING, lambda: self._approve(results))

    async def settle(self, results: Sequence[SpinResult]) -> SettlementRecord:
        return await self._attempt(SettlementPhase.SETTLING, lambda: self._settle(results))

    async def _attempt(self, phase: SettlementPhase, run: Callable[[], Awaitable[T]]) -> T:
        if self.busy:
            raise SettlementBusy(f"Settlement is already {self.status.phase.value}")
        self.status = SettlementStatus(phase)
        try:
            out = await run()
        except UserCancellation as e:
            log.info("%s cancelled in wallet: %s", phase.value.capitalize(), e)
            self.status = SettlementStatus(SettlementPhase.IDLE, f"cancelled: {e}")
            raise
        except RewardEngineError as e:
            log.error("%s failed: %s", phase.value.capitalize(), e)
            self.status = SettlementStatus(SettlementPhase.ERROR, str(e))
            raise
        except Exception as e:
            log.exception("%s failed unexpectedly", phase.value.capitalize())
            self.status = SettlementStatus(SettlementPhase.ERROR, str(e) or type(e).__name__)
            raise
        except BaseException:
            self.status = SettlementStatus(SettlementPhase.IDLE, "interrupted")
            raise
        self.status = SettlementStatus(SettlementPhase.IDLE)
        return out

    async def _approve(self, results: Sequence[SpinResult]) -> str:
        await self.ensure_network()
        session = await self.refresh_session()
        batch = build_batch(results, self.token_address, session.token_decimals)
        log.info("Approving %s tokens (%d raw) for %s", batch.total, batch.raw_total, self.payout_contract)
        tx_hash = await self.wallet.send_transaction(
            session.address,
            self.token_address,
            encode_approve(self.payout_contract, batch.raw_total),
        )
        await self._confirm(tx_hash)
        await self.refresh_session()
        return tx_hash

    async def _settle(self, results: Sequence[SpinResult]) -> SettlementRecord:
        await self.ensure_network()
        # Allowance is re-read on-chain right before submitting, never cached.
        session = await self.refresh_session()
        batch = build_batch(results, self.token_address, session.token_decimals)
        if session.allowance < batch.raw_total:
            raise AllowanceTooLow(session.allowance, batch.raw_total)

        log.info("Sending batch of %d transfers totalling %s", len(batch.recipients), batch.total)
        tx_hash = await self.wallet.send_transaction(
            session.address,
            self.payout_contract,
            encode_batch_transfer(batch.token_address, batch.recipients, batch.raw_amounts),
        )
        await self._confirm(tx_hash)
        record = SettlementRecord(
            tx_hash=tx_hash,
            recipients=batch.recipients,
            amounts=batch.amounts,
            total=batch.total,
        )
        self.history.append(record)
        await self.refresh_session()
        return record

    async def _confirm(self, tx_hash: str) -> None:
        receipt = await self.wallet.wait_for_receipt(tx_hash)
        status = receipt.get("status")
        if status is not None and int(str(status), 16) != 1:
            raise RpcError(None, f"Transaction {tx_hash} reverted")
        log.info("Transaction %s confirmed", tx_hash)
