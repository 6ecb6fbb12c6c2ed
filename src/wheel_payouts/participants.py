from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, List, Optional, Set, Tuple

from eth_utils import is_address, is_checksum_address

from .errors import EngineBusy, InvalidWalletAddress, ValidationError


def is_valid_wallet(wallet: str) -> bool:
    try:
        if not is_address(wallet):
            return False
    except (TypeError, ValueError):
        return False
    # Mixed case carries an EIP-55 checksum and must match it.
    digits = wallet[2:] if wallet[:2].lower() == "0x" else wallet
    if digits != digits.lower() and digits != digits.upper():
        return is_checksum_address(wallet)
    return True


@dataclass(frozen=True)
class Participant:
    wallet_address: str
    display_name: str
    redemption_id: Optional[str] = None
    reward_id: Optional[str] = None

    @property
    def is_external(self) -> bool:
        return bool(self.redemption_id and self.reward_id)

    @staticmethod
    def manual(wallet: str, name: str = "") -> "Participant":
        wallet = (wallet or "").strip()
        if not wallet:
            raise ValidationError("A wallet address is required")
        if not is_valid_wallet(wallet):
            raise InvalidWalletAddress(wallet)
        return Participant(wallet_address=wallet, display_name=name.strip())


@dataclass(frozen=True)
class SpinResult:
    participant: Participant
    prize_value: Decimal
    timestamp: datetime


class ParticipantQueue:
    """
    Pending participants in draw order plus the append-only log of results.

    Only the head can be drawn. While it is being drawn it cannot be removed.
    """

    def __init__(self) -> None:
        self._pending: List[Participant] = []
        self._completed: List[SpinResult] = []
        self._drawing = False
        self.total_enqueued = 0
        self.total_canceled = 0

    @property
    def pending(self) -> Tuple[Participant, ...]:
        return tuple(self._pending)

    @property
    def completed(self) -> Tuple[SpinResult, ...]:
        return tuple(self._completed)

    @property
    def drawing(self) -> bool:
        return self._drawing

    def __len__(self) -> int:
        return len(self._pending)

    def head(self) -> Optional[Participant]:
        return self._pending[0] if self._pending else None

    def enqueue(self, participant: Participant) -> None:
        self._pending.append(participant)
        self.total_enqueued += 1

    def enqueue_many(self, participants: Iterable[Participant]) -> int:
        n = 0
        for p in participants:
            self.enqueue(p)
            n += 1
        return n

    def redemption_ids(self) -> Set[str]:
        ids = {p.redemption_id for p in self._pending if p.redemption_id}
        ids.update(
            r.participant.redemption_id
            for r in self._completed
            if r.participant.redemption_id
        )
        return ids

    def begin_draw(self) -> Participant:
        if not self._pending:
            raise ValidationError("No pending participants to draw")
        if self._drawing:
            raise EngineBusy("The head participant is already being drawn")
        self._drawing = True
        return self._pending[0]

    def abort_draw(self) -> None:
        self._drawing = False

    def resolve_head(self, prize_value: Decimal, now: Optional[datetime] = None) -> SpinResult:
        if not self._drawing:
            raise ValidationError("No draw in progress")
        participant = self._pending.pop(0)
        self._drawing = False
        result = SpinResult(
            participant=participant,
            prize_value=prize_value,
            timestamp=now or datetime.now(timezone.utc),
        )
        self._completed.append(result)
        return result

    def remove(self, index: int) -> Participant:
        if not 0 <= index < len(self._pending):
            raise ValidationError(f"No pending participant at position {index}")
        if index == 0 and self._drawing:
            raise EngineBusy("The participant being drawn cannot be removed")
        self.total_canceled += 1
        return self._pending.pop(index)

    def clear_pending(self) -> List[Participant]:
        start = 1 if self._drawing else 0
        removed = self._pending[start:]
        del self._pending[start:]
        self.total_canceled += len(removed)
        return removed

    def restore(
        self,
        pending: Iterable[Participant],
        completed: Iterable[SpinResult],
        total_enqueued: int,
        total_canceled: int,
    ) -> None:
        self._pending = list(pending)
        self._completed = list(completed)
        self._drawing = False
        self.total_enqueued = total_enqueued
        self.total_canceled = total_canceled
