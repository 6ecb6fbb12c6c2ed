import asyncio
from datetime import datetime, timezone
from decimal import Decimal
from typing import List
from unittest.mock import AsyncMock, MagicMock

import pytest

from wheel_payouts.helix import Redemption
from wheel_payouts.participants import Participant, SpinResult

W1 = "0x" + "11" * 20
W2 = "0x" + "22" * 20
W3 = "0x" + "33" * 20
TOKEN = "0x281027C6a46142D6FC57f12665147221CE69Af33"
PAYOUT = "0x" + "ab" * 20
OWNER = "0x" + "cd" * 20


class FakeClock:
    """Stands in for asyncio.sleep; records every delay and returns at once."""

    def __init__(self):
        self.delays: List[float] = []

    async def sleep(self, seconds):
        self.delays.append(seconds)
        await asyncio.sleep(0)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def helix():
    h = MagicMock()
    h.ensure_reward = AsyncMock(return_value="reward-1")
    h.list_redemptions = AsyncMock(return_value=[])
    h.update_redemption_status = AsyncMock(return_value=None)
    h.send_chat_message = AsyncMock(return_value=None)
    return h


@pytest.fixture
def registry():
    r = MagicMock()
    r.register = AsyncMock(return_value=None)
    return r


def redemption(rid, user, text, reward_id="reward-1"):
    return Redemption(id=rid, user_name=user, user_input=text, reward_id=reward_id)


def result(wallet, prize, name="viewer"):
    return SpinResult(
        participant=Participant(wallet_address=wallet, display_name=name),
        prize_value=Decimal(prize),
        timestamp=datetime(2024, 5, 1, 20, 0, tzinfo=timezone.utc),
    )
