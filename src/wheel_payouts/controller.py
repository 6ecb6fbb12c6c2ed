from __future__ import annotations

import asyncio
import logging
import random
from enum import Enum
from typing import Callable, List, Optional

from .draw import WheelConfig
from .errors import ExternalRejection, RewardEngineError, TransportError, ValidationError
from .helix import FULFILLED, HelixClient
from .notify import Notifier
from .participants import ParticipantQueue, SpinResult
from .project_constants import SETTLE_DELAY_SECONDS
from .wheel import PrizeWheel, Sleeper

log = logging.getLogger("spin")

WINNER_MESSAGE = "@{user} congratulations! You won {prize} on the wheel. Tokens will be sent soon."


class SpinPhase(Enum):
    IDLE = "idle"
    AUTO_SPINNING = "auto_spinning"
    SPINNING = "spinning"
    RESOLVED = "resolved"


class SpinController:
    """
    Draws the queue head, one spin at a time.

    IDLE -> AUTO_SPINNING -> SPINNING -> RESOLVED -> AUTO_SPINNING | IDLE
    """

    def __init__(
        self,
        queue: ParticipantQueue,
        config: WheelConfig,
        wheel: PrizeWheel,
        notifier: Notifier,
        source: Optional[HelixClient] = None,
        settle_delay: float = SETTLE_DELAY_SECONDS,
        sleep: Sleeper = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.queue = queue
        self.config = config
        self.wheel = wheel
        self.notifier = notifier
        self.source = source
        self.settle_delay = settle_delay
        self.rng = rng
        self.phase = SpinPhase.IDLE
        self._sleep = sleep
        self._auto = False
        self._timer: Optional["asyncio.Task[None]"] = None
        self._listeners: List[Callable[[SpinResult], None]] = []

    @property
    def armed(self) -> bool:
        return self._auto

    @property
    def in_flight(self) -> bool:
        return self.phase is SpinPhase.SPINNING

    def on_resolved(self, listener: Callable[[SpinResult], None]) -> None:
        self._listeners.append(listener)

    def arm(self) -> None:
        self._auto = True
        if self.phase is SpinPhase.IDLE:
            self.phase = SpinPhase.AUTO_SPINNING
        self.kick()

    def disarm(self) -> None:
        """Stops auto-spin; a spin already in flight still resolves."""
        self._auto = False
        if self.phase is SpinPhase.AUTO_SPINNING:
            self.phase = SpinPhase.IDLE
        self._cancel_timer()

    def kick(self) -> None:
        if self.phase is not SpinPhase.AUTO_SPINNING or not len(self.queue):
            return
        if self._timer is not None:
            return
        self._timer = asyncio.get_running_loop().create_task(self._run_timer())

    async def join(self) -> None:
        """Wait until no settle timer (and the spin it started) is pending."""
        while self._timer is not None:
            await asyncio.wait({self._timer})

    async def shutdown(self) -> None:
        self._auto = False
        if self.phase is SpinPhase.AUTO_SPINNING:
            self.phase = SpinPhase.IDLE
        timer = self._timer
        if timer is None:
            return
        if self.in_flight:
            # The prize is already chosen; let the animation finish and record it.
            await asyncio.wait({timer})
        else:
            self._cancel_timer()

    def _cancel_timer(self) -> None:
        if self._timer is not None and not self.in_flight:
            self._timer.cancel()
            self._timer = None

    async def _run_timer(self) -> None:
        try:
            await self._sleep(self.settle_delay)
            await self.spin_head()
        except ValidationError as e:
            log.warning("Auto-spin stopped: %s", e)
        except RewardEngineError as e:
            log.error("Auto-spin stopped: %s", e)
            self.notifier.alert(f"Auto-spin stopped: {e}", logging.ERROR)
            self._stop_auto()
        finally:
            if self._timer is asyncio.current_task():
                self._timer = None
        self.kick()

    def _stop_auto(self) -> None:
        self._auto = False
        if self.phase is not SpinPhase.SPINNING:
            self.phase = SpinPhase.IDLE

    async def spin_head(self) -> Optional[SpinResult]:
        """
        Draw the head participant. No-op (None) while a spin is in flight or the
        queue is empty. Invalid weights refuse the draw before anything moves.
        """
        if self.in_flight or self.wheel.spinning:
            log.debug("Spin already in flight; request ignored")
            return None
        participant = self.queue.head()
        if participant is None:
            return None

        try:
            index = self.config.draw(self.rng)
            prize_value = self.config.prize_at(index)
        except ValidationError as e:
            self.notifier.alert(f"Spin refused: {e}")
            self._stop_auto()
            raise

        labels = list(self.config.labels)
        self.queue.begin_draw()
        self.phase = SpinPhase.SPINNING
        log.info("Spinning for %s (%s)", participant.display_name or "-", participant.wallet_address)
        try:
            await self.wheel.spin(index, labels)
        except BaseException:
            self.queue.abort_draw()
            self.phase = SpinPhase.AUTO_SPINNING if self._auto else SpinPhase.IDLE
            raise

        result = self.queue.resolve_head(prize_value)
        self.phase = SpinPhase.RESOLVED
        log.info("%s won %s", participant.display_name or participant.wallet_address, prize_value)

        if participant.is_external:
            await self._fulfill(result)

        if self._auto and len(self.queue):
            self.phase = SpinPhase.AUTO_SPINNING
        else:
            self._auto = False
            self.phase = SpinPhase.IDLE
        for listener in self._listeners:
            listener(result)
        self.kick()
        return result

    async def _fulfill(self, result: SpinResult) -> None:
        participant = result.participant
        if self.source is None:
            log.warning("No redemption source connected; %s stays unfulfilled", participant.redemption_id)
            return
        try:
            await self.source.update_redemption_status(
                participant.redemption_id, participant.reward_id, FULFILLED
            )
            await self.notifier.channel_message(
                WINNER_MESSAGE.format(user=participant.display_name, prize=result.prize_value)
            )
        except (ExternalRejection, TransportError) as e:
            log.error("Could not complete redemption %s: %s", participant.redemption_id, e)
            self.notifier.alert(
                f"Result for {participant.display_name} recorded, but the redemption "
                f"could not be completed: {e}",
                logging.ERROR,
            )
