from __future__ import annotations

import asyncio
import logging
import random
from typing import List, Optional

from .controller import SpinController, SpinPhase
from .draw import WheelConfig
from .errors import (
    EngineBusy,
    ExternalRejection,
    RewardEngineError,
    RewardIneligible,
    TransportError,
)
from .export import render_payout_csv, write_payout_csv
from .helix import CANCELED, HelixClient
from .ingest import IngestReport, RedemptionIngestor
from .notify import Notifier
from .participants import Participant, ParticipantQueue, SpinResult
from .project_constants import (
    DEFAULT_TOKEN_ADDRESS,
    POLL_INTERVAL_SECONDS,
    SETTLE_DELAY_SECONDS,
    SPIN_SECONDS,
)
from .settlement import SettlementManager, SettlementRecord
from .wheel import PrizeWheel, Sleeper

log = logging.getLogger("engine")

REMOVED_MESSAGE = "@{user} your wheel spin was canceled and your points refunded."
CLEARED_MESSAGE = "Wheel canceled, points were refunded to everyone still in line."


class RewardEngine:
    """
    Owns the wheel session: segment config, participant queue, spin
    controller, redemption polling and settlement. All mutation goes through
    these methods on a single event loop.
    """

    def __init__(
        self,
        notifier: Notifier,
        config: Optional[WheelConfig] = None,
        queue: Optional[ParticipantQueue] = None,
        helix: Optional[HelixClient] = None,
        ingestor: Optional[RedemptionIngestor] = None,
        settlement: Optional[SettlementManager] = None,
        token_address: str = DEFAULT_TOKEN_ADDRESS,
        poll_interval: float = POLL_INTERVAL_SECONDS,
        settle_delay: float = SETTLE_DELAY_SECONDS,
        spin_seconds: float = SPIN_SECONDS,
        sleep: Sleeper = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.notifier = notifier
        self.config = config or WheelConfig()
        self.queue = queue or ParticipantQueue()
        self.helix = helix
        self.ingestor = ingestor
        self.settlement = settlement
        self.token_address = token_address
        self.poll_interval = poll_interval
        self.wheel = PrizeWheel(spin_seconds=spin_seconds, sleep=sleep)
        self.controller = SpinController(
            self.queue,
            self.config,
            self.wheel,
            notifier,
            source=helix,
            settle_delay=settle_delay,
            sleep=sleep,
            rng=rng,
        )
        self.controller.on_resolved(lambda _result: self._queue_changed())
        self.auto_ingest = False
        self.last_error: Optional[str] = None
        self._sleep = sleep
        self._running = False
        self._poll_task: Optional["asyncio.Task[None]"] = None
        self._ingest_lock = asyncio.Lock()

    # -- lifecycle -------------------------------------------------------

    async def start(self, auto_ingest: bool = True) -> None:
        self._running = True
        self.auto_ingest = auto_ingest and self.ingestor is not None
        self.controller.arm()
        self._rearm_polling()

    async def stop(self) -> None:
        self._running = False
        self.auto_ingest = False
        self._cancel_polling(force=True)
        await self.controller.shutdown()

    async def drain(self) -> None:
        """Arm auto-spin and wait for the pending queue to be worked off."""
        self.controller.arm()
        await self.controller.join()

    @property
    def polling(self) -> bool:
        return self._poll_task is not None

    # -- ingestion -------------------------------------------------------

    async def ingest_once(self) -> IngestReport:
        if self.ingestor is None:
            raise RewardEngineError("No redemption source is configured")
        async with self._ingest_lock:
            report = await self.ingestor.run_cycle(self.queue.redemption_ids())
            # Manual entries may have landed while the cycle was awaiting.
            known = self.queue.redemption_ids()
            accepted = [p for p in report.accepted if p.redemption_id not in known]
            self.queue.enqueue_many(accepted)
        if accepted:
            self.controller.arm()
        self._queue_changed()
        return report

    def set_auto_ingest(self, enabled: bool) -> None:
        self.auto_ingest = enabled and self.ingestor is not None
        self._rearm_polling()

    def _polling_wanted(self) -> bool:
        return self._running and self.auto_ingest and not len(self.queue)

    def _rearm_polling(self) -> None:
        if self._polling_wanted():
            if self._poll_task is None:
                self._poll_task = asyncio.get_running_loop().create_task(self._poll_loop())
        else:
            self._cancel_polling()

    def _cancel_polling(self, force: bool = False) -> None:
        if self._poll_task is None or self._poll_task is asyncio.current_task():
            return
        # A cycle that is already talking to Twitch is allowed to finish.
        if force or not self._ingest_lock.locked():
            self._poll_task.cancel()
            self._poll_task = None

    async def _poll_loop(self) -> None:
        try:
            while self._polling_wanted():
                try:
                    await self.ingest_once()
                    self.last_error = None
                except TransportError as e:
                    log.warning("Polling redemptions failed, retrying next cycle: %s", e)
                except (RewardIneligible, ExternalRejection) as e:
                    self.last_error = e.reason
                    self.auto_ingest = False
                    self.notifier.alert(f"Redemption polling stopped: {e.reason}", logging.ERROR)
                    break
                if not self._polling_wanted():
                    break
                await self._sleep(self.poll_interval)
        finally:
            if self._poll_task is asyncio.current_task():
                self._poll_task = None

    def _queue_changed(self) -> None:
        self.controller.kick()
        if self._running:
            self._rearm_polling()

    # -- participants ----------------------------------------------------

    def add_participant(self, wallet: str, name: str = "") -> Participant:
        participant = Participant.manual(wallet, name)
        self.queue.enqueue(participant)
        log.info("Added %s (%s) to the queue", participant.display_name or "-", participant.wallet_address)
        if self._running:
            self.controller.arm()
        self._queue_changed()
        return participant

    async def remove_participant(self, index: int) -> Participant:
        participant = self.queue.remove(index)
        log.info("Removed %s from the queue", participant.display_name or participant.wallet_address)
        if participant.is_external:
            await self._cancel_redemption(participant)
            await self._send(REMOVED_MESSAGE.format(user=participant.display_name))
        self._queue_changed()
        return participant

    async def clear_pending(self) -> List[Participant]:
        removed = self.queue.clear_pending()
        external = [p for p in removed if p.is_external]
        for participant in external:
            await self._cancel_redemption(participant)
        if external:
            await self._send(CLEARED_MESSAGE)
        log.info("Cleared %d pending participants (%d from Twitch)", len(removed), len(external))
        self._queue_changed()
        return removed

    async def _cancel_redemption(self, participant: Participant) -> None:
        if self.helix is None:
            log.warning("No redemption source connected; %s not refunded", participant.redemption_id)
            return
        try:
            await self.helix.update_redemption_status(
                participant.redemption_id, participant.reward_id, CANCELED
            )
        except (ExternalRejection, TransportError) as e:
            log.error("Could not cancel redemption %s: %s", participant.redemption_id, e)

    async def _send(self, text: str) -> None:
        try:
            await self.notifier.channel_message(text)
        except (ExternalRejection, TransportError) as e:
            log.error("Could not send chat message: %s", e)

    # -- wheel -----------------------------------------------------------

    async def spin(self) -> Optional[SpinResult]:
        return await self.controller.spin_head()

    def _check_editable(self) -> None:
        if self.controller.phase is SpinPhase.SPINNING:
            raise EngineBusy("Segments cannot change while the wheel is spinning")

    def add_segment(self, label: str, weight: str = "") -> None:
        self._check_editable()
        self.config.add_segment(label, weight)

    def remove_segment(self, index: int) -> None:
        self._check_editable()
        self.config.remove_segment(index)

    def set_weight(self, index: int, value: str) -> None:
        self._check_editable()
        self.config.set_weight(index, value)

    def equalize_weights(self) -> None:
        self._check_editable()
        self.config.equalize()

    def reset_segments(self) -> None:
        self._check_editable()
        self.config.reset()

    # -- settlement & export ---------------------------------------------

    def require_settlement(self) -> SettlementManager:
        if self.settlement is None:
            raise RewardEngineError("No wallet is configured for settlement")
        return self.settlement

    async def approve(self) -> str:
        return await self.require_settlement().approve(self.queue.completed)

    async def can_settle(self) -> bool:
        return await self.require_settlement().can_settle(self.queue.completed)

    async def settle(self) -> SettlementRecord:
        return await self.require_settlement().settle(self.queue.completed)

    def export_text(self) -> str:
        return render_payout_csv(self.queue.completed, self.token_address)

    def export_file(self, directory: str = ".") -> str:
        return write_payout_csv(self.queue.completed, self.token_address, directory)
