from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import AbstractSet, List, Optional

from .errors import ExternalRejection, TransportError
from .helix import CANCELED, HelixClient, Redemption, RewardSpec
from .notify import Notifier
from .participants import Participant, is_valid_wallet
from .registry import WalletRegistryClient

log = logging.getLogger("ingest")

INVALID_WALLET_MESSAGE = (
    "@{user} that is not a valid wallet address. "
    "Your redemption was canceled and your points refunded."
)
REJECTED_MESSAGE = "@{user} {reason}. Your redemption was canceled and your points refunded."
REGISTRY_DOWN_REASON = "wallet registration is unavailable right now"


@dataclass(frozen=True)
class Rejection:
    redemption: Redemption
    reason: str


@dataclass
class IngestReport:
    accepted: List[Participant] = field(default_factory=list)
    rejected: List[Rejection] = field(default_factory=list)
    skipped: int = 0


class RedemptionIngestor:
    def __init__(
        self,
        helix: HelixClient,
        registry: WalletRegistryClient,
        notifier: Notifier,
        reward: RewardSpec = RewardSpec(),
    ) -> None:
        self.helix = helix
        self.registry = registry
        self.notifier = notifier
        self.reward = reward
        self.reward_id: Optional[str] = None

    async def run_cycle(self, known_redemptions: AbstractSet[str] = frozenset()) -> IngestReport:
        """
        One polling pass. TransportError from listing and RewardIneligible from
        reward creation propagate to the caller untouched; per-redemption
        failures only ever reject that redemption.
        """
        if self.reward_id is None:
            self.reward_id = await self.helix.ensure_reward(self.reward)

        redemptions = await self.helix.list_redemptions(self.reward_id)
        report = IngestReport()
        for redemption in redemptions:
            if redemption.id in known_redemptions:
                report.skipped += 1
                continue
            participant = await self._admit(redemption, report)
            if participant is not None:
                report.accepted.append(participant)

        log.info(
            "Ingest cycle: %d redemptions, %d accepted, %d rejected, %d already queued",
            len(redemptions),
            len(report.accepted),
            len(report.rejected),
            report.skipped,
        )
        return report

    async def _admit(self, redemption: Redemption, report: IngestReport) -> Optional[Participant]:
        wallet = redemption.user_input.strip()
        if not is_valid_wallet(wallet):
            await self._reject(
                redemption,
                "invalid wallet address",
                INVALID_WALLET_MESSAGE.format(user=redemption.user_name),
                report,
            )
            return None

        try:
            await self.registry.register(redemption.user_name, wallet)
        except ExternalRejection as e:
            reason = e.reason
        except TransportError as e:
            log.warning("Registry call for %s failed: %s", redemption.user_name, e)
            reason = REGISTRY_DOWN_REASON
        else:
            return Participant(
                wallet_address=wallet,
                display_name=redemption.user_name,
                redemption_id=redemption.id,
                reward_id=redemption.reward_id,
            )

        await self._reject(
            redemption,
            reason,
            REJECTED_MESSAGE.format(user=redemption.user_name, reason=reason),
            report,
        )
        return None

    async def _reject(
        self,
        redemption: Redemption,
        reason: str,
        message: str,
        report: IngestReport,
    ) -> None:
        log.warning("Rejecting redemption %s from %s: %s", redemption.id, redemption.user_name, reason)
        report.rejected.append(Rejection(redemption, reason))
        try:
            await self.helix.update_redemption_status(redemption.id, redemption.reward_id, CANCELED)
        except (ExternalRejection, TransportError) as e:
            log.error("Could not cancel redemption %s: %s", redemption.id, e)
        try:
            await self.notifier.channel_message(message)
        except (ExternalRejection, TransportError) as e:
            log.error("Could not notify %s: %s", redemption.user_name, e)
