import asyncio
import random
from decimal import Decimal

import pytest

from conftest import W1, W2, W3, redemption
from wheel_payouts.controller import SpinPhase
from wheel_payouts.draw import WheelConfig
from wheel_payouts.engine import RewardEngine
from wheel_payouts.errors import (
    EngineBusy,
    InvalidWeightDistribution,
    RewardEngineError,
    RewardIneligible,
    TransportError,
)
from wheel_payouts.ingest import RedemptionIngestor
from wheel_payouts.notify import RecordingNotifier


def make_engine(clock, helix=None, registry=None, config=None, notifier=None):
    notifier = notifier or RecordingNotifier()
    ingestor = RedemptionIngestor(helix, registry, notifier) if helix is not None else None
    return RewardEngine(
        notifier,
        config=config,
        helix=helix,
        ingestor=ingestor,
        sleep=clock.sleep,
        rng=random.Random(5),
    )


@pytest.mark.asyncio
async def test_invalid_weights_refuse_the_spin_and_leave_the_wheel_alone(clock):
    engine = make_engine(clock, config=WheelConfig(labels=["10", "20"], weights=["50", "40"]))
    engine.add_participant(W1, "alice")

    with pytest.raises(InvalidWeightDistribution):
        await engine.spin()

    assert engine.wheel.rotation == 0.0
    assert engine.wheel.winner_index is None
    assert len(engine.queue.pending) == 1
    assert engine.queue.completed == ()
    assert engine.notifier.alerts
    assert clock.delays == []


@pytest.mark.asyncio
async def test_invalid_weights_stop_auto_spin(clock):
    engine = make_engine(clock, config=WheelConfig(labels=["10", "20"], weights=["50", "40"]))
    engine.controller.arm()
    engine.add_participant(W1, "alice")
    await engine.controller.join()

    assert engine.controller.phase is SpinPhase.IDLE
    assert not engine.controller.armed
    assert len(engine.queue.pending) == 1
    assert clock.delays == [1.0]


@pytest.mark.asyncio
async def test_malformed_redemption_is_not_queued(clock, helix, registry):
    helix.list_redemptions.return_value = [redemption("r1", "bob", "not-an-address")]
    engine = make_engine(clock, helix, registry)

    await engine.ingest_once()

    assert engine.queue.pending == ()
    helix.update_redemption_status.assert_awaited_once_with("r1", "reward-1", "CANCELED")
    assert len(engine.notifier.messages) == 1


@pytest.mark.asyncio
async def test_accepted_redemption_spins_after_settle_delay(clock, helix, registry):
    helix.list_redemptions.return_value = [redemption("r1", "carol", W1)]
    engine = make_engine(clock, helix, registry)
    engine.controller.arm()

    await engine.ingest_once()
    assert [p.wallet_address for p in engine.queue.pending] == [W1]
    await engine.controller.join()

    assert clock.delays[:2] == [1.0, 5.0]
    (result,) = engine.queue.completed
    assert result.participant.redemption_id == "r1"
    assert str(result.prize_value) in engine.config.labels
    helix.update_redemption_status.assert_awaited_with("r1", "reward-1", "FULFILLED")
    assert engine.notifier.messages[-1].startswith("@carol congratulations!")
    assert engine.controller.phase is SpinPhase.IDLE


@pytest.mark.asyncio
async def test_manual_entry_while_armed_spins_within_a_second(clock):
    engine = make_engine(clock)
    engine.controller.arm()
    assert engine.controller.phase is SpinPhase.AUTO_SPINNING

    engine.add_participant(W2, "dave")
    await engine.controller.join()

    assert clock.delays[0] <= 1.0
    assert len(engine.queue.completed) == 1
    # Manual entries never touch the redemption source.
    assert engine.notifier.messages == []


@pytest.mark.asyncio
async def test_auto_spin_works_through_the_queue_in_order(clock):
    engine = make_engine(clock)
    for wallet in (W1, W2, W3):
        engine.add_participant(wallet)

    await engine.drain()

    assert [r.participant.wallet_address for r in engine.queue.completed] == [W1, W2, W3]
    assert clock.delays == [1.0, 5.0] * 3
    assert engine.controller.phase is SpinPhase.IDLE


@pytest.mark.asyncio
async def test_fulfilment_failure_keeps_the_result(clock, helix, registry):
    helix.list_redemptions.return_value = [redemption("r1", "carol", W1)]
    engine = make_engine(clock, helix, registry)
    await engine.ingest_once()
    helix.update_redemption_status.side_effect = TransportError("twitch down")

    await engine.drain()

    assert len(engine.queue.completed) == 1
    assert any("could not be completed" in text for _, text in engine.notifier.alerts)


@pytest.mark.asyncio
async def test_reingesting_does_not_duplicate(clock, helix, registry):
    helix.list_redemptions.return_value = [redemption("r1", "carol", W1), redemption("r2", "erin", W2)]
    engine = make_engine(clock, helix, registry)

    await engine.ingest_once()
    engine.controller.disarm()
    await engine.ingest_once()

    assert [p.redemption_id for p in engine.queue.pending] == ["r1", "r2"]
    assert engine.queue.total_enqueued == 2


@pytest.mark.asyncio
async def test_removing_a_twitch_participant_refunds_it(clock, helix, registry):
    helix.list_redemptions.return_value = [redemption("r1", "carol", W1)]
    engine = make_engine(clock, helix, registry)
    await engine.ingest_once()
    engine.controller.disarm()
    engine.add_participant(W2, "manual")

    await engine.remove_participant(1)
    assert helix.update_redemption_status.await_count == 0

    removed = await engine.remove_participant(0)

    assert removed.redemption_id == "r1"
    helix.update_redemption_status.assert_awaited_once_with("r1", "reward-1", "CANCELED")
    assert engine.notifier.messages[-1].startswith("@carol")
    assert engine.queue.total_canceled == 2


@pytest.mark.asyncio
async def test_clear_pending_refunds_every_twitch_entry_with_one_message(clock, helix, registry):
    helix.list_redemptions.return_value = [redemption("r1", "a", W1), redemption("r2", "b", W2)]
    engine = make_engine(clock, helix, registry)
    await engine.ingest_once()
    engine.controller.disarm()
    engine.add_participant(W3)

    removed = await engine.clear_pending()

    assert len(removed) == 3
    assert helix.update_redemption_status.await_count == 2
    assert len(engine.notifier.messages) == 1


@pytest.mark.asyncio
async def test_segments_cannot_change_mid_spin():
    release = asyncio.Event()

    async def slow_sleep(seconds):
        if seconds == 5.0:
            await release.wait()

    engine = RewardEngine(RecordingNotifier(), sleep=slow_sleep, rng=random.Random(1))
    engine.add_participant(W1)
    spin = asyncio.create_task(engine.spin())
    await asyncio.sleep(0)

    assert engine.controller.phase is SpinPhase.SPINNING
    with pytest.raises(EngineBusy):
        engine.add_segment("5")
    with pytest.raises(EngineBusy):
        await engine.remove_participant(0)
    assert await engine.spin() is None

    release.set()
    result = await spin
    assert result.prize_value == Decimal(engine.config.labels[engine.wheel.winner_index])


@pytest.mark.asyncio
async def test_poll_loop_retries_after_transport_error(helix, registry):
    helix.list_redemptions.side_effect = [TransportError("twitch down"), []]
    delays = []

    async def sleep(seconds):
        delays.append(seconds)
        if len(delays) >= 2:
            engine.set_auto_ingest(False)
        await asyncio.sleep(0)

    notifier = RecordingNotifier()
    engine = RewardEngine(
        notifier,
        helix=helix,
        ingestor=RedemptionIngestor(helix, registry, notifier),
        sleep=sleep,
    )
    await engine.start(auto_ingest=True)
    await asyncio.wait({engine._poll_task})

    assert delays == [10.0, 10.0]
    assert helix.list_redemptions.await_count == 2
    assert not engine.polling
    await engine.stop()


@pytest.mark.asyncio
async def test_polling_stops_when_the_queue_fills_and_restarts_when_it_drains(helix, registry):
    parked = asyncio.Event()

    async def sleep(seconds):
        if seconds == 10.0:
            parked.set()
            await asyncio.Event().wait()
        await asyncio.sleep(0)

    notifier = RecordingNotifier()
    engine = RewardEngine(
        notifier,
        helix=helix,
        ingestor=RedemptionIngestor(helix, registry, notifier),
        sleep=sleep,
    )
    await engine.start(auto_ingest=True)
    await parked.wait()
    assert engine.polling

    engine.add_participant(W1, "manual")
    assert not engine.polling

    await engine.controller.join()
    assert len(engine.queue.completed) == 1
    assert engine.polling

    await engine.stop()
    assert not engine.polling


@pytest.mark.asyncio
async def test_ineligible_channel_stops_polling_with_an_alert(helix, registry):
    helix.ensure_reward.side_effect = RewardIneligible(
        "not affiliate", status=403, error="Forbidden", details="affiliate required"
    )
    notifier = RecordingNotifier()
    engine = RewardEngine(
        notifier,
        helix=helix,
        ingestor=RedemptionIngestor(helix, registry, notifier),
    )
    await engine.start(auto_ingest=True)
    await asyncio.wait({engine._poll_task})

    assert engine.last_error == "Forbidden: affiliate required"
    assert not engine.auto_ingest
    assert notifier.alerts
    helix.list_redemptions.assert_not_awaited()
    await engine.stop()


@pytest.mark.asyncio
async def test_settlement_calls_need_a_wallet(clock):
    engine = make_engine(clock)
    with pytest.raises(RewardEngineError):
        engine.require_settlement()
    with pytest.raises(RewardEngineError):
        await engine.settle()
