import asyncio

import pytest

from wheel_payouts.wheel import PrizeWheel, segment_center, target_rotation

LABELS = ["1", "34", "55", "89"]


@pytest.mark.parametrize("current", [0.0, 45.0, 359.0, 1890.0, 7300.5])
def test_target_lands_on_segment_center_after_five_turns(current):
    for index in range(len(LABELS)):
        target = target_rotation(current, index, len(LABELS))
        assert target >= current + 5 * 360
        assert (target + segment_center(index, len(LABELS))) % 360 == pytest.approx(0.0, abs=1e-9)


@pytest.mark.asyncio
async def test_spin_waits_the_animation_window_then_reports(clock):
    wheel = PrizeWheel(sleep=clock.sleep)
    events = []
    wheel.on_spin_end(events.append)

    prize = await wheel.spin(2, LABELS)

    assert prize == "55"
    assert clock.delays == [5.0]
    assert wheel.winner_index == 2
    assert not wheel.spinning
    assert events[0].prize == "55"
    assert events[0].rotation == wheel.rotation


@pytest.mark.asyncio
async def test_spin_while_animating_is_ignored():
    release = asyncio.Event()

    async def slow_sleep(seconds):
        await release.wait()

    wheel = PrizeWheel(sleep=slow_sleep)
    first = asyncio.create_task(wheel.spin(0, LABELS))
    await asyncio.sleep(0)
    assert wheel.spinning
    rotation = wheel.rotation

    assert await wheel.spin(1, LABELS) is None
    assert wheel.rotation == rotation

    release.set()
    assert await first == "1"
