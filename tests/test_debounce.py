import asyncio

import pytest

from imaginify.forms.debounce import CoalescingTimer


def test_burst_of_touches_fires_once_after_quiet_period():
    fired = []

    async def scenario():
        timer = CoalescingTimer(0.05, lambda: fired.append(len(fired)))
        for _ in range(5):
            timer.touch()
            await asyncio.sleep(0.01)
        assert fired == []
        assert timer.pending
        await asyncio.sleep(0.1)
        assert not timer.pending

    asyncio.run(scenario())
    assert fired == [0]


def test_flush_fires_immediately_and_only_once():
    fired = []

    async def scenario():
        timer = CoalescingTimer(0.05, lambda: fired.append("x"))
        timer.touch()
        assert timer.flush() is True
        assert timer.flush() is False
        await asyncio.sleep(0.1)

    asyncio.run(scenario())
    assert fired == ["x"]


def test_cancel_drops_the_scheduled_callback():
    fired = []

    async def scenario():
        timer = CoalescingTimer(0.02, lambda: fired.append("x"))
        timer.touch()
        timer.cancel()
        await asyncio.sleep(0.05)

    asyncio.run(scenario())
    assert fired == []


def test_touch_needs_a_running_loop():
    timer = CoalescingTimer(0.01, lambda: None)
    with pytest.raises(RuntimeError):
        timer.touch()
