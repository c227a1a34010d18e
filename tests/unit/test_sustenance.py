"""Tests for the auto-eat loop."""

import asyncio

import pytest

from afk_bot.settings import BotSettings
from afk_bot.sustenance import EatOutcome
from integration.mc_client import Item


async def settle(rounds: int = 10) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


async def online_session(make_session, **kwargs):
    session = make_session(**kwargs)
    session.start()
    await settle()
    return session


@pytest.mark.asyncio
async def test_hungry_slot_eats_once(make_session, factory) -> None:
    session = await online_session(make_session)
    client = factory.last
    client.food = 10
    client.items = [Item("minecraft:bread", 3, 0)]

    outcome = await session.sustenance.tick()

    assert outcome == EatOutcome.ATE
    assert client.actions.count(("equip", "bread")) == 1
    assert client.actions.count(("consume", None)) == 1
    assert client.food == 20
    assert session.sustenance.next_delay(outcome) == session.settings.sustenance.check_interval
    assert not session.state.consuming
    await session.stop()


@pytest.mark.asyncio
async def test_not_hungry_at_threshold(make_session, factory) -> None:
    session = await online_session(make_session)
    factory.last.food = 14
    factory.last.items = [Item("minecraft:bread", 3, 0)]

    assert await session.sustenance.tick() == EatOutcome.NOT_HUNGRY
    await session.stop()


@pytest.mark.asyncio
async def test_no_food_in_inventory(make_session, factory) -> None:
    session = await online_session(make_session)
    factory.last.food = 4
    factory.last.items = [Item("minecraft:diamond_pickaxe", 1, 0)]

    assert await session.sustenance.tick() == EatOutcome.NO_FOOD
    await session.stop()


@pytest.mark.asyncio
async def test_skipped_when_paused_or_offline(make_session, factory) -> None:
    session = make_session()
    assert await session.sustenance.tick() == EatOutcome.SKIPPED

    session.start()
    await settle()
    session.pause()
    factory.last.food = 1
    assert await session.sustenance.tick() == EatOutcome.SKIPPED
    await session.stop()


@pytest.mark.asyncio
async def test_timeouts_escalate_and_success_resets(make_session, factory, settings_dict) -> None:
    settings_dict['sustenance'] = {
        'check_interval': 3600,
        'consume_timeout': 0.01,
        'timeout_backoff': [30, 60],
    }
    session = await online_session(make_session, bot_settings=BotSettings.from_dict(settings_dict))
    client = factory.last
    client.food = 5
    client.items = [Item("minecraft:cooked_beef", 8, 0)]
    real_consume = client.consume

    async def stuck_consume():
        await asyncio.sleep(1)

    client.consume = stuck_consume

    delays = []
    for _ in range(3):
        outcome = await session.sustenance.tick()
        assert outcome == EatOutcome.TIMEOUT
        delays.append(session.sustenance.next_delay(outcome))
        assert not session.state.consuming

    assert session.sustenance.consecutive_timeouts == 3
    assert delays == [30, 60, 60]

    client.consume = real_consume
    outcome = await session.sustenance.tick()

    assert outcome == EatOutcome.ATE
    assert session.sustenance.consecutive_timeouts == 0
    await session.stop()


@pytest.mark.asyncio
async def test_consume_error_uses_error_backoff(make_session, factory) -> None:
    session = await online_session(make_session)
    client = factory.last
    client.food = 5
    client.items = [Item("minecraft:apple", 1, 0)]

    async def broken_consume():
        raise RuntimeError("not holding food")

    client.consume = broken_consume

    outcome = await session.sustenance.tick()

    assert outcome == EatOutcome.ERROR
    assert session.sustenance.next_delay(outcome) == session.settings.sustenance.error_backoff
    await session.stop()


@pytest.mark.asyncio
async def test_inventory_read_failure_backs_off(make_session, factory) -> None:
    session = await online_session(make_session)
    client = factory.last
    client.food = 5
    client.items = [Item("minecraft:bread", 3, 0)]
    real_inventory = client.get_inventory
    calls = []

    def flaky_inventory():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("window not ready")
        return real_inventory()

    client.get_inventory = flaky_inventory

    outcome = await session.sustenance.tick()

    assert outcome == EatOutcome.ERROR
    assert session.sustenance.next_delay(outcome) == session.settings.sustenance.error_backoff
    assert not session.state.consuming
    assert await session.sustenance.tick() == EatOutcome.ATE
    assert client.food == 20
    await session.stop()


@pytest.mark.asyncio
async def test_loop_keeps_running_after_read_failure(make_session, factory, settings_dict) -> None:
    settings_dict['sustenance'] = {'check_interval': 0.01, 'error_backoff': 0.01}
    session = await online_session(make_session, bot_settings=BotSettings.from_dict(settings_dict))
    client = factory.last
    client.food = 5
    client.items = [Item("minecraft:bread", 3, 0)]
    real_food = client.get_food
    calls = []

    def flaky_food():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("stats not synced")
        return real_food()

    client.get_food = flaky_food
    await asyncio.sleep(0.08)

    assert len(calls) >= 2
    assert client.food == 20
    assert session.timers.is_running("sustenance")
    await session.stop()
