"""Tests for the idle-prevention pulse."""

import asyncio

import pytest

from afk_bot.settings import BotSettings


async def settle(rounds: int = 10) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.mark.asyncio
async def test_pulse_presses_and_releases_control(make_session, factory) -> None:
    session = make_session()
    session.start()
    await settle()
    client = factory.last

    assert await session.anti_afk.tick() is True
    assert ("control", ("jump", True)) in client.actions
    assert client.controls["jump"] is False
    await session.stop()


@pytest.mark.asyncio
@pytest.mark.parametrize("flag", ["is_paused", "is_in_lobby", "consuming"])
async def test_no_pulse_when_suspended(make_session, factory, flag) -> None:
    session = make_session()
    session.start()
    await settle()
    setattr(session.state, flag, True)

    assert await session.anti_afk.tick() is False
    assert "jump" not in factory.last.controls
    setattr(session.state, flag, False)
    await session.stop()


@pytest.mark.asyncio
async def test_no_pulse_while_offline(make_session) -> None:
    session = make_session()
    assert await session.anti_afk.tick() is False


@pytest.mark.asyncio
async def test_loop_pulses_on_interval(make_session, factory, settings_dict) -> None:
    settings_dict.update(anti_afk_interval=0.01)
    session = make_session(bot_settings=BotSettings.from_dict(settings_dict))
    session.start()
    await settle()

    await asyncio.sleep(0.05)

    presses = [a for a in factory.last.actions if a == ("control", ("jump", True))]
    assert len(presses) >= 2
    await session.stop()
