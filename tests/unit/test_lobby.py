"""Tests for lobby / teleport recovery."""

import asyncio

import pytest

from afk_bot.settings import BotSettings
from integration.mc_client import Position


async def settle(rounds: int = 10) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


async def online_session(make_session, **kwargs):
    session = make_session(**kwargs)
    session.start()
    await settle()
    assert session.state.last_known_position == Position(0, 64, 0)
    return session


@pytest.mark.asyncio
async def test_far_teleport_enters_lobby_mode(make_session, factory) -> None:
    session = await online_session(make_session)
    changes = []
    session.on_lobby_detected = changes.append

    factory.last.teleport(Position(500, 64, 0))

    assert session.state.is_in_lobby
    assert session.state.stats.lobby_events == 1
    assert changes == [True]
    names = session.timers.names()
    assert "lobby_retry" in names
    assert "anti_afk" not in names
    assert "threat_scan" not in names
    # Home is not overwritten by the lobby position
    assert session.state.last_known_position == Position(0, 64, 0)
    await session.stop()


@pytest.mark.asyncio
async def test_return_near_home_exits_and_rearms(make_session, factory) -> None:
    session = await online_session(make_session)
    changes = []
    session.on_lobby_detected = changes.append
    client = factory.last

    client.teleport(Position(500, 64, 0))
    client.teleport(Position(10, 64, 0))

    assert not session.state.is_in_lobby
    assert changes == [True, False]
    names = session.timers.names()
    assert "lobby_retry" not in names
    assert {"anti_afk", "threat_scan"} <= set(names)
    assert session.state.last_known_position == Position(10, 64, 0)
    await session.stop()


@pytest.mark.asyncio
async def test_small_moves_only_update_home(make_session, factory) -> None:
    session = await online_session(make_session)

    factory.last.teleport(Position(150, 64, 0))

    assert not session.state.is_in_lobby
    assert session.state.last_known_position == Position(150, 64, 0)
    await session.stop()


@pytest.mark.asyncio
async def test_still_far_away_stays_in_lobby(make_session, factory) -> None:
    session = await online_session(make_session)
    client = factory.last

    client.teleport(Position(500, 64, 0))
    client.teleport(Position(100, 64, 0))

    assert session.state.is_in_lobby
    await session.stop()


@pytest.mark.asyncio
async def test_retry_loop_sends_return_command(make_session, factory, settings_dict) -> None:
    settings_dict['lobby'] = {'initial_delay': 0.01, 'retry_interval': 0.01, 'chat_check_delay': 0}
    session = await online_session(make_session, bot_settings=BotSettings.from_dict(settings_dict))
    client = factory.last

    client.teleport(Position(500, 64, 0))
    await asyncio.sleep(0.05)

    assert client.sent_chat.count("/home sp1") >= 2

    client.teleport(Position(0, 64, 0))
    sent = len(client.sent_chat)
    await asyncio.sleep(0.03)
    assert len(client.sent_chat) == sent
    await session.stop()


@pytest.mark.asyncio
async def test_teleport_chat_message_triggers_position_check(make_session, factory) -> None:
    session = await online_session(make_session)
    client = factory.last

    client.position = Position(0, 64, 900)
    client.receive_chat("You have been Teleported to spawn.")
    await settle()

    assert session.state.is_in_lobby
    await session.stop()


@pytest.mark.asyncio
async def test_unrelated_chat_is_ignored(make_session, factory) -> None:
    session = await online_session(make_session)
    client = factory.last

    client.position = Position(0, 64, 900)
    client.receive_chat("hello there")
    await settle()

    assert not session.state.is_in_lobby
    assert "lobby_check" not in session.timers.names()
    await session.stop()


@pytest.mark.asyncio
async def test_disconnect_clears_lobby_mode(make_session, factory) -> None:
    session = await online_session(make_session)
    factory.last.teleport(Position(500, 64, 0))

    await session.stop()

    assert not session.state.is_in_lobby
    assert session.timers.names() == []
