"""Tests for proximity scanning, alerts and the emergency rule."""

import asyncio

import pytest

from afk_bot.settings import BotSettings
from afk_bot.state import ConnectionPhase
from integration.mc_client import Entity, Position


async def settle(rounds: int = 10) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


async def online_session(make_session, **kwargs):
    session = make_session(**kwargs)
    session.start()
    await settle()
    assert session.is_online()
    return session


# -- contact collection -------------------------------------------------------------


@pytest.mark.asyncio
async def test_nearby_players_sorted_and_filtered(make_session, factory, add_player) -> None:
    session = await online_session(make_session, username="Bot")
    client = factory.last
    add_player(client, 1, "Far", 80)
    add_player(client, 2, "Near", 20)
    add_player(client, 3, "Bot", 1)  # own player
    client.entities[4] = Entity(4, "minecraft:zombie", Position(1, 64, 0))
    client.entities[5] = Entity(5, "minecraft:player", None, username="Ghost")

    contacts = session.threat.nearby_players()

    assert [c.username for c in contacts] == ["Near", "Far"]
    assert contacts[0].distance == pytest.approx(20)
    await session.stop()


# -- emergency rule -------------------------------------------------------------------


@pytest.mark.asyncio
async def test_emergency_disconnects_without_protection(make_session, factory, add_player) -> None:
    session = await online_session(make_session, protection=False)
    alerts = []
    session.on_proximity_alert = lambda name, dist: alerts.append((name, dist))
    add_player(factory.last, 1, "Intruder", 6)

    await session.threat.tick()

    assert session.state.phase == ConnectionPhase.OFFLINE
    assert session.state.is_manually_stopped
    assert alerts == [("Intruder", pytest.approx(6))]
    assert session.state.stats.alerts_triggered == 1


@pytest.mark.asyncio
async def test_emergency_boundary_is_inclusive(make_session, factory, add_player, settings) -> None:
    session = await online_session(make_session)
    add_player(factory.last, 1, "Edge", settings.protection.emergency_distance)

    await session.threat.tick()

    assert session.state.phase == ConnectionPhase.OFFLINE


@pytest.mark.asyncio
async def test_whitelisted_players_never_trigger(make_session, factory, add_player, settings_dict) -> None:
    settings_dict['alert_whitelist'] = ["Friend"]
    session = await online_session(make_session, bot_settings=BotSettings.from_dict(settings_dict))
    alerts = []
    session.on_proximity_alert = lambda name, dist: alerts.append(name)
    add_player(factory.last, 1, "FRIEND", 1)
    add_player(factory.last, 2, "friend", 50)

    await session.threat.tick()
    await settle()

    assert session.is_online()
    assert alerts == []
    assert session.state.alert_cooldowns == {}
    await session.stop()


@pytest.mark.asyncio
async def test_scan_skipped_while_paused(make_session, factory, add_player) -> None:
    session = await online_session(make_session)
    session.pause()
    add_player(factory.last, 1, "Intruder", 3)

    await session.threat.tick()

    assert session.is_online()
    await session.stop()


# -- alert rule -------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_alert_respects_cooldown(make_session, factory, add_player, clock, settings) -> None:
    session = await online_session(make_session)
    alerts = []
    session.on_proximity_alert = lambda name, dist: alerts.append(name)
    add_player(factory.last, 1, "Walker", 50)

    await session.threat.tick()
    await settle()
    clock.advance(settings.alert_cooldown - 1)
    await session.threat.tick()
    await settle()

    assert alerts == ["Walker"]

    clock.advance(2)
    await session.threat.tick()
    await settle()

    assert alerts == ["Walker", "Walker"]
    assert session.state.stats.alerts_triggered == 2
    await session.stop()


@pytest.mark.asyncio
async def test_players_beyond_alert_distance_are_ignored(make_session, factory, add_player, settings) -> None:
    session = await online_session(make_session)
    add_player(factory.last, 1, "Distant", settings.alert_distance + 1)

    await session.threat.tick()

    assert session.state.alert_cooldowns == {}
    await session.stop()


@pytest.mark.asyncio
async def test_alert_burst_repeats_notifications(make_session, factory, add_player, settings_dict) -> None:
    settings_dict.update(alert_burst_count=3, alert_burst_interval=0.01)
    session = await online_session(make_session, bot_settings=BotSettings.from_dict(settings_dict))
    alerts = []
    session.on_proximity_alert = lambda name, dist: alerts.append(name)
    add_player(factory.last, 1, "Walker", 40)

    await session.threat.tick()
    await settle()
    assert alerts == ["Walker"]

    await asyncio.sleep(0.05)
    assert alerts == ["Walker"] * 3
    await session.stop()


@pytest.mark.asyncio
async def test_cooldown_map_drops_expired_entries(make_session, factory, add_player, clock, settings) -> None:
    session = await online_session(make_session)
    add_player(factory.last, 1, "First", 40)
    await session.threat.tick()

    del factory.last.entities[1]
    clock.advance(settings.alert_cooldown + 1)
    add_player(factory.last, 2, "Second", 40)
    await session.threat.tick()

    assert set(session.state.alert_cooldowns) == {"Second"}
    await session.stop()


@pytest.mark.asyncio
async def test_alert_triggers_protection_when_enabled(make_session, factory, add_player) -> None:
    session = await online_session(make_session, protection=True)
    add_player(factory.last, 1, "Raider", 40)

    await session.threat.tick()
    await settle(30)

    # Nothing to clear, so the sequence completes and disconnects
    assert session.state.phase == ConnectionPhase.OFFLINE
    assert not session.state.protection_running


@pytest.mark.asyncio
async def test_alert_without_protection_stays_online(make_session, factory, add_player) -> None:
    session = await online_session(make_session, protection=False)
    add_player(factory.last, 1, "Raider", 40)

    await session.threat.tick()
    await settle()

    assert session.is_online()
    await session.stop()


@pytest.mark.asyncio
async def test_scan_loop_survives_a_failed_read(make_session, factory, add_player, settings_dict) -> None:
    settings_dict.update(scan_interval=0.01)
    session = await online_session(make_session, bot_settings=BotSettings.from_dict(settings_dict))
    client = factory.last
    real_entities = client.get_nearby_entities
    calls = []

    def flaky_entities():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("entity table busy")
        return real_entities()

    client.get_nearby_entities = flaky_entities
    await asyncio.sleep(0.02)
    assert calls
    assert session.timers.is_running("threat_scan")

    add_player(client, 1, "Intruder", 2)
    await asyncio.sleep(0.05)

    assert session.state.phase == ConnectionPhase.OFFLINE
    assert session.state.is_manually_stopped
