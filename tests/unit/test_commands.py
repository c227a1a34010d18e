"""Tests for command parsing and dispatch."""

import asyncio

import pytest

from afk_bot.commands import HELP_TEXT, CommandHandler, CommandParser


async def settle(rounds: int = 10) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def handler(coordinator) -> CommandHandler:
    return CommandHandler(coordinator)


# -- parsing ------------------------------------------------------------------------


@pytest.mark.parametrize("text, expected", [
    ("1", [1]),
    ("1,3", [1, 3]),
    ("1-3", [1, 2, 3]),
    ("[2]", [2]),
    ("3,1-2,3", [1, 2, 3]),
    ("x,2,a-b", [2]),
    ("", []),
])
def test_parse_slots(text, expected) -> None:
    assert CommandParser.parse_slots(text) == expected


def test_parse_slots_all() -> None:
    assert CommandParser.parse_slots("ALL") == "all"


def test_parse_slots_skips_reversed_range() -> None:
    assert CommandParser.parse_slots("3-1") == []
    assert CommandParser.parse_slots("2,3-1") == [2]


def test_parse_slots_clamps_range_to_max_slot() -> None:
    assert CommandParser.parse_slots("1-100000000", max_slot=3) == [1, 2, 3]
    assert CommandParser.parse_slots("2-2", max_slot=3) == [2]
    assert CommandParser.parse_slots("5-9", max_slot=3) == []


def test_parse_command_strips_slash_and_lowercases() -> None:
    parsed = CommandParser.parse_command("  /SAY 1 Hello There ")
    assert parsed.command == "say"
    assert parsed.args == ["1", "Hello", "There"]

    assert CommandParser.parse_command("status").command == "status"
    assert CommandParser.parse_command("   ").command == ""


def test_validate_slots() -> None:
    assert CommandParser.validate_slots("all", [1, 2]) == {"valid": True, "slots": [1, 2]}
    assert CommandParser.validate_slots([2], [1, 2]) == {"valid": True, "slots": [2]}

    invalid = CommandParser.validate_slots([1, 5], [1, 2])
    assert invalid["valid"] is False
    assert invalid["error"] == "Invalid slots: 5"
    assert invalid["valid_slots"] == [1]


def test_validate_slots_rejects_empty_selection() -> None:
    empty = CommandParser.validate_slots([], [1, 2])
    assert empty["valid"] is False
    assert empty["error"] == "No valid slots specified"


# -- dispatch ------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_unknown_command(handler) -> None:
    result = await handler.handle_command("/fly 1")

    assert not result.success
    assert result.message == "Unknown command: fly"


@pytest.mark.asyncio
async def test_help(handler) -> None:
    result = await handler.handle_command("help")
    assert result.success
    assert result.message == HELP_TEXT


@pytest.mark.asyncio
async def test_status_all_and_single(handler) -> None:
    everything = await handler.handle_command("/status")
    assert [s["slot"] for s in everything.data] == [1, 2, 3]

    single = await handler.handle_command("/s 2")
    assert single.data["username"] == "Bravo"

    missing = await handler.handle_command("/status 9")
    assert not missing.success

    garbage = await handler.handle_command("/status two")
    assert garbage.message == "Invalid slot number"


@pytest.mark.asyncio
async def test_say_to_online_slots(handler, coordinator) -> None:
    coordinator.start_all()
    await settle()

    result = await handler.handle_command("/say 1-2 hi all")

    assert result.success
    assert result.message == "Message sent to 2/2 bots"
    assert coordinator.get_session(1).client.sent_chat == ["hi all"]
    await coordinator.shutdown()


@pytest.mark.asyncio
async def test_say_rejects_unknown_slots(handler) -> None:
    result = await handler.handle_command("/say 1,8 hi")

    assert not result.success
    assert result.message == "Invalid slots: 8"


@pytest.mark.asyncio
async def test_say_rejects_reversed_range(handler, coordinator) -> None:
    coordinator.start_all()
    await settle()

    result = await handler.handle_command("/say 3-1 hi")

    assert not result.success
    assert result.message == "No valid slots specified"
    assert coordinator.get_session(1).client.sent_chat == []
    await coordinator.shutdown()


@pytest.mark.asyncio
async def test_say_clamps_oversized_range(handler, coordinator) -> None:
    coordinator.start_all()
    await settle()

    result = await handler.handle_command("/say 1-100000000 hi")

    assert result.success
    assert result.message == "Message sent to 3/3 bots"
    await coordinator.shutdown()


@pytest.mark.asyncio
async def test_say_usage(handler) -> None:
    result = await handler.handle_command("/say 1")
    assert result.message.startswith("Usage:")


@pytest.mark.asyncio
async def test_start_stop_pause_resume(handler, coordinator) -> None:
    assert (await handler.handle_command("/start 1")).success
    await settle()
    assert coordinator.get_session(1).is_online()

    assert (await handler.handle_command("/pause 1")).success
    assert coordinator.get_session(1).state.is_paused
    assert (await handler.handle_command("/resume 1")).success
    assert not coordinator.get_session(1).state.is_paused

    assert (await handler.handle_command("/disconnect 1")).success
    assert coordinator.get_slot_status(1)["phase"] == "offline"

    usage = await handler.handle_command("/stop")
    assert usage.message == "Usage: /stop <slot>"


@pytest.mark.asyncio
async def test_protect_on_off_and_toggle(handler, coordinator) -> None:
    on = await handler.handle_command("/protect 1 on")
    assert on.success and on.data is True
    assert "ENABLED" in on.message

    off = await handler.handle_command("/p 1 off")
    assert off.data is False

    toggled = await handler.handle_command("/protect 1")
    assert toggled.data is True

    bad = await handler.handle_command("/protect 1 maybe")
    assert not bad.success


@pytest.mark.asyncio
async def test_whitelist_commands(handler) -> None:
    listed = await handler.handle_command("/whitelist list")
    assert listed.data == ["Friend"]

    added = await handler.handle_command("/wl add Visitor")
    assert added.success

    duplicate = await handler.handle_command("/wl add visitor")
    assert not duplicate.success

    removed = await handler.handle_command("/whitelist delete friend")
    assert removed.success
    assert (await handler.handle_command("/wl list")).data == ["Visitor"]

    usage = await handler.handle_command("/wl add")
    assert usage.message == "Usage: /whitelist add <player>"


@pytest.mark.asyncio
async def test_account_list_and_remove(handler, coordinator) -> None:
    listed = await handler.handle_command("/account list")
    assert "Slot 2: Bravo (offline)" in listed.message

    removed = await handler.handle_command("/account remove 1")
    assert removed.success
    assert coordinator.available_slots() == [1, 2]

    bad = await handler.handle_command("/account remove x")
    assert bad.message == "Invalid slot number"


@pytest.mark.asyncio
async def test_account_add_passes_reply(handler, coordinator) -> None:
    replies = []

    result = await handler.handle_command("/account add", reply=replies.append)

    assert result.success
    assert replies and "Slot: 4" in replies[0]
    await coordinator.shutdown()


@pytest.mark.asyncio
async def test_move_rejects_bad_distance(handler) -> None:
    result = await handler.handle_command("/forward 1 far")
    assert result.message == "Invalid distance"

    usage = await handler.handle_command("/b 1")
    assert usage.message == "Usage: /backward <slot> <distance>"


@pytest.mark.asyncio
async def test_move_reports_offline_slots(handler) -> None:
    result = await handler.handle_command("/left all 3")

    assert not result.success
    assert result.message == "Moved 0/3 bots left for 3 blocks"
    assert all(r["message"] == "Bot not ready" for r in result.data)


@pytest.mark.asyncio
async def test_drop_requires_online_slot(handler) -> None:
    result = await handler.handle_command("/drop 1 dirt 5")
    assert result.message == "Bot not ready"

    invalid = await handler.handle_command("/drop 1 dirt lots")
    assert invalid.message == "Invalid count"


@pytest.mark.asyncio
async def test_stats_output(handler, coordinator) -> None:
    coordinator.start_all()
    await settle()

    summary = await handler.handle_command("/stats")
    assert summary.message.startswith("📊 Bot Statistics")
    assert "🟢 Slot 1 (Alpha)" in summary.message

    detail = await handler.handle_command("/stats 2")
    assert "Slot 2 Statistics (Bravo)" in detail.message
    await coordinator.shutdown()


@pytest.mark.asyncio
async def test_handler_errors_become_failures(handler, coordinator) -> None:
    def broken():
        raise RuntimeError("exploded")

    coordinator.get_all_status = broken

    result = await handler.handle_command("/status")

    assert not result.success
    assert result.message == "Error: exploded"
