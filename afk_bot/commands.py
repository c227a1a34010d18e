"""
commands.py - Operator command parsing and dispatch.

Commands arrive as text from any control surface (console, chat
adapters) and look like ``/say 1-3 hello`` or ``/protect 2 on``. Slot
arguments accept a single slot, comma lists, ranges, bracketed slots and
``all``.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Union

from .coordinator import FleetCoordinator, Reply
from .session import CommandResult

logger = logging.getLogger(__name__)

Slots = Union[str, List[int]]

HELP_TEXT = """📋 Available Commands:

Messaging:
  /say <slots> <message>       Send chat from slots (1 | 1,3 | 1-3 | all)
  /all <message>               Send chat from every slot

Status:
  /status [slot]               Status of one or all slots (/s)
  /inv <slot>                  Show inventory
  /stats [slot]                Session statistics

Bot control:
  /start <slot>                Start a slot
  /stop <slot>                 Stop a slot (/disconnect)
  /restart <slot|all>          Restart (/reconnect)
  /pause <slot>                Pause idle prevention and chat
  /resume <slot>               Resume

Accounts:
  /account add                 Add an account (Microsoft login)
  /account remove <slot>       Remove an account
  /account list                List accounts

Movement:
  /forward <slots> <blocks>    (/f)
  /backward <slots> <blocks>   (/back, /b)
  /left <slots> <blocks>       (/l)
  /right <slots> <blocks>      (/r)

Items:
  /drop <slot> all             Drop everything
  /drop <slot> <item> [count]  Drop matching items

Security:
  /whitelist add|remove|list [player]   (/wl)
  /protect <slot> [on|off]              Toggle block protection (/p)"""


@dataclass
class ParsedCommand:
    command: str
    args: List[str] = field(default_factory=list)


class CommandParser:
    """Stateless helpers for command text and slot arguments."""

    @staticmethod
    def parse_command(text: str) -> ParsedCommand:
        """
        Split command text into a lower-cased command name and arguments.

        The leading slash is optional.
        """
        parts = text.strip().split()
        if not parts:
            return ParsedCommand("")
        command = parts[0][1:] if parts[0].startswith('/') else parts[0]
        return ParsedCommand(command.lower(), parts[1:])

    @staticmethod
    def parse_slots(slot_string: str, max_slot: Optional[int] = None) -> Slots:
        """
        Parse a slot argument.

        Args:
            slot_string: "all", "1", "1,3", "1-3", "[1]" or combinations
            max_slot: Highest slot a range may expand to

        Returns:
            "all" or the sorted unique slot numbers (unparseable parts and
            reversed ranges are skipped)
        """
        if slot_string.lower() == 'all':
            return 'all'

        slots = set()
        for part in slot_string.split(','):
            trimmed = re.sub(r'[\[\]]', '', part).strip()
            if not trimmed:
                continue
            if '-' in trimmed:
                start, _, end = trimmed.partition('-')
                try:
                    first, last = int(start.strip()), int(end.strip())
                except ValueError:
                    continue
                if first > last:
                    continue
                if max_slot is not None:
                    last = min(last, max_slot)
                slots.update(range(first, last + 1))
            else:
                try:
                    slots.add(int(trimmed))
                except ValueError:
                    continue
        return sorted(slots)

    @staticmethod
    def validate_slots(slots: Slots, available: Sequence[int]) -> Dict[str, Any]:
        """
        Check requested slots against the registered ones.

        Returns:
            ``{valid, slots}`` or ``{valid, error, valid_slots}``
        """
        if slots == 'all':
            return {"valid": True, "slots": list(available)}
        if not slots:
            return {"valid": False, "error": "No valid slots specified", "valid_slots": []}

        invalid = [slot for slot in slots if slot not in available]
        if invalid:
            return {
                "valid": False,
                "error": f"Invalid slots: {', '.join(str(s) for s in invalid)}",
                "valid_slots": [slot for slot in slots if slot in available],
            }
        return {"valid": True, "slots": list(slots)}


def _parse_int(value: str) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class CommandHandler:
    """
    Dispatches operator commands to the fleet coordinator.

    Usage:
        handler = CommandHandler(coordinator)
        result = await handler.handle_command("/status 1")
    """

    def __init__(self, coordinator: FleetCoordinator):
        self.coordinator = coordinator
        self._handlers: Dict[str, Callable[..., Awaitable[CommandResult]]] = {
            'say': self.handle_say,
            'all': self.handle_all,
            'status': self.handle_status,
            's': self.handle_status,
            'restart': self.handle_restart,
            'reconnect': self.handle_restart,
            'account': self.handle_account,
            'stop': self.handle_stop,
            'disconnect': self.handle_stop,
            'start': self.handle_start,
            'pause': self.handle_pause,
            'resume': self.handle_resume,
            'inv': self.handle_inventory,
            'drop': self.handle_drop,
            'whitelist': self.handle_whitelist,
            'wl': self.handle_whitelist,
            'protect': self.handle_protect,
            'p': self.handle_protect,
            'stats': self.handle_stats,
            'help': self.handle_help,
        }
        self._moves = {
            'forward': 'forward', 'f': 'forward',
            'backward': 'back', 'back': 'back', 'b': 'back',
            'left': 'left', 'l': 'left',
            'right': 'right', 'r': 'right',
        }

    async def handle_command(self, text: str, reply: Optional[Reply] = None) -> CommandResult:
        """
        Parse and run one command.

        Args:
            text: Raw command text
            reply: Reaches the requesting operator (used by account provisioning)

        Returns:
            CommandResult; errors never propagate to the caller
        """
        parsed = CommandParser.parse_command(text)
        command, args = parsed.command, parsed.args
        logger.info(f"Handling command: {command} with args: {args}")

        try:
            if command in self._moves:
                return await self.handle_move(args, self._moves[command])
            handler = self._handlers.get(command)
            if handler is None:
                return CommandResult(False, f"Unknown command: {command}")
            if command == 'account':
                return await handler(args, reply)
            return await handler(args)
        except Exception as e:
            logger.error(f"Command handler error: {e}")
            return CommandResult(False, f"Error: {e}")

    def _resolve_slots(self, slot_arg: str) -> Union[List[int], CommandResult]:
        available = self.coordinator.available_slots()
        parsed = CommandParser.parse_slots(slot_arg, max(available, default=0))
        validation = CommandParser.validate_slots(parsed, available)
        if not validation["valid"]:
            return CommandResult(False, validation["error"])
        return validation["slots"]

    # -- messaging ----------------------------------------------------------------

    async def handle_say(self, args: List[str]) -> CommandResult:
        if len(args) < 2:
            return CommandResult(False, "Usage: /say <slot(s)> <message>")

        slots = self._resolve_slots(args[0])
        if isinstance(slots, CommandResult):
            return slots

        results = await self.coordinator.send_message(slots, ' '.join(args[1:]))
        successful = sum(1 for r in results if r["success"])
        return CommandResult(True, f"Message sent to {successful}/{len(slots)} bots", data=results)

    async def handle_all(self, args: List[str]) -> CommandResult:
        if not args:
            return CommandResult(False, "Usage: /all <message>")

        results = await self.coordinator.send_message_to_all(' '.join(args))
        successful = sum(1 for r in results if r["success"])
        return CommandResult(True, f"Message sent to {successful}/{len(results)} bots", data=results)

    # -- status -------------------------------------------------------------------------

    async def handle_status(self, args: List[str]) -> CommandResult:
        if not args:
            return CommandResult(True, "All bots status", data=self.coordinator.get_all_status())

        slot = _parse_int(args[0])
        if slot is None:
            return CommandResult(False, "Invalid slot number")
        status = self.coordinator.get_slot_status(slot)
        if status is None:
            return CommandResult(False, f"Slot {slot} not found")
        return CommandResult(True, f"Slot {slot} status", data=status)

    async def handle_inventory(self, args: List[str]) -> CommandResult:
        if not args:
            return CommandResult(False, "Usage: /inv <slot>")
        slot = _parse_int(args[0])
        if slot is None:
            return CommandResult(False, "Invalid slot number")

        inventory = self.coordinator.get_slot_inventory(slot)
        if inventory is None:
            return CommandResult(False, f"Slot {slot} not available or offline")
        return CommandResult(True, f"Slot {slot} inventory", data=inventory)

    async def handle_stats(self, args: List[str]) -> CommandResult:
        if not args:
            all_stats = self.coordinator.get_all_stats()
            if not all_stats:
                return CommandResult(True, "No bots configured.")
            blocks = [self._format_stats_summary(stat) for stat in all_stats]
            return CommandResult(True, "📊 Bot Statistics\n\n" + "\n\n".join(blocks), data=all_stats)

        slot = _parse_int(args[0])
        if slot is None:
            return CommandResult(False, "Invalid slot number")
        stat = self.coordinator.get_slot_stats(slot)
        if stat is None:
            return CommandResult(False, f"Slot {slot} not found")
        return CommandResult(True, self._format_stats_detail(stat), data=stat)

    @staticmethod
    def _status_emoji(phase: str) -> str:
        return '🟢' if phase == 'online' else '⚫'

    def _format_stats_summary(self, stat: Dict[str, Any]) -> str:
        return (
            f"{self._status_emoji(stat['phase'])} Slot {stat['slot']} ({stat['username']})\n"
            f"⏱ Uptime: {stat['uptime_formatted']}\n"
            f"🔄 Reconnect: {stat['reconnects']} | ⚠️ Alert: {stat['alerts_triggered']}\n"
            f"💎 Cleared: {stat['blocks_cleared']} | 🏢 Lobby: {stat['lobby_events']}"
        )

    def _format_stats_detail(self, stat: Dict[str, Any]) -> str:
        lines = [
            f"📊 Slot {stat['slot']} Statistics ({stat['username']})",
            "",
            f"{self._status_emoji(stat['phase'])} Phase: {stat['phase']}",
            f"⏱ Uptime: {stat['uptime_formatted']}",
            f"📅 Session time: {stat['session_time_formatted']}",
            f"🔄 Reconnects: {stat['reconnects']}",
            f"⚠️ Alerts: {stat['alerts_triggered']}",
            f"💎 Blocks cleared: {stat['blocks_cleared']}",
            f"🏢 Lobby events: {stat['lobby_events']}",
        ]
        if stat.get('last_disconnect'):
            minutes = int((self.coordinator.clock() - stat['last_disconnect']) // 60)
            lines.append(f"📡 Last disconnect: {minutes} min ago")
        return "\n".join(lines)

    # -- bot control ----------------------------------------------------------------------

    def _single_slot(self, args: List[str], usage: str) -> Union[int, CommandResult]:
        if not args:
            return CommandResult(False, f"Usage: {usage}")
        slot = _parse_int(args[0])
        if slot is None:
            return CommandResult(False, "Invalid slot number")
        return slot

    async def handle_restart(self, args: List[str]) -> CommandResult:
        if args and args[0].lower() == 'all':
            return await self.coordinator.restart_all()
        slot = self._single_slot(args, "/restart <slot|all>")
        if isinstance(slot, CommandResult):
            return slot
        return await self.coordinator.restart_slot(slot)

    async def handle_stop(self, args: List[str]) -> CommandResult:
        slot = self._single_slot(args, "/stop <slot>")
        if isinstance(slot, CommandResult):
            return slot
        return await self.coordinator.stop_slot(slot)

    async def handle_start(self, args: List[str]) -> CommandResult:
        slot = self._single_slot(args, "/start <slot>")
        if isinstance(slot, CommandResult):
            return slot
        return await self.coordinator.start_slot(slot)

    async def handle_pause(self, args: List[str]) -> CommandResult:
        slot = self._single_slot(args, "/pause <slot>")
        if isinstance(slot, CommandResult):
            return slot
        return await self.coordinator.pause_slot(slot)

    async def handle_resume(self, args: List[str]) -> CommandResult:
        slot = self._single_slot(args, "/resume <slot>")
        if isinstance(slot, CommandResult):
            return slot
        return await self.coordinator.resume_slot(slot)

    async def handle_protect(self, args: List[str]) -> CommandResult:
        slot = self._single_slot(args, "/protect <slot> [on|off]")
        if isinstance(slot, CommandResult):
            return slot

        explicit = None
        if len(args) > 1:
            flag = args[1].lower()
            if flag not in ('on', 'off'):
                return CommandResult(False, "Usage: /protect <slot> [on|off]")
            explicit = flag == 'on'
        return await self.coordinator.toggle_protection(slot, explicit)

    # -- accounts ---------------------------------------------------------------------------

    async def handle_account(self, args: List[str], reply: Optional[Reply] = None) -> CommandResult:
        if not args:
            return CommandResult(False, "Usage: /account <add|remove|list> [slot]")

        action = args[0].lower()
        if action == 'add':
            return await self.coordinator.add_account(reply)
        if action == 'remove':
            if len(args) < 2:
                return CommandResult(False, "Usage: /account remove <slot>")
            slot = _parse_int(args[1])
            if slot is None:
                return CommandResult(False, "Invalid slot number")
            return await self.coordinator.remove_account(slot)
        if action == 'list':
            return self._account_list()
        return CommandResult(False, "Unknown account action. Use add, remove or list.")

    def _account_list(self) -> CommandResult:
        accounts = self.coordinator.get_account_list()
        if not accounts:
            return CommandResult(True, "No accounts configured.")

        lines = ["📋 Configured Accounts:"]
        for account in accounts:
            status = account["status"]
            emoji = '🟢' if status == 'online' else ('⚫' if status in ('offline', 'stopped') else '🔴')
            line = f"{emoji} Slot {account['slot']}: {account['username']} ({status})"
            slot_status = self.coordinator.get_slot_status(account["slot"])
            if status == 'online' and slot_status and slot_status.get("health") is not None:
                line += f" [💗 {round(slot_status['health'])} 🍗 {round(slot_status['food'])}]"
            lines.append(line)
        return CommandResult(True, "\n".join(lines), data=accounts)

    # -- movement and items -----------------------------------------------------------------

    async def handle_move(self, args: List[str], direction: str) -> CommandResult:
        if len(args) < 2:
            name = 'backward' if direction == 'back' else direction
            return CommandResult(False, f"Usage: /{name} <slot> <distance>")

        distance = _parse_int(args[1])
        if distance is None:
            return CommandResult(False, "Invalid distance")

        slots = self._resolve_slots(args[0])
        if isinstance(slots, CommandResult):
            return slots

        results = []
        for slot in slots:
            result = await self.coordinator.move_slot(slot, direction, distance)
            results.append({"slot": slot, **result.to_dict()})

        successful = sum(1 for r in results if r["success"])
        return CommandResult(
            successful > 0,
            f"Moved {successful}/{len(slots)} bots {direction} for {distance} blocks",
            data=results
        )

    async def handle_drop(self, args: List[str]) -> CommandResult:
        if len(args) < 2:
            return CommandResult(False, "Usage: /drop <slot> <item|all> [count]")

        slot = _parse_int(args[0])
        if slot is None:
            return CommandResult(False, "Invalid slot number")
        count = _parse_int(args[2]) if len(args) > 2 else None
        if len(args) > 2 and count is None:
            return CommandResult(False, "Invalid count")
        return await self.coordinator.drop_item(slot, args[1], count)

    # -- whitelist ------------------------------------------------------------------------------

    async def handle_whitelist(self, args: List[str]) -> CommandResult:
        if not args:
            return CommandResult(False, "Usage: /whitelist <add|remove|list> [player]")

        action = args[0].lower()
        if action == 'list':
            names = self.coordinator.get_whitelist()
            if not names:
                return CommandResult(True, "Whitelist is empty", data=[])
            return CommandResult(True, "📋 Whitelist:\n" + "\n".join(names), data=names)

        if len(args) < 2:
            return CommandResult(False, f"Usage: /whitelist {action} <player>")

        player = args[1]
        if action == 'add':
            return self.coordinator.add_to_whitelist(player)
        if action in ('remove', 'delete'):
            return self.coordinator.remove_from_whitelist(player)
        return CommandResult(False, "Unknown whitelist action. Use add, remove, or list.")

    async def handle_help(self, args: List[str]) -> CommandResult:
        return CommandResult(True, HELP_TEXT)
