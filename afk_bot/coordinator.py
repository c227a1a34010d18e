"""
coordinator.py - Fleet coordinator.

Owns one SessionSupervisor per configured account and fans operator
commands out to them. It also:
- Turns slot callbacks (alerts, connects, lobby changes) into operator
  notifications
- Provisions new accounts through the Microsoft device-code flow
- Removes accounts and shifts later slots down so numbering stays dense
- Keeps the alert whitelist and per-slot overrides persisted

A failing slot never takes the others down: every per-slot call is
contained and reported back as a CommandResult.
"""

import asyncio
import inspect
import logging
import os
import shutil
import time
from dataclasses import replace
from pathlib import Path
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, Iterable, List, Optional, Set, Union

from .notifier import Notifier
from .session import ClientFactory, CommandResult, SessionSupervisor
from .settings import SessionConfig, normalize_names

if TYPE_CHECKING:
    from utils.config import FleetConfig

logger = logging.getLogger(__name__)

TEMP_ACCOUNT_PREFIX = "New_Account_"

Reply = Callable[[str], Union[None, Awaitable[Any]]]


class FleetCoordinator:
    """
    Registry and command fan-out for all slots.

    Usage:
        coordinator = FleetCoordinator(fleet_config, Notifier(), DryRunClient)
        coordinator.initialize()
        coordinator.start_all()
        ...
        await coordinator.shutdown()
    """

    # Seconds between closing the provisioning client and moving its profile folder
    profile_release_delay = 1.0
    restart_all_delay = 3.0

    def __init__(
        self,
        config: 'FleetConfig',
        notifier: Optional[Notifier] = None,
        client_factory: Optional[ClientFactory] = None,
        clock: Callable[[], float] = time.time
    ):
        self.config = config
        self.notifier = notifier or Notifier()
        self.clock = clock
        if client_factory is None:
            from integration.mc_client import load_client_class
            client_factory = load_client_class(config.client_backend)
        self.client_factory = client_factory
        self.sessions: Dict[int, SessionSupervisor] = {}
        self._pending: Set[asyncio.Task] = set()
        self._restart_task: Optional[asyncio.Task] = None

    # -- setup ----------------------------------------------------------------------

    def initialize(self) -> None:
        """Register a supervisor for every configured account."""
        logger.info("Initializing fleet coordinator")
        for account in self.config.accounts:
            self.sessions[account.slot] = self._create_session(account)
            logger.info(f"Registered slot {account.slot} for {account.username}")
        logger.info(f"Fleet coordinator initialized with {len(self.sessions)} accounts")

    def _create_session(
        self,
        account: SessionConfig,
        on_msa_code: Optional[Callable[[Dict[str, str]], None]] = None
    ) -> SessionSupervisor:
        session = SessionSupervisor(
            account,
            self.config.settings,
            self.config.server,
            self.client_factory,
            clock=self.clock,
            on_msa_code=on_msa_code,
        )
        session.on_proximity_alert = lambda player, distance, s=session: \
            self.handle_proximity_alert(s.slot, player, distance)
        session.on_connect = lambda host, version, s=session: self.handle_connect(s.slot, host, version)
        session.on_lobby_detected = lambda in_lobby, s=session: self.handle_lobby_detected(s.slot, in_lobby)
        session.on_inventory_alert = self.handle_inventory_alert
        return session

    def available_slots(self) -> List[int]:
        return sorted(self.sessions)

    def get_session(self, slot: int) -> Optional[SessionSupervisor]:
        return self.sessions.get(slot)

    def _spawn(self, coro: Awaitable[Any], name: str) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._pending.add(task)
        task.add_done_callback(lambda t, n=name: self._on_task_done(n, t))
        return task

    def _on_task_done(self, name: str, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Coordinator task '{name}' failed: {exc!r}")

    # -- notifications ----------------------------------------------------------------

    def handle_proximity_alert(self, slot: int, player: str, distance: float) -> None:
        logger.warning(f"Slot {slot}: Proximity alert - {player} ({round(distance)} blocks)")
        self.notifier.broadcast(
            f"⚠️ PROXIMITY ALERT ⚠️\nSlot {slot} detected player {player} at {round(distance)} blocks!"
        )

    def handle_connect(self, slot: int, host: str, version: Optional[str]) -> None:
        message = f"[{slot}] connected -> ({host}) ({version})"
        logger.info(message)
        self.notifier.broadcast(message)

    def handle_lobby_detected(self, slot: int, in_lobby: bool) -> None:
        if in_lobby:
            message = f"🏢 Slot {slot}: Lobby detected! Server maintenance suspected. Waiting..."
        else:
            message = f"✅ Slot {slot}: Returned from lobby! Normal operation resumed."
        logger.warning(message)
        self.notifier.broadcast(message)

    def handle_inventory_alert(self, message: str) -> None:
        logger.warning(message)
        self.notifier.broadcast(f"📦 {message}")

    # -- per-slot proxies ---------------------------------------------------------------

    def _not_found(self, slot: int) -> CommandResult:
        logger.error(f"Slot {slot} not found")
        return CommandResult(False, f"Slot {slot} not found")

    async def _contained(self, slot: int, action: str, call: Callable[[SessionSupervisor], Any]) -> CommandResult:
        session = self.sessions.get(slot)
        if session is None:
            return self._not_found(slot)
        try:
            result = call(session)
            if inspect.isawaitable(result):
                result = await result
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Slot {slot}: {action} failed: {e}")
            return CommandResult(False, f"Slot {slot}: {action} failed: {e}")
        return result

    async def start_slot(self, slot: int) -> CommandResult:
        return await self._contained(slot, "start", lambda s: s.start())

    async def stop_slot(self, slot: int) -> CommandResult:
        return await self._contained(slot, "stop", lambda s: s.stop())

    async def restart_slot(self, slot: int) -> CommandResult:
        return await self._contained(slot, "restart", lambda s: s.restart())

    async def pause_slot(self, slot: int) -> CommandResult:
        return await self._contained(slot, "pause", lambda s: s.pause())

    async def resume_slot(self, slot: int) -> CommandResult:
        return await self._contained(slot, "resume", lambda s: s.resume())

    async def move_slot(self, slot: int, direction: str, distance: float) -> CommandResult:
        return await self._contained(slot, "move", lambda s: s.move(direction, distance))

    async def drop_item(self, slot: int, item_name: str, count: Optional[int] = None) -> CommandResult:
        return await self._contained(slot, "drop", lambda s: s.drop_item(item_name, count))

    async def toggle_protection(self, slot: int, explicit_state: Optional[bool] = None) -> CommandResult:
        """Toggle protection on one slot and persist the override."""
        result = await self._contained(slot, "protect", lambda s: s.toggle_protection(explicit_state))
        if not result.success:
            return result

        account = self.config.account(slot)
        if account is not None:
            self.config.replace_account(slot, replace(account, protection_override=result.data))
            self.config.save()

        state = "ENABLED ✅" if result.data else "DISABLED ❌"
        return CommandResult(True, f"🛡️ Slot {slot} protection: {state}", data=result.data)

    def get_slot_status(self, slot: int) -> Optional[Dict[str, Any]]:
        session = self.sessions.get(slot)
        return session.get_status() if session else None

    def get_slot_stats(self, slot: int) -> Optional[Dict[str, Any]]:
        session = self.sessions.get(slot)
        return session.get_stats() if session else None

    def get_slot_inventory(self, slot: int) -> Optional[List[Dict[str, Any]]]:
        session = self.sessions.get(slot)
        return session.get_inventory() if session else None

    # -- fleet-wide -------------------------------------------------------------------

    def start_all(self) -> List[CommandResult]:
        logger.info("Starting all bots")
        results = []
        for slot in self.available_slots():
            try:
                results.append(self.sessions[slot].start())
            except Exception as e:
                logger.error(f"Slot {slot}: start failed: {e}")
                results.append(CommandResult(False, f"Slot {slot}: start failed: {e}"))
        logger.info("All bots started")
        return results

    async def stop_all(self) -> List[CommandResult]:
        logger.info("Stopping all bots")
        restart = self._restart_task
        if restart is not None and not restart.done() and restart is not asyncio.current_task():
            restart.cancel()
        self._restart_task = None

        slots = self.available_slots()
        outcomes = await asyncio.gather(
            *(self.sessions[slot].stop() for slot in slots),
            return_exceptions=True
        )

        results = []
        for slot, outcome in zip(slots, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(f"Slot {slot}: stop failed: {outcome}")
                results.append(CommandResult(False, f"Slot {slot}: stop failed: {outcome}"))
            else:
                results.append(outcome)
        logger.info("All bots stopped")
        return results

    async def restart_all(self) -> CommandResult:
        logger.info("Restarting all bots")
        await self.stop_all()
        self._restart_task = self._spawn(self._start_all_after(self.restart_all_delay), "restart_all")
        return CommandResult(True, f"Restarting all bots in {self.restart_all_delay:.0f}s")

    async def _start_all_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        self.start_all()

    def get_all_status(self) -> List[Dict[str, Any]]:
        return [self.sessions[slot].get_status() for slot in self.available_slots()]

    def get_all_stats(self) -> List[Dict[str, Any]]:
        return [self.sessions[slot].get_stats() for slot in self.available_slots()]

    async def send_message(self, slots: Iterable[int], message: str) -> List[Dict[str, Any]]:
        """
        Send a chat message from several slots.

        Returns:
            One ``{slot, success[, error]}`` entry per requested slot
        """
        results = []
        for slot in slots:
            if slot not in self.sessions:
                results.append({"slot": slot, "success": False, "error": "Slot not found"})
                continue
            result = await self._contained(slot, "say", lambda s: s.send_chat(message))
            entry = {"slot": slot, "success": result.success}
            if not result.success:
                entry["error"] = result.message
            results.append(entry)
        return results

    async def send_message_to_all(self, message: str) -> List[Dict[str, Any]]:
        return await self.send_message(self.available_slots(), message)

    async def shutdown(self) -> None:
        """Stop every slot and flush outstanding notifications."""
        await self.stop_all()
        for session in list(self.sessions.values()):
            session.timers.cancel_all()
        current = asyncio.current_task()
        for task in list(self._pending):
            if task is not current:
                task.cancel()
        await self.notifier.drain()

    # -- accounts -----------------------------------------------------------------------

    def _deliver(self, reply: Optional[Reply], message: str) -> None:
        if reply is None:
            logger.info(f"[Config Action] {message}")
            return
        try:
            result = reply(message)
        except Exception as e:
            logger.error(f"Reply failed: {e}")
            return
        if inspect.isawaitable(result):
            self._spawn(result, "reply")

    async def add_account(self, reply: Optional[Reply] = None) -> CommandResult:
        """
        Provision a new account in the next free slot.

        The device code is relayed through ``reply``. After the first
        successful login the real username is persisted, the login profile
        is moved to its permanent folder and a permanent supervisor takes
        over the slot.

        Args:
            reply: Callback (sync or async) that reaches the requesting operator

        Returns:
            Whether the authentication flow was started
        """
        slots = set(self.sessions) | {account.slot for account in self.config.accounts}
        new_slot = max(slots) + 1 if slots else 1

        self._deliver(reply, f"🚀 Initializing New Account\nSlot: {new_slot}\n"
                             f"Status: Waiting for Microsoft Auth...")

        def on_msa_code(data: Dict[str, str]) -> None:
            logger.info(f"[Slot {new_slot}] Auth Code: {data.get('user_code')}")
            self._deliver(reply, "🔐 Microsoft Authentication Required\n\n"
                                 f"1. Go to: {data.get('verification_uri')}\n"
                                 f"2. Enter Code: {data.get('user_code')}\n\n"
                                 "The bot will start automatically after login.")

        temp = SessionConfig(slot=new_slot, username=f"{TEMP_ACCOUNT_PREFIX}{new_slot}")
        session = self._create_session(temp, on_msa_code=on_msa_code)

        def on_authenticated(host: str, version: Optional[str]) -> None:
            session.on_connect = None
            username = session.client.username if session.client is not None else None
            self._spawn(self._complete_provisioning(session, username, reply), "provision")

        session.on_connect = on_authenticated
        self.sessions[new_slot] = session

        result = session.start()
        if not result.success:
            del self.sessions[new_slot]
            return CommandResult(False, f"Failed to start auth process: {result.message}")
        return CommandResult(True, f"Auth process started for slot {new_slot}")

    async def _complete_provisioning(
        self,
        session: SessionSupervisor,
        username: Optional[str],
        reply: Optional[Reply]
    ) -> None:
        temp_name = session.username
        await session.stop()
        slot = session.slot

        if not username:
            logger.error(f"[Slot {slot}] Login finished without a username")
            self._deliver(reply, "❌ Authentication finished without a username")
            return
        if self.sessions.get(slot) is not session:
            logger.warning(f"[Slot {slot}] Provisioning slot was removed before login completed")
            return

        logger.info(f"[Slot {slot}] Successfully authenticated as {username}")
        account = SessionConfig(slot=slot, username=username, auth="microsoft")
        self.config.replace_account(slot, account)
        self.config.save()
        self._deliver(reply, f"✅ Authentication Successful!\nUser: {username}\n"
                             f"Slot: {slot}\nAdded to configuration.")

        await asyncio.sleep(self.profile_release_delay)
        self._move_profile(slot, temp_name, username)

        if self.sessions.get(slot) is not session:
            return
        permanent = self._create_session(account)
        self.sessions[slot] = permanent
        result = permanent.start()
        if not result.success:
            logger.error(f"Failed to restart bot with new session: {result.message}")
            self._deliver(reply, f"❌ Failed to restart with saved session: {result.message}")

    def _move_profile(self, slot: int, temp_name: str, username: str) -> None:
        profiles = Path(self.config.server.profiles_dir)
        old_path = profiles / temp_name
        new_path = profiles / username
        if not old_path.exists():
            logger.debug(f"[Slot {slot}] No profile folder at {old_path}")
            return
        try:
            shutil.rmtree(new_path, ignore_errors=True)
            os.rename(old_path, new_path)
            logger.info(f"[Slot {slot}] Renamed session folder to {username}")
        except OSError as e:
            logger.error(f"[Slot {slot}] Failed to rename session folder: {e}")

    async def remove_account(self, slot: int) -> CommandResult:
        """
        Remove a slot and shift every later slot down by one.

        Args:
            slot: Slot to remove

        Returns:
            CommandResult reporting how many slots were shifted
        """
        session = self.sessions.get(slot)
        if session is None:
            return CommandResult(False, f"Slot {slot} not found.")

        try:
            await session.close()
        except Exception as e:
            logger.error(f"Slot {slot}: Error while closing: {e}")
        del self.sessions[slot]
        self.config.replace_account(slot, None)

        shifted = 0
        for old_slot in sorted(s for s in self.sessions if s > slot):
            moving = self.sessions.pop(old_slot)
            new_slot = old_slot - 1

            account = self.config.account(old_slot)
            if account is not None:
                self.config.replace_account(old_slot, None)
                self.config.replace_account(new_slot, replace(account, slot=new_slot))

            moving.renumber(new_slot)
            self.sessions[new_slot] = moving
            shifted += 1

        self.config.save()

        message = f"Account in slot {slot} removed."
        if shifted:
            message += f" {shifted} subsequent account(s) shifted down."
        logger.info(message)
        return CommandResult(True, message)

    def get_account_list(self) -> List[Dict[str, Any]]:
        accounts = []
        for account in sorted(self.config.accounts, key=lambda a: a.slot):
            session = self.sessions.get(account.slot)
            accounts.append({
                "slot": account.slot,
                "username": account.username,
                "status": session.state.phase.value if session else "stopped",
            })
        return accounts

    # -- whitelist ------------------------------------------------------------------------

    def get_whitelist(self) -> List[str]:
        return list(self.config.whitelist)

    def add_to_whitelist(self, username: str) -> CommandResult:
        if username.lower() in normalize_names(self.config.whitelist):
            return CommandResult(False, f"{username} is already in the whitelist")
        self.config.whitelist.append(username)
        self._push_whitelist()
        return CommandResult(True, f"Added {username} to whitelist")

    def remove_from_whitelist(self, username: str) -> CommandResult:
        if not self.config.whitelist:
            return CommandResult(False, "Whitelist is empty")
        remaining = [name for name in self.config.whitelist if name.lower() != username.lower()]
        if len(remaining) == len(self.config.whitelist):
            return CommandResult(False, f"{username} not found in whitelist")
        self.config.whitelist = remaining
        self._push_whitelist()
        return CommandResult(True, f"Removed {username} from whitelist")

    def _push_whitelist(self) -> None:
        names = normalize_names(self.config.whitelist)
        self.config.settings = replace(self.config.settings, alert_whitelist=names)
        for session in self.sessions.values():
            session.update_whitelist(names)
        self.config.save()
