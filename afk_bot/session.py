"""
session.py - Per-slot session supervisor.

This module implements the supervisor that keeps one account online:
- Owns the connection phase machine and the client handle
- Reconnects after a flat delay, with a one-shot longer delay after a
  "duplicate session" kick, until attempts are exhausted
- Runs four background behaviours while online: idle prevention,
  auto-eat, proximity scanning (with the protection sequence) and
  lobby recovery
- Exposes the operator actions used by the fleet coordinator

Every client event goes through :meth:`SessionSupervisor.handle_event`,
which runs synchronously on the event loop, so handlers of one slot
never interleave. Background work runs as tasks in the slot's
``SlotTimers`` and re-checks session state after every suspension point.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

from integration.events import ChatLine, ClientEvent, Disconnected, Errored, Kicked, Login, Spawn
from integration.mc_client import ClientConfig, MinecraftClient

from .anti_afk import AntiAfk
from .inventory_manager import InventoryManager
from .lobby import LobbyRecovery
from .protection import ProtectionSequence
from .settings import BotSettings, ServerSettings, SessionConfig, normalize_names
from .state import ConnectionPhase, SessionState
from .sustenance import Sustenance
from .threat import ThreatMonitor
from .timers import SlotTimers
from utils.timefmt import format_duration

logger = logging.getLogger(__name__)

# Kick reasons that mean the previous login is still held by the server
DUPLICATE_SESSION_SIGNATURES = ("already online", "already connected")

MOVE_DIRECTIONS = ("forward", "back", "left", "right")

ClientFactory = Callable[[ClientConfig], MinecraftClient]


@dataclass
class CommandResult:
    """Outcome of an operator command."""
    success: bool
    message: str
    data: Any = None

    def to_dict(self) -> Dict[str, Any]:
        result = {"success": self.success, "message": self.message}
        if self.data is not None:
            result["data"] = self.data
        return result


class SessionSupervisor:
    """
    Supervisor for one slot.

    Usage:
        session = SessionSupervisor(SessionConfig(1, "bot"), settings, server, DryRunClient)
        session.on_proximity_alert = lambda name, dist: ...
        session.start()
        ...
        await session.stop()
    """

    def __init__(
        self,
        config: SessionConfig,
        settings: BotSettings,
        server: ServerSettings,
        client_factory: ClientFactory,
        clock: Callable[[], float] = time.time,
        on_msa_code: Optional[Callable[[Dict[str, str]], None]] = None
    ):
        """
        Initialize the supervisor.

        Args:
            config: Slot identity and per-slot overrides
            settings: Behaviour policy snapshot for this slot
            server: Server address and profile cache location
            client_factory: Builds a MinecraftClient for each connection attempt
            clock: Wall clock (seconds); injected by tests
            on_msa_code: Receives Microsoft device-code prompts during login
        """
        self.config = config
        self.settings = settings
        self.server = server
        self.clock = clock
        self._client_factory = client_factory
        self._on_msa_code = on_msa_code

        protection = config.protection_override
        if protection is None:
            protection = settings.protection.enabled
        self.state = SessionState(
            whitelist=settings.alert_whitelist,
            protection_enabled=protection,
        )

        self.label = f"Slot {config.slot}"
        self.timers = SlotTimers(self.label)
        self.client: Optional[MinecraftClient] = None
        self.inventory: Optional[InventoryManager] = None

        # Background behaviours
        self.anti_afk = AntiAfk(self)
        self.sustenance = Sustenance(self)
        self.threat = ThreatMonitor(self)
        self.protection = ProtectionSequence(self)
        self.lobby = LobbyRecovery(self)

        # Collaborator callbacks
        self.on_connect: Optional[Callable[[str, Optional[str]], None]] = None
        self.on_proximity_alert: Optional[Callable[[str, float], None]] = None
        self.on_lobby_detected: Optional[Callable[[bool], None]] = None
        self.on_inventory_alert: Optional[Callable[[str], None]] = None

    @property
    def slot(self) -> int:
        return self.config.slot

    @property
    def username(self) -> str:
        return self.config.username

    def renumber(self, slot: int) -> None:
        """Move this supervisor to another slot number (account removal shifts slots)."""
        self.config = replace(self.config, slot=slot)
        self.label = f"Slot {slot}"
        self.timers.label = self.label

    def is_online(self) -> bool:
        return self.state.phase == ConnectionPhase.ONLINE and self.client is not None

    # -- lifecycle ----------------------------------------------------------------

    def start(self) -> CommandResult:
        """
        Open a new connection. Returns immediately; the outcome arrives as events.

        Returns:
            Failure if a connection attempt is in flight or a client is live
        """
        state = self.state
        if state.phase == ConnectionPhase.CONNECTING:
            logger.warning(f"{self.label}: Already connecting")
            return CommandResult(False, f"{self.label} is already connecting")
        if self.client is not None:
            logger.warning(f"{self.label}: Bot is already running")
            return CommandResult(False, f"{self.label} is already running")

        state.transition(ConnectionPhase.CONNECTING)
        state.is_manually_stopped = False
        logger.info(f"{self.label}: Starting bot for {self.username}")

        try:
            client = self._client_factory(self._client_config())
        except Exception as e:
            logger.error(f"{self.label}: Failed to start bot: {e}")
            state.transition(ConnectionPhase.ERRORED)
            return CommandResult(False, f"Failed to start {self.label}: {e}")

        self.client = client
        self.inventory = InventoryManager(client, self.label)
        client.on_event(lambda event, source=client: self._on_client_event(source, event))
        self.timers.spawn("connect", self._connect(client))
        return CommandResult(True, f"{self.label} started")

    def _client_config(self) -> ClientConfig:
        profile = self.username or f"temp_{self.slot}_{int(self.clock())}"
        return ClientConfig(
            host=self.server.host,
            port=self.server.port,
            username=self.username,
            auth=self.config.auth,
            version=self.server.version,
            profiles_dir=str(Path(self.server.profiles_dir) / profile),
            on_msa_code=self._on_msa_code or self._log_msa_code,
        )

    def _log_msa_code(self, data: Dict[str, str]) -> None:
        logger.info(f"{self.label}: MSA Code: {data.get('user_code')} "
                    f"(Link: {data.get('verification_uri')})")

    async def _connect(self, client: MinecraftClient) -> None:
        try:
            await client.connect()
        except Exception as e:
            if self.client is not client:
                return
            logger.error(f"{self.label}: Connection failed: {e}")
            self.handle_event(Errored(str(e)))
            self.handle_event(Disconnected())

    async def stop(self) -> CommandResult:
        """
        Disconnect and suppress reconnection. Safe to call repeatedly.

        All background tasks are cancelled before the first suspension
        point, so the caller may discard the supervisor right after.
        """
        state = self.state
        state.is_manually_stopped = True
        client = self.client

        self._end_session()
        state.transition(ConnectionPhase.OFFLINE)

        if client is None:
            logger.info(f"{self.label}: Bot is not running")
            return CommandResult(True, f"{self.label} is not running")

        logger.info(f"{self.label}: Stopping bot")
        try:
            await client.disconnect()
        except Exception as e:
            logger.error(f"{self.label}: Error while disconnecting: {e}")
        return CommandResult(True, f"{self.label} stopped")

    async def restart(self) -> CommandResult:
        """Stop, then start again after a short delay."""
        logger.info(f"{self.label}: Restarting bot")
        await self.stop()
        self.timers.spawn("restart", self._start_after(self.settings.restart_delay))
        return CommandResult(True, f"{self.label} restarting")

    async def _start_after(self, delay: float) -> None:
        gen = self.timers.generation
        await asyncio.sleep(delay)
        if self.timers.is_current(gen):
            self.start()

    def pause(self) -> CommandResult:
        self.state.is_paused = True
        logger.info(f"{self.label}: Bot paused")
        return CommandResult(True, f"{self.label} paused")

    def resume(self) -> CommandResult:
        self.state.is_paused = False
        logger.info(f"{self.label}: Bot resumed")
        return CommandResult(True, f"{self.label} resumed")

    async def close(self) -> None:
        """Stop and drop everything; used when the slot is removed."""
        await self.stop()
        self.timers.cancel_all()

    # -- events ---------------------------------------------------------------------

    def _on_client_event(self, source: MinecraftClient, event: ClientEvent) -> None:
        if source is not self.client:
            logger.debug(f"{self.label}: Ignoring {type(event).__name__} from a stale client")
            return
        self.handle_event(event)

    def handle_event(self, event: ClientEvent) -> None:
        """
        Apply one client event to the session.

        Raises:
            PhaseTransitionError: If the event implies an invalid phase change
        """
        if isinstance(event, Login):
            self._on_login()
        elif isinstance(event, Spawn):
            logger.info(f"{self.label}: Spawned in game")
            self.lobby.on_spawn()
        elif isinstance(event, Disconnected):
            self._on_disconnect()
        elif isinstance(event, Kicked):
            self._on_kicked(event)
        elif isinstance(event, Errored):
            self._on_error(event)
        elif isinstance(event, ChatLine):
            logger.info(f"{self.label}: Chat: {event.text}")
            self.lobby.on_chat(event.text)

    def _on_login(self) -> None:
        state = self.state
        state.transition(ConnectionPhase.ONLINE)
        logger.info(f"{self.label}: Logged in successfully")

        if state.reconnect_attempts > 0:
            state.stats.reconnects += 1
        state.reconnect_attempts = 0
        state.stats.connected_since = self.clock()

        self.arm_watchers()
        self.sustenance.arm()

        if self.on_connect:
            version = self.server.version or (self.client.version if self.client else None)
            self.on_connect(self.server.host, version)

    def arm_watchers(self) -> None:
        """Arm idle prevention and proximity scanning as policy allows."""
        if self.settings.anti_afk_enabled:
            self.anti_afk.arm()
        if self.settings.proximity_alert_enabled:
            self.threat.arm()

    def _on_disconnect(self) -> None:
        state = self.state
        logger.warning(f"{self.label}: Connection ended")
        self._end_session()
        state.transition(ConnectionPhase.OFFLINE)

        if state.is_manually_stopped:
            logger.info(f"{self.label}: Reconnect skipped - bot was manually stopped")
            return
        if self.settings.auto_reconnect and not state.is_paused:
            self._schedule_reconnect()

    def _on_kicked(self, event: Kicked) -> None:
        self.state.transition(ConnectionPhase.KICKED)
        reason = event.reason_text
        logger.warning(f"{self.label}: Kicked: {reason}")

        lowered = reason.lower()
        if any(signature in lowered for signature in DUPLICATE_SESSION_SIGNATURES):
            delay = self.settings.duplicate_session_delay
            logger.warning(f"{self.label}: Detected 'already online' kick. "
                           f"Waiting {delay:.0f}s before reconnect.")
            self.state.reconnect_delay_override = delay

    def _on_error(self, event: Errored) -> None:
        self.state.transition(ConnectionPhase.ERRORED)
        logger.error(f"{self.label}: Error: {event.reason}")

    def _end_session(self) -> None:
        """Close uptime accounting, cancel background work and drop the client."""
        state = self.state
        now = self.clock()
        if state.stats.connected_since is not None:
            state.stats.close_session(now)
            state.stats.last_disconnect = now
        elif self.client is not None:
            state.stats.last_disconnect = now

        self.timers.cancel_all()
        self.lobby.reset()
        state.protection_running = False
        state.consuming = False
        self.client = None
        self.inventory = None

    def _schedule_reconnect(self) -> None:
        state = self.state
        max_attempts = self.settings.max_reconnect_attempts
        if state.reconnect_attempts >= max_attempts:
            logger.error(f"{self.label}: Max reconnect attempts reached")
            state.transition(ConnectionPhase.FAILED)
            return

        state.reconnect_attempts += 1
        delay = state.reconnect_delay_override
        if delay is None:
            delay = self.settings.reconnect_delay
        state.reconnect_delay_override = None

        logger.info(f"{self.label}: Reconnecting in {delay:.0f}s "
                    f"(attempt {state.reconnect_attempts}/{max_attempts})")
        self.timers.spawn("reconnect", self._reconnect_after(delay))

    async def _reconnect_after(self, delay: float) -> None:
        gen = self.timers.generation
        await asyncio.sleep(delay)
        if self.timers.is_current(gen) and not self.state.is_manually_stopped:
            self.start()

    # -- notifications ------------------------------------------------------------------

    def notify_proximity(self, username: str, distance: float) -> None:
        if self.on_proximity_alert is None:
            return
        try:
            self.on_proximity_alert(username, distance)
        except Exception as e:
            logger.error(f"{self.label}: Proximity notification failed: {e}")

    def notify_lobby(self, in_lobby: bool) -> None:
        if self.on_lobby_detected is None:
            return
        try:
            self.on_lobby_detected(in_lobby)
        except Exception as e:
            logger.error(f"{self.label}: Lobby notification failed: {e}")

    def notify_inventory(self, message: str) -> None:
        if self.on_inventory_alert is None:
            return
        try:
            self.on_inventory_alert(message)
        except Exception as e:
            logger.error(f"{self.label}: Inventory notification failed: {e}")

    # -- operator actions -------------------------------------------------------------

    def toggle_protection(self, explicit_state: Optional[bool] = None) -> CommandResult:
        """
        Flip (or set) the protection policy of this slot.

        Args:
            explicit_state: New state; None toggles

        Returns:
            CommandResult whose data is the new state
        """
        enabled = not self.state.protection_enabled if explicit_state is None else explicit_state
        self.state.protection_enabled = enabled
        self.config = replace(self.config, protection_override=enabled)
        logger.info(f"{self.label}: Protection {'ENABLED' if enabled else 'DISABLED'}")
        return CommandResult(True, f"{self.label} protection: {'ENABLED' if enabled else 'DISABLED'}",
                             data=enabled)

    def update_whitelist(self, names: Iterable[str]) -> None:
        """Replace the whitelist snapshot of this slot."""
        self.state.whitelist = normalize_names(names)

    def _ready(self) -> bool:
        return self.is_online() and not self.state.is_paused

    async def send_chat(self, message: str) -> CommandResult:
        if not self._ready():
            logger.warning(f"{self.label}: Cannot send chat message - bot not ready")
            return CommandResult(False, f"{self.label} not ready")

        try:
            await self.client.chat(message)
        except Exception as e:
            logger.error(f"{self.label}: Failed to send message: {e}")
            return CommandResult(False, f"Failed to send message: {e}")

        logger.info(f"{self.label}: Sent message: {message}")
        return CommandResult(True, f"{self.label} sent message")

    async def move(self, direction: str, distance: float) -> CommandResult:
        """
        Walk in a direction until displaced ``distance`` blocks or timed out.

        Args:
            direction: One of forward, back, left, right
            distance: Blocks to move (positive)

        Returns:
            CommandResult describing how far the player moved
        """
        if not self._ready():
            return CommandResult(False, "Bot not ready")
        if direction not in MOVE_DIRECTIONS:
            return CommandResult(False, "Invalid direction")
        if distance is None or distance <= 0:
            return CommandResult(False, "Invalid distance")

        client = self.client
        start = client.get_position()
        if start is None:
            return CommandResult(False, "Position unknown")
        start = start.copy()

        loop = asyncio.get_running_loop()
        deadline = loop.time() + distance * 1.0 + 2.0
        client.set_control_state(direction, True)
        try:
            while loop.time() < deadline:
                if self.client is not client:
                    return CommandResult(False, "Bot disconnected")
                pos = client.get_position()
                if pos is not None and pos.distance_to(start) >= distance:
                    return CommandResult(True, f"Moved {direction} {round(pos.distance_to(start))} blocks")
                await asyncio.sleep(0.05)
        finally:
            if self.client is client:
                client.set_control_state(direction, False)

        pos = client.get_position()
        moved = round(pos.distance_to(start)) if pos is not None else 0
        return CommandResult(True, f"Movement timed out (moved {moved} blocks)")

    async def drop_item(self, item_name: str, count: Optional[int] = None) -> CommandResult:
        """Toss matching stacks (or everything with "all")."""
        if not self.is_online():
            return CommandResult(False, "Bot not ready")

        try:
            dropped = await self.inventory.drop(item_name, count)
        except Exception as e:
            logger.error(f"{self.label}: Failed to drop item: {e}")
            return CommandResult(False, str(e))

        if not dropped:
            return CommandResult(False, "Item not found")
        return CommandResult(True, f"Dropped: {', '.join(dropped)}")

    # -- snapshots --------------------------------------------------------------------

    def get_inventory(self) -> Optional[List[Dict[str, Any]]]:
        if not self.is_online():
            return None
        return self.inventory.list_items()

    def get_status(self) -> Dict[str, Any]:
        client = self.client
        position = client.get_position() if client is not None else None
        return {
            "slot": self.slot,
            "username": self.username,
            "phase": self.state.phase.value,
            "is_paused": self.state.is_paused,
            "reconnect_attempts": self.state.reconnect_attempts,
            "health": client.get_health() if client is not None else None,
            "food": client.get_food() if client is not None else None,
            "position": position.to_tuple() if position is not None else None,
            "in_lobby": self.state.is_in_lobby,
            "protection_enabled": self.state.protection_enabled,
        }

    def get_stats(self) -> Dict[str, Any]:
        stats = self.state.stats
        now = self.clock()
        uptime = stats.current_uptime(now)
        session_time = now - stats.connected_since if stats.connected_since is not None else 0.0
        return {
            "slot": self.slot,
            "username": self.username,
            "phase": self.state.phase.value,
            "uptime": uptime,
            "uptime_formatted": format_duration(uptime),
            "session_time": session_time,
            "session_time_formatted": format_duration(session_time),
            "reconnects": stats.reconnects,
            "alerts_triggered": stats.alerts_triggered,
            "blocks_cleared": stats.blocks_cleared,
            "lobby_events": stats.lobby_events,
            "last_disconnect": stats.last_disconnect,
        }



