"""
lobby.py - Lobby / teleport recovery.

Servers move players to a lobby during maintenance or after a warp.
When the slot finds itself far from its last confirmed home position it
enters lobby mode: idle prevention and proximity scanning are cancelled,
operators are notified, and the return command is sent periodically
until the slot is back near home.
"""

import asyncio
import logging
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .session import SessionSupervisor

logger = logging.getLogger(__name__)


class LobbyRecovery:
    """Teleport detection and return loop for one slot."""

    RETRY_TIMER = "lobby_retry"
    CHECK_TIMER = "lobby_check"

    def __init__(self, session: 'SessionSupervisor'):
        self.session = session
        self.settings = session.settings.lobby

    def _distance_from_home(self) -> Optional[float]:
        state = self.session.state
        client = self.session.client
        if client is None or state.last_known_position is None:
            return None
        pos = client.get_position()
        if pos is None:
            return None
        return state.last_known_position.distance_to(pos)

    def is_teleport_message(self, text: str) -> bool:
        lowered = text.lower()
        return any(pattern in lowered for pattern in self.settings.teleport_patterns)

    # -- event entry points ---------------------------------------------------

    def on_spawn(self) -> None:
        """Compare the spawn position with home and update lobby mode."""
        state = self.session.state
        if not self.session.is_online():
            return

        distance = self._distance_from_home()
        if distance is not None:
            if not state.is_in_lobby and distance > self.settings.displacement_threshold:
                logger.warning(f"{self.session.label}: LOBBY DETECTED! "
                               f"Teleported {round(distance)} blocks.")
                self.enter()
                return
            if state.is_in_lobby and distance < self.settings.recovery_threshold:
                self.exit()

        self.remember_position()

    def on_chat(self, text: str) -> None:
        """Schedule a position check after a teleport notice in chat."""
        if not self.session.is_online() or not self.is_teleport_message(text):
            return
        logger.info(f"{self.session.label}: Teleport message: \"{text}\". Checking position.")
        self.session.timers.spawn(self.CHECK_TIMER, self._delayed_check())

    async def _delayed_check(self) -> None:
        gen = self.session.timers.generation
        await asyncio.sleep(self.settings.chat_check_delay)
        if self.session.timers.is_current(gen):
            self.check_position()

    def check_position(self) -> None:
        """Enter or leave lobby mode based on the current distance from home."""
        if not self.session.is_online():
            return
        distance = self._distance_from_home()
        if distance is None:
            return

        in_lobby = self.session.state.is_in_lobby
        if not in_lobby and distance > self.settings.displacement_threshold:
            logger.warning(f"{self.session.label}: TELEPORT DETECTED via chat "
                           f"({round(distance)} blocks). Entering lobby mode.")
            self.enter()
        elif in_lobby and distance < self.settings.recovery_threshold:
            self.exit()

    def remember_position(self) -> None:
        """Record home; never while in lobby mode."""
        state = self.session.state
        client = self.session.client
        if state.is_in_lobby or client is None:
            return
        pos = client.get_position()
        if pos is not None:
            state.last_known_position = pos.copy()

    # -- mode changes -------------------------------------------------------------

    def enter(self) -> None:
        session = self.session
        state = session.state
        if state.is_in_lobby:
            return

        state.is_in_lobby = True
        state.stats.lobby_events += 1
        session.anti_afk.disarm()
        session.threat.disarm()
        session.notify_lobby(True)

        logger.info(f"{session.label}: Starting lobby retry loop "
                    f"(every {self.settings.retry_interval:.0f}s with {self.settings.return_command})")
        session.timers.spawn(self.RETRY_TIMER, self._retry_loop())

    def exit(self) -> None:
        session = self.session
        state = session.state
        if not state.is_in_lobby:
            return

        logger.info(f"{session.label}: Returned from lobby! Resuming normal operation.")
        state.is_in_lobby = False
        session.timers.cancel(self.RETRY_TIMER)
        session.notify_lobby(False)
        session.arm_watchers()

    def reset(self) -> None:
        """Forget lobby mode without notifying (used when the connection ends)."""
        self.session.state.is_in_lobby = False

    async def _retry_loop(self) -> None:
        session = self.session
        gen = session.timers.generation
        delay = self.settings.initial_delay
        while session.timers.is_current(gen):
            await asyncio.sleep(delay)
            delay = self.settings.retry_interval
            if not session.timers.is_current(gen):
                return
            if not session.state.is_in_lobby or not session.is_online():
                return

            logger.info(f"{session.label}: Sending {self.settings.return_command}")
            try:
                await session.client.chat(self.settings.return_command)
            except Exception as e:
                logger.warning(f"{session.label}: Failed to send return command: {e}")
