"""
anti_afk.py - Idle prevention.

While a slot is online it periodically taps a movement control so the
server does not flag the player as idle. Failures are ignored: a missed
pulse costs nothing.
"""

import asyncio
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .session import SessionSupervisor

logger = logging.getLogger(__name__)


class AntiAfk:
    """Periodic activity pulse for one slot."""

    TIMER = "anti_afk"

    def __init__(self, session: 'SessionSupervisor'):
        self.session = session
        self.settings = session.settings

    def arm(self) -> None:
        self.session.timers.spawn(self.TIMER, self.run())

    def disarm(self) -> None:
        self.session.timers.cancel(self.TIMER)

    async def run(self) -> None:
        gen = self.session.timers.generation
        while self.session.timers.is_current(gen):
            await asyncio.sleep(self.settings.anti_afk_interval)
            if not self.session.timers.is_current(gen):
                return
            await self.tick()

    def should_pulse(self) -> bool:
        state = self.session.state
        return (
            self.session.is_online()
            and not state.is_paused
            and not state.is_in_lobby
            and not state.consuming
        )

    async def tick(self) -> bool:
        """
        Send one activity pulse if the slot is idle-eligible.

        Returns:
            True if a pulse was sent
        """
        if not self.should_pulse():
            return False

        client = self.session.client
        control = self.settings.anti_afk_control
        try:
            client.set_control_state(control, True)
            await asyncio.sleep(self.settings.anti_afk_pulse)
        except Exception as e:
            logger.debug(f"{self.session.label}: Anti-AFK pulse failed: {e}")
        finally:
            # The connection may have ended while the control was held
            if self.session.client is client:
                try:
                    client.set_control_state(control, False)
                except Exception as e:
                    logger.debug(f"{self.session.label}: Anti-AFK release failed: {e}")
        return True
