"""
threat.py - Proximity scanning, alerts and emergency disconnect.

Each scan collects the other players around the slot and measures their
distance. Two rules apply:

- Emergency: any player within ``emergency_distance`` makes the slot
  notify and disconnect immediately, whether or not protection is on.
- Alert: a player within ``alert_distance`` whose cooldown has elapsed
  triggers a burst of notifications and, when protection is enabled,
  the protection sequence.

Whitelisted players are ignored by both rules.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, List, Optional

import numpy as np

from integration.mc_client import Position

if TYPE_CHECKING:
    from .session import SessionSupervisor

logger = logging.getLogger(__name__)


@dataclass
class Contact:
    """A non-whitelisted player near the slot."""
    username: str
    distance: float


class ThreatMonitor:
    """Proximity scan for one slot."""

    TIMER = "threat_scan"

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
            await asyncio.sleep(self.settings.scan_interval)
            if not self.session.timers.is_current(gen):
                return
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"{self.session.label}: Proximity scan failed: {e}")

    def nearby_players(self) -> List[Contact]:
        """
        Other players around the slot, nearest first.

        Excludes the slot's own player, whitelisted names and entities
        without a known position.

        Returns:
            List of Contact
        """
        client = self.session.client
        if client is None:
            return []

        own = client.get_position()
        if own is None:
            return []

        own_name = (client.username or "").lower()
        state = self.session.state

        names = []
        positions = []
        for entity in client.get_nearby_entities():
            if not entity.is_player or entity.username is None:
                continue
            if entity.username.lower() == own_name:
                continue
            if state.is_whitelisted(entity.username):
                continue
            if entity.position is None:
                continue
            names.append(entity.username)
            positions.append(entity.position.to_tuple())

        if not names:
            return []

        distances = _distances(own, np.asarray(positions, dtype=np.float64))
        order = np.argsort(distances, kind="stable")
        return [Contact(names[i], float(distances[i])) for i in order]

    def nearest_emergency(self) -> Optional[Contact]:
        """The closest player inside emergency distance, if any."""
        contacts = self.nearby_players()
        if contacts and contacts[0].distance <= self.settings.protection.emergency_distance:
            return contacts[0]
        return None

    def is_scan_eligible(self) -> bool:
        state = self.session.state
        return self.session.is_online() and not state.is_paused and not state.is_in_lobby

    async def tick(self) -> None:
        """Run one proximity scan."""
        if not self.is_scan_eligible():
            return

        contacts = self.nearby_players()
        if not contacts:
            return

        session = self.session
        nearest = contacts[0]
        if nearest.distance <= self.settings.protection.emergency_distance:
            session.state.stats.alerts_triggered += 1
            logger.error(f"{session.label}: EMERGENCY: {nearest.username} at "
                         f"{round(nearest.distance)}m! Disconnecting to save inventory!")
            session.notify_proximity(nearest.username, nearest.distance)
            await session.stop()
            return

        now = session.clock()
        for contact in contacts:
            if contact.distance > self.settings.alert_distance:
                break
            if not self._cooldown_elapsed(contact.username, now):
                continue
            self._record_alert(contact.username, now)
            self._raise_alert(contact)

    def _cooldown_elapsed(self, username: str, now: float) -> bool:
        last = self.session.state.alert_cooldowns.get(username)
        return last is None or now - last > self.settings.alert_cooldown

    def _record_alert(self, username: str, now: float) -> None:
        cooldowns = self.session.state.alert_cooldowns
        # An entry older than the cooldown behaves exactly like a missing one
        expired = [name for name, at in cooldowns.items()
                   if now - at > self.settings.alert_cooldown]
        for name in expired:
            del cooldowns[name]
        cooldowns[username] = now

    def _raise_alert(self, contact: Contact) -> None:
        session = self.session
        session.state.stats.alerts_triggered += 1
        logger.warning(f"{session.label}: Player {contact.username} within "
                       f"{round(contact.distance)} blocks")

        if session.state.protection_enabled:
            session.protection.trigger()

        session.timers.spawn(f"alert:{contact.username}", self._alert_burst(contact))

    async def _alert_burst(self, contact: Contact) -> None:
        for i in range(self.settings.alert_burst_count):
            if i:
                await asyncio.sleep(self.settings.alert_burst_interval)
            self.session.notify_proximity(contact.username, contact.distance)


def _distances(origin: Position, points: np.ndarray) -> np.ndarray:
    """Euclidean distance from ``origin`` to each row of ``points``."""
    return np.linalg.norm(points - np.asarray(origin.to_tuple(), dtype=np.float64), axis=1)
