"""
protection.py - Defend-then-retreat sequence.

When a player comes within alert range and protection is enabled, the
slot clears the configured blocks around it (spawners by default) and
then disconnects:

1. Equip the best matching tool (bare hands if none)
2. Sneak for the whole sequence
3. Scan for targets within radius and clear them one by one, checking
   before every action for an emergency-range player (abort and
   disconnect) and for free inventory capacity (stop)
4. Release sneak and disconnect

Only one sequence runs per slot at a time.
"""

import asyncio
import logging
from enum import Enum, auto
from typing import TYPE_CHECKING

from integration.mc_client import Block

if TYPE_CHECKING:
    from .session import SessionSupervisor

logger = logging.getLogger(__name__)


class ProtectionResult(Enum):
    """Why the sequence ended."""
    COMPLETED = auto()
    INVENTORY_FULL = auto()
    EMERGENCY = auto()
    CONNECTION_LOST = auto()


class ProtectionSequence:
    """Non-reentrant clear-and-retreat task for one slot."""

    TIMER = "protection"

    def __init__(self, session: 'SessionSupervisor'):
        self.session = session
        self.settings = session.settings.protection

    def trigger(self) -> bool:
        """
        Start the sequence in the background unless one is already running.

        Returns:
            True if a new sequence was started
        """
        state = self.session.state
        if state.protection_running or not self.session.is_online():
            return False
        state.protection_running = True
        self.session.timers.spawn(self.TIMER, self.run())
        return True

    async def run(self) -> ProtectionResult:
        session = self.session
        client = session.client
        result = ProtectionResult.CONNECTION_LOST
        try:
            logger.warning(f"{session.label}: INITIATING SPAWNER PROTECTION PROTOCOL")
            result = await self._execute()
        finally:
            session.state.protection_running = False

        # The phase may have left ONLINE while the same client is still attached
        if client is not None and session.client is client:
            try:
                client.set_control_state("sneak", False)
            except Exception as e:
                logger.debug(f"{session.label}: Failed to release sneak: {e}")

        if result == ProtectionResult.CONNECTION_LOST:
            return result

        logger.info(f"{session.label}: Protection protocol complete "
                    f"({result.name.lower()}). Disconnecting.")
        await session.stop()
        return result

    def _still_connected(self, client) -> bool:
        return self.session.client is client and self.session.is_online()

    async def _execute(self) -> ProtectionResult:
        session = self.session
        client = session.client
        if client is None:
            return ProtectionResult.CONNECTION_LOST

        await self._equip_tool(client)
        if not self._still_connected(client):
            return ProtectionResult.CONNECTION_LOST
        client.set_control_state("sneak", True)

        block_type = self.settings.block_type
        while self._still_connected(client):
            if not session.inventory.has_capacity(self.settings.inventory_reserve):
                logger.warning(f"{session.label}: Inventory FULL! Stopping protection.")
                session.notify_inventory(f"Slot {session.slot}: Inventory full, protection stopped")
                return ProtectionResult.INVENTORY_FULL

            targets = client.find_blocks(
                lambda block: block.name == block_type,
                self.settings.radius,
                self.settings.max_targets
            )
            if not targets:
                logger.info(f"{session.label}: All {block_type}s cleared "
                            f"({session.state.stats.blocks_cleared} total).")
                return ProtectionResult.COMPLETED

            logger.info(f"{session.label}: Found {len(targets)} {block_type}(s) remaining. Breaking...")

            for pos in targets:
                if not self._still_connected(client):
                    return ProtectionResult.CONNECTION_LOST

                threat = session.threat.nearest_emergency()
                if threat is not None:
                    logger.error(f"{session.label}: {threat.username} too close while breaking! "
                                 f"EMERGENCY DISCONNECT!")
                    session.notify_proximity(threat.username, threat.distance)
                    return ProtectionResult.EMERGENCY

                if not session.inventory.has_capacity(self.settings.inventory_reserve):
                    logger.warning(f"{session.label}: Inventory FULL mid-break! Stopping.")
                    session.notify_inventory(f"Slot {session.slot}: Inventory full mid-break, protection stopped")
                    return ProtectionResult.INVENTORY_FULL

                block = client.get_block_at(pos)
                if block is None or block.name != block_type:
                    continue

                await self._clear(client, block)
                if self.settings.break_delay > 0:
                    await asyncio.sleep(self.settings.break_delay)

            await asyncio.sleep(self.settings.rescan_delay)

        return ProtectionResult.CONNECTION_LOST

    async def _equip_tool(self, client) -> None:
        label = self.session.label
        tool = self.session.inventory.find_tool(self.settings.tool_keyword)
        if tool is None:
            logger.warning(f"{label}: No {self.settings.tool_keyword} found! Breaking with hand (slow).")
            return
        try:
            await client.equip(tool, "hand")
            logger.info(f"{label}: Equipped {tool.name}")
        except Exception as e:
            logger.error(f"{label}: Failed to equip {tool.name}: {e}")

    async def _clear(self, client, block: Block) -> None:
        label = self.session.label
        try:
            await client.look_at(block.position)
            if self.session.client is not client:
                return
            logger.info(f"{label}: Breaking {block.name} at {block.position}")
            await client.dig_block(block)
        except Exception as e:
            logger.error(f"{label}: Failed to break block at {block.position}: {e}")
            return

        self.session.state.stats.blocks_cleared += 1
        logger.info(f"{label}: Broken {block.name} ({self.session.state.stats.blocks_cleared} total)")
