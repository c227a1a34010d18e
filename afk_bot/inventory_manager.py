"""
inventory_manager.py - Inventory queries and item dropping.

This module provides inventory management for a slot:
- Food lookup for auto-eat
- Tool lookup for the protection sequence
- Free capacity checks
- Dropping items on operator request
"""

import logging
from typing import Any, Dict, FrozenSet, List, Optional

from integration.mc_client import Item, MinecraftClient

logger = logging.getLogger(__name__)


class InventoryManager:
    """
    Inventory helpers for one Minecraft client.

    Handles:
    - Finding edible items
    - Picking the best tool for a job
    - Reporting free capacity
    - Tossing items
    """

    def __init__(self, client: MinecraftClient, label: str = ""):
        """
        Initialize the inventory manager.

        Args:
            client: Minecraft client for inventory operations
            label: Log prefix (e.g., "Slot 1")
        """
        self.client = client
        self.label = label

    def find_food(self, food_items: FrozenSet[str]) -> Optional[Item]:
        """
        Find the first edible stack in the inventory.

        Args:
            food_items: Item names considered edible

        Returns:
            The item, or None if there is nothing to eat
        """
        for item in self.client.get_inventory():
            if item.name in food_items:
                return item
        return None

    def find_tool(self, keyword: str) -> Optional[Item]:
        """
        Find the tool with the most durability left whose name contains ``keyword``.

        Args:
            keyword: Substring of the tool name (e.g., "pickaxe")

        Returns:
            Best matching tool, or None
        """
        candidates = [item for item in self.client.get_inventory() if keyword in item.name]
        if not candidates:
            return None
        return max(candidates, key=self._durability_left)

    @staticmethod
    def _durability_left(item: Item) -> float:
        if item.max_durability is None:
            return float('inf')
        return item.max_durability - (item.durability_used or 0)

    def has_capacity(self, reserve: int = 0) -> bool:
        """True while more than ``reserve`` inventory slots are free."""
        return self.client.empty_slot_count() > reserve

    def list_items(self) -> List[Dict[str, Any]]:
        """Inventory contents as plain dictionaries."""
        return [
            {"name": item.name, "count": item.count, "slot": item.slot}
            for item in self.client.get_inventory()
        ]

    async def drop(self, item_name: str, count: Optional[int] = None) -> List[str]:
        """
        Toss every stack whose name contains ``item_name``.

        Args:
            item_name: Substring to match, or "all" for everything
            count: Items to drop per stack (None drops whole stacks)

        Returns:
            Descriptions of what was dropped, e.g. ["64x dirt"]
        """
        items = [
            item for item in self.client.get_inventory()
            if item_name == "all" or item_name in item.name
        ]

        dropped = []
        for item in items:
            drop_count = min(count, item.count) if count else item.count
            await self.client.toss(item, drop_count)
            logger.info(f"{self.label}: Dropped {drop_count}x {item.name}")
            dropped.append(f"{drop_count}x {item.name}")

        return dropped
