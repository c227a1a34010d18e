"""
mc_client.py - Minecraft client abstraction for the AFK fleet.

This module provides a clean abstraction layer over the actual Minecraft
client/bot library. The rest of the bot code interacts with this interface
rather than directly with protocol-level details.

Internally, an implementation can use:
- A Python Minecraft protocol library (pyCraft-style client)
- A WebSocket bridge to an external Node.js Mineflayer client

The implementation is localized here so swapping client libraries
requires minimal changes to the rest of the codebase. A simulated
``DryRunClient`` is included for dry runs and tests.

SAFETY NOTE:
This bot is intended to be used only where automation is explicitly
allowed by the server owner. Do not use this in violation of any
server's terms of service.
"""

import asyncio
import importlib
import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Callable, Dict, List, Optional, Tuple, Type

from .events import ChatLine, ClientEvent, Disconnected, Login, Spawn

logger = logging.getLogger(__name__)

# Main inventory plus hotbar
INVENTORY_SIZE = 36


class ConnectionState(IntEnum):
    """Connection state for the Minecraft client."""
    DISCONNECTED = 0
    CONNECTING = 1
    PLAYING = 2
    ERROR = 3


@dataclass
class Position:
    """3D position in the world."""
    x: float
    y: float
    z: float

    def to_tuple(self) -> Tuple[float, float, float]:
        return (self.x, self.y, self.z)

    def distance_to(self, other: 'Position') -> float:
        """Calculate Euclidean distance to another position."""
        return math.sqrt(
            (self.x - other.x) ** 2 +
            (self.y - other.y) ** 2 +
            (self.z - other.z) ** 2
        )

    def copy(self) -> 'Position':
        return Position(self.x, self.y, self.z)

    def __str__(self) -> str:
        return f"({self.x:.1f}, {self.y:.1f}, {self.z:.1f})"


@dataclass
class Block:
    """Block information."""
    x: int
    y: int
    z: int
    block_id: str  # e.g., "minecraft:spawner"
    block_state: Dict[str, Any] = field(default_factory=dict)

    @property
    def name(self) -> str:
        """Block name without namespace (e.g., "spawner")."""
        return self.block_id.split(":")[-1]

    @property
    def position(self) -> Position:
        return Position(self.x, self.y, self.z)


@dataclass
class Entity:
    """Entity information."""
    entity_id: int
    entity_type: str  # e.g., "minecraft:player", "minecraft:zombie"
    position: Optional[Position]
    username: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_player(self) -> bool:
        return self.entity_type.split(":")[-1] == "player"


@dataclass
class Item:
    """Item information."""
    item_id: str  # e.g., "minecraft:bread"
    count: int
    slot: int
    durability_used: Optional[int] = None
    max_durability: Optional[int] = None
    nbt: Optional[Dict] = None

    @property
    def name(self) -> str:
        """Item name without namespace (e.g., "bread")."""
        return self.item_id.split(":")[-1]


@dataclass
class ClientConfig:
    """
    Configuration for one Minecraft client connection.

    Credentials are never stored here; Microsoft auth tokens are cached
    by the client implementation under ``profiles_dir``.
    """
    host: str = "localhost"
    port: int = 25565
    username: str = ""
    auth: str = "microsoft"
    version: Optional[str] = None  # None lets the client auto-detect
    profiles_dir: str = "sessions"

    # Called with {"user_code": ..., "verification_uri": ...} during MSA login
    on_msa_code: Optional[Callable[[Dict[str, str]], None]] = None

    # Safety settings
    dry_run: bool = False


EventHandler = Callable[[ClientEvent], None]


class MinecraftClient(ABC):
    """
    Abstraction over the actual Minecraft client/bot library.

    One instance owns one network connection. Lifecycle changes are
    reported asynchronously through :meth:`on_event` handlers; the
    methods below expose world state and actions.

    All actions may fail; callers treat failure as "log and continue"
    unless they have a reason to do otherwise.

    Usage:
        client = SomeClient(ClientConfig(host="mc.example.net", username="bot"))
        client.on_event(session.handle_client_event)
        await client.connect()
    """

    def __init__(self, config: Optional[ClientConfig] = None):
        """
        Initialize the Minecraft client.

        Args:
            config: Client configuration
        """
        self.config = config or ClientConfig()
        self._event_handlers: List[EventHandler] = []

    # -- events -------------------------------------------------------------

    def on_event(self, handler: EventHandler) -> None:
        """
        Register an event handler.

        Args:
            handler: Callback receiving every ClientEvent in emission order
        """
        self._event_handlers.append(handler)

    def _emit_event(self, event: ClientEvent) -> None:
        """Emit an event to registered handlers."""
        for handler in list(self._event_handlers):
            try:
                handler(event)
            except Exception as e:
                logger.error(f"Error in event handler for {type(event).__name__}: {e}")

    # -- lifecycle ------------------------------------------------------------

    @abstractmethod
    async def connect(self) -> None:
        """Open the connection. Login/Spawn follow as events."""

    @abstractmethod
    async def disconnect(self) -> None:
        """Gracefully close the connection. Disconnected follows as an event."""

    @abstractmethod
    def is_connected(self) -> bool:
        """Check if client is connected and playing."""

    @property
    def username(self) -> str:
        """Name the server knows this player by."""
        return self.config.username

    @property
    def version(self) -> Optional[str]:
        """Negotiated protocol version, when known."""
        return self.config.version

    # -- state ------------------------------------------------------------------

    @abstractmethod
    def get_position(self) -> Optional[Position]:
        """Get the current player position."""

    @abstractmethod
    def get_health(self) -> Optional[float]:
        """Get current health (0-20)."""

    @abstractmethod
    def get_food(self) -> Optional[float]:
        """Get current food level (0-20)."""

    @abstractmethod
    def get_inventory(self) -> List[Item]:
        """Get the non-empty stacks in the player's inventory."""

    @abstractmethod
    def empty_slot_count(self) -> int:
        """Number of free inventory slots."""

    @abstractmethod
    def get_nearby_entities(self) -> List[Entity]:
        """Get entities currently tracked by the client."""

    @abstractmethod
    def get_block_at(self, position: Position) -> Optional[Block]:
        """Get the block at a position, or None if not loaded."""

    @abstractmethod
    def find_blocks(
        self,
        matching: Callable[[Block], bool],
        max_distance: float,
        count: int
    ) -> List[Position]:
        """
        Find loaded blocks near the player.

        Args:
            matching: Predicate selecting blocks
            max_distance: Search radius in blocks
            count: Maximum number of positions to return

        Returns:
            Block positions, nearest first
        """

    # -- actions ----------------------------------------------------------------

    @abstractmethod
    def set_control_state(self, control: str, state: bool) -> None:
        """Press or release a movement control ("jump", "sneak", "forward", ...)."""

    @abstractmethod
    async def equip(self, item: Item, destination: str = "hand") -> None:
        """Move an item into the given equipment slot."""

    @abstractmethod
    async def consume(self) -> None:
        """Eat or drink the held item. Resolves when finished."""

    @abstractmethod
    async def chat(self, message: str) -> None:
        """Send a chat message or command (e.g., "/home")."""

    @abstractmethod
    async def look_at(self, position: Position) -> None:
        """Turn the player's head towards a position."""

    @abstractmethod
    async def dig_block(self, block: Block) -> None:
        """Break a block. Resolves when the block is broken."""

    @abstractmethod
    async def toss(self, item: Item, count: int) -> None:
        """Drop ``count`` items of the given stack."""


class DryRunClient(MinecraftClient):
    """
    Simulated client that keeps a tiny in-memory world.

    Used by ``main.py run --dry-run`` to exercise the supervisor without
    a server, and by the test suite as the base for scripted fakes.
    Every action only mutates the local world model and logs what a real
    client would have sent.
    """

    def __init__(self, config: Optional[ClientConfig] = None):
        super().__init__(config)
        self._state = ConnectionState.DISCONNECTED

        self.position: Optional[Position] = None
        self.spawn_point = Position(0, 64, 0)
        self.health: float = 20.0
        self.food: float = 20.0
        self.items: List[Item] = []
        self.entities: Dict[int, Entity] = {}
        self.blocks: Dict[Tuple[int, int, int], Block] = {}
        self.controls: Dict[str, bool] = {}
        self.sent_chat: List[str] = []
        self.actions: List[Tuple[str, Any]] = []

    # -- simulation helpers -----------------------------------------------

    def teleport(self, position: Position) -> None:
        """Move the player and report a respawn, as servers do on /warp."""
        self.position = position.copy()
        self._emit_event(Spawn())

    def receive_chat(self, text: str) -> None:
        self._emit_event(ChatLine(text))

    def drop_connection(self) -> None:
        """Simulate the server closing the connection."""
        self._state = ConnectionState.DISCONNECTED
        self._emit_event(Disconnected())

    # -- lifecycle ------------------------------------------------------------

    async def connect(self) -> None:
        if self._state != ConnectionState.DISCONNECTED:
            logger.warning("Client already connected or connecting")
            return

        self._state = ConnectionState.CONNECTING
        logger.info(f"[DRY RUN] Connecting to {self.config.host}:{self.config.port} "
                    f"as {self.config.username}")
        await asyncio.sleep(0)

        self._state = ConnectionState.PLAYING
        if self.position is None:
            self.position = self.spawn_point.copy()
        self._emit_event(Login())
        self._emit_event(Spawn())

    async def disconnect(self) -> None:
        if self._state == ConnectionState.DISCONNECTED:
            return

        logger.info("[DRY RUN] Disconnecting")
        self._state = ConnectionState.DISCONNECTED
        self._emit_event(Disconnected())

    def is_connected(self) -> bool:
        return self._state == ConnectionState.PLAYING

    # -- state ------------------------------------------------------------------

    def get_position(self) -> Optional[Position]:
        return self.position

    def get_health(self) -> Optional[float]:
        return self.health

    def get_food(self) -> Optional[float]:
        return self.food

    def get_inventory(self) -> List[Item]:
        return list(self.items)

    def empty_slot_count(self) -> int:
        return max(0, INVENTORY_SIZE - len(self.items))

    def get_nearby_entities(self) -> List[Entity]:
        return list(self.entities.values())

    def get_block_at(self, position: Position) -> Optional[Block]:
        key = (int(position.x), int(position.y), int(position.z))
        return self.blocks.get(key)

    def find_blocks(
        self,
        matching: Callable[[Block], bool],
        max_distance: float,
        count: int
    ) -> List[Position]:
        if self.position is None:
            return []

        found = []
        for block in self.blocks.values():
            distance = block.position.distance_to(self.position)
            if distance <= max_distance and matching(block):
                found.append((distance, block.position))

        found.sort(key=lambda pair: pair[0])
        return [pos for _, pos in found[:count]]

    # -- actions ----------------------------------------------------------------

    def set_control_state(self, control: str, state: bool) -> None:
        self.controls[control] = state
        self.actions.append(("control", (control, state)))

    async def equip(self, item: Item, destination: str = "hand") -> None:
        logger.info(f"[DRY RUN] Would equip {item.name} to {destination}")
        self.actions.append(("equip", item.name))

    async def consume(self) -> None:
        self.actions.append(("consume", None))
        self.food = 20.0

    async def chat(self, message: str) -> None:
        logger.info(f"[DRY RUN] Would send chat: {message}")
        self.sent_chat.append(message)

    async def look_at(self, position: Position) -> None:
        self.actions.append(("look_at", position))

    async def dig_block(self, block: Block) -> None:
        logger.info(f"[DRY RUN] Would dig {block.name} at {block.position}")
        self.actions.append(("dig", block.position))
        self.blocks.pop((block.x, block.y, block.z), None)

    async def toss(self, item: Item, count: int) -> None:
        self.actions.append(("toss", (item.name, count)))
        remaining = item.count - count
        self.items = [i for i in self.items if i is not item]
        if remaining > 0:
            self.items.append(Item(item.item_id, remaining, item.slot))


def load_client_class(path: str) -> Type[MinecraftClient]:
    """
    Resolve a client implementation from a "module:Class" path.

    Args:
        path: Import path, e.g. "integration.mc_client:DryRunClient"

    Returns:
        The MinecraftClient subclass

    Raises:
        ValueError: If the path is malformed or does not name a client class
    """
    module_name, _, class_name = path.partition(":")
    if not module_name or not class_name:
        raise ValueError(f"Client backend must look like 'module:Class', got {path!r}")

    module = importlib.import_module(module_name)
    cls = getattr(module, class_name, None)
    if not isinstance(cls, type) or not issubclass(cls, MinecraftClient):
        raise ValueError(f"{path!r} is not a MinecraftClient implementation")
    return cls
