"""
Integration module for the AFK fleet.

This module provides integration with external Minecraft clients:
- MinecraftClient: Abstract interface for Minecraft connectivity
- DryRunClient: Simulated client for dry runs and tests
- Client events: Login, Spawn, Disconnected, Kicked, Errored, ChatLine
"""

from .events import ChatLine, ClientEvent, Disconnected, Errored, Kicked, Login, Spawn
from .mc_client import (
    Block,
    ClientConfig,
    DryRunClient,
    Entity,
    Item,
    MinecraftClient,
    Position,
    load_client_class,
)

__all__ = [
    'MinecraftClient',
    'DryRunClient',
    'ClientConfig',
    'Position',
    'Block',
    'Entity',
    'Item',
    'load_client_class',
    'ClientEvent',
    'Login',
    'Spawn',
    'Disconnected',
    'Kicked',
    'Errored',
    'ChatLine',
]
