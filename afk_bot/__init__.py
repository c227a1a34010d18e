"""
AFK fleet supervisor.

This package keeps a fleet of game accounts ("slots") online and safe:
- SessionSupervisor: per-slot connection state machine and background behaviours
- FleetCoordinator: slot registry, account provisioning, whitelist
- CommandHandler: operator command surface
- Notifier: fire-and-forget operator notifications
"""

from .settings import (
    BotSettings,
    LobbySettings,
    ProtectionSettings,
    ServerSettings,
    SessionConfig,
    SustenanceSettings,
)
from .state import ConnectionPhase, PhaseTransitionError, SessionState, SessionStats
from .session import CommandResult, SessionSupervisor
from .notifier import Notifier
from .coordinator import FleetCoordinator
from .commands import CommandHandler, CommandParser

__all__ = [
    'BotSettings',
    'LobbySettings',
    'ProtectionSettings',
    'ServerSettings',
    'SessionConfig',
    'SustenanceSettings',
    'ConnectionPhase',
    'PhaseTransitionError',
    'SessionState',
    'SessionStats',
    'CommandResult',
    'SessionSupervisor',
    'Notifier',
    'FleetCoordinator',
    'CommandHandler',
    'CommandParser',
]
