"""
state.py - Connection phase machine and per-slot session state.

The phase machine is a single field plus a transition table. Every
phase change goes through :meth:`SessionState.transition`, which rejects
edges the table does not list.

Phases:
- OFFLINE: No connection, nothing scheduled (or a reconnect pending)
- CONNECTING: A client has been opened and login is awaited
- ONLINE: Logged in; background loops are armed
- KICKED: The server kicked the player; the connection is ending
- ERRORED: The client reported an error
- FAILED: Reconnect attempts exhausted; only an explicit start leaves it
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Optional

from integration.mc_client import Position


class ConnectionPhase(Enum):
    """Session connection phases."""
    OFFLINE = "offline"
    CONNECTING = "connecting"
    ONLINE = "online"
    KICKED = "kicked"
    ERRORED = "error"
    FAILED = "failed"


# Valid phase transitions.
_TRANSITIONS: Dict[ConnectionPhase, FrozenSet[ConnectionPhase]] = {
    ConnectionPhase.OFFLINE: frozenset({ConnectionPhase.CONNECTING, ConnectionPhase.FAILED}),
    ConnectionPhase.CONNECTING: frozenset({
        ConnectionPhase.ONLINE,
        ConnectionPhase.OFFLINE,
        ConnectionPhase.KICKED,
        ConnectionPhase.ERRORED,
    }),
    ConnectionPhase.ONLINE: frozenset({
        ConnectionPhase.OFFLINE,
        ConnectionPhase.KICKED,
        ConnectionPhase.ERRORED,
    }),
    ConnectionPhase.KICKED: frozenset({
        ConnectionPhase.OFFLINE,
        ConnectionPhase.CONNECTING,
        ConnectionPhase.ERRORED,
    }),
    ConnectionPhase.ERRORED: frozenset({
        ConnectionPhase.OFFLINE,
        ConnectionPhase.CONNECTING,
        ConnectionPhase.KICKED,
    }),
    ConnectionPhase.FAILED: frozenset({ConnectionPhase.CONNECTING, ConnectionPhase.OFFLINE}),
}


class PhaseTransitionError(Exception):
    """Raised on an invalid connection phase transition."""


def can_transition(current: ConnectionPhase, target: ConnectionPhase) -> bool:
    """Whether ``current -> target`` is a listed edge (or a no-op)."""
    return current == target or target in _TRANSITIONS[current]


@dataclass
class SessionStats:
    """Counters reported by the ``stats`` command."""
    created_at: float = field(default_factory=time.time)
    connected_since: Optional[float] = None
    uptime: float = 0.0
    reconnects: int = 0
    alerts_triggered: int = 0
    blocks_cleared: int = 0
    lobby_events: int = 0
    last_disconnect: Optional[float] = None

    def current_uptime(self, now: float) -> float:
        """Accumulated uptime plus the running session, if any."""
        if self.connected_since is None:
            return self.uptime
        return self.uptime + (now - self.connected_since)

    def close_session(self, now: float) -> None:
        """Fold the running session into the accumulated uptime."""
        if self.connected_since is not None:
            self.uptime += now - self.connected_since
            self.connected_since = None


@dataclass
class SessionState:
    """
    Mutable state of one slot.

    Owned by exactly one SessionSupervisor and only mutated from that
    supervisor's event handlers and loops.
    """
    whitelist: FrozenSet[str] = frozenset()
    protection_enabled: bool = False

    phase: ConnectionPhase = ConnectionPhase.OFFLINE
    is_paused: bool = False
    is_manually_stopped: bool = False
    reconnect_attempts: int = 0
    reconnect_delay_override: Optional[float] = None

    is_in_lobby: bool = False
    last_known_position: Optional[Position] = None

    alert_cooldowns: Dict[str, float] = field(default_factory=dict)
    protection_running: bool = False
    consuming: bool = False

    stats: SessionStats = field(default_factory=SessionStats)

    def transition(self, target: ConnectionPhase) -> None:
        """Transition to a new phase. Raises PhaseTransitionError if invalid."""
        if not can_transition(self.phase, target):
            msg = f"{self.phase.value} -> {target.value}"
            raise PhaseTransitionError(msg)
        self.phase = target

    def is_whitelisted(self, username: Optional[str]) -> bool:
        return username is not None and username.lower() in self.whitelist
