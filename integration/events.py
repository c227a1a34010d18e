"""
events.py - Lifecycle events emitted by a Minecraft client.

The client reports everything that happens to its connection through
one of these tagged variants. The session supervisor consumes them
through a single dispatch point, so tests can drive a session with
synthetic events and no real connection.
"""

from dataclasses import dataclass
from typing import Any, Union


@dataclass(frozen=True)
class Login:
    """The server accepted the login."""


@dataclass(frozen=True)
class Spawn:
    """The player spawned or respawned in the world."""


@dataclass(frozen=True)
class Disconnected:
    """The connection ended (cleanly or not)."""


@dataclass(frozen=True)
class Kicked:
    """The server kicked the player."""
    reason: Any = ""

    @property
    def reason_text(self) -> str:
        """Kick reason flattened to text (servers may send structured JSON)."""
        if isinstance(self.reason, str):
            return self.reason
        return repr(self.reason)


@dataclass(frozen=True)
class Errored:
    """The client reported an error."""
    reason: str = ""


@dataclass(frozen=True)
class ChatLine:
    """A chat or system message was received."""
    text: str


ClientEvent = Union[Login, Spawn, Disconnected, Kicked, Errored, ChatLine]
