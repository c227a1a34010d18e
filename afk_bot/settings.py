"""
settings.py - Behaviour policy for a supervised slot.

Every session gets its own frozen copy of these settings when it is
created. Runtime changes go through explicit override operations on the
session instead of re-reading shared configuration on every tick.
"""

from dataclasses import dataclass, field, fields
from typing import Any, Dict, FrozenSet, Iterable, Optional, Tuple


FOOD_ITEMS: FrozenSet[str] = frozenset({
    'bread', 'cooked_beef', 'cooked_porkchop', 'cooked_chicken',
    'cooked_mutton', 'cooked_rabbit', 'cooked_cod', 'cooked_salmon',
    'golden_apple', 'apple', 'golden_carrot', 'carrot',
    'baked_potato', 'beetroot', 'melon_slice', 'cookie',
    'beef', 'porkchop', 'chicken', 'mutton', 'rabbit',
    'cod', 'salmon', 'potato', 'beetroot_soup',
    'mushroom_stew', 'rabbit_stew', 'suspicious_stew',
    'sweet_berries', 'glow_berries', 'dried_kelp',
    'pumpkin_pie', 'honey_bottle',
})


def normalize_names(names: Iterable[str]) -> FrozenSet[str]:
    """Case-normalize player names for whitelist lookups."""
    return frozenset(name.lower() for name in names)


def _known_fields(cls, data: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Keep only the keys a settings dataclass understands."""
    if not data:
        return {}
    names = {f.name for f in fields(cls)}
    return {key: value for key, value in data.items() if key in names}


@dataclass(frozen=True)
class ProtectionSettings:
    """Emergency disconnect and protection sequence policy."""
    enabled: bool = False
    emergency_distance: float = 10.0
    block_type: str = "spawner"
    radius: float = 5.0
    break_delay: float = 1.5
    tool_keyword: str = "pickaxe"
    max_targets: int = 100
    inventory_reserve: int = 0
    rescan_delay: float = 0.5

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'ProtectionSettings':
        return cls(**_known_fields(cls, data))


@dataclass(frozen=True)
class SustenanceSettings:
    """Auto-eat policy."""
    check_interval: float = 5.0
    food_threshold: float = 14
    consume_timeout: float = 10.0
    timeout_backoff: Tuple[float, ...] = (30.0, 60.0)
    error_backoff: float = 10.0
    food_items: FrozenSet[str] = FOOD_ITEMS

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'SustenanceSettings':
        values = _known_fields(cls, data)
        if 'timeout_backoff' in values:
            values['timeout_backoff'] = tuple(values['timeout_backoff'])
        if 'food_items' in values:
            values['food_items'] = frozenset(values['food_items'])
        return cls(**values)


@dataclass(frozen=True)
class LobbySettings:
    """Lobby / teleport recovery policy."""
    displacement_threshold: float = 200.0
    recovery_threshold: float = 50.0
    initial_delay: float = 10.0
    retry_interval: float = 30.0
    return_command: str = "/home sp1"
    teleport_patterns: Tuple[str, ...] = ("teleported", "ışınlandı")
    chat_check_delay: float = 1.5

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'LobbySettings':
        values = _known_fields(cls, data)
        if 'teleport_patterns' in values:
            values['teleport_patterns'] = tuple(p.lower() for p in values['teleport_patterns'])
        return cls(**values)


@dataclass(frozen=True)
class BotSettings:
    """
    Global bot behaviour policy.

    Loaded from the ``settings`` section of the config file. Durations
    are in seconds, distances in blocks.
    """
    # Reconnection
    auto_reconnect: bool = True
    reconnect_delay: float = 5.0
    max_reconnect_attempts: int = 5
    duplicate_session_delay: float = 6.0
    restart_delay: float = 2.0

    # Idle prevention
    anti_afk_enabled: bool = True
    anti_afk_interval: float = 30.0
    anti_afk_control: str = "jump"
    anti_afk_pulse: float = 0.1

    # Proximity alerts
    proximity_alert_enabled: bool = True
    scan_interval: float = 1.0
    alert_distance: float = 96.0
    alert_cooldown: float = 300.0
    alert_burst_count: int = 5
    alert_burst_interval: float = 1.0
    alert_whitelist: FrozenSet[str] = frozenset()

    protection: ProtectionSettings = field(default_factory=ProtectionSettings)
    sustenance: SustenanceSettings = field(default_factory=SustenanceSettings)
    lobby: LobbySettings = field(default_factory=LobbySettings)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'BotSettings':
        """
        Build settings from a config dictionary.

        Unknown keys are ignored so old config files keep loading.

        Args:
            data: The ``settings`` section of the config file

        Returns:
            Frozen BotSettings
        """
        data = data or {}
        values = _known_fields(cls, data)
        values['alert_whitelist'] = normalize_names(data.get('alert_whitelist') or [])
        values['protection'] = ProtectionSettings.from_dict(data.get('protection'))
        values['sustenance'] = SustenanceSettings.from_dict(data.get('sustenance'))
        values['lobby'] = LobbySettings.from_dict(data.get('lobby'))
        return cls(**values)


@dataclass(frozen=True)
class ServerSettings:
    """Where the fleet connects and where login profiles are cached."""
    host: str = "localhost"
    port: int = 25565
    version: Optional[str] = None
    profiles_dir: str = "sessions"

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'ServerSettings':
        values = _known_fields(cls, data)
        if values.get('version') is False:
            values['version'] = None
        return cls(**values)


@dataclass(frozen=True)
class SessionConfig:
    """
    Identity of one managed slot.

    ``protection_override`` replaces the global protection policy for
    this slot when set; operator commands change it and the fleet
    coordinator persists it.
    """
    slot: int
    username: str
    auth: str = "microsoft"
    protection_override: Optional[bool] = None

    def __post_init__(self):
        if self.slot < 1:
            raise ValueError(f"Slot must be a positive integer, got {self.slot}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SessionConfig':
        return cls(
            slot=int(data['slot']),
            username=data.get('username', ''),
            auth=data.get('auth', 'microsoft'),
            protection_override=data.get('protection'),
        )

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "slot": self.slot,
            "username": self.username,
            "auth": self.auth,
        }
        if self.protection_override is not None:
            result["protection"] = self.protection_override
        return result
