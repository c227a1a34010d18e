"""Shared test fixtures."""

from typing import Any, Dict, List, Optional

import pytest

from afk_bot.coordinator import FleetCoordinator
from afk_bot.notifier import Notifier
from afk_bot.session import SessionSupervisor
from afk_bot.settings import BotSettings, ServerSettings, SessionConfig
from integration.mc_client import ClientConfig, DryRunClient, Entity, Position
from utils.config import FleetConfig


class FakeClock:
    """Manually advanced wall clock."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ScriptedClient(DryRunClient):
    """DryRunClient whose connect() only opens the socket; tests drive login."""

    def __init__(self, config: Optional[ClientConfig] = None):
        super().__init__(config)
        self.auto_login = True

    async def connect(self) -> None:
        if self.auto_login:
            await super().connect()


class ClientFactory:
    """Records every client the supervisor builds."""

    def __init__(self, client_cls=ScriptedClient, auto_login: bool = True):
        self.client_cls = client_cls
        self.auto_login = auto_login
        self.created: List[DryRunClient] = []

    def __call__(self, config: ClientConfig) -> DryRunClient:
        client = self.client_cls(config)
        client.auto_login = self.auto_login
        self.created.append(client)
        return client

    @property
    def last(self) -> DryRunClient:
        return self.created[-1]


def add_player(client: DryRunClient, entity_id: int, username: str, distance: float) -> Entity:
    """Place a player ``distance`` blocks east of the client."""
    origin = client.position or client.spawn_point
    entity = Entity(
        entity_id=entity_id,
        entity_type="minecraft:player",
        position=Position(origin.x + distance, origin.y, origin.z),
        username=username,
    )
    client.entities[entity_id] = entity
    return entity


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def factory() -> ClientFactory:
    return ClientFactory()


@pytest.fixture
def settings_dict() -> Dict[str, Any]:
    # Long loop intervals so background loops never fire on their own
    return {
        'reconnect_delay': 0.01,
        'duplicate_session_delay': 0.05,
        'restart_delay': 0.01,
        'max_reconnect_attempts': 3,
        'anti_afk_interval': 3600,
        'anti_afk_pulse': 0,
        'scan_interval': 3600,
        'alert_burst_count': 1,
        'alert_burst_interval': 0,
        'protection': {'break_delay': 0, 'rescan_delay': 0},
        'sustenance': {'check_interval': 3600},
        'lobby': {'initial_delay': 3600, 'chat_check_delay': 0},
    }


@pytest.fixture
def settings(settings_dict) -> BotSettings:
    return BotSettings.from_dict(settings_dict)


@pytest.fixture
def make_session(settings, factory, clock, tmp_path):
    def _make(slot: int = 1, username: str = "Bot", bot_settings: Optional[BotSettings] = None,
              protection: Optional[bool] = None) -> SessionSupervisor:
        return SessionSupervisor(
            SessionConfig(slot=slot, username=username, protection_override=protection),
            bot_settings or settings,
            ServerSettings(host="mc.test", profiles_dir=str(tmp_path / "sessions")),
            factory,
            clock=clock,
        )
    return _make


@pytest.fixture(name="add_player")
def add_player_fixture():
    return add_player


@pytest.fixture
def fleet_config(tmp_path, settings_dict) -> FleetConfig:
    return FleetConfig(
        server=ServerSettings(host="mc.test", profiles_dir=str(tmp_path / "sessions")),
        accounts=[
            SessionConfig(1, "Alpha"),
            SessionConfig(2, "Bravo", protection_override=True),
            SessionConfig(3, "Charlie"),
        ],
        settings=BotSettings.from_dict(settings_dict),
        whitelist=["Friend"],
        raw_settings=dict(settings_dict),
        path=str(tmp_path / "config.yaml"),
    )


@pytest.fixture
def notifier() -> Notifier:
    notifier = Notifier()
    notifier.messages = []
    notifier.subscribe(notifier.messages.append)
    return notifier


@pytest.fixture
def coordinator(fleet_config, notifier, clock) -> FleetCoordinator:
    coordinator = FleetCoordinator(fleet_config, notifier, DryRunClient, clock=clock)
    coordinator.profile_release_delay = 0
    coordinator.restart_all_delay = 0.01
    coordinator.initialize()
    return coordinator
