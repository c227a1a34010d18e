"""
config.py - Configuration management for the AFK fleet.

This module provides utilities for:
- Loading configuration from YAML/JSON files
- Saving configuration back (accounts and whitelist are edited at runtime)
- Validating the loaded structure before the fleet starts
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from afk_bot.settings import BotSettings, ServerSettings, SessionConfig

logger = logging.getLogger(__name__)

DEFAULT_CLIENT_BACKEND = "integration.mc_client:DryRunClient"


class ConfigError(Exception):
    """Raised when a configuration file is missing or invalid."""


def _is_yaml(path: str) -> bool:
    return path.endswith('.yaml') or path.endswith('.yml')


def load_config(path: str) -> Dict[str, Any]:
    """
    Load configuration from a YAML or JSON file.

    Args:
        path: Path to configuration file

    Returns:
        Configuration dictionary

    Raises:
        ConfigError: If the file is missing or cannot be parsed
    """
    if not Path(path).exists():
        raise ConfigError(f"Config file not found: {path}")

    try:
        with open(path, 'r', encoding='utf-8') as f:
            if _is_yaml(path):
                data = yaml.safe_load(f)
            else:
                data = json.load(f)
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise ConfigError(f"Error loading config {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config root must be a mapping, got {type(data).__name__}")
    return data


def save_config(config: Dict[str, Any], path: str) -> None:
    """
    Save configuration to a file.

    Args:
        config: Configuration dictionary
        path: Path to save to
    """
    Path(path).parent.mkdir(parents=True, exist_ok=True)

    with open(path, 'w', encoding='utf-8') as f:
        if _is_yaml(path):
            yaml.safe_dump(config, f, default_flow_style=False, sort_keys=False, allow_unicode=True)
        else:
            json.dump(config, f, indent=4, ensure_ascii=False)
    logger.info(f"Configuration saved to {path}")


def validate_config(data: Dict[str, Any]) -> List[str]:
    """
    Check a configuration dictionary for structural problems.

    Args:
        data: Parsed configuration

    Returns:
        List of problems (empty when the config is usable)
    """
    problems = []

    server = data.get('server')
    if not isinstance(server, dict) or not server.get('host'):
        problems.append("server.host is required")
    elif not isinstance(server.get('port', 25565), int):
        problems.append("server.port must be an integer")

    accounts = data.get('accounts') or []
    if not isinstance(accounts, list):
        problems.append("accounts must be a list")
        accounts = []

    seen = set()
    for index, account in enumerate(accounts):
        if not isinstance(account, dict):
            problems.append(f"accounts[{index}] must be a mapping")
            continue
        slot = account.get('slot')
        if not isinstance(slot, int) or slot < 1:
            problems.append(f"accounts[{index}].slot must be a positive integer")
        elif slot in seen:
            problems.append(f"accounts[{index}].slot {slot} is duplicated")
        else:
            seen.add(slot)
        if not account.get('username'):
            problems.append(f"accounts[{index}].username is required")

    settings = data.get('settings')
    if settings is not None and not isinstance(settings, dict):
        problems.append("settings must be a mapping")

    client = data.get('client')
    if client is not None and not isinstance(client, dict):
        problems.append("client must be a mapping")
    elif client and client.get('backend') and ':' not in client['backend']:
        problems.append("client.backend must look like 'module:Class'")

    return problems


@dataclass
class FleetConfig:
    """
    Parsed fleet configuration.

    ``whitelist`` keeps the names as the operator typed them; the
    per-slot settings snapshot holds the case-normalized copy.

    Usage:
        fleet = FleetConfig.from_file('config.yaml')
        fleet.accounts.append(SessionConfig(slot=3, username='alt'))
        fleet.save()
    """
    server: ServerSettings = field(default_factory=ServerSettings)
    client_backend: str = DEFAULT_CLIENT_BACKEND
    accounts: List[SessionConfig] = field(default_factory=list)
    settings: BotSettings = field(default_factory=BotSettings)
    whitelist: List[str] = field(default_factory=list)
    raw_settings: Dict[str, Any] = field(default_factory=dict)
    path: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any], path: Optional[str] = None) -> 'FleetConfig':
        """
        Build a FleetConfig from a configuration dictionary.

        Raises:
            ConfigError: If validation fails
        """
        problems = validate_config(data)
        if problems:
            raise ConfigError("Invalid configuration: " + "; ".join(problems))

        raw_settings = dict(data.get('settings') or {})
        client = data.get('client') or {}
        return cls(
            server=ServerSettings.from_dict(data.get('server')),
            client_backend=client.get('backend') or DEFAULT_CLIENT_BACKEND,
            accounts=sorted(
                (SessionConfig.from_dict(account) for account in data.get('accounts') or []),
                key=lambda account: account.slot
            ),
            settings=BotSettings.from_dict(raw_settings),
            whitelist=list(raw_settings.get('alert_whitelist') or []),
            raw_settings=raw_settings,
            path=path,
        )

    @classmethod
    def from_file(cls, path: str) -> 'FleetConfig':
        return cls.from_dict(load_config(path), path=path)

    def to_dict(self) -> Dict[str, Any]:
        server = {
            "host": self.server.host,
            "port": self.server.port,
            "version": self.server.version,
            "profiles_dir": self.server.profiles_dir,
        }
        settings = dict(self.raw_settings)
        settings['alert_whitelist'] = list(self.whitelist)
        return {
            "server": server,
            "client": {"backend": self.client_backend},
            "accounts": [account.to_dict() for account in sorted(self.accounts, key=lambda a: a.slot)],
            "settings": settings,
        }

    def save(self, path: Optional[str] = None) -> bool:
        """
        Persist the configuration.

        Returns:
            True on success; failures are logged, not raised
        """
        target = path or self.path
        if not target:
            logger.debug("No config path set; skipping save")
            return False
        try:
            save_config(self.to_dict(), target)
        except (OSError, yaml.YAMLError, TypeError) as e:
            logger.error(f"Failed to save configuration: {e}")
            return False
        return True

    def account(self, slot: int) -> Optional[SessionConfig]:
        for account in self.accounts:
            if account.slot == slot:
                return account
        return None

    def replace_account(self, slot: int, account: Optional[SessionConfig]) -> None:
        """Replace (or with None, remove) the account stored under ``slot``."""
        self.accounts = [a for a in self.accounts if a.slot != slot]
        if account is not None:
            self.accounts.append(account)
            self.accounts.sort(key=lambda a: a.slot)
