"""
Runtime configuration.

Read once, before any network call, from a YAML file laid out as::

    ethereum:
      rpc_url: http://127.0.0.1:8545
      private_key: <hex>          # or PRIVATE_KEY in the environment / .env
      chain_id: 1337              # 0 = use whatever the node reports
      gas_limit: 3000000
    build:
      directory: build
      contract_name: Storage
    test:
      enable: true
      test_key: user1
      test_field: email
      test_value: a@example.com
    confirm:
      poll_interval: 1
      timeout: 120

``PRIVATE_KEY``, ``RPC_URL``, ``CHAIN_ID`` and ``GAS_LIMIT`` in the
environment override the file.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml
from dotenv import load_dotenv

from .errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("config.yaml")
DEFAULT_GAS_LIMIT = 3_000_000
DEFAULT_TEST_GAS_LIMIT = 300_000

ENV_OVERRIDES = {
    "rpc_url": "RPC_URL",
    "private_key": "PRIVATE_KEY",
    "chain_id": "CHAIN_ID",
    "gas_limit": "GAS_LIMIT",
}


@dataclass(frozen=True)
class EthereumConfig:
    rpc_url: str
    private_key: str = field(default="", repr=False)
    chain_id: int = 0
    gas_limit: int = DEFAULT_GAS_LIMIT


@dataclass(frozen=True)
class BuildConfig:
    directory: Path = Path("build")
    contract_name: str = "Storage"


@dataclass(frozen=True)
class TestConfig:
    __test__ = False  # not a pytest class

    enable: bool = False
    test_key: str = ""
    test_field: str = ""
    test_value: str = ""
    gas_limit: int = DEFAULT_TEST_GAS_LIMIT


@dataclass(frozen=True)
class ConfirmConfig:
    poll_interval: float = 1.0
    timeout: float = 120.0


@dataclass(frozen=True)
class RuntimeConfig:
    ethereum: EthereumConfig
    build: BuildConfig = field(default_factory=BuildConfig)
    test: TestConfig = field(default_factory=TestConfig)
    confirm: ConfirmConfig = field(default_factory=ConfirmConfig)


def _section(raw: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    value = raw.get(name) or {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Config section '{name}' must be a mapping")
    return value


def _number(section: Mapping[str, Any], key: str, default: Any, kind: type, where: str) -> Any:
    value = section.get(key, default)
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        raise ConfigError(f"{where}.{key} must be a number, got {value!r}")
    try:
        return kind(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{where}.{key} must be a number, got {value!r}") from exc


def _flag(section: Mapping[str, Any], key: str, default: bool, where: str) -> bool:
    value = section.get(key, default)
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ("true", "yes", "1", "on", "false", "no", "0", "off"):
        return value.lower() in ("true", "yes", "1", "on")
    raise ConfigError(f"{where}.{key} must be true or false, got {value!r}")


def _string(section: Mapping[str, Any], key: str, default: str = "") -> str:
    value = section.get(key, default)
    return default if value is None else str(value)


def parse_config(
    raw: Any,
    env: Optional[Mapping[str, str]] = None,
    base_dir: Optional[Path] = None,
) -> RuntimeConfig:
    """Validate a parsed YAML document and apply environment overrides."""
    env = os.environ if env is None else env
    if raw is None:
        raw = {}
    if not isinstance(raw, Mapping):
        raise ConfigError("Config root must be a mapping")

    eth = dict(_section(raw, "ethereum"))
    for key, var in ENV_OVERRIDES.items():
        if env.get(var):
            eth[key] = env[var]
    build = _section(raw, "build")
    test = _section(raw, "test")
    confirm = _section(raw, "confirm")

    rpc_url = _string(eth, "rpc_url")
    if not rpc_url:
        raise ConfigError("ethereum.rpc_url is required (or set RPC_URL)")

    if isinstance(eth.get("private_key"), int):
        # YAML reads unquoted 0x... / all-digit values as integers
        raise ConfigError("ethereum.private_key must be a quoted string")
    private_key = _string(eth, "private_key")
    chain_id = _number(eth, "chain_id", 0, int, "ethereum")
    gas_limit = _number(eth, "gas_limit", DEFAULT_GAS_LIMIT, int, "ethereum")
    if gas_limit <= 0:
        raise ConfigError(f"ethereum.gas_limit must be positive, got {gas_limit}")
    if chain_id < 0:
        raise ConfigError(f"ethereum.chain_id must not be negative, got {chain_id}")

    directory = Path(_string(build, "directory", "build"))
    if base_dir is not None and not directory.is_absolute():
        directory = base_dir / directory

    poll_interval = _number(confirm, "poll_interval", 1.0, float, "confirm")
    timeout = _number(confirm, "timeout", 120.0, float, "confirm")
    if poll_interval <= 0 or timeout <= 0:
        raise ConfigError("confirm.poll_interval and confirm.timeout must be positive")

    return RuntimeConfig(
        ethereum=EthereumConfig(
            rpc_url=rpc_url,
            private_key=private_key,
            chain_id=chain_id,
            gas_limit=gas_limit,
        ),
        build=BuildConfig(
            directory=directory,
            contract_name=_string(build, "contract_name", "Storage"),
        ),
        test=TestConfig(
            enable=_flag(test, "enable", False, "test"),
            test_key=_string(test, "test_key"),
            test_field=_string(test, "test_field"),
            test_value=_string(test, "test_value"),
            gas_limit=_number(test, "gas_limit", DEFAULT_TEST_GAS_LIMIT, int, "test"),
        ),
        confirm=ConfirmConfig(poll_interval=poll_interval, timeout=timeout),
    )


def load_config(path: Path = DEFAULT_CONFIG_PATH, env: Optional[Mapping[str, str]] = None) -> RuntimeConfig:
    """
    Load configuration from a YAML file.

    A ``.env`` next to the file is loaded into the process environment
    first (existing variables win).  Relative build directories resolve
    against the config file's directory.

    Raises:
        ConfigError: Unreadable file, YAML syntax error, or invalid values
    """
    path = Path(path)
    env_file = path.parent / ".env"
    if env is None and env_file.exists():
        load_dotenv(env_file, override=False)

    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Cannot read config {path}: {exc}") from exc
    except UnicodeDecodeError as exc:
        raise ConfigError(f"Config {path} is not UTF-8 text: {exc}") from exc

    try:
        raw = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc

    config = parse_config(raw, env=env, base_dir=path.parent)
    logger.debug(f"Loaded config from {path}: {config}")
    return config
