"""Shared configuration loader for the CMD402 console."""

from __future__ import annotations

import os
import re
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Mapping

import yaml


class ConfigurationError(RuntimeError):
    """Raised when configuration is invalid."""


DEFAULT_CONFIG_PATH = Path.home() / ".cmd402.yaml"
_CONFIG_PATH_OVERRIDE: Path | None = None

BASE_CHAIN_ID = 8453
USDC_ON_BASE = "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"
CMD402_CLAIM_CONTRACT = "0x859078e89E58B0Ab0021755B95360f48fBa763dd"
NATIVE_TOKEN_ADDRESS = "0xEeeeeEeeeEeEeeEeEeEeeEEEeeeeEeeeeeeeEEeE"

PRICE_SOURCES = ("config", "claim-condition")

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


@dataclass
class NetworkConfig:
    """Static chain and contract settings consumed by the console core."""

    rpc_url: str
    chain_id: int = BASE_CHAIN_ID
    chain_name: str = "Base"
    native_symbol: str = "ETH"
    native_decimals: int = 18
    currency_address: str = USDC_ON_BASE
    currency_symbol: str = "USDC"
    currency_decimals: int = 6
    claim_contract: str = CMD402_CLAIM_CONTRACT
    token_id: int = 0
    price_per_unit: int = 1_000_000
    mint_quantity: int = 1
    price_source: str = "config"
    confirmation_timeout: float = 120.0
    poll_interval: float = 2.0
    request_timeout: float = 30.0

    @property
    def required_amount(self) -> int:
        return self.price_per_unit * self.mint_quantity

    @property
    def pays_native(self) -> bool:
        return self.currency_address.lower() == NATIVE_TOKEN_ADDRESS.lower()

    def to_jsonable(self) -> dict[str, Any]:
        return asdict(self)


def set_default_config_path(path: str | Path | None) -> None:
    """Remember a user-supplied config path for future loads."""

    global _CONFIG_PATH_OVERRIDE
    _CONFIG_PATH_OVERRIDE = Path(path).expanduser() if path else None


def _load_config_file(path: Path, *, required: bool) -> dict[str, Any]:
    if not path.exists():
        if required:
            raise ConfigurationError(f"Config file not found: {path}")
        return {}

    try:
        loaded = yaml.safe_load(path.read_text()) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - delegated to PyYAML
        raise ConfigurationError(f"Invalid YAML in config file {path}: {exc}") from exc

    if not isinstance(loaded, dict):
        raise ConfigurationError(f"Expected {path} to contain a YAML object with a 'network' section")
    return loaded


def _coerce_int(raw: Any, *, field: str, source: str) -> int | None:
    if raw is None:
        return None
    try:
        if isinstance(raw, str) and raw.lower().startswith("0x"):
            return int(raw, 16)
        return int(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid {field} in {source}: {raw}") from exc


def _coerce_float(raw: Any, *, field: str, source: str) -> float | None:
    if raw is None:
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid {field} in {source}: {raw}") from exc
    if value <= 0:
        raise ConfigurationError(f"{field} must be positive in {source}: {raw}")
    return value


def _check_address(value: str, *, field: str) -> str:
    if not _ADDRESS_RE.match(value):
        raise ConfigurationError(f"{field} is not a valid 0x-prefixed address: {value}")
    return value


def _first_value(*values: Any, default: Any = None) -> Any:
    for value in values:
        if value is not None:
            return value
    return default


_ENV_KEYS = {
    "rpc_url": ("CMD402_RPC_URL", "BASE_RPC_URL"),
    "chain_id": ("CMD402_CHAIN_ID",),
    "chain_name": ("CMD402_CHAIN_NAME",),
    "currency_address": ("CMD402_CURRENCY_ADDRESS", "CMD402_USDC_ADDRESS"),
    "currency_symbol": ("CMD402_CURRENCY_SYMBOL",),
    "currency_decimals": ("CMD402_CURRENCY_DECIMALS",),
    "claim_contract": ("CMD402_CLAIM_CONTRACT", "CMD402_NFT_CONTRACT_ADDRESS"),
    "token_id": ("CMD402_TOKEN_ID",),
    "price_per_unit": ("CMD402_PRICE_PER_UNIT",),
    "mint_quantity": ("CMD402_MINT_QUANTITY",),
    "price_source": ("CMD402_PRICE_SOURCE",),
    "confirmation_timeout": ("CMD402_CONFIRMATION_TIMEOUT",),
    "poll_interval": ("CMD402_POLL_INTERVAL",),
}

_INT_FIELDS = {
    "chain_id",
    "native_decimals",
    "currency_decimals",
    "token_id",
    "price_per_unit",
    "mint_quantity",
}
_FLOAT_FIELDS = {"confirmation_timeout", "poll_interval", "request_timeout"}
_ADDRESS_FIELDS = {"currency_address", "claim_contract"}


def _env_value(env_map: Mapping[str, str], field: str) -> str | None:
    for key in _ENV_KEYS.get(field, ()):
        value = env_map.get(key)
        if value:
            return value
    return None


def load_network_config(
    *,
    config_path: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> NetworkConfig:
    """Load network configuration from environment variables and optional YAML."""

    env_map = os.environ if env is None else env
    explicit_path = config_path is not None or _CONFIG_PATH_OVERRIDE is not None
    path = (
        Path(config_path).expanduser()
        if config_path is not None
        else _CONFIG_PATH_OVERRIDE or DEFAULT_CONFIG_PATH
    )

    file_config = _load_config_file(path, required=explicit_path)
    network_section = file_config.get("network", {}) if isinstance(file_config, dict) else {}
    if network_section is None:
        network_section = {}
    if not isinstance(network_section, dict):
        raise ConfigurationError(f"Expected 'network' to be a mapping in {path}")

    override_map = dict(overrides or {})
    defaults = NetworkConfig(rpc_url="")
    resolved: dict[str, Any] = {}
    for field in NetworkConfig.__dataclass_fields__:
        raw = _first_value(
            override_map.get(field),
            _env_value(env_map, field),
            network_section.get(field),
        )
        source = f"{path} network.{field}"
        if raw is None:
            resolved[field] = getattr(defaults, field)
        elif field in _INT_FIELDS:
            resolved[field] = _coerce_int(raw, field=field, source=source)
        elif field in _FLOAT_FIELDS:
            resolved[field] = _coerce_float(raw, field=field, source=source)
        else:
            resolved[field] = str(raw).strip()

    if not resolved["rpc_url"]:
        raise ConfigurationError(
            "An RPC endpoint must be provided via CMD402_RPC_URL or network.rpc_url in a config file"
        )
    for field in _ADDRESS_FIELDS:
        _check_address(resolved[field], field=field)
    if resolved["price_source"] not in PRICE_SOURCES:
        raise ConfigurationError(
            f"price_source must be one of {', '.join(PRICE_SOURCES)}; got {resolved['price_source']}"
        )
    if resolved["mint_quantity"] < 1:
        raise ConfigurationError("mint_quantity must be at least 1")
    if resolved["price_per_unit"] < 0:
        raise ConfigurationError("price_per_unit must not be negative")

    return NetworkConfig(**resolved)
