"""Configuration of the oracle provider."""

from __future__ import annotations

import json
import re
import tomllib
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit

import yaml

_U64_MAX = 2**64 - 1
_U16_MAX = 2**16 - 1


class ConfigError(ValueError):
    """The configuration is missing a value or holds an invalid one."""


@dataclass(frozen=True)
class Config:
    """Oracle provider settings."""

    oracle_contract_address: str
    provider_address: str
    provider_private_key: str
    transaction_confirmations: int
    http_address: str = "127.0.0.1"
    http_port: int = 0
    rpc_url: str = "http://localhost:8545"
    chain_id: int = 0
    scan_from_block: int | None = None
    scan_last_blocks: int | None = None
    scan_last_blocks_period: timedelta | None = None
    blocks_stride: int = 100_000
    loop_idle_time_ms: int = 1000
    transaction_timeout_s: int = 60
    api_url: str = "http://localhost:8080"
    api_access_token: str | None = None
    ignore_requests: tuple[int, ...] = ()
    ignore_consumers: tuple[str, ...] = ()


_DURATION_UNITS = {
    "ms": timedelta(milliseconds=1),
    "s": timedelta(seconds=1),
    "m": timedelta(minutes=1),
    "h": timedelta(hours=1),
    "d": timedelta(days=1),
    "w": timedelta(weeks=1),
    "y": timedelta(days=365),
}
_DURATION_PART = r"(\d+)\s*(ms|s|m|h|d|w|y)"


def _string(name: str, value: Any) -> str:
    if not isinstance(value, str):
        raise ConfigError(f"{name}: expected a string, got {value!r}")
    return value


def _private_key(name: str, value: Any) -> str:
    if isinstance(value, int) and not isinstance(value, bool):
        return f"0x{value:064x}"
    return _string(name, value)


def _address(name: str, value: Any) -> str:
    if isinstance(value, int) and not isinstance(value, bool):
        if not 0 <= value < 2**160:
            raise ConfigError(f"{name}: address out of range")
        return f"0x{value:040x}"
    if isinstance(value, str):
        match = re.fullmatch(r"(?:0x)?([0-9a-fA-F]{40})", value.strip())
        if match:
            return "0x" + match.group(1).lower()
    raise ConfigError(f"{name}: invalid address {value!r}")


def _uint(name: str, value: Any, limit: int = _U64_MAX) -> int:
    if isinstance(value, str) and value.strip().isdigit():
        value = int(value.strip())
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{name}: expected an unsigned integer, got {value!r}")
    if not 0 <= value <= limit:
        raise ConfigError(f"{name}: {value} is out of range 0..{limit}")
    return value


def _port(name: str, value: Any) -> int:
    return _uint(name, value, _U16_MAX)


def _url(name: str, value: Any) -> str:
    text = _string(name, value)
    parts = urlsplit(text)
    if not parts.scheme or not parts.netloc:
        raise ConfigError(f"{name}: invalid URL {text!r}")
    return text


def _duration(name: str, value: Any) -> timedelta:
    text = _string(name, value).strip()
    if not re.fullmatch(rf"(?:{_DURATION_PART}\s*)+", text):
        raise ConfigError(f"{name}: invalid duration {text!r}")
    return sum(
        (int(amount) * _DURATION_UNITS[unit] for amount, unit in re.findall(_DURATION_PART, text)),
        timedelta(),
    )


def _list_of(item: Callable[[str, Any], Any]) -> Callable[[str, Any], tuple]:
    def parse(name: str, value: Any) -> tuple:
        if isinstance(value, str):
            value = yaml.safe_load(value)
        if not isinstance(value, (list, tuple)):
            raise ConfigError(f"{name}: expected a list, got {value!r}")
        return tuple(item(name, element) for element in value)

    return parse


_PARSERS: dict[str, Callable[[str, Any], Any]] = {
    "http_address": _string,
    "http_port": _port,
    "rpc_url": _url,
    "chain_id": _uint,
    "oracle_contract_address": _address,
    "provider_address": _address,
    "provider_private_key": _private_key,
    "scan_from_block": _uint,
    "scan_last_blocks": _uint,
    "scan_last_blocks_period": _duration,
    "blocks_stride": _uint,
    "loop_idle_time_ms": _uint,
    "transaction_confirmations": _uint,
    "transaction_timeout_s": _uint,
    "api_url": _url,
    "api_access_token": _string,
    "ignore_requests": _list_of(_uint),
    "ignore_consumers": _list_of(_address),
}

_REQUIRED = (
    "oracle_contract_address",
    "provider_address",
    "provider_private_key",
    "transaction_confirmations",
)


def _read_file(path: Path) -> Mapping[str, Any]:
    if not path.is_file():
        return {}
    text = path.read_text(encoding="utf-8")
    suffix = path.suffix.lower()
    try:
        if suffix in (".yaml", ".yml"):
            data = yaml.safe_load(text)
        elif suffix == ".toml":
            data = tomllib.loads(text)
        elif suffix == ".json":
            data = json.loads(text)
        else:
            raise ConfigError(f"unsupported config file format: {path}")
    except (yaml.YAMLError, tomllib.TOMLDecodeError, json.JSONDecodeError) as exc:
        raise ConfigError(f"cannot parse config file {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"config file {path} must hold a mapping")
    return data


def load_config(path: str | Path | None = None, environ: Mapping[str, str] | None = None) -> Config:
    """Load settings from a file, with environment values taking precedence.

    A missing file is skipped. Environment keys are upper-case field names.
    """
    raw: dict[str, Any] = dict(_read_file(Path(path))) if path is not None else {}
    if environ:
        raw.update(
            (name, environ[name.upper()]) for name in _PARSERS if name.upper() in environ
        )

    missing = [name for name in _REQUIRED if raw.get(name) is None]
    if missing:
        raise ConfigError(f"required configuration values are missing: {', '.join(missing)}")

    values = {
        name: parse(name, raw[name])
        for name, parse in _PARSERS.items()
        if raw.get(name) is not None
    }
    return Config(**values)