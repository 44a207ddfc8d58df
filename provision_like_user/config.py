"""Configuration loading utilities for the provision-like-user service."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


DEFAULT_CONFIG_PATH = Path("config/settings.yaml")
ENV_CONFIG_PATH = "PROVISION_CONFIG"
ENV_PREFIX = "PROVISION_"
DEFAULT_USAGE_LOCATION = "US"


@dataclass
class GraphConfig:
    """Settings for the Microsoft Graph directory integration."""

    tenant_id: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    usage_location: str = DEFAULT_USAGE_LOCATION
    check_license_availability: bool = False

    @property
    def has_credentials(self) -> bool:
        return bool(self.tenant_id and self.client_id and self.client_secret)


@dataclass
class ExchangeConfig:
    """Settings for the Exchange Online session used for distribution lists."""

    enabled: bool = True
    organization: Optional[str] = None
    cert_thumbprint: Optional[str] = None
    app_id: Optional[str] = None
    powershell: str = "pwsh"
    timeout: int = 60

    @property
    def has_credentials(self) -> bool:
        return bool(self.enabled and self.organization and self.cert_thumbprint and self.app_id)


@dataclass
class SecurityConfig:
    """Shared secret expected in the ``SecurityKey`` request header."""

    security_key: Optional[str] = None

    @property
    def enforced(self) -> bool:
        return bool(self.security_key)


@dataclass
class AppConfig:
    """Aggregate configuration for the application."""

    graph: GraphConfig = field(default_factory=GraphConfig)
    exchange: ExchangeConfig = field(default_factory=ExchangeConfig)
    security: SecurityConfig = field(default_factory=SecurityConfig)

    @property
    def default_tenant_id(self) -> Optional[str]:
        return self.graph.tenant_id


class ConfigurationError(RuntimeError):
    """Raised when the configuration file or environment variables are invalid."""


def _load_from_file(path: Path, required: bool) -> Dict[str, Any]:
    if not path.exists():
        if required:
            raise ConfigurationError(f"Configuration file '{path}' does not exist.")
        return {}
    try:
        with path.open("r", encoding="utf-8") as file:
            payload = yaml.safe_load(file) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Configuration file '{path}' is not valid YAML: {exc}") from exc
    if not isinstance(payload, dict):
        raise ConfigurationError(f"Configuration file '{path}' must contain a mapping.")
    return payload


def _apply_environment_overrides(
    config_dict: Dict[str, Any], environ: Optional[Dict[str, str]] = None
) -> Dict[str, Any]:
    """Override configuration values with ``PROVISION_<SECTION>__<KEY>`` variables."""

    overrides: Dict[str, Any] = {}
    for key, value in (os.environ if environ is None else environ).items():
        if not key.startswith(ENV_PREFIX) or key == ENV_CONFIG_PATH:
            continue
        path = key[len(ENV_PREFIX) :].lower().split("__")
        if len(path) < 2:
            continue
        node = overrides
        for part in path[:-1]:
            node = node.setdefault(part, {})
        node[path[-1]] = value

    if overrides:
        config_dict = _deep_merge(config_dict, overrides)
    return config_dict


def _deep_merge(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    result = dict(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            result[key] = _deep_merge(base[key], value)
        else:
            result[key] = value
    return result


def _resolve_config_path(path: Optional[Path] = None) -> tuple[Path, bool]:
    if path is not None:
        return Path(path), True
    env_path = os.environ.get(ENV_CONFIG_PATH)
    if env_path:
        return Path(env_path), True
    return DEFAULT_CONFIG_PATH, False


def _section(config_dict: Dict[str, Any], key: str) -> Dict[str, Any]:
    section = config_dict.get(key) or {}
    if not isinstance(section, dict):
        raise ConfigurationError(f"Configuration section '{key}' must be a mapping.")
    return section


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def _to_int(value: Any, key: str) -> int:
    try:
        if isinstance(value, str):
            return int(value.strip())
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Configuration value '{key}' must be an integer.") from exc


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return str(value)


def load_config(path: Optional[Path] = None, environ: Optional[Dict[str, str]] = None) -> AppConfig:
    """Load application configuration from disk and environment variables.

    The settings file is optional when neither ``path`` nor ``PROVISION_CONFIG``
    names one, so a purely environment-driven deployment works out of the box.
    """

    resolved_path, required = _resolve_config_path(path)
    config_dict = _apply_environment_overrides(_load_from_file(resolved_path, required), environ)

    graph_section = _section(config_dict, "graph")
    graph_config = GraphConfig(
        tenant_id=_optional_str(graph_section.get("tenant_id")),
        client_id=_optional_str(graph_section.get("client_id")),
        client_secret=_optional_str(graph_section.get("client_secret")),
        usage_location=(
            _optional_str(graph_section.get("usage_location")) or DEFAULT_USAGE_LOCATION
        ).upper(),
        check_license_availability=_to_bool(
            graph_section.get("check_license_availability", False)
        ),
    )

    exchange_section = _section(config_dict, "exchange")
    exchange_config = ExchangeConfig(
        enabled=_to_bool(exchange_section.get("enabled", True)),
        organization=_optional_str(exchange_section.get("organization")),
        cert_thumbprint=_optional_str(exchange_section.get("cert_thumbprint")),
        app_id=_optional_str(exchange_section.get("app_id")) or graph_config.client_id,
        powershell=_optional_str(exchange_section.get("powershell")) or "pwsh",
        timeout=_to_int(exchange_section.get("timeout", 60), "exchange.timeout"),
    )

    security_section = _section(config_dict, "security")
    security_config = SecurityConfig(
        security_key=_optional_str(security_section.get("security_key")),
    )

    return AppConfig(graph=graph_config, exchange=exchange_config, security=security_config)


def describe_config(config: AppConfig) -> Dict[str, Any]:
    """Summarise the configuration for display, masking secrets."""

    def _mask(value: Optional[str]) -> str:
        return "********" if value else ""

    return {
        "graph": {
            "tenant_id": config.graph.tenant_id or "",
            "client_id": config.graph.client_id or "",
            "client_secret": _mask(config.graph.client_secret),
            "usage_location": config.graph.usage_location,
            "check_license_availability": config.graph.check_license_availability,
            "configured": config.graph.has_credentials,
        },
        "exchange": {
            "organization": config.exchange.organization or "",
            "app_id": config.exchange.app_id or "",
            "cert_thumbprint": _mask(config.exchange.cert_thumbprint),
            "powershell": config.exchange.powershell,
            "configured": config.exchange.has_credentials,
        },
        "security": {
            "security_key": _mask(config.security.security_key),
            "enforced": config.security.enforced,
        },
    }


__all__ = [
    "AppConfig",
    "ConfigurationError",
    "ExchangeConfig",
    "GraphConfig",
    "SecurityConfig",
    "describe_config",
    "load_config",
]
