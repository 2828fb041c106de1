"""
Configuration management for the miniui agent.

This module implements the AppConfig Pydantic model and configuration loading.

Configuration is loaded from multiple sources with layered precedence:
1. Built-in defaults (Pydantic model defaults)
2. YAML config file (/etc/miniui/config.yml or --config path)
3. Environment variables (MINIUI_* prefix, __ for nesting)
4. Command-line arguments (highest precedence)

External program paths are fixed at startup; no request can change them.
"""

from __future__ import annotations

import argparse
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator

DEFAULT_CONFIG_PATH = Path("/etc/miniui/config.yml")
DEFAULT_ENV_PREFIX = "MINIUI_"


# =============================================================================
# Logging Configuration
# =============================================================================


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level.
        log_to_stdout: Whether to log to stdout (stderr otherwise).
        json_format: Emit JSON records instead of plain text.
    """

    level: str = Field(
        default="info",
        description="Log level: debug, info, warn, error",
    )
    log_to_stdout: bool = Field(
        default=True,
        description="Whether to log to stdout instead of stderr",
    )
    json_format: bool = Field(
        default=True,
        description="Emit one JSON object per log record",
    )

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate and normalize log level."""
        valid_levels = {"debug", "info", "warn", "warning", "error", "critical"}
        v_lower = v.lower()
        if v_lower not in valid_levels:
            raise ValueError(
                f"Invalid log level: {v}. Must be one of: {', '.join(sorted(valid_levels))}"
            )
        if v_lower == "warn":
            return "warning"
        return v_lower


# =============================================================================
# Bus Configuration
# =============================================================================


class BusConfig(BaseModel):
    """Bus endpoint configuration.

    Attributes:
        socket_path: Unix domain socket the agent listens on.
        socket_mode: Permissions applied to the socket file.
        socket_owner: Optional owner user name for the socket file.
        socket_group: Optional group name for the socket file.
        request_timeout_seconds: Client-side timeout for a single call.
    """

    socket_path: str = Field(
        default="/var/run/miniui/bus.sock",
        description="Unix domain socket path of the bus endpoint",
    )
    socket_mode: int = Field(
        default=0o660,
        description="Socket file permissions",
    )
    socket_owner: str | None = Field(
        default=None,
        description="Socket file owner user name",
    )
    socket_group: str | None = Field(
        default=None,
        description="Socket file group name",
    )
    request_timeout_seconds: float = Field(
        default=120.0,
        description="Client-side timeout for one call in seconds",
        gt=0,
    )


# =============================================================================
# External Programs Configuration
# =============================================================================


class ProgramsConfig(BaseModel):
    """Paths of the external programs the agent is allowed to run.

    Attributes:
        apply_lan: Script applying LAN address settings (IPADDR NETMASK).
        network: Network init script, invoked with ``reload``.
        sysupgrade: Firmware upgrade script (KEEP SOURCE).
    """

    apply_lan: str = Field(
        default="/usr/libexec/miniui/apply_lan.sh",
        description="LAN apply script",
    )
    network: str = Field(
        default="/etc/init.d/network",
        description="Network init script",
    )
    sysupgrade: str = Field(
        default="/usr/libexec/miniui/sysupgrade.sh",
        description="Firmware upgrade script",
    )

    @field_validator("apply_lan", "network", "sysupgrade")
    @classmethod
    def validate_absolute(cls, v: str) -> str:
        """Program paths must be absolute."""
        if not v.startswith("/"):
            raise ValueError(f"Program path must be absolute: {v}")
        return v


# =============================================================================
# System Facts Configuration
# =============================================================================


class FactsConfig(BaseModel):
    """Sources read by the status collector.

    Attributes:
        loadavg_path: Load average source.
        uptime_path: Uptime source.
        meminfo_path: Memory statistics source.
    """

    loadavg_path: str = Field(default="/proc/loadavg")
    uptime_path: str = Field(default="/proc/uptime")
    meminfo_path: str = Field(default="/proc/meminfo")


# =============================================================================
# Upgrade Configuration
# =============================================================================


class UpgradeConfig(BaseModel):
    """Firmware upgrade settings.

    Attributes:
        scratch_dir: Only local images below this directory are accepted.
    """

    scratch_dir: str = Field(
        default="/tmp/",
        description="Directory local upgrade images must live in",
    )

    @field_validator("scratch_dir")
    @classmethod
    def validate_scratch_dir(cls, v: str) -> str:
        """Normalize to an absolute directory prefix ending in '/'."""
        if not v.startswith("/") or v == "/":
            raise ValueError(f"scratch_dir must be an absolute directory: {v}")
        if not v.endswith("/"):
            v = f"{v}/"
        return v


# =============================================================================
# Main Application Configuration
# =============================================================================


class AppConfig(BaseModel):
    """
    Main application configuration model.

    Attributes:
        logging: Logging configuration.
        bus: Bus endpoint configuration.
        programs: External program paths.
        facts: Status collector sources.
        upgrade: Firmware upgrade settings.
    """

    logging: LoggingConfig = Field(
        default_factory=LoggingConfig,
        description="Logging configuration",
    )
    bus: BusConfig = Field(
        default_factory=BusConfig,
        description="Bus endpoint configuration",
    )
    programs: ProgramsConfig = Field(
        default_factory=ProgramsConfig,
        description="External program paths",
    )
    facts: FactsConfig = Field(
        default_factory=FactsConfig,
        description="Status collector sources",
    )
    upgrade: UpgradeConfig = Field(
        default_factory=UpgradeConfig,
        description="Firmware upgrade settings",
    )


# =============================================================================
# Configuration Loading Functions
# =============================================================================


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """
    Deep merge two dictionaries.

    Args:
        base: The base dictionary.
        override: The dictionary with values to override.

    Returns:
        A new dictionary with merged values.
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _load_yaml_config(config_path: Path) -> dict[str, Any]:
    """
    Load configuration from a YAML file.

    Raises:
        FileNotFoundError: If the config file doesn't exist.
        yaml.YAMLError: If the YAML is invalid.
    """
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path) as f:
        return yaml.safe_load(f) or {}


def _parse_env_value(value: str) -> Any:
    """
    Parse an environment variable value to appropriate Python type.

    Args:
        value: String value from environment variable.

    Returns:
        Parsed value (bool, int, float, or string).
    """
    # "1"/"0" stay integers so numeric fields such as socket_mode keep working
    lowered = value.lower()
    if lowered in ("true", "yes", "on"):
        return True
    if lowered in ("false", "no", "off"):
        return False

    try:
        return int(value)
    except ValueError:
        pass

    try:
        return float(value)
    except ValueError:
        pass

    return value


def _load_env_config(prefix: str = DEFAULT_ENV_PREFIX) -> dict[str, Any]:
    """
    Load configuration from environment variables.

    ``MINIUI_BUS__SOCKET_PATH=/tmp/bus.sock`` becomes
    ``{"bus": {"socket_path": "/tmp/bus.sock"}}``.

    Args:
        prefix: Environment variable prefix.

    Returns:
        Nested dictionary with configuration values.
    """
    result: dict[str, Any] = {}

    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue

        parts = key[len(prefix) :].lower().split("__")

        current = result
        for part in parts[:-1]:
            current = current.setdefault(part, {})

        current[parts[-1]] = _parse_env_value(value)

    return result


def _parse_cli_args(args: list[str] | None = None) -> dict[str, Any]:
    """
    Parse command-line arguments.

    Args:
        args: Command-line arguments. If None, uses sys.argv.

    Returns:
        Dictionary with parsed arguments.
    """
    parser = argparse.ArgumentParser(
        prog="miniui-agent",
        description="miniui local management agent",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "--config",
        "-c",
        type=str,
        help="Path to configuration file",
    )

    parser.add_argument(
        "--socket",
        "-s",
        type=str,
        help="Override bus socket path",
    )

    parser.add_argument(
        "--log-level",
        type=str,
        choices=["debug", "info", "warning", "error"],
        help="Override log level",
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging with plain-text output",
    )

    parsed = parser.parse_args(args)

    result: dict[str, Any] = {}

    if parsed.config:
        result["_config_path"] = parsed.config

    if parsed.socket:
        result["bus"] = {"socket_path": parsed.socket}

    if parsed.log_level:
        result["logging"] = {"level": parsed.log_level}

    if parsed.debug:
        result.setdefault("logging", {})
        result["logging"]["level"] = "debug"
        result["logging"]["json_format"] = False

    return result


def load_config(
    config_path: Path | str | None = None,
    env_prefix: str = DEFAULT_ENV_PREFIX,
    cli_args: list[str] | None = None,
) -> AppConfig:
    """
    Load configuration from all sources with layered precedence.

    Args:
        config_path: Path to YAML configuration file. If None, uses the
            --config argument or the default path when it exists.
        env_prefix: Prefix for environment variables.
        cli_args: Command-line arguments. If None, uses sys.argv.

    Returns:
        Fully configured AppConfig instance.

    Raises:
        FileNotFoundError: If the specified config file doesn't exist.
        ValidationError: If configuration is invalid.

    Example:
        >>> config = load_config(cli_args=[])
        >>> config.programs.network
        '/etc/init.d/network'
    """
    config_dict: dict[str, Any] = {}

    cli_config = _parse_cli_args(cli_args)

    if config_path is None:
        if "_config_path" in cli_config:
            config_path = Path(cli_config.pop("_config_path"))
        elif DEFAULT_CONFIG_PATH.exists():
            config_path = DEFAULT_CONFIG_PATH
    else:
        cli_config.pop("_config_path", None)
        config_path = Path(config_path)

    if config_path is not None:
        config_dict = _deep_merge(config_dict, _load_yaml_config(config_path))

    config_dict = _deep_merge(config_dict, _load_env_config(env_prefix))
    config_dict = _deep_merge(config_dict, cli_config)

    return AppConfig(**config_dict)
