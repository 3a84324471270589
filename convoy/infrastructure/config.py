"""
Configuration Module

Architectural Intent:
- Centralized configuration loading from a JSON file
- Provides typed access to all Convoy settings
- Falls back to sensible defaults when config file is absent
- Environment variables override file-based config

Design Decisions:
- Config is a frozen dataclass for immutability after load
- Nested config sections map to sub-dataclasses
- Sections convert into the domain policy value objects, so the engine
  never reads configuration itself
"""

from __future__ import annotations
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
import dataclasses
import json
import logging
import os

from convoy.domain.value_objects.policies import AbortPolicy, FleetPolicy, RetryPolicy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CatalogConfig:
    """Where service definitions are resolved from."""
    path: str = "services.json"


@dataclass(frozen=True)
class FleetConfig:
    """Batching defaults."""
    max_parallel: int = 5
    canary_fraction: float = 0.0  # 0 disables the canary batch

    def to_policy(self) -> FleetPolicy:
        return FleetPolicy(
            max_parallel=self.max_parallel,
            canary_fraction=self.canary_fraction or None,
        )


@dataclass(frozen=True)
class RetryConfig:
    """Per-host retry and timeout budget."""
    retry_limit: int = 3
    base_delay_s: float = 1.0
    max_delay_s: float = 30.0
    transition_timeout_s: float = 120.0
    host_timeout_s: float = 900.0
    verify_timeout_s: float = 60.0

    def to_policy(self) -> RetryPolicy:
        return RetryPolicy(**dataclasses.asdict(self))


@dataclass(frozen=True)
class AbortConfig:
    """Fleet-wide abort and rollback behaviour."""
    failure_threshold: float = 0.0
    rollback_on_abort: bool = False
    rollback_failed_hosts: bool = True

    def to_policy(self) -> AbortPolicy:
        return AbortPolicy(**dataclasses.asdict(self))


@dataclass(frozen=True)
class SSHConfig:
    """Fabric connection settings."""
    connect_timeout: int = 30
    command_timeout: int = 600
    use_sudo: bool = True
    state_dir: str = "/var/lib/convoy"


@dataclass(frozen=True)
class ConvoyConfig:
    """Root configuration for the Convoy application."""
    catalog: CatalogConfig = field(default_factory=CatalogConfig)
    fleet: FleetConfig = field(default_factory=FleetConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    abort: AbortConfig = field(default_factory=AbortConfig)
    ssh: SSHConfig = field(default_factory=SSHConfig)
    log_level: str = "WARNING"

    @property
    def command_timeout(self) -> float:
        """SSH command timeout, never longer than one transition attempt."""
        return min(self.ssh.command_timeout, self.retry.transition_timeout_s)


def _env_override(data: dict, prefix: str = "CONVOY") -> dict:
    """Override config values with environment variables.

    Environment variables follow the pattern CONVOY_SECTION_KEY.
    For example: CONVOY_FLEET_MAX_PARALLEL=10, CONVOY_RETRY_RETRY_LIMIT=5
    """
    for key, value in os.environ.items():
        if not key.startswith(f"{prefix}_"):
            continue
        parts = key[len(prefix) + 1:].lower().split("_", 1)
        if len(parts) == 2 and parts[0] in _SECTIONS:
            section, field_name = parts
            if not isinstance(data.get(section), dict):
                data[section] = {}
            data[section][field_name] = value
        else:
            data[key[len(prefix) + 1:].lower()] = value
    return data


def _parse_config_file(path: Path) -> dict:
    """Parse a JSON config file. Returns empty dict on failure."""
    try:
        with open(path) as f:
            return json.load(f)
    except FileNotFoundError:
        logger.debug("Config file not found: %s", path)
        return {}
    except json.JSONDecodeError as e:
        logger.warning("Invalid config file %s: %s", path, e)
        return {}


def _build_sub_config(cls, data: dict):
    """Build a sub-config dataclass from a dict, ignoring unknown keys."""
    valid_fields = {f.name for f in dataclasses.fields(cls)}
    filtered = {k: v for k, v in data.items() if k in valid_fields}

    # Annotations are strings here because of the __future__ import
    for f in dataclasses.fields(cls):
        if f.name in filtered and isinstance(filtered[f.name], str):
            raw = filtered[f.name]
            if f.type == "int":
                filtered[f.name] = int(raw)
            elif f.type == "float":
                filtered[f.name] = float(raw)
            elif f.type == "bool":
                filtered[f.name] = raw.lower() in ("true", "1", "yes")

    return cls(**filtered)


_SECTIONS = {
    "catalog": CatalogConfig,
    "fleet": FleetConfig,
    "retry": RetryConfig,
    "abort": AbortConfig,
    "ssh": SSHConfig,
}


def load_config(
    path: Optional[str] = None,
    env_prefix: str = "CONVOY",
) -> ConvoyConfig:
    """Load configuration from file and environment variables.

    Priority (highest to lowest):
    1. Environment variables (CONVOY_SECTION_KEY)
    2. Config file values
    3. Defaults

    Args:
        path: Path to config file (JSON). Defaults to convoy.json in CWD.
        env_prefix: Environment variable prefix. Defaults to CONVOY.
    """
    config_path = Path(path) if path else Path("convoy.json")
    data = _parse_config_file(config_path)
    data = _env_override(data, env_prefix)

    sections = {
        name: _build_sub_config(cls, data.get(name) or {})
        for name, cls in _SECTIONS.items()
    }
    return ConvoyConfig(**sections, log_level=data.get("log_level", "WARNING"))
