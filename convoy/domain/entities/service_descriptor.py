"""
Service Descriptor

Architectural Intent:
- Concrete description of what to deploy and where, produced by a resolver
- Immutable once planning begins: config is exposed as a read-only mapping
- All variable substitution happens before a descriptor exists; the engine
  never templates strings at runtime
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional

from convoy.domain.value_objects.host_id import HostId


class ServiceKind(Enum):
    CONTAINER = "container"
    SYSTEM_PROCESS = "systemProcess"

    @classmethod
    def parse(cls, value: str) -> "ServiceKind":
        normalized = value.strip().replace("_", "").replace("-", "").lower()
        aliases = {"docker": cls.CONTAINER, "systemd": cls.SYSTEM_PROCESS}
        if normalized in aliases:
            return aliases[normalized]
        for kind in cls:
            if kind.value.lower() == normalized:
                return kind
        raise ValueError(f"Unknown service kind: {value!r}")


class HealthCheckKind(Enum):
    HTTP = "http"
    COMMAND = "command"
    STATUS = "status"


@dataclass(frozen=True)
class HealthCheckSpec:
    """How to decide a freshly started service is healthy."""

    kind: HealthCheckKind = HealthCheckKind.STATUS
    target: str = ""
    poll_interval_s: float = 2.0
    expected_status: int = 200

    def __post_init__(self) -> None:
        if self.kind is not HealthCheckKind.STATUS and not self.target:
            raise ValueError(f"{self.kind.value} health check needs a target")
        if self.poll_interval_s <= 0:
            raise ValueError("poll_interval_s must be positive")


# Keys with a meaning of their own; everything else is service environment.
CONTAINER_REQUIRED = ("image", "registry")
SYSTEM_PROCESS_REQUIRED = ("unit_template",)
RESERVED_KEYS = frozenset({"image", "registry", "ports", "unit_template", "unit_name"})


@dataclass(frozen=True)
class ServiceDescriptor:
    service_name: str
    service_kind: ServiceKind
    version: str
    target_hosts: tuple[HostId, ...]
    config: Mapping[str, str] = field(default_factory=dict, hash=False)
    health_check: HealthCheckSpec = field(default_factory=HealthCheckSpec)
    previous_version_ref: Optional[str] = None
    environment: Optional[str] = None

    def __post_init__(self) -> None:
        # Freeze the containers so nothing downstream can mutate them.
        object.__setattr__(self, "target_hosts", tuple(self.target_hosts))
        object.__setattr__(self, "config", MappingProxyType(dict(self.config)))

    @property
    def image_ref(self) -> str:
        return self.image_ref_for(self.version)

    @property
    def image_repository(self) -> str:
        registry = self.config.get("registry", "").rstrip("/")
        image = self.config.get("image", self.service_name)
        return f"{registry}/{image}" if registry else image

    def image_ref_for(self, version: str) -> str:
        return f"{self.image_repository}:{version}"

    @property
    def unit_name(self) -> str:
        return self.config.get("unit_name") or f"{self.service_name}.service"

    @property
    def service_env(self) -> dict[str, str]:
        return {k: v for k, v in self.config.items() if k not in RESERVED_KEYS}

    @property
    def ports(self) -> tuple[str, ...]:
        raw = self.config.get("ports", "")
        return tuple(p.strip() for p in raw.split(",") if p.strip())

    def with_config(self, **overrides: str) -> "ServiceDescriptor":
        merged = dict(self.config)
        merged.update(overrides)
        return ServiceDescriptor(
            service_name=self.service_name,
            service_kind=self.service_kind,
            version=self.version,
            target_hosts=self.target_hosts,
            config=merged,
            health_check=self.health_check,
            previous_version_ref=self.previous_version_ref,
            environment=self.environment,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "service_name": self.service_name,
            "service_kind": self.service_kind.value,
            "version": self.version,
            "environment": self.environment,
            "previous_version_ref": self.previous_version_ref,
            "target_hosts": [str(h) for h in self.target_hosts],
            "config": dict(self.config),
            "health_check": {
                "kind": self.health_check.kind.value,
                "target": self.health_check.target,
            },
        }
