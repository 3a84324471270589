"""
JSON Service Catalog

Architectural Intent:
- Resolver adapter implementing ServiceResolverPort from a JSON file
- Each service has base settings plus per-environment overrides; the
  environment block wins for version/previous_version and is merged into
  config
- All values are resolved here, before planning; the engine never sees
  unresolved placeholders

File Format:
    {"services": {"<name>": {
        "kind": "container" | "systemProcess",
        "version": "1.2.3",
        "previous_version": "1.2.2",
        "config": {"image": "...", "registry": "..."},
        "health_check": {"kind": "http", "target": "http://..."},
        "environments": {"prod": {"hosts": ["deploy@10.0.0.5"], ...}}}}}
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Optional

from convoy.domain.entities.service_descriptor import (
    HealthCheckKind,
    HealthCheckSpec,
    ServiceDescriptor,
    ServiceKind,
)
from convoy.domain.errors import InvalidServiceConfig, ServiceNotFound
from convoy.domain.ports.service_resolver_port import ServiceResolverPort
from convoy.domain.value_objects.host_id import HostId

logger = logging.getLogger(__name__)


class JsonServiceCatalog(ServiceResolverPort):
    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._data: Optional[dict[str, Any]] = None

    def _load(self) -> dict[str, Any]:
        if self._data is None:
            try:
                with open(self.path) as f:
                    data = json.load(f)
            except FileNotFoundError:
                raise ServiceNotFound(f"Service catalog not found: {self.path}")
            except json.JSONDecodeError as e:
                raise InvalidServiceConfig(f"Invalid service catalog {self.path}: {e}")
            if not isinstance(data, dict) or not isinstance(data.get("services"), dict):
                raise InvalidServiceConfig(f"{self.path} has no 'services' mapping")
            self._data = data
        return self._data

    def service_names(self) -> list[str]:
        return sorted(self._load()["services"])

    async def resolve(self, service_name: str, environment: str) -> ServiceDescriptor:
        services = self._load()["services"]
        if service_name not in services:
            raise ServiceNotFound(f"Unknown service {service_name!r} in {self.path}")
        entry = services[service_name]
        envs = entry.get("environments") or {}
        if environment not in envs:
            raise ServiceNotFound(
                f"Service {service_name!r} has no {environment!r} environment"
            )
        env_entry = envs[environment] or {}

        try:
            descriptor = self._build(service_name, environment, entry, env_entry)
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidServiceConfig(f"{service_name}/{environment}: {e}")
        logger.debug(
            "Resolved %s/%s to version %s on %d host(s)",
            service_name, environment, descriptor.version, len(descriptor.target_hosts),
        )
        return descriptor

    @staticmethod
    def _build(
        name: str, environment: str, entry: dict, env_entry: dict
    ) -> ServiceDescriptor:
        config = {str(k): str(v) for k, v in (entry.get("config") or {}).items()}
        config.update({str(k): str(v) for k, v in (env_entry.get("config") or {}).items()})

        version = env_entry.get("version") or entry.get("version")
        if not version:
            raise ValueError("no version given")

        credentials = env_entry.get("credentials_ref") or entry.get("credentials_ref")
        hosts = tuple(
            HostId.parse(h, credentials_ref=credentials) for h in env_entry.get("hosts", ())
        )

        health = env_entry.get("health_check") or entry.get("health_check") or {}
        health_check = HealthCheckSpec(
            kind=HealthCheckKind(health.get("kind", "status")),
            target=health.get("target", ""),
            poll_interval_s=float(health.get("poll_interval_s", 2.0)),
            expected_status=int(health.get("expected_status", 200)),
        )

        return ServiceDescriptor(
            service_name=name,
            service_kind=ServiceKind.parse(entry.get("kind", "container")),
            version=str(version),
            target_hosts=hosts,
            config=config,
            health_check=health_check,
            previous_version_ref=env_entry.get("previous_version")
            or entry.get("previous_version"),
            environment=environment,
        )
