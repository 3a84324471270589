"""
Host Actions

Architectural Intent:
- Vocabulary of atomic host-level operations the engine can ask for
- Actions are plain immutable data; the executor adapter decides how each
  one is carried out (SSH, local shell, an agent API, ...)
- ActionResult is the only thing that flows back
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Optional

from convoy.domain.entities.service_descriptor import HealthCheckSpec, ServiceKind


@dataclass(frozen=True)
class HostAction:
    """Base class for every action."""

    @property
    def name(self) -> str:
        return type(self).__name__

    def describe(self) -> str:
        return self.name


@dataclass(frozen=True)
class RunCommand(HostAction):
    command: str

    def describe(self) -> str:
        return f"RunCommand({self.command})"


@dataclass(frozen=True)
class CopyFile(HostAction):
    remote_path: str
    content: str
    mode: str = "0644"

    def describe(self) -> str:
        return f"CopyFile({self.remote_path})"


@dataclass(frozen=True)
class QueryStatus(HostAction):
    """Report the running version and health of a service on the host."""

    service_name: str
    service_kind: ServiceKind
    unit_name: Optional[str] = None

    def describe(self) -> str:
        return f"QueryStatus({self.service_name})"


@dataclass(frozen=True)
class QueryHealth(HostAction):
    service_name: str
    service_kind: ServiceKind
    health_check: HealthCheckSpec = field(default_factory=HealthCheckSpec)
    unit_name: Optional[str] = None

    def describe(self) -> str:
        return f"QueryHealth({self.service_name}, {self.health_check.kind.value})"


@dataclass(frozen=True)
class PullImage(HostAction):
    image: str

    def describe(self) -> str:
        return f"PullImage({self.image})"


@dataclass(frozen=True)
class StartContainer(HostAction):
    container: str
    image: str
    version: str
    env: tuple[tuple[str, str], ...] = ()
    ports: tuple[str, ...] = ()

    def describe(self) -> str:
        return f"StartContainer({self.container}, {self.image})"


@dataclass(frozen=True)
class StopContainer(HostAction):
    container: str

    def describe(self) -> str:
        return f"StopContainer({self.container})"


@dataclass(frozen=True)
class InstallUnit(HostAction):
    unit_name: str
    content: str
    version: str
    env: tuple[tuple[str, str], ...] = ()

    def describe(self) -> str:
        return f"InstallUnit({self.unit_name}, {self.version})"


@dataclass(frozen=True)
class StartUnit(HostAction):
    unit_name: str
    version: Optional[str] = None

    def describe(self) -> str:
        if self.version:
            return f"StartUnit({self.unit_name}, {self.version})"
        return f"StartUnit({self.unit_name})"


@dataclass(frozen=True)
class StopUnit(HostAction):
    unit_name: str

    def describe(self) -> str:
        return f"StopUnit({self.unit_name})"


@dataclass(frozen=True)
class ActionResult:
    ok: bool = True
    stdout: str = ""
    stderr: str = ""
    version: Optional[str] = None
    healthy: Optional[bool] = None
