"""
Deployment Outcome and Report

Architectural Intent:
- DeploymentOutcome is created once, when a HostStateMachine terminates,
  and never mutated afterwards (a later rollback produces a new outcome)
- DeploymentReport is built once by the FleetCoordinator and is the only
  thing returned to callers
- Both serialise to plain dicts for structured output and audit sinks
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, UTC
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional

from convoy.domain.entities.host_state import STATE_CHANGING, HostDeploymentState
from convoy.domain.entities.service_descriptor import ServiceDescriptor
from convoy.domain.value_objects.host_id import HostId


def _now() -> str:
    return datetime.now(UTC).isoformat()


@dataclass(frozen=True)
class ErrorRecord:
    state: HostDeploymentState
    error_type: str
    message: str
    attempt: int = 1
    transient: bool = False
    timestamp: str = field(default_factory=_now)

    @classmethod
    def from_exception(
        cls, state: HostDeploymentState, exc: BaseException, attempt: int = 1
    ) -> "ErrorRecord":
        return cls(
            state=state,
            error_type=type(exc).__name__,
            message=str(exc) or type(exc).__name__,
            attempt=attempt,
            transient=bool(getattr(exc, "transient", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "error_type": self.error_type,
            "message": self.message,
            "attempt": self.attempt,
            "transient": self.transient,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class TransitionRecord:
    host_id: HostId
    from_state: HostDeploymentState
    to_state: HostDeploymentState
    timestamp: str = field(default_factory=_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "host": str(self.host_id),
            "from": self.from_state.value,
            "to": self.to_state.value,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class DeploymentOutcome:
    host_id: HostId
    final_state: HostDeploymentState
    attempt_count: int = 0
    errors: tuple[ErrorRecord, ...] = ()
    duration_ms: int = 0
    transitions: tuple[TransitionRecord, ...] = ()
    converged: bool = False

    @classmethod
    def not_started(cls, host_id: HostId) -> "DeploymentOutcome":
        return cls(host_id=host_id, final_state=HostDeploymentState.PENDING)

    @property
    def succeeded(self) -> bool:
        return self.final_state is HostDeploymentState.SUCCEEDED

    @property
    def started(self) -> bool:
        return self.final_state is not HostDeploymentState.PENDING

    @property
    def reached_succeeded(self) -> bool:
        return any(t.to_state is HostDeploymentState.SUCCEEDED for t in self.transitions)

    @property
    def touched(self) -> bool:
        """True once an action that may change the running service was sent."""
        return any(t.to_state in STATE_CHANGING for t in self.transitions)

    @property
    def deploy_failed(self) -> bool:
        """True when the forward deployment did not reach Succeeded."""
        if self.final_state is HostDeploymentState.FAILED:
            return True
        if self.final_state is HostDeploymentState.ROLLED_BACK:
            # A host rolled back by the fleet had reached Succeeded first.
            return not self.reached_succeeded
        return False

    @property
    def last_error(self) -> Optional[ErrorRecord]:
        return self.errors[-1] if self.errors else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "host": str(self.host_id),
            "final_state": self.final_state.value,
            "attempt_count": self.attempt_count,
            "duration_ms": self.duration_ms,
            "converged": self.converged,
            "errors": [e.to_dict() for e in self.errors],
            "transitions": [t.to_dict() for t in self.transitions],
        }


class OverallStatus(Enum):
    ALL_SUCCEEDED = "AllSucceeded"
    PARTIAL_FAILURE = "PartialFailure"
    ABORTED = "Aborted"
    ROLLED_BACK = "RolledBack"


@dataclass(frozen=True)
class DeploymentReport:
    descriptor: ServiceDescriptor
    outcomes: Mapping[HostId, DeploymentOutcome] = field(hash=False)
    overall_status: OverallStatus
    aborted_reason: Optional[str] = None
    started_at: str = field(default_factory=_now)
    duration_ms: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "outcomes", MappingProxyType(dict(self.outcomes)))

    @property
    def succeeded_hosts(self) -> list[HostId]:
        return [h for h, o in self.outcomes.items() if o.succeeded]

    @property
    def failed_hosts(self) -> list[HostId]:
        return [h for h, o in self.outcomes.items() if o.deploy_failed]

    def summary_rows(self) -> list[tuple[str, str, str, str, str]]:
        """Per-host rows: host, state, attempts, duration, last error."""
        rows = []
        for host_id, outcome in self.outcomes.items():
            last = outcome.last_error
            rows.append((
                str(host_id),
                outcome.final_state.value + (" (converged)" if outcome.converged else ""),
                str(outcome.attempt_count),
                f"{outcome.duration_ms}ms",
                f"{last.error_type}: {last.message}" if last else "-",
            ))
        return rows

    def to_dict(self) -> dict[str, Any]:
        return {
            "service": self.descriptor.service_name,
            "version": self.descriptor.version,
            "environment": self.descriptor.environment,
            "overall_status": self.overall_status.value,
            "aborted_reason": self.aborted_reason,
            "started_at": self.started_at,
            "duration_ms": self.duration_ms,
            "outcomes": [o.to_dict() for o in self.outcomes.values()],
        }
