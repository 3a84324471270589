"""
Deployment Events

Architectural Intent:
- Progress events emitted while a rollout runs
- HostTransitioned is raised by a HostStateMachine on every state change
  and forwarded by the FleetCoordinator; the rest are fleet-level
- aggregate_id is the service name so observers can group by rollout
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Optional

from convoy.domain.events.event_base import DomainEvent


@dataclass(frozen=True, kw_only=True)
class HostTransitioned(DomainEvent):
    host: str
    from_state: str
    to_state: str


@dataclass(frozen=True, kw_only=True)
class BatchStarted(DomainEvent):
    batch_index: int
    hosts: tuple[str, ...]
    is_canary: bool = False


@dataclass(frozen=True, kw_only=True)
class BatchCompleted(DomainEvent):
    batch_index: int
    succeeded: int
    failed: int


@dataclass(frozen=True, kw_only=True)
class DeploymentAborted(DomainEvent):
    reason: str
    batch_index: Optional[int] = None
    rollback: bool = False


@dataclass(frozen=True, kw_only=True)
class DeploymentFinished(DomainEvent):
    overall_status: str
    duration_ms: int = 0
