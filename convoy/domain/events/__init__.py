"""
Domain Events Package

Architectural Intent:
- Contains domain events published while a rollout runs
- Events are the primary mechanism for progress reporting and audit
"""

from convoy.domain.events.event_base import DomainEvent
from convoy.domain.events.deployment_events import (
    HostTransitioned,
    BatchStarted,
    BatchCompleted,
    DeploymentAborted,
    DeploymentFinished,
)

__all__ = [
    "DomainEvent",
    "HostTransitioned",
    "BatchStarted",
    "BatchCompleted",
    "DeploymentAborted",
    "DeploymentFinished",
]
