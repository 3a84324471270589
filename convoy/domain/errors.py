"""
Domain Errors

Architectural Intent:
- Single taxonomy for everything that can go wrong during a rollout
- Planning errors are fatal and raised to the caller
- Execution errors are classified transient or permanent by the executor
  adapter; the state machine retries only the former
- Host-level errors never escape a HostStateMachine; they are captured as
  ErrorRecords in the host's DeploymentOutcome
"""

from __future__ import annotations
from typing import Sequence


class ConvoyError(Exception):
    """Base class for all Convoy errors."""


class InvalidDescriptor(ConvoyError):
    """The descriptor or fleet policy cannot produce a plan."""

    def __init__(self, problems: Sequence[str]) -> None:
        self.problems = tuple(problems)
        super().__init__("; ".join(self.problems) or "invalid descriptor")


class ExecutionError(ConvoyError):
    """An executor action failed on a host."""

    transient = False


class TransientExecutionError(ExecutionError):
    """Timeouts, dropped connections and other errors worth retrying."""

    transient = True


class PermanentExecutionError(ExecutionError):
    """Permission and validation failures; retrying will not help."""

    transient = False


class HostTimeout(TransientExecutionError):
    """A transition or the host's overall budget ran out."""


class OperationCancelled(ConvoyError):
    """Cooperative cancellation was requested for the rollout."""


class RollbackUnavailable(ConvoyError):
    """No previous version is recorded for the service."""


class InvalidTransition(ConvoyError):
    """A state machine was asked to make a transition it does not allow."""


class ResolutionError(ConvoyError):
    """The service resolver could not produce a descriptor."""


class ServiceNotFound(ResolutionError):
    pass


class InvalidServiceConfig(ResolutionError):
    pass
