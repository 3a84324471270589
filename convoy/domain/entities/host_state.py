"""
Host Deployment State

Architectural Intent:
- Lifecycle of a single host within a rollout
- The transition table is the single source of truth for legal moves; the
  HostStateMachine consults it before every transition
"""

from enum import Enum


class HostDeploymentState(Enum):
    PENDING = "Pending"
    VALIDATING = "Validating"
    PREPARING = "Preparing"
    STOPPING = "Stopping"
    UPDATING = "Updating"
    STARTING = "Starting"
    VERIFYING = "Verifying"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    ROLLED_BACK = "RolledBack"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES

    def can_transition_to(self, target: "HostDeploymentState") -> bool:
        return target in _TRANSITIONS.get(self, frozenset())

    def __str__(self) -> str:
        return self.value


S = HostDeploymentState

# Forward path of a deployment; Validating may jump to Verifying when the
# host already runs the target version.
FORWARD_PATH = (
    S.VALIDATING,
    S.PREPARING,
    S.STOPPING,
    S.UPDATING,
    S.STARTING,
    S.VERIFYING,
)

TERMINAL_STATES = frozenset({S.SUCCEEDED, S.FAILED, S.ROLLED_BACK})

# Entering any of these means the running service may have been touched.
STATE_CHANGING = frozenset({S.STOPPING, S.UPDATING, S.STARTING})

_TRANSITIONS: dict[HostDeploymentState, frozenset[HostDeploymentState]] = {
    S.PENDING: frozenset({S.VALIDATING}),
    S.VALIDATING: frozenset({S.PREPARING, S.VERIFYING, S.FAILED}),
    S.PREPARING: frozenset({S.STOPPING, S.FAILED}),
    S.STOPPING: frozenset({S.UPDATING, S.FAILED}),
    S.UPDATING: frozenset({S.STARTING, S.FAILED}),
    S.STARTING: frozenset({S.VERIFYING, S.FAILED}),
    S.VERIFYING: frozenset({S.SUCCEEDED, S.FAILED}),
    S.FAILED: frozenset({S.ROLLED_BACK}),
    S.SUCCEEDED: frozenset({S.ROLLED_BACK}),
}

del S
