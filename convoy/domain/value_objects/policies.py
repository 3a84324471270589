"""
Deployment Policies

Architectural Intent:
- Explicit value objects for every knob that shapes a rollout
- RetryPolicy is handed to each HostStateMachine instead of living in
  ambient configuration
- FleetPolicy drives batching in the planner; AbortPolicy drives the
  coordinator's continue/halt/rollback decision
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class RetryPolicy:
    """Retry, backoff and timeout budget for a single host."""

    retry_limit: int = 3
    base_delay_s: float = 1.0
    max_delay_s: float = 30.0
    transition_timeout_s: float = 120.0
    host_timeout_s: float = 900.0
    verify_timeout_s: float = 60.0

    def __post_init__(self) -> None:
        if self.retry_limit < 0:
            raise ValueError("retry_limit cannot be negative")
        if self.base_delay_s < 0 or self.max_delay_s < 0:
            raise ValueError("retry delays cannot be negative")
        for name in ("transition_timeout_s", "host_timeout_s", "verify_timeout_s"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")

    def delay_for(self, attempt: int) -> float:
        """Backoff before retry number ``attempt`` (1-based)."""
        if attempt < 1:
            raise ValueError("attempt is 1-based")
        return min(self.base_delay_s * (2 ** (attempt - 1)), self.max_delay_s)

    @property
    def max_attempts(self) -> int:
        return self.retry_limit + 1


@dataclass(frozen=True)
class FleetPolicy:
    """Concurrency and canary sizing for the planner."""

    max_parallel: int = 5
    canary_fraction: Optional[float] = None

    def __post_init__(self) -> None:
        if self.max_parallel < 1:
            raise ValueError(f"max_parallel must be >= 1, got {self.max_parallel}")
        if self.canary_fraction is not None and not (0 < self.canary_fraction <= 1):
            raise ValueError(
                f"canary_fraction must be in (0, 1], got {self.canary_fraction}"
            )


@dataclass(frozen=True)
class AbortPolicy:
    """When to stop a rollout and what to undo."""

    failure_threshold: float = 0.0
    rollback_on_abort: bool = False
    rollback_failed_hosts: bool = True

    def __post_init__(self) -> None:
        if not (0 <= self.failure_threshold <= 1):
            raise ValueError(
                f"failure_threshold must be in [0, 1], got {self.failure_threshold}"
            )

    def should_abort(self, failed: int, total: int) -> bool:
        if total == 0:
            return False
        return failed / total > self.failure_threshold
