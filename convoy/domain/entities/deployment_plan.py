"""
Deployment Plan

Architectural Intent:
- Output of the DeploymentPlanner and input of the FleetCoordinator
- Batches run one after another; hosts inside a batch run concurrently
- Steps are the per-host action sequence, shared by every host in the plan
- Invariant: every target host appears in exactly one batch
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Optional

from convoy.domain.entities.host_state import HostDeploymentState
from convoy.domain.entities.service_descriptor import ServiceDescriptor
from convoy.domain.value_objects.host_action import HostAction
from convoy.domain.value_objects.host_id import HostId
from convoy.domain.value_objects.policies import FleetPolicy


@dataclass(frozen=True)
class Batch:
    index: int
    hosts: tuple[HostId, ...]
    is_canary: bool = False

    def __len__(self) -> int:
        return len(self.hosts)


@dataclass(frozen=True)
class PlannedStep:
    state: HostDeploymentState
    action: HostAction


@dataclass(frozen=True)
class DeploymentPlan:
    descriptor: ServiceDescriptor
    batches: tuple[Batch, ...]
    steps: tuple[PlannedStep, ...]
    fleet_policy: FleetPolicy
    cleanup: Optional[HostAction] = None
    rollback: Optional[HostAction] = None

    def __post_init__(self) -> None:
        planned = [h for b in self.batches for h in b.hosts]
        if sorted(map(str, planned)) != sorted(map(str, self.descriptor.target_hosts)):
            raise ValueError("Plan batches must cover every target host exactly once")

    @property
    def hosts(self) -> tuple[HostId, ...]:
        return tuple(h for b in self.batches for h in b.hosts)

    def step_for(self, state: HostDeploymentState) -> PlannedStep:
        for step in self.steps:
            if step.state is state:
                return step
        raise KeyError(state)

    def describe(self) -> str:
        d = self.descriptor
        lines = [
            f"Plan for {d.service_name} {d.version} "
            f"({d.service_kind.value}, env={d.environment or '-'})",
            f"  {len(self.hosts)} host(s) in {len(self.batches)} batch(es), "
            f"max_parallel={self.fleet_policy.max_parallel}",
        ]
        for batch in self.batches:
            label = " [canary]" if batch.is_canary else ""
            lines.append(
                f"  batch {batch.index}{label}: " + ", ".join(str(h) for h in batch.hosts)
            )
        lines.append("  steps:")
        for step in self.steps:
            lines.append(f"    {step.state.value:<10} {step.action.describe()}")
        if self.cleanup is not None:
            lines.append(f"    {'cleanup':<10} {self.cleanup.describe()}")
        if self.rollback is not None:
            lines.append(f"    {'rollback':<10} {self.rollback.describe()}")
        else:
            lines.append(f"    {'rollback':<10} unavailable (no previous version)")
        return "\n".join(lines)
