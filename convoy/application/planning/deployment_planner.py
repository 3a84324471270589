"""
Deployment Planner

Architectural Intent:
- Turns a ServiceDescriptor and FleetPolicy into a DeploymentPlan
- Validates everything up front; a plan is returned whole or not at all
- Encodes the per-kind action for each state explicitly, including the
  "ensure runtime present" prerequisite that runs before Updating

Batching Strategy:
- Optional canary batch first: ceil(canary_fraction * hosts), at least one
  host and never more than max_parallel
- Remaining hosts in order, in batches of at most max_parallel
"""

from __future__ import annotations
import logging
import math
import shlex
from typing import Optional

from convoy.domain.entities.deployment_plan import Batch, DeploymentPlan, PlannedStep
from convoy.domain.entities.host_state import HostDeploymentState
from convoy.domain.entities.service_descriptor import (
    CONTAINER_REQUIRED,
    SYSTEM_PROCESS_REQUIRED,
    ServiceDescriptor,
    ServiceKind,
)
from convoy.domain.errors import InvalidDescriptor
from convoy.domain.value_objects.host_action import (
    HostAction,
    InstallUnit,
    PullImage,
    QueryHealth,
    QueryStatus,
    RunCommand,
    StartContainer,
    StartUnit,
    StopContainer,
    StopUnit,
)
from convoy.domain.value_objects.host_id import HostId
from convoy.domain.value_objects.policies import FleetPolicy

logger = logging.getLogger(__name__)

ENSURE_DOCKER = "docker info --format '{{.ServerVersion}}'"
ENSURE_SYSTEMD = "systemctl --version"
IMAGE_LIST_FORMAT = "'{{.Repository}}:{{.Tag}}'"


def prune_images_command(repository: str, keep: list[str]) -> str:
    """Remove dangling images and every tag of ``repository`` not in ``keep``."""
    patterns = " ".join(f"-e {shlex.quote(ref)}" for ref in keep)
    return (
        "docker image prune -f && "
        f"docker images --format {IMAGE_LIST_FORMAT} {shlex.quote(repository)} "
        f"| grep -vxF {patterns} | xargs -r docker rmi"
    )


class DeploymentPlanner:
    def plan(
        self, descriptor: ServiceDescriptor, fleet_policy: FleetPolicy
    ) -> DeploymentPlan:
        problems = self.validate(descriptor)
        if problems:
            logger.error(
                "Refusing to plan %s: %s", descriptor.service_name, "; ".join(problems)
            )
            raise InvalidDescriptor(problems)

        batches = self.batch_hosts(descriptor.target_hosts, fleet_policy)
        plan = DeploymentPlan(
            descriptor=descriptor,
            batches=batches,
            steps=self._steps(descriptor),
            fleet_policy=fleet_policy,
            cleanup=self._cleanup(descriptor),
            rollback=self._rollback(descriptor),
        )
        logger.info(
            "Planned %s %s: %d host(s) in %d batch(es)",
            descriptor.service_name,
            descriptor.version,
            len(plan.hosts),
            len(batches),
        )
        return plan

    @staticmethod
    def validate(descriptor: ServiceDescriptor) -> list[str]:
        problems = []
        if not descriptor.service_name:
            problems.append("service_name is empty")
        if not descriptor.version:
            problems.append("version is empty")
        if not descriptor.target_hosts:
            problems.append("targetHosts is empty")
        seen: set[HostId] = set()
        for host in descriptor.target_hosts:
            if host in seen:
                problems.append(f"host {host} is listed more than once")
            seen.add(host)

        if descriptor.service_kind is ServiceKind.CONTAINER:
            required = CONTAINER_REQUIRED
        else:
            required = SYSTEM_PROCESS_REQUIRED
        for key in required:
            if not descriptor.config.get(key):
                problems.append(
                    f"{descriptor.service_kind.value} service requires config '{key}'"
                )
        return problems

    @staticmethod
    def batch_hosts(
        hosts: tuple[HostId, ...], fleet_policy: FleetPolicy
    ) -> tuple[Batch, ...]:
        remaining = list(hosts)
        batches: list[Batch] = []

        if fleet_policy.canary_fraction is not None and remaining:
            # round() guards against 0.7 * 10 == 7.000000000000001
            size = math.ceil(round(fleet_policy.canary_fraction * len(remaining), 9))
            size = min(max(size, 1), fleet_policy.max_parallel)
            batches.append(Batch(index=1, hosts=tuple(remaining[:size]), is_canary=True))
            remaining = remaining[size:]

        step = fleet_policy.max_parallel
        for start in range(0, len(remaining), step):
            batches.append(
                Batch(index=len(batches) + 1, hosts=tuple(remaining[start:start + step]))
            )
        return tuple(batches)

    def _steps(self, d: ServiceDescriptor) -> tuple[PlannedStep, ...]:
        S = HostDeploymentState
        unit = d.unit_name if d.service_kind is ServiceKind.SYSTEM_PROCESS else None
        status = QueryStatus(
            service_name=d.service_name, service_kind=d.service_kind, unit_name=unit
        )
        health = QueryHealth(
            service_name=d.service_name,
            service_kind=d.service_kind,
            health_check=d.health_check,
            unit_name=unit,
        )
        env = tuple(sorted(d.service_env.items()))

        if d.service_kind is ServiceKind.CONTAINER:
            actions: list[tuple[HostDeploymentState, HostAction]] = [
                (S.VALIDATING, status),
                (S.PREPARING, RunCommand(ENSURE_DOCKER)),
                (S.STOPPING, StopContainer(container=d.service_name)),
                (S.UPDATING, PullImage(image=d.image_ref)),
                (S.STARTING, StartContainer(
                    container=d.service_name,
                    image=d.image_ref,
                    version=d.version,
                    env=env,
                    ports=d.ports,
                )),
                (S.VERIFYING, health),
            ]
        else:
            actions = [
                (S.VALIDATING, status),
                (S.PREPARING, RunCommand(ENSURE_SYSTEMD)),
                (S.STOPPING, StopUnit(unit_name=d.unit_name)),
                (S.UPDATING, InstallUnit(
                    unit_name=d.unit_name,
                    content=d.config["unit_template"],
                    version=d.version,
                    env=env,
                )),
                (S.STARTING, StartUnit(unit_name=d.unit_name)),
                (S.VERIFYING, health),
            ]
        return tuple(PlannedStep(state, action) for state, action in actions)

    @staticmethod
    def _cleanup(d: ServiceDescriptor) -> Optional[HostAction]:
        if d.service_kind is ServiceKind.CONTAINER:
            # The previous image stays on disk for a later rollback
            keep = [d.image_ref]
            if d.previous_version_ref:
                keep.append(d.image_ref_for(d.previous_version_ref))
            return RunCommand(prune_images_command(d.image_repository, keep))
        return None

    @staticmethod
    def _rollback(d: ServiceDescriptor) -> Optional[HostAction]:
        previous = d.previous_version_ref
        if not previous:
            return None
        if d.service_kind is ServiceKind.CONTAINER:
            return StartContainer(
                container=d.service_name,
                image=d.image_ref_for(previous),
                version=previous,
                env=tuple(sorted(d.service_env.items())),
                ports=d.ports,
            )
        return StartUnit(unit_name=d.unit_name, version=previous)
