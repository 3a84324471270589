"""
Deploy Service Use Case

Architectural Intent:
- Resolver -> Planner -> FleetCoordinator -> DeploymentReport
- Applies caller overrides (registry, fleet and abort policy) on top of
  configured defaults before planning
- Dry runs stop after planning; the executor is never called
"""

import dataclasses
import logging
from typing import Optional

from convoy.application.dtos.deployment_dtos import (
    DeployServiceRequest,
    DeployServiceResponse,
)
from convoy.application.execution.cancellation import CancellationToken
from convoy.application.execution.fleet_coordinator import FleetCoordinator
from convoy.application.planning.deployment_planner import DeploymentPlanner
from convoy.application.use_cases.preview_deployment import PreviewDeployment
from convoy.domain.ports.host_executor_port import HostExecutorPort
from convoy.domain.ports.service_resolver_port import ServiceResolverPort
from convoy.domain.value_objects.policies import AbortPolicy, FleetPolicy

logger = logging.getLogger(__name__)


class DeployService:
    def __init__(
        self,
        resolver: ServiceResolverPort,
        executor: HostExecutorPort,
        planner: Optional[DeploymentPlanner] = None,
        coordinator: Optional[FleetCoordinator] = None,
        fleet_policy: Optional[FleetPolicy] = None,
        abort_policy: Optional[AbortPolicy] = None,
    ):
        self.executor = executor
        self.preview = PreviewDeployment(resolver, planner, fleet_policy)
        self.coordinator = coordinator or FleetCoordinator()
        self.abort_policy = abort_policy or AbortPolicy()

    async def execute(
        self,
        request: DeployServiceRequest,
        cancel_token: Optional[CancellationToken] = None,
    ) -> DeployServiceResponse:
        plan = await self.preview.execute(request)
        if request.dry_run:
            logger.info("Dry run for %s, skipping execution", plan.descriptor.service_name)
            return DeployServiceResponse(plan=plan)

        report = await self.coordinator.run(
            plan, self.executor, self._abort_policy(request), cancel_token
        )
        return DeployServiceResponse(plan=plan, report=report)

    def _abort_policy(self, request: DeployServiceRequest) -> AbortPolicy:
        overrides = {}
        if request.failure_threshold is not None:
            overrides["failure_threshold"] = request.failure_threshold
        if request.rollback_on_abort is not None:
            overrides["rollback_on_abort"] = request.rollback_on_abort
        return dataclasses.replace(self.abort_policy, **overrides)
