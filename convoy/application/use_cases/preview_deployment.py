"""
Preview Deployment Use Case

Architectural Intent:
- Resolve and plan only; no executor is involved
- Shared by DeployService so a dry run and a real rollout are planned
  identically
"""

import dataclasses
import logging
from typing import Optional

from convoy.application.dtos.deployment_dtos import DeployServiceRequest
from convoy.application.planning.deployment_planner import DeploymentPlanner
from convoy.domain.entities.deployment_plan import DeploymentPlan
from convoy.domain.ports.service_resolver_port import ServiceResolverPort
from convoy.domain.value_objects.policies import FleetPolicy

logger = logging.getLogger(__name__)


class PreviewDeployment:
    def __init__(
        self,
        resolver: ServiceResolverPort,
        planner: Optional[DeploymentPlanner] = None,
        fleet_policy: Optional[FleetPolicy] = None,
    ):
        self.resolver = resolver
        self.planner = planner or DeploymentPlanner()
        self.fleet_policy = fleet_policy or FleetPolicy()

    async def execute(self, request: DeployServiceRequest) -> DeploymentPlan:
        descriptor = await self.resolver.resolve(request.service_name, request.environment)
        if request.registry:
            logger.debug("Registry override for %s: %s", descriptor.service_name, request.registry)
            descriptor = descriptor.with_config(registry=request.registry)
        return self.planner.plan(descriptor, self._fleet_policy(request))

    def _fleet_policy(self, request: DeployServiceRequest) -> FleetPolicy:
        overrides = {}
        if request.max_parallel is not None:
            overrides["max_parallel"] = request.max_parallel
        if request.canary_fraction is not None:
            # 0 on the command line turns the canary batch off
            overrides["canary_fraction"] = request.canary_fraction or None
        return dataclasses.replace(self.fleet_policy, **overrides)
