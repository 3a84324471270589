"""
Composition Root

Architectural Intent:
- Dependency injection composition root for the Convoy application
- Single place where all adapters and use cases are wired together
- No adapter instantiation should occur outside this module (except tests)

Design Decisions:
- Uses a simple dataclass container instead of a DI framework
- Factory function creates and wires all dependencies from a ConvoyConfig
"""

from dataclasses import dataclass
from typing import Optional

from convoy.application.execution.fleet_coordinator import FleetCoordinator
from convoy.application.planning.deployment_planner import DeploymentPlanner
from convoy.application.use_cases.deploy_service import DeployService
from convoy.application.use_cases.preview_deployment import PreviewDeployment
from convoy.infrastructure.adapters.fabric_executor import FabricHostExecutor
from convoy.infrastructure.config import ConvoyConfig
from convoy.infrastructure.event_bus import EventBus
from convoy.infrastructure.repositories.json_service_catalog import JsonServiceCatalog

EVENT_HISTORY_SIZE = 10_000


@dataclass
class ConvoyContainer:
    """DI container holding all wired dependencies."""

    config: ConvoyConfig
    executor: FabricHostExecutor
    catalog: JsonServiceCatalog
    event_bus: EventBus
    coordinator: FleetCoordinator
    deploy_service: DeployService
    preview: PreviewDeployment


def create_container(
    config: Optional[ConvoyConfig] = None,
    catalog_path: Optional[str] = None,
) -> ConvoyContainer:
    """Create and wire all dependencies."""
    config = config or ConvoyConfig()

    executor = FabricHostExecutor(
        connect_timeout=config.ssh.connect_timeout,
        command_timeout=config.command_timeout,
        use_sudo=config.ssh.use_sudo,
        state_dir=config.ssh.state_dir,
    )
    catalog = JsonServiceCatalog(catalog_path or config.catalog.path)
    event_bus = EventBus(history_size=EVENT_HISTORY_SIZE)
    planner = DeploymentPlanner()
    coordinator = FleetCoordinator(
        retry_policy=config.retry.to_policy(), event_bus=event_bus
    )

    deploy_service = DeployService(
        resolver=catalog,
        executor=executor,
        planner=planner,
        coordinator=coordinator,
        fleet_policy=config.fleet.to_policy(),
        abort_policy=config.abort.to_policy(),
    )

    return ConvoyContainer(
        config=config,
        executor=executor,
        catalog=catalog,
        event_bus=event_bus,
        coordinator=coordinator,
        deploy_service=deploy_service,
        preview=deploy_service.preview,
    )
