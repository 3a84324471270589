"""
Domain Ports Package

Architectural Intent:
- Contains port interfaces (abstract contracts) for external dependencies
- Ports define what the engine needs, adapters implement how
- Follows Hexagonal Architecture principles
"""

from convoy.domain.ports.host_executor_port import HostExecutorPort
from convoy.domain.ports.service_resolver_port import ServiceResolverPort
from convoy.domain.ports.event_bus_port import EventBusPort

__all__ = [
    "HostExecutorPort",
    "ServiceResolverPort",
    "EventBusPort",
]
