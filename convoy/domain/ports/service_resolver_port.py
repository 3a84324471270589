"""
Service Resolver Port

Architectural Intent:
- Turns a service name + environment into a concrete ServiceDescriptor
- Inventory, catalog and variable resolution live behind this port; the
  engine only consumes the finished descriptor
"""

from abc import ABC, abstractmethod
from convoy.domain.entities.service_descriptor import ServiceDescriptor


class ServiceResolverPort(ABC):
    @abstractmethod
    async def resolve(self, service_name: str, environment: str) -> ServiceDescriptor:
        """
        Raises ServiceNotFound when the service or environment is unknown
        and InvalidServiceConfig when its definition is malformed.
        """
        pass
