"""
Host Executor Port

Architectural Intent:
- Port interface for running one atomic action against one host
- The engine is polymorphic over this capability; adapters decide the
  transport (Fabric/SSH, local shell, agent API)
- Implementations must be safe to call concurrently for distinct hosts
"""

from abc import ABC, abstractmethod
from convoy.domain.value_objects.host_id import HostId
from convoy.domain.value_objects.host_action import ActionResult, HostAction


class HostExecutorPort(ABC):
    """
    Port interface for host-level actions.
    """

    @abstractmethod
    async def execute(self, host_id: HostId, action: HostAction) -> ActionResult:
        """
        Runs ``action`` on ``host_id``.

        Raises TransientExecutionError for failures worth retrying
        (timeouts, dropped connections) and PermanentExecutionError for
        everything else (permissions, bad input, failing commands).
        """
        pass
