"""Global test configuration.

Provides an in-memory HostExecutorPort and descriptor factories shared by
the domain, application and integration tests.
"""

import asyncio
from collections import defaultdict
from typing import Optional, Union

import pytest

from convoy.domain.entities.service_descriptor import (
    HealthCheckSpec,
    ServiceDescriptor,
    ServiceKind,
)
from convoy.domain.ports.host_executor_port import HostExecutorPort
from convoy.domain.value_objects.host_action import (
    ActionResult,
    HostAction,
    InstallUnit,
    QueryHealth,
    QueryStatus,
    StartContainer,
    StartUnit,
)
from convoy.domain.value_objects.host_id import HostId
from convoy.domain.value_objects.policies import RetryPolicy

Outcome = Union[ActionResult, Exception]


class FakeExecutor(HostExecutorPort):
    """Executor that simulates hosts in memory.

    By default every action succeeds, start actions record the version now
    running on the host, and QueryStatus reports it. Per-host behaviour is
    overridden with ``script`` (consumed in order) or ``always``.
    """

    def __init__(self, delay: float = 0.0) -> None:
        self.delay = delay
        self.calls: list[tuple[HostId, HostAction]] = []
        self.running: dict[HostId, str] = {}
        self._scripted: dict[tuple[HostId, type], list[Outcome]] = defaultdict(list)
        self._always: dict[tuple[HostId, type], Outcome] = {}

    def script(self, host: HostId, action_type: type, *outcomes: Outcome) -> None:
        self._scripted[(host, action_type)].extend(outcomes)

    def always(self, host: HostId, action_type: type, outcome: Outcome) -> None:
        self._always[(host, action_type)] = outcome

    def actions_for(self, host: HostId) -> list[str]:
        return [action.name for h, action in self.calls if h == host]

    def count(self, action_type: type, host: Optional[HostId] = None) -> int:
        return sum(
            1 for h, a in self.calls
            if isinstance(a, action_type) and (host is None or h == host)
        )

    async def execute(self, host_id: HostId, action: HostAction) -> ActionResult:
        self.calls.append((host_id, action))
        if self.delay:
            await asyncio.sleep(self.delay)

        key = (host_id, type(action))
        if self._scripted.get(key):
            outcome = self._scripted[key].pop(0)
        elif key in self._always:
            outcome = self._always[key]
        else:
            outcome = self._default(host_id, action)

        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def _default(self, host_id: HostId, action: HostAction) -> ActionResult:
        if isinstance(action, QueryStatus):
            version = self.running.get(host_id)
            return ActionResult(version=version, healthy=version is not None)
        if isinstance(action, QueryHealth):
            return ActionResult(healthy=True)
        if isinstance(action, (StartContainer, InstallUnit)):
            self.running[host_id] = action.version
            return ActionResult(version=action.version)
        if isinstance(action, StartUnit) and action.version:
            self.running[host_id] = action.version
            return ActionResult(version=action.version)
        return ActionResult()


def make_hosts(count: int) -> tuple[HostId, ...]:
    return tuple(HostId(host=f"h{i}.example.com", user="deploy") for i in range(1, count + 1))


def make_descriptor(
    hosts: Union[int, tuple[HostId, ...]] = 3,
    kind: ServiceKind = ServiceKind.CONTAINER,
    version: str = "2.0.0",
    previous: Optional[str] = "1.0.0",
    **config: str,
) -> ServiceDescriptor:
    if isinstance(hosts, int):
        hosts = make_hosts(hosts)
    if kind is ServiceKind.CONTAINER:
        base = {"image": "billing-api", "registry": "registry.local"}
    else:
        base = {"unit_template": "[Service]\nExecStart=/opt/billing/bin/billing\n"}
    base.update(config)
    return ServiceDescriptor(
        service_name="billing-api",
        service_kind=kind,
        version=version,
        target_hosts=hosts,
        config=base,
        health_check=HealthCheckSpec(poll_interval_s=0.005),
        previous_version_ref=previous,
        environment="qa",
    )


@pytest.fixture
def fake_executor():
    return FakeExecutor()


@pytest.fixture
def fast_retry():
    return RetryPolicy(
        retry_limit=3,
        base_delay_s=0.001,
        max_delay_s=0.005,
        transition_timeout_s=1.0,
        host_timeout_s=5.0,
        verify_timeout_s=0.05,
    )


@pytest.fixture
def descriptor():
    return make_descriptor()
