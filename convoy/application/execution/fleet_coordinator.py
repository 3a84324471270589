"""
Fleet Coordinator

Architectural Intent:
- Runs a DeploymentPlan: batches one after another, hosts inside a batch
  concurrently (one HostStateMachine each), bounded by max_parallel
- Aggregates immutable outcomes and decides, after every batch, whether
  to continue, halt, or halt and roll back
- Never touches a machine's state directly; rollback is requested from the
  owning machine and yields a new outcome

Abort Strategy:
- A batch whose failed fraction exceeds AbortPolicy.failure_threshold
  stops the rollout; later batches never start
- With rollback_on_abort, Succeeded hosts of completed batches are rolled
  back, most recent batch first
- Cancellation stops new batches and is reported as Aborted
- The rollout is RolledBack when every host it changed (reached Succeeded
  or sent a state-changing action) ended RolledBack; hosts that failed
  before any change have nothing to restore and are not counted
"""

from __future__ import annotations
import asyncio
import logging
import time
from datetime import datetime, UTC
from typing import Callable, Optional

from convoy.application.execution.cancellation import CancellationToken
from convoy.application.execution.host_state_machine import HostStateMachine
from convoy.domain.entities.deployment_plan import Batch, DeploymentPlan
from convoy.domain.entities.deployment_report import (
    DeploymentOutcome,
    DeploymentReport,
    ErrorRecord,
    OverallStatus,
    TransitionRecord,
)
from convoy.domain.entities.host_state import HostDeploymentState
from convoy.domain.events.deployment_events import (
    BatchCompleted,
    BatchStarted,
    DeploymentAborted,
    DeploymentFinished,
    HostTransitioned,
)
from convoy.domain.events.event_base import DomainEvent
from convoy.domain.ports.event_bus_port import EventBusPort
from convoy.domain.ports.host_executor_port import HostExecutorPort
from convoy.domain.value_objects.host_id import HostId
from convoy.domain.value_objects.policies import AbortPolicy, RetryPolicy

logger = logging.getLogger(__name__)


class FleetCoordinator:
    def __init__(
        self,
        retry_policy: Optional[RetryPolicy] = None,
        event_bus: Optional[EventBusPort] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.retry_policy = retry_policy or RetryPolicy()
        self.event_bus = event_bus
        self._clock = clock

    async def run(
        self,
        plan: DeploymentPlan,
        executor: HostExecutorPort,
        abort_policy: AbortPolicy,
        cancel_token: Optional[CancellationToken] = None,
    ) -> DeploymentReport:
        token = cancel_token or CancellationToken()
        service = plan.descriptor.service_name
        started_at = datetime.now(UTC).isoformat()
        t0 = self._clock()

        outcomes: dict[HostId, DeploymentOutcome] = {
            h: DeploymentOutcome.not_started(h) for h in plan.hosts
        }
        machines: dict[HostId, HostStateMachine] = {}
        completed: list[Batch] = []
        aborted_reason: Optional[str] = None
        rollback_triggered = False
        semaphore = asyncio.Semaphore(plan.fleet_policy.max_parallel)

        logger.info(
            "Rolling out %s %s to %d host(s) in %d batch(es)",
            service, plan.descriptor.version, len(plan.hosts), len(plan.batches),
        )

        for batch in plan.batches:
            if token.cancelled:
                aborted_reason = f"cancelled: {token.reason}"
                break

            await self._publish(BatchStarted(
                aggregate_id=service,
                batch_index=batch.index,
                hosts=tuple(str(h) for h in batch.hosts),
                is_canary=batch.is_canary,
            ))
            for host in batch.hosts:
                machines[host] = HostStateMachine(
                    host,
                    plan,
                    executor,
                    self.retry_policy,
                    rollback_enabled=abort_policy.rollback_failed_hosts,
                    cancel_token=token,
                    on_transition=self._forward_transition(service),
                    clock=self._clock,
                )
            outcomes.update(await self._run_batch(batch, machines, semaphore))
            completed.append(batch)

            failed = sum(1 for h in batch.hosts if outcomes[h].deploy_failed)
            logger.info(
                "Batch %d/%d done: %d succeeded, %d failed",
                batch.index, len(plan.batches), len(batch) - failed, failed,
                extra={"service": service, "batch": batch.index},
            )
            await self._publish(BatchCompleted(
                aggregate_id=service,
                batch_index=batch.index,
                succeeded=len(batch) - failed,
                failed=failed,
            ))

            if token.cancelled:
                aborted_reason = f"cancelled: {token.reason}"
                logger.warning("Rollout of %s cancelled after batch %d", service, batch.index)
                break

            if abort_policy.should_abort(failed, len(batch)):
                aborted_reason = (
                    f"batch {batch.index}: {failed}/{len(batch)} host(s) failed, "
                    f"threshold {abort_policy.failure_threshold:.0%}"
                )
                logger.error(
                    "Aborting rollout of %s: %s", service, aborted_reason,
                    extra={"service": service, "batch": batch.index},
                )
                await self._publish(DeploymentAborted(
                    aggregate_id=service,
                    reason=aborted_reason,
                    batch_index=batch.index,
                    rollback=abort_policy.rollback_on_abort,
                ))
                if abort_policy.rollback_on_abort:
                    rollback_triggered = True
                    await self._roll_back_completed(completed, machines, outcomes, aborted_reason)
                break

        status = self._overall_status(outcomes, aborted_reason, rollback_triggered)
        duration_ms = int((self._clock() - t0) * 1000)
        report = DeploymentReport(
            descriptor=plan.descriptor,
            outcomes=outcomes,
            overall_status=status,
            aborted_reason=aborted_reason,
            started_at=started_at,
            duration_ms=duration_ms,
        )
        logger.info("Rollout of %s finished: %s", service, status.value)
        await self._publish(DeploymentFinished(
            aggregate_id=service, overall_status=status.value, duration_ms=duration_ms
        ))
        return report

    async def _run_batch(
        self,
        batch: Batch,
        machines: dict[HostId, HostStateMachine],
        semaphore: asyncio.Semaphore,
    ) -> dict[HostId, DeploymentOutcome]:
        async def run_one(host: HostId) -> DeploymentOutcome:
            async with semaphore:
                return await machines[host].run()

        results = await asyncio.gather(
            *(run_one(h) for h in batch.hosts), return_exceptions=True
        )
        outcomes = {}
        for host, result in zip(batch.hosts, results):
            if isinstance(result, Exception):
                logger.error("State machine for %s crashed: %s", host, result)
                result = self._crashed_outcome(machines[host], result)
            outcomes[host] = result
        return outcomes

    async def _roll_back_completed(
        self,
        completed: list[Batch],
        machines: dict[HostId, HostStateMachine],
        outcomes: dict[HostId, DeploymentOutcome],
        reason: str,
    ) -> None:
        for batch in reversed(completed):
            hosts = [h for h in batch.hosts if outcomes[h].succeeded]
            if not hosts:
                continue
            logger.warning("Rolling back batch %d (%d host(s))", batch.index, len(hosts))
            results = await asyncio.gather(
                *(machines[h].roll_back(reason) for h in hosts), return_exceptions=True
            )
            for host, result in zip(hosts, results):
                if isinstance(result, Exception):
                    logger.error("Rollback of %s crashed: %s", host, result)
                    continue
                outcomes[host] = result

    @staticmethod
    def _overall_status(
        outcomes: dict[HostId, DeploymentOutcome],
        aborted_reason: Optional[str],
        rollback_triggered: bool,
    ) -> OverallStatus:
        if aborted_reason is None:
            if all(o.succeeded for o in outcomes.values()):
                return OverallStatus.ALL_SUCCEEDED
            return OverallStatus.PARTIAL_FAILURE

        # Hosts that failed before anything was changed have nothing to restore
        affected = [o for o in outcomes.values() if o.reached_succeeded or o.touched]
        if rollback_triggered and affected and all(
            o.final_state is HostDeploymentState.ROLLED_BACK for o in affected
        ):
            return OverallStatus.ROLLED_BACK
        return OverallStatus.ABORTED

    @staticmethod
    def _crashed_outcome(machine: HostStateMachine, exc: Exception) -> DeploymentOutcome:
        previous = machine.outcome
        return DeploymentOutcome(
            host_id=machine.host_id,
            final_state=HostDeploymentState.FAILED,
            attempt_count=previous.attempt_count if previous else 1,
            errors=(ErrorRecord.from_exception(machine.state, exc),),
            transitions=previous.transitions if previous else (),
        )

    def _forward_transition(self, service: str):
        async def forward(record: TransitionRecord) -> None:
            logger.info(
                "%s: %s -> %s", record.host_id, record.from_state, record.to_state,
                extra={"service": service, "host": record.host_id, "state": record.to_state},
            )
            await self._publish(HostTransitioned(
                aggregate_id=service,
                host=str(record.host_id),
                from_state=record.from_state.value,
                to_state=record.to_state.value,
            ))
        return forward

    async def _publish(self, event: DomainEvent) -> None:
        if self.event_bus is None:
            return
        try:
            await self.event_bus.publish([event])
        except Exception as exc:
            logger.warning("Event handler failed for %s: %s", event.event_type, exc)
