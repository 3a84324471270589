"""
Host State Machine

Architectural Intent:
- Drives one host through Validating -> Preparing -> Stopping -> Updating
  -> Starting -> Verifying -> Succeeded, with Failed and RolledBack exits
- Owns its state exclusively; the coordinator only sees progress
  callbacks and the immutable DeploymentOutcome produced at the end
- Every transition runs exactly one executor action (Verifying repeats
  its health query while polling)

Retry Strategy:
- Transient errors (timeouts, dropped connections, not healthy in time)
  are retried up to RetryPolicy.retry_limit with exponential backoff
- Permanent errors fail the host at once
- The host budget (host_timeout_s) clips every attempt; once it is spent
  no further retries are made
- A timed-out action is never abandoned: blocking executors keep running
  it, so the next action on the host waits until it returns

Convergence:
- Validating queries the running version; a host already healthy on the
  target version skips straight to Verifying and no state-changing action
  is sent to it
"""

from __future__ import annotations
import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

from convoy.application.execution.cancellation import CancellationToken
from convoy.domain.entities.deployment_plan import DeploymentPlan
from convoy.domain.entities.deployment_report import (
    DeploymentOutcome,
    ErrorRecord,
    TransitionRecord,
)
from convoy.domain.entities.host_state import STATE_CHANGING, HostDeploymentState
from convoy.domain.errors import (
    ExecutionError,
    HostTimeout,
    InvalidTransition,
    OperationCancelled,
    PermanentExecutionError,
    RollbackUnavailable,
    TransientExecutionError,
)
from convoy.domain.ports.host_executor_port import HostExecutorPort
from convoy.domain.value_objects.host_action import ActionResult, HostAction
from convoy.domain.value_objects.host_id import HostId
from convoy.domain.value_objects.policies import RetryPolicy

logger = logging.getLogger(__name__)

S = HostDeploymentState

TransitionCallback = Callable[[TransitionRecord], Awaitable[None]]


class _AttemptsExhausted(Exception):
    """Internal signal: an action could not be completed."""


class HostStateMachine:
    def __init__(
        self,
        host_id: HostId,
        plan: DeploymentPlan,
        executor: HostExecutorPort,
        retry_policy: RetryPolicy,
        *,
        rollback_enabled: bool = True,
        cancel_token: Optional[CancellationToken] = None,
        on_transition: Optional[TransitionCallback] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.host_id = host_id
        self._plan = plan
        self._executor = executor
        self._retry = retry_policy
        self._rollback_enabled = rollback_enabled
        self._cancel = cancel_token or CancellationToken()
        self._on_transition = on_transition
        self._clock = clock

        self._state = S.PENDING
        self._errors: list[ErrorRecord] = []
        self._transitions: list[TransitionRecord] = []
        self._retries = 0
        self._converged = False
        self._touched = False
        self._started_at: Optional[float] = None
        self._deadline: Optional[float] = None
        self._outcome: Optional[DeploymentOutcome] = None
        self._inflight: Optional[asyncio.Future] = None

    @property
    def state(self) -> HostDeploymentState:
        return self._state

    @property
    def outcome(self) -> Optional[DeploymentOutcome]:
        return self._outcome

    async def run(self) -> DeploymentOutcome:
        if self._state is not S.PENDING:
            raise InvalidTransition(f"{self.host_id} has already run ({self._state})")

        self._started_at = self._clock()
        self._deadline = self._started_at + self._retry.host_timeout_s

        if self._cancel.cancelled:
            self._record(S.PENDING, OperationCancelled(self._cancel.reason))
            return self._finish()

        try:
            await self._run_steps()
        finally:
            await self._drain()
        return self._finish()

    async def _run_steps(self) -> None:
        steps = self._plan.steps
        index = 0
        while index < len(steps):
            step = steps[index]
            if index and self._cancel.cancelled:
                self._record(self._state, OperationCancelled(self._cancel.reason))
                await self._transition(S.FAILED)
                return

            await self._transition(step.state)
            try:
                result = await self._perform(step.state, step.action)
            except _AttemptsExhausted:
                await self._transition(S.FAILED)
                await self._rollback_after_failure()
                return

            if step.state is S.VALIDATING and self._is_converged(result):
                logger.info(
                    "%s already runs %s %s, skipping update",
                    self.host_id,
                    self._plan.descriptor.service_name,
                    self._plan.descriptor.version,
                )
                self._converged = True
                index = self._index_of(S.VERIFYING)
                continue
            index += 1

        if not self._converged:
            await self._cleanup()
        await self._transition(S.SUCCEEDED)

    async def roll_back(self, reason: str = "") -> DeploymentOutcome:
        """Restore the previous version on a host that finished its run."""
        if self._state not in (S.SUCCEEDED, S.FAILED):
            raise InvalidTransition(f"Cannot roll back {self.host_id} from {self._state}")

        logger.warning("Rolling back %s%s", self.host_id, f": {reason}" if reason else "")
        try:
            await self._attempt_rollback()
        finally:
            await self._drain()
        return self._finish()

    async def _rollback_after_failure(self) -> None:
        if not self._rollback_enabled or not self._touched:
            return
        if self._cancel.cancelled:
            return
        await self._attempt_rollback()

    async def _attempt_rollback(self) -> None:
        action = self._plan.rollback
        if action is None:
            self._record(
                self._state,
                RollbackUnavailable(
                    f"no previous version recorded for {self._plan.descriptor.service_name}"
                ),
            )
            return
        # Rollback gets a fresh budget; the forward run may have spent its own.
        self._deadline = self._clock() + self._retry.host_timeout_s
        try:
            await self._perform(self._state, action)
        except _AttemptsExhausted:
            logger.error("Rollback failed on %s", self.host_id)
            return
        await self._transition(S.ROLLED_BACK)

    async def _perform(self, state: HostDeploymentState, action: HostAction) -> ActionResult:
        max_attempts = self._retry.max_attempts
        for attempt in range(1, max_attempts + 1):
            try:
                if state is S.VERIFYING:
                    return await self._poll_health(action)
                return await self._invoke(action)
            except TransientExecutionError as exc:
                self._record(state, exc, attempt)
                logger.warning(
                    "%s %s attempt %d/%d failed: %s",
                    self.host_id, state, attempt, max_attempts, exc,
                    extra={"host": self.host_id, "state": state},
                )
                if attempt >= max_attempts:
                    break
                if self._remaining() <= 0:
                    self._record(state, HostTimeout("host time budget exhausted"), attempt)
                    break
                delay = min(self._retry.delay_for(attempt), self._remaining())
                if await self._cancel.sleep(delay):
                    self._record(state, OperationCancelled(self._cancel.reason), attempt)
                    break
                self._retries += 1
            except OperationCancelled as exc:
                self._record(state, exc, attempt)
                logger.warning("%s %s interrupted: %s", self.host_id, state, exc)
                break
            except PermanentExecutionError as exc:
                self._record(state, exc, attempt)
                logger.error(
                    "%s %s failed permanently: %s", self.host_id, state, exc,
                    extra={"host": self.host_id, "state": state},
                )
                break
            except ExecutionError as exc:
                self._record(state, exc, attempt)
                break
            except Exception as exc:
                logger.exception("Unexpected error on %s during %s", self.host_id, state)
                self._record(state, exc, attempt)
                break
        await self._drain()
        raise _AttemptsExhausted()

    async def _invoke(self, action: HostAction) -> ActionResult:
        timeout = min(self._retry.transition_timeout_s, self._remaining())
        if timeout <= 0:
            raise HostTimeout(f"host time budget exhausted before {action.name}")
        await self._drain()
        task = asyncio.ensure_future(self._executor.execute(self.host_id, action))
        done, _ = await asyncio.wait({task}, timeout=timeout)
        if not done:
            # A blocking executor cannot be interrupted; the call keeps
            # running and must finish before this host sees another action.
            self._inflight = task
            raise HostTimeout(f"{action.describe()} timed out after {timeout:.1f}s")
        return task.result()

    async def _drain(self) -> None:
        """Wait for an action abandoned by a timeout to actually finish."""
        task, self._inflight = self._inflight, None
        if task is None or task.cancelled():
            return
        logger.debug("%s: waiting for a timed-out action to finish", self.host_id)
        try:
            await task
        except Exception as exc:
            logger.info("%s: timed-out action ended with %s", self.host_id, exc)

    async def _poll_health(self, action: HostAction) -> ActionResult:
        window = min(self._retry.verify_timeout_s, self._remaining())
        deadline = self._clock() + window
        interval = self._plan.descriptor.health_check.poll_interval_s
        while True:
            result = await self._invoke(action)
            if self._is_healthy(result):
                return result
            left = deadline - self._clock()
            if left <= 0:
                raise TransientExecutionError(
                    f"{self._plan.descriptor.service_name} not healthy within {window:.1f}s"
                )
            if await self._cancel.sleep(min(interval, left)):
                raise OperationCancelled(self._cancel.reason)

    async def _cleanup(self) -> None:
        action = self._plan.cleanup
        if action is None:
            return
        try:
            await self._invoke(action)
        except Exception as exc:
            logger.warning("Cleanup on %s failed (ignored): %s", self.host_id, exc)

    async def _transition(self, target: HostDeploymentState) -> None:
        if not self._state.can_transition_to(target):
            raise InvalidTransition(f"{self.host_id}: {self._state} -> {target}")
        record = TransitionRecord(self.host_id, self._state, target)
        logger.debug("%s: %s -> %s", self.host_id, self._state, target)
        self._state = target
        self._transitions.append(record)
        if target in STATE_CHANGING:
            self._touched = True
        if self._on_transition is not None:
            await self._on_transition(record)

    def _record(
        self, state: HostDeploymentState, exc: BaseException, attempt: int = 1
    ) -> None:
        self._errors.append(ErrorRecord.from_exception(state, exc, attempt))

    def _remaining(self) -> float:
        assert self._deadline is not None
        return self._deadline - self._clock()

    def _index_of(self, state: HostDeploymentState) -> int:
        for i, step in enumerate(self._plan.steps):
            if step.state is state:
                return i
        raise KeyError(state)

    def _is_converged(self, result: ActionResult) -> bool:
        return result.version == self._plan.descriptor.version and bool(result.healthy)

    @staticmethod
    def _is_healthy(result: ActionResult) -> bool:
        return result.healthy if result.healthy is not None else result.ok

    def _finish(self) -> DeploymentOutcome:
        started = self._started_at if self._started_at is not None else self._clock()
        elapsed = self._clock() - started
        attempts = 1 + self._retries if self._state is not S.PENDING else 0
        self._outcome = DeploymentOutcome(
            host_id=self.host_id,
            final_state=self._state,
            attempt_count=attempts,
            errors=tuple(self._errors),
            duration_ms=int(elapsed * 1000),
            transitions=tuple(self._transitions),
            converged=self._converged,
        )
        return self._outcome
