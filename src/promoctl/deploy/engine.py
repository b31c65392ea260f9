"""Rollout engine.

Drives one RolloutAttempt through ``pending -> in_progress -> {succeeded,
rolled_back, failed}``. The committed deployment revision changes only via
the state store's compare-and-swap after every step passed its health probe.
"""

import time
from collections.abc import Callable

from promoctl.core.exceptions import ConflictError, PromoCtlError, UnavailableError
from promoctl.core.logging import get_logger
from promoctl.core.utils import call_with_retry, utcnow
from promoctl.deploy.events import EventEmitter, EventType
from promoctl.deploy.health import HealthProber
from promoctl.deploy.models import (
    AttemptStatus,
    Deployment,
    HealthResult,
    Revision,
    RolloutAttempt,
    RolloutPlan,
    StepOutcome,
)
from promoctl.deploy.runtime import Orchestrator
from promoctl.deploy.state import StateStore
from promoctl.deploy.strategies import StrategyExecutor, executor_for

logger = get_logger(__name__)


class RollbackIncomplete(PromoCtlError):
    """Rollback pass did not restore a healthy previous revision."""

    pass


class RolloutEngine:
    """Executes rollout attempts against an orchestrator."""

    def __init__(
        self,
        store: StateStore,
        orchestrator: Orchestrator,
        prober: HealthProber,
        emitter: EventEmitter | None = None,
        runtime_retries: int = 3,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._store = store
        self._orchestrator = orchestrator
        self._prober = prober
        self._emitter = emitter or EventEmitter()
        self._runtime_retries = runtime_retries
        self._clock = clock
        self._sleep = sleep

    @property
    def store(self) -> StateStore:
        return self._store

    def start(
        self,
        service: str,
        environment: str,
        target: Revision,
        plan: RolloutPlan,
        promotion_id: str | None = None,
    ) -> RolloutAttempt:
        """Run a rollout attempt to completion.

        Returns:
            The attempt in a terminal state

        Raises:
            ValidationError: If the plan is invalid; nothing was touched
            ConflictError: If another attempt is active, the deployment is
                failed, or the final compare-and-swap lost a race
        """
        plan.validate()

        attempt = RolloutAttempt(
            service=service,
            environment=environment,
            target=target,
            plan=plan,
            promotion_id=promotion_id,
        )
        deployment = self._store.claim(service, environment, attempt.id)
        attempt.previous = deployment.revision

        try:
            return self._run(deployment, attempt)
        except BaseException:
            if not attempt.is_terminal:
                attempt.status = AttemptStatus.FAILED
                attempt.message = attempt.message or "Rollout interrupted"
                attempt.completed_at = utcnow()
                self._store.save_attempt(attempt)
                self._store.release(service, environment, attempt.id, failed=True, message=attempt.message)
            raise

    def cancel(self, service: str, environment: str) -> str:
        """Ask the active attempt to stop after its in-flight probe and roll back."""
        return self._store.request_cancel(service, environment)

    def _emit(self, event_type: EventType, attempt: RolloutAttempt, message: str, **details: object) -> None:
        self._emitter.emit(
            event_type,
            attempt.service,
            attempt.environment,
            message,
            attempt_id=attempt.id,
            promotion_id=attempt.promotion_id,
            details=dict(details),
        )

    def _run(self, deployment: Deployment, attempt: RolloutAttempt) -> RolloutAttempt:
        plan = attempt.plan
        log = logger.bind(key=attempt.key, attempt=attempt.id)

        attempt.status = AttemptStatus.IN_PROGRESS
        attempt.started_at = utcnow()
        attempt.add_event("started", f"Rolling out {attempt.target} using {plan.strategy.value}")
        self._store.save_attempt(attempt)
        self._emit(
            EventType.ROLLOUT_STARTED,
            attempt,
            f"{attempt.previous or 'nothing'} -> {attempt.target} ({plan.strategy.value})",
            strategy=plan.strategy.value,
        )

        executor = executor_for(plan.strategy, self._orchestrator)
        deadline = self._clock() + plan.attempt_timeout
        reason = self._execute_steps(deployment, attempt, executor, deadline)

        if reason is None:
            return self._commit(attempt)

        log.warning("Rolling back", reason=reason)
        return self._roll_back(deployment, attempt, executor, reason)

    def _execute_steps(
        self,
        deployment: Deployment,
        attempt: RolloutAttempt,
        executor: StrategyExecutor,
        deadline: float,
    ) -> str | None:
        """Apply and probe each step; return why the attempt must roll back, or None."""
        plan = attempt.plan
        steps = executor.steps(deployment, attempt)

        for step in steps:
            if self._store.cancel_requested(attempt.id):
                return "Cancelled by operator"
            if self._clock() >= deadline:
                return f"Attempt exceeded {plan.attempt_timeout:g}s"

            started = utcnow()
            attempt.add_event("step", step.description, {"index": step.index, "percentage": step.percentage})

            try:
                call_with_retry(
                    step.apply,
                    retries=self._runtime_retries,
                    retry_on=(UnavailableError,),
                    sleep=self._sleep,
                )
            except PromoCtlError as e:
                attempt.add_event("step_failed", str(e), {"index": step.index})
                return f"Step {step.index + 1} failed: {e.message}"

            remaining = deadline - self._clock()
            health = self._prober.probe(
                deployment,
                attempt.target,
                timeout=max(min(plan.probe_timeout, remaining), 0.0),
                interval=plan.probe_interval,
                success_threshold=plan.success_threshold,
                failure_threshold=plan.failure_threshold,
            )

            attempt.steps.append(
                StepOutcome(
                    index=step.index,
                    percentage=step.percentage,
                    health=health,
                    started_at=started,
                    finished_at=utcnow(),
                    message=step.description,
                )
            )
            self._store.save_attempt(attempt)
            self._emit(
                EventType.STEP_COMPLETED,
                attempt,
                f"Step {step.index + 1}/{len(steps)} at {step.percentage}%: {health.value}",
                index=step.index,
                percentage=step.percentage,
                health=health.value,
            )

            if health != HealthResult.HEALTHY:
                if self._clock() >= deadline:
                    return f"Attempt exceeded {plan.attempt_timeout:g}s"
                return f"Step {step.index + 1} at {step.percentage}% was {health.value}"

            # Cancellation is honored once the in-flight probe has finished.
            if self._store.cancel_requested(attempt.id):
                return "Cancelled by operator"
            if self._clock() >= deadline:
                return f"Attempt exceeded {plan.attempt_timeout:g}s"

        return None

    def _commit(self, attempt: RolloutAttempt) -> RolloutAttempt:
        try:
            self._store.compare_and_swap(attempt.service, attempt.environment, attempt.previous, attempt.target)
        except ConflictError as e:
            attempt.status = AttemptStatus.FAILED
            attempt.message = f"Lost commit race: {e.message}"
            attempt.completed_at = utcnow()
            attempt.add_event("conflict", attempt.message)
            self._store.save_attempt(attempt)
            self._store.release(attempt.service, attempt.environment, attempt.id, failed=True, message=attempt.message)
            self._emit(EventType.FAILED, attempt, attempt.message)
            raise

        attempt.status = AttemptStatus.SUCCEEDED
        attempt.message = f"{attempt.target} is live"
        attempt.completed_at = utcnow()
        attempt.add_event("succeeded", attempt.message)
        self._store.save_attempt(attempt)
        self._store.release(attempt.service, attempt.environment, attempt.id)
        self._emit(EventType.SUCCEEDED, attempt, attempt.message)
        return attempt

    def _roll_back(
        self,
        deployment: Deployment,
        attempt: RolloutAttempt,
        executor: StrategyExecutor,
        reason: str,
    ) -> RolloutAttempt:
        """Restore the previous revision with bounded retries.

        Rollback is always attempted. Exhausting the retries marks the
        deployment failed until an operator clears it.
        """
        attempt.add_event("rolling_back", reason)
        self._store.save_attempt(attempt)
        self._emit(EventType.ROLLING_BACK, attempt, reason)

        try:
            call_with_retry(
                self._rollback_once,
                deployment,
                attempt,
                executor,
                retries=attempt.plan.rollback_retries,
                retry_on=(PromoCtlError,),
                sleep=self._sleep,
            )
        except PromoCtlError as e:
            attempt.status = AttemptStatus.FAILED
            attempt.message = f"{reason}; rollback failed: {e.message}. Manual intervention required"
            attempt.completed_at = utcnow()
            attempt.add_event("rollback_failed", attempt.message)
            self._store.save_attempt(attempt)
            self._store.release(attempt.service, attempt.environment, attempt.id, failed=True, message=attempt.message)
            self._emit(EventType.FAILED, attempt, attempt.message, fatal=True)
            logger.error("Rollback exhausted", key=attempt.key, attempt=attempt.id, error=e.message)
            return attempt

        attempt.status = AttemptStatus.ROLLED_BACK
        attempt.message = reason
        attempt.completed_at = utcnow()
        attempt.add_event("rolled_back", f"Restored {attempt.previous or 'empty deployment'}")
        self._store.save_attempt(attempt)
        self._store.release(attempt.service, attempt.environment, attempt.id)
        self._emit(EventType.ROLLED_BACK, attempt, reason)
        return attempt

    def _rollback_once(self, deployment: Deployment, attempt: RolloutAttempt, executor: StrategyExecutor) -> None:
        executor.rollback(deployment, attempt)

        if attempt.previous is None:
            return

        plan = attempt.plan
        health = self._prober.probe(
            deployment,
            attempt.previous,
            timeout=plan.probe_timeout,
            interval=plan.probe_interval,
            success_threshold=plan.success_threshold,
            failure_threshold=plan.failure_threshold,
        )
        if health != HealthResult.HEALTHY:
            attempt.add_event("rollback_unhealthy", f"{attempt.previous} was {health.value} after rollback")
            raise RollbackIncomplete(f"previous revision {attempt.previous} was {health.value}")
