"""Promotion pipeline.

Sequences rollouts across a service's ordered stages. Each stage
promotion is a separate, separately gated call; a successful rollout never
cascades into the next stage, and a failed one halts the chain.
"""

from collections.abc import Callable
from typing import Any

from promoctl.config import BUILD_STAGE, PromoCtlConfig
from promoctl.core.exceptions import ConflictError, InvalidOrderError, ValidationError
from promoctl.core.logging import get_logger
from promoctl.deploy.approval import ApprovalGate, gate_for
from promoctl.deploy.engine import RolloutEngine
from promoctl.deploy.events import EventEmitter, EventType
from promoctl.deploy.models import (
    AttemptStatus,
    Promotion,
    PromotionResult,
    PromotionStatus,
    Revision,
    RolloutAttempt,
    RolloutPlan,
    RolloutStrategy,
)
from promoctl.deploy.registry import ArtifactRegistry
from promoctl.deploy.state import StateStore

logger = get_logger(__name__)

_ATTEMPT_TO_PROMOTION = {
    AttemptStatus.SUCCEEDED: PromotionStatus.SUCCEEDED,
    AttemptStatus.ROLLED_BACK: PromotionStatus.ROLLED_BACK,
    AttemptStatus.FAILED: PromotionStatus.FAILED,
}


class PromotionPipeline:
    """Promotes revisions between environment stages."""

    def __init__(
        self,
        config: PromoCtlConfig,
        store: StateStore,
        registry: ArtifactRegistry,
        engine: RolloutEngine,
        emitter: EventEmitter | None = None,
        gate_factory: Callable[[str, str], ApprovalGate] | None = None,
    ):
        self._config = config
        self._store = store
        self._registry = registry
        self._engine = engine
        self._emitter = emitter or EventEmitter()
        self._gate_factory = gate_factory

    def stages(self, service: str) -> list[str]:
        """Configured stage order for a service."""
        return list(self._config.get_service(service).stages)

    def check_order(self, service: str, from_env: str, to_env: str) -> None:
        """Ensure ``from_env`` precedes ``to_env``.

        ``build`` precedes every stage, which is how new artifacts enter the chain.

        Raises:
            InvalidOrderError: If the order is wrong or a stage is unknown
        """
        order = [BUILD_STAGE] + self.stages(service)

        for env in (from_env, to_env):
            if env not in order:
                raise InvalidOrderError(
                    f"Unknown stage '{env}' for {service}",
                    from_env=from_env,
                    to_env=to_env,
                    details={"stages": order},
                )
        if to_env == BUILD_STAGE or order.index(from_env) >= order.index(to_env):
            raise InvalidOrderError(
                f"'{from_env}' does not precede '{to_env}' for {service}",
                from_env=from_env,
                to_env=to_env,
                details={"stages": order},
            )

    def gate(self, service: str, environment: str) -> ApprovalGate:
        """Approval gate for an environment."""
        if self._gate_factory:
            return self._gate_factory(service, environment)
        env_config = self._config.get_service(service).environment(environment)
        return gate_for(env_config, self._store)

    def plan_for(self, service: str, environment: str, strategy: RolloutStrategy | None = None) -> RolloutPlan:
        """Rollout plan for an environment."""
        rollout = self._config.rollout_for(service, environment)
        return RolloutPlan.from_config(rollout, strategy=strategy.value if strategy else None)

    def promote(
        self,
        service: str,
        from_env: str,
        to_env: str,
        artifact: str | Revision,
        strategy: RolloutStrategy | None = None,
    ) -> PromotionResult:
        """Promote a revision from one stage to the next.

        Args:
            artifact: Image tag to resolve, or an already resolved revision
            strategy: Override the configured rollout strategy

        Raises:
            InvalidOrderError: If ``from_env`` does not precede ``to_env``
            ValidationError: If the revision is not live in ``from_env``
            ConflictError: If ``to_env`` is failed or has a rollout in progress
        """
        self.check_order(service, from_env, to_env)

        self.plan_for(service, to_env, strategy).validate()

        revision = artifact if isinstance(artifact, Revision) else self._registry.resolve(service, artifact)
        self._check_source(service, from_env, revision)

        promotion = Promotion(
            service=service,
            from_env=from_env,
            to_env=to_env,
            revision=revision,
            strategy=strategy,
        )
        log = logger.bind(service=service, promotion=promotion.id)

        current = self._store.get(service, to_env)
        if current.revision == revision:
            promotion.status = PromotionStatus.NOOP
            promotion.message = f"{revision} already live in {to_env}"
            self._store.save_promotion(promotion)
            log.info("Nothing to promote", env=to_env, revision=revision.short)
            return PromotionResult(promotion=promotion)

        if current.is_failed:
            raise ConflictError(
                f"{current.key} is failed and needs an operator to clear it",
                {"message": current.message},
            )

        self._store.save_promotion(promotion)
        self._emitter.emit(
            EventType.PROMOTION_REQUESTED,
            service,
            to_env,
            f"{revision} from {from_env}",
            promotion_id=promotion.id,
        )

        gate = self.gate(service, to_env)
        if not gate.approve(promotion):
            promotion.message = f"Awaiting {gate.name} approval"
            self._store.save_promotion(promotion)
            log.info("Awaiting approval", gate=gate.name)
            return PromotionResult(promotion=promotion)

        promotion = self._store.transition_promotion(
            promotion.id,
            PromotionStatus.AWAITING_APPROVAL,
            PromotionStatus.APPROVED,
            approved_by=gate.name,
        )
        return self._execute(promotion)

    def preview(
        self,
        service: str,
        from_env: str,
        to_env: str,
        artifact: str | Revision,
        strategy: RolloutStrategy | None = None,
    ) -> dict[str, Any]:
        """Run every check ``promote`` runs and describe the outcome without changing state."""
        self.check_order(service, from_env, to_env)
        plan = self.plan_for(service, to_env, strategy).validate()

        revision = artifact if isinstance(artifact, Revision) else self._registry.resolve(service, artifact)
        self._check_source(service, from_env, revision)

        current = self._store.get(service, to_env)
        if current.revision == revision:
            action = "noop"
        elif current.is_failed:
            action = "blocked"
        elif current.active_attempt:
            action = "conflict"
        else:
            action = "rollout"

        return {
            "service": service,
            "from": from_env,
            "to": to_env,
            "revision": revision.digest,
            "current": current.revision.digest if current.revision else None,
            "action": action,
            "gate": self.gate(service, to_env).name,
            "strategy": plan.strategy.value,
            "steps": list(plan.steps),
        }

    def approve(self, promotion_id: str, approver: str = "operator") -> PromotionResult:
        """Grant a pending promotion and run its rollout."""
        promotion = self._store.transition_promotion(
            promotion_id,
            PromotionStatus.AWAITING_APPROVAL,
            PromotionStatus.APPROVED,
            approved_by=approver,
        )
        self._emitter.emit(
            EventType.PROMOTION_APPROVED,
            promotion.service,
            promotion.to_env,
            f"{promotion.revision} approved by {approver}",
            promotion_id=promotion.id,
        )
        return self._execute(promotion)

    def reject(self, promotion_id: str, approver: str = "operator", reason: str = "") -> Promotion:
        """Close a pending promotion without rolling out."""
        promotion = self._store.transition_promotion(
            promotion_id,
            PromotionStatus.AWAITING_APPROVAL,
            PromotionStatus.REJECTED,
            approved_by=approver,
            message=reason or f"Rejected by {approver}",
        )
        self._emitter.emit(
            EventType.PROMOTION_REJECTED,
            promotion.service,
            promotion.to_env,
            promotion.message,
            promotion_id=promotion.id,
        )
        return promotion

    def rollback(self, service: str, environment: str) -> RolloutAttempt:
        """Roll a deployment back to its previous revision as a new attempt."""
        self._config.get_service(service)
        deployment = self._store.get(service, environment)
        if deployment.previous_revision is None:
            raise ValidationError(f"No previous revision to roll back to for {deployment.key}")

        strategy = self._rollback_strategy(service, environment, deployment.revision)
        plan = self.plan_for(service, environment, strategy)
        return self._engine.start(service, environment, deployment.previous_revision, plan)

    def _rollback_strategy(self, service: str, environment: str, current: Revision | None) -> RolloutStrategy:
        """Blue-green when the current revision went live by a color switch, otherwise all-at-once."""
        for attempt in self._store.history(service, environment):
            if attempt.status == AttemptStatus.SUCCEEDED and attempt.target == current:
                if attempt.plan.strategy == RolloutStrategy.BLUE_GREEN:
                    return RolloutStrategy.BLUE_GREEN
                break
        return RolloutStrategy.ALL_AT_ONCE

    def _check_source(self, service: str, from_env: str, revision: Revision) -> None:
        if from_env == BUILD_STAGE:
            return
        source = self._store.get(service, from_env)
        if source.revision != revision:
            raise ValidationError(
                f"{revision} is not live in {from_env}",
                {"live": str(source.revision) if source.revision else None},
            )

    def _execute(self, promotion: Promotion) -> PromotionResult:
        service, to_env = promotion.service, promotion.to_env

        current = self._store.get(service, to_env)
        if current.revision == promotion.revision:
            promotion.status = PromotionStatus.NOOP
            promotion.message = f"{promotion.revision} already live in {to_env}"
            self._store.save_promotion(promotion)
            return PromotionResult(promotion=promotion)

        try:
            self._check_source(service, promotion.from_env, promotion.revision)
            plan = self.plan_for(service, to_env, promotion.strategy)
            attempt = self._engine.start(service, to_env, promotion.revision, plan, promotion_id=promotion.id)
        except (ValidationError, ConflictError) as e:
            promotion.status = PromotionStatus.FAILED
            promotion.message = e.message
            self._store.save_promotion(promotion)
            raise

        promotion.attempt_id = attempt.id
        promotion.status = _ATTEMPT_TO_PROMOTION[attempt.status]
        promotion.message = attempt.message
        self._store.save_promotion(promotion)

        if promotion.status != PromotionStatus.SUCCEEDED:
            logger.warning(
                "Promotion halted",
                service=service,
                env=to_env,
                promotion=promotion.id,
                status=promotion.status.value,
            )
        return PromotionResult(promotion=promotion, attempt=attempt)
