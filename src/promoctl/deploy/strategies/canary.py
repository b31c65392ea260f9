"""Canary rollout strategy executor."""

from promoctl.deploy.models import Deployment, RolloutAttempt
from promoctl.deploy.strategies.base import RolloutStep, StrategyExecutor


class CanaryStrategy(StrategyExecutor):
    """Gradual traffic shifting, e.g. 10% -> 50% -> 100%."""

    @property
    def strategy_name(self) -> str:
        return "canary"

    def steps(self, deployment: Deployment, attempt: RolloutAttempt) -> list[RolloutStep]:
        steps = []
        for i, weight in enumerate(attempt.plan.steps):
            description = "Promote canary to 100%" if weight == 100 else f"Shift {weight}% of traffic to canary"
            steps.append(
                RolloutStep(
                    index=i,
                    percentage=weight,
                    description=description,
                    apply=self._shift(deployment, attempt, weight),
                )
            )
        return steps

    def _shift(self, deployment: Deployment, attempt: RolloutAttempt, weight: int):
        def apply() -> None:
            self._orchestrator.shift_traffic(deployment, attempt.target, weight)

        return apply
