"""All-at-once rollout strategy executor."""

from promoctl.deploy.models import Deployment, RolloutAttempt
from promoctl.deploy.strategies.base import RolloutStep, StrategyExecutor


class AllAtOnceStrategy(StrategyExecutor):
    """Full replacement in a single step."""

    @property
    def strategy_name(self) -> str:
        return "all-at-once"

    def steps(self, deployment: Deployment, attempt: RolloutAttempt) -> list[RolloutStep]:
        return [
            RolloutStep(
                index=0,
                percentage=100,
                description=f"Replace with {attempt.target}",
                apply=lambda: self._orchestrator.shift_traffic(deployment, attempt.target, 100),
            )
        ]
