"""Blue-Green rollout strategy executor."""

from promoctl.deploy.models import Deployment, RolloutAttempt
from promoctl.deploy.strategies.base import RolloutStep, StrategyExecutor


class BlueGreenStrategy(StrategyExecutor):
    """Provision the full target alongside the live revision, then switch atomically."""

    @property
    def strategy_name(self) -> str:
        return "blue-green"

    def steps(self, deployment: Deployment, attempt: RolloutAttempt) -> list[RolloutStep]:
        target = attempt.target
        return [
            RolloutStep(
                index=0,
                percentage=0,
                description=f"Provision {target} on the idle color",
                apply=lambda: self._orchestrator.prepare(deployment, target),
            ),
            RolloutStep(
                index=1,
                percentage=100,
                description=f"Switch traffic to {target}",
                apply=lambda: self._orchestrator.swap(deployment, target),
            ),
        ]

    def rollback(self, deployment: Deployment, attempt: RolloutAttempt) -> None:
        """Switch back to the previous color; it is kept running until the next rollout."""
        switched = any(step.percentage == 100 for step in attempt.steps)

        if not switched:
            attempt.add_event("rollback", "Traffic never switched, live color untouched")
            return

        if attempt.previous is not None:
            attempt.add_event("rollback", f"Switching back to {attempt.previous}")
            self._orchestrator.swap(deployment, attempt.previous)
        else:
            super().rollback(deployment, attempt)
