"""Rollout strategies."""

from promoctl.deploy.models import RolloutStrategy
from promoctl.deploy.runtime import Orchestrator
from promoctl.deploy.strategies.all_at_once import AllAtOnceStrategy
from promoctl.deploy.strategies.base import RolloutStep, StrategyExecutor
from promoctl.deploy.strategies.blue_green import BlueGreenStrategy
from promoctl.deploy.strategies.canary import CanaryStrategy

_EXECUTORS: dict[RolloutStrategy, type[StrategyExecutor]] = {
    RolloutStrategy.ALL_AT_ONCE: AllAtOnceStrategy,
    RolloutStrategy.CANARY: CanaryStrategy,
    RolloutStrategy.BLUE_GREEN: BlueGreenStrategy,
}


def executor_for(strategy: RolloutStrategy, orchestrator: Orchestrator) -> StrategyExecutor:
    """Get the executor for a strategy."""
    return _EXECUTORS[RolloutStrategy(strategy)](orchestrator)


__all__ = [
    "AllAtOnceStrategy",
    "BlueGreenStrategy",
    "CanaryStrategy",
    "RolloutStep",
    "StrategyExecutor",
    "executor_for",
]
