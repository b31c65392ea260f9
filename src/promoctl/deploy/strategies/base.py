"""Base rollout strategy executor."""

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass

from promoctl.core.logging import get_logger
from promoctl.deploy.models import Deployment, RolloutAttempt
from promoctl.deploy.runtime import Orchestrator

logger = get_logger(__name__)


@dataclass
class RolloutStep:
    """One ordered unit of a rollout, followed by a health probe."""

    index: int
    percentage: int
    description: str
    apply: Callable[[], None]


class StrategyExecutor(ABC):
    """Abstract base class for strategy executors.

    An executor only translates a plan into orchestrator commands; the
    engine owns sequencing, probing, timeouts and state transitions.
    """

    def __init__(self, orchestrator: Orchestrator):
        """Initialize executor.

        Args:
            orchestrator: Runtime the commands are issued against
        """
        self._orchestrator = orchestrator

    @property
    @abstractmethod
    def strategy_name(self) -> str:
        """Get strategy name."""
        pass

    @abstractmethod
    def steps(self, deployment: Deployment, attempt: RolloutAttempt) -> list[RolloutStep]:
        """Steps that move traffic from the previous to the target revision."""
        pass

    def rollback(self, deployment: Deployment, attempt: RolloutAttempt) -> None:
        """Restore all traffic to the previous revision.

        With no previous revision (first deployment) the target is drained instead.
        """
        if attempt.previous is not None:
            attempt.add_event("rollback", f"Restoring {attempt.previous} to 100%")
            self._orchestrator.shift_traffic(deployment, attempt.previous, 100)
        else:
            attempt.add_event("rollback", f"Draining {attempt.target}, nothing to restore")
            self._orchestrator.shift_traffic(deployment, attempt.target, 0)
