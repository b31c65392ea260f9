"""Approval gates guarding promotions into an environment."""

from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import datetime

from promoctl.config import BUILD_STAGE, EnvironmentConfig
from promoctl.core.logging import get_logger
from promoctl.core.utils import utcnow
from promoctl.deploy.models import DeploymentStatus, Promotion
from promoctl.deploy.state import StateStore

logger = get_logger(__name__)


class ApprovalGate(ABC):
    """Decides whether a promotion may start its rollout."""

    name = "gate"

    @abstractmethod
    def approve(self, promotion: Promotion) -> bool:
        """Return True when the promotion is granted."""
        pass


class AutoApprovalGate(ApprovalGate):
    """Grants every promotion."""

    name = "auto"

    def approve(self, promotion: Promotion) -> bool:
        return True


class ManualApprovalGate(ApprovalGate):
    """Grants only promotions an operator has approved."""

    name = "manual"

    def approve(self, promotion: Promotion) -> bool:
        return promotion.approved_by is not None


class PolicyApprovalGate(ApprovalGate):
    """Grants once the revision has soaked in the source stage for ``min_soak`` seconds.

    The source deployment must be idle and serving the promoted revision.
    Artifacts entering from the build stage are granted immediately.
    """

    name = "policy"

    def __init__(
        self,
        store: StateStore,
        min_soak: float,
        now: Callable[[], datetime] = utcnow,
    ):
        self._store = store
        self._min_soak = min_soak
        self._now = now

    def approve(self, promotion: Promotion) -> bool:
        if promotion.from_env == BUILD_STAGE:
            return True

        source = self._store.get(promotion.service, promotion.from_env)
        if source.status != DeploymentStatus.IDLE or source.revision != promotion.revision:
            logger.info("Policy denied: source not settled", key=source.key, status=source.status.value)
            return False
        if source.updated_at is None:
            return False

        soaked = (self._now() - source.updated_at).total_seconds()
        if soaked < self._min_soak:
            logger.info("Policy denied: soak time", key=source.key, soaked=int(soaked), required=int(self._min_soak))
            return False
        return True


def gate_for(env_config: EnvironmentConfig, store: StateStore) -> ApprovalGate:
    """Build the gate an environment is configured with."""
    if env_config.approval == "manual":
        return ManualApprovalGate()
    if env_config.approval == "policy":
        return PolicyApprovalGate(store, env_config.min_soak)
    return AutoApprovalGate()
