"""Deployment promotion and rollout."""

from promoctl.deploy.engine import RolloutEngine
from promoctl.deploy.events import Event, EventEmitter, EventType, LogSink, MemorySink, WebhookSink
from promoctl.deploy.health import HealthProber, HealthCheck, StaticHealthCheck
from promoctl.deploy.models import (
    AttemptStatus,
    Deployment,
    DeploymentStatus,
    HealthResult,
    Promotion,
    PromotionResult,
    PromotionStatus,
    Revision,
    RolloutAttempt,
    RolloutPlan,
    RolloutStrategy,
)
from promoctl.deploy.pipeline import PromotionPipeline
from promoctl.deploy.registry import ArtifactRegistry, EcrRegistry, StaticRegistry
from promoctl.deploy.runtime import KubernetesOrchestrator, NullOrchestrator, Orchestrator
from promoctl.deploy.state import StateStore

__all__ = [
    "ArtifactRegistry",
    "AttemptStatus",
    "Deployment",
    "DeploymentStatus",
    "EcrRegistry",
    "Event",
    "EventEmitter",
    "EventType",
    "HealthCheck",
    "HealthProber",
    "HealthResult",
    "KubernetesOrchestrator",
    "LogSink",
    "MemorySink",
    "NullOrchestrator",
    "Orchestrator",
    "Promotion",
    "PromotionPipeline",
    "PromotionResult",
    "PromotionStatus",
    "Revision",
    "RolloutAttempt",
    "RolloutEngine",
    "RolloutPlan",
    "RolloutStrategy",
    "StateStore",
    "StaticHealthCheck",
    "StaticRegistry",
    "WebhookSink",
]
