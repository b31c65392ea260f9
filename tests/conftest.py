"""Pytest fixtures for promoctl tests."""

import os
from collections.abc import Callable
from pathlib import Path
from typing import Generator
from unittest.mock import MagicMock, patch

import pytest
from click.testing import CliRunner

from promoctl.config import (
    EnvironmentConfig,
    PromoCtlConfig,
    RegistryConfig,
    RolloutConfig,
    ServiceConfig,
)
from promoctl.core.context import PromoCtlContext
from promoctl.core.exceptions import UnavailableError
from promoctl.core.output import OutputFormat
from promoctl.deploy.engine import RolloutEngine
from promoctl.deploy.events import EventEmitter, MemorySink
from promoctl.deploy.health import HealthCheck, HealthProber
from promoctl.deploy.models import Deployment, Revision, RolloutPlan
from promoctl.deploy.pipeline import PromotionPipeline
from promoctl.deploy.registry import StaticRegistry
from promoctl.deploy.runtime import NullOrchestrator
from promoctl.deploy.state import StateStore


def make_revision(char: str, tag: str) -> Revision:
    digest = "sha256:" + char * 64
    return Revision(digest=digest, image=f"registry.local/checkout@{digest}", tag=tag)


V1 = make_revision("a", "v1")
V2 = make_revision("b", "v2")
V3 = make_revision("c", "v3")


class FakeClock:
    """Monotonic clock whose ``sleep`` advances time instantly."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class RevisionHealthCheck(HealthCheck):
    """Health signal per revision digest.

    ``unhealthy_at`` marks a revision unhealthy while it serves one of the
    given traffic percentages, read from the orchestrator's recorded calls.
    A ``None`` signal means no signal. ``hooks`` run before each check.
    """

    def __init__(
        self,
        orchestrator: NullOrchestrator,
        signals: dict[str, bool | None] | None = None,
        unhealthy_at: dict[str, set[int | None]] | None = None,
        default: bool = True,
    ):
        self._orchestrator = orchestrator
        self.signals = signals or {}
        self.unhealthy_at = unhealthy_at or {}
        self.default = default
        self.hooks: list[Callable[[Deployment, Revision], None]] = []
        self.checked: list[str] = []

    def _percentage(self, key: str, digest: str) -> int | None:
        for call in reversed(self._orchestrator.calls):
            if call.key == key and call.revision == digest:
                return call.percentage
        return None

    def check(self, deployment: Deployment, revision: Revision) -> bool:
        for hook in self.hooks:
            hook(deployment, revision)
        self.checked.append(revision.digest)

        percentage = self._percentage(deployment.key, revision.digest)
        if percentage in self.unhealthy_at.get(revision.digest, set()):
            return False

        signal = self.signals.get(revision.digest, self.default)
        if signal is None:
            raise UnavailableError("no signal")
        return signal


def fast_plan(**overrides) -> RolloutPlan:
    """Canary plan with small thresholds and timeouts."""
    settings = {
        "success_threshold": 2,
        "failure_threshold": 2,
        "probe_interval": 1.0,
        "probe_timeout": 10.0,
        "attempt_timeout": 100.0,
        "rollback_retries": 2,
    }
    settings.update(overrides)
    steps = settings.pop("steps", (10, 50, 100))
    return RolloutPlan.canary(steps, **settings)


@pytest.fixture
def cli_runner() -> CliRunner:
    """Create a Click CLI runner."""
    return CliRunner()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def state_dir(tmp_path: Path) -> Path:
    return tmp_path / "state"


@pytest.fixture
def store(state_dir: Path) -> StateStore:
    return StateStore(state_dir)


@pytest.fixture
def orchestrator() -> NullOrchestrator:
    return NullOrchestrator()


@pytest.fixture
def sink() -> MemorySink:
    return MemorySink()


@pytest.fixture
def emitter(sink: MemorySink) -> EventEmitter:
    return EventEmitter([sink])


@pytest.fixture
def health(orchestrator: NullOrchestrator) -> RevisionHealthCheck:
    return RevisionHealthCheck(orchestrator)


@pytest.fixture
def prober(health: RevisionHealthCheck, clock: FakeClock) -> HealthProber:
    return HealthProber(
        health,
        interval=1.0,
        success_threshold=2,
        failure_threshold=2,
        clock=clock,
        sleep=clock.sleep,
    )


@pytest.fixture
def engine(
    store: StateStore,
    orchestrator: NullOrchestrator,
    prober: HealthProber,
    emitter: EventEmitter,
    clock: FakeClock,
) -> RolloutEngine:
    return RolloutEngine(store, orchestrator, prober, emitter, clock=clock, sleep=clock.sleep)


@pytest.fixture
def registry() -> StaticRegistry:
    registry = StaticRegistry()
    for revision in (V1, V2, V3):
        registry.add("checkout", revision)
    return registry


@pytest.fixture
def promo_config() -> PromoCtlConfig:
    """Configuration with one service and fast rollouts."""
    return PromoCtlConfig(
        orchestrator="none",
        registry=RegistryConfig(kind="static", retries=0),
        rollout=RolloutConfig(
            strategy="canary",
            canary_steps=[10, 50, 100],
            success_threshold=2,
            failure_threshold=2,
            probe_interval=1,
            probe_timeout=10,
            attempt_timeout=100,
            rollback_retries=2,
        ),
        services={
            "checkout": ServiceConfig(
                stages=["dev", "qa", "prod"],
                environments={"prod": EnvironmentConfig(deployment="checkout-api", namespace="shop")},
            )
        },
    )


@pytest.fixture
def pipeline(
    promo_config: PromoCtlConfig,
    store: StateStore,
    registry: StaticRegistry,
    engine: RolloutEngine,
    emitter: EventEmitter,
) -> PromotionPipeline:
    return PromotionPipeline(promo_config, store, registry, engine, emitter)


@pytest.fixture
def mock_context(promo_config: PromoCtlConfig) -> PromoCtlContext:
    """Create a mock PromoCtl context."""
    return PromoCtlContext(
        config=promo_config,
        output_format=OutputFormat.TABLE,
        verbose=0,
        quiet=False,
        dry_run=False,
        color=False,
    )


@pytest.fixture
def mock_aws_client() -> Generator[MagicMock, None, None]:
    """Mock boto3 client."""
    with patch("boto3.Session") as mock_session:
        mock_client = MagicMock()
        mock_session.return_value.client.return_value = mock_client
        yield mock_client


@pytest.fixture(autouse=True)
def clean_env() -> Generator[None, None, None]:
    """Clean environment variables before each test."""
    env_vars = [
        "PROMOCTL_AWS_PROFILE",
        "PROMOCTL_AWS_REGION",
        "PROMOCTL_KUBECONFIG",
        "PROMOCTL_K8S_CONTEXT",
        "PROMOCTL_STATE_DIR",
        "PROMOCTL_WEBHOOK_URL",
        "PROMOCTL_CONFIG",
        "AWS_PROFILE",
        "AWS_REGION",
        "AWS_DEFAULT_REGION",
        "KUBECONFIG",
        "USER",
    ]

    original = {k: os.environ.get(k) for k in env_vars}

    for k in env_vars:
        os.environ.pop(k, None)

    yield

    for k, v in original.items():
        if v is not None:
            os.environ[k] = v
        else:
            os.environ.pop(k, None)


@pytest.fixture
def temp_config_file(tmp_path: Path, state_dir: Path) -> str:
    """Create a temporary config file for CLI runs without a cluster."""
    config_content = f"""
version: "1"
global:
  output_format: table
  state_dir: {state_dir}
orchestrator: none
registry:
  kind: static
  retries: 0
  static:
    checkout:
      v1:
        digest: "sha256:{"a" * 64}"
      v2:
        digest: "sha256:{"b" * 64}"
rollout:
  strategy: canary
  canary_steps: [10, 50, 100]
  success_threshold: 1
  failure_threshold: 1
  probe_interval: 1s
  probe_timeout: 5s
  attempt_timeout: 1m
  rollback_retries: 1
services:
  checkout:
    stages: [dev, qa, prod]
    environments:
      prod:
        approval: manual
"""
    config_file = tmp_path / "config.yaml"
    config_file.write_text(config_content)
    return str(config_file)
