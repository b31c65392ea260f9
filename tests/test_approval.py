"""Tests for approval gates."""

from datetime import timedelta

from promoctl.config import EnvironmentConfig
from promoctl.core.utils import utcnow
from promoctl.deploy.approval import (
    AutoApprovalGate,
    ManualApprovalGate,
    PolicyApprovalGate,
    gate_for,
)
from promoctl.deploy.models import Promotion

from tests.conftest import V1, V2


def promotion(from_env: str = "qa", revision=V1, approved_by: str | None = None) -> Promotion:
    return Promotion(service="checkout", from_env=from_env, to_env="prod", revision=revision, approved_by=approved_by)


class TestGates:
    def test_auto(self):
        assert AutoApprovalGate().approve(promotion())

    def test_manual_requires_recorded_approval(self):
        gate = ManualApprovalGate()

        assert not gate.approve(promotion())
        assert gate.approve(promotion(approved_by="alice"))

    def test_gate_for(self, store):
        assert isinstance(gate_for(EnvironmentConfig(), store), AutoApprovalGate)
        assert isinstance(gate_for(EnvironmentConfig(approval="manual"), store), ManualApprovalGate)
        assert isinstance(gate_for(EnvironmentConfig(approval="policy", min_soak="1h"), store), PolicyApprovalGate)


class TestPolicyGate:
    def test_grants_after_soak(self, store):
        store.compare_and_swap("checkout", "qa", None, V1)
        later = utcnow() + timedelta(hours=2)

        gate = PolicyApprovalGate(store, min_soak=3600, now=lambda: later)

        assert gate.approve(promotion())

    def test_denies_during_soak(self, store):
        store.compare_and_swap("checkout", "qa", None, V1)

        gate = PolicyApprovalGate(store, min_soak=3600)

        assert not gate.approve(promotion())

    def test_denies_when_source_moved_on(self, store):
        store.compare_and_swap("checkout", "qa", None, V2)
        later = utcnow() + timedelta(hours=2)

        assert not PolicyApprovalGate(store, min_soak=0, now=lambda: later).approve(promotion())

    def test_denies_while_source_rolling_out(self, store):
        store.compare_and_swap("checkout", "qa", None, V1)
        store.claim("checkout", "qa", "a1")
        later = utcnow() + timedelta(hours=2)

        assert not PolicyApprovalGate(store, min_soak=0, now=lambda: later).approve(promotion())

    def test_build_stage_is_granted(self, store):
        assert PolicyApprovalGate(store, min_soak=3600).approve(promotion(from_env="build"))
