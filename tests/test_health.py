"""Tests for health checks and the health prober."""

from unittest.mock import MagicMock, patch

import httpx
import pytest

from promoctl.config import EnvironmentConfig, PromoCtlConfig, ServiceConfig
from promoctl.core.exceptions import UnavailableError
from promoctl.deploy.health import (
    EnvironmentHealthCheck,
    HealthProber,
    HttpHealthCheck,
    StaticHealthCheck,
)
from promoctl.deploy.models import Deployment, HealthResult
from promoctl.deploy.runtime import NullOrchestrator

from tests.conftest import V1, FakeClock

DEPLOYMENT = Deployment(service="checkout", environment="prod")


def make_prober(check, clock: FakeClock, success: int = 3, failure: int = 3) -> HealthProber:
    return HealthProber(
        check,
        interval=5.0,
        success_threshold=success,
        failure_threshold=failure,
        clock=clock,
        sleep=clock.sleep,
    )


class TestHealthProber:
    def test_healthy_after_consecutive_successes(self, clock: FakeClock):
        check = StaticHealthCheck(True)

        result = make_prober(check, clock).probe(DEPLOYMENT, V1, timeout=60)

        assert result == HealthResult.HEALTHY
        assert check.calls == 3
        assert clock.sleeps == [5.0, 5.0]

    def test_unhealthy_after_consecutive_failures(self, clock: FakeClock):
        check = StaticHealthCheck(False)

        result = make_prober(check, clock).probe(DEPLOYMENT, V1, timeout=60)

        assert result == HealthResult.UNHEALTHY
        assert check.calls == 3

    def test_flapping_resets_counters(self, clock: FakeClock):
        check = StaticHealthCheck([True, True, False, True, True, True])

        result = make_prober(check, clock).probe(DEPLOYMENT, V1, timeout=60)

        assert result == HealthResult.HEALTHY
        assert check.calls == 6

    def test_single_failure_does_not_fail_probe(self, clock: FakeClock):
        check = StaticHealthCheck([False, False, True, False, False, False])

        result = make_prober(check, clock).probe(DEPLOYMENT, V1, timeout=60)

        assert result == HealthResult.UNHEALTHY
        assert check.calls == 6

    def test_no_signal_times_out(self, clock: FakeClock):
        check = StaticHealthCheck([None])

        result = make_prober(check, clock).probe(DEPLOYMENT, V1, timeout=12)

        assert result == HealthResult.TIMEOUT
        assert clock.now == pytest.approx(12)
        # Last sleep is cut to the remaining time
        assert clock.sleeps == [5.0, 5.0, 2.0]

    def test_no_signal_does_not_reset_streak(self, clock: FakeClock):
        check = StaticHealthCheck([True, None, True, True])

        result = make_prober(check, clock).probe(DEPLOYMENT, V1, timeout=60)

        assert result == HealthResult.HEALTHY
        assert check.calls == 4

    def test_overrides(self, clock: FakeClock):
        check = StaticHealthCheck(True)

        result = make_prober(check, clock).probe(DEPLOYMENT, V1, timeout=60, interval=1.0, success_threshold=1)

        assert result == HealthResult.HEALTHY
        assert check.calls == 1
        assert clock.sleeps == []


class TestStaticHealthCheck:
    def test_repeats_last_signal(self):
        check = StaticHealthCheck([False, True])

        assert [check.check(DEPLOYMENT, V1) for _ in range(4)] == [False, True, True, True]

    def test_none_is_no_signal(self):
        with pytest.raises(UnavailableError):
            StaticHealthCheck([None]).check(DEPLOYMENT, V1)

    def test_requires_signals(self):
        with pytest.raises(ValueError):
            StaticHealthCheck([])


class TestHttpHealthCheck:
    def test_url_template(self):
        check = HttpHealthCheck("https://{service}.{environment}.example.com/health?rev={revision}")

        assert check.url_for(DEPLOYMENT, V1) == f"https://checkout.prod.example.com/health?rev={V1.short}"

    @pytest.mark.parametrize("status_code,expected", [(200, True), (204, True), (302, True), (500, False), (503, False)])
    def test_status_codes(self, status_code, expected):
        with patch("promoctl.deploy.health.httpx.get") as mock_get:
            mock_get.return_value = MagicMock(status_code=status_code)

            assert HttpHealthCheck("https://checkout/health").check(DEPLOYMENT, V1) is expected

    def test_timeout_is_no_signal(self):
        with patch("promoctl.deploy.health.httpx.get", side_effect=httpx.ReadTimeout("slow")):
            with pytest.raises(UnavailableError):
                HttpHealthCheck("https://checkout/health").check(DEPLOYMENT, V1)

    def test_connection_error_is_unhealthy(self):
        with patch("promoctl.deploy.health.httpx.get", side_effect=httpx.ConnectError("refused")):
            assert HttpHealthCheck("https://checkout/health").check(DEPLOYMENT, V1) is False


class TestEnvironmentHealthCheck:
    @pytest.fixture
    def config(self) -> PromoCtlConfig:
        return PromoCtlConfig(
            services={
                "checkout": ServiceConfig(
                    environments={"prod": EnvironmentConfig(health_url="https://checkout.prod/health")}
                )
            }
        )

    def test_uses_http_when_configured(self, config):
        with patch("promoctl.deploy.health.httpx.get") as mock_get:
            mock_get.return_value = MagicMock(status_code=503)

            assert EnvironmentHealthCheck(config, NullOrchestrator()).check(DEPLOYMENT, V1) is False
            mock_get.assert_called_once()

    def test_falls_back_to_readiness(self, config):
        orchestrator = MagicMock()
        orchestrator.is_ready.return_value = True
        qa = Deployment(service="checkout", environment="qa")

        assert EnvironmentHealthCheck(config, orchestrator).check(qa, V1) is True
        orchestrator.is_ready.assert_called_once_with(qa, V1)
