"""Health probing for deployed revisions."""

import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Iterator
from itertools import chain, repeat

import httpx

from promoctl.config import PromoCtlConfig
from promoctl.core.exceptions import UnavailableError
from promoctl.core.logging import get_logger
from promoctl.deploy.models import Deployment, HealthResult, Revision
from promoctl.deploy.runtime import Orchestrator

logger = get_logger(__name__)


class HealthCheck(ABC):
    """A single health signal for a revision.

    ``check`` returns True for healthy and False for unhealthy. Raising
    ``UnavailableError`` means no signal was obtained this poll.
    """

    @abstractmethod
    def check(self, deployment: Deployment, revision: Revision) -> bool:
        pass


class HttpHealthCheck(HealthCheck):
    """HTTP status endpoint check. 2xx and 3xx are healthy."""

    def __init__(self, url_template: str, timeout: float = 5.0):
        self._url_template = url_template
        self._timeout = timeout

    def url_for(self, deployment: Deployment, revision: Revision) -> str:
        return self._url_template.format(
            service=deployment.service,
            environment=deployment.environment,
            revision=revision.short,
        )

    def check(self, deployment: Deployment, revision: Revision) -> bool:
        url = self.url_for(deployment, revision)
        try:
            response = httpx.get(url, timeout=self._timeout, follow_redirects=True)
        except httpx.TimeoutException as e:
            raise UnavailableError(f"Health endpoint timed out: {url}", {"error": str(e)})
        except httpx.RequestError as e:
            logger.debug("Health request failed", url=url, error=str(e))
            return False

        return 200 <= response.status_code < 400


class RolloutReadyCheck(HealthCheck):
    """Healthy once the workload running the revision has every replica ready."""

    def __init__(self, orchestrator: Orchestrator):
        self._orchestrator = orchestrator

    def check(self, deployment: Deployment, revision: Revision) -> bool:
        return self._orchestrator.is_ready(deployment, revision)


class EnvironmentHealthCheck(HealthCheck):
    """Picks the HTTP check when an environment declares ``health_url``, rollout readiness otherwise."""

    def __init__(self, config: PromoCtlConfig, orchestrator: Orchestrator):
        self._config = config
        self._ready = RolloutReadyCheck(orchestrator)
        self._http: dict[str, HttpHealthCheck] = {}

    def check(self, deployment: Deployment, revision: Revision) -> bool:
        env_config = self._config.get_service(deployment.service).environment(deployment.environment)
        if not env_config.health_url:
            return self._ready.check(deployment, revision)

        if env_config.health_url not in self._http:
            self._http[env_config.health_url] = HttpHealthCheck(env_config.health_url)
        return self._http[env_config.health_url].check(deployment, revision)


class StaticHealthCheck(HealthCheck):
    """Replays a fixed sequence of signals, then repeats the last one forever.

    ``None`` entries stand for "no signal".
    """

    def __init__(self, signals: Iterable[bool | None] | bool = True):
        if isinstance(signals, bool):
            signals = [signals]
        signals = list(signals)
        if not signals:
            raise ValueError("at least one signal is required")
        self._signals: Iterator[bool | None] = chain(signals, repeat(signals[-1]))
        self.calls = 0

    def check(self, deployment: Deployment, revision: Revision) -> bool:
        self.calls += 1
        signal = next(self._signals)
        if signal is None:
            raise UnavailableError("no signal")
        return signal


class HealthProber:
    """Polls a health check until a stable result or the timeout.

    A result is stable after ``success_threshold`` consecutive healthy
    signals or ``failure_threshold`` consecutive unhealthy ones, which keeps
    a flapping endpoint from deciding a step on one sample.
    """

    def __init__(
        self,
        check: HealthCheck,
        interval: float = 5.0,
        success_threshold: int = 3,
        failure_threshold: int = 3,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._check = check
        self.interval = interval
        self.success_threshold = success_threshold
        self.failure_threshold = failure_threshold
        self._clock = clock
        self._sleep = sleep

    def probe(
        self,
        deployment: Deployment,
        revision: Revision,
        timeout: float,
        interval: float | None = None,
        success_threshold: int | None = None,
        failure_threshold: int | None = None,
    ) -> HealthResult:
        """Probe a revision.

        Args:
            deployment: Deployment the revision runs in
            revision: Revision to probe
            timeout: Seconds before giving up with ``TIMEOUT``
            interval: Poll interval override
            success_threshold: Consecutive healthy signals override
            failure_threshold: Consecutive unhealthy signals override

        Returns:
            HEALTHY, UNHEALTHY or TIMEOUT
        """
        interval = interval or self.interval
        needed_ok = success_threshold or self.success_threshold
        needed_bad = failure_threshold or self.failure_threshold
        log = logger.bind(key=deployment.key, revision=revision.short)

        deadline = self._clock() + timeout
        successes = failures = 0

        while True:
            try:
                healthy: bool | None = self._check.check(deployment, revision)
            except UnavailableError as e:
                log.debug("No health signal", error=str(e))
                healthy = None

            if healthy is True:
                successes += 1
                failures = 0
                if successes >= needed_ok:
                    log.debug("Healthy", polls=successes)
                    return HealthResult.HEALTHY
            elif healthy is False:
                failures += 1
                successes = 0
                if failures >= needed_bad:
                    log.info("Unhealthy", polls=failures)
                    return HealthResult.UNHEALTHY

            remaining = deadline - self._clock()
            if remaining <= 0:
                log.info("Health probe timed out", timeout=timeout)
                return HealthResult.TIMEOUT

            self._sleep(min(interval, remaining))
