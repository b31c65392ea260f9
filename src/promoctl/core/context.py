"""Click context object for sharing state across commands."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import click

from promoctl.config import PromoCtlConfig, get_default_config
from promoctl.core.logging import LogLevel, StructuredLogger, setup_logging
from promoctl.core.output import OutputFormat, OutputFormatter

if TYPE_CHECKING:
    from promoctl.deploy.engine import RolloutEngine
    from promoctl.deploy.events import EventEmitter
    from promoctl.deploy.health import HealthProber
    from promoctl.deploy.pipeline import PromotionPipeline
    from promoctl.deploy.registry import ArtifactRegistry
    from promoctl.deploy.runtime import Orchestrator
    from promoctl.deploy.state import StateStore


class PromoCtlContext:
    """Shared context object for promoctl commands.

    This object is passed through Click's context mechanism and provides
    access to configuration, output and the lazily built deploy components.
    """

    def __init__(
        self,
        config: PromoCtlConfig | None = None,
        output_format: OutputFormat | None = None,
        verbose: int = 0,
        quiet: bool = False,
        dry_run: bool = False,
        color: bool = True,
    ):
        self._config = config or get_default_config()

        # Output settings (CLI overrides config)
        self._output_format = output_format or self._config.global_settings.output_format
        self._verbose = verbose
        self._quiet = quiet
        self._dry_run = dry_run or self._config.global_settings.dry_run
        self._color = color and self._config.global_settings.color != "never"

        if verbose >= 2:
            log_level = LogLevel.DEBUG
        elif verbose >= 1:
            log_level = LogLevel.INFO
        elif quiet:
            log_level = LogLevel.ERROR
        else:
            log_level = self._config.global_settings.verbosity

        setup_logging(log_level, rich_output=self._color)
        self._logger = StructuredLogger("context")

        self._output = OutputFormatter(
            format=self._output_format,
            color=self._color,
            quiet=quiet,
        )

        # Lazy-loaded components
        self._store: StateStore | None = None
        self._registry: ArtifactRegistry | None = None
        self._orchestrator: Orchestrator | None = None
        self._prober: HealthProber | None = None
        self._emitter: EventEmitter | None = None
        self._engine: RolloutEngine | None = None
        self._pipeline: PromotionPipeline | None = None

    @property
    def config(self) -> PromoCtlConfig:
        """Get the loaded configuration."""
        return self._config

    @property
    def output(self) -> OutputFormatter:
        """Get the output formatter."""
        return self._output

    @property
    def output_format(self) -> OutputFormat:
        return self._output_format

    @property
    def dry_run(self) -> bool:
        """Check if dry-run mode is enabled."""
        return self._dry_run

    @property
    def verbose(self) -> int:
        return self._verbose

    @property
    def quiet(self) -> bool:
        return self._quiet

    @property
    def logger(self) -> StructuredLogger:
        return self._logger

    @property
    def store(self) -> "StateStore":
        """Get or create the state store."""
        if self._store is None:
            from promoctl.deploy.state import StateStore

            self._store = StateStore(self._config.global_settings.get_state_dir())
        return self._store

    @property
    def registry(self) -> "ArtifactRegistry":
        """Get or create the artifact registry."""
        if self._registry is None:
            from promoctl.deploy.registry import create_registry

            self._registry = create_registry(self._config)
        return self._registry

    @property
    def orchestrator(self) -> "Orchestrator":
        """Get or create the orchestrator. Dry runs only record commands."""
        if self._orchestrator is None:
            from promoctl.deploy.runtime import create_orchestrator

            self._orchestrator = create_orchestrator(self._config, dry_run=self._dry_run)
        return self._orchestrator

    @property
    def prober(self) -> "HealthProber":
        """Get or create the health prober."""
        if self._prober is None:
            from promoctl.deploy.health import EnvironmentHealthCheck, HealthProber

            rollout = self._config.rollout
            self._prober = HealthProber(
                EnvironmentHealthCheck(self._config, self.orchestrator),
                interval=rollout.probe_interval,
                success_threshold=rollout.success_threshold,
                failure_threshold=rollout.failure_threshold,
            )
        return self._prober

    @property
    def emitter(self) -> "EventEmitter":
        """Get or create the event emitter, with the webhook sink when configured."""
        if self._emitter is None:
            from promoctl.deploy.events import EventEmitter, LogSink, WebhookSink

            self._emitter = EventEmitter([LogSink()])
            webhook_url = self._config.notifications.get_webhook_url()
            if webhook_url and not self._dry_run:
                self._emitter.add_sink(WebhookSink(webhook_url, timeout=self._config.notifications.timeout))
        return self._emitter

    @property
    def engine(self) -> "RolloutEngine":
        """Get or create the rollout engine."""
        if self._engine is None:
            from promoctl.deploy.engine import RolloutEngine

            self._engine = RolloutEngine(self.store, self.orchestrator, self.prober, self.emitter)
        return self._engine

    @property
    def pipeline(self) -> "PromotionPipeline":
        """Get or create the promotion pipeline."""
        if self._pipeline is None:
            from promoctl.deploy.pipeline import PromotionPipeline

            self._pipeline = PromotionPipeline(
                self._config,
                self.store,
                self.registry,
                self.engine,
                self.emitter,
            )
        return self._pipeline

    def confirm(self, message: str, default: bool = False) -> bool:
        """Ask for user confirmation.

        In dry-run mode, always returns True without prompting.
        """
        if self._dry_run:
            self._output.print(f"[dim][dry-run] Would prompt: {message}[/dim]")
            return True
        return self._output.confirm(message, default)

    def log_dry_run(self, action: str, details: dict[str, Any] | None = None) -> None:
        """Log a dry-run action."""
        if self._dry_run:
            msg = f"[dry-run] {action}"
            if details:
                detail_str = ", ".join(f"{k}={v}" for k, v in details.items())
                msg = f"{msg} ({detail_str})"
            self._output.print(f"[dim]{msg}[/dim]")


# Click decorator for passing context
pass_context = click.make_pass_decorator(PromoCtlContext, ensure=True)
