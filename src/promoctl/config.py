"""Configuration management for promoctl using Pydantic."""

import os
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from promoctl.core.exceptions import ConfigError
from promoctl.core.logging import LogLevel
from promoctl.core.output import OutputFormat
from promoctl.core.utils import merge_dicts, parse_duration

BUILD_STAGE = "build"


class AWSConfig(BaseModel):
    """AWS configuration."""

    profile: str | None = None
    region: str | None = None
    endpoint_url: str | None = None

    def get_profile(self) -> str | None:
        """Get AWS profile from config or environment."""
        return (
            os.environ.get("PROMOCTL_AWS_PROFILE")
            or os.environ.get("AWS_PROFILE")
            or self.profile
        )

    def get_region(self) -> str | None:
        """Get AWS region from config or environment."""
        return (
            os.environ.get("PROMOCTL_AWS_REGION")
            or os.environ.get("AWS_REGION")
            or os.environ.get("AWS_DEFAULT_REGION")
            or self.region
        )


class K8sConfig(BaseModel):
    """Kubernetes configuration."""

    kubeconfig: str | None = None
    context: str | None = None
    namespace: str = "default"
    timeout: int = 30

    def get_kubeconfig(self) -> str | None:
        """Get kubeconfig path from config or environment."""
        return (
            os.environ.get("PROMOCTL_KUBECONFIG")
            or os.environ.get("KUBECONFIG")
            or self.kubeconfig
        )

    def get_context(self) -> str | None:
        """Get k8s context from config or environment."""
        return os.environ.get("PROMOCTL_K8S_CONTEXT") or self.context


class StaticImageConfig(BaseModel):
    """Statically declared artifact for the static registry."""

    digest: str
    commit: str | None = None


class RegistryConfig(BaseModel):
    """Artifact registry configuration."""

    kind: Literal["ecr", "static"] = "ecr"
    retries: int = Field(default=3, ge=0)
    # service -> tag -> image
    static: dict[str, dict[str, StaticImageConfig]] = Field(default_factory=dict)


class RolloutConfig(BaseModel):
    """Default rollout plan settings."""

    strategy: Literal["all-at-once", "canary", "blue-green"] = "canary"
    canary_steps: list[int] = Field(default_factory=lambda: [10, 50, 100])
    success_threshold: int = 3
    failure_threshold: int = 3
    probe_interval: float = 5.0
    probe_timeout: float = 120.0
    attempt_timeout: float = 1800.0
    rollback_retries: int = 3

    @field_validator("probe_interval", "probe_timeout", "attempt_timeout", mode="before")
    @classmethod
    def parse_durations(cls, v: Any) -> float:
        return parse_duration(v)


class NotificationsConfig(BaseModel):
    """Event notification configuration."""

    webhook_url: str | None = None
    timeout: float = 5.0

    def get_webhook_url(self) -> str | None:
        """Get webhook URL from config or environment."""
        url = self.webhook_url
        if url == "from_env" or url is None:
            url = os.environ.get("PROMOCTL_WEBHOOK_URL")
        return url


class EnvironmentConfig(BaseModel):
    """Per-environment runtime target."""

    deployment: str | None = None
    namespace: str | None = None
    health_url: str | None = None
    approval: Literal["auto", "manual", "policy"] = "auto"
    min_soak: float = 0.0
    rollout: RolloutConfig | None = None

    @field_validator("min_soak", mode="before")
    @classmethod
    def parse_soak(cls, v: Any) -> float:
        return parse_duration(v)


class ServiceConfig(BaseModel):
    """Service with its ordered environment stages."""

    stages: list[str] = Field(default_factory=lambda: ["dev", "qa", "prod"])
    repository: str | None = None
    environments: dict[str, EnvironmentConfig] = Field(default_factory=dict)

    @field_validator("stages")
    @classmethod
    def validate_stages(cls, v: list[str]) -> list[str]:
        if not v:
            raise ValueError("a service needs at least one stage")
        if len(set(v)) != len(v):
            raise ValueError("stage names must be unique")
        if BUILD_STAGE in v:
            raise ValueError(f"'{BUILD_STAGE}' is reserved and cannot be a stage")
        return v

    @model_validator(mode="after")
    def validate_environments(self) -> "ServiceConfig":
        unknown = set(self.environments) - set(self.stages)
        if unknown:
            raise ValueError(f"environments not in stages: {sorted(unknown)}")
        return self

    def environment(self, name: str) -> EnvironmentConfig:
        """Get environment config, falling back to defaults."""
        return self.environments.get(name) or EnvironmentConfig()


class GlobalConfig(BaseModel):
    """Global settings."""

    output_format: OutputFormat = OutputFormat.TABLE
    color: str = "auto"  # auto, always, never
    verbosity: LogLevel = LogLevel.WARNING
    dry_run: bool = False
    state_dir: str | None = None

    @field_validator("color")
    @classmethod
    def validate_color(cls, v: str) -> str:
        if v not in ("auto", "always", "never"):
            raise ValueError("color must be 'auto', 'always', or 'never'")
        return v

    def get_state_dir(self) -> Path:
        """Get the state directory from config or environment."""
        path = os.environ.get("PROMOCTL_STATE_DIR") or self.state_dir or "~/.promoctl/state"
        return Path(path).expanduser()


class PromoCtlConfig(BaseModel):
    """Main configuration model."""

    model_config = {"populate_by_name": True}

    version: str = "1"
    global_settings: GlobalConfig = Field(default_factory=GlobalConfig, alias="global")
    aws: AWSConfig = Field(default_factory=AWSConfig)
    k8s: K8sConfig = Field(default_factory=K8sConfig)
    orchestrator: Literal["kubernetes", "none"] = "kubernetes"
    registry: RegistryConfig = Field(default_factory=RegistryConfig)
    rollout: RolloutConfig = Field(default_factory=RolloutConfig)
    notifications: NotificationsConfig = Field(default_factory=NotificationsConfig)
    services: dict[str, ServiceConfig] = Field(default_factory=dict)

    def get_service(self, name: str) -> ServiceConfig:
        """Get a service by name."""
        if name not in self.services:
            raise ConfigError(f"Service '{name}' not configured")
        return self.services[name]

    def rollout_for(self, service: str, environment: str) -> RolloutConfig:
        """Get the rollout settings for an environment, or the defaults."""
        env_config = self.get_service(service).environment(environment)
        return env_config.rollout or self.rollout


class ConfigLoader:
    """Loads and merges configuration from multiple sources."""

    CONFIG_FILENAMES = ["promoctl.yaml", "promoctl.yml", ".promoctl.yaml", ".promoctl.yml"]

    def __init__(self) -> None:
        self._config: PromoCtlConfig | None = None

    def load(self, config_file: str | Path | None = None) -> PromoCtlConfig:
        """Load configuration from files and environment.

        Priority (highest to lowest):
        1. Explicitly specified config file
        2. Project config (./promoctl.yaml)
        3. User config (~/.promoctl/config.yaml)
        """
        configs: list[dict[str, Any]] = []

        user_config_path = Path.home() / ".promoctl" / "config.yaml"
        if user_config_path.exists():
            configs.append(self._load_yaml_file(user_config_path))

        project_config = self._find_project_config()
        if project_config:
            configs.append(self._load_yaml_file(project_config))

        if config_file:
            config_path = Path(config_file)
            if not config_path.exists():
                raise ConfigError(f"Config file not found: {config_file}")
            configs.append(self._load_yaml_file(config_path))

        merged: dict[str, Any] = {}
        for config in configs:
            merged = merge_dicts(merged, config)

        try:
            self._config = PromoCtlConfig(**merged)
        except ValueError as e:
            raise ConfigError(f"Invalid configuration: {e}")
        return self._config

    def _find_project_config(self) -> Path | None:
        """Find project config file in current or parent directories."""
        current = Path.cwd()

        while current != current.parent:
            for filename in self.CONFIG_FILENAMES:
                config_path = current / filename
                if config_path.exists():
                    return config_path
            current = current.parent

        return None

    def _load_yaml_file(self, path: Path) -> dict[str, Any]:
        """Load a YAML config file."""
        try:
            with open(path) as f:
                content = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}")
        except OSError as e:
            raise ConfigError(f"Cannot read {path}: {e}")

        if not isinstance(content, dict):
            raise ConfigError(f"Config file {path} must contain a mapping")
        return content


_config_loader = ConfigLoader()


def load_config(config_file: str | Path | None = None) -> PromoCtlConfig:
    """Load promoctl configuration."""
    return _config_loader.load(config_file)


def get_default_config() -> PromoCtlConfig:
    """Get default configuration without loading from files."""
    return PromoCtlConfig()
