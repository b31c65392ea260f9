"""Tests for configuration management."""

import os
from pathlib import Path

import pytest
import yaml

from promoctl.config import (
    AWSConfig,
    ConfigLoader,
    EnvironmentConfig,
    GlobalConfig,
    K8sConfig,
    NotificationsConfig,
    PromoCtlConfig,
    RolloutConfig,
    ServiceConfig,
    get_default_config,
    load_config,
)
from promoctl.core.exceptions import ConfigError
from promoctl.core.output import OutputFormat
from promoctl.core.utils import parse_duration


class TestAWSConfig:
    """Tests for AWSConfig."""

    def test_default_values(self):
        config = AWSConfig()
        assert config.profile is None
        assert config.region is None

    def test_get_profile_from_config(self):
        config = AWSConfig(profile="test-profile")
        assert config.get_profile() == "test-profile"

    def test_get_profile_from_env(self):
        os.environ["PROMOCTL_AWS_PROFILE"] = "env-profile"
        config = AWSConfig(profile="config-profile")
        assert config.get_profile() == "env-profile"
        del os.environ["PROMOCTL_AWS_PROFILE"]

    def test_get_region_from_env(self):
        os.environ["AWS_REGION"] = "eu-west-1"
        config = AWSConfig(region="us-east-1")
        assert config.get_region() == "eu-west-1"
        del os.environ["AWS_REGION"]


class TestK8sConfig:
    def test_default_values(self):
        config = K8sConfig()
        assert config.namespace == "default"
        assert config.get_kubeconfig() is None

    def test_kubeconfig_from_env(self):
        os.environ["KUBECONFIG"] = "/tmp/kubeconfig"
        assert K8sConfig(kubeconfig="/etc/kube").get_kubeconfig() == "/tmp/kubeconfig"
        del os.environ["KUBECONFIG"]


class TestNotificationsConfig:
    def test_webhook_from_env(self):
        os.environ["PROMOCTL_WEBHOOK_URL"] = "https://hooks.example.com/T000"
        config = NotificationsConfig(webhook_url="from_env")
        assert config.get_webhook_url() == "https://hooks.example.com/T000"
        del os.environ["PROMOCTL_WEBHOOK_URL"]

    def test_no_webhook(self):
        assert NotificationsConfig().get_webhook_url() is None


class TestRolloutConfig:
    def test_defaults(self):
        config = RolloutConfig()
        assert config.strategy == "canary"
        assert config.canary_steps == [10, 50, 100]
        assert config.attempt_timeout == 1800.0

    def test_duration_strings(self):
        config = RolloutConfig(probe_interval="10s", probe_timeout="2m", attempt_timeout="1h30m")
        assert config.probe_interval == 10.0
        assert config.probe_timeout == 120.0
        assert config.attempt_timeout == 5400.0

    def test_invalid_duration(self):
        with pytest.raises(ValueError):
            RolloutConfig(probe_timeout="soon")

    def test_invalid_strategy(self):
        with pytest.raises(ValueError):
            RolloutConfig(strategy="rolling")


class TestParseDuration:
    @pytest.mark.parametrize(
        "value,seconds",
        [("30s", 30.0), ("5m", 300.0), ("1h30m", 5400.0), ("1d", 86400.0), ("45", 45.0), ("2.5", 2.5), (90, 90.0)],
    )
    def test_parse(self, value, seconds):
        assert parse_duration(value) == seconds

    @pytest.mark.parametrize("value", ["", "abc", "5x", "1h 30m"])
    def test_invalid(self, value):
        with pytest.raises(ValueError):
            parse_duration(value)


class TestServiceConfig:
    def test_default_stages(self):
        assert ServiceConfig().stages == ["dev", "qa", "prod"]

    def test_duplicate_stages(self):
        with pytest.raises(ValueError):
            ServiceConfig(stages=["dev", "dev"])

    def test_empty_stages(self):
        with pytest.raises(ValueError):
            ServiceConfig(stages=[])

    def test_build_is_reserved(self):
        with pytest.raises(ValueError):
            ServiceConfig(stages=["build", "prod"])

    def test_environment_must_be_a_stage(self):
        with pytest.raises(ValueError):
            ServiceConfig(stages=["dev"], environments={"prod": EnvironmentConfig()})

    def test_environment_defaults(self):
        env = ServiceConfig().environment("qa")
        assert env.approval == "auto"
        assert env.rollout is None


class TestGlobalConfig:
    """Tests for GlobalConfig."""

    def test_default_values(self):
        config = GlobalConfig()
        assert config.output_format == OutputFormat.TABLE
        assert config.color == "auto"
        assert config.dry_run is False

    def test_invalid_color(self):
        with pytest.raises(ValueError):
            GlobalConfig(color="invalid")

    def test_state_dir_from_env(self, tmp_path: Path):
        os.environ["PROMOCTL_STATE_DIR"] = str(tmp_path)
        assert GlobalConfig(state_dir="/var/lib/promoctl").get_state_dir() == tmp_path
        del os.environ["PROMOCTL_STATE_DIR"]

    def test_default_state_dir(self):
        assert GlobalConfig().get_state_dir() == Path.home() / ".promoctl" / "state"


class TestPromoCtlConfig:
    def test_get_service_not_found(self):
        with pytest.raises(ConfigError):
            PromoCtlConfig().get_service("checkout")

    def test_rollout_override_per_environment(self):
        config = PromoCtlConfig(
            rollout=RolloutConfig(strategy="canary"),
            services={
                "checkout": ServiceConfig(
                    environments={"prod": EnvironmentConfig(rollout=RolloutConfig(strategy="blue-green"))}
                )
            },
        )

        assert config.rollout_for("checkout", "prod").strategy == "blue-green"
        assert config.rollout_for("checkout", "dev").strategy == "canary"


class TestConfigLoader:
    """Tests for ConfigLoader."""

    def test_load_from_file(self, tmp_path: Path):
        config_content = {
            "version": "1",
            "global": {"output_format": "json"},
            "aws": {"profile": "test", "region": "us-east-1"},
            "rollout": {"strategy": "blue-green", "probe_timeout": "90s"},
            "services": {
                "checkout": {
                    "repository": "shop/checkout",
                    "stages": ["dev", "staging", "prod"],
                    "environments": {"prod": {"approval": "policy", "min_soak": "1h"}},
                }
            },
        }

        config_file = tmp_path / "config.yaml"
        config_file.write_text(yaml.dump(config_content))

        config = ConfigLoader().load(str(config_file))

        assert config.global_settings.output_format == OutputFormat.JSON
        assert config.aws.profile == "test"
        assert config.rollout.probe_timeout == 90.0
        service = config.get_service("checkout")
        assert service.stages == ["dev", "staging", "prod"]
        assert service.environment("prod").min_soak == 3600.0

    def test_load_invalid_yaml(self, tmp_path: Path):
        config_file = tmp_path / "config.yaml"
        config_file.write_text("invalid: yaml: content:")

        with pytest.raises(ConfigError):
            ConfigLoader().load(str(config_file))

    def test_load_invalid_values(self, tmp_path: Path):
        config_file = tmp_path / "config.yaml"
        config_file.write_text(yaml.dump({"services": {"checkout": {"stages": ["dev", "dev"]}}}))

        with pytest.raises(ConfigError):
            ConfigLoader().load(str(config_file))

    def test_load_non_mapping(self, tmp_path: Path):
        config_file = tmp_path / "config.yaml"
        config_file.write_text("- just\n- a list\n")

        with pytest.raises(ConfigError):
            ConfigLoader().load(str(config_file))

    def test_load_nonexistent_file(self):
        with pytest.raises(ConfigError):
            ConfigLoader().load("/nonexistent/config.yaml")


class TestConfigFunctions:
    """Tests for config module functions."""

    def test_get_default_config(self):
        config = get_default_config()
        assert isinstance(config, PromoCtlConfig)
        assert config.services == {}

    def test_load_config_with_file(self, tmp_path: Path):
        config_file = tmp_path / "config.yaml"
        config_file.write_text(yaml.dump({"version": "1", "orchestrator": "none"}))

        config = load_config(str(config_file))
        assert isinstance(config, PromoCtlConfig)
        assert config.orchestrator == "none"
