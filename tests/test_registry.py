"""Tests for artifact registry clients."""

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from promoctl.config import AWSConfig, PromoCtlConfig
from promoctl.core.exceptions import (
    AuthenticationError,
    NotFoundError,
    RegistryUnavailableError,
    ValidationError,
)
from promoctl.deploy.registry import EcrRegistry, StaticRegistry, commit_from_tag, create_registry

from tests.conftest import V1

DIGEST = "sha256:" + "d" * 64


def client_error(code: str, status: int = 400) -> ClientError:
    return ClientError(
        {"Error": {"Code": code, "Message": code}, "ResponseMetadata": {"HTTPStatusCode": status}},
        "DescribeImages",
    )


def image_details() -> dict:
    return {
        "imageDetails": [
            {
                "registryId": "123456789012",
                "repositoryName": "shop/checkout",
                "imageDigest": DIGEST,
                "imageTags": ["git-3f9a2c1"],
                "imagePushedAt": datetime(2024, 5, 1, tzinfo=timezone.utc),
            }
        ]
    }


@pytest.fixture
def ecr(mock_aws_client: MagicMock) -> EcrRegistry:
    return EcrRegistry(
        AWSConfig(region="eu-west-1"),
        repositories={"checkout": "shop/checkout"},
        retries=2,
        sleep=lambda seconds: None,
    )


class TestCommitFromTag:
    @pytest.mark.parametrize(
        "tag,commit",
        [("git-3f9a2c1", "3f9a2c1"), ("3f9a2c1d", "3f9a2c1d"), ("v1.2.3", None), ("latest", None)],
    )
    def test_commit_from_tag(self, tag, commit):
        assert commit_from_tag(tag) == commit


class TestStaticRegistry:
    def test_resolve(self, registry: StaticRegistry):
        assert registry.resolve("checkout", "v1") == V1

    def test_missing_tag(self, registry: StaticRegistry):
        with pytest.raises(NotFoundError):
            registry.resolve("checkout", "v9")

    def test_missing_service(self, registry: StaticRegistry):
        with pytest.raises(NotFoundError):
            registry.resolve("payments", "v1")

    def test_from_config(self):
        config = PromoCtlConfig(
            registry={"kind": "static", "static": {"checkout": {"git-3f9a2c1": {"digest": DIGEST}}}},
            services={"checkout": {"repository": "shop/checkout"}},
        )

        registry = create_registry(config)
        revision = registry.resolve("checkout", "git-3f9a2c1")

        assert isinstance(registry, StaticRegistry)
        assert revision.digest == DIGEST
        assert revision.image == f"shop/checkout@{DIGEST}"
        assert revision.commit == "3f9a2c1"


class TestEcrRegistry:
    def test_resolve(self, ecr: EcrRegistry, mock_aws_client: MagicMock):
        mock_aws_client.describe_images.return_value = image_details()

        revision = ecr.resolve("checkout", "git-3f9a2c1")

        assert revision.digest == DIGEST
        assert revision.image == f"123456789012.dkr.ecr.eu-west-1.amazonaws.com/shop/checkout@{DIGEST}"
        assert revision.tag == "git-3f9a2c1"
        assert revision.commit == "3f9a2c1"
        mock_aws_client.describe_images.assert_called_once_with(
            repositoryName="shop/checkout",
            imageIds=[{"imageTag": "git-3f9a2c1"}],
        )

    def test_unmapped_service_uses_its_name(self, ecr: EcrRegistry, mock_aws_client: MagicMock):
        mock_aws_client.describe_images.return_value = image_details()

        ecr.resolve("payments", "v1")

        assert mock_aws_client.describe_images.call_args.kwargs["repositoryName"] == "payments"

    def test_image_not_found(self, ecr: EcrRegistry, mock_aws_client: MagicMock):
        mock_aws_client.describe_images.side_effect = client_error("ImageNotFoundException")

        with pytest.raises(NotFoundError):
            ecr.resolve("checkout", "missing")
        assert mock_aws_client.describe_images.call_count == 1

    def test_access_denied(self, ecr: EcrRegistry, mock_aws_client: MagicMock):
        mock_aws_client.describe_images.side_effect = client_error("AccessDeniedException")

        with pytest.raises(AuthenticationError):
            ecr.resolve("checkout", "v1")

    def test_throttling_is_retried(self, ecr: EcrRegistry, mock_aws_client: MagicMock):
        mock_aws_client.describe_images.side_effect = [
            client_error("ThrottlingException"),
            image_details(),
        ]

        assert ecr.resolve("checkout", "v1").digest == DIGEST
        assert mock_aws_client.describe_images.call_count == 2

    def test_persistent_outage(self, ecr: EcrRegistry, mock_aws_client: MagicMock):
        mock_aws_client.describe_images.side_effect = EndpointConnectionError(endpoint_url="https://ecr")

        with pytest.raises(RegistryUnavailableError) as exc_info:
            ecr.resolve("checkout", "v1")

        assert exc_info.value.exit_code == 4
        assert mock_aws_client.describe_images.call_count == 3

    def test_rejected_request_is_not_retried(self, ecr: EcrRegistry, mock_aws_client: MagicMock):
        mock_aws_client.describe_images.side_effect = client_error("InvalidParameterException")

        with pytest.raises(ValidationError) as exc_info:
            ecr.resolve("checkout", "not a tag")

        assert exc_info.value.exit_code == 1
        assert exc_info.value.details == {"code": "InvalidParameterException"}
        assert mock_aws_client.describe_images.call_count == 1

    def test_unlisted_server_error_is_retried(self, ecr: EcrRegistry, mock_aws_client: MagicMock):
        mock_aws_client.describe_images.side_effect = [
            client_error("KMSException", status=503),
            image_details(),
        ]

        assert ecr.resolve("checkout", "v1").digest == DIGEST
        assert mock_aws_client.describe_images.call_count == 2

    def test_empty_response(self, ecr: EcrRegistry, mock_aws_client: MagicMock):
        mock_aws_client.describe_images.return_value = {"imageDetails": []}

        with pytest.raises(NotFoundError):
            ecr.resolve("checkout", "v1")
