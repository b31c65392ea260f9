"""Artifact registry clients.

A registry resolves a service's image tag to an immutable, digest-addressed
Revision. Lookups have no side effects.
"""

import re
from abc import ABC, abstractmethod
from typing import Any

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError, EndpointConnectionError

from promoctl.config import AWSConfig, PromoCtlConfig
from promoctl.core.exceptions import (
    AuthenticationError,
    NotFoundError,
    RegistryUnavailableError,
    ValidationError,
)
from promoctl.core.logging import get_logger
from promoctl.core.utils import call_with_retry
from promoctl.deploy.models import Revision

logger = get_logger(__name__)

_COMMIT_TAG = re.compile(r"^(?:git-)?([0-9a-f]{7,40})$")

_NOT_FOUND_CODES = {"ImageNotFoundException", "RepositoryNotFoundException"}
_TRANSIENT_CODES = {
    "ThrottlingException",
    "ServerException",
    "ServiceUnavailableException",
    "RequestTimeout",
    "InternalFailure",
}
_AUTH_CODES = {"AccessDeniedException", "UnrecognizedClientException", "ExpiredTokenException"}


def commit_from_tag(tag: str) -> str | None:
    """Extract a source commit from ``git-<sha>`` or bare-sha tags."""
    match = _COMMIT_TAG.match(tag)
    return match.group(1) if match else None


class ArtifactRegistry(ABC):
    """Resolves tags to revisions."""

    def __init__(self, retries: int = 3, sleep: Any = None):
        self._retries = retries
        self._sleep = sleep

    def resolve(self, service: str, tag: str) -> Revision:
        """Resolve a tag for a service.

        Transient failures are retried with backoff before escalating.

        Raises:
            NotFoundError: If the tag does not resolve
            ValidationError: If the registry rejects the request
            RegistryUnavailableError: If the registry stays unreachable
        """
        revision = call_with_retry(
            self._resolve,
            service,
            tag,
            retries=self._retries,
            retry_on=(RegistryUnavailableError,),
            sleep=self._sleep,
        )
        logger.debug("Resolved artifact", service=service, tag=tag, digest=revision.short)
        return revision

    @abstractmethod
    def _resolve(self, service: str, tag: str) -> Revision:
        """Single lookup attempt."""
        pass


class StaticRegistry(ArtifactRegistry):
    """In-memory registry, for local runs and declared artifacts."""

    def __init__(
        self,
        images: dict[str, dict[str, Revision]] | None = None,
        retries: int = 0,
        sleep: Any = None,
    ):
        super().__init__(retries=retries, sleep=sleep)
        self._images: dict[str, dict[str, Revision]] = images or {}

    @classmethod
    def from_config(cls, config: PromoCtlConfig) -> "StaticRegistry":
        images: dict[str, dict[str, Revision]] = {}
        for service, tags in config.registry.static.items():
            repository = config.services[service].repository if service in config.services else None
            for tag, image in tags.items():
                images.setdefault(service, {})[tag] = Revision(
                    digest=image.digest,
                    image=f"{repository or service}@{image.digest}",
                    tag=tag,
                    commit=image.commit or commit_from_tag(tag),
                )
        return cls(images, retries=config.registry.retries)

    def add(self, service: str, revision: Revision) -> None:
        """Register a revision under its tag."""
        if not revision.tag:
            raise ValueError("static registry entries need a tag")
        self._images.setdefault(service, {})[revision.tag] = revision

    def _resolve(self, service: str, tag: str) -> Revision:
        try:
            return self._images[service][tag]
        except KeyError:
            raise NotFoundError(f"Tag '{tag}' not found for {service}")


class EcrRegistry(ArtifactRegistry):
    """Amazon ECR registry."""

    def __init__(
        self,
        aws_config: AWSConfig,
        repositories: dict[str, str] | None = None,
        retries: int = 3,
        sleep: Any = None,
    ):
        super().__init__(retries=retries, sleep=sleep)
        self._aws_config = aws_config
        self._repositories = repositories or {}
        self._client: Any = None

    @classmethod
    def from_config(cls, config: PromoCtlConfig) -> "EcrRegistry":
        repositories = {
            name: service.repository for name, service in config.services.items() if service.repository
        }
        return cls(config.aws, repositories, retries=config.registry.retries)

    @property
    def client(self) -> Any:
        """Get or create the ECR client."""
        if self._client is None:
            session_kwargs: dict[str, Any] = {}
            if self._aws_config.get_profile():
                session_kwargs["profile_name"] = self._aws_config.get_profile()
            if self._aws_config.get_region():
                session_kwargs["region_name"] = self._aws_config.get_region()

            client_kwargs: dict[str, Any] = {
                "config": BotoConfig(connect_timeout=10, read_timeout=30, retries={"max_attempts": 1}),
            }
            if self._aws_config.endpoint_url:
                client_kwargs["endpoint_url"] = self._aws_config.endpoint_url

            try:
                self._client = boto3.Session(**session_kwargs).client("ecr", **client_kwargs)
            except BotoCoreError as e:
                raise AuthenticationError(f"Failed to create ECR client: {e}")

            logger.debug("Created ECR client", region=self._aws_config.get_region())

        return self._client

    def repository_for(self, service: str) -> str:
        return self._repositories.get(service, service)

    def _resolve(self, service: str, tag: str) -> Revision:
        repository = self.repository_for(service)

        try:
            response = self.client.describe_images(
                repositoryName=repository,
                imageIds=[{"imageTag": tag}],
            )
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            if code in _NOT_FOUND_CODES:
                raise NotFoundError(
                    f"Tag '{tag}' not found in {repository}",
                    {"code": code},
                )
            if code in _AUTH_CODES:
                raise AuthenticationError(f"ECR denied access to {repository}: {code}")
            status = e.response.get("ResponseMetadata", {}).get("HTTPStatusCode") or 0
            if code in _TRANSIENT_CODES or status >= 500:
                raise RegistryUnavailableError(f"ECR unavailable: {code}", {"code": code})
            raise ValidationError(f"ECR rejected the request for {repository}:{tag}: {code}", {"code": code})
        except (EndpointConnectionError, BotoCoreError) as e:
            raise RegistryUnavailableError(f"ECR unreachable: {e}")

        details = response.get("imageDetails", [])
        if not details:
            raise NotFoundError(f"Tag '{tag}' not found in {repository}")

        image = details[0]
        digest = image["imageDigest"]
        registry_id = image.get("registryId")
        region = self._aws_config.get_region() or "us-east-1"
        host = f"{registry_id}.dkr.ecr.{region}.amazonaws.com/" if registry_id else ""

        return Revision(
            digest=digest,
            image=f"{host}{repository}@{digest}",
            tag=tag,
            created_at=image.get("imagePushedAt"),
            commit=commit_from_tag(tag),
        )


def create_registry(config: PromoCtlConfig) -> ArtifactRegistry:
    """Build the registry configured for this profile."""
    if config.registry.kind == "static":
        return StaticRegistry.from_config(config)
    return EcrRegistry.from_config(config)
