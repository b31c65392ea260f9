"""Deployment state persistence.

Each (service, environment) key is a JSON document. Every read-modify-write
of a key runs under a per-key lock: a ``threading.Lock`` for callers in the
same process and an ``fcntl.flock`` on a sidecar file for other processes.
Documents are replaced atomically, so plain reads only ever see committed
state and never take a lock.
"""

import fcntl
import json
import os
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from promoctl.core.exceptions import ConflictError, NotFoundError, ValidationError
from promoctl.core.logging import get_logger
from promoctl.core.utils import sanitize_filename, utcnow
from promoctl.deploy.models import (
    Deployment,
    DeploymentStatus,
    Promotion,
    PromotionStatus,
    Revision,
    RolloutAttempt,
)

logger = get_logger(__name__)


class StateStore:
    """File-backed deployment, attempt and promotion state."""

    def __init__(self, state_dir: str | Path | None = None):
        """Initialize the state store.

        Args:
            state_dir: Directory to store state in, ``~/.promoctl/state`` by default
        """
        self._state_dir = Path(state_dir) if state_dir else Path.home() / ".promoctl" / "state"
        for sub in ("deployments", "attempts", "promotions", "locks"):
            (self._state_dir / sub).mkdir(parents=True, exist_ok=True)

        self._registry_lock = threading.Lock()
        self._thread_locks: dict[str, threading.Lock] = {}

    @property
    def state_dir(self) -> Path:
        return self._state_dir

    # Locking and raw IO

    def _thread_lock(self, name: str) -> threading.Lock:
        with self._registry_lock:
            if name not in self._thread_locks:
                self._thread_locks[name] = threading.Lock()
            return self._thread_locks[name]

    @contextmanager
    def _locked(self, name: str) -> Iterator[None]:
        lock_file = self._state_dir / "locks" / f"{sanitize_filename(name)}.lock"
        with self._thread_lock(name):
            with open(lock_file, "a+") as fh:
                fcntl.flock(fh.fileno(), fcntl.LOCK_EX)
                try:
                    yield
                finally:
                    fcntl.flock(fh.fileno(), fcntl.LOCK_UN)

    def _read(self, path: Path) -> dict[str, Any] | None:
        if not path.exists():
            return None
        with open(path) as f:
            return json.load(f)

    def _write(self, path: Path, data: dict[str, Any]) -> None:
        tmp = path.with_name(f".{path.name}.{os.getpid()}.{threading.get_ident()}.tmp")
        with open(tmp, "w") as f:
            json.dump(data, f, indent=2)
        os.replace(tmp, path)

    def _deployment_path(self, service: str, environment: str) -> Path:
        name = sanitize_filename(f"{service}__{environment}")
        return self._state_dir / "deployments" / f"{name}.json"

    def _deployment_lock(self, service: str, environment: str) -> str:
        return f"deployment__{service}__{environment}"

    def _attempt_path(self, attempt_id: str) -> Path:
        return self._state_dir / "attempts" / f"{sanitize_filename(attempt_id)}.json"

    def _cancel_marker(self, attempt_id: str) -> Path:
        return self._state_dir / "attempts" / f"{sanitize_filename(attempt_id)}.cancel"

    def _promotion_path(self, promotion_id: str) -> Path:
        return self._state_dir / "promotions" / f"{sanitize_filename(promotion_id)}.json"

    def _load_deployment(self, service: str, environment: str) -> Deployment:
        data = self._read(self._deployment_path(service, environment))
        if data is None:
            return Deployment(service=service, environment=environment)
        return Deployment.from_dict(data)

    def _save_deployment(self, deployment: Deployment) -> None:
        deployment.updated_at = utcnow()
        self._write(self._deployment_path(deployment.service, deployment.environment), deployment.to_dict())

    # Deployments

    def get(self, service: str, environment: str) -> Deployment:
        """Get the committed deployment for a key.

        A key that has never been deployed returns an idle deployment with no revision.
        """
        return self._load_deployment(service, environment)

    def list_deployments(self, service: str | None = None) -> list[Deployment]:
        """List every stored deployment, optionally for one service."""
        deployments = []
        for path in sorted((self._state_dir / "deployments").glob("*.json")):
            data = self._read(path)
            if data is None:
                continue
            deployment = Deployment.from_dict(data)
            if service and deployment.service != service:
                continue
            deployments.append(deployment)
        return deployments

    def compare_and_swap(
        self,
        service: str,
        environment: str,
        expected: Revision | None,
        new: Revision,
    ) -> Deployment:
        """Replace the current revision only if it still equals ``expected``.

        This is the only way a deployment's revision changes.

        Raises:
            ConflictError: If the stored revision is not ``expected``
        """
        with self._locked(self._deployment_lock(service, environment)):
            deployment = self._load_deployment(service, environment)
            if deployment.revision != expected:
                raise ConflictError(
                    f"Revision of {deployment.key} changed concurrently",
                    {
                        "expected": expected.short if expected else None,
                        "actual": deployment.revision.short if deployment.revision else None,
                    },
                )

            deployment.previous_revision = deployment.revision
            deployment.revision = new
            deployment.version += 1
            self._save_deployment(deployment)

        logger.debug("Committed revision", key=deployment.key, revision=new.short, version=deployment.version)
        return deployment

    def claim(self, service: str, environment: str, attempt_id: str) -> Deployment:
        """Reserve the single active-attempt slot of a deployment.

        Returns:
            The committed deployment as it was when the slot was taken

        Raises:
            ConflictError: If another attempt holds the slot or the deployment is failed
        """
        with self._locked(self._deployment_lock(service, environment)):
            deployment = self._load_deployment(service, environment)

            if deployment.active_attempt and deployment.active_attempt != attempt_id:
                raise ConflictError(
                    f"Rollout already in progress for {deployment.key}",
                    {"attempt": deployment.active_attempt},
                )
            if deployment.is_failed:
                raise ConflictError(
                    f"{deployment.key} is failed and needs an operator to clear it",
                    {"message": deployment.message},
                )

            deployment.active_attempt = attempt_id
            deployment.status = DeploymentStatus.ROLLING_OUT
            deployment.message = ""
            self._save_deployment(deployment)

        logger.debug("Claimed deployment", key=deployment.key, attempt=attempt_id)
        return deployment

    def release(
        self,
        service: str,
        environment: str,
        attempt_id: str,
        failed: bool = False,
        message: str = "",
    ) -> Deployment:
        """Release the active-attempt slot, marking the deployment failed if asked."""
        with self._locked(self._deployment_lock(service, environment)):
            deployment = self._load_deployment(service, environment)
            if deployment.active_attempt != attempt_id:
                logger.warning(
                    "Release by attempt that does not hold the slot",
                    key=deployment.key,
                    attempt=attempt_id,
                    holder=deployment.active_attempt,
                )
                return deployment

            deployment.active_attempt = None
            deployment.status = DeploymentStatus.FAILED if failed else DeploymentStatus.IDLE
            deployment.message = message
            self._save_deployment(deployment)
            self._cancel_marker(attempt_id).unlink(missing_ok=True)

        logger.debug("Released deployment", key=deployment.key, status=deployment.status.value)
        return deployment

    def clear(self, service: str, environment: str, force: bool = False) -> Deployment:
        """Operator reset of a failed deployment.

        Args:
            force: Also drop an active-attempt claim left by a dead process
        """
        with self._locked(self._deployment_lock(service, environment)):
            deployment = self._load_deployment(service, environment)
            if deployment.active_attempt and not force:
                raise ConflictError(
                    f"Rollout in progress for {deployment.key}; use force to drop a stale claim",
                    {"attempt": deployment.active_attempt},
                )

            if deployment.active_attempt:
                self._cancel_marker(deployment.active_attempt).unlink(missing_ok=True)
            deployment.active_attempt = None
            deployment.status = DeploymentStatus.IDLE
            deployment.message = ""
            self._save_deployment(deployment)

        logger.info("Cleared deployment", key=deployment.key)
        return deployment

    # Cancellation

    def request_cancel(self, service: str, environment: str) -> str:
        """Ask the active attempt of a deployment to stop and roll back.

        Returns:
            The id of the attempt asked to cancel
        """
        with self._locked(self._deployment_lock(service, environment)):
            deployment = self._load_deployment(service, environment)
            if not deployment.active_attempt:
                raise ValidationError(f"No rollout in progress for {deployment.key}")
            self._cancel_marker(deployment.active_attempt).touch()

        logger.info("Cancel requested", key=deployment.key, attempt=deployment.active_attempt)
        return deployment.active_attempt

    def cancel_requested(self, attempt_id: str) -> bool:
        return self._cancel_marker(attempt_id).exists()

    # Attempts

    def save_attempt(self, attempt: RolloutAttempt) -> None:
        """Persist an attempt record."""
        self._write(self._attempt_path(attempt.id), attempt.to_dict())

    def load_attempt(self, attempt_id: str) -> RolloutAttempt:
        """Load an attempt record."""
        data = self._read(self._attempt_path(attempt_id))
        if data is None:
            raise NotFoundError(f"Attempt not found: {attempt_id}")
        return RolloutAttempt.from_dict(data)

    def history(self, service: str, environment: str, limit: int = 20) -> list[RolloutAttempt]:
        """List attempts for a deployment, newest first."""
        attempts: list[RolloutAttempt] = []

        for path in (self._state_dir / "attempts").glob("*.json"):
            data = self._read(path)
            if data is None or data.get("service") != service or data.get("environment") != environment:
                continue
            attempts.append(RolloutAttempt.from_dict(data))

        attempts.sort(key=lambda a: a.created_at, reverse=True)
        return attempts[:limit]

    # Promotions

    def save_promotion(self, promotion: Promotion) -> None:
        """Persist a promotion record."""
        promotion.updated_at = utcnow()
        self._write(self._promotion_path(promotion.id), promotion.to_dict())

    def load_promotion(self, promotion_id: str) -> Promotion:
        """Load a promotion record."""
        data = self._read(self._promotion_path(promotion_id))
        if data is None:
            raise NotFoundError(f"Promotion not found: {promotion_id}")
        return Promotion.from_dict(data)

    def transition_promotion(
        self,
        promotion_id: str,
        expected: PromotionStatus,
        new: PromotionStatus,
        **changes: Any,
    ) -> Promotion:
        """Move a promotion between states only if it is still in ``expected``.

        Raises:
            ConflictError: If the promotion already moved on
        """
        with self._locked(f"promotion__{promotion_id}"):
            promotion = self.load_promotion(promotion_id)
            if promotion.status != expected:
                raise ConflictError(
                    f"Promotion {promotion_id} is {promotion.status.value}, not {expected.value}"
                )
            promotion.status = new
            for name, value in changes.items():
                setattr(promotion, name, value)
            self.save_promotion(promotion)
        return promotion

    def list_promotions(
        self,
        service: str | None = None,
        status: PromotionStatus | None = None,
        limit: int = 50,
    ) -> list[Promotion]:
        """List promotions, newest first."""
        promotions: list[Promotion] = []

        for path in (self._state_dir / "promotions").glob("*.json"):
            data = self._read(path)
            if data is None:
                continue
            promotion = Promotion.from_dict(data)
            if service and promotion.service != service:
                continue
            if status and promotion.status != status:
                continue
            promotions.append(promotion)

        promotions.sort(key=lambda p: p.created_at, reverse=True)
        return promotions[:limit]
