"""Deployment data models."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
import uuid

from promoctl.core.exceptions import ValidationError
from promoctl.core.utils import utcnow


def _new_id() -> str:
    return uuid.uuid4().hex[:12]


def _parse_time(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _format_time(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class RolloutStrategy(str, Enum):
    """Rollout strategies."""

    ALL_AT_ONCE = "all-at-once"
    CANARY = "canary"
    BLUE_GREEN = "blue-green"


class AttemptStatus(str, Enum):
    """Rollout attempt status."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    SUCCEEDED = "succeeded"
    ROLLED_BACK = "rolled_back"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (AttemptStatus.SUCCEEDED, AttemptStatus.ROLLED_BACK, AttemptStatus.FAILED)


class DeploymentStatus(str, Enum):
    """Committed deployment status."""

    IDLE = "idle"
    ROLLING_OUT = "rolling_out"
    FAILED = "failed"


class HealthResult(str, Enum):
    """Outcome of a health probe."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    TIMEOUT = "timeout"


class PromotionStatus(str, Enum):
    """Promotion status."""

    AWAITING_APPROVAL = "awaiting_approval"
    APPROVED = "approved"
    REJECTED = "rejected"
    SUCCEEDED = "succeeded"
    ROLLED_BACK = "rolled_back"
    FAILED = "failed"
    NOOP = "noop"


@dataclass(frozen=True)
class Revision:
    """Immutable, content-addressed artifact reference.

    Revisions compare equal by digest only; tag and metadata are informational.
    """

    digest: str
    image: str = field(default="", compare=False)
    tag: str | None = field(default=None, compare=False)
    created_at: datetime | None = field(default=None, compare=False)
    commit: str | None = field(default=None, compare=False)

    @property
    def short(self) -> str:
        """Short form of the digest for display."""
        _, _, hexdigest = self.digest.rpartition(":")
        return hexdigest[:12]

    def __str__(self) -> str:
        if self.tag:
            return f"{self.tag} ({self.short})"
        return self.short

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "digest": self.digest,
            "image": self.image,
            "tag": self.tag,
            "created_at": _format_time(self.created_at),
            "commit": self.commit,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Revision":
        """Create from dictionary."""
        return cls(
            digest=data["digest"],
            image=data.get("image", ""),
            tag=data.get("tag"),
            created_at=_parse_time(data.get("created_at")),
            commit=data.get("commit"),
        )


def _revision_or_none(data: dict[str, Any] | None) -> Revision | None:
    return Revision.from_dict(data) if data else None


@dataclass(frozen=True)
class RolloutPlan:
    """Strategy and thresholds for one rollout attempt. Immutable once created."""

    strategy: RolloutStrategy = RolloutStrategy.ALL_AT_ONCE
    steps: tuple[int, ...] = (100,)
    success_threshold: int = 3
    failure_threshold: int = 3
    probe_interval: float = 5.0
    probe_timeout: float = 120.0
    attempt_timeout: float = 1800.0
    rollback_retries: int = 3

    def __post_init__(self) -> None:
        object.__setattr__(self, "strategy", RolloutStrategy(self.strategy))
        object.__setattr__(self, "steps", tuple(self.steps))

    def validate(self) -> "RolloutPlan":
        """Check the plan is executable.

        Raises:
            ValidationError: If steps or thresholds are not sane
        """
        if not self.steps:
            raise ValidationError("Rollout plan has no steps")
        if any(not 0 < step <= 100 for step in self.steps):
            raise ValidationError("Step percentages must be within 1..100", {"steps": list(self.steps)})
        if any(b <= a for a, b in zip(self.steps, self.steps[1:])):
            raise ValidationError("Step percentages must be strictly increasing", {"steps": list(self.steps)})
        if self.steps[-1] != 100:
            raise ValidationError("The final step must shift 100% of traffic", {"steps": list(self.steps)})
        if self.strategy != RolloutStrategy.CANARY and self.steps != (100,):
            raise ValidationError(f"{self.strategy.value} plans take a single 100% step")
        if self.success_threshold < 1 or self.failure_threshold < 1:
            raise ValidationError("Health thresholds must be at least 1")
        if self.probe_interval <= 0 or self.probe_timeout <= 0 or self.attempt_timeout <= 0:
            raise ValidationError("Intervals and timeouts must be positive")
        if self.rollback_retries < 0:
            raise ValidationError("Rollback retries cannot be negative")
        return self

    @classmethod
    def canary(cls, steps: list[int] | tuple[int, ...] = (10, 50, 100), **kwargs: Any) -> "RolloutPlan":
        return cls(strategy=RolloutStrategy.CANARY, steps=tuple(steps), **kwargs)

    @classmethod
    def blue_green(cls, **kwargs: Any) -> "RolloutPlan":
        return cls(strategy=RolloutStrategy.BLUE_GREEN, steps=(100,), **kwargs)

    @classmethod
    def all_at_once(cls, **kwargs: Any) -> "RolloutPlan":
        return cls(strategy=RolloutStrategy.ALL_AT_ONCE, steps=(100,), **kwargs)

    @classmethod
    def from_config(cls, config: Any, strategy: str | None = None) -> "RolloutPlan":
        """Build a plan from a ``RolloutConfig``."""
        strategy = RolloutStrategy(strategy or config.strategy)
        steps = tuple(config.canary_steps) if strategy == RolloutStrategy.CANARY else (100,)
        return cls(
            strategy=strategy,
            steps=steps,
            success_threshold=config.success_threshold,
            failure_threshold=config.failure_threshold,
            probe_interval=config.probe_interval,
            probe_timeout=config.probe_timeout,
            attempt_timeout=config.attempt_timeout,
            rollback_retries=config.rollback_retries,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "strategy": self.strategy.value,
            "steps": list(self.steps),
            "success_threshold": self.success_threshold,
            "failure_threshold": self.failure_threshold,
            "probe_interval": self.probe_interval,
            "probe_timeout": self.probe_timeout,
            "attempt_timeout": self.attempt_timeout,
            "rollback_retries": self.rollback_retries,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RolloutPlan":
        """Create from dictionary."""
        return cls(**{**data, "steps": tuple(data.get("steps", ()))})


@dataclass
class Deployment:
    """Live binding of a service to a revision within one environment."""

    service: str
    environment: str
    revision: Revision | None = None
    previous_revision: Revision | None = None
    status: DeploymentStatus = DeploymentStatus.IDLE
    active_attempt: str | None = None
    version: int = 0
    message: str = ""
    updated_at: datetime | None = None

    @property
    def key(self) -> str:
        return f"{self.service}/{self.environment}"

    @property
    def is_failed(self) -> bool:
        return self.status == DeploymentStatus.FAILED

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "service": self.service,
            "environment": self.environment,
            "revision": self.revision.to_dict() if self.revision else None,
            "previous_revision": self.previous_revision.to_dict() if self.previous_revision else None,
            "status": self.status.value,
            "active_attempt": self.active_attempt,
            "version": self.version,
            "message": self.message,
            "updated_at": _format_time(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Deployment":
        """Create from dictionary."""
        return cls(
            service=data["service"],
            environment=data["environment"],
            revision=_revision_or_none(data.get("revision")),
            previous_revision=_revision_or_none(data.get("previous_revision")),
            status=DeploymentStatus(data.get("status", "idle")),
            active_attempt=data.get("active_attempt"),
            version=data.get("version", 0),
            message=data.get("message", ""),
            updated_at=_parse_time(data.get("updated_at")),
        )


@dataclass
class AttemptEvent:
    """Attempt event for audit trail."""

    timestamp: datetime
    event_type: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type,
            "message": self.message,
            "details": self.details,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AttemptEvent":
        return cls(
            timestamp=datetime.fromisoformat(data["timestamp"]),
            event_type=data["event_type"],
            message=data["message"],
            details=data.get("details", {}),
        )


@dataclass
class StepOutcome:
    """Result of one rollout step."""

    index: int
    percentage: int
    health: HealthResult
    started_at: datetime
    finished_at: datetime | None = None
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "percentage": self.percentage,
            "health": self.health.value,
            "started_at": self.started_at.isoformat(),
            "finished_at": _format_time(self.finished_at),
            "message": self.message,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StepOutcome":
        return cls(
            index=data["index"],
            percentage=data["percentage"],
            health=HealthResult(data["health"]),
            started_at=datetime.fromisoformat(data["started_at"]),
            finished_at=_parse_time(data.get("finished_at")),
            message=data.get("message", ""),
        )


@dataclass
class RolloutAttempt:
    """One execution of a rollout plan from the current to a target revision."""

    service: str
    environment: str
    target: Revision
    plan: RolloutPlan
    previous: Revision | None = None
    id: str = field(default_factory=_new_id)
    status: AttemptStatus = AttemptStatus.PENDING
    steps: list[StepOutcome] = field(default_factory=list)
    events: list[AttemptEvent] = field(default_factory=list)
    message: str = ""
    promotion_id: str | None = None
    created_at: datetime = field(default_factory=utcnow)
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def key(self) -> str:
        return f"{self.service}/{self.environment}"

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def duration_seconds(self) -> float | None:
        """Get attempt duration in seconds."""
        if self.started_at:
            end = self.completed_at or utcnow()
            return (end - self.started_at).total_seconds()
        return None

    def add_event(self, event_type: str, message: str, details: dict[str, Any] | None = None) -> None:
        """Add an event to the attempt history."""
        self.events.append(
            AttemptEvent(
                timestamp=utcnow(),
                event_type=event_type,
                message=message,
                details=details or {},
            )
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "service": self.service,
            "environment": self.environment,
            "target": self.target.to_dict(),
            "previous": self.previous.to_dict() if self.previous else None,
            "plan": self.plan.to_dict(),
            "status": self.status.value,
            "steps": [s.to_dict() for s in self.steps],
            "events": [e.to_dict() for e in self.events],
            "message": self.message,
            "promotion_id": self.promotion_id,
            "created_at": self.created_at.isoformat(),
            "started_at": _format_time(self.started_at),
            "completed_at": _format_time(self.completed_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RolloutAttempt":
        """Create from dictionary."""
        return cls(
            id=data["id"],
            service=data["service"],
            environment=data["environment"],
            target=Revision.from_dict(data["target"]),
            previous=_revision_or_none(data.get("previous")),
            plan=RolloutPlan.from_dict(data["plan"]),
            status=AttemptStatus(data.get("status", "pending")),
            steps=[StepOutcome.from_dict(s) for s in data.get("steps", [])],
            events=[AttemptEvent.from_dict(e) for e in data.get("events", [])],
            message=data.get("message", ""),
            promotion_id=data.get("promotion_id"),
            created_at=datetime.fromisoformat(data["created_at"]),
            started_at=_parse_time(data.get("started_at")),
            completed_at=_parse_time(data.get("completed_at")),
        )


@dataclass
class Promotion:
    """Request to move a revision from one stage to the next."""

    service: str
    from_env: str
    to_env: str
    revision: Revision
    id: str = field(default_factory=_new_id)
    status: PromotionStatus = PromotionStatus.AWAITING_APPROVAL
    strategy: RolloutStrategy | None = None
    attempt_id: str | None = None
    approved_by: str | None = None
    message: str = ""
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "service": self.service,
            "from_env": self.from_env,
            "to_env": self.to_env,
            "revision": self.revision.to_dict(),
            "status": self.status.value,
            "strategy": self.strategy.value if self.strategy else None,
            "attempt_id": self.attempt_id,
            "approved_by": self.approved_by,
            "message": self.message,
            "created_at": self.created_at.isoformat(),
            "updated_at": _format_time(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Promotion":
        """Create from dictionary."""
        return cls(
            id=data["id"],
            service=data["service"],
            from_env=data["from_env"],
            to_env=data["to_env"],
            revision=Revision.from_dict(data["revision"]),
            status=PromotionStatus(data["status"]),
            strategy=RolloutStrategy(data["strategy"]) if data.get("strategy") else None,
            attempt_id=data.get("attempt_id"),
            approved_by=data.get("approved_by"),
            message=data.get("message", ""),
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=_parse_time(data.get("updated_at")),
        )


@dataclass
class PromotionResult:
    """Outcome of a promote or approve call."""

    promotion: Promotion
    attempt: RolloutAttempt | None = None

    @property
    def ok(self) -> bool:
        return self.promotion.status in (
            PromotionStatus.SUCCEEDED,
            PromotionStatus.NOOP,
            PromotionStatus.AWAITING_APPROVAL,
        )

    @property
    def exit_code(self) -> int:
        return 0 if self.ok else 3
