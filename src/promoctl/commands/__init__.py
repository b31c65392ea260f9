"""Command modules for promoctl."""

from typing import Any

from promoctl.core.context import PromoCtlContext
from promoctl.core.exceptions import FatalError, RolloutFailedError
from promoctl.core.output import OutputFormat, format_duration
from promoctl.deploy.models import AttemptStatus, RolloutAttempt


def attempt_row(attempt: RolloutAttempt) -> dict[str, Any]:
    """Summarize an attempt for tables."""
    return {
        "id": attempt.id,
        "target": str(attempt.target),
        "previous": str(attempt.previous) if attempt.previous else "-",
        "strategy": attempt.plan.strategy.value,
        "status": attempt.status.value,
        "steps": " ".join(f"{s.percentage}%:{s.health.value}" for s in attempt.steps) or "-",
        "duration": format_duration(attempt.duration_seconds),
        "created": attempt.created_at.strftime("%Y-%m-%d %H:%M"),
    }


def report_attempt(ctx: PromoCtlContext, attempt: RolloutAttempt) -> None:
    """Print an attempt outcome, raising for anything but success.

    Raises:
        RolloutFailedError: If the attempt was rolled back
        FatalError: If the rollback itself failed
    """
    if ctx.output_format in (OutputFormat.JSON, OutputFormat.YAML):
        ctx.output.print_data(attempt.to_dict())
    else:
        ctx.output.print_data(attempt_row(attempt), title=f"Attempt {attempt.id}")

    if attempt.status == AttemptStatus.SUCCEEDED:
        ctx.output.print_success(f"{attempt.key} is now on {attempt.target}")
        return
    if attempt.status == AttemptStatus.ROLLED_BACK:
        raise RolloutFailedError(f"Rolled back {attempt.key}: {attempt.message}", attempt_id=attempt.id)
    raise FatalError(f"{attempt.key} needs manual intervention: {attempt.message}", attempt_id=attempt.id)
