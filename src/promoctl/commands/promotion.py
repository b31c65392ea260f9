"""Promotion commands - promote, approve, reject, promotions."""

import click

from promoctl.commands import report_attempt
from promoctl.core.context import PromoCtlContext, pass_context
from promoctl.core.output import OutputFormat
from promoctl.deploy.models import PromotionResult, PromotionStatus, RolloutStrategy


def _report(ctx: PromoCtlContext, result: PromotionResult) -> None:
    promotion = result.promotion

    if promotion.status == PromotionStatus.NOOP:
        ctx.output.print_info(promotion.message)
        return
    if promotion.status == PromotionStatus.AWAITING_APPROVAL:
        ctx.output.print_info(f"Promotion {promotion.id} is awaiting approval")
        ctx.output.print_info(f"Use 'promoctl approve {promotion.id}' to start the rollout")
        return
    if result.attempt is not None:
        report_attempt(ctx, result.attempt)


@click.command("promote")
@click.argument("service")
@click.argument("from_env")
@click.argument("to_env")
@click.argument("tag")
@click.option(
    "--strategy",
    type=click.Choice([s.value for s in RolloutStrategy]),
    default=None,
    help="Override the configured rollout strategy",
)
@pass_context
def promote(
    ctx: PromoCtlContext,
    service: str,
    from_env: str,
    to_env: str,
    tag: str,
    strategy: str | None,
) -> None:
    """Promote a revision from one stage to the next.

    FROM_ENV may be 'build' to bring a freshly built tag into the first stage.

    \b
    Examples:
        promoctl promote checkout build dev git-3f9a2c1
        promoctl promote checkout qa prod git-3f9a2c1 --strategy blue-green
    """
    rollout_strategy = RolloutStrategy(strategy) if strategy else None

    if ctx.dry_run:
        preview = ctx.pipeline.preview(service, from_env, to_env, tag, rollout_strategy)
        ctx.log_dry_run("promote", {"service": service, "to": to_env, "action": preview["action"]})
        ctx.output.print_data(preview, title="Promotion Preview")
        return

    result = ctx.pipeline.promote(service, from_env, to_env, tag, rollout_strategy)
    _report(ctx, result)


@click.command("approve")
@click.argument("promotion_id")
@click.option("--by", "approver", default="operator", envvar="USER", help="Name recorded as approver")
@pass_context
def approve(ctx: PromoCtlContext, promotion_id: str, approver: str) -> None:
    """Approve a pending promotion and run its rollout.

    \b
    Examples:
        promoctl approve 4f1c2b9a7e31 --by alice
    """
    if ctx.dry_run:
        promotion = ctx.store.load_promotion(promotion_id)
        ctx.log_dry_run("approve", {"promotion": promotion.id, "status": promotion.status.value})
        return

    result = ctx.pipeline.approve(promotion_id, approver)
    ctx.output.print_success(f"Promotion {promotion_id} approved by {approver}")
    _report(ctx, result)


@click.command("reject")
@click.argument("promotion_id")
@click.option("--by", "approver", default="operator", envvar="USER", help="Name recorded as approver")
@click.option("--reason", default="", help="Why the promotion was rejected")
@pass_context
def reject(ctx: PromoCtlContext, promotion_id: str, approver: str, reason: str) -> None:
    """Reject a pending promotion.

    \b
    Examples:
        promoctl reject 4f1c2b9a7e31 --reason "failing smoke tests"
    """
    if ctx.dry_run:
        ctx.log_dry_run("reject", {"promotion": promotion_id})
        return

    promotion = ctx.pipeline.reject(promotion_id, approver, reason)
    ctx.output.print_success(f"Promotion {promotion.id} rejected")


@click.command("promotions")
@click.argument("service", required=False)
@click.option(
    "--status",
    "status_filter",
    type=click.Choice([s.value for s in PromotionStatus]),
    default=None,
    help="Filter by status",
)
@click.option("--limit", default=20, help="Max results")
@pass_context
def promotions(ctx: PromoCtlContext, service: str | None, status_filter: str | None, limit: int) -> None:
    """List promotions, newest first.

    \b
    Examples:
        promoctl promotions
        promoctl promotions checkout --status awaiting_approval
    """
    items = ctx.store.list_promotions(
        service=service,
        status=PromotionStatus(status_filter) if status_filter else None,
        limit=limit,
    )

    if not items:
        ctx.output.print_info("No promotions found")
        return

    if ctx.output_format in (OutputFormat.JSON, OutputFormat.YAML):
        ctx.output.print_data([p.to_dict() for p in items])
        return

    rows = [
        {
            "id": p.id,
            "service": p.service,
            "from": p.from_env,
            "to": p.to_env,
            "revision": str(p.revision),
            "status": p.status.value,
            "approved_by": p.approved_by or "-",
            "created": p.created_at.strftime("%Y-%m-%d %H:%M"),
        }
        for p in items
    ]
    ctx.output.print_data(rows, title="Promotions")
