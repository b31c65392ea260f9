"""Deployment commands - status, history, rollback, cancel, clear."""

import click

from promoctl.commands import attempt_row, report_attempt
from promoctl.core.context import PromoCtlContext, pass_context
from promoctl.core.output import OutputFormat
from promoctl.deploy.models import Deployment


def _deployment_row(deployment: Deployment) -> dict[str, str]:
    return {
        "environment": deployment.environment,
        "revision": str(deployment.revision) if deployment.revision else "-",
        "previous": str(deployment.previous_revision) if deployment.previous_revision else "-",
        "status": deployment.status.value,
        "attempt": deployment.active_attempt or "-",
        "version": str(deployment.version),
        "updated": deployment.updated_at.strftime("%Y-%m-%d %H:%M") if deployment.updated_at else "-",
    }


@click.command("status")
@click.argument("service")
@click.argument("environment", required=False)
@pass_context
def status(ctx: PromoCtlContext, service: str, environment: str | None) -> None:
    """Show the committed deployment of a service per stage.

    \b
    Examples:
        promoctl status checkout
        promoctl status checkout prod
    """
    stages = ctx.config.get_service(service).stages
    environments = [environment] if environment else stages
    deployments = [ctx.store.get(service, env) for env in environments]

    if ctx.output_format in (OutputFormat.JSON, OutputFormat.YAML):
        data = [d.to_dict() for d in deployments]
        ctx.output.print_data(data[0] if environment else data)
        return

    if environment:
        deployment = deployments[0]
        ctx.output.print_data(_deployment_row(deployment), title=f"Deployment: {deployment.key}")
        if deployment.revision:
            ctx.output.print(f"Image: {deployment.revision.image or deployment.revision.digest}")
        if deployment.is_failed:
            ctx.output.print_warning(deployment.message or "Deployment is failed")
            ctx.output.print_info(f"Use 'promoctl clear {service} {environment}' after fixing it")
        return

    ctx.output.print_data([_deployment_row(d) for d in deployments], title=f"Service: {service}")


@click.command("history")
@click.argument("service")
@click.argument("environment")
@click.option("--limit", default=20, help="Max results")
@pass_context
def history(ctx: PromoCtlContext, service: str, environment: str, limit: int) -> None:
    """List rollout attempts of a deployment, newest first.

    \b
    Examples:
        promoctl history checkout prod --limit 5
    """
    attempts = ctx.store.history(service, environment, limit=limit)

    if not attempts:
        ctx.output.print_info(f"No rollout attempts for {service}/{environment}")
        return

    if ctx.output_format in (OutputFormat.JSON, OutputFormat.YAML):
        ctx.output.print_data([a.to_dict() for a in attempts])
        return

    ctx.output.print_data([attempt_row(a) for a in attempts], title=f"History: {service}/{environment}")


@click.command("rollback")
@click.argument("service")
@click.argument("environment")
@click.option("-y", "--yes", is_flag=True, help="Skip confirmation")
@pass_context
def rollback(ctx: PromoCtlContext, service: str, environment: str, yes: bool) -> None:
    """Roll a deployment back to its previous revision.

    Runs as a new all-at-once attempt and is health checked like any rollout.

    \b
    Examples:
        promoctl rollback checkout prod -y
    """
    deployment = ctx.store.get(service, environment)

    if ctx.dry_run:
        previous = deployment.previous_revision
        ctx.log_dry_run(
            "rollback",
            {"key": deployment.key, "to": str(previous) if previous else "none"},
        )
        return

    target = deployment.previous_revision
    if target and not yes and not ctx.confirm(f"Roll {deployment.key} back to {target}?"):
        ctx.output.print_info("Cancelled")
        return

    attempt = ctx.pipeline.rollback(service, environment)
    report_attempt(ctx, attempt)


@click.command("cancel")
@click.argument("service")
@click.argument("environment")
@pass_context
def cancel(ctx: PromoCtlContext, service: str, environment: str) -> None:
    """Cancel the in-progress rollout of a deployment.

    The attempt stops after its current health probe and rolls back.

    \b
    Examples:
        promoctl cancel checkout prod
    """
    if ctx.dry_run:
        ctx.log_dry_run("cancel", {"service": service, "environment": environment})
        return

    attempt_id = ctx.engine.cancel(service, environment)
    ctx.output.print_success(f"Cancellation requested for attempt {attempt_id}")


@click.command("clear")
@click.argument("service")
@click.argument("environment")
@click.option("--force", is_flag=True, help="Also drop a claim left by a dead process")
@click.option("-y", "--yes", is_flag=True, help="Skip confirmation")
@pass_context
def clear(ctx: PromoCtlContext, service: str, environment: str, force: bool, yes: bool) -> None:
    """Clear a failed deployment so promotions can target it again.

    \b
    Examples:
        promoctl clear checkout prod -y
    """
    if ctx.dry_run:
        ctx.log_dry_run("clear", {"service": service, "environment": environment, "force": force})
        return

    if not yes and not ctx.confirm(f"Clear {service}/{environment}?"):
        ctx.output.print_info("Cancelled")
        return

    deployment = ctx.store.clear(service, environment, force=force)
    ctx.output.print_success(f"{deployment.key} cleared")
