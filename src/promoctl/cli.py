"""Main CLI entry point for promoctl."""

import sys
from typing import Any

import click
from rich.console import Console

from promoctl import __version__
from promoctl.config import load_config
from promoctl.core.context import PromoCtlContext
from promoctl.core.exceptions import PromoCtlError
from promoctl.core.output import OutputFormat

CONTEXT_SETTINGS = {
    "help_option_names": ["-h", "--help"],
    "max_content_width": 120,
}


class OutputFormatType(click.ParamType):
    """Custom Click parameter type for output format."""

    name = "format"

    def convert(
        self,
        value: Any,
        param: click.Parameter | None,
        ctx: click.Context | None,
    ) -> OutputFormat:
        if isinstance(value, OutputFormat):
            return value
        try:
            return OutputFormat(value.lower())
        except ValueError:
            self.fail(
                f"Invalid format '{value}'. Choose from: table, json, yaml, raw",
                param,
                ctx,
            )


OUTPUT_FORMAT = OutputFormatType()


class PromoCtlGroup(click.Group):
    """Command group that turns promoctl errors into their exit codes."""

    def invoke(self, ctx: click.Context) -> Any:
        try:
            return super().invoke(ctx)
        except PromoCtlError as e:
            console = Console(stderr=True)
            console.print(f"[red]Error:[/red] {e}")
            ctx.exit(e.exit_code)


def print_version(ctx: click.Context, param: click.Parameter, value: bool) -> None:
    """Print version and exit."""
    if not value or ctx.resilient_parsing:
        return
    console = Console()
    console.print(f"promoctl version {__version__}")
    ctx.exit()


@click.group(cls=PromoCtlGroup, context_settings=CONTEXT_SETTINGS)
@click.option(
    "-o",
    "--output",
    "output_format",
    type=OUTPUT_FORMAT,
    metavar="FORMAT",
    help="Output format: table, json, yaml, raw",
)
@click.option(
    "-v",
    "--verbose",
    count=True,
    help="Increase verbosity (-v for info, -vv for debug)",
)
@click.option(
    "-q",
    "--quiet",
    is_flag=True,
    help="Suppress non-essential output",
)
@click.option(
    "--dry-run",
    is_flag=True,
    help="Show what would happen without making changes",
)
@click.option(
    "--no-color",
    is_flag=True,
    help="Disable colored output",
)
@click.option(
    "-c",
    "--config",
    "config_file",
    type=click.Path(exists=True),
    metavar="FILE",
    envvar="PROMOCTL_CONFIG",
    help="Path to config file",
)
@click.option(
    "--version",
    is_flag=True,
    callback=print_version,
    expose_value=False,
    is_eager=True,
    help="Show version and exit",
)
@click.pass_context
def cli(
    ctx: click.Context,
    output_format: OutputFormat | None,
    verbose: int,
    quiet: bool,
    dry_run: bool,
    no_color: bool,
    config_file: str | None,
) -> None:
    """PromoCtl - promote container revisions through environment stages.

    Resolves image tags to immutable revisions, rolls them out with
    all-at-once, canary or blue-green strategies, probes their health and
    rolls back automatically when a step is unhealthy.

    \b
    Examples:
        promoctl promote checkout build dev git-3f9a2c1
        promoctl promote checkout qa prod git-3f9a2c1 --strategy canary
        promoctl status checkout
        promoctl rollback checkout prod

    \b
    Exit codes:
        0  success        1  validation error     2  conflict
        3  rollout failed 4  dependency unavailable

    \b
    Configuration:
        ~/.promoctl/config.yaml    User configuration
        ./promoctl.yaml            Project configuration
        PROMOCTL_*                 Environment variables
    """
    config = load_config(config_file)

    ctx.obj = PromoCtlContext(
        config=config,
        output_format=output_format,
        verbose=verbose,
        quiet=quiet,
        dry_run=dry_run,
        color=not no_color,
    )

    if ctx.obj.dry_run and not quiet:
        ctx.obj.output.print_warning("Dry-run mode enabled - no changes will be made")


def register_commands() -> None:
    """Register all commands."""
    from promoctl.commands.deployments import cancel, clear, history, rollback, status
    from promoctl.commands.promotion import approve, promote, promotions, reject

    for command in (promote, approve, reject, promotions, status, history, rollback, cancel, clear):
        cli.add_command(command)


register_commands()


@cli.command()
@click.pass_context
def config(ctx: click.Context) -> None:
    """Show current configuration."""
    promo_ctx: PromoCtlContext = ctx.obj
    settings = promo_ctx.config
    config_data = {
        "output_format": promo_ctx.output_format.value,
        "dry_run": promo_ctx.dry_run,
        "verbose": promo_ctx.verbose,
        "state_dir": str(settings.global_settings.get_state_dir()),
        "orchestrator": settings.orchestrator,
        "registry": settings.registry.kind,
        "aws": {
            "profile": settings.aws.get_profile(),
            "region": settings.aws.get_region(),
        },
        "k8s": {
            "context": settings.k8s.get_context(),
            "namespace": settings.k8s.namespace,
        },
        "rollout": settings.rollout.model_dump(),
        "has_webhook": bool(settings.notifications.get_webhook_url()),
        "services": {name: service.stages for name, service in settings.services.items()},
    }
    promo_ctx.output.print_data(config_data, title="Current Configuration")


def main() -> None:
    """Main entry point."""
    try:
        cli()
    except PromoCtlError as e:
        console = Console(stderr=True)
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(e.exit_code)
    except KeyboardInterrupt:
        console = Console(stderr=True)
        console.print("\n[yellow]Interrupted[/yellow]")
        sys.exit(130)


if __name__ == "__main__":
    main()
