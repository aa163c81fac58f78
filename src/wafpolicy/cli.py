"""Command-line interface for wafpolicy."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Annotated

import typer
import yaml
from rich.console import Console
from rich.table import Table
from rich.text import Text

from wafpolicy import __version__
from wafpolicy.utils.logging import configure_logging, get_logger, log_to_file

if TYPE_CHECKING:
    from wafpolicy.core.models import Rule

app = typer.Typer(
    name="wafpolicy",
    help="Compile declarative firewall policies into ordered AWS WAFv2 rule lists.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

config_app = typer.Typer(
    name="config",
    help="Configuration management.",
    no_args_is_help=True,
)
app.add_typer(config_app, name="config")

console = Console()
logger = get_logger(__name__)

ConfigArgument = Annotated[
    Path,
    typer.Argument(
        help="Path to the policy configuration file (YAML or JSON).",
        exists=True,
        file_okay=True,
        dir_okay=False,
        readable=True,
    ),
]


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"wafpolicy version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    verbose: Annotated[
        bool,
        typer.Option(
            "--verbose",
            "-v",
            help="Enable verbose output.",
        ),
    ] = False,
    quiet: Annotated[
        bool,
        typer.Option(
            "--quiet",
            "-q",
            help="Suppress non-essential output.",
        ),
    ] = False,
    log_file: Annotated[
        Path | None,
        typer.Option(
            "--log-file",
            help="Also write debug logs to this file.",
            dir_okay=False,
        ),
    ] = None,
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = False,
) -> None:
    """wafpolicy - firewall policy compiler."""
    log_level = "DEBUG" if verbose else "WARNING" if quiet else "INFO"
    configure_logging(level=log_level)

    if log_file:
        log_to_file(str(log_file))
        logger.debug("Writing logs to %s", log_file)


def _handle_cli_error(error: Exception) -> None:
    """Handle exceptions and display user-friendly error messages.

    Args:
        error: The exception to handle.

    Raises:
        typer.Exit: Always exits with code 1.
    """
    from wafpolicy.errors import WafPolicyError

    if isinstance(error, WafPolicyError):
        console.print(f"[bold red]Error:[/bold red] {error.message}", highlight=False)
        if error.hint:
            console.print(f"[yellow]Hint:[/yellow] {error.hint}", highlight=False)
    else:
        console.print(f"[red]Error: {error}[/red]")
        logger.exception("Command failed")

    raise typer.Exit(code=1)


def _action_label(rule: Rule) -> str:
    """Describe the action or override of a rule."""
    if rule.override_action is not None:
        return f"override {rule.override_action.value}"
    return rule.action.value if rule.action else "-"


def _action_color(label: str) -> str:
    """Get color for an action label."""
    if "BLOCK" in label:
        return "red"
    if "COUNT" in label:
        return "yellow"
    if "ALLOW" in label:
        return "green"
    return "white"


@app.command("compile")
def compile_command(
    config: ConfigArgument,
    output_format: Annotated[
        str,
        typer.Option(
            "--format",
            "-f",
            help="Output format (json, cloudformation, terraform).",
        ),
    ] = "json",
    output: Annotated[
        Path | None,
        typer.Option(
            "--output",
            "-o",
            help="Output directory. Prints to stdout if omitted.",
            file_okay=False,
        ),
    ] = None,
    enforce: Annotated[
        bool | None,
        typer.Option(
            "--enforce/--observe",
            help="Override the configured mode: block or only count.",
        ),
    ] = None,
) -> None:
    """Compile a policy configuration and render it."""
    from wafpolicy.config import load_policy_config
    from wafpolicy.waf.assembler import PolicyCompiler
    from wafpolicy.waf.renderers import RenderFormat, get_renderer

    try:
        render_format = RenderFormat(output_format.lower())
    except ValueError:
        console.print(f"[red]Unsupported format: {output_format}[/red]")
        console.print(f"Choose one of: {', '.join(f.value for f in RenderFormat)}")
        raise typer.Exit(code=1)

    try:
        policy_config = load_policy_config(config)
        if enforce is not None:
            policy_config = policy_config.model_copy(update={"enforce": enforce})

        policy = PolicyCompiler().compile(policy_config)
        renderer = get_renderer(render_format)
        files = renderer.render(policy)
    except Exception as e:
        _handle_cli_error(e)
        return

    if output is None:
        for rendered in files:
            if len(files) > 1:
                typer.echo(f"# --- {rendered.filename} ---")
            typer.echo(rendered.content, nl=False)
        return

    written = renderer.write(files, output)
    console.print(
        f"[green]Compiled[/green] {policy.name}: {len(policy.rules)} rules, "
        f"{'enforce' if policy.enforce else 'observe'} mode"
    )
    for path in written:
        console.print(f"  - {path}", highlight=False)


@app.command()
def validate(
    config: ConfigArgument,
) -> None:
    """Compile a policy configuration and show the resulting rules."""
    from wafpolicy.config import load_policy_config
    from wafpolicy.waf.assembler import PolicyCompiler

    try:
        policy = PolicyCompiler().compile(load_policy_config(config))
    except Exception as e:
        _handle_cli_error(e)
        return

    table = Table(title=f"Web ACL {policy.name} ({policy.scope.value})")
    table.add_column("Priority", justify="right", style="cyan")
    table.add_column("Name", style="green")
    table.add_column("Band")
    table.add_column("Action")

    for rule in policy.rules:
        label = _action_label(rule)
        table.add_row(
            str(rule.priority),
            rule.name,
            rule.category.value,
            f"[{_action_color(label)}]{label}[/{_action_color(label)}]",
        )

    console.print(table)
    console.print(
        f"\nDefault action: {policy.default_action.value}, "
        f"mode: {'enforce' if policy.enforce else 'observe'}"
    )
    console.print("[green]Policy is valid.[/green]")


@app.command()
def bands() -> None:
    """Show the priority band table."""
    from wafpolicy.waf.bands import PRIORITY_BANDS

    table = Table(title="Priority Bands")
    table.add_column("Band", style="cyan")
    table.add_column("Priorities", style="green")
    table.add_column("Description")

    for band in PRIORITY_BANDS:
        table.add_row(band.category.value, band.label(), band.description)

    console.print(table)


@app.command()
def groups() -> None:
    """List the managed rule groups known to the compiler."""
    from wafpolicy.core.models import RuleCategory
    from wafpolicy.waf.bands import band_for
    from wafpolicy.waf.managed_groups import get_default_registry

    registry = get_default_registry()
    start = band_for(RuleCategory.MANAGED).start

    table = Table(title="Managed Rule Groups")
    table.add_column("Key", style="cyan")
    table.add_column("Priority", justify="right")
    table.add_column("AWS Name", style="green")
    table.add_column("Mandatory", style="yellow")

    for group in registry.get_all():
        table.add_row(
            group.key,
            str(start + group.slot),
            group.aws_name,
            "yes" if group.mandatory else "no",
        )

    console.print(table)


@config_app.command("init")
def config_init(
    path: Annotated[
        Path,
        typer.Argument(
            help="Directory to create configuration file in.",
        ),
    ] = Path(),
    force: Annotated[
        bool,
        typer.Option(
            "--force",
            "-f",
            help="Overwrite existing configuration file.",
        ),
    ] = False,
) -> None:
    """Initialize a new configuration file."""
    from wafpolicy.config import generate_example_config

    config_path = path / ".wafpolicy.yml"

    if config_path.exists() and not force:
        console.print(f"[yellow]Configuration file already exists: {config_path}[/yellow]")
        console.print("Use --force to overwrite.")
        raise typer.Exit(code=1)

    config_path.write_text(generate_example_config())
    console.print(f"Created configuration file: {config_path}")


@config_app.command("show")
def config_show(
    config: Annotated[
        Path | None,
        typer.Option(
            "--config",
            "-c",
            help="Path to configuration file.",
            exists=True,
            file_okay=True,
            dir_okay=False,
            readable=True,
        ),
    ] = None,
) -> None:
    """Show the effective configuration."""
    from wafpolicy.config import find_config_file, load_policy_config
    from wafpolicy.errors import WafPolicyError

    config_path = config or find_config_file()
    if config_path is None:
        console.print("[yellow]No configuration file found.[/yellow]")
        console.print("Run 'wafpolicy config init' to create one.")
        raise typer.Exit(code=0)

    console.print(f"Configuration file: {config_path}\n")

    try:
        policy_config = load_policy_config(config_path)
    except WafPolicyError as e:
        _handle_cli_error(e)
        return

    table = Table(title="Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    def flatten_dict(d: dict, prefix: str = "") -> list:
        items = []
        for key, value in d.items():
            full_key = f"{prefix}.{key}" if prefix else key
            if isinstance(value, dict):
                items.extend(flatten_dict(value, full_key))
            elif isinstance(value, list):
                items.append((full_key, yaml.safe_dump(value, default_flow_style=True).strip()))
            elif value is None:
                items.append((full_key, "(disabled)"))
            else:
                items.append((full_key, str(value)))
        return items

    for key, value in flatten_dict(policy_config.model_dump(mode="json")):
        table.add_row(key, Text(value))

    console.print(table)


if __name__ == "__main__":
    app()
