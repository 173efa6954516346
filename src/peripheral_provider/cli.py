"""
Command-line interface for the peripheral provider.

This module provides a small lifecycle host: it loads the provider
configuration, drives the GitLab runner resource from plan and state files,
and reports diagnostics.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional

import structlog
import typer
import yaml
from pydantic import ValidationError

from . import __version__
from .controllers.runner_resource import GitLabRunnerResource, LifecycleResult
from .models.diagnostics import Diagnostics
from .models.runner import GitLabRunnerState, ProviderConfiguration
from .provider import PeripheralProvider
from .utils.runner_client import RunnerClientError

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    wrapper_class=structlog.stdlib.BoundLogger,
    cache_logger_on_first_use=True,
)

app = typer.Typer(
    name="peripheral",
    help="Manage GitLab runner registrations through the peripheral API",
    no_args_is_help=True
)

logger = structlog.get_logger()

# Used until a configuration file is loaded.
DEFAULT_LOG_LEVEL = "WARNING"

CONFIG_OPTION = typer.Option(
    "config.yaml",
    "--config", "-c",
    help="Path to provider configuration file",
    envvar="PERIPHERAL_CONFIG"
)
STATE_OPTION = typer.Option(
    "runner.tfstate.json",
    "--state", "-s",
    help="Path to the resource state file"
)
PLAN_OPTION = typer.Option(
    "runner.yaml",
    "--plan", "-p",
    help="Path to the resource plan file"
)


def _load_document(path: Path) -> Dict[str, Any]:
    with open(path, "r") as f:
        if path.suffix == ".json":
            data = json.load(f)
        else:
            data = yaml.safe_load(f)
    if not isinstance(data, dict):
        raise ValueError(f"{path} must contain a mapping")
    return data


def load_configuration(config_path: str) -> ProviderConfiguration:
    """
    Load and validate provider configuration from file.

    Args:
        config_path: Path to configuration file (YAML or JSON)

    Returns:
        Validated configuration object

    Raises:
        typer.Exit: If configuration is missing or invalid
    """
    config_file = Path(config_path)
    if not config_file.exists():
        typer.echo(f"Error: Configuration file not found: {config_path}", err=True)
        raise typer.Exit(1)

    try:
        return ProviderConfiguration(**_load_document(config_file))
    except ValidationError as e:
        typer.echo("Configuration validation error:", err=True)
        for error in e.errors():
            typer.echo(f"  {error['loc']}: {error['msg']}", err=True)
        raise typer.Exit(1)
    except (OSError, ValueError, yaml.YAMLError) as e:
        typer.echo(f"Error loading configuration: {e}", err=True)
        raise typer.Exit(1)


def load_plan(plan_path: str) -> GitLabRunnerState:
    """Load a resource plan from a YAML or JSON file."""
    try:
        return GitLabRunnerState(**_load_document(Path(plan_path)))
    except ValidationError as e:
        typer.echo("Plan validation error:", err=True)
        for error in e.errors():
            typer.echo(f"  {error['loc']}: {error['msg']}", err=True)
        raise typer.Exit(1)
    except (OSError, ValueError, yaml.YAMLError) as e:
        typer.echo(f"Error loading plan: {e}", err=True)
        raise typer.Exit(1)


def load_state(state_path: str) -> GitLabRunnerState:
    """Load persisted resource state; a missing file means the resource is absent."""
    state_file = Path(state_path)
    if not state_file.exists():
        typer.echo(f"Error: No state found at {state_path}; the resource is absent", err=True)
        raise typer.Exit(1)

    try:
        return GitLabRunnerState.model_validate_json(state_file.read_text())
    except ValidationError as e:
        typer.echo(f"Error: Invalid state file {state_path}: {e}", err=True)
        raise typer.Exit(1)


def write_state(state_path: str, state: Optional[GitLabRunnerState]) -> None:
    """Persist state; None removes the state file."""
    state_file = Path(state_path)
    if state is None:
        state_file.unlink(missing_ok=True)
        return
    state_file.write_text(state.model_dump_json(indent=2) + "\n")


def report_diagnostics(diagnostics: Diagnostics) -> None:
    for diagnostic in diagnostics:
        typer.echo(f"{diagnostic.severity.value.upper()}: {diagnostic.summary}: {diagnostic.detail}", err=True)


def setup_logging(log_level: str, log_format: str = "json") -> None:
    """Setup structured logging with specified level and format."""
    level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(level=level)
    logging.getLogger().setLevel(level)

    if log_format == "console":
        structlog.configure(
            processors=[
                structlog.stdlib.filter_by_level,
                structlog.stdlib.add_logger_name,
                structlog.stdlib.add_log_level,
                structlog.stdlib.PositionalArgumentsFormatter(),
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.UnicodeDecoder(),
                structlog.dev.ConsoleRenderer()
            ]
        )


def apply_configured_log_level(ctx: typer.Context, config: ProviderConfiguration) -> None:
    """Switch to the configuration's log level unless --log-level was given."""
    options = ctx.obj or {}
    if options.get("log_level") is None:
        logging.getLogger().setLevel(getattr(logging, config.log_level))


async def _run_lifecycle(config: ProviderConfiguration,
                         action: Callable[[GitLabRunnerResource], Awaitable[LifecycleResult]]) -> LifecycleResult:
    """Configure the provider, run one resource operation and release the client."""
    provider = PeripheralProvider(version=__version__)
    configured = provider.configure(config)
    if configured.diagnostics.has_error():
        return LifecycleResult(state=None, diagnostics=configured.diagnostics)

    try:
        return await action(provider.new_resource())
    finally:
        await provider.aclose()


def _apply(ctx: typer.Context,
           config_path: str,
           state_path: str,
           action: Callable[[GitLabRunnerResource], Awaitable[LifecycleResult]],
           success_message: str) -> None:
    config = load_configuration(config_path)
    apply_configured_log_level(ctx, config)
    result = asyncio.run(_run_lifecycle(config, action))
    report_diagnostics(result.diagnostics)

    if result.has_error:
        typer.echo("❌ Operation failed; state left unchanged", err=True)
        raise typer.Exit(1)

    write_state(state_path, result.state)
    typer.echo(success_message)


@app.callback()
def main_options(
    ctx: typer.Context,
    log_level: Optional[str] = typer.Option(
        None,
        "--log-level", "-l",
        help="Logging level; defaults to log_level from the configuration file",
        envvar="LOG_LEVEL"
    ),
    log_format: str = typer.Option(
        "json",
        "--log-format",
        help="Log format (json or console)",
        envvar="LOG_FORMAT"
    )
) -> None:
    """Manage GitLab runner registrations through the peripheral API."""
    ctx.obj = {"log_level": log_level}
    setup_logging(log_level or DEFAULT_LOG_LEVEL, log_format)


@app.command()
def create(
    ctx: typer.Context,
    config: str = CONFIG_OPTION,
    plan: str = PLAN_OPTION,
    state: str = STATE_OPTION
) -> None:
    """Register a runner from a plan and write its state."""
    if Path(state).exists():
        typer.echo(f"Error: State already exists at {state}; use update instead", err=True)
        raise typer.Exit(1)

    runner_plan = load_plan(plan)
    _apply(ctx, config, state, lambda resource: resource.create(runner_plan), "✅ GitLabRunner created")


@app.command()
def read(
    ctx: typer.Context,
    config: str = CONFIG_OPTION,
    state: str = STATE_OPTION
) -> None:
    """Refresh the stored state from the API."""
    prior = load_state(state)
    _apply(ctx, config, state, lambda resource: resource.read(prior), "✅ GitLabRunner state refreshed")


@app.command()
def update(
    ctx: typer.Context,
    config: str = CONFIG_OPTION,
    plan: str = PLAN_OPTION,
    state: str = STATE_OPTION
) -> None:
    """Apply a plan to an existing runner."""
    prior = load_state(state)
    runner_plan = load_plan(plan)
    _apply(ctx, config, state, lambda resource: resource.update(runner_plan, prior), "✅ GitLabRunner updated")


@app.command()
def delete(
    ctx: typer.Context,
    config: str = CONFIG_OPTION,
    state: str = STATE_OPTION
) -> None:
    """Delete the runner and remove its state."""
    prior = load_state(state)
    _apply(ctx, config, state, lambda resource: resource.delete(prior), "✅ GitLabRunner deleted")


@app.command("import")
def import_runner(
    identifier: str = typer.Argument(..., help="Runner ID to import"),
    state: str = STATE_OPTION
) -> None:
    """Seed state from an existing runner ID; run read afterwards to fill it."""
    result = asyncio.run(GitLabRunnerResource().import_state(identifier))
    report_diagnostics(result.diagnostics)
    write_state(state, result.state)
    typer.echo(f"✅ GitLabRunner {identifier} imported")


@app.command("list")
def list_runners(
    ctx: typer.Context,
    config: str = CONFIG_OPTION
) -> None:
    """Fetch the runner listing and print it as JSON."""
    provider_config = load_configuration(config)
    apply_configured_log_level(ctx, provider_config)

    async def _list() -> Any:
        provider = PeripheralProvider(version=__version__)
        configured = provider.configure(provider_config)
        if configured.client is None:
            report_diagnostics(configured.diagnostics)
            raise typer.Exit(1)
        try:
            return await configured.client.list()
        finally:
            await provider.aclose()

    try:
        response = asyncio.run(_list())
    except RunnerClientError as e:
        typer.echo(f"❌ Unable to talk to client, got error: {e}", err=True)
        raise typer.Exit(1)

    error = response.get_error()
    if error is not None:
        typer.echo(f"❌ Unable to list GitLabRunners, got status: {response.status}, {error}", err=True)
        raise typer.Exit(1)
    if response.payload is None:
        typer.echo(f"❌ Unexpected response {response.status}: {response.text}", err=True)
        raise typer.Exit(1)

    typer.echo(response.payload.model_dump_json(indent=2, exclude_none=True))


@app.command()
def validate(
    ctx: typer.Context,
    config: str = CONFIG_OPTION
) -> None:
    """
    Validate configuration without contacting the API.

    Loads the configuration and builds the authenticated client, which
    checks the signing secret and TLS settings.
    """
    typer.echo("🔍 Validating configuration...")
    provider_config = load_configuration(config)
    apply_configured_log_level(ctx, provider_config)

    provider = PeripheralProvider(version=__version__)
    configured = provider.configure(provider_config)
    asyncio.run(provider.aclose())
    report_diagnostics(configured.diagnostics)
    if configured.diagnostics.has_error():
        typer.echo("❌ Validation failed", err=True)
        raise typer.Exit(1)

    typer.echo("✅ Configuration validation successful")
    typer.echo(f"🌐 Endpoint: {provider_config.endpoint}")
    typer.echo(f"🔑 Token issuer: {provider_config.issuer}")
    typer.echo(f"⏱️  Token lifetime: {provider_config.token_ttl_seconds}s")
    typer.echo(f"🔒 TLS verification: {provider_config.tls_verify}")


@app.command()
def schema() -> None:
    """Print the runner resource attribute schema as JSON."""
    resource = GitLabRunnerResource()
    typer.echo(json.dumps({
        "type_name": resource.metadata(PeripheralProvider.TYPE_NAME),
        "attributes": resource.schema(),
    }, indent=2))


@app.command()
def generate_config(
    output: str = typer.Option(
        "config.yaml",
        "--output", "-o",
        help="Output configuration file path"
    ),
    format: str = typer.Option(
        "yaml",
        "--format", "-f",
        help="Configuration format (yaml or json)"
    )
) -> None:
    """Generate a sample provider configuration file."""
    sample_config = {
        "endpoint": "https://peripheral.example.com/api",
        "token": "REPLACE_WITH_SHARED_SECRET",
        "issuer": "peripheral",
        "token_ttl_seconds": 3600,
        "timeout_seconds": 30.0,
        "tls_verify": True,
        "log_level": "INFO",
    }

    output_path = Path(output)
    try:
        with open(output_path, "w") as f:
            if format.lower() == "json":
                json.dump(sample_config, f, indent=2)
            else:
                yaml.safe_dump(sample_config, f, default_flow_style=False, indent=2)
    except OSError as e:
        typer.echo(f"❌ Failed to generate configuration: {e}", err=True)
        raise typer.Exit(1)

    typer.echo(f"✅ Sample configuration generated: {output}")
    typer.echo("🔧 Please update the endpoint and token before use")


def main() -> None:
    """Main entry point for the CLI application."""
    app()


if __name__ == "__main__":
    main()
