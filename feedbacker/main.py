"""CLI entry point for the feedbacker service."""

import sys
from pathlib import Path

import click
import structlog

from feedbacker.config.settings import FeedbackerSettings
from feedbacker.credentials import CredentialResolver
from feedbacker.exceptions import ConfigurationError, CredentialError, FeedbackerError
from feedbacker.utils.logging_config import configure_logging

log = structlog.get_logger(__name__)

EXIT_SUCCESS = 0
EXIT_CONFIG_ERROR = 1
EXIT_CREDENTIAL_ERROR = 2


def _print_check(name: str, status: bool, detail: str | None = None) -> None:
    if status:
        click.echo(f"  {click.style('[OK]', fg='green')} {name}")
    else:
        click.echo(f"  {click.style('[FAIL]', fg='red')} {name}")
    if detail:
        click.echo(f"       {detail}")


@click.group()
@click.option(
    "--config",
    default="feedbacker.yaml",
    envvar="FEEDBACKER_CONFIG",
    help="Path to configuration file",
    type=click.Path(),
)
@click.option("--log-level", default=None, help="Logging level (overrides the config file)")
@click.pass_context
def cli(ctx: click.Context, config: str, log_level: str | None) -> None:
    """feedbacker: turn repository feedback into pull requests."""
    config_path = Path(config)
    if not config_path.exists():
        click.echo(f"Error: Configuration file not found: {config}", err=True)
        sys.exit(EXIT_CONFIG_ERROR)

    try:
        settings = FeedbackerSettings.from_yaml(str(config_path))
    except ConfigurationError as e:
        click.echo(f"Error: {e.message}", err=True)
        sys.exit(EXIT_CONFIG_ERROR)

    configure_logging(log_level or settings.logging.level, settings.logging.format)
    ctx.obj = {"settings": settings}


@cli.command()
@click.option("--host", default=None, help="Address to bind (overrides server.host)")
@click.option("--port", default=None, type=int, help="Port to bind (overrides server.port)")
@click.pass_context
def serve(ctx: click.Context, host: str | None, port: int | None) -> None:
    """Run the HTTP service (feedback API, issue webhook, health)."""
    import uvicorn

    from feedbacker.server import build_services, create_app

    settings: FeedbackerSettings = ctx.obj["settings"]
    try:
        app = create_app(build_services(settings))
    except FeedbackerError as e:
        click.echo(f"Error: {e.message}", err=True)
        log.debug("serve_startup_error", exc_info=True)
        sys.exit(EXIT_CREDENTIAL_ERROR if isinstance(e, CredentialError) else EXIT_CONFIG_ERROR)

    bind_host = host or settings.server.host
    bind_port = port or settings.server.port
    log.info("serving", host=bind_host, port=bind_port, projects=[p.repository for p in settings.projects])
    uvicorn.run(app, host=bind_host, port=bind_port, log_config=None)


@cli.command("check-config")
@click.pass_context
def check_config(ctx: click.Context) -> None:
    """Validate configuration and resolve every credential reference.

    \b
    Exit codes:
      0 - All checks passed
      1 - Configuration error
      2 - Credential resolution error
    """
    settings: FeedbackerSettings = ctx.obj["settings"]
    resolver = CredentialResolver()

    click.echo("Configuration:")
    _print_check("configuration file is valid", True, f"{len(settings.projects)} project(s)")
    if not settings.projects:
        _print_check("at least one project configured", False)
        sys.exit(EXIT_CONFIG_ERROR)

    references: list[tuple[str, str]] = [("identity.token", settings.identity.token)]
    if settings.server.webhook_secret:
        references.append(("server.webhook_secret", settings.server.webhook_secret))
    for provider_type, provider in settings.llm.providers.items():
        if provider.api_key:
            references.append((f"llm.providers.{provider_type.value}.api_key", provider.api_key))
    for project in settings.projects:
        if project.credential:
            references.append((f"projects[{project.repository}].credential", project.credential))

    click.echo("Credentials:")
    failed = False
    for name, reference in references:
        try:
            resolver.resolve(reference, cache=False)
        except CredentialError as e:
            failed = True
            _print_check(name, False, e.suggestion or e.message)
        else:
            _print_check(name, True)

    sys.exit(EXIT_CREDENTIAL_ERROR if failed else EXIT_SUCCESS)


if __name__ == "__main__":
    cli()
