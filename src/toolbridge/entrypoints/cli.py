"""CLI entrypoint for the tool bridge gateway.

Usage:
    python -m toolbridge.entrypoints.cli serve
    python -m toolbridge.entrypoints.cli serve --host 0.0.0.0 --port 8080
"""

import logging

import typer
import uvicorn

from toolbridge import __version__
from toolbridge.adapters.config.settings import get_settings
from toolbridge.entrypoints.api_server import create_app

app = typer.Typer(
    name="toolbridge",
    help="OpenAI/Anthropic-compatible gateway that bridges upstream tool calls to IDE clients",
    add_completion=False,
)


@app.command()
def serve(
    host: str = typer.Option(
        None,
        "--host",
        "-h",
        help="Server bind address (default: from settings)",
    ),
    port: int = typer.Option(
        None,
        "--port",
        "-p",
        help="Server port (default: from settings)",
    ),
    upstream: str = typer.Option(
        None,
        "--upstream",
        "-u",
        help="Upstream base URL (default: from settings)",
    ),
    log_level: str = typer.Option(
        None,
        "--log-level",
        "-l",
        help="Log level (default: from settings)",
    ),
) -> None:
    """Start the gateway.

    Example:
        $ toolbridge serve
        $ toolbridge serve --host 0.0.0.0 --port 8080
        $ toolbridge serve --upstream http://localhost:1234/v1
    """
    settings = get_settings()

    if upstream:
        settings.upstream.base_url = upstream.rstrip("/")
    if log_level:
        settings.server.log_level = log_level.upper()

    final_host = host or settings.server.host
    final_port = port or settings.server.port

    # create_app configures structlog on top of stdlib logging
    fastapi_app = create_app(settings)
    logger = logging.getLogger(__name__)
    logger.info(f"Tool bridge listening on {final_host}:{final_port}")
    logger.info(f"Upstream: {settings.upstream.base_url}")
    logger.info(f"MCP bridge server name: {settings.bridge.bridge_server_name}")

    uvicorn.run(
        fastapi_app,
        host=final_host,
        port=final_port,
        log_level=settings.server.log_level.lower(),
        access_log=False,
    )


@app.command()
def version() -> None:
    """Show version information."""
    typer.echo(f"Tool Bridge Gateway v{__version__}")


@app.command()
def config() -> None:
    """Show current configuration."""
    settings = get_settings()
    api_key = settings.upstream.api_key.get_secret_value()

    typer.echo("=" * 60)
    typer.echo("Tool Bridge Gateway - Configuration")
    typer.echo("=" * 60)
    typer.echo()
    typer.echo("[Server]")
    typer.echo(f"  Host: {settings.server.host}")
    typer.echo(f"  Port: {settings.server.port}")
    typer.echo(f"  Log level: {settings.server.log_level}")
    typer.echo(f"  CORS origins: {settings.server.cors_origins}")
    typer.echo()
    typer.echo("[Upstream]")
    typer.echo(f"  Base URL: {settings.upstream.base_url}")
    typer.echo(f"  API key: {'set' if api_key else 'not set'}")
    typer.echo(f"  Request timeout: {settings.upstream.request_timeout_seconds}s")
    typer.echo()
    typer.echo("[Bridge]")
    typer.echo(f"  MCP server name: {settings.bridge.bridge_server_name}")
    timeout = settings.bridge.tool_call_timeout_seconds
    typer.echo(f"  Tool call timeout: {f'{timeout}s' if timeout else 'disabled'}")
    patterns = ", ".join(settings.bridge.excluded_patterns) or "none"
    typer.echo(f"  Excluded file patterns: {patterns}")
    typer.echo("=" * 60)


def main() -> None:
    """Main CLI entry point."""
    app()


if __name__ == "__main__":
    main()
