"""
Chat relay CLI.

Command-line interface for running and inspecting the relay.
"""

import asyncio
import sys
import time

import httpx
import typer
from rich.console import Console
from rich.table import Table

from shared.config.settings import get_settings

app = typer.Typer(
    name="chat-relay",
    help="Chat relay CLI",
    add_completion=False,
)
console = Console()

# Settings whose values are never printed
SECRET_FIELDS = frozenset({"jwt_secret"})


# =============================================================================
# Server Commands
# =============================================================================

@app.command()
def serve(
    host: str = typer.Option(None, help="Bind address (defaults to RELAY_HOST)"),
    port: int = typer.Option(None, help="Bind port (defaults to RELAY_PORT)"),
    reload: bool = typer.Option(False, "--reload", help="Reload on code changes"),
):
    """Run the relay server."""
    import uvicorn

    settings = get_settings()
    host = host or settings.relay_host
    port = port or settings.relay_port

    console.print(f"[blue]Starting chat relay on {host}:{port}[/blue]")
    uvicorn.run("chat_relay.main:app", host=host, port=port, reload=reload)


@app.command()
def config():
    """Show effective configuration."""
    settings = get_settings()

    table = Table(title="Chat Relay Settings")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    for name, value in settings.model_dump().items():
        if name in SECRET_FIELDS:
            value = "********" if value else "(unset)"
        table.add_row(name, str(value))

    console.print(table)

    problems = settings.validate_production_secrets()
    for problem in problems:
        console.print(f"[yellow]⚠ {problem}[/yellow]")


# =============================================================================
# Identity Commands
# =============================================================================

@app.command()
def token(
    user_id: str = typer.Argument(..., help="User id (token subject)"),
    name: str = typer.Option(None, "--name", "-n", help="Display name"),
    ttl: int = typer.Option(None, help="Lifetime in seconds"),
):
    """Sign a development identity token."""
    from chat_relay.components.auth.identity import sign_identity_token

    settings = get_settings()
    if settings.is_production:
        console.print("[red]Refusing to sign tokens in production[/red]")
        raise typer.Exit(1)

    signed = sign_identity_token(
        user_id,
        name,
        secret=settings.jwt_secret,
        issuer=settings.jwt_issuer,
        audience=settings.jwt_audience,
        ttl_seconds=ttl or settings.jwt_access_token_expire_minutes * 60,
        algorithm=settings.jwt_algorithm,
    )
    console.print(signed, soft_wrap=True)


# =============================================================================
# Health Commands
# =============================================================================

@app.command()
def health(
    url: str = typer.Option(None, help="Base URL of the relay"),
):
    """Check relay health."""
    settings = get_settings()
    base_url = (url or f"http://localhost:{settings.relay_port}").rstrip("/")

    async def _health():
        table = Table(title="Relay Health")
        table.add_column("Endpoint", style="cyan")
        table.add_column("Status", style="green")
        table.add_column("Response Time", style="yellow")

        healthy = True
        async with httpx.AsyncClient(timeout=5.0) as client:
            for path in ("/health", "/status"):
                try:
                    start = time.time()
                    response = await client.get(f"{base_url}{path}")
                    elapsed = (time.time() - start) * 1000

                    if response.status_code == 200:
                        table.add_row(path, "✓ Healthy", f"{elapsed:.0f}ms")
                    else:
                        healthy = False
                        table.add_row(path, f"✗ Status {response.status_code}", f"{elapsed:.0f}ms")
                except httpx.HTTPError as e:
                    healthy = False
                    table.add_row(path, f"✗ {type(e).__name__}", "-")

        console.print(table)
        return healthy

    if not asyncio.run(_health()):
        raise typer.Exit(1)


@app.command()
def version():
    """Show version information."""
    from chat_relay import __version__

    table = Table(title="Chat Relay Version")
    table.add_column("Component", style="cyan")
    table.add_column("Version", style="green")

    table.add_row("Relay", __version__)
    table.add_row("Python", sys.version.split()[0])

    console.print(table)


if __name__ == "__main__":
    app()
