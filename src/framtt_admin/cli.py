"""
Framtt admin CLI.

Command-line interface for operating the session and impersonation core.

Usage:
    framtt-admin serve  # Start the API server
    framtt-admin hash-password
    framtt-admin generate-secret
    framtt-admin issue-token user-42 --role admin
    framtt-admin decode-token eyJhbGciOi...
    framtt-admin sweep-stale
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.table import Table

from framtt_admin import __version__
from framtt_admin.config import get_settings
from framtt_admin.errors import AuthError
from framtt_admin.models.principal import Role
from framtt_admin.models.token import ImpersonationClaims, NormalClaims
from framtt_admin.services.auth import hash_password as make_password_hash
from framtt_admin.services.container import build_audit_sink
from framtt_admin.services.signing_keys import SigningSecretStore, generate_secret
from framtt_admin.services.token_codec import TokenCodec

app = typer.Typer(
    name="framtt-admin",
    help="Session and impersonation core for the Framtt admin backend.",
    no_args_is_help=True,
)
console = Console()


def version_callback(value: bool):
    if value:
        console.print(f"Framtt Admin v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option("--version", "-v", callback=version_callback, is_eager=True),
    ] = None,
):
    """Framtt Admin - sessions, impersonation and signing secrets."""
    pass


def _codec() -> TokenCodec:
    settings = get_settings()
    return TokenCodec.from_settings(settings, SigningSecretStore.from_settings(settings))


# =============================================================================
# Server Command
# =============================================================================


@app.command()
def serve(
    host: Annotated[
        Optional[str],
        typer.Option("--host", "-h", help="Host to bind to"),
    ] = None,
    port: Annotated[
        Optional[int],
        typer.Option("--port", "-p", help="Port to bind to"),
    ] = None,
    reload: Annotated[
        bool,
        typer.Option("--reload", help="Enable auto-reload for development"),
    ] = False,
):
    """Start the Framtt admin API server."""
    import uvicorn

    settings = get_settings()
    host = host or settings.host
    port = port or settings.port

    console.print(f"Starting Framtt admin API server on [bold]{host}:{port}[/bold]")
    console.print(f"API docs: http://{host}:{port}/docs")

    uvicorn.run(
        "framtt_admin.api.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
    )


# =============================================================================
# Secret and Credential Commands
# =============================================================================


@app.command("hash-password")
def hash_password(
    password: Annotated[
        str,
        typer.Option(
            "--password",
            prompt=True,
            hide_input=True,
            confirmation_prompt=True,
            help="Password to hash",
        ),
    ],
):
    """Print a bcrypt digest for a principals file entry."""
    console.print(make_password_hash(password))


@app.command("generate-secret")
def generate_secret_command(
    rotate: Annotated[
        bool,
        typer.Option("--rotate", help="Move the configured secret to PREVIOUS_SIGNING_SECRET"),
    ] = False,
):
    """Generate a signing secret as environment variable lines."""
    secret = generate_secret()
    console.print("# Add these to your environment:", style="dim")
    console.print(f"SIGNING_SECRET={secret}", soft_wrap=True)
    if rotate:
        current = get_settings().signing_secret.get_secret_value()
        console.print(f"PREVIOUS_SIGNING_SECRET={current}", soft_wrap=True)
    console.print(
        f"SIGNING_SECRET_ROTATED_AT={datetime.now(timezone.utc).replace(microsecond=0).isoformat()}"
    )


# =============================================================================
# Token Commands
# =============================================================================


@app.command("issue-token")
def issue_token(
    subject: Annotated[str, typer.Argument(help="Principal ID to put in the token")],
    role: Annotated[
        Role,
        typer.Option("--role", "-r", help="Role claim"),
    ] = Role.USER,
    impersonator: Annotated[
        Optional[str],
        typer.Option("--impersonator", help="Issue an impersonation token on behalf of this ID"),
    ] = None,
    ttl_minutes: Annotated[
        Optional[int],
        typer.Option("--ttl", help="Lifetime in minutes (defaults to the configured TTL)"),
    ] = None,
):
    """
    Issue a token without a login.

    Intended for local development. Impersonation tokens issued this way have
    no audit record and are rejected by the API.
    """
    settings = get_settings()
    now = datetime.now(timezone.utc).replace(microsecond=0)

    if impersonator:
        ttl = settings.impersonation_ttl
    else:
        ttl = settings.normal_session_ttl
    if ttl_minutes is not None:
        ttl = timedelta(minutes=ttl_minutes)

    if impersonator:
        claims = ImpersonationClaims(
            subject=subject, role=role, impersonator=impersonator,
            issued_at=now, expires_at=now + ttl,
        )
    else:
        claims = NormalClaims(subject=subject, role=role, issued_at=now, expires_at=now + ttl)

    try:
        issued = _codec().issue(claims)
    except AuthError as e:
        console.print(f"[red]{e.code}: {e.message}[/red]")
        raise typer.Exit(1)

    console.print(issued.access_token, soft_wrap=True)


@app.command("decode-token")
def decode_token(
    token: Annotated[str, typer.Argument(help="Token to verify and decode")],
):
    """Verify a token against the configured secrets and show its claims."""
    try:
        claims = _codec().decode(token)
    except AuthError as e:
        console.print(f"[red]{e.code}: {e.message}[/red]")
        raise typer.Exit(1)

    table = Table(title="Token Claims")
    table.add_column("Claim", style="cyan")
    table.add_column("Value")
    table.add_row("Subject", claims.subject)
    table.add_row("Role", claims.role.value)
    table.add_row("Kind", claims.kind)
    if isinstance(claims, ImpersonationClaims):
        table.add_row("Impersonator", claims.impersonator)
        table.add_row("Session", claims.session_id or "-")
    table.add_row("Issued", claims.issued_at.strftime("%Y-%m-%d %H:%M:%S %Z"))
    table.add_row("Expires", claims.expires_at.strftime("%Y-%m-%d %H:%M:%S %Z"))
    console.print(table)


# =============================================================================
# Audit Commands
# =============================================================================


@app.command("sweep-stale")
def sweep_stale():
    """Close impersonation records whose token has already expired."""
    sink = build_audit_sink(get_settings())

    async def _sweep():
        await sink.start()
        try:
            return await sink.close_expired(datetime.now(timezone.utc))
        finally:
            await sink.stop()

    closed = asyncio.run(_sweep())
    if closed:
        console.print(f"[green]✓[/green] Closed {closed} expired impersonation records")
    else:
        console.print("No expired impersonation records found.")


if __name__ == "__main__":
    app()
