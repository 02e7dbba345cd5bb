"""ToolLink CLI entry point.

Usage:
    toollink version
    toollink config check
    toollink config show
    toollink login <email>
    toollink logout
    toollink whoami
    toollink can <permission>
    toollink check-route <route>
    toollink forgot-password <email>
    toollink roles
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import typer

from toollink import __version__
from toollink.api_client.client import ToolLinkClient
from toollink.auth.access_gate import AccessGate, Decision, GateResult
from toollink.auth.models import AuthResult, Identity
from toollink.auth.permissions import (
    ALL_PERMISSIONS,
    FULL_SYSTEM_ACCESS,
    ROLE_PERMISSIONS,
    Role,
    role_display_name,
)
from toollink.auth.session_manager import AuthSessionManager
from toollink.auth.session_store import SessionStore
from toollink.config import Settings, get_settings
from toollink.logging.structured_logger import setup_logging
from toollink.storage.base import ACCESS_TOKEN_KEY
from toollink.storage.factory import build_storage

app = typer.Typer(
    name="toollink",
    help="ToolLink portal session and access-control CLI",
    no_args_is_help=True,
)

config_app = typer.Typer(help="Configuration management")
app.add_typer(config_app, name="config")

# (section, field) pairs whose values may carry credentials
_SECRET_FIELDS = {("redis", "url")}


def _mask_secret(value: str, visible_chars: int = 6) -> str:
    """Mask a secret value, keeping first few characters visible."""
    if len(value) <= visible_chars:
        return "***"
    return value[:visible_chars] + "***"


def _collect_config_display(settings: Settings) -> list[tuple[str, str, str]]:
    """Collect (section, key, display_value) tuples from settings."""
    rows: list[tuple[str, str, str]] = []

    for section, field_value in settings:
        if not hasattr(field_value, "__iter__"):
            continue

        for sub_name, sub_value in field_value:
            display = str(sub_value)
            if (section, sub_name) in _SECRET_FIELDS and "@" in display:
                display = _mask_secret(display, visible_chars=8)
            rows.append((section, sub_name, display))

    return rows


@asynccontextmanager
async def _open_manager(settings: Settings) -> AsyncIterator[AuthSessionManager]:
    """Session manager over the configured storage; background loops stay off."""
    storage = build_storage(settings)

    async def _token() -> str | None:
        return await storage.get_item(ACCESS_TOKEN_KEY)

    client = ToolLinkClient(settings.backend.url, settings.backend.timeout, token_provider=_token)
    await client.open()
    try:
        yield AuthSessionManager(client, SessionStore(storage), storage, settings.session)
    finally:
        await client.close()
        await storage.close()


async def _login(settings: Settings, email: str, password: str) -> AuthResult:
    async with _open_manager(settings) as manager:
        return await manager.login(email, password)


async def _logout(settings: Settings) -> None:
    async with _open_manager(settings) as manager:
        await manager.logout()


async def _current_user(settings: Settings) -> Identity | None:
    async with _open_manager(settings) as manager:
        await manager.initialize()
        return manager.user


async def _can(settings: Settings, permission: str) -> tuple[Identity | None, bool]:
    async with _open_manager(settings) as manager:
        await manager.initialize()
        return manager.user, manager.has_permission(permission)


async def _check_route(settings: Settings, route: str) -> GateResult:
    async with _open_manager(settings) as manager:
        await manager.initialize()
        gate = AccessGate.from_settings(manager, settings.session)
        return await gate.resolve_route(route)


async def _forgot_password(settings: Settings, email: str) -> AuthResult:
    async with _open_manager(settings) as manager:
        return await manager.forgot_password(email)


def _fail(message: str) -> None:
    typer.echo(typer.style(f"❌ {message}", fg=typer.colors.RED))


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log debug output to stderr"),
) -> None:
    """ToolLink portal session and access-control CLI."""
    if verbose:
        setup_logging("DEBUG", get_settings().logging.format)


@app.command()
def version() -> None:
    """Show application version."""
    typer.echo(f"ToolLink v{__version__}")


@config_app.command("check")
def config_check() -> None:
    """Validate configuration and show status of each parameter."""
    settings = get_settings()
    result = settings.validate_required()

    if result.ok:
        typer.echo(typer.style("✅ All configuration checks passed", fg=typer.colors.GREEN))
    else:
        for err in result.errors:
            hint = f"  Hint: {err.hint}" if err.hint else ""
            _fail(f"{err.field}: {err.message}.{hint}")
        typer.echo(f"\n{len(result.errors)} error(s) found.")
        raise typer.Exit(code=1)


@config_app.command("show")
def config_show() -> None:
    """Show current configuration (secrets are masked)."""
    settings = get_settings()
    rows = _collect_config_display(settings)

    current_section = ""
    for section, key, value in rows:
        if section != current_section:
            if current_section:
                typer.echo("")
            typer.echo(typer.style(f"[{section}]", fg=typer.colors.CYAN, bold=True))
            current_section = section
        typer.echo(f"  {key} = {value}")


@app.command()
def login(
    email: str = typer.Argument(..., help="Account email"),
    password: str = typer.Option(..., prompt=True, hide_input=True, help="Account password"),
) -> None:
    """Log in and persist the session."""
    result = asyncio.run(_login(get_settings(), email, password))

    if result.success and result.identity is not None:
        identity = result.identity
        typer.echo(
            typer.style(
                f"✅ Logged in as {identity.name or identity.email} "
                f"({role_display_name(identity.role)})",
                fg=typer.colors.GREEN,
            )
        )
        return

    _fail(result.error or "Login failed")
    if result.requires_approval:
        typer.echo("Your account is waiting for approval by an administrator.")
    if result.remaining_attempts:
        plural = "s" if result.remaining_attempts != 1 else ""
        typer.echo(
            f"{result.remaining_attempts} attempt{plural} remaining before account lock"
        )
    if result.show_forgot_password:
        typer.echo(f"Forgot your password? Run: toollink forgot-password {email}")
    raise typer.Exit(code=1)


@app.command()
def logout() -> None:
    """Log out and clear the persisted session."""
    asyncio.run(_logout(get_settings()))
    typer.echo("Logged out")


@app.command()
def whoami() -> None:
    """Show the current user."""
    user = asyncio.run(_current_user(get_settings()))
    if user is None:
        typer.echo("Not logged in")
        raise typer.Exit(code=1)

    typer.echo(f"{user.name or user.email} <{user.email}>")
    typer.echo(f"  id   = {user.id}")
    typer.echo(f"  role = {role_display_name(user.role)}")
    if user.warehouse_code:
        typer.echo(f"  warehouse = {user.warehouse_code}")


@app.command()
def can(permission: str = typer.Argument(..., help="Permission, e.g. inventory.view")) -> None:
    """Check whether the current user holds a permission."""
    user, allowed = asyncio.run(_can(get_settings(), permission))
    if user is None:
        _fail("Not logged in")
        raise typer.Exit(code=1)
    if allowed:
        typer.echo(typer.style(f"✅ {user.role} may {permission}", fg=typer.colors.GREEN))
        return
    _fail(f"{user.role} may not {permission}")
    raise typer.Exit(code=1)


@app.command("check-route")
def check_route(route: str = typer.Argument(..., help="Route, e.g. /inventory")) -> None:
    """Run the access gate for a route."""
    result = asyncio.run(_check_route(get_settings(), route))
    if result.decision is Decision.GRANT:
        typer.echo(typer.style(f"✅ {route}: granted", fg=typer.colors.GREEN))
        return
    _fail(f"{route}: {result.reason.lower()}, redirect to {result.redirect_to}")
    raise typer.Exit(code=1)


@app.command("forgot-password")
def forgot_password(email: str = typer.Argument(..., help="Account email")) -> None:
    """Request a password reset email."""
    result = asyncio.run(_forgot_password(get_settings(), email))
    if result.success:
        typer.echo(result.message or "Password reset instructions sent")
        return
    _fail(result.error or "Password reset request failed")
    raise typer.Exit(code=1)


@app.command()
def roles() -> None:
    """Show the role → permission table."""
    for role in Role:
        perms = ROLE_PERMISSIONS.get(role.value, frozenset())
        typer.echo(typer.style(f"[{role.value}] {role_display_name(role)}", bold=True))
        if FULL_SYSTEM_ACCESS in perms:
            typer.echo(f"  {FULL_SYSTEM_ACCESS} (all {len(ALL_PERMISSIONS)} permissions)")
            continue
        for perm in sorted(perms):
            typer.echo(f"  {perm}")


if __name__ == "__main__":
    app()
