"""Tollgate CLI — manage API keys and lockouts from a terminal.

Usage:
    tollgate whoami                          # Who the API thinks you are
    tollgate keys list                       # Keys in your active organization
    tollgate keys create "ci-deploy" -p read # Issue a key (secret shown once)
    tollgate keys revoke <id>                # Revoke with your session
    tollgate keys revoke <id> --admin        # Revoke with the admin secret
    tollgate unlock jane@example.com         # Lift a login lockout (admin)

Configuration (env vars):
    TOLLGATE_API_URL      base URL (default http://localhost:8000)
    TOLLGATE_SESSION      dashboard session token
    TOLLGATE_API_KEY      API key, used by ``whoami`` when no session is set
    TOLLGATE_ADMIN_KEY    shared admin secret
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import json
import os
import sys
from typing import Optional

import click
import httpx

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

DEFAULT_API_URL = "http://localhost:8000"


def _api_url() -> str:
    return os.environ.get("TOLLGATE_API_URL", DEFAULT_API_URL).rstrip("/")


def _client(headers: Optional[dict[str, str]] = None) -> httpx.AsyncClient:
    """Build an async HTTP client pointed at the Tollgate API."""
    return httpx.AsyncClient(base_url=_api_url(), timeout=30.0, headers=headers)


def _require_env(name: str) -> str:
    value = os.environ.get(name)
    if not value:
        click.secho(f"Error: {name} is not set", fg="red", err=True)
        sys.exit(1)
    return value


def _session_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {_require_env('TOLLGATE_SESSION')}"}


def _admin_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {_require_env('TOLLGATE_ADMIN_KEY')}"}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run(coro):
    """Run an async coroutine from a synchronous Click handler.

    Offloads to a thread when a loop is already running (CliRunner
    inside async tests).
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
        return pool.submit(asyncio.run, coro).result()


def _check(r: httpx.Response) -> dict | list:
    """Return the JSON body, or print the API's error and exit 1."""
    if r.is_success:
        return r.json()
    try:
        body = r.json()
    except ValueError:
        body = {}
    code = body.get("code", r.status_code) if isinstance(body, dict) else r.status_code
    message = body.get("message", r.text) if isinstance(body, dict) else r.text
    click.secho(f"Error [{code}]: {message}", fg="red", err=True)
    retry_after = r.headers.get("Retry-After")
    if retry_after:
        click.secho(f"Retry after {retry_after}s", fg="yellow", err=True)
    sys.exit(1)


def _print_table(rows: list[dict], columns: list[tuple[str, str, int]]):
    """Print a simple ASCII table. columns: (header, dict_key, width)."""
    header = "  ".join(h.ljust(w) for h, _, w in columns)
    click.secho(header, bold=True)
    click.echo("-" * len(header))
    for row in rows:
        line = "  ".join(str(row.get(k) or "-")[:w].ljust(w) for _, k, w in columns)
        click.echo(line)


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version="0.1.0", prog_name="tollgate")
def main():
    """Tollgate — API keys, sessions and lockouts for the platform API."""


@main.command()
def whoami():
    """Show the identity behind TOLLGATE_SESSION (or TOLLGATE_API_KEY)."""
    _run(_whoami_impl())


async def _whoami_impl():
    if os.environ.get("TOLLGATE_SESSION"):
        headers = _session_headers()
    else:
        headers = {"x-api-key": _require_env("TOLLGATE_API_KEY")}
    async with _client(headers) as c:
        me = _check(await c.get("/api/v1/auth/me"))
    click.echo(json.dumps(me, indent=2, default=str))


# ---------------------------------------------------------------------------
# tollgate keys ...
# ---------------------------------------------------------------------------


@main.group()
def keys():
    """Manage API keys in your active organization."""


@keys.command("list")
def keys_list():
    """List API keys (owners/admins see all, members their own)."""
    _run(_keys_list_impl())


async def _keys_list_impl():
    async with _client(_session_headers()) as c:
        rows = _check(await c.get("/api/v1/api-keys"))
    if not rows:
        click.echo("No API keys.")
        return
    _print_table(rows, [
        ("ID", "id", 36),
        ("NAME", "name", 20),
        ("PREFIX", "key_prefix", 12),
        ("LIMIT", "rate_limit", 7),
        ("LAST USED", "last_used_at", 20),
    ])


@keys.command("create")
@click.argument("name")
@click.option("--project-id", help="Pin the key to one project")
@click.option("--permission", "-p", "permissions", multiple=True,
              help="Permission such as traces:read (repeatable)")
@click.option("--rate-limit", type=int, help="Requests per window")
@click.option("--allowed-ip", "allowed_ips", multiple=True,
              help="IP or CIDR allowed to use the key (repeatable)")
@click.option("--expires-in-days", type=int)
@click.option("--test", "test_key", is_flag=True, help="Issue a tg_test_ key")
def keys_create(name: str, project_id: Optional[str], permissions: tuple[str, ...],
                rate_limit: Optional[int], allowed_ips: tuple[str, ...],
                expires_in_days: Optional[int], test_key: bool):
    """Issue a new API key. The secret is printed once and never again."""
    body: dict = {"name": name, "kind": "test" if test_key else "live"}
    if project_id:
        body["project_id"] = project_id
    if permissions:
        body["permissions"] = list(permissions)
    if rate_limit:
        body["rate_limit"] = rate_limit
    if allowed_ips:
        body["allowed_ips"] = list(allowed_ips)
    if expires_in_days:
        body["expires_in_days"] = expires_in_days
    _run(_keys_create_impl(body))


async def _keys_create_impl(body: dict):
    async with _client(_session_headers()) as c:
        created = _check(await c.post("/api/v1/api-keys", json=body))
    click.secho(f"Created key {created['id']} ({created['key_prefix']}...)", fg="green")
    click.echo()
    click.secho(created["key"], bold=True)
    click.echo()
    click.secho("Store this secret now. It cannot be shown again.", fg="yellow")


@keys.command("revoke")
@click.argument("api_key_id")
@click.option("--admin", "use_admin", is_flag=True,
              help="Use TOLLGATE_ADMIN_KEY instead of a session")
def keys_revoke(api_key_id: str, use_admin: bool):
    """Revoke an API key. It stops working immediately."""
    _run(_keys_revoke_impl(api_key_id, use_admin))


async def _keys_revoke_impl(api_key_id: str, use_admin: bool):
    if use_admin:
        headers, path = _admin_headers(), f"/api/v1/admin/api-keys/{api_key_id}"
    else:
        headers, path = _session_headers(), f"/api/v1/api-keys/{api_key_id}"
    async with _client(headers) as c:
        _check(await c.delete(path))
    click.secho(f"Revoked {api_key_id}", fg="green")


# ---------------------------------------------------------------------------
# tollgate unlock
# ---------------------------------------------------------------------------


@main.command()
@click.argument("email")
def unlock(email: str):
    """Clear failed-login lockout for EMAIL (admin secret required)."""
    _run(_unlock_impl(email))


async def _unlock_impl(email: str):
    async with _client(_admin_headers()) as c:
        result = _check(await c.delete("/api/v1/admin/login-lockouts", params={"email": email}))
    click.secho(f"Lockout cleared for {result['identifier']}", fg="green")


if __name__ == "__main__":
    main()
