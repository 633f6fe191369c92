"""Login and logout commands for lexisync CLI.

Commands:
- login: Authenticate with identity/password and save the token
- logout: Remove the saved token
"""

from __future__ import annotations

import asyncio
import sys
from typing import Any

import click

from lexisync.client.api import APIError, AuthenticationError, PocketBaseClient
from lexisync.core.config import ServerConfig, load_config, save_config


async def _authenticate(
    server_config: ServerConfig, identity: str, password: str
) -> dict[str, Any]:
    async with PocketBaseClient(server_config) as client:
        record = await client.auth_with_password(identity, password)
        return {"token": client.token, "user_id": record["id"]}


@click.command()
@click.option("--server", "server_url", help="PocketBase server URL.")
@click.option("--identity", prompt="Email or username", help="Login identity.")
@click.password_option(confirmation_prompt=False, help="Account password.")
def login(server_url: str | None, identity: str, password: str) -> None:
    """Log in to a PocketBase server."""
    config = load_config()
    server_url = server_url or config.get("server_url")
    if not server_url:
        server_url = click.prompt("Server URL")

    server_config = ServerConfig(server_url=server_url)
    try:
        auth = asyncio.run(_authenticate(server_config, identity, password))
    except AuthenticationError:
        click.echo("Error: Invalid credentials.", err=True)
        sys.exit(1)
    except APIError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    config["server_url"] = server_config.server_url
    config["auth_token"] = auth["token"]
    config["user_id"] = auth["user_id"]
    save_config(config)
    click.echo(f"Logged in as {identity} ({auth['user_id']}).")


@click.command()
def logout() -> None:
    """Forget the saved credentials."""
    config = load_config()
    if not config.get("auth_token"):
        click.echo("Not logged in.")
        return
    config.pop("auth_token", None)
    config.pop("user_id", None)
    save_config(config)
    click.echo("Logged out.")
