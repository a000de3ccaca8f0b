"""paysign CLI - sign, verify and send gateway requests."""

import asyncio
import json
import sys
from collections.abc import Callable, Coroutine
from pathlib import Path
from typing import Any, NoReturn, ParamSpec, TypeVar

import click
from rich.console import Console
from rich.table import Table

from paysign.auth.signer import SigningRequest, sign
from paysign.auth.urls import extract_host, extract_path
from paysign.auth.verifier import verify_signature
from paysign.client.gateway_client import GatewayClient
from paysign.common.errors import PaySignError
from paysign.common.logging import setup_logging
from paysign.common.security import mask_sensitive
from paysign.common.settings import Settings

console = Console()

P = ParamSpec("P")
R = TypeVar("R")


def async_command(f: Callable[P, Coroutine[Any, Any, R]]) -> Callable[P, R]:
    """Decorator to run async commands."""

    def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
        return asyncio.run(f(*args, **kwargs))

    return wrapper


def _read_body(value: str | None) -> str | None:
    """Body text from the option; ``@path`` reads the file verbatim."""
    if value is None or not value.startswith("@"):
        return value
    body_path = Path(value[1:]).expanduser()
    if not body_path.exists():
        console.print(f"[red]Body file not found: {body_path}[/red]")
        sys.exit(1)
    return body_path.read_text(encoding="utf-8")


def _parse_header(value: str) -> tuple[str, str]:
    name, sep, header_value = value.partition(":")
    if not sep or not name.strip():
        raise click.BadParameter(f"Expected 'name: value', got {value!r}")
    return name.strip(), header_value.strip()


def _fail(exc: Exception) -> NoReturn:
    console.print(f"[red]Error: {exc}[/red]")
    sys.exit(1)


@click.group()
@click.option("--merchant-id", default=None, help="Merchant identifier")
@click.option("--api-key-id", default=None, help="API key identifier (signature keyid)")
@click.option("--shared-secret", default=None, help="Base64-encoded shared secret")
@click.option("--base-url", default=None, help="Gateway base URL")
@click.option("--production", is_flag=True, help="Use the production URL instead of the sandbox")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Log level",
)
@click.pass_context
def cli(
    ctx: click.Context,
    merchant_id: str | None,
    api_key_id: str | None,
    shared_secret: str | None,
    base_url: str | None,
    production: bool,
    log_level: str | None,
) -> None:
    """paysign CLI - signed requests for the payment gateway."""
    overrides: dict[str, Any] = {
        "merchant_id": merchant_id,
        "api_key_id": api_key_id,
        "shared_secret": shared_secret,
        "base_url": base_url,
        "log_level": log_level.upper() if log_level else None,
    }
    if production:
        overrides["sandbox"] = False
    settings = Settings(**{key: value for key, value in overrides.items() if value is not None})
    setup_logging(settings.log_level, settings.log_json)

    ctx.ensure_object(dict)
    ctx.obj["settings"] = settings


@cli.command("sign")
@click.argument("method")
@click.argument("url")
@click.option("--body", default=None, help="Request body (JSON text, or @file)")
@click.option("--json", "as_json", is_flag=True, help="Print headers as JSON")
@click.pass_context
def sign_command(
    ctx: click.Context,
    method: str,
    url: str,
    body: str | None,
    as_json: bool,
) -> None:
    """Print the authentication headers for METHOD URL."""
    settings: Settings = ctx.obj["settings"]
    try:
        merchant_id, api_key_id, shared_secret = settings.require_credentials()
        result = sign(
            SigningRequest(
                merchant_id=merchant_id,
                api_key_id=api_key_id,
                shared_secret=shared_secret,
                method=method,
                path=extract_path(url),
                host=extract_host(url),
                body=_read_body(body),
            )
        )
    except PaySignError as exc:
        _fail(exc)

    headers = result.to_headers()
    if as_json:
        click.echo(json.dumps(headers, indent=2))
        return

    table = Table(title="Signed Headers")
    table.add_column("Header", style="cyan")
    table.add_column("Value", style="green", overflow="fold")
    for name, value in headers.items():
        table.add_row(name, value)
    console.print(table)


@cli.command("verify")
@click.argument("method")
@click.argument("url")
@click.option("--header", "-H", "header_values", multiple=True, help="Received header as 'name: value'")
@click.option("--body", default=None, help="Received body (text, or @file)")
@click.option("--max-skew", type=float, default=None, help="Max timestamp skew in seconds (default from settings)")
@click.pass_context
def verify_command(
    ctx: click.Context,
    method: str,
    url: str,
    header_values: tuple[str, ...],
    body: str | None,
    max_skew: float | None,
) -> None:
    """Verify received signature headers for METHOD URL."""
    settings: Settings = ctx.obj["settings"]
    headers = dict(_parse_header(value) for value in header_values)
    if not settings.shared_secret:
        _fail(PaySignError("Setting PAYSIGN_SHARED_SECRET is not configured"))

    try:
        valid = verify_signature(
            headers,
            method=method,
            path=extract_path(url),
            shared_secret=settings.shared_secret,
            body=_read_body(body),
            max_skew_seconds=max_skew if max_skew is not None else settings.signature_max_skew_seconds,
        )
    except PaySignError as exc:
        _fail(exc)

    if not valid:
        console.print("[red]Signature invalid[/red]")
        sys.exit(1)
    console.print("[green]Signature valid[/green]")


@cli.command("request")
@click.argument("method")
@click.argument("path")
@click.option("--body", default=None, help="Request body (JSON text, or @file)")
@click.option("--param", "param_values", multiple=True, help="Query parameter as key=value")
@click.pass_context
@async_command
async def request_command(
    ctx: click.Context,
    method: str,
    path: str,
    body: str | None,
    param_values: tuple[str, ...],
) -> None:
    """Send a signed METHOD request to PATH and print the response."""
    settings: Settings = ctx.obj["settings"]
    params = dict(value.partition("=")[::2] for value in param_values)

    console.print(
        f"[dim]{method.upper()} {settings.effective_base_url}{path} "
        f"(secret {mask_sensitive(settings.shared_secret)})[/dim]"
    )
    try:
        async with GatewayClient(settings) as client:
            result = await client.request(method, path, body=_read_body(body), params=params or None)
    except PaySignError as exc:
        _fail(exc)

    if result is None:
        console.print("[yellow]Empty response[/yellow]")
    elif isinstance(result, str):
        click.echo(result)
    else:
        click.echo(json.dumps(result, indent=2))


def main() -> None:
    """Entry point."""
    cli()


if __name__ == "__main__":
    main()
