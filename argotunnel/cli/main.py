"""argotunnel command-line interface.

Commands:
    argotunnel run                 Run the controller in the foreground.
    argotunnel routes [--json]     List live tunnel routes via the REST API.
    argotunnel version             Print version and exit.

``routes`` calls the REST API at http://localhost:8080 (configurable via
``--api-url``).
"""

from __future__ import annotations

import asyncio
import json

import click
import httpx

from argotunnel import __version__

_DEFAULT_API_URL = "http://localhost:8080"

# ---------------------------------------------------------------------------
# HTTP helpers
# ---------------------------------------------------------------------------


def _get(api_url: str, path: str, params: dict[str, str] | None = None) -> dict[str, object]:
    """Perform a GET request and return the parsed JSON body.

    Raises click.ClickException on connection errors or non-2xx responses.
    """
    url = api_url.rstrip("/") + path
    try:
        with httpx.Client(timeout=30.0) as client:
            response = client.get(url, params=params or {})
        response.raise_for_status()
        return response.json()  # type: ignore[no-any-return]
    except httpx.ConnectError as err:
        raise click.ClickException(
            f"Cannot connect to argotunnel API at {api_url}. Is the controller running?"
        ) from err
    except httpx.HTTPStatusError as exc:
        raise click.ClickException(f"HTTP {exc.response.status_code}: {exc.response.text[:200]}") from exc


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.option(
    "--api-url",
    default=_DEFAULT_API_URL,
    envvar="ARGOTUNNEL_API_URL",
    show_default=True,
    help="argotunnel REST API base URL.",
)
@click.pass_context
def cli(ctx: click.Context, api_url: str) -> None:
    """argotunnel: expose Kubernetes Ingresses through outbound tunnels."""
    ctx.ensure_object(dict)
    ctx.obj["api_url"] = api_url


@cli.command("version")
def cmd_version() -> None:
    """Print the argotunnel version and exit."""
    click.echo(f"argotunnel {__version__}")


@cli.command("run")
def cmd_run() -> None:
    """Run the ingress controller until SIGTERM/SIGINT.

    Configuration is read from ARGOTUNNEL_* environment variables.
    """
    from argotunnel.app import main

    asyncio.run(main())


# ---------------------------------------------------------------------------
# argotunnel routes
# ---------------------------------------------------------------------------


@cli.command("routes")
@click.option(
    "--json",
    "output_json",
    is_flag=True,
    default=False,
    help="Print raw JSON response.",
)
@click.pass_context
def cmd_routes(ctx: click.Context, output_json: bool) -> None:
    """Show every claimed Ingress and its live tunnels."""
    data = _get(ctx.obj["api_url"], "/api/v1/routes")

    if output_json:
        click.echo(json.dumps(data, indent=2))
        return

    _print_routes(data)


def _print_routes(data: dict[str, object]) -> None:
    routes: list[dict[str, object]] = data.get("routes", [])  # type: ignore[assignment]
    if not routes:
        click.echo("No tunnel routes.")
        return

    click.echo(click.style(f"Routes ({len(routes)}), links: {data.get('total_links', 0)}", bold=True))
    for route in routes:
        click.echo("")
        click.echo(click.style(f"{route.get('namespace', '?')}/{route.get('name', '?')}", fg="cyan", bold=True))
        rules: list[dict[str, object]] = route.get("rules", [])  # type: ignore[assignment]
        if not rules:
            click.echo(click.style("  no eligible rules", fg="yellow"))
            continue
        for rule in rules:
            running = rule.get("running")
            state = (
                click.style("up", fg="green")
                if running is True
                else click.style("down", fg="red")
                if running is False
                else click.style("?", fg="bright_black")
            )
            host, origin = rule.get("host", "?"), rule.get("origin_url", "?")
            click.echo(f"  {host} -> {origin}  [{state}]  secret={rule.get('secret', '?')}")


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    cli()
