from __future__ import annotations

import importlib
import json
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from queryportal.common.errors import ContractError
from queryportal.contract.registry import EndpointRegistry, describe_endpoint


app = typer.Typer(no_args_is_help=True, add_completion=False)

endpoints_app = typer.Typer(no_args_is_help=True)
app.add_typer(endpoints_app, name="endpoints")

console = Console()


def load_registry(target: str) -> EndpointRegistry:
    """Import ``module:attribute`` and return the registry it names."""

    module_name, sep, attr = target.partition(":")
    if not sep or not module_name or not attr:
        raise typer.BadParameter(f"Expected module:attribute, got: {target}")
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise typer.BadParameter(f"Cannot import {module_name}: {exc}") from exc

    registry = getattr(module, attr, None)
    if not isinstance(registry, EndpointRegistry):
        raise typer.BadParameter(f"{target} is not an EndpointRegistry")
    return registry


@endpoints_app.command("list")
def endpoints_list(
    target: str = typer.Argument(..., help="Registry as module:attribute"),
    method: Optional[str] = typer.Option(None, help="Filter by HTTP method (GET/POST/...)"),
    path_contains: Optional[str] = typer.Option(None, help="Substring match on path template"),
    format: str = typer.Option("table", help="Output format: table|json"),
) -> None:
    registry = load_registry(target)
    endpoints = registry.filter(method=method, path_contains=path_contains)

    if format.lower() == "json":
        rows = [
            {
                "method": e.method,
                "path": e.path_template,
                "operation_id": e.operation_id,
                "allowed_roles": list(e.allowed_roles),
            }
            for e in endpoints
        ]
        typer.echo(json.dumps(rows, indent=2))
        return

    console.print(f"[bold]Endpoints:[/bold] {len(endpoints)}")

    table = Table(show_header=True, header_style="bold")
    table.add_column("METHOD", no_wrap=True)
    table.add_column("PATH")
    table.add_column("ROLES")
    table.add_column("DESCRIPTION")

    for e in endpoints:
        table.add_row(e.method, e.path_template, ", ".join(e.allowed_roles), e.description)

    console.print(table)


@endpoints_app.command("show")
def endpoints_show(
    target: str = typer.Argument(..., help="Registry as module:attribute"),
    method: str = typer.Argument(..., help="HTTP method"),
    path: str = typer.Argument(..., help="Path, e.g. /v1/cart or api/v1/menu/{item_id}"),
) -> None:
    registry = load_registry(target)
    endpoint = registry.get(method, path)
    if endpoint is None:
        console.print(f"[bold red]No endpoint[/bold red] for {method.upper()} {path}")
        raise typer.Exit(code=1)

    doc = describe_endpoint(endpoint)
    console.print(f"[bold]{doc['method']} {doc['path']}[/bold]  ({doc['operation_id']})")
    if doc["description"]:
        console.print(doc["description"])
    console.print("")
    console.print(f"Roles: {', '.join(doc['allowed_roles'])}")
    console.print(f"Requires authentication: {doc['requires_authentication']}")

    if doc["field_descriptions"]:
        console.print("")
        console.print("[bold]Fields:[/bold]")
        for name, text in doc["field_descriptions"].items():
            console.print(f"  {name:<20} {text}")

    console.print("")
    console.print("[bold]Error codes:[/bold]")
    for code, text in doc["error_codes"].items():
        console.print(f"  {code:>4}  {text}")

    cache = {k: v for k, v in doc["cache"].items() if v is not None}
    if cache:
        console.print("")
        console.print("[bold]Cache:[/bold] " + ", ".join(f"{k}={v}" for k, v in cache.items()))


@endpoints_app.command("export")
def endpoints_export(
    target: str = typer.Argument(..., help="Registry as module:attribute"),
    out: Optional[str] = typer.Option(None, help="Output path (default: print to stdout)"),
) -> None:
    registry = load_registry(target)
    try:
        text = json.dumps({"endpoints": registry.describe()}, indent=2)
    except (TypeError, ContractError) as exc:
        raise typer.BadParameter(f"Cannot document {target}: {exc}") from exc

    if out:
        out_path = Path(out).expanduser()
        out_path.parent.mkdir(parents=True, exist_ok=True)
        out_path.write_text(text, encoding="utf-8")
        console.print(f"[bold green]Wrote[/bold green] {len(registry)} endpoints to: {out_path}")
    else:
        typer.echo(text)


@app.command()
def ping() -> None:
    console.print("pong")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
