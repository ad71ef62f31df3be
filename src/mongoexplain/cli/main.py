"""
mongoexplain CLI - Explain captured MongoDB queries.

Usage:
    mongoexplain explain query.json --uri mongodb://localhost:27017
    mongoexplain check query.json --server-version 3.2.16
    mongoexplain policy --server-version 3.4.7
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Annotated, Any, Mapping, Optional

import typer
from pymongo.errors import PyMongoError
from rich.console import Console
from rich.table import Table

from mongoexplain import __version__
from mongoexplain.classifier import OperationKind
from mongoexplain.config import Config, Verbosity, get_config
from mongoexplain.exceptions import ExplainError, MongoExplainError
from mongoexplain.explainer import Explainer, QueryFormat, encode_reply
from mongoexplain.policy import ExplainPolicy, load_policy
from mongoexplain.session import PyMongoSession
from mongoexplain.version import ServerVersion

app = typer.Typer(
    name="mongoexplain",
    help="Explain captured MongoDB queries against a live server",
    no_args_is_help=True,
)

console = Console()
error_console = Console(stderr=True)


class _OfflineSession:
    """Session stand-in for commands that never reach a server."""

    def run_command(self, database: str, command: Mapping[str, Any]) -> Mapping[str, Any]:
        raise RuntimeError("offline session cannot run commands")

    def legacy_explain(self, database: str, command: Mapping[str, Any]) -> Mapping[str, Any]:
        raise RuntimeError("offline session cannot run commands")

    def server_version(self) -> str:
        raise RuntimeError("offline session has no server version")


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"mongoexplain version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option(
            "--version",
            "-v",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    log_level: Annotated[
        Optional[str],
        typer.Option("--log-level", help="Logging level (DEBUG, INFO, WARNING, ...)"),
    ] = None,
) -> None:
    """mongoexplain - Explain captured MongoDB queries."""
    level = (log_level or get_config().log_level).upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _read_query(query_file: Path) -> bytes:
    return query_file.read_bytes()


def _effective_config(
    uri: str | None = None,
    verbosity: Verbosity | None = None,
    policy_file: Path | None = None,
) -> Config:
    config = get_config()
    updates: dict[str, object] = {}
    if uri:
        updates["uri"] = uri
    if verbosity:
        updates["verbosity"] = verbosity
    if policy_file:
        updates["policy_file"] = policy_file
    return config.model_copy(update=updates) if updates else config


@app.command()
def explain(
    query_file: Annotated[
        Path,
        typer.Argument(
            help="Captured query (Extended JSON or BSON, bare command or profiler entry)",
            exists=True,
            readable=True,
            resolve_path=True,
        ),
    ],
    database: Annotated[
        str,
        typer.Option("--db", "-d", help="Target database (default: from the query or URI)"),
    ] = "",
    uri: Annotated[
        Optional[str],
        typer.Option("--uri", "-u", help="MongoDB connection string"),
    ] = None,
    verbosity: Annotated[
        Optional[Verbosity],
        typer.Option("--verbosity", help="Explain verbosity"),
    ] = None,
    policy_file: Annotated[
        Optional[Path],
        typer.Option("--policy-file", help="Policy override rules (YAML/JSON)"),
    ] = None,
) -> None:
    """
    Explain a captured query and print the server's plan as JSON.

    Examples:

        $ mongoexplain explain find_orders.json --uri mongodb://localhost:27017/shop
    """
    try:
        config = _effective_config(uri, verbosity, policy_file)
        with PyMongoSession.from_uri(config.uri, **config.client_kwargs()) as session:
            explainer = Explainer(session, config=config)
            reply = explainer.explain_document(database, _read_query(query_file))
    except MongoExplainError as e:
        error_console.print(f"[red]Error:[/red] {e.message}", highlight=False)
        raise typer.Exit(code=1)
    except PyMongoError as e:
        error_console.print(f"[red]Error:[/red] {e}", highlight=False)
        raise typer.Exit(code=1)

    # Plain echo: the plan goes out exactly as encoded, no rich markup
    typer.echo(encode_reply(reply, QueryFormat.JSON).decode("utf-8"))


@app.command()
def check(
    query_file: Annotated[
        Path,
        typer.Argument(
            help="Captured query (Extended JSON or BSON)",
            exists=True,
            readable=True,
            resolve_path=True,
        ),
    ],
    server_version: Annotated[
        str,
        typer.Option("--server-version", "-s", help="Server version to evaluate against"),
    ],
    policy_file: Annotated[
        Optional[Path],
        typer.Option("--policy-file", help="Policy override rules (YAML/JSON)"),
    ] = None,
) -> None:
    """
    Classify a captured query and apply the policy, without a server.

    Exits 1 when the query would be rejected.
    """
    try:
        config = _effective_config(policy_file=policy_file)
        explainer = Explainer(
            _OfflineSession(),
            config=config,
            server_version=server_version,
        )
        request = explainer.check(_read_query(query_file))
    except ExplainError as e:
        console.print(
            f"[red]REJECTED[/red] ({e.kind.value}): {e.message}",
            highlight=False,
            soft_wrap=True,
        )
        raise typer.Exit(code=1)
    except MongoExplainError as e:
        error_console.print(f"[red]Error:[/red] {e.message}", highlight=False)
        raise typer.Exit(code=1)

    console.print(
        f"[green]OK[/green] {request.kind.value} on "
        f"{request.database or '<default>'}.{request.collection}",
        highlight=False,
    )


@app.command()
def policy(
    server_version: Annotated[
        Optional[str],
        typer.Option("--server-version", "-s", help="Show the verdict for this version"),
    ] = None,
    policy_file: Annotated[
        Optional[Path],
        typer.Option("--policy-file", help="Policy override rules (YAML/JSON)"),
    ] = None,
) -> None:
    """
    List the explainability policy table.
    """
    try:
        config = _effective_config(policy_file=policy_file)
        explain_policy: ExplainPolicy = load_policy(config.policy_file)
        version = ServerVersion.parse(server_version) if server_version else None
    except MongoExplainError as e:
        error_console.print(f"[red]Error:[/red] {e.message}", highlight=False)
        raise typer.Exit(code=1)

    table = Table(title="Explain policy")
    table.add_column("Kind", style="cyan")
    table.add_column("Decision")
    table.add_column("Constraint")

    for rule in explain_policy.rules:
        style = "green" if rule.reason is None else "red"
        table.add_row(
            rule.kind.value,
            f"[{style}]{rule.decision.value}[/{style}]",
            rule.constraint or "any",
        )
    console.print(table)

    if version is not None:
        verdicts = Table(title=f"Verdict on {version.raw}")
        verdicts.add_column("Kind", style="cyan")
        verdicts.add_column("Explainable")
        for kind in OperationKind:
            allowed, reason = explain_policy.allowed(kind, version)
            verdicts.add_row(
                kind.value,
                "[green]yes[/green]" if allowed else f"[red]no ({reason.value})[/red]",
            )
        console.print(verdicts)


if __name__ == "__main__":
    app()
