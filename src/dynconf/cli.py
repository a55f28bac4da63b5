"""Typer-powered command line for ``dynconf``.

The CLI is a thin consumer of :mod:`dynconf.store` and
:mod:`dynconf.entities`: every command loads the document, applies one
change and saves it back. Each command is wrapped in a structured operation
log entry and maps core errors onto :class:`~dynconf.exit_codes.ExitCode`.
"""
from __future__ import annotations

import json
import logging
import sys
import textwrap
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, NoReturn

import typer
import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from . import __version__
from .config import AppConfig, ConfigError, load_config
from .entities import EntityAccessor, EntityNotFoundError, create_router_service
from .exit_codes import ExitCode
from .logging import OperationScope, StructuredLogger
from .models import (
    DocumentError,
    Middleware,
    Router,
    Service,
    UnmodelledEntity,
    section_to_dict,
)
from .storage import FileBackend, PersistenceError, dump_yaml
from .store import ConfigStore

console = Console()
err_console = Console(stderr=True)

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to dynconf's YAML settings file.",
)

PAYLOAD_FILE_OPTION = typer.Option(
    ...,
    "--file",
    "-f",
    help="YAML or JSON payload to store ('-' reads standard input).",
)

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Edit a Traefik dynamic configuration (routers, services, middlewares).

        The configuration is stored either in a single dynamic file or, once
        `config split` has been run, as one file per section inside the
        split directory.
        """
    ).strip(),
)


@dataclass
class RuntimeContext:
    """Objects shared by every command of one invocation."""

    config: AppConfig
    store: ConfigStore
    logger: StructuredLogger

    def accessor(self, kind: str) -> EntityAccessor:
        return EntityAccessor(self.store, kind)


def _configure_logging(verbose: bool) -> None:
    package_logger = logging.getLogger("dynconf")
    package_logger.setLevel(logging.INFO if verbose else logging.WARNING)
    if not any(isinstance(handler, RichHandler) for handler in package_logger.handlers):
        package_logger.addHandler(
            RichHandler(console=err_console, show_time=False, show_path=False)
        )


def _ensure_runtime(ctx: typer.Context, config_file: Path | None) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime

    try:
        config = load_config(config_file=config_file)
    except ConfigError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=ExitCode.VALIDATION) from exc

    store = ConfigStore(
        dynamic_file=config.dynamic_file,
        config_dir=config.config_dir,
        backend=FileBackend(file_mode=config.file_mode),
    )
    runtime = RuntimeContext(
        config=config,
        store=store,
        logger=StructuredLogger(config.logs_dir),
    )
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx, None)


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the dynconf version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Report every file written.",
    ),
) -> None:
    """Entry point callback invoked for every CLI execution."""
    _configure_logging(verbose)
    if version:
        console.print(f"dynconf {__version__}")
        raise typer.Exit(code=ExitCode.OK)

    _ensure_runtime(ctx, config_file)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=ExitCode.OK)


# ----------------------------------------------------------------------
# Helpers
# ----------------------------------------------------------------------
def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = ExitCode.VALIDATION,
    errors: Sequence[str] | None = None,
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    console.print(f"[red]{escape(message)}[/red]")
    op.error(message, errors=list(errors or [message]), rc=int(rc))
    raise typer.Exit(code=int(rc))


def _read_payload(source: str) -> Any:
    """Return the YAML/JSON document found at *source* (``-`` for stdin)."""
    try:
        text = sys.stdin.read() if source == "-" else Path(source).read_text(encoding="utf-8")
    except OSError as exc:
        raise DocumentError("payload", f"cannot read {source}: {exc}") from exc
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise DocumentError("payload", f"{source} is not valid YAML or JSON: {exc}") from exc
    if not isinstance(data, Mapping):
        raise DocumentError("payload", f"{source} must contain a mapping.")
    return data


def _emit(data: Mapping[str, Any], *, json_output: bool) -> None:
    if json_output:
        console.print_json(data=data)
    else:
        console.print(dump_yaml(data), end="", markup=False, highlight=False, soft_wrap=True)


def _router_row(router: Router) -> list[str]:
    if router.tls is None or router.tls is False:
        tls = "-"
    elif isinstance(router.tls, bool):
        tls = "yes"
    else:
        tls = router.tls.cert_resolver or "yes"
    return [
        router.rule,
        router.service,
        ", ".join(router.entry_points),
        ", ".join(router.middlewares or ()) or "-",
        tls,
    ]


def _service_row(service: Service) -> list[str]:
    balancer = service.load_balancer
    health = balancer.health_check
    return [
        "\n".join(server.url for server in balancer.servers),
        (health.path or "-") if health else "-",
        balancer.servers_transport or "-",
    ]


def _middleware_row(middleware: Middleware) -> list[str]:
    body = middleware.to_dict()[middleware.KIND]
    return [middleware.KIND, json.dumps(body, sort_keys=True)]


_TABLE_LAYOUT: dict[str, tuple[tuple[str, ...], Callable[[Any], list[str]]]] = {
    "routers": (("Rule", "Service", "Entry points", "Middlewares", "TLS"), _router_row),
    "services": (("Servers", "Health check", "Transport"), _service_row),
    "middlewares": (("Type", "Settings"), _middleware_row),
}


def _render_table(kind: str, entities: Mapping[str, Any]) -> None:
    columns, row_builder = _TABLE_LAYOUT[kind]
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Name", style="bold")
    for column in columns:
        table.add_column(column)

    if not entities:
        table.add_row("(none)", *([""] * len(columns)))
    else:
        for name, entity in entities.items():
            if isinstance(entity, UnmodelledEntity):
                raw = json.dumps(entity.body, sort_keys=True, default=str)
                cells = [raw] + ["-"] * (len(columns) - 1)
            else:
                cells = row_builder(entity)
            table.add_row(escape(name), *(escape(cell) for cell in cells))
    console.print(table)


# ----------------------------------------------------------------------
# Entity commands (router / service / middleware)
# ----------------------------------------------------------------------
def _register_entity_commands(sub_app: typer.Typer, kind: str, noun: str) -> None:
    """Attach list/show/set/delete commands for *kind* to *sub_app*."""

    @sub_app.command("list")
    def list_entities(
        ctx: typer.Context,
        json_output: bool = typer.Option(
            False,
            "--json",
            help=f"Emit {kind} as JSON instead of a table.",
        ),
    ) -> None:
        runtime = _get_runtime(ctx)
        with runtime.logger.operation(
            f"{noun} list",
            args={"json": json_output},
            target={"kind": kind},
        ) as op:
            entities = runtime.accessor(kind).get_all()
            if json_output:
                console.print_json(data=section_to_dict(entities))
                op.success(f"Reported {kind} as JSON.", changed=0)
                return
            _render_table(kind, entities)
            op.success(f"Reported {kind}.", changed=0)

    list_entities.__doc__ = f"List every {noun} in the dynamic configuration."

    @sub_app.command("show")
    def show_entity(
        ctx: typer.Context,
        name: str = typer.Argument(..., help=f"Name of the {noun}."),
        json_output: bool = typer.Option(
            False,
            "--json",
            help="Emit JSON instead of YAML.",
        ),
    ) -> None:
        runtime = _get_runtime(ctx)
        with runtime.logger.operation(
            f"{noun} show",
            args={"name": name, "json": json_output},
            target={"kind": kind, "name": name},
        ) as op:
            try:
                entity = runtime.accessor(kind).get(name)
            except EntityNotFoundError as exc:
                _command_error(op, str(exc), rc=ExitCode.NOT_FOUND)
            except DocumentError as exc:
                _command_error(op, str(exc))
            _emit(entity.to_dict(), json_output=json_output)
            op.success(f"Reported {noun} '{name}'.", changed=0)

    show_entity.__doc__ = f"Show a single {noun}."

    @sub_app.command("set")
    def set_entity(
        ctx: typer.Context,
        name: str = typer.Argument(..., help=f"Name of the {noun} to create or replace."),
        source: str = PAYLOAD_FILE_OPTION,
    ) -> None:
        runtime = _get_runtime(ctx)
        with runtime.logger.operation(
            f"{noun} set",
            args={"name": name, "file": source},
            target={"kind": kind, "name": name},
        ) as op:
            try:
                runtime.accessor(kind).save(name, _read_payload(source))
            except DocumentError as exc:
                _command_error(op, f"Invalid {noun} definition: {exc}")
            except PersistenceError as exc:
                _command_error(op, str(exc), rc=ExitCode.PERSISTENCE)
            console.print(f"[green]Saved {noun} '{name.strip()}'.[/green]")
            op.success(f"Saved {noun} '{name}'.", changed=1)

    set_entity.__doc__ = f"Create or fully replace a {noun} from a YAML/JSON payload."

    @sub_app.command("delete")
    def delete_entity(
        ctx: typer.Context,
        name: str = typer.Argument(..., help=f"Name of the {noun} to delete."),
    ) -> None:
        runtime = _get_runtime(ctx)
        with runtime.logger.operation(
            f"{noun} delete",
            args={"name": name},
            target={"kind": kind, "name": name},
        ) as op:
            try:
                removed = runtime.accessor(kind).delete(name)
            except DocumentError as exc:
                _command_error(op, str(exc))
            except PersistenceError as exc:
                _command_error(op, str(exc), rc=ExitCode.PERSISTENCE)
            if removed:
                console.print(f"[green]Deleted {noun} '{name.strip()}'.[/green]")
                op.success(f"Deleted {noun} '{name}'.", changed=1)
            else:
                console.print(
                    f"[yellow]No {noun} named '{name.strip()}'; nothing to delete.[/yellow]"
                )
                op.success(f"{noun.capitalize()} '{name}' was already absent.", changed=0)

    delete_entity.__doc__ = f"Delete a {noun}; deleting a missing {noun} is not an error."


routers_app = typer.Typer(help="Manage HTTP routers.")
services_app = typer.Typer(help="Manage HTTP services.")
middlewares_app = typer.Typer(help="Manage HTTP middlewares.")
config_app = typer.Typer(help="Inspect the whole document and its storage layout.")

_register_entity_commands(routers_app, "routers", "router")
_register_entity_commands(services_app, "services", "service")
_register_entity_commands(middlewares_app, "middlewares", "middleware")

app.add_typer(routers_app, name="router")
app.add_typer(services_app, name="service")
app.add_typer(middlewares_app, name="middleware")
app.add_typer(config_app, name="config")


@app.command("create")
def create(
    ctx: typer.Context,
    router_name: str = typer.Argument(..., help="Name of the router to create or replace."),
    service_name: str = typer.Argument(..., help="Name of the service the router targets."),
    source: str = typer.Option(
        ...,
        "--file",
        "-f",
        help="Payload with 'router' and 'service' mappings ('-' reads standard input).",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Emit the created names as JSON.",
    ),
) -> None:
    """Create a router and its service together in a single write."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "create",
        args={"router": router_name, "service": service_name, "file": source},
        target={"kind": "router+service", "router": router_name, "service": service_name},
    ) as op:
        try:
            payload = _read_payload(source)
            missing = [
                key for key in ("router", "service") if not isinstance(payload.get(key), Mapping)
            ]
            if missing:
                raise DocumentError("payload", f"missing mapping(s): {', '.join(missing)}.")
            create_router_service(
                runtime.store,
                router_name,
                payload["router"],
                service_name,
                payload["service"],
            )
        except DocumentError as exc:
            _command_error(op, f"Invalid router/service definition: {exc}")
        except PersistenceError as exc:
            _command_error(op, str(exc), rc=ExitCode.PERSISTENCE)

        result = {"router": router_name.strip(), "service": service_name.strip()}
        if json_output:
            console.print_json(data=result)
        else:
            console.print(
                f"[green]Created router '{result['router']}' "
                f"targeting service '{result['service']}'.[/green]"
            )
        op.success("Created router and service.", changed=2, context=result)


# ----------------------------------------------------------------------
# Config commands
# ----------------------------------------------------------------------
@config_app.command("show")
def config_show(
    ctx: typer.Context,
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Emit the document as JSON instead of YAML.",
    ),
) -> None:
    """Display the full dynamic configuration as currently stored."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "config show",
        args={"json": json_output},
        target={"kind": "config"},
    ) as op:
        _emit(runtime.store.load().to_dict(), json_output=json_output)
        op.success("Rendered dynamic configuration.", changed=0)


@config_app.command("split")
def config_split(ctx: typer.Context) -> None:
    """Rewrite the configuration as one file per section (switches to split mode)."""
    runtime = _get_runtime(ctx)
    store = runtime.store
    with runtime.logger.operation(
        "config split",
        target={"kind": "config", "config_dir": str(store.config_dir)},
    ) as op:
        try:
            store.split(store.load())
        except PersistenceError as exc:
            _command_error(op, str(exc), rc=ExitCode.PERSISTENCE)
        console.print(
            f"[green]Configuration split into separate files under {store.config_dir}.[/green]"
        )
        op.success("Configuration split into separate files.", changed=3)


@config_app.command("mode")
def config_mode(
    ctx: typer.Context,
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Emit the storage layout as JSON instead of a table.",
    ),
) -> None:
    """Report which storage layout is active and which files exist."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "config mode",
        args={"json": json_output},
        target={"kind": "config"},
    ) as op:
        data = runtime.store.describe()
        if json_output:
            console.print_json(data=data)
            op.success("Reported storage mode as JSON.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Key", style="bold")
        table.add_column("Value")
        for key, value in data.items():
            if isinstance(value, dict):
                rendered = "\n".join(
                    f"{name}: {'present' if present else 'absent'}"
                    for name, present in value.items()
                )
            else:
                rendered = str(value)
            table.add_row(key, rendered)
        console.print(table)
        op.success("Reported storage mode.", changed=0)


@config_app.command("settings")
def config_settings(
    ctx: typer.Context,
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Emit settings as JSON instead of a table.",
    ),
) -> None:
    """Display the effective dynconf settings after merges."""
    runtime = _get_runtime(ctx)
    data = runtime.config.to_dict()

    with runtime.logger.operation(
        "config settings",
        args={"json": json_output},
        target={"kind": "settings"},
    ) as op:
        if json_output:
            console.print_json(data=data)
            op.success("Rendered settings as JSON.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Key", style="bold")
        table.add_column("Value")
        for key, value in data.items():
            table.add_row(key, str(value))
        console.print(table)
        op.success("Rendered settings table.", changed=0)


def main() -> None:  # pragma: no cover - thin wrapper for console_scripts
    app()


__all__ = ["app", "main"]
