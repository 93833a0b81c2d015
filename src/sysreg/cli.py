"""Typer-powered administration CLI for ``sysreg``.

The CLI works directly on a definition's storage root, without loading the
definition's plugin: it can list instances, show their recorded health and
flip their active flag. Registration and remote operations require the
plugin and therefore happen through :func:`sysreg.factory.define`.
"""
from __future__ import annotations

import asyncio
import logging
import textwrap
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.table import Table

from . import __version__
from .config import AppConfig, ConfigError, load_config
from .errors import SysregError
from .exit_codes import ExitCode
from .instance import apply_active_flag
from .locking import LockManager
from .logging import OperationScope, StructuredLogger
from .paths import DefinitionLayout, validate_instance_id
from .providers import InstanceStatusProvider
from .state.document import read_json
from .state.registry import MainRegistry, MainRegistryDocument

console = Console()

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to sysreg's YAML config file.",
)

ROOT_OPTION = typer.Option(
    None,
    "--root",
    file_okay=False,
    help="Storage root of the definition to operate on.",
)

DEFINITION_OPTION = typer.Option(
    None,
    "--definition",
    "-d",
    help="Definition id; its storage root is resolved under the configured state_dir.",
)

STATE_DIR_OPTION = typer.Option(
    None,
    "--state-dir",
    file_okay=False,
    help="Override the directory under which --definition roots are resolved.",
)

LOCK_TIMEOUT_OPTION = typer.Option(
    None,
    "--lock-timeout",
    min=0.001,
    help="Seconds to wait for registry locks before giving up.",
)

JSON_OPTION = typer.Option(
    False,
    "--json",
    help="Emit JSON instead of a table.",
)

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Remote system instance registry admin CLI.

        Inspect the instances registered for a definition and toggle whether
        their operations may run.
        """
    ).strip(),
)
instances_app = typer.Typer(help="Inspect and toggle registered instances.")
config_app = typer.Typer(help="Inspect the resolved configuration.")

app.add_typer(instances_app, name="instance")
app.add_typer(config_app, name="config")


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    logger: StructuredLogger
    locks: LockManager
    status_provider: InstanceStatusProvider
    root: Path | None
    definition_id: str | None


def _ensure_runtime(
    ctx: typer.Context,
    config_file: Path | None,
    root: Path | None,
    definition_id: str | None,
    overrides: dict[str, object] | None = None,
) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime

    try:
        config = load_config(config_file=config_file, overrides=overrides)
    except ConfigError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=int(ExitCode.VALIDATION)) from exc

    logging.basicConfig(
        level=config.logging.level_number,
        format="%(levelname)s %(name)s: %(message)s",
    )
    logger = (
        StructuredLogger(config.logs_dir)
        if config.logging.enabled
        else StructuredLogger.disabled()
    )
    runtime = RuntimeContext(
        config=config,
        logger=logger,
        locks=LockManager(config.lock_timeout),
        status_provider=InstanceStatusProvider(),
        root=root,
        definition_id=definition_id,
    )
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx, None, None, None)


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the sysreg version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
    root: Path | None = ROOT_OPTION,
    definition: str | None = DEFINITION_OPTION,
    state_dir: Path | None = STATE_DIR_OPTION,
    lock_timeout: float | None = LOCK_TIMEOUT_OPTION,
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        console.print(f"sysreg {__version__}")
        raise typer.Exit(code=0)

    overrides: dict[str, object] = {}
    if state_dir is not None:
        overrides["state_dir"] = state_dir
    if lock_timeout is not None:
        overrides["lock_timeout"] = lock_timeout
    _ensure_runtime(ctx, config_file, root, definition, overrides)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=0)


def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = int(ExitCode.VALIDATION),
    errors: Sequence[str] | None = None,
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    console.print(f"[red]{message}[/red]")
    op.error(message, errors=list(errors or [message]), rc=rc)
    raise typer.Exit(code=rc)


def _resolve_layout(runtime: RuntimeContext, op: OperationScope) -> tuple[DefinitionLayout, str]:
    """Return the storage layout and definition id selected on the command line."""
    if runtime.root is not None:
        layout = DefinitionLayout.from_root(runtime.root)
    elif runtime.definition_id:
        layout = DefinitionLayout.from_root(runtime.config.definition_root(runtime.definition_id))
    else:
        _command_error(op, "Specify a storage root with --root or a definition with --definition.")

    if not layout.main_path.is_file():
        _command_error(
            op,
            f"No instance registry found at {layout.main_path}.",
            rc=int(ExitCode.NOT_FOUND),
        )
    try:
        raw = read_json(layout.main_path)
    except SysregError as exc:
        _command_error(op, str(exc), rc=int(exc.exit_code))
    definition_id = raw.get("definition_id") if isinstance(raw, dict) else None
    if not isinstance(definition_id, str) or not definition_id:
        definition_id = runtime.definition_id or layout.root.name
    return layout, definition_id


async def _read_registry(
    layout: DefinitionLayout,
    definition_id: str,
    locks: LockManager,
) -> MainRegistryDocument:
    registry = await MainRegistry.open(layout, definition_id, locks)
    return await registry.get()


async def _toggle(
    runtime: RuntimeContext,
    layout: DefinitionLayout,
    definition_id: str,
    instance_id: str,
    active: bool,
    op: OperationScope,
) -> bool:
    registry = await MainRegistry.open(layout, definition_id, runtime.locks)
    return await apply_active_flag(registry, instance_id, active, op)


def _describe(
    runtime: RuntimeContext,
    layout: DefinitionLayout,
    instance_id: str,
    active: bool,
) -> dict[str, object]:
    paths = layout.instance_paths(instance_id)
    status = runtime.status_provider.status(layout, instance_id)
    return {
        "id": instance_id,
        "active": active,
        "status": status.state.value,
        "status_detail": status.detail,
        "directory": str(paths.directory),
        "config_path": str(paths.config_path),
        "config_present": paths.config_path.is_file(),
    }


@instances_app.command("list")
def instance_list(
    ctx: typer.Context,
    json_output: bool = JSON_OPTION,
) -> None:
    """List registered instances with their activation and health state."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "instance list",
        args={"json": json_output},
        target={"kind": "instance", "scope": "registry"},
    ) as op:
        layout, definition_id = _resolve_layout(runtime, op)
        try:
            document = asyncio.run(_read_registry(layout, definition_id, runtime.locks))
        except SysregError as exc:
            _command_error(op, str(exc), rc=int(exc.exit_code))

        entries = [
            _describe(runtime, layout, instance_id, record.active)
            for instance_id, record in sorted(document.instances.items())
        ]
        if json_output:
            console.print_json(data={"definition_id": definition_id, "instances": entries})
            op.success("Reported instance list as JSON.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Instance", style="bold")
        table.add_column("Active")
        table.add_column("Status")
        table.add_column("Config")

        if not entries:
            table.add_row("(none)", "", "", "")
        else:
            for entry in entries:
                table.add_row(
                    str(entry["id"]),
                    "yes" if entry["active"] else "no",
                    str(entry["status"]),
                    "present" if entry["config_present"] else "missing",
                )

        console.print(table)
        op.success("Reported instance list.", changed=0)


@instances_app.command("show")
def instance_show(
    ctx: typer.Context,
    instance_id: str = typer.Argument(..., help="Identifier of the instance to display."),
    json_output: bool = JSON_OPTION,
) -> None:
    """Show details for a single instance."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "instance show",
        args={"instance_id": instance_id, "json": json_output},
        target={"kind": "instance", "id": instance_id},
    ) as op:
        layout, definition_id = _resolve_layout(runtime, op)
        try:
            validate_instance_id(instance_id)
            document = asyncio.run(_read_registry(layout, definition_id, runtime.locks))
        except SysregError as exc:
            _command_error(op, str(exc), rc=int(exc.exit_code))

        record = document.get(instance_id)
        if record is None:
            _command_error(
                op,
                f"Instance '{instance_id}' not found in {definition_id}.",
                rc=int(ExitCode.NOT_FOUND),
            )
        entry = _describe(runtime, layout, instance_id, record.active)
        if json_output:
            console.print_json(data=entry)
            op.success("Reported instance as JSON.", changed=0)
            return

        table = Table(show_header=False)
        table.add_column("Field", style="bold")
        table.add_column("Value")
        for key, value in entry.items():
            table.add_row(key, str(value))
        console.print(table)
        op.success("Reported instance.", changed=0)


def _set_active_command(ctx: typer.Context, instance_id: str, active: bool) -> None:
    runtime = _get_runtime(ctx)
    verb = "activate" if active else "deactivate"
    with runtime.logger.operation(
        f"cli instance {verb}",
        args={"instance_id": instance_id},
        target={"kind": "instance", "id": instance_id},
    ) as op:
        layout, definition_id = _resolve_layout(runtime, op)
        try:
            validate_instance_id(instance_id)
            changed = asyncio.run(
                _toggle(runtime, layout, definition_id, instance_id, active, op)
            )
        except SysregError as exc:
            _command_error(op, str(exc), rc=int(exc.exit_code))

        state = "active" if active else "inactive"
        if changed:
            console.print(f"[green]Instance '{instance_id}' is now {state}.[/green]")
        else:
            console.print(f"[yellow]Instance '{instance_id}' was already {state}.[/yellow]")


@instances_app.command("activate")
def instance_activate(
    ctx: typer.Context,
    instance_id: str = typer.Argument(..., help="Identifier of the instance to activate."),
) -> None:
    """Allow operations on an instance again."""
    _set_active_command(ctx, instance_id, True)


@instances_app.command("deactivate")
def instance_deactivate(
    ctx: typer.Context,
    instance_id: str = typer.Argument(..., help="Identifier of the instance to deactivate."),
) -> None:
    """Refuse operations on an instance until it is activated again."""
    _set_active_command(ctx, instance_id, False)


@config_app.command("show")
def config_show(
    ctx: typer.Context,
    json_output: bool = JSON_OPTION,
) -> None:
    """Show the resolved configuration."""
    runtime = _get_runtime(ctx)
    payload = runtime.config.to_dict()
    if json_output:
        console.print_json(data=payload)
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Key", style="bold")
    table.add_column("Value")
    for key, value in payload.items():
        table.add_row(key, str(value))
    console.print(table)


def main() -> None:
    """Console script entry point."""
    app()


__all__ = ["app", "main"]
