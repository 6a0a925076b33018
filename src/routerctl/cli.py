"""Typer-powered command line interface for ``routerctl``.

``routerctl bootstrap`` provisions a MySQL Router deployment against an InnoDB
cluster: it registers the router in the cluster metadata, creates its
metadata account, stores the account password in an encrypted keyring and
writes the router configuration.
"""
from __future__ import annotations

import json
import logging
import textwrap
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import __version__
from .bootstrap import (
    BootstrapOutcome,
    BootstrapRequest,
    BootstrapStatus,
    bootstrap_directory_deployment,
    bootstrap_system_deployment,
)
from .config import AppConfig, ConfigError, load_config
from .exit_codes import ExitCode
from .logging import OperationScope, StructuredLogger
from .providers import (
    InvalidServerUrl,
    MetadataError,
    MetadataSession,
    ServerAddress,
    SessionProtocol,
    parse_server_url,
)
from .templates import TemplateEngine

console = Console()

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to routerctl's YAML config file.",
)

DIRECTORY_OPTION = typer.Option(
    None,
    "--directory",
    "-d",
    file_okay=False,
    help="Create a self-contained deployment in this directory instead of a system one.",
)
NAME_OPTION = typer.Option(
    None,
    "--name",
    help="Name of the router instance (defaults to 'system' for system deployments).",
)
FORCE_OPTION = typer.Option(
    False,
    "--force",
    help="Replace an existing configuration or router registration.",
)
MASTER_KEY_PATH_OPTION = typer.Option(
    None,
    "--master-key-path",
    dir_okay=False,
    help="Store the keyring master key in this file instead of prompting for it.",
)
BASE_PORT_OPTION = typer.Option(
    None,
    "--conf-base-port",
    help="First TCP port to assign; later endpoints use consecutive ports.",
)
BIND_ADDRESS_OPTION = typer.Option(
    None,
    "--conf-bind-address",
    help="Address the routing endpoints listen on.",
)
USE_SOCKETS_OPTION = typer.Option(
    False,
    "--conf-use-sockets",
    help="Also listen on local UNIX sockets.",
)
SKIP_TCP_OPTION = typer.Option(
    False,
    "--conf-skip-tcp",
    help="Do not listen on TCP ports (use with --conf-use-sockets).",
)
LOGDIR_OPTION = typer.Option(None, "--conf-logdir", help="Override the router log directory.")
RUNDIR_OPTION = typer.Option(None, "--conf-rundir", help="Override the router runtime directory.")
SOCKETSDIR_OPTION = typer.Option(
    None,
    "--conf-socketsdir",
    help="Directory the UNIX sockets are created in.",
)
QUIET_OPTION = typer.Option(False, "--quiet", help="Only print errors.")
JSON_OPTION = typer.Option(False, "--json", help="Emit the bootstrap result as JSON.")


app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        MySQL Router provisioning CLI.

        Bootstraps a router deployment against an InnoDB cluster and keeps its
        registration, metadata account and configuration in sync.
        """
    ).strip(),
)

config_app = typer.Typer(help="Inspect routerctl configuration.")
app.add_typer(config_app, name="config")


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    logger: StructuredLogger
    templates: TemplateEngine


def _ensure_runtime(ctx: typer.Context, config_file: Path | None) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime

    try:
        config = load_config(config_file=config_file)
    except ConfigError as exc:
        console.print(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(code=ExitCode.VALIDATION) from exc
    logging.getLogger("routerctl").setLevel(config.log_level)
    runtime = RuntimeContext(
        config=config,
        logger=StructuredLogger(config.logs_dir),
        templates=TemplateEngine.with_overrides(config.templates_dir),
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
        help="Show the routerctl version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        runtime = _ensure_runtime(ctx, config_file)
        with runtime.logger.operation(
            "root --version",
            args={"version": True},
            target={"kind": "meta", "scope": "version"},
        ) as op:
            console.print(f"routerctl {__version__}")
            op.success("Reported CLI version.", changed=0)
        raise typer.Exit(code=0)

    _ensure_runtime(ctx, config_file)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=0)


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


def _open_session(address: ServerAddress, connect_timeout: float) -> SessionProtocol:
    return MetadataSession.connect(address, connect_timeout=connect_timeout)


def _prompt_secret(text: str) -> str:
    return str(typer.prompt(text, hide_input=True, default="", show_default=False))


@config_app.command("show")
def config_show(
    ctx: typer.Context,
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Emit configuration as JSON instead of a table.",
    ),
) -> None:
    """Display the effective configuration after merges."""
    runtime = _get_runtime(ctx)
    data = runtime.config.to_dict()

    with runtime.logger.operation(
        "config show",
        args={"json": json_output},
        target={"kind": "config"},
    ) as op:
        if json_output:
            console.print_json(data=data)
            op.success("Rendered configuration as JSON.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Key", style="bold")
        table.add_column("Value")

        for key, value in data.items():
            if isinstance(value, dict):
                rendered = json.dumps(value, indent=2, sort_keys=True)
            else:
                rendered = str(value)
            table.add_row(key, rendered)

        console.print(table)
        op.success("Rendered configuration table.", changed=0)


@app.command()
def bootstrap(
    ctx: typer.Context,
    server_url: str = typer.Argument(
        ...,
        metavar="SERVER_URL",
        help="Metadata server as [mysql://][user[:password]@]host[:port].",
    ),
    directory: Path | None = DIRECTORY_OPTION,
    name: str | None = NAME_OPTION,
    force: bool = FORCE_OPTION,
    master_key_path: Path | None = MASTER_KEY_PATH_OPTION,
    conf_base_port: str | None = BASE_PORT_OPTION,
    conf_bind_address: str | None = BIND_ADDRESS_OPTION,
    conf_use_sockets: bool = USE_SOCKETS_OPTION,
    conf_skip_tcp: bool = SKIP_TCP_OPTION,
    conf_logdir: Path | None = LOGDIR_OPTION,
    conf_rundir: Path | None = RUNDIR_OPTION,
    conf_socketsdir: Path | None = SOCKETSDIR_OPTION,
    quiet: bool = QUIET_OPTION,
    json_output: bool = JSON_OPTION,
) -> None:
    """Register this router with an InnoDB cluster and write its configuration."""
    runtime = _get_runtime(ctx)
    scope = "directory" if directory is not None else "system"

    with runtime.logger.operation(
        "bootstrap",
        args={
            "directory": directory,
            "name": name,
            "force": force,
            "master_key_path": master_key_path,
            "base_port": conf_base_port,
            "bind_address": conf_bind_address,
            "use_sockets": conf_use_sockets,
            "skip_tcp": conf_skip_tcp,
        },
        target={"kind": "router", "scope": scope, "path": directory},
    ) as op:
        try:
            address = parse_server_url(server_url)
        except InvalidServerUrl as exc:
            _command_error(op, str(exc), rc=ExitCode.VALIDATION)
        if address.password is None:
            address = address.with_password(
                _prompt_secret(f"Please enter MySQL password for {address.user}")
            )

        try:
            session = _open_session(address, runtime.config.connect_timeout)
        except MetadataError as exc:
            _command_error(op, str(exc), rc=ExitCode.PROVIDER)
        op.add_step("metadata.connect", detail=address.display())

        silent = quiet or json_output
        request = BootstrapRequest(
            router_name=name,
            force=force,
            directory=directory,
            master_key_path=master_key_path,
            base_port=conf_base_port,
            bind_address=conf_bind_address,
            use_sockets=conf_use_sockets,
            skip_tcp=conf_skip_tcp,
            logdir=conf_logdir,
            rundir=conf_rundir,
            socketsdir=conf_socketsdir,
        )

        def notify(message: str) -> None:
            if not silent:
                console.print(message, markup=False, highlight=False)

        try:
            if directory is not None:
                outcome = bootstrap_directory_deployment(
                    request,
                    config=runtime.config,
                    session=session,
                    templates=runtime.templates,
                    prompt=_prompt_secret,
                    notify=notify,
                    op=op,
                )
            else:
                outcome = bootstrap_system_deployment(
                    request,
                    config=runtime.config,
                    session=session,
                    prompt=_prompt_secret,
                    notify=notify,
                    op=op,
                )
        finally:
            close = getattr(session, "close", None)
            if callable(close):
                close()

        _report_outcome(op, outcome, quiet=quiet, json_output=json_output)


def _report_outcome(
    op: OperationScope,
    outcome: BootstrapOutcome,
    *,
    quiet: bool,
    json_output: bool,
) -> None:
    if outcome.status is BootstrapStatus.CANCELLED:
        if json_output:
            console.print_json(data={"status": outcome.status.value})
        elif not quiet:
            console.print("[yellow]Bootstrap cancelled by operator.[/yellow]")
        op.warning("Bootstrap cancelled by operator.", warnings=["user-cancelled"])
        return

    if outcome.status is BootstrapStatus.FAILED:
        error = outcome.error
        message = str(error) if error is not None else "Bootstrap failed."
        rc = error.exit_code if error is not None else ExitCode.ENVIRONMENT
        for warning in outcome.warnings:
            console.print(f"[yellow]WARNING:[/yellow] {escape(warning)}")
        _command_error(op, message, rc=rc)

    identity = outcome.identity
    topology = outcome.topology
    layout = outcome.layout
    context: dict[str, object] = {
        "router_id": identity.router_id if identity else None,
        "router_name": identity.router_name if identity else None,
        "cluster": topology.cluster_name if topology else None,
        "replicaset": topology.replicaset_name if topology else None,
        "config_path": layout.config_path if layout else None,
        "reconfigured": outcome.reconfigured,
    }
    backups = [str(outcome.backup)] if outcome.backup is not None else []

    if json_output:
        payload = {
            "status": outcome.status.value,
            **{
                key: str(value) if isinstance(value, Path) else value
                for key, value in context.items()
            },
            "multi_master": topology.multi_master if topology else None,
            "username": outcome.username,
            "backup": backups[0] if backups else None,
            "scripts": [str(path) for path in outcome.scripts],
            "endpoints": outcome.options.metadata_attributes() if outcome.options else {},
            "warnings": list(outcome.warnings),
        }
        console.print_json(data=payload)
    elif not quiet:
        for warning in outcome.warnings:
            console.print(f"[yellow]WARNING:[/yellow] {escape(warning)}")
        if outcome.backup is not None:
            console.print(f"\nExisting configurations backed up to {outcome.backup}")
        console.print()
        for line in _connection_summary(outcome):
            console.print(line, markup=False, highlight=False)

    message = "Router reconfigured." if outcome.reconfigured else "Router bootstrapped."
    if outcome.warnings:
        op.warning(
            message,
            warnings=outcome.warnings,
            changed=1,
            backups=backups,
            context=context,
        )
    else:
        op.success(message, changed=1, backups=backups, context=context)


def _connection_summary(outcome: BootstrapOutcome) -> list[str]:
    """Describe where clients can connect once the router is started."""
    topology = outcome.topology
    options = outcome.options
    identity = outcome.identity
    if topology is None or options is None:
        return []
    name = identity.router_name if identity else ""
    label = "" if not name or name == "system" else f" '{name}'"
    suffix = " (multi-master)" if topology.multi_master else ""
    lines = [
        f"MySQL Router{label} has now been configured for the InnoDB cluster "
        f"'{topology.cluster_name}'{suffix}.",
        "",
        "The following connection information can be used to connect to the cluster.",
        "",
    ]
    groups = (
        ("Classic MySQL protocol", options.rw, options.ro),
        ("X protocol", options.rw_x, options.ro_x),
    )
    for protocol, rw, ro in groups:
        if not rw and not ro:
            continue
        lines.append(f"{protocol} connections to cluster '{topology.cluster_name}':")
        for label_text, endpoint in (("Read/Write", rw), ("Read/Only", ro)):
            if endpoint.port > 0:
                lines.append(f"- {label_text} Connections: localhost:{endpoint.port}")
            if endpoint.socket:
                lines.append(
                    f"- {label_text} Connections: {options.socketsdir}/{endpoint.socket}"
                )
        lines.append("")
    return lines


__all__ = ["app"]
