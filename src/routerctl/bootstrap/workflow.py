"""Bootstrap orchestration for system-wide and directory deployments.

The order of side effects is fixed::

    layout -> keyring -> topology -> identity -> credential -> temp config
      -> remote commit -> backup -> rename(s) -> ledger commit -> scripts

Remote mutations share one transaction committed once the temporary config
has been rendered. Local artifacts are tracked by a
:class:`~routerctl.bootstrap.ledger.CompensatingLedger` and removed if the run
fails before the final renames. A crash between the remote commit and the
rename leaves the server updated and the old config in place; re-running with
``--force`` recovers from that state.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from ..config import AppConfig
from ..keyring import Keyring
from ..logging import OperationScope
from ..providers.cluster_metadata import ClusterMetadata
from ..providers.session import MetadataError, SessionProtocol
from ..templates import TemplateEngine
from .credentials import StagedCredential, provision_credential
from .document import build_config_document
from .endpoints import EndpointRequest, RouterOptions, assign_endpoints
from .errors import BootstrapError, BootstrapIOError, BootstrapRemoteError
from .identity import RouterIdentity, register_identity, router_id_from_config
from .layout import (
    DeploymentKind,
    DeploymentLayout,
    resolve_directory_layout,
    resolve_system_layout,
    validate_router_name,
)
from .ledger import CompensatingLedger
from .master_key import (
    Notifier,
    Prompter,
    install_master_key_file,
    open_keyring_for_bootstrap,
    stage_master_key_file,
)
from .publisher import backup_if_different, install_config, write_temporary_config
from .scripts import emit_lifecycle_scripts, resolve_executable
from .topology import ClusterTopology, fetch_topology

LOGGER = logging.getLogger(__name__)


class BootstrapStatus(str, Enum):
    """How a bootstrap attempt ended."""

    REGISTERED = "registered"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass(slots=True, frozen=True)
class BootstrapRequest:
    """Operator choices for one bootstrap run."""

    router_name: str | None = None
    force: bool = False
    directory: Path | None = None
    master_key_path: Path | None = None
    base_port: str | int | None = None
    bind_address: str | None = None
    use_sockets: bool = False
    skip_tcp: bool = False
    logdir: Path | None = None
    rundir: Path | None = None
    socketsdir: Path | None = None


@dataclass(slots=True)
class BootstrapOutcome:
    """Result of a bootstrap attempt; ``error`` is set only when it failed."""

    status: BootstrapStatus
    identity: RouterIdentity | None = None
    topology: ClusterTopology | None = None
    options: RouterOptions | None = None
    layout: DeploymentLayout | None = None
    username: str | None = None
    backup: Path | None = None
    scripts: list[Path] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    error: BootstrapError | None = None

    @property
    def reconfigured(self) -> bool:
        return self.identity is not None and self.identity.reused


@dataclass(slots=True)
class _Provisioned:
    identity: RouterIdentity
    topology: ClusterTopology
    options: RouterOptions
    staged: StagedCredential
    config_tmp: Path


def bootstrap_directory_deployment(
    request: BootstrapRequest,
    *,
    config: AppConfig,
    session: SessionProtocol,
    templates: TemplateEngine,
    prompt: Prompter,
    notify: Notifier,
    metadata: ClusterMetadata | None = None,
    executable: str | None = None,
    platform: str | None = None,
    op: OperationScope | None = None,
) -> BootstrapOutcome:
    """Create or reconfigure a self-contained deployment under ``request.directory``."""
    if request.directory is None:
        raise ValueError("A directory deployment needs request.directory.")
    warnings: list[str] = []
    metadata = metadata or ClusterMetadata(session)
    try:
        router_name = validate_router_name(request.router_name, directory_deployment=True)
        endpoints = _parse_endpoints(request, config)
        router_executable = resolve_executable(executable or config.router_executable)
        _check_session(metadata, op)

        with CompensatingLedger() as ledger:
            layout = resolve_directory_layout(
                request.directory,
                ledger=ledger,
                force=request.force,
                logdir=request.logdir,
                rundir=request.rundir,
                socketsdir=request.socketsdir,
                config_name=config.directory.config_name,
                keyring_name=config.directory.keyring_name,
                master_key_path=request.master_key_path,
            )
            _step(op, "layout.resolve", str(layout.directory))

            key_tmp = (
                stage_master_key_file(layout.master_key_path, ledger)
                if layout.master_key_path is not None
                else None
            )
            keyring = _open_keyring(layout, key_tmp, ledger, prompt=prompt, notify=notify)
            if keyring is None:
                return _cancelled(layout, warnings, op)
            _step(op, "keyring.open", str(layout.keyring_path))

            provisioned = _provision(
                request,
                config=config,
                session=session,
                metadata=metadata,
                keyring=keyring,
                layout=layout,
                router_name=router_name,
                endpoints=endpoints,
                ledger=ledger,
                notify=notify,
                warnings=warnings,
                op=op,
            )

            backup = _publish(provisioned.config_tmp, layout, ledger, op)
            if key_tmp is not None and layout.master_key_path is not None:
                install_master_key_file(key_tmp, layout.master_key_path, ledger)
                _step(op, "master_key.install", str(layout.master_key_path))
            ledger.commit()

        scripts = emit_lifecycle_scripts(
            templates,
            layout.directory or request.directory,
            router_executable,
            interactive_master_key=layout.master_key_path is None,
            pid_name=config.directory.pid_name,
            config_name=config.directory.config_name,
            platform=platform,
        )
        _step(op, "scripts.emit", ", ".join(path.name for path in scripts))
        return _registered(provisioned, layout, backup, scripts, warnings)
    except BootstrapError as exc:
        return _failed(exc, warnings, op)
    except MetadataError as exc:
        return _failed(BootstrapRemoteError(str(exc)), warnings, op)
    except OSError as exc:
        return _failed(BootstrapIOError(str(exc)), warnings, op)


def bootstrap_system_deployment(
    request: BootstrapRequest,
    *,
    config: AppConfig,
    session: SessionProtocol,
    prompt: Prompter,
    notify: Notifier,
    metadata: ClusterMetadata | None = None,
    op: OperationScope | None = None,
) -> BootstrapOutcome:
    """Create or reconfigure the system-wide router configuration."""
    warnings: list[str] = []
    metadata = metadata or ClusterMetadata(session)
    try:
        router_name = validate_router_name(request.router_name, directory_deployment=False)
        endpoints = _parse_endpoints(request, config)
        _check_session(metadata, op)

        with CompensatingLedger() as ledger:
            layout = resolve_system_layout(
                config,
                socketsdir=request.socketsdir,
                logdir=request.logdir,
                rundir=request.rundir,
                master_key_path=request.master_key_path,
            )
            _step(op, "layout.resolve", str(layout.config_path))

            key_file = layout.master_key_path
            if key_file is not None and not key_file.exists():
                ledger.record_file(key_file)
            keyring = _open_keyring(layout, key_file, ledger, prompt=prompt, notify=notify)
            if keyring is None:
                return _cancelled(layout, warnings, op)
            _step(op, "keyring.open", str(layout.keyring_path))

            provisioned = _provision(
                request,
                config=config,
                session=session,
                metadata=metadata,
                keyring=keyring,
                layout=layout,
                router_name=router_name,
                endpoints=endpoints,
                ledger=ledger,
                notify=notify,
                warnings=warnings,
                op=op,
            )
            backup = _publish(provisioned.config_tmp, layout, ledger, op)
            ledger.commit()
        return _registered(provisioned, layout, backup, [], warnings)
    except BootstrapError as exc:
        return _failed(exc, warnings, op)
    except MetadataError as exc:
        return _failed(BootstrapRemoteError(str(exc)), warnings, op)
    except OSError as exc:
        return _failed(BootstrapIOError(str(exc)), warnings, op)


def _parse_endpoints(request: BootstrapRequest, config: AppConfig) -> EndpointRequest:
    return EndpointRequest.parse(
        base_port=request.base_port,
        bind_address=(
            request.bind_address
            if request.bind_address is not None
            else config.endpoints.bind_address
        ),
        use_sockets=request.use_sockets,
        skip_tcp=request.skip_tcp,
    )


def _check_session(metadata: ClusterMetadata, op: OperationScope | None) -> None:
    try:
        metadata.check_session()
    except MetadataError as exc:
        raise BootstrapRemoteError(str(exc)) from exc
    _step(op, "metadata.check_session")


def _open_keyring(
    layout: DeploymentLayout,
    master_key_file: Path | None,
    ledger: CompensatingLedger,
    *,
    prompt: Prompter,
    notify: Notifier,
) -> Keyring | None:
    existed = layout.keyring_path.exists()
    keyring = open_keyring_for_bootstrap(
        layout.keyring_path, master_key_file, prompt=prompt, notify=notify
    )
    if keyring is not None and not existed:
        ledger.record_file(layout.keyring_path)
    return keyring


def _provision(
    request: BootstrapRequest,
    *,
    config: AppConfig,
    session: SessionProtocol,
    metadata: ClusterMetadata,
    keyring: Keyring,
    layout: DeploymentLayout,
    router_name: str,
    endpoints: EndpointRequest,
    ledger: CompensatingLedger,
    notify: Notifier,
    warnings: list[str],
    op: OperationScope | None,
) -> _Provisioned:
    topology = fetch_topology(session)
    _step(op, "topology.fetch", topology.cluster_name)
    options = assign_endpoints(
        endpoints, multi_master=topology.multi_master, socketsdir=layout.socketsdir
    )

    existing_id = router_id_from_config(
        layout.config_path, topology.cluster_name, force=request.force, warnings=warnings
    )
    verb = "Reconfiguring" if existing_id is not None else "Bootstrapping"
    if layout.kind is DeploymentKind.DIRECTORY:
        notify(f"{verb} MySQL Router instance at {layout.directory}...")
    else:
        notify(f"{verb} system MySQL Router instance...")

    with session.transaction():
        identity = register_identity(
            metadata,
            router_name=router_name,
            existing_id=existing_id,
            force=request.force,
            warnings=warnings,
        )
        _step(op, "identity.register", str(identity.router_id))

        # account DDL commits implicitly; the keyring keeps the new password
        staged = provision_credential(session, keyring, identity.router_id)
        _step(op, "credential.provision", staged.credential.username)

        try:
            metadata.update_router_info(identity.router_id, options.metadata_attributes())
        except MetadataError as exc:
            raise BootstrapRemoteError(
                f"Error updating router information in metadata server: {exc}"
            ) from exc

        document = build_config_document(
            router_id=identity.router_id,
            router_name=router_name,
            topology=topology,
            username=staged.credential.username,
            options=options,
            layout=layout,
            ttl=config.metadata_ttl,
        )
        config_tmp = write_temporary_config(document, layout.config_path, ledger)
        _step(op, "config.render", str(config_tmp))
    _step(op, "metadata.commit")
    return _Provisioned(
        identity=identity,
        topology=topology,
        options=options,
        staged=staged,
        config_tmp=config_tmp,
    )


def _publish(
    config_tmp: Path,
    layout: DeploymentLayout,
    ledger: CompensatingLedger,
    op: OperationScope | None,
) -> Path | None:
    backup = backup_if_different(layout.config_path, config_tmp)
    if backup is not None:
        _step(op, "config.backup", str(backup))
    install_config(config_tmp, layout.config_path, ledger)
    _step(op, "config.install", str(layout.config_path))
    return backup


def _registered(
    provisioned: _Provisioned,
    layout: DeploymentLayout,
    backup: Path | None,
    scripts: list[Path],
    warnings: list[str],
) -> BootstrapOutcome:
    return BootstrapOutcome(
        status=BootstrapStatus.REGISTERED,
        identity=provisioned.identity,
        topology=provisioned.topology,
        options=provisioned.options,
        layout=layout,
        username=provisioned.staged.credential.username,
        backup=backup,
        scripts=scripts,
        warnings=warnings,
    )


def _cancelled(
    layout: DeploymentLayout,
    warnings: list[str],
    op: OperationScope | None,
) -> BootstrapOutcome:
    _step(op, "keyring.open", "cancelled")
    return BootstrapOutcome(status=BootstrapStatus.CANCELLED, layout=layout, warnings=warnings)


def _failed(
    error: BootstrapError,
    warnings: list[str],
    op: OperationScope | None,
) -> BootstrapOutcome:
    LOGGER.error("Bootstrap failed (%s): %s", error.kind, error)
    _step(op, "bootstrap", str(error), status="error")
    return BootstrapOutcome(status=BootstrapStatus.FAILED, warnings=warnings, error=error)


def _step(
    op: OperationScope | None,
    name: str,
    detail: str | None = None,
    *,
    status: str = "success",
) -> None:
    if op is not None:
        op.add_step(name, status=status, detail=detail)


__all__ = [
    "BootstrapOutcome",
    "BootstrapRequest",
    "BootstrapStatus",
    "bootstrap_directory_deployment",
    "bootstrap_system_deployment",
]
