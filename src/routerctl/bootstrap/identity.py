"""Find or register the router identity in the metadata server."""
from __future__ import annotations

import configparser
import logging
from dataclasses import dataclass
from pathlib import Path

from ..providers.cluster_metadata import ClusterMetadata
from ..providers.session import MetadataError
from .errors import BootstrapConflictError, BootstrapRemoteError, BootstrapValidationError

LOGGER = logging.getLogger(__name__)

METADATA_CACHE_SECTION = "metadata_cache"
DUPLICATE_KEY_ERROR = 1062
MAX_ROUTER_ID = 2**32 - 1


@dataclass(slots=True, frozen=True)
class RouterIdentity:
    """A router as known to the metadata server."""

    router_id: int
    router_name: str
    reused: bool = False


def _warn(warnings: list[str] | None, message: str) -> None:
    LOGGER.warning(message)
    if warnings is not None:
        warnings.append(message)


def router_id_from_config(
    path: Path,
    cluster_name: str,
    *,
    force: bool = False,
    warnings: list[str] | None = None,
) -> int | None:
    """Return the router_id an existing config holds for *cluster_name*.

    ``None`` means the router is not registered yet. A config written for a
    different cluster is a conflict unless *force* is set.
    """
    if not path.exists():
        return None
    parser = configparser.ConfigParser(interpolation=None)
    try:
        with path.open(encoding="utf-8") as handle:
            parser.read_file(handle)
    except OSError as exc:
        raise BootstrapConflictError(
            f"Could not read existing configuration {path}: {exc.strerror or exc}"
        ) from exc
    except configparser.Error as exc:
        raise BootstrapConflictError(
            f"Could not parse existing configuration {path}: {exc}"
        ) from exc

    sections = [
        name
        for name in parser.sections()
        if name == METADATA_CACHE_SECTION or name.startswith(f"{METADATA_CACHE_SECTION}:")
    ]
    if len(sections) > 1:
        raise BootstrapConflictError(
            "Bootstrapping of Router with multiple metadata_cache sections not supported"
        )
    if not sections:
        return None

    section = parser[sections[0]]
    existing_cluster = section.get("metadata_cluster", "")
    if existing_cluster == cluster_name:
        raw = section.get("router_id")
        if raw is None:
            _warn(warnings, f"router_id not set for cluster {cluster_name}")
            return None
        router_id = parse_router_id(raw, cluster_name=cluster_name, path=path)
        return router_id or None

    if force:
        LOGGER.info(
            "Replacing configuration for cluster '%s' with cluster '%s'",
            existing_cluster,
            cluster_name,
        )
        return None
    raise BootstrapConflictError(
        "The given Router instance is already configured for a cluster named "
        f"'{existing_cluster}'.\n"
        "If you'd like to replace it, please use the --force configuration option."
    )


def parse_router_id(raw: str, *, cluster_name: str, path: Path) -> int:
    """Parse *raw* as an unsigned 32-bit integer."""
    text = raw.strip()
    if not (text.isascii() and text.isdigit()) or int(text) > MAX_ROUTER_ID:
        raise BootstrapValidationError(
            f"Invalid router_id '{raw}' for cluster '{cluster_name}' in {path}"
        )
    return int(text)


def register_identity(
    metadata: ClusterMetadata,
    *,
    router_name: str,
    existing_id: int | None,
    force: bool = False,
    warnings: list[str] | None = None,
) -> RouterIdentity:
    """Reuse *existing_id* when the server still knows it, otherwise register anew.

    Must run inside the bootstrap transaction.
    """
    if existing_id is not None:
        try:
            metadata.check_router_id(existing_id)
        except MetadataError as exc:
            _warn(warnings, str(exc))
        else:
            LOGGER.debug("Reusing router_id %s", existing_id)
            return RouterIdentity(router_id=existing_id, router_name=router_name, reused=True)

    try:
        router_id = metadata.register_router(router_name, overwrite=force)
    except MetadataError as exc:
        if exc.code == DUPLICATE_KEY_ERROR:
            raise BootstrapRemoteError(
                f"It appears that a router instance named '{router_name}' has been "
                "previously configured in this host. If that instance no longer exists, "
                "use the --force option to overwrite it."
            ) from exc
        raise BootstrapRemoteError(
            f"While registering router instance in metadata server: {exc}"
        ) from exc
    return RouterIdentity(router_id=router_id, router_name=router_name)


__all__ = [
    "RouterIdentity",
    "parse_router_id",
    "register_identity",
    "router_id_from_config",
]
