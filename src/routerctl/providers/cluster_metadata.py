"""Read and update router records in the InnoDB cluster metadata schema."""
from __future__ import annotations

import logging
import socket
from collections.abc import Mapping
from dataclasses import dataclass, field

from .session import MetadataError, SessionProtocol

LOGGER = logging.getLogger(__name__)

SCHEMA = "mysql_innodb_cluster_metadata"
SUPPORTED_SCHEMA_MAJOR = 1

ROUTER_ENDPOINT_ATTRIBUTES = ("RWEndpoint", "ROEndpoint", "RWXEndpoint", "ROXEndpoint")

_SCHEMA_VERSION_QUERY = f"SELECT major, minor, patch FROM {SCHEMA}.schema_version"

_INSTANCE_QUERY = (
    f"SELECT COUNT(*) FROM {SCHEMA}.instances WHERE mysql_server_uuid = @@server_uuid"
)

_MEMBER_STATE_QUERY = (
    "SELECT member_state FROM performance_schema.replication_group_members"
    " WHERE member_id = @@server_uuid"
)

_PRIMARY_QUERY = (
    "SELECT @@group_replication_single_primary_mode,"
    " (SELECT variable_value FROM performance_schema.global_status"
    "  WHERE variable_name = 'group_replication_primary_member') = @@server_uuid"
)

_ROUTER_HOST_QUERY = (
    f"SELECT h.host_id, h.host_name FROM {SCHEMA}.routers r"
    f" JOIN {SCHEMA}.hosts h ON r.host_id = h.host_id"
    " WHERE r.router_id = :router_id"
)

_HOST_QUERY = f"SELECT host_id FROM {SCHEMA}.hosts WHERE host_name = :host_name LIMIT 1"

_HOST_INSERT = (
    f"INSERT INTO {SCHEMA}.hosts (host_name, location, attributes)"
    " VALUES (:host_name, '', JSON_OBJECT('registeredFrom', 'mysql-router'))"
)

_ROUTER_INFO_UPDATE = (
    f"UPDATE {SCHEMA}.routers SET attributes = JSON_SET(COALESCE(attributes, JSON_OBJECT()),"
    " '$.RWEndpoint', :rw, '$.ROEndpoint', :ro,"
    " '$.RWXEndpoint', :rwx, '$.ROXEndpoint', :rox)"
    " WHERE router_id = :router_id"
)


@dataclass(slots=True)
class ClusterMetadata:
    """Router registration API backed by a metadata session."""

    session: SessionProtocol
    hostname: str = field(default_factory=socket.gethostname)

    def check_session(self) -> None:
        """Verify the connected server can be used to bootstrap a router.

        The metadata schema must exist with a supported version, the server
        must be a registered instance that is ONLINE in its group, and in
        single-primary groups it must be the primary.
        """
        try:
            version = self.session.query_one(_SCHEMA_VERSION_QUERY)
        except MetadataError as exc:
            raise MetadataError(
                "Expected MySQL Server to contain the InnoDB cluster metadata schema, "
                f"but reading its version failed: {exc}",
                code=exc.code,
            ) from exc
        if version is None or int(str(version[0])) != SUPPORTED_SCHEMA_MAJOR:
            found = ".".join(str(part) for part in version) if version else "none"
            raise MetadataError(
                f"This version of routerctl requires InnoDB cluster metadata version "
                f"{SUPPORTED_SCHEMA_MAJOR}.x.x, found {found}."
            )

        count = self.session.query_one(_INSTANCE_QUERY)
        if count is None or int(str(count[0])) == 0:
            raise MetadataError(
                "The provided server is not part of the InnoDB cluster described by its metadata."
            )

        state = self.session.query_one(_MEMBER_STATE_QUERY)
        if state is None or str(state[0]).upper() != "ONLINE":
            current = state[0] if state else "not a group member"
            raise MetadataError(
                f"The provided server is not ONLINE in group replication (state: {current})."
            )

        primary = self.session.query_one(_PRIMARY_QUERY)
        if primary is not None and _truthy(primary[0]) and not _truthy(primary[1]):
            raise MetadataError(
                "The provided server is not the primary of a single-primary group; "
                "bootstrap against the primary member."
            )
        LOGGER.debug("Metadata server %s passed session checks", self.hostname)

    def check_router_id(self, router_id: int) -> None:
        """Raise :class:`MetadataError` unless *router_id* is registered for this host."""
        row = self.session.query_one(_ROUTER_HOST_QUERY, {"router_id": router_id})
        if row is None:
            raise MetadataError(f"router_id {router_id} not found in metadata")
        host_name = str(row[1])
        if host_name != self.hostname:
            raise MetadataError(
                f"router_id {router_id} is associated with a different host ('{host_name}')"
            )

    def register_router(self, name: str, *, overwrite: bool = False) -> int:
        """Insert (or replace, when *overwrite*) the router record and return its id."""
        host_id = self._ensure_host()
        verb = "REPLACE" if overwrite else "INSERT"
        self.session.execute(
            f"{verb} INTO {SCHEMA}.routers (host_id, router_name) VALUES (:host_id, :name)",
            {"host_id": host_id, "name": name},
        )
        router_id = self.session.last_insert_id()
        LOGGER.info("Registered router '%s' with id %s", name, router_id)
        return router_id

    def update_router_info(self, router_id: int, endpoints: Mapping[str, str]) -> None:
        """Publish the router's listener endpoints as router attributes."""
        self.session.execute(
            _ROUTER_INFO_UPDATE,
            {
                "rw": endpoints.get("RWEndpoint", ""),
                "ro": endpoints.get("ROEndpoint", ""),
                "rwx": endpoints.get("RWXEndpoint", ""),
                "rox": endpoints.get("ROXEndpoint", ""),
                "router_id": router_id,
            },
        )

    def _ensure_host(self) -> int:
        row = self.session.query_one(_HOST_QUERY, {"host_name": self.hostname})
        if row is not None:
            return int(str(row[0]))
        self.session.execute(_HOST_INSERT, {"host_name": self.hostname})
        return self.session.last_insert_id()


def _truthy(value: object) -> bool:
    if isinstance(value, (bytes, str)):
        return value not in (b"", "", b"0", "0")
    return bool(value)


__all__ = ["ClusterMetadata", "ROUTER_ENDPOINT_ATTRIBUTES", "SCHEMA"]
