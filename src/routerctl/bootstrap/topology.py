"""Discover the cluster and replicaset the metadata server belongs to."""
from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from ..providers.session import MetadataError, SessionProtocol
from .errors import BootstrapRemoteError

METADATA_QUERY = (
    "SELECT F.cluster_name, R.replicaset_name, R.topology_type,"
    " JSON_UNQUOTE(JSON_EXTRACT(I.addresses, '$.mysqlClassic'))"
    " FROM mysql_innodb_cluster_metadata.clusters AS F,"
    " mysql_innodb_cluster_metadata.instances AS I,"
    " mysql_innodb_cluster_metadata.replicasets AS R"
    " WHERE R.replicaset_id = (SELECT replicaset_id"
    " FROM mysql_innodb_cluster_metadata.instances"
    " WHERE mysql_server_uuid = @@server_uuid)"
    " AND I.replicaset_id = R.replicaset_id"
    " AND R.cluster_id = F.cluster_id"
)

SINGLE_PRIMARY = "pm"
MULTI_PRIMARY = "mm"


@dataclass(slots=True, frozen=True)
class ClusterTopology:
    """The cluster, replicaset and members a router will be configured for."""

    cluster_name: str
    replicaset_name: str
    multi_master: bool
    member_addresses: tuple[str, ...]

    @property
    def bootstrap_servers(self) -> str:
        """Return the comma separated ``mysql://`` list for the metadata cache."""
        return ",".join(f"mysql://{address}" for address in self.member_addresses)


def aggregate_topology(rows: Iterable[Sequence[object]]) -> ClusterTopology:
    """Fold metadata rows into a single :class:`ClusterTopology`.

    Raises :class:`BootstrapRemoteError` when the rows describe more than one
    cluster or replicaset, carry an unknown topology type, or are empty.
    """
    cluster_name: str | None = None
    replicaset_name: str | None = None
    multi_master = False
    addresses: list[str] = []

    for row in rows:
        row_cluster = _as_text(row[0])
        row_replicaset = _as_text(row[1])
        if cluster_name is None:
            cluster_name = row_cluster
        elif cluster_name != row_cluster:
            raise BootstrapRemoteError("Metadata contains more than one cluster")
        if replicaset_name is None:
            replicaset_name = row_replicaset
        elif replicaset_name != row_replicaset:
            raise BootstrapRemoteError("Metadata contains more than one replica-set")

        topology_type = row[2]
        if topology_type is not None:
            kind = _as_text(topology_type)
            if kind == MULTI_PRIMARY:
                multi_master = True
            elif kind == SINGLE_PRIMARY:
                multi_master = False
            else:
                raise BootstrapRemoteError(f"Unknown topology type in metadata: {kind}")

        if row[3] is not None:
            addresses.append(_as_text(row[3]))

    if cluster_name is None or replicaset_name is None:
        raise BootstrapRemoteError("No clusters defined in metadata server")
    return ClusterTopology(
        cluster_name=cluster_name,
        replicaset_name=replicaset_name,
        multi_master=multi_master,
        member_addresses=tuple(addresses),
    )


def fetch_topology(session: SessionProtocol) -> ClusterTopology:
    """Query the metadata server for the topology it is a member of."""
    try:
        rows = session.query(METADATA_QUERY)
    except MetadataError as exc:
        raise BootstrapRemoteError(f"Error querying metadata: {exc}") from exc
    return aggregate_topology(rows)


def _as_text(value: object) -> str:
    if isinstance(value, (bytes, bytearray)):
        return value.decode("utf-8")
    return str(value)


__all__ = [
    "METADATA_QUERY",
    "ClusterTopology",
    "aggregate_topology",
    "fetch_topology",
]
