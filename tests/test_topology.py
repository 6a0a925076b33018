"""Tests for topology aggregation."""
from __future__ import annotations

import pytest

from routerctl.bootstrap.errors import BootstrapRemoteError
from routerctl.bootstrap.topology import METADATA_QUERY, aggregate_topology, fetch_topology
from routerctl.providers.session import MetadataError

from conftest import FakeMetadataSession


def test_aggregate_single_primary_rows() -> None:
    topology = aggregate_topology(
        [("C", "R", "pm", "10.0.0.1:3306"), ("C", "R", "pm", "10.0.0.2:3306")]
    )

    assert topology.cluster_name == "C"
    assert topology.replicaset_name == "R"
    assert topology.multi_master is False
    assert topology.member_addresses == ("10.0.0.1:3306", "10.0.0.2:3306")
    assert topology.bootstrap_servers == "mysql://10.0.0.1:3306,mysql://10.0.0.2:3306"


def test_aggregate_multi_primary_and_bytes() -> None:
    topology = aggregate_topology([(b"C", b"R", b"mm", b"db1:3306")])

    assert topology.multi_master is True
    assert topology.bootstrap_servers == "mysql://db1:3306"


def test_aggregate_skips_null_type_and_address() -> None:
    topology = aggregate_topology([("C", "R", None, None), ("C", "R", "pm", "db2:3306")])

    assert topology.member_addresses == ("db2:3306",)


def test_aggregate_rejects_mixed_clusters() -> None:
    rows = [
        ("C", "R", "pm", "10.0.0.1:3306"),
        ("D", "R", "pm", "10.0.0.2:3306"),
    ]
    with pytest.raises(BootstrapRemoteError, match="more than one cluster"):
        aggregate_topology(rows)


def test_aggregate_rejects_mixed_replicasets() -> None:
    rows = [
        ("C", "R", "pm", "10.0.0.1:3306"),
        ("C", "S", "pm", "10.0.0.2:3306"),
    ]
    with pytest.raises(BootstrapRemoteError, match="more than one replica-set"):
        aggregate_topology(rows)


def test_aggregate_rejects_unknown_topology_type() -> None:
    with pytest.raises(BootstrapRemoteError, match="Unknown topology type in metadata: ar"):
        aggregate_topology([("C", "R", "ar", "10.0.0.1:3306")])


def test_aggregate_rejects_empty_metadata() -> None:
    with pytest.raises(BootstrapRemoteError, match="No clusters defined"):
        aggregate_topology([])


def test_fetch_topology_runs_single_query(fake_session: FakeMetadataSession) -> None:
    topology = fetch_topology(fake_session)

    assert topology.cluster_name == "mycluster"
    assert [statement for statement, _ in fake_session.queries] == [METADATA_QUERY]


def test_fetch_topology_wraps_query_errors(fake_session: FakeMetadataSession) -> None:
    fake_session.fail_on("F.cluster_name", MetadataError("Table doesn't exist", code=1146))

    with pytest.raises(BootstrapRemoteError, match="Error querying metadata: Table doesn't exist"):
        fetch_topology(fake_session)
