"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from pathlib import Path

import pytest

from routerctl.config import AppConfig, load_config
from routerctl.providers.cluster_metadata import ClusterMetadata
from routerctl.providers.session import MetadataError
from routerctl.templates import TemplateEngine

HOSTNAME = "router-host"

DEFAULT_ROWS: list[tuple[object, ...]] = [
    ("mycluster", "default", "pm", "10.0.0.1:3306"),
    ("mycluster", "default", "pm", "10.0.0.2:3306"),
]


class FakeMetadataSession:
    """In-memory stand-in for the metadata server.

    Keeps just enough of the ``hosts`` and ``routers`` tables to exercise
    registration, and records every statement it receives.
    """

    def __init__(
        self,
        rows: list[tuple[object, ...]] | None = None,
        *,
        member_state: str = "ONLINE",
        primary_row: tuple[object, object] = (1, 1),
        schema_version: tuple[int, int, int] = (1, 0, 1),
    ) -> None:
        self.rows = list(DEFAULT_ROWS if rows is None else rows)
        self.member_state = member_state
        self.primary_row = primary_row
        self.schema_version = schema_version
        self.hosts: dict[str, int] = {}
        self.routers: dict[int, tuple[int, str]] = {}
        self.queries: list[tuple[str, dict[str, object]]] = []
        self.executed: list[tuple[str, dict[str, object]]] = []
        self.failures: dict[str, MetadataError] = {}
        self.commits = 0
        self.rollbacks = 0
        self.explicit_rollbacks = 0
        self.closed = False
        self._last_insert_id = 0

    # helpers used by tests -------------------------------------------------

    def fail_on(self, fragment: str, error: MetadataError) -> None:
        self.failures[fragment] = error

    def add_router(self, router_id: int, name: str, host_name: str = HOSTNAME) -> None:
        host_id = self.hosts.setdefault(host_name, len(self.hosts) + 1)
        self.routers[router_id] = (host_id, name)

    def statements(self) -> list[str]:
        return [statement for statement, _ in self.executed]

    def registrations(self) -> list[str]:
        return [s for s in self.statements() if "INTO mysql_innodb_cluster_metadata.routers" in s]

    # session protocol -------------------------------------------------------

    def query(
        self, statement: str, params: Mapping[str, object] | None = None
    ) -> list[tuple[object, ...]]:
        values = dict(params or {})
        self.queries.append((statement, values))
        self._maybe_fail(statement)
        if "schema_version" in statement:
            return [self.schema_version]
        if "F.cluster_name" in statement:
            return list(self.rows)
        if "COUNT(*)" in statement:
            return [(1,)]
        if "member_state" in statement:
            return [(self.member_state,)]
        if "group_replication_single_primary_mode" in statement:
            return [self.primary_row]
        if "r.router_id" in statement:
            entry = self.routers.get(int(str(values["router_id"])))
            if entry is None:
                return []
            host_id = entry[0]
            host_name = next(name for name, hid in self.hosts.items() if hid == host_id)
            return [(host_id, host_name)]
        if "FROM mysql_innodb_cluster_metadata.hosts" in statement:
            host_id = self.hosts.get(str(values["host_name"]))
            return [] if host_id is None else [(host_id,)]
        if "LAST_INSERT_ID" in statement:
            return [(self._last_insert_id,)]
        raise AssertionError(f"Unexpected query: {statement}")

    def query_one(
        self, statement: str, params: Mapping[str, object] | None = None
    ) -> tuple[object, ...] | None:
        rows = self.query(statement, params)
        return rows[0] if rows else None

    def execute(self, statement: str, params: Mapping[str, object] | None = None) -> int:
        values = dict(params or {})
        self.executed.append((statement, values))
        self._maybe_fail(statement)
        if statement.startswith("INSERT INTO mysql_innodb_cluster_metadata.hosts"):
            host_id = len(self.hosts) + 1
            self.hosts[str(values["host_name"])] = host_id
            self._last_insert_id = host_id
        elif "INTO mysql_innodb_cluster_metadata.routers" in statement:
            key = (int(str(values["host_id"])), str(values["name"]))
            existing = [rid for rid, entry in self.routers.items() if entry == key]
            if existing and statement.startswith("INSERT"):
                raise MetadataError(f"Duplicate entry '{key[1]}' for key 'h'", code=1062)
            for rid in existing:
                del self.routers[rid]
            router_id = max(self.routers, default=0) + 1
            self.routers[router_id] = key
            self._last_insert_id = router_id
        return 1

    def last_insert_id(self) -> int:
        return self._last_insert_id

    def rollback(self) -> None:
        self.explicit_rollbacks += 1

    @contextmanager
    def transaction(self) -> Iterator[FakeMetadataSession]:
        try:
            yield self
        except BaseException:
            self.rollbacks += 1
            raise
        self.commits += 1

    def close(self) -> None:
        self.closed = True

    def _maybe_fail(self, statement: str) -> None:
        for fragment, error in self.failures.items():
            if fragment in statement:
                raise error


@pytest.fixture
def fake_session() -> FakeMetadataSession:
    return FakeMetadataSession()


@pytest.fixture
def metadata(fake_session: FakeMetadataSession) -> ClusterMetadata:
    return ClusterMetadata(fake_session, hostname=HOSTNAME)


@pytest.fixture
def router_executable(tmp_path: Path) -> Path:
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir(exist_ok=True)
    path = bin_dir / "mysqlrouter"
    path.write_text("#!/bin/sh\nexit 0\n", encoding="utf-8")
    path.chmod(0o755)
    return path


def routerctl_env(tmp_path: Path, router_executable: Path) -> dict[str, str]:
    """Environment that points every routerctl path into *tmp_path*."""
    system_dir = tmp_path / "system"
    return {
        "ROUTERCTL_CONFIG_FILE": str(tmp_path / "routerctl.yml"),
        "ROUTERCTL_LOGS_DIR": str(tmp_path / "logs"),
        "ROUTERCTL_TEMPLATES_DIR": str(tmp_path / "templates"),
        "ROUTERCTL_ROUTER_EXECUTABLE": str(router_executable),
        "ROUTERCTL_SYSTEM__CONFIG_FILE": str(system_dir / "mysqlrouter.conf"),
        "ROUTERCTL_SYSTEM__KEYRING_PATH": str(system_dir / "keyring"),
        "ROUTERCTL_SYSTEM__SOCKETS_DIR": str(system_dir / "sockets"),
    }


@pytest.fixture
def app_config(tmp_path: Path, router_executable: Path) -> AppConfig:
    (tmp_path / "system").mkdir(exist_ok=True)
    return load_config(env=routerctl_env(tmp_path, router_executable))


@pytest.fixture
def templates() -> TemplateEngine:
    return TemplateEngine.with_overrides(None)
