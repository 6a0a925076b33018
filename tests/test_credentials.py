"""Tests for router account credential provisioning."""
from __future__ import annotations

from pathlib import Path

import pytest

from conftest import FakeMetadataSession
from routerctl.bootstrap.credentials import (
    ACCOUNT_STATEMENTS,
    PASSWORD_ALPHABET,
    Credential,
    generate_password,
    provision_credential,
    router_username,
    store_credential,
)
from routerctl.bootstrap.errors import BootstrapIOError, BootstrapRemoteError
from routerctl.keyring import Keyring, KeyringError, open_keyring
from routerctl.providers.session import MetadataError


@pytest.fixture
def keyring(tmp_path: Path) -> Keyring:
    return open_keyring(tmp_path / "keyring", "master", create_if_missing=True)


def test_alphabet_has_92_distinct_symbols() -> None:
    assert len(PASSWORD_ALPHABET) == 92
    assert len(set(PASSWORD_ALPHABET)) == 92


def test_generate_password_shape() -> None:
    passwords = {generate_password() for _ in range(20)}

    assert len(passwords) == 20
    for password in passwords:
        assert len(password) == 16
        assert set(password) <= set(PASSWORD_ALPHABET)


def test_username_is_derived_from_router_id() -> None:
    assert router_username(42) == "mysql_innodb_cluster_router42"


def test_credential_repr_hides_password() -> None:
    assert "hunter2" not in repr(Credential("user", "hunter2"))


def test_provision_flushes_keyring_before_account(
    fake_session: FakeMetadataSession,
    keyring: Keyring,
) -> None:
    flushed_before: list[bool] = []
    original_execute = fake_session.execute

    def observing_execute(statement: str, params: object = None) -> int:
        flushed_before.append(keyring.path.exists())
        return original_execute(statement, params)  # type: ignore[arg-type]

    fake_session.execute = observing_execute  # type: ignore[method-assign]

    staged = provision_credential(fake_session, keyring, 3)

    assert flushed_before and all(flushed_before)
    assert fake_session.statements() == list(ACCOUNT_STATEMENTS)
    params = fake_session.executed[0][1]
    assert params["username"] == "mysql_innodb_cluster_router3"
    assert params["password"] == staged.credential.password
    reopened = open_keyring(keyring.path, "master", create_if_missing=False)
    assert reopened.fetch("mysql_innodb_cluster_router3", "password") == staged.credential.password


def test_drop_failure_restores_previous_password(
    fake_session: FakeMetadataSession,
    keyring: Keyring,
) -> None:
    keyring.store("mysql_innodb_cluster_router3", "password", "previous")
    keyring.flush()
    fake_session.fail_on("DROP USER", MetadataError("denied", code=1142))

    with pytest.raises(BootstrapRemoteError, match="Error creating MySQL account for router: denied"):
        provision_credential(fake_session, keyring, 3)

    assert fake_session.explicit_rollbacks == 1
    reopened = open_keyring(keyring.path, "master", create_if_missing=False)
    assert reopened.fetch("mysql_innodb_cluster_router3", "password") == "previous"


def test_drop_failure_removes_new_entry(
    fake_session: FakeMetadataSession,
    keyring: Keyring,
) -> None:
    fake_session.fail_on("DROP USER", MetadataError("denied"))

    with pytest.raises(BootstrapRemoteError):
        provision_credential(fake_session, keyring, 8)

    assert keyring.lookup("mysql_innodb_cluster_router8", "password") is None


@pytest.mark.parametrize("failing", ["CREATE USER", "GRANT SELECT ON performance_schema"])
def test_failure_after_account_change_keeps_new_password(
    fake_session: FakeMetadataSession,
    keyring: Keyring,
    failing: str,
) -> None:
    keyring.store("mysql_innodb_cluster_router3", "password", "previous")
    keyring.flush()
    fake_session.fail_on(failing, MetadataError("denied", code=1142))

    with pytest.raises(BootstrapRemoteError):
        provision_credential(fake_session, keyring, 3)

    bound_password = fake_session.executed[0][1]["password"]
    reopened = open_keyring(keyring.path, "master", create_if_missing=False)
    assert reopened.fetch("mysql_innodb_cluster_router3", "password") == bound_password
    assert bound_password != "previous"


def test_flush_failure_aborts_before_remote(
    fake_session: FakeMetadataSession,
    keyring: Keyring,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def fail_flush(self: Keyring) -> None:
        raise KeyringError("disk full")

    monkeypatch.setattr(Keyring, "flush", fail_flush)

    with pytest.raises(BootstrapIOError, match="Error storing encrypted password to disk"):
        provision_credential(fake_session, keyring, 2)

    assert fake_session.executed == []
    assert keyring.lookup("mysql_innodb_cluster_router2", "password") is None


def test_store_credential_remembers_previous(keyring: Keyring) -> None:
    keyring.store("u", "password", "old")

    staged = store_credential(keyring, Credential("u", "new"))

    assert staged.previous == "old"
    staged.revert(keyring)
    assert keyring.lookup("u", "password") == "old"
