"""Generate, store, and provision the router's metadata account."""
from __future__ import annotations

import logging
import secrets
import string
from dataclasses import dataclass, field

from ..keyring import Keyring, KeyringError
from ..providers.session import MetadataError, SessionProtocol
from .errors import BootstrapIOError, BootstrapRemoteError

LOGGER = logging.getLogger(__name__)

PASSWORD_ALPHABET = (
    string.digits
    + string.ascii_lowercase
    + string.ascii_uppercase
    + "~@#%$^&*()-_=+]}[{|;:.>,</?!\"'"
)
PASSWORD_LENGTH = 16
KEYRING_ATTRIBUTE = "password"
USERNAME_PREFIX = "mysql_innodb_cluster_router"

ACCOUNT_STATEMENTS = (
    "DROP USER IF EXISTS :username@'%'",
    "CREATE USER :username@'%' IDENTIFIED BY :password",
    "GRANT SELECT ON mysql_innodb_cluster_metadata.* TO :username@'%'",
    "GRANT SELECT ON performance_schema.replication_group_members TO :username@'%'",
)


def generate_password(length: int = PASSWORD_LENGTH) -> str:
    return "".join(secrets.choice(PASSWORD_ALPHABET) for _ in range(length))


def router_username(router_id: int) -> str:
    return f"{USERNAME_PREFIX}{router_id}"


@dataclass(slots=True, frozen=True)
class Credential:
    """Account name and password of one router."""

    username: str
    password: str = field(repr=False)


@dataclass(slots=True)
class StagedCredential:
    """A credential flushed to the keyring, with the value it replaced."""

    credential: Credential
    previous: str | None = field(default=None, repr=False)
    account_changed: bool = False

    def revert(self, keyring: Keyring) -> None:
        """Put the keyring entry back the way it was; failures are only logged."""
        username = self.credential.username
        if self.previous is None:
            keyring.remove(username, KEYRING_ATTRIBUTE)
        else:
            keyring.store(username, KEYRING_ATTRIBUTE, self.previous)
        try:
            keyring.flush()
        except KeyringError as exc:
            LOGGER.warning("Could not restore keyring entry for %s: %s", username, exc)


def store_credential(keyring: Keyring, credential: Credential) -> StagedCredential:
    """Write *credential* into *keyring* and flush it to disk."""
    previous = keyring.lookup(credential.username, KEYRING_ATTRIBUTE)
    keyring.store(credential.username, KEYRING_ATTRIBUTE, credential.password)
    staged = StagedCredential(credential=credential, previous=previous)
    try:
        keyring.flush()
    except KeyringError as exc:
        if previous is None:
            keyring.remove(credential.username, KEYRING_ATTRIBUTE)
        else:
            keyring.store(credential.username, KEYRING_ATTRIBUTE, previous)
        raise BootstrapIOError(f"Error storing encrypted password to disk: {exc}") from exc
    return staged


def create_account(session: SessionProtocol, staged: StagedCredential) -> None:
    """(Re)create the router's account with read access to the metadata.

    ``staged.account_changed`` is set once the first statement has run; DDL
    commits implicitly, so from then on the server no longer holds the old
    password.
    """
    credential = staged.credential
    params = {"username": credential.username, "password": credential.password}
    for statement in ACCOUNT_STATEMENTS:
        try:
            session.execute(statement, params)
        except MetadataError as exc:
            session.rollback()
            raise BootstrapRemoteError(f"Error creating MySQL account for router: {exc}") from exc
        staged.account_changed = True
    LOGGER.info("Created account %s@'%%'", credential.username)


def provision_credential(
    session: SessionProtocol,
    keyring: Keyring,
    router_id: int,
) -> StagedCredential:
    """Rotate the password of *router_id*'s account.

    The keyring is flushed before any account statement runs. The entry is
    reverted only when the server account was left untouched; otherwise the
    new password stays, matching whatever the server now holds.
    """
    credential = Credential(username=router_username(router_id), password=generate_password())
    staged = store_credential(keyring, credential)
    try:
        create_account(session, staged)
    except BootstrapRemoteError:
        if staged.account_changed:
            LOGGER.warning(
                "Keeping the new password of %s in the keyring; its account was already changed",
                credential.username,
            )
        else:
            staged.revert(keyring)
        raise
    return staged


__all__ = [
    "ACCOUNT_STATEMENTS",
    "Credential",
    "KEYRING_ATTRIBUTE",
    "PASSWORD_ALPHABET",
    "PASSWORD_LENGTH",
    "StagedCredential",
    "create_account",
    "generate_password",
    "provision_credential",
    "router_username",
    "store_credential",
]
