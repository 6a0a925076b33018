"""Listener (port and socket) assignment for the routing sections."""
from __future__ import annotations

import ipaddress
import re
from dataclasses import dataclass
from pathlib import Path

from .errors import BootstrapValidationError

DEFAULT_BIND_ADDRESS = "0.0.0.0"

DEFAULT_RW_PORT = 6446
DEFAULT_RO_PORT = 6447
DEFAULT_RW_X_PORT = 64460
DEFAULT_RO_X_PORT = 64470

RW_SOCKET = "mysql.sock"
RO_SOCKET = "mysqlro.sock"
RW_X_SOCKET = "mysqlx.sock"
RO_X_SOCKET = "mysqlxro.sock"

_HOSTNAME_LABEL = re.compile(r"^(?!-)[A-Za-z0-9-]{1,63}(?<!-)$")


@dataclass(slots=True, frozen=True)
class Endpoint:
    """One listener; a zero port or empty socket means "not assigned"."""

    port: int = 0
    socket: str = ""

    def __bool__(self) -> bool:
        return self.port > 0 or bool(self.socket)


@dataclass(slots=True, frozen=True)
class EndpointRequest:
    """Validated operator choices that drive endpoint assignment."""

    base_port: int | None = None
    bind_address: str = DEFAULT_BIND_ADDRESS
    use_sockets: bool = False
    skip_tcp: bool = False

    @classmethod
    def parse(
        cls,
        *,
        base_port: str | int | None = None,
        bind_address: str | None = None,
        use_sockets: bool = False,
        skip_tcp: bool = False,
    ) -> EndpointRequest:
        """Validate raw option values before anything is mutated."""
        port: int | None = None
        if base_port is not None and str(base_port) != "":
            text = str(base_port).strip()
            if not text.isdigit() or not 0 < int(text) <= 65535:
                raise BootstrapValidationError(f"Invalid base-port value {base_port}")
            port = int(text)
        address = DEFAULT_BIND_ADDRESS
        if bind_address is not None:
            if not is_valid_bind_address(bind_address):
                raise BootstrapValidationError(f"Invalid bind-address value {bind_address}")
            address = bind_address
        return cls(base_port=port, bind_address=address, use_sockets=use_sockets, skip_tcp=skip_tcp)


@dataclass(slots=True, frozen=True)
class RouterOptions:
    """Endpoint assignment for the four routing sections."""

    bind_address: str
    socketsdir: Path
    rw: Endpoint = Endpoint()
    ro: Endpoint = Endpoint()
    rw_x: Endpoint = Endpoint()
    ro_x: Endpoint = Endpoint()

    def metadata_attributes(self) -> dict[str, str]:
        """Return the endpoint attributes published with the router record."""
        return {
            "RWEndpoint": self._describe(self.rw),
            "ROEndpoint": self._describe(self.ro),
            "RWXEndpoint": self._describe(self.rw_x),
            "ROXEndpoint": self._describe(self.ro_x),
        }

    def _describe(self, endpoint: Endpoint) -> str:
        if endpoint.port > 0:
            return str(endpoint.port)
        if endpoint.socket:
            return f"{self.socketsdir}/{endpoint.socket}"
        return ""


def is_valid_bind_address(value: str) -> bool:
    """Return True for an IPv4/IPv6 literal or a syntactically valid hostname."""
    if not value or value != value.strip():
        return False
    try:
        ipaddress.ip_address(value)
        return True
    except ValueError:
        pass
    hostname = value[:-1] if value.endswith(".") else value
    if len(hostname) > 253 or hostname.replace(".", "").isdigit():
        return False
    return all(_HOSTNAME_LABEL.match(label) for label in hostname.split("."))


def assign_endpoints(
    request: EndpointRequest,
    *,
    multi_master: bool,
    socketsdir: Path,
) -> RouterOptions:
    """Assign sockets and ports in the order classic RW, classic RO, X RW, X RO.

    Read-only endpoints are skipped for multi-primary topologies.
    """
    sockets = {"rw": "", "ro": "", "rw_x": "", "ro_x": ""}
    ports = {"rw": 0, "ro": 0, "rw_x": 0, "ro_x": 0}
    if request.use_sockets:
        sockets["rw"] = RW_SOCKET
        sockets["rw_x"] = RW_X_SOCKET
        if not multi_master:
            sockets["ro"] = RO_SOCKET
            sockets["ro_x"] = RO_X_SOCKET
    if not request.skip_tcp:
        defaults = {
            "rw": DEFAULT_RW_PORT,
            "ro": DEFAULT_RO_PORT,
            "rw_x": DEFAULT_RW_X_PORT,
            "ro_x": DEFAULT_RO_X_PORT,
        }
        next_port = request.base_port
        for key in ("rw", "ro", "rw_x", "ro_x"):
            if multi_master and key in ("ro", "ro_x"):
                continue
            if next_port is None:
                ports[key] = defaults[key]
            else:
                if next_port > 65535:
                    raise BootstrapValidationError(
                        f"Invalid base-port value {request.base_port}: "
                        "not enough ports left for every endpoint"
                    )
                ports[key] = next_port
                next_port += 1
    return RouterOptions(
        bind_address=request.bind_address,
        socketsdir=socketsdir,
        rw=Endpoint(ports["rw"], sockets["rw"]),
        ro=Endpoint(ports["ro"], sockets["ro"]),
        rw_x=Endpoint(ports["rw_x"], sockets["rw_x"]),
        ro_x=Endpoint(ports["ro_x"], sockets["ro_x"]),
    )


def endpoint_option(endpoint: Endpoint, *, bind_address: str, socketsdir: Path) -> str:
    """Render the listener lines of a routing section."""
    lines: list[str] = []
    if endpoint.port > 0:
        lines.append(f"bind_address={bind_address}")
        lines.append(f"bind_port={endpoint.port}")
    if endpoint.socket:
        lines.append(f"socket={socketsdir}/{endpoint.socket}")
    return "\n".join(lines)


__all__ = [
    "DEFAULT_BIND_ADDRESS",
    "Endpoint",
    "EndpointRequest",
    "RouterOptions",
    "assign_endpoints",
    "endpoint_option",
    "is_valid_bind_address",
]
