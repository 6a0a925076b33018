"""Build and render the router INI configuration.

Rendering is a pure function of its inputs: the same identity, topology,
account and options always produce byte-identical text, with sections in the
fixed order DEFAULT, logger, metadata_cache, then the routing sections.
"""
from __future__ import annotations

from dataclasses import dataclass, field

from .endpoints import Endpoint, RouterOptions, endpoint_option
from .layout import DeploymentLayout
from .topology import ClusterTopology

HEADER = "# File automatically generated during MySQL Router bootstrap"
DEFAULT_TTL = 300
DEFAULT_LOG_LEVEL = "INFO"


@dataclass(slots=True)
class ConfigSection:
    """A named INI section with ordered options."""

    name: str
    options: list[tuple[str, str]] = field(default_factory=list)

    def add(self, key: str, value: object) -> None:
        self.options.append((key, str(value)))

    def get(self, key: str) -> str | None:
        for name, value in self.options:
            if name == key:
                return value
        return None


@dataclass(slots=True)
class ConfigDocument:
    """Ordered sections of a router configuration file."""

    sections: list[ConfigSection] = field(default_factory=list)
    header: str = HEADER

    def section(self, name: str) -> ConfigSection | None:
        for section in self.sections:
            if section.name == name:
                return section
        return None

    def render(self) -> str:
        """Return the INI text, every section followed by a blank line."""
        parts = [f"{self.header}\n"]
        for section in self.sections:
            parts.append(f"[{section.name}]\n")
            parts.extend(f"{key}={value}\n" for key, value in section.options)
            parts.append("\n")
        return "".join(parts)


def build_config_document(
    *,
    router_id: int,
    router_name: str,
    topology: ClusterTopology,
    username: str,
    options: RouterOptions,
    layout: DeploymentLayout,
    ttl: int = DEFAULT_TTL,
) -> ConfigDocument:
    """Assemble the configuration for one registered router."""
    default = ConfigSection("DEFAULT")
    if router_name:
        default.add("name", router_name)
    if layout.logdir is not None:
        default.add("logging_folder", layout.logdir)
    if layout.rundir is not None:
        default.add("runtime_folder", layout.rundir)
    default.add("keyring_path", layout.keyring_path)
    if layout.master_key_path is not None:
        default.add("master_key_path", layout.master_key_path)

    logger = ConfigSection("logger")
    logger.add("level", DEFAULT_LOG_LEVEL)

    cluster = topology.cluster_name
    metadata_cache = ConfigSection(f"metadata_cache:{cluster}")
    metadata_cache.add("router_id", router_id)
    metadata_cache.add("bootstrap_server_addresses", topology.bootstrap_servers)
    metadata_cache.add("user", username)
    metadata_cache.add("metadata_cluster", cluster)
    metadata_cache.add("ttl", ttl)

    document = ConfigDocument(sections=[default, logger, metadata_cache])
    prefix = f"{cluster}_{topology.replicaset_name}"
    routes = (
        ("rw", options.rw, "PRIMARY", "read-write", "classic"),
        ("ro", options.ro, "SECONDARY", "read-only", "classic"),
        ("x_rw", options.rw_x, "PRIMARY", "read-write", "x"),
        ("x_ro", options.ro_x, "SECONDARY", "read-only", "x"),
    )
    for suffix, endpoint, role, mode, protocol in routes:
        if not endpoint:
            continue
        document.sections.append(
            _routing_section(
                f"routing:{prefix}_{suffix}",
                endpoint,
                options,
                destinations=f"metadata-cache://{cluster}/{topology.replicaset_name}?role={role}",
                mode=mode,
                protocol=protocol,
            )
        )
    return document


def _routing_section(
    name: str,
    endpoint: Endpoint,
    options: RouterOptions,
    *,
    destinations: str,
    mode: str,
    protocol: str,
) -> ConfigSection:
    section = ConfigSection(name)
    listener = endpoint_option(
        endpoint, bind_address=options.bind_address, socketsdir=options.socketsdir
    )
    for line in listener.splitlines():
        key, _, value = line.partition("=")
        section.add(key, value)
    section.add("destinations", destinations)
    section.add("mode", mode)
    section.add("protocol", protocol)
    return section


__all__ = [
    "DEFAULT_TTL",
    "HEADER",
    "ConfigDocument",
    "ConfigSection",
    "build_config_document",
]
