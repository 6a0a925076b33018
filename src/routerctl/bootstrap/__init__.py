"""Router bootstrap: registration, credentials, and configuration publishing."""
from __future__ import annotations

from .endpoints import Endpoint, EndpointRequest, RouterOptions, assign_endpoints, endpoint_option
from .errors import (
    BootstrapConflictError,
    BootstrapError,
    BootstrapIOError,
    BootstrapRemoteError,
    BootstrapValidationError,
)
from .ledger import CompensatingLedger
from .topology import ClusterTopology, aggregate_topology, fetch_topology
from .workflow import (
    BootstrapOutcome,
    BootstrapRequest,
    BootstrapStatus,
    bootstrap_directory_deployment,
    bootstrap_system_deployment,
)

__all__ = [
    # errors
    "BootstrapConflictError",
    "BootstrapError",
    "BootstrapIOError",
    "BootstrapRemoteError",
    "BootstrapValidationError",
    # building blocks
    "ClusterTopology",
    "CompensatingLedger",
    "Endpoint",
    "EndpointRequest",
    "RouterOptions",
    "aggregate_topology",
    "assign_endpoints",
    "endpoint_option",
    "fetch_topology",
    # orchestration
    "BootstrapOutcome",
    "BootstrapRequest",
    "BootstrapStatus",
    "bootstrap_directory_deployment",
    "bootstrap_system_deployment",
]
