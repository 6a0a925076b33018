"""Provider interfaces for routerctl."""
from __future__ import annotations

from .cluster_metadata import ClusterMetadata
from .session import (
    InvalidServerUrl,
    MetadataError,
    MetadataSession,
    ServerAddress,
    SessionProtocol,
    parse_server_url,
)

__all__ = [
    "ClusterMetadata",
    "InvalidServerUrl",
    "MetadataError",
    "MetadataSession",
    "ServerAddress",
    "SessionProtocol",
    "parse_server_url",
]
