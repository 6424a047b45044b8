"""Cluster control-plane access."""

from .gateway import ClusterGateway, resolve_image_store_connection_string
from .rest import RestClusterGateway

__all__ = [
    "ClusterGateway",
    "RestClusterGateway",
    "resolve_image_store_connection_string",
]
