"""Cluster control-plane interface consumed by the deployment orchestrator."""

from __future__ import annotations

import re
import xml.etree.ElementTree as ET
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional

import structlog

from sfrun.core.config import DEFAULT_IMAGE_STORE
from sfrun.core.exceptions import ClusterError
from sfrun.core.models import (
    ApplicationDescription,
    ApplicationUpgradeDescription,
    ClusterApplicationRecord,
    GatewayResult,
)

logger = structlog.get_logger()

IMAGE_STORE_PARAMETER = "ImageStoreConnectionString"

# The manifest arrives as text; its declared encoding no longer applies
_XML_DECLARATION = re.compile(r"^\s*<\?xml[^>]*\?>")


class ClusterGateway(ABC):
    """Narrow view of the cluster the orchestrator talks to.

    Mutating calls return ``GatewayResult.ALREADY_EXISTS`` when the cluster
    reports the target as already present; every other rejection raises
    ``ClusterOperationError``.
    """

    @abstractmethod
    async def list_applications(self, name: str) -> List[ClusterApplicationRecord]:
        """Applications named ``name`` (a ``fabric:/`` URI); empty when none exist."""

    async def get_application(self, name: str) -> Optional[ClusterApplicationRecord]:
        """The application named ``name``, or ``None`` when it does not exist."""
        records = await self.list_applications(name)
        return records[0] if records else None

    @abstractmethod
    async def copy_package(self, connection_string: str, local_path: Path, app_name: str) -> None:
        """Upload the staged folder to the image store under ``app_name``."""

    @abstractmethod
    async def provision_application_type(self, build_path: str) -> GatewayResult:
        """Register the application type found at ``build_path`` in the image store."""

    @abstractmethod
    async def create_application(self, description: ApplicationDescription) -> GatewayResult:
        ...

    @abstractmethod
    async def upgrade_application(self, description: ApplicationUpgradeDescription) -> GatewayResult:
        ...

    @abstractmethod
    async def get_cluster_manifest(self) -> str:
        """Cluster manifest XML."""

    async def aclose(self) -> None:
        pass

    async def __aenter__(self) -> "ClusterGateway":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()


def resolve_image_store_connection_string(manifest_xml: str, default: str = DEFAULT_IMAGE_STORE) -> str:
    """Find the ``ImageStoreConnectionString`` parameter in a cluster manifest.

    Returns ``default`` when the manifest does not set it.
    """
    if not manifest_xml or not manifest_xml.strip():
        return default
    try:
        root = ET.fromstring(_XML_DECLARATION.sub("", manifest_xml, count=1))
    except ET.ParseError as e:
        raise ClusterError(f"Cluster manifest is not valid XML: {e}") from e

    for element in root.iter():
        if element.get("Name") == IMAGE_STORE_PARAMETER:
            value = element.get("Value")
            if value:
                return value
    logger.debug("Image store connection string not in cluster manifest", default=default)
    return default
