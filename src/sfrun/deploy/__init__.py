"""Packaging and deployment pipeline."""

from .manifests import (
    ApplicationManifest,
    ManifestPair,
    ServiceManifest,
    build_application_manifest,
    build_manifests,
    build_service_manifest,
)
from .naming import AppNames, derive_app_name
from .orchestrator import DeploymentOrchestrator
from .staging import StagingLayout, copy_tree, stage_package, staging_workspace
from .version import derive_version, split_timestamp

__all__ = [
    "ApplicationManifest",
    "ServiceManifest",
    "ManifestPair",
    "build_application_manifest",
    "build_service_manifest",
    "build_manifests",
    "AppNames",
    "derive_app_name",
    "DeploymentOrchestrator",
    "StagingLayout",
    "copy_tree",
    "stage_package",
    "staging_workspace",
    "derive_version",
    "split_timestamp",
]
