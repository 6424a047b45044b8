"""
Pytest configuration and fixtures for sfrun tests.
"""

import asyncio
import os
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from sfrun.cluster.gateway import ClusterGateway
from sfrun.core.models import (
    ApplicationDescription,
    ApplicationUpgradeDescription,
    ClusterApplicationRecord,
    GatewayResult,
)

CLUSTER_MANIFEST = """<?xml version="1.0" encoding="utf-8"?>
<ClusterManifest xmlns="http://schemas.microsoft.com/2011/01/fabric" Name="DevCluster" Version="1.0">
  <FabricSettings>
    <Section Name="Management">
      <Parameter Name="ImageStoreConnectionString" Value="fabric:ImageStore" />
    </Section>
  </FabricSettings>
</ClusterManifest>
"""


class FakeClusterGateway(ClusterGateway):
    """In-memory cluster that records every call in order."""

    def __init__(self, deployed_version: Optional[str] = None, app_uri: Optional[str] = None):
        self.calls: List[str] = []
        self.applications: Dict[str, str] = {}
        self.types: set = set()
        if deployed_version is not None:
            self.applications[app_uri] = deployed_version
        self.uploads: List[Dict] = []
        self.created: List[ApplicationDescription] = []
        self.upgrades: List[ApplicationUpgradeDescription] = []
        self.fail_on: Dict[str, Exception] = {}
        self.list_barrier: Optional[asyncio.Barrier] = None
        self.closed = False

    def _maybe_fail(self, name: str) -> None:
        if name in self.fail_on:
            raise self.fail_on[name]

    async def list_applications(self, name: str) -> List[ClusterApplicationRecord]:
        self.calls.append("list")
        self._maybe_fail("list")
        version = self.applications.get(name)
        if self.list_barrier is not None:
            await self.list_barrier.wait()
        if version is None:
            return []
        return [ClusterApplicationRecord(name=name, type_version=version)]

    async def get_cluster_manifest(self) -> str:
        self.calls.append("manifest")
        return CLUSTER_MANIFEST

    async def copy_package(self, connection_string: str, local_path: Path, app_name: str) -> None:
        self.calls.append("copy")
        local_path = Path(local_path)
        files = sorted(
            str(p.relative_to(local_path)).replace(os.sep, "/") for p in local_path.rglob("*") if p.is_file()
        )
        manifests = {
            str(p.relative_to(local_path)).replace(os.sep, "/"): p.read_bytes()
            for p in local_path.rglob("*Manifest.xml")
        }
        self.uploads.append(
            {
                "connection_string": connection_string,
                "path": local_path,
                "app": app_name,
                "files": files,
                "manifests": manifests,
                "dirs": sorted(
                    str(p.relative_to(local_path)).replace(os.sep, "/") for p in local_path.rglob("*") if p.is_dir()
                ),
            }
        )
        self._maybe_fail("copy")

    async def provision_application_type(self, build_path: str) -> GatewayResult:
        self.calls.append("provision")
        self._maybe_fail("provision")
        if build_path in self.types:
            return GatewayResult.ALREADY_EXISTS
        self.types.add(build_path)
        return GatewayResult.OK

    async def create_application(self, description: ApplicationDescription) -> GatewayResult:
        self.calls.append("create")
        self._maybe_fail("create")
        self.created.append(description)
        if description.name in self.applications:
            return GatewayResult.ALREADY_EXISTS
        self.applications[description.name] = description.type_version
        return GatewayResult.OK

    async def upgrade_application(self, description: ApplicationUpgradeDescription) -> GatewayResult:
        self.calls.append("upgrade")
        self._maybe_fail("upgrade")
        self.upgrades.append(description)
        self.applications[description.name] = description.target_version
        return GatewayResult.OK

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture(autouse=True)
def clear_sfrun_env(monkeypatch, tmp_path):
    """Keep SFRUN_* variables and .env files from leaking into tests."""
    for key in list(os.environ):
        if key.startswith("SFRUN_"):
            monkeypatch.delenv(key)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def exe_file(tmp_path: Path) -> Path:
    """A small executable directory: myservice/server.exe plus nested files."""
    root = tmp_path / "myservice"
    (root / "lib" / "native").mkdir(parents=True)
    exe = root / "server.exe"
    exe.write_bytes(b"MZ fake executable")
    (root / "appsettings.json").write_text('{"Logging": {}}')
    (root / "lib" / "helper.dll").write_bytes(b"dll")
    (root / "lib" / "native" / "libz.so").write_bytes(b"so")
    return exe


@pytest.fixture
def gateway() -> FakeClusterGateway:
    return FakeClusterGateway()
