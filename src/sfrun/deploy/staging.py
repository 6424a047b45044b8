"""Assemble the on-disk application package."""

from __future__ import annotations

import shutil
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional, Set, Tuple

import structlog

from sfrun.core.exceptions import StagingError
from sfrun.deploy.manifests import APPLICATION_MANIFEST_FILE, SERVICE_MANIFEST_FILE, ManifestPair

logger = structlog.get_logger()


@dataclass(frozen=True)
class StagingLayout:
    root: Path
    package_dir: Path
    code_dir: Path
    config_dir: Path
    application_manifest: Path
    service_manifest: Path


@contextmanager
def staging_workspace(prefix: str = "sfrun_") -> Iterator[Path]:
    """Create a private temporary directory and remove it when the block exits.

    Removal is best effort: failures are logged and never raised.
    """
    path = Path(tempfile.mkdtemp(prefix=prefix))
    logger.debug("Created staging workspace", path=str(path))
    try:
        yield path
    finally:
        try:
            shutil.rmtree(path)
        except OSError as e:
            logger.debug("Failed to remove staging workspace", path=str(path), error=str(e))


def copy_tree(source: Path, target: Path, _visited: Optional[Set[Tuple[int, int]]] = None) -> None:
    """Copy every file and directory under ``source`` into ``target``.

    Symlinks are followed and each real directory is copied once; links
    whose target is missing are skipped.

    Raises:
        StagingError: If a destination file already exists
    """
    visited = set() if _visited is None else _visited
    st = source.stat()
    if (st.st_dev, st.st_ino) in visited:
        return
    visited.add((st.st_dev, st.st_ino))

    for entry in sorted(source.iterdir()):
        dest = target / entry.name
        if entry.is_dir():
            dest.mkdir(exist_ok=True)
            copy_tree(entry, dest, visited)
        elif not entry.exists():
            logger.warning("Skipping broken symlink", path=str(entry))
        else:
            if dest.exists():
                raise StagingError(f"Destination already exists: {dest}")
            shutil.copy2(entry, dest)


def stage_package(workspace: Path, source_dir: Path, manifests: ManifestPair) -> StagingLayout:
    """Lay out the package under ``workspace``::

        ApplicationManifest.xml
        {App}SFServicePkg/
            ServiceManifest.xml
            Code/
            Config/
    """
    package_dir = workspace / manifests.service_package
    layout = StagingLayout(
        root=workspace,
        package_dir=package_dir,
        code_dir=package_dir / "Code",
        config_dir=package_dir / "Config",
        application_manifest=workspace / APPLICATION_MANIFEST_FILE,
        service_manifest=package_dir / SERVICE_MANIFEST_FILE,
    )

    try:
        layout.code_dir.mkdir(parents=True)
        layout.config_dir.mkdir(parents=True)
        copy_tree(Path(source_dir), layout.code_dir)
        layout.application_manifest.write_bytes(manifests.application.to_xml())
        layout.service_manifest.write_bytes(manifests.service.to_xml())
    except StagingError:
        raise
    except OSError as e:
        raise StagingError(f"Failed to stage package: {e}") from e

    logger.info("Staged application package", path=str(workspace), package=manifests.service_package)
    return layout
