"""Create-or-upgrade deployment of an executable directory."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import List, Optional, Union

import structlog

from sfrun.cluster.gateway import ClusterGateway, resolve_image_store_connection_string
from sfrun.core.config import DEFAULT_IMAGE_STORE
from sfrun.core.exceptions import NoNameError
from sfrun.core.models import (
    ApplicationDescription,
    ApplicationUpgradeDescription,
    DeploymentOutcome,
    GatewayResult,
    OutcomeKind,
    RollingUpgradeMode,
    SourceBundle,
    UpgradeFailureAction,
    VersionStamp,
)
from sfrun.deploy.manifests import build_manifests
from sfrun.deploy.naming import AppNames, derive_app_name
from sfrun.deploy.staging import stage_package, staging_workspace
from sfrun.deploy.version import derive_version
from sfrun.utils.logging import bind_deployment_context, clear_deployment_context

logger = structlog.get_logger()


class DeploymentOrchestrator:
    """Publishes one executable directory per ``run`` call.

    Cluster calls are issued one at a time. "Already exists" answers from
    provisioning and create/upgrade are treated as success so that a second,
    racing run converges instead of failing; which version ends up deployed
    after such a race is whichever request the cluster handled last.
    """

    def __init__(self, gateway: ClusterGateway, image_store_default: str = DEFAULT_IMAGE_STORE):
        self.gateway = gateway
        self.image_store_default = image_store_default

    async def run(
        self,
        exe_file: Union[str, Path],
        app_name: Optional[str] = None,
        port: Optional[int] = None,
    ) -> DeploymentOutcome:
        bundle = SourceBundle.from_exe_file(Path(exe_file))
        exe_path = bundle.root_directory / bundle.entry_file
        if not exe_path.is_file():
            return self._aborted("exe file not exists", exe_file=str(exe_path))
        folder = bundle.root_directory
        if not folder.is_dir():
            return self._aborted("exe folder not exists", folder=str(folder))

        try:
            app = derive_app_name(app_name, folder.name, bundle.entry_file)
        except NoNameError as e:
            return self._aborted(str(e))

        loop = asyncio.get_running_loop()
        version = await loop.run_in_executor(None, derive_version, folder)
        bind_deployment_context(app, str(version))
        try:
            return await self._publish(app, version, folder, bundle.entry_file, port)
        finally:
            clear_deployment_context()

    async def _publish(
        self, app: str, version: VersionStamp, folder: Path, entry_file: str, port: Optional[int]
    ) -> DeploymentOutcome:
        loop = asyncio.get_running_loop()
        names = AppNames(app)

        # 1) Compare against what is running
        existing = await self.gateway.get_application(names.application_uri)
        upgrade = existing is not None
        if existing is not None:
            deployed = existing.version_stamp
            if deployed is None:
                logger.warning("Deployed version is not numeric, upgrading", deployed=existing.type_version)
            elif deployed >= version:
                logger.info("Running app package is newer or same", deployed=existing.type_version)
                return DeploymentOutcome(
                    kind=OutcomeKind.SKIPPED,
                    app_name=app,
                    version=version,
                    previous_version=existing.type_version,
                )

        logger.info("Generating package", app=app, version=str(version), upgrade=upgrade)
        ports: List[int] = [port] if port is not None else []
        manifests = build_manifests(app, version, entry_file, "", ports)

        # 2) Stage and upload; the workspace is removed whatever happens
        with staging_workspace() as workspace:
            await loop.run_in_executor(None, stage_package, workspace, folder, manifests)
            manifest_xml = await self.gateway.get_cluster_manifest()
            connection_string = resolve_image_store_connection_string(manifest_xml, self.image_store_default)
            await self.gateway.copy_package(connection_string, workspace, app)

        idempotent_steps: List[str] = []

        # 3) Provision the type
        if await self.gateway.provision_application_type(app) == GatewayResult.ALREADY_EXISTS:
            logger.info("Application type already provisioned", type_name=names.type_name)
            idempotent_steps.append("provision")

        # 4) Upgrade or create
        if upgrade:
            logger.info("Updating application", target_version=str(version))
            result = await self.gateway.upgrade_application(
                ApplicationUpgradeDescription(
                    name=names.application_uri,
                    target_version=str(version),
                    upgrade_mode=RollingUpgradeMode.MONITORED,
                    failure_action=UpgradeFailureAction.ROLLBACK,
                )
            )
            step, kind = "upgrade", OutcomeKind.UPGRADED
        else:
            logger.info("Creating application", type_name=names.type_name)
            result = await self.gateway.create_application(
                ApplicationDescription(
                    name=names.application_uri,
                    type_name=names.type_name,
                    type_version=str(version),
                )
            )
            step, kind = "create", OutcomeKind.CREATED

        if result == GatewayResult.ALREADY_EXISTS:
            logger.info("Application already exists", step=step)
            idempotent_steps.append(step)

        outcome = DeploymentOutcome(
            kind=kind,
            app_name=app,
            version=version,
            previous_version=existing.type_version if existing else None,
            idempotent_steps=idempotent_steps,
        )
        logger.info("Deployment finished", outcome=outcome.kind.value)
        return outcome

    @staticmethod
    def _aborted(reason: str, **fields) -> DeploymentOutcome:
        logger.warning("Deployment aborted", reason=reason, **fields)
        return DeploymentOutcome(kind=OutcomeKind.ABORTED, reason=reason)
