"""Service Fabric HTTP gateway client."""

from __future__ import annotations

import os
import shutil
import ssl
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Tuple, Union
from urllib.parse import quote

import httpx
import structlog

from sfrun.cluster.gateway import ClusterGateway
from sfrun.core.config import Settings
from sfrun.core.exceptions import ClusterError, ClusterOperationError, ConfigurationError
from sfrun.core.models import (
    ApplicationDescription,
    ApplicationUpgradeDescription,
    ClusterApplicationRecord,
    GatewayResult,
)

logger = structlog.get_logger()

APPLICATION_NOT_FOUND = "FABRIC_E_APPLICATION_NOT_FOUND"
APPLICATION_TYPE_ALREADY_EXISTS = "FABRIC_E_APPLICATION_TYPE_ALREADY_EXISTS"
APPLICATION_ALREADY_EXISTS = "FABRIC_E_APPLICATION_ALREADY_EXISTS"
APPLICATION_ALREADY_IN_TARGET_VERSION = "FABRIC_E_APPLICATION_ALREADY_IN_TARGET_VERSION"

# Directory marker files the image store expects for every uploaded folder
DIR_MARKER = "_.dir"


def application_id(name: str) -> str:
    """``fabric:/A/B`` -> ``A~B``."""
    if name.startswith("fabric:/"):
        name = name[len("fabric:/"):]
    return name.replace("/", "~")


def _error_details(response: httpx.Response) -> Tuple[Optional[str], str]:
    try:
        body = response.json()
    except ValueError:
        return None, response.text or response.reason_phrase
    error = body.get("Error", {}) if isinstance(body, dict) else {}
    return error.get("Code"), error.get("Message") or response.text


def _json_body(operation: str, response: httpx.Response) -> Dict[str, Any]:
    try:
        body = response.json()
    except ValueError as e:
        raise ClusterError(f"{operation} failed: response is not JSON: {e}") from e
    if not isinstance(body, dict):
        raise ClusterError(f"{operation} failed: unexpected response body")
    return body


def build_ssl_context(settings: Settings) -> Union[ssl.SSLContext, bool]:
    """TLS settings for ``httpx``; ``True`` means default verification."""
    if not settings.client_cert and not settings.ca_bundle and settings.verify_tls:
        return True
    try:
        context = ssl.create_default_context(cafile=settings.ca_bundle)
    except OSError as e:
        raise ConfigurationError(f"Cannot load CA bundle {settings.ca_bundle}: {e}") from e
    if not settings.verify_tls:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    if settings.client_cert:
        try:
            context.load_cert_chain(settings.client_cert, settings.client_key)
        except OSError as e:
            raise ConfigurationError(f"Cannot load client certificate {settings.client_cert}: {e}") from e
    return context


class RestClusterGateway(ClusterGateway):
    """Talks to the cluster through its HTTP gateway (port 19080 by default)."""

    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None):
        self.settings = settings
        self.client = client or httpx.AsyncClient(
            base_url=settings.endpoint,
            timeout=httpx.Timeout(settings.request_timeout_seconds),
            verify=build_ssl_context(settings),
        )

    async def aclose(self) -> None:
        await self.client.aclose()

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        *,
        api_version: Optional[str] = None,
        json: Optional[Dict[str, Any]] = None,
        content: Optional[bytes] = None,
    ) -> httpx.Response:
        query = {"api-version": api_version or self.settings.api_version}
        headers = {"Content-Type": "application/octet-stream"} if content is not None else None
        try:
            return await self.client.request(method, path, params=query, json=json, content=content, headers=headers)
        except httpx.TimeoutException as e:
            raise ClusterError(f"{operation} timed out: {e}") from e
        except httpx.HTTPError as e:
            raise ClusterError(f"{operation} failed: cannot reach {self.settings.endpoint}: {e}") from e

    def _raise_for_error(self, operation: str, response: httpx.Response) -> None:
        code, message = _error_details(response)
        logger.error("Cluster rejected request", operation=operation, status=response.status_code, code=code)
        raise ClusterOperationError(operation, message, code=code, status_code=response.status_code)

    async def _mutate(self, operation: str, path: str, body: Dict[str, Any], already_exists: Set[str], **kwargs) -> GatewayResult:
        response = await self._request(operation, "POST", path, json=body, **kwargs)
        if response.is_success:
            return GatewayResult.OK
        code, _ = _error_details(response)
        if code in already_exists:
            logger.info("Cluster reports target already exists", operation=operation, code=code)
            return GatewayResult.ALREADY_EXISTS
        self._raise_for_error(operation, response)

    async def list_applications(self, name: str) -> List[ClusterApplicationRecord]:
        response = await self._request("get-application", "GET", f"/Applications/{quote(application_id(name))}")
        if response.status_code == 204:
            return []
        if not response.is_success:
            code, _ = _error_details(response)
            if response.status_code == 404 or code == APPLICATION_NOT_FOUND:
                return []
            self._raise_for_error("get-application", response)
        if not response.content:
            return []

        info = _json_body("get-application", response)
        return [
            ClusterApplicationRecord(
                name=info.get("Name", name),
                type_name=info.get("TypeName"),
                type_version=info.get("TypeVersion", ""),
                status=info.get("Status"),
            )
        ]

    async def copy_package(self, connection_string: str, local_path: Path, app_name: str) -> None:
        local_path = Path(local_path)
        if connection_string.lower().startswith("file:"):
            target = Path(connection_string[len("file:"):]) / app_name
            logger.info("Copying package to file image store", target=str(target))
            try:
                shutil.copytree(local_path, target, dirs_exist_ok=True)
            except OSError as e:
                raise ClusterError(f"copy-package failed: {e}") from e
            return

        if not connection_string.lower().startswith("fabric:"):
            raise ClusterError(f"Unsupported image store: {connection_string}")

        logger.info("Uploading package to image store", app=app_name, source=str(local_path))
        uploaded = 0
        for dirpath, _dirnames, filenames in os.walk(local_path):
            rel_dir = Path(dirpath).relative_to(local_path)
            for name in sorted(filenames) + [DIR_MARKER]:
                content = b"" if name == DIR_MARKER else (Path(dirpath) / name).read_bytes()
                remote = "/".join([app_name, *rel_dir.parts, name])
                response = await self._request("copy-package", "PUT", f"/ImageStore/{quote(remote)}", content=content)
                if not response.is_success:
                    self._raise_for_error("copy-package", response)
                uploaded += 1
        logger.info("Uploaded package", app=app_name, files=uploaded)

    async def provision_application_type(self, build_path: str) -> GatewayResult:
        body = {"Kind": "ImageStorePath", "Async": False, "ApplicationTypeBuildPath": build_path}
        return await self._mutate(
            "provision",
            "/ApplicationTypes/$/Provision",
            body,
            {APPLICATION_TYPE_ALREADY_EXISTS},
            api_version=self.settings.provision_api_version,
        )

    async def create_application(self, description: ApplicationDescription) -> GatewayResult:
        body = {
            "Name": description.name,
            "TypeName": description.type_name,
            "TypeVersion": description.type_version,
            "ParameterList": [],
        }
        return await self._mutate("create-application", "/Applications/$/Create", body, {APPLICATION_ALREADY_EXISTS})

    async def upgrade_application(self, description: ApplicationUpgradeDescription) -> GatewayResult:
        body = {
            "Name": description.name,
            "TargetApplicationTypeVersion": description.target_version,
            "Parameters": [],
            "UpgradeKind": "Rolling",
            "RollingUpgradeMode": description.upgrade_mode.value,
            "MonitoringPolicy": {"FailureAction": description.failure_action.value},
        }
        return await self._mutate(
            "upgrade-application",
            f"/Applications/{quote(application_id(description.name))}/$/Upgrade",
            body,
            {APPLICATION_ALREADY_EXISTS, APPLICATION_ALREADY_IN_TARGET_VERSION},
        )

    async def get_cluster_manifest(self) -> str:
        response = await self._request("get-cluster-manifest", "GET", "/$/GetClusterManifest")
        if not response.is_success:
            self._raise_for_error("get-cluster-manifest", response)
        return _json_body("get-cluster-manifest", response).get("Manifest", "")
