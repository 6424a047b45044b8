"""RestClusterGateway against a mocked Service Fabric HTTP gateway."""

import json
from pathlib import Path

import httpx
import pytest

from conftest import CLUSTER_MANIFEST
from sfrun.cluster.gateway import resolve_image_store_connection_string
from sfrun.cluster.rest import RestClusterGateway, application_id, build_ssl_context
from sfrun.core.config import Settings
from sfrun.core.exceptions import ClusterError, ClusterOperationError, ConfigurationError
from sfrun.core.models import (
    ApplicationDescription,
    ApplicationUpgradeDescription,
    GatewayResult,
)

ENDPOINT = "http://cluster.local:19080"


def _error(status: int, code: str, message: str = "error") -> httpx.Response:
    return httpx.Response(status, json={"Error": {"Code": code, "Message": message}})


class Recorder:
    def __init__(self, handler):
        self.handler = handler
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handler(request)


def make_gateway(handler) -> tuple:
    recorder = Recorder(handler)
    client = httpx.AsyncClient(transport=httpx.MockTransport(recorder), base_url=ENDPOINT)
    return RestClusterGateway(Settings(endpoint=ENDPOINT), client=client), recorder


def test_application_id():
    assert application_id("fabric:/Web") == "Web"
    assert application_id("fabric:/Team/Web") == "Team~Web"


@pytest.mark.asyncio
async def test_list_applications_found():
    gateway, recorder = make_gateway(
        lambda request: httpx.Response(
            200,
            json={"Id": "Web", "Name": "fabric:/Web", "TypeName": "WebSFApp", "TypeVersion": "1.0.5.3", "Status": "Ready"},
        )
    )
    async with gateway:
        records = await gateway.list_applications("fabric:/Web")

    (record,) = records
    assert record.name == "fabric:/Web"
    assert record.type_version == "1.0.5.3"
    assert record.type_name == "WebSFApp"
    request = recorder.requests[0]
    assert request.method == "GET"
    assert request.url.path == "/Applications/Web"
    assert request.url.params["api-version"] == "6.0"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(204),
        _error(404, "FABRIC_E_APPLICATION_NOT_FOUND"),
    ],
)
async def test_list_applications_missing(response):
    gateway, _ = make_gateway(lambda request: response)
    async with gateway:
        assert await gateway.list_applications("fabric:/Web") == []


@pytest.mark.asyncio
async def test_list_applications_server_error_raises():
    gateway, _ = make_gateway(lambda request: _error(500, "FABRIC_E_COMMUNICATION_ERROR", "unavailable"))
    async with gateway:
        with pytest.raises(ClusterOperationError) as exc_info:
            await gateway.list_applications("fabric:/Web")
    assert exc_info.value.code == "FABRIC_E_COMMUNICATION_ERROR"
    assert exc_info.value.status_code == 500


@pytest.mark.asyncio
async def test_unreachable_cluster_raises_cluster_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    gateway, _ = make_gateway(handler)
    async with gateway:
        with pytest.raises(ClusterError):
            await gateway.list_applications("fabric:/Web")


@pytest.mark.asyncio
async def test_provision_request_and_already_exists():
    responses = [httpx.Response(200), _error(409, "FABRIC_E_APPLICATION_TYPE_ALREADY_EXISTS")]
    gateway, recorder = make_gateway(lambda request: responses.pop(0))
    async with gateway:
        assert await gateway.provision_application_type("Web") == GatewayResult.OK
        assert await gateway.provision_application_type("Web") == GatewayResult.ALREADY_EXISTS

    request = recorder.requests[0]
    assert request.method == "POST"
    assert request.url.path == "/ApplicationTypes/$/Provision"
    assert request.url.params["api-version"] == "6.2"
    assert json.loads(request.content) == {"Kind": "ImageStorePath", "Async": False, "ApplicationTypeBuildPath": "Web"}


@pytest.mark.asyncio
async def test_provision_other_error_raises():
    gateway, _ = make_gateway(lambda request: _error(400, "FABRIC_E_IMAGEBUILDER_VALIDATION_ERROR", "bad manifest"))
    async with gateway:
        with pytest.raises(ClusterOperationError) as exc_info:
            await gateway.provision_application_type("Web")
    assert exc_info.value.code == "FABRIC_E_IMAGEBUILDER_VALIDATION_ERROR"
    assert "bad manifest" in str(exc_info.value)


@pytest.mark.asyncio
async def test_create_application():
    responses = [httpx.Response(201), _error(409, "FABRIC_E_APPLICATION_ALREADY_EXISTS")]
    gateway, recorder = make_gateway(lambda request: responses.pop(0))
    description = ApplicationDescription(name="fabric:/Web", type_name="WebSFApp", type_version="1.0.6.0")
    async with gateway:
        assert await gateway.create_application(description) == GatewayResult.OK
        assert await gateway.create_application(description) == GatewayResult.ALREADY_EXISTS

    request = recorder.requests[0]
    assert request.url.path == "/Applications/$/Create"
    body = json.loads(request.content)
    assert body["Name"] == "fabric:/Web"
    assert body["TypeName"] == "WebSFApp"
    assert body["TypeVersion"] == "1.0.6.0"


@pytest.mark.asyncio
async def test_upgrade_application_is_monitored_with_rollback():
    gateway, recorder = make_gateway(lambda request: httpx.Response(200))
    async with gateway:
        result = await gateway.upgrade_application(
            ApplicationUpgradeDescription(name="fabric:/Web", target_version="1.0.6.0")
        )

    assert result == GatewayResult.OK
    request = recorder.requests[0]
    assert request.url.path == "/Applications/Web/$/Upgrade"
    body = json.loads(request.content)
    assert body["TargetApplicationTypeVersion"] == "1.0.6.0"
    assert body["UpgradeKind"] == "Rolling"
    assert body["RollingUpgradeMode"] == "Monitored"
    assert body["MonitoringPolicy"] == {"FailureAction": "Rollback"}


@pytest.mark.asyncio
async def test_upgrade_in_progress_raises():
    gateway, _ = make_gateway(lambda request: _error(400, "FABRIC_E_APPLICATION_UPGRADE_IN_PROGRESS"))
    async with gateway:
        with pytest.raises(ClusterOperationError):
            await gateway.upgrade_application(ApplicationUpgradeDescription(name="fabric:/Web", target_version="1.0.6.0"))


@pytest.mark.asyncio
async def test_copy_package_uploads_files_and_dir_markers(tmp_path: Path):
    pkg = tmp_path / "pkg"
    (pkg / "WebSFServicePkg" / "Code").mkdir(parents=True)
    (pkg / "WebSFServicePkg" / "Config").mkdir()
    (pkg / "ApplicationManifest.xml").write_bytes(b"<app/>")
    (pkg / "WebSFServicePkg" / "Code" / "web.exe").write_bytes(b"exe")

    gateway, recorder = make_gateway(lambda request: httpx.Response(200))
    async with gateway:
        await gateway.copy_package("fabric:ImageStore", pkg, "Web")

    uploaded = {r.url.path: r.content for r in recorder.requests}
    assert all(r.method == "PUT" for r in recorder.requests)
    assert uploaded["/ImageStore/Web/ApplicationManifest.xml"] == b"<app/>"
    assert uploaded["/ImageStore/Web/WebSFServicePkg/Code/web.exe"] == b"exe"
    assert uploaded["/ImageStore/Web/_.dir"] == b""
    assert uploaded["/ImageStore/Web/WebSFServicePkg/Config/_.dir"] == b""
    assert recorder.requests[0].headers["Content-Type"] == "application/octet-stream"


@pytest.mark.asyncio
async def test_copy_package_upload_error_raises(tmp_path: Path):
    (tmp_path / "f.txt").write_text("x")
    gateway, _ = make_gateway(lambda request: _error(507, "FABRIC_E_IMAGESTORE_IOERROR"))
    async with gateway:
        with pytest.raises(ClusterOperationError):
            await gateway.copy_package("fabric:ImageStore", tmp_path, "Web")


@pytest.mark.asyncio
async def test_copy_package_to_file_image_store(tmp_path: Path):
    pkg = tmp_path / "pkg"
    (pkg / "Sub").mkdir(parents=True)
    (pkg / "Sub" / "a.txt").write_text("a")
    store = tmp_path / "store"

    gateway, recorder = make_gateway(lambda request: httpx.Response(500))
    async with gateway:
        await gateway.copy_package(f"file:{store}", pkg, "Web")

    assert (store / "Web" / "Sub" / "a.txt").read_text() == "a"
    assert recorder.requests == []


@pytest.mark.asyncio
async def test_copy_package_unsupported_store(tmp_path: Path):
    gateway, _ = make_gateway(lambda request: httpx.Response(200))
    async with gateway:
        with pytest.raises(ClusterError):
            await gateway.copy_package("xstore:DefaultEndpointsProtocol=https", tmp_path, "Web")


@pytest.mark.asyncio
async def test_get_cluster_manifest():
    gateway, recorder = make_gateway(lambda request: httpx.Response(200, json={"Manifest": CLUSTER_MANIFEST}))
    async with gateway:
        manifest = await gateway.get_cluster_manifest()

    assert recorder.requests[0].url.path == "/$/GetClusterManifest"
    assert resolve_image_store_connection_string(manifest) == "fabric:ImageStore"


def test_resolve_image_store_connection_string_default():
    manifest = '<ClusterManifest xmlns="http://schemas.microsoft.com/2011/01/fabric"><FabricSettings/></ClusterManifest>'
    assert resolve_image_store_connection_string(manifest) == "fabric:ImageStore"
    assert resolve_image_store_connection_string(manifest, default="file:/tmp/store") == "file:/tmp/store"
    assert resolve_image_store_connection_string("") == "fabric:ImageStore"


def test_resolve_image_store_connection_string_custom():
    manifest = CLUSTER_MANIFEST.replace("fabric:ImageStore", r"file:C:\SfDevCluster\Data\ImageStoreShare")
    assert resolve_image_store_connection_string(manifest) == r"file:C:\SfDevCluster\Data\ImageStoreShare"


def test_resolve_image_store_connection_string_invalid_xml():
    with pytest.raises(ClusterError):
        resolve_image_store_connection_string("<not xml")


def test_default_tls_verification():
    assert build_ssl_context(Settings()) is True


@pytest.mark.asyncio
@pytest.mark.parametrize("code", ["FABRIC_E_APPLICATION_ALREADY_EXISTS", "FABRIC_E_APPLICATION_ALREADY_IN_TARGET_VERSION"])
async def test_upgrade_already_in_place_is_absorbed(code):
    gateway, recorder = make_gateway(lambda request: _error(400, code))
    async with gateway:
        result = await gateway.upgrade_application(
            ApplicationUpgradeDescription(name="fabric:/Web", target_version="1.0.6.0")
        )

    assert result == GatewayResult.ALREADY_EXISTS
    assert recorder.requests[0].url.path == "/Applications/Web/$/Upgrade"


@pytest.mark.asyncio
async def test_get_application():
    responses = [
        httpx.Response(200, json={"Name": "fabric:/Web", "TypeName": "WebSFApp", "TypeVersion": "1.0.5.3"}),
        _error(404, "FABRIC_E_APPLICATION_NOT_FOUND"),
    ]
    gateway, _ = make_gateway(lambda request: responses.pop(0))
    async with gateway:
        record = await gateway.get_application("fabric:/Web")
        missing = await gateway.get_application("fabric:/Web")

    assert record.type_version == "1.0.5.3"
    assert missing is None


@pytest.mark.asyncio
@pytest.mark.parametrize("operation", ["get_application", "get_cluster_manifest"])
async def test_non_json_body_raises_cluster_error(operation):
    gateway, _ = make_gateway(lambda request: httpx.Response(200, content=b"<html>proxy</html>"))
    async with gateway:
        with pytest.raises(ClusterError):
            if operation == "get_application":
                await gateway.get_application("fabric:/Web")
            else:
                await gateway.get_cluster_manifest()


def test_missing_client_certificate_is_configuration_error(tmp_path: Path):
    settings = Settings(client_cert=str(tmp_path / "missing.pem"))
    with pytest.raises(ConfigurationError):
        build_ssl_context(settings)
