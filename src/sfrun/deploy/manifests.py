"""Application and service manifest models.

Both manifests are fully determined by the application name, the version,
the entry file and the exposed ports. ``to_xml`` produces the documents the
cluster reads from the package root and the service package folder;
``from_xml`` reads them back.
"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from typing import List, Sequence

from pydantic import BaseModel, Field

from sfrun.core.models import VersionStamp
from sfrun.deploy.naming import AppNames

FABRIC_NS = "http://schemas.microsoft.com/2011/01/fabric"
APPLICATION_MANIFEST_FILE = "ApplicationManifest.xml"
SERVICE_MANIFEST_FILE = "ServiceManifest.xml"

# Instance count meaning "one instance on every node"
RUN_EVERYWHERE = "-1"

ET.register_namespace("", FABRIC_NS)


def _tag(name: str) -> str:
    return f"{{{FABRIC_NS}}}{name}"


def _serialize(root: ET.Element) -> bytes:
    tree = ET.ElementTree(root)
    ET.indent(tree)
    return ET.tostring(root, encoding="utf-8", xml_declaration=True)


def _require(parent: ET.Element, path: str) -> ET.Element:
    found = parent.find(path, {"sf": FABRIC_NS})
    if found is None:
        raise ValueError(f"Manifest is missing element {path}")
    return found


class Endpoint(BaseModel):
    name: str
    port: int = Field(..., ge=0, le=65535)
    protocol: str = "tcp"


class ServiceManifest(BaseModel):
    """ServiceManifest.xml: one stateless service type and one code package."""

    name: str
    version: str
    service_type_name: str
    use_implicit_host: bool = True
    code_package_name: str = "Code"
    code_package_version: str
    program: str
    arguments: str = ""
    working_folder: str = "CodePackage"
    endpoints: List[Endpoint] = Field(default_factory=list)

    def to_xml(self) -> bytes:
        root = ET.Element(_tag("ServiceManifest"), {"Name": self.name, "Version": self.version})

        service_types = ET.SubElement(root, _tag("ServiceTypes"))
        ET.SubElement(
            service_types,
            _tag("StatelessServiceType"),
            {
                "ServiceTypeName": self.service_type_name,
                "UseImplicitHost": "true" if self.use_implicit_host else "false",
            },
        )

        code = ET.SubElement(
            root, _tag("CodePackage"), {"Name": self.code_package_name, "Version": self.code_package_version}
        )
        exe_host = ET.SubElement(ET.SubElement(code, _tag("EntryPoint")), _tag("ExeHost"))
        ET.SubElement(exe_host, _tag("Program")).text = self.program
        ET.SubElement(exe_host, _tag("Arguments")).text = self.arguments
        ET.SubElement(exe_host, _tag("WorkingFolder")).text = self.working_folder

        if self.endpoints:
            endpoints = ET.SubElement(ET.SubElement(root, _tag("Resources")), _tag("Endpoints"))
            for endpoint in self.endpoints:
                ET.SubElement(
                    endpoints,
                    _tag("Endpoint"),
                    {"Name": endpoint.name, "Protocol": endpoint.protocol, "Port": str(endpoint.port)},
                )

        return _serialize(root)

    @classmethod
    def from_xml(cls, data: bytes) -> "ServiceManifest":
        root = ET.fromstring(data)
        if root.tag != _tag("ServiceManifest"):
            raise ValueError(f"Not a service manifest: {root.tag}")
        service_type = _require(root, "sf:ServiceTypes/sf:StatelessServiceType")
        code = _require(root, "sf:CodePackage")
        exe_host = _require(code, "sf:EntryPoint/sf:ExeHost")
        endpoints = [
            Endpoint(name=e.get("Name"), port=int(e.get("Port")), protocol=e.get("Protocol", "tcp"))
            for e in root.iterfind("sf:Resources/sf:Endpoints/sf:Endpoint", {"sf": FABRIC_NS})
        ]
        return cls(
            name=root.get("Name"),
            version=root.get("Version"),
            service_type_name=service_type.get("ServiceTypeName"),
            use_implicit_host=service_type.get("UseImplicitHost", "false") == "true",
            code_package_name=code.get("Name"),
            code_package_version=code.get("Version"),
            program=_require(exe_host, "sf:Program").text or "",
            arguments=_require(exe_host, "sf:Arguments").text or "",
            working_folder=_require(exe_host, "sf:WorkingFolder").text or "",
            endpoints=endpoints,
        )


class ApplicationManifest(BaseModel):
    """ApplicationManifest.xml: one imported service package and one default service."""

    type_name: str
    type_version: str
    service_manifest_name: str
    service_manifest_version: str
    service_name: str
    service_type_name: str
    instance_count: str = RUN_EVERYWHERE

    def to_xml(self) -> bytes:
        root = ET.Element(
            _tag("ApplicationManifest"),
            {"ApplicationTypeName": self.type_name, "ApplicationTypeVersion": self.type_version},
        )
        ET.SubElement(
            ET.SubElement(root, _tag("ServiceManifestImport")),
            _tag("ServiceManifestRef"),
            {"ServiceManifestName": self.service_manifest_name, "ServiceManifestVersion": self.service_manifest_version},
        )
        service = ET.SubElement(ET.SubElement(root, _tag("DefaultServices")), _tag("Service"), {"Name": self.service_name})
        stateless = ET.SubElement(
            service,
            _tag("StatelessService"),
            {"ServiceTypeName": self.service_type_name, "InstanceCount": self.instance_count},
        )
        ET.SubElement(stateless, _tag("SingletonPartition"))
        return _serialize(root)

    @classmethod
    def from_xml(cls, data: bytes) -> "ApplicationManifest":
        root = ET.fromstring(data)
        if root.tag != _tag("ApplicationManifest"):
            raise ValueError(f"Not an application manifest: {root.tag}")
        ref = _require(root, "sf:ServiceManifestImport/sf:ServiceManifestRef")
        service = _require(root, "sf:DefaultServices/sf:Service")
        stateless = _require(service, "sf:StatelessService")
        _require(stateless, "sf:SingletonPartition")
        return cls(
            type_name=root.get("ApplicationTypeName"),
            type_version=root.get("ApplicationTypeVersion"),
            service_manifest_name=ref.get("ServiceManifestName"),
            service_manifest_version=ref.get("ServiceManifestVersion"),
            service_name=service.get("Name"),
            service_type_name=stateless.get("ServiceTypeName"),
            instance_count=stateless.get("InstanceCount"),
        )


class ManifestPair(BaseModel):
    application: ApplicationManifest
    service: ServiceManifest

    @property
    def service_package(self) -> str:
        return self.service.name


def build_service_manifest(
    app: str,
    version: VersionStamp,
    entry_file: str,
    args: str = "",
    ports: Sequence[int] = (),
) -> ServiceManifest:
    names = AppNames(app)
    return ServiceManifest(
        name=names.service_package,
        version=str(version),
        service_type_name=names.service_type,
        code_package_version=str(version),
        program=entry_file,
        arguments=args,
        endpoints=[Endpoint(name=names.endpoint_name(i), port=port) for i, port in enumerate(ports)],
    )


def build_application_manifest(app: str, version: VersionStamp) -> ApplicationManifest:
    names = AppNames(app)
    return ApplicationManifest(
        type_name=names.type_name,
        type_version=str(version),
        service_manifest_name=names.service_package,
        service_manifest_version=str(version),
        service_name=names.service_name,
        service_type_name=names.service_type,
    )


def build_manifests(
    app: str,
    version: VersionStamp,
    entry_file: str,
    args: str = "",
    ports: Sequence[int] = (),
) -> ManifestPair:
    return ManifestPair(
        application=build_application_manifest(app, version),
        service=build_service_manifest(app, version, entry_file, args, ports),
    )
