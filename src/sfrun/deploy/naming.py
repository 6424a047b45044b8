"""Application naming helpers."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import PurePath
from typing import Optional

from sfrun.core.exceptions import NoNameError


def derive_app_name(explicit: Optional[str], directory_name: str, file_name: str) -> str:
    """Pick the application name.

    The first non-blank of the explicit name, the containing directory name
    and the entry file name (without extension) wins. Surrounding whitespace
    is dropped and only the first character is upper-cased.

    Raises:
        NoNameError: If every candidate is blank
    """
    file_stem = PurePath(file_name).stem if file_name and file_name.strip() else ""
    for candidate in (explicit, directory_name, file_stem):
        if candidate and candidate.strip():
            name = candidate.strip()
            return name[0].upper() + name[1:]
    raise NoNameError()


@dataclass(frozen=True)
class AppNames:
    """Identity strings the cluster matches types and instances by."""

    app: str

    @property
    def application_uri(self) -> str:
        return f"fabric:/{self.app}"

    @property
    def type_name(self) -> str:
        return f"{self.app}SFApp"

    @property
    def service_package(self) -> str:
        return f"{self.app}SFServicePkg"

    @property
    def service_type(self) -> str:
        return f"{self.app}SFServiceType"

    @property
    def service_name(self) -> str:
        return f"{self.app}SFService"

    def endpoint_name(self, index: int) -> str:
        return f"{self.app}Port{index}"
