"""Core data models for sfrun."""

from enum import Enum
from pathlib import Path
from typing import List, NamedTuple, Optional

from pydantic import BaseModel, Field


class VersionStamp(NamedTuple):
    """Four-part application type version, ordered as a tuple."""

    major: int
    minor: int
    high: int
    low: int

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.high}.{self.low}"

    @classmethod
    def parse(cls, text: str) -> "VersionStamp":
        """Parse a dotted version string with two to four numeric parts.

        Missing trailing parts are read as zero.

        Raises:
            ValueError: If the text is not a dotted numeric version
        """
        parts = text.strip().split(".")
        if not 2 <= len(parts) <= 4:
            raise ValueError(f"Invalid version: {text!r}")
        try:
            numbers = [int(p) for p in parts]
        except ValueError:
            raise ValueError(f"Invalid version: {text!r}") from None
        if any(n < 0 for n in numbers):
            raise ValueError(f"Invalid version: {text!r}")
        numbers.extend([0] * (4 - len(numbers)))
        return cls(*numbers)


class SourceBundle(BaseModel):
    """Executable directory to publish."""

    model_config = {"frozen": True}

    root_directory: Path = Field(..., description="Directory holding the executable and its files")
    entry_file: str = Field(..., description="Executable file name inside root_directory")

    @classmethod
    def from_exe_file(cls, exe_file: Path) -> "SourceBundle":
        exe_file = Path(exe_file).absolute()
        return cls(root_directory=exe_file.parent, entry_file=exe_file.name)


class ClusterApplicationRecord(BaseModel):
    """An application as reported by the cluster."""

    name: str = Field(..., description="Application URI, e.g. fabric:/App")
    type_name: Optional[str] = None
    type_version: str = Field(..., description="Deployed application type version")
    status: Optional[str] = None

    @property
    def version_stamp(self) -> Optional[VersionStamp]:
        try:
            return VersionStamp.parse(self.type_version)
        except ValueError:
            return None


class GatewayResult(str, Enum):
    """Outcome of a mutating control-plane call that did not fail."""

    OK = "ok"
    ALREADY_EXISTS = "already_exists"


class RollingUpgradeMode(str, Enum):
    MONITORED = "Monitored"
    UNMONITORED_AUTO = "UnmonitoredAuto"
    UNMONITORED_MANUAL = "UnmonitoredManual"


class UpgradeFailureAction(str, Enum):
    ROLLBACK = "Rollback"
    MANUAL = "Manual"


class ApplicationDescription(BaseModel):
    """Request body for creating an application instance."""

    name: str
    type_name: str
    type_version: str


class ApplicationUpgradeDescription(BaseModel):
    """Request body for a rolling application upgrade."""

    name: str
    target_version: str
    upgrade_mode: RollingUpgradeMode = RollingUpgradeMode.MONITORED
    failure_action: UpgradeFailureAction = UpgradeFailureAction.ROLLBACK


class OutcomeKind(str, Enum):
    CREATED = "created"
    UPGRADED = "upgraded"
    SKIPPED = "skipped"
    ABORTED = "aborted"


class DeploymentOutcome(BaseModel):
    """Result of one orchestrator run."""

    kind: OutcomeKind
    app_name: Optional[str] = None
    version: Optional[VersionStamp] = None
    previous_version: Optional[str] = None
    reason: Optional[str] = None
    idempotent_steps: List[str] = Field(default_factory=list, description="Steps the cluster reported as already done")

    @property
    def succeeded(self) -> bool:
        return self.kind != OutcomeKind.ABORTED

    @property
    def message(self) -> str:
        if self.kind == OutcomeKind.ABORTED:
            return self.reason or "Deployment aborted"
        if self.kind == OutcomeKind.SKIPPED:
            return "Running app package is newer or same"
        if self.kind == OutcomeKind.UPGRADED:
            return f"Upgraded {self.app_name} to {self.version}"
        return f"Created app {self.app_name} with {self.version}"
