"""sfrun - Publish a prebuilt executable directory to a Service Fabric cluster."""

__version__ = "0.1.0"

from sfrun.core.config import Settings
from sfrun.core.models import DeploymentOutcome, OutcomeKind, VersionStamp

__all__ = ["Settings", "DeploymentOutcome", "OutcomeKind", "VersionStamp", "__version__"]
