"""Custom exceptions for sfrun."""

from typing import Optional


class SfrunError(Exception):
    """Base exception for all sfrun errors."""

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.code = code


class UserInputError(SfrunError):
    """Input from the operator cannot be used."""
    pass


class NoNameError(UserInputError):
    """No application name could be derived."""

    def __init__(self, message: str = "Cannot generate app name"):
        super().__init__(message)


class StagingError(SfrunError):
    """Building the on-disk package failed."""
    pass


class ClusterError(SfrunError):
    """Cluster communication error."""
    pass


class ClusterOperationError(ClusterError):
    """The control plane rejected an operation.

    ``code`` carries the FABRIC_E_* error code when the cluster reports one.
    """

    def __init__(self, operation: str, message: str, code: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(f"{operation} failed: {message}", code=code)
        self.operation = operation
        self.status_code = status_code


class ConfigurationError(SfrunError):
    """Configuration error."""
    pass
