"""
Error kinds raised by the backup system.

Every error derives from BackupSystemError so the CLI can report any
failure of a command with a single handler.
"""

from typing import Optional


class BackupSystemError(Exception):
    """Base class for all backup system errors."""


class DuplicateBackupError(BackupSystemError):
    """A journal record with the same path already exists."""

    def __init__(self, path: str):
        super().__init__(f"cannot add backup {path} since it already exists in the journal")
        self.path = path


class UnknownBackupError(BackupSystemError):
    """No journal record exists for the given path."""

    def __init__(self, path: str):
        super().__init__(f"backup {path} is not present in the journal")
        self.path = path


class BackupNotFoundError(BackupSystemError):
    """The requested backup has no container on disk."""

    def __init__(self, path: str):
        super().__init__(f"cannot find backup: {path}")
        self.path = path


class NegativeGrowthError(BackupSystemError):
    """Attempt to shrink the backing store."""


class CapacityGrowthFailure(BackupSystemError):
    """
    A step of the grow protocol failed.

    mount_point and device describe what is still live when the protocol
    stopped (either may be None), so the caller can release exactly that.
    """

    def __init__(self, step: str, message: str, mount_point=None, device=None):
        super().__init__(f"grow protocol failed at step '{step}': {message}")
        self.step = step
        self.mount_point = mount_point
        self.device = device


class GatewayError(BackupSystemError):
    """An external tool or service reported a failure."""

    def __init__(self, operation: str, message: str, path: Optional[str] = None,
                 returncode: Optional[int] = None, stderr: str = ""):
        details = f"{operation} failed"
        if path:
            details += f" for {path}"
        details += f": {message}"
        super().__init__(details)
        self.operation = operation
        self.path = path
        self.returncode = returncode
        self.stderr = stderr


class GatewayUnavailable(GatewayError):
    """A required external tool or service is missing or unreachable."""


class GatewayTimeout(GatewayError):
    """An external tool did not respond within its timeout."""


class DataIntegrityError(BackupSystemError):
    """The persisted journal document is unreadable or corrupt."""


class ConfigurationError(BackupSystemError):
    """Invalid configuration value."""


class BackupInProgressError(BackupSystemError):
    """Another process holds the lock on the backing store."""
