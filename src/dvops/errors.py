"""Domain errors for dataverse-ops."""

from typing import Dict, Iterable, Optional


class DvOpsError(RuntimeError):
    """Raised when a workflow cannot continue safely."""


class ConfigurationError(DvOpsError):
    """Required configuration keys are missing or invalid."""

    def __init__(self, message: str, missing: Optional[Dict[str, Iterable[str]]] = None):
        super().__init__(message)
        self.missing = {group: list(keys) for group, keys in (missing or {}).items()}

    @property
    def missing_keys(self) -> set:
        return {key for keys in self.missing.values() for key in keys}


class SafetyViolation(DvOpsError):
    """The target of a destructive action resolves to production."""


class ExecutionError(DvOpsError):
    """An external command exited with a non-zero status."""

    def __init__(self, message: str, command: str = "", output: str = "", returncode: Optional[int] = None):
        super().__init__(message)
        self.command = command
        self.output = output
        self.returncode = returncode


class ChecksumMismatch(DvOpsError):
    """A downloaded artifact does not match its expected hash."""

    def __init__(self, message: str, expected: str = "", actual: str = ""):
        super().__init__(message)
        self.expected = expected
        self.actual = actual


class ServiceTimeoutError(DvOpsError, TimeoutError):
    """A service did not become ready within its bound."""


class OperationCancelled(DvOpsError):
    """The operator declined a confirmation the run depends on."""
