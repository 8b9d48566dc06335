"""Shared domain models for dataverse-ops."""

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Iterable, Mapping, Optional, Tuple


@dataclass(frozen=True)
class Configuration:
    """Instance settings read once at startup."""

    values: Mapping[str, str] = field(default_factory=dict)
    source: str = "<environment>"

    def __post_init__(self):
        object.__setattr__(self, "values", MappingProxyType(dict(self.values)))

    def __getitem__(self, key: str) -> str:
        return self.values[key]

    def __contains__(self, key: str) -> bool:
        return bool(self.values.get(key))

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        value = self.values.get(key)
        return value if value else default

    def flag(self, key: str) -> bool:
        return (self.get(key) or "").strip().lower() in {"1", "true", "yes", "y"}

    def missing(self, keys: Iterable[str]) -> Tuple[str, ...]:
        return tuple(key for key in keys if not (self.values.get(key) or "").strip())


@dataclass(frozen=True)
class RemotePath:
    """A path on a remote host, rendered the way ssh/rsync expect it."""

    user: str
    host: str
    path: str

    def __str__(self) -> str:
        return f"{self.user}@{self.host}:{self.path}"


@dataclass(frozen=True)
class RemoteResult:
    output: str
    exit_status: int


class StepOutcome(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"
    DRY_RUN = "dry-run"


@dataclass(frozen=True)
class StepResult:
    """What a step's action reports back to the pipeline."""

    success: bool = True
    detail: Optional[str] = None


@dataclass(frozen=True)
class ReportEntry:
    step: str
    outcome: StepOutcome
    message: str = ""
    actions: Tuple[str, ...] = ()
