"""Result types shared by provider clients and refresh orchestrators.

Provider clients never raise for expected failures. They return one of:

- ``Found(value)``: the provider had data
- ``NotFound(reason)``: the provider was reachable but has no data for the key
- ``Failed(error)``: network error, timeout or non-success HTTP status

Orchestrators turn each attempt into a ``RefreshResult`` and aggregate a run
into a ``RunSummary``.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, TypeVar, Union

T = TypeVar("T")


@dataclass(frozen=True)
class Found(Generic[T]):
    """Provider returned a value."""
    value: T


@dataclass(frozen=True)
class NotFound:
    """Provider has no data for the requested key."""
    reason: str = "no data"


@dataclass(frozen=True)
class Failed:
    """Provider call failed."""
    error: str


ProviderResult = Union[Found, NotFound, Failed]


class RefreshStatus(str, Enum):
    """Per-entity state within one refresh run."""
    PENDING = "pending"
    FETCHING = "fetching"
    UPDATED = "updated"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class RefreshResult:
    """Outcome of refreshing one stablecoin."""
    stablecoin_id: int
    status: RefreshStatus
    value: Any = None
    error: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.utcnow)
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.status == RefreshStatus.UPDATED

    @classmethod
    def updated(cls, stablecoin_id: int, value: Any = None, **extra) -> "RefreshResult":
        return cls(stablecoin_id, RefreshStatus.UPDATED, value=value, extra=extra)

    @classmethod
    def skipped(cls, stablecoin_id: int, reason: str = "no data", **extra) -> "RefreshResult":
        return cls(stablecoin_id, RefreshStatus.SKIPPED, error=reason, extra=extra)

    @classmethod
    def failed(cls, stablecoin_id: int, error: str, **extra) -> "RefreshResult":
        return cls(stablecoin_id, RefreshStatus.FAILED, error=error, extra=extra)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "stablecoin_id": self.stablecoin_id,
            "success": self.success,
            "status": self.status.value,
            "value": self.value,
            "error": self.error,
            "timestamp": self.timestamp.isoformat(),
        }
        data.update(self.extra)
        return data


@dataclass
class RunSummary:
    """Aggregate of one orchestrator run.

    ``error`` is set only when the run itself aborted (for example the store
    could not be listed); per-entity failures live in ``results``.
    """
    name: str
    results: List[RefreshResult] = field(default_factory=list)
    error: Optional[str] = None
    started_at: datetime = field(default_factory=datetime.utcnow)
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def successful(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def skipped(self) -> int:
        return sum(1 for r in self.results if r.status == RefreshStatus.SKIPPED)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if r.status == RefreshStatus.FAILED)

    @property
    def success(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "success": self.success,
            "error": self.error,
            "started_at": self.started_at.isoformat(),
            "total": self.total,
            "successful": self.successful,
            "skipped": self.skipped,
            "failed": self.failed,
            "results": [r.to_dict() for r in self.results],
            "details": self.details,
        }
