"""
Data models for the GCE test-host provisioner.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from errors import InvalidResourceRef

# Sorts below any real image timestamp
EPOCH = datetime.min.replace(tzinfo=timezone.utc)

DEPRECATED_STATES = {"DEPRECATED", "OBSOLETE", "DELETED"}


class ResourceKind(Enum):
    """Compute Engine resource collections handled by the lifecycle drivers."""

    DISK = "disk"
    INSTANCE = "instance"
    FIREWALL = "firewall"

    @property
    def collection(self) -> str:
        return f"{self.value}s"

    @property
    def is_global(self) -> bool:
        return self is ResourceKind.FIREWALL


@dataclass(frozen=True)
class ResourceRef:
    """Identity of a single Compute Engine resource."""

    kind: ResourceKind
    name: str
    project: str
    zone: str

    def validate(self) -> "ResourceRef":
        """
        Check that every identity field is set.

        Returns:
            The reference itself, so calls can be chained

        Raises:
            InvalidResourceRef: If any identity field is empty
        """
        missing = [
            f for f in ("name", "project", "zone") if not getattr(self, f)
        ]
        if not isinstance(self.kind, ResourceKind):
            missing.insert(0, "kind")
        if missing:
            raise InvalidResourceRef(
                f"Resource reference is missing {', '.join(missing)}: {self}"
            )
        return self


class OperationStatus(Enum):
    """State observed by a single probe."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    DONE = "DONE"
    NOT_FOUND = "NOT_FOUND"

    @classmethod
    def from_operation(cls, op: Dict[str, Any]) -> "OperationStatus":
        """Map a Compute Engine operation document to a status."""
        raw = str(op.get("status", "PENDING")).upper()
        try:
            return cls(raw)
        except ValueError:
            return cls.PENDING


@dataclass
class Probe:
    """Result of one status check."""

    status: OperationStatus
    document: Optional[Dict[str, Any]] = None
    error: Optional[str] = None  # failure reported by the remote side


@dataclass
class PollOutcome:
    """Final result of a poll, returned exactly once."""

    succeeded: bool
    last_status: Optional[OperationStatus]
    attempts_used: int
    elapsed: float
    error: Optional[Exception] = None
    document: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/reporting."""
        return {
            "succeeded": self.succeeded,
            "last_status": self.last_status.value if self.last_status else None,
            "attempts_used": self.attempts_used,
            "elapsed": round(self.elapsed, 3),
            "error": str(self.error) if self.error else None,
        }


def parse_timestamp(value: Optional[str]) -> datetime:
    """
    Parse an RFC 3339 timestamp as returned by Compute Engine.

    Missing or malformed values map to EPOCH so they sort oldest.
    """
    if not value:
        return EPOCH
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return EPOCH
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class ImageCandidate:
    """One image from an images.list response."""

    name: str
    family: str = ""
    creation_timestamp: datetime = EPOCH
    deprecated: bool = False
    self_link: str = ""
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ImageCandidate":
        deprecated = data.get("deprecated")
        if isinstance(deprecated, dict):
            is_deprecated = (
                str(deprecated.get("state", "")).upper() in DEPRECATED_STATES
            )
        else:
            is_deprecated = bool(deprecated)
        return cls(
            name=data.get("name", ""),
            family=data.get("family", "") or "",
            creation_timestamp=parse_timestamp(data.get("creationTimestamp")),
            deprecated=is_deprecated,
            self_link=data.get("selfLink", ""),
            raw=data,
        )


@dataclass
class HostResult:
    """Result of provisioning or tearing down one test host."""

    name: str
    action: str  # "provision", "teardown"
    status: str  # "success", "failed", "dry_run"
    start_time: Optional[float] = None
    end_time: Optional[float] = None
    duration_seconds: Optional[float] = None
    image: Optional[str] = None
    external_ip: Optional[str] = None
    error_message: Optional[str] = None
