"""Data models for contribution tracking."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


class ContributionType(str, Enum):
    """Kind of activity a contribution records."""

    COMMIT = "commit"
    PR = "pr"
    REVIEW = "review"


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp into a timezone-aware datetime.

    Naive values are assumed to be UTC.

    Args:
        value: Timestamp string such as "2025-01-15T10:00:00Z"

    Returns:
        Timezone-aware datetime

    Raises:
        ValueError: If the string is not a valid ISO-8601 timestamp
    """
    if not isinstance(value, str) or not value:
        raise ValueError(f"Invalid timestamp: {value!r}")

    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def ensure_aware(value: datetime) -> datetime:
    """Return the datetime with UTC attached if it has no timezone."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass(frozen=True)
class Contribution:
    """A single commit, pull/merge request or review event."""

    type: ContributionType
    timestamp: str
    text: str | None = None
    url: str | None = None
    repository: str | None = None
    target: str | None = None
    project_id: str | None = None

    def __post_init__(self):
        object.__setattr__(self, "type", ContributionType(self.type))
        parse_timestamp(self.timestamp)

    @property
    def occurred_at(self) -> datetime:
        """Timestamp parsed as an aware datetime."""
        return parse_timestamp(self.timestamp)

    def to_dict(self) -> dict:
        """Serialize to a JSON-ready dict, omitting unset optional fields."""
        data = {"type": self.type.value, "timestamp": self.timestamp}
        optional = {
            "text": self.text,
            "url": self.url,
            "repository": self.repository,
            "target": self.target,
            "projectId": self.project_id,
        }
        data.update({key: value for key, value in optional.items() if value is not None})
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Contribution":
        """Build a contribution from its serialized form.

        Raises:
            ValueError: If the type or timestamp is invalid
        """
        if not isinstance(data, dict):
            raise ValueError(f"Contribution must be an object, got {type(data).__name__}")

        return cls(
            type=data.get("type"),
            timestamp=data.get("timestamp"),
            text=data.get("text"),
            url=data.get("url"),
            repository=data.get("repository"),
            target=data.get("target"),
            project_id=data.get("projectId"),
        )


@dataclass
class CacheMetadata:
    """Summary of one cached (platform, user) entry."""

    platform: str
    username: str
    last_updated: str
    contribution_count: int
    earliest: str
    latest: str

    def to_dict(self) -> dict:
        return {
            "platform": self.platform,
            "username": self.username,
            "lastUpdated": self.last_updated,
            "contributionCount": self.contribution_count,
            "dateRange": {"earliest": self.earliest, "latest": self.latest},
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CacheMetadata":
        date_range = data.get("dateRange") or {}
        return cls(
            platform=data["platform"],
            username=data["username"],
            last_updated=data.get("lastUpdated", ""),
            contribution_count=int(data.get("contributionCount", 0)),
            earliest=date_range.get("earliest", ""),
            latest=date_range.get("latest", ""),
        )


@dataclass
class CacheEntry:
    """Persisted contribution set for one (platform, user) identity."""

    metadata: CacheMetadata
    contributions: list[Contribution] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "metadata": self.metadata.to_dict(),
            "contributions": [c.to_dict() for c in self.contributions],
        }


@dataclass
class CacheStatus:
    """Overview of everything in the cache directory."""

    exists: bool
    size: int
    entries: list[CacheMetadata] = field(default_factory=list)
