"""Staged entity model: a row that sits in exactly one board stage."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

# Columns every staged row carries besides its stage and payload
RESERVED_COLUMNS = ("id", "created_at", "updated_at")


def now_iso() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO timestamp from the remote store (accepts a trailing ``Z``)."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


@dataclass
class StagedEntity:
    """An entity owned by the remote store and cached by a board controller."""

    id: str
    stage: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    # Board-specific columns (title, description, priority, script, ...)
    payload: dict[str, Any] = field(default_factory=dict)

    def get(self, key: str, default: Any = None) -> Any:
        """Read a payload field."""
        return self.payload.get(key, default)

    @classmethod
    def from_row(cls, row: Mapping[str, Any], stage_field: str) -> "StagedEntity":
        """Build an entity from a raw row.

        Args:
            row: Row as returned by the gateway
            stage_field: Column holding the stage value

        Returns:
            StagedEntity with every non-reserved column kept in ``payload``
        """
        payload = {
            k: v for k, v in row.items() if k not in RESERVED_COLUMNS and k != stage_field
        }
        return cls(
            id=str(row["id"]),
            stage=str(row.get(stage_field, "")),
            created_at=parse_timestamp(row.get("created_at")),
            updated_at=parse_timestamp(row.get("updated_at")),
            payload=payload,
        )

    def to_row(self, stage_field: str) -> dict[str, Any]:
        """Serialize back to a row dict."""
        row = dict(self.payload)
        row["id"] = self.id
        row[stage_field] = self.stage
        if self.created_at:
            row["created_at"] = self.created_at.isoformat()
        if self.updated_at:
            row["updated_at"] = self.updated_at.isoformat()
        return row

    def __hash__(self) -> int:
        """Hash based on the remote identifier."""
        return hash(self.id)

    def __eq__(self, other: object) -> bool:
        """Equality based on the remote identifier."""
        if not isinstance(other, StagedEntity):
            return NotImplemented
        return self.id == other.id
