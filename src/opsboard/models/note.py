"""Note model: the searchable entity behind the memory view."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Mapping, Optional, Union

from opsboard.models.entity import parse_timestamp


def parse_tags(value: Union[str, Iterable[str], None]) -> frozenset[str]:
    """Normalize tags to a case-sensitive set.

    Accepts a comma separated string or any iterable of strings. Blank
    entries are dropped and surrounding whitespace is trimmed.
    """
    if value is None:
        return frozenset()
    if isinstance(value, str):
        value = value.split(",")
    return frozenset(t.strip() for t in value if t and t.strip())


@dataclass
class Note:
    """Represents a note ("memory") stored in the remote notes table."""

    id: str
    title: str
    content: str
    tags: frozenset[str] = field(default_factory=frozenset)
    updated_at: Optional[datetime] = None

    # Extra columns from the dashboard
    source: str = "manual"
    memory_date: Optional[str] = None

    def __post_init__(self) -> None:
        """Coerce tags into a deduplicated set."""
        if not isinstance(self.tags, frozenset):
            self.tags = parse_tags(self.tags)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Note":
        """Build a note from a raw row."""
        return cls(
            id=str(row["id"]),
            title=row.get("title") or "",
            content=row.get("content") or "",
            tags=parse_tags(row.get("tags")),
            updated_at=parse_timestamp(row.get("updated_at")),
            source=row.get("source") or "manual",
            memory_date=row.get("memory_date"),
        )

    def to_row(self) -> dict[str, Any]:
        """Serialize to a row dict (tags sorted for a stable wire format)."""
        row: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "content": self.content,
            "tags": sorted(self.tags),
            "source": self.source,
            "memory_date": self.memory_date,
        }
        if self.updated_at:
            row["updated_at"] = self.updated_at.isoformat()
        return row

    def __hash__(self) -> int:
        """Hash based on the remote identifier."""
        return hash(self.id)

    def __eq__(self, other: object) -> bool:
        """Equality based on the remote identifier."""
        if not isinstance(other, Note):
            return NotImplemented
        return self.id == other.id
