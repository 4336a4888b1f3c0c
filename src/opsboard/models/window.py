"""Search filter and the fetched window of filtered results."""

from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from opsboard.models.note import Note, parse_tags


@dataclass(frozen=True)
class SearchFilter:
    """Conjunctive filter: text substring on any text column AND tag membership.

    Two filters are the same query exactly when they compare equal, which is
    what decides whether a late response still applies.
    """

    query: str = ""
    tag: Optional[str] = None
    text_columns: tuple[str, ...] = ("title", "content")
    tag_column: str = "tags"

    @property
    def text(self) -> str:
        """Query with surrounding whitespace removed."""
        return self.query.strip()

    @property
    def is_empty(self) -> bool:
        return not self.text and self.tag is None

    def matches(self, row: Mapping[str, Any]) -> bool:
        """Evaluate the filter against a raw row.

        Text matching is a case-insensitive substring test on any text
        column; the tag test is exact set membership.
        """
        if self.text:
            needle = self.text.lower()
            if not any(needle in str(row.get(col) or "").lower() for col in self.text_columns):
                return False
        if self.tag is not None:
            if self.tag not in parse_tags(row.get(self.tag_column)):
                return False
        return True


@dataclass
class SearchWindow:
    """Materialized prefix of the server's filtered, ordered result set."""

    filter: SearchFilter = field(default_factory=SearchFilter)
    items: list[Note] = field(default_factory=list)
    total: int = 0

    @property
    def fetched(self) -> int:
        return len(self.items)

    @property
    def has_more(self) -> bool:
        return len(self.items) < self.total

    def ids(self) -> set[str]:
        return {note.id for note in self.items}
