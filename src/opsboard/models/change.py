"""Change signal emitted by a table subscription."""

from dataclasses import dataclass, field
from datetime import datetime, timezone


@dataclass(frozen=True)
class ChangeSignal:
    """Payload-less wake-up: at least one row in ``table`` changed."""

    table: str
    received_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
