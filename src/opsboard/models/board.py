"""Board definitions: the declared stages of each kanban view."""

from dataclasses import dataclass, replace
from typing import Optional


@dataclass(frozen=True)
class StageDef:
    """One column of a board."""

    id: str
    label: str


@dataclass(frozen=True)
class BoardDefinition:
    """Static description of a board and the table behind it.

    Attributes:
        name: Short board name used by the CLI
        table: Remote table holding the board's rows
        stages: Declared stages, in display order
        stage_field: Row column holding the stage value
        title_field: Row column that must be non-empty on insert
        order_by: Column used to order a full load
        ascending: Sort direction of ``order_by``
        initial_stage: Stage assigned on insert (defaults to the first stage)
        sequence_field: Column filled with the current entity count on insert
    """

    name: str
    table: str
    stages: tuple[StageDef, ...]
    stage_field: str = "status"
    title_field: str = "title"
    order_by: str = "created_at"
    ascending: bool = False
    initial_stage: Optional[str] = None
    sequence_field: Optional[str] = None

    def __post_init__(self) -> None:
        """Validate the stage declaration."""
        if not self.stages:
            raise ValueError(f"Board {self.name!r} declares no stages")
        ids = [s.id for s in self.stages]
        if len(set(ids)) != len(ids):
            raise ValueError(f"Board {self.name!r} declares duplicate stages: {ids}")
        if self.initial_stage is not None and self.initial_stage not in ids:
            raise ValueError(f"Initial stage {self.initial_stage!r} is not declared")

    @property
    def stage_ids(self) -> tuple[str, ...]:
        return tuple(s.id for s in self.stages)

    @property
    def first_stage(self) -> str:
        """Stage new entities are inserted into."""
        return self.initial_stage or self.stages[0].id

    def has_stage(self, stage: str) -> bool:
        return stage in self.stage_ids

    def label_for(self, stage: str) -> str:
        for s in self.stages:
            if s.id == stage:
                return s.label
        return stage

    def neighbour(self, stage: str, direction: int) -> Optional[str]:
        """Stage immediately before (-1) or after (+1) ``stage``.

        Returns:
            The neighbouring stage id, or None at the boundary
        """
        ids = self.stage_ids
        target = ids.index(stage) + direction
        if target < 0 or target >= len(ids):
            return None
        return ids[target]

    def with_table(self, table: str) -> "BoardDefinition":
        """Same board backed by a differently named table."""
        return replace(self, table=table)


TASKS_BOARD = BoardDefinition(
    name="tasks",
    table="tasks",
    stages=(
        StageDef("TODO", "To Do"),
        StageDef("IN_PROGRESS", "In Progress"),
        StageDef("DONE", "Done"),
    ),
    stage_field="status",
)

CONTENT_BOARD = BoardDefinition(
    name="content",
    table="content_items",
    stages=(
        StageDef("idea", "💡 Idea"),
        StageDef("script", "📝 Script"),
        StageDef("thumbnail", "🖼 Thumbnail"),
        StageDef("filming", "🎬 Filming"),
        StageDef("published", "🚀 Published"),
    ),
    stage_field="stage",
)

TEAM_BOARD = BoardDefinition(
    name="team",
    table="team_members",
    stages=(
        StageDef("active", "Active"),
        StageDef("idle", "Idle"),
        StageDef("offline", "Offline"),
    ),
    stage_field="status",
    title_field="name",
    order_by="sort_order",
    ascending=True,
    initial_stage="idle",
    sequence_field="sort_order",
)

BOARDS = {board.name: board for board in (TASKS_BOARD, CONTENT_BOARD, TEAM_BOARD)}
