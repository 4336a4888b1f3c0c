"""Dashboard summary across the boards and the note store."""

import asyncio
from dataclasses import dataclass, field

from opsboard.models.board import TASKS_BOARD, TEAM_BOARD, BoardDefinition
from opsboard.models.note import Note
from opsboard.services.board import BoardController
from opsboard.services.gateway import CollectionGateway
from opsboard.services.search import SearchStore

RECENT_NOTES = 5


@dataclass
class DashboardSummary:
    """Headline figures for the overview page."""

    active_tasks: int = 0
    active_members: int = 0
    note_count: int = 0
    recent_notes: list[Note] = field(default_factory=list)

    def as_rows(self) -> list[tuple[str, int]]:
        return [
            ("Active Tasks", self.active_tasks),
            ("Active Members", self.active_members),
            ("Notes", self.note_count),
        ]


async def build_summary(
    gateway: CollectionGateway,
    tasks_board: BoardDefinition = TASKS_BOARD,
    team_board: BoardDefinition = TEAM_BOARD,
    notes_table: str = "memories",
) -> DashboardSummary:
    """Load the tasks and team boards and the newest notes concurrently.

    A task is active until it reaches the last declared stage; a member is
    active while in the first declared stage.

    Raises:
        TransportError: If any of the reads fails
    """
    tasks = BoardController(gateway, tasks_board)
    team = BoardController(gateway, team_board)
    notes = SearchStore(gateway, notes_table, page_size=RECENT_NOTES)
    await asyncio.gather(tasks.load(), team.load(), notes.refresh())

    done_stage = tasks_board.stage_ids[-1]
    task_counts = tasks.stage_counts()
    return DashboardSummary(
        active_tasks=sum(n for stage, n in task_counts.items() if stage != done_stage),
        active_members=team.stage_counts()[team_board.stage_ids[0]],
        note_count=notes.window.total,
        recent_notes=list(notes.window.items),
    )
