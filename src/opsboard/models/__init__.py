"""Data models for Opsboard."""

from opsboard.models.board import (
    BOARDS,
    CONTENT_BOARD,
    TASKS_BOARD,
    TEAM_BOARD,
    BoardDefinition,
    StageDef,
)
from opsboard.models.change import ChangeSignal
from opsboard.models.entity import StagedEntity, now_iso, parse_timestamp
from opsboard.models.note import Note, parse_tags
from opsboard.models.window import SearchFilter, SearchWindow

__all__ = [
    "BOARDS",
    "CONTENT_BOARD",
    "TASKS_BOARD",
    "TEAM_BOARD",
    "BoardDefinition",
    "ChangeSignal",
    "Note",
    "SearchFilter",
    "SearchWindow",
    "StageDef",
    "StagedEntity",
    "now_iso",
    "parse_tags",
    "parse_timestamp",
]
