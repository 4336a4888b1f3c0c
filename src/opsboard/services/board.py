"""Optimistic board controller.

Holds the local copy of a board's entities, applies stage moves, edits and
deletions to it immediately, and persists them in the background. Change
signals from the remote store trigger a reconciliation, by default a full
reload.
"""

import asyncio
import logging
from typing import Optional

from opsboard.errors import InvalidStage, PersistenceError, TransportError, ValidationError
from opsboard.models.board import BoardDefinition, StageDef
from opsboard.models.entity import StagedEntity, now_iso, parse_timestamp
from opsboard.services.gateway import CollectionGateway, Row
from opsboard.services.live import ErrorCallback, LiveCollection, ReconcileStrategy

logger = logging.getLogger(__name__)


class BoardController(LiveCollection):
    """Client-side state of one kanban board.

    Args:
        gateway (CollectionGateway): Remote store access
        board (BoardDefinition): Declared stages and table
        strategy (ReconcileStrategy, optional): Reconciliation policy
        on_error (Callable, optional): Called with each WriteFailure

    Attributes:
        entities (list[StagedEntity]): Flat, ordered local collection
        last_error (TransportError): Most recent failed load, if any
    """

    def __init__(
        self,
        gateway: CollectionGateway,
        board: BoardDefinition,
        strategy: Optional[ReconcileStrategy] = None,
        on_error: Optional[ErrorCallback] = None,
    ):
        super().__init__(gateway, board.table, strategy=strategy, on_error=on_error)
        self.board = board
        self.entities: list[StagedEntity] = []
        self.last_error: Optional[TransportError] = None
        self.loaded = False

        self._issued_seq = 0
        self._applied_seq = 0

    @property
    def stage_defs(self) -> tuple[StageDef, ...]:
        return self.board.stages

    def get(self, entity_id: str) -> Optional[StagedEntity]:
        for entity in self.entities:
            if entity.id == entity_id:
                return entity
        return None

    # ==================== Loading ====================

    async def load(self) -> bool:
        """Replace local state with a fresh full fetch.

        Loads may overlap. A response is applied only if no load issued
        after it has been applied already, so the last issued load wins
        regardless of arrival order.

        Returns:
            bool: True if this load's result was applied

        Raises:
            TransportError: If the fetch fails (local state is kept)
        """
        if self._closed:
            return False
        self._issued_seq += 1
        seq = self._issued_seq
        try:
            rows = await self.gateway.fetch_all(
                self.board.table, self.board.order_by, ascending=self.board.ascending
            )
        except TransportError as e:
            self.last_error = e
            logger.warning("Loading board %s failed: %s", self.board.name, e)
            raise
        if self._closed:
            return False
        if seq <= self._applied_seq:
            logger.debug(
                "Discarding stale load #%d of %s (applied #%d)",
                seq,
                self.board.name,
                self._applied_seq,
            )
            return False
        self._applied_seq = seq
        self.entities = self._rows_to_entities(rows)
        self.last_error = None
        self.loaded = True
        return True

    async def reload_quietly(self) -> bool:
        try:
            return await self.load()
        except TransportError:
            return False

    def _rows_to_entities(self, rows: list[Row]) -> list[StagedEntity]:
        entities = []
        for row in rows:
            if "id" not in row:
                logger.warning("Skipping %s row without id", self.board.table)
                continue
            entity = StagedEntity.from_row(row, self.board.stage_field)
            if not self.board.has_stage(entity.stage):
                logger.warning(
                    "Skipping %s row %s with undeclared stage %r",
                    self.board.table,
                    entity.id,
                    entity.stage,
                )
                continue
            entities.append(entity)
        return entities

    # ==================== Optimistic writes ====================

    def move_stage(self, entity_id: str, target_stage: str) -> Optional["asyncio.Task[bool]"]:
        """Move an entity to ``target_stage``.

        The local entity changes before this returns; persistence runs as a
        background task resolving to True on success. A failed write is not
        rolled back.

        Returns:
            The persistence task, or None if the entity is unknown

        Raises:
            InvalidStage: If ``target_stage`` is not declared by the board
        """
        if not self.board.has_stage(target_stage):
            raise InvalidStage(target_stage, self.board.stage_ids)
        if self._closed:
            return None
        entity = self.get(entity_id)
        if entity is None:
            logger.debug("move_stage: %s not on board %s", entity_id, self.board.name)
            return None
        stamp = now_iso()
        entity.stage = target_stage
        entity.updated_at = parse_timestamp(stamp)
        patch = {self.board.stage_field: target_stage, "updated_at": stamp}
        return self._spawn(self._write("update", entity_id, patch))

    def move_relative(self, entity_id: str, direction: int) -> Optional["asyncio.Task[bool]"]:
        """Move one stage back (-1) or forward (+1); no-op at the boundary."""
        if direction not in (-1, 1):
            raise ValueError(f"direction must be -1 or 1, got {direction}")
        entity = self.get(entity_id)
        if entity is None:
            return None
        target = self.board.neighbour(entity.stage, direction)
        if target is None:
            return None
        return self.move_stage(entity_id, target)

    def update_entity(self, entity_id: str, patch: Row) -> Optional["asyncio.Task[bool]"]:
        """Optimistically edit payload fields, and the stage if present."""
        stage_field = self.board.stage_field
        if stage_field in patch and not self.board.has_stage(patch[stage_field]):
            raise InvalidStage(patch[stage_field], self.board.stage_ids)
        if "id" in patch:
            raise ValidationError("The id of an entity cannot be edited")
        if self._closed:
            return None
        entity = self.get(entity_id)
        if entity is None:
            return None
        stamp = now_iso()
        for key, value in patch.items():
            if key == stage_field:
                entity.stage = value
            else:
                entity.payload[key] = value
        entity.updated_at = parse_timestamp(stamp)
        return self._spawn(self._write("update", entity_id, {**patch, "updated_at": stamp}))

    def delete_entity(self, entity_id: str) -> Optional["asyncio.Task[bool]"]:
        """Remove an entity locally, then delete it remotely."""
        if self._closed:
            return None
        remaining = [e for e in self.entities if e.id != entity_id]
        if len(remaining) == len(self.entities):
            return None
        self.entities = remaining
        return self._spawn(self._write("delete", entity_id))

    async def add_entity(self, payload: Row) -> Row:
        """Insert a new entity in the board's initial stage, then reload.

        Returns:
            Row: The inserted row as returned by the store

        Raises:
            ValidationError: If the title field is empty
            PersistenceError: If the insert is rejected
        """
        title = payload.get(self.board.title_field)
        if not isinstance(title, str) or not title.strip():
            raise ValidationError(f"{self.board.title_field} is required")
        if self._closed:
            return {}
        row = {k: v for k, v in payload.items() if k not in ("id", "created_at", "updated_at")}
        row[self.board.title_field] = title.strip()
        row[self.board.stage_field] = self.board.first_stage
        if self.board.sequence_field and self.board.sequence_field not in row:
            row[self.board.sequence_field] = len(self.entities)
        try:
            created = await self.gateway.insert(self.board.table, row)
        except PersistenceError as e:
            logger.warning("Adding to %s failed: %s", self.board.name, e)
            raise
        await self.reload_quietly()
        return created

    # ==================== Derived views ====================

    def partition_by_stage(self) -> dict[str, list[StagedEntity]]:
        """Entities grouped by stage, in declared stage order.

        Recomputed from ``entities`` on every call; relative order within a
        stage follows the flat collection.
        """
        partition: dict[str, list[StagedEntity]] = {stage: [] for stage in self.board.stage_ids}
        for entity in self.entities:
            partition[entity.stage].append(entity)
        return partition

    def stage_counts(self) -> dict[str, int]:
        return {stage: len(items) for stage, items in self.partition_by_stage().items()}

    def __repr__(self) -> str:
        return f"BoardController({self.board.name!r}, entities={len(self.entities)})"
