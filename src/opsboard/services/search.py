"""Paginated search store for notes.

Keeps a window onto the filtered, ordered notes table: the first page is
fetched when the filter changes, further pages are appended on demand, and
the tag universe is maintained separately over the unfiltered table.
"""

import asyncio
import logging
from dataclasses import replace
from datetime import date
from enum import Enum
from typing import Any, Callable, Iterable, Mapping, Optional, Union

from opsboard.errors import PersistenceError, TransportError, ValidationError
from opsboard.models.note import Note, parse_tags
from opsboard.models.window import SearchFilter, SearchWindow
from opsboard.services.gateway import CollectionGateway, Row
from opsboard.services.live import ErrorCallback, LiveCollection, ReconcileStrategy

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 30
DEFAULT_DEBOUNCE_SECONDS = 0.3


def collect_tags(rows: Iterable[Mapping[str, Any]], column: str = "tags") -> list[str]:
    """Deduplicated, lexicographically sorted union of every row's tags."""
    tags: set[str] = set()
    for row in rows:
        tags |= parse_tags(row.get(column))
    return sorted(tags)


class DebounceState(str, Enum):
    """States of the typed-query debouncer."""

    IDLE = "idle"
    PENDING = "pending"  # a query is waiting for its deadline
    FETCHING = "fetching"  # the deadline elapsed and a fetch was started


class Debouncer:
    """Timer-armed state machine for continuous input.

    ``arm`` moves to PENDING and (re)sets the deadline; when the deadline
    elapses with no newer ``arm`` the callback fires with the last query and
    the state becomes FETCHING until ``settle`` is called.

    Args:
        interval (float): Quiet period in seconds
        fire (Callable[[str], None]): Called with the settled query
    """

    def __init__(self, interval: float, fire: Callable[[str], None]):
        self.interval = interval
        self.state = DebounceState.IDLE
        self.pending_query: Optional[str] = None
        self.deadline: Optional[float] = None
        self._fire = fire
        self._handle: Optional[asyncio.TimerHandle] = None

    def arm(self, query: str) -> None:
        loop = asyncio.get_running_loop()
        if self._handle is not None:
            self._handle.cancel()
        self.pending_query = query
        self.deadline = loop.time() + self.interval
        self.state = DebounceState.PENDING
        self._handle = loop.call_at(self.deadline, self._elapse)

    def _elapse(self) -> None:
        query = self.pending_query or ""
        self._handle = None
        self.pending_query = None
        self.deadline = None
        self.state = DebounceState.FETCHING
        self._fire(query)

    def settle(self) -> None:
        """Return to IDLE once the fetch started by the last deadline ends."""
        if self.state == DebounceState.FETCHING:
            self.state = DebounceState.IDLE

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
        self._handle = None
        self.pending_query = None
        self.deadline = None
        self.state = DebounceState.IDLE


class SearchStore(LiveCollection):
    """Windowed, filterable view of the notes table.

    Args:
        gateway (CollectionGateway): Remote store access
        table (str): Notes table name
        page_size (int): Rows per page (W)
        debounce_seconds (float): Quiet period for typed queries
        order_by (str): Column for the default ordering
        ascending (bool): Sort direction of ``order_by``
        strategy (ReconcileStrategy, optional): Reconciliation policy
        on_error (Callable, optional): Called with each WriteFailure

    Attributes:
        window (SearchWindow): Fetched prefix for the filter active at fetch time
        all_tags (list[str]): Sorted tag universe of the unfiltered table
        last_error (TransportError): Most recent failed read, if any
    """

    def __init__(
        self,
        gateway: CollectionGateway,
        table: str = "memories",
        page_size: int = DEFAULT_PAGE_SIZE,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        order_by: str = "updated_at",
        ascending: bool = False,
        strategy: Optional[ReconcileStrategy] = None,
        on_error: Optional[ErrorCallback] = None,
    ):
        if page_size < 1:
            raise ValueError("page_size must be positive")
        super().__init__(gateway, table, strategy=strategy, on_error=on_error)
        self.page_size = page_size
        self.order_by = order_by
        self.ascending = ascending

        self.window = SearchWindow()
        self.all_tags: list[str] = []
        self.last_error: Optional[TransportError] = None

        self._filter = self.window.filter
        self._generation = 0
        self._window_generation = 0
        self._tags_seq = 0
        self._tags_applied = 0
        self._more_lock = asyncio.Lock()
        # Notes removed from the window whose remote delete has not finished
        self._pending_deletes: dict[str, Note] = {}
        self.debouncer = Debouncer(debounce_seconds, self._on_query_settled)

    @property
    def filter(self) -> SearchFilter:
        """Filter selected by the user (the window may still show an older one)."""
        return self._filter

    @property
    def has_more(self) -> bool:
        return self.window.has_more

    # ==================== Filter input ====================

    def set_query(self, text: str) -> None:
        """Record typed text; it is fetched once input has been quiet long enough."""
        if self._closed:
            return
        # Results still in flight belong to a superseded query
        self._generation += 1
        self.debouncer.arm(text)

    def _on_query_settled(self, query: str) -> None:
        if self._closed:
            self.debouncer.settle()
            return
        self._filter = replace(self._filter, query=query)
        self._spawn(self._refresh_after_debounce())

    async def _refresh_after_debounce(self) -> None:
        try:
            await self._fetch_first_page()
        except TransportError:
            pass
        finally:
            self.debouncer.settle()

    async def set_active_tag(self, tag: Optional[str]) -> bool:
        """Toggle the single-tag filter and refetch immediately.

        Selecting the active tag again clears it.

        Raises:
            TransportError: If the fetch fails (the window is kept)
        """
        if self._closed:
            return False
        new_tag = None if tag is None or tag == self._filter.tag else tag
        self._filter = replace(self._filter, tag=new_tag)
        return await self._fetch_first_page()

    async def apply_filter(self, query: str = "", tag: Optional[str] = None) -> bool:
        """Replace the whole filter at once and fetch without waiting.

        Used for submitted searches, where there is no typing to debounce.
        """
        if self._closed:
            return False
        self.debouncer.cancel()
        self._filter = replace(self._filter, query=query, tag=tag)
        return await self._fetch_first_page()

    # ==================== Fetching ====================

    async def load(self) -> bool:
        """Fetch the first page and the tag universe."""
        applied = await self.refresh()
        await self.refresh_tags()
        return applied

    async def refresh(self) -> bool:
        """Refetch page 0 for the current filter.

        Raises:
            TransportError: If the fetch fails (the window is kept)
        """
        if self._closed:
            return False
        return await self._fetch_first_page()

    async def reload_quietly(self) -> bool:
        try:
            applied = await self.refresh()
        except TransportError:
            applied = False
        await self._refresh_tags_quietly()
        return applied

    async def _fetch_first_page(self) -> bool:
        self._generation += 1
        generation = self._generation
        row_filter = self._filter
        try:
            rows, total = await self.gateway.fetch_page(
                self.table,
                row_filter,
                self.order_by,
                offset=0,
                limit=self.page_size,
                ascending=self.ascending,
            )
        except TransportError as e:
            if generation == self._generation:
                self.last_error = e
            logger.warning("Searching %s for %r failed: %s", self.table, row_filter, e)
            raise
        if self._closed or generation != self._generation:
            logger.debug("Discarding superseded page for %r", row_filter)
            return False
        items = self._unique_notes(rows, seen=set(self._pending_deletes))
        total -= self._unconfirmed_deletes(row_filter)
        self.window = SearchWindow(filter=row_filter, items=items, total=max(total, len(items)))
        self._window_generation = generation
        self.last_error = None
        return True

    async def load_more(self) -> int:
        """Append the next page of the current window.

        Calls are serialized, and each one takes its offset from the window
        as it stands when its turn comes, so concurrent calls never fetch
        the same page twice.

        Returns:
            int: Number of notes appended (0 when there is nothing more)

        Raises:
            TransportError: If the fetch fails (the window is kept)
        """
        async with self._more_lock:
            if self._closed or self._window_generation != self._generation:
                return 0
            window = self.window
            offset = window.fetched
            if offset >= window.total:
                return 0
            generation = self._generation
            try:
                rows, total = await self.gateway.fetch_page(
                    self.table,
                    window.filter,
                    self.order_by,
                    offset=offset,
                    limit=self.page_size,
                    ascending=self.ascending,
                )
            except TransportError as e:
                self.last_error = e
                logger.warning("Loading more from %s failed: %s", self.table, e)
                raise
            if self._closed or generation != self._generation or self.window is not window:
                logger.debug("Discarding page at offset %d for %r", offset, window.filter)
                return 0
            fresh = self._unique_notes(rows, seen=window.ids() | set(self._pending_deletes))
            window.items.extend(fresh)
            total -= self._unconfirmed_deletes(window.filter)
            window.total = max(total, window.fetched)
            return len(fresh)

    def _unconfirmed_deletes(self, row_filter: SearchFilter) -> int:
        """Notes matching ``row_filter`` that the server may still count."""
        pending = self._pending_deletes.values()
        return sum(1 for note in pending if row_filter.matches(note.to_row()))

    @staticmethod
    def _unique_notes(rows: list[Row], seen: set[str]) -> list[Note]:
        notes = []
        for row in rows:
            if "id" not in row:
                continue
            note = Note.from_row(row)
            if note.id in seen:
                continue
            seen.add(note.id)
            notes.append(note)
        return notes

    # ==================== Tags ====================

    async def refresh_tags(self) -> list[str]:
        """Rescan every row's tags (ignoring the active filter).

        Raises:
            TransportError: If the scan fails (previous tags are kept)
        """
        if self._closed:
            return self.all_tags
        self._tags_seq += 1
        seq = self._tags_seq
        tag_column = self._filter.tag_column
        rows = await self.gateway.fetch_all(
            self.table, self.order_by, ascending=self.ascending, columns=(tag_column,)
        )
        if seq > self._tags_applied:
            self._tags_applied = seq
            self.all_tags = collect_tags(rows, tag_column)
        return self.all_tags

    async def _refresh_tags_quietly(self) -> None:
        try:
            await self.refresh_tags()
        except TransportError as e:
            logger.warning("Refreshing tags of %s failed: %s", self.table, e)

    # ==================== Mutations ====================

    async def add_entry(
        self,
        title: str,
        content: str,
        tags: Union[str, Iterable[str], None] = None,
        source: str = "manual",
        memory_date: Optional[str] = None,
    ) -> Note:
        """Insert a note, then refresh the window and the tag universe.

        Raises:
            ValidationError: If title or content is empty
            PersistenceError: If the insert is rejected
        """
        if not title or not title.strip():
            raise ValidationError("title is required")
        if not content or not content.strip():
            raise ValidationError("content is required")
        row = {
            "title": title.strip(),
            "content": content.strip(),
            "tags": sorted(parse_tags(tags)),
            "source": source or "manual",
            "memory_date": memory_date or date.today().isoformat(),
        }
        try:
            created = await self.gateway.insert(self.table, row)
        except PersistenceError as e:
            logger.warning("Adding note to %s failed: %s", self.table, e)
            raise
        await self.reload_quietly()
        return Note.from_row({"id": "", **row, **(created or {})})

    def delete_entry(self, entry_id: str) -> Optional["asyncio.Task[bool]"]:
        """Remove a note from the window immediately, then delete it remotely.

        A note outside the window is deleted remotely without touching the
        window or its total.
        """
        if self._closed:
            return None
        window = self.window
        for note in window.items:
            if note.id == entry_id:
                window.items.remove(note)
                window.total = max(window.total - 1, window.fetched)
                self._pending_deletes[entry_id] = note
                break
        return self._spawn(self._delete_then_refresh_tags(entry_id))

    async def _delete_then_refresh_tags(self, entry_id: str) -> bool:
        try:
            deleted = await self._write("delete", entry_id)
        finally:
            self._pending_deletes.pop(entry_id, None)
        if deleted and not self._closed:
            await self._refresh_tags_quietly()
        return deleted

    async def close(self) -> None:
        self.debouncer.cancel()
        await super().close()

