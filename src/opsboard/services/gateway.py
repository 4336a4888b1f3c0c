"""Remote collection gateway.

Thin contract to the remote store: point and range queries, single-row
writes, and a table-scoped change feed. ``RestGateway`` speaks the
PostgREST dialect used by Supabase-style backends over plain HTTP.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Optional

import requests  # type: ignore[import-untyped]
from tenacity import (
    RetryError,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from opsboard.errors import OpsboardError, PersistenceError, TransportError
from opsboard.models.change import ChangeSignal
from opsboard.models.window import SearchFilter

logger = logging.getLogger(__name__)

Row = dict[str, Any]


class Subscription:
    """Cancellable stream of change signals for one table.

    Signals are coalesced: pushing while a signal is still undelivered does
    not queue a second one. Iterate with ``async for``; iteration ends once
    ``cancel()`` is called.

    Args:
        table (str): Table the subscription watches

    Attributes:
        table (str): Table the subscription watches
    """

    def __init__(self, table: str):
        self.table = table
        self._pending = False
        self._cancelled = False
        self._wakeup = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def push(self) -> bool:
        """Signal that the table changed.

        Returns:
            bool: False if the subscription was already cancelled
        """
        if self._cancelled:
            return False
        self._pending = True
        self._wakeup.set()
        return True

    def cancel(self) -> None:
        """Stop delivery. Safe to call more than once."""
        if self._cancelled:
            return
        self._cancelled = True
        self._pending = False
        self._wakeup.set()
        self._on_cancel()

    def _on_cancel(self) -> None:
        pass

    def _on_first_wait(self) -> None:
        pass

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> ChangeSignal:
        self._on_first_wait()
        while True:
            if self._cancelled:
                raise StopAsyncIteration
            if self._pending:
                self._pending = False
                return ChangeSignal(self.table)
            self._wakeup.clear()
            await self._wakeup.wait()


class PollingSubscription(Subscription):
    """Subscription fed by periodically probing a table fingerprint.

    The first probe establishes a baseline; every later probe that differs
    from the previous one pushes a signal.

    Args:
        table (str): Table the subscription watches
        probe (Callable): Coroutine function returning a comparable fingerprint
        interval (float): Seconds between probes
    """

    def __init__(
        self,
        table: str,
        probe: Callable[[], Awaitable[Any]],
        interval: float,
    ):
        super().__init__(table)
        self.probe = probe
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    def _on_first_wait(self) -> None:
        if self._task is None and not self._cancelled:
            self._task = asyncio.get_running_loop().create_task(self._poll())

    def _on_cancel(self) -> None:
        if self._task is not None:
            self._task.cancel()

    async def _probe_once(self) -> Any:
        try:
            return await self.probe()
        except (OpsboardError, RetryError) as e:
            logger.warning("Change feed probe for %s failed: %s", self.table, e)
            return None

    async def _poll(self) -> None:
        last = await self._probe_once()
        while not self._cancelled:
            await asyncio.sleep(self.interval)
            current = await self._probe_once()
            if current is None:
                continue
            if last is not None and current != last:
                logger.debug("Change detected on %s", self.table)
                self.push()
            last = current


class CollectionGateway(ABC):
    """Contract between the controllers and the remote store."""

    @abstractmethod
    async def fetch_all(
        self,
        table: str,
        order_by: str,
        ascending: bool = False,
        columns: Optional[tuple[str, ...]] = None,
    ) -> list[Row]:
        """Every row of ``table``, ordered. Raises TransportError."""

    @abstractmethod
    async def fetch_one(self, table: str, row_id: str) -> Optional[Row]:
        """A single row by id, or None. Raises TransportError."""

    @abstractmethod
    async def fetch_page(
        self,
        table: str,
        row_filter: SearchFilter,
        order_by: str,
        offset: int,
        limit: int,
        ascending: bool = False,
    ) -> tuple[list[Row], int]:
        """A slice of the filtered, ordered rows plus the filtered total."""

    @abstractmethod
    async def insert(self, table: str, row: Row) -> Row:
        """Insert a row and return it with server-assigned fields."""

    @abstractmethod
    async def update(self, table: str, row_id: str, patch: Row) -> None:
        """Apply ``patch`` to one row. Raises PersistenceError."""

    @abstractmethod
    async def delete(self, table: str, row_id: str) -> None:
        """Delete one row. Raises PersistenceError."""

    @abstractmethod
    def subscribe(self, table: str) -> Subscription:
        """Open a change feed for ``table``."""


def _quote(value: str) -> str:
    """Double-quote a filter value so reserved characters survive."""
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _parse_content_range(header: Optional[str]) -> Optional[int]:
    """Total from a ``Content-Range: 0-29/57`` header."""
    if not header or "/" not in header:
        return None
    total = header.rsplit("/", 1)[1]
    if total == "*":
        return None
    try:
        return int(total)
    except ValueError:
        return None


class RestGateway(CollectionGateway):
    """Gateway over a PostgREST-compatible HTTP API.

    Blocking ``requests`` calls run in worker threads so the event loop is
    never blocked. No timeouts are applied: callers must not assume bounded
    latency.

    Args:
        base_url (str): REST root, e.g. ``https://x.supabase.co/rest/v1``
        api_key (str): Key sent as ``apikey`` and as bearer token
        poll_interval (float): Seconds between change-feed probes

    Attributes:
        base_url (str): REST root without trailing slash
        api_key (str): API key
        poll_interval (float): Seconds between change-feed probes
    """

    FINGERPRINT_COLUMN = "updated_at"

    def __init__(self, base_url: str, api_key: str, poll_interval: float = 2.0):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.poll_interval = poll_interval

    @classmethod
    def from_settings(cls, settings: Any) -> "RestGateway":
        return cls(
            base_url=settings.store_url,
            api_key=settings.store_key,
            poll_interval=settings.poll_interval_seconds,
        )

    def _get_headers(self, prefer: Optional[str] = None) -> dict[str, str]:
        """Get standard headers for store requests.

        Args:
            prefer (str, optional): Value for the ``Prefer`` header

        Returns:
            dict[str, str]: Headers with auth and content type
        """
        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    def _handle_response(
        self, response: requests.Response, error_cls: type[OpsboardError]
    ) -> Any:
        """Raise ``error_cls`` on failure, otherwise return the parsed body.

        Args:
            response (requests.Response): Response from requests library
            error_cls (type[OpsboardError]): TransportError for reads,
                PersistenceError for writes

        Returns:
            Any: Parsed JSON body, or None for an empty body
        """
        if response.status_code >= 400:
            try:
                error_data = response.json()
                message = error_data.get("message", "Unknown error")
                code = str(error_data.get("code", "") or "")
            except (ValueError, AttributeError):
                message = response.text or "Unknown error"
                code = ""
            raise error_cls(message=message, status_code=response.status_code, code=code)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise error_cls(f"Malformed response body: {e}", status_code=response.status_code) from e

    def _send(
        self,
        method: str,
        table: str,
        error_cls: type[OpsboardError],
        params: Optional[dict[str, Any]] = None,
        payload: Optional[Row] = None,
        prefer: Optional[str] = None,
    ) -> tuple[Any, requests.Response]:
        """Blocking request against ``/{table}``."""
        logger.debug("%s /%s params=%s", method, table, params)
        try:
            response = requests.request(
                method,
                f"{self.base_url}/{table}",
                headers=self._get_headers(prefer),
                params=params,
                json=payload,
            )
        except requests.exceptions.RequestException as e:
            raise error_cls(f"Request to {table} failed: {e}") from e
        return self._handle_response(response, error_cls), response

    async def _call(self, *args: Any, **kwargs: Any) -> tuple[Any, requests.Response]:
        return await asyncio.to_thread(self._send, *args, **kwargs)

    @staticmethod
    def _order(order_by: str, ascending: bool) -> str:
        return f"{order_by}.{'asc' if ascending else 'desc'}"

    @staticmethod
    def filter_params(row_filter: SearchFilter) -> dict[str, str]:
        """Translate a filter into PostgREST query parameters.

        Text becomes an ``or`` of ``ilike`` tests over the text columns;
        the tag becomes an array containment test.
        """
        params: dict[str, str] = {}
        if row_filter.text:
            pattern = _quote(f"*{row_filter.text}*")
            clauses = ",".join(f"{col}.ilike.{pattern}" for col in row_filter.text_columns)
            params["or"] = f"({clauses})"
        if row_filter.tag is not None:
            params[row_filter.tag_column] = f"cs.{{{_quote(row_filter.tag)}}}"
        return params

    async def fetch_all(
        self,
        table: str,
        order_by: str,
        ascending: bool = False,
        columns: Optional[tuple[str, ...]] = None,
    ) -> list[Row]:
        params = {
            "select": ",".join(columns) if columns else "*",
            "order": self._order(order_by, ascending),
        }
        body, _ = await self._call("GET", table, TransportError, params=params)
        return list(body or [])

    async def fetch_one(self, table: str, row_id: str) -> Optional[Row]:
        params = {"select": "*", "id": f"eq.{row_id}", "limit": 1}
        body, _ = await self._call("GET", table, TransportError, params=params)
        return body[0] if body else None

    async def fetch_page(
        self,
        table: str,
        row_filter: SearchFilter,
        order_by: str,
        offset: int,
        limit: int,
        ascending: bool = False,
    ) -> tuple[list[Row], int]:
        params: dict[str, Any] = {
            "select": "*",
            "order": self._order(order_by, ascending),
            "offset": offset,
            "limit": limit,
        }
        params.update(self.filter_params(row_filter))
        body, response = await self._call(
            "GET", table, TransportError, params=params, prefer="count=exact"
        )
        rows = list(body or [])
        total = _parse_content_range(response.headers.get("Content-Range"))
        if total is None:
            total = offset + len(rows)
        return rows, total

    async def insert(self, table: str, row: Row) -> Row:
        body, _ = await self._call(
            "POST", table, PersistenceError, payload=row, prefer="return=representation"
        )
        if isinstance(body, list):
            return body[0] if body else dict(row)
        return body or dict(row)

    async def update(self, table: str, row_id: str, patch: Row) -> None:
        body, _ = await self._call(
            "PATCH",
            table,
            PersistenceError,
            params={"id": f"eq.{row_id}"},
            payload=patch,
            prefer="return=representation",
        )
        if not body:
            raise PersistenceError(f"No row {row_id} in {table}", code="not_found")

    async def delete(self, table: str, row_id: str) -> None:
        await self._call("DELETE", table, PersistenceError, params={"id": f"eq.{row_id}"})

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=5),
        retry=retry_if_exception_type(TransportError),
    )
    async def fingerprint(self, table: str) -> tuple[int, Optional[str]]:
        """Cheap change detector: exact row count and newest modification time."""
        column = self.FINGERPRINT_COLUMN
        params = {"select": column, "order": f"{column}.desc.nullslast", "limit": 1}
        body, response = await self._call(
            "GET", table, TransportError, params=params, prefer="count=exact"
        )
        count = _parse_content_range(response.headers.get("Content-Range")) or 0
        newest = body[0].get(column) if body else None
        return count, newest

    def subscribe(self, table: str) -> Subscription:
        return PollingSubscription(
            table, probe=lambda: self.fingerprint(table), interval=self.poll_interval
        )
