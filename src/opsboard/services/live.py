"""Shared plumbing for controllers that mirror a remote table.

Provides the change-feed attachment, the reconciliation strategy seam and
the record kept for background writes that failed.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Coroutine, Optional

from opsboard.errors import PersistenceError
from opsboard.models.change import ChangeSignal
from opsboard.services.gateway import CollectionGateway, Row, Subscription

logger = logging.getLogger(__name__)


@dataclass
class WriteFailure:
    """A background write that the remote store rejected.

    Local state is left as the user's last intent; the failure stays in the
    controller's ``failures`` list until retried successfully.
    """

    op: str  # "update" or "delete"
    entity_id: str
    patch: Row = field(default_factory=dict)
    error: Optional[PersistenceError] = None

    def __str__(self) -> str:
        return f"{self.op} {self.entity_id} failed: {self.error}"


ErrorCallback = Callable[[WriteFailure], None]


class ReconcileStrategy(ABC):
    """How a controller resynchronizes after a change signal."""

    @abstractmethod
    async def on_change(self, controller: "LiveCollection", signal: ChangeSignal) -> None:
        """React to ``signal`` on behalf of ``controller``."""


class FullReload(ReconcileStrategy):
    """Reload the whole collection on any change.

    Never discards confirmed server state and converges within one round
    trip; a write still in flight server-side may be briefly overwritten.
    """

    async def on_change(self, controller: "LiveCollection", signal: ChangeSignal) -> None:
        logger.debug("Reloading %s after change signal", signal.table)
        await controller.reload_quietly()


class LiveCollection(ABC):
    """Base class for controllers bound to one remote table.

    Args:
        gateway (CollectionGateway): Remote store access
        table (str): Table whose change feed drives reconciliation
        strategy (ReconcileStrategy, optional): Defaults to FullReload
        on_error (Callable, optional): Called with each WriteFailure

    Attributes:
        failures (list[WriteFailure]): Background writes awaiting retry
    """

    def __init__(
        self,
        gateway: CollectionGateway,
        table: str,
        strategy: Optional[ReconcileStrategy] = None,
        on_error: Optional[ErrorCallback] = None,
    ):
        self.gateway = gateway
        self.table = table
        self.strategy = strategy or FullReload()
        self.on_error = on_error
        self.failures: list[WriteFailure] = []

        self._closed = False
        self._subscription: Optional[Subscription] = None
        self._listener: Optional[asyncio.Task] = None
        self._background: set[asyncio.Task] = set()

    @property
    def closed(self) -> bool:
        return self._closed

    @abstractmethod
    async def reload_quietly(self) -> bool:
        """Resynchronize with the store without raising on transport errors."""

    # ==================== Background writes ====================

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        """Run ``coro`` in the background, keeping a reference until it ends."""
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _write(self, op: str, entity_id: str, patch: Optional[Row] = None) -> bool:
        """Issue one update or delete; record a WriteFailure instead of raising."""
        patch = patch or {}
        try:
            if op == "delete":
                await self.gateway.delete(self.table, entity_id)
            else:
                await self.gateway.update(self.table, entity_id, patch)
        except PersistenceError as e:
            failure = WriteFailure(op=op, entity_id=entity_id, patch=patch, error=e)
            logger.warning("%s: %s", self.table, failure)
            self.failures.append(failure)
            if self.on_error is not None and not self._closed:
                self.on_error(failure)
            return False
        return True

    async def retry(self, failure: WriteFailure) -> bool:
        """Reissue a failed write; it is dropped from ``failures`` first."""
        if failure in self.failures:
            self.failures.remove(failure)
        return await self._write(failure.op, failure.entity_id, failure.patch)

    # ==================== Change feed ====================

    def attach(self) -> Subscription:
        """Subscribe to the table and reconcile on every signal."""
        if self._closed:
            raise RuntimeError(f"Controller for {self.table} is closed")
        if self._subscription is None:
            self._subscription = self.gateway.subscribe(self.table)
            self._listener = asyncio.get_running_loop().create_task(
                self._listen(self._subscription)
            )
        return self._subscription

    async def _listen(self, subscription: Subscription) -> None:
        async for signal in subscription:
            await self.handle_change(signal)

    async def handle_change(self, signal: ChangeSignal) -> None:
        """Run the reconciliation strategy; no-op once closed."""
        if self._closed:
            return
        await self.strategy.on_change(self, signal)

    async def close(self) -> None:
        """Release the subscription and stop reacting to signals."""
        self._closed = True
        if self._subscription is not None:
            self._subscription.cancel()
        listener, self._listener = self._listener, None
        self._subscription = None
        if listener is not None and listener is not asyncio.current_task():
            listener.cancel()
            try:
                await listener
            except asyncio.CancelledError:
                pass
