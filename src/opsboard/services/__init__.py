"""Services for Opsboard."""

from opsboard.services.board import BoardController
from opsboard.services.dashboard import DashboardSummary, build_summary
from opsboard.services.gateway import (
    CollectionGateway,
    PollingSubscription,
    RestGateway,
    Subscription,
)
from opsboard.services.live import FullReload, LiveCollection, ReconcileStrategy, WriteFailure
from opsboard.services.search import Debouncer, DebounceState, SearchStore, collect_tags

__all__ = [
    "BoardController",
    "CollectionGateway",
    "DashboardSummary",
    "DebounceState",
    "Debouncer",
    "FullReload",
    "LiveCollection",
    "PollingSubscription",
    "ReconcileStrategy",
    "RestGateway",
    "SearchStore",
    "Subscription",
    "WriteFailure",
    "build_summary",
    "collect_tags",
]
