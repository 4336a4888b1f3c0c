"""Unit tests for RestGateway and the change-feed subscriptions."""

import asyncio
import json
from unittest.mock import MagicMock, patch

import pytest
import requests

from opsboard.errors import PersistenceError, TransportError
from opsboard.models.window import SearchFilter
from opsboard.services.gateway import (
    PollingSubscription,
    RestGateway,
    Subscription,
    _parse_content_range,
)


def make_response(status_code=200, body=None, headers=None):
    response = MagicMock()
    response.status_code = status_code
    response.headers = headers or {}
    response.content = json.dumps(body).encode() if body is not None else b""
    response.json.return_value = body
    response.text = ""
    return response


@pytest.fixture
def mock_requests():
    """Create mocked requests module."""
    with patch("opsboard.services.gateway.requests") as mock_req:
        mock_req.exceptions = requests.exceptions
        mock_req.request.return_value = make_response(body=[])
        yield mock_req


@pytest.fixture
def gateway(mock_requests):  # noqa: ARG001
    """Create RestGateway with mocked requests."""
    return RestGateway(base_url="https://example.supabase.co/rest/v1/", api_key="test-key")


def last_call(mock_requests):
    args, kwargs = mock_requests.request.call_args
    return args, kwargs


class TestRestGatewayInit:
    """Tests for RestGateway initialization."""

    def test_init_strips_trailing_slash(self):
        """Test that the base URL is normalized."""
        gateway = RestGateway(base_url="https://x.co/rest/v1/", api_key="k")
        assert gateway.base_url == "https://x.co/rest/v1"
        assert gateway.poll_interval == 2.0

    def test_headers(self):
        """Test auth headers and Prefer."""
        gateway = RestGateway(base_url="https://x.co", api_key="secret")
        headers = gateway._get_headers(prefer="count=exact")
        assert headers["apikey"] == "secret"
        assert headers["Authorization"] == "Bearer secret"
        assert headers["Prefer"] == "count=exact"
        assert "Prefer" not in gateway._get_headers()


class TestReads:
    """Tests for read operations."""

    def test_fetch_all(self, gateway, mock_requests):
        """Test full ordered fetch."""
        mock_requests.request.return_value = make_response(body=[{"id": "1"}, {"id": "2"}])

        rows = asyncio.run(gateway.fetch_all("tasks", "created_at"))

        assert [r["id"] for r in rows] == ["1", "2"]
        args, kwargs = last_call(mock_requests)
        assert args == ("GET", "https://example.supabase.co/rest/v1/tasks")
        assert kwargs["params"] == {"select": "*", "order": "created_at.desc"}

    def test_fetch_all_with_columns_ascending(self, gateway, mock_requests):
        """Test column projection and ascending order."""
        asyncio.run(gateway.fetch_all("team_members", "sort_order", ascending=True, columns=("tags",)))

        _, kwargs = last_call(mock_requests)
        assert kwargs["params"] == {"select": "tags", "order": "sort_order.asc"}

    def test_fetch_one_missing(self, gateway, mock_requests):
        """Test that an empty result maps to None."""
        mock_requests.request.return_value = make_response(body=[])

        assert asyncio.run(gateway.fetch_one("tasks", "42")) is None
        _, kwargs = last_call(mock_requests)
        assert kwargs["params"]["id"] == "eq.42"

    def test_fetch_page_reads_total_from_content_range(self, gateway, mock_requests):
        """Test the exact count header becomes the total."""
        rows = [{"id": str(i)} for i in range(30)]
        mock_requests.request.return_value = make_response(
            body=rows, headers={"Content-Range": "0-29/57"}
        )

        page, total = asyncio.run(
            gateway.fetch_page("memories", SearchFilter(), "updated_at", offset=0, limit=30)
        )

        assert len(page) == 30
        assert total == 57
        _, kwargs = last_call(mock_requests)
        assert kwargs["headers"]["Prefer"] == "count=exact"
        assert kwargs["params"]["offset"] == 0
        assert kwargs["params"]["limit"] == 30

    def test_fetch_page_without_count(self, gateway, mock_requests):
        """Test the total falls back to what has been seen."""
        mock_requests.request.return_value = make_response(body=[{"id": "a"}])

        _, total = asyncio.run(
            gateway.fetch_page("memories", SearchFilter(), "updated_at", offset=30, limit=30)
        )

        assert total == 31

    def test_fetch_page_sends_filter(self, gateway, mock_requests):
        """Test text and tag filters are translated to query params."""
        asyncio.run(
            gateway.fetch_page(
                "memories", SearchFilter(query=" foo ", tag="work"), "updated_at", 0, 30
            )
        )

        _, kwargs = last_call(mock_requests)
        assert kwargs["params"]["or"] == '(title.ilike."*foo*",content.ilike."*foo*")'
        assert kwargs["params"]["tags"] == 'cs.{"work"}'

    def test_error_maps_to_transport_error(self, gateway, mock_requests):
        """Test HTTP failures on reads raise TransportError."""
        mock_requests.request.return_value = make_response(
            status_code=401, body={"message": "JWT expired", "code": "PGRST301"}
        )

        with pytest.raises(TransportError) as exc:
            asyncio.run(gateway.fetch_all("tasks", "created_at"))

        assert exc.value.status_code == 401
        assert exc.value.code == "PGRST301"
        assert exc.value.message == "JWT expired"

    def test_connection_error_maps_to_transport_error(self, gateway, mock_requests):
        """Test network failures on reads raise TransportError."""
        mock_requests.request.side_effect = requests.exceptions.ConnectionError("down")

        with pytest.raises(TransportError):
            asyncio.run(gateway.fetch_all("tasks", "created_at"))


class TestFilterParams:
    """Tests for filter translation."""

    def test_empty_filter(self):
        """Test an empty filter adds nothing."""
        assert RestGateway.filter_params(SearchFilter()) == {}

    def test_reserved_characters_are_quoted(self):
        """Test commas and quotes survive inside the or clause."""
        params = RestGateway.filter_params(SearchFilter(query='a,"b"'))
        assert params["or"] == '(title.ilike."*a,\\"b\\"*",content.ilike."*a,\\"b\\"*")'


class TestWrites:
    """Tests for write operations."""

    def test_insert_returns_representation(self, gateway, mock_requests):
        """Test the created row is returned with server fields."""
        mock_requests.request.return_value = make_response(
            status_code=201, body=[{"id": "new", "title": "T", "created_at": "2026-01-01"}]
        )

        created = asyncio.run(gateway.insert("tasks", {"title": "T"}))

        assert created["id"] == "new"
        args, kwargs = last_call(mock_requests)
        assert args[0] == "POST"
        assert kwargs["json"] == {"title": "T"}
        assert kwargs["headers"]["Prefer"] == "return=representation"

    def test_update(self, gateway, mock_requests):
        """Test PATCH by id."""
        mock_requests.request.return_value = make_response(body=[{"id": "7"}])

        asyncio.run(gateway.update("tasks", "7", {"status": "DONE"}))

        args, kwargs = last_call(mock_requests)
        assert args[0] == "PATCH"
        assert kwargs["params"] == {"id": "eq.7"}
        assert kwargs["json"] == {"status": "DONE"}

    def test_update_missing_row(self, gateway, mock_requests):
        """Test an update that matched nothing is a persistence error."""
        mock_requests.request.return_value = make_response(body=[])

        with pytest.raises(PersistenceError) as exc:
            asyncio.run(gateway.update("tasks", "7", {"status": "DONE"}))

        assert exc.value.code == "not_found"

    def test_write_error_maps_to_persistence_error(self, gateway, mock_requests):
        """Test HTTP failures on writes raise PersistenceError."""
        mock_requests.request.return_value = make_response(
            status_code=403, body={"message": "permission denied"}
        )

        with pytest.raises(PersistenceError) as exc:
            asyncio.run(gateway.delete("tasks", "7"))

        assert exc.value.status_code == 403

    def test_delete(self, gateway, mock_requests):
        """Test DELETE by id with an empty body."""
        mock_requests.request.return_value = make_response(status_code=204)

        asyncio.run(gateway.delete("tasks", "7"))

        args, kwargs = last_call(mock_requests)
        assert args[0] == "DELETE"
        assert kwargs["params"] == {"id": "eq.7"}


class TestFingerprint:
    """Tests for the change-feed probe."""

    def test_fingerprint(self, gateway, mock_requests):
        """Test count and newest timestamp."""
        mock_requests.request.return_value = make_response(
            body=[{"updated_at": "2026-01-01T00:00:00Z"}], headers={"Content-Range": "0-0/12"}
        )

        assert asyncio.run(gateway.fingerprint("tasks")) == (12, "2026-01-01T00:00:00Z")

    def test_fingerprint_retries_transport_errors(self, gateway, mock_requests):
        """Test a transient failure is retried."""
        mock_requests.request.side_effect = [
            requests.exceptions.ConnectionError("blip"),
            make_response(body=[], headers={"Content-Range": "*/0"}),
        ]

        assert asyncio.run(gateway.fingerprint("tasks")) == (0, None)
        assert mock_requests.request.call_count == 2


class TestParseContentRange:
    """Tests for Content-Range parsing."""

    @pytest.mark.parametrize(
        "header,expected",
        [("0-29/57", 57), ("*/0", 0), ("0-29/*", None), (None, None), ("garbage", None)],
    )
    def test_parse(self, header, expected):
        """Test header variants."""
        assert _parse_content_range(header) == expected


class TestSubscription:
    """Tests for the coalescing change stream."""

    def test_signals_coalesce(self):
        """Test several pushes before delivery yield one signal."""

        async def scenario():
            sub = Subscription("tasks")
            sub.push()
            sub.push()
            sub.push()
            first = await sub.__anext__()
            waiter = asyncio.create_task(sub.__anext__())
            await asyncio.sleep(0)
            assert not waiter.done()
            sub.cancel()
            with pytest.raises(StopAsyncIteration):
                await waiter
            return first

        signal = asyncio.run(scenario())
        assert signal.table == "tasks"

    def test_push_after_cancel(self):
        """Test a cancelled subscription rejects pushes and ends iteration."""

        async def scenario():
            sub = Subscription("tasks")
            sub.cancel()
            sub.cancel()
            assert sub.push() is False
            return [signal async for signal in sub]

        assert asyncio.run(scenario()) == []


class TestPollingSubscription:
    """Tests for the polling change feed."""

    def test_pushes_when_fingerprint_changes(self):
        """Test a changed probe result produces a signal."""
        results = iter([(1, "a"), (1, "a"), (2, "b")])

        async def probe():
            return next(results, (2, "b"))

        async def scenario():
            sub = PollingSubscription("tasks", probe=probe, interval=0.001)
            signal = await asyncio.wait_for(sub.__anext__(), timeout=1)
            sub.cancel()
            return signal

        assert asyncio.run(scenario()).table == "tasks"

    def test_probe_failure_does_not_signal(self):
        """Test a failing probe is logged and skipped."""
        calls = []

        async def probe():
            calls.append(1)
            if len(calls) == 2:
                raise TransportError("offline")
            return (1, "a")

        async def scenario():
            sub = PollingSubscription("tasks", probe=probe, interval=0.001)
            waiter = asyncio.create_task(sub.__anext__())
            while len(calls) < 4:
                await asyncio.sleep(0.001)
            assert not waiter.done()
            sub.cancel()
            with pytest.raises(StopAsyncIteration):
                await waiter

        asyncio.run(scenario())

    def test_rest_gateway_subscribe(self):
        """Test the REST gateway hands out polling subscriptions."""
        gateway = RestGateway(base_url="https://x.co", api_key="k", poll_interval=5)
        sub = gateway.subscribe("tasks")
        assert isinstance(sub, PollingSubscription)
        assert sub.interval == 5
