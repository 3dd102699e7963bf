"""Tests for the async HTTP client."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest
from multidict import CIMultiDict, CIMultiDictProxy

from cloudwire.exceptions import HttpError, HttpResponseError
from cloudwire.http.client import AsyncHttpClient
from cloudwire.http.command import CommandState, HttpCommand
from cloudwire.http.payload import FormPayload
from cloudwire.http.protocols import HttpRequest
from cloudwire.http.retry import BackoffLimitedRetryHandler, DelegatingRetryHandler

ENDPOINT = "https://sts.amazonaws.com/"


def fake_response(status, body=b"", headers=None, reason="OK"):
    """Build an object usable as ``async with session.request(...) as response``."""
    response = MagicMock()
    response.status = status
    response.reason = reason
    response.headers = CIMultiDictProxy(CIMultiDict(headers or {}))

    async def iter_chunked(size):
        if body:
            yield body

    response.content.iter_chunked = iter_chunked

    context = MagicMock()
    context.__aenter__ = AsyncMock(return_value=response)
    context.__aexit__ = AsyncMock(return_value=False)
    return context


def make_request(filters=()):
    return HttpRequest.create(
        "POST", ENDPOINT, {"Host": "sts.amazonaws.com"}, FormPayload([("Action", "GetCallerIdentity")]), filters
    )


class TestAsyncHttpClient:
    """Tests for AsyncHttpClient."""

    @pytest.fixture
    def client(self):
        handler = DelegatingRetryHandler(
            backoff_handler=BackoffLimitedRetryHandler(retry_count_limit=2, delay_start_ms=1),
        )
        client = AsyncHttpClient(retry_handler=handler, max_content_size=1024)
        client._session = MagicMock()
        return client

    @pytest.mark.asyncio
    async def test_not_initialized(self):
        """Test using the client outside 'async with' fails."""
        with pytest.raises(RuntimeError, match="not initialized"):
            await AsyncHttpClient().invoke(make_request())

    @pytest.mark.asyncio
    async def test_success(self, client):
        """Test a 200 response is returned with its body."""
        client._session.request.return_value = fake_response(200, b"<ok/>", {"Content-Type": "text/xml"})
        response = await client.invoke(make_request())

        assert response.status_code == 200
        assert response.content == b"<ok/>"
        assert response.first_header("Content-Type") == "text/xml"

        args, kwargs = client._session.request.call_args
        assert args == ("POST", ENDPOINT)
        assert kwargs["data"] == b"Action=GetCallerIdentity"
        assert kwargs["headers"]["Content-Type"] == "application/x-www-form-urlencoded"

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self, client):
        """Test a 503 is retried and filters run again."""
        calls = []

        class RecordingFilter:
            def filter(self, request):
                calls.append(request)
                return request.with_header("X-Attempt", str(len(calls)))

        client._session.request.side_effect = [fake_response(503), fake_response(200)]
        response = await client.invoke(make_request(filters=[RecordingFilter()]))

        assert response.status_code == 200
        assert len(calls) == 2
        assert all("X-Attempt" not in request.headers for request in calls)

    @pytest.mark.asyncio
    async def test_retry_exhausted(self, client):
        """Test persistent failures raise HttpResponseError."""
        client._session.request.side_effect = lambda *args, **kwargs: fake_response(500)
        with pytest.raises(HttpResponseError) as exc_info:
            await client.invoke(make_request())
        assert exc_info.value.status_code == 500
        assert exc_info.value.failure_count == 3

    @pytest.mark.asyncio
    async def test_transport_error_retried(self, client):
        """Test aiohttp errors go through the retry handler."""
        client._session.request.side_effect = [aiohttp.ClientConnectionError("reset"), fake_response(200)]
        response = await client.invoke(make_request())
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_transport_error_exhausted(self, client):
        """Test repeated transport errors end in HttpError."""
        client._session.request.side_effect = aiohttp.ClientConnectionError("reset")
        with pytest.raises(HttpError) as exc_info:
            await client.invoke(make_request())
        assert isinstance(exc_info.value.__cause__, aiohttp.ClientConnectionError)

    @pytest.mark.asyncio
    async def test_content_length_limit(self, client):
        """Test responses announcing too much content are rejected."""
        client._session.request.return_value = fake_response(200, b"x", {"Content-Length": "4096"})
        with pytest.raises(ValueError, match="Content too large"):
            await client.invoke(make_request())

    @pytest.mark.asyncio
    async def test_streamed_size_limit(self, client):
        """Test bodies growing past the limit are rejected."""
        client._session.request.return_value = fake_response(200, b"x" * 2048)
        with pytest.raises(ValueError, match="size limit exceeded"):
            await client.invoke(make_request())

    @pytest.mark.asyncio
    async def test_cancel_during_rate_limit_wait(self, client):
        """Test cancelling the task during a 429 wait aborts the command."""
        client._session.request.return_value = fake_response(429, headers={"Retry-After": "30"})
        command = HttpCommand(make_request())
        task = asyncio.ensure_future(client.execute(command))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert command.state is CommandState.ABORTED

    @pytest.mark.asyncio
    async def test_get(self, client):
        """Test get issues an unsigned GET."""
        client._session.request.return_value = fake_response(200, b"{}")
        response = await client.get("https://example.com/things", headers={"Accept": "application/json"})
        assert response.content == b"{}"
        args, kwargs = client._session.request.call_args
        assert args == ("GET", "https://example.com/things")
        assert kwargs["data"] is None

    @pytest.mark.asyncio
    async def test_context_manager_creates_and_closes_session(self):
        """Test entering the client opens a session and leaving closes it."""
        client = AsyncHttpClient()
        async with client:
            assert client._session is not None
            session = client._session
        assert client._session is None
        assert session.closed
