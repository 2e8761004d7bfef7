"""Tests for signed request delivery."""

import asyncio
import threading
import time
from unittest.mock import patch

import httpx
import pytest

from iam_signed import (
    Context,
    SigV4Auth,
    TransportError,
    UnexpectedStatusError,
    build_request,
    deliver,
    deliver_async,
)
from iam_signed.config import config
from iam_signed.transport import body_snippet


@pytest.fixture
def signed_request(endpoint_mock, credentials):
    request = build_request("POST", endpoint_mock.api_gateway_url, b'{"name": "item"}')
    return SigV4Auth(region="us-west-2", service="execute-api", credentials=credentials).sign(request)


class TestBodySnippet:
    """Tests for body_snippet."""

    def test_truncates(self):
        assert body_snippet(b"abcdef", limit=3) == "abc"

    def test_invalid_utf8_is_replaced(self):
        assert body_snippet(b"\xff\xfeok") == "\ufffd\ufffdok"

    def test_uses_configured_limit(self):
        with patch.object(config, "body_snippet_length", 4):
            assert body_snippet(b"0123456789") == "0123"


class TestDeliver:
    """Tests for synchronous delivery."""

    def test_success_returns_body(self, endpoint_mock, signed_request):
        endpoint_mock.respond_with(200, b'{"id": "1"}')

        body = deliver(signed_request, transport=endpoint_mock.transport)

        assert body == b'{"id": "1"}'

    def test_sends_signed_headers_and_body(self, endpoint_mock, signed_request):
        endpoint_mock.respond_with(200, b"")

        deliver(signed_request, transport=endpoint_mock.transport)

        sent = endpoint_mock.last_request
        assert sent.method == "POST"
        assert str(sent.url) == endpoint_mock.api_gateway_url
        assert sent.content == b'{"name": "item"}'
        assert sent.headers["content-type"] == "application/json"
        assert sent.headers["authorization"] == signed_request.headers["Authorization"]
        assert sent.headers["x-amz-date"] == signed_request.headers["X-Amz-Date"]
        assert sent.headers["host"] == "abc123.execute-api.us-west-2.amazonaws.com"

    @pytest.mark.parametrize("status_code", [201, 202, 204, 301, 302, 400, 403, 404, 500, 503])
    def test_non_200_status_fails(self, endpoint_mock, signed_request, status_code):
        endpoint_mock.respond_with(status_code, b'{"message": "nope"}')

        with pytest.raises(UnexpectedStatusError) as exc_info:
            deliver(signed_request, transport=endpoint_mock.transport)

        assert exc_info.value.status_code == status_code
        assert str(exc_info.value) == f"received status code {status_code}"

    def test_status_error_keeps_body_snippet(self, endpoint_mock, signed_request):
        endpoint_mock.respond_with(403, b'{"message": "Missing Authentication Token"}')

        with pytest.raises(UnexpectedStatusError) as exc_info:
            deliver(signed_request, transport=endpoint_mock.transport)

        assert "Missing Authentication Token" in exc_info.value.body_snippet

    def test_connection_error_is_transport_error(self, endpoint_mock, signed_request):
        error = httpx.ConnectError("Name or service not known")
        endpoint_mock.raise_error(error)

        with pytest.raises(TransportError, match="could not send request") as exc_info:
            deliver(signed_request, transport=endpoint_mock.transport)

        assert exc_info.value.cancelled is False
        assert exc_info.value.__cause__ is error

    def test_timeout_is_transport_error(self, endpoint_mock, signed_request):
        endpoint_mock.raise_error(httpx.ReadTimeout("timed out"))

        with pytest.raises(TransportError) as exc_info:
            deliver(signed_request, transport=endpoint_mock.transport)

        assert exc_info.value.cancelled is False

    def test_cancelled_context_never_sends(self, endpoint_mock, signed_request):
        ctx = Context.background()
        ctx.cancel()

        with pytest.raises(TransportError, match="context canceled") as exc_info:
            deliver(signed_request, ctx, transport=endpoint_mock.transport)

        assert exc_info.value.cancelled is True
        assert endpoint_mock.requests == []

    def test_expired_context_never_sends(self, endpoint_mock, signed_request):
        ctx = Context.with_timeout(0)

        with pytest.raises(TransportError, match="deadline exceeded") as exc_info:
            deliver(signed_request, ctx, transport=endpoint_mock.transport)

        assert exc_info.value.cancelled is True
        assert endpoint_mock.requests == []

    def test_cancel_aborts_in_flight_request(self, endpoint_mock, signed_request):
        endpoint_mock.stall(30)
        ctx = Context.background()
        timer = threading.Timer(0.05, ctx.cancel)

        start = time.monotonic()
        timer.start()
        try:
            with pytest.raises(TransportError, match="context canceled") as exc_info:
                deliver(signed_request, ctx, transport=endpoint_mock.transport)
        finally:
            timer.cancel()
            endpoint_mock.release()

        assert exc_info.value.cancelled is True
        assert time.monotonic() - start < 5

    def test_deadline_aborts_in_flight_request(self, endpoint_mock, signed_request):
        endpoint_mock.stall(30)

        try:
            with pytest.raises(TransportError, match="deadline exceeded") as exc_info:
                deliver(signed_request, Context.with_timeout(0.05), transport=endpoint_mock.transport)
        finally:
            endpoint_mock.release()

        assert exc_info.value.cancelled is True

    def test_completed_request_ignores_later_cancel(self, endpoint_mock, signed_request):
        endpoint_mock.respond_with(200, b"done")
        ctx = Context.background()

        body = deliver(signed_request, ctx, transport=endpoint_mock.transport)
        ctx.cancel()

        assert body == b"done"

    def test_deadline_caps_http_timeout(self, endpoint_mock, signed_request):
        endpoint_mock.respond_with(200, b"")
        timeouts = []
        real_client = httpx.Client

        def recording_client(*args, **kwargs):
            timeouts.append(kwargs["timeout"])
            return real_client(*args, **kwargs)

        with patch("iam_signed.transport.httpx.Client", side_effect=recording_client):
            deliver(signed_request, Context.with_timeout(2), transport=endpoint_mock.transport)

        assert timeouts[0].read <= 2


class TestDeliverAsync:
    """Tests for asyncio delivery."""

    @pytest.mark.asyncio
    async def test_success_returns_body(self, endpoint_mock, signed_request):
        endpoint_mock.respond_with(200, b"ok")

        body = await deliver_async(signed_request, transport=endpoint_mock.async_transport)

        assert body == b"ok"
        assert endpoint_mock.last_request.headers["authorization"].startswith("AWS4-HMAC-SHA256")

    @pytest.mark.asyncio
    async def test_non_200_status_fails(self, endpoint_mock, signed_request):
        endpoint_mock.respond_with(204)

        with pytest.raises(UnexpectedStatusError) as exc_info:
            await deliver_async(signed_request, transport=endpoint_mock.async_transport)

        assert exc_info.value.status_code == 204

    @pytest.mark.asyncio
    async def test_connection_error_is_transport_error(self, endpoint_mock, signed_request):
        endpoint_mock.raise_error(httpx.ConnectError("connection refused"))

        with pytest.raises(TransportError) as exc_info:
            await deliver_async(signed_request, transport=endpoint_mock.async_transport)

        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)

    @pytest.mark.asyncio
    async def test_cancel_aborts_in_flight_request(self, endpoint_mock, signed_request):
        endpoint_mock.stall(30)
        ctx = Context.background()
        loop = asyncio.get_running_loop()
        loop.call_later(0.05, ctx.cancel)

        start = loop.time()
        with pytest.raises(TransportError, match="context canceled") as exc_info:
            await deliver_async(signed_request, ctx, transport=endpoint_mock.async_transport)

        assert exc_info.value.cancelled is True
        assert loop.time() - start < 5

    @pytest.mark.asyncio
    async def test_cancel_from_another_thread(self, endpoint_mock, signed_request):
        endpoint_mock.stall(30)
        ctx = Context.background()
        loop = asyncio.get_running_loop()
        loop.call_later(0.05, lambda: loop.run_in_executor(None, ctx.cancel))

        with pytest.raises(TransportError) as exc_info:
            await deliver_async(signed_request, ctx, transport=endpoint_mock.async_transport)

        assert exc_info.value.cancelled is True

    @pytest.mark.asyncio
    async def test_deadline_aborts_in_flight_request(self, endpoint_mock, signed_request):
        endpoint_mock.stall(30)

        with pytest.raises(TransportError, match="deadline exceeded") as exc_info:
            await deliver_async(
                signed_request, Context.with_timeout(0.05), transport=endpoint_mock.async_transport
            )

        assert exc_info.value.cancelled is True

    @pytest.mark.asyncio
    async def test_task_cancellation_propagates(self, endpoint_mock, signed_request):
        endpoint_mock.stall(30)

        task = asyncio.create_task(
            deliver_async(signed_request, transport=endpoint_mock.async_transport)
        )
        await asyncio.sleep(0.05)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

    @pytest.mark.asyncio
    async def test_completed_request_ignores_later_cancel(self, endpoint_mock, signed_request):
        endpoint_mock.respond_with(200, b"done")
        ctx = Context.background()

        body = await deliver_async(signed_request, ctx, transport=endpoint_mock.async_transport)
        ctx.cancel()

        assert body == b"done"
