"""
Delivery of signed requests.

Each delivery is a single attempt over a fresh httpx client: no retries, no
backoff, no connection reuse between calls. The response body is read in
full and the stream closed before the status is checked, so nothing is left
open whichever way the call ends.

Only status 200 counts as success; any other code, including the rest of
the 2xx range, raises UnexpectedStatusError.
"""

import asyncio
import contextvars
import logging
import threading
import time
from typing import Any, Optional

import httpx

from .config import config
from .context import Context
from .exceptions import TransportError, UnexpectedStatusError
from .metrics import get_metrics_emitter
from .request import OutboundRequest
from .tracing import add_delivery_span_attributes, get_tracer

logger = logging.getLogger(__name__)


def body_snippet(body: bytes, limit: Optional[int] = None) -> str:
    """Decode the start of a response body for error messages."""
    limit = config.body_snippet_length if limit is None else limit
    return body[:limit].decode("utf-8", errors="replace")


def _timeout(context: Context) -> httpx.Timeout:
    total = config.timeout_seconds
    remaining = context.remaining()
    if remaining is not None:
        total = min(total, remaining)
    return httpx.Timeout(total, connect=min(config.connect_timeout_seconds, total))


def _validate_status(status_code: int, body: bytes) -> bytes:
    if status_code != 200:
        logger.warning("Received status code %s", status_code)
        raise UnexpectedStatusError(status_code, body_snippet(body))
    return body


def _record(service: Optional[str], start_time: float, status_code=None, body=None, error=None) -> None:
    get_metrics_emitter().record_delivery(
        service=service,
        latency_ms=(time.time() - start_time) * 1000,
        status_code=status_code,
        response_bytes=len(body) if body is not None else None,
        error_type=type(error).__name__ if error is not None else None,
    )


def _send(
    request: OutboundRequest,
    context: Context,
    transport: Optional[httpx.BaseTransport],
) -> tuple[int, bytes]:
    try:
        with httpx.Client(transport=transport, timeout=_timeout(context)) as client:
            with client.stream(
                request.method,
                request.url,
                content=request.body,
                headers=request.headers,
            ) as response:
                body = response.read()
                return response.status_code, body
    except httpx.TimeoutException as e:
        if context.expired:
            raise TransportError(
                "could not send request: context deadline exceeded", cancelled=True
            ) from e
        raise TransportError(f"could not send request: {e}") from e
    except httpx.HTTPError as e:
        raise TransportError(f"could not send request: {e}") from e


def _send_cancellable(
    request: OutboundRequest,
    context: Context,
    transport: Optional[httpx.BaseTransport],
) -> tuple[int, bytes]:
    """
    Run _send() on a worker thread and wait for it, the context's cancel or
    its deadline, whichever comes first.

    An abandoned worker finishes (or times out) in the background; its
    outcome is dropped.
    """
    finished = threading.Event()
    outcome: dict[str, Any] = {}

    def run() -> None:
        try:
            outcome["result"] = _send(request, context, transport)
        except Exception as e:
            # Re-raised on the calling thread below
            outcome["error"] = e
        finally:
            finished.set()

    # The worker sees the caller's contextvars, so spans nest under the delivery
    worker = threading.Thread(
        target=contextvars.copy_context().run,
        args=(run,),
        name="iam-signed-deliver",
        daemon=True,
    )
    remove_callback = context.add_done_callback(finished.set)
    try:
        worker.start()
        finished.wait(context.remaining())
    finally:
        remove_callback()

    if "result" in outcome:
        return outcome["result"]
    if "error" in outcome:
        raise outcome["error"]

    reason = "context canceled" if context.cancelled else "context deadline exceeded"
    logger.debug("Abandoning %s %s: %s", request.method, request.url, reason)
    raise TransportError(f"could not send request: {reason}", cancelled=True)


def deliver(
    request: OutboundRequest,
    context: Optional[Context] = None,
    *,
    service: Optional[str] = None,
    transport: Optional[httpx.BaseTransport] = None,
) -> bytes:
    """
    Send a signed request and return the body of a 200 response.

    The round trip runs on a worker thread while the calling thread waits.
    Cancelling the context from any thread, or reaching its deadline,
    returns control at once with TransportError(cancelled=True).

    Args:
        request: A signed request
        context: Cancellation token (defaults to Context.background())
        service: AWS service identifier, for tracing and metrics
        transport: Optional httpx transport (e.g. httpx.MockTransport)

    Returns:
        The full response body

    Raises:
        TransportError: If the network call fails or the context is done
        UnexpectedStatusError: If the status code is not 200
    """
    context = context or Context.background()

    with get_tracer().start_as_current_span("iam_signed.deliver") as span:
        add_delivery_span_attributes(span, service=service, method=request.method, url=request.url)
        start_time = time.time()
        try:
            context.raise_if_done()
            logger.debug("Sending %s %s", request.method, request.url)
            status_code, body = _send_cancellable(request, context, transport)

            span.set_attribute("http.status_code", status_code)
            _validate_status(status_code, body)
        except Exception as e:
            _record(service, start_time, status_code=getattr(e, "status_code", None), error=e)
            raise

        _record(service, start_time, status_code=status_code, body=body)
        return body


def _outer_task_cancelling() -> bool:
    task = asyncio.current_task()
    return task is not None and task.cancelling() > 0


async def _send_async(
    request: OutboundRequest,
    context: Context,
    transport: Optional[httpx.AsyncBaseTransport],
) -> tuple[int, bytes]:
    async with httpx.AsyncClient(transport=transport, timeout=_timeout(context)) as client:
        async with client.stream(
            request.method,
            request.url,
            content=request.body,
            headers=request.headers,
        ) as response:
            body = await response.aread()
            return response.status_code, body


async def deliver_async(
    request: OutboundRequest,
    context: Optional[Context] = None,
    *,
    service: Optional[str] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> bytes:
    """
    Send a signed request from asyncio and return the body of a 200 response.

    Cancelling the context (from any thread) or reaching its deadline aborts
    the in-flight request and raises TransportError with cancelled=True.
    Cancelling the awaiting task itself propagates asyncio.CancelledError
    as usual.

    Args:
        request: A signed request
        context: Cancellation token (defaults to Context.background())
        service: AWS service identifier, for tracing and metrics
        transport: Optional httpx async transport (e.g. httpx.MockTransport)

    Returns:
        The full response body

    Raises:
        TransportError: If the network call fails or the context is done
        UnexpectedStatusError: If the status code is not 200
    """
    context = context or Context.background()

    with get_tracer().start_as_current_span("iam_signed.deliver") as span:
        add_delivery_span_attributes(span, service=service, method=request.method, url=request.url)
        start_time = time.time()
        try:
            context.raise_if_done()
            logger.debug("Sending %s %s", request.method, request.url)

            loop = asyncio.get_running_loop()
            task = asyncio.ensure_future(_send_async(request, context, transport))
            abort_reason: list[str] = []

            def abort(reason: str) -> None:
                abort_reason.append(reason)
                task.cancel()

            remove_callback = context.add_done_callback(
                lambda: loop.call_soon_threadsafe(abort, "context canceled")
            )
            remaining = context.remaining()
            timer = (
                loop.call_later(remaining, abort, "context deadline exceeded")
                if remaining is not None
                else None
            )
            try:
                status_code, body = await task
            except asyncio.CancelledError as e:
                if abort_reason and not _outer_task_cancelling():
                    raise TransportError(
                        f"could not send request: {abort_reason[0]}", cancelled=True
                    ) from e
                raise
            except httpx.TimeoutException as e:
                if context.expired:
                    raise TransportError(
                        "could not send request: context deadline exceeded", cancelled=True
                    ) from e
                raise TransportError(f"could not send request: {e}") from e
            except httpx.HTTPError as e:
                raise TransportError(f"could not send request: {e}") from e
            finally:
                remove_callback()
                if timer is not None:
                    timer.cancel()

            span.set_attribute("http.status_code", status_code)
            _validate_status(status_code, body)
        except Exception as e:
            _record(service, start_time, status_code=getattr(e, "status_code", None), error=e)
            raise

        _record(service, start_time, status_code=status_code, body=body)
        return body
