"""Shared driver that runs a stream decoder over a vendor transport."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Any

from castor.errors import AbortedError
from castor.events import DoneEvent
from castor.providers._errors import wrap_transport_error
from castor.telemetry import TelemetryContext

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Awaitable, Callable

    from castor.events import AssistantMessageEvent
    from castor.providers.base import StreamDecoder
    from castor.types import StreamOptions

log = logging.getLogger(__name__)


async def _await_or_abort(
    start: Callable[[], Awaitable[Any]],
    signal: asyncio.Event | None,
    *,
    discard: Callable[[Any], Awaitable[None]] | None = None,
) -> Any:
    """Await ``start()``, or raise AbortedError as soon as *signal* is set.

    A result that arrives after the abort is handed to *discard*. Exceptions
    from ``start()`` (including StopAsyncIteration) propagate unchanged.
    """
    if signal is None:
        return await start()
    if signal.is_set():
        raise AbortedError()

    work = asyncio.ensure_future(start())
    abort_task = asyncio.ensure_future(signal.wait())
    try:
        done, _ = await asyncio.wait(
            {work, abort_task}, return_when=asyncio.FIRST_COMPLETED
        )
    except BaseException:
        work.cancel()
        abort_task.cancel()
        raise

    if work in done:
        abort_task.cancel()
        return work.result()

    work.cancel()
    try:
        late = await work
    except (asyncio.CancelledError, StopAsyncIteration):
        pass
    except Exception as exc:
        # The pending call is abandoned; the abort is the outcome.
        log.debug("Discarding transport error after abort: %s", exc)
    else:
        if discard is not None:
            await discard(late)
    raise AbortedError()


async def _close_transport(transport: Any, provider: str) -> None:
    for name in ("aclose", "close"):
        closer = getattr(transport, name, None)
        if not callable(closer):
            continue
        try:
            result = closer()
            if asyncio.iscoroutine(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            # Teardown should never mask the stream's outcome.
            log.warning("%s transport cleanup failed: %s", provider, exc)
        return


async def drive_stream(
    decoder: StreamDecoder,
    open_transport: Callable[[], Awaitable[Any]],
    *,
    provider: str,
    options: StreamOptions,
) -> AsyncGenerator[AssistantMessageEvent, None]:
    """Yield canonical events for one call; always ends with one terminal event.

    After the stream has started nothing is raised to the consumer: transport
    failures, vendor errors and cancellation all become the terminal ``error``
    event. ``asyncio.CancelledError`` of the consuming task still propagates.
    """
    signal = options.signal
    tele = TelemetryContext()
    started = time.perf_counter()
    transport: Any = None
    terminal: AssistantMessageEvent
    try:
        try:
            transport = await _await_or_abort(
                open_transport,
                signal,
                discard=lambda late: _close_transport(late, provider),
            )
            records = aiter(transport)
            while True:
                try:
                    raw = await _await_or_abort(lambda: anext(records), signal)
                except StopAsyncIteration:
                    break
                for event in decoder.feed(raw):
                    yield event
            terminal = decoder.finish(aborted=options.aborted)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            aborted = options.aborted
            error = exc if aborted else wrap_transport_error(
                exc, provider=provider, phase="stream"
            )
            log.debug("%s stream ended with %s: %s", provider, type(error).__name__, error)
            terminal = decoder.fail(error, aborted=aborted)
        yield terminal
    finally:
        if transport is not None:
            await _close_transport(transport, provider)

    message = decoder.message
    if tele.is_enabled:
        tele.count("stream.calls", provider=provider)
        tele.metric("stream.duration_s", time.perf_counter() - started, provider=provider)
        tele.metric("stream.total_tokens", message.usage.total_tokens, provider=provider)
        tele.metric(
            "stream.stop_reason",
            message.stop_reason,
            provider=provider,
            done=isinstance(terminal, DoneEvent),
        )
