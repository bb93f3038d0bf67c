import errno
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Mapping, Optional

import anyio
from starlette.background import BackgroundTask
from starlette.datastructures import MutableHeaders
from starlette.responses import Response
from starlette.types import Message, Receive, Scope, Send

from slowpipe.errors import PayloadError, PeerClosedError, WriteTimeoutError
from slowpipe.payload import DEFAULT_CHUNK_SIZE, build_payload, iter_chunks

logger = logging.getLogger(__name__)


class Outcome(str, Enum):
    COMPLETED = "completed"
    PAYLOAD_ERROR = "payload_error"
    WRITE_ERROR = "write_error"


@dataclass(frozen=True)
class OutcomeRecord:
    """Terminal result of a single request."""

    outcome: Outcome
    bytes_written: int
    payload_size: int
    error: str = ""
    elapsed: float = 0.0

    @property
    def ok(self) -> bool:
        return self.outcome is Outcome.COMPLETED


OutcomeCallback = Callable[[OutcomeRecord], Awaitable[None]]


class DelayedBulkResponse(Response):
    """
    Response that stalls for ``delay`` seconds and then streams a large
    zero-filled body.

    The delay is not interrupted by a client disconnect. A disconnect is only
    noticed when the next write is attempted, which then fails with
    ``PeerClosedError``. Every request ends in exactly one logged outcome.
    """

    media_type = "application/octet-stream"

    def __init__(
        self,
        delay: float,
        payload_size: int,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        status_code: int = 200,
        headers: Optional[Mapping[str, str]] = None,
        write_timeout: Optional[float] = None,
        send_timeout: Optional[float] = None,
        on_outcome: Optional[OutcomeCallback] = None,
        background: Optional[BackgroundTask] = None,
    ) -> None:
        if delay < 0:
            raise ValueError(f"delay must not be negative, got: {delay}")
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be greater than 0, got: {chunk_size}")

        self.delay = delay
        self.payload_size = payload_size
        self.chunk_size = chunk_size
        self.status_code = status_code
        self.write_timeout = write_timeout
        self.send_timeout = send_timeout
        self.on_outcome = on_outcome
        self.background = background
        self.init_headers(headers)

        self.peer_closed = False
        self.bytes_written = 0
        self.started = 0.0

    async def _write(self, send: Send, message: Message) -> None:
        """Send one message, failing the way a socket write would."""
        if self.peer_closed:
            raise PeerClosedError(errno.EPIPE, "peer closed the connection")

        with anyio.move_on_after(self.send_timeout) as cancel_scope:
            await send(message)

        if cancel_scope.cancel_called:
            raise WriteTimeoutError(
                f"send blocked for more than {self.send_timeout}s"
            )

    def _response_start(self, content_length: int, status: int) -> Message:
        headers = MutableHeaders(raw=list(self.raw_headers))
        headers["Content-Length"] = str(content_length)
        return {
            "type": "http.response.start",
            "status": status,
            "headers": headers.raw,
        }

    async def _send_payload_failure(self, send: Send) -> None:
        try:
            await self._write(send, self._response_start(0, 500))
            await self._write(
                send, {"type": "http.response.body", "body": b"", "more_body": False}
            )
        except OSError as e:
            logger.debug("could not report payload failure to peer: %s", e)

    def _record(self, outcome: Outcome, error: str = "") -> OutcomeRecord:
        return OutcomeRecord(
            outcome=outcome,
            bytes_written=self.bytes_written,
            payload_size=self.payload_size,
            error=error,
            elapsed=anyio.current_time() - self.started,
        )

    async def _stream_response(self, send: Send) -> OutcomeRecord:
        try:
            with anyio.move_on_after(self.write_timeout) as deadline:
                await anyio.sleep(self.delay)

                try:
                    payload = build_payload(self.payload_size)
                except PayloadError as e:
                    await self._send_payload_failure(send)
                    return self._record(Outcome.PAYLOAD_ERROR, str(e))

                await self._write(
                    send, self._response_start(len(payload), self.status_code)
                )
                logger.debug("response head sent, streaming %d bytes", len(payload))

                for chunk in iter_chunks(payload, self.chunk_size):
                    await self._write(
                        send,
                        {
                            "type": "http.response.body",
                            "body": chunk,
                            "more_body": True,
                        },
                    )
                    self.bytes_written += len(chunk)

                await self._write(
                    send,
                    {"type": "http.response.body", "body": b"", "more_body": False},
                )

            if deadline.cancel_called:
                raise WriteTimeoutError(
                    f"response not written within {self.write_timeout}s"
                )
        except OSError as e:
            return self._record(Outcome.WRITE_ERROR, str(e) or type(e).__name__)

        return self._record(Outcome.COMPLETED)

    async def _listen_for_disconnect(self, receive: Receive) -> None:
        """Watch for a disconnect message from the client."""
        while not self.peer_closed:
            message = await receive()
            if message["type"] == "http.disconnect":
                self.peer_closed = True
                logger.debug("Got event: http.disconnect. Next write will fail.")

    async def _report(self, result: OutcomeRecord) -> None:
        if result.outcome is Outcome.COMPLETED:
            logger.info(
                "request completed: %d bytes in %.2fs",
                result.bytes_written,
                result.elapsed,
            )
        elif result.outcome is Outcome.PAYLOAD_ERROR:
            logger.warning("error building payload: %s", result.error)
        else:
            logger.warning(
                "error writing: %s (%d of %s bytes written after %.2fs)",
                result.error,
                result.bytes_written,
                result.payload_size,
                result.elapsed,
            )

        if self.on_outcome is not None:
            await self.on_outcome(result)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        """Entrypoint for Starlette's ASGI contract. Two tasks run side by side:
        - _stream_response to wait, then push the payload
        - _listen_for_disconnect to notice the client going away
        """
        self.started = anyio.current_time()
        result: Optional[OutcomeRecord] = None

        try:
            async with anyio.create_task_group() as task_group:

                async def stream_then_cancel() -> None:
                    nonlocal result
                    result = await self._stream_response(send)
                    task_group.cancel_scope.cancel()

                task_group.start_soon(stream_then_cancel)
                task_group.start_soon(self._listen_for_disconnect, receive)
        except anyio.get_cancelled_exc_class():
            # cancelled from outside, e.g. by a graceful shutdown timeout
            with anyio.CancelScope(shield=True):
                await self._report(
                    result or self._record(Outcome.WRITE_ERROR, "cancelled")
                )
            raise

        await self._report(result or self._record(Outcome.WRITE_ERROR, "cancelled"))

        if self.background is not None:
            await self.background()
