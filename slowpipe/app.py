import logging
from typing import List, Optional

import anyio
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from slowpipe.config import Settings
from slowpipe.response import DelayedBulkResponse, OutcomeRecord

logger = logging.getLogger(__name__)


class OutcomeRecorder:
    """Collects the terminal outcome of every request the app served."""

    def __init__(self) -> None:
        self.records: List[OutcomeRecord] = []

    async def __call__(self, record: OutcomeRecord) -> None:
        self.records.append(record)

    async def wait_for(
        self, count: int, timeout: float, interval: float = 0.05
    ) -> List[OutcomeRecord]:
        """Wait until at least ``count`` outcomes were recorded.

        Polls, so the recorder may be filled from another thread's event loop.

        Raises:
            TimeoutError: if fewer than ``count`` arrived within ``timeout``.
        """
        with anyio.fail_after(timeout):
            while len(self.records) < count:
                await anyio.sleep(interval)
        return list(self.records)


def create_app(
    settings: Optional[Settings] = None, recorder: Optional[OutcomeRecorder] = None
) -> Starlette:
    settings = Settings() if settings is None else settings
    recorder = OutcomeRecorder() if recorder is None else recorder

    async def stall(request: Request) -> DelayedBulkResponse:
        logger.debug("accepted request from %s", request.client)
        return DelayedBulkResponse(
            delay=settings.delay,
            payload_size=settings.payload_size,
            chunk_size=settings.chunk_size,
            write_timeout=settings.write_timeout,
            send_timeout=settings.send_timeout,
            on_outcome=recorder,
        )

    async def health(request: Request) -> JSONResponse:
        return JSONResponse({"status": "healthy"})

    app = Starlette(
        routes=[
            Route("/", stall, methods=["GET"]),
            Route("/health", health, methods=["GET"]),
        ],
    )
    app.state.settings = settings
    app.state.outcomes = recorder
    return app
