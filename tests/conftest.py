import logging
import threading
import time

import httpx
import pytest
import uvicorn
from asgi_lifespan import LifespanManager
from starlette.testclient import TestClient

from slowpipe import OutcomeRecorder, Settings, create_app

_log = logging.getLogger(__name__)
log_fmt = r"%(asctime)-15s %(levelname)s %(name)s %(funcName)s:%(lineno)d %(message)s"
datefmt = "%Y-%m-%d %H:%M:%S"
logging.basicConfig(format=log_fmt, level=logging.DEBUG, datefmt=datefmt)

logging.getLogger("httpx").setLevel(logging.INFO)
logging.getLogger("httpcore").setLevel(logging.INFO)

SMALL_PAYLOAD = 256 * 1024
SMALL_CHUNK = 16 * 1024


class UvicornThread:
    """Runs a uvicorn server for an ASGI app on an ephemeral port in a thread."""

    def __init__(self, app, **config) -> None:
        config.setdefault("log_level", "warning")
        config.setdefault("timeout_graceful_shutdown", 2)
        self.server = uvicorn.Server(
            uvicorn.Config(app, host="127.0.0.1", port=0, **config)
        )
        self.thread = threading.Thread(target=self.server.run, daemon=True)

    @property
    def hostport(self) -> str:
        host, port = self.server.servers[0].sockets[0].getsockname()[:2]
        return f"{host}:{port}"

    @property
    def url(self) -> str:
        return f"http://{self.hostport}"

    def __enter__(self) -> "UvicornThread":
        self.thread.start()
        deadline = time.monotonic() + 10
        while not self.server.started:
            if time.monotonic() > deadline or not self.thread.is_alive():
                raise RuntimeError("uvicorn did not start")
            time.sleep(0.01)
        _log.debug("uvicorn listening on %s", self.url)
        return self

    def __exit__(self, *exc_info) -> None:
        self.server.should_exit = True
        self.thread.join(timeout=10)


@pytest.fixture
def anyio_backend():
    """Exclude trio from tests"""
    return "asyncio"


@pytest.fixture
def recorder():
    return OutcomeRecorder()


@pytest.fixture
def settings():
    return Settings(delay=0.1, payload_size=SMALL_PAYLOAD, chunk_size=SMALL_CHUNK)


@pytest.fixture
async def app(settings, recorder):
    app = create_app(settings, recorder)
    async with LifespanManager(app):
        _log.info("We're in!")
        yield app
        _log.info("We're out!")


@pytest.fixture
async def httpx_client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(
        transport=transport, base_url="http://localhost:8080"
    ) as client:
        yield client


@pytest.fixture
def client(settings, recorder):
    with TestClient(
        app=create_app(settings, recorder), base_url="http://localhost:8080"
    ) as client:
        yield client
