# /// script
# requires-python = ">=3.9"
# dependencies = [
#   "slowpipe",
#   "uvicorn",
#   "httpx",
# ]
# ///
"""
Broken pipe reproduction in a single process.

This example demonstrates:
- a backend that stalls for 3 seconds before streaming 900 MB
- a reverse proxy in front of it that waits only 1 second for a response head
- the proxy answering 504 while the backend later fails its first write

Usage:
    python examples/reproduce.py

Then watch the log: the proxy reports
``upstream timed out (ReadTimeout) while reading response header from upstream``
and two seconds later the backend reports
``error writing: [Errno 32] peer closed the connection``.
"""

import asyncio
import logging

import httpx
import uvicorn

from slowpipe import ProxySettings, Settings, create_app, create_proxy_app

logging.basicConfig(
    format="%(asctime)-15s %(levelname)s %(name)s %(message)s", level=logging.INFO
)

BACKEND_PORT = 8080
PROXY_PORT = 8000


async def main():
    backend = uvicorn.Server(
        uvicorn.Config(
            create_app(Settings(delay=3, port=BACKEND_PORT)),
            host="127.0.0.1",
            port=BACKEND_PORT,
            log_level="warning",
        )
    )
    proxy = uvicorn.Server(
        uvicorn.Config(
            create_proxy_app(
                ProxySettings(
                    upstream=f"127.0.0.1:{BACKEND_PORT}",
                    port=PROXY_PORT,
                    read_timeout=1,
                )
            ),
            host="127.0.0.1",
            port=PROXY_PORT,
            log_level="warning",
        )
    )

    servers = [asyncio.create_task(backend.serve()), asyncio.create_task(proxy.serve())]
    while not (backend.started and proxy.started):
        await asyncio.sleep(0.05)

    async with httpx.AsyncClient(timeout=30) as client:
        response = await client.get(f"http://127.0.0.1:{PROXY_PORT}/")
        print(f"client got: {response.status_code}")

    # give the backend time to wake up and hit the closed connection
    await asyncio.sleep(3)

    backend.should_exit = proxy.should_exit = True
    await asyncio.gather(*servers)


if __name__ == "__main__":
    asyncio.run(main())
