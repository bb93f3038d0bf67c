"""
Reverse proxy in front of the backend.

Two renditions of the same timeout policy live here: ``render_nginx_conf``
produces the nginx configuration used in the container deployment, and
``create_proxy_app`` is an ASGI proxy built on httpx that enforces the same
connect/read/send timeouts for local reproduction and tests.
"""

import logging
import string
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List, Optional, Tuple

import httpx
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import Response, StreamingResponse
from starlette.routing import Route

from slowpipe.config import ProxySettings

logger = logging.getLogger(__name__)

# https://www.rfc-editor.org/rfc/rfc9110#section-7.6.1
HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "proxy-connection",
        "te",
        "trailer",
        "transfer-encoding",
        "upgrade",
    }
)

PROXY_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]

NGINX_CONF_TEMPLATE = string.Template(
    """\
events {
    worker_connections 1024;
}

http {
    upstream backend {
        server ${upstream};
    }

    server {
        listen ${listen_port};

        location / {
            proxy_pass http://backend;
            proxy_http_version 1.1;
            proxy_set_header Connection "";

            proxy_set_header Host $$host;
            proxy_set_header X-Real-IP $$remote_addr;
            proxy_set_header X-Forwarded-For $$proxy_add_x_forwarded_for;

            proxy_connect_timeout ${connect_timeout};
            proxy_read_timeout ${read_timeout};
            proxy_send_timeout ${send_timeout};
        }
    }
}
"""
)


def nginx_duration(seconds: float) -> str:
    """Format seconds the way nginx time directives expect them."""
    if float(seconds).is_integer():
        return f"{int(seconds)}s"
    return f"{int(round(seconds * 1000))}ms"


def render_nginx_conf(settings: ProxySettings) -> str:
    return NGINX_CONF_TEMPLATE.substitute(
        upstream=settings.upstream,
        listen_port=settings.port,
        connect_timeout=nginx_duration(settings.connect_timeout),
        read_timeout=nginx_duration(settings.read_timeout),
        send_timeout=nginx_duration(settings.send_timeout),
    )


def upstream_timeout(settings: ProxySettings) -> httpx.Timeout:
    # nginx's proxy_send_timeout bounds writes of the request to the upstream,
    # which is what httpx calls the write timeout.
    return httpx.Timeout(
        connect=settings.connect_timeout,
        read=settings.read_timeout,
        write=settings.send_timeout,
        pool=settings.connect_timeout,
    )


def forwarded_request_headers(request: Request) -> List[Tuple[str, str]]:
    """Client headers minus hop-by-hop ones, plus Host, X-Real-IP and
    X-Forwarded-For as nginx's ``proxy_set_header`` lines would set them."""
    client_ip = request.client.host if request.client else ""
    headers = [
        (key, value)
        for key, value in request.headers.items()
        if key not in HOP_BY_HOP_HEADERS
        and key not in ("host", "x-real-ip", "x-forwarded-for", "content-length")
    ]

    prior = request.headers.get("x-forwarded-for")
    forwarded_for = f"{prior}, {client_ip}" if prior else client_ip

    headers.append(("host", request.headers.get("host", "")))
    headers.append(("x-real-ip", client_ip))
    headers.append(("x-forwarded-for", forwarded_for))
    return headers


def relayed_response_headers(upstream: httpx.Response) -> Dict[str, str]:
    return {
        key: value
        for key, value in upstream.headers.items()
        if key.lower() not in HOP_BY_HOP_HEADERS
    }


def create_proxy_app(
    settings: Optional[ProxySettings] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> Starlette:
    settings = ProxySettings() if settings is None else settings
    timeout = upstream_timeout(settings)
    upstream_url = settings.upstream_url
    holder: Dict[str, httpx.AsyncClient] = {}

    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        if client is not None:
            holder["client"] = client
            yield
            return
        async with httpx.AsyncClient(timeout=timeout) as owned:
            holder["client"] = owned
            logger.info("proxying to %s", upstream_url)
            yield

    async def forward(request: Request) -> Response:
        url = upstream_url + request.url.path
        if request.url.query:
            url += "?" + request.url.query

        body = await request.body()
        upstream_request = holder["client"].build_request(
            request.method,
            url,
            headers=forwarded_request_headers(request),
            content=body or None,
            timeout=timeout,
        )

        try:
            upstream = await holder["client"].send(upstream_request, stream=True)
        except httpx.ConnectTimeout:
            logger.error(
                "upstream timed out while connecting to upstream, upstream: %s", url
            )
            return Response(status_code=504)
        except httpx.TimeoutException as e:
            logger.error(
                "upstream timed out (%s) while reading response header from "
                "upstream, upstream: %s",
                type(e).__name__,
                url,
            )
            return Response(status_code=504)
        except httpx.ConnectError as e:
            logger.error(
                "connect() failed (%s) while connecting to upstream, upstream: %s",
                e,
                url,
            )
            return Response(status_code=502)
        except httpx.TransportError as e:
            logger.error(
                "upstream prematurely closed connection (%s) while reading response "
                "header from upstream, upstream: %s",
                e,
                url,
            )
            return Response(status_code=502)

        async def relay() -> AsyncIterator[bytes]:
            try:
                if upstream.is_stream_consumed:
                    yield upstream.content
                    return
                async for chunk in upstream.aiter_raw():
                    yield chunk
            except httpx.TimeoutException:
                logger.error(
                    "upstream timed out while reading upstream, upstream: %s", url
                )
                raise
            finally:
                await upstream.aclose()

        return StreamingResponse(
            relay(),
            status_code=upstream.status_code,
            headers=relayed_response_headers(upstream),
        )

    return Starlette(
        routes=[
            Route("/{path:path}", forward, methods=PROXY_METHODS),
        ],
        lifespan=lifespan,
    )
