"""
Checks on the container files: the health check must hit a route the backend
serves, on the port the container starts it with, and nginx must wait for it.
"""

import re
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent.parent


@pytest.fixture
def dockerfile():
    return (ROOT / "Dockerfile").read_text()


@pytest.fixture
def compose():
    return (ROOT / "docker-compose.yml").read_text()


def health_url(text):
    match = re.search(r"http://127\.0\.0\.1:(\d+)(/\w+)", text)
    assert match is not None
    return int(match.group(1)), match.group(2)


def test_dockerfile_health_check_hits_served_route(dockerfile, client):
    assert "HEALTHCHECK" in dockerfile
    port, path = health_url(dockerfile.split("HEALTHCHECK", 1)[1])

    assert f'"--port", "{port}"' in dockerfile
    assert f"EXPOSE {port}" in dockerfile
    assert client.get(path).status_code == 200


def test_compose_health_check_gates_the_proxy(compose, client):
    backend, proxy = compose.split("\n  proxy:", 1)
    assert "healthcheck:" in backend
    port, path = health_url(backend)

    assert f'"{port}"' in backend
    assert client.get(path).status_code == 200
    assert re.search(r"backend:\s+condition: service_healthy", proxy)
