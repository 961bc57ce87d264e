"""Shared fixtures for kubepulse integration tests.

Each fake API server is a real aiohttp application on a loopback port, so
the kubernetes-asyncio client, kubeconfig loading and the probe all run
unmodified.  Behaviour per server is chosen by name:

    healthy    -- answers /version and lists namespaces
    forbidden  -- 403 on every path
    slow       -- /version answers only after ``SLOW_DELAY`` seconds
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from pathlib import Path

import pytest
from aiohttp import web

SLOW_DELAY = 0.6

_VERSION = {
    "major": "1",
    "minor": "30",
    "gitVersion": "v1.30.2",
    "gitCommit": "39683505b630ff2121012f3c5b16215a1449d5ed",
    "gitTreeState": "clean",
    "buildDate": "2024-06-11T20:21:00Z",
    "goVersion": "go1.22.4",
    "compiler": "gc",
    "platform": "linux/amd64",
}

_NAMESPACES = {
    "kind": "NamespaceList",
    "apiVersion": "v1",
    "metadata": {},
    "items": [
        {"metadata": {"name": "kube-system"}},
        {"metadata": {"name": "default"}},
        {"metadata": {"name": "apps"}},
    ],
}


def _status(code: int, reason: str, message: str) -> web.Response:
    body = {"kind": "Status", "apiVersion": "v1", "status": "Failure", "reason": reason, "message": message, "code": code}
    return web.json_response(body, status=code)


def _build_app(behaviour: str) -> web.Application:
    async def version(request: web.Request) -> web.Response:
        if behaviour == "forbidden":
            return _status(403, "Forbidden", 'forbidden: User "system:anonymous" cannot get path "/version"')
        if behaviour == "slow":
            await asyncio.sleep(SLOW_DELAY)
        return web.json_response(_VERSION)

    async def namespaces(request: web.Request) -> web.Response:
        if behaviour == "forbidden":
            return _status(403, "Forbidden", "namespaces is forbidden")
        return web.json_response(_NAMESPACES)

    async def fallback(request: web.Request) -> web.Response:
        if behaviour == "forbidden":
            return _status(403, "Forbidden", "forbidden")
        return _status(404, "NotFound", f"{request.path} not found")

    app = web.Application()
    app.router.add_get("/version", version)
    app.router.add_get("/version/", version)
    app.router.add_get("/api/v1/namespaces", namespaces)
    app.router.add_route("*", "/{tail:.*}", fallback)
    return app


@pytest.fixture
async def apiservers() -> AsyncIterator[dict[str, str]]:
    """Start one fake API server per behaviour; yields name -> base URL."""
    runners: list[web.AppRunner] = []
    urls: dict[str, str] = {}
    try:
        for behaviour in ("healthy", "forbidden", "slow"):
            runner = web.AppRunner(_build_app(behaviour))
            await runner.setup()
            site = web.TCPSite(runner, "127.0.0.1", 0)
            await site.start()
            runners.append(runner)
            host, port = runner.addresses[0][:2]
            urls[behaviour] = f"http://{host}:{port}"
        yield urls
    finally:
        for runner in runners:
            await runner.cleanup()


@pytest.fixture
def kubeconfig(tmp_path: Path, apiservers: dict[str, str]) -> Path:
    """kubeconfig with contexts slow, forbidden, healthy (in that order)."""
    order = ["slow", "forbidden", "healthy"]
    lines = ["apiVersion: v1", "kind: Config", "current-context: healthy", "clusters:"]
    for name in order:
        lines += [f"- name: {name}-cluster", "  cluster:", f"    server: {apiservers[name]}"]
    lines += ["users:", "- name: tester", "  user:", "    token: test-token", "contexts:"]
    for name in order:
        lines += [f"- name: {name}", "  context:", f"    cluster: {name}-cluster", "    user: tester"]
    path = tmp_path / "kubeconfig"
    path.write_text("\n".join(lines) + "\n")
    return path
