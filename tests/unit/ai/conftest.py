"""Shared fakes for provider tests: an in-process Ollama HTTP surface."""

from __future__ import annotations

import asyncio
import json
import stat
from typing import Any, List, Optional

import httpx
import pytest

from bills_ai.core.ai.providers.ollama import OllamaProvider


class FakeOllama:
    """Scriptable stand-in for the runtime's loopback HTTP API.

    ``completions`` is consumed in order by /api/generate; an item may be a
    string (returned as ``response``), an ``httpx.Response`` or an exception.
    """

    def __init__(
        self,
        up: bool = True,
        models: tuple = ("gemma3:4b",),
        completions: Optional[List[Any]] = None,
        pull_lines: Optional[List[str]] = None,
        pull_adds: tuple = ("gemma3:4b",),
        pull_delay: float = 0.0,
        up_after: Optional[int] = None,
    ):
        self.up = up
        self.models = list(models)
        self.completions = list(completions or [])
        self.pull_lines = list(pull_lines or ['{"status":"success"}'])
        self.pull_adds = list(pull_adds)
        self.pull_delay = pull_delay
        self.up_after = up_after
        self.version_calls = 0
        self.on_version = None
        self.requests: List[tuple] = []

    async def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        body = json.loads(request.content) if request.content else None
        self.requests.append((request.method, path, body))
        if path == "/api/version":
            self.version_calls += 1
            if self.on_version is not None:
                self.on_version()
            if self.up_after is not None and self.version_calls > self.up_after:
                self.up = True
            if not self.up:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200, json={"version": "0.6.5"})
        if path == "/api/tags":
            return httpx.Response(200, json={"models": [{"name": m} for m in self.models]})
        if path == "/api/pull":
            if self.pull_delay:
                await asyncio.sleep(self.pull_delay)
            self.models.extend(self.pull_adds)
            return httpx.Response(200, content=("\n".join(self.pull_lines) + "\n").encode())
        if path == "/api/generate":
            if not self.completions:
                return httpx.Response(200, json={"response": ""})
            item = self.completions.pop(0)
            if isinstance(item, Exception):
                raise item
            if isinstance(item, httpx.Response):
                return item
            return httpx.Response(200, json={"response": item})
        return httpx.Response(404)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def calls(self, path: str) -> List[Any]:
        return [body for _, p, body in self.requests if p == path]


@pytest.fixture
def ollama_server():
    """Factory for ``FakeOllama`` instances."""
    return FakeOllama


@pytest.fixture
def fake_binary(tmp_path):
    """An executable file standing in for the installed runtime binary."""
    path = tmp_path / "bin" / "ollama"
    path.parent.mkdir()
    path.write_text("#!/bin/sh\nexit 0\n")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return str(path)


@pytest.fixture
def make_provider(fake_binary):
    def _make(fake: FakeOllama, **kwargs) -> OllamaProvider:
        kwargs.setdefault("binary_override", fake_binary)
        kwargs.setdefault("search_dirs", [])
        kwargs.setdefault("poll_interval", 0.01)
        kwargs.setdefault("start_timeout", 0.5)
        kwargs.setdefault("model_name", "gemma3:4b")
        return OllamaProvider(
            base_url="http://127.0.0.1:11434",
            transport=fake.transport,
            **kwargs,
        )

    return _make


class FakeProcess:
    """Minimal ``RuntimeProcess`` double recording termination."""

    def __init__(self, binary: str):
        self.binary = binary
        self.pid = 4242
        self.alive = True
        self.terminated = 0

    async def terminate(self, grace_seconds: float = 5.0) -> None:
        self.terminated += 1
        self.alive = False


@pytest.fixture
def spawned(monkeypatch):
    """Replace process spawning; returns the list of spawned fakes."""
    from bills_ai.core.ai.providers.runtime import RuntimeProcess

    procs: List[FakeProcess] = []

    async def fake_spawn(binary, args=("serve",), search_dirs=()):
        proc = FakeProcess(binary)
        procs.append(proc)
        return proc

    monkeypatch.setattr(RuntimeProcess, "spawn", fake_spawn)
    return procs


@pytest.fixture
def loop_ticks():
    """Run a coroutine next to a 10ms ticker; returns (ticks, result).

    Blocking work on the event loop starves the ticker, so a low count means
    the loop was stalled.
    """

    async def _run(coro):
        ticks = 0
        done = asyncio.Event()

        async def ticker():
            nonlocal ticks
            while not done.is_set():
                await asyncio.sleep(0.01)
                ticks += 1

        task = asyncio.create_task(ticker())
        try:
            result = await coro
        finally:
            done.set()
            await task
        return ticks, result

    return _run


@pytest.fixture
def slow_read_bytes(monkeypatch):
    """Make ``Path.read_bytes`` take 0.3s, as a large file on slow storage would."""
    import pathlib
    import time

    original = pathlib.Path.read_bytes

    def slow(self):
        time.sleep(0.3)
        return original(self)

    monkeypatch.setattr(pathlib.Path, "read_bytes", slow)
