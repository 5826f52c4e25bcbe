"""
Shared pytest fixtures for the room server test suite.

Provides an in-memory stand-in for a websocket connection, a scripted
analyzer in place of the Granite client, and a fully wired SessionHandler.
"""

import asyncio
import json

import pytest

from ai import Analysis
from connection_manager import Broadcaster, ConnectionRegistry
from errors import CollaboratorFailure
from protocol import SessionHandler
from room_store import RoomStore


class FakeConnection:
    """Records everything sent to it; `is_open` can be flipped by tests."""

    def __init__(self, id: str = "conn", fail_sends: bool = False):
        self.id = id
        self.is_open = True
        self.fail_sends = fail_sends
        self.sent = []

    async def send_text(self, data: str):
        if self.fail_sends:
            raise ConnectionResetError("peer gone")
        self.sent.append(data)

    async def close(self, code: int = 1000):
        self.is_open = False

    @property
    def messages(self):
        return [json.loads(raw) for raw in self.sent if raw != "pong"]

    def of_type(self, msg_type: str):
        return [m for m in self.messages if m["type"] == msg_type]

    def __repr__(self):
        return f"<FakeConnection {self.id}>"


class StubAnalyzer:
    """Scripted analyzer: returns `analysis` after an optional per-call delay."""

    def __init__(self, analysis=None, delays=None, fail=False):
        self.analysis = analysis or Analysis(themes=["Solar"], prompts=["How?"])
        self.delays = list(delays or [])
        self.fail = fail
        self.calls = []

    async def __call__(self, transcript: str) -> Analysis:
        self.calls.append(transcript)
        delay = self.delays.pop(0) if self.delays else 0
        if delay:
            await asyncio.sleep(delay)
        if self.fail:
            raise CollaboratorFailure()
        return self.analysis


@pytest.fixture
def store():
    return RoomStore(eviction_seconds=60)


@pytest.fixture
def broadcaster():
    return Broadcaster()


@pytest.fixture
def registry(store, broadcaster):
    return ConnectionRegistry(store, broadcaster)


@pytest.fixture
def analyzer():
    return StubAnalyzer()


@pytest.fixture
def handler(store, registry, broadcaster, analyzer):
    return SessionHandler(store=store, registry=registry, broadcaster=broadcaster, analyzer=analyzer)


@pytest.fixture
def make_connection():
    counter = {"n": 0}

    def _make(**kwargs):
        counter["n"] += 1
        kwargs.setdefault("id", f"conn-{counter['n']}")
        return FakeConnection(**kwargs)

    return _make


async def drain(handler: SessionHandler) -> None:
    """Wait for every in-flight idea submission to finish."""
    while handler.pending:
        await asyncio.gather(*handler.pending, return_exceptions=True)
