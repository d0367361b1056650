"""Pytest configuration and fixtures for the test suite.

Provides fake clocks for retry waits, helper nodes that record what they
saw, and isolation of the cached engine configuration.
"""

import os

import pytest

from actionflow import Context, Node
from actionflow.config import ENV_PREFIX, reset_config


class FakeSleep:
    """Controllable clock: records requested waits instead of blocking."""

    def __init__(self):
        self.calls = []

    def __call__(self, seconds):
        self.calls.append(seconds)


class FakeAsyncSleep(FakeSleep):
    async def __call__(self, seconds):
        self.calls.append(seconds)


class RecordingNode(Node):
    """Appends its name to shared["visited"] and returns a fixed action."""

    def __init__(self, name, action=None, **kwargs):
        super().__init__(name=name, **kwargs)
        self.action = action

    def prep(self, shared):
        shared.setdefault("visited", []).append(self.name)
        return None

    def post(self, shared, prep_res, exec_res):
        return self.action


@pytest.fixture(autouse=True)
def isolate_config(monkeypatch):
    """Clear ACTIONFLOW_* variables and the cached configuration around each test."""
    for key in list(os.environ):
        if key.startswith(ENV_PREFIX):
            monkeypatch.delenv(key, raising=False)
    reset_config()
    yield
    reset_config()


@pytest.fixture
def fake_sleep():
    return FakeSleep()


@pytest.fixture
def fake_async_sleep():
    return FakeAsyncSleep()


@pytest.fixture
def context():
    return Context()


@pytest.fixture
def recording_node():
    """Factory for RecordingNode instances."""
    return RecordingNode
