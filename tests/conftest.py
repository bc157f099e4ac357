"""Shared fixtures for the workflow planner test suite."""

import pytest
from unittest.mock import patch

from wfp.agents.chat import TextReply
from wfp.state import new_session


TEST_CONFIG = {
    "chat_model": "gemini-test",
    "chat_temperature": 0.0,
    "document_model": "claude-test",
    "document_temperature": 0.0,
    "document_max_tokens": 4000,
    "sdk_max_retries": 0,
    "history_window": 10,
    "explanation_window": 5,
    "chat_max_attempts": 1,
    "chat_retry_delay": 1.0,
    "diagram_request_max_attempts": 4,
    "diagram_request_delay": 1.0,
    "tools_enabled": False,
    "tool_budgets": {
        "chat": {"timeout_ms": 1500, "max_calls": 2},
        "build": {"timeout_ms": 3000, "max_calls": 2},
    },
    "tool_servers": [],
    "diagram_renderer_url": "http://kroki.test",
    "renderer_timeout": 5,
    "snapshot_dir": "./.snapshots",
    "output_dir": "./output",
}


class ScriptedProvider:
    """CompletionProvider stub that replays scripted results in order.

    Script items: str -> TextReply, exception instance -> raised,
    anything else (e.g. ToolCallRequest) -> returned as-is.
    """

    def __init__(self, script=None):
        self.script = list(script or [])
        self.calls = []

    async def complete(self, system_instruction, history, *, tools=None, tool_choice=None, tool_round=None):
        self.calls.append({
            "system": system_instruction,
            "history": list(history),
            "tools": tools,
            "tool_choice": tool_choice,
            "tool_round": tool_round,
        })
        if not self.script:
            raise AssertionError("ScriptedProvider ran out of scripted results")
        item = self.script.pop(0)
        if isinstance(item, BaseException):
            raise item
        if isinstance(item, str):
            return TextReply(item)
        return item


class ScriptedRenderer:
    """DiagramRenderer stub: each render pops the next result (svg str or exception)."""

    def __init__(self, script=None, default=None):
        self.script = list(script or [])
        self.default = default
        self.rendered = []

    async def render(self, diagram):
        self.rendered.append(diagram)
        item = self.script.pop(0) if self.script else self.default
        if isinstance(item, BaseException):
            raise item
        return item


class FakeSleep:
    """Async sleep replacement that records requested delays without waiting."""

    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(float(delay))


class FakeClock:
    def __init__(self, now=1_000.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def base_state():
    """Fresh SessionState with a fixed id."""
    return new_session("test-session")


@pytest.fixture
def mock_config():
    """Patch the config singleton with test-friendly values."""
    test_config = {**TEST_CONFIG, "tool_budgets": {k: dict(v) for k, v in TEST_CONFIG["tool_budgets"].items()}}
    with patch("wfp.config._config", test_config):
        yield test_config


@pytest.fixture
def fake_sleep():
    return FakeSleep()


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def scripted_provider():
    """Factory for ScriptedProvider stubs."""
    return ScriptedProvider


@pytest.fixture
def scripted_renderer():
    """Factory for ScriptedRenderer stubs."""
    return ScriptedRenderer


@pytest.fixture
def valid_workflow():
    return {
        "name": "Invoice Approval",
        "nodes": [
            {
                "id": "6f1c7a52-3c1e-4d0e-9d1a-0c6c2b0f7a11",
                "name": "Manual Trigger",
                "type": "n8n-nodes-base.manualTrigger",
                "typeVersion": 1,
                "position": [0, 0],
                "parameters": {},
            }
        ],
        "connections": {},
        "active": False,
        "settings": {},
    }
