"""Tests for the document generation loop and the Claude document provider."""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from wfp.agents.builder import (
    MAX_RETRIES,
    SYSTEM_PROMPT,
    ClaudeDocumentProvider,
    DocumentGenerationLoop,
    build_user_prompt,
    extract_workflow_design,
)
from wfp.errors import EmptyResponseError, TransportError
from wfp.utils.retry import RetryPolicy


class StubDocumentProvider:
    def __init__(self, script):
        self.script = list(script)
        self.calls = []

    async def generate(self, system_instruction, user_prompt):
        self.calls.append((system_instruction, user_prompt))
        item = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(item, BaseException):
            raise item
        return item


def _loop(provider, fake_sleep, events=None):
    return DocumentGenerationLoop(
        provider,
        retry_policy=RetryPolicy(sleep=fake_sleep),
        notify=events.append if events is not None else None,
    )


class TestDocumentGenerationLoop:
    def test_valid_document_first_try(self, fake_sleep, valid_workflow):
        provider = StubDocumentProvider([json.dumps(valid_workflow)])

        result = asyncio.run(_loop(provider, fake_sleep).generate("user: invoices"))

        assert result == valid_workflow
        assert len(provider.calls) == 1
        assert provider.calls[0][0] == SYSTEM_PROMPT

    def test_schema_rejection_returns_none_after_all_attempts(self, fake_sleep):
        provider = StubDocumentProvider(['{"nodes": "not-an-array"}'])
        events = []

        result = asyncio.run(_loop(provider, fake_sleep, events).generate("design"))

        assert result is None
        assert len(provider.calls) == MAX_RETRIES + 1 == 4
        assert fake_sleep.delays == [1.0, 1.0, 1.0]
        assert [e["text"] for e in events] == [
            "Fixing JSON structure... (Attempt 1/3)",
            "Fixing JSON structure... (Attempt 2/3)",
            "Fixing JSON structure... (Attempt 3/3)",
        ]

    def test_extracts_fenced_document_from_prose(self, fake_sleep):
        raw = 'Here is the workflow you asked for:\n```json\n{"name":"x","nodes":[],"connections":{}}\n```\nImport it into n8n.'
        provider = StubDocumentProvider([raw])

        result = asyncio.run(_loop(provider, fake_sleep).generate("design"))

        assert result == {"name": "x", "nodes": [], "connections": {}}

    def test_schema_retry_reprompts_with_reason(self, fake_sleep, valid_workflow):
        provider = StubDocumentProvider(['{"name": "x"}', json.dumps(valid_workflow)])

        result = asyncio.run(_loop(provider, fake_sleep).generate("design"))

        assert result == valid_workflow
        first_prompt, second_prompt = provider.calls[0][1], provider.calls[1][1]
        assert "previous response was rejected" not in first_prompt
        assert "Missing required fields: nodes, connections" in second_prompt

    def test_connection_failures_resend_after_two_seconds(self, fake_sleep, valid_workflow):
        provider = StubDocumentProvider([TransportError("502"), json.dumps(valid_workflow)])
        events = []

        result = asyncio.run(_loop(provider, fake_sleep, events).generate("design"))

        assert result == valid_workflow
        assert fake_sleep.delays == [2.0]
        assert events[0]["text"] == "Connection issue, retrying... (Attempt 1/3)"
        assert provider.calls[0][1] == provider.calls[1][1]

    def test_transport_failure_beyond_budget_raises(self, fake_sleep):
        provider = StubDocumentProvider([TransportError("unreachable")])

        with pytest.raises(TransportError, match="unreachable"):
            asyncio.run(_loop(provider, fake_sleep).generate("design"))
        assert len(provider.calls) == 4

    def test_mixed_failures_use_matching_delays(self, fake_sleep, valid_workflow):
        provider = StubDocumentProvider([
            "not json", EmptyResponseError("empty"), json.dumps(valid_workflow),
        ])

        asyncio.run(_loop(provider, fake_sleep).generate("design"))

        assert fake_sleep.delays == [1.0, 2.0]


class TestPrompts:
    def test_extract_workflow_design_uses_last_ten_turns(self):
        turns = [{"role": "user" if i % 2 == 0 else "assistant", "text": f"t{i}"} for i in range(14)]
        design = extract_workflow_design(turns)
        assert design.startswith("user: t4")
        assert design.endswith("assistant: t13")
        assert design.count("\n\n") == 9

    def test_user_prompt_embeds_design(self):
        prompt = build_user_prompt("user: approve invoices")
        assert "user: approve invoices" in prompt
        assert prompt.endswith("Return ONLY the JSON, no other text or formatting.")


class TestClaudeDocumentProvider:
    @patch("wfp.agents.builder.ChatAnthropic")
    def test_returns_text(self, MockLLM, mock_config):
        response = MagicMock()
        response.content = [{"type": "text", "text": '{"name": "x"}'}]
        MockLLM.return_value.ainvoke = AsyncMock(return_value=response)

        text = asyncio.run(ClaudeDocumentProvider().generate("sys", "user"))

        assert text == '{"name": "x"}'
        MockLLM.assert_called_once_with(model="claude-test", temperature=0.0, max_tokens=4000, max_retries=0)

    @patch("wfp.agents.builder.ChatAnthropic")
    def test_sdk_errors_become_transport_errors(self, MockLLM, mock_config):
        MockLLM.return_value.ainvoke = AsyncMock(side_effect=ConnectionError("reset by peer"))

        with pytest.raises(TransportError, match="reset by peer"):
            asyncio.run(ClaudeDocumentProvider().generate("sys", "user"))

    @patch("wfp.agents.builder.ChatAnthropic")
    def test_empty_text_is_empty_response(self, MockLLM, mock_config):
        response = MagicMock()
        response.content = ""
        MockLLM.return_value.ainvoke = AsyncMock(return_value=response)

        with pytest.raises(EmptyResponseError):
            asyncio.run(ClaudeDocumentProvider().generate("sys", "user"))
