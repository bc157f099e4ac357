"""Conversational completion provider (Gemini).

Every provider response is resolved here, once, into either a ``TextReply``
or a ``ToolCallRequest``. Nothing downstream inspects raw message shapes.
"""

from dataclasses import dataclass, field
from typing import Any, Protocol

from langchain_core.messages import ToolMessage
from langchain_google_genai import ChatGoogleGenerativeAI

from wfp.config import get_config
from wfp.errors import EmptyResponseError, TransportError
from wfp.state import ConversationTurn, ToolInvocationRequest
from wfp.utils.parsing import message_text

# Gemini spells "must call a tool" as "any".
_TOOL_CHOICE = {"required": "any", "auto": "auto"}


@dataclass
class TextReply:
    text: str


@dataclass
class ToolCallRequest:
    requests: list[ToolInvocationRequest]
    message: Any = field(default=None, repr=False)  # provider message, echoed back in the follow-up


CompletionResult = TextReply | ToolCallRequest


class CompletionProvider(Protocol):
    async def complete(
        self,
        system_instruction: str,
        history: list[ConversationTurn],
        *,
        tools: list[dict] | None = None,
        tool_choice: str | None = None,
        tool_round: tuple[ToolCallRequest, dict[str, str]] | None = None,
    ) -> CompletionResult: ...


def to_completion_result(message) -> CompletionResult:
    """Adapt a chat model message to the tagged union.

    Raises EmptyResponseError when the message has neither tool calls nor text.
    """
    tool_calls = getattr(message, "tool_calls", None) or []
    if tool_calls:
        requests = [
            {
                "id": call.get("id") or f"call_{i}",
                "name": call["name"],
                "arguments": call.get("args") or {},
            }
            for i, call in enumerate(tool_calls)
        ]
        return ToolCallRequest(requests=requests, message=message)

    text = message_text(message).strip()
    if not text:
        raise EmptyResponseError("Empty response received from the completion provider")
    return TextReply(text=text)


def history_messages(system_instruction: str, history: list[ConversationTurn]) -> list:
    messages: list = [{"role": "system", "content": system_instruction}]
    for turn in history:
        messages.append({"role": turn["role"], "content": turn["text"]})
    return messages


class ChatProvider:
    """CompletionProvider backed by ChatGoogleGenerativeAI."""

    def __init__(self, model: str | None = None, temperature: float | None = None):
        config = get_config()
        self.model = model or config["chat_model"]
        self.temperature = config.get("chat_temperature", 0.7) if temperature is None else temperature
        self._llm = None

    @property
    def llm(self):
        if self._llm is None:
            self._llm = ChatGoogleGenerativeAI(
                model=self.model,
                temperature=self.temperature,
                max_retries=get_config().get("sdk_max_retries", 1),
            )
        return self._llm

    async def complete(
        self,
        system_instruction: str,
        history: list[ConversationTurn],
        *,
        tools: list[dict] | None = None,
        tool_choice: str | None = None,
        tool_round: tuple[ToolCallRequest, dict[str, str]] | None = None,
    ) -> CompletionResult:
        messages = history_messages(system_instruction, history)
        if tool_round is not None:
            request, formatted = tool_round
            messages.append(request.message)
            for call in request.requests:
                messages.append(ToolMessage(content=formatted[call["id"]], tool_call_id=call["id"]))

        runnable = self.llm
        if tools:
            kwargs = {}
            if tool_choice:
                kwargs["tool_choice"] = _TOOL_CHOICE[tool_choice]
            runnable = self.llm.bind_tools(tools, **kwargs)

        try:
            response = await runnable.ainvoke(messages)
        except Exception as exc:
            raise TransportError(f"{type(exc).__name__}: {exc}") from exc
        return to_completion_result(response)
