"""Tool Call Orchestrator: one provider round with optional tool execution.

A round is: completion call with the tool schemas, sequential execution of
any requested tools under the phase budget, then one follow-up completion
carrying the formatted results. Tool failures never abort the round; they
become failed result records the provider sees like any other result.
"""

import asyncio
import sys

from wfp.agents.chat import CompletionProvider, TextReply, ToolCallRequest
from wfp.config import get_config
from wfp.errors import EmptyResponseError, ToolExecutionError
from wfp.stages import MANDATORY_TOOL_STAGES
from wfp.state import Stage, ToolInvocationRequest, ToolInvocationResult
from wfp.utils.formatter import format_tool_result
from wfp.utils.tool_backends import ToolRegistry

# "chat" covers every conversational round. "build" is the larger budget for
# callers that run tools while producing a document; pass phase="build".
DEFAULT_BUDGETS = {
    "chat": {"timeout_ms": 1500, "max_calls": 2},
    "build": {"timeout_ms": 3000, "max_calls": 2},
}
UNFORMATTABLE_RESULT = "Tool result received (could not format)"


def _safe_format(record: ToolInvocationResult) -> str:
    """Format a result record; a payload the formatter cannot read never aborts the round."""
    try:
        return format_tool_result(record)
    except Exception as exc:
        print(f"[WFP] Could not format result of {record['name']}: {exc!r}", file=sys.stderr)
        return UNFORMATTABLE_RESULT


class ToolCallOrchestrator:
    def __init__(
        self,
        provider: CompletionProvider,
        registry: ToolRegistry | None = None,
        budgets: dict | None = None,
    ):
        self.provider = provider
        self.registry = registry
        self.budgets = budgets or get_config().get("tool_budgets") or DEFAULT_BUDGETS
        self.last_results: list[ToolInvocationResult] = []

    async def _tool_schemas(self) -> list[dict]:
        if self.registry is None:
            return []
        try:
            return await self.registry.tool_schemas()
        except ToolExecutionError as exc:
            print(f"[WFP] Continuing without tools: {exc}", file=sys.stderr)
            return []

    async def complete_with_tools(
        self,
        instruction: str,
        history: list,
        stage: Stage,
        phase: str = "chat",
    ) -> str:
        """Return the final reply text for one round.

        Raises TransportError / EmptyResponseError from the provider, and
        EmptyResponseError if the follow-up asks for tools a second time.
        """
        self.last_results = []
        schemas = await self._tool_schemas()
        tool_choice = None
        if schemas:
            tool_choice = "required" if stage in MANDATORY_TOOL_STAGES else "auto"

        result = await self.provider.complete(
            instruction, history, tools=schemas or None, tool_choice=tool_choice,
        )
        if isinstance(result, TextReply):
            return result.text

        records = await self.execute(result.requests, phase)
        self.last_results = records
        formatted = {record["id"]: _safe_format(record) for record in records}

        followup = await self.provider.complete(
            instruction,
            history,
            tools=schemas or None,
            tool_choice="auto" if schemas else None,
            tool_round=(result, formatted),
        )
        if isinstance(followup, ToolCallRequest):
            raise EmptyResponseError("Provider requested more tools instead of answering")
        return followup.text

    async def execute(self, requests: list[ToolInvocationRequest], phase: str = "chat") -> list[ToolInvocationResult]:
        """Run requests one at a time; every request id gets exactly one result."""
        budget = self.budgets.get(phase) or self.budgets["chat"]
        timeout_ms = budget["timeout_ms"]
        max_calls = budget["max_calls"]

        results = []
        for index, request in enumerate(requests):
            record: ToolInvocationResult = {
                "id": request["id"],
                "name": request["name"],
                "arguments": request["arguments"],
                "result": None,
                "error": None,
            }
            if index >= max_calls:
                record["error"] = f"Skipped: tool call budget of {max_calls} exhausted"
                results.append(record)
                continue
            if self.registry is None:
                record["error"] = "No tool backend configured"
                results.append(record)
                continue

            print(f"[WFP] Executing tool {request['name']} ({phase}, {timeout_ms}ms)", file=sys.stderr)
            try:
                record["result"] = await asyncio.wait_for(
                    self.registry.call(request["name"], request["arguments"]),
                    timeout=timeout_ms / 1000,
                )
            except asyncio.TimeoutError:
                record["error"] = f"Timed out after {timeout_ms}ms"
            except Exception as exc:
                record["error"] = str(exc) or type(exc).__name__
            if record["error"]:
                print(f"[WFP] Tool {request['name']} failed: {record['error']}", file=sys.stderr)
            results.append(record)
        return results
