"""LangGraph StateGraph for the diagram repair loop.

render ──ok──> END
   │fail
   ├─ retry_count < MAX_DIAGRAM_RETRIES ──> repair ──> render
   └─ otherwise ──> exhausted ──> END

A repair call that fails still counts as an attempt, so a broken provider
also ends in ``exhausted`` instead of looping.
"""

import sys
from typing import Callable, Literal, TypedDict

from langgraph.graph import END, StateGraph

from wfp.agents.chat import CompletionProvider, TextReply
from wfp.errors import EmptyResponseError, TransportError
from wfp.utils.diagram import DiagramValidator
from wfp.utils.parsing import strip_diagram_fences

MAX_DIAGRAM_RETRIES = 3

REPAIR_SYSTEM_PROMPT = (
    "You are a Mermaid diagram syntax expert. "
    "Fix syntax errors and return only valid Mermaid code."
)


def build_repair_prompt(diagram: str, diagnostic: str) -> str:
    """Repair instruction embedding the diagnostic and the failing diagram."""
    return f"""\
The Mermaid diagram has a syntax error. Please fix it and return ONLY the corrected Mermaid code, nothing else.

Error message: {diagnostic}

Broken diagram:
```mermaid
{diagram}
```

CRITICAL FIXES TO APPLY:
1. Remove ALL special characters from labels: no parentheses (), hyphens -, colons :, commas, ampersands &, quotes
2. Use ONLY simple plain text in labels
3. Node IDs must use only letters and numbers (no spaces or special chars)
4. Use only --> for arrows
5. Replace problematic labels:
   - "HTTP Request - List Orders" -> "HTTP Request List Orders"
   - "Retry (3x)" -> "Retry 3 times"
   - "Wait 5s, then continue" -> "Wait then continue"
   - "Save & Notify" -> "Save and Notify"

Return ONLY the fixed Mermaid code starting with "graph TD" - no markdown fences, no explanation."""


class RepairState(TypedDict):
    diagram: str
    status: Literal["rendering", "repairing", "rendered", "exhausted"]
    svg: str | None
    diagnostic: str | None
    retry_count: int  # Repair attempts made in this diagram lineage.
    repairs: int  # Repair calls made during this run.
    repair_failed: bool


class DiagramRepairLoop:
    def __init__(
        self,
        validator: DiagramValidator,
        provider: CompletionProvider,
        notify: Callable[[dict], None] | None = None,
    ):
        self.validator = validator
        self.provider = provider
        self.notify = notify
        self.graph = self._build_graph()

    async def _render(self, state: RepairState) -> dict:
        result = await self.validator.render(state["diagram"])
        if result["success"]:
            return {"status": "rendered", "svg": result["svg"], "diagnostic": None, "retry_count": 0}
        print(f"[WFP] Diagram render failed: {result['diagnostic']}", file=sys.stderr)
        return {"status": "repairing", "svg": None, "diagnostic": result["diagnostic"]}

    async def _repair(self, state: RepairState) -> dict:
        attempt = state["retry_count"] + 1
        if self.notify is not None:
            self.notify({
                "type": "notice",
                "phase": "diagram",
                "text": f"Fixing diagram syntax... Attempt {attempt} of {MAX_DIAGRAM_RETRIES}",
                "attempt": attempt,
                "max_attempts": MAX_DIAGRAM_RETRIES,
            })

        updates = {"retry_count": attempt, "repairs": state["repairs"] + 1, "repair_failed": True}
        prompt = build_repair_prompt(state["diagram"], state["diagnostic"] or "Unknown syntax error")
        try:
            reply = await self.provider.complete(REPAIR_SYSTEM_PROMPT, [{"role": "user", "text": prompt}])
        except (TransportError, EmptyResponseError) as exc:
            print(f"[WFP] Diagram repair call failed: {exc!r}", file=sys.stderr)
            return updates

        fixed = strip_diagram_fences(reply.text) if isinstance(reply, TextReply) else ""
        if not fixed:
            print("[WFP] Diagram repair returned no diagram", file=sys.stderr)
            return updates
        return {**updates, "diagram": fixed, "repair_failed": False, "status": "rendering"}

    def _exhausted(self, state: RepairState) -> dict:
        print(
            f"[WFP] Diagram repair exhausted after {state['retry_count']} attempts",
            file=sys.stderr,
        )
        return {"status": "exhausted"}

    def _route_after_render(self, state: RepairState) -> str:
        if state["status"] == "rendered":
            return "end"
        if state["retry_count"] >= MAX_DIAGRAM_RETRIES:
            return "exhausted"
        return "repair"

    def _route_after_repair(self, state: RepairState) -> str:
        if not state["repair_failed"]:
            return "render"
        if state["retry_count"] >= MAX_DIAGRAM_RETRIES:
            return "exhausted"
        return "repair"

    def _build_graph(self):
        workflow = StateGraph(RepairState)

        workflow.add_node("render", self._render)
        workflow.add_node("repair", self._repair)
        workflow.add_node("exhausted", self._exhausted)

        workflow.set_entry_point("render")

        workflow.add_conditional_edges(
            "render",
            self._route_after_render,
            {"end": END, "repair": "repair", "exhausted": "exhausted"},
        )
        workflow.add_conditional_edges(
            "repair",
            self._route_after_repair,
            {"render": "render", "repair": "repair", "exhausted": "exhausted"},
        )
        workflow.add_edge("exhausted", END)

        return workflow.compile()

    async def run(self, diagram: str, retry_count: int = 0) -> RepairState:
        """Render ``diagram``, repairing it until it renders or attempts run out.

        ``retry_count`` continues an existing lineage; pass 0 for a new one.
        """
        initial: RepairState = {
            "diagram": diagram,
            "status": "rendering",
            "svg": None,
            "diagnostic": None,
            "retry_count": retry_count,
            "repairs": 0,
            "repair_failed": False,
        }
        return await self.graph.ainvoke(initial)
