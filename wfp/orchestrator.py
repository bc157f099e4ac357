"""Conversation orchestrator. Owns the session and drives every operation.

All session data lives in one SessionState dict held by the orchestrator.
Operations are serialized: while one is in flight every other call raises
OperationInFlightError, which is how the UI keeps input disabled.

Turns are appended only after a provider call fully succeeds. A failure
records a RetryContext tagged with the phase of the current stage; ``retry``
replays that exact input through the same operation.
"""

import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Callable

from wfp.agents.builder import ClaudeDocumentProvider, DocumentGenerationLoop, extract_workflow_design
from wfp.agents.chat import ChatProvider, TextReply
from wfp.agents.tools import ToolCallOrchestrator
from wfp.config import get_config, project_path
from wfp.errors import EmptyResponseError, OperationInFlightError, TransportError
from wfp.graph import DiagramRepairLoop
from wfp.stages import advance, classify_reply, instructions_for, phase_for_stage
from wfp.state import Phase, SessionState, new_session
from wfp.utils.diagram import DiagramValidator, KrokiRenderer
from wfp.utils.formatter import write_workflow
from wfp.utils.retry import RetryNotice, RetryPolicy
from wfp.utils.snapshot import FileSnapshotBackend, SessionSnapshotStore
from wfp.utils.tool_backends import build_registry
from wfp.utils.validator import validate_input

DIAGRAM_REQUEST_DISPLAY = "Please create the workflow diagram."
DIAGRAM_REQUEST_PROMPT = "Please create a detailed Mermaid workflow diagram based on our discussion."

EXPLANATION_SYSTEM_PROMPT = (
    "You are a workflow automation expert speaking directly to a user. Use first person (I) "
    "and explain your design decisions confidently and personally."
)

EXPLANATION_PROMPT = """\
Based on the workflow diagram that was just created, write a first-person explanation directly \
to the user explaining:
1. Why I chose this specific workflow design for their needs
2. The intentional design decisions I made and why each step matters
3. How I applied n8n best practices in this design
4. What specific benefits they'll get from this approach

Write as "I" speaking directly to "you" - be conversational, educational, and confident about \
the design choices. Explain your reasoning behind using certain nodes, the order of operations, \
and why this structure will be effective for their use case. Maximum 3-4 paragraphs."""

EXPLANATION_FALLBACK = "The workflow design is ready. You can now proceed to build it!"

FAILURE_MESSAGES: dict[str, str] = {
    "clarification": "Sorry, I couldn't process your answer.",
    "design_proposal": "Sorry, I couldn't prepare the design proposal.",
    "diagram": "Sorry, I couldn't generate the workflow diagram.",
    "explanation": "Could not generate the design explanation.",
    "build": "Sorry, I encountered an error building the workflow.",
    "download": "Download failed.",
}

RETRY_LABELS: dict[str, str] = {
    "clarification": "Try Again",
    "design_proposal": "Try Again",
    "diagram": "Diagram it!",
    "explanation": "Explain the design",
    "build": "Let's Build It!",
    "download": "Download Workflow JSON",
}

_SILENT_EVENTS = ("operation_started", "operation_ended")


class ConversationOrchestrator:
    def __init__(
        self,
        tool_chat: ToolCallOrchestrator,
        repair_loop: DiagramRepairLoop,
        builder: DocumentGenerationLoop,
        snapshots: SessionSnapshotStore,
        state: SessionState | None = None,
        retry_policy: RetryPolicy | None = None,
        listener: Callable[[dict], None] | None = None,
    ):
        self.tool_chat = tool_chat
        self.repair_loop = repair_loop
        self.builder = builder
        self.snapshots = snapshots
        self.state = state or new_session()
        self.retry_policy = retry_policy or RetryPolicy()
        self.listener = listener
        self._busy = False

        self.repair_loop.notify = self._emit
        self.builder.notify = self._emit

    # --- Events and bookkeeping ---

    @property
    def busy(self) -> bool:
        return self._busy

    @property
    def tools_enabled(self) -> bool:
        return self.tool_chat.registry is not None

    def _emit(self, event: dict) -> None:
        if event["type"] not in _SILENT_EVENTS:
            self.state["display_log"].append(event)
        if self.listener is not None:
            self.listener(event)

    @asynccontextmanager
    async def _operation(self, name: str):
        if self._busy:
            raise OperationInFlightError(f"Cannot start '{name}' while another operation is running.")
        self._busy = True
        self._emit({"type": "operation_started", "operation": name})
        try:
            yield
        finally:
            self._busy = False
            self._emit({"type": "operation_ended", "operation": name})

    def _require(self, action: str) -> None:
        if self._busy:
            raise OperationInFlightError(f"Cannot start '{action}' while another operation is running.")
        if action not in self.available_actions():
            raise ValueError(f"'{action}' is not available in stage '{self.state['stage']}'.")

    def _retry_notifier(self, phase: Phase) -> Callable[[RetryNotice], None]:
        def _notify(notice: RetryNotice) -> None:
            self._emit({
                "type": "notice",
                "phase": phase,
                "text": f"Connection issue, retrying... (Attempt {notice.attempt}/{notice.max_retries})",
                "attempt": notice.attempt,
                "max_attempts": notice.max_retries,
            })
        return _notify

    def _fail(self, phase: Phase, user_input: str, payload: dict, error: BaseException) -> None:
        print(f"[WFP] {phase} failed: {error!r}", file=sys.stderr)
        previous = self.state["retry_context"]
        count = 1
        if previous and previous["failed_phase"] == phase and previous["last_user_input"] == user_input:
            count = previous["attempt_count"] + 1
        self.state["retry_context"] = {
            "last_user_input": user_input,
            "failed_phase": phase,
            "attempt_count": count,
            "auxiliary_payload": payload,
        }
        self._emit({
            "type": "error",
            "phase": phase,
            "text": f"{FAILURE_MESSAGES[phase]} ({error}) Please try again.",
        })

    def _succeed(self) -> None:
        self.state["retry_context"] = None

    def available_actions(self) -> list[str]:
        """Buttons the UI should offer for the current state."""
        if self._busy:
            return []
        stage = self.state["stage"]
        actions: list[str] = []
        if stage == "design_proposed":
            actions = ["diagram", "request_changes"]
        elif stage == "diagram_generated":
            actions = ["explain", "build", "request_changes"]
            if self.state["diagram_status"] == "exhausted":
                actions.append("retry_diagram")
        elif stage == "complete":
            actions = ["download", "request_changes"]
        elif stage in ("ready_for_diagram", "building"):
            actions = ["request_changes"]
        if self.state["retry_context"] is not None:
            actions.append("retry")
        return actions

    # --- Conversation ---

    async def submit(self, text: str) -> None:
        """Send user text through the current stage. Raises ValueError on empty input."""
        text = validate_input(text)
        async with self._operation("submit"):
            self.state["input_draft"] = ""
            self._emit({"type": "user", "text": text})
            await self._chat_round(text, operation="submit")

    async def request_diagram(self) -> None:
        self._require("diagram")
        async with self._operation("request_diagram"):
            self.state["stage"] = advance(self.state["stage"], "diagram_requested")
            self._emit({"type": "user", "text": DIAGRAM_REQUEST_DISPLAY})
            await self._chat_round(DIAGRAM_REQUEST_PROMPT, operation="request_diagram")

    async def request_changes(self) -> None:
        if self._busy:
            raise OperationInFlightError("Cannot request changes while another operation is running.")
        # Changing the design abandons any failed step.
        self.state["retry_context"] = None
        self.state["stage"] = advance(self.state["stage"], "changes_requested")
        self._emit({
            "type": "message",
            "text": "What would you like to change about the workflow design?",
        })

    async def _chat_round(self, user_text: str, operation: str) -> None:
        config = get_config()
        stage = self.state["stage"]
        spec = instructions_for(stage)
        turns = self.state["turns"] + [{"role": "user", "text": user_text}]
        history = turns[-spec["history_window"]:]
        phase = phase_for_stage(stage)

        if operation == "request_diagram":
            max_attempts = config.get("diagram_request_max_attempts", 4)
            delay = config.get("diagram_request_delay", 1.0)
            backoff = "linear"
        else:
            max_attempts = config.get("chat_max_attempts", 2)
            delay = config.get("chat_retry_delay", 1.0)
            backoff = "fixed"

        async def call() -> str:
            return await self.tool_chat.complete_with_tools(
                spec["system_instruction"], history, stage, phase="chat",
            )

        outcome = await self.retry_policy.execute(
            call, max_attempts, delay, backoff=backoff, on_retry=self._retry_notifier(phase),
        )
        if not outcome.ok:
            self._fail(phase, user_text, {"operation": operation}, outcome.error)
            return

        reply = outcome.value
        self._succeed()
        self.state["turns"] = turns + [{"role": "assistant", "text": reply}]
        await self._apply_reply(reply)

    async def _apply_reply(self, reply: str) -> None:
        kind, before, diagram, after = classify_reply(reply)
        stage = self.state["stage"]

        if kind == "text":
            self._emit({"type": "message", "text": reply})
            if stage in ("initial", "clarifying"):
                self.state["clarification_count"] += 1
            self.state["stage"] = advance(stage, "reply")
            if self.state["stage"] == "design_proposed":
                self.state["last_design_proposal"] = reply
            return

        if before.strip():
            self._emit({"type": "message", "text": before.strip()})
        self.state["stage"] = advance(stage, "diagram_reply")
        self.state["diagram_count"] += 1
        # A freshly generated diagram starts a new repair lineage.
        self.state["diagram_retry_count"] = 0
        await self._render_diagram(diagram)
        if after.strip():
            self._emit({"type": "message", "text": after.strip()})

    async def _render_diagram(self, diagram: str) -> None:
        result = await self.repair_loop.run(diagram, retry_count=self.state["diagram_retry_count"])
        self.state["current_diagram"] = result["diagram"]
        self.state["diagram_retry_count"] = result["retry_count"]

        if result["status"] == "rendered":
            self.state["diagram_status"] = "rendered"
            self._emit({"type": "diagram", "diagram": result["diagram"], "svg": result["svg"]})
            if result["repairs"]:
                self._emit({
                    "type": "notice",
                    "phase": "diagram",
                    "text": "Diagram syntax has been automatically corrected and is now displaying properly.",
                })
            return

        self.state["diagram_status"] = "exhausted"
        self._emit({
            "type": "error",
            "phase": "diagram",
            "diagram": result["diagram"],
            "text": "Unable to render diagram. The diagram syntax needs manual correction.",
        })

    async def retry_diagram(self) -> None:
        """Manually restart repair of an exhausted diagram with a fresh attempt budget."""
        self._require("retry_diagram")
        async with self._operation("retry_diagram"):
            self.state["diagram_retry_count"] = 0
            await self._render_diagram(self.state["current_diagram"])

    # --- Explanation, build, download ---

    async def explain(self) -> None:
        self._require("explain")
        async with self._operation("explain"):
            await self._explain()

    async def _explain(self) -> None:
        config = get_config()
        window = config.get("explanation_window", 5)
        history = self.state["turns"][-window:] + [{"role": "user", "text": EXPLANATION_PROMPT}]
        provider = self.tool_chat.provider

        async def call() -> str:
            try:
                reply = await provider.complete(EXPLANATION_SYSTEM_PROMPT, history)
            except EmptyResponseError:
                return ""
            return reply.text if isinstance(reply, TextReply) else ""

        outcome = await self.retry_policy.execute(
            call,
            config.get("chat_max_attempts", 2),
            config.get("chat_retry_delay", 1.0),
            on_retry=self._retry_notifier("explanation"),
            retry_on=(TransportError,),
        )
        if not outcome.ok:
            self._fail("explanation", EXPLANATION_PROMPT, {"operation": "explain"}, outcome.error)
            return

        self._succeed()
        if outcome.value:
            self._emit({"type": "message", "text": f"My design rationale for this workflow:\n\n{outcome.value}"})
        else:
            self._emit({"type": "message", "text": EXPLANATION_FALLBACK})

    async def build(self) -> None:
        self._require("build")
        async with self._operation("build"):
            design = extract_workflow_design(self.state["turns"], get_config().get("history_window", 10))
            await self._build(design)

    async def _build(self, design: str) -> None:
        self.state["stage"] = advance(self.state["stage"], "build_requested")
        self._emit({
            "type": "notice",
            "phase": "build",
            "text": "Building your n8n workflow... This may take a moment.",
        })
        try:
            artifact = await self.builder.generate(design)
        except (TransportError, EmptyResponseError) as exc:
            self._fail("build", design, {"operation": "build"}, exc)
            return

        self._succeed()
        if artifact is None:
            self.state["stage"] = advance(self.state["stage"], "document_rejected")
            self._emit({
                "type": "error",
                "phase": "build",
                "text": "Unable to Generate Workflow. I encountered issues generating a valid JSON "
                        "workflow. Please try rephrasing your workflow requirements or try again.",
            })
            return

        self.state["artifact"] = artifact
        self.state["downloaded_path"] = None
        self.state["stage"] = advance(self.state["stage"], "document_validated")
        self._emit({
            "type": "message",
            "text": "Workflow JSON Generated Successfully! Your n8n workflow is ready for download.",
        })

    async def download(self, output_dir: Path | None = None) -> str | None:
        """Write the artifact to disk once; later calls return the same path."""
        self._require("download")
        existing = self.state["downloaded_path"]
        if existing and Path(existing).exists():
            return existing
        async with self._operation("download"):
            return self._download(self.state["artifact"], output_dir)

    def _download(self, artifact: dict, output_dir: Path | None) -> str | None:
        try:
            path = write_workflow(artifact, output_dir)
        except OSError as exc:
            payload = {"operation": "download", "artifact": artifact,
                       "output_dir": str(output_dir) if output_dir else None}
            self._fail("download", "", payload, exc)
            return None

        self._succeed()
        self.state["downloaded_path"] = str(path)
        self._emit({
            "type": "message",
            "text": f"Download successful! Your workflow JSON has been saved as `{path.name}`. "
                    "Import it into n8n via Workflows > Import from File.",
        })
        return str(path)

    # --- Retry ---

    async def retry(self) -> None:
        """Replay the failed operation with exactly the inputs it failed with."""
        context = self.state["retry_context"]
        if context is None:
            raise ValueError("There is no failed operation to retry.")
        payload = context["auxiliary_payload"] or {}
        operation = payload.get("operation", "submit")

        async with self._operation("retry"):
            if operation in ("submit", "request_diagram"):
                await self._chat_round(context["last_user_input"], operation=operation)
            elif operation == "explain":
                await self._explain()
            elif operation == "build":
                await self._build(context["last_user_input"])
            elif operation == "download":
                output_dir = payload.get("output_dir")
                self._download(payload["artifact"], Path(output_dir) if output_dir else None)
            else:
                raise ValueError(f"Unknown operation to retry: {operation!r}")

    # --- Session lifecycle ---

    def reset(self) -> None:
        """Start a new conversation."""
        if self._busy:
            raise OperationInFlightError("Cannot reset while an operation is running.")
        self.state = new_session()

    def set_draft(self, text: str) -> None:
        self.state["input_draft"] = text

    def append_transcript(self, text: str) -> None:
        """Append a finalized speech transcript to the unsent input."""
        draft = self.state["input_draft"]
        self.state["input_draft"] = f"{draft} {text}".strip() if draft else text.strip()

    def save_snapshot(self) -> dict:
        if self._busy:
            raise OperationInFlightError("Cannot snapshot while an operation is running.")
        return self.snapshots.save(self.state)

    def restore_snapshot(self, session_id: str) -> bool:
        """Swap in a restored session. Returns False (state untouched) if there is none to apply."""
        if self._busy:
            raise OperationInFlightError("Cannot restore while an operation is running.")
        restored = self.snapshots.restore(session_id)
        if restored is None:
            return False
        self.state = restored
        return True


def build_orchestrator(
    tools_enabled: bool | None = None,
    state: SessionState | None = None,
    listener: Callable[[dict], None] | None = None,
) -> ConversationOrchestrator:
    """Wire the orchestrator to the configured providers, renderer and tool servers."""
    config = get_config()
    if tools_enabled is None:
        tools_enabled = config.get("tools_enabled", True)

    provider = ChatProvider()
    registry = build_registry() if tools_enabled else None
    print(f"[WFP] Tools {'enabled' if registry else 'disabled'}", file=sys.stderr)

    return ConversationOrchestrator(
        tool_chat=ToolCallOrchestrator(provider, registry),
        repair_loop=DiagramRepairLoop(DiagramValidator(KrokiRenderer()), provider),
        builder=DocumentGenerationLoop(ClaudeDocumentProvider()),
        snapshots=SessionSnapshotStore(FileSnapshotBackend(project_path(config["snapshot_dir"]))),
        state=state,
        listener=listener,
    )
