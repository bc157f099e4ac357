"""Session state — single source of truth owned by the ConversationOrchestrator."""

import uuid
from typing import Any, Literal, TypedDict

Stage = Literal[
    "initial",
    "clarifying",
    "design_proposed",
    "ready_for_diagram",
    "diagram_generated",
    "building",
    "complete",
]

Phase = Literal[
    "clarification",
    "design_proposal",
    "diagram",
    "explanation",
    "build",
    "download",
]

STAGES: tuple[str, ...] = (
    "initial",
    "clarifying",
    "design_proposed",
    "ready_for_diagram",
    "diagram_generated",
    "building",
    "complete",
)

PHASES: tuple[str, ...] = (
    "clarification",
    "design_proposal",
    "diagram",
    "explanation",
    "build",
    "download",
)


class ConversationTurn(TypedDict):
    role: Literal["user", "assistant"]
    text: str


class RetryContext(TypedDict):
    last_user_input: str  # Exact input of the failed attempt, replayed verbatim.
    failed_phase: Phase
    attempt_count: int
    auxiliary_payload: dict | None  # {"operation": ..., plus op-specific data}


class ToolInvocationRequest(TypedDict):
    id: str
    name: str
    arguments: dict


class ToolInvocationResult(TypedDict):
    id: str
    name: str
    arguments: dict
    result: Any  # None when the call failed
    error: str | None  # None when the call succeeded


class SessionState(TypedDict):
    session_id: str
    turns: list[ConversationTurn]  # Full history. Append-only, never speculative.
    stage: Stage
    clarification_count: int
    diagram_count: int
    diagram_retry_count: int  # Repair attempts in the current diagram lineage.
    current_diagram: str | None
    diagram_status: Literal["none", "rendered", "exhausted"]
    last_design_proposal: str
    retry_context: RetryContext | None  # At most one live context.
    artifact: dict | None  # Validated workflow document.
    downloaded_path: str | None
    display_log: list[dict]  # UI events shown so far; snapshotted as ui_markup.
    input_draft: str  # Unsent input (typed or dictated).


def new_session(session_id: str | None = None) -> SessionState:
    """Return a fresh session in the initial stage."""
    return {
        "session_id": session_id or uuid.uuid4().hex,
        "turns": [],
        "stage": "initial",
        "clarification_count": 0,
        "diagram_count": 0,
        "diagram_retry_count": 0,
        "current_diagram": None,
        "diagram_status": "none",
        "last_design_proposal": "",
        "retry_context": None,
        "artifact": None,
        "downloaded_path": None,
        "display_log": [],
        "input_draft": "",
    }
