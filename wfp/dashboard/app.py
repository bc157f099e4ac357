"""Workflow Planner — Streamlit chat UI for designing n8n workflows."""

import sys
from pathlib import Path

# Add project root to path so 'wfp' package is importable
sys.path.insert(0, str(Path(__file__).resolve().parent.parent.parent))

import asyncio
import random

import streamlit as st

from wfp.config import get_config
from wfp.errors import OperationInFlightError
from wfp.orchestrator import RETRY_LABELS, ConversationOrchestrator, build_orchestrator
from wfp.state import new_session

LOADING_MESSAGES = [
    "The AI workflow builder is thinking...",
    "Analyzing your automation needs...",
    "Crafting the perfect workflow...",
    "Consulting the automation spirits...",
    "Building something amazing...",
    "Almost there, just dotting the i's...",
    "Optimizing for maximum efficiency...",
    "Putting the pieces together...",
]

ACTION_LABELS = {
    "diagram": "Diagram it!",
    "request_changes": "Request changes",
    "explain": "Explain the design",
    "build": "Let's Build It!",
    "download": "Download Workflow JSON",
    "retry_diagram": "Try the diagram again",
}

ACTION_METHODS = {
    "diagram": "request_diagram",
    "request_changes": "request_changes",
    "explain": "explain",
    "build": "build",
    "download": "download",
    "retry_diagram": "retry_diagram",
    "retry": "retry",
}

st.set_page_config(page_title="n8n Workflow Planner", layout="wide")
st.title("n8n Workflow Planner")
st.markdown(
    "Describe a process you want to automate. The assistant asks a few clarifying "
    "questions, proposes a design, draws it as a diagram and finally builds an n8n "
    "workflow JSON you can import with **Workflows > Import from File**."
)


# ---------------------------------------------------------------------------
# Session bootstrap: the session id and tools flag live in the query string
# so they survive a full reset of st.session_state.
# ---------------------------------------------------------------------------


def _session_id() -> str:
    session_id = st.query_params.get("session")
    if not session_id:
        session_id = new_session()["session_id"]
        st.query_params["session"] = session_id
    return session_id


def _tools_flag() -> bool:
    flag = st.query_params.get("tools")
    if flag is None:
        return bool(get_config().get("tools_enabled", True))
    return flag == "on"


def _load_orchestrator() -> ConversationOrchestrator:
    """Build a runtime around the stored session, restoring a snapshot on first load."""
    tools_enabled = _tools_flag()
    state = st.session_state.get("wfp_state")
    if state is not None:
        return build_orchestrator(tools_enabled=tools_enabled, state=state)

    session_id = _session_id()
    orchestrator = build_orchestrator(tools_enabled=tools_enabled, state=new_session(session_id))
    if orchestrator.restore_snapshot(session_id):
        st.toast("Conversation restored.")
    st.session_state["wfp_state"] = orchestrator.state
    return orchestrator


orchestrator = _load_orchestrator()

tools_enabled = st.toggle(
    "Use n8n tools (MCP)",
    value=_tools_flag(),
    key="tools_toggle",
    help="When enabled, the assistant looks up real n8n nodes and documentation "
    "while it plans. Switching reloads the assistant; the conversation is kept.",
)

if "draft_box" not in st.session_state:
    st.session_state["draft_box"] = orchestrator.state["input_draft"]

if tools_enabled != _tools_flag():
    orchestrator.set_draft(st.session_state.get("draft_box", ""))
    orchestrator.save_snapshot()
    st.query_params["tools"] = "on" if tools_enabled else "off"
    st.session_state.clear()
    st.rerun()

st.divider()


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def _render_event(event: dict) -> None:
    kind = event["type"]
    role = "user" if kind == "user" else "assistant"
    with st.chat_message(role):
        if kind in ("user", "message"):
            st.markdown(event["text"])
        elif kind == "diagram":
            if event.get("svg"):
                st.markdown(event["svg"], unsafe_allow_html=True)
            with st.expander("Mermaid source"):
                st.code(event["diagram"], language="mermaid")
        elif kind == "notice":
            st.info(event["text"])
        elif kind == "error":
            st.error(event["text"])
            if event.get("diagram"):
                st.code(event["diagram"], language="mermaid")


def _run(method: str) -> None:
    """Run one orchestrator operation with a rotating loading message."""
    with st.status(random.choice(LOADING_MESSAGES), expanded=False) as status:

        def _listen(event: dict) -> None:
            if event["type"] == "notice":
                status.update(label=event["text"])
            elif event["type"] == "operation_ended":
                status.update(label="Done", state="complete")

        orchestrator.listener = _listen
        try:
            if method == "submit":
                asyncio.run(orchestrator.submit(st.session_state.get("draft_box", "")))
                st.session_state["clear_draft"] = True
            else:
                asyncio.run(getattr(orchestrator, method)())
        except (ValueError, OperationInFlightError) as exc:
            status.update(label=str(exc), state="error")
            return

    st.session_state["wfp_state"] = orchestrator.state
    st.rerun()


for event in orchestrator.state["display_log"]:
    _render_event(event)

downloaded = orchestrator.state["downloaded_path"]
if downloaded and Path(downloaded).exists():
    st.download_button(
        label="Save workflow JSON",
        data=Path(downloaded).read_text(encoding="utf-8"),
        file_name=Path(downloaded).name,
        mime="application/json",
    )


# ---------------------------------------------------------------------------
# Actions and input
# ---------------------------------------------------------------------------

actions = orchestrator.available_actions()
if actions:
    columns = st.columns(len(actions))
    for column, action in zip(columns, actions):
        if action == "retry":
            phase = orchestrator.state["retry_context"]["failed_phase"]
            label = RETRY_LABELS[phase]
        else:
            label = ACTION_LABELS[action]
        if column.button(label, key=f"action_{action}", type="primary"):
            _run(ACTION_METHODS[action])

if st.session_state.pop("clear_draft", False):
    st.session_state["draft_box"] = ""

placeholder = (
    "Describe what you want to automate..."
    if orchestrator.state["stage"] == "initial"
    else "Type your answer..."
)
st.text_area("Message", key="draft_box", height=120, placeholder=placeholder)

send_col, new_col = st.columns([1, 1])
if send_col.button("Send", type="primary"):
    if not st.session_state.get("draft_box", "").strip():
        st.error("Please enter a message.")
    else:
        _run("submit")

if new_col.button("New conversation"):
    orchestrator.reset()
    st.query_params["session"] = orchestrator.state["session_id"]
    st.session_state["wfp_state"] = orchestrator.state
    st.session_state["clear_draft"] = True
    st.rerun()
