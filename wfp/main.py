"""Entry point: interactive terminal session over the conversation orchestrator."""

import asyncio
import sys

from wfp.errors import OperationInFlightError
from wfp.orchestrator import RETRY_LABELS, ConversationOrchestrator, build_orchestrator

HELP = """\
Commands:
  /diagram        create the workflow diagram
  /changes        request changes to the design
  /explain        explain the design
  /build          build the n8n workflow JSON
  /download       save the workflow JSON to the output directory
  /retry          retry the last failed step
  /retry-diagram  retry repairing an unrenderable diagram
  /new            start a new conversation
  /quit           exit
Anything else is sent as a message."""

# command -> (action name in available_actions, orchestrator method)
COMMANDS = {
    "/diagram": ("diagram", "request_diagram"),
    "/changes": ("request_changes", "request_changes"),
    "/explain": ("explain", "explain"),
    "/build": ("build", "build"),
    "/download": ("download", "download"),
    "/retry": ("retry", "retry"),
    "/retry-diagram": ("retry_diagram", "retry_diagram"),
}

_ACTION_COMMANDS = {action: command for command, (action, _) in COMMANDS.items()}


def _print_event(event: dict) -> None:
    kind = event["type"]
    if kind == "message":
        print(f"\nassistant> {event['text']}\n")
    elif kind == "diagram":
        print("\n```mermaid")
        print(event["diagram"].rstrip())
        print("```\n")
    elif kind == "notice":
        print(f"[{event.get('phase', 'info')}] {event['text']}")
    elif kind == "error":
        print(f"\n!! {event['text']}")
        if event.get("diagram"):
            print(event["diagram"].rstrip())
    elif kind == "operation_started":
        print("...thinking...")


def _print_actions(orchestrator: ConversationOrchestrator) -> None:
    actions = orchestrator.available_actions()
    if not actions:
        return
    labels = []
    for action in actions:
        label = _ACTION_COMMANDS.get(action, action)
        if action == "retry":
            phase = orchestrator.state["retry_context"]["failed_phase"]
            label = f"{label} ({RETRY_LABELS[phase]})"
        labels.append(label)
    print(f"[WFP] Next: {', '.join(labels)}")


async def _dispatch(orchestrator: ConversationOrchestrator, line: str) -> bool:
    """Handle one input line. Returns False when the session should end."""
    command = line.strip()
    if command in ("/quit", "/exit"):
        return False
    if command == "/help":
        print(HELP)
        return True
    if command == "/new":
        orchestrator.reset()
        print("[WFP] Started a new conversation.")
        return True

    try:
        if command in COMMANDS:
            _, method = COMMANDS[command]
            result = await getattr(orchestrator, method)()
            if method == "download" and result:
                print(f"[WFP] Output written to: {result}")
        elif command.startswith("/"):
            print(f"Unknown command {command}. Type /help for commands.")
        else:
            await orchestrator.submit(line)
    except (ValueError, OperationInFlightError) as exc:
        print(f"[WFP] {exc}")
    return True


async def _session(tools_enabled: bool | None, first_message: str | None) -> None:
    orchestrator = build_orchestrator(tools_enabled=tools_enabled, listener=_print_event)
    print("Describe the process you want to automate. Type /help for commands.")

    if first_message:
        await _dispatch(orchestrator, first_message)
        _print_actions(orchestrator)

    while True:
        try:
            line = await asyncio.to_thread(input, "you> ")
        except EOFError:
            break
        if not line.strip():
            continue
        if not await _dispatch(orchestrator, line):
            break
        _print_actions(orchestrator)


def run(first_message: str | None = None, tools_enabled: bool | None = None) -> None:
    """Run an interactive planning session in the terminal.

    Args:
        first_message: Optional opening description of the automation.
        tools_enabled: Override for MCP tool use. None uses config default.
    """
    asyncio.run(_session(tools_enabled, first_message))


def main() -> None:
    """CLI entry point — optional opening message as arguments."""
    tools_enabled = None
    args = sys.argv[1:]

    if "--no-tools" in args:
        tools_enabled = False
        args.remove("--no-tools")

    run(" ".join(args) if args else None, tools_enabled=tools_enabled)


if __name__ == "__main__":
    main()
