"""Stage machine: per-stage instructions and the pure transition table.

Stages only move on classified outcomes of provider calls or on explicit user
actions. Whether a reply carries a diagram is decided by ``classify_reply``
alone; the provider never reports a stage.
"""

from typing import Literal, TypedDict

from wfp.config import get_config
from wfp.state import Phase, Stage
from wfp.utils.parsing import find_diagram_block

Outcome = Literal[
    "reply",
    "diagram_reply",
    "diagram_requested",
    "build_requested",
    "document_validated",
    "document_rejected",
    "changes_requested",
]

ToolChoice = Literal["required", "auto"]

MANDATORY_TOOL_STAGES = ("initial", "clarifying")

BASE_PROMPT = (
    "You are an expert workflow automation consultant specializing in n8n workflows. "
    "Your goal is to help users plan and design automation workflows through "
    "collaborative dialogue. Always be friendly, encouraging, and educational."
)

DESIGN_PRINCIPLES = """\
Key n8n design principles to follow:
- Use descriptive node names that explain their function
- Prefer Switch nodes over IF nodes for conditional logic
- Start with cheaper AI models before expensive ones
- Implement retry logic (3-5 retries with delays) for external APIs
- Use centralized configuration nodes early in workflows
- Group related fields using dot notation
- Build in human oversight for critical decisions"""

_NO_JSON_CONSTRAINTS = """\
**CRITICAL CONSTRAINTS:**
- DO NOT mention JSON workflow generation or n8n JSON exports
- DO NOT offer to build or generate workflow JSON files
- {focus}
- JSON workflow generation happens ONLY after the diagram stage"""

INITIAL_PROMPT = f"""\
{BASE_PROMPT}

The user has just described what they want to automate.

{_NO_JSON_CONSTRAINTS.format(focus='Focus ONLY on understanding requirements and asking clarifying questions')}

You need to ask 2-3 clarifying questions to better understand their needs. Focus on:
1. What specific systems or tools they're currently using
2. Whether these systems have APIs or integration capabilities
3. The current manual process they follow
4. The expected volume and frequency of the workflow

Be conversational but concise. After the user provides this information, you'll help them \
create a detailed workflow diagram.

{DESIGN_PRINCIPLES}"""

CLARIFYING_PROMPT = f"""\
{BASE_PROMPT}

Continue gathering information about the user's workflow needs. After this response, you \
should have enough information to provide a design proposal.

{_NO_JSON_CONSTRAINTS.format(focus='Focus ONLY on gathering remaining requirements')}

IMPORTANT: After this round, provide a clear, concise design proposal describing:
1. The overall workflow architecture
2. Key steps and decision points
3. Systems/integrations involved
4. Data flow between steps

DO NOT create a mermaid diagram yet - just describe the design in clear text. The system \
will show the user a "Diagram it" button after your response.

{DESIGN_PRINCIPLES}"""

DESIGN_PROPOSED_PROMPT = f"""\
{BASE_PROMPT}

The user has requested changes to the workflow design. Listen carefully to their feedback \
and provide an updated design proposal in text.

{_NO_JSON_CONSTRAINTS.format(focus='Focus ONLY on design improvements and clarifications')}

Describe:
1. What changed based on their feedback
2. The updated workflow architecture
3. Key steps and decision points
4. Systems/integrations involved
5. Data flow between steps

DO NOT create a mermaid diagram - just describe the updated design. The system will show \
options to proceed.

{DESIGN_PRINCIPLES}"""

DIAGRAM_PROMPT = f"""\
{BASE_PROMPT}

Based on the conversation so far, create a detailed Mermaid diagram showing the workflow \
the user wants to automate.

CRITICAL MERMAID SYNTAX RULES - FOLLOW EXACTLY:
1. Node IDs: Use ONLY letters and numbers (A, B, Step1, Fetch2) - NO spaces, hyphens, or special characters
2. Node Labels: Use ONLY simple plain text - NO parentheses (), hyphens -, colons :, commas, ampersands &, or special characters
3. Node shapes: [text] for rectangles, {{text}} for diamonds
4. Arrows: Use ONLY --> for connections (avoid other arrow types)
5. Edge labels: Use |text| format for labels on arrows

FORBIDDEN IN LABELS (will cause parse errors):
- Parentheses: (retry)
- Hyphens: HTTP-Request
- Colons: 5s:10s
- Commas: item1, item2
- Ampersands: save & notify
- Quotes: "text"

CORRECT EXAMPLES:
- A[Fetch Orders]
- B[HTTP Request with Retry]
- C{{Has New Data}}
- D[Send Slack Message]

WRONG EXAMPLES (NEVER DO THIS):
- A[HTTP Request - List Orders] (hyphen)
- B[Retry (3x)] (parentheses)
- C[Wait 5s, then continue] (comma)
- D[Save & Notify] (ampersand)

The diagram should:
1. Show all major steps in the process
2. Include decision points and branches
3. Indicate which systems/APIs are involved at each step
4. Use clear, descriptive labels
5. Follow n8n best practices

CORRECT EXAMPLE:
```mermaid
graph TD
    Start[Daily Trigger] --> Fetch[Fetch YouTube Data]
    Fetch --> Check{{New Videos?}}
    Check -->|Yes| Process[Process Video Data]
    Check -->|No| End1[End Workflow]
    Process --> Save[Save to Database]
    Save --> Notify[Send Notification]
    Notify --> End2[End Workflow]
```

AVOID THESE COMMON ERRORS:
- Don't use undefined node IDs
- Don't use spaces in node IDs (use Step1 not "Step 1")
- Don't forget to close brackets/braces
- Don't use special characters in IDs

{DESIGN_PRINCIPLES}"""

STAGE_PROMPTS: dict[str, str] = {
    "initial": INITIAL_PROMPT,
    "clarifying": CLARIFYING_PROMPT,
    "design_proposed": DESIGN_PROPOSED_PROMPT,
    "ready_for_diagram": DIAGRAM_PROMPT,
    "diagram_generated": DIAGRAM_PROMPT,
}

# Stage a failure is attributed to when an operation does not name its own phase.
_STAGE_PHASES: dict[str, Phase] = {
    "initial": "clarification",
    "clarifying": "clarification",
    "design_proposed": "design_proposal",
    "ready_for_diagram": "diagram",
    "diagram_generated": "diagram",
    "building": "build",
    "complete": "download",
}

# (stage, outcome) -> next stage. "changes_requested" is handled for every stage.
_TRANSITIONS: dict[tuple[str, str], Stage] = {
    ("initial", "reply"): "clarifying",
    ("clarifying", "reply"): "design_proposed",
    ("design_proposed", "reply"): "design_proposed",
    ("design_proposed", "diagram_requested"): "ready_for_diagram",
    ("diagram_generated", "diagram_requested"): "ready_for_diagram",
    ("complete", "diagram_requested"): "ready_for_diagram",
    ("initial", "diagram_reply"): "diagram_generated",
    ("clarifying", "diagram_reply"): "diagram_generated",
    ("design_proposed", "diagram_reply"): "diagram_generated",
    ("ready_for_diagram", "diagram_reply"): "diagram_generated",
    ("diagram_generated", "diagram_reply"): "diagram_generated",
    ("diagram_generated", "build_requested"): "building",
    ("complete", "build_requested"): "building",
    ("building", "document_validated"): "complete",
    ("building", "document_rejected"): "diagram_generated",
}


class PromptSpec(TypedDict):
    stage: Stage
    system_instruction: str
    tool_choice: ToolChoice
    history_window: int


def instructions_for(stage: Stage) -> PromptSpec:
    """Return the system instruction and tool policy for a conversational stage."""
    return {
        "stage": stage,
        "system_instruction": STAGE_PROMPTS.get(stage, BASE_PROMPT),
        "tool_choice": "required" if stage in MANDATORY_TOOL_STAGES else "auto",
        "history_window": get_config().get("history_window", 10),
    }


def advance(stage: Stage, outcome: Outcome) -> Stage:
    """Pure transition function. Unknown (stage, outcome) pairs keep the stage."""
    if outcome == "changes_requested":
        return "clarifying"
    return _TRANSITIONS.get((stage, outcome), stage)


def classify_reply(text: str) -> tuple[str, str, str | None, str]:
    """Classify a completion as diagram-bearing or plain text.

    Returns ("diagram", text_before, diagram, text_after) when the reply has
    a fenced mermaid block, else ("text", text, None, "").
    """
    block = find_diagram_block(text)
    if block is None:
        return ("text", text, None, "")
    before, diagram, after = block
    return ("diagram", before, diagram, after)


def phase_for_stage(stage: Stage) -> Phase:
    return _STAGE_PHASES[stage]
