"""Input and document validation.

``validate_input`` guards user text before it reaches a provider;
``validate_workflow_document`` decides whether a candidate document becomes
an Artifact. Validity is all-or-nothing: nothing is partially accepted.
"""

import json

from wfp.errors import ParseError, ShapeError

REQUIRED_DOCUMENT_FIELDS = ("name", "nodes", "connections")


def validate_input(text: str) -> str:
    """Validate that user input is a non-empty string.

    Returns the stripped input on success.
    Raises ValueError if input is empty or whitespace-only.
    """
    if not isinstance(text, str) or not text.strip():
        raise ValueError("Input must be a non-empty string.")
    return text.strip()


def validate_workflow_document(candidate: str) -> dict:
    """Parse and structurally validate a candidate n8n workflow document.

    Returns {"valid": True, "value": dict} or
    {"valid": False, "reason": str, "error": ParseError | ShapeError}.
    """
    try:
        parsed = json.loads(candidate)
    except (json.JSONDecodeError, TypeError) as exc:
        reason = f"JSON parse error: {exc}"
        return {"valid": False, "reason": reason, "error": ParseError(reason)}

    if not isinstance(parsed, dict):
        reason = "Document must be a JSON object"
        return {"valid": False, "reason": reason, "error": ShapeError(reason)}

    missing = [
        key for key in REQUIRED_DOCUMENT_FIELDS
        if parsed.get(key) is None or (key == "name" and parsed.get(key) == "")
    ]
    if missing:
        reason = f"Missing required fields: {', '.join(missing)}"
        return {"valid": False, "reason": reason, "error": ShapeError(reason)}

    if not isinstance(parsed["nodes"], list):
        reason = "nodes must be an array"
        return {"valid": False, "reason": reason, "error": ShapeError(reason)}

    return {"valid": True, "value": parsed}
