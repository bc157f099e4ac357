"""Shared parsing utilities for provider responses."""

import re

_MERMAID_BLOCK_RE = re.compile(r"```\s*mermaid\s*[\r\n]+(.*?)```", re.DOTALL | re.IGNORECASE)
_JSON_FENCE_MARKERS = re.compile(r"```json\n?|```\n?")
_MERMAID_FENCE_MARKERS = re.compile(r"```mermaid\n?|```\n?")


def clean_json_response(text: str) -> str:
    """Remove fences and any prose around the outermost JSON object.

    Keeps the substring between the first '{' and the last '}' so providers
    that wrap the document in commentary still parse.
    """
    cleaned = _JSON_FENCE_MARKERS.sub("", text).strip()
    first = cleaned.find("{")
    last = cleaned.rfind("}")
    if first != -1 and last != -1:
        cleaned = cleaned[first:last + 1]
    return cleaned


def strip_diagram_fences(text: str) -> str:
    """Remove mermaid/plain fences from a diagram-only reply."""
    return _MERMAID_FENCE_MARKERS.sub("", text).strip()


def find_diagram_block(text: str) -> tuple[str, str, str] | None:
    """Split text around its first fenced mermaid block.

    Returns (text_before, diagram, text_after), or None when the text has no
    mermaid block.
    """
    match = _MERMAID_BLOCK_RE.search(text)
    if not match:
        return None
    return text[:match.start()], match.group(1), text[match.end():]


def message_text(message) -> str:
    """Extract plain text from a chat model message.

    Gemini returns a string; Claude may return a list of content blocks.
    """
    content = getattr(message, "content", message)
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(block.get("text", ""))
        return "".join(parts)
    return "" if content is None else str(content)
