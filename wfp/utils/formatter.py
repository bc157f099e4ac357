"""Output Formatter — compact tool-result text for the provider, and artifact export."""

import json
from datetime import datetime
from pathlib import Path

from wfp.config import get_config, project_path

MAX_LISTED_NODES = 10
MAX_DOC_CHARS = 1000
MAX_GENERIC_CHARS = 500

_NOT_MCP = object()


def _unwrap_mcp(result):
    """Return the decoded JSON of an MCP result (content[0].text), or _NOT_MCP."""
    if not isinstance(result, dict):
        return _NOT_MCP
    content = result.get("content")
    if isinstance(content, list) and content and isinstance(content[0], dict) and content[0].get("text"):
        try:
            return json.loads(content[0]["text"])
        except (json.JSONDecodeError, TypeError):
            return _NOT_MCP
    return _NOT_MCP


def _decoded(result):
    parsed = _unwrap_mcp(result)
    return result if parsed is _NOT_MCP else parsed


def _payload(result) -> tuple[dict | None, bool]:
    """Return (object payload or None, whether it came from an MCP envelope).

    Payloads that decode to anything but a JSON object are not usable by the
    per-tool formatters.
    """
    parsed = _unwrap_mcp(result)
    if parsed is _NOT_MCP:
        return (result if isinstance(result, dict) else None), False
    return (parsed if isinstance(parsed, dict) else None), True


def _format_generic(result) -> str:
    try:
        text = json.dumps(result)
    except (TypeError, ValueError):
        return "Tool result received (could not format)"
    if len(text) < MAX_GENERIC_CHARS:
        return f"Tool result: {text}"
    return "Tool result received (data too large to display)"


def _format_search_nodes(result) -> str:
    payload, from_mcp = _payload(result)
    if payload is None:
        return _format_generic(_decoded(result))
    nodes = (payload.get("results") or payload.get("data")) if from_mcp else payload.get("data")

    if not nodes:
        return "No results found."
    if not isinstance(nodes, list):
        return f"Search returned: {json.dumps(nodes)[:200]}..."

    lines = []
    for i, node in enumerate(nodes[:MAX_LISTED_NODES], 1):
        if not isinstance(node, dict):
            lines.append(f"{i}. {node}")
            continue
        entry = (
            f"{i}. {node.get('displayName') or node.get('name')} ({node.get('nodeType')})\n"
            f"Description: {node.get('description') or 'No description'}"
        )
        if node.get("category"):
            entry += f"\nCategory: {node['category']}"
        lines.append(entry)

    shown = min(len(nodes), MAX_LISTED_NODES)
    text = f"Found {len(nodes)} node(s). Showing {shown}:\n\n" + "\n\n".join(lines)
    if len(nodes) > MAX_LISTED_NODES:
        text += f"\n...and {len(nodes) - MAX_LISTED_NODES} more."
    return text


def _format_get_node(result) -> str:
    payload, from_mcp = _payload(result)
    if payload is None:
        return _format_generic(_decoded(result))
    node = (payload.get("node") or payload.get("data")) if from_mcp else payload.get("data")

    if not node:
        return "Node not found."
    if not isinstance(node, dict):
        return _format_generic(node)

    lines = [
        f"Node: {node.get('displayName') or node.get('name')}",
        f"Type: {node.get('nodeType')}",
        f"Description: {node.get('description') or 'No description'}",
    ]
    if node.get("category"):
        lines.append(f"Category: {node['category']}")
    operations = node.get("operations") or []
    if isinstance(operations, list) and operations:
        more = "..." if len(operations) > 5 else ""
        lines.append(f"Operations: {', '.join(map(str, operations[:5]))}{more}")
    if node.get("package"):
        lines.append(f"Package: {node['package']}")
    return "\n".join(lines)


def _format_docs(result, tool_name: str) -> str:
    payload, from_mcp = _payload(result)
    if payload is None:
        return _format_generic(_decoded(result))
    data = payload.get("data", payload) if from_mcp else payload.get("data")

    if not data:
        return "No information found."

    if tool_name.endswith("resolve-library-id"):
        if isinstance(data, dict) and data.get("id"):
            text = f"Library resolved to: {data['id']}"
            if data.get("description"):
                text += f"\nDescription: {data['description']}"
            return text
        return f"Library found: {json.dumps(data)[:200]}..."

    if isinstance(data, dict) and (data.get("content") or data.get("answer")):
        content = data.get("content") or data.get("answer")
        if isinstance(content, str):
            return content[:MAX_DOC_CHARS] + ("..." if len(content) > MAX_DOC_CHARS else "")
        return json.dumps(content)[:MAX_GENERIC_CHARS] + "..."
    return f"Documentation: {json.dumps(data)[:300]}..."


def format_tool_result(record: dict) -> str:
    """Render one ToolInvocationResult as short plain text for the provider."""
    name = record["name"]
    if record.get("error"):
        return f"Error calling {name}: {record['error']}"

    result = record.get("result")
    if not result:
        return f"No result from {name}"

    base_name = name.split(".", 1)[-1]
    if base_name == "search_nodes":
        return _format_search_nodes(result)
    if base_name == "get_node":
        return _format_get_node(result)
    if base_name in ("resolve-library-id", "query-docs"):
        return _format_docs(result, base_name)

    return _format_generic(_decoded(result))


def write_workflow(artifact: dict, output_dir: Path | None = None, now: datetime | None = None) -> Path:
    """Write a validated workflow document as pretty JSON.

    The file name carries a second-resolution timestamp; an existing file
    with the same name gets a numeric suffix instead of being overwritten.
    Returns the Path to the written file.
    """
    if output_dir is None:
        output_dir = project_path(get_config()["output_dir"])
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    stamp = (now or datetime.now()).strftime("%Y-%m-%dT%H-%M-%S")
    stem = f"n8n-workflow-{stamp}"
    output_path = output_dir / f"{stem}.json"
    counter = 1
    while output_path.exists():
        counter += 1
        output_path = output_dir / f"{stem} ({counter}).json"

    output_path.write_text(json.dumps(artifact, indent=2), encoding="utf-8")
    return output_path
