"""Tests for tool-result formatting and workflow export."""

import json
from datetime import datetime

from wfp.utils.formatter import format_tool_result, write_workflow


def _mcp(payload: dict) -> dict:
    return {"content": [{"type": "text", "text": json.dumps(payload)}]}


def _record(name, result=None, error=None):
    return {"id": "call_1", "name": name, "arguments": {}, "result": result, "error": error}


class TestFormatToolResult:
    def test_error_record(self):
        text = format_tool_result(_record("search_nodes", error="Timed out after 1500ms"))
        assert text == "Error calling search_nodes: Timed out after 1500ms"

    def test_empty_result(self):
        assert format_tool_result(_record("search_nodes", result=None)) == "No result from search_nodes"

    def test_search_nodes_lists_at_most_ten(self):
        nodes = [
            {"displayName": f"Node {i}", "nodeType": f"nodes-base.n{i}", "description": "d"}
            for i in range(15)
        ]
        text = format_tool_result(_record("search_nodes", result=_mcp({"results": nodes})))

        assert text.startswith("Found 15 node(s). Showing 10:")
        assert "10. Node 9 (nodes-base.n9)" in text
        assert "Node 10" not in text
        assert text.endswith("...and 5 more.")

    def test_search_nodes_no_results(self):
        assert format_tool_result(_record("search_nodes", result=_mcp({"results": []}))) == "No results found."

    def test_get_node_summary(self):
        node = {
            "displayName": "Slack",
            "nodeType": "nodes-base.slack",
            "description": "Consume Slack API",
            "operations": ["post", "update", "delete", "get", "getAll", "search"],
        }
        text = format_tool_result(_record("get_node", result=_mcp({"node": node})))

        assert "Node: Slack" in text
        assert "Type: nodes-base.slack" in text
        assert "Operations: post, update, delete, get, getAll..." in text

    def test_qualified_context7_docs_truncated(self):
        content = "x" * 5000
        text = format_tool_result(_record("Context7.query-docs", result=_mcp({"content": content})))
        assert len(text) == 1003
        assert text.endswith("...")

    def test_resolve_library_id(self):
        payload = {"data": {"id": "/n8n-io/n8n-docs", "description": "n8n documentation"}}
        text = format_tool_result(_record("Context7.resolve-library-id", result=_mcp(payload)))
        assert text == "Library resolved to: /n8n-io/n8n-docs\nDescription: n8n documentation"

    def test_generic_small_result(self):
        assert format_tool_result(_record("list_nodes", result={"ok": True})) == 'Tool result: {"ok": true}'

    def test_generic_large_result(self):
        text = format_tool_result(_record("list_nodes", result={"blob": "y" * 600}))
        assert text == "Tool result received (data too large to display)"


class TestWriteWorkflow:
    def test_timestamped_file_name(self, tmp_path, valid_workflow):
        path = write_workflow(valid_workflow, tmp_path, now=datetime(2026, 3, 1, 14, 5, 9))

        assert path.name == "n8n-workflow-2026-03-01T14-05-09.json"
        assert json.loads(path.read_text(encoding="utf-8")) == valid_workflow

    def test_existing_file_not_overwritten(self, tmp_path, valid_workflow):
        now = datetime(2026, 3, 1, 14, 5, 9)
        first = write_workflow(valid_workflow, tmp_path, now=now)
        second = write_workflow({**valid_workflow, "name": "Other"}, tmp_path, now=now)

        assert first != second
        assert json.loads(first.read_text(encoding="utf-8"))["name"] == "Invoice Approval"

    def test_default_output_dir_from_config(self, tmp_path, mock_config, valid_workflow):
        mock_config["output_dir"] = str(tmp_path / "out")
        path = write_workflow(valid_workflow)
        assert path.parent == tmp_path / "out"


class TestNonObjectPayloads:
    def test_array_payload_falls_back_to_generic_text(self):
        result = {"content": [{"type": "text", "text": '["Slack", "Gmail"]'}]}
        assert format_tool_result(_record("search_nodes", result=result)) == 'Tool result: ["Slack", "Gmail"]'

    def test_scalar_node_payload(self):
        result = {"content": [{"type": "text", "text": "42"}]}
        assert format_tool_result(_record("get_node", result=result)) == "Tool result: 42"

    def test_string_docs_payload(self):
        result = {"content": [{"type": "text", "text": '"see the webhook docs"'}]}
        text = format_tool_result(_record("Context7.query-docs", result=result))
        assert text == 'Tool result: "see the webhook docs"'

    def test_node_list_with_plain_names(self):
        text = format_tool_result(_record("search_nodes", result=_mcp({"results": ["Slack", "Gmail"]})))
        assert text == "Found 2 node(s). Showing 2:\n\n1. Slack\n\n2. Gmail"

    def test_node_that_is_not_an_object(self):
        assert format_tool_result(_record("get_node", result=_mcp({"node": "Slack"}))) == 'Tool result: "Slack"'
