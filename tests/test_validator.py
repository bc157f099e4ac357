"""Tests for input validation and workflow document validation."""

import json

import pytest

from wfp.errors import ParseError, ShapeError
from wfp.utils.validator import validate_input, validate_workflow_document


class TestValidateInput:
    def test_valid_input(self):
        assert validate_input("automate invoice approval") == "automate invoice approval"

    def test_strips_whitespace(self):
        assert validate_input("  hello  ") == "hello"

    def test_empty_string_raises(self):
        with pytest.raises(ValueError, match="non-empty"):
            validate_input("")

    def test_whitespace_only_raises(self):
        with pytest.raises(ValueError, match="non-empty"):
            validate_input("   \n\t  ")

    def test_none_raises(self):
        with pytest.raises(ValueError):
            validate_input(None)


class TestValidateWorkflowDocument:
    def test_valid_document(self, valid_workflow):
        result = validate_workflow_document(json.dumps(valid_workflow))
        assert result["valid"] is True
        assert result["value"]["name"] == "Invoice Approval"

    def test_malformed_json_is_parse_error(self):
        result = validate_workflow_document('{"name": "x", "nodes": [')
        assert result["valid"] is False
        assert isinstance(result["error"], ParseError)
        assert "JSON parse error" in result["reason"]

    def test_non_object_is_shape_error(self):
        result = validate_workflow_document("[1, 2, 3]")
        assert result["valid"] is False
        assert isinstance(result["error"], ShapeError)

    @pytest.mark.parametrize("missing", ["name", "nodes", "connections"])
    def test_missing_required_field(self, valid_workflow, missing):
        del valid_workflow[missing]
        result = validate_workflow_document(json.dumps(valid_workflow))
        assert result["valid"] is False
        assert isinstance(result["error"], ShapeError)
        assert missing in result["reason"]

    def test_empty_name_rejected(self, valid_workflow):
        valid_workflow["name"] = ""
        result = validate_workflow_document(json.dumps(valid_workflow))
        assert result["valid"] is False

    def test_nodes_not_array_rejected(self):
        result = validate_workflow_document('{"name": "x", "nodes": "not-an-array", "connections": {}}')
        assert result["valid"] is False
        assert isinstance(result["error"], ShapeError)
        assert "array" in result["reason"]

    def test_empty_nodes_list_is_valid(self):
        result = validate_workflow_document('{"name": "x", "nodes": [], "connections": {}}')
        assert result["valid"] is True
