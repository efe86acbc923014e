# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Tests for {{producer.field}} variable resolution
"""

from datetime import datetime, timezone

import pytest

from flowengine.engine.models import NodeStatus
from flowengine.engine.variables import (
    VariableResolver,
    format_value,
    iter_references,
    match_producer,
    primary_value,
    sanitize_file_name,
)

from builders import edge, node, process, workflow


@pytest.fixture
def context(make_context, record):
    """Context where A and 用户需求 have already produced output"""
    definition = workflow(
        [
            process("A"),
            node("in", "INPUT", name="用户需求", fields=[{"name": "需求描述", "value": "test"}]),
            process("B"),
        ],
        [edge("A", "B"), edge("in", "B")],
        global_variables={"region": "eu-west", "limits": {"max": 3}},
    )
    ctx = make_context(definition, input={"query": "hello"})
    record(ctx, "A", {"x": "hello", "y": {"z": 5}, "items": [1, 2, 3], "result": "primary"})
    record(ctx, "用户需求", {"需求描述": "test"})
    return ctx


class TestResolve:
    """Template substitution"""

    def test_simple_field(self, context):
        assert context.resolve("{{A.x}}") == "hello"

    def test_nested_field(self, context):
        assert context.resolve("{{A.y.z}}") == "5"

    def test_list_index(self, context):
        assert context.resolve("{{A.items.1}}") == "2"

    def test_bare_producer_uses_result(self, context):
        assert context.resolve("{{A}}") == "primary"

    def test_unicode_names(self, context):
        assert context.resolve("需求：{{用户需求.需求描述}}") == "需求：test"

    def test_lookup_by_node_id(self, context):
        assert context.resolve("{{in.需求描述}}") == "test"

    def test_whitespace_inside_braces(self, context):
        assert context.resolve("{{  A.x  }}") == "hello"

    def test_global_variables(self, context):
        assert context.resolve("{{region}} / {{limits.max}}") == "eu-west / 3"

    def test_invocation_input(self, context):
        assert context.resolve("{{input.query}}") == "hello"

    def test_fully_resolved_string_unchanged(self, context):
        """Test resolution is idempotent on strings without tokens"""
        text = "nothing to see {here}"
        assert context.resolve(text) == text
        assert context.resolve(context.resolve("{{A.x}}")) == "hello"

    def test_non_string_passthrough(self, context):
        assert context.resolve(42) == 42

    def test_escaped_token_kept_literal(self, context):
        assert context.resolve(r"\{{A.x}} vs {{A.x}}") == "{{A.x}} vs hello"

    def test_unknown_reference_left_in_place(self, context):
        assert context.resolve("x={{ghost.value}}") == "x={{ghost.value}}"
        assert "Unresolved variable reference: {{ghost.value}}" in context.warnings

    def test_missing_field_becomes_empty(self, context):
        assert context.resolve("[{{A.nope}}]") == "[]"
        assert any("missing field" in warning for warning in context.warnings)

    def test_scope_shadows_producers(self, context):
        scope = {"A": {"x": "shadowed"}, "item": {"name": "row"}}
        assert context.resolve("{{A.x}} {{item.name}}", scope) == "shadowed row"

    def test_structured_values_serialized(self, context):
        assert context.resolve("{{A.items}}") == "1, 2, 3"
        assert context.resolve("{{A.y}}") == "z: 5"


class TestReservedTokens:
    @pytest.fixture
    def resolver(self):
        fixed = datetime(2025, 3, 4, 5, 6, 7, tzinfo=timezone.utc)
        return VariableResolver(clock=lambda: fixed)

    def test_date_and_time(self, make_context, resolver):
        ctx = make_context(workflow([process("A")]), resolver=resolver)
        assert ctx.resolve("{{date}} {{时间}}") == "2025-03-04 05:06:07"

    def test_timestamp_is_epoch_ms(self, make_context, resolver):
        ctx = make_context(workflow([process("A")]), resolver=resolver)
        assert ctx.resolve("{{timestamp}}") == str(int(datetime(2025, 3, 4, 5, 6, 7, tzinfo=timezone.utc).timestamp() * 1000))

    def test_execution_id(self, make_context):
        ctx = make_context(workflow([process("A")]))
        assert ctx.resolve("{{executionId}}") == ctx.execution_id
        assert ctx.resolve("{{执行ID}}") == ctx.execution_id


class TestResolveValue:
    """Raw values for control-flow nodes"""

    def test_returns_raw_value(self, context):
        assert context.resolve_value("{{A.items}}") == [1, 2, 3]
        assert context.resolve_value("A.y.z") == 5

    def test_unknown_is_none(self, context):
        assert context.resolve_value("{{ghost}}") is None

    def test_mixed_text_resolves_as_template(self, context):
        assert context.resolve_value("n={{A.y.z}}") == "n=5"

    def test_resolve_config_recurses(self, context):
        config = {"a": "{{A.x}}", "b": ["{{A.y.z}}", 7], "code": "{{A.x}}"}
        resolved = context.resolve_config(config, skip_keys=frozenset(["code"]))
        assert resolved == {"a": "hello", "b": ["5", 7], "code": "{{A.x}}"}


class TestHelpers:
    def test_format_value(self):
        assert format_value(None) == ""
        assert format_value(True) == "true"
        assert format_value(["a", 1]) == "a, 1"
        assert format_value({"k": "v", "n": 1}) == "k: v, n: 1"
        assert format_value({"k": [1, {"x": "中"}]}) == '{"k": [1, {"x": "中"}]}'

    def test_primary_value(self):
        assert primary_value({"result": 1, "other": 2}) == 1
        assert primary_value({"only": "v"}) == "v"
        assert primary_value({"a": 1, "b": 2}) == {"a": 1, "b": 2}

    def test_match_producer_prefers_longest_name(self):
        known = {"team.alpha", "team"}
        assert match_producer(["team", "alpha", "score"], known.__contains__) == ("team.alpha", ["score"])

    def test_iter_references_skips_escaped(self):
        refs = list(iter_references({"a": r"\{{x}} {{y.z}}", "b": ["{{w}}"]}))
        assert [ref.expression for ref in refs] == ["y.z", "w"]

    def test_iter_references_skip_keys_are_top_level(self):
        config = {"code": "{{a}}", "inputs": {"code": "{{b}}"}}
        refs = list(iter_references(config, skip_keys=frozenset(["code"])))
        assert [ref.expression for ref in refs] == ["b"]

    def test_sanitize_file_name(self):
        assert sanitize_file_name('报告: 2025/03 "final"') == "报告_2025_03_final"
        assert sanitize_file_name("...") == "output"
