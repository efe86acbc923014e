# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Tests for CONDITION, SWITCH, LOOP and MERGE processors
"""

import pytest

from flowengine.engine.exceptions import NodeConfigurationError
from flowengine.engine.models import NodeStatus
from flowengine.engine.nodes import SwitchCase
from flowengine.processors.condition import ConditionNodeProcessor
from flowengine.processors.conditions import compare_values, evaluate_expression
from flowengine.processors.loop import LoopNodeProcessor
from flowengine.processors.merge import MergeNodeProcessor
from flowengine.processors.switch import SwitchNodeProcessor, case_matches, parse_range

from builders import edge, node, process, workflow


async def run(processor, ctx, node_id):
    return await processor.process(ctx.graph.node(node_id), ctx)


@pytest.fixture
def scored(make_context, record):
    """Context where node 'score' produced {result: 7, tags: [...], text: ...}"""
    def _ctx(control):
        ctx = make_context(workflow([process("score"), control], [edge("score", control["id"])]))
        record(ctx, "score", {"result": 7, "tags": ["alpha", "beta"], "text": "Hello World", "empty": ""})
        return ctx
    return _ctx


class TestCompareValues:
    @pytest.mark.parametrize("left,op,right,expected", [
        (7, "equals", "7", True),
        ("7.0", "equals", 7, True),
        ("abc", "notEquals", "abd", True),
        (True, "equals", "true", True),
        ({"a": 1}, "equals", {"a": 1}, True),
        ("10", "greaterThan", 9, True),
        ("abc", "greaterThan", 1, False),
        (3, "lessOrEqual", 3, True),
        (2, "greaterOrEqual", 3, False),
        (["a", "b"], "contains", "b", True),
        ("Hello World", "notContains", "xyz", True),
        ("Hello", "startsWith", "He", True),
        ("Hello", "endsWith", "lo", True),
        ("  ", "isEmpty", None, True),
        ([], "isEmpty", None, True),
        (0, "isNotEmpty", None, True),
        (None, "contains", "x", False),
    ])
    def test_operators(self, left, op, right, expected):
        assert compare_values(left, op, right) is expected

    def test_unknown_operator(self):
        with pytest.raises(NodeConfigurationError, match="Unknown condition operator"):
            compare_values(1, "approximately", 1)


class TestExpressions:
    def test_references_bound_to_raw_values(self, scored):
        ctx = scored(node("c", "CONDITION", expression="true"))
        assert evaluate_expression("{{score}} > 5 and len({{score.tags}}) == 2", ctx) is True
        assert evaluate_expression("'beta' in {{score.tags}}", ctx) is True
        assert evaluate_expression("{{score}} in [1, 2, 3]", ctx) is False

    def test_subscript_and_short_circuit(self, scored):
        ctx = scored(node("c", "CONDITION", expression="true"))
        assert evaluate_expression("{{score.tags}}[0] == 'alpha'", ctx) is True
        assert evaluate_expression("{{score}} > 100 and 1 / 0", ctx) is False
        assert evaluate_expression("true or undefined_name", ctx) is True

    def test_undefined_name(self, scored):
        ctx = scored(node("c", "CONDITION", expression="true"))
        with pytest.raises(NodeConfigurationError, match="Undefined variable: score"):
            evaluate_expression("score > 5", ctx)

    def test_calls_outside_whitelist_rejected(self, scored):
        ctx = scored(node("c", "CONDITION", expression="true"))
        with pytest.raises(NodeConfigurationError, match="not allowed"):
            evaluate_expression("__import__('os').system('true')", ctx)

    def test_attribute_access_rejected(self, scored):
        ctx = scored(node("c", "CONDITION", expression="true"))
        with pytest.raises(NodeConfigurationError, match="Attribute"):
            evaluate_expression("{{score.text}}.upper() == 'X'", ctx)

    def test_syntax_error(self, scored):
        ctx = scored(node("c", "CONDITION", expression="true"))
        with pytest.raises(NodeConfigurationError, match="Invalid condition syntax"):
            evaluate_expression("{{score}} >", ctx)


class TestConditionNode:
    @pytest.mark.asyncio
    async def test_all_conditions(self, scored):
        ctx = scored(node("c", "CONDITION", conditions=[
            {"variable": "{{score}}", "operator": "greaterThan", "value": 5},
            {"variable": "{{score.tags}}", "operator": "contains", "value": "alpha"},
        ]))
        result = await run(ConditionNodeProcessor(), ctx, "c")

        assert result.data["result"] is True
        assert result.data["branch"] == "true"
        assert result.data["evaluatedConditions"][0] == {
            "variable": "{{score}}", "operator": "greaterThan", "expected": 5, "actual": 7, "result": True,
        }

    @pytest.mark.asyncio
    async def test_any_mode(self, scored):
        ctx = scored(node("c", "CONDITION", evaluationMode="any", conditions=[
            {"variable": "{{score}}", "operator": "lessThan", "value": 5},
            {"variable": "{{score.empty}}", "operator": "isEmpty"},
        ]))
        result = await run(ConditionNodeProcessor(), ctx, "c")
        assert result.data["conditionsMet"] is True

    @pytest.mark.asyncio
    async def test_expression_false_branch(self, scored):
        ctx = scored(node("c", "CONDITION", expression="{{score}} >= 10"))
        result = await run(ConditionNodeProcessor(), ctx, "c")

        assert result.data["result"] is False
        assert result.data["branch"] == "false"

    @pytest.mark.asyncio
    async def test_nothing_to_evaluate(self, scored):
        ctx = scored(node("c", "CONDITION"))
        result = await run(ConditionNodeProcessor(), ctx, "c")

        assert result.status == NodeStatus.ERROR
        assert result.error_code == "CONFIG_ERROR"


class TestSwitchNode:
    def test_parse_range(self):
        assert parse_range("1..5") == (1.0, 5.0)
        assert parse_range("..0") == (None, 0.0)
        assert parse_range({"min": 10}) == (10.0, None)
        with pytest.raises(NodeConfigurationError):
            parse_range("1-5")

    def test_case_matching(self):
        assert case_matches("Premium Plan", SwitchCase(id="p", value="premium"), "contains", False)
        assert not case_matches("Premium Plan", SwitchCase(id="p", value="premium"), "contains", True)
        assert case_matches("order-123", SwitchCase(id="o", value=r"^order-\d+$"), "regex", True)
        assert case_matches("7", SwitchCase(id="r", value="5..10"), "range", True)
        assert not case_matches("n/a", SwitchCase(id="r", value="5..10"), "range", True)
        assert case_matches(7, SwitchCase(id="e", value="7"), "exact", True)

    @pytest.mark.asyncio
    async def test_first_matching_case_wins(self, scored):
        ctx = scored(node("s", "SWITCH", variable="{{score}}", matchType="range", cases=[
            {"id": "low", "value": "..3"},
            {"id": "mid", "value": "4..8", "label": "Medium"},
            {"id": "mid2", "value": "6..9"},
        ]))
        result = await run(SwitchNodeProcessor(), ctx, "s")

        assert result.data == {
            "result": 7,
            "matchedCase": {"id": "mid", "value": "4..8", "label": "Medium"},
            "branch": "mid",
        }

    @pytest.mark.asyncio
    async def test_default_branch(self, scored):
        ctx = scored(node("s", "SWITCH", variable="{{score.text}}", cases=[{"id": "a", "value": "nope"}]))
        result = await run(SwitchNodeProcessor(), ctx, "s")

        assert result.data["matchedCase"] is None
        assert result.data["branch"] == "default"

    @pytest.mark.asyncio
    async def test_invalid_regex_is_config_error(self, scored):
        ctx = scored(node("s", "SWITCH", variable="{{score.text}}", matchType="regex", cases=[{"id": "a", "value": "("}]))
        result = await run(SwitchNodeProcessor(), ctx, "s")
        assert result.error_code == "CONFIG_ERROR"


class TestLoopNode:
    @pytest.mark.asyncio
    async def test_for_loop_renders_body(self, scored):
        ctx = scored(node(
            "l", "LOOP",
            forConfig={"arrayVariable": "{{score.tags}}", "itemName": "tag", "indexName": "i"},
            body="{{i}}:{{tag}}{{loop.isLast}}",
        ))
        result = await run(LoopNodeProcessor(), ctx, "l")

        assert result.data["result"] == ["0:alphafalse", "1:betatrue"]
        assert result.data["iterations"] == 2
        assert result.data["truncated"] is False

    @pytest.mark.asyncio
    async def test_for_loop_bounded(self, make_context):
        ctx = make_context(
            workflow([node("l", "LOOP", forConfig={"arrayVariable": "{{input.items}}"}, maxIterations=3)]),
            input={"items": list(range(10))},
        )
        result = await run(LoopNodeProcessor(), ctx, "l")

        assert result.data["result"] == [0, 1, 2]
        assert result.data["truncated"] is True

    @pytest.mark.asyncio
    async def test_for_loop_over_text_lines(self, make_context):
        ctx = make_context(
            workflow([node("l", "LOOP", forConfig={"arrayVariable": "{{input.text}}"})]),
            input={"text": "first\n\nsecond\n"},
        )
        result = await run(LoopNodeProcessor(), ctx, "l")
        assert result.data["items"] == ["first", "second"]

    @pytest.mark.asyncio
    async def test_for_loop_non_iterable(self, make_context):
        ctx = make_context(
            workflow([node("l", "LOOP", forConfig={"arrayVariable": "{{input.n}}"})]),
            input={"n": 5},
        )
        result = await run(LoopNodeProcessor(), ctx, "l")
        assert result.error_code == "CONFIG_ERROR"

    @pytest.mark.asyncio
    async def test_while_loop(self, make_context):
        ctx = make_context(workflow([node(
            "l", "LOOP", loopType="WHILE",
            whileConfig={"condition": {"variable": "{{loop.index}}", "operator": "lessThan", "value": 3}},
            body="step {{loop.index}}",
        )]))
        result = await run(LoopNodeProcessor(), ctx, "l")

        assert result.data["result"] == ["step 0", "step 1", "step 2"]
        assert result.data["iterations"] == 3
        assert result.data["truncated"] is False

    @pytest.mark.asyncio
    async def test_while_loop_hits_limit(self, make_context):
        """Test a condition that never turns false stops at maxIterations"""
        ctx = make_context(workflow([node(
            "l", "LOOP", loopType="WHILE",
            whileConfig={"condition": {"variable": "{{loop.index}}", "operator": "isNotEmpty"}, "maxIterations": 4},
        )]))
        result = await run(LoopNodeProcessor(), ctx, "l")

        assert result.data["iterations"] == 4
        assert result.data["truncated"] is True


class TestMergeNode:
    @pytest.fixture
    def merge_ctx(self, make_context, record):
        def _ctx(failed_c=False, **config):
            ctx = make_context(workflow(
                [process("A"), process("B"), process("C"), node("M", "MERGE", **config)],
                [edge("A", "B"), edge("A", "C"), edge("B", "M"), edge("C", "M")],
            ))
            record(ctx, "A", {"result": "a"})
            record(ctx, "C", {"result": "c"}, status=NodeStatus.ERROR if failed_c else NodeStatus.SUCCESS)
            record(ctx, "B", {"result": "b", "extra": 1}, offset_ms=50)
            return ctx
        return _ctx

    @pytest.mark.asyncio
    async def test_merge_keyed_by_name(self, merge_ctx):
        result = await run(MergeNodeProcessor(), merge_ctx(), "M")

        assert result.data["result"] == {"B": "b", "C": "c"}
        assert result.data["merge"] == {
            "strategy": "all", "totalBranches": 2, "successfulBranches": 2, "branchNames": ["B", "C"],
        }

    @pytest.mark.asyncio
    async def test_array_and_first(self, merge_ctx):
        assert (await run(MergeNodeProcessor(), merge_ctx(outputMode="array"), "M")).data["result"] == ["b", "c"]
        assert (await run(MergeNodeProcessor(), merge_ctx(outputMode="first"), "M")).data["result"] == "b"

    @pytest.mark.asyncio
    async def test_race_picks_earliest(self, merge_ctx):
        result = await run(MergeNodeProcessor(), merge_ctx(mergeStrategy="race", outputMode="first"), "M")
        assert result.data["result"] == "c"

    @pytest.mark.asyncio
    async def test_all_requires_every_branch(self, merge_ctx):
        result = await run(MergeNodeProcessor(), merge_ctx(failed_c=True), "M")

        assert result.status == NodeStatus.ERROR
        assert "failed: C" in result.error

    @pytest.mark.asyncio
    async def test_any_tolerates_failed_branch(self, merge_ctx):
        result = await run(MergeNodeProcessor(), merge_ctx(failed_c=True, mergeStrategy="any"), "M")
        assert result.data["result"] == {"B": "b"}
