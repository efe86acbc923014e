# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Tests for the workflow executor: scheduling, retry, timeouts, cancellation,
branch routing and the parallel error strategies
"""

import asyncio
from unittest.mock import AsyncMock, call

import pytest

from flowengine.engine.exceptions import FatalNodeError, TransientNodeError, WorkflowValidationError
from flowengine.engine.executor import WorkflowExecutor
from flowengine.engine.logging import ExecutionLogger
from flowengine.engine.models import (
    ExecutionOptions,
    NodeState,
    NodeStatus,
    ParallelErrorStrategy,
    SkipReason,
    TokenUsage,
    WorkflowDefinition,
    WorkflowStatus,
)
from flowengine.engine.nodes import NodeType
from flowengine.processors import build_default_registry
from flowengine.processors.base import ProcessorOutput

from builders import diamond, edge, node, process, workflow


@pytest.fixture
def sleep():
    return AsyncMock()


@pytest.fixture
def make_executor(engine_config, completion, sleep):
    def _make(*processors, persistence=None):
        registry = build_default_registry(completion=completion, config=engine_config)
        for processor in processors:
            registry.register(processor)
        return WorkflowExecutor(registry, ExecutionLogger(persistence), engine_config, sleep=sleep)
    return _make


async def execute(executor, definition, **kwargs):
    return await executor.execute(WorkflowDefinition.model_validate(definition), **kwargs)


def results_by_id(result):
    return {node_result.node_id: node_result for node_result in result.node_results}


class TestExecutionOrder:
    @pytest.mark.asyncio
    async def test_linear_chain_completes(self, make_executor, scripted):
        processor = scripted(script={"A": "first", "B": "second"})
        result = await execute(
            make_executor(processor),
            workflow([process("A"), process("B")], [edge("A", "B")]),
        )

        assert result.status == WorkflowStatus.COMPLETED
        assert processor.calls == ["A", "B"]
        assert result.output == {"result": "second"}
        assert result.node_states == {"A": NodeState.SUCCESS, "B": NodeState.SUCCESS}
        assert result.workflow_id == "wf_test"

    @pytest.mark.asyncio
    async def test_successors_start_after_predecessors_finish(self, make_executor, scripted):
        processor = scripted(delay=0.01)
        definition = diamond(enableParallelExecution=True)
        result = await execute(make_executor(processor), definition)

        by_id = results_by_id(result)
        for link in definition["edges"]:
            assert by_id[link["source"]].completed_at <= by_id[link["target"]].started_at

    @pytest.mark.asyncio
    async def test_parallel_level_runs_concurrently(self, make_executor, scripted):
        processor = scripted(delay=0.1)
        result = await execute(make_executor(processor), diamond(enableParallelExecution=True))

        by_id = results_by_id(result)
        assert processor.started["C"] < by_id["B"].completed_at
        assert processor.started["B"] < by_id["C"].completed_at

    @pytest.mark.asyncio
    async def test_sequential_level_runs_one_at_a_time(self, make_executor, scripted):
        processor = scripted(delay=0.02)
        result = await execute(make_executor(processor), diamond())

        by_id = results_by_id(result)
        assert processor.calls == ["A", "B", "C", "D"]
        assert by_id["B"].completed_at <= by_id["C"].started_at

    @pytest.mark.asyncio
    async def test_end_to_end_input_reference_reaches_completion(self, make_executor, completion):
        """Test a named INPUT field reaches the AI prompt verbatim"""
        definition = workflow(
            [
                node("in", "INPUT", name="用户需求", fields=[{"name": "需求描述"}]),
                process("p", prompt="{{用户需求.需求描述}}"),
            ],
            [edge("in", "p")],
        )
        result = await execute(make_executor(), definition, input={"需求描述": "test"})

        assert result.status == WorkflowStatus.COMPLETED
        _, user_prompt, _, _ = completion.complete.await_args.args
        assert "test" in user_prompt
        assert result.output["result"] == "generated"
        assert result.total_tokens == 15


class TestErrorStrategies:
    @pytest.mark.asyncio
    async def test_fail_fast_stops_at_first_error(self, make_executor, scripted):
        processor = scripted(script={"B": FatalNodeError("bad B")})
        result = await execute(make_executor(processor), diamond())

        assert result.status == WorkflowStatus.FAILED
        assert result.error == "Node 'B' failed: bad B"
        assert processor.calls == ["A", "B"]
        assert result.node_states["C"] == NodeState.PENDING
        assert [error.node_id for error in result.errors] == ["B"]

    @pytest.mark.asyncio
    async def test_continue_skips_dependents_of_failed_node(self, make_executor, scripted):
        processor = scripted(script={"B": FatalNodeError("bad B")})
        result = await execute(make_executor(processor), diamond(parallelErrorStrategy="continue"))

        assert result.status == WorkflowStatus.FAILED
        assert processor.calls == ["A", "B", "C"]
        assert result.node_states["C"] == NodeState.SUCCESS
        assert result.node_states["D"] == NodeState.SKIPPED
        assert results_by_id(result)["B"].status == NodeStatus.ERROR

        skipped = result.skipped_nodes[0]
        assert skipped.node_id == "D"
        assert skipped.reason == SkipReason.UPSTREAM_FAILED
        assert skipped.blocked_by == ["B"]

    @pytest.mark.asyncio
    async def test_collect_reports_every_error(self, make_executor, scripted):
        processor = scripted(script={"B": FatalNodeError("bad B"), "C": FatalNodeError("bad C")})
        result = await execute(make_executor(processor), diamond(parallelErrorStrategy="collect"))

        assert result.status == WorkflowStatus.FAILED
        assert [error.node_id for error in result.errors] == ["B", "C"]
        assert result.errors[1].error == "bad C"

    @pytest.mark.asyncio
    async def test_continue_completes_when_output_node_succeeds(self, make_executor, scripted):
        processor = scripted(script={"B": FatalNodeError("side branch broke")})
        output = scripted(NodeType.OUTPUT, script={"O": "report"})
        definition = workflow(
            [process("A"), process("B"), node("O", "OUTPUT")],
            [edge("A", "B"), edge("A", "O")],
            parallelErrorStrategy="continue",
        )
        result = await execute(make_executor(processor, output), definition)

        assert result.status == WorkflowStatus.COMPLETED
        assert result.output == {"result": "report"}
        assert [error.node_id for error in result.errors] == ["B"]


class TestRetry:
    @pytest.mark.asyncio
    async def test_retries_bounded_by_max_retries(self, make_executor, scripted, sleep):
        processor = scripted(script={"A": TransientNodeError("flaky")})
        result = await execute(make_executor(processor), workflow([process("A")], maxRetries=3))

        assert result.status == WorkflowStatus.FAILED
        assert processor.calls == ["A", "A", "A"]
        assert results_by_id(result)["A"].attempts == 3
        assert result.errors[0].attempts == 3
        assert sleep.await_args_list == [call(0.01), call(0.02)]

    @pytest.mark.asyncio
    async def test_backoff_is_capped(self, make_executor, scripted, sleep):
        processor = scripted(script={"A": TransientNodeError("flaky")})
        await execute(make_executor(processor), workflow([process("A")], maxRetries=5))
        assert sleep.await_args_list == [call(0.01), call(0.02), call(0.04), call(0.05)]

    @pytest.mark.asyncio
    async def test_fatal_error_is_not_retried(self, make_executor, scripted, sleep):
        processor = scripted(script={"A": FatalNodeError("invalid prompt")})
        result = await execute(make_executor(processor), workflow([process("A")], maxRetries=3))

        assert processor.calls == ["A"]
        assert result.errors[0].retryable is False
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_transient_error_then_success(self, make_executor, scripted):
        processor = scripted(script={"A": [TransientNodeError("rate limited"), "ok"]})
        result = await execute(make_executor(processor), workflow([process("A")], maxRetries=3))

        assert result.status == WorkflowStatus.COMPLETED
        assert results_by_id(result)["A"].attempts == 2
        assert result.output == {"result": "ok"}

    @pytest.mark.asyncio
    async def test_zero_retries_means_single_attempt(self, make_executor, scripted):
        processor = scripted(script={"A": TransientNodeError("flaky")})
        await execute(make_executor(processor), workflow([process("A")], maxRetries=0))
        assert processor.calls == ["A"]

    @pytest.mark.asyncio
    async def test_options_override_definition_settings(self, make_executor, scripted):
        processor = scripted(script={"A": TransientNodeError("flaky")})
        await execute(
            make_executor(processor),
            workflow([process("A")], maxRetries=0),
            options=ExecutionOptions(max_retries=2),
        )
        assert processor.calls == ["A", "A"]


class TestTimeouts:
    @pytest.mark.asyncio
    async def test_node_timeout(self, make_executor, scripted):
        processor = scripted(delay=0.5)
        definition = workflow([node("A", "PROCESS", timeout=0.05, userPrompt="x")])
        result = await execute(make_executor(processor), definition)

        assert result.status == WorkflowStatus.FAILED
        assert result.errors[0].error_code == "NODE_TIMEOUT"

    @pytest.mark.asyncio
    async def test_run_timeout_stops_the_run(self, make_executor, scripted):
        processor = scripted(delay=3)
        result = await execute(
            make_executor(processor),
            workflow([process("A"), process("B")], [edge("A", "B")], timeout=1),
        )

        assert result.status == WorkflowStatus.TIMEOUT
        assert processor.calls == ["A"]
        assert result.node_states["A"] == NodeState.CANCELLED
        assert result.node_states["B"] == NodeState.PENDING
        assert result.node_results == []


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancelled_before_start(self, make_executor, scripted):
        processor = scripted()
        event = asyncio.Event()
        event.set()
        result = await execute(make_executor(processor), diamond(), cancel_event=event)

        assert result.status == WorkflowStatus.CANCELLED
        assert processor.calls == []

    @pytest.mark.asyncio
    async def test_cancelled_mid_run(self, make_executor, scripted):
        processor = scripted(delay=0.5)
        event = asyncio.Event()
        asyncio.get_running_loop().call_later(0.05, event.set)
        result = await execute(
            make_executor(processor),
            workflow([process("A"), process("B")], [edge("A", "B")]),
            cancel_event=event,
        )

        assert result.status == WorkflowStatus.CANCELLED
        assert result.node_states["A"] == NodeState.CANCELLED
        assert "B" not in processor.calls


class TestBranching:
    @pytest.mark.asyncio
    async def test_condition_routes_to_taken_branch(self, make_executor, scripted):
        processor = scripted()
        definition = workflow(
            [
                node("c", "CONDITION", expression="{{input.x}} > 5"),
                process("yes"), process("no"), process("after_no"),
            ],
            [edge("c", "yes", "true"), edge("c", "no", "false"), edge("no", "after_no")],
            parallelErrorStrategy="continue",
        )
        result = await execute(make_executor(processor), definition, input={"x": 10})

        assert result.status == WorkflowStatus.COMPLETED
        assert processor.calls == ["yes"]
        skipped = {item.node_id: item.reason for item in result.skipped_nodes}
        assert skipped == {"no": SkipReason.BRANCH_NOT_TAKEN, "after_no": SkipReason.BRANCH_NOT_TAKEN}
        assert result.errors == []

    @pytest.mark.asyncio
    async def test_switch_default_branch(self, make_executor, scripted):
        processor = scripted()
        definition = workflow(
            [
                node("s", "SWITCH", variable="{{input.tier}}", cases=[{"id": "gold", "value": "gold"}]),
                process("g"), process("d"),
            ],
            [edge("s", "g", "gold"), edge("s", "d", "default")],
        )
        result = await execute(make_executor(processor), definition, input={"tier": "silver"})

        assert result.status == WorkflowStatus.COMPLETED
        assert processor.calls == ["d"]
        assert result.node_states["g"] == NodeState.SKIPPED

    @pytest.mark.asyncio
    async def test_join_runs_when_one_branch_taken(self, make_executor, scripted):
        processor = scripted()
        definition = workflow(
            [
                node("c", "CONDITION", expression="false"),
                process("yes"), process("no"), process("join"),
            ],
            [edge("c", "yes", "true"), edge("c", "no", "false"), edge("yes", "join"), edge("no", "join")],
        )
        result = await execute(make_executor(processor), definition)

        assert processor.calls == ["no", "join"]
        assert result.node_states["yes"] == NodeState.SKIPPED

    @pytest.mark.asyncio
    @pytest.mark.parametrize("strategy", ["fail_fast", "continue", "collect"])
    async def test_untaken_output_branch_still_completes(self, make_executor, scripted, strategy):
        """An OUTPUT node skipped only by routing does not fail the run"""
        processor = scripted()
        definition = workflow(
            [node("c", "CONDITION", expression="{{input.x}} > 5"), node("out", "OUTPUT")],
            [edge("c", "out", "true")],
            parallelErrorStrategy=strategy,
        )
        result = await execute(make_executor(processor), definition, input={"x": 1})

        assert result.status == WorkflowStatus.COMPLETED
        assert result.error is None
        assert result.errors == []
        assert result.node_states["out"] == NodeState.SKIPPED
        assert result.skipped_nodes[0].reason == SkipReason.BRANCH_NOT_TAKEN


class TestResultAggregation:
    @pytest.mark.asyncio
    async def test_token_usage_is_summed(self, make_executor, scripted):
        processor = scripted(script={
            "A": ProcessorOutput(data={"result": "a"}, token_usage=TokenUsage(prompt_tokens=10, completion_tokens=5)),
            "B": ProcessorOutput(data={"result": "b"}, token_usage=TokenUsage(prompt_tokens=20)),
            "C": "no usage",
        })
        result = await execute(
            make_executor(processor),
            workflow([process("A"), process("B"), process("C")], [edge("A", "B"), edge("B", "C")]),
        )

        assert result.total_tokens == 35
        assert result.prompt_tokens == 30
        assert result.completion_tokens == 5

    @pytest.mark.asyncio
    async def test_validation_error_raised_before_any_node_runs(self, make_executor, scripted):
        processor = scripted()
        definition = workflow([process("A"), process("B")], [edge("A", "B"), edge("B", "A")])

        with pytest.raises(WorkflowValidationError, match="Cycle detected"):
            await execute(make_executor(processor), definition)
        assert processor.calls == []

    @pytest.mark.asyncio
    async def test_results_persisted(self, make_executor, scripted):
        persistence = AsyncMock()
        result = await execute(
            make_executor(scripted(), persistence=persistence),
            workflow([process("A"), process("B")], [edge("A", "B")]),
            execution_id="exec_20250101_120000_deadbeef",
        )

        assert persistence.append_execution_log.await_count == 2
        execution_id, logged = persistence.append_execution_log.await_args_list[0].args
        assert execution_id == result.execution_id
        assert logged["nodeId"] == "A"

        persisted = persistence.persist_execution_result.await_args.args[0]
        assert persisted["executionId"] == "exec_20250101_120000_deadbeef"
        assert persisted["status"] == "completed"

    @pytest.mark.asyncio
    async def test_persistence_failure_does_not_affect_run(self, make_executor, scripted):
        persistence = AsyncMock()
        persistence.append_execution_log.side_effect = OSError("disk full")
        persistence.persist_execution_result.side_effect = OSError("disk full")

        result = await execute(make_executor(scripted(), persistence=persistence), workflow([process("A")]))

        assert result.status == WorkflowStatus.COMPLETED
        persistence.persist_execution_result.assert_awaited_once()

    def test_effective_settings_layering(self, make_executor, engine_config):
        executor = make_executor()
        definition = WorkflowDefinition.model_validate(workflow([process("A")], maxRetries=2))
        settings = executor.effective_settings(
            definition,
            ExecutionOptions(parallel_error_strategy=ParallelErrorStrategy.COLLECT),
        )

        assert settings.max_retries == 2
        assert settings.timeout == engine_config.timeout_seconds
        assert settings.retry_delay == engine_config.retry_delay
        assert settings.parallel_error_strategy == ParallelErrorStrategy.COLLECT


class TestProgressEvents:
    @pytest.mark.asyncio
    async def test_event_order_and_progress(self, make_executor, scripted):
        """Test events follow node transitions with running progress"""
        processor = scripted(script={"B": FatalNodeError("bad B")})
        events = []

        async def collect(event):
            events.append(event)

        definition = diamond(parallelErrorStrategy="continue")
        result = await execute(make_executor(processor), definition, update_callback=collect)

        assert result.status == WorkflowStatus.FAILED
        assert [(event.type.value, event.node_id, event.progress) for event in events] == [
            ("node_start", "A", 0),
            ("node_complete", "A", 25),
            ("node_start", "B", 25),
            ("node_error", "B", 50),
            ("node_start", "C", 50),
            ("node_complete", "C", 75),
            ("node_skipped", "D", 100),
            ("execution_error", None, 100),
        ]
        assert events[3].error == "bad B"
        assert events[5].completed_nodes == ["A", "C"]
        assert events[5].output == {"result": "C done"}
        assert events[-1].status == "failed"
        assert {event.execution_id for event in events} == {result.execution_id}
        assert {event.total_nodes for event in events} == {4}

    @pytest.mark.asyncio
    async def test_retries_report_one_start(self, make_executor, scripted):
        processor = scripted(script={"A": [TransientNodeError("busy"), "ok"]})
        callback = AsyncMock()

        await execute(make_executor(processor), workflow([process("A")], maxRetries=3), update_callback=callback)

        types = [recorded.args[0].type.value for recorded in callback.await_args_list]
        assert types == ["node_start", "node_complete", "execution_complete"]
        assert callback.await_args_list[-1].args[0].progress == 100

    @pytest.mark.asyncio
    async def test_failing_callback_does_not_affect_run(self, make_executor, scripted):
        processor = scripted()
        callback = AsyncMock(side_effect=RuntimeError("socket closed"))

        result = await execute(make_executor(processor), diamond(), update_callback=callback)

        assert result.status == WorkflowStatus.COMPLETED
        assert processor.calls == ["A", "B", "C", "D"]
        assert callback.await_count == 9
