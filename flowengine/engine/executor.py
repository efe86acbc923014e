# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Workflow Executor

Level-based DAG execution engine.

Levels run in order. Within a level nodes run concurrently when parallel
execution is enabled, otherwise one at a time in definition order. Every node
ends in exactly one state: success, error, skipped or cancelled. The run ends
completed, failed, cancelled or timeout.
"""

import asyncio
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple

from flowengine.core.config import EngineConfig, get_config
from flowengine.core.errors import sanitize_error_for_user
from flowengine.core.logging import get_engine_logger, log_event
from flowengine.processors.base import ProcessorRegistry, error_result
from .aggregator import ResultAggregator
from .context import ExecutionContext
from .error_handler import compute_backoff
from .events import ProgressReporter, UpdateCallback
from .exceptions import NodeTimeoutException
from .logging import ExecutionLogger
from .models import (
    AIProviderConfig,
    EdgeDefinition,
    ExecutionOptions,
    ExecutionSettings,
    KnowledgeBaseConfig,
    NodeError,
    NodeResult,
    NodeState,
    ParallelErrorStrategy,
    SkippedNode,
    SkipReason,
    WorkflowDefinition,
    WorkflowExecutionResult,
    WorkflowStatus,
)
from .nodes import ROUTER_TYPES
from .validation import WorkflowGraph, build_graph

logger = get_engine_logger("executor")

# Node states that block every dependent
FAILURE_STATES = frozenset([NodeState.ERROR, NodeState.CANCELLED])


def new_execution_id() -> str:
    return f"exec_{datetime.now(timezone.utc).strftime('%Y%m%d_%H%M%S')}_{uuid.uuid4().hex[:8]}"


class RunState:
    """Scheduler bookkeeping for one run"""

    def __init__(self, graph: WorkflowGraph, events: Optional[ProgressReporter] = None):
        self.graph = graph
        self.events = events or ProgressReporter("", len(graph.nodes))
        self.node_states: Dict[str, NodeState] = {node_id: NodeState.PENDING for node_id in graph.nodes}
        self.results: Dict[str, NodeResult] = {}
        self.skipped: List[SkippedNode] = []
        self.skip_reasons: Dict[str, SkipReason] = {}
        self.errors: List[NodeError] = []
        self.status: Optional[WorkflowStatus] = None
        self.error: Optional[str] = None

    def stop(self, status: WorkflowStatus, error: Optional[str] = None) -> None:
        """Set the terminal status; the first stop wins"""
        if self.status is None:
            self.status = status
            self.error = error

    def is_blocking(self, node_id: str) -> bool:
        """True if node_id failed, or was skipped because something upstream failed"""
        state = self.node_states[node_id]
        if state in FAILURE_STATES:
            return True
        return state == NodeState.SKIPPED and self.skip_reasons.get(node_id) == SkipReason.UPSTREAM_FAILED

    def edge_active(self, edge: EdgeDefinition) -> bool:
        if self.node_states[edge.source] != NodeState.SUCCESS:
            return False
        source = self.graph.node(edge.source)
        if source.node_type in ROUTER_TYPES and edge.source_handle:
            return self.results[edge.source].data.get("branch") == edge.source_handle
        return True

    def skip_decision(self, node_id: str) -> Optional[Tuple[SkipReason, List[str]]]:
        """Why node_id must not run, or None if it may"""
        predecessors = self.graph.predecessors[node_id]
        if not predecessors:
            return None

        blocked_by = [pred for pred in predecessors if self.is_blocking(pred)]
        if blocked_by:
            return SkipReason.UPSTREAM_FAILED, blocked_by

        if not any(self.edge_active(edge) for edge in self.graph.incoming[node_id]):
            return SkipReason.BRANCH_NOT_TAKEN, list(predecessors)
        return None

    def skip(self, node_id: str, reason: SkipReason, blocked_by: List[str]) -> None:
        node = self.graph.node(node_id)
        self.node_states[node_id] = NodeState.SKIPPED
        self.skip_reasons[node_id] = reason
        self.skipped.append(SkippedNode(
            node_id=node_id,
            node_name=node.name,
            reason=reason,
            blocked_by=blocked_by,
        ))


class WorkflowExecutor:
    """
    Level-based workflow executor.

    Executes nodes level by level with retry, per-node timeout, a run-wide
    deadline, cancellation and the configured parallel error strategy.
    """

    def __init__(
        self,
        registry: ProcessorRegistry,
        execution_logger: Optional[ExecutionLogger] = None,
        config: Optional[EngineConfig] = None,
        aggregator: Optional[ResultAggregator] = None,
        sleep=asyncio.sleep,
    ):
        self.registry = registry
        self.execution_logger = execution_logger or ExecutionLogger()
        self.config = config or get_config()
        self.aggregator = aggregator or ResultAggregator()
        self._sleep = sleep

    async def execute(
        self,
        definition: WorkflowDefinition,
        input: Optional[Dict[str, Any]] = None,
        options: Optional[ExecutionOptions] = None,
        ai_configs: Optional[Mapping[str, AIProviderConfig]] = None,
        default_ai_config_id: Optional[str] = None,
        knowledge_bases: Optional[Mapping[str, KnowledgeBaseConfig]] = None,
        cancel_event: Optional[asyncio.Event] = None,
        execution_id: Optional[str] = None,
        update_callback: Optional[UpdateCallback] = None,
    ) -> WorkflowExecutionResult:
        """
        Execute a workflow to a terminal result.

        Raises WorkflowValidationError (before any node runs) for an invalid
        graph. Every other failure is reported in the returned result.
        update_callback, when given, receives an ExecutionProgressEvent per
        node transition and one at the end of the run.
        """
        options = options or ExecutionOptions()
        settings = self.effective_settings(definition, options)

        graph = build_graph(definition)
        self.registry.validate_graph(graph)

        context = ExecutionContext(
            execution_id=execution_id or new_execution_id(),
            workflow_id=definition.id,
            graph=graph,
            input=input,
            global_variables=definition.global_variables,
            deadline=time.monotonic() + settings.timeout,
            ai_configs=ai_configs,
            default_ai_config_id=default_ai_config_id,
            knowledge_bases=knowledge_bases,
            cancel_event=cancel_event or asyncio.Event(),
            mode=options.mode,
        )
        for warning in graph.warnings:
            context.add_warning(warning)

        state = RunState(graph, ProgressReporter(context.execution_id, len(graph.nodes), update_callback))
        started = time.monotonic()

        log_event(
            logger, "workflow_started",
            execution_id=context.execution_id,
            workflow_id=definition.id,
            nodes=len(graph.nodes),
            levels=len(graph.levels),
            parallel=settings.enable_parallel_execution,
            strategy=settings.parallel_error_strategy.value,
            timeout=settings.timeout,
        )

        try:
            await self._run(graph, context, settings, state)
        except Exception as e:
            log_event(
                logger, "workflow_crashed", level="ERROR",
                execution_id=context.execution_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            state.stop(WorkflowStatus.FAILED, sanitize_error_for_user(e))
        finally:
            context.finalize()

        status, error = self._final_status(graph, settings, state)
        result = self.aggregator.build(
            context=context,
            status=status,
            error=error,
            node_states=state.node_states,
            skipped=state.skipped,
            errors=state.errors if settings.parallel_error_strategy == ParallelErrorStrategy.COLLECT else state.errors[:1],
            total_duration=round((time.monotonic() - started) * 1000, 3),
        )

        log_event(
            logger, "workflow_finished",
            level="INFO" if status == WorkflowStatus.COMPLETED else "WARNING",
            execution_id=context.execution_id,
            workflow_id=definition.id,
            status=status.value,
            error=error,
            duration_ms=result.total_duration,
            total_tokens=result.total_tokens,
        )
        await state.events.execution_finished(status, error)
        await self.execution_logger.log_result(result)
        return result

    def effective_settings(self, definition: WorkflowDefinition, options: ExecutionOptions) -> ExecutionSettings:
        """Definition settings over engine defaults, then per-run overrides"""
        defaults = {
            "timeout": self.config.timeout_seconds,
            "max_retries": self.config.max_retries,
            "retry_delay": self.config.retry_delay,
            "max_retry_delay": self.config.max_retry_delay,
        }
        settings = definition.settings
        unset = {key: value for key, value in defaults.items() if key not in settings.model_fields_set}
        return options.apply(settings.model_copy(update=unset))

    # -- scheduling --

    async def _run(
        self,
        graph: WorkflowGraph,
        context: ExecutionContext,
        settings: ExecutionSettings,
        state: RunState
    ) -> None:
        for index, level in enumerate(graph.levels):
            if self._should_stop(context, state):
                return

            runnable = []
            for node_id in level:
                decision = state.skip_decision(node_id)
                if decision is None:
                    runnable.append(node_id)
                    continue
                reason, blocked_by = decision
                state.skip(node_id, reason, blocked_by)
                log_event(
                    logger, "node_skipped",
                    execution_id=context.execution_id,
                    node_id=node_id,
                    node_name=graph.node(node_id).name,
                    reason=reason.value,
                    blocked_by=blocked_by,
                )
                await state.events.node_skipped(graph.node(node_id), reason.value)

            if not runnable:
                continue

            log_event(
                logger, "level_started", level="DEBUG",
                execution_id=context.execution_id,
                level_index=index,
                node_ids=runnable,
            )

            if settings.enable_parallel_execution:
                await self._run_batch(runnable, context, settings, state)
            else:
                for node_id in runnable:
                    if self._should_stop(context, state):
                        return
                    await self._run_batch([node_id], context, settings, state)

            if state.status is not None:
                return

    def _should_stop(self, context: ExecutionContext, state: RunState) -> bool:
        """Check before launching work; sets CANCELLED/TIMEOUT when applicable"""
        if state.status is not None:
            return True
        if context.is_cancelled():
            state.stop(WorkflowStatus.CANCELLED, "Execution cancelled")
            return True
        if context.is_expired():
            state.stop(WorkflowStatus.TIMEOUT, "Execution exceeded run timeout")
            return True
        return False

    async def _run_batch(
        self,
        node_ids: List[str],
        context: ExecutionContext,
        settings: ExecutionSettings,
        state: RunState
    ) -> None:
        """Run nodes concurrently until all finish, or the run must stop"""
        tasks = {
            asyncio.ensure_future(self._execute_node(context.graph.node(node_id), context, settings, state)): node_id
            for node_id in node_ids
        }
        pending = set(tasks)
        cancel_waiter = asyncio.ensure_future(context.cancel_event.wait())

        try:
            while pending:
                done, _ = await asyncio.wait(
                    pending | {cancel_waiter},
                    timeout=context.remaining_time(),
                    return_when=asyncio.FIRST_COMPLETED,
                )
                if not done:
                    state.stop(WorkflowStatus.TIMEOUT, "Execution exceeded run timeout")
                    break

                for task in done:
                    if task is cancel_waiter:
                        continue
                    pending.discard(task)
                    node = context.graph.node(tasks[task])
                    await self._complete(node, task.result(), context, settings, state)

                if cancel_waiter in done:
                    state.stop(WorkflowStatus.CANCELLED, "Execution cancelled")
                if state.status is not None:
                    break
        finally:
            cancel_waiter.cancel()
            if pending:
                await self._abandon(pending, tasks, context, state)

    async def _abandon(self, pending, tasks, context: ExecutionContext, state: RunState) -> None:
        """
        Best-effort cancel of in-flight nodes.

        Waits at most the configured grace period; results of abandoned nodes
        are never recorded.
        """
        for task in pending:
            task.cancel()
            node_id = tasks[task]
            state.node_states[node_id] = NodeState.CANCELLED
            log_event(
                logger, "node_cancelled", level="WARNING",
                execution_id=context.execution_id,
                node_id=node_id,
                node_name=context.graph.node(node_id).name,
            )
        await asyncio.wait(pending, timeout=self.config.cancel_grace_seconds)

    async def _execute_node(
        self,
        node,
        context: ExecutionContext,
        settings: ExecutionSettings,
        state: RunState
    ) -> NodeResult:
        """Run one node with retry. Returns its final NodeResult."""
        processor = self.registry.get(node.type)
        max_attempts = max(1, settings.max_retries)
        attempt = 0

        while True:
            attempt += 1
            state.node_states[node.id] = NodeState.RUNNING
            log_event(
                logger, "node_started", level="DEBUG",
                execution_id=context.execution_id,
                node_id=node.id,
                node_name=node.name,
                node_type=node.type,
                attempt=attempt,
            )
            if attempt == 1:
                await state.events.node_started(node)

            result = await self._invoke(processor, node, context)
            if result.succeeded or not result.retryable or attempt >= max_attempts:
                return result.model_copy(update={"attempts": attempt})

            delay = compute_backoff(attempt, settings.retry_delay, settings.max_retry_delay)
            remaining = context.remaining_time()
            if remaining is not None:
                delay = min(delay, remaining)

            state.node_states[node.id] = NodeState.RETRYING
            log_event(
                logger, "node_retry_scheduled", level="WARNING",
                execution_id=context.execution_id,
                node_id=node.id,
                node_name=node.name,
                attempt=attempt,
                max_attempts=max_attempts,
                delay=delay,
                error=result.error,
                error_code=result.error_code,
            )
            await self._sleep(delay)

    async def _invoke(self, processor, node, context: ExecutionContext) -> NodeResult:
        """One attempt, bounded by the node's own timeout"""
        if not node.timeout:
            return await processor.process(node, context)

        started_at = datetime.now(timezone.utc)
        started = time.monotonic()
        try:
            return await asyncio.wait_for(processor.process(node, context), timeout=node.timeout)
        except asyncio.TimeoutError:
            return error_result(node, NodeTimeoutException(node.id, node.name, node.timeout), started_at, started)

    async def _complete(
        self,
        node,
        result: NodeResult,
        context: ExecutionContext,
        settings: ExecutionSettings,
        state: RunState
    ) -> None:
        context.record(result)
        state.results[node.id] = result
        await self.execution_logger.log_node(context.execution_id, result)

        if result.succeeded:
            state.node_states[node.id] = NodeState.SUCCESS
            log_event(
                logger, "node_completed",
                execution_id=context.execution_id,
                node_id=node.id,
                node_name=node.name,
                duration_ms=result.duration,
                attempts=result.attempts,
            )
            await state.events.node_finished(node, result)
            return

        state.node_states[node.id] = NodeState.ERROR
        state.errors.append(NodeError(
            node_id=node.id,
            node_name=node.name,
            node_type=node.type,
            error=result.error or "Node execution failed",
            error_code=result.error_code,
            retryable=result.retryable,
            attempts=result.attempts,
        ))
        log_event(
            logger, "node_failed", level="WARNING",
            execution_id=context.execution_id,
            node_id=node.id,
            node_name=node.name,
            error=result.error,
            error_code=result.error_code,
            attempts=result.attempts,
        )
        await state.events.node_finished(node, result)

        if settings.parallel_error_strategy == ParallelErrorStrategy.FAIL_FAST:
            state.stop(WorkflowStatus.FAILED, f"Node '{node.name}' failed: {result.error}")

    def _final_status(
        self,
        graph: WorkflowGraph,
        settings: ExecutionSettings,
        state: RunState
    ) -> Tuple[WorkflowStatus, Optional[str]]:
        if state.status is not None:
            return state.status, state.error

        if settings.parallel_error_strategy == ParallelErrorStrategy.FAIL_FAST:
            return WorkflowStatus.COMPLETED, None

        terminals = graph.terminal_nodes()
        failed = [node_id for node_id in terminals if state.is_blocking(node_id)]
        succeeded = any(state.node_states[node_id] == NodeState.SUCCESS for node_id in terminals)
        # Terminals skipped by branch routing alone leave the run completed
        if not failed and (succeeded or not state.errors):
            return WorkflowStatus.COMPLETED, None

        if not state.errors:
            return WorkflowStatus.FAILED, f"Terminal node '{failed[0]}' could not run"
        first = state.errors[0]
        return WorkflowStatus.FAILED, f"Node '{first.node_name}' failed: {first.error}"
