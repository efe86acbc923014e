# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Result aggregation

Turns the context and scheduler state of a finished run into the immutable
WorkflowExecutionResult.
"""

from typing import Any, Dict, List, Mapping, Optional, Sequence

from .context import ExecutionContext
from .models import (
    NodeError,
    NodeResult,
    NodeState,
    OutputFile,
    SkippedNode,
    TokenUsage,
    WorkflowExecutionResult,
    WorkflowStatus,
)
from .nodes import NodeType


class ResultAggregator:
    """Builds the terminal result of a run"""

    def sum_tokens(self, results: Sequence[NodeResult]) -> TokenUsage:
        usage = TokenUsage()
        for result in results:
            if result.token_usage is not None:
                usage = usage + result.token_usage
        return usage

    def collect_files(self, results: Sequence[NodeResult]) -> List[OutputFile]:
        return [file for result in results for file in result.output_files]

    def select_output(self, results: Sequence[NodeResult]) -> Dict[str, Any]:
        """
        The run's overall output.

        Data of the succeeded OUTPUT node (keyed by node name when there are
        several), else the data of the last succeeded PROCESS node, else {}.
        """
        succeeded = [result for result in results if result.succeeded]
        outputs = [result for result in succeeded if result.node_type == NodeType.OUTPUT.value]
        if len(outputs) == 1:
            return dict(outputs[0].data)
        if outputs:
            return {result.node_name: dict(result.data) for result in outputs}

        processes = [result for result in succeeded if result.node_type == NodeType.PROCESS.value]
        if processes:
            return dict(processes[-1].data)
        return {}

    def build(
        self,
        context: ExecutionContext,
        status: WorkflowStatus,
        error: Optional[str],
        node_states: Mapping[str, NodeState],
        skipped: Sequence[SkippedNode],
        errors: Sequence[NodeError],
        total_duration: float,
    ) -> WorkflowExecutionResult:
        results = list(context.node_outputs.values())
        tokens = self.sum_tokens(results)

        return WorkflowExecutionResult(
            execution_id=context.execution_id,
            workflow_id=context.workflow_id,
            status=status,
            mode=context.mode,
            output=self.select_output(results),
            node_results=results,
            node_states=dict(node_states),
            skipped_nodes=list(skipped),
            errors=list(errors),
            error=error,
            warnings=list(context.warnings),
            total_duration=total_duration,
            total_tokens=tokens.total_tokens,
            prompt_tokens=tokens.prompt_tokens,
            completion_tokens=tokens.completion_tokens,
            output_files=self.collect_files(results),
            started_at=context.started_at,
            completed_at=context.completed_at or context.started_at,
        )
