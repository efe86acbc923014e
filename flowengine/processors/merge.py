# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
MERGE node: join parallel branches

Combines the outputs of the node's direct predecessors that produced a
result. Branches skipped because they were not taken are simply absent.
"""

from flowengine.engine.context import ExecutionContext
from flowengine.engine.exceptions import FatalNodeError
from flowengine.engine.nodes import NodeType
from flowengine.engine.variables import primary_value
from .base import NodeProcessor, ProcessorOutput


class MergeNodeProcessor(NodeProcessor):
    node_type = NodeType.MERGE

    async def execute(self, node, context: ExecutionContext) -> ProcessorOutput:
        cfg = node.config
        arrived = context.predecessor_results(node.id)
        succeeded = [result for result in arrived if result.succeeded]

        if cfg.merge_strategy == "all" and len(succeeded) < len(arrived):
            failed = [result.node_name for result in arrived if not result.succeeded]
            raise FatalNodeError(f"Merge requires all branches; failed: {', '.join(failed)}")
        if not succeeded:
            raise FatalNodeError("No branch produced a result to merge")

        # race: earliest completion wins
        if cfg.merge_strategy == "race":
            succeeded = [min(succeeded, key=lambda result: result.completed_at)]

        if cfg.output_mode == "array":
            merged = [primary_value(result.data) for result in succeeded]
        elif cfg.output_mode == "first":
            merged = primary_value(succeeded[0].data)
        else:
            merged = {result.node_name: primary_value(result.data) for result in succeeded}

        return ProcessorOutput(data={
            "result": merged,
            "merge": {
                "strategy": cfg.merge_strategy,
                "totalBranches": len(context.graph.predecessors.get(node.id, [])),
                "successfulBranches": len(succeeded),
                "branchNames": [result.node_name for result in succeeded],
            },
        })
