# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
CONDITION node: two-way branch

Publishes `branch` ("true"/"false"); the orchestrator only follows outgoing
edges whose source handle matches it.
"""

from flowengine.engine.context import ExecutionContext
from flowengine.engine.exceptions import NodeConfigurationError
from flowengine.engine.nodes import NodeType
from .base import NodeProcessor, ProcessorOutput
from .conditions import evaluate_condition, evaluate_expression


class ConditionNodeProcessor(NodeProcessor):
    node_type = NodeType.CONDITION

    async def execute(self, node, context: ExecutionContext) -> ProcessorOutput:
        cfg = node.config

        if cfg.expression:
            met = evaluate_expression(cfg.expression, context)
            evaluated = [{"expression": cfg.expression, "result": met}]
        elif cfg.conditions:
            evaluated = [evaluate_condition(condition, context) for condition in cfg.conditions]
            outcomes = [entry["result"] for entry in evaluated]
            met = all(outcomes) if cfg.evaluation_mode == "all" else any(outcomes)
        else:
            raise NodeConfigurationError("Condition node has neither conditions nor an expression")

        return ProcessorOutput(data={
            "result": met,
            "conditionsMet": met,
            "evaluatedConditions": evaluated,
            "branch": "true" if met else "false",
        })
