# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
CODE node: run user code in the sandbox collaborator

The code string itself is never variable-resolved; values reach it through
the resolved `inputs` mapping.
"""

from typing import Optional

from flowengine.collaborators.base import CodeSandbox
from flowengine.engine.context import ExecutionContext
from flowengine.engine.exceptions import NodeConfigurationError
from flowengine.engine.nodes import NodeType
from .base import NodeProcessor, ProcessorOutput


class CodeNodeProcessor(NodeProcessor):
    node_type = NodeType.CODE

    def __init__(self, sandbox: Optional[CodeSandbox] = None):
        self.sandbox = sandbox

    async def execute(self, node, context: ExecutionContext) -> ProcessorOutput:
        cfg = node.config
        if not cfg.code.strip():
            raise NodeConfigurationError("Code node has no code")
        if self.sandbox is None:
            raise NodeConfigurationError("No code sandbox is configured")

        inputs = context.resolve_config(cfg.inputs)
        outcome = await self.sandbox.run(cfg.code, cfg.language, inputs, timeout=cfg.timeout)

        return ProcessorOutput(data={
            "result": outcome.result,
            "output": outcome.output,
            "logs": outcome.logs,
            "executionTimeMs": outcome.execution_time_ms,
            "truncated": outcome.truncated,
        })
