# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
INPUT node: publishes the run's input fields under their field names
"""

from flowengine.engine.context import ExecutionContext
from flowengine.engine.exceptions import NodeConfigurationError
from flowengine.engine.nodes import NodeType
from .base import NodeProcessor, ProcessorOutput


class InputNodeProcessor(NodeProcessor):
    node_type = NodeType.INPUT

    async def execute(self, node, context: ExecutionContext) -> ProcessorOutput:
        data = {}
        for field in node.config.fields:
            # Invocation payload overrides the configured default
            value = context.input.get(field.name, field.value)
            value = context.resolve_config(value)
            if field.required and value in (None, ""):
                raise NodeConfigurationError(f"Input field '{field.name}' is required")
            data[field.name] = value
        return ProcessorOutput(data=data)
