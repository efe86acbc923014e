# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
FlowEngine - DAG workflow execution engine.

    result = await execute_workflow(definition, input={"query": "..."})

For repeated runs, keep a WorkflowEngineService open instead so collaborators
and HTTP connections are shared.
"""

from typing import Any, Dict, Optional

from flowengine.engine.models import ExecutionOptions, WorkflowDefinition, WorkflowExecutionResult
from flowengine.service import WorkflowEngineService

__version__ = "1.0.0"


async def execute_workflow(
    definition,
    input: Optional[Dict[str, Any]] = None,
    options=None,
    **service_kwargs: Any
) -> WorkflowExecutionResult:
    """Run one workflow with a short-lived service"""
    run_kwargs = {
        key: service_kwargs.pop(key)
        for key in ("ai_configs", "knowledge_bases", "default_ai_config_id", "execution_id", "update_callback")
        if key in service_kwargs
    }
    async with WorkflowEngineService(**service_kwargs) as service:
        return await service.execute_workflow(definition, input=input, options=options, **run_kwargs)


__all__ = [
    "ExecutionOptions",
    "WorkflowDefinition",
    "WorkflowEngineService",
    "WorkflowExecutionResult",
    "execute_workflow",
    "__version__",
]
