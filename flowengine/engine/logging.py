# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Execution log side channel

Forwards node results and the final run result to the persistence
collaborator. Fails gracefully if persistence is not available: a logging
failure never changes the outcome of a run.
"""

from typing import Optional

from flowengine.collaborators.base import PersistenceClient
from flowengine.core.logging import get_engine_logger, log_event
from .models import NodeResult, WorkflowExecutionResult

logger = get_engine_logger("execution_log")


class ExecutionLogger:
    """
    Logs workflow execution to the persistence collaborator.

    Fails gracefully if persistence is unavailable.
    """

    def __init__(self, persistence: Optional[PersistenceClient] = None):
        self.persistence = persistence
        self.enabled = persistence is not None

    async def log_node(self, execution_id: str, result: NodeResult) -> None:
        """Append one node result to the execution log"""
        if not self.enabled:
            return

        try:
            await self.persistence.append_execution_log(
                execution_id,
                result.model_dump(mode="json", by_alias=True)
            )
        except Exception as e:
            log_event(
                logger, "execution_log_failed", level="WARNING",
                execution_id=execution_id,
                node_id=result.node_id,
                error=str(e),
            )
            # Continue execution even if logging fails

    async def log_result(self, result: WorkflowExecutionResult) -> None:
        """Persist the terminal result of a run"""
        if not self.enabled:
            return

        try:
            await self.persistence.persist_execution_result(result.model_dump(mode="json", by_alias=True))
        except Exception as e:
            log_event(
                logger, "execution_result_persist_failed", level="WARNING",
                execution_id=result.execution_id,
                error=str(e),
            )
