# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Execution progress events

Pushes node_start / node_complete / node_error / node_skipped and a final
execution_complete or execution_error event to an optional async callback,
for live progress views (SSE, websockets). Like the execution log side
channel, a failing callback is logged and never changes the run.
"""

from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from flowengine.core.logging import get_engine_logger, log_event
from .models import ExecutionProgressEvent, NodeResult, ProgressEventType, WorkflowStatus

logger = get_engine_logger("events")

UpdateCallback = Callable[[ExecutionProgressEvent], Awaitable[Any]]


class ProgressReporter:
    """Tracks per-run progress and forwards events to update_callback."""

    def __init__(self, execution_id: str, total_nodes: int, update_callback: Optional[UpdateCallback] = None):
        self.execution_id = execution_id
        self.total_nodes = total_nodes
        self.update_callback = update_callback
        self.completed_nodes: List[str] = []
        self.finished = 0

    @property
    def progress(self) -> int:
        if self.total_nodes == 0:
            return 100
        return round(self.finished * 100 / self.total_nodes)

    async def node_started(self, node) -> None:
        await self._send(ProgressEventType.NODE_START, node, status="running")

    async def node_finished(self, node, result: NodeResult) -> None:
        self.finished += 1
        if result.succeeded:
            self.completed_nodes.append(node.id)
            await self._send(ProgressEventType.NODE_COMPLETE, node, status="completed", output=result.data)
        else:
            await self._send(ProgressEventType.NODE_ERROR, node, status="failed", error=result.error)

    async def node_skipped(self, node, reason: str) -> None:
        self.finished += 1
        await self._send(ProgressEventType.NODE_SKIPPED, node, status="skipped", error=reason)

    async def execution_finished(self, status: WorkflowStatus, error: Optional[str]) -> None:
        if status == WorkflowStatus.COMPLETED:
            await self._send(ProgressEventType.EXECUTION_COMPLETE, status=status.value, progress=100)
        else:
            await self._send(ProgressEventType.EXECUTION_ERROR, status=status.value, error=error)

    async def _send(
        self,
        event_type: ProgressEventType,
        node=None,
        progress: Optional[int] = None,
        **fields: Any
    ) -> None:
        if self.update_callback is None:
            return

        node_fields: Dict[str, Any] = {}
        if node is not None:
            node_fields = {"node_id": node.id, "node_name": node.name, "node_type": node.type}
        event = ExecutionProgressEvent(
            execution_id=self.execution_id,
            type=event_type,
            progress=self.progress if progress is None else progress,
            completed_nodes=list(self.completed_nodes),
            total_nodes=self.total_nodes,
            timestamp=datetime.now(timezone.utc),
            **node_fields,
            **fields
        )

        try:
            await self.update_callback(event)
        except Exception as e:
            log_event(
                logger, "progress_callback_failed", level="WARNING",
                execution_id=self.execution_id,
                event_type=event_type.value,
                error=str(e),
            )
