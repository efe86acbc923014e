# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Node processor contract and registry

A processor turns one node plus the execution context into a NodeResult.
`process` never raises for node-level failures: the exception is classified
and returned as a NodeResult with status "error" so a single broken node
cannot take down the orchestrator.
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Union

from flowengine.core.errors import ConfigurationError
from flowengine.core.logging import get_engine_logger, log_event
from flowengine.engine.context import ExecutionContext
from flowengine.engine.error_handler import analyze_error
from flowengine.engine.exceptions import UnknownNodeTypeError
from flowengine.engine.models import NodeResult, NodeStatus, OutputFile, TokenUsage
from flowengine.engine.nodes import NodeType

logger = get_engine_logger("processors")


@dataclass
class ProcessorOutput:
    """What a processor produced, before timing and status are stamped on"""
    data: Dict[str, Any]
    token_usage: Optional[TokenUsage] = None
    output_files: List[OutputFile] = field(default_factory=list)


def _elapsed_ms(started: float) -> float:
    return round((time.monotonic() - started) * 1000, 3)


def error_result(node, error: BaseException, started_at: datetime, started: float) -> NodeResult:
    """Build the error NodeResult for a failed node execution"""
    analysis = analyze_error(error)
    return NodeResult(
        node_id=node.id,
        node_name=node.name,
        node_type=node.type,
        status=NodeStatus.ERROR,
        error=analysis.message,
        error_code=analysis.code,
        retryable=analysis.retryable,
        started_at=started_at,
        completed_at=datetime.now(timezone.utc),
        duration=_elapsed_ms(started),
    )


class NodeProcessor(ABC):
    """Base class for all node type handlers"""

    node_type: NodeType

    async def process(self, node, context: ExecutionContext) -> NodeResult:
        started_at = datetime.now(timezone.utc)
        started = time.monotonic()
        try:
            output = await self.execute(node, context)
        except Exception as e:
            result = error_result(node, e, started_at, started)
            log_event(
                logger, "node_processor_failed", level="WARNING",
                execution_id=context.execution_id,
                node_id=node.id,
                node_type=node.type,
                error=result.error,
                error_code=result.error_code,
                retryable=result.retryable,
            )
            return result

        return NodeResult(
            node_id=node.id,
            node_name=node.name,
            node_type=node.type,
            status=NodeStatus.SUCCESS,
            data=output.data,
            started_at=started_at,
            completed_at=datetime.now(timezone.utc),
            duration=_elapsed_ms(started),
            token_usage=output.token_usage,
            output_files=output.output_files,
        )

    @abstractmethod
    async def execute(self, node, context: ExecutionContext) -> ProcessorOutput:
        """Do the node's work. Raise to fail the node."""


class ProcessorRegistry:
    """Maps node types to their processors"""

    def __init__(self, processors: Iterable[NodeProcessor] = ()):
        self._processors: Dict[NodeType, NodeProcessor] = {}
        for processor in processors:
            self.register(processor)

    def register(self, processor: NodeProcessor, node_type: Union[NodeType, str, None] = None) -> None:
        key = NodeType(node_type or processor.node_type)
        self._processors[key] = processor

    def get(self, node_type: Union[NodeType, str]) -> NodeProcessor:
        try:
            return self._processors[NodeType(node_type)]
        except (KeyError, ValueError):
            raise UnknownNodeTypeError(str(node_type))

    def supports(self, node_type: Union[NodeType, str]) -> bool:
        try:
            return NodeType(node_type) in self._processors
        except ValueError:
            return False

    def missing_types(self) -> List[NodeType]:
        return [node_type for node_type in NodeType if node_type not in self._processors]

    def ensure_complete(self) -> None:
        """Fail unless every node type has a processor"""
        missing = self.missing_types()
        if missing:
            raise ConfigurationError(
                f"No processor registered for node types: {', '.join(t.value for t in missing)}"
            )

    def validate_graph(self, graph) -> None:
        """Fail before execution if any node in the graph has no processor"""
        for node in graph.nodes.values():
            if not self.supports(node.type):
                raise UnknownNodeTypeError(node.type, node.id)
