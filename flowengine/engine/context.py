# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Execution Context

State threaded through a single workflow run.

Node outputs are append-only: each node writes its own NodeResult exactly
once and results are immutable, so sibling and descendant nodes read them
without locking. AI provider and knowledge base settings are snapshots taken
at run start.
"""

import asyncio
import logging
import time
from collections import OrderedDict
from datetime import datetime, timezone
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional

from .exceptions import WorkflowExecutionError
from .models import AIProviderConfig, ExecutionMode, KnowledgeBaseConfig, NodeResult
from .variables import VariableResolver

if TYPE_CHECKING:
    from .validation import WorkflowGraph

logger = logging.getLogger(__name__)


class ExecutionContext:
    """
    Execution context for a workflow run.

    Tracks:
    - Node results, indexed by node name and node id
    - Global variables (invocation input included)
    - Run deadline and cancellation signal
    - Read-only AI / knowledge base configuration snapshots
    """

    def __init__(
        self,
        execution_id: str,
        workflow_id: str,
        graph: "WorkflowGraph",
        input: Optional[Dict[str, Any]] = None,
        global_variables: Optional[Dict[str, Any]] = None,
        deadline: Optional[float] = None,
        ai_configs: Optional[Mapping[str, AIProviderConfig]] = None,
        default_ai_config_id: Optional[str] = None,
        knowledge_bases: Optional[Mapping[str, KnowledgeBaseConfig]] = None,
        cancel_event: Optional[asyncio.Event] = None,
        mode: ExecutionMode = ExecutionMode.PRODUCTION,
        resolver: Optional[VariableResolver] = None,
    ):
        self.execution_id = execution_id
        self.workflow_id = workflow_id
        self.graph = graph
        self.mode = mode
        self.input: Dict[str, Any] = dict(input or {})
        self.started_at = datetime.now(timezone.utc)
        self.completed_at: Optional[datetime] = None
        self.deadline = deadline
        self.cancel_event = cancel_event
        self.resolver = resolver or VariableResolver()

        self.global_variables: Dict[str, Any] = dict(global_variables or {})
        self.global_variables.setdefault("input", self.input)
        self.global_variables.setdefault("triggerInput", self.input)

        self._ai_configs = MappingProxyType(dict(ai_configs or {}))
        self._default_ai_config_id = default_ai_config_id
        self._knowledge_bases = MappingProxyType(dict(knowledge_bases or {}))

        self._outputs: "OrderedDict[str, NodeResult]" = OrderedDict()
        self._by_id: Dict[str, NodeResult] = {}
        self.warnings: List[str] = []

    # -- node outputs --

    @property
    def node_outputs(self) -> Mapping[str, NodeResult]:
        """Completed node results keyed by node name, in completion order"""
        return MappingProxyType(self._outputs)

    def record(self, result: NodeResult) -> None:
        """Append a node's result. Each node may be recorded only once."""
        if result.node_id in self._by_id:
            raise WorkflowExecutionError(f"Result for node '{result.node_id}' was already recorded")
        self._outputs[result.node_name] = result
        self._by_id[result.node_id] = result

    def get_output(self, key: str) -> Optional[NodeResult]:
        """Look up a result by node name, falling back to node id"""
        result = self._outputs.get(key)
        if result is None:
            result = self._by_id.get(key)
        return result

    def predecessor_results(self, node_id: str) -> List[NodeResult]:
        """Results of the node's direct predecessors, in edge order"""
        results = []
        for predecessor_id in self.graph.predecessors.get(node_id, []):
            result = self._by_id.get(predecessor_id)
            if result is not None:
                results.append(result)
        return results

    # -- variables --

    def resolve(self, template: str, scope: Optional[Mapping[str, Any]] = None) -> str:
        return self.resolver.resolve(template, self, scope)

    def resolve_value(self, reference: str, scope: Optional[Mapping[str, Any]] = None) -> Any:
        return self.resolver.resolve_value(reference, self, scope)

    def resolve_config(self, value: Any, scope: Optional[Mapping[str, Any]] = None, skip_keys: frozenset = frozenset()) -> Any:
        return self.resolver.resolve_config(value, self, scope, skip_keys)

    def set_variable(self, name: str, value: Any) -> None:
        self.global_variables[name] = value

    def add_warning(self, message: str) -> None:
        if message not in self.warnings:
            self.warnings.append(message)
            logger.warning(message, extra={"execution_id": self.execution_id})

    # -- configuration snapshots --

    def ai_config(self, config_id: Optional[str] = None) -> Optional[AIProviderConfig]:
        """Provider settings for config_id, else the run's default provider"""
        if config_id and config_id in self._ai_configs:
            return self._ai_configs[config_id]
        if self._default_ai_config_id:
            return self._ai_configs.get(self._default_ai_config_id)
        return None

    @property
    def knowledge_bases(self) -> Mapping[str, KnowledgeBaseConfig]:
        return self._knowledge_bases

    def knowledge_base(self, kb_id: str) -> Optional[KnowledgeBaseConfig]:
        return self._knowledge_bases.get(kb_id)

    # -- deadline / cancellation --

    def remaining_time(self) -> Optional[float]:
        """Seconds left before the run deadline, None when unbounded"""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def is_expired(self) -> bool:
        remaining = self.remaining_time()
        return remaining is not None and remaining <= 0

    def is_cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    def finalize(self) -> None:
        """Mark execution as complete"""
        self.completed_at = datetime.now(timezone.utc)
