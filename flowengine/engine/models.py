# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Workflow Engine Models

Pydantic models for workflow definitions, execution options and results.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import ConfigDict, Field, model_validator

from .nodes import EngineModel, NodeDefinition


class NodeStatus(str, Enum):
    """Terminal status carried by a NodeResult"""
    SUCCESS = "success"
    ERROR = "error"


class NodeState(str, Enum):
    """Scheduler-side lifecycle of a node within one run"""
    PENDING = "pending"
    RUNNING = "running"
    RETRYING = "retrying"
    SUCCESS = "success"
    ERROR = "error"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"


class WorkflowStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    TIMEOUT = "timeout"


class ParallelErrorStrategy(str, Enum):
    FAIL_FAST = "fail_fast"
    CONTINUE = "continue"
    COLLECT = "collect"


class ExecutionMode(str, Enum):
    PRODUCTION = "production"
    DRAFT = "draft"


class SkipReason(str, Enum):
    UPSTREAM_FAILED = "upstream_failed"
    BRANCH_NOT_TAKEN = "branch_not_taken"


# =============================================================================
# DEFINITION
# =============================================================================

class EdgeDefinition(EngineModel):
    """Directed dependency: target may not start until source is terminal"""
    id: str = ""
    source: str
    target: str
    source_handle: Optional[str] = None
    target_handle: Optional[str] = None

    @model_validator(mode="after")
    def _default_id(self) -> "EdgeDefinition":
        if not self.id:
            self.id = f"{self.source}->{self.target}"
        return self


class ExecutionSettings(EngineModel):
    timeout: int = Field(default=300, gt=0)
    max_retries: int = Field(default=0, ge=0)
    retry_delay: float = Field(default=1.0, ge=0)
    max_retry_delay: float = Field(default=30.0, ge=0)
    enable_parallel_execution: bool = False
    parallel_error_strategy: ParallelErrorStrategy = ParallelErrorStrategy.FAIL_FAST


class WorkflowDefinition(EngineModel):
    """Workflow graph. Immutable for the duration of a run."""
    model_config = ConfigDict(frozen=True)

    id: str = ""
    name: str = ""
    version: int = 1
    nodes: List[NodeDefinition] = Field(default_factory=list)
    edges: List[EdgeDefinition] = Field(default_factory=list)
    settings: ExecutionSettings = Field(default_factory=ExecutionSettings)
    global_variables: Dict[str, Any] = Field(default_factory=dict)


class ExecutionOptions(EngineModel):
    """Per-run overrides of the definition's settings"""
    mode: ExecutionMode = ExecutionMode.PRODUCTION
    timeout_seconds: Optional[int] = Field(default=None, gt=0)
    max_retries: Optional[int] = Field(default=None, ge=0)
    parallel_error_strategy: Optional[ParallelErrorStrategy] = None
    enable_parallel_execution: Optional[bool] = None

    def apply(self, settings: ExecutionSettings) -> ExecutionSettings:
        overrides = {
            "timeout": self.timeout_seconds,
            "max_retries": self.max_retries,
            "parallel_error_strategy": self.parallel_error_strategy,
            "enable_parallel_execution": self.enable_parallel_execution,
        }
        return settings.model_copy(update={k: v for k, v in overrides.items() if v is not None})


# =============================================================================
# RUN-TIME SNAPSHOTS
# =============================================================================

class AIProviderConfig(EngineModel):
    """Organization AI provider settings, snapshotted once per run"""
    model_config = ConfigDict(frozen=True)

    id: str
    provider: str = "openai"
    default_model: Optional[str] = None
    base_url: Optional[str] = None
    api_key: Optional[str] = Field(default=None, repr=False)
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None


class KnowledgeBaseConfig(EngineModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    is_active: bool = True
    embedding_model: Optional[str] = None


# =============================================================================
# RESULTS
# =============================================================================

class TokenUsage(EngineModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @model_validator(mode="after")
    def _fill_total(self) -> "TokenUsage":
        if not self.total_tokens:
            self.total_tokens = self.prompt_tokens + self.completion_tokens
        return self

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )


class OutputFile(EngineModel):
    name: str
    url: str
    size: int = 0
    format: str = ""
    mime_type: Optional[str] = None
    node_id: Optional[str] = None


class NodeResult(EngineModel):
    """Outcome of one node. Written once into the context, never mutated."""
    model_config = ConfigDict(frozen=True)

    node_id: str
    node_name: str
    node_type: str
    status: NodeStatus
    data: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None
    error_code: Optional[str] = None
    retryable: bool = False
    attempts: int = 1
    started_at: datetime
    completed_at: datetime
    duration: float = 0.0  # milliseconds
    token_usage: Optional[TokenUsage] = None
    output_files: List[OutputFile] = Field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status == NodeStatus.SUCCESS


class NodeError(EngineModel):
    node_id: str
    node_name: str
    node_type: str
    error: str
    error_code: Optional[str] = None
    retryable: bool = False
    attempts: int = 1


class SkippedNode(EngineModel):
    node_id: str
    node_name: str
    reason: SkipReason
    blocked_by: List[str] = Field(default_factory=list)


class WorkflowExecutionResult(EngineModel):
    """Terminal aggregate of one run"""
    model_config = ConfigDict(frozen=True)

    execution_id: str
    workflow_id: str = ""
    status: WorkflowStatus
    mode: ExecutionMode = ExecutionMode.PRODUCTION
    output: Dict[str, Any] = Field(default_factory=dict)
    node_results: List[NodeResult] = Field(default_factory=list)
    node_states: Dict[str, NodeState] = Field(default_factory=dict)
    skipped_nodes: List[SkippedNode] = Field(default_factory=list)
    errors: List[NodeError] = Field(default_factory=list)
    error: Optional[str] = None
    warnings: List[str] = Field(default_factory=list)
    total_duration: float = 0.0  # milliseconds
    total_tokens: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    output_files: List[OutputFile] = Field(default_factory=list)
    started_at: datetime
    completed_at: datetime

    def get_node_result(self, key: str) -> Optional[NodeResult]:
        """Find a node result by node id or node name"""
        for result in self.node_results:
            if result.node_id == key or result.node_name == key:
                return result
        return None


# =============================================================================
# PROGRESS EVENTS
# =============================================================================

class ProgressEventType(str, Enum):
    NODE_START = "node_start"
    NODE_COMPLETE = "node_complete"
    NODE_ERROR = "node_error"
    NODE_SKIPPED = "node_skipped"
    EXECUTION_COMPLETE = "execution_complete"
    EXECUTION_ERROR = "execution_error"


class ExecutionProgressEvent(EngineModel):
    """
    Live progress of one run, pushed to an update callback.

    progress is the share (0-100) of nodes that reached a terminal state;
    completedNodes lists the ids of nodes that succeeded so far.
    """
    model_config = ConfigDict(frozen=True)

    execution_id: str
    type: ProgressEventType
    node_id: Optional[str] = None
    node_name: Optional[str] = None
    node_type: Optional[str] = None
    status: Optional[str] = None
    progress: int = 0
    completed_nodes: List[str] = Field(default_factory=list)
    total_nodes: int = 0
    error: Optional[str] = None
    output: Optional[Dict[str, Any]] = None
    timestamp: datetime
