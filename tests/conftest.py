# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Test Fixtures and Utilities

Provides engine configuration, fake collaborators and context factories so
the engine can be exercised without AI providers, networks or sandboxes.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock

import pytest

from flowengine.collaborators.base import CompletionResponse, StoredFile
from flowengine.core.config import EngineConfig
from flowengine.engine.context import ExecutionContext
from flowengine.engine.models import NodeResult, NodeStatus, TokenUsage, WorkflowDefinition
from flowengine.engine.nodes import NodeType
from flowengine.engine.validation import build_graph
from flowengine.processors.base import NodeProcessor, ProcessorOutput

EXECUTION_ID = "exec_20250101_120000_abcdef12"


# ============================================================================
# Configuration
# ============================================================================

@pytest.fixture
def engine_config(tmp_path):
    """Engine config with fast retries and temporary directories"""
    return EngineConfig(
        retry_delay=0.01,
        max_retry_delay=0.05,
        cancel_grace_seconds=0.2,
        data_dir=str(tmp_path / "data"),
        storage_dir=str(tmp_path / "outputs"),
        storage_public_url="/files",
        store_dir=str(tmp_path / "executions"),
    )


# ============================================================================
# Fake collaborators
# ============================================================================

@pytest.fixture
def completion():
    """Completion collaborator answering every call with the same response"""
    client = AsyncMock()
    client.complete.return_value = CompletionResponse(
        content="generated",
        model="gpt-4o-mini",
        token_usage=TokenUsage(prompt_tokens=10, completion_tokens=5),
    )
    return client


@pytest.fixture
def storage():
    client = AsyncMock()

    async def store(buffer, metadata):
        return StoredFile(url=f"/files/{metadata.execution_id}/{metadata.file_name}", size=len(buffer))

    client.store.side_effect = store
    return client


class ScriptedProcessor(NodeProcessor):
    """
    Processor whose behavior is scripted per node id.

    A script entry may be a value (published as `result`), an exception to
    raise, an awaitable factory, or a list consumed one entry per attempt.
    """

    def __init__(self, node_type: NodeType = NodeType.PROCESS, script: Optional[Dict[str, Any]] = None, delay: float = 0):
        self.node_type = node_type
        self.script = dict(script or {})
        self.delay = delay
        self.calls: List[str] = []
        self.started: Dict[str, datetime] = {}

    async def execute(self, node, context):
        self.calls.append(node.id)
        self.started.setdefault(node.id, datetime.now(timezone.utc))
        if self.delay:
            await asyncio.sleep(self.delay)

        behavior = self.script.get(node.id)
        if isinstance(behavior, list):
            behavior = behavior.pop(0) if len(behavior) > 1 else behavior[0]
        if isinstance(behavior, BaseException):
            raise behavior
        if callable(behavior):
            return await behavior(node, context)
        if isinstance(behavior, ProcessorOutput):
            return behavior
        return ProcessorOutput(data={"result": behavior if behavior is not None else f"{node.id} done"})


@pytest.fixture
def scripted():
    return ScriptedProcessor


# ============================================================================
# Context factories
# ============================================================================

@pytest.fixture
def make_context():
    """Build an ExecutionContext for a definition dict without running it"""
    def _make(definition: Dict[str, Any], input: Optional[Dict[str, Any]] = None, **kwargs):
        parsed = WorkflowDefinition.model_validate(definition)
        return ExecutionContext(
            execution_id=EXECUTION_ID,
            workflow_id=parsed.id,
            graph=build_graph(parsed),
            input=input,
            global_variables=parsed.global_variables,
            **kwargs
        )
    return _make


@pytest.fixture
def record():
    """Record a finished result for the named node in a context"""
    def _record(
        context: ExecutionContext,
        name: str,
        data: Dict[str, Any],
        status: NodeStatus = NodeStatus.SUCCESS,
        token_usage: Optional[TokenUsage] = None,
        offset_ms: int = 0,
    ) -> NodeResult:
        node = context.graph.node_by_name(name)
        now = datetime.now(timezone.utc) + timedelta(milliseconds=offset_ms)
        result = NodeResult(
            node_id=node.id,
            node_name=node.name,
            node_type=node.type,
            status=status,
            data=data,
            error=None if status == NodeStatus.SUCCESS else "failed",
            started_at=now,
            completed_at=now,
            token_usage=token_usage,
        )
        context.record(result)
        return result
    return _record


# ============================================================================
# Token counting
# ============================================================================

class WordCounter:
    """One token per whitespace-separated word; avoids loading tiktoken encodings"""

    def count_tokens(self, text, model="gpt-4"):
        return len(text.split())

    def truncate_to_token_limit(self, text, max_tokens, model="gpt-4"):
        return " ".join(text.split()[:max_tokens])


@pytest.fixture
def token_counter():
    return WordCounter()
