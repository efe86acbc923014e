# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Collaborator interfaces

The engine talks to the outside world (AI providers, vector retrieval, file
storage, code sandbox, persistence) only through these protocols. Concrete
adapters live next to this module; tests substitute AsyncMocks.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from flowengine.engine.models import TokenUsage


@dataclass(frozen=True)
class CompletionConfig:
    """Resolved model parameters for one completion call"""
    provider: str = "openai"
    temperature: float = 0.7
    max_tokens: int = 2048
    base_url: Optional[str] = None
    api_key: Optional[str] = field(default=None, repr=False)


@dataclass(frozen=True)
class CompletionResponse:
    content: str
    model: str = ""
    token_usage: Optional[TokenUsage] = None


@dataclass(frozen=True)
class RankedChunk:
    content: str
    document_name: str
    score: float
    document_id: Optional[str] = None
    chunk_id: Optional[str] = None


@dataclass(frozen=True)
class FileMetadata:
    file_name: str
    mime_type: str
    format: str
    execution_id: Optional[str] = None
    node_id: Optional[str] = None


@dataclass(frozen=True)
class StoredFile:
    url: str
    size: int


@dataclass
class SandboxResult:
    output: str = ""
    result: Any = None
    logs: List[str] = field(default_factory=list)
    execution_time_ms: float = 0.0
    truncated: bool = False


@runtime_checkable
class CompletionClient(Protocol):
    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        model: str,
        config: CompletionConfig
    ) -> CompletionResponse:
        """Raise CompletionError(retryable=...) on provider failures."""
        ...


@runtime_checkable
class RetrievalClient(Protocol):
    async def retrieve(self, kb_id: str, query: str, top_k: int, threshold: float) -> List[RankedChunk]:
        ...


@runtime_checkable
class StorageClient(Protocol):
    async def store(self, buffer: bytes, metadata: FileMetadata) -> StoredFile:
        ...


@runtime_checkable
class CodeSandbox(Protocol):
    async def run(
        self,
        code: str,
        language: str,
        inputs: Dict[str, Any],
        timeout: Optional[float] = None
    ) -> SandboxResult:
        """Raise SandboxSecurityError for forbidden code, TransientNodeError on timeout."""
        ...


@runtime_checkable
class PersistenceClient(Protocol):
    async def load_workflow_definition(self, workflow_id: str, mode: str = "production") -> Dict[str, Any]:
        ...

    async def append_execution_log(self, execution_id: str, node_result: Dict[str, Any]) -> None:
        ...

    async def persist_execution_result(self, result: Dict[str, Any]) -> None:
        ...
