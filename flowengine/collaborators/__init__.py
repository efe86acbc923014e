# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
External collaborators of the engine: protocols and default adapters.
"""

from flowengine.collaborators.base import (
    CodeSandbox,
    CompletionClient,
    CompletionConfig,
    CompletionResponse,
    FileMetadata,
    PersistenceClient,
    RankedChunk,
    RetrievalClient,
    SandboxResult,
    StorageClient,
    StoredFile,
)

__all__ = [
    "CodeSandbox",
    "CompletionClient",
    "CompletionConfig",
    "CompletionResponse",
    "FileMetadata",
    "PersistenceClient",
    "RankedChunk",
    "RetrievalClient",
    "SandboxResult",
    "StorageClient",
    "StoredFile",
]
