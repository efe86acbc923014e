# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Built-in node processors.

build_default_registry wires one processor per node type to the given
collaborators. Collaborators left as None make the nodes that need them fail
with a configuration error (or, for optional ones like retrieval, run
without them).
"""

from typing import Optional

import httpx

from flowengine.collaborators.base import CodeSandbox, CompletionClient, RetrievalClient, StorageClient
from flowengine.core.config import EngineConfig, get_config
from flowengine.engine.nodes import NodeType
from flowengine.engine.retrieval import RetrievalAugmenter
from .base import NodeProcessor, ProcessorOutput, ProcessorRegistry
from .code import CodeNodeProcessor
from .condition import ConditionNodeProcessor
from .data import DataNodeProcessor
from .http import HttpNodeProcessor
from .input import InputNodeProcessor
from .loop import LoopNodeProcessor
from .media import MediaNodeProcessor
from .merge import MergeNodeProcessor
from .notification import NotificationNodeProcessor
from .output import OutputNodeProcessor
from .process import ProcessNodeProcessor
from .switch import SwitchNodeProcessor


def build_default_registry(
    completion: Optional[CompletionClient] = None,
    retrieval: Optional[RetrievalClient] = None,
    storage: Optional[StorageClient] = None,
    sandbox: Optional[CodeSandbox] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    config: Optional[EngineConfig] = None,
) -> ProcessorRegistry:
    config = config or get_config()
    augmenter = RetrievalAugmenter(retrieval, model=config.default_model) if retrieval is not None else None

    registry = ProcessorRegistry([
        InputNodeProcessor(),
        ProcessNodeProcessor(completion, augmenter, config),
        CodeNodeProcessor(sandbox),
        DataNodeProcessor(http_client, config),
        MediaNodeProcessor(NodeType.IMAGE, completion, config),
        MediaNodeProcessor(NodeType.VIDEO, completion, config),
        MediaNodeProcessor(NodeType.AUDIO, completion, config),
        OutputNodeProcessor(completion, storage, config),
        HttpNodeProcessor(http_client, config),
        ConditionNodeProcessor(),
        LoopNodeProcessor(),
        MergeNodeProcessor(),
        SwitchNodeProcessor(),
        NotificationNodeProcessor(http_client, config),
    ])
    registry.ensure_complete()
    return registry


__all__ = [
    "NodeProcessor",
    "ProcessorOutput",
    "ProcessorRegistry",
    "build_default_registry",
]
