# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
PROCESS node: AI text processing

Builds the effective system prompt (configured prompt, static knowledge
items, retrieved knowledge-base context) and sends the resolved user prompt
to the completion collaborator.
"""

from typing import Optional

from flowengine.collaborators.base import CompletionClient
from flowengine.core.config import EngineConfig, get_config
from flowengine.engine.context import ExecutionContext
from flowengine.engine.exceptions import NodeConfigurationError
from flowengine.engine.nodes import NodeType
from flowengine.engine.retrieval import RetrievalAugmenter
from .ai import completion_settings, require_completion
from .base import NodeProcessor, ProcessorOutput

KNOWLEDGE_HEADING = "参考资料："


class ProcessNodeProcessor(NodeProcessor):
    node_type = NodeType.PROCESS

    def __init__(
        self,
        completion: Optional[CompletionClient] = None,
        augmenter: Optional[RetrievalAugmenter] = None,
        config: Optional[EngineConfig] = None
    ):
        self.completion = completion
        self.augmenter = augmenter
        self.config = config or get_config()

    async def execute(self, node, context: ExecutionContext) -> ProcessorOutput:
        cfg = node.config
        system_prompt = context.resolve(cfg.system_prompt)
        user_prompt = context.resolve(cfg.user_prompt)
        if not user_prompt.strip():
            raise NodeConfigurationError("User prompt is empty")

        if cfg.knowledge_items:
            items = "\n\n".join(
                f"【{item.name}】\n{context.resolve(item.content)}" for item in cfg.knowledge_items
            )
            system_prompt = f"{system_prompt}\n\n{KNOWLEDGE_HEADING}\n{items}".strip()

        retrieved = None
        if cfg.knowledge_base_id:
            if self.augmenter is None:
                context.add_warning(
                    f"Node '{node.name}' declares knowledge base {cfg.knowledge_base_id} "
                    f"but no retrieval client is configured"
                )
            else:
                retrieved = await self.augmenter.retrieve_context(
                    cfg.knowledge_base_id, user_prompt, cfg.rag_config, context
                )
                if retrieved is not None:
                    system_prompt = self.augmenter.inject(system_prompt, retrieved)

        model, settings = completion_settings(cfg, context, self.config)
        response = await require_completion(self.completion).complete(
            system_prompt, user_prompt, model, settings
        )

        data = {"result": response.content, "model": response.model or model}
        if retrieved is not None:
            data["rag"] = retrieved.summary()
        return ProcessorOutput(data=data, token_usage=response.token_usage)
