# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Retrieval augmentation

Queries the retrieval collaborator for a node's knowledge base, keeps the
chunks above the similarity threshold, packs them (best first) into the
node's token budget and renders each one with a `[来源: <document>]` citation.

The assembled context is appended to the effective system prompt of one
completion call; node configuration is never modified.
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import httpx

from flowengine.collaborators.base import RankedChunk, RetrievalClient
from flowengine.core.errors import CollaboratorError
from flowengine.core.logging import get_engine_logger, log_event
from flowengine.utils.token_counter import get_token_counter
from .nodes import RagConfig

logger = get_engine_logger("retrieval")

CONTEXT_HEADING = "## 知识库检索结果"
# A truncated chunk shorter than this is dropped instead of injected
MIN_TRUNCATED_TOKENS = 32


@dataclass(frozen=True)
class RetrievedContext:
    text: str
    chunks: Tuple[RankedChunk, ...]
    token_count: int
    dropped: int = 0

    @property
    def documents(self) -> List[str]:
        seen: List[str] = []
        for chunk in self.chunks:
            if chunk.document_name not in seen:
                seen.append(chunk.document_name)
        return seen

    def summary(self) -> dict:
        return {
            "chunks": len(self.chunks),
            "documents": self.documents,
            "tokens": self.token_count,
            "dropped": self.dropped,
        }


def format_chunk(chunk: RankedChunk) -> str:
    return f"[来源: {chunk.document_name}]\n{chunk.content}"


class RetrievalAugmenter:
    """Builds cited knowledge-base context for prompt construction"""

    def __init__(self, client: RetrievalClient, token_counter=None, model: str = "gpt-4"):
        self.client = client
        self.token_counter = token_counter or get_token_counter()
        self.model = model

    async def retrieve_context(
        self,
        kb_id: str,
        query: str,
        rag_config: RagConfig,
        context=None
    ) -> Optional[RetrievedContext]:
        """
        Retrieve and assemble context for a query.

        Returns None when the knowledge base is unavailable or retrieval
        fails; the node then runs without augmentation and a warning is
        recorded on the run.
        """
        if context is not None and context.knowledge_bases:
            kb = context.knowledge_base(kb_id)
            if kb is None or not kb.is_active:
                context.add_warning(f"Knowledge base {kb_id} is unavailable; skipping retrieval")
                return None

        try:
            chunks = await self.client.retrieve(kb_id, query, rag_config.top_k, rag_config.threshold)
        except (CollaboratorError, httpx.HTTPError) as e:
            log_event(logger, "retrieval_failed", level="WARNING", kb_id=kb_id, error=str(e))
            if context is not None:
                context.add_warning(f"Knowledge base retrieval failed for {kb_id}: {e}")
            return None

        retrieved = self.assemble(chunks, rag_config)
        log_event(
            logger, "retrieval_completed",
            kb_id=kb_id,
            chunks=len(retrieved.chunks),
            dropped=retrieved.dropped,
            tokens=retrieved.token_count,
        )
        return retrieved

    def assemble(self, chunks: Sequence[RankedChunk], rag_config: RagConfig) -> RetrievedContext:
        """Filter, rank and pack chunks into the token budget."""
        eligible = [chunk for chunk in chunks if chunk.score >= rag_config.threshold]
        ranked = sorted(eligible, key=lambda chunk: chunk.score, reverse=True)[:rag_config.top_k]

        budget = rag_config.max_context_tokens
        blocks: List[str] = []
        included: List[RankedChunk] = []
        used = 0

        for chunk in ranked:
            block = format_chunk(chunk)
            tokens = self.token_counter.count_tokens(block, self.model)
            if used + tokens <= budget:
                blocks.append(block)
                included.append(chunk)
                used += tokens
                continue

            remaining = budget - used
            if remaining >= MIN_TRUNCATED_TOKENS:
                block = self.token_counter.truncate_to_token_limit(block, remaining, self.model)
                if block:
                    blocks.append(block)
                    included.append(chunk)
                    used += self.token_counter.count_tokens(block, self.model)
            break

        return RetrievedContext(
            text="\n\n".join(blocks),
            chunks=tuple(included),
            token_count=used,
            dropped=len(chunks) - len(included),
        )

    @staticmethod
    def inject(system_prompt: str, retrieved: RetrievedContext) -> str:
        """Effective system prompt with the retrieved context appended"""
        if not retrieved.text:
            return system_prompt
        section = f"{CONTEXT_HEADING}\n{retrieved.text}"
        if not system_prompt:
            return section
        return f"{system_prompt}\n\n{section}"
