# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Tests for knowledge-base retrieval augmentation and the HTTP retrieval client
"""

import json
from unittest.mock import AsyncMock

import httpx
import pytest

from flowengine.collaborators.base import RankedChunk
from flowengine.collaborators.retrieval import HttpRetrievalClient
from flowengine.core.errors import CollaboratorError
from flowengine.engine.models import KnowledgeBaseConfig
from flowengine.engine.nodes import RagConfig
from flowengine.engine.retrieval import CONTEXT_HEADING, RetrievalAugmenter, format_chunk

from builders import process, workflow


def chunk(content, document, score):
    return RankedChunk(content=content, document_name=document, score=score)


@pytest.fixture
def retrieval():
    client = AsyncMock()
    client.retrieve.return_value = [
        chunk("low relevance", "c.md", 0.2),
        chunk("second best", "b.md", 0.8),
        chunk("best match", "a.md", 0.95),
    ]
    return client


@pytest.fixture
def augmenter(retrieval, token_counter):
    return RetrievalAugmenter(retrieval, token_counter=token_counter)


class TestAssemble:
    def test_filters_and_ranks(self, augmenter, retrieval):
        """Test chunks below threshold are dropped and the rest are ordered by score"""
        retrieved = augmenter.assemble(retrieval.retrieve.return_value, RagConfig(threshold=0.5))

        assert [c.document_name for c in retrieved.chunks] == ["a.md", "b.md"]
        assert retrieved.text == "[来源: a.md]\nbest match\n\n[来源: b.md]\nsecond best"
        assert retrieved.dropped == 1
        assert retrieved.documents == ["a.md", "b.md"]

    def test_top_k_limit(self, augmenter, retrieval):
        retrieved = augmenter.assemble(retrieval.retrieve.return_value, RagConfig(threshold=0.0, top_k=1))
        assert [c.document_name for c in retrieved.chunks] == ["a.md"]

    def test_token_budget_respected(self, augmenter):
        """Test packing stops once the token budget is used up"""
        chunks = [chunk("word " * 30, "a.md", 0.9), chunk("word " * 30, "b.md", 0.8)]
        retrieved = augmenter.assemble(chunks, RagConfig(threshold=0.0, max_context_tokens=40))

        assert retrieved.token_count <= 40
        assert [c.document_name for c in retrieved.chunks] == ["a.md"]

    def test_large_remainder_is_truncated_in(self, augmenter):
        chunks = [chunk("word " * 10, "a.md", 0.9), chunk("word " * 100, "b.md", 0.8)]
        retrieved = augmenter.assemble(chunks, RagConfig(threshold=0.0, max_context_tokens=60))

        assert [c.document_name for c in retrieved.chunks] == ["a.md", "b.md"]
        assert retrieved.token_count == 60

    def test_inject(self, augmenter):
        retrieved = augmenter.assemble(
            [chunk("fact", "a.md", 0.9)], RagConfig(threshold=0.0)
        )
        assert RetrievalAugmenter.inject("Be brief.", retrieved) == (
            f"Be brief.\n\n{CONTEXT_HEADING}\n{format_chunk(retrieved.chunks[0])}"
        )
        assert RetrievalAugmenter.inject("", retrieved).startswith(CONTEXT_HEADING)


class TestRetrieveContext:
    @pytest.mark.asyncio
    async def test_retrieves_with_node_settings(self, augmenter, retrieval, make_context):
        ctx = make_context(workflow([process("A")]))
        retrieved = await augmenter.retrieve_context("kb1", "what?", RagConfig(top_k=4, threshold=0.5), ctx)

        retrieval.retrieve.assert_awaited_once_with("kb1", "what?", 4, 0.5)
        assert retrieved.summary()["chunks"] == 2

    @pytest.mark.asyncio
    async def test_inactive_knowledge_base_skipped(self, augmenter, retrieval, make_context):
        kbs = {"kb1": KnowledgeBaseConfig(id="kb1", is_active=False)}
        ctx = make_context(workflow([process("A")]), knowledge_bases=kbs)

        assert await augmenter.retrieve_context("kb1", "q", RagConfig(), ctx) is None
        retrieval.retrieve.assert_not_awaited()
        assert ctx.warnings == ["Knowledge base kb1 is unavailable; skipping retrieval"]

    @pytest.mark.asyncio
    async def test_failure_degrades_to_warning(self, augmenter, retrieval, make_context):
        """Test a retrieval failure lets the node run without context"""
        retrieval.retrieve.side_effect = CollaboratorError("service down", retryable=True)
        ctx = make_context(workflow([process("A")]))

        assert await augmenter.retrieve_context("kb1", "q", RagConfig(), ctx) is None
        assert "Knowledge base retrieval failed for kb1: service down" in ctx.warnings


class TestHttpRetrievalClient:
    @pytest.mark.asyncio
    async def test_search_request_and_parsing(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("authorization")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"results": [
                {"content": "text", "documentName": "guide.pdf", "score": 0.91, "chunkId": "c1"},
            ]})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            client = HttpRetrievalClient("http://rag.local/api/", client=http, token="secret")
            chunks = await client.retrieve("kb1", "q", 3, 0.6)

        assert seen["url"] == "http://rag.local/api/knowledge-bases/kb1/search"
        assert seen["auth"] == "Bearer secret"
        assert seen["body"] == {"query": "q", "topK": 3, "threshold": 0.6}
        assert chunks == [RankedChunk(content="text", document_name="guide.pdf", score=0.91, chunk_id="c1")]

    @pytest.mark.asyncio
    async def test_server_error_is_retryable(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(503))
        async with httpx.AsyncClient(transport=transport) as http:
            client = HttpRetrievalClient("http://rag.local", client=http)
            with pytest.raises(CollaboratorError, match="HTTP 503") as exc_info:
                await client.retrieve("kb1", "q", 3, 0.6)

        assert exc_info.value.retryable is True
        assert exc_info.value.code == "RETRIEVAL_ERROR"
