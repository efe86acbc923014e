# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Remote knowledge-base retrieval over HTTP
"""

from typing import List, Optional

import httpx

from flowengine.core.errors import CollaboratorError
from .base import RankedChunk


class HttpRetrievalClient:
    """
    Queries a vector retrieval service.

    POST {base_url}/knowledge-bases/{kb_id}/search with
    {"query", "topK", "threshold"}; the response carries a "results" list of
    {content, documentName, score, documentId?, chunkId?}.
    """

    def __init__(
        self,
        base_url: str,
        client: Optional[httpx.AsyncClient] = None,
        token: Optional[str] = None,
        timeout: float = 10.0
    ):
        self.base_url = base_url.rstrip("/")
        self.client = client
        self.token = token
        self.timeout = timeout

    async def retrieve(self, kb_id: str, query: str, top_k: int, threshold: float) -> List[RankedChunk]:
        url = f"{self.base_url}/knowledge-bases/{kb_id}/search"
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        payload = {"query": query, "topK": top_k, "threshold": threshold}

        if self.client is not None:
            response = await self.client.post(url, json=payload, headers=headers, timeout=self.timeout)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(url, json=payload, headers=headers)

        if not response.is_success:
            raise CollaboratorError(
                f"Retrieval service returned HTTP {response.status_code}",
                retryable=response.status_code >= 500,
                status_code=response.status_code,
                code="RETRIEVAL_ERROR",
            )

        try:
            body = response.json()
        except ValueError:
            raise CollaboratorError("Retrieval service returned invalid JSON", code="RETRIEVAL_ERROR")

        items = body.get("results", []) if isinstance(body, dict) else body
        return [
            RankedChunk(
                content=item.get("content", ""),
                document_name=item.get("documentName") or item.get("document_name") or "unknown",
                score=float(item.get("score", 0.0)),
                document_id=item.get("documentId") or item.get("document_id"),
                chunk_id=item.get("chunkId") or item.get("chunk_id"),
            )
            for item in items
        ]
