# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
HTTP node: call an external API

URL, headers, query parameters and body are variable-resolved before the
request is sent. Transport errors and 408/429/5xx gateway statuses are
transient; other error statuses are fatal unless failOnError is disabled.
"""

import base64
import json
from typing import Any, Dict, Optional

import httpx

from flowengine.core.config import EngineConfig, get_config
from flowengine.core.logging import get_engine_logger, log_event, redact_headers
from flowengine.engine.context import ExecutionContext
from flowengine.engine.exceptions import FatalNodeError, NodeConfigurationError, TransientNodeError
from flowengine.engine.nodes import HttpNodeConfig, NodeType
from .base import NodeProcessor, ProcessorOutput

logger = get_engine_logger("processors.http")

TRANSIENT_STATUSES = frozenset([408, 429, 500, 502, 503, 504])


def build_request(cfg: HttpNodeConfig, context: ExecutionContext) -> Dict[str, Any]:
    """Resolve a node's request parts into httpx.request keyword arguments."""
    url = context.resolve(cfg.url).strip()
    if not url.startswith(("http://", "https://")):
        raise NodeConfigurationError(f"Invalid URL: '{url}'")

    headers = {key: context.resolve(value) for key, value in cfg.headers.items()}
    params = {key: context.resolve(value) for key, value in cfg.query_params.items()}
    request: Dict[str, Any] = {"method": cfg.method, "url": url}

    auth = cfg.auth
    if auth.type == "basic":
        credentials = f"{context.resolve(auth.username)}:{context.resolve(auth.password)}"
        headers["Authorization"] = "Basic " + base64.b64encode(credentials.encode()).decode()
    elif auth.type == "bearer":
        headers["Authorization"] = f"Bearer {context.resolve(auth.token)}"
    elif auth.type == "apikey":
        target = params if auth.api_key.add_to == "query" else headers
        target[auth.api_key.key] = context.resolve(auth.api_key.value)

    body = cfg.body
    if body.type == "json" and body.content is not None:
        content = context.resolve_config(body.content)
        if isinstance(content, str):
            try:
                content = json.loads(content)
            except json.JSONDecodeError:
                raise NodeConfigurationError("JSON body is not valid JSON after variable resolution")
        request["json"] = content
    elif body.type == "text" and body.content is not None:
        request["content"] = context.resolve(str(body.content))
        headers.setdefault("Content-Type", "text/plain; charset=utf-8")
    elif body.type == "form" and body.content is not None:
        content = context.resolve_config(body.content)
        if not isinstance(content, dict):
            raise NodeConfigurationError("Form body must be a mapping of fields")
        request["data"] = {key: str(value) for key, value in content.items()}

    request["headers"] = headers
    request["params"] = params
    return request


def parse_body(response: httpx.Response) -> Any:
    if not response.content:
        return None
    content_type = response.headers.get("content-type", "")
    if "json" in content_type:
        try:
            return response.json()
        except ValueError:
            return response.text
    return response.text


class HttpNodeProcessor(NodeProcessor):
    node_type = NodeType.HTTP

    def __init__(self, client: Optional[httpx.AsyncClient] = None, config: Optional[EngineConfig] = None):
        self.client = client
        self.config = config or get_config()

    async def execute(self, node, context: ExecutionContext) -> ProcessorOutput:
        cfg = node.config
        request = build_request(cfg, context)
        timeout = cfg.timeout or self.config.http_timeout

        log_event(
            logger, "http_request",
            level="DEBUG",
            execution_id=context.execution_id,
            node_id=node.id,
            method=request["method"],
            url=request["url"],
            headers=redact_headers(request["headers"]),
        )

        try:
            response = await self._send(request, timeout)
        except httpx.TimeoutException:
            raise TransientNodeError(f"Request timed out after {timeout}s", code="TIMEOUT")
        except httpx.TransportError as e:
            raise TransientNodeError(f"Request failed: {e}", code="NETWORK_ERROR")

        status = response.status_code
        body = parse_body(response)
        if status in TRANSIENT_STATUSES:
            raise TransientNodeError(f"HTTP {status} from {request['url']}", code=f"HTTP_{status}")
        if not response.is_success and cfg.fail_on_error:
            raise FatalNodeError(f"HTTP {status} from {request['url']}", code=f"HTTP_{status}")

        return ProcessorOutput(data={
            "result": body,
            "status": status,
            "headers": dict(response.headers),
            "ok": response.is_success,
        })

    async def _send(self, request: Dict[str, Any], timeout: float) -> httpx.Response:
        if self.client is not None:
            return await self.client.request(timeout=timeout, **request)
        async with httpx.AsyncClient(timeout=timeout) as client:
            return await client.request(**request)
