# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
NOTIFICATION node: chat webhook delivery (Feishu, DingTalk, WeCom)
"""

from typing import Any, Dict, Optional

import httpx

from flowengine.core.config import EngineConfig, get_config
from flowengine.engine.context import ExecutionContext
from flowengine.engine.exceptions import FatalNodeError, NodeConfigurationError, TransientNodeError
from flowengine.engine.nodes import NodeType, NotificationNodeConfig
from .base import NodeProcessor, ProcessorOutput

DEFAULT_TITLE = "通知"


def _feishu_payload(cfg: NotificationNodeConfig, content: str, title: Optional[str]) -> Dict[str, Any]:
    if cfg.message_type == "text":
        return {"msg_type": "text", "content": {"text": content}}

    card: Dict[str, Any] = {"elements": [{"tag": "markdown", "content": content}]}
    header_title = title if cfg.message_type == "markdown" else (title or DEFAULT_TITLE)
    if header_title:
        card["header"] = {
            "title": {"tag": "plain_text", "content": header_title},
            "template": "blue",
        }
    return {"msg_type": "interactive", "card": card}


def _dingtalk_payload(cfg: NotificationNodeConfig, content: str, title: Optional[str]) -> Dict[str, Any]:
    at = {"atMobiles": list(cfg.at_mobiles), "isAtAll": cfg.at_all}
    if cfg.message_type == "markdown":
        return {
            "msgtype": "markdown",
            "markdown": {"title": title or DEFAULT_TITLE, "text": content},
            "at": at,
        }
    if cfg.message_type == "card":
        return {
            "msgtype": "actionCard",
            "actionCard": {
                "title": title or DEFAULT_TITLE,
                "text": content,
                "hideAvatar": "0",
                "btnOrientation": "0",
            },
        }
    return {"msgtype": "text", "text": {"content": content}, "at": at}


def _wecom_payload(cfg: NotificationNodeConfig, content: str, title: Optional[str]) -> Dict[str, Any]:
    if cfg.message_type == "markdown":
        return {
            "msgtype": "markdown",
            "markdown": {"content": f"## {title}\n{content}" if title else content},
        }
    if cfg.message_type == "card":
        return {
            "msgtype": "template_card",
            "template_card": {
                "card_type": "text_notice",
                "main_title": {"title": title or DEFAULT_TITLE},
                "sub_title_text": content[:200],
                "horizontal_content_list": [],
                "card_action": {"type": 1, "url": ""},
            },
        }
    text: Dict[str, Any] = {"content": content}
    if cfg.at_mobiles:
        text["mentioned_mobile_list"] = list(cfg.at_mobiles)
    return {"msgtype": "text", "text": text}


PAYLOAD_BUILDERS = {
    "feishu": _feishu_payload,
    "dingtalk": _dingtalk_payload,
    "wecom": _wecom_payload,
}


def delivery_error(platform: str, response: Any) -> Optional[str]:
    """None when the platform acknowledged the message, else its error message"""
    if not isinstance(response, dict):
        return "Unexpected webhook response"
    if platform == "feishu":
        if response.get("code") == 0 or response.get("StatusCode") == 0:
            return None
        return response.get("msg") or response.get("Message") or "发送失败"
    if response.get("errcode") == 0:
        return None
    return response.get("errmsg") or "发送失败"


class NotificationNodeProcessor(NodeProcessor):
    node_type = NodeType.NOTIFICATION

    def __init__(self, client: Optional[httpx.AsyncClient] = None, config: Optional[EngineConfig] = None):
        self.client = client
        self.config = config or get_config()

    async def execute(self, node, context: ExecutionContext) -> ProcessorOutput:
        cfg = node.config
        webhook_url = context.resolve(cfg.webhook_url).strip()
        if not webhook_url:
            raise NodeConfigurationError("Notification node requires a webhook URL")
        if not cfg.content.strip():
            raise NodeConfigurationError("Notification node requires message content")

        content = context.resolve(cfg.content)
        title = context.resolve(cfg.title) if cfg.title else None
        payload = PAYLOAD_BUILDERS[cfg.platform](cfg, content, title)

        try:
            response = await self._post(webhook_url, payload)
        except httpx.TimeoutException:
            raise TransientNodeError("Notification webhook timed out", code="TIMEOUT")
        except httpx.TransportError as e:
            raise TransientNodeError(f"Notification webhook unreachable: {e}", code="NETWORK_ERROR")

        try:
            body = response.json()
        except ValueError:
            body = response.text

        error = delivery_error(cfg.platform, body)
        if error:
            raise FatalNodeError(f"{cfg.platform} notification failed: {error}", code="NOTIFICATION_FAILED")

        return ProcessorOutput(data={
            "result": body,
            "platform": cfg.platform,
            "messageType": cfg.message_type,
        })

    async def _post(self, url: str, payload: Dict[str, Any]) -> httpx.Response:
        if self.client is not None:
            return await self.client.post(url, json=payload, timeout=self.config.http_timeout)
        async with httpx.AsyncClient(timeout=self.config.http_timeout) as client:
            return await client.post(url, json=payload)
