# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
IMAGE / VIDEO / AUDIO nodes: media import and analysis

Media files are described (name, url, detected format). When the node has a
prompt and a completion client is configured, the model is asked to analyze
the described media list.
"""

from pathlib import PurePosixPath
from typing import Dict, Optional, Tuple
from urllib.parse import urlparse

from flowengine.collaborators.base import CompletionClient
from flowengine.core.config import EngineConfig, get_config
from flowengine.engine.context import ExecutionContext
from flowengine.engine.nodes import NodeType
from .ai import completion_settings
from .base import NodeProcessor, ProcessorOutput

MEDIA_FORMATS: Dict[NodeType, Tuple[str, ...]] = {
    NodeType.IMAGE: ("png", "jpeg", "jpg", "gif", "webp", "svg", "bmp"),
    NodeType.VIDEO: ("mp4", "webm", "mov", "avi", "mkv"),
    NodeType.AUDIO: ("mp3", "wav", "ogg", "m4a", "flac", "aac"),
}

MEDIA_LABELS = {
    NodeType.IMAGE: "图片",
    NodeType.VIDEO: "视频",
    NodeType.AUDIO: "音频",
}


def detect_media_format(url: str, node_type: NodeType) -> str:
    lowered = url.lower()
    if lowered.startswith("data:"):
        mime = lowered[5:].split(";", 1)[0]
        subtype = mime.split("/", 1)[-1]
        return "jpeg" if subtype == "jpg" else subtype or "unknown"

    suffix = PurePosixPath(urlparse(lowered).path).suffix.lstrip(".")
    if suffix in MEDIA_FORMATS[node_type]:
        return "jpeg" if suffix == "jpg" else suffix
    return "unknown"


class MediaNodeProcessor(NodeProcessor):
    """Shared processor for the three media node types"""

    def __init__(
        self,
        node_type: NodeType,
        completion: Optional[CompletionClient] = None,
        config: Optional[EngineConfig] = None
    ):
        self.node_type = NodeType(node_type)
        self.completion = completion
        self.config = config or get_config()

    async def execute(self, node, context: ExecutionContext) -> ProcessorOutput:
        cfg = node.config
        files = []
        for file in cfg.files:
            url = context.resolve(file.url)
            files.append({
                "name": file.name,
                "url": url,
                "type": file.type,
                "size": file.size,
                "format": detect_media_format(url, self.node_type),
            })

        prompt = context.resolve(cfg.prompt)
        data = {"result": files, "files": files, "count": len(files)}
        if not prompt.strip() or not files:
            return ProcessorOutput(data=data)

        if self.completion is None:
            context.add_warning(f"Node '{node.name}' has an analysis prompt but no AI client is configured")
            return ProcessorOutput(data=data)

        label = MEDIA_LABELS[self.node_type]
        listing = "\n".join(
            f"{label} {index + 1}: {item['name']} (格式: {item['format']}, 地址: {item['url']})"
            for index, item in enumerate(files)
        )
        system_prompt = (
            f"你是一个专业的{label}分析助手。用户会提供{label}信息和分析要求，请根据要求进行分析。\n\n"
            f"当前导入的{label}：\n{listing}"
        )

        model, settings = completion_settings(cfg, context, self.config)
        response = await self.completion.complete(system_prompt, prompt, model, settings)

        data.update({"result": response.content, "analysis": response.content, "prompt": prompt})
        return ProcessorOutput(data=data, token_usage=response.token_usage)
