# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
OUTPUT node: final content and artifacts

With a prompt and a completion client the content is generated by the model
from the upstream outputs; otherwise the resolved prompt (or, when the prompt
is empty, the upstream outputs) is rendered in the requested format. HTML
output and any output with a file name is stored as an artifact.
"""

import csv
import io
import json
from typing import Any, Dict, List, Optional

from flowengine.collaborators.base import CompletionClient, FileMetadata, StorageClient
from flowengine.core.config import EngineConfig, get_config
from flowengine.engine.context import ExecutionContext
from flowengine.engine.exceptions import FatalNodeError
from flowengine.engine.models import OutputFile
from flowengine.engine.nodes import NodeType, OutputFormat
from flowengine.engine.variables import sanitize_file_name
from .ai import completion_settings
from .base import NodeProcessor, ProcessorOutput

RENDERABLE_FORMATS = frozenset([
    OutputFormat.TEXT, OutputFormat.JSON, OutputFormat.MARKDOWN, OutputFormat.HTML, OutputFormat.CSV,
])

FORMAT_INSTRUCTIONS = {
    OutputFormat.TEXT: "请生成纯文本内容，不要使用任何格式标记。",
    OutputFormat.JSON: "请生成有效的 JSON 格式内容。确保输出是合法的 JSON，可以被解析。",
    OutputFormat.MARKDOWN: "请生成 Markdown 格式的内容，可以使用标题、列表、代码块等 Markdown 语法。",
    OutputFormat.HTML: "请生成 HTML 格式的内容，包含适当的 HTML 标签和结构。",
    OutputFormat.CSV: "请生成 CSV 格式的内容，第一行为表头，使用逗号分隔。",
}

FORMAT_EXTENSIONS = {
    OutputFormat.TEXT: ".txt",
    OutputFormat.JSON: ".json",
    OutputFormat.MARKDOWN: ".md",
    OutputFormat.HTML: ".html",
    OutputFormat.CSV: ".csv",
}

FORMAT_MIME_TYPES = {
    OutputFormat.TEXT: "text/plain",
    OutputFormat.JSON: "application/json",
    OutputFormat.MARKDOWN: "text/markdown",
    OutputFormat.HTML: "text/html",
    OutputFormat.CSV: "text/csv",
}

HTML_TEMPLATE = """<!DOCTYPE html>
<html lang="zh-CN">
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>{title}</title>
  <style>
    body {{ font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; padding: 2rem; max-width: 800px; margin: 0 auto; line-height: 1.6; }}
    pre {{ background: #f5f5f5; padding: 1rem; border-radius: 4px; overflow-x: auto; }}
    table {{ border-collapse: collapse; width: 100%; }}
    th, td {{ border: 1px solid #ddd; padding: 8px; text-align: left; }}
  </style>
</head>
<body>
{body}
</body>
</html>"""


def to_text(data: Dict[str, Any], indent: str = "") -> str:
    lines = []
    for key, value in data.items():
        if isinstance(value, dict):
            lines.append(f"{indent}{key}:")
            lines.append(to_text(value, indent + "  "))
        elif isinstance(value, list):
            lines.append(f"{indent}{key}: {json.dumps(value, ensure_ascii=False)}")
        else:
            lines.append(f"{indent}{key}: {value}")
    return "\n".join(line for line in lines if line)


def to_markdown(data: Dict[str, Any], level: int = 1) -> str:
    heading = "#" * min(level, 6)
    parts = []
    for key, value in data.items():
        if isinstance(value, dict):
            parts.append(f"{heading} {key}\n\n{to_markdown(value, level + 1)}")
        elif isinstance(value, list):
            items = "\n".join(f"- {json.dumps(item, ensure_ascii=False)}" for item in value)
            parts.append(f"{heading} {key}\n\n{items}\n")
        else:
            parts.append(f"**{key}**: {value}\n")
    return "\n".join(parts)


def to_csv(data: Any) -> str:
    """Render a list of records (or the first record list found in a mapping) as CSV"""
    records = data
    if isinstance(data, dict):
        records = next((value for value in data.values() if isinstance(value, list)), [data])
    if not isinstance(records, list):
        records = [{"value": records}]
    rows = [record if isinstance(record, dict) else {"value": record} for record in records]

    columns: List[str] = []
    for row in rows:
        for key in row:
            if key not in columns:
                columns.append(key)

    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=columns, extrasaction="ignore", lineterminator="\n")
    writer.writeheader()
    for row in rows:
        writer.writerow({
            key: json.dumps(value, ensure_ascii=False) if isinstance(value, (dict, list)) else value
            for key, value in row.items()
        })
    return buffer.getvalue()


def render_data(data: Dict[str, Any], fmt: OutputFormat) -> str:
    if fmt == OutputFormat.JSON:
        return json.dumps(data, ensure_ascii=False, indent=2, default=str)
    if fmt == OutputFormat.MARKDOWN:
        return to_markdown(data)
    if fmt == OutputFormat.CSV:
        return to_csv(data)
    if fmt == OutputFormat.HTML:
        return f"<pre>{json.dumps(data, ensure_ascii=False, indent=2, default=str)}</pre>"
    return to_text(data)


def wrap_html(content: str, title: str = "工作流输出") -> str:
    stripped = content.strip().lower()
    if stripped.startswith("<!doctype") or stripped.startswith("<html"):
        return content
    return HTML_TEMPLATE.format(title=title, body=content)


def upstream_outputs(context: ExecutionContext) -> Dict[str, Any]:
    return {
        name: result.data
        for name, result in context.node_outputs.items()
        if result.succeeded
    }


class OutputNodeProcessor(NodeProcessor):
    node_type = NodeType.OUTPUT

    def __init__(
        self,
        completion: Optional[CompletionClient] = None,
        storage: Optional[StorageClient] = None,
        config: Optional[EngineConfig] = None
    ):
        self.completion = completion
        self.storage = storage
        self.config = config or get_config()

    async def execute(self, node, context: ExecutionContext) -> ProcessorOutput:
        cfg = node.config
        fmt = OutputFormat(cfg.format)
        if fmt not in RENDERABLE_FORMATS:
            raise FatalNodeError(f"Output format '{fmt.value}' is not supported", code="UNSUPPORTED_FORMAT")

        prompt = context.resolve(cfg.prompt)
        token_usage = None

        if prompt.strip() and self.completion is not None:
            outputs = json.dumps(upstream_outputs(context), ensure_ascii=False, indent=2, default=str)
            system_prompt = context.resolve(cfg.system_prompt) or (
                f"你是一个专业的内容生成助手。{FORMAT_INSTRUCTIONS[fmt]}"
            )
            user_prompt = (
                f"以下是工作流中各节点的输出数据：\n\n{outputs}\n\n"
                f"用户的输出要求：\n{prompt}\n\n请根据以上数据和要求生成输出内容。"
            )
            model, settings = completion_settings(cfg, context, self.config)
            response = await self.completion.complete(system_prompt, user_prompt, model, settings)
            content = response.content
            token_usage = response.token_usage
        elif prompt.strip():
            content = prompt
        else:
            content = render_data(upstream_outputs(context), fmt)

        files: List[OutputFile] = []
        if cfg.file_name or fmt == OutputFormat.HTML:
            files.append(await self._store(node, context, content, fmt))

        return ProcessorOutput(
            data={
                "result": content,
                "format": fmt.value,
                "files": [file.model_dump(by_alias=True) for file in files],
            },
            token_usage=token_usage,
            output_files=files,
        )

    async def _store(self, node, context: ExecutionContext, content: str, fmt: OutputFormat) -> OutputFile:
        if self.storage is None:
            raise FatalNodeError("No storage client is configured for file output", code="STORAGE_UNAVAILABLE")

        base_name = context.resolve(node.config.file_name) if node.config.file_name else f"output_{context.execution_id}"
        file_name = sanitize_file_name(base_name) + FORMAT_EXTENSIONS[fmt]
        if fmt == OutputFormat.HTML:
            content = wrap_html(content)

        stored = await self.storage.store(
            content.encode("utf-8"),
            FileMetadata(
                file_name=file_name,
                mime_type=FORMAT_MIME_TYPES[fmt],
                format=fmt.value,
                execution_id=context.execution_id,
                node_id=node.id,
            ),
        )
        return OutputFile(
            name=file_name,
            url=stored.url,
            size=stored.size,
            format=fmt.value,
            mime_type=FORMAT_MIME_TYPES[fmt],
            node_id=node.id,
        )
