# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
DATA node: tabular and JSON data import

Each configured file is fetched (http(s) URL, or a local path under the
configured data or storage directory) and parsed into records. CSV/TSV use
the first row as header unless hasHeader is false, in which case columns
are named column_1..column_n.
"""

import csv
import io
import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import aiofiles
import httpx

from flowengine.core.config import EngineConfig, get_config
from flowengine.engine.context import ExecutionContext
from flowengine.engine.exceptions import FatalNodeError, TransientNodeError
from flowengine.engine.nodes import DataParseOptions, FileRef, NodeType
from .base import NodeProcessor, ProcessorOutput

SUPPORTED_FORMATS = ("csv", "tsv", "json", "jsonl")


def detect_format(file: FileRef) -> str:
    suffix = Path(file.name).suffix.lower().lstrip(".")
    if suffix in SUPPORTED_FORMATS:
        return suffix
    if suffix == "ndjson":
        return "jsonl"
    content_type = (file.type or "").lower()
    if "csv" in content_type:
        return "csv"
    if "tab-separated" in content_type:
        return "tsv"
    if "json" in content_type:
        return "json"
    raise FatalNodeError(f"Unsupported data file format: {file.name}", code="UNSUPPORTED_FORMAT")


def parse_delimited(text: str, delimiter: str, options: DataParseOptions) -> Tuple[List[Dict[str, Any]], List[str]]:
    rows = list(csv.reader(io.StringIO(text), delimiter=delimiter))
    if options.skip_empty_rows:
        rows = [row for row in rows if any(cell.strip() for cell in row)]
    if not rows:
        return [], []

    if options.has_header:
        columns = [cell.strip() for cell in rows[0]]
        rows = rows[1:]
    else:
        width = max(len(row) for row in rows)
        columns = [f"column_{index + 1}" for index in range(width)]

    records = []
    for row in rows:
        records.append({
            column: row[index].strip() if index < len(row) else ""
            for index, column in enumerate(columns)
        })
    return records, columns


def parse_json_records(text: str, line_delimited: bool) -> Tuple[List[Dict[str, Any]], List[str]]:
    try:
        if line_delimited:
            data = [json.loads(line) for line in text.splitlines() if line.strip()]
        else:
            data = json.loads(text)
    except json.JSONDecodeError as e:
        raise FatalNodeError(f"Invalid JSON data: {e.msg}", code="PARSE_ERROR")

    if isinstance(data, dict):
        # {"records": [...]} style envelopes
        lists = [value for value in data.values() if isinstance(value, list)]
        data = lists[0] if len(lists) == 1 else [data]
    if not isinstance(data, list):
        data = [data]

    records = [item if isinstance(item, dict) else {"value": item} for item in data]
    columns: List[str] = []
    for record in records:
        for key in record:
            if key not in columns:
                columns.append(key)
    return records, columns


def parse_data(text: str, fmt: str, options: DataParseOptions) -> Tuple[List[Dict[str, Any]], List[str]]:
    if fmt in ("csv", "tsv"):
        delimiter = options.delimiter or ("\t" if fmt == "tsv" else ",")
        return parse_delimited(text, delimiter, options)
    return parse_json_records(text, line_delimited=fmt == "jsonl")


class DataNodeProcessor(NodeProcessor):
    node_type = NodeType.DATA

    def __init__(self, client: Optional[httpx.AsyncClient] = None, config: Optional[EngineConfig] = None):
        self.client = client
        self.config = config or get_config()

    async def execute(self, node, context: ExecutionContext) -> ProcessorOutput:
        cfg = node.config
        options = cfg.parse_options

        if not cfg.files:
            return ProcessorOutput(data={
                "result": [],
                "files": [],
                "totalRecords": 0,
                "summary": "未导入任何数据文件",
            })

        all_records: List[Dict[str, Any]] = []
        infos = []
        for file in cfg.files:
            fmt = detect_format(file)
            text = await self._fetch(context.resolve(file.url))
            records, columns = parse_data(text, fmt, options)
            all_records.extend(records)
            infos.append({
                "name": file.name,
                "type": fmt,
                "recordCount": len(records),
                "columns": columns,
            })

        if options.max_rows is not None:
            all_records = all_records[:options.max_rows]

        return ProcessorOutput(data={
            "result": all_records,
            "files": infos,
            "totalRecords": len(all_records),
            "summary": f"共导入 {len(cfg.files)} 个文件，{len(all_records)} 条记录",
        })

    def _local_path(self, location: str) -> Path:
        """
        Map a local location onto the data or storage directory.

        Relative paths are taken from data_dir. Anything resolving outside
        both roots (absolute paths elsewhere, `..`, symlinks) is refused.
        """
        raw = Path(location[len("file://"):] if location.startswith("file://") else location)
        roots = [Path(self.config.data_dir).resolve(), Path(self.config.storage_dir).resolve()]
        path = (raw if raw.is_absolute() else roots[0] / raw).resolve()
        if not any(path == root or root in path.parents for root in roots):
            raise FatalNodeError(
                f"Data file {location} is outside the readable data directories",
                code="FILE_ACCESS_DENIED",
            )
        return path

    async def _fetch(self, location: str) -> str:
        if not location.startswith(("http://", "https://")):
            path = self._local_path(location)
            if not path.is_file():
                raise FatalNodeError(f"Data file not found: {location}", code="FILE_NOT_FOUND")
            async with aiofiles.open(path, "r", encoding="utf-8-sig") as f:
                return await f.read()

        try:
            if self.client is not None:
                response = await self.client.get(location, timeout=self.config.http_timeout)
            else:
                async with httpx.AsyncClient(timeout=self.config.http_timeout) as client:
                    response = await client.get(location)
        except httpx.TransportError as e:
            raise TransientNodeError(f"Failed to download {location}: {e}", code="NETWORK_ERROR")

        if response.status_code >= 500:
            raise TransientNodeError(f"HTTP {response.status_code} downloading {location}")
        if not response.is_success:
            raise FatalNodeError(f"HTTP {response.status_code} downloading {location}", code="DOWNLOAD_FAILED")
        return response.content.decode("utf-8-sig", errors="replace")
