# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Execution Store - file-backed persistence for workflows and execution history

Workflow definitions and execution history live in plain text files, so they
can be inspected and versioned with ordinary tools.

Async-safe with per-file locks to prevent interleaved writes.
"""

import asyncio
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiofiles
import yaml

from flowengine.core.errors import NotFoundError
from flowengine.core.logging import get_engine_logger, log_event

logger = get_engine_logger("store")

DEFINITION_SUFFIXES = (".json", ".yaml", ".yml")


def execution_date(execution_id: str) -> str:
    """Storage date (YYYY-MM-DD) of an execution id, today for foreign ids"""
    # exec_YYYYMMDD_HHMMSS_hash
    try:
        date_str = execution_id.split("_")[1]
        return datetime.strptime(date_str, "%Y%m%d").strftime("%Y-%m-%d")
    except (IndexError, ValueError):
        return datetime.now(timezone.utc).strftime("%Y-%m-%d")


class ExecutionStore:
    """
    Store workflow definitions and query execution history.

    Storage structure:
        {base_dir}/
        ├── workflows/
        │   ├── {workflow_id}.json | .yaml
        │   └── {workflow_id}.draft.json | .yaml
        └── executions/
            └── {YYYY-MM-DD}/
                ├── {execution_id}.json        final result
                └── {execution_id}.log.jsonl   node results, one per line
    """

    def __init__(self, base_dir: str):
        self.base_dir = Path(base_dir)
        self.workflows_dir = self.base_dir / "workflows"
        self.executions_dir = self.base_dir / "executions"
        self.workflows_dir.mkdir(parents=True, exist_ok=True)
        self.executions_dir.mkdir(parents=True, exist_ok=True)

        self._locks: Dict[str, asyncio.Lock] = {}

    def _get_lock(self, file_path: Path) -> asyncio.Lock:
        """Get or create lock for a specific file"""
        key = str(file_path)
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    def _execution_dir(self, execution_id: str) -> Path:
        return self.executions_dir / execution_date(execution_id)

    # -- workflow definitions --

    def _definition_path(self, workflow_id: str, mode: str) -> Optional[Path]:
        stems = [f"{workflow_id}.draft", workflow_id] if mode == "draft" else [workflow_id]
        for stem in stems:
            for suffix in DEFINITION_SUFFIXES:
                path = self.workflows_dir / f"{stem}{suffix}"
                if path.is_file():
                    return path
        return None

    async def load_workflow_definition(self, workflow_id: str, mode: str = "production") -> Dict[str, Any]:
        """
        Load a workflow definition.

        Draft mode prefers {id}.draft.* and falls back to the published file.
        """
        path = self._definition_path(workflow_id, mode)
        if path is None:
            raise NotFoundError("Workflow", workflow_id)

        async with aiofiles.open(path, "r", encoding="utf-8") as f:
            text = await f.read()

        data = json.loads(text) if path.suffix == ".json" else yaml.safe_load(text)
        data = data or {}
        data.setdefault("id", workflow_id)
        return data

    async def save_workflow_definition(self, workflow_id: str, definition: Dict[str, Any], mode: str = "production") -> str:
        stem = f"{workflow_id}.draft" if mode == "draft" else workflow_id
        path = self.workflows_dir / f"{stem}.json"
        async with self._get_lock(path):
            async with aiofiles.open(path, "w", encoding="utf-8") as f:
                await f.write(json.dumps(definition, indent=2, ensure_ascii=False))
        return str(path)

    # -- execution history --

    async def append_execution_log(self, execution_id: str, node_result: Dict[str, Any]) -> None:
        date_dir = self._execution_dir(execution_id)
        date_dir.mkdir(parents=True, exist_ok=True)
        log_file = date_dir / f"{execution_id}.log.jsonl"

        async with self._get_lock(log_file):
            async with aiofiles.open(log_file, "a", encoding="utf-8") as f:
                await f.write(json.dumps(node_result, ensure_ascii=False, default=str) + "\n")

    async def persist_execution_result(self, result: Dict[str, Any]) -> str:
        execution_id = result.get("executionId") or result["execution_id"]
        date_dir = self._execution_dir(execution_id)
        date_dir.mkdir(parents=True, exist_ok=True)
        execution_file = date_dir / f"{execution_id}.json"

        async with self._get_lock(execution_file):
            async with aiofiles.open(execution_file, "w", encoding="utf-8") as f:
                await f.write(json.dumps(result, indent=2, ensure_ascii=False, default=str))

        return str(execution_file)

    async def get(self, execution_id: str) -> Optional[Dict[str, Any]]:
        """Execution result by id, or None if not found"""
        execution_file = self._execution_dir(execution_id) / f"{execution_id}.json"
        if not execution_file.is_file():
            return None
        async with aiofiles.open(execution_file, "r", encoding="utf-8") as f:
            return json.loads(await f.read())

    async def read_execution_log(self, execution_id: str) -> List[Dict[str, Any]]:
        log_file = self._execution_dir(execution_id) / f"{execution_id}.log.jsonl"
        if not log_file.is_file():
            return []
        async with aiofiles.open(log_file, "r", encoding="utf-8") as f:
            text = await f.read()
        return [json.loads(line) for line in text.splitlines() if line.strip()]

    async def list(
        self,
        date: Optional[str] = None,
        workflow_id: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 100,
        offset: int = 0
    ) -> List[Dict[str, Any]]:
        """
        List executions with optional filters.

        Args:
            date: Filter by date (YYYY-MM-DD)
            workflow_id: Filter by workflow id
            status: Filter by status (completed/failed/cancelled/timeout)
            limit: Max results to return
            offset: Skip first N results

        Returns:
            List of execution results (newest first)
        """
        if date:
            date_dirs = [self.executions_dir / date]
        else:
            date_dirs = sorted(self.executions_dir.glob("*"), reverse=True)

        executions = []
        for date_dir in date_dirs:
            if not date_dir.is_dir():
                continue

            for execution_file in sorted(date_dir.glob("exec_*.json"), reverse=True):
                try:
                    async with aiofiles.open(execution_file, "r", encoding="utf-8") as f:
                        execution = json.loads(await f.read())
                except (OSError, ValueError) as e:
                    log_event(logger, "execution_load_failed", level="WARNING", path=str(execution_file), error=str(e))
                    continue

                if workflow_id and execution.get("workflowId") != workflow_id:
                    continue
                if status and execution.get("status") != status:
                    continue
                executions.append(execution)

                if len(executions) >= limit + offset:
                    return executions[offset:offset + limit]

        return executions[offset:offset + limit]
