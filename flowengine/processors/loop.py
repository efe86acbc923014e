# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
LOOP node: bounded iteration

FOR walks a resolved array, WHILE repeats while its condition holds. Each
iteration exposes `loop.item`, `loop.index`, `loop.isFirst`, `loop.isLast`,
`loop.total` and the configured item/index names as scope variables for the
optional body template. Iteration never exceeds maxIterations.
"""

import json
from typing import Any, Dict, List, Optional

from flowengine.engine.context import ExecutionContext
from flowengine.engine.exceptions import NodeConfigurationError
from flowengine.engine.nodes import NodeType
from .base import NodeProcessor, ProcessorOutput
from .conditions import evaluate_condition


def _as_list(value: Any) -> Optional[List[Any]]:
    if isinstance(value, list):
        return value
    if isinstance(value, tuple):
        return list(value)
    if isinstance(value, dict):
        return [{"key": key, "value": item} for key, item in value.items()]
    if isinstance(value, str):
        text = value.strip()
        if text.startswith("["):
            try:
                parsed = json.loads(text)
            except json.JSONDecodeError:
                return None
            return parsed if isinstance(parsed, list) else None
        if text:
            return [line for line in text.splitlines() if line.strip()]
        return []
    return None


def loop_scope(item: Any, index: int, total: Optional[int], item_name: str = "item", index_name: str = "index") -> Dict[str, Any]:
    loop = {
        "item": item,
        "index": index,
        "isFirst": index == 0,
        "isLast": total is not None and index == total - 1,
        "total": total,
    }
    return {"loop": loop, item_name: item, index_name: index}


class LoopNodeProcessor(NodeProcessor):
    node_type = NodeType.LOOP

    async def execute(self, node, context: ExecutionContext) -> ProcessorOutput:
        cfg = node.config
        if cfg.loop_type == "FOR":
            return self._run_for(cfg, context)
        return self._run_while(cfg, context)

    def _render(self, body: Optional[str], item: Any, context: ExecutionContext, scope: Dict[str, Any]) -> Any:
        if body is None:
            return item
        return context.resolve(body, scope)

    def _run_for(self, cfg, context: ExecutionContext) -> ProcessorOutput:
        for_config = cfg.for_config
        source = context.resolve_value(for_config.array_variable)
        items = _as_list(source)
        if items is None:
            raise NodeConfigurationError(
                f"Loop variable {for_config.array_variable} is not iterable ({type(source).__name__})"
            )

        truncated = len(items) > cfg.max_iterations
        items = items[:cfg.max_iterations]
        total = len(items)

        results = []
        for index, item in enumerate(items):
            scope = loop_scope(item, index, total, for_config.item_name, for_config.index_name)
            results.append(self._render(cfg.body, item, context, scope))

        return ProcessorOutput(data={
            "result": results,
            "items": items,
            "iterations": total,
            "truncated": truncated,
        })

    def _run_while(self, cfg, context: ExecutionContext) -> ProcessorOutput:
        while_config = cfg.while_config
        limit = min(while_config.max_iterations or cfg.max_iterations, cfg.max_iterations)

        results = []
        indexes = []
        index = 0
        truncated = False
        while True:
            scope = loop_scope(index, index, None)
            if not evaluate_condition(while_config.condition, context, scope)["result"]:
                break
            if index >= limit:
                truncated = True
                break
            results.append(self._render(cfg.body, index, context, scope))
            indexes.append(index)
            index += 1

        return ProcessorOutput(data={
            "result": results,
            "items": indexes,
            "iterations": index,
            "truncated": truncated,
        })
