# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
SWITCH node: multi-way branch

Cases are tried in order; the first match wins. No match selects the
"default" handle.
"""

import re
from typing import Any, Optional, Tuple

from flowengine.engine.context import ExecutionContext
from flowengine.engine.exceptions import NodeConfigurationError
from flowengine.engine.nodes import NodeType, SwitchCase
from flowengine.engine.validation import DEFAULT_SWITCH_HANDLE
from flowengine.engine.variables import format_value
from .base import NodeProcessor, ProcessorOutput

RANGE_SEPARATOR = ".."


def parse_range(spec: Any) -> Tuple[Optional[float], Optional[float]]:
    """
    Parse a range case value.

    Accepts "min..max" (either side may be empty) or a {"min": .., "max": ..}
    mapping.
    """
    if isinstance(spec, dict):
        low, high = spec.get("min"), spec.get("max")
    else:
        text = str(spec)
        if RANGE_SEPARATOR not in text:
            raise NodeConfigurationError(f"Invalid range case '{text}', expected 'min..max'")
        low, high = text.split(RANGE_SEPARATOR, 1)
    try:
        return (
            float(low) if low not in (None, "") else None,
            float(high) if high not in (None, "") else None,
        )
    except (TypeError, ValueError):
        raise NodeConfigurationError(f"Invalid range bounds in case '{spec}'")


def case_matches(value: Any, case: SwitchCase, match_type: str, case_sensitive: bool) -> bool:
    if match_type == "range":
        try:
            number = float(value)
        except (TypeError, ValueError):
            return False
        low, high = parse_range(case.value)
        return (low is None or number >= low) and (high is None or number <= high)

    actual = format_value(value)
    expected = format_value(case.value)

    if match_type == "regex":
        flags = 0 if case_sensitive else re.IGNORECASE
        try:
            return re.search(expected, actual, flags) is not None
        except re.error as e:
            raise NodeConfigurationError(f"Invalid regex in case '{case.id}': {e}")

    if not case_sensitive:
        actual, expected = actual.lower(), expected.lower()
    if match_type == "contains":
        return expected in actual
    return actual == expected


class SwitchNodeProcessor(NodeProcessor):
    node_type = NodeType.SWITCH

    async def execute(self, node, context: ExecutionContext) -> ProcessorOutput:
        cfg = node.config
        value = context.resolve_value(cfg.variable)

        for case in cfg.cases:
            resolved = case.model_copy(update={"value": context.resolve_config(case.value)})
            if case_matches(value, resolved, cfg.match_type, cfg.case_sensitive):
                return ProcessorOutput(data={
                    "result": value,
                    "matchedCase": {"id": case.id, "value": resolved.value, "label": case.label},
                    "branch": case.id,
                })

        return ProcessorOutput(data={
            "result": value,
            "matchedCase": None,
            "branch": DEFAULT_SWITCH_HANDLE,
        })
