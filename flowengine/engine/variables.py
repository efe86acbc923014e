# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Variable resolution

Rewrites `{{producer.field.path}}` references in node configuration strings
with values from already-completed node outputs.

Lookup order for a producer:
1. scope variables supplied by the caller (loop item/index)
2. reserved tokens: date, time, timestamp, executionId (and their Chinese forms)
3. node outputs, by node name then node id
4. global variables (the invocation input is available as `input`)

A backslash before the opening braces (`\\{{x}}`) keeps the token literal.
"""

import json
import re
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterator, List, Mapping, Optional, Tuple

if TYPE_CHECKING:
    from .context import ExecutionContext

TEMPLATE_PATTERN = re.compile(r"(\\)?\{\{\s*([^{}]+?)\s*\}\}")

RESERVED_TOKENS: Dict[str, str] = {
    "date": "date",
    "日期": "date",
    "time": "time",
    "时间": "time",
    "timestamp": "timestamp",
    "时间戳": "timestamp",
    "executionId": "execution_id",
    "执行ID": "execution_id",
}

_FILE_NAME_INVALID = re.compile(r'[\\/:*?"<>|\s]+')

_MISSING = object()
_UNRESOLVED = object()


@dataclass(frozen=True)
class VariableReference:
    """A parsed `{{...}}` token"""
    raw: str
    expression: str

    @property
    def parts(self) -> List[str]:
        return [part.strip() for part in self.expression.split(".") if part.strip()]

    @property
    def is_reserved(self) -> bool:
        return self.expression.strip() in RESERVED_TOKENS


def iter_references(value: Any, skip_keys: frozenset = frozenset()) -> Iterator[VariableReference]:
    """
    Yield every unescaped reference found in strings nested inside value.

    skip_keys names top-level config fields kept literal (a CODE node's
    `code`); a nested mapping that happens to reuse such a key is still
    scanned, matching resolve_config.
    """
    if isinstance(value, str):
        for match in TEMPLATE_PATTERN.finditer(value):
            if not match.group(1):
                yield VariableReference(raw=match.group(0), expression=match.group(2))
    elif isinstance(value, Mapping):
        for key, item in value.items():
            if key not in skip_keys:
                yield from iter_references(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from iter_references(item)


def match_producer(parts: List[str], is_known: Callable[[str], bool]) -> Tuple[Optional[str], List[str]]:
    """
    Split reference parts into (producer, field path).

    Node names may themselves contain dots, so the longest known prefix wins.
    """
    for end in range(len(parts), 0, -1):
        candidate = ".".join(parts[:end])
        if is_known(candidate):
            return candidate, parts[end:]
    return None, parts[1:]


def get_path(data: Any, path: List[str]) -> Any:
    """Walk a dotted path through nested dicts and lists. Returns _MISSING when absent."""
    current = data
    for key in path:
        if isinstance(current, Mapping):
            if key not in current:
                return _MISSING
            current = current[key]
        elif isinstance(current, (list, tuple)) and key.lstrip("-").isdigit():
            index = int(key)
            if not -len(current) <= index < len(current):
                return _MISSING
            current = current[index]
        else:
            return _MISSING
    return current


def primary_value(data: Mapping[str, Any]) -> Any:
    """Value a bare `{{producer}}` reference stands for."""
    if "result" in data:
        return data["result"]
    if len(data) == 1:
        return next(iter(data.values()))
    return dict(data)


def _is_scalar(value: Any) -> bool:
    return value is None or isinstance(value, (str, int, float, bool))


def format_value(value: Any) -> str:
    """
    Render a value for substitution into prose.

    Scalars render plainly, lists of scalars as a comma-separated list and flat
    mappings as `key: value` pairs. Anything deeper becomes single-line JSON.
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (str, int, float)):
        return str(value)
    if isinstance(value, (list, tuple)) and all(_is_scalar(item) for item in value):
        return ", ".join(format_value(item) for item in value)
    if isinstance(value, Mapping) and all(_is_scalar(item) for item in value.values()):
        return ", ".join(f"{key}: {format_value(item)}" for key, item in value.items())
    return json.dumps(value, ensure_ascii=False, default=str)


def sanitize_file_name(name: str, default: str = "output") -> str:
    """Make a resolved name safe to use as a file name."""
    cleaned = _FILE_NAME_INVALID.sub("_", name or "").strip("._")
    return cleaned or default


class VariableResolver:
    """
    Resolves templates against an ExecutionContext.

    Holds no run state; the clock is injectable so reserved date/time tokens
    can be tested deterministically.
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._clock = clock or (lambda: datetime.now().astimezone())

    def resolve(
        self,
        template: str,
        context: "ExecutionContext",
        scope: Optional[Mapping[str, Any]] = None
    ) -> str:
        """Substitute every reference in template. Strings without tokens come back unchanged."""
        if not isinstance(template, str) or "{{" not in template:
            return template

        def replace(match: re.Match) -> str:
            if match.group(1):
                return match.group(0)[1:]
            expression = match.group(2)
            value = self._lookup(expression, context, scope)
            if value is _UNRESOLVED:
                context.add_warning(f"Unresolved variable reference: {match.group(0)}")
                return match.group(0)
            if value is _MISSING:
                context.add_warning(f"Variable reference {match.group(0)} points to a missing field")
                return ""
            return format_value(value)

        return TEMPLATE_PATTERN.sub(replace, template)

    def resolve_value(
        self,
        reference: str,
        context: "ExecutionContext",
        scope: Optional[Mapping[str, Any]] = None
    ) -> Any:
        """
        Resolve a reference to its raw value instead of a string.

        Accepts `{{A.x}}` or `A.x`. Text mixing tokens with other characters is
        resolved as a template. Unknown references resolve to None.
        """
        if not isinstance(reference, str):
            return reference
        text = reference.strip()
        match = TEMPLATE_PATTERN.fullmatch(text)
        if match and not match.group(1):
            expression = match.group(2)
        elif "{{" in text:
            return self.resolve(text, context, scope)
        else:
            expression = text

        value = self._lookup(expression, context, scope)
        if value is _UNRESOLVED or value is _MISSING:
            context.add_warning(f"Variable reference {{{{{expression}}}}} could not be resolved")
            return None
        return value

    def resolve_config(
        self,
        value: Any,
        context: "ExecutionContext",
        scope: Optional[Mapping[str, Any]] = None,
        skip_keys: frozenset = frozenset()
    ) -> Any:
        """Resolve every string nested inside dicts and lists."""
        if isinstance(value, str):
            return self.resolve(value, context, scope)
        if isinstance(value, Mapping):
            return {
                key: item if key in skip_keys else self.resolve_config(item, context, scope)
                for key, item in value.items()
            }
        if isinstance(value, list):
            return [self.resolve_config(item, context, scope) for item in value]
        return value

    def reserved_value(self, token: str, context: "ExecutionContext") -> str:
        kind = RESERVED_TOKENS[token]
        if kind == "execution_id":
            return context.execution_id
        now = self._clock()
        if kind == "date":
            return now.strftime("%Y-%m-%d")
        if kind == "time":
            return now.strftime("%H:%M:%S")
        return str(int(now.timestamp() * 1000))

    def _lookup(self, expression: str, context: "ExecutionContext", scope: Optional[Mapping[str, Any]]) -> Any:
        parts = [part.strip() for part in expression.split(".") if part.strip()]
        if not parts:
            return _UNRESOLVED

        if scope:
            name, path = match_producer(parts, lambda candidate: candidate in scope)
            if name is not None:
                return get_path(scope[name], path)

        if len(parts) == 1 and parts[0] in RESERVED_TOKENS:
            return self.reserved_value(parts[0], context)

        name, path = match_producer(parts, lambda candidate: context.get_output(candidate) is not None)
        if name is not None:
            data = context.get_output(name).data
            return get_path(data, path) if path else primary_value(data)

        variables = context.global_variables
        name, path = match_producer(parts, lambda candidate: candidate in variables)
        if name is not None:
            return get_path(variables[name], path)

        return _UNRESOLVED

