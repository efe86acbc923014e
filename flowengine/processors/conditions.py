# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Safe Condition Evaluator

Operator-based conditions (`{variable, operator, value}`) shared by the
CONDITION and LOOP nodes, plus AST-based safe evaluation of boolean
expressions over resolved variables. Expressions never execute arbitrary
code: only whitelisted operators and a handful of pure builtins are allowed.
"""

import ast
import json
import operator
import re
from typing import Any, Dict, Mapping, Optional

from flowengine.engine.context import ExecutionContext
from flowengine.engine.exceptions import NodeConfigurationError
from flowengine.engine.nodes import Condition
from flowengine.engine.variables import TEMPLATE_PATTERN


_BINARY_OPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
}

_UNARY_OPS = {
    ast.Not: operator.not_,
    ast.USub: operator.neg,
    ast.UAdd: operator.pos,
}

_COMPARE_OPS = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.In: lambda left, right: left in right,
    ast.NotIn: lambda left, right: left not in right,
}

# Pure builtins callable by name from an expression
EXPRESSION_FUNCTIONS = {
    "len": len,
    "str": str,
    "int": int,
    "float": float,
    "bool": bool,
    "abs": abs,
    "min": min,
    "max": max,
    "round": round,
}

_LITERAL_NAMES = {"true": True, "false": False, "null": None, "True": True, "False": False, "None": None}


def _lookup(table: Dict[type, Any], op: ast.AST):
    try:
        return table[type(op)]
    except KeyError:
        raise ValueError(f"Operator not allowed: {type(op).__name__}") from None


class SafeEvaluator(ast.NodeVisitor):
    """
    Evaluates a parsed expression against bound variables.

    Any AST node without a visit_ method is rejected, which rules out
    attribute access, lambdas, comprehensions and assignment expressions.
    """

    def __init__(self, variables: Dict[str, Any]):
        self.variables = variables

    def generic_visit(self, node):
        raise ValueError(f"{type(node).__name__} is not allowed in conditions")

    def visit_Expression(self, node):
        return self.visit(node.body)

    def visit_Constant(self, node):
        return node.value

    def visit_List(self, node):
        return [self.visit(item) for item in node.elts]

    def visit_Tuple(self, node):
        return tuple(self.visit(item) for item in node.elts)

    def visit_Name(self, node):
        if node.id in self.variables:
            return self.variables[node.id]
        if node.id in _LITERAL_NAMES:
            return _LITERAL_NAMES[node.id]
        raise ValueError(f"Undefined variable: {node.id}")

    def visit_Subscript(self, node):
        return self.visit(node.value)[self.visit(node.slice)]

    def visit_BinOp(self, node):
        return _lookup(_BINARY_OPS, node.op)(self.visit(node.left), self.visit(node.right))

    def visit_UnaryOp(self, node):
        return _lookup(_UNARY_OPS, node.op)(self.visit(node.operand))

    def visit_BoolOp(self, node):
        # Short-circuits like Python: returns the deciding operand
        want_truthy = isinstance(node.op, ast.Or)
        value = None
        for operand in node.values:
            value = self.visit(operand)
            if bool(value) == want_truthy:
                return value
        return value

    def visit_Compare(self, node):
        left = self.visit(node.left)
        for op, comparator in zip(node.ops, node.comparators):
            right = self.visit(comparator)
            if not _lookup(_COMPARE_OPS, op)(left, right):
                return False
            left = right
        return True

    def visit_Call(self, node):
        if not isinstance(node.func, ast.Name) or node.func.id not in EXPRESSION_FUNCTIONS:
            name = node.func.id if isinstance(node.func, ast.Name) else type(node.func).__name__
            raise ValueError(f"Call to {name} is not allowed in conditions")
        if node.keywords:
            raise ValueError("Keyword arguments are not allowed in conditions")
        return EXPRESSION_FUNCTIONS[node.func.id](*(self.visit(arg) for arg in node.args))


def evaluate_expression(
    expression: str,
    context: ExecutionContext,
    scope: Optional[Mapping[str, Any]] = None
) -> bool:
    """
    Evaluate a boolean expression containing `{{...}}` references.

    Each reference is bound to a generated variable name holding its raw
    value, e.g. "{{score.result}} > 5" evaluates "var_0 > 5".
    """
    variables: Dict[str, Any] = {}

    def bind(match: re.Match) -> str:
        name = f"var_{len(variables)}"
        variables[name] = context.resolve_value(match.group(0), scope)
        return name

    source = TEMPLATE_PATTERN.sub(bind, expression)
    try:
        tree = ast.parse(source, mode="eval")
    except SyntaxError as e:
        raise NodeConfigurationError(f"Invalid condition syntax: {e.msg}")
    try:
        return bool(SafeEvaluator(variables).visit(tree))
    except (ValueError, TypeError, KeyError, IndexError, ZeroDivisionError) as e:
        raise NodeConfigurationError(f"Condition evaluation failed: {e}")



# =============================================================================
# OPERATOR CONDITIONS
# =============================================================================

def _to_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def _normalize(value: Any) -> Any:
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False, sort_keys=True)
    return value


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, dict, tuple, set)):
        return len(value) == 0
    return False


def _equals(left: Any, right: Any) -> bool:
    left_number, right_number = _to_number(left), _to_number(right)
    if left_number is not None and right_number is not None:
        return left_number == right_number
    if isinstance(left, bool) or isinstance(right, bool):
        return str(left).lower() == str(right).lower()
    return _normalize(left) == _normalize(right)


def _compare(left: Any, right: Any, op) -> bool:
    left_number, right_number = _to_number(left), _to_number(right)
    if left_number is None or right_number is None:
        return False
    return op(left_number, right_number)


def _contains(left: Any, right: Any) -> bool:
    if isinstance(left, (list, tuple, set)):
        return any(_equals(item, right) for item in left)
    if isinstance(left, dict):
        return str(right) in left
    if left is None:
        return False
    return str(right) in str(left)


def compare_values(left: Any, operator_name: str, right: Any) -> bool:
    """Apply a named condition operator"""
    if operator_name == "equals":
        return _equals(left, right)
    if operator_name == "notEquals":
        return not _equals(left, right)
    if operator_name == "greaterThan":
        return _compare(left, right, operator.gt)
    if operator_name == "lessThan":
        return _compare(left, right, operator.lt)
    if operator_name == "greaterOrEqual":
        return _compare(left, right, operator.ge)
    if operator_name == "lessOrEqual":
        return _compare(left, right, operator.le)
    if operator_name == "contains":
        return _contains(left, right)
    if operator_name == "notContains":
        return not _contains(left, right)
    if operator_name == "startsWith":
        return left is not None and str(left).startswith(str(right))
    if operator_name == "endsWith":
        return left is not None and str(left).endswith(str(right))
    if operator_name == "isEmpty":
        return _is_empty(left)
    if operator_name == "isNotEmpty":
        return not _is_empty(left)
    raise NodeConfigurationError(f"Unknown condition operator: {operator_name}")


def evaluate_condition(
    condition: Condition,
    context: ExecutionContext,
    scope: Optional[Mapping[str, Any]] = None
) -> Dict[str, Any]:
    """Evaluate one condition; returns the evaluation record published by the node"""
    left = context.resolve_value(condition.variable, scope)
    right = context.resolve_config(condition.value, scope)
    return {
        "variable": condition.variable,
        "operator": condition.operator,
        "expected": right,
        "actual": left,
        "result": compare_values(left, condition.operator, right),
    }
