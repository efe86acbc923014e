# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Error classification

Turns any exception raised while running a node into an ErrorAnalysis that
says whether the orchestrator may retry it. Typed exceptions are trusted
first; provider errors that only surface as text fall back to keyword rules.
"""

import asyncio
from dataclasses import dataclass, field
from typing import List, Tuple

import httpx
from pydantic import ValidationError

from flowengine.core.errors import CollaboratorError, sanitize_error_for_user
from .exceptions import NodeExecutionException


@dataclass(frozen=True)
class ErrorAnalysis:
    code: str
    message: str
    retryable: bool
    suggestions: List[str] = field(default_factory=list)


# (code, keywords, suggestions) - checked in order, first match wins
_FATAL_RULES: List[Tuple[str, Tuple[str, ...], List[str]]] = [
    ("AUTH_ERROR", ("invalid api key", "unauthorized", "authentication", "401"),
     ["Check the API key of the AI provider configuration"]),
    ("QUOTA_EXCEEDED", ("quota", "insufficient balance", "billing"),
     ["Top up the provider account or switch provider"]),
    ("CONTEXT_LENGTH", ("context length", "maximum context", "too many tokens"),
     ["Shorten the prompt or lower ragConfig.maxContextTokens"]),
    ("CODE_SYNTAX", ("syntaxerror", "syntax error", "invalid syntax"),
     ["Fix the syntax of the code node"]),
]

_TRANSIENT_RULES: List[Tuple[str, Tuple[str, ...], List[str]]] = [
    ("RATE_LIMIT", ("rate limit", "too many requests", "429"),
     ["Wait and retry, or raise maxRetries"]),
    ("TIMEOUT", ("timeout", "timed out"),
     ["Raise the node or workflow timeout"]),
    ("NETWORK_ERROR", ("connection reset", "connection refused", "econnreset", "econnrefused", "network"),
     ["Check network connectivity to the collaborator"]),
    ("SERVICE_UNAVAILABLE", ("503", "502", "504", "service unavailable", "bad gateway"),
     ["The upstream service is degraded; retry later"]),
]


def _match(message: str, rules) -> Tuple[str, List[str]]:
    lowered = message.lower()
    for code, keywords, suggestions in rules:
        if any(keyword in lowered for keyword in keywords):
            return code, suggestions
    return "", []


def analyze_error(error: BaseException) -> ErrorAnalysis:
    """Classify an exception as retryable or fatal."""
    message = sanitize_error_for_user(error, include_type=False)

    if isinstance(error, NodeExecutionException):
        return ErrorAnalysis(error.code, message, error.retryable)

    if isinstance(error, CollaboratorError):
        return ErrorAnalysis(error.code, message, error.retryable)

    if isinstance(error, (asyncio.TimeoutError, httpx.TimeoutException)):
        return ErrorAnalysis("TIMEOUT", message or "Operation timed out", True)

    if isinstance(error, httpx.TransportError):
        return ErrorAnalysis("NETWORK_ERROR", message, True)

    if isinstance(error, (ValidationError, KeyError, TypeError)):
        return ErrorAnalysis("CONFIG_ERROR", message, False)

    code, suggestions = _match(message, _FATAL_RULES)
    if code:
        return ErrorAnalysis(code, message, False, suggestions)

    code, suggestions = _match(message, _TRANSIENT_RULES)
    if code:
        return ErrorAnalysis(code, message, True, suggestions)

    return ErrorAnalysis("UNKNOWN_ERROR", message, False)


def compute_backoff(attempt: int, base_delay: float = 1.0, max_delay: float = 30.0) -> float:
    """
    Delay before the next attempt after `attempt` (1-based) failed.

    base_delay * 2^(attempt-1), capped at max_delay.
    """
    return min(base_delay * (2 ** (attempt - 1)), max_delay)
