# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Exception hierarchy shared by the engine and its collaborators.

FlowEngineError carries a stable `code` that ends up in node and workflow
results. CollaboratorError marks failures of things outside the engine
(AI providers, retrieval, storage); its `retryable` flag feeds the error
classifier in flowengine.engine.error_handler.
"""

from typing import Optional

MAX_USER_MESSAGE_CHARS = 500


class FlowEngineError(Exception):
    """Base exception for all FlowEngine errors."""

    default_code = "ENGINE_ERROR"

    def __init__(self, message: str, code: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = dict(details or {})

    def to_dict(self) -> dict:
        return {
            "error": type(self).__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class NotFoundError(FlowEngineError):
    """A stored workflow or execution does not exist."""

    default_code = "NOT_FOUND"

    def __init__(self, resource: str, identifier: str, details: Optional[dict] = None):
        super().__init__(f"{resource} not found: {identifier}", details=details)
        self.resource = resource
        self.identifier = identifier


class ConfigurationError(FlowEngineError):
    """Engine misconfiguration detected at startup (not a per-node config problem)."""

    default_code = "CONFIGURATION_ERROR"


class CollaboratorError(FlowEngineError):
    """An external collaborator (AI provider, retrieval, storage, sandbox) failed."""

    default_code = "COLLABORATOR_ERROR"

    def __init__(
        self,
        message: str,
        retryable: bool = False,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
        details: Optional[dict] = None
    ):
        super().__init__(message, code=code, details=details)
        self.retryable = retryable
        self.status_code = status_code


class CompletionError(CollaboratorError):
    """AI completion failed. `retryable` separates rate limits from bad requests."""

    def __init__(
        self,
        message: str,
        retryable: bool = False,
        status_code: Optional[int] = None,
        details: Optional[dict] = None
    ):
        super().__init__(
            message,
            retryable=retryable,
            status_code=status_code,
            code="AI_RATE_LIMIT" if status_code == 429 else "AI_ERROR",
            details=details,
        )


def sanitize_error_for_user(error: Exception, include_type: bool = True) -> str:
    """
    One-line message for an exception, safe to put in a result payload.

    Only the first line of the message is kept (no tracebacks) and it is
    capped at MAX_USER_MESSAGE_CHARS.
    """
    text = str(error).strip()
    first_line = text.splitlines()[0].strip() if text else ""
    first_line = first_line or type(error).__name__

    if len(first_line) > MAX_USER_MESSAGE_CHARS:
        first_line = first_line[:MAX_USER_MESSAGE_CHARS] + "..."

    return f"{type(error).__name__}: {first_line}" if include_type else first_line
