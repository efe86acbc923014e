# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Workflow Engine Exceptions

Exceptions raised by graph validation, the orchestrator and node processors.
Node errors carry a `retryable` flag the orchestrator uses to decide between
backoff-and-retry and immediate failure.
"""

from typing import Optional

from flowengine.core.errors import FlowEngineError


class WorkflowEngineException(FlowEngineError):
    """Base exception for the workflow engine"""
    pass


class WorkflowValidationError(WorkflowEngineException):
    """Workflow validation failed"""
    def __init__(self, message: str, field: str = None, details: Optional[dict] = None):
        super().__init__(message, code="VALIDATION_ERROR", details=details)
        self.field = field


class UnknownNodeTypeError(WorkflowValidationError):
    """No processor is registered for a node type"""
    def __init__(self, node_type: str, node_id: str = None):
        super().__init__(
            f"No processor registered for node type '{node_type}'",
            field=f"nodes[{node_id}].type" if node_id else "type",
        )
        self.node_type = node_type


class WorkflowExecutionError(WorkflowEngineException):
    """Workflow execution failed"""
    pass


class NodeExecutionException(WorkflowExecutionError):
    """Node execution failed"""
    retryable = False
    default_code = "NODE_ERROR"

    def __init__(
        self,
        message: str,
        node_id: str = None,
        node_name: str = None,
        code: str = None,
        details: Optional[dict] = None
    ):
        super().__init__(message, code=code or self.default_code, details=details)
        self.node_id = node_id
        self.node_name = node_name


class TransientNodeError(NodeExecutionException):
    """Failure expected to go away on retry (timeouts, rate limits, 5xx)"""
    retryable = True
    default_code = "TRANSIENT_ERROR"


class FatalNodeError(NodeExecutionException):
    """Failure that retrying cannot fix"""
    default_code = "FATAL_ERROR"


class NodeConfigurationError(FatalNodeError):
    """Node configuration is malformed or incomplete"""
    default_code = "CONFIG_ERROR"


class SandboxSecurityError(FatalNodeError):
    """Sandboxed code attempted a forbidden operation"""
    default_code = "SANDBOX_SECURITY"


class NodeTimeoutException(TransientNodeError):
    """Node execution exceeded timeout"""
    def __init__(self, node_id: str, node_name: str, timeout: float):
        super().__init__(
            f"Execution exceeded timeout ({timeout}s)",
            node_id=node_id,
            node_name=node_name,
            code="NODE_TIMEOUT",
        )
        self.timeout = timeout
