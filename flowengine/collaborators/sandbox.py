# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Subprocess code sandbox

Runs CODE node Python in a separate, isolated interpreter (`python -I`) with a
minimal environment and a wall-clock timeout. Imports and builtins that reach
the filesystem, processes or the network are rejected before anything runs.

Note:
- This is process-level isolation only. Full filesystem/network isolation
  requires containerization and host controls.

User code receives `inputs` (also exposed as top-level names when they are
valid identifiers) and returns a value by assigning `result` or defining
`main(inputs)`.
"""

import ast
import asyncio
import json
import os
import time
from typing import Any, Dict, List, Optional

from flowengine.engine.exceptions import (
    FatalNodeError,
    NodeConfigurationError,
    SandboxSecurityError,
    TransientNodeError,
)
from .base import SandboxResult

BLOCKED_MODULES = frozenset([
    "os", "sys", "subprocess", "shutil", "socket", "ctypes", "multiprocessing",
    "threading", "importlib", "builtins", "signal", "pathlib", "pty", "http",
    "urllib", "requests", "httpx", "asyncio", "pickle", "marshal",
])

BLOCKED_CALLS = frozenset([
    "__import__", "eval", "exec", "compile", "open", "input", "breakpoint",
    "globals", "locals", "vars", "getattr", "setattr", "delattr",
])

ENV_ALLOWLIST = ("PATH", "LANG", "LC_ALL", "PYTHONIOENCODING")

RESULT_MARKER = "__FLOWENGINE_RESULT__"

RUNNER = r'''
import contextlib, io, json, sys

payload = json.loads(sys.stdin.read() or "{}")
inputs = payload.get("inputs") or {}
namespace = {"__name__": "__sandbox__", "inputs": inputs}
for key, value in inputs.items():
    if isinstance(key, str) and key.isidentifier():
        namespace.setdefault(key, value)

captured = io.StringIO()
result, error = None, None
with contextlib.redirect_stdout(captured):
    try:
        exec(compile(payload["code"], "<code-node>", "exec"), namespace)
        if "result" in namespace:
            result = namespace["result"]
        elif callable(namespace.get("main")):
            result = namespace["main"](inputs)
    except Exception as e:
        error = type(e).__name__ + ": " + str(e)

sys.__stdout__.write("''' + RESULT_MARKER + r'''" + json.dumps(
    {"result": result, "output": captured.getvalue(), "error": error},
    ensure_ascii=False,
    default=str,
))
'''


def check_code(code: str) -> None:
    """Reject code that imports blocked modules or calls blocked builtins."""
    try:
        tree = ast.parse(code)
    except SyntaxError as e:
        raise NodeConfigurationError(f"Code syntax error at line {e.lineno}: {e.msg}")

    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            names = [alias.name for alias in node.names]
        elif isinstance(node, ast.ImportFrom):
            names = [node.module or ""]
        else:
            names = []
        for name in names:
            if name.split(".")[0] in BLOCKED_MODULES:
                raise SandboxSecurityError(f"Import of '{name}' is not allowed")

        if isinstance(node, ast.Call) and isinstance(node.func, ast.Name) and node.func.id in BLOCKED_CALLS:
            raise SandboxSecurityError(f"Call to '{node.func.id}' is not allowed")
        if isinstance(node, ast.Attribute) and node.attr.startswith("__") and node.attr.endswith("__"):
            raise SandboxSecurityError(f"Access to '{node.attr}' is not allowed")


class SubprocessSandbox:
    def __init__(
        self,
        python: str = "python3",
        timeout: float = 30,
        max_log_lines: int = 100,
        max_output_chars: int = 10000,
    ):
        self.python = python
        self.timeout = timeout
        self.max_log_lines = max_log_lines
        self.max_output_chars = max_output_chars

    def _env(self) -> Dict[str, str]:
        env = {key: os.environ[key] for key in ENV_ALLOWLIST if key in os.environ}
        env["PYTHONIOENCODING"] = "utf-8"
        return env

    async def run(
        self,
        code: str,
        language: str,
        inputs: Dict[str, Any],
        timeout: Optional[float] = None
    ) -> SandboxResult:
        if language.lower() not in ("python", "python3", "py"):
            raise NodeConfigurationError(f"Unsupported code language: {language}")
        check_code(code)

        timeout = timeout or self.timeout
        payload = json.dumps({"code": code, "inputs": inputs}, ensure_ascii=False, default=str).encode("utf-8")
        start = time.monotonic()

        process = await asyncio.create_subprocess_exec(
            self.python, "-I", "-c", RUNNER,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=self._env(),
        )
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(payload), timeout=timeout)
        except asyncio.TimeoutError:
            raise TransientNodeError(f"Code execution exceeded {timeout}s", code="SANDBOX_TIMEOUT")
        finally:
            # Timed out or cancelled: kill and reap so no child outlives the node
            if process.returncode is None:
                process.kill()
                await process.wait()

        execution_time_ms = round((time.monotonic() - start) * 1000, 3)
        text = stdout.decode("utf-8", errors="replace")
        if RESULT_MARKER not in text:
            detail = stderr.decode("utf-8", errors="replace").strip().splitlines()
            raise FatalNodeError(
                f"Sandbox exited with code {process.returncode}: {detail[-1] if detail else 'no output'}",
                code="SANDBOX_ERROR",
            )

        prefix, _, report = text.rpartition(RESULT_MARKER)
        outcome = json.loads(report)
        if outcome.get("error"):
            raise FatalNodeError(f"Code raised {outcome['error']}", code="CODE_ERROR")

        output, logs, truncated = self._cap(prefix + (outcome.get("output") or ""))
        return SandboxResult(
            output=output,
            result=outcome.get("result"),
            logs=logs,
            execution_time_ms=execution_time_ms,
            truncated=truncated,
        )

    def _cap(self, output: str):
        truncated = False
        if len(output) > self.max_output_chars:
            output = output[:self.max_output_chars]
            truncated = True
        logs: List[str] = output.splitlines()
        if len(logs) > self.max_log_lines:
            logs = logs[:self.max_log_lines]
            truncated = True
        return output, logs, truncated
