# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Workflow engine service

Owns the engine's long-lived resources (shared HTTP client, collaborators,
processor registry, executor) with an explicit start/stop lifecycle, and
tracks in-flight runs so they can be cancelled.
"""

import asyncio
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

import httpx
from pydantic import ValidationError

from flowengine.collaborators.base import (
    CodeSandbox,
    CompletionClient,
    PersistenceClient,
    RetrievalClient,
    StorageClient,
)
from flowengine.collaborators.completion import ProviderCompletionClient, OpenAICompletionClient
from flowengine.collaborators.retrieval import HttpRetrievalClient
from flowengine.collaborators.sandbox import SubprocessSandbox
from flowengine.collaborators.storage import LocalFileStorage
from flowengine.collaborators.store import ExecutionStore
from flowengine.core.config import EngineConfig, get_config, get_retrieval_token
from flowengine.core.logging import get_engine_logger, log_event
from flowengine.engine.exceptions import WorkflowEngineException, WorkflowValidationError
from flowengine.engine.events import UpdateCallback
from flowengine.engine.executor import WorkflowExecutor, new_execution_id
from flowengine.engine.logging import ExecutionLogger
from flowengine.engine.models import (
    AIProviderConfig,
    ExecutionOptions,
    KnowledgeBaseConfig,
    WorkflowDefinition,
    WorkflowExecutionResult,
)
from flowengine.processors import ProcessorRegistry, build_default_registry

logger = get_engine_logger("service")

DefinitionInput = Union[WorkflowDefinition, Dict[str, Any]]
OptionsInput = Union[ExecutionOptions, Dict[str, Any], None]


def _snapshot(items, model):
    """Normalize a mapping or iterable of configs into {id: model}"""
    if not items:
        return {}
    if isinstance(items, Mapping):
        items = [
            dict(value, id=value.get("id", key)) if isinstance(value, dict) else value
            for key, value in items.items()
        ]
    snapshot = {}
    for item in items:
        config = item if isinstance(item, model) else model.model_validate(item)
        snapshot[config.id] = config
    return snapshot


def parse_definition(definition: DefinitionInput) -> WorkflowDefinition:
    if isinstance(definition, WorkflowDefinition):
        return definition
    try:
        return WorkflowDefinition.model_validate(definition)
    except ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first["loc"])
        raise WorkflowValidationError(
            f"Invalid workflow definition: {first['msg']}",
            field=field,
            details={"errors": e.errors(include_url=False)},
        )


class WorkflowEngineService:
    """
    Process-level entry point to the engine.

    Collaborators not passed in are built from configuration on start().
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        completion: Optional[CompletionClient] = None,
        retrieval: Optional[RetrievalClient] = None,
        storage: Optional[StorageClient] = None,
        sandbox: Optional[CodeSandbox] = None,
        persistence: Optional[PersistenceClient] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        registry: Optional[ProcessorRegistry] = None,
        sleep=asyncio.sleep,
    ):
        self.config = config or get_config()
        self.completion = completion
        self.retrieval = retrieval
        self.storage = storage
        self.sandbox = sandbox
        self.persistence = persistence
        self.http_client = http_client
        self.registry = registry
        self.executor: Optional[WorkflowExecutor] = None

        self._sleep = sleep
        self._owned: List[Any] = []
        self._active: Dict[str, asyncio.Event] = {}

    @property
    def started(self) -> bool:
        return self.executor is not None

    @property
    def active_executions(self) -> List[str]:
        return list(self._active)

    async def start(self) -> None:
        if self.started:
            return

        config = self.config
        if self.http_client is None:
            self.http_client = httpx.AsyncClient(timeout=config.http_timeout)
            self._owned.append(self.http_client)
        if self.completion is None:
            self.completion = ProviderCompletionClient(OpenAICompletionClient(base_url=config.ai_base_url))
            self._owned.append(self.completion)
        if self.retrieval is None and config.retrieval_url:
            self.retrieval = HttpRetrievalClient(
                config.retrieval_url,
                client=self.http_client,
                token=get_retrieval_token(),
                timeout=config.retrieval_timeout,
            )
        if self.storage is None:
            self.storage = LocalFileStorage(config.storage_dir, config.storage_public_url)
        if self.sandbox is None:
            self.sandbox = SubprocessSandbox(
                python=config.sandbox_python,
                timeout=config.sandbox_timeout,
                max_log_lines=config.sandbox_max_log_lines,
                max_output_chars=config.sandbox_max_output_chars,
            )
        if self.persistence is None and config.store_dir:
            self.persistence = ExecutionStore(config.store_dir)

        if self.registry is None:
            self.registry = build_default_registry(
                completion=self.completion,
                retrieval=self.retrieval,
                storage=self.storage,
                sandbox=self.sandbox,
                http_client=self.http_client,
                config=config,
            )

        self.executor = WorkflowExecutor(
            self.registry,
            ExecutionLogger(self.persistence),
            config,
            sleep=self._sleep,
        )
        log_event(logger, "engine_started", persistence=self.persistence is not None, retrieval=self.retrieval is not None)

    async def stop(self) -> None:
        """Cancel in-flight runs and release owned resources"""
        for event in self._active.values():
            event.set()

        for resource in reversed(self._owned):
            if isinstance(resource, httpx.AsyncClient):
                await resource.aclose()
            else:
                await resource.close()
        self._owned.clear()
        self.executor = None
        log_event(logger, "engine_stopped")

    async def __aenter__(self) -> "WorkflowEngineService":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    async def execute_workflow(
        self,
        definition: DefinitionInput,
        input: Optional[Dict[str, Any]] = None,
        options: OptionsInput = None,
        ai_configs: Union[Mapping[str, Any], Iterable[Any], None] = None,
        knowledge_bases: Union[Mapping[str, Any], Iterable[Any], None] = None,
        default_ai_config_id: Optional[str] = None,
        execution_id: Optional[str] = None,
        update_callback: Optional[UpdateCallback] = None,
    ) -> WorkflowExecutionResult:
        """
        Execute a workflow definition.

        Raises WorkflowValidationError for an invalid definition and
        WorkflowEngineException when the service is not started.
        """
        if not self.started:
            raise WorkflowEngineException("Workflow engine service is not started", code="ENGINE_NOT_STARTED")

        definition = parse_definition(definition)
        if not isinstance(options, ExecutionOptions):
            options = ExecutionOptions.model_validate(options or {})
        ai_snapshot = _snapshot(ai_configs, AIProviderConfig)
        if default_ai_config_id is None and ai_snapshot:
            default_ai_config_id = next(iter(ai_snapshot))

        execution_id = execution_id or new_execution_id()
        if execution_id in self._active:
            raise WorkflowEngineException(f"Execution {execution_id} is already running", code="DUPLICATE_EXECUTION")
        cancel_event = asyncio.Event()
        self._active[execution_id] = cancel_event

        try:
            return await self.executor.execute(
                definition,
                input=input,
                options=options,
                ai_configs=ai_snapshot,
                default_ai_config_id=default_ai_config_id,
                knowledge_bases=_snapshot(knowledge_bases, KnowledgeBaseConfig),
                cancel_event=cancel_event,
                execution_id=execution_id,
                update_callback=update_callback,
            )
        finally:
            self._active.pop(execution_id, None)

    async def run_workflow(
        self,
        workflow_id: str,
        input: Optional[Dict[str, Any]] = None,
        options: OptionsInput = None,
        **kwargs: Any
    ) -> WorkflowExecutionResult:
        """Load a stored definition through persistence and execute it"""
        if self.persistence is None:
            raise WorkflowEngineException("No persistence collaborator is configured", code="NO_PERSISTENCE")
        if not isinstance(options, ExecutionOptions):
            options = ExecutionOptions.model_validate(options or {})

        definition = await self.persistence.load_workflow_definition(workflow_id, options.mode.value)
        return await self.execute_workflow(definition, input=input, options=options, **kwargs)

    def cancel(self, execution_id: str) -> bool:
        """Signal a running execution to stop. False if it is not running."""
        event = self._active.get(execution_id)
        if event is None:
            return False
        event.set()
        log_event(logger, "execution_cancel_requested", execution_id=execution_id)
        return True
