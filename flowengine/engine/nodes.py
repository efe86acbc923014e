# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Node definitions

One pydantic model per node type, combined into a discriminated union on
`type`. Persisted definitions use camelCase keys; the aliases below let them
load directly while Python code keeps snake_case attribute names.
"""

from enum import Enum
from typing import Annotated, Any, ClassVar, Dict, FrozenSet, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class EngineModel(BaseModel):
    """Base model: camelCase aliases, snake_case attributes."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class NodeType(str, Enum):
    INPUT = "INPUT"
    PROCESS = "PROCESS"
    CODE = "CODE"
    DATA = "DATA"
    IMAGE = "IMAGE"
    VIDEO = "VIDEO"
    AUDIO = "AUDIO"
    OUTPUT = "OUTPUT"
    HTTP = "HTTP"
    CONDITION = "CONDITION"
    LOOP = "LOOP"
    MERGE = "MERGE"
    SWITCH = "SWITCH"
    NOTIFICATION = "NOTIFICATION"


# Nodes whose outgoing edges are selected by a branch handle
ROUTER_TYPES = frozenset([NodeType.CONDITION, NodeType.SWITCH])


class Position(EngineModel):
    """Editor canvas position. Ignored by the engine."""
    x: float = 0
    y: float = 0


class NodeConfig(EngineModel):
    # Config keys whose string values are passed through without variable resolution
    literal_fields: ClassVar[FrozenSet[str]] = frozenset()


class AIOptions(NodeConfig):
    """Model selection shared by every node that calls the completion collaborator."""
    ai_config_id: Optional[str] = None
    model: Optional[str] = None
    temperature: Optional[float] = Field(default=None, ge=0, le=2)
    max_tokens: Optional[int] = Field(default=None, gt=0)


# =============================================================================
# INPUT
# =============================================================================

class InputField(EngineModel):
    id: str = ""
    name: str
    value: Any = ""
    required: bool = False
    description: Optional[str] = None


class InputNodeConfig(NodeConfig):
    fields: List[InputField] = Field(default_factory=list)


# =============================================================================
# PROCESS
# =============================================================================

class KnowledgeItem(EngineModel):
    id: str = ""
    name: str
    content: str = ""


class RagConfig(EngineModel):
    top_k: int = Field(default=5, ge=1)
    threshold: float = Field(default=0.7, ge=0, le=1)
    max_context_tokens: int = Field(default=4000, ge=1)


class ProcessNodeConfig(AIOptions):
    system_prompt: str = ""
    user_prompt: str = ""
    knowledge_items: List[KnowledgeItem] = Field(default_factory=list)
    knowledge_base_id: Optional[str] = None
    rag_config: RagConfig = Field(default_factory=RagConfig)


# =============================================================================
# CODE / DATA / MEDIA
# =============================================================================

class CodeNodeConfig(NodeConfig):
    literal_fields: ClassVar[FrozenSet[str]] = frozenset(["code"])

    language: str = "python"
    code: str = ""
    inputs: Dict[str, Any] = Field(default_factory=dict)
    timeout: Optional[int] = Field(default=None, gt=0)


class FileRef(EngineModel):
    id: str = ""
    name: str
    url: str
    type: Optional[str] = None
    size: Optional[int] = None


class DataParseOptions(EngineModel):
    has_header: bool = True
    delimiter: Optional[str] = None
    skip_empty_rows: bool = True
    max_rows: Optional[int] = Field(default=None, gt=0)


class DataNodeConfig(NodeConfig):
    files: List[FileRef] = Field(default_factory=list)
    parse_options: DataParseOptions = Field(default_factory=DataParseOptions)


class MediaNodeConfig(AIOptions):
    files: List[FileRef] = Field(default_factory=list)
    prompt: str = ""


# =============================================================================
# OUTPUT
# =============================================================================

class OutputFormat(str, Enum):
    TEXT = "text"
    JSON = "json"
    MARKDOWN = "markdown"
    HTML = "html"
    CSV = "csv"
    WORD = "word"
    EXCEL = "excel"
    PDF = "pdf"
    IMAGE = "image"
    AUDIO = "audio"
    VIDEO = "video"


class OutputNodeConfig(AIOptions):
    prompt: str = ""
    system_prompt: str = ""
    format: OutputFormat = OutputFormat.TEXT
    file_name: Optional[str] = None


# =============================================================================
# HTTP
# =============================================================================

class HttpBody(EngineModel):
    type: Literal["none", "json", "text", "form"] = "none"
    content: Any = None


class ApiKeyAuth(EngineModel):
    key: str = "X-API-Key"
    value: str = ""
    add_to: Literal["header", "query"] = "header"


class HttpAuth(EngineModel):
    type: Literal["none", "basic", "bearer", "apikey"] = "none"
    username: str = ""
    password: str = ""
    token: str = ""
    api_key: ApiKeyAuth = Field(default_factory=ApiKeyAuth)


class HttpNodeConfig(NodeConfig):
    method: Literal["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD"] = "GET"
    url: str
    headers: Dict[str, str] = Field(default_factory=dict)
    query_params: Dict[str, str] = Field(default_factory=dict)
    body: HttpBody = Field(default_factory=HttpBody)
    auth: HttpAuth = Field(default_factory=HttpAuth)
    timeout: Optional[float] = Field(default=None, gt=0)
    fail_on_error: bool = True


# =============================================================================
# CONTROL FLOW
# =============================================================================

ConditionOperator = Literal[
    "equals", "notEquals",
    "greaterThan", "lessThan", "greaterOrEqual", "lessOrEqual",
    "contains", "notContains", "startsWith", "endsWith",
    "isEmpty", "isNotEmpty",
]


class Condition(EngineModel):
    variable: str
    operator: ConditionOperator = "equals"
    value: Any = None


class ConditionNodeConfig(NodeConfig):
    conditions: List[Condition] = Field(default_factory=list)
    evaluation_mode: Literal["all", "any"] = "all"
    expression: Optional[str] = None


class SwitchCase(EngineModel):
    id: str
    value: Any = None
    label: Optional[str] = None


class SwitchNodeConfig(NodeConfig):
    variable: str
    cases: List[SwitchCase] = Field(default_factory=list)
    match_type: Literal["exact", "contains", "regex", "range"] = "exact"
    case_sensitive: bool = True


class ForLoopConfig(EngineModel):
    array_variable: str
    item_name: str = "item"
    index_name: str = "index"


class WhileLoopConfig(EngineModel):
    condition: Condition
    max_iterations: Optional[int] = Field(default=None, gt=0)


class LoopNodeConfig(NodeConfig):
    loop_type: Literal["FOR", "WHILE"] = "FOR"
    for_config: Optional[ForLoopConfig] = None
    while_config: Optional[WhileLoopConfig] = None
    max_iterations: int = Field(default=1000, gt=0)
    body: Optional[str] = None

    @model_validator(mode="after")
    def _check_loop_kind(self) -> "LoopNodeConfig":
        if self.loop_type == "FOR" and self.for_config is None:
            raise ValueError("FOR loop requires forConfig")
        if self.loop_type == "WHILE" and self.while_config is None:
            raise ValueError("WHILE loop requires whileConfig")
        return self


class MergeNodeConfig(NodeConfig):
    merge_strategy: Literal["all", "any", "race"] = "all"
    output_mode: Literal["merge", "array", "first"] = "merge"


class NotificationNodeConfig(NodeConfig):
    platform: Literal["feishu", "dingtalk", "wecom"]
    webhook_url: str
    message_type: Literal["text", "markdown", "card"] = "text"
    content: str = ""
    title: Optional[str] = None
    at_mobiles: List[str] = Field(default_factory=list)
    at_all: bool = False


# =============================================================================
# NODE VARIANTS
# =============================================================================

class BaseNode(EngineModel):
    id: str
    name: str
    position: Position = Field(default_factory=Position)
    timeout: Optional[float] = Field(default=None, gt=0)

    @property
    def node_type(self) -> NodeType:
        return NodeType(self.type)


class InputNode(BaseNode):
    type: Literal["INPUT"]
    config: InputNodeConfig = Field(default_factory=InputNodeConfig)


class ProcessNode(BaseNode):
    type: Literal["PROCESS"]
    config: ProcessNodeConfig = Field(default_factory=ProcessNodeConfig)


class CodeNode(BaseNode):
    type: Literal["CODE"]
    config: CodeNodeConfig = Field(default_factory=CodeNodeConfig)


class DataNode(BaseNode):
    type: Literal["DATA"]
    config: DataNodeConfig = Field(default_factory=DataNodeConfig)


class ImageNode(BaseNode):
    type: Literal["IMAGE"]
    config: MediaNodeConfig = Field(default_factory=MediaNodeConfig)


class VideoNode(BaseNode):
    type: Literal["VIDEO"]
    config: MediaNodeConfig = Field(default_factory=MediaNodeConfig)


class AudioNode(BaseNode):
    type: Literal["AUDIO"]
    config: MediaNodeConfig = Field(default_factory=MediaNodeConfig)


class OutputNode(BaseNode):
    type: Literal["OUTPUT"]
    config: OutputNodeConfig = Field(default_factory=OutputNodeConfig)


class HttpNode(BaseNode):
    type: Literal["HTTP"]
    config: HttpNodeConfig


class ConditionNode(BaseNode):
    type: Literal["CONDITION"]
    config: ConditionNodeConfig = Field(default_factory=ConditionNodeConfig)


class LoopNode(BaseNode):
    type: Literal["LOOP"]
    config: LoopNodeConfig


class MergeNode(BaseNode):
    type: Literal["MERGE"]
    config: MergeNodeConfig = Field(default_factory=MergeNodeConfig)


class SwitchNode(BaseNode):
    type: Literal["SWITCH"]
    config: SwitchNodeConfig


class NotificationNode(BaseNode):
    type: Literal["NOTIFICATION"]
    config: NotificationNodeConfig


NodeDefinition = Annotated[
    Union[
        InputNode, ProcessNode, CodeNode, DataNode,
        ImageNode, VideoNode, AudioNode, OutputNode,
        HttpNode, ConditionNode, LoopNode, MergeNode,
        SwitchNode, NotificationNode,
    ],
    Field(discriminator="type"),
]
