from collections.abc import Callable
from enum import Enum
from typing import Any, Literal, TypeAlias

from typing_extensions import NotRequired, Required, TypedDict


# Progress/lifecycle enums for node execution
class ProgressState(str, Enum):
    START = "start"
    UPDATE = "update"
    DONE = "done"
    ERROR = "error"
    STOPPED = "stopped"


# Binary attachments carried on workflow items
class BinaryData(TypedDict, total=False):
    """A named attachment on a workflow item.

    Either `data` holds the base64 payload inline, or `id` references bytes
    persisted by the binary data store (in which case `data` may be empty).
    """

    mime_type: Required[str]
    data: str
    id: str
    file_name: str
    file_extension: str
    file_size: int


class WorkflowItem(TypedDict, total=False):
    json: Required[dict[str, Any]]
    binary: NotRequired[dict[str, BinaryData]]


class StoryboardShot(TypedDict, total=False):
    shot_prompt: str
    duration: int | float


# Base node based types
# Scalar and value types accepted for parameter defaults/options
ParamScalar = str | int | float | bool
ParamValue = ParamScalar | None | list[Any] | dict[str, Any]

# UI param type tags used by the frontend
ParamType = Literal[
    "text",
    "textarea",
    "password",
    "number",
    "integer",
    "int",
    "float",
    "combo",
    "boolean",
    "collection",
]


class DisplayOptions(TypedDict, total=False):
    """Conditional visibility of a form field.

    `show`: every listed parameter must currently hold one of the listed values.
    `hide`: the field is hidden if any listed parameter holds one of the listed values.
    """

    show: dict[str, list[ParamScalar]]
    hide: dict[str, list[ParamScalar]]


class ParamMeta(TypedDict, total=False):
    name: Required[str]
    type: NotRequired[ParamType]
    default: NotRequired[ParamValue]
    options: NotRequired[list[ParamScalar]]
    min: NotRequired[float]
    max: NotRequired[float]
    step: NotRequired[float]
    precision: NotRequired[int]
    label: NotRequired[str]
    unit: NotRequired[str]
    description: NotRequired[str]
    placeholder: NotRequired[str]
    required: NotRequired[bool]
    fields: NotRequired[list["ParamMeta"]]
    display_options: NotRequired[DisplayOptions]


DefaultParams: TypeAlias = dict[str, ParamValue]
NodeInputs: TypeAlias = dict[str, Any]
NodeOutputs: TypeAlias = dict[str, Any]
NodeOutput: TypeAlias = dict[str, Any]
ExecutionResults: TypeAlias = dict[int, NodeOutput]

# Type alias for the node registry
NodeRegistry: TypeAlias = dict[str, type[Any]]


class NodeCategory(str, Enum):
    IO = "io"
    LLM = "llm"
    MEDIA = "media"
    BASE = "base"
    CORE = "core"


# Types for the graph serialisation from LiteGraph.asSerialisable().
class SerialisedLink(TypedDict, total=False):
    """Object-based link used by LiteGraph.asSerialisable()."""

    id: Required[int]
    origin_id: Required[int]
    origin_slot: Required[int]
    target_id: Required[int]
    target_slot: Required[int]
    type: Required[Any]
    parentId: NotRequired[int]


class SerialisedNodeInput(TypedDict, total=False):
    name: str
    type: Any
    linkIds: NotRequired[list[int]]


class SerialisedNodeOutput(TypedDict, total=False):
    name: str
    type: Any
    linkIds: NotRequired[list[int]]


class SerialisedNode(TypedDict, total=False):
    id: Required[int]
    type: Required[str]
    title: NotRequired[str]
    pos: NotRequired[list[float]]
    size: NotRequired[list[float]]
    flags: NotRequired[dict[str, Any]]
    order: NotRequired[int]
    mode: NotRequired[int]
    inputs: NotRequired[list[SerialisedNodeInput]]
    outputs: NotRequired[list[SerialisedNodeOutput]]
    properties: NotRequired[dict[str, Any]]
    widgets_values: NotRequired[list[Any]]


class SerialisedGraphState(TypedDict, total=True):
    lastNodeId: int
    lastLinkId: int
    lastGroupId: int
    lastRerouteId: int


# Main graph serialisation type that transcribes from the LiteGraph.asSerialisable() schema.
class SerialisableGraph(TypedDict, total=False):
    id: str
    revision: int
    version: int  # 0 | 1
    state: SerialisedGraphState
    nodes: list[SerialisedNode]
    links: NotRequired[list[SerialisedLink]]
    groups: NotRequired[list[dict[str, Any]]]
    extra: NotRequired[dict[str, Any]]


# Type aliases for complex/composed types
BinaryMap: TypeAlias = dict[str, BinaryData]
WorkflowItemList: TypeAlias = list[WorkflowItem]


# Structured progress event contract for execution reporting
class ProgressEvent(TypedDict, total=False):
    node_id: int
    state: ProgressState
    progress: float
    text: str
    meta: dict[str, Any]


ProgressCallback = Callable[[ProgressEvent], None]
ResultCallback = Callable[[int, NodeOutput], None]

TYPE_REGISTRY: dict[str, type[Any]] = {
    "BinaryData": BinaryData,
    "BinaryMap": BinaryMap,
    "WorkflowItem": WorkflowItem,
    "WorkflowItemList": WorkflowItemList,
    "StoryboardShot": StoryboardShot,
}


# Type registry functions
def get_type(type_name: str) -> type[Any]:
    """Get a type from the registry by name."""
    if type_name not in TYPE_REGISTRY:
        raise ValueError(f"Unknown type: {type_name}")
    return TYPE_REGISTRY[type_name]


# Node exceptions
class NodeError(Exception):
    """Base exception for all node-related errors."""

    pass


class NodeValidationError(NodeError):
    """Raised when node inputs fail validation."""

    def __init__(self, node_id: int, message: str):
        super().__init__(f"Node {node_id}: {message}")


class NodeExecutionError(NodeError):
    """Raised when node execution fails."""

    def __init__(self, node_id: int, message: str, original_exc: Exception | None = None):
        super().__init__(f"Node {node_id}: {message}")
        self.original_exc = original_exc


__all__ = [
    "ProgressState",
    "BinaryData",
    "WorkflowItem",
    "StoryboardShot",
    "DisplayOptions",
    "ParamMeta",
    "NodeCategory",
    "BinaryMap",
    "WorkflowItemList",
    "ExecutionResults",
    "NodeOutput",
    "TYPE_REGISTRY",
    "get_type",
    "NodeError",
    "NodeValidationError",
    "NodeExecutionError",
    "ProgressEvent",
    "ProgressCallback",
    "ResultCallback",
]
