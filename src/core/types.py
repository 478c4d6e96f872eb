"""
Type definitions for FlowBatch Core

This module provides:
- Type aliases for identifiers
- Enums for node kinds and statuses
- TypedDict for structured data that crosses the storage / API boundary
"""
from enum import Enum
from typing import TypedDict, TypeAlias, Optional, Dict, Any, List
from typing_extensions import NotRequired


# ============================================================================
# Type Aliases
# ============================================================================

NodeID: TypeAlias = str
EdgeID: TypeAlias = str
RunID: TypeAlias = str
WorkflowID: TypeAlias = str
WebhookID: TypeAlias = str
NodeResultMap: TypeAlias = Dict[NodeID, Any]


# ============================================================================
# Enums
# ============================================================================

class NodeKind(str, Enum):
    """Closed set of task node kinds"""
    TRIGGER = "trigger"
    AI_COMPLETION = "ai_completion"
    HTTP_REQUEST = "http_request"
    MULTIPART_HTTP = "multipart_http"
    DELAY = "delay"
    CONDITIONAL = "conditional"
    ITERATOR = "iterator"
    ROUTER = "router"
    ARRAY_AGGREGATOR = "array_aggregator"
    DATA_TRANSFORM = "data_transform"
    WEBHOOK_RESPONSE = "webhook_response"


# Interpolation namespace prefix per kind ("GPT 2", "HTTP 3", ...)
KIND_LABEL_PREFIXES: Dict[NodeKind, str] = {
    NodeKind.TRIGGER: "Trigger",
    NodeKind.AI_COMPLETION: "GPT",
    NodeKind.HTTP_REQUEST: "HTTP",
    NodeKind.MULTIPART_HTTP: "Multipart",
    NodeKind.DELAY: "Delay",
    NodeKind.CONDITIONAL: "Conditional",
    NodeKind.ITERATOR: "Iterator",
    NodeKind.ROUTER: "Router",
    NodeKind.ARRAY_AGGREGATOR: "Aggregator",
    NodeKind.DATA_TRANSFORM: "Transform",
    NodeKind.WEBHOOK_RESPONSE: "Response",
}


class NodeStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"


class RunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class StepStatus(str, Enum):
    COMPLETED = "completed"
    ERROR = "error"


class EventSource(str, Enum):
    """Where a status event came from"""
    RUN_LIFECYCLE = "run_lifecycle"
    TRIGGER_DELIVERY = "trigger_delivery"
    DIRECT_INVOCATION = "direct_invocation"


# ============================================================================
# Workflow Document Types
# ============================================================================

class Position(TypedDict):
    x: float
    y: float


class NodeData(TypedDict):
    """A single node as stored in the workflow document"""
    id: NodeID
    kind: str
    position: Position
    config: Dict[str, Any]
    ordinal: int
    label: NotRequired[Optional[str]]
    is_execution_start: NotRequired[bool]


class EdgeData(TypedDict):
    """Directed connection between two nodes"""
    id: EdgeID
    source: NodeID
    target: NodeID
    handle: NotRequired[Optional[str]]  # Branch selector for conditional/router nodes


class WorkflowSettings(TypedDict):
    parallel_mode: bool
    batch_size: int


class WorkflowDocument(TypedDict):
    """Complete workflow document (round-trips ordinals and configs unchanged)"""
    id: NotRequired[WorkflowID]
    name: NotRequired[str]
    nodes: List[NodeData]
    edges: List[EdgeData]
    settings: NotRequired[WorkflowSettings]


# ============================================================================
# Execution Record Types
# ============================================================================

class StepData(TypedDict):
    """Record of one node's execution within a run"""
    node_id: NodeID
    node_label: str
    status: str
    duration: float  # Seconds
    timestamp: float
    result: NotRequired[Any]
    error: NotRequired[str]
    error_status: NotRequired[Optional[int]]
    error_body: NotRequired[Any]


class ExecutionRunData(TypedDict):
    """Persisted execution run (workflow_executions row)"""
    id: RunID
    workflow_id: WorkflowID
    status: str
    started_at: str  # ISO-8601
    completed_at: NotRequired[Optional[str]]
    current_node_id: NotRequired[Optional[NodeID]]
    executed_nodes: List[NodeID]
    steps: NotRequired[List[StepData]]
    result_data: NotRequired[Dict[str, Any]]
    error_message: NotRequired[Optional[str]]
    webhook_request_id: NotRequired[Optional[str]]
    user_id: NotRequired[Optional[str]]


class NodeStatusView(TypedDict):
    """Reduced status of one node as seen by consumers"""
    status: str
    has_result: bool
    result: Any
    has_completed_execution: bool


# ============================================================================
# Webhook Types
# ============================================================================

class WebhookApiKey(TypedDict):
    header: str
    key: str


class WebhookData(TypedDict):
    """Registered inbound trigger address"""
    id: WebhookID
    name: str
    url_path: str
    status: str  # "active" or "inactive"
    api_keys: NotRequired[List[WebhookApiKey]]
    user_id: NotRequired[Optional[str]]
    workflow_data: NotRequired[WorkflowDocument]


class WebhookRequestData(TypedDict):
    """One inbound call to a webhook"""
    id: str
    webhook_id: WebhookID
    request_body: Any
    request_headers: Dict[str, str]
    response_body: NotRequired[Any]
    response_status: NotRequired[Optional[int]]
    processing_time_ms: NotRequired[Optional[int]]
    created_at: NotRequired[str]


# ============================================================================
# Interpolation Types
# ============================================================================

class PlaceholderReport(TypedDict):
    """Preview report entry for one token"""
    token: str
    resolved: bool
    target: Optional[str]  # Matched label, None if unresolved


class ParameterSuggestion(TypedDict):
    """A token a node may reference"""
    name: str
    type: str
    description: str
    source: str
