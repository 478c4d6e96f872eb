"""
Parameter suggestions
Lists the {{Label.path}} tokens a node may reference
"""
from typing import Dict, Any, List, Optional

from .interpolation import scope_labels
from .types import NodeID, NodeKind, ParameterSuggestion
from ..utils.logger import get_logger

logger = get_logger(__name__)

MAX_SHAPE_DEPTH = 5

# (path, type, description) offered per kind, after any discovered payload paths
KIND_PARAMETERS: Dict[NodeKind, List[tuple]] = {
    NodeKind.TRIGGER: [
        ('body', 'object', 'Full request body'),
        ('headers', 'object', 'Request headers'),
        ('webhookData', 'object', 'Webhook metadata with request_body'),
    ],
    NodeKind.AI_COMPLETION: [
        ('text', 'string', 'Completion text'),
        ('usage.prompt_tokens', 'number', 'Prompt tokens used'),
        ('usage.completion_tokens', 'number', 'Completion tokens used'),
        ('usage.total_tokens', 'number', 'Total tokens used'),
        ('model', 'string', 'Model that answered'),
    ],
    NodeKind.HTTP_REQUEST: [
        ('response', 'any', 'Parsed response body'),
        ('status', 'number', 'HTTP status code'),
        ('headers', 'object', 'Response headers'),
        ('body', 'any', 'Extracted URL or parsed body'),
        ('extractedUrl', 'string', 'First URL found in the response'),
    ],
    NodeKind.DELAY: [
        ('delayed_ms', 'number', 'Milliseconds waited'),
    ],
    NodeKind.CONDITIONAL: [
        ('result', 'boolean', 'Condition outcome'),
        ('branch', 'string', 'Selected branch (true or false)'),
    ],
    NodeKind.ITERATOR: [
        ('item', 'any', 'Current item'),
        ('index', 'number', 'Current iteration index'),
        ('batch', 'array', 'Current batch'),
        ('count', 'number', 'Number of items'),
        ('items', 'array', 'All items'),
    ],
    NodeKind.ROUTER: [
        ('input', 'object', 'Input passed to every branch'),
    ],
    NodeKind.ARRAY_AGGREGATOR: [
        ('result', 'any', 'Aggregated value'),
        ('count', 'number', 'Number of aggregated entries'),
    ],
    NodeKind.DATA_TRANSFORM: [],
    NodeKind.WEBHOOK_RESPONSE: [
        ('result', 'any', 'Rendered response body'),
        ('webhook_response.status_code', 'number', 'Response status code'),
    ],
}
KIND_PARAMETERS[NodeKind.MULTIPART_HTTP] = KIND_PARAMETERS[NodeKind.HTTP_REQUEST]


def infer_shape(value: Any, depth: int = 0) -> Dict[str, Any]:
    """Infer a JSON-schema-like shape from a sample value"""
    if isinstance(value, dict):
        shape: Dict[str, Any] = {'type': 'object', 'properties': {}}
        if depth < MAX_SHAPE_DEPTH:
            shape['properties'] = {k: infer_shape(v, depth + 1) for k, v in value.items()}
        return shape
    if isinstance(value, list):
        shape = {'type': 'array'}
        if value and depth < MAX_SHAPE_DEPTH:
            shape['items'] = infer_shape(value[0], depth + 1)
        return shape
    if isinstance(value, bool):
        return {'type': 'boolean'}
    if isinstance(value, (int, float)):
        return {'type': 'number'}
    if value is None:
        return {'type': 'null'}
    return {'type': 'string'}


def shape_paths(shape: Dict[str, Any], prefix: str = '') -> List[tuple]:
    """Flatten a shape into (path, type) pairs, parents before children"""
    paths: List[tuple] = []
    if shape.get('type') == 'object':
        for key, child in shape.get('properties', {}).items():
            path = f"{prefix}.{key}" if prefix else key
            paths.append((path, child.get('type', 'any')))
            paths.extend(shape_paths(child, path))
    elif shape.get('type') == 'array' and 'items' in shape:
        path = f"{prefix}[0]"
        item = shape['items']
        if item.get('type') in ('object', 'array'):
            paths.extend(shape_paths(item, path))
    return paths


class PayloadShapeCache:
    """
    Trigger payload shapes discovered during one editor session

    Passed by reference to whoever needs it; nothing is global.
    """

    def __init__(self):
        self._shapes: Dict[NodeID, Dict[str, Any]] = {}

    def discover(self, trigger_id: NodeID, payload: Any) -> Dict[str, Any]:
        """Infer and store the shape of a sample payload, replacing any earlier one"""
        shape = infer_shape(payload)
        self._shapes[trigger_id] = shape
        logger.debug(f"Discovered payload shape for trigger {trigger_id}")
        return shape

    def get(self, trigger_id: NodeID) -> Optional[Dict[str, Any]]:
        return self._shapes.get(trigger_id)

    def invalidate(self, trigger_id: NodeID) -> None:
        self._shapes.pop(trigger_id, None)

    def __contains__(self, trigger_id: NodeID) -> bool:
        return trigger_id in self._shapes


def suggest_parameters(
    graph,
    node_id: NodeID,
    shapes: Optional[PayloadShapeCache] = None
) -> List[ParameterSuggestion]:
    """
    Tokens a node may reference, grouped by predecessor in graph order

    Args:
        graph: Workflow graph
        node_id: Node being configured
        shapes: Session payload shape cache for trigger nodes

    Returns:
        Suggestions with name "{{Label.path}}", type, description and source label
    """
    suggestions: List[ParameterSuggestion] = []
    for label, pred_id in scope_labels(graph, node_id).items():
        node = graph.get_node(pred_id)
        seen = set()

        def add(path: str, value_type: str, description: str) -> None:
            if path in seen:
                return
            seen.add(path)
            suggestions.append({
                'name': f"{{{{{label}.{path}}}}}",
                'type': value_type,
                'description': description,
                'source': label,
            })

        if node.kind == NodeKind.TRIGGER and shapes is not None:
            shape = shapes.get(pred_id)
            if shape is not None:
                for path, value_type in shape_paths(shape):
                    add(path, value_type, 'Field from the trigger payload')

        for path, value_type, description in KIND_PARAMETERS.get(node.kind, []):
            add(path, value_type, description)

    return suggestions
