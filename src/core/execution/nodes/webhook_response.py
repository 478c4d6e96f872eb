"""
Webhook Response Node
Renders the synchronous reply sent back to the caller of an inbound trigger
"""
from datetime import datetime, timezone
from typing import Dict, Any, Optional

from ..node_base import BaseTaskHandler, ExecutionContext, parse_json_value
from ...errors import ConfigurationError
from ...interpolation import ParameterInterpolator, auto_map, scope_labels
from ...types import NodeID, NodeKind, NodeResultMap
from ....utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_RESPONSE_BODY = '{\n  "prompt1": "",\n  "prompt2": ""\n}'


class WebhookResponseHandler(BaseTaskHandler):
    """
    Webhook response handler

    Config:
        status_code: HTTP status of the reply (default: 200)
        response_body: JSON text or mapping, tokens allowed (required)
        headers: Extra reply headers

    Outputs:
        webhook_response: {status_code, body, headers}
        result, message, executed_at
    """

    kind = NodeKind.WEBHOOK_RESPONSE

    @classmethod
    def default_config(cls) -> Dict[str, Any]:
        return {'status_code': 200, 'response_body': DEFAULT_RESPONSE_BODY, 'headers': {}}

    async def execute(self, config: Dict[str, Any], context: ExecutionContext) -> Dict[str, Any]:
        raw_body = config.get('response_body')
        if raw_body is None or (isinstance(raw_body, str) and not raw_body.strip()):
            raise ConfigurationError(f"{context.label}: response_body is required")

        try:
            status_code = int(config.get('status_code') or 200)
        except (TypeError, ValueError):
            raise ConfigurationError(f"{context.label}: status_code must be an integer")

        body = parse_json_value(raw_body)
        headers = parse_json_value(config.get('headers') or {})
        if not isinstance(headers, dict):
            raise ConfigurationError(f"{context.label}: headers must be a mapping")

        logger.info(f"[{context.label}] Prepared {status_code} response")
        return {
            'webhook_response': {'status_code': status_code, 'body': body, 'headers': headers},
            'result': body,
            'message': 'Webhook response prepared',
            'executed_at': datetime.now(timezone.utc).isoformat(),
        }

    @classmethod
    def auto_map_config(cls, graph, node_id: NodeID, field: str = "text") -> Dict[str, Any]:
        """
        Fill the response body keys with tokens pointing at upstream AI completions

        Returns:
            The new response body mapping (also written to the node config)
        """
        node = graph.require_node(node_id)
        template = parse_json_value(node.config.get('response_body') or DEFAULT_RESPONSE_BODY)
        if not isinstance(template, dict):
            raise ConfigurationError(f"{node.namespace_label}: response_body must be a JSON object to auto-map")

        predecessors = [graph.get_node(pid) for pid in graph.predecessors(node_id)]
        mapped = auto_map(template, predecessors, kind=NodeKind.AI_COMPLETION, field=field)
        graph.update_config(node_id, {'response_body': mapped})
        return mapped

    @classmethod
    def preview(cls, graph, node_id: NodeID, results: Optional[NodeResultMap] = None) -> Dict[str, Any]:
        """
        Render the response body in preview mode

        Results default to each predecessor's last_result.
        """
        node = graph.require_node(node_id)
        labels = scope_labels(graph, node_id)
        scope: Dict[str, Any] = {}
        for label, pred_id in labels.items():
            if results is not None:
                if pred_id in results:
                    scope[label] = results[pred_id]
            elif graph.get_node(pred_id).last_result is not None:
                scope[label] = graph.get_node(pred_id).last_result

        interpolator = ParameterInterpolator(scope, known_labels=labels)
        template = node.config.get('response_body') or ''
        return {
            'body': interpolator.preview(template),
            'placeholders': interpolator.report(template),
        }
