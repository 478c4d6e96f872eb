"""
Trigger Node
Entry point of a workflow; exposes the inbound request to downstream nodes
"""
from datetime import datetime, timezone
from typing import Dict, Any

from ..node_base import BaseTaskHandler, ExecutionContext
from ...types import NodeKind
from ....utils.logger import get_logger

logger = get_logger(__name__)


class TriggerHandler(BaseTaskHandler):
    """
    Trigger handler

    Body fields are flattened to the top level so "{{Trigger 1.prompt}}"
    works as well as "{{Trigger 1.body.prompt}}".

    Config:
        trigger_type: webhook, batch, schedule or database (default: webhook)
        selected_hook: Id of the webhook that starts this workflow
        name: Optional interpolation name replacing "Trigger <n>"

    Outputs:
        <body fields>, body, headers, webhookData.request_body, originalRequest, triggeredAt
    """

    kind = NodeKind.TRIGGER

    @classmethod
    def default_config(cls) -> Dict[str, Any]:
        return {'trigger_type': 'webhook', 'selected_hook': None, 'name': None}

    async def execute(self, config: Dict[str, Any], context: ExecutionContext) -> Dict[str, Any]:
        payload = context.trigger_payload or {}
        body = payload.get('body')
        if body is None:
            body = {}
        headers = payload.get('headers') or {}

        webhook = payload.get('webhook') or {}

        result: Dict[str, Any] = dict(body) if isinstance(body, dict) else {}
        result.update({
            'body': body,
            'headers': headers,
            'webhookData': {
                'id': webhook.get('id'),
                'name': webhook.get('name'),
                'request_body': body,
                'request_headers': headers,
            },
            'originalRequest': body,
            'triggeredAt': datetime.now(timezone.utc).isoformat(),
        })

        logger.debug(f"[Trigger {context.node_id}] Exposing {len(result)} fields")
        return result
