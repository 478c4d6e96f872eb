"""
Task handler registry for execution engine
Maps node kinds to handler classes
"""
from typing import Dict, Type, Optional, Union
from .node_base import BaseTaskHandler
from ..types import NodeKind

# Registry mapping node kind -> handler class
HANDLER_REGISTRY: Dict[NodeKind, Type[BaseTaskHandler]] = {}


def register_handler(kind: Union[NodeKind, str], handler_class: Type[BaseTaskHandler]):
    """
    Register a handler for a node kind

    Args:
        kind: Node kind (e.g., NodeKind.HTTP_REQUEST or "http_request")
        handler_class: Handler class that extends BaseTaskHandler
    """
    HANDLER_REGISTRY[NodeKind(kind)] = handler_class


def get_handler_class(kind: Union[NodeKind, str]) -> Optional[Type[BaseTaskHandler]]:
    """
    Get handler class for a node kind

    Args:
        kind: Node kind

    Returns:
        Handler class or None if not registered
    """
    try:
        return HANDLER_REGISTRY.get(NodeKind(kind))
    except ValueError:
        return None


def _register_all_handlers():
    """Register all built-in handlers"""
    from .nodes.trigger import TriggerHandler
    from .nodes.ai_completion import AICompletionHandler
    from .nodes.http_request import HTTPRequestHandler
    from .nodes.multipart_http import MultipartHTTPHandler
    from .nodes.delay import DelayHandler
    from .nodes.conditional import ConditionalHandler
    from .nodes.iterator import IteratorHandler
    from .nodes.router import RouterHandler
    from .nodes.array_aggregator import ArrayAggregatorHandler
    from .nodes.data_transform import DataTransformHandler
    from .nodes.webhook_response import WebhookResponseHandler

    for handler_class in (
        TriggerHandler,
        AICompletionHandler,
        HTTPRequestHandler,
        MultipartHTTPHandler,
        DelayHandler,
        ConditionalHandler,
        IteratorHandler,
        RouterHandler,
        ArrayAggregatorHandler,
        DataTransformHandler,
        WebhookResponseHandler,
    ):
        register_handler(handler_class.kind, handler_class)


# Auto-register on import
_register_all_handlers()
