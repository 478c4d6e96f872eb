"""
Task handler implementations for the execution engine
"""
from .trigger import TriggerHandler
from .ai_completion import AICompletionHandler
from .http_request import HTTPRequestHandler
from .multipart_http import MultipartHTTPHandler
from .delay import DelayHandler
from .conditional import ConditionalHandler
from .iterator import IteratorHandler
from .router import RouterHandler
from .array_aggregator import ArrayAggregatorHandler
from .data_transform import DataTransformHandler
from .webhook_response import WebhookResponseHandler

__all__ = [
    'TriggerHandler',
    'AICompletionHandler',
    'HTTPRequestHandler',
    'MultipartHTTPHandler',
    'DelayHandler',
    'ConditionalHandler',
    'IteratorHandler',
    'RouterHandler',
    'ArrayAggregatorHandler',
    'DataTransformHandler',
    'WebhookResponseHandler',
]
