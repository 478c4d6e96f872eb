"""
Multipart HTTP Node
Form-data upload with the same normalized result as the HTTP request node
"""
from typing import Dict, Any, Optional

from ..adapters.http_client import HTTPClient
from ..node_base import BaseTaskHandler, ExecutionContext, run_blocking
from ...types import NodeKind
from .http_request import raise_for_result


class MultipartHTTPHandler(BaseTaskHandler):
    """
    Multipart upload handler

    Config:
        url: Target URL (required)
        method: HTTP method (default: POST)
        headers: Mapping or JSON text
        fields: "key=value" lines or a mapping
        fail_on_error: Raise on failure (default: True)
    """

    kind = NodeKind.MULTIPART_HTTP

    def __init__(self, client: Optional[HTTPClient] = None):
        self.client = client

    @classmethod
    def default_config(cls) -> Dict[str, Any]:
        return {'url': '', 'method': 'POST', 'headers': {}, 'fields': '', 'fail_on_error': True}

    async def execute(self, config: Dict[str, Any], context: ExecutionContext) -> Dict[str, Any]:
        client = self.client or HTTPClient()
        result = await run_blocking(
            client.upload,
            url=config.get('url') or '',
            fields=config.get('fields'),
            headers=config.get('headers'),
            method=config.get('method') or 'POST',
        )
        if config.get('fail_on_error', True):
            raise_for_result(context.label, result)
        return result
