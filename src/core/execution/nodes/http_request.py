"""
HTTP Request Node
Generic HTTP call with a normalized result
"""
from typing import Dict, Any, Optional

from ..adapters.http_client import HTTPClient
from ..node_base import BaseTaskHandler, ExecutionContext, run_blocking
from ...errors import AdapterError, TaskTimeoutError
from ...types import NodeKind
from ....utils.logger import get_logger

logger = get_logger(__name__)


def raise_for_result(label: str, result: Dict[str, Any]) -> None:
    """Turn an unsuccessful normalized result into an AdapterError"""
    if result.get('success'):
        return
    if result.get('timedOut'):
        raise TaskTimeoutError(f"{label}: {result.get('error')}")
    status = result.get('status') or None
    if status is None:
        raise AdapterError(f"{label}: {result.get('error') or 'request failed'}")
    raise AdapterError(
        f"{label}: HTTP {status} {result.get('statusText', '')}".rstrip(),
        status=status,
        body=result.get('fullResponse'),
    )


class HTTPRequestHandler(BaseTaskHandler):
    """
    HTTP request handler

    Config:
        url: Target URL (required)
        method: GET, POST, PUT, PATCH, DELETE (default: GET)
        headers: Mapping or JSON text
        body: Request body (ignored for GET)
        content_type: Explicit Content-Type (default: application/json)
        fail_on_error: Raise on transport failure or non-2xx (default: True);
            when False the normalized failure is returned as the result

    Outputs:
        status, statusText, headers, body, response, extractedUrl, fullResponse, success
    """

    kind = NodeKind.HTTP_REQUEST

    def __init__(self, client: Optional[HTTPClient] = None):
        self.client = client

    @classmethod
    def default_config(cls) -> Dict[str, Any]:
        return {
            'url': '',
            'method': 'GET',
            'headers': {},
            'body': '',
            'content_type': None,
            'fail_on_error': True,
        }

    async def execute(self, config: Dict[str, Any], context: ExecutionContext) -> Dict[str, Any]:
        client = self.client or HTTPClient()
        method = (config.get('method') or 'GET').upper()
        logger.info(f"[{context.label}] {method} {config.get('url')}")

        result = await run_blocking(
            client.request,
            url=config.get('url') or '',
            method=method,
            headers=config.get('headers'),
            body=config.get('body'),
            content_type=config.get('content_type') or None,
        )

        if config.get('fail_on_error', True):
            raise_for_result(context.label, result)
        return result
