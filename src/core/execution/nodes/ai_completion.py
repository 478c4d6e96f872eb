"""
AI Completion Node
Sends a prompt to the chat-completions backend
"""
import json
from typing import Dict, Any, Optional

from ..adapters.completion_client import CompletionClient
from ..node_base import BaseTaskHandler, ExecutionContext, run_blocking
from ...errors import ConfigurationError
from ...types import NodeKind
from ....utils.logger import get_logger

logger = get_logger(__name__)


class AICompletionHandler(BaseTaskHandler):
    """
    AI-completion handler

    Config:
        prompt: User prompt (required, interpolated)
        system_message: Optional system message
        model: Model name (default: gpt-4o-mini)
        max_tokens: Token budget (default: 150)
        temperature: Sampling temperature (default: 0.7, ignored by newer model families)
        top_p: Nucleus sampling (default: 1)
        json_mode: Force a JSON object response

    Outputs:
        text: Completion text
        usage: Token usage reported by the backend
        model: Model that answered
        json: Parsed object (JSON mode only, when the text parses)
    """

    kind = NodeKind.AI_COMPLETION

    def __init__(self, client: Optional[CompletionClient] = None):
        self.client = client

    @classmethod
    def default_config(cls) -> Dict[str, Any]:
        return {
            'prompt': '',
            'system_message': '',
            'model': CompletionClient.DEFAULT_MODEL,
            'max_tokens': CompletionClient.DEFAULT_MAX_TOKENS,
            'temperature': CompletionClient.DEFAULT_TEMPERATURE,
            'top_p': CompletionClient.DEFAULT_TOP_P,
            'json_mode': False,
        }

    async def execute(self, config: Dict[str, Any], context: ExecutionContext) -> Dict[str, Any]:
        prompt = config.get('prompt') or ''
        if not str(prompt).strip():
            raise ConfigurationError(f"{context.label}: prompt is required")

        response_format = config.get('response_format') or {}
        json_mode = bool(config.get('json_mode')) or response_format.get('type') == 'json_object'

        client = self.client or CompletionClient()
        payload = client.build_payload(
            prompt=str(prompt),
            system_message=config.get('system_message') or None,
            model=config.get('model') or None,
            max_tokens=_optional_int(config.get('max_tokens')),
            temperature=_optional_float(config.get('temperature')),
            top_p=_optional_float(config.get('top_p')),
            json_mode=json_mode,
        )

        logger.info(f"[{context.label}] Requesting completion from {payload['model']}")
        result = await run_blocking(client.complete, payload)

        if json_mode:
            try:
                result['json'] = json.loads(result['text'])
            except ValueError:
                logger.warning(f"[{context.label}] JSON mode response did not parse as JSON")
        return result


def _optional_int(value: Any) -> Optional[int]:
    if value in (None, ''):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"Expected an integer, got {value!r}")


def _optional_float(value: Any) -> Optional[float]:
    if value in (None, ''):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"Expected a number, got {value!r}")
