"""
Completion Client
HTTP client for an OpenAI-compatible chat-completions backend.
Used by the AI-completion handler; retries and timeouts live here, never in
the orchestrator.
"""
import time
from typing import Dict, Any, Optional, List

import requests

from config import Config
from ...errors import AdapterError, ConfigurationError, TaskTimeoutError
from ....utils.logger import get_logger

logger = get_logger(__name__)


class CompletionClient:
    """
    Blocking chat-completions client (run it in an executor from async code)

    Newer model families take max_completion_tokens and reject temperature;
    everything else takes max_tokens and temperature.
    """

    DEFAULT_MODEL = "gpt-4o-mini"
    DEFAULT_MAX_TOKENS = 150
    DEFAULT_TEMPERATURE = 0.7
    DEFAULT_TOP_P = 1
    REQUEST_TIMEOUT = 90  # seconds
    MAX_ATTEMPTS = 3
    COMPLETION_TOKEN_MODELS = ("gpt-5", "gpt-4.1", "o3", "o4")

    def __init__(
        self,
        api_key: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        timeout: float = REQUEST_TIMEOUT,
        max_attempts: int = MAX_ATTEMPTS,
        backoff_seconds: float = 1.0
    ):
        """
        Args:
            api_key: Bearer token (default: Config.OPENAI_API_KEY)
            endpoint_url: API base URL (default: Config.OPENAI_API_BASE)
            timeout: Per-attempt timeout in seconds
            max_attempts: Attempts before giving up
            backoff_seconds: Sleep is backoff_seconds * attempt between attempts
        """
        self.api_key = api_key or Config.OPENAI_API_KEY
        self.endpoint_url = (endpoint_url or Config.OPENAI_API_BASE).rstrip("/")
        self.timeout = timeout
        self.max_attempts = max(1, max_attempts)
        self.backoff_seconds = backoff_seconds

    @classmethod
    def uses_completion_tokens(cls, model: str) -> bool:
        return any(family in model for family in cls.COMPLETION_TOKEN_MODELS)

    def build_payload(
        self,
        prompt: str,
        system_message: Optional[str] = None,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        top_p: Optional[float] = None,
        json_mode: bool = False
    ) -> Dict[str, Any]:
        """Build the chat-completions request body"""
        model = model or self.DEFAULT_MODEL
        messages: List[Dict[str, str]] = []
        if system_message:
            messages.append({"role": "system", "content": system_message})
        messages.append({"role": "user", "content": prompt})

        payload: Dict[str, Any] = {
            "model": model,
            "messages": messages,
            "top_p": top_p if top_p is not None else self.DEFAULT_TOP_P,
        }
        tokens = int(max_tokens or self.DEFAULT_MAX_TOKENS)
        if self.uses_completion_tokens(model):
            payload["max_completion_tokens"] = tokens
        else:
            payload["max_tokens"] = tokens
            payload["temperature"] = temperature if temperature is not None else self.DEFAULT_TEMPERATURE
        if json_mode:
            payload["response_format"] = {"type": "json_object"}
        return payload

    def complete(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Send a chat-completions request with bounded retries

        Args:
            payload: Body from build_payload()

        Returns:
            Dict with text, usage, model

        Raises:
            ConfigurationError: No API key configured
            TaskTimeoutError: Every attempt timed out
            AdapterError: Non-retryable HTTP error, or retries exhausted
        """
        if not self.api_key:
            raise ConfigurationError("OPENAI_API_KEY is not configured")

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        last_error: Optional[AdapterError] = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                resp = requests.post(
                    f"{self.endpoint_url}/chat/completions",
                    json=payload,
                    headers=headers,
                    timeout=self.timeout,
                )
                resp.raise_for_status()
                data = resp.json()
                choices = data.get("choices") or []
                text = choices[0].get("message", {}).get("content", "") if choices else ""
                return {
                    "text": text or "",
                    "usage": data.get("usage", {}),
                    "model": data.get("model", payload.get("model")),
                }

            except requests.exceptions.Timeout:
                logger.error(f"Completion request timed out ({self.timeout}s), attempt {attempt}/{self.max_attempts}")
                last_error = TaskTimeoutError(f"Completion request timed out after {self.timeout}s")

            except requests.exceptions.ConnectionError:
                logger.error(f"Completion backend unreachable at {self.endpoint_url}, attempt {attempt}/{self.max_attempts}")
                last_error = AdapterError(f"Connection refused: {self.endpoint_url}")

            except requests.exceptions.HTTPError as e:
                status = e.response.status_code if e.response is not None else None
                body = e.response.text if e.response is not None else ""
                logger.error(f"Completion backend HTTP error {status}: {body[:200]}")
                error = AdapterError(f"Completion backend error ({status})", status=status, body=body)
                if status is not None and status < 500 and status != 429:
                    raise error
                last_error = error

            if attempt < self.max_attempts:
                time.sleep(self.backoff_seconds * attempt)

        raise last_error
