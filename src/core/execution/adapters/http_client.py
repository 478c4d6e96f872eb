"""
HTTP Client
Issues generic and multipart HTTP calls and normalizes every outcome into the
same result shape, transport failures included.
"""
import json
from typing import Dict, Any, Optional, List, Union

import requests

from ...errors import ConfigurationError
from ....utils.logger import get_logger

logger = get_logger(__name__)

# Known locations of "the resulting link" in common API responses, tried in order
URL_PATTERNS: List[str] = [
    "url",
    "data.0.url",
    "data.0.revised_prompt",
    "image_url",
    "link",
    "download_url",
    "file_url",
    "result.url",
    "response.url",
]

MULTIPART = "multipart/form-data"


def _is_url(value: Any) -> bool:
    return isinstance(value, str) and (value.startswith("http://") or value.startswith("https://"))


def _get_nested(obj: Any, path: str) -> Any:
    current = obj
    for key in path.split("."):
        if isinstance(current, list) and key.isdigit():
            index = int(key)
            current = current[index] if index < len(current) else None
        elif isinstance(current, dict):
            current = current.get(key)
        else:
            return None
    return current


def _find_url(obj: Any) -> Optional[str]:
    if _is_url(obj):
        return obj
    if isinstance(obj, list):
        values = obj
    elif isinstance(obj, dict):
        values = list(obj.values())
    else:
        return None
    for value in values:
        found = _find_url(value)
        if found:
            return found
    return None


def extract_url(body: Any) -> Optional[str]:
    """
    Pull a single embedded URL out of a response body

    Strategies, in order: direct URL string, JSON text, known key paths,
    generic recursive scan.
    """
    if isinstance(body, str):
        if _is_url(body.strip()):
            return body.strip()
        try:
            body = json.loads(body)
        except ValueError:
            return None
        if isinstance(body, str):
            return body.strip() if _is_url(body.strip()) else None

    if not isinstance(body, (dict, list)):
        return None

    for pattern in URL_PATTERNS:
        candidate = _get_nested(body, pattern)
        if _is_url(candidate):
            return candidate

    return _find_url(body)


def parse_headers(headers: Union[str, Dict[str, Any], None]) -> Dict[str, str]:
    """Headers may arrive as a mapping or as JSON text"""
    if not headers:
        return {}
    if isinstance(headers, str):
        try:
            headers = json.loads(headers)
        except ValueError:
            logger.warning("Ignoring headers that are not valid JSON")
            return {}
    if not isinstance(headers, dict):
        return {}
    return {str(k): str(v) for k, v in headers.items()}


def parse_form_fields(body: Union[str, Dict[str, Any], None]) -> Dict[str, str]:
    """Multipart fields from "key=value" lines or a mapping"""
    if not body:
        return {}
    if isinstance(body, dict):
        return {str(k): v if isinstance(v, str) else json.dumps(v) for k, v in body.items()}
    fields: Dict[str, str] = {}
    for line in str(body).splitlines():
        line = line.strip()
        if not line or "=" not in line:
            continue
        key, value = line.split("=", 1)
        if key.strip() and value.strip():
            fields[key.strip()] = value.strip()
    return fields


class HTTPClient:
    """
    Blocking HTTP client (run it in an executor from async code)

    Result shape:
        status, statusText, headers, body (extracted URL or parsed body),
        response (same as body), extractedUrl, fullResponse, success,
        and error for transport failures
    """

    REQUEST_TIMEOUT = 60  # seconds

    def __init__(self, timeout: float = REQUEST_TIMEOUT, session: Optional[requests.Session] = None):
        self.timeout = timeout
        self.session = session

    def request(
        self,
        url: str,
        method: str = "GET",
        headers: Union[str, Dict[str, Any], None] = None,
        body: Any = None,
        content_type: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Issue a request and normalize the outcome

        Args:
            url: Target URL (required)
            method: HTTP method
            headers: Extra headers (mapping or JSON text)
            body: Request body, only sent for non-GET methods
            content_type: Explicit Content-Type (default: application/json)

        Returns:
            Normalized result dict
        """
        if not url:
            raise ConfigurationError("HTTP request requires a URL")

        method = (method or "GET").upper()
        request_headers: Dict[str, str] = {}
        if content_type:
            if content_type != MULTIPART:
                request_headers["Content-Type"] = content_type
        else:
            request_headers["Content-Type"] = "application/json"
        request_headers.update(parse_headers(headers))

        kwargs: Dict[str, Any] = {"headers": request_headers, "timeout": self.timeout}
        if method != "GET" and body not in (None, ""):
            if content_type == MULTIPART:
                request_headers.pop("Content-Type", None)
                kwargs["files"] = {k: (None, v) for k, v in parse_form_fields(body).items()}
            elif isinstance(body, (dict, list)):
                kwargs["data"] = json.dumps(body)
            else:
                kwargs["data"] = body

        return self._send(method, url, **kwargs)

    def upload(
        self,
        url: str,
        fields: Union[str, Dict[str, Any], None] = None,
        files: Optional[Dict[str, Any]] = None,
        headers: Union[str, Dict[str, Any], None] = None,
        method: str = "POST"
    ) -> Dict[str, Any]:
        """
        Multipart form upload

        Args:
            url: Target URL (required)
            fields: Form fields ("key=value" lines or a mapping)
            files: Optional file parts ({name: (filename, content, mime)})
            headers: Extra headers; Content-Type is left to requests for the boundary
            method: HTTP method (default POST)
        """
        if not url:
            raise ConfigurationError("Multipart upload requires a URL")

        request_headers = parse_headers(headers)
        request_headers = {k: v for k, v in request_headers.items() if k.lower() != "content-type"}
        parts: Dict[str, Any] = {k: (None, v) for k, v in parse_form_fields(fields).items()}
        parts.update(files or {})

        return self._send(
            (method or "POST").upper(),
            url,
            headers=request_headers,
            files=parts or None,
            timeout=self.timeout,
        )

    def _send(self, method: str, url: str, **kwargs) -> Dict[str, Any]:
        sender = self.session.request if self.session is not None else requests.request
        try:
            response = sender(method, url, **kwargs)
        except requests.exceptions.Timeout:
            logger.error(f"HTTP {method} {url} timed out ({self.timeout}s)")
            return self._transport_failure(f"Request timeout ({self.timeout}s)", timed_out=True)
        except requests.exceptions.RequestException as e:
            logger.error(f"HTTP {method} {url} failed: {e}")
            return self._transport_failure(str(e))
        return self.normalize(response)

    @staticmethod
    def normalize(response: requests.Response) -> Dict[str, Any]:
        """Normalize a requests response into the result shape"""
        content_type = response.headers.get("content-type", "")
        text = response.text
        parsed: Any = text
        if "application/json" in content_type and text.strip():
            try:
                parsed = json.loads(text)
            except ValueError:
                parsed = text

        if isinstance(parsed, str) and not _is_url(parsed.strip()):
            try:
                parsed = json.loads(parsed)
            except ValueError:
                pass

        extracted = extract_url(parsed)
        primary = extracted or parsed
        return {
            "status": response.status_code,
            "statusText": response.reason or "",
            "headers": dict(response.headers),
            "body": primary,
            "response": primary,
            "extractedUrl": extracted,
            "fullResponse": parsed,
            "success": response.ok,
        }

    @staticmethod
    def _transport_failure(message: str, timed_out: bool = False) -> Dict[str, Any]:
        return {
            "status": 0,
            "statusText": "Timeout" if timed_out else "Network Error",
            "headers": {},
            "body": None,
            "response": None,
            "extractedUrl": None,
            "fullResponse": None,
            "success": False,
            "error": message,
            "timedOut": timed_out,
        }
