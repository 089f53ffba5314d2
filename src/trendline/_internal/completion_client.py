"""Chat completion client for the text-to-chart translator.

Low-level HTTP client for an OpenAI-compatible `/chat/completions` endpoint.
Sends one user message and returns the text of the first choice. Never
retries; rate limits surface as RateLimitError with the server's hint.

This is a private implementation detail. Users should use the Workspace
class instead of accessing this module directly.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

import httpx

from trendline._internal.config import (
    DEFAULT_TRANSLATOR_MODEL,
    DEFAULT_TRANSLATOR_URL,
    ProjectSettings,
)
from trendline.exceptions import (
    APIError,
    AuthenticationError,
    RateLimitError,
    TrendlineError,
)

if TYPE_CHECKING:
    from types import TracebackType

_logger = logging.getLogger(__name__)


class CompletionClient:
    """HTTP client for chat completions.

    Example:
        ```python
        with CompletionClient(api_key="sk-...") as client:
            text = client.complete("Reply with {} only")
        ```
    """

    def __init__(
        self,
        *,
        api_key: str | None = None,
        base_url: str = DEFAULT_TRANSLATOR_URL,
        model: str = DEFAULT_TRANSLATOR_MODEL,
        timeout: float = 60.0,
        _transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the completion client.

        Args:
            api_key: Bearer token for the endpoint (None sends no auth header).
            base_url: API root; `/chat/completions` is appended.
            model: Model name sent with every request.
            timeout: Request timeout in seconds.
            _transport: Internal parameter for testing with MockTransport.
        """
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._model = model
        self._timeout = timeout
        self._client: httpx.Client | None = None
        self._transport = _transport

    @classmethod
    def from_settings(
        cls,
        settings: ProjectSettings,
        *,
        _transport: httpx.BaseTransport | None = None,
    ) -> CompletionClient:
        """Build a client from resolved project settings."""
        api_key = (
            settings.translator_api_key.get_secret_value()
            if settings.translator_api_key is not None
            else None
        )
        return cls(
            api_key=api_key,
            base_url=settings.translator_url,
            model=settings.translator_model,
            _transport=_transport,
        )

    @property
    def model(self) -> str:
        """Model name sent with every request."""
        return self._model

    def _ensure_client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    def close(self) -> None:
        """Close the HTTP client and release resources."""
        if self._client is not None:
            self._client.close()
            self._client = None

    def __enter__(self) -> CompletionClient:
        """Enter context manager."""
        self._ensure_client()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Exit context manager, closing client."""
        self.close()

    def complete(self, prompt: str) -> str:
        """Send one user message and return the first choice's text.

        Args:
            prompt: Message content.

        Returns:
            The assistant message content (may be empty).

        Raises:
            AuthenticationError: On 401/403.
            RateLimitError: On 429.
            APIError: On any other non-2xx response or a malformed body.
            TrendlineError: On network errors.
        """
        url = f"{self._base_url}/chat/completions"
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        payload = {
            "model": self._model,
            "messages": [{"role": "user", "content": prompt}],
        }

        client = self._ensure_client()
        try:
            response = client.post(url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise TrendlineError(
                f"HTTP error: {e}",
                code="HTTP_ERROR",
                details={"error": str(e), "request_method": "POST", "request_url": url},
            ) from e

        body = self._handle_response(response, request_url=url)
        try:
            content = body["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise APIError(
                "Malformed completion response",
                status_code=response.status_code,
                response_body=body if isinstance(body, dict) else None,
                request_method="POST",
                request_url=url,
            ) from e
        _logger.debug("Completion from %s: %r", self._model, content)
        return content or ""

    def _handle_response(self, response: httpx.Response, *, request_url: str) -> Any:
        response_body: str | dict[str, Any] | None = None
        try:
            response_body = response.json()
        except json.JSONDecodeError:
            response_body = response.text[:500] if response.text else None

        if response.status_code in (401, 403):
            raise AuthenticationError(
                "Translator rejected the API key. Check translator_api_key.",
                status_code=response.status_code,
                response_body=response_body,
                request_method="POST",
                request_url=request_url,
            )
        if response.status_code == 429:
            raise RateLimitError(
                "Translator rate limit exceeded",
                retry_after=_parse_retry_after(response),
                response_body=response_body,
                request_method="POST",
                request_url=request_url,
            )
        if response.status_code >= 400:
            error_msg = f"Translator error: {response.status_code}"
            if isinstance(response_body, dict) and "error" in response_body:
                error = response_body["error"]
                message = error.get("message") if isinstance(error, dict) else error
                error_msg = f"Translator error: {message}"
            raise APIError(
                error_msg,
                status_code=response.status_code,
                response_body=response_body,
                request_method="POST",
                request_url=request_url,
            )
        return response_body


def _parse_retry_after(response: httpx.Response) -> int | None:
    retry_after = response.headers.get("Retry-After")
    if retry_after is not None:
        try:
            return int(retry_after)
        except ValueError:
            pass
    return None
