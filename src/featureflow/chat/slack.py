"""Slack Web API client for thread replies and user lookups.

This module provides an async wrapper around the two Slack Web API
methods the workflow needs:
- chat.postMessage, replying inside a thread
- users.info, resolving a display name for the initiating user

Includes retry logic for rate limiting and transient failures.
"""

import asyncio
import logging
import random
from typing import Any, Dict, Optional, Protocol, runtime_checkable

import httpx


logger = logging.getLogger(__name__)


class ConversationError(Exception):
    """Raised when the chat platform rejects or fails a request.

    Attributes:
        message: Human-readable error description.
        status_code: HTTP status code, when a response was received.
        error_code: Slack ``error`` field, when present.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        error_code: Optional[str] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        super().__init__(message)


@runtime_checkable
class ConversationClient(Protocol):
    """Outbound operations the workflow needs from the chat platform."""

    async def post_message(self, channel_id: str, thread_id: str, text: str) -> None:
        """Reply in a thread.

        Raises:
            ConversationError: If the message could not be posted.
        """
        ...

    async def get_username(self, user_id: str) -> Optional[str]:
        """Return the display name of a user, or None if unavailable."""
        ...


class SlackClient:
    """Async Slack Web API client with retry logic.

    Example:
        >>> client = SlackClient(token="xoxb-...")
        >>> async with client:
        ...     await client.post_message("C123", "1700000000.000100", "Hello!")
    """

    RETRYABLE_STATUS_CODES = {408, 429, 500, 502, 503, 504}

    def __init__(
        self,
        token: str,
        base_url: str = "https://slack.com/api",
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.token = token
        self.base_url = base_url.rstrip("/")
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={
                    "Authorization": f"Bearer {self.token}",
                    "Content-Type": "application/json; charset=utf-8",
                },
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "SlackClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def _calculate_backoff(self, attempt: int) -> float:
        """Exponential backoff with full jitter."""
        capped_delay = min(self.base_delay * (2 ** attempt), self.max_delay)
        return random.uniform(0, capped_delay)

    def _retry_delay(self, response: httpx.Response, attempt: int) -> float:
        retry_after = response.headers.get("retry-after")
        if retry_after is not None:
            try:
                return min(float(retry_after), self.max_delay)
            except ValueError:
                pass
        return self._calculate_backoff(attempt)

    async def _call(
        self,
        http_method: str,
        api_method: str,
        json_data: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Call a Web API method, retrying rate limits and transient errors.

        Returns:
            The decoded response body (``ok`` is true).

        Raises:
            ConversationError: If the call fails after all retries or Slack
                answers with ``ok: false``.
        """
        last_error: Optional[str] = None

        for attempt in range(self.max_retries + 1):
            try:
                response = await self.client.request(
                    http_method,
                    f"/{api_method}",
                    json=json_data,
                    params=params,
                )
            except httpx.RequestError as e:
                last_error = str(e)
                if attempt < self.max_retries:
                    delay = self._calculate_backoff(attempt)
                    logger.warning(
                        "Slack request error, retrying",
                        extra={
                            "api_method": api_method,
                            "error": last_error,
                            "attempt": attempt + 1,
                            "delay": delay,
                        },
                    )
                    await asyncio.sleep(delay)
                    continue
                break

            if response.status_code in self.RETRYABLE_STATUS_CODES:
                last_error = f"HTTP {response.status_code}"
                if attempt < self.max_retries:
                    delay = self._retry_delay(response, attempt)
                    logger.warning(
                        "Retryable error from Slack API",
                        extra={
                            "api_method": api_method,
                            "status_code": response.status_code,
                            "attempt": attempt + 1,
                            "delay": delay,
                        },
                    )
                    await asyncio.sleep(delay)
                    continue
                break

            if response.status_code >= 400:
                raise ConversationError(
                    f"Slack API error calling {api_method}: {response.status_code}",
                    status_code=response.status_code,
                )

            try:
                body = response.json()
            except ValueError as e:
                logger.error(
                    "Slack API returned a non-JSON body",
                    extra={"api_method": api_method, "status_code": response.status_code},
                )
                raise ConversationError(
                    f"Slack API returned invalid JSON for {api_method}",
                    status_code=response.status_code,
                ) from e
            if not isinstance(body, dict) or not body.get("ok"):
                error_code = (
                    body.get("error", "unknown_error")
                    if isinstance(body, dict)
                    else "unknown_error"
                )
                logger.error(
                    "Slack API returned an error",
                    extra={"api_method": api_method, "error_code": error_code},
                )
                raise ConversationError(
                    f"Slack API error calling {api_method}: {error_code}",
                    status_code=response.status_code,
                    error_code=error_code,
                )
            return body

        logger.error(
            "Slack API request failed after all retries",
            extra={"api_method": api_method, "last_error": last_error},
        )
        raise ConversationError(
            f"Slack API {api_method} failed after {self.max_retries} retries: {last_error}"
        )

    async def post_message(self, channel_id: str, thread_id: str, text: str) -> None:
        await self._call(
            "POST",
            "chat.postMessage",
            json_data={"channel": channel_id, "thread_ts": thread_id, "text": text},
        )

    async def get_username(self, user_id: str) -> Optional[str]:
        body = await self._call("GET", "users.info", params={"user": user_id})
        user = body.get("user") or {}
        return user.get("name") or user.get("real_name")
