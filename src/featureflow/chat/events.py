"""Slack Events API intake.

This module provides the SlackEventParser class for verifying and parsing
Slack event callbacks into ConversationEvent objects.

Slack Event Payload Structure (event_callback):
{
  "type": "event_callback",
  "event": {
    "type": "app_mention",
    "user": "U123",
    "channel": "C456",
    "ts": "1700000000.000100",
    "thread_ts": "1699999999.000200",
    "text": "<@UBOT> feature request"
  }
}
"""

import hashlib
import hmac
import logging
import re
import time
from typing import Any, Dict, Optional

from .models import ConversationEvent

logger = logging.getLogger(__name__)

MENTION_PATTERN = re.compile(r"<@[A-Z0-9]+(?:\|[^>]*)?>")

SUPPORTED_EVENT_TYPES = ("app_mention", "message")

# Slack rejects requests older than five minutes to prevent replays
MAX_REQUEST_AGE_SECONDS = 60 * 5


class SlackEventParser:
    """Parser for Slack Events API requests.

    Attributes:
        signing_secret: Slack signing secret; None disables verification.
        bot_user_id: The bot's own user id, when known.
    """

    def __init__(
        self,
        signing_secret: Optional[str] = None,
        bot_user_id: Optional[str] = None,
    ) -> None:
        self.signing_secret = signing_secret
        self.bot_user_id = bot_user_id

    def verify_signature(
        self,
        timestamp: Optional[str],
        body: bytes,
        signature: Optional[str],
        now: Optional[float] = None,
    ) -> bool:
        """Check the ``X-Slack-Signature`` header of a request.

        Always True when no signing secret is configured.
        """
        if not self.signing_secret:
            return True
        if not timestamp or not signature:
            return False

        try:
            request_time = int(timestamp)
        except ValueError:
            return False

        current_time = time.time() if now is None else now
        if abs(current_time - request_time) > MAX_REQUEST_AGE_SECONDS:
            logger.warning("Rejecting stale Slack request", extra={"timestamp": timestamp})
            return False

        base_string = b"v0:" + timestamp.encode("utf-8") + b":" + body
        expected = "v0=" + hmac.new(
            self.signing_secret.encode("utf-8"),
            base_string,
            hashlib.sha256,
        ).hexdigest()
        return hmac.compare_digest(expected, signature)

    def parse_event(self, payload: Dict[str, Any]) -> Optional[ConversationEvent]:
        """Parse an ``event_callback`` payload.

        Returns:
            ConversationEvent, or None for payloads the workflow ignores:
            - non event_callback payloads
            - event types other than app_mention and message
            - bot messages and message subtypes (edits, joins, ...)
            - plain messages that mention the bot, which Slack also
              delivers as app_mention
        """
        if not isinstance(payload, dict) or payload.get("type") != "event_callback":
            return None

        event = payload.get("event")
        if not isinstance(event, dict):
            logger.warning("Missing or invalid 'event' field in payload")
            return None

        event_type = event.get("type")
        if event_type not in SUPPORTED_EVENT_TYPES:
            logger.debug("Ignoring unsupported event type: %s", event_type)
            return None

        if event.get("bot_id") or event.get("subtype"):
            return None

        text = event.get("text") or ""
        is_mention = event_type == "app_mention"

        if not is_mention and self._mentions_bot(text):
            return None

        user_id = event.get("user")
        channel_id = event.get("channel")
        ts = event.get("ts")
        if not user_id or not channel_id or not ts:
            logger.warning(
                "Slack event missing user, channel or ts",
                extra={"event_type": event_type},
            )
            return None

        return ConversationEvent(
            user_id=user_id,
            channel_id=channel_id,
            ts=ts,
            thread_ts=event.get("thread_ts"),
            text=self._strip_mentions(text) if is_mention else text.strip(),
            is_mention=is_mention,
        )

    def _mentions_bot(self, text: str) -> bool:
        if self.bot_user_id is None:
            return False
        return f"<@{self.bot_user_id}" in text

    def _strip_mentions(self, text: str) -> str:
        return MENTION_PATTERN.sub("", text).strip()
