"""Conversation event models.

The workflow only sees these platform-neutral events; chat/events.py
builds them from Slack Events API payloads.
"""

from typing import Optional

from pydantic import BaseModel, Field


class ConversationEvent(BaseModel):
    """An inbound chat message.

    Attributes:
        user_id: Identity of the sender.
        channel_id: Channel the message was posted in.
        ts: Identifier of this message.
        thread_ts: Identifier of the thread's root message, when the
            message was posted in a thread.
        text: Message text with bot mentions removed.
        is_mention: True when the message addressed the bot directly.
    """

    user_id: str = Field(..., min_length=1)
    channel_id: str = Field(..., min_length=1)
    ts: str = Field(..., min_length=1)
    thread_ts: Optional[str] = None
    text: str = ""
    is_mention: bool = False

    @property
    def thread_id(self) -> str:
        """Thread this message belongs to; a top-level message starts one."""
        return self.thread_ts or self.ts
