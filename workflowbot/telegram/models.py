"""
Data models for the Telegram bot module.
"""
from dataclasses import dataclass


@dataclass(frozen=True)
class InboundUpdate:
    """A chat message reduced to what the command handler needs."""
    sender_id: int
    chat_id: int
    text: str
