"""
Message-delivery channel contract and an in-memory recording channel.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


class DeliveryChannel:
    """Outbound side of a conversation.

    Hosts subclass this to send through their transport. Errors raised here
    propagate to the turn's caller.
    """

    async def send_text(self, conversation_key: str, text: str) -> None:
        raise NotImplementedError

    async def send_attachment(self, conversation_key: str, attachment: Any) -> None:
        raise NotImplementedError

    async def begin_dialog(self, conversation_key: str, name: str, args: Optional[Dict[str, Any]] = None) -> None:
        """Hand control of the conversation to a named sub-dialog."""
        raise NotImplementedError


@dataclass
class OutboundEvent:
    """One thing sent on a channel."""
    kind: str  # 'text', 'attachment' or 'dialog'
    conversation_key: str
    content: Any
    args: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {'kind': self.kind, 'conversation': self.conversation_key, 'content': self.content, 'args': self.args}


class RecordingChannel(DeliveryChannel):
    """Channel that keeps every outbound event in order."""

    def __init__(self):
        self.events: List[OutboundEvent] = []

    async def send_text(self, conversation_key: str, text: str) -> None:
        self.events.append(OutboundEvent('text', conversation_key, text))

    async def send_attachment(self, conversation_key: str, attachment: Any) -> None:
        self.events.append(OutboundEvent('attachment', conversation_key, attachment))

    async def begin_dialog(self, conversation_key: str, name: str, args: Optional[Dict[str, Any]] = None) -> None:
        self.events.append(OutboundEvent('dialog', conversation_key, name, dict(args or {})))

    @property
    def texts(self) -> List[str]:
        return [event.content for event in self.events if event.kind == 'text']

    def drain(self, conversation_key: Optional[str] = None) -> List[OutboundEvent]:
        """Remove and return recorded events, optionally for one conversation only."""
        if conversation_key is None:
            events, self.events = self.events, []
            return events
        events = [event for event in self.events if event.conversation_key == conversation_key]
        self.events = [event for event in self.events if event.conversation_key != conversation_key]
        return events
