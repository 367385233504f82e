from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class StoredMessage:
    id: int
    direction: str
    content: str
    created_at: datetime
    private: bool = False

    @property
    def role(self) -> str:
        return "user" if self.direction == "incoming" else "assistant"


@dataclass(frozen=True)
class ConversationSnapshot:
    conversation_id: int
    channel: str
    latest_inbound_id: Optional[int]
    burst_generation: int
    replied_generation: int
    burst_started_at: Optional[datetime]
    handed_off: bool = False
    covered_inbound_id: int = 0
    attributes: Dict[str, Any] = field(default_factory=dict)

    @property
    def has_unanswered(self) -> bool:
        return self.replied_generation < self.burst_generation


@dataclass(frozen=True)
class InboundReceipt:
    conversation_id: int
    message_id: int
    generation: int
    created_at: datetime
