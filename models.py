"""Data models for the Chatwork thread tool."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional


class RelationshipType(Enum):
    ROOT = "root"          # The message the thread is anchored to
    REPLY = "reply"        # Uses [rp ...] tags or reply labels
    QUOTE = "quote"        # Uses [qt]/[qtmeta ...] tags or quote labels
    MANUAL = "manual"      # Added by hand, or no recognisable markup


@dataclass(frozen=True)
class Message:
    """A chat message as fetched from Chatwork. Read-only once fetched."""
    id: str
    content: str
    send_time: int                      # Epoch seconds, used only for ordering
    room_id: str
    sender_id: str = ""
    sender_name: str = ""


@dataclass
class Thread:
    id: int
    name: str
    description: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class ThreadMembership:
    thread_id: int
    message_id: str
    relationship_type: RelationshipType = RelationshipType.MANUAL
    added_at: Optional[datetime] = None


@dataclass
class DuplicateCheck:
    """Which threads (if any) already own a message."""
    exists: bool = False
    thread_ids: List[int] = field(default_factory=list)


@dataclass(frozen=True)
class MessageRef:
    """A message addressed either by bare id or by a Chatwork URL."""
    message_id: str
    room_id: Optional[str] = None

    @property
    def url(self) -> str:
        """Chatwork web URL like 'https://www.chatwork.com/#!rid123-456'."""
        if not self.room_id:
            return ""
        return f"https://www.chatwork.com/#!rid{self.room_id}-{self.message_id}"
