"""
Data models: pure data classes with no business logic.

Depends on: config
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from agentconnect.config import HISTORY_MAX


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def isoformat(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat()


def parse_time(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO timestamp; naive values are taken as UTC. Returns None if unparseable."""
    if not value:
        return None
    try:
        moment = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (TypeError, ValueError):
        return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


# =============================================================================
# Enums
# =============================================================================

class PeerStatus(str, Enum):
    PENDING = "pending"
    PAIRED = "paired"


class PeerOrigin(str, Enum):
    """Which side started the pairing."""
    LOCAL = "local"      # we initiated; the remote holds the accept decision
    REMOTE = "remote"    # the remote initiated; we hold the accept decision


class Direction(str, Enum):
    INCOMING = "incoming"
    OUTGOING = "outgoing"


class DeliveryOutcome(str, Enum):
    DELIVERED = "delivered"
    NOT_PAIRED = "not_paired"
    NETWORK_ERROR = "network_error"
    REJECTED = "rejected"


# =============================================================================
# Peers
# =============================================================================

@dataclass
class Message:
    """One history entry, stored as plaintext after decryption."""
    counterparty: str
    content: str
    timestamp: str
    direction: Direction


@dataclass
class Peer:
    """A pairing relationship with one remote agent."""
    name: str
    endpoint_url: str
    shared_secret: str
    status: PeerStatus = PeerStatus.PENDING
    origin: PeerOrigin = PeerOrigin.LOCAL
    created_at: str = field(default_factory=lambda: isoformat(utc_now()))
    paired_at: Optional[str] = None
    last_heartbeat_at: Optional[str] = None
    last_message_at: Optional[str] = None
    history: list[Message] = field(default_factory=list)

    @property
    def is_paired(self) -> bool:
        return self.status == PeerStatus.PAIRED

    def append_history(self, message: Message) -> None:
        self.history.append(message)
        if len(self.history) > HISTORY_MAX:
            del self.history[:-HISTORY_MAX]


# =============================================================================
# Groups
# =============================================================================

@dataclass
class Group:
    """A named set of peer names used for broadcast."""
    name: str
    members: list[str] = field(default_factory=list)
    created_by: str = ""
    created_at: str = field(default_factory=lambda: isoformat(utc_now()))


# =============================================================================
# Rate limiting
# =============================================================================

@dataclass
class RateWindow:
    """In-memory fixed-window counter for one subject. Never persisted."""
    count: int
    window_start: float
