"""
Cooldown accounting: bounds automatic reply loops by counting recent
exchanges in a peer's history. No counter is stored; every evaluation reads
the history as it is now, so the result relaxes on its own as entries age out.

Depends on: models
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable

from agentconnect.models import Message, parse_time


@dataclass
class CooldownStatus:
    recent_count: int
    max_exchanges: int
    cooldown_minutes: float

    @property
    def over_cooldown(self) -> bool:
        return self.recent_count >= self.max_exchanges

    def describe(self) -> str:
        if self.over_cooldown:
            return (f"COOLDOWN: {self.recent_count} exchanges in the last "
                    f"{self.cooldown_minutes:g}min, automatic replies paused")
        return f"Exchanges: {self.recent_count}/{self.max_exchanges}"


def count_recent_exchanges(history: Iterable[Message], now: datetime,
                           window: timedelta) -> int:
    """Entries (either direction) strictly newer than now - window.
    Entries with unreadable timestamps are not counted."""
    cutoff = now - window
    count = 0
    for message in history:
        moment = parse_time(message.timestamp)
        if moment is not None and moment > cutoff:
            count += 1
    return count


def evaluate_cooldown(history: Iterable[Message], now: datetime,
                      max_exchanges: int, cooldown_minutes: float) -> CooldownStatus:
    recent = count_recent_exchanges(history, now, timedelta(minutes=cooldown_minutes))
    return CooldownStatus(recent_count=recent, max_exchanges=max_exchanges,
                          cooldown_minutes=cooldown_minutes)
