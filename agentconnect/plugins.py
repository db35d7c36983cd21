"""
Collaborator interfaces the core calls out to: notification sinks,
reachability providers, and reply generators.

Depends on: conversation (imported lazily for prompt formatting)
"""

import asyncio
import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Sequence


# =============================================================================
# Notifications
# =============================================================================

class EventKind(str, Enum):
    MESSAGE_IN = "message_in"
    MESSAGE_OUT = "message_out"
    PAIR_REQUESTED = "pair_requested"
    PAIR_ACCEPTED = "pair_accepted"
    PAIR_REMOVED = "pair_removed"
    FILE_RECEIVED = "file_received"
    SERVICE_STARTED = "service_started"
    SERVICE_STOPPED = "service_stopped"


@dataclass
class Event:
    kind: EventKind
    agent: str
    peer: Optional[str] = None
    detail: dict = field(default_factory=dict)
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


class NotificationSink(ABC):
    """Receives structured events. Delivery is fire-and-forget."""

    @abstractmethod
    async def notify(self, event: Event) -> None:
        ...


class LogNotificationSink(NotificationSink):
    """Writes one line per event to stderr."""

    async def notify(self, event: Event) -> None:
        who = f" {event.peer}" if event.peer else ""
        extra = ""
        if "preview" in event.detail:
            extra = f": {event.detail['preview']}"
        elif "filename" in event.detail:
            extra = f": {event.detail['filename']}"
        print(f"[AgentConnect] {event.kind.value}{who}{extra}", file=sys.stderr)


async def deliver_event(sink: NotificationSink, event: Event) -> None:
    """Hand an event to a sink, ignoring whatever the sink does wrong."""
    try:
        await sink.notify(event)
    except Exception as e:
        print(f"[AgentConnect] Notification sink failed ({event.kind.value}): {e}", file=sys.stderr)


# =============================================================================
# Reachability
# =============================================================================

class ReachabilityProvider(ABC):
    """Supplies the public URL this agent advertises to peers."""

    @abstractmethod
    def public_url(self) -> str:
        ...


class StaticReachability(ReachabilityProvider):
    def __init__(self, url: str):
        self._url = url

    def public_url(self) -> str:
        return self._url


# =============================================================================
# Reply generation
# =============================================================================

@dataclass
class ReplyContext:
    """What a reply generator sees when automatic mode fires."""
    agent: str
    peer: str
    latest_message: str
    history: list = field(default_factory=list)
    mode: str = "auto"
    recent_exchanges: int = 0
    max_exchanges: int = 0
    paired_at: Optional[str] = None
    purpose: str = "reply"       # "reply" to an inbound message, or "initiate" a conversation


class ReplyGenerator(ABC):
    """Produces outbound content from conversation context. None means stay quiet."""

    @abstractmethod
    async def generate_reply(self, context: ReplyContext) -> Optional[str]:
        ...


class NoReplyGenerator(ReplyGenerator):
    async def generate_reply(self, context: ReplyContext) -> Optional[str]:
        return None


class CommandReplyGenerator(ReplyGenerator):
    """Runs an external command with the formatted prompt as its last argument
    and uses its stdout as the reply."""

    def __init__(self, command: str, args: Sequence[str] = (), timeout: float = 30.0):
        self.command = command
        self.args = list(args)
        self.timeout = timeout

    async def generate_reply(self, context: ReplyContext) -> Optional[str]:
        from agentconnect.conversation import format_context_for_prompt

        prompt = format_context_for_prompt(context)
        try:
            process = await asyncio.create_subprocess_exec(
                self.command, *self.args, prompt,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError:
            print(f"[AgentConnect] Reply command '{self.command}' not found. "
                  f"Set AGENTCONNECT_REPLY_COMMAND to the correct path.", file=sys.stderr)
            return None

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), self.timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            print(f"[AgentConnect] Reply command timed out after {self.timeout:g}s", file=sys.stderr)
            return None

        if process.returncode != 0:
            print(f"[AgentConnect] Reply command exited {process.returncode}: "
                  f"{stderr.decode(errors='replace')[:200]}", file=sys.stderr)
            return None
        reply = stdout.decode(errors="replace").strip()
        return reply or None
