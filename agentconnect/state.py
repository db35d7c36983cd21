"""
Runtime context: one AgentState per running agent, passed explicitly to the
router, loops, and operations. Owns the stores, rate-limit tables, per-record
locks, and background tasks.

Depends on: config, models, auth, store, plugins, network/transport
"""

import asyncio
import sys
import time
import weakref
from datetime import datetime
from typing import Callable, Optional

from agentconnect.auth import FixedWindowLimiter
from agentconnect.config import (
    AgentConfig,
    PAIR_LIMIT_MAX,
    PAIR_LIMIT_WINDOW,
    RATE_LIMIT_MAX,
    RATE_LIMIT_WINDOW,
    RATE_SWEEP_INTERVAL,
)
from agentconnect.models import utc_now
from agentconnect.network.transport import PeerTransport
from agentconnect.plugins import (
    CommandReplyGenerator,
    Event,
    EventKind,
    NoReplyGenerator,
    NotificationSink,
    LogNotificationSink,
    ReachabilityProvider,
    ReplyGenerator,
    StaticReachability,
    deliver_event,
)
from agentconnect.store import FileRecordStore, GroupStore, PeerStore, RecordStore


class AgentState:
    """Everything one agent needs at runtime."""

    def __init__(self, config: AgentConfig,
                 peer_records: Optional[RecordStore] = None,
                 group_records: Optional[RecordStore] = None,
                 transport: Optional[PeerTransport] = None,
                 notifier: Optional[NotificationSink] = None,
                 reachability: Optional[ReachabilityProvider] = None,
                 reply_generator: Optional[ReplyGenerator] = None,
                 clock: Callable[[], datetime] = utc_now,
                 monotonic: Callable[[], float] = time.monotonic):
        self.config = config
        self.peers = PeerStore(peer_records or FileRecordStore(config.peers_dir))
        self.groups = GroupStore(group_records or FileRecordStore(config.groups_dir))
        self.transport = transport or PeerTransport()
        self.notifier = notifier or LogNotificationSink()
        self.reachability = reachability or StaticReachability(config.advertised_url)
        if reply_generator is None:
            if config.reply_command:
                reply_generator = CommandReplyGenerator(
                    config.reply_command, config.reply_args, config.reply_timeout)
            else:
                reply_generator = NoReplyGenerator()
        self.reply_generator = reply_generator
        self.clock = clock
        self.message_limiter = FixedWindowLimiter(RATE_LIMIT_MAX, RATE_LIMIT_WINDOW, monotonic)
        self.pair_limiter = FixedWindowLimiter(PAIR_LIMIT_MAX, PAIR_LIMIT_WINDOW, monotonic)
        self.started_at = monotonic()
        self._monotonic = monotonic
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()
        self._tasks: set[asyncio.Task] = set()

    @property
    def name(self) -> str:
        return self.config.name

    def now(self) -> datetime:
        return self.clock()

    def now_iso(self) -> str:
        return self.clock().isoformat()

    def uptime(self) -> float:
        return self._monotonic() - self.started_at

    def public_url(self) -> str:
        return self.reachability.public_url()

    # -------------------------------------------------------------------------
    # Per-record serialization
    # -------------------------------------------------------------------------

    def lock_for(self, kind: str, name: str) -> asyncio.Lock:
        """One lock per record. Held around every read-modify-write of that record."""
        key = f"{kind}:{name}"
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def peer_lock(self, name: str) -> asyncio.Lock:
        return self.lock_for("peer", name)

    def group_lock(self, name: str) -> asyncio.Lock:
        return self.lock_for("group", name)

    # -------------------------------------------------------------------------
    # Background work
    # -------------------------------------------------------------------------

    def spawn(self, coro) -> asyncio.Task:
        """Run a coroutine in the background, keeping a reference until it finishes."""
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def emit(self, kind: EventKind, peer: Optional[str] = None, **detail) -> asyncio.Task:
        event = Event(kind=kind, agent=self.name, peer=peer, detail=detail)
        return self.spawn(deliver_event(self.notifier, event))

    async def drain(self) -> None:
        """Wait for all background tasks (tests and shutdown)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def cancel_background(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


async def sweep_loop(state: AgentState) -> None:
    """Evict expired rate-limit windows so the tables stay bounded."""
    while True:
        try:
            await asyncio.sleep(RATE_SWEEP_INTERVAL)
            evicted = state.message_limiter.sweep() + state.pair_limiter.sweep()
            if evicted:
                print(f"[AgentConnect] Swept {evicted} expired rate window(s)", file=sys.stderr)
        except asyncio.CancelledError:
            return
        except Exception as e:
            print(f"[AgentConnect] Rate sweep error: {e}", file=sys.stderr)
