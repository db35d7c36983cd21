"""
Presence tracking: periodic authenticated liveness probes to paired peers and
online/offline classification from the last heartbeat we received.

Depends on: config, models, state, network/transport
"""

import asyncio
import sys
from datetime import datetime, timedelta
from typing import Optional

from agentconnect.config import HEARTBEAT_INTERVAL, HEARTBEAT_TIMEOUT, ONLINE_THRESHOLD
from agentconnect.models import Peer, parse_time
from agentconnect.network.transport import SendResult
from agentconnect.state import AgentState


def is_online(peer: Peer, now: datetime) -> bool:
    """Online iff a heartbeat arrived less than ONLINE_THRESHOLD seconds ago."""
    seen = parse_time(peer.last_heartbeat_at)
    if seen is None:
        return False
    return now - seen < timedelta(seconds=ONLINE_THRESHOLD)


def last_seen(peer: Peer, now: datetime) -> str:
    seen = parse_time(peer.last_heartbeat_at)
    if seen is None:
        return "never"
    seconds = int((now - seen).total_seconds())
    if seconds < 60:
        return f"{seconds}s ago"
    if seconds < 3600:
        return f"{seconds // 60}m ago"
    return f"{seconds // 3600}h ago"


async def ping_peer(state: AgentState, peer: Peer) -> Optional[SendResult]:
    if not peer.is_paired or not peer.endpoint_url:
        return None
    return await state.transport.post(peer.endpoint_url, "/heartbeat", {
        "from": state.name,
        "timestamp": state.now_iso(),
        "type": "heartbeat",
    }, token=peer.shared_secret, timeout=HEARTBEAT_TIMEOUT)


async def heartbeat_round(state: AgentState) -> dict[str, bool]:
    """Probe every paired peer concurrently. Returns name -> answered.
    Failures only mean the peer will age into offline."""
    peers = state.peers.paired()
    if not peers:
        return {}
    results = await asyncio.gather(*(ping_peer(state, p) for p in peers), return_exceptions=True)
    return {
        p.name: isinstance(r, SendResult) and r.success
        for p, r in zip(peers, results)
    }


async def heartbeat_loop(state: AgentState) -> None:
    """Probe paired peers every HEARTBEAT_INTERVAL seconds, starting immediately."""
    while True:
        try:
            await heartbeat_round(state)
            await asyncio.sleep(HEARTBEAT_INTERVAL)
        except asyncio.CancelledError:
            return
        except Exception as e:
            print(f"[AgentConnect] Heartbeat error: {e}", file=sys.stderr)
            await asyncio.sleep(HEARTBEAT_INTERVAL)


def record_heartbeat(state: AgentState, peer: Peer) -> None:
    """Stamp lastHeartbeatAt. Caller holds the peer's lock."""
    peer.last_heartbeat_at = state.now_iso()
    state.peers.put(peer)


def peer_overview(state: AgentState) -> list[dict]:
    """One summary row per peer for status displays."""
    now = state.now()
    rows = []
    for peer in state.peers.all():
        rows.append({
            "name": peer.name,
            "status": peer.status.value,
            "online": is_online(peer, now),
            "last_seen": last_seen(peer, now),
            "last_message_at": peer.last_message_at,
            "endpoint_url": peer.endpoint_url,
            "messages": len(peer.history),
        })
    return rows
