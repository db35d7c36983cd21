"""
Pairing state machine: Pending → Paired, deletion by cancel/remove.

Local operations (initiate, accept, cancel, remove) and their inbound
counterparts (receive_request, receive_accept). Every read-modify-write of a
peer record happens under that peer's lock.

accept() commits locally before the remote hears about it. If the
notification is lost the two sides disagree until the next authenticated
message or heartbeat from the remote, which reconcile() uses to promote our
Pending record.

Depends on: config, models, errors, auth, crypto, state, plugins, network/transport
"""

import asyncio
import sys
from dataclasses import dataclass
from typing import Optional

from agentconnect.auth import validate_name, validate_url, verify_bearer_token
from agentconnect.config import MIN_TOKEN_LENGTH, PAIR_TIMEOUT
from agentconnect.crypto import generate_pair_token
from agentconnect.errors import (
    AuthFailure,
    ConflictFailure,
    NotFoundFailure,
    ValidationFailure,
)
from agentconnect.models import Peer, PeerOrigin, PeerStatus
from agentconnect.network.transport import SendResult
from agentconnect.plugins import EventKind
from agentconnect.state import AgentState


def _check_name(name: str) -> None:
    err = validate_name(name)
    if err:
        raise ValidationFailure(err)


def _check_url(url: str) -> None:
    err = validate_url(url)
    if err:
        raise ValidationFailure(err)


# =============================================================================
# Local operations
# =============================================================================

async def initiate(state: AgentState, name: str, url: str) -> tuple[Peer, SendResult]:
    """Create a Pending record with a fresh secret and send the pair request."""
    _check_name(name)
    _check_url(url)
    if name == state.name:
        raise ValidationFailure("Cannot pair with yourself")

    async with state.peer_lock(name):
        existing = state.peers.get(name)
        if existing and existing.is_paired:
            raise ConflictFailure(f"Already paired with {name}")
        peer = Peer(
            name=name,
            endpoint_url=url,
            shared_secret=generate_pair_token(),
            status=PeerStatus.PENDING,
            origin=PeerOrigin.LOCAL,
            created_at=state.now_iso(),
        )
        state.peers.put(peer)

    result = await state.transport.post(url, "/pair-request", {
        "from": state.name,
        "token": peer.shared_secret,
        "webhook_url": state.public_url(),
    }, timeout=PAIR_TIMEOUT)
    if result.success:
        print(f"[AgentConnect] Pair request sent to {name}", file=sys.stderr)
    else:
        print(f"[AgentConnect] Pair request to {name} failed: {result.error}", file=sys.stderr)
    return peer, result


@dataclass
class AcceptResult:
    peer: Peer
    already_paired: bool
    notification: Optional[asyncio.Task] = None


async def accept(state: AgentState, name: str) -> AcceptResult:
    """Flip a Pending peer to Paired and notify the remote in the background."""
    _check_name(name)
    async with state.peer_lock(name):
        peer = state.peers.get(name)
        if peer is None:
            raise NotFoundFailure(f"No pair request from {name}")
        if peer.is_paired:
            return AcceptResult(peer=peer, already_paired=True)
        if peer.origin != PeerOrigin.REMOTE:
            raise ConflictFailure(f"Waiting for {name} to accept our request")
        peer.status = PeerStatus.PAIRED
        peer.paired_at = state.now_iso()
        state.peers.put(peer)

    print(f"[AgentConnect] Paired with {name} (local)", file=sys.stderr)
    state.emit(EventKind.PAIR_ACCEPTED, name)
    task = state.spawn(_notify_accept(state, peer))
    return AcceptResult(peer=peer, already_paired=False, notification=task)


async def _notify_accept(state: AgentState, peer: Peer) -> SendResult:
    result = await state.transport.post(peer.endpoint_url, "/pair-accept", {
        "from": state.name,
        "webhook_url": state.public_url(),
    }, token=peer.shared_secret, timeout=PAIR_TIMEOUT)
    if not result.success:
        print(f"[AgentConnect] Could not notify {peer.name} of acceptance ({result.error}); "
              f"they will be reconciled on their next authenticated call", file=sys.stderr)
    return result


async def cancel(state: AgentState, name: str) -> None:
    """Delete a Pending record. Paired peers must be removed instead."""
    _check_name(name)
    async with state.peer_lock(name):
        peer = state.peers.get(name)
        if peer is None:
            raise NotFoundFailure(f"No pair request for {name}")
        if peer.status != PeerStatus.PENDING:
            raise ConflictFailure(f"Already paired with {name}; remove instead")
        state.peers.delete(name)
    print(f"[AgentConnect] Cancelled pair request for {name}", file=sys.stderr)


async def remove(state: AgentState, name: str) -> None:
    """Delete a Paired record. The remote is not told."""
    _check_name(name)
    async with state.peer_lock(name):
        peer = state.peers.get(name)
        if peer is None:
            raise NotFoundFailure(f"Not paired with {name}")
        if not peer.is_paired:
            raise ConflictFailure(f"{name} is still pending; cancel instead")
        state.peers.delete(name)
    print(f"[AgentConnect] Removed {name}", file=sys.stderr)
    state.emit(EventKind.PAIR_REMOVED, name)


# =============================================================================
# Inbound operations
# =============================================================================

async def receive_request(state: AgentState, name: str, secret: str, url: str) -> Peer:
    """Store a remote's pair request as Pending with the secret they chose."""
    _check_name(name)
    _check_url(url)
    if len(secret) < MIN_TOKEN_LENGTH:
        raise ValidationFailure("Token too short")

    async with state.peer_lock(name):
        existing = state.peers.get(name)
        if existing and existing.is_paired:
            raise ConflictFailure(f"Already paired with {name}")
        peer = Peer(
            name=name,
            endpoint_url=url,
            shared_secret=secret,
            status=PeerStatus.PENDING,
            origin=PeerOrigin.REMOTE,
            created_at=state.now_iso(),
        )
        state.peers.put(peer)

    print(f"[AgentConnect] Pair request from {name} ({url})", file=sys.stderr)
    state.emit(EventKind.PAIR_REQUESTED, name, url=url)
    return peer


async def receive_accept(state: AgentState, name: str, authorization: Optional[str],
                         url: Optional[str] = None) -> Peer:
    """The remote accepted a request we sent."""
    _check_name(name)
    if url:
        _check_url(url)

    async with state.peer_lock(name):
        peer = state.peers.get(name)
        if peer is None:
            raise NotFoundFailure(f"No pending request for: {name}")
        auth = verify_bearer_token(authorization, peer.shared_secret)
        if not auth.valid:
            raise AuthFailure(auth.error)
        if peer.is_paired:
            return peer
        if peer.origin != PeerOrigin.LOCAL:
            raise ConflictFailure(f"No outgoing pair request to {name}")
        peer.status = PeerStatus.PAIRED
        peer.paired_at = state.now_iso()
        if url:
            peer.endpoint_url = url
        state.peers.put(peer)

    print(f"[AgentConnect] Paired with {name}", file=sys.stderr)
    state.emit(EventKind.PAIR_ACCEPTED, name)
    return peer


def authenticate(state: AgentState, name: str, authorization: Optional[str]) -> Peer:
    """Resolve a peer for an authenticated verb (message, heartbeat).

    Must be called with the peer's lock held. A Pending record we initiated is
    promoted to Paired: only the remote's acceptance could have given them
    reason to use the secret on these routes.
    """
    peer = state.peers.get(name)
    if peer is None:
        raise AuthFailure(f"Unknown agent: {name}")
    if not peer.is_paired and peer.origin != PeerOrigin.LOCAL:
        raise AuthFailure(f"Not paired with: {name}")
    auth = verify_bearer_token(authorization, peer.shared_secret)
    if not auth.valid:
        raise AuthFailure(auth.error)
    if not peer.is_paired:
        reconcile(state, peer)
    return peer


def reconcile(state: AgentState, peer: Peer) -> None:
    peer.status = PeerStatus.PAIRED
    peer.paired_at = state.now_iso()
    state.peers.put(peer)
    print(f"[AgentConnect] Paired with {peer.name} (reconciled from authenticated traffic)",
          file=sys.stderr)
    state.emit(EventKind.PAIR_ACCEPTED, peer.name, reconciled=True)
