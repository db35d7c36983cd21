"""
Groups and broadcast. A group is a stored set of peer names; broadcast sends
to each member independently with that member's own secret and reports every
outcome. One member failing never stops the others.

Depends on: config, models, errors, auth, state, messaging, network/transport
"""

import asyncio
import sys
from typing import Iterable

from agentconnect.auth import validate_name
from agentconnect.config import BROADCAST_TIMEOUT
from agentconnect.errors import ConflictFailure, NotFoundFailure, ValidationFailure
from agentconnect.messaging import send_message
from agentconnect.models import DeliveryOutcome, Group
from agentconnect.network.transport import SendResult
from agentconnect.state import AgentState


def _check_name(name: str) -> None:
    err = validate_name(name)
    if err:
        raise ValidationFailure(err)


def _require_paired(state: AgentState, members: Iterable[str]) -> list[str]:
    checked = []
    for member in members:
        _check_name(member)
        peer = state.peers.get(member)
        if peer is None or not peer.is_paired:
            raise ValidationFailure(f"{member} is not a paired friend")
        if member not in checked:
            checked.append(member)
    return checked


# =============================================================================
# Group CRUD
# =============================================================================

async def create_group(state: AgentState, name: str, members: Iterable[str]) -> Group:
    _check_name(name)
    async with state.group_lock(name):
        if state.groups.get(name) is not None:
            raise ConflictFailure(f"Group {name} already exists")
        group = Group(name=name, members=_require_paired(state, members),
                      created_by=state.name, created_at=state.now_iso())
        state.groups.put(group)
    print(f"[AgentConnect] Created group {name} ({len(group.members)} members)", file=sys.stderr)
    return group


def get_group(state: AgentState, name: str) -> Group:
    group = state.groups.get(name)
    if group is None:
        raise NotFoundFailure(f"Group {name} not found")
    return group


def list_groups(state: AgentState) -> list[Group]:
    return state.groups.all()


async def add_member(state: AgentState, name: str, member: str) -> Group:
    async with state.group_lock(name):
        group = get_group(state, name)
        for new in _require_paired(state, [member]):
            if new not in group.members:
                group.members.append(new)
        state.groups.put(group)
    return group


async def remove_member(state: AgentState, name: str, member: str) -> Group:
    async with state.group_lock(name):
        group = get_group(state, name)
        if member not in group.members:
            raise NotFoundFailure(f"{member} is not in group {name}")
        group.members.remove(member)
        state.groups.put(group)
    return group


async def delete_group(state: AgentState, name: str) -> None:
    _check_name(name)
    async with state.group_lock(name):
        if not state.groups.delete(name):
            raise NotFoundFailure(f"Group {name} not found")
    print(f"[AgentConnect] Deleted group {name}", file=sys.stderr)


# =============================================================================
# Broadcast
# =============================================================================

async def _send_member(state: AgentState, member: str, text: str, timeout: float) -> SendResult:
    try:
        return await send_message(state, member, text, timeout=timeout)
    except Exception as e:
        return SendResult(success=False, outcome=DeliveryOutcome.NETWORK_ERROR, error=str(e))


async def broadcast(state: AgentState, name: str, text: str,
                    timeout: float = BROADCAST_TIMEOUT) -> dict[str, SendResult]:
    """Send text to every member concurrently. Returns member -> SendResult."""
    if not text:
        raise ValidationFailure("Message is empty")
    group = get_group(state, name)
    members = list(group.members)
    results = await asyncio.gather(*(_send_member(state, m, text, timeout) for m in members))
    outcomes = dict(zip(members, results))
    delivered = sum(1 for r in results if r.success)
    print(f"[AgentConnect] Broadcast to {name}: {delivered}/{len(members)} delivered",
          file=sys.stderr)
    return outcomes
