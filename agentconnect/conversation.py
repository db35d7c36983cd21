"""
Reply triggering: builds the context a ReplyGenerator sees, decides whether
automatic mode may fire (gated by cooldown), and runs auto-chat rounds.

Depends on: config, models, cooldown, state, plugins, messaging, network/presence
"""

import sys
from typing import Optional

from agentconnect.config import REPLY_CONTEXT_MESSAGES
from agentconnect.cooldown import CooldownStatus, evaluate_cooldown
from agentconnect.messaging import send_message
from agentconnect.models import Direction, Peer
from agentconnect.network.presence import is_online
from agentconnect.network.transport import SendResult
from agentconnect.plugins import ReplyContext
from agentconnect.state import AgentState


def build_reply_context(state: AgentState, peer: Peer, latest_message: str,
                        cooldown: CooldownStatus, purpose: str = "reply") -> ReplyContext:
    return ReplyContext(
        agent=state.name,
        peer=peer.name,
        latest_message=latest_message,
        history=list(peer.history[-REPLY_CONTEXT_MESSAGES:]),
        mode=state.config.mode,
        recent_exchanges=cooldown.recent_count,
        max_exchanges=cooldown.max_exchanges,
        paired_at=peer.paired_at,
        purpose=purpose,
    )


def format_context_for_prompt(context: ReplyContext) -> str:
    """Render a ReplyContext as the plain-text prompt handed to a generator."""
    lines = []
    for m in context.history:
        who = m.counterparty if m.direction == Direction.INCOMING else "me"
        lines.append(f"[{who}]: {m.content}")
    history = "\n".join(lines) or "(no previous conversation)"

    if context.purpose == "initiate":
        header = f"[AGENT-CONNECT: AUTO-CHAT]\n\nFriend: {context.peer}"
        instruction = (f"Start or continue a brief, friendly conversation with {context.peer}. "
                       f"Reply with the message text only.")
    else:
        header = (f"[AGENT-CONNECT: INCOMING MESSAGE]\n\nFriend: {context.peer}\n"
                  f"Their message: \"{context.latest_message}\"\n"
                  f"Friendship since: {context.paired_at or 'recently'}")
        instruction = f"Write a natural reply to {context.peer}. Reply with the message text only."

    return (
        f"{header}\n"
        f"You are: {context.agent}\n"
        f"Mode: {context.mode} | Exchanges: {context.recent_exchanges}/{context.max_exchanges}\n\n"
        f"Recent conversation:\n{history}\n\n"
        f"[INSTRUCTION]\n{instruction}\n"
    )


async def run_reply(state: AgentState, context: ReplyContext) -> Optional[SendResult]:
    """Ask the generator for content and send it. Generator faults are logged, not raised."""
    try:
        reply = await state.reply_generator.generate_reply(context)
    except Exception as e:
        print(f"[AgentConnect] Reply generator failed for {context.peer}: {e}", file=sys.stderr)
        return None
    if not reply:
        return None
    return await send_message(state, context.peer, reply)


def maybe_auto_reply(state: AgentState, peer: Peer, latest_message: str,
                     cooldown: CooldownStatus):
    """Schedule an automatic reply if the mode and cooldown allow it.
    Returns the background task, or None when nothing was scheduled."""
    if state.config.mode != "auto":
        print(f"[AgentConnect] Message from {peer.name} saved for manual reply", file=sys.stderr)
        return None
    if cooldown.over_cooldown:
        print(f"[AgentConnect] {peer.name}: {cooldown.describe()}", file=sys.stderr)
        return None
    context = build_reply_context(state, peer, latest_message, cooldown)
    return state.spawn(run_reply(state, context))


async def auto_chat_round(state: AgentState) -> dict[str, str]:
    """Open a conversation with every paired, online peer that is not cooling down.

    Returns peer name -> what happened ("sent", "offline", "cooldown", "no_reply",
    or a delivery outcome).
    """
    if state.config.mode != "auto":
        return {}
    now = state.now()
    summary: dict[str, str] = {}
    for peer in state.peers.paired():
        if not is_online(peer, now):
            summary[peer.name] = "offline"
            continue
        cooldown = evaluate_cooldown(peer.history, now, state.config.max_exchanges,
                                     state.config.cooldown_minutes)
        if cooldown.over_cooldown:
            summary[peer.name] = "cooldown"
            continue
        last = peer.history[-1].content if peer.history else ""
        context = build_reply_context(state, peer, last, cooldown, purpose="initiate")
        result = await run_reply(state, context)
        if result is None:
            summary[peer.name] = "no_reply"
        else:
            summary[peer.name] = "sent" if result.success else result.outcome.value
    return summary
