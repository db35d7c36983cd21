#!/usr/bin/env python3
"""
Cooldown accountant and automatic-reply tests.

Pure counting against fixed timestamps, then the full loop: an agent in auto
mode replies through its ReplyGenerator until the exchange cap is reached.

Usage:
    python3 test_cooldown.py
"""

import asyncio
from datetime import timedelta

from agentconnect.conversation import auto_chat_round, format_context_for_prompt
from agentconnect.cooldown import count_recent_exchanges, evaluate_cooldown
from agentconnect.messaging import send_message
from agentconnect.models import Direction, Message
from agentconnect.network.presence import heartbeat_round
from agentconnect.plugins import ReplyContext
from harness import EchoReplyGenerator, FakeClock, Workspace, pair, report, run_suite


def _entry(clock: FakeClock, minutes_ago: float, direction=Direction.INCOMING) -> Message:
    moment = clock() - timedelta(minutes=minutes_ago)
    return Message("bob", f"{minutes_ago}m ago", moment.isoformat(), direction)


async def test_threshold_and_ageing() -> None:
    clock = FakeClock()
    history = [
        _entry(clock, 25),
        _entry(clock, 10, Direction.OUTGOING),
        _entry(clock, 1),
    ]
    status = evaluate_cooldown(history, clock(), max_exchanges=3, cooldown_minutes=30)
    report("3 entries in the last 30 min with max 3 -> over cooldown",
           status.recent_count == 3 and status.over_cooldown)
    report("cooldown description names the pause", status.describe().startswith("COOLDOWN: 3 exchanges"),
           f"got: {status.describe()!r}")

    clock.advance(6 * 60)
    status = evaluate_cooldown(history, clock(), max_exchanges=3, cooldown_minutes=30)
    report("once one ages out, 2 remain -> not over cooldown",
           status.recent_count == 2 and not status.over_cooldown, f"count={status.recent_count}")
    report("description shows usage when not cooling down", status.describe() == "Exchanges: 2/3")


async def test_counting_rules() -> None:
    clock = FakeClock()
    window = timedelta(minutes=30)
    at_cutoff = Message("bob", "edge", (clock() - window).isoformat(), Direction.INCOMING)
    junk = Message("bob", "junk", "not a time", Direction.INCOMING)
    naive = Message("bob", "naive", clock().replace(tzinfo=None).isoformat(), Direction.INCOMING)
    report("entry exactly at the cutoff is outside", count_recent_exchanges([at_cutoff], clock(), window) == 0)
    report("unreadable timestamps are ignored", count_recent_exchanges([junk], clock(), window) == 0)
    report("naive timestamps are read as UTC", count_recent_exchanges([naive], clock(), window) == 1)
    report("both directions count", count_recent_exchanges(
        [_entry(clock, 1), _entry(clock, 2, Direction.OUTGOING)], clock(), window) == 2)


async def test_auto_reply_until_cooldown() -> None:
    ws = Workspace()
    try:
        alice, _, _ = ws.agent("alice")
        generator = EchoReplyGenerator()
        bob, _, _ = ws.agent("bob", mode="auto", max_exchanges=3, reply_generator=generator)
        await pair(alice, bob)

        await send_message(alice, "bob", "first")
        await bob.drain()
        replies = [m.content for m in alice.peers.get("bob").history if m.direction == Direction.INCOMING]
        report("auto mode replied through the generator", replies == ["echo: first"], f"got: {replies}")
        report("generator saw the latest message and counts",
               generator.contexts[0].latest_message == "first" and generator.contexts[0].recent_exchanges == 0)

        # bob's history now holds: first (in), echo (out) -> 2 recent
        await send_message(alice, "bob", "second")
        await bob.drain()
        # 4 recent before this one -> over the cap of 3, no reply
        await send_message(alice, "bob", "third")
        await bob.drain()
        replies = [m.content for m in alice.peers.get("bob").history if m.direction == Direction.INCOMING]
        report("reply sent while under the cap", "echo: second" in replies)
        report("no reply once over cooldown", "echo: third" not in replies, f"got: {replies}")
        report("message still recorded during cooldown",
               bob.peers.get("alice").history[-1].content == "third")
    finally:
        ws.cleanup()


async def test_manual_mode_never_replies() -> None:
    ws = Workspace()
    try:
        alice, _, _ = ws.agent("alice")
        generator = EchoReplyGenerator()
        bob, _, _ = ws.agent("bob", mode="manual", reply_generator=generator)
        await pair(alice, bob)
        await send_message(alice, "bob", "hi")
        await bob.drain()
        report("manual mode does not invoke the generator", generator.contexts == [])
    finally:
        ws.cleanup()


async def test_auto_chat_round() -> None:
    ws = Workspace()
    try:
        generator = EchoReplyGenerator()
        alice, _, _ = ws.agent("alice", mode="auto", reply_generator=generator)
        bob, _, _ = ws.agent("bob")
        carol, _, _ = ws.agent("carol")
        await pair(alice, bob)
        await pair(alice, carol)

        await heartbeat_round(bob)       # alice sees bob online; carol stays silent
        summary = await auto_chat_round(alice)
        report("online peer gets a conversation opener", summary.get("bob") == "sent", f"got: {summary}")
        report("offline peer skipped", summary.get("carol") == "offline")
        report("opener asked with purpose=initiate", generator.contexts[-1].purpose == "initiate")
    finally:
        ws.cleanup()


async def test_prompt_format() -> None:
    context = ReplyContext(
        agent="bob", peer="alice", latest_message="how are you?",
        history=[Message("alice", "how are you?", "2026-01-01T00:00:00+00:00", Direction.INCOMING)],
        recent_exchanges=1, max_exchanges=6,
    )
    prompt = format_context_for_prompt(context)
    report("prompt quotes the latest message", 'Their message: "how are you?"' in prompt)
    report("prompt includes history and counts", "[alice]: how are you?" in prompt and "1/6" in prompt)


async def main() -> None:
    await run_suite("Agent Connect Cooldown Tests", [
        ("1. Threshold and ageing", test_threshold_and_ageing),
        ("2. Counting rules", test_counting_rules),
        ("3. Auto reply until cooldown", test_auto_reply_until_cooldown),
        ("4. Manual mode", test_manual_mode_never_replies),
        ("5. Auto-chat round", test_auto_chat_round),
        ("6. Prompt format", test_prompt_format),
    ])


if __name__ == "__main__":
    asyncio.run(main())
