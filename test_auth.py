#!/usr/bin/env python3
"""
Auth & rate limiter tests: bearer parsing, constant-time comparison paths,
fixed-window limits with an injected clock, name/URL validation.

Usage:
    python3 test_auth.py
"""

import asyncio

from agentconnect.auth import (
    FixedWindowLimiter,
    validate_name,
    validate_url,
    verify_bearer_token,
)
from agentconnect.config import PAIR_LIMIT_MAX, PAIR_LIMIT_WINDOW, RATE_LIMIT_MAX, RATE_LIMIT_WINDOW
from harness import FakeMonotonic, report, run_suite

TOKEN = "f" * 64


async def test_bearer_accepts_exact_format() -> None:
    result = verify_bearer_token(f"Bearer {TOKEN}", TOKEN)
    report("'Bearer <token>' with the right token is valid", result.valid, result.error or "")


async def test_bearer_rejections() -> None:
    cases = [
        ("missing header", None, TOKEN),
        ("wrong scheme", f"Basic {TOKEN}", TOKEN),
        ("lowercase scheme", f"bearer {TOKEN}", TOKEN),
        ("no token", "Bearer", TOKEN),
        ("extra part", f"Bearer {TOKEN} extra", TOKEN),
        ("double space", f"Bearer  {TOKEN}", TOKEN),
        ("token under 20 chars", "Bearer short-token", "short-token"),
        ("same length, different token", f"Bearer {'e' * 64}", TOKEN),
        ("different length", f"Bearer {TOKEN}00", TOKEN),
        ("no stored secret", f"Bearer {TOKEN}", None),
    ]
    for label, header, expected in cases:
        result = verify_bearer_token(header, expected)
        report(f"{label} -> rejected", not result.valid and bool(result.error))


async def test_message_window() -> None:
    clock = FakeMonotonic()
    limiter = FixedWindowLimiter(RATE_LIMIT_MAX, RATE_LIMIT_WINDOW, clock)

    remaining = []
    for _ in range(RATE_LIMIT_MAX):
        decision = limiter.check("bob")
        remaining.append(decision.remaining if decision.allowed else None)
        clock.advance(1)
    report("first 10 calls allowed, remaining counts down", remaining == list(range(9, -1, -1)),
           f"got: {remaining}")

    eleventh = limiter.check("bob")
    report("11th call inside the window rejected", not eleventh.allowed)
    report("retry hint is time left in the window", eleventh.retry_after_ms == 50_000,
           f"got: {eleventh.retry_after_ms}")

    report("other subjects unaffected", limiter.check("carol").allowed)

    clock.advance(50)
    after = limiter.check("bob")
    report("call after the window elapses is accepted", after.allowed)
    report("counter restarted at 1", after.remaining == RATE_LIMIT_MAX - 1, f"got: {after.remaining}")


async def test_pair_window() -> None:
    clock = FakeMonotonic()
    limiter = FixedWindowLimiter(PAIR_LIMIT_MAX, PAIR_LIMIT_WINDOW, clock)
    allowed = [limiter.check("203.0.113.9").allowed for _ in range(PAIR_LIMIT_MAX + 1)]
    report("5 pair requests per address, 6th refused", allowed == [True] * 5 + [False])
    clock.advance(PAIR_LIMIT_WINDOW - 1)
    report("still refused just before 10 minutes", not limiter.check("203.0.113.9").allowed)
    clock.advance(1)
    report("allowed again at 10 minutes", limiter.check("203.0.113.9").allowed)


async def test_sweep() -> None:
    clock = FakeMonotonic()
    limiter = FixedWindowLimiter(RATE_LIMIT_MAX, RATE_LIMIT_WINDOW, clock)
    limiter.check("old")
    clock.advance(RATE_LIMIT_WINDOW)
    limiter.check("fresh")
    evicted = limiter.sweep()
    report("sweep evicts only expired windows", evicted == 1 and len(limiter) == 1,
           f"evicted={evicted}, left={len(limiter)}")


async def test_validation() -> None:
    report("plain name ok", validate_name("agent_alpha-2") is None)
    report("name with slash rejected", validate_name("../etc") is not None)
    report("name with space rejected", validate_name("bad name") is not None)
    report("65-char name rejected", validate_name("a" * 65) is not None)
    report("64-char name ok", validate_name("a" * 64) is None)
    report("https url ok", validate_url("https://bob.example.com") is None)
    report("ftp url rejected", validate_url("ftp://bob.example.com") is not None)
    report("url without host rejected", validate_url("http://") is not None)


async def main() -> None:
    await run_suite("Agent Connect Auth & Rate Limit Tests", [
        ("1. Bearer accepted", test_bearer_accepts_exact_format),
        ("2. Bearer rejected", test_bearer_rejections),
        ("3. Message rate window", test_message_window),
        ("4. Pair-request window", test_pair_window),
        ("5. Sweep", test_sweep),
        ("6. Name and URL validation", test_validation),
    ])


if __name__ == "__main__":
    asyncio.run(main())
