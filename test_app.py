#!/usr/bin/env python3
"""
Application lifecycle tests: the lifespan (PID file, service events,
background loops), the rate-window sweep loop, and environment loading.

Usage:
    python3 test_app.py
"""

import asyncio
import os
import shutil
import tempfile
from pathlib import Path

import agentconnect.state as state_module
from agentconnect.app import create_app
from agentconnect.config import RATE_LIMIT_WINDOW, load_config, load_env_file
from agentconnect.state import sweep_loop
from harness import FakeMonotonic, Workspace, pair, report, run_suite

LOOP_NAMES = {"heartbeat_loop", "sweep_loop"}


def _coro_name(task: asyncio.Task) -> str:
    return getattr(task.get_coro(), "__name__", "")


def _loop_tasks() -> list[asyncio.Task]:
    return [t for t in asyncio.all_tasks() if _coro_name(t) in LOOP_NAMES]


async def test_lifespan() -> None:
    ws = Workspace()
    try:
        alice, _, alice_sink = ws.agent("alice")
        bob, _, _ = ws.agent("bob")
        await pair(alice, bob)
        app = create_app(alice)
        pid_file = alice.config.pid_file

        async with app.router.lifespan_context(app):
            report("PID file written on startup",
                   pid_file.exists() and pid_file.read_text() == str(os.getpid()))
            loops = _loop_tasks()
            report("heartbeat and sweep loops running",
                   sorted(_coro_name(t) for t in loops) == sorted(LOOP_NAMES),
                   f"got: {[_coro_name(t) for t in loops]}")
            for _ in range(40):
                if bob.peers.get("alice").last_heartbeat_at:
                    break
                await asyncio.sleep(0.05)
            report("first heartbeat round fires at startup",
                   bob.peers.get("alice").last_heartbeat_at is not None)
            await alice.drain()
            report("service_started raised", "service_started" in alice_sink.kinds())

        report("loops finished on shutdown", all(t.done() for t in loops))
        report("service_stopped raised", "service_stopped" in alice_sink.kinds())
        report("PID file removed on shutdown", not pid_file.exists())
    finally:
        ws.cleanup()


async def test_sweep_loop() -> None:
    ws = Workspace()
    original = state_module.RATE_SWEEP_INTERVAL
    state_module.RATE_SWEEP_INTERVAL = 0.01
    try:
        monotonic = FakeMonotonic()
        alice, _, _ = ws.agent("alice", monotonic=monotonic)
        alice.message_limiter.check("bob")
        alice.pair_limiter.check("198.51.100.7")
        report("windows tracked", len(alice.message_limiter) == 1 and len(alice.pair_limiter) == 1)

        monotonic.advance(RATE_LIMIT_WINDOW)
        task = asyncio.create_task(sweep_loop(alice))
        for _ in range(40):
            if not len(alice.message_limiter):
                break
            await asyncio.sleep(0.02)
        report("expired message window evicted", len(alice.message_limiter) == 0)
        report("unexpired pair window kept", len(alice.pair_limiter) == 1)

        task.cancel()
        await asyncio.wait_for(task, timeout=2)
        report("sweep loop returns quietly on cancel", task.done() and not task.cancelled())
    finally:
        state_module.RATE_SWEEP_INTERVAL = original
        ws.cleanup()


async def test_env_file_and_config() -> None:
    saved = dict(os.environ)
    root = Path(tempfile.mkdtemp(prefix="ac_env_"))
    try:
        for key in list(os.environ):
            if key.startswith("AGENTCONNECT_"):
                del os.environ[key]
        os.environ["AGENTCONNECT_HOME"] = str(root)
        os.environ["AGENTCONNECT_NAME"] = "from-shell"
        (root / "agentconnect.env").write_text(
            "# agent settings\n"
            "AGENTCONNECT_NAME=from-file\n"
            "AGENTCONNECT_PORT=4100\n"
            "AGENTCONNECT_MODE=\"AUTO\"\n"
            "AGENTCONNECT_TRUST_PROXY=true\n"
            "not a setting\n"
        )

        config = load_config()
        report("variables already set win over the env file", config.name == "from-shell")
        report("env file fills unset variables", config.port == 4100 and config.mode == "auto",
               f"port={config.port} mode={config.mode}")
        report("proxy trust read from the environment", config.trust_proxy is True)
        report("home taken from AGENTCONNECT_HOME", config.home == root)

        os.environ["AGENTCONNECT_PORT"] = "5200"
        load_env_file(root / "agentconnect.env")
        report("reloading never overrides", os.environ["AGENTCONNECT_PORT"] == "5200")

        load_env_file(root / "missing.env")
        report("missing env file is ignored", os.environ["AGENTCONNECT_NAME"] == "from-shell")

        del os.environ["AGENTCONNECT_NAME"]
        (root / "agentconnect.env").write_text("AGENTCONNECT_PORT=4100\n")
        try:
            load_config()
            raised = False
        except ValueError:
            raised = True
        report("missing agent name -> ValueError", raised)
    finally:
        os.environ.clear()
        os.environ.update(saved)
        shutil.rmtree(root, ignore_errors=True)


async def main() -> None:
    await run_suite("Agent Connect App Tests", [
        ("1. Lifespan", test_lifespan),
        ("2. Sweep loop", test_sweep_loop),
        ("3. Env file and config", test_env_file_and_config),
    ])


if __name__ == "__main__":
    asyncio.run(main())
