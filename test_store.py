#!/usr/bin/env python3
"""
Storage tests: file and memory record stores, peer serialization, history cap.

Usage:
    python3 test_store.py
"""

import asyncio
import json
import shutil
import tempfile
from pathlib import Path

from agentconnect.config import HISTORY_MAX
from agentconnect.models import Direction, Message, Peer, PeerOrigin, PeerStatus
from agentconnect.store import FileRecordStore, MemoryRecordStore, PeerStore
from harness import report, run_suite


def _peer(name: str = "bob") -> Peer:
    return Peer(name=name, endpoint_url="https://bob.example.com", shared_secret="s" * 64,
                status=PeerStatus.PAIRED, origin=PeerOrigin.REMOTE,
                paired_at="2026-01-01T00:00:00+00:00")


async def test_file_store_crud() -> None:
    root = Path(tempfile.mkdtemp(prefix="ac_store_"))
    try:
        store = FileRecordStore(root / "peers")
        report("missing record loads as None", store.load("bob") is None)
        report("list_all on missing directory is empty", store.list_all() == [])

        store.save("bob", {"name": "bob", "n": 1})
        store.save("alice", {"name": "alice", "n": 2})
        report("saved record loads back", store.load("bob") == {"name": "bob", "n": 1})
        report("no temp files left behind", not list((root / "peers").glob("*.tmp")))
        report("list_all returns every record", sorted(r["name"] for r in store.list_all()) == ["alice", "bob"])

        report("delete existing returns True", store.delete("bob") is True)
        report("delete missing returns False", store.delete("bob") is False)

        (root / "peers" / "broken.json").write_text("{not json")
        report("corrupt record loads as None", store.load("broken") is None)

        try:
            store.save("../escape", {})
            escaped = True
        except ValueError:
            escaped = False
        report("path-traversal names refused", not escaped)
    finally:
        shutil.rmtree(root, ignore_errors=True)


async def test_memory_store_isolation() -> None:
    store = MemoryRecordStore()
    record = {"name": "bob", "members": ["a"]}
    store.save("bob", record)
    record["members"].append("b")
    loaded = store.load("bob")
    loaded["members"].append("c")
    report("memory store copies in and out", store.load("bob")["members"] == ["a"])


async def test_peer_serialization() -> None:
    root = Path(tempfile.mkdtemp(prefix="ac_store_"))
    try:
        peers = PeerStore(FileRecordStore(root))
        peer = _peer()
        peer.append_history(Message("bob", "hi", "2026-01-01T00:00:01+00:00", Direction.INCOMING))
        peers.put(peer)

        raw = json.loads((root / "bob.json").read_text())
        report("on-disk keys", {"webhook_url", "token", "status", "conversation_history"} <= set(raw))
        restored = peers.get("bob")
        report("peer round-trips through the store", restored == peer)
        report("invalid names resolve to None", peers.get("no/such") is None)
        report("paired() filters by status", [p.name for p in peers.paired()] == ["bob"])
    finally:
        shutil.rmtree(root, ignore_errors=True)


async def test_history_cap() -> None:
    peer = _peer()
    for i in range(HISTORY_MAX + 25):
        peer.append_history(Message("bob", f"m{i}", f"2026-01-01T00:00:{i % 60:02d}+00:00",
                                    Direction.INCOMING))
    report("history never exceeds 100", len(peer.history) == HISTORY_MAX)
    report("oldest entries evicted first",
           peer.history[0].content == "m25" and peer.history[-1].content == f"m{HISTORY_MAX + 24}")


async def main() -> None:
    await run_suite("Agent Connect Storage Tests", [
        ("1. File store CRUD", test_file_store_crud),
        ("2. Memory store isolation", test_memory_store_isolation),
        ("3. Peer serialization", test_peer_serialization),
        ("4. History cap", test_history_cap),
    ])


if __name__ == "__main__":
    asyncio.run(main())
