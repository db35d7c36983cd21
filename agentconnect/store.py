"""
Record persistence: opaque JSON documents addressed by name, plus typed
peer/group wrappers.

Depends on: config, models, auth
"""

import fcntl
import json
import os
import sys
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from agentconnect.auth import validate_name
from agentconnect.models import (
    Direction,
    Group,
    Message,
    Peer,
    PeerOrigin,
    PeerStatus,
)


# =============================================================================
# Record stores
# =============================================================================

class RecordStore(ABC):
    """Key-value store of JSON documents."""

    @abstractmethod
    def load(self, name: str) -> Optional[dict]:
        ...

    @abstractmethod
    def save(self, name: str, record: dict) -> None:
        ...

    @abstractmethod
    def delete(self, name: str) -> bool:
        ...

    @abstractmethod
    def list_all(self) -> list[dict]:
        ...


class MemoryRecordStore(RecordStore):
    """Volatile store. Records are copied in and out so callers never share dicts."""

    def __init__(self):
        self._records: dict[str, str] = {}

    def load(self, name: str) -> Optional[dict]:
        raw = self._records.get(name)
        return json.loads(raw) if raw is not None else None

    def save(self, name: str, record: dict) -> None:
        self._records[name] = json.dumps(record)

    def delete(self, name: str) -> bool:
        return self._records.pop(name, None) is not None

    def list_all(self) -> list[dict]:
        return [json.loads(raw) for _, raw in sorted(self._records.items())]


class FileRecordStore(RecordStore):
    """One <name>.json per record in a directory. Writes are atomic."""

    def __init__(self, directory):
        self.directory = Path(directory)
        self._write_lock = threading.Lock()

    def _path(self, name: str) -> Path:
        err = validate_name(name)
        if err:
            raise ValueError(f"Invalid record name {name!r}: {err}")
        return self.directory / f"{name}.json"

    def load(self, name: str) -> Optional[dict]:
        path = self._path(name)
        if not path.exists():
            return None
        try:
            with open(path, "r") as f:
                return json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            print(f"[AgentConnect] Warning: could not load record {path}: {e}", file=sys.stderr)
            return None

    def save(self, name: str, record: dict) -> None:
        path = self._path(name)
        self.directory.mkdir(parents=True, exist_ok=True)
        tmp = str(path) + ".tmp"
        with self._write_lock:
            with open(tmp, "w") as f:
                fcntl.flock(f.fileno(), fcntl.LOCK_EX)
                try:
                    json.dump(record, f, indent=2)
                    f.flush()
                    os.fsync(f.fileno())
                finally:
                    fcntl.flock(f.fileno(), fcntl.LOCK_UN)
            os.replace(tmp, path)

    def delete(self, name: str) -> bool:
        path = self._path(name)
        with self._write_lock:
            try:
                path.unlink()
                return True
            except FileNotFoundError:
                return False

    def list_all(self) -> list[dict]:
        if not self.directory.is_dir():
            return []
        records = []
        for path in sorted(self.directory.glob("*.json")):
            record = self.load(path.stem)
            if record is not None:
                records.append(record)
        return records


# =============================================================================
# Serialization
# =============================================================================

def peer_to_dict(peer: Peer) -> dict:
    return {
        "name": peer.name,
        "webhook_url": peer.endpoint_url,
        "token": peer.shared_secret,
        "status": peer.status.value,
        "origin": peer.origin.value,
        "created_at": peer.created_at,
        "paired_at": peer.paired_at,
        "last_heartbeat": peer.last_heartbeat_at,
        "last_message_at": peer.last_message_at,
        "conversation_history": [
            {
                "from": m.counterparty,
                "message": m.content,
                "timestamp": m.timestamp,
                "direction": m.direction.value,
            }
            for m in peer.history
        ],
    }


def peer_from_dict(data: dict) -> Peer:
    return Peer(
        name=data["name"],
        endpoint_url=data.get("webhook_url", ""),
        shared_secret=data["token"],
        status=PeerStatus(data.get("status", PeerStatus.PENDING.value)),
        origin=PeerOrigin(data.get("origin", PeerOrigin.LOCAL.value)),
        created_at=data.get("created_at", ""),
        paired_at=data.get("paired_at"),
        last_heartbeat_at=data.get("last_heartbeat"),
        last_message_at=data.get("last_message_at"),
        history=[
            Message(
                counterparty=m.get("from", ""),
                content=m.get("message", ""),
                timestamp=m.get("timestamp", ""),
                direction=Direction(m.get("direction", Direction.INCOMING.value)),
            )
            for m in data.get("conversation_history", [])
        ],
    )


def group_to_dict(group: Group) -> dict:
    return {
        "name": group.name,
        "members": list(group.members),
        "created_by": group.created_by,
        "created_at": group.created_at,
    }


def group_from_dict(data: dict) -> Group:
    return Group(
        name=data["name"],
        members=list(data.get("members", [])),
        created_by=data.get("created_by", ""),
        created_at=data.get("created_at", ""),
    )


# =============================================================================
# Typed stores
# =============================================================================

class PeerStore:
    def __init__(self, records: RecordStore):
        self.records = records

    def get(self, name: str) -> Optional[Peer]:
        if validate_name(name):
            return None
        data = self.records.load(name)
        return peer_from_dict(data) if data else None

    def put(self, peer: Peer) -> None:
        self.records.save(peer.name, peer_to_dict(peer))

    def delete(self, name: str) -> bool:
        return self.records.delete(name)

    def all(self) -> list[Peer]:
        return [peer_from_dict(d) for d in self.records.list_all()]

    def paired(self) -> list[Peer]:
        return [p for p in self.all() if p.is_paired]


class GroupStore:
    def __init__(self, records: RecordStore):
        self.records = records

    def get(self, name: str) -> Optional[Group]:
        if validate_name(name):
            return None
        data = self.records.load(name)
        return group_from_dict(data) if data else None

    def put(self, group: Group) -> None:
        self.records.save(group.name, group_to_dict(group))

    def delete(self, name: str) -> bool:
        return self.records.delete(name)

    def all(self) -> list[Group]:
        return [group_from_dict(d) for d in self.records.list_all()]
