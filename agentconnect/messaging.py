"""
Outbound messages and files, plus storage of inbound file payloads.

Depends on: config, models, errors, crypto, state, plugins, network/transport
"""

import base64
import binascii
import json
import mimetypes
import os
import sys
from pathlib import Path
from typing import Optional

from agentconnect.config import FILE_TIMEOUT, MAX_FILE_SIZE, MAX_FILENAME_BYTES, MESSAGE_TIMEOUT
from agentconnect.crypto import encrypt_message
from agentconnect.errors import ValidationFailure
from agentconnect.models import Direction, Message
from agentconnect.network.transport import SendResult, not_paired
from agentconnect.plugins import EventKind
from agentconnect.state import AgentState


def format_file_entry(filename: str, size: int, caption: str = "") -> str:
    """History line recorded in place of a file's bytes."""
    entry = f"[FILE: {filename} ({size / 1024:.1f}KB)]"
    return f"{entry} {caption}" if caption else entry


async def _deliver(state: AgentState, name: str, plaintext: str, history_text: str,
                   message_type: Optional[str], timeout: float) -> SendResult:
    peer = state.peers.get(name)
    if peer is None or not peer.is_paired:
        return not_paired(name)

    timestamp = state.now_iso()
    payload = {
        "from": state.name,
        "message": encrypt_message(plaintext, peer.shared_secret),
        "encrypted": True,
        "timestamp": timestamp,
    }
    if message_type:
        payload["message_type"] = message_type

    result = await state.transport.post(peer.endpoint_url, "/message", payload,
                                        token=peer.shared_secret, timeout=timeout)
    if not result.success:
        print(f"[AgentConnect] Delivery to {name} failed: {result.error}", file=sys.stderr)
        return result

    async with state.peer_lock(name):
        current = state.peers.get(name)
        if current is not None:
            current.append_history(Message(
                counterparty=state.name,
                content=history_text,
                timestamp=timestamp,
                direction=Direction.OUTGOING,
            ))
            current.last_message_at = timestamp
            state.peers.put(current)
    state.emit(EventKind.MESSAGE_OUT, name, preview=history_text[:200])
    return result


async def send_message(state: AgentState, name: str, text: str,
                       timeout: float = MESSAGE_TIMEOUT) -> SendResult:
    """Encrypt text with the peer's secret and deliver it to their /message."""
    if not text:
        raise ValidationFailure("Message is empty")
    return await _deliver(state, name, text, text, None, timeout)


async def send_file(state: AgentState, name: str, path, caption: str = "",
                    timeout: float = FILE_TIMEOUT) -> SendResult:
    """Send a file as an encrypted JSON envelope with message_type 'file'."""
    path = Path(path)
    if not path.is_file():
        raise ValidationFailure(f"File not found: {path}")
    size = path.stat().st_size
    if size > MAX_FILE_SIZE:
        raise ValidationFailure(
            f"File too large ({size / 1024 / 1024:.1f}MB, max {MAX_FILE_SIZE // (1024 * 1024)}MB)")

    mime = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
    envelope = json.dumps({
        "type": "file",
        "filename": path.name,
        "mime": mime,
        "size": size,
        "data": base64.b64encode(path.read_bytes()).decode("ascii"),
        "caption": caption,
    })
    return await _deliver(state, name, envelope, format_file_entry(path.name, size, caption),
                          "file", timeout)


def store_inbound_file(state: AgentState, peer_name: str, plaintext: str) -> tuple[str, str, int]:
    """Write a decrypted file envelope under files/<peer>/.

    Returns (history_text, filename, size). Only the basename of the sender's
    filename is used.
    """
    try:
        envelope = json.loads(plaintext)
        filename = os.path.basename(str(envelope["filename"]))
        data = base64.b64decode(envelope["data"], validate=True)
    except (ValueError, KeyError, TypeError, binascii.Error):
        raise ValidationFailure("Malformed file message")
    if not isinstance(envelope, dict) or filename in ("", ".", ".."):
        raise ValidationFailure("Malformed file message")
    if "\x00" in filename or len(filename.encode("utf-8", "surrogatepass")) > MAX_FILENAME_BYTES:
        raise ValidationFailure("Malformed file message")
    if len(data) > MAX_FILE_SIZE:
        raise ValidationFailure("File too large")

    directory = state.config.files_dir / peer_name
    try:
        directory.mkdir(parents=True, exist_ok=True)
        (directory / filename).write_bytes(data)
    except OSError as e:
        print(f"[AgentConnect] Could not store file from {peer_name}: {e}", file=sys.stderr)
        raise ValidationFailure("Malformed file message")
    caption = envelope.get("caption") or ""
    print(f"[AgentConnect] {peer_name} sent file: {filename} -> {directory}", file=sys.stderr)
    return format_file_entry(filename, len(data), caption), filename, len(data)
