"""
Inbound protocol handlers: /health, /pair-request, /pair-accept, /message,
/heartbeat.

Convention: process_* takes (state, data, ...) and returns (response_dict,
status_code), raising AgentConnectError for protocol failures. handle_*
binds a Starlette request to the matching process_* and is wrapped by
isolated(), so no handler fault ever escapes the router.

Depends on: config, models, errors, auth, crypto, schemas, state, pairing,
            cooldown, messaging, conversation, plugins, network/presence
"""

import functools
import json
import math
import sys
from typing import Optional

from starlette.requests import Request
from starlette.responses import JSONResponse

from agentconnect.config import MAX_BODY_BYTES, PROTOCOL_VERSION
from agentconnect.conversation import maybe_auto_reply
from agentconnect.cooldown import evaluate_cooldown
from agentconnect.crypto import decrypt_message
from agentconnect.errors import (
    AgentConnectError,
    DecryptionFailure,
    PayloadTooLarge,
    RateLimitFailure,
    UnsupportedMediaType,
    ValidationFailure,
)
from agentconnect.messaging import store_inbound_file
from agentconnect.models import Direction, Message
from agentconnect.network.presence import record_heartbeat
from agentconnect.pairing import authenticate, receive_accept, receive_request
from agentconnect.plugins import EventKind
from agentconnect.schemas import (
    HeartbeatBody,
    MessageBody,
    PairAcceptBody,
    PairRequestBody,
    parse_body,
)
from agentconnect.state import AgentState

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Cache-Control": "no-store",
}


def json_response(data: dict, status_code: int = 200, headers: Optional[dict] = None) -> JSONResponse:
    merged = dict(SECURITY_HEADERS)
    if headers:
        merged.update(headers)
    return JSONResponse(data, status_code=status_code, headers=merged)


def error_response(err: AgentConnectError) -> JSONResponse:
    headers = None
    if isinstance(err, RateLimitFailure):
        headers = {"Retry-After": str(max(1, math.ceil(err.retry_after_ms / 1000)))}
    return json_response(err.to_dict(), err.status_code, headers)


def isolated(handler):
    """Map protocol failures to {error} responses and anything else to a generic 500."""
    @functools.wraps(handler)
    async def wrapper(request: Request):
        try:
            return await handler(request)
        except AgentConnectError as e:
            return error_response(e)
        except Exception as e:
            print(f"[AgentConnect] Error handling {request.url.path}: {type(e).__name__}: {e}",
                  file=sys.stderr)
            return json_response({"error": "Internal server error"}, 500)
    return wrapper


# =============================================================================
# Request helpers
# =============================================================================

def _state(request: Request) -> AgentState:
    return request.app.state.agent


def client_address(request: Request, trust_proxy: bool = False) -> str:
    """Source address for per-IP limits.

    Forwarding headers (CF-Connecting-IP, then X-Forwarded-For) are honoured only
    with AGENTCONNECT_TRUST_PROXY set; otherwise the socket address is used.
    """
    if trust_proxy:
        cf = request.headers.get("cf-connecting-ip")
        if cf:
            return cf.strip()
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            return forwarded.split(",")[0].strip()
    if request.client:
        return request.client.host
    return "unknown"


def require_json(request: Request) -> None:
    if "application/json" not in request.headers.get("content-type", ""):
        raise UnsupportedMediaType("Content-Type must be application/json")


async def read_json(request: Request):
    """Read and decode the body, refusing anything over MAX_BODY_BYTES."""
    declared = request.headers.get("content-length", "")
    if declared.isdigit() and int(declared) > MAX_BODY_BYTES:
        raise PayloadTooLarge("Request body too large")
    body = bytearray()
    async for chunk in request.stream():
        body.extend(chunk)
        if len(body) > MAX_BODY_BYTES:
            raise PayloadTooLarge("Request body too large")
    if not body:
        return {}
    try:
        return json.loads(body)
    except ValueError:
        raise ValidationFailure("Invalid JSON body")


# =============================================================================
# Shared logic
# =============================================================================

def process_health(state: AgentState) -> tuple[dict, int]:
    return {
        "status": "ok",
        "agent": state.name,
        "uptime": int(state.uptime()),
        "version": PROTOCOL_VERSION,
    }, 200


def check_pair_limit(state: AgentState, address: str) -> None:
    decision = state.pair_limiter.check(address)
    if not decision.allowed:
        raise RateLimitFailure("Too many pair requests. Try again later.", decision.retry_after_ms)


async def process_pair_request(state: AgentState, data) -> tuple[dict, int]:
    body = parse_body(PairRequestBody, data)
    await receive_request(state, body.sender, body.token, body.webhook_url)
    return {
        "status": "pending",
        "message": f"Pair request received. Waiting for {state.name} to accept.",
    }, 200


async def process_pair_accept(state: AgentState, data, authorization: Optional[str]) -> tuple[dict, int]:
    body = parse_body(PairAcceptBody, data)
    await receive_accept(state, body.sender, authorization, body.webhook_url)
    return {"status": "paired", "message": f"Now paired with {body.sender}"}, 200


async def process_message(state: AgentState, data, authorization: Optional[str]) -> tuple[dict, int]:
    """Authenticate, rate-limit, decrypt, record, then maybe trigger a reply.

    Cooldown is evaluated on the history as it stood before this message.
    """
    body = parse_body(MessageBody, data)
    name = body.sender

    async with state.peer_lock(name):
        peer = authenticate(state, name, authorization)

        decision = state.message_limiter.check(name)
        if not decision.allowed:
            raise RateLimitFailure("Rate limit exceeded", decision.retry_after_ms)

        plaintext = body.message
        if body.encrypted:
            plaintext = decrypt_message(body.message, peer.shared_secret)
            if plaintext is None:
                raise DecryptionFailure()

        file_info = None
        if body.message_type == "file":
            plaintext, filename, size = store_inbound_file(state, name, plaintext)
            file_info = {"filename": filename, "size": size}

        now = state.now()
        cooldown = evaluate_cooldown(peer.history, now, state.config.max_exchanges,
                                     state.config.cooldown_minutes)
        received_at = now.isoformat()
        peer.append_history(Message(
            counterparty=name,
            content=plaintext,
            timestamp=received_at,
            direction=Direction.INCOMING,
        ))
        peer.last_message_at = received_at
        state.peers.put(peer)

    if file_info:
        state.emit(EventKind.FILE_RECEIVED, name, **file_info)
    else:
        state.emit(EventKind.MESSAGE_IN, name, preview=plaintext[:200])
    maybe_auto_reply(state, peer, plaintext, cooldown)

    return {
        "status": "delivered",
        "message": "Message received",
        "remaining": decision.remaining,
    }, 200


async def process_heartbeat(state: AgentState, data, authorization: Optional[str]) -> tuple[dict, int]:
    body = parse_body(HeartbeatBody, data)
    async with state.peer_lock(body.sender):
        peer = authenticate(state, body.sender, authorization)
        record_heartbeat(state, peer)
    return {"status": "ok"}, 200


# =============================================================================
# Starlette handlers
# =============================================================================

@isolated
async def handle_health(request: Request) -> JSONResponse:
    result, status = process_health(_state(request))
    return json_response(result, status)


@isolated
async def handle_pair_request(request: Request) -> JSONResponse:
    require_json(request)
    state = _state(request)
    check_pair_limit(state, client_address(request, state.config.trust_proxy))
    data = await read_json(request)
    result, status = await process_pair_request(state, data)
    return json_response(result, status)


@isolated
async def handle_pair_accept(request: Request) -> JSONResponse:
    require_json(request)
    data = await read_json(request)
    result, status = await process_pair_accept(
        _state(request), data, request.headers.get("authorization"))
    return json_response(result, status)


@isolated
async def handle_message(request: Request) -> JSONResponse:
    require_json(request)
    data = await read_json(request)
    result, status = await process_message(
        _state(request), data, request.headers.get("authorization"))
    return json_response(result, status)


@isolated
async def handle_heartbeat(request: Request) -> JSONResponse:
    require_json(request)
    data = await read_json(request)
    result, status = await process_heartbeat(
        _state(request), data, request.headers.get("authorization"))
    return json_response(result, status)


async def handle_not_found(request: Request, exc) -> JSONResponse:
    return json_response({"error": "Not found"}, 404)


async def handle_method_not_allowed(request: Request, exc) -> JSONResponse:
    return json_response({"error": "Method not allowed"}, 405)
