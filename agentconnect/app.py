"""
Application composition root: create_app(), lifespan hooks, main entry point.

Depends on: everything (this is where the pieces are wired together)
"""

import asyncio
import contextlib
import os
import sys
from pathlib import Path
from typing import Optional

import anyio
import uvicorn
from starlette.applications import Starlette
from starlette.routing import Route

from agentconnect.config import (
    HEARTBEAT_INTERVAL,
    PROTOCOL_VERSION,
    SHUTDOWN_GRACE,
    load_config,
)
from agentconnect.network.mesh import (
    handle_health,
    handle_heartbeat,
    handle_message,
    handle_method_not_allowed,
    handle_not_found,
    handle_pair_accept,
    handle_pair_request,
)
from agentconnect.network.presence import heartbeat_loop
from agentconnect.plugins import EventKind
from agentconnect.state import AgentState, sweep_loop


# =============================================================================
# PID file
# =============================================================================

def write_pid_file(path: Path, pid: Optional[int] = None) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(str(pid or os.getpid()))


def remove_pid_file(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass


# =============================================================================
# App factory
# =============================================================================

def create_app(state: AgentState, background: bool = True) -> Starlette:
    """Build the ASGI app for one agent.

    background: start the heartbeat and rate-sweep loops in the lifespan.
    """

    @contextlib.asynccontextmanager
    async def lifespan(app):
        loops = []
        if background:
            loops.append(asyncio.create_task(heartbeat_loop(state)))
            loops.append(asyncio.create_task(sweep_loop(state)))
            print(f"[AgentConnect] Heartbeat: ENABLED ({HEARTBEAT_INTERVAL}s interval)", file=sys.stderr)
        write_pid_file(state.config.pid_file)
        state.emit(EventKind.SERVICE_STARTED, url=state.public_url())
        try:
            yield
        finally:
            for task in loops:
                task.cancel()
            await asyncio.gather(*loops, return_exceptions=True)
            await state.emit(EventKind.SERVICE_STOPPED)
            await state.cancel_background()
            remove_pid_file(state.config.pid_file)
            print("[AgentConnect] Server stopped", file=sys.stderr)

    app = Starlette(
        routes=[
            Route("/health", handle_health, methods=["GET"]),
            Route("/pair-request", handle_pair_request, methods=["POST"]),
            Route("/pair-accept", handle_pair_accept, methods=["POST"]),
            Route("/message", handle_message, methods=["POST"]),
            Route("/heartbeat", handle_heartbeat, methods=["POST"]),
        ],
        exception_handlers={
            404: handle_not_found,
            405: handle_method_not_allowed,
        },
        lifespan=lifespan,
    )
    app.state.agent = state
    return app


# =============================================================================
# Startup banner
# =============================================================================

def print_startup_banner(state: AgentState) -> None:
    config = state.config
    print(f"[AgentConnect] Agent Connect v{PROTOCOL_VERSION} starting", file=sys.stderr)
    print(f"[AgentConnect] Agent: {config.name}", file=sys.stderr)
    print(f"[AgentConnect] Local: http://localhost:{config.port}", file=sys.stderr)
    print(f"[AgentConnect] Public: {state.public_url()}", file=sys.stderr)
    print(f"[AgentConnect] Mode: {config.mode} (max {config.max_exchanges} exchanges "
          f"per {config.cooldown_minutes:g}min)", file=sys.stderr)
    replies = config.reply_command or "none (manual handling)"
    print(f"[AgentConnect] Reply command: {replies}", file=sys.stderr)


# =============================================================================
# Main entry point
# =============================================================================

async def serve(state: AgentState) -> None:
    app = create_app(state)
    config = uvicorn.Config(
        app,
        host=state.config.host,
        port=state.config.port,
        log_level="warning",
        timeout_graceful_shutdown=SHUTDOWN_GRACE,
    )
    await uvicorn.Server(config).serve()


def main() -> None:
    """Entry point: load configuration from the environment and serve."""
    try:
        config = load_config()
    except ValueError as e:
        print(f"[AgentConnect] Configuration error: {e}", file=sys.stderr)
        sys.exit(1)
    state = AgentState(config)
    print_startup_banner(state)
    anyio.run(serve, state)


if __name__ == "__main__":
    main()
