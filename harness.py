"""
Shared helpers for the test scripts: coloured check reporting, an in-process
mesh that routes httpx requests to ASGI apps by hostname, and agent factories.

Standalone test modules import from here; each still runs directly
(python3 test_router.py) or under pytest.
"""

import shutil
import sys
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

import httpx
from httpx import ASGITransport

from agentconnect.app import create_app
from agentconnect.config import AgentConfig
from agentconnect.network.transport import PeerTransport
from agentconnect.pairing import accept, initiate
from agentconnect.plugins import Event, NotificationSink, ReplyContext, ReplyGenerator
from agentconnect.state import AgentState

# ---------------------------------------------------------------------------
# Reporting
# ---------------------------------------------------------------------------

GREEN = "\033[92m"
RED = "\033[91m"
BOLD = "\033[1m"
RESET = "\033[0m"

results: list[tuple[str, bool, str]] = []


def report(name: str, passed: bool, detail: str = "") -> None:
    """Print a check and fail loudly so pytest sees it too."""
    mark = f"{GREEN}✓{RESET}" if passed else f"{RED}✗{RESET}"
    print(f"  {mark} {name}")
    if detail and not passed:
        print(f"      {detail}")
    results.append((name, passed, detail))
    assert passed, f"{name}: {detail}"


async def run_suite(title: str, tests: list) -> None:
    print(f"\n{BOLD}{title}{RESET}\n")
    for label, test_fn in tests:
        print(f"\n{BOLD}{label}{RESET}")
        try:
            await test_fn()
        except AssertionError as e:
            if not results or results[-1][1]:
                print(f"  {RED}✗{RESET} {label}\n      {e}")
                results.append((label, False, str(e)))
        except Exception as e:
            print(f"  {RED}✗{RESET} {label}\n      EXCEPTION: {type(e).__name__}: {e}")
            results.append((label, False, str(e)))

    passed = sum(1 for _, ok, _ in results if ok)
    total = len(results)
    print(f"\n{'─' * 40}")
    if passed == total:
        print(f"{GREEN}{BOLD}All {total} checks passed.{RESET}")
    else:
        print(f"{RED}{BOLD}{total - passed}/{total} checks failed.{RESET}")
    sys.exit(0 if passed == total else 1)


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class MeshTransport(httpx.AsyncBaseTransport):
    """Routes requests to registered in-process apps by hostname.

    Hosts in `down` (or never registered) fail like an unreachable server.
    """

    def __init__(self):
        self.apps: dict[str, ASGITransport] = {}
        self.down: set[str] = set()

    def register(self, host: str, app) -> None:
        self.apps[host] = ASGITransport(app=app)

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        host = request.url.host
        if host in self.down or host not in self.apps:
            raise httpx.ConnectError(f"Connection refused: {host}", request=request)
        return await self.apps[host].handle_async_request(request)


class RecordingSink(NotificationSink):
    def __init__(self):
        self.events: list[Event] = []

    async def notify(self, event: Event) -> None:
        self.events.append(event)

    def kinds(self) -> list[str]:
        return [e.kind.value for e in self.events]


class EchoReplyGenerator(ReplyGenerator):
    def __init__(self):
        self.contexts: list[ReplyContext] = []

    async def generate_reply(self, context: ReplyContext) -> Optional[str]:
        self.contexts.append(context)
        return f"echo: {context.latest_message}"


class FakeClock:
    """Settable wall clock (datetime) for AgentState.clock."""

    def __init__(self, start: Optional[datetime] = None):
        self.current = start or datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)


class FakeMonotonic:
    def __init__(self, start: float = 1000.0):
        self.current = start

    def __call__(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds


# ---------------------------------------------------------------------------
# Agents
# ---------------------------------------------------------------------------

class Workspace:
    """Temp home directories for a set of agents sharing one mesh."""

    def __init__(self):
        self.root = Path(tempfile.mkdtemp(prefix="ac_test_"))
        self.mesh = MeshTransport()

    def agent(self, name: str, **overrides) -> tuple[AgentState, object, RecordingSink]:
        sink = RecordingSink()
        state_kwargs = {
            key: overrides.pop(key)
            for key in ("reply_generator", "clock", "monotonic")
            if key in overrides
        }
        config = AgentConfig(
            name=name,
            public_url=f"http://{name}.test",
            home=self.root / name,
            **overrides,
        )
        state = AgentState(config, transport=PeerTransport(self.mesh), notifier=sink, **state_kwargs)
        app = create_app(state, background=False)
        self.mesh.register(f"{name}.test", app)
        return state, app, sink

    def cleanup(self) -> None:
        shutil.rmtree(self.root, ignore_errors=True)


def client(app) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


async def pair(a: AgentState, b: AgentState) -> None:
    """a initiates, b accepts, and the acceptance reaches a."""
    _, sent = await initiate(a, b.name, b.public_url())
    assert sent.success, f"pair request failed: {sent.error}"
    result = await accept(b, a.name)
    if result.notification is not None:
        await result.notification
    await a.drain()
    await b.drain()
