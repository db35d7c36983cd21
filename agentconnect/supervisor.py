"""
Process supervisor: runs the router as a child process and restarts it when
it exits, with exponential backoff. A run longer than HEALTHY_RUN_SECONDS
resets the backoff so an isolated fault after a healthy stretch restarts
promptly while a crash loop slows down.

Depends on: config, app (PID file helpers)
"""

import asyncio
import os
import signal
import sys
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Awaitable, Callable, Optional, Sequence

from agentconnect.app import remove_pid_file, write_pid_file
from agentconnect.config import (
    HEALTHY_RUN_SECONDS,
    RESTART_MAX_DELAY,
    RESTART_MIN_DELAY,
    default_home,
)

STOP_GRACE = 2.0           # seconds between SIGTERM and SIGKILL for stop_process
CHILD_STOP_TIMEOUT = 10.0   # longer than the router's own shutdown grace


class RestartBackoff:
    """Delay before the next restart: 1s, 2s, 4s ... capped, reset after a healthy run."""

    def __init__(self, min_delay: float = RESTART_MIN_DELAY,
                 max_delay: float = RESTART_MAX_DELAY,
                 healthy_after: float = HEALTHY_RUN_SECONDS):
        self.min_delay = min_delay
        self.max_delay = max_delay
        self.healthy_after = healthy_after
        self.delay = min_delay
        self.restarts = 0

    def next_delay(self, runtime: float) -> float:
        if runtime > self.healthy_after:
            self.delay = self.min_delay
            self.restarts = 0
        self.restarts += 1
        delay = self.delay
        self.delay = min(self.delay * 2, self.max_delay)
        return delay


class Supervisor:
    """Keeps one child process running until stop() is called."""

    def __init__(self, command: Sequence[str], log_file: Optional[Path] = None,
                 backoff: Optional[RestartBackoff] = None,
                 sleep: Callable[[float], Awaitable] = asyncio.sleep,
                 clock: Callable[[], float] = time.monotonic,
                 env: Optional[dict] = None):
        self.command = list(command)
        self.log_file = Path(log_file) if log_file else None
        self.backoff = backoff or RestartBackoff()
        self.sleep = sleep
        self.clock = clock
        self.env = env
        self.delays: list[float] = []
        self._process: Optional[asyncio.subprocess.Process] = None
        self._stopping = False
        self._stopped = asyncio.Event()

    def log(self, msg: str) -> None:
        line = f"[watchdog {datetime.now(timezone.utc).isoformat()}] {msg}"
        print(line, flush=True)
        if self.log_file:
            try:
                self.log_file.parent.mkdir(parents=True, exist_ok=True)
                with open(self.log_file, "a") as f:
                    f.write(line + "\n")
            except OSError as e:
                print(f"[watchdog] Could not write log file: {e}", file=sys.stderr)

    async def run_once(self) -> tuple[Optional[int], float]:
        """Start the child and wait for it to exit. Returns (returncode, runtime seconds)."""
        attempt = self.backoff.restarts + 1
        self.log(f"Starting server (attempt #{attempt})...")
        started = self.clock()
        log_handle = open(self.log_file, "ab") if self.log_file else None
        try:
            out = log_handle if log_handle else asyncio.subprocess.DEVNULL
            try:
                self._process = await asyncio.create_subprocess_exec(
                    *self.command,
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=out,
                    stderr=out,
                    env=self.env,
                )
            except OSError as e:
                self.log(f"Failed to start server: {e}")
                return None, self.clock() - started
            returncode = await self._process.wait()
        finally:
            self._process = None
            if log_handle:
                log_handle.close()
        runtime = self.clock() - started
        self.log(f"Server exited (code: {returncode}) after {int(runtime)}s")
        return returncode, runtime

    async def run(self) -> None:
        self.log("Watchdog started")
        while not self._stopping:
            _, runtime = await self.run_once()
            if self._stopping:
                break
            delay = self.backoff.next_delay(runtime)
            self.delays.append(delay)
            self.log(f"Restarting in {delay:g}s...")
            await self._pause(delay)
        self.log("Watchdog stopped")

    async def _pause(self, delay: float) -> None:
        """Sleep before the next restart, returning early if stop() is called."""
        sleeper = asyncio.ensure_future(self.sleep(delay))
        stopper = asyncio.ensure_future(self._stopped.wait())
        _, pending = await asyncio.wait({sleeper, stopper}, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

    def stop(self) -> None:
        """Stop restarting and terminate the running child, if any."""
        self._stopping = True
        self._stopped.set()
        if self._process is not None and self._process.returncode is None:
            asyncio.ensure_future(self._terminate(self._process))

    async def _terminate(self, process: asyncio.subprocess.Process) -> None:
        try:
            process.terminate()
            await asyncio.wait_for(process.wait(), CHILD_STOP_TIMEOUT)
        except ProcessLookupError:
            return
        except asyncio.TimeoutError:
            self.log(f"Server PID {process.pid} ignored SIGTERM, killing")
            process.kill()


def stop_process(pid_file: Path, grace: float = STOP_GRACE) -> bool:
    """SIGTERM the process named in pid_file, SIGKILL it if it outlives grace.
    Returns True if a live process was signalled."""
    try:
        pid = int(Path(pid_file).read_text().strip())
    except FileNotFoundError:
        return False
    except ValueError:
        remove_pid_file(Path(pid_file))
        return False

    try:
        os.kill(pid, signal.SIGTERM)
    except ProcessLookupError:
        remove_pid_file(Path(pid_file))
        return False

    deadline = time.monotonic() + grace
    while time.monotonic() < deadline:
        try:
            os.kill(pid, 0)
        except ProcessLookupError:
            break
        time.sleep(0.1)
    else:
        try:
            os.kill(pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
    remove_pid_file(Path(pid_file))
    return True


# =============================================================================
# Entry points
# =============================================================================

async def _supervise(supervisor: Supervisor) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, supervisor.stop)
    await supervisor.run()


def main() -> None:
    home = default_home()
    pid_file = home / "watchdog.pid"
    supervisor = Supervisor(
        command=[sys.executable, "-m", "agentconnect"],
        log_file=home / "agentconnect.log",
    )
    write_pid_file(pid_file)
    try:
        asyncio.run(_supervise(supervisor))
    finally:
        remove_pid_file(pid_file)


def stop_main() -> None:
    """Stop a running watchdog (if any), then the server."""
    home = default_home()
    stopped_watchdog = stop_process(home / "watchdog.pid")
    stopped_server = stop_process(home / "server.pid")
    if stopped_watchdog or stopped_server:
        print("[AgentConnect] Stopped.")
    else:
        print("[AgentConnect] Server is not running (no live PID file found).")


if __name__ == "__main__":
    main()
