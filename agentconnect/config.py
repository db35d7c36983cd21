"""
Configuration constants, environment variables, and runtime settings.

This is a leaf module with no internal dependencies.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

# =============================================================================
# Protocol
# =============================================================================

PROTOCOL_VERSION = "1.0.0"
DEFAULT_PORT = 3847
DEFAULT_HOST = "0.0.0.0"

# =============================================================================
# Limits
# =============================================================================

MAX_NAME_LENGTH = 64
MIN_TOKEN_LENGTH = 20
MAX_URL_LENGTH = 2048
HISTORY_MAX = 100
MAX_FILE_SIZE = 10 * 1024 * 1024       # 10 MB before encoding
MAX_FILENAME_BYTES = 255               # common filesystem name limit
MAX_BODY_BYTES = 20 * 1024 * 1024      # base64 + AEAD overhead on top of MAX_FILE_SIZE
REPLY_CONTEXT_MESSAGES = 10

# =============================================================================
# Rate Limiting
# =============================================================================

RATE_LIMIT_MAX = 10
RATE_LIMIT_WINDOW = 60           # seconds
PAIR_LIMIT_MAX = 5
PAIR_LIMIT_WINDOW = 600          # seconds
RATE_SWEEP_INTERVAL = 60         # seconds between expired-window sweeps

# =============================================================================
# Presence
# =============================================================================

HEARTBEAT_INTERVAL = 30          # seconds between liveness probes
ONLINE_THRESHOLD = 90            # 3x the probe period

# =============================================================================
# Outbound Timeouts (seconds)
# =============================================================================

PAIR_TIMEOUT = 10.0
MESSAGE_TIMEOUT = 15.0
FILE_TIMEOUT = 30.0
HEARTBEAT_TIMEOUT = 5.0
BROADCAST_TIMEOUT = 10.0
REPLY_COMMAND_TIMEOUT = 30.0

# =============================================================================
# Supervisor
# =============================================================================

RESTART_MIN_DELAY = 1.0
RESTART_MAX_DELAY = 60.0
HEALTHY_RUN_SECONDS = 300.0      # a run this long resets the backoff
SHUTDOWN_GRACE = 5               # seconds the router waits for in-flight requests

# =============================================================================
# Conversation defaults
# =============================================================================

FRIEND_MODES = ("manual", "auto")
DEFAULT_MAX_EXCHANGES = 6
DEFAULT_COOLDOWN_MINUTES = 30


def default_home() -> Path:
    return Path(os.environ.get("AGENTCONNECT_HOME", str(Path.home() / ".agentconnect")))


def load_env_file(path: Optional[Path] = None) -> None:
    """Load KEY=VALUE lines into os.environ without overriding variables already set."""
    path = path or default_home() / "agentconnect.env"
    try:
        lines = path.read_text().splitlines()
    except OSError:
        return
    for line in lines:
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key and key not in os.environ:
            os.environ[key] = value


@dataclass
class AgentConfig:
    """Settings for one running agent."""
    name: str
    port: int = DEFAULT_PORT
    host: str = DEFAULT_HOST
    public_url: Optional[str] = None
    mode: str = "manual"
    max_exchanges: int = DEFAULT_MAX_EXCHANGES
    cooldown_minutes: float = DEFAULT_COOLDOWN_MINUTES
    home: Optional[Path] = None
    reply_command: Optional[str] = None
    reply_args: tuple = ()
    reply_timeout: float = REPLY_COMMAND_TIMEOUT
    trust_proxy: bool = False

    def __post_init__(self):
        if self.home is None:
            self.home = default_home()
        self.home = Path(self.home)
        if self.mode not in FRIEND_MODES:
            raise ValueError(f"mode must be one of {FRIEND_MODES}, got {self.mode!r}")

    @property
    def peers_dir(self) -> Path:
        return self.home / "peers"

    @property
    def groups_dir(self) -> Path:
        return self.home / "groups"

    @property
    def files_dir(self) -> Path:
        return self.home / "files"

    @property
    def pid_file(self) -> Path:
        return self.home / "server.pid"

    @property
    def advertised_url(self) -> str:
        return self.public_url or f"http://localhost:{self.port}"


def load_config() -> AgentConfig:
    """Build an AgentConfig from AGENTCONNECT_* environment variables."""
    load_env_file()
    name = os.environ.get("AGENTCONNECT_NAME", "")
    if not name:
        raise ValueError("AGENTCONNECT_NAME is required")
    reply_args = os.environ.get("AGENTCONNECT_REPLY_ARGS", "")
    return AgentConfig(
        name=name,
        port=int(os.environ.get("AGENTCONNECT_PORT", str(DEFAULT_PORT))),
        host=os.environ.get("AGENTCONNECT_HOST", DEFAULT_HOST),
        public_url=os.environ.get("AGENTCONNECT_PUBLIC_URL") or None,
        mode=os.environ.get("AGENTCONNECT_MODE", "manual").lower(),
        max_exchanges=int(os.environ.get("AGENTCONNECT_MAX_EXCHANGES", str(DEFAULT_MAX_EXCHANGES))),
        cooldown_minutes=float(os.environ.get("AGENTCONNECT_COOLDOWN_MINUTES", str(DEFAULT_COOLDOWN_MINUTES))),
        home=default_home(),
        reply_command=os.environ.get("AGENTCONNECT_REPLY_COMMAND") or None,
        reply_args=tuple(reply_args.split()) if reply_args else (),
        reply_timeout=float(os.environ.get("AGENTCONNECT_REPLY_TIMEOUT", str(REPLY_COMMAND_TIMEOUT))),
        trust_proxy=os.environ.get("AGENTCONNECT_TRUST_PROXY", "").lower() in ("1", "true", "yes"),
    )
