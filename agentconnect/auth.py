"""
Bearer-token verification, fixed-window rate limiting, and input validation.

Depends on: config, models
"""

import hmac
import re
import time
from dataclasses import dataclass
from typing import Callable, Optional
from urllib.parse import urlparse

from agentconnect.config import MAX_NAME_LENGTH, MAX_URL_LENGTH, MIN_TOKEN_LENGTH
from agentconnect.models import RateWindow

NAME_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+$")


# =============================================================================
# Validation
# =============================================================================

def validate_name(name: str) -> Optional[str]:
    """Validate a peer or group name. Returns error string or None."""
    if not isinstance(name, str) or not name:
        return "Name is required."
    if len(name) > MAX_NAME_LENGTH:
        return f"Name exceeds maximum length ({MAX_NAME_LENGTH} chars)."
    if not NAME_PATTERN.match(name):
        return "Name may only contain letters, digits, '-' and '_'."
    return None


def validate_url(url: str) -> Optional[str]:
    """Validate that a URL uses http or https scheme. Returns error string or None."""
    if len(url) > MAX_URL_LENGTH:
        return f"URL exceeds maximum length ({MAX_URL_LENGTH} chars)."
    try:
        parsed = urlparse(url)
    except ValueError:
        return "Invalid URL."
    if parsed.scheme not in ("http", "https"):
        return f"URL scheme must be http or https, got '{parsed.scheme}'."
    if not parsed.hostname:
        return "URL has no hostname."
    return None


# =============================================================================
# Bearer tokens
# =============================================================================

@dataclass
class AuthResult:
    valid: bool
    error: Optional[str] = None


def extract_bearer(header: Optional[str]) -> Optional[str]:
    """Return the token from an exact 'Bearer <token>' header, else None."""
    if not header:
        return None
    parts = header.split(" ")
    if len(parts) != 2 or parts[0] != "Bearer" or not parts[1]:
        return None
    return parts[1]


def tokens_match(token: str, expected: str) -> bool:
    a = token.encode("utf-8")
    b = expected.encode("utf-8")
    if len(a) != len(b):
        # Still run a full comparison so the rejection costs the same.
        hmac.compare_digest(b, b)
        return False
    return hmac.compare_digest(a, b)


def verify_bearer_token(header: Optional[str], expected: Optional[str]) -> AuthResult:
    if not header:
        return AuthResult(False, "Missing authorization header")
    token = extract_bearer(header)
    if token is None:
        return AuthResult(False, "Invalid authorization format")
    if len(token) < MIN_TOKEN_LENGTH:
        return AuthResult(False, "Invalid token")
    if not expected or not tokens_match(token, expected):
        return AuthResult(False, "Invalid token")
    return AuthResult(True)


# =============================================================================
# Rate limiting
# =============================================================================

@dataclass
class RateDecision:
    allowed: bool
    remaining: int
    retry_after: float = 0.0    # seconds until the window reopens

    @property
    def retry_after_ms(self) -> int:
        return int(self.retry_after * 1000)


class FixedWindowLimiter:
    """Counts requests per subject in fixed windows.

    The first request opens a window. Once the window has elapsed the next
    request resets the counter to 1 rather than sliding. Rejected requests are
    not counted.
    """

    def __init__(self, limit: int, window: float, clock: Callable[[], float] = time.monotonic):
        self.limit = limit
        self.window = window
        self.clock = clock
        self._windows: dict[str, RateWindow] = {}

    def check(self, subject: str) -> RateDecision:
        now = self.clock()
        entry = self._windows.get(subject)
        if entry is None or now - entry.window_start >= self.window:
            self._windows[subject] = RateWindow(count=1, window_start=now)
            return RateDecision(True, self.limit - 1)
        if entry.count >= self.limit:
            return RateDecision(False, 0, entry.window_start + self.window - now)
        entry.count += 1
        return RateDecision(True, self.limit - entry.count)

    def sweep(self) -> int:
        """Drop expired windows. Returns how many were evicted."""
        now = self.clock()
        expired = [s for s, w in self._windows.items() if now - w.window_start >= self.window]
        for subject in expired:
            del self._windows[subject]
        return len(expired)

    def __len__(self) -> int:
        return len(self._windows)
