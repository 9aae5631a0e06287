"""Exception taxonomy shared by the fetcher, enrichment client and prober."""

from typing import Optional


class ChainscopeError(Exception):
    """Base class for every error raised inside chainscope."""


class NetworkError(ChainscopeError):
    """Timeout, refused connection, abort or non-2xx response."""

    def __init__(self, url: str, reason: str, attempts: int = 1, status: Optional[int] = None):
        super().__init__(f"{url}: {reason} (attempts={attempts})")
        self.url = url
        self.reason = reason
        self.attempts = attempts
        self.status = status


class ParseError(ChainscopeError):
    """A source returned a payload its parser could not understand."""

    def __init__(self, source: str, reason: str):
        super().__init__(f"{source}: {reason}")
        self.source = source
        self.reason = reason


class ValidationError(ChainscopeError):
    """A single record failed sanity checks and was dropped."""

    def __init__(self, reason: str, chain_id=None):
        super().__init__(f"chain {chain_id}: {reason}" if chain_id is not None else reason)
        self.reason = reason
        self.chain_id = chain_id


class RateLimitExceeded(ChainscopeError):
    def __init__(self, key: str):
        super().__init__(f"rate limit exceeded for {key}")
        self.key = key


class AllSourcesFailed(ChainscopeError):
    def __init__(self, failures):
        names = ", ".join(failures) or "none"
        super().__init__(f"every registry source failed: {names}")
        self.failures = list(failures)
