"""
Single-endpoint RPC prober.

Sends one `eth_chainId` JSON-RPC call, times it, and classifies the endpoint.
Results are cached per URL and calls are rate limited per URL; an invalid or
internal URL is rejected before any request is made.
"""

import asyncio
import logging
import socket
import time
import urllib.parse
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

import aiohttp

from .config import Settings, get_settings
from .errors import NetworkError
from .models import PRIVACY_SCORES, EndpointHealth, RpcStatus, TrackingLevel
from .providers import ProviderTable, default_provider_table
from .rate_limit import RateLimiter
from .utils import is_safe_url, parse_ip_host, resolved_addresses_are_public

logger = logging.getLogger(__name__)

PROBE_PAYLOAD = {"jsonrpc": "2.0", "method": "eth_chainId", "params": [], "id": 1}
PROBE_HEADERS = {"Content-Type": "application/json", "User-Agent": "chainscope/1.0"}

Resolver = Callable[[str, int], Awaitable[List[tuple]]]


async def system_resolver(host: str, port: int) -> List[tuple]:
    return await asyncio.get_running_loop().getaddrinfo(host, port, type=socket.SOCK_STREAM)


RELIABILITY_BY_STATUS = {
    RpcStatus.ONLINE: 95,
    RpcStatus.SLOW: 75,
    RpcStatus.OFFLINE: 0,
}


def composite_score(status: RpcStatus, latency_ms: Optional[float], privacy: float) -> float:
    """Status 40% + latency band 30% + privacy 30%, clamped to 0-100."""
    if status is RpcStatus.OFFLINE or status is RpcStatus.UNKNOWN:
        return 0

    score = 40 if status is RpcStatus.ONLINE else 20

    if latency_ms is None:
        score += 5
    elif latency_ms < 100:
        score += 30
    elif latency_ms < 500:
        score += 25
    elif latency_ms < 1000:
        score += 20
    elif latency_ms < 5000:
        score += 10
    else:
        score += 5

    score += (privacy / 100) * 30
    return min(100, max(0, round(score, 2)))


class RpcProber:
    def __init__(
        self,
        session: aiohttp.ClientSession,
        settings: Optional[Settings] = None,
        providers: Optional[ProviderTable] = None,
        rate_limiter: Optional[RateLimiter] = None,
        clock: Callable[[], float] = time.monotonic,
        timer: Callable[[], float] = time.perf_counter,
        resolver: Optional[Resolver] = None,
    ):
        self._session = session
        self.settings = settings or get_settings()
        self.providers = providers or default_provider_table()
        self.rate_limiter = rate_limiter or RateLimiter(
            self.settings.rate_limit_requests, self.settings.rate_limit_window_seconds, clock=clock
        )
        self._clock = clock
        self._timer = timer
        self._resolve = resolver or system_resolver
        self._cache: Dict[str, Tuple[float, EndpointHealth]] = {}
        self._inflight: Dict[str, asyncio.Future] = {}
        self.probe_count = 0

    def tracking_level(self, url: str) -> TrackingLevel:
        return self.providers.tracking_level(url)

    def _retention(self) -> float:
        # stale results still back rate-limited reads until the window passes
        return max(self.settings.health_cache_ttl_seconds, self.rate_limiter.window_seconds)

    def cached(self, url: str) -> Optional[EndpointHealth]:
        entry = self._cache.get(url)
        if entry is None:
            return None
        stored_at, health = entry
        age = self._clock() - stored_at
        if age < self.settings.health_cache_ttl_seconds:
            return health
        if age >= self._retention():
            del self._cache[url]
        return None

    def cache_size(self) -> int:
        return len(self._cache)

    def _evict_expired(self, now: float) -> None:
        retention = self._retention()
        for url in [u for u, (stored_at, _) in self._cache.items() if now - stored_at >= retention]:
            del self._cache[url]

    def clear_cache(self) -> None:
        self._cache.clear()
        self.rate_limiter.reset()

    async def check_health(self, url: str) -> EndpointHealth:
        tracking = self.tracking_level(url)

        safe, reason = is_safe_url(url)
        if not safe:
            logger.debug("rejecting %s before probing: %s", url, reason)
            return EndpointHealth.offline(url, tracking)

        cached = self.cached(url)
        if cached is not None:
            return cached

        pending = self._inflight.get(url)
        if pending is not None:
            return await asyncio.shield(pending)

        if not self.rate_limiter.allow(url):
            last = self._cache.get(url)
            logger.info("rate limited %s, %s", url, "serving stale result" if last else "reporting offline")
            return last[1] if last else EndpointHealth.offline(url, tracking)

        task = asyncio.ensure_future(self._probe(url, tracking))
        self._inflight[url] = task
        task.add_done_callback(lambda t, u=url: self._store(u, t))
        return await asyncio.shield(task)

    def _store(self, url: str, task: asyncio.Future) -> None:
        self._inflight.pop(url, None)
        if task.cancelled() or task.exception() is not None:
            return
        now = self._clock()
        self._evict_expired(now)
        self._cache[url] = (now, task.result())

    async def resolves_to_public(self, url: str) -> Tuple[bool, Optional[str]]:
        """Resolve the URL's host and refuse it if any address is internal."""
        try:
            parsed = urllib.parse.urlparse(url)
            host = parsed.hostname or ""
            port = parsed.port or (443 if parsed.scheme == "https" else 80)
            literal = parse_ip_host(host.strip(".").lower())
        except ValueError as e:
            return False, f"invalid_url:{e}"

        if literal is not None:
            # literal addresses were already checked by is_safe_url
            return True, None
        try:
            infos = await self._resolve(host, port)
        except OSError as e:
            logger.debug("cannot resolve %s: %s", host, e)
            return False, "dns_error"
        return resolved_addresses_are_public(infos)

    async def _probe(self, url: str, tracking: TrackingLevel) -> EndpointHealth:
        safe, reason = await self.resolves_to_public(url)
        if not safe:
            logger.info("refusing to probe %s: %s", url, reason)
            return EndpointHealth.offline(url, tracking)

        self.probe_count += 1
        timeout = aiohttp.ClientTimeout(total=self.settings.probe_timeout_seconds)
        started = self._timer()
        try:
            async with self._session.post(url, json=PROBE_PAYLOAD, headers=PROBE_HEADERS, timeout=timeout) as response:
                latency_ms = (self._timer() - started) * 1000
                if not 200 <= response.status < 300:
                    raise NetworkError(url, f"HTTP {response.status}", status=response.status)
        except (aiohttp.ClientError, asyncio.TimeoutError, NetworkError) as e:
            logger.debug("probe failed for %s: %s", url, e)
            return EndpointHealth.offline(url, tracking)

        status = RpcStatus.ONLINE if latency_ms < self.settings.slow_threshold_ms else RpcStatus.SLOW
        privacy = PRIVACY_SCORES[tracking]
        logger.debug("%s is %s (%.0fms)", url, status.value, latency_ms)
        return EndpointHealth(
            url=url,
            status=status,
            tracking=tracking,
            latency_ms=round(latency_ms, 1),
            reliability_score=RELIABILITY_BY_STATUS[status],
            privacy_score=privacy,
            composite_score=composite_score(status, latency_ms, privacy),
        )
