import asyncio
import os
import socket
import sys
import unittest

import aiohttp

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from chainscope.config import Settings
from chainscope.models import RpcStatus, TrackingLevel
from chainscope.prober import PROBE_PAYLOAD, RpcProber, composite_score
from chainscope.providers import ProviderTable
from chainscope.rate_limit import RateLimiter
from fakes import FakeResolver, FakeResponse, FakeSession, ManualClock, Ticker

RPC = "https://rpc.example.org"
OK = FakeResponse(200, '{"jsonrpc":"2.0","id":1,"result":"0x1"}')


class TestCompositeScore(unittest.TestCase):

    def test_offline_and_unknown_score_zero(self):
        self.assertEqual(composite_score(RpcStatus.OFFLINE, 10, 100), 0)
        self.assertEqual(composite_score(RpcStatus.UNKNOWN, None, 100), 0)

    def test_fast_private_online(self):
        self.assertEqual(composite_score(RpcStatus.ONLINE, 50, 100), 100)

    def test_slow_without_latency(self):
        self.assertEqual(composite_score(RpcStatus.SLOW, None, 0), 25)

    def test_latency_bands(self):
        scores = [composite_score(RpcStatus.ONLINE, ms, 0) for ms in (50, 300, 800, 3000, 9000)]
        self.assertEqual(scores, [70, 65, 60, 50, 45])


class TestRpcProber(unittest.IsolatedAsyncioTestCase):

    def make(self, session=None, settings=None, limiter=None, step=0.05, providers=None, resolver=None):
        self.session = session or FakeSession(default=OK)
        self.clock = ManualClock()
        self.resolver = resolver or FakeResolver()
        return RpcProber(
            self.session,
            settings or Settings(),
            providers or ProviderTable(),
            limiter,
            clock=self.clock,
            timer=Ticker(step),
            resolver=self.resolver,
        )

    async def test_online(self):
        prober = self.make()
        health = await prober.check_health(RPC)
        self.assertIs(health.status, RpcStatus.ONLINE)
        self.assertEqual(health.latency_ms, 50.0)
        self.assertEqual(health.reliability_score, 95)
        self.assertEqual(health.privacy_score, 30)
        self.assertEqual(health.composite_score, 79)
        method, url, kwargs = self.session.calls[0]
        self.assertEqual((method, url), ("POST", RPC))
        self.assertEqual(kwargs["json"], PROBE_PAYLOAD)

    async def test_slow(self):
        prober = self.make(settings=Settings(slow_threshold_ms=100), step=0.2)
        health = await prober.check_health(RPC)
        self.assertIs(health.status, RpcStatus.SLOW)
        self.assertEqual(health.reliability_score, 75)

    async def test_tracking_from_provider_table(self):
        providers = ProviderTable(no_tracking=("example.org",))
        prober = self.make(providers=providers)
        health = await prober.check_health(RPC)
        self.assertIs(health.tracking, TrackingLevel.NONE)
        self.assertEqual(health.privacy_score, 100)

    async def test_http_error_is_offline(self):
        prober = self.make(FakeSession(default=FakeResponse(503)))
        health = await prober.check_health(RPC)
        self.assertIs(health.status, RpcStatus.OFFLINE)
        self.assertIsNone(health.latency_ms)
        self.assertEqual(health.composite_score, 0)

    async def test_connection_error_is_offline(self):
        session = FakeSession(default=FakeResponse(error=aiohttp.ClientConnectionError("refused")))
        health = await self.make(session).check_health(RPC)
        self.assertIs(health.status, RpcStatus.OFFLINE)

    async def test_timeout_is_offline(self):
        session = FakeSession(default=FakeResponse(error=asyncio.TimeoutError()))
        health = await self.make(session).check_health(RPC)
        self.assertIs(health.status, RpcStatus.OFFLINE)

    async def test_unsafe_urls_never_requested(self):
        prober = self.make()
        for url in (
            "http://localhost:8545",
            "http://127.0.0.1:8545",
            "http://10.0.0.5/rpc",
            "https://mainnet.infura.io/v3/${INFURA_API_KEY}",
            "wss://ws.example.org",
            "not a url",
        ):
            health = await prober.check_health(url)
            self.assertIs(health.status, RpcStatus.OFFLINE, url)
        self.assertEqual(self.session.calls, [])
        self.assertEqual(prober.probe_count, 0)

    async def test_host_resolving_to_loopback_is_not_requested(self):
        resolver = FakeResolver({"localtest.me": ["127.0.0.1"]})
        prober = self.make(resolver=resolver)
        health = await prober.check_health("http://localtest.me:8545/")
        self.assertIs(health.status, RpcStatus.OFFLINE)
        self.assertEqual(self.session.calls, [])
        self.assertEqual(prober.probe_count, 0)
        self.assertEqual(resolver.calls, [("localtest.me", 8545)])

    async def test_any_private_address_blocks_host(self):
        resolver = FakeResolver({"rpc.example.org": ["93.184.216.34", "10.0.0.7"]})
        prober = self.make(resolver=resolver)
        self.assertEqual(await prober.resolves_to_public(RPC), (False, "private_ip_blocked"))
        health = await prober.check_health(RPC)
        self.assertIs(health.status, RpcStatus.OFFLINE)
        self.assertEqual(self.session.calls, [])

    async def test_dns_failure_is_offline(self):
        prober = self.make(resolver=FakeResolver(error=socket.gaierror("NXDOMAIN")))
        health = await prober.check_health(RPC)
        self.assertIs(health.status, RpcStatus.OFFLINE)
        self.assertEqual(self.session.calls, [])

    async def test_public_ip_literal_skips_resolver(self):
        prober = self.make()
        health = await prober.check_health("https://1.1.1.1/")
        self.assertIs(health.status, RpcStatus.ONLINE)
        self.assertEqual(self.resolver.calls, [])

    async def test_cached_result_is_reused(self):
        prober = self.make()
        first = await prober.check_health(RPC)
        second = await prober.check_health(RPC)
        self.assertIs(first, second)
        self.assertEqual(len(self.session.calls), 1)
        self.assertIs(prober.cached(RPC), first)

    async def test_cache_expires(self):
        prober = self.make(settings=Settings(health_cache_ttl_seconds=60))
        await prober.check_health(RPC)
        self.clock.advance(61)
        self.assertIsNone(prober.cached(RPC))
        await prober.check_health(RPC)
        self.assertEqual(len(self.session.calls), 2)

    async def test_expired_entries_are_evicted(self):
        prober = self.make(settings=Settings(health_cache_ttl_seconds=60))
        await prober.check_health(RPC)
        await prober.check_health("https://other.example.org")
        self.assertEqual(prober.cache_size(), 2)
        self.clock.advance(61)
        await prober.check_health("https://third.example.org")
        self.assertEqual(prober.cache_size(), 1)

    async def test_stale_entry_kept_while_rate_window_open(self):
        prober = self.make(settings=Settings(health_cache_ttl_seconds=10, rate_limit_window_seconds=60))
        await prober.check_health(RPC)
        self.clock.advance(30)
        self.assertIsNone(prober.cached(RPC))
        self.assertEqual(prober.cache_size(), 1)
        self.clock.advance(30)
        self.assertIsNone(prober.cached(RPC))
        self.assertEqual(prober.cache_size(), 0)

    async def test_clear_cache(self):
        prober = self.make()
        await prober.check_health(RPC)
        prober.clear_cache()
        await prober.check_health(RPC)
        self.assertEqual(len(self.session.calls), 2)

    async def test_concurrent_checks_share_one_request(self):
        prober = self.make(FakeSession(default=FakeResponse(200, "{}", delay=0.01)))
        a, b = await asyncio.gather(prober.check_health(RPC), prober.check_health(RPC))
        self.assertIs(a, b)
        self.assertEqual(len(self.session.calls), 1)

    async def test_rate_limited_serves_last_result(self):
        clock = ManualClock()
        limiter = RateLimiter(max_requests=1, window_seconds=60, clock=clock)
        # zero TTL: every call goes past the cache to the limiter
        prober = self.make(settings=Settings(health_cache_ttl_seconds=0), limiter=limiter)
        first = await prober.check_health(RPC)
        second = await prober.check_health(RPC)
        self.assertIs(second, first)
        self.assertEqual(len(self.session.calls), 1)

    async def test_rate_limited_without_history_is_offline(self):
        limiter = RateLimiter(max_requests=0, window_seconds=60, clock=ManualClock())
        prober = self.make(limiter=limiter)
        health = await prober.check_health(RPC)
        self.assertIs(health.status, RpcStatus.OFFLINE)
        self.assertEqual(self.session.calls, [])


if __name__ == "__main__":
    unittest.main()
