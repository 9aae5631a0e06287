"""
Wallet-safe RPC selection: tiering, static URL filtering and ranking.
"""
import os
import re
import sys
import unittest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from chainscope.config import Settings
from chainscope.models import EndpointHealth, MergedChainRecord, NativeCurrency, RpcStatus, TrackingLevel
from chainscope.providers import ProviderTable, default_provider_table
from chainscope.selector import (
    best_rpc_endpoint,
    is_official_rpc,
    is_wallet_safe_url,
    rpc_endpoint_info,
    score_rpc_endpoint,
    select_wallet_safe_endpoints,
    sorted_rpc_endpoints,
)

OFFICIAL = "https://official.example/rpc"
RELIABLE = "https://reliable.example/rpc"
RANDOM = "https://random.example/rpc"
LOCAL = "http://localhost:8545"
TEMPLATE = "https://mainnet.infura.io/v3/${INFURA_API_KEY}"

PROVIDERS = ProviderTable(
    generic_official=(re.compile(r"^https://official\.example"),),
    reliable_domains=("reliable.example",),
)
SETTINGS = Settings()


def chain(rpc, endpoints=(), chain_id=1):
    return MergedChainRecord(
        chain_id=chain_id,
        name="Ethereum",
        native_currency=NativeCurrency("Ether", "ETH"),
        rpc=tuple(rpc),
        endpoints=tuple(endpoints),
    )


def online(url, latency_ms=100.0, **kwargs):
    return EndpointHealth(url, RpcStatus.ONLINE, latency_ms=latency_ms, **kwargs)


def select(c, **kwargs):
    kwargs.setdefault("settings", SETTINGS)
    return select_wallet_safe_endpoints(c, providers=PROVIDERS, **kwargs)


# ─── tiers ────────────────────────────────────────────────────────

class TestSelectWalletSafeEndpoints(unittest.TestCase):

    def test_official_wins_when_online(self):
        c = chain(
            [OFFICIAL, RELIABLE, RANDOM, LOCAL, TEMPLATE],
            [online(OFFICIAL, 150), online(RELIABLE, 80), online(RANDOM, 50)],
        )
        self.assertEqual(select(c), [OFFICIAL])

    def test_reliable_when_official_offline(self):
        c = chain(
            [OFFICIAL, RELIABLE, RANDOM],
            [EndpointHealth.offline(OFFICIAL), online(RELIABLE, 80), online(RANDOM, 50)],
        )
        self.assertEqual(select(c), [RELIABLE])

    def test_official_over_latency_ceiling_is_skipped(self):
        c = chain([OFFICIAL, RELIABLE], [online(OFFICIAL, 2500), online(RELIABLE, 300)])
        self.assertEqual(select(c), [RELIABLE])

    def test_no_health_data_returns_official_tier(self):
        c = chain([RANDOM, OFFICIAL, "https://official.example/backup", RELIABLE])
        # equal scores: ties break on URL
        self.assertEqual(select(c), ["https://official.example/backup", OFFICIAL])

    def test_any_online_when_no_provider_matches(self):
        other = "https://other.example/rpc"
        c = chain([RANDOM, other], [EndpointHealth.offline(RANDOM), online(other, 400)])
        self.assertEqual(select(c), [other])

    def test_not_offline_fallback_is_capped(self):
        urls = [f"https://rpc{i}.example" for i in range(5)]
        c = chain(urls, [EndpointHealth.unprobed(u) for u in urls])
        result = select(c)
        self.assertEqual(len(result), SETTINGS.wallet_max_endpoints)
        self.assertTrue(set(result) <= set(urls))

    def test_all_offline_returns_empty(self):
        c = chain([OFFICIAL, RANDOM], [EndpointHealth.offline(OFFICIAL), EndpointHealth.offline(RANDOM)])
        self.assertEqual(select(c), [])

    def test_empty_rpc_list(self):
        self.assertEqual(select(chain([])), [])

    def test_only_unsafe_urls(self):
        c = chain([LOCAL, TEMPLATE, "http://plain.example/rpc", "wss://ws.example", "http://127.0.0.1:8545"])
        self.assertEqual(select(c), [])

    def test_never_returns_local_or_placeholder(self):
        c = chain([LOCAL, TEMPLATE, RANDOM], [online(LOCAL, 1), online(TEMPLATE, 1), online(RANDOM, 900)])
        self.assertEqual(select(c), [RANDOM])

        numeric = ["https://127.1/", "https://2130706433/", "https://0x7f.1/", "https://0177.0.0.1/"]
        self.assertEqual(select(chain(numeric)), [])
        self.assertEqual(select(chain(numeric + [RANDOM])), [RANDOM])
        for url in numeric:
            self.assertFalse(is_wallet_safe_url(url), url)
            self.assertLess(score_rpc_endpoint(url, providers=PROVIDERS), -900)

    def test_health_outside_rpc_list_is_ignored(self):
        c = chain([RANDOM], [online("https://stranger.example", 1)])
        self.assertEqual(select(c), [RANDOM])

    def test_explicit_endpoints_override_attached(self):
        c = chain([OFFICIAL, RELIABLE], [online(OFFICIAL)])
        result = select(c, endpoints=[EndpointHealth.offline(OFFICIAL), online(RELIABLE)])
        self.assertEqual(result, [RELIABLE])

    def test_chain_specific_official_pattern(self):
        providers = ProviderTable(chain_official={137: (re.compile(r"^https://polygon-rpc\.com"),)})
        c = chain(["https://polygon-rpc.com", RANDOM], chain_id=137)
        self.assertEqual(select_wallet_safe_endpoints(c, providers=providers, settings=SETTINGS), ["https://polygon-rpc.com"])
        # same URL is not official for another chain
        other = chain(["https://polygon-rpc.com", RANDOM], chain_id=1)
        self.assertEqual(len(select_wallet_safe_endpoints(other, providers=providers, settings=SETTINGS)), 2)

    def test_wallet_max_endpoints(self):
        urls = [f"https://official.example/{i}" for i in range(4)]
        c = chain(urls)
        self.assertEqual(len(select(c, settings=Settings(wallet_max_endpoints=2))), 2)


# ─── static filter ────────────────────────────────────────────────

class TestIsWalletSafeUrl(unittest.TestCase):

    def test_https_public(self):
        self.assertTrue(is_wallet_safe_url("https://eth.llamarpc.com"))

    def test_rejects(self):
        for url in [
            "http://eth.llamarpc.com",
            "wss://eth.llamarpc.com",
            "https://localhost:8545",
            "https://127.0.0.1:8545",
            "https://192.168.0.10/rpc",
            "https://rpc.example.com/{API_KEY}",
            "https://node.local/rpc",
            "",
        ]:
            self.assertFalse(is_wallet_safe_url(url), url)


# ─── scoring and ranking ──────────────────────────────────────────

class TestScoring(unittest.TestCase):

    def test_score_components(self):
        health = EndpointHealth(OFFICIAL, RpcStatus.ONLINE, TrackingLevel.NONE, latency_ms=50, reliability_score=95)
        # official 100 + online 75 + fast 30 + reliability 25 + privacy 20 + https 10
        self.assertEqual(score_rpc_endpoint(OFFICIAL, health, providers=PROVIDERS), 260)

    def test_unprobed_gets_no_privacy_bonus(self):
        health = EndpointHealth.unprobed(RANDOM, TrackingLevel.NONE)
        self.assertEqual(score_rpc_endpoint(RANDOM, health, providers=PROVIDERS), 10)

    def test_offline_penalty(self):
        self.assertEqual(score_rpc_endpoint(RELIABLE, EndpointHealth.offline(RELIABLE), providers=PROVIDERS), -40)

    def test_private_hosts_sink(self):
        self.assertLess(score_rpc_endpoint("http://10.0.0.1:8545", providers=PROVIDERS), -900)
        self.assertLess(score_rpc_endpoint(LOCAL, providers=PROVIDERS), -900)

    def test_sorted_endpoints(self):
        c = chain([RANDOM, LOCAL, OFFICIAL], [online(RANDOM, 40)])
        ranked = sorted_rpc_endpoints(c, providers=PROVIDERS)
        # online + fast (115) outranks unprobed official (110)
        self.assertEqual([r.url for r in ranked], [RANDOM, OFFICIAL, LOCAL])
        self.assertEqual(ranked[0].latency_ms, 40)
        self.assertIs(ranked[1].status, RpcStatus.UNKNOWN)

    def test_ranked_flags(self):
        c = chain([RANDOM, LOCAL, OFFICIAL], [online(RANDOM, 40)])
        ranked = sorted_rpc_endpoints(c, providers=PROVIDERS, settings=SETTINGS)
        self.assertEqual([r.official for r in ranked], [True, True, False])
        self.assertEqual([r.recommended for r in ranked], [True, True, False])

        strict = Settings(official_score_threshold=112, recommended_score_threshold=50, wallet_max_endpoints=1)
        ranked = sorted_rpc_endpoints(c, providers=PROVIDERS, settings=strict)
        self.assertEqual([r.official for r in ranked], [True, False, False])
        self.assertEqual([r.recommended for r in ranked], [True, False, False])

    def test_info_and_best(self):
        c = chain([OFFICIAL, RANDOM], [online(OFFICIAL, 90), online(RANDOM, 60)])
        info = rpc_endpoint_info(c, providers=PROVIDERS, settings=SETTINGS)
        self.assertEqual(info.best, OFFICIAL)
        self.assertEqual(info.official, [OFFICIAL])
        self.assertEqual(info.total, 2)
        self.assertEqual(info.online, 2)
        self.assertEqual(best_rpc_endpoint(c, providers=PROVIDERS, settings=SETTINGS), OFFICIAL)
        self.assertIsNone(best_rpc_endpoint(chain([LOCAL]), providers=PROVIDERS, settings=SETTINGS))

    def test_bundled_provider_table(self):
        table = default_provider_table()
        self.assertGreater(table.version, 0)
        self.assertTrue(is_official_rpc("https://mainnet.infura.io/v3/abc", 1, table))
        self.assertFalse(is_official_rpc("https://random.example/rpc", 1, table))


if __name__ == "__main__":
    unittest.main()
