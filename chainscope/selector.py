"""
Wallet-safe RPC selection.

Everything here is pure: it looks only at a chain's RPC list and whatever
endpoint health is attached to it, and never touches the network. The result
of `select_wallet_safe_endpoints` goes straight into a wallet's "add network"
request, so an empty list is a valid answer meaning "do not auto-register".
"""

from dataclasses import dataclass, replace
from typing import Dict, Iterable, List, Optional

from .config import Settings, get_settings
from .models import ChainRecord, EndpointHealth, PrivacyLevel, RpcStatus
from .providers import ProviderTable, default_provider_table
from .utils import RPC_SCHEMES, is_safe_url

WALLET_SCHEMES = ("https",)
UNSAFE_REASONS = ("localhost_blocked", "private_ip_blocked", "invalid_ip")
STATUS_PRIORITY = {
    RpcStatus.ONLINE: 0,
    RpcStatus.SLOW: 1,
    RpcStatus.OFFLINE: 2,
    RpcStatus.UNKNOWN: 3,
}


@dataclass(frozen=True)
class RankedEndpoint:
    url: str
    status: RpcStatus
    latency_ms: Optional[float]
    score: float
    official: bool = False
    recommended: bool = False


@dataclass(frozen=True)
class RpcEndpointInfo:
    best: Optional[str]
    official: List[str]
    total: int
    online: int


def is_wallet_safe_url(url: str) -> bool:
    """Static filter applied to every tier: https, public host, no placeholders."""
    lowered = url.lower()
    if "localhost" in lowered or "127.0.0.1" in lowered:
        return False
    return is_safe_url(url, WALLET_SCHEMES)[0]


def is_official_rpc(url: str, chain_id: Optional[int] = None, providers: Optional[ProviderTable] = None) -> bool:
    return (providers or default_provider_table()).is_official(url, chain_id)


def score_rpc_endpoint(
    url: str,
    health: Optional[EndpointHealth] = None,
    *,
    chain_id: Optional[int] = None,
    providers: Optional[ProviderTable] = None,
) -> float:
    providers = providers or default_provider_table()
    score = 0

    if providers.is_official(url, chain_id):
        score += 100
    if providers.is_reliable(url):
        score += 50

    if health is not None:
        if health.status is RpcStatus.ONLINE:
            score += 75
        elif health.status is RpcStatus.SLOW:
            score += 25
        elif health.status is RpcStatus.OFFLINE:
            score -= 100

        if health.latency_ms is not None and health.latency_ms < 100:
            score += 30
        elif health.latency_ms is not None and health.latency_ms < 500:
            score += 15

        if health.reliability_score is not None and health.reliability_score > 90:
            score += 25
        elif health.reliability_score is not None and health.reliability_score > 70:
            score += 10

        if health.probed and health.privacy is PrivacyLevel.HIGH:
            score += 20
        elif health.probed and health.privacy is PrivacyLevel.MEDIUM:
            score += 10

    if url.startswith("https://"):
        score += 10

    safe, reason = is_safe_url(url, RPC_SCHEMES)
    if not safe and reason in UNSAFE_REASONS:
        score -= 1000
    return score


def _health_map(chain: ChainRecord, endpoints: Optional[Iterable[EndpointHealth]]) -> Dict[str, EndpointHealth]:
    if endpoints is None:
        endpoints = getattr(chain, "endpoints", ())
    rpc = set(chain.rpc)
    return {e.url: e for e in endpoints if e.url in rpc}


def _latency_key(health: Optional[EndpointHealth]) -> float:
    if health is None or health.latency_ms is None:
        return float("inf")
    return health.latency_ms


def select_wallet_safe_endpoints(
    chain: ChainRecord,
    endpoints: Optional[Iterable[EndpointHealth]] = None,
    *,
    providers: Optional[ProviderTable] = None,
    settings: Optional[Settings] = None,
) -> List[str]:
    """
    Pick at most `WALLET_MAX_ENDPOINTS` URLs safe to hand to a wallet.

    Tiers, first non-empty wins:
      1. official provider URLs (online under the official latency ceiling
         when health data exists)
      2. reliable provider URLs (same, with the reliable ceiling)
      3. any URL confirmed online
      4. any statically safe URL not confirmed offline
    Every tier only considers https URLs from the chain's own RPC list with
    no local/private host and no template placeholder.
    """
    providers = providers or default_provider_table()
    settings = settings or get_settings()
    health = _health_map(chain, endpoints)
    has_health = any(h.probed for h in health.values())

    candidates = [u for u in dict.fromkeys(chain.rpc) if is_wallet_safe_url(u)]
    if not candidates:
        return []

    def ranked(urls: List[str]) -> List[str]:
        urls = sorted(urls, key=lambda u: (
            -score_rpc_endpoint(u, health.get(u), chain_id=chain.chain_id, providers=providers),
            _latency_key(health.get(u)),
            u,
        ))
        return urls[:max(0, settings.wallet_max_endpoints)]

    def confirmed_online(url: str, ceiling: Optional[float] = None) -> bool:
        h = health.get(url)
        if h is None or h.status is not RpcStatus.ONLINE:
            return False
        return ceiling is None or h.latency_ms is None or h.latency_ms < ceiling

    tiers = (
        ([u for u in candidates if providers.is_official(u, chain.chain_id)], settings.official_latency_ceiling_ms),
        ([u for u in candidates if providers.is_reliable(u)], settings.reliable_latency_ceiling_ms),
    )
    for urls, ceiling in tiers:
        if not urls:
            continue
        if not has_health:
            return ranked(urls)
        qualified = [u for u in urls if confirmed_online(u, ceiling)]
        if qualified:
            return ranked(qualified)

    online = [u for u in candidates if confirmed_online(u)]
    if online:
        return ranked(online)

    not_offline = [u for u in candidates if u not in health or health[u].status is not RpcStatus.OFFLINE]
    return ranked(not_offline)


def sorted_rpc_endpoints(
    chain: ChainRecord,
    endpoints: Optional[Iterable[EndpointHealth]] = None,
    *,
    providers: Optional[ProviderTable] = None,
    settings: Optional[Settings] = None,
) -> List[RankedEndpoint]:
    """
    Every RPC URL of the chain with its status, latency and score, best first.

    Endpoints scoring at least `OFFICIAL_SCORE_THRESHOLD` are flagged official.
    The first `WALLET_MAX_ENDPOINTS` entries scoring above
    `RECOMMENDED_SCORE_THRESHOLD` are flagged recommended.
    """
    providers = providers or default_provider_table()
    settings = settings or get_settings()
    health = _health_map(chain, endpoints)
    ranked = []
    for url in dict.fromkeys(chain.rpc):
        h = health.get(url)
        ranked.append(RankedEndpoint(
            url=url,
            status=h.status if h else RpcStatus.UNKNOWN,
            latency_ms=h.latency_ms if h else None,
            score=score_rpc_endpoint(url, h, chain_id=chain.chain_id, providers=providers),
        ))
    ranked.sort(key=lambda r: (
        -r.score,
        STATUS_PRIORITY[r.status],
        r.latency_ms if r.latency_ms is not None else float("inf"),
        r.url,
    ))
    return [
        replace(
            r,
            official=r.score >= settings.official_score_threshold,
            recommended=i < settings.wallet_max_endpoints and r.score > settings.recommended_score_threshold,
        )
        for i, r in enumerate(ranked)
    ]


def best_rpc_endpoint(chain: ChainRecord, **kwargs) -> Optional[str]:
    urls = select_wallet_safe_endpoints(chain, **kwargs)
    return urls[0] if urls else None


def rpc_endpoint_info(
    chain: ChainRecord,
    *,
    providers: Optional[ProviderTable] = None,
    settings: Optional[Settings] = None,
) -> RpcEndpointInfo:
    providers = providers or default_provider_table()
    health = _health_map(chain, None)
    return RpcEndpointInfo(
        best=best_rpc_endpoint(chain, providers=providers, settings=settings),
        official=[u for u in chain.rpc if providers.is_official(u, chain.chain_id)],
        total=len(chain.rpc),
        online=sum(1 for h in health.values() if h.status is RpcStatus.ONLINE),
    )
