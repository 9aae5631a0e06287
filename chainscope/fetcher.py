"""
Chain registry fetcher.

Pulls raw chain lists from the configured sources in priority order, merges
them by chain id and keeps the result in memory for `CACHE_TTL_SECONDS`.
If every source fails the bundled fallback dataset is served instead, so
`fetch_all()` never raises and never returns an empty list.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, replace
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import aiohttp

from .config import Settings, get_settings
from .errors import AllSourcesFailed, NetworkError, ParseError
from .fallback import load_fallback_dataset
from .models import ChainFeature, ChainRecord
from .sources import (
    Source,
    detect_red_flags,
    is_placeholder_name,
    is_placeholder_symbol,
    load_sources,
    merge_bridges,
    unique,
)

logger = logging.getLogger(__name__)

FETCH_HEADERS = {"Accept": "application/json", "User-Agent": "chainscope/1.0"}
FALLBACK_SOURCE = "fallback"


@dataclass(frozen=True)
class CacheStatus:
    size: int
    age_seconds: Optional[float]
    is_valid: bool


def merge_features(existing: Iterable[ChainFeature], new: Iterable[ChainFeature]) -> Tuple[ChainFeature, ...]:
    by_name: Dict[str, ChainFeature] = {}
    for feature in list(existing) + list(new):
        by_name[feature.name] = feature
    return tuple(by_name.values())


def merge_records(existing: ChainRecord, new: ChainRecord) -> ChainRecord:
    """
    Combine two records for the same chain id.

    List-like fields are unioned; scalar fields take the newer non-empty
    value, except that a sparse record's placeholder name or currency never
    replaces a real one.
    """
    new_is_sparse = is_placeholder_name(new.name)
    base, other = (new, existing) if not new_is_sparse else (existing, new)

    if is_placeholder_name(base.name) and not is_placeholder_name(other.name):
        name = other.name
    else:
        name = base.name
    if is_placeholder_symbol(base.native_currency.symbol) and not is_placeholder_symbol(other.native_currency.symbol):
        currency = other.native_currency
    else:
        currency = base.native_currency

    parent = existing.parent or new.parent
    if existing.parent and new.parent:
        parent = replace(existing.parent, bridges=unique(existing.parent.bridges + new.parent.bridges))

    rpc = unique(existing.rpc + new.rpc)
    explorers = new.explorers if len(new.explorers) > len(existing.explorers) else existing.explorers
    bridges = merge_bridges(existing.bridges, new.bridges)
    is_testnet = base.is_testnet
    info_url = base.info_url or other.info_url

    tags = unique(existing.tags + new.tags + (("bridged",) if bridges else ()))
    wrong_network_tag = "mainnet" if is_testnet else "testnet"
    tags = tuple(t for t in tags if t != wrong_network_tag)

    return replace(
        base,
        name=name,
        native_currency=currency,
        rpc=rpc,
        faucets=unique(existing.faucets + new.faucets),
        explorers=explorers,
        info_url=info_url,
        icon=base.icon or other.icon,
        verified=existing.verified or new.verified,
        parent=parent,
        features=merge_features(existing.features, new.features),
        bridges=bridges,
        tags=tags,
        red_flags=detect_red_flags(base.chain_id, rpc, explorers, info_url),
        title=base.title or other.title,
        slip44=base.slip44 if base.slip44 is not None else other.slip44,
        ens=base.ens or other.ens,
    )


def sort_records(records: Iterable[ChainRecord]) -> List[ChainRecord]:
    """Verified first, then mainnet before testnet, then name."""
    return sorted(records, key=lambda r: (not r.verified, r.is_testnet, r.name.lower(), r.chain_id))


def search_records(records: Iterable[ChainRecord], query: str) -> List:
    term = (query or "").strip().lower()
    records = list(records)
    if not term:
        return records

    def matches(record: ChainRecord) -> bool:
        return (
            term in record.name.lower()
            or term in record.short_name.lower()
            or term in record.native_currency.symbol.lower()
            or term in str(record.chain_id)
            or term in record.network.lower()
            or term in (record.title or "").lower()
            or any(term in tag.lower() for tag in record.tags)
        )

    return [r for r in records if matches(r)]


class ChainRegistryFetcher:
    def __init__(
        self,
        session: aiohttp.ClientSession,
        settings: Optional[Settings] = None,
        sources: Optional[Sequence[Source]] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._session = session
        self.settings = settings or get_settings()
        self.sources = tuple(sources) if sources is not None else load_sources(self.settings)
        self._clock = clock
        self._sleep = sleep
        self._cache: List[ChainRecord] = []
        self._cached_at: Optional[float] = None
        self._provenance: Dict[int, Tuple[str, ...]] = {}
        self.request_count = 0

    def _cache_valid(self) -> bool:
        return (
            bool(self._cache)
            and self._cached_at is not None
            and self._clock() - self._cached_at < self.settings.cache_ttl_seconds
        )

    async def fetch_all(self) -> List[ChainRecord]:
        if self._cache_valid():
            logger.debug("serving %d cached chains", len(self._cache))
            return list(self._cache)

        try:
            records, provenance = await self._fetch_sources()
        except AllSourcesFailed as e:
            logger.warning("%s; serving bundled fallback dataset", e)
            records = load_fallback_dataset(settings=self.settings)
            provenance = {r.chain_id: (FALLBACK_SOURCE,) for r in records}

        self._cache = sort_records(records)
        self._cached_at = self._clock()
        self._provenance = provenance
        return list(self._cache)

    async def _fetch_sources(self) -> Tuple[List[ChainRecord], Dict[int, Tuple[str, ...]]]:
        accumulator: Dict[int, ChainRecord] = {}
        provenance: Dict[int, List[str]] = {}
        failures = []

        for source in self.sources:
            try:
                payload = await self._get(source.url)
                parsed = source.parser(payload, self.settings)
            except (NetworkError, ParseError) as e:
                logger.warning("source %s failed: %s", source.name, e)
                failures.append(source.name)
                continue

            if not parsed:
                logger.warning("source %s returned no usable chains", source.name)
                failures.append(source.name)
                continue

            for record in parsed:
                current = accumulator.get(record.chain_id)
                accumulator[record.chain_id] = record if current is None else merge_records(current, record)
                names = provenance.setdefault(record.chain_id, [])
                if source.name not in names:
                    names.append(source.name)
            logger.info("source %s: %d chains (%d total)", source.name, len(parsed), len(accumulator))

            if source.priority <= 2 and len(accumulator) >= self.settings.min_chains_threshold:
                logger.info("enough chains after %s, skipping lower-priority sources", source.name)
                break

        if not accumulator:
            raise AllSourcesFailed(failures)
        return list(accumulator.values()), {k: tuple(v) for k, v in provenance.items()}

    async def _get(self, url: str) -> str:
        """GET with timeout and exponential-backoff retries."""
        timeout = aiohttp.ClientTimeout(total=self.settings.request_timeout_seconds)
        attempts = 1 + max(0, self.settings.max_retries)
        error: Optional[NetworkError] = None

        for attempt in range(1, attempts + 1):
            self.request_count += 1
            try:
                async with self._session.get(url, headers=FETCH_HEADERS, timeout=timeout) as response:
                    if not 200 <= response.status < 300:
                        raise NetworkError(url, f"HTTP {response.status}", attempt, response.status)
                    return await response.text()
            except NetworkError as e:
                error = e
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                error = NetworkError(url, str(e) or type(e).__name__, attempt)

            logger.debug("attempt %d/%d for %s failed: %s", attempt, attempts, url, error.reason)
            if attempt < attempts:
                await self._sleep(self.settings.retry_backoff_seconds * 2 ** attempt)

        raise error

    def sources_for(self, chain_id: int) -> Tuple[str, ...]:
        return self._provenance.get(chain_id, ())

    @property
    def used_fallback(self) -> bool:
        return bool(self._provenance) and all(s == (FALLBACK_SOURCE,) for s in self._provenance.values())

    async def get_chain(self, chain_id: int) -> Optional[ChainRecord]:
        for record in await self.fetch_all():
            if record.chain_id == chain_id:
                return record
        return None

    async def search(self, query: str) -> List[ChainRecord]:
        return search_records(await self.fetch_all(), query)

    async def mainnet_chains(self) -> List[ChainRecord]:
        return [r for r in await self.fetch_all() if not r.is_testnet]

    async def testnet_chains(self) -> List[ChainRecord]:
        return [r for r in await self.fetch_all() if r.is_testnet]

    async def verified_chains(self) -> List[ChainRecord]:
        return [r for r in await self.fetch_all() if r.verified]

    def clear_cache(self) -> None:
        self._cache = []
        self._cached_at = None
        self._provenance = {}
        logger.info("chain cache cleared")

    def cache_status(self) -> CacheStatus:
        age = self._clock() - self._cached_at if self._cached_at is not None else None
        return CacheStatus(size=len(self._cache), age_seconds=age, is_valid=self._cache_valid())
