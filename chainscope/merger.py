"""
Chain data merger.

Combines fetched registry records with per-chain enrichment and endpoint
health into `MergedChainRecord`s, and owns the published `RegistrySnapshot`.

Registry building happens in two passes:

* the fast pass (`build_registry`) merges everything without probing, so every
  endpoint is `unknown` and no chain has a health summary yet;
* the background pass (`refresh_health`) probes a prioritized subset of chains
  and republishes the snapshot with only those records replaced.

Snapshots are immutable; every pass publishes a new one.
"""

import asyncio
import logging
import time
from dataclasses import fields, replace
from typing import Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .config import Settings, get_settings
from .enrichment import ChainMetadata, EnrichmentClient, select_enrichment_candidates
from .fallback import minimal_fallback_record
from .fetcher import FALLBACK_SOURCE, ChainRegistryFetcher, merge_features, search_records
from .models import (
    ChainHealthSummary,
    ChainRecord,
    ChainStats,
    EndpointHealth,
    MergedChainRecord,
    RegistrySnapshot,
    RpcStatus,
)
from .monitor import HealthMonitor, summarize
from .providers import ProviderTable, default_provider_table
from .sources import unique
from .utils import is_safe_url

logger = logging.getLogger(__name__)

FILTERS = ("mainnet", "testnet", "l2", "verified")

COMPLETENESS_WEIGHTS = {
    "name": 1,
    "chain_id": 1,
    "rpc": 2,
    "icon": 1,
    "explorers": 1,
    "features": 1,
    "rpc_health": 2,
    "bridges": 1,
}
COMPLETENESS_MAX = sum(COMPLETENESS_WEIGHTS.values())


def completeness(chain: MergedChainRecord) -> float:
    """Weighted presence check, 0-100."""
    present = {
        "name": bool(chain.name),
        "chain_id": bool(chain.chain_id),
        "rpc": bool(chain.rpc),
        "icon": bool(chain.icon),
        "explorers": bool(chain.explorers),
        "features": bool(chain.features),
        "rpc_health": chain.rpc_health is not None,
        "bridges": bool(chain.bridges),
    }
    score = sum(weight for key, weight in COMPLETENESS_WEIGHTS.items() if present[key])
    return score / COMPLETENESS_MAX * 100


def sort_key(chain: MergedChainRecord):
    reliability = chain.rpc_health.reliability_score_pct if chain.rpc_health else 0
    return (
        not chain.verified,
        -completeness(chain),
        chain.is_testnet,
        -reliability,
        chain.name.lower(),
        chain.chain_id,
    )


def origin_of(sources: Sequence[str]) -> str:
    if tuple(sources) == (FALLBACK_SOURCE,):
        return "fallback"
    if sources and sources[0] == "ethereum-lists":
        return "ethereum-lists"
    return "chainlist"


def _as_merged(record: ChainRecord, **extra) -> MergedChainRecord:
    base = {f.name: getattr(record, f.name) for f in fields(ChainRecord)}
    base.update(extra)
    return MergedChainRecord(**base)


class ChainDataMerger:
    def __init__(
        self,
        fetcher: ChainRegistryFetcher,
        enrichment: EnrichmentClient,
        monitor: HealthMonitor,
        settings: Optional[Settings] = None,
        providers: Optional[ProviderTable] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.fetcher = fetcher
        self.enrichment = enrichment
        self.monitor = monitor
        self.settings = settings or get_settings()
        self.providers = providers or default_provider_table()
        self._clock = clock
        self._sleep = sleep
        self._snapshot = RegistrySnapshot(chains=(), generated_at=clock())

    @property
    def snapshot(self) -> RegistrySnapshot:
        return self._snapshot

    # --- pure merging ------------------------------------------------------

    def unprobed_endpoints(self, urls: Iterable[str]) -> Tuple[EndpointHealth, ...]:
        return tuple(EndpointHealth.unprobed(u, self.providers.tracking_level(u)) for u in urls)

    def merge_chain(
        self,
        record: ChainRecord,
        metadata: Optional[ChainMetadata] = None,
        sources: Sequence[str] = (),
    ) -> MergedChainRecord:
        """Fast-pass merge of one record: enrichment applied, nothing probed."""
        changes = {}
        if metadata is not None:
            tags = unique(record.tags + metadata.tags)
            wrong_network_tag = "mainnet" if record.is_testnet else "testnet"
            explorers = record.explorers
            if any(e.icon for e in metadata.explorers):
                explorers = metadata.explorers
            changes = dict(
                title=metadata.title or record.title or record.name,
                parent=metadata.parent or record.parent,
                features=merge_features(record.features, metadata.features),
                bridges=metadata.bridges or record.bridges,
                slip44=metadata.slip44 if metadata.slip44 is not None else record.slip44,
                ens=metadata.ens or record.ens,
                red_flags=metadata.red_flags or record.red_flags,
                tags=tuple(t for t in tags if t != wrong_network_tag),
                explorers=explorers,
                rpc=unique(record.rpc + metadata.rpc),
                icon=record.icon or metadata.icon,
            )
        record = replace(record, **changes)

        return _as_merged(
            record,
            data_source="merged" if metadata is not None else origin_of(sources),
            sources=tuple(sources),
            last_updated=self._clock(),
            endpoints=self.unprobed_endpoints(record.rpc),
            rpc_health=None,
        )

    def fallback_chain(self, record: ChainRecord, sources: Sequence[str] = ()) -> MergedChainRecord:
        """Minimal unhealthy record used when merging a chain fails."""
        return _as_merged(
            record,
            bridges=(),
            data_source=origin_of(sources),
            sources=tuple(sources),
            last_updated=self._clock(),
            endpoints=self.unprobed_endpoints(record.rpc),
            rpc_health=ChainHealthSummary(
                average_latency=None,
                reliability_score_pct=0,
                privacy_score_pct=None,
                total_endpoints=len(record.rpc),
            ),
        )

    def minimal_fallback_chain(self) -> MergedChainRecord:
        return self.merge_chain(minimal_fallback_record(), sources=(FALLBACK_SOURCE,))

    def merge_all(
        self,
        records: Iterable[ChainRecord],
        enrichment: Optional[Mapping[int, ChainMetadata]] = None,
        provenance: Optional[Mapping[int, Sequence[str]]] = None,
    ) -> List[MergedChainRecord]:
        enrichment = enrichment or {}
        provenance = provenance or {}
        merged = []
        for record in records:
            sources = provenance.get(record.chain_id, ())
            try:
                merged.append(self.merge_chain(record, enrichment.get(record.chain_id), sources))
            except Exception as e:
                logger.warning("failed to merge chain %s: %s", record.chain_id, e)
                merged.append(self.fallback_chain(record, sources))
        return sorted(merged, key=sort_key)

    # --- passes ------------------------------------------------------------

    def _publish(self, chains: Iterable[MergedChainRecord], health_refreshed_at: Optional[float] = None) -> RegistrySnapshot:
        self._snapshot = RegistrySnapshot(
            chains=tuple(sorted(chains, key=sort_key)),
            generated_at=self._clock(),
            health_refreshed_at=health_refreshed_at,
        )
        return self._snapshot

    async def build_registry(self) -> RegistrySnapshot:
        """Fast pass: fetch, enrich a bounded subset, merge, publish."""
        try:
            records = await self.fetcher.fetch_all()
            enrichment = await self._fetch_enrichment(records)
            provenance = {r.chain_id: self.fetcher.sources_for(r.chain_id) for r in records}
            chains = self.merge_all(records, enrichment, provenance)
            if not chains:
                raise ValueError("registry is empty")
        except Exception as e:
            logger.error("registry build failed (%s), publishing minimal fallback", e)
            chains = [self.minimal_fallback_chain()]

        snapshot = self._publish(chains)
        logger.info("published registry with %d chains", len(snapshot))
        return snapshot

    async def _fetch_enrichment(self, records: Sequence[ChainRecord]) -> Dict[int, ChainMetadata]:
        candidates = select_enrichment_candidates(records, self.settings)
        try:
            return await self.enrichment.fetch_multiple(candidates)
        except Exception as e:
            logger.warning("enrichment failed (%s), continuing without it", e)
            return {}

    def health_targets(self, snapshot: Optional[RegistrySnapshot] = None) -> List[int]:
        """Popular chains first, then verified ones, up to HEALTH_REFRESH_MAX_CHAINS."""
        snapshot = snapshot or self._snapshot
        present = {c.chain_id for c in snapshot.chains}
        targets = [cid for cid in self.settings.popular_chain_ids if cid in present]
        targets += [c.chain_id for c in snapshot.chains if c.verified]
        return list(unique(targets))[:max(0, self.settings.health_refresh_max_chains)]

    def attach_health(self, chain: MergedChainRecord, results: Dict[str, EndpointHealth]) -> MergedChainRecord:
        endpoints = tuple(
            results.get(url) or chain.endpoint_for(url) or EndpointHealth.unprobed(url, self.providers.tracking_level(url))
            for url in chain.rpc
        )
        return replace(chain, endpoints=endpoints, rpc_health=summarize(endpoints), last_updated=self._clock())

    async def probe_chain(self, chain: MergedChainRecord) -> MergedChainRecord:
        probeable = [u for u in chain.rpc if is_safe_url(u)[0]]
        sample = probeable[:max(0, self.settings.max_probes_per_chain)]
        results = {h.url: h for h in await self.monitor.test_multiple_rpcs(sample)}
        return self.attach_health(chain, results)

    async def refresh_health(self, chain_ids: Optional[Sequence[int]] = None) -> RegistrySnapshot:
        """
        Background pass: probe the given chains (default: `health_targets()`)
        `HEALTH_REFRESH_BATCH_SIZE` at a time and republish the snapshot with
        only those chains replaced.
        """
        snapshot = self._snapshot
        if chain_ids is None:
            chain_ids = self.health_targets(snapshot)
        targets = [snapshot.get(cid) for cid in chain_ids]
        targets = [c for c in targets if c is not None]

        size = max(1, self.settings.health_refresh_batch_size)
        batches = [targets[i:i + size] for i in range(0, len(targets), size)]
        updated: Dict[int, MergedChainRecord] = {}

        for n, batch in enumerate(batches, start=1):
            results = await asyncio.gather(*(self.probe_chain(c) for c in batch), return_exceptions=True)
            for chain, result in zip(batch, results):
                if isinstance(result, Exception):
                    logger.warning("health refresh failed for chain %s: %s", chain.chain_id, result)
                    continue
                updated[chain.chain_id] = result
            if n < len(batches):
                await self._sleep(self.settings.health_refresh_delay_seconds)

        # the registry may have been rebuilt while probing: keep the rebuilt
        # record and carry only the probe results over to it
        current = self._snapshot
        probed_from = {c.chain_id: c for c in targets}
        chains = []
        for chain in current.chains:
            result = updated.get(chain.chain_id)
            if result is None:
                chains.append(chain)
            elif chain is probed_from[chain.chain_id]:
                chains.append(result)
            else:
                chains.append(self.attach_health(chain, {e.url: e for e in result.endpoints if e.probed}))
        refreshed = self._publish(chains, health_refreshed_at=self._clock())
        logger.info("refreshed health for %d chains", len(updated))
        return refreshed

    def health_stale(self) -> bool:
        refreshed_at = self._snapshot.health_refreshed_at
        if refreshed_at is None:
            return True
        return self._clock() - refreshed_at > self.settings.health_cache_ttl_seconds

    # --- queries -----------------------------------------------------------

    def get_chain(self, chain_id: int) -> Optional[MergedChainRecord]:
        return self._snapshot.get(chain_id)

    def search(self, query: str) -> List[MergedChainRecord]:
        return search_records(self._snapshot.chains, query)

    def filter(self, kind: str) -> List[MergedChainRecord]:
        kind = (kind or "").lower()
        chains = self._snapshot.chains
        if kind == "mainnet":
            return [c for c in chains if not c.is_testnet]
        if kind == "testnet":
            return [c for c in chains if c.is_testnet]
        if kind == "l2":
            return [c for c in chains if c.parent is not None or "L2" in c.tags]
        if kind == "verified":
            return [c for c in chains if c.verified]
        raise ValueError(f"unknown filter {kind!r}, expected one of {', '.join(FILTERS)}")

    def stats(self) -> ChainStats:
        chains = self._snapshot.chains
        return ChainStats(
            total_chains=len(chains),
            mainnet_chains=sum(1 for c in chains if not c.is_testnet),
            testnet_chains=sum(1 for c in chains if c.is_testnet),
            verified_chains=sum(1 for c in chains if c.verified),
            l2_chains=sum(1 for c in chains if c.parent is not None or "L2" in c.tags),
            total_rpcs=sum(len(c.rpc) for c in chains),
            healthy_rpcs=sum(1 for c in chains for e in c.endpoints if e.status is RpcStatus.ONLINE),
            bridge_supported=sum(1 for c in chains if c.bridges),
        )

    def popular_chains(self) -> List[MergedChainRecord]:
        chains = (self._snapshot.get(cid) for cid in self.settings.popular_chain_ids)
        return [c for c in chains if c is not None]
