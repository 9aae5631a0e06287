"""
Per-chain enrichment from the ethereum-lists repository.

The chain registries only carry the basics; the individual
`eip155-<id>.json` files add parent chain details, bridges, declared
features, explorer icons and red flags. A missing file (404) simply means
there is nothing to add.
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import aiohttp

from .config import Settings, get_settings
from .errors import NetworkError
from .models import BridgeInfo, ChainFeature, ChainRecord, Explorer, ParentChain
from .sources import (
    TESTNET_KEYWORDS,
    as_list,
    bridges_for,
    clean_rpc_list,
    feature_type,
    parse_explorers,
    parse_parent,
    unique,
)
from .utils import parse_chain_id

logger = logging.getLogger(__name__)

ETHEREUM_LISTS_BASE = "https://raw.githubusercontent.com/ethereum-lists/chains/master/_data/chains"
ENRICHMENT_HEADERS = {"Accept": "application/json", "User-Agent": "chainscope/1.0"}


@dataclass(frozen=True)
class ChainMetadata:
    chain_id: int
    name: str = ""
    title: Optional[str] = None
    info_url: str = ""
    icon: Optional[str] = None
    status: Optional[str] = None
    rpc: Tuple[str, ...] = ()
    explorers: Tuple[Explorer, ...] = ()
    parent: Optional[ParentChain] = None
    features: Tuple[ChainFeature, ...] = ()
    bridges: Tuple[BridgeInfo, ...] = ()
    tags: Tuple[str, ...] = ()
    red_flags: Tuple[str, ...] = ()
    slip44: Optional[int] = None
    ens: Optional[Dict[str, str]] = None


def metadata_url(chain_id: int) -> str:
    return f"{ETHEREUM_LISTS_BASE}/eip155-{chain_id}.json"


def _metadata_tags(raw: dict, parent: Optional[ParentChain]) -> Tuple[str, ...]:
    name = str(raw.get("name") or "").lower()
    network = str(raw.get("network") or "").lower()
    testnet = any(k in name for k in TESTNET_KEYWORDS) or "test" in network

    tags = ["testnet" if testnet else "mainnet"]
    if parent is not None:
        tags.extend(["L2", parent.type])
    else:
        tags.append("L1")
    features = as_list(raw.get("features"))
    if any("evm" in str(f.get("name", "")).lower() for f in features if isinstance(f, dict)):
        tags.append("evm-compatible")
    if isinstance(raw.get("status"), str) and raw["status"]:
        tags.append(raw["status"])
    return unique(tags)


def parse_metadata(raw: dict, chain_id: int) -> ChainMetadata:
    if not isinstance(raw, dict):
        raise ValueError("metadata is not an object")

    name = str(raw.get("name") or "").strip()
    parent = parse_parent(raw.get("parent"))
    features = tuple(
        ChainFeature(name=str(f["name"]), type=feature_type(str(f["name"])))
        for f in as_list(raw.get("features"))
        if isinstance(f, dict) and f.get("name")
    )
    red_flags = tuple(str(flag) for flag in as_list(raw.get("redFlags")) if flag)
    slip44 = raw.get("slip44")
    ens = raw.get("ens")

    return ChainMetadata(
        chain_id=parse_chain_id(raw.get("chainId")) or chain_id,
        name=name,
        title=str(raw["title"]).strip() if raw.get("title") else None,
        info_url=str(raw.get("infoURL") or "").strip(),
        icon=str(raw["icon"]).strip() if raw.get("icon") else None,
        status=raw.get("status") if isinstance(raw.get("status"), str) else None,
        rpc=clean_rpc_list(raw.get("rpc")),
        explorers=parse_explorers(raw.get("explorers")),
        parent=parent,
        features=features,
        bridges=bridges_for(chain_id, name, parent),
        tags=_metadata_tags(raw, parent),
        red_flags=red_flags,
        slip44=slip44 if isinstance(slip44, int) and not isinstance(slip44, bool) else None,
        ens={k: v for k, v in ens.items() if isinstance(v, str)} if isinstance(ens, dict) else None,
    )


def select_enrichment_candidates(records: Iterable[ChainRecord], settings: Settings) -> List[int]:
    """Verified or low-id chains under MAX_CHAIN_ID, capped at MAX_METADATA_CHAINS."""
    candidates = [
        r.chain_id for r in records
        if (r.verified or r.chain_id <= 1000) and r.chain_id <= settings.max_chain_id
    ]
    return candidates[:max(0, settings.max_metadata_chains)]


class EnrichmentClient:
    def __init__(
        self,
        session: aiohttp.ClientSession,
        settings: Optional[Settings] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._session = session
        self.settings = settings or get_settings()
        self._clock = clock
        self._sleep = sleep
        self._cache: Dict[int, Tuple[float, Optional[ChainMetadata]]] = {}
        self.request_count = 0

    def _cached(self, chain_id: int):
        entry = self._cache.get(chain_id)
        if entry is None:
            return False, None
        stored_at, metadata = entry
        if self._clock() - stored_at >= self.settings.enrichment_cache_ttl_seconds:
            return False, None
        return True, metadata

    async def fetch_chain_metadata(self, chain_id: int) -> Optional[ChainMetadata]:
        hit, metadata = self._cached(chain_id)
        if hit:
            return metadata

        url = metadata_url(chain_id)
        timeout = aiohttp.ClientTimeout(total=self.settings.enrichment_timeout_seconds)
        self.request_count += 1
        try:
            async with self._session.get(url, headers=ENRICHMENT_HEADERS, timeout=timeout) as response:
                if response.status == 404:
                    self._cache[chain_id] = (self._clock(), None)
                    return None
                if response.status == 429:
                    logger.warning("enrichment rate limited for chain %s, skipping", chain_id)
                    return None
                if not 200 <= response.status < 300:
                    raise NetworkError(url, f"HTTP {response.status}", status=response.status)
                payload = await response.text()
        except asyncio.TimeoutError:
            logger.warning("enrichment request timed out for chain %s", chain_id)
            return None
        except (aiohttp.ClientError, NetworkError) as e:
            logger.warning("error fetching metadata for chain %s: %s", chain_id, e)
            return None

        try:
            metadata = parse_metadata(json.loads(payload), chain_id)
        except (ValueError, TypeError, AttributeError) as e:
            logger.warning("unreadable metadata for chain %s: %s", chain_id, e)
            return None

        self._cache[chain_id] = (self._clock(), metadata)
        return metadata

    async def fetch_multiple(self, chain_ids: Sequence[int]) -> Dict[int, ChainMetadata]:
        """
        Fetch metadata for many chains, `ENRICHMENT_BATCH_SIZE` at a time with
        `ENRICHMENT_BATCH_DELAY_SECONDS` between batches.
        """
        results: Dict[int, ChainMetadata] = {}
        size = max(1, self.settings.enrichment_batch_size)
        batches = [chain_ids[i:i + size] for i in range(0, len(chain_ids), size)]

        for n, batch in enumerate(batches, start=1):
            found = await asyncio.gather(*(self.fetch_chain_metadata(cid) for cid in batch), return_exceptions=True)
            for chain_id, metadata in zip(batch, found):
                if isinstance(metadata, Exception):
                    logger.warning("enrichment failed for chain %s: %s", chain_id, metadata)
                elif metadata is not None:
                    results[chain_id] = metadata
            logger.debug("enrichment batch %d/%d done", n, len(batches))
            if n < len(batches):
                await self._sleep(self.settings.enrichment_batch_delay_seconds)

        logger.info("fetched metadata for %d/%d chains", len(results), len(chain_ids))
        return results

    def clear_cache(self) -> None:
        self._cache.clear()
