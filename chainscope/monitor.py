"""
Health monitor: probes whole endpoint lists through the prober in bounded
batches and rolls the results up into chain-level summaries.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from .config import Settings, get_settings
from .models import PRIVACY_SCORES, ChainHealthSummary, EndpointHealth, RpcStatus
from .prober import RpcProber

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChainPerformance:
    chain_id: int
    summary: Optional[ChainHealthSummary]
    endpoints: Tuple[EndpointHealth, ...]


def summarize(endpoints: Iterable[EndpointHealth]) -> Optional[ChainHealthSummary]:
    """
    Roll endpoint results into a chain summary.

    Endpoints that were never probed are counted in the total but do not
    move any score; if nothing was probed there is no summary at all.
    """
    endpoints = list(endpoints)
    probed = [e for e in endpoints if e.probed]
    if not probed:
        return None

    latencies = [e.latency_ms for e in probed if e.latency_ms is not None and e.latency_ms > 0]
    healthy = [e for e in probed if e.status is RpcStatus.ONLINE]
    privacy = [PRIVACY_SCORES[e.tracking] for e in probed]

    return ChainHealthSummary(
        average_latency=round(sum(latencies) / len(latencies)) if latencies else None,
        reliability_score_pct=round(len(healthy) / len(probed) * 100),
        privacy_score_pct=round(sum(privacy) / len(privacy)) if privacy else None,
        total_endpoints=len(endpoints),
        probed_endpoints=len(probed),
        healthy_endpoints=len(healthy),
    )


class HealthMonitor:
    def __init__(self, prober: RpcProber, settings: Optional[Settings] = None,
                 clock: Callable[[], float] = time.time):
        self.prober = prober
        self.settings = settings or get_settings()
        self._clock = clock
        self._history: Dict[str, List[EndpointHealth]] = {}

    async def check_health(self, url: str) -> EndpointHealth:
        return await self.prober.check_health(url)

    async def _check_one(self, url: str) -> EndpointHealth:
        try:
            return await self.prober.check_health(url)
        except Exception as e:
            logger.warning("unexpected probe error for %s: %s", url, e)
            return EndpointHealth.offline(url, self.prober.tracking_level(url))

    async def test_multiple_rpcs(self, urls: Sequence[str]) -> List[EndpointHealth]:
        """
        Probe every URL, `probe_batch_size` at a time.

        Members of a batch run concurrently; the next batch starts only after
        the previous one has fully settled. Results keep the input order.
        """
        size = max(1, self.settings.probe_batch_size)
        results: List[EndpointHealth] = []
        for i in range(0, len(urls), size):
            batch = urls[i:i + size]
            batch_results = await asyncio.gather(*(self._check_one(url) for url in batch))
            results.extend(batch_results)
        self._record(results)
        return results

    async def chain_performance(self, chain_id: int, urls: Sequence[str]) -> ChainPerformance:
        endpoints = await self.test_multiple_rpcs(urls)
        return ChainPerformance(chain_id=chain_id, summary=summarize(endpoints), endpoints=tuple(endpoints))

    def summarize(self, endpoints: Iterable[EndpointHealth]) -> Optional[ChainHealthSummary]:
        return summarize(endpoints)

    def _record(self, results: Iterable[EndpointHealth]) -> None:
        cutoff = self._clock() - self.settings.history_retention_seconds
        for health in results:
            if not health.probed:
                continue
            history = self._history.setdefault(health.url, [])
            # cached results come back unchanged, record each probe once
            if history and history[-1].last_checked_at == health.last_checked_at:
                continue
            history.append(health)

        for url in list(self._history):
            kept = [h for h in self._history[url] if h.last_checked_at > cutoff]
            if kept:
                self._history[url] = kept
            else:
                del self._history[url]

    def tracked_urls(self) -> int:
        return len(self._history)

    def history(self, url: str) -> List[EndpointHealth]:
        cutoff = self._clock() - self.settings.history_retention_seconds
        return [h for h in self._history.get(url, []) if h.last_checked_at > cutoff]
