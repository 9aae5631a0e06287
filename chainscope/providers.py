"""
Versioned provider table: official RPC patterns, reliable provider domains and
tracking classifications. Kept as data so it can be updated without touching
the selection logic.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Dict, Optional, Pattern, Tuple

from .models import TrackingLevel
from .utils import hostname

logger = logging.getLogger(__name__)


def _host_matches(host: str, domain: str) -> bool:
    domain = domain.lower()
    return host == domain or host.endswith("." + domain)


@dataclass(frozen=True)
class ProviderTable:
    version: int = 0
    generic_official: Tuple[Pattern, ...] = ()
    chain_official: Dict[int, Tuple[Pattern, ...]] = field(default_factory=dict)
    reliable_domains: Tuple[str, ...] = ()
    no_tracking: Tuple[str, ...] = ()
    limited_tracking: Tuple[str, ...] = ()

    def is_official(self, url: str, chain_id: Optional[int] = None) -> bool:
        patterns = self.generic_official
        if chain_id is not None:
            patterns = self.chain_official.get(chain_id, ()) + patterns
        else:
            patterns = tuple(p for group in self.chain_official.values() for p in group) + patterns
        return any(p.search(url) for p in patterns)

    def is_reliable(self, url: str) -> bool:
        host = hostname(url)
        return bool(host) and any(_host_matches(host, d) for d in self.reliable_domains)

    def tracking_level(self, url: str) -> TrackingLevel:
        host = hostname(url)
        if any(_host_matches(host, d) for d in self.no_tracking):
            return TrackingLevel.NONE
        if any(_host_matches(host, d) for d in self.limited_tracking):
            return TrackingLevel.LIMITED
        return TrackingLevel.YES


def parse_provider_table(payload: dict) -> ProviderTable:
    official = payload.get("official") or {}
    chains = {}
    for raw_id, patterns in (official.get("chains") or {}).items():
        try:
            chain_id = int(raw_id)
        except (TypeError, ValueError):
            logger.warning("provider table: ignoring non-numeric chain key %r", raw_id)
            continue
        chains[chain_id] = tuple(re.compile(p) for p in patterns)

    tracking = payload.get("tracking") or {}
    return ProviderTable(
        version=int(payload.get("version", 0)),
        generic_official=tuple(re.compile(p) for p in official.get("generic", [])),
        chain_official=chains,
        reliable_domains=tuple(d.lower() for d in payload.get("reliable", [])),
        no_tracking=tuple(d.lower() for d in tracking.get("none", [])),
        limited_tracking=tuple(d.lower() for d in tracking.get("limited", [])),
    )


@lru_cache(maxsize=4)
def load_provider_table(path: Path) -> ProviderTable:
    table = parse_provider_table(json.loads(Path(path).read_text(encoding="utf-8")))
    logger.debug("loaded provider table v%s from %s", table.version, path)
    return table


def default_provider_table() -> ProviderTable:
    from .config import get_settings

    return load_provider_table(get_settings().provider_table_path)
