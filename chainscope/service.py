"""
Service container.

Builds one HTTP session and one instance of every component at startup and
hands them out by reference, so all consumers share the same caches.
"""

import asyncio
import logging
from typing import List, Optional

import aiohttp

from .config import Settings, get_settings
from .enrichment import EnrichmentClient
from .fetcher import ChainRegistryFetcher
from .merger import ChainDataMerger
from .models import ChainRecord
from .monitor import HealthMonitor
from .prober import Resolver, RpcProber
from .providers import ProviderTable, load_provider_table
from .rate_limit import RateLimiter
from .selector import rpc_endpoint_info, select_wallet_safe_endpoints, sorted_rpc_endpoints
from .utils import get_ssl_context

logger = logging.getLogger(__name__)


def create_session() -> aiohttp.ClientSession:
    """Shared client session; must be called from inside a running event loop."""
    connector = aiohttp.TCPConnector(ssl=get_ssl_context() or True, limit=50)
    return aiohttp.ClientSession(connector=connector)


class ChainscopeService:
    def __init__(
        self,
        session: aiohttp.ClientSession,
        settings: Optional[Settings] = None,
        providers: Optional[ProviderTable] = None,
        fetcher: Optional[ChainRegistryFetcher] = None,
        enrichment: Optional[EnrichmentClient] = None,
        resolver: Optional[Resolver] = None,
    ):
        self.session = session
        self.settings = settings or get_settings()
        self.providers = providers or load_provider_table(self.settings.provider_table_path)

        self.rate_limiter = RateLimiter(self.settings.rate_limit_requests, self.settings.rate_limit_window_seconds)
        self.prober = RpcProber(session, self.settings, self.providers, self.rate_limiter, resolver=resolver)
        self.monitor = HealthMonitor(self.prober, self.settings)
        self.fetcher = fetcher or ChainRegistryFetcher(session, self.settings)
        self.enrichment = enrichment or EnrichmentClient(session, self.settings)
        self.merger = ChainDataMerger(self.fetcher, self.enrichment, self.monitor, self.settings, self.providers)
        self._background: Optional[asyncio.Task] = None

    @classmethod
    def create(cls, settings: Optional[Settings] = None) -> "ChainscopeService":
        settings = settings or get_settings()
        return cls(create_session(), settings)

    # selector entry points bound to this service's provider table and settings
    def wallet_rpcs(self, chain: ChainRecord) -> List[str]:
        return select_wallet_safe_endpoints(chain, providers=self.providers, settings=self.settings)

    def ranked_rpcs(self, chain: ChainRecord):
        return sorted_rpc_endpoints(chain, providers=self.providers, settings=self.settings)

    def rpc_info(self, chain: ChainRecord):
        return rpc_endpoint_info(chain, providers=self.providers, settings=self.settings)

    def start_background_refresh(self) -> asyncio.Task:
        """Schedule the background health pass unless one is already running."""
        if self._background is not None and not self._background.done():
            return self._background
        self._background = asyncio.ensure_future(self.merger.refresh_health())
        self._background.add_done_callback(self._background_done)
        return self._background

    @staticmethod
    def _background_done(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        if task.exception() is not None:
            logger.error("background health refresh failed: %s", task.exception())

    async def aclose(self) -> None:
        if self._background is not None and not self._background.done():
            self._background.cancel()
            try:
                await self._background
            except asyncio.CancelledError:
                pass
        await self.session.close()

    async def __aenter__(self) -> "ChainscopeService":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()
