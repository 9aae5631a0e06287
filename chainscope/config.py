"""
Runtime configuration for chainscope.

Everything tunable lives here and is read from the environment, after
loading `.env.local` / `.env` the same way the migration scripts do.
"""

import logging
import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Optional, Tuple

from dotenv import load_dotenv

DATA_DIR = Path(__file__).resolve().parent / "data"

DEFAULT_TRUSTED_CHAIN_IDS = (1, 10, 25, 56, 100, 137, 250, 324, 1101, 8453, 42161, 43114, 42220)
DEFAULT_POPULAR_CHAIN_IDS = (1, 137, 42161, 10, 56, 43114, 250, 100, 1101, 8453)


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "y", "on")


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name, default))
    except (TypeError, ValueError):
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.environ.get(name, default))
    except (TypeError, ValueError):
        return default


def _env_int_list(name: str, default: Tuple[int, ...]) -> Tuple[int, ...]:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    values = []
    for chunk in raw.split(","):
        try:
            values.append(int(chunk.strip()))
        except ValueError:
            continue
    return tuple(values) or default


@dataclass(frozen=True)
class Settings:
    # registry fetcher
    cache_ttl_seconds: float = 300.0
    request_timeout_seconds: float = 10.0
    max_retries: int = 2
    retry_backoff_seconds: float = 1.0
    min_chains_threshold: int = 50
    testnet_chain_id_threshold: int = 1_000_000
    trusted_chain_ids: Tuple[int, ...] = DEFAULT_TRUSTED_CHAIN_IDS
    chain_sources_json: Optional[str] = None

    # enrichment
    enrichment_cache_ttl_seconds: float = 600.0
    enrichment_timeout_seconds: float = 5.0
    max_metadata_chains: int = 50
    max_chain_id: int = 10_000
    enrichment_batch_size: int = 5
    enrichment_batch_delay_seconds: float = 1.0

    # prober / monitor
    probe_timeout_seconds: float = 10.0
    probe_batch_size: int = 5
    slow_threshold_ms: float = 5000.0
    health_cache_ttl_seconds: float = 300.0
    rate_limit_requests: int = 100
    rate_limit_window_seconds: float = 60.0
    history_retention_seconds: float = 24 * 60 * 60

    # background health pass
    popular_chain_ids: Tuple[int, ...] = DEFAULT_POPULAR_CHAIN_IDS
    health_refresh_batch_size: int = 3
    health_refresh_delay_seconds: float = 1.0
    health_refresh_max_chains: int = 25
    max_probes_per_chain: int = 5

    # selector
    official_score_threshold: int = 100
    recommended_score_threshold: int = 50
    official_latency_ceiling_ms: float = 2000.0
    reliable_latency_ceiling_ms: float = 3000.0
    wallet_max_endpoints: int = 3

    # files
    provider_table_path: Path = field(default=DATA_DIR / "providers.json")
    fallback_dataset_path: Path = field(default=DATA_DIR / "fallback_chains.json")

    insecure_ssl: bool = False
    allowed_origins: str = "*"
    log_level: str = "INFO"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    load_dotenv(".env.local")
    load_dotenv()

    defaults = Settings()
    return Settings(
        cache_ttl_seconds=_env_float("CACHE_TTL_SECONDS", defaults.cache_ttl_seconds),
        request_timeout_seconds=_env_float("REQUEST_TIMEOUT_SECONDS", defaults.request_timeout_seconds),
        max_retries=_env_int("MAX_RETRIES", defaults.max_retries),
        retry_backoff_seconds=_env_float("RETRY_BACKOFF_SECONDS", defaults.retry_backoff_seconds),
        min_chains_threshold=_env_int("MIN_CHAINS_THRESHOLD", defaults.min_chains_threshold),
        testnet_chain_id_threshold=_env_int("TESTNET_CHAIN_ID_THRESHOLD", defaults.testnet_chain_id_threshold),
        trusted_chain_ids=_env_int_list("TRUSTED_CHAIN_IDS", defaults.trusted_chain_ids),
        chain_sources_json=os.environ.get("CHAIN_SOURCES_JSON") or None,
        enrichment_cache_ttl_seconds=_env_float("ENRICHMENT_CACHE_TTL_SECONDS", defaults.enrichment_cache_ttl_seconds),
        enrichment_timeout_seconds=_env_float("ENRICHMENT_TIMEOUT_SECONDS", defaults.enrichment_timeout_seconds),
        max_metadata_chains=_env_int("MAX_METADATA_CHAINS", defaults.max_metadata_chains),
        max_chain_id=_env_int("MAX_CHAIN_ID", defaults.max_chain_id),
        enrichment_batch_size=_env_int("ENRICHMENT_BATCH_SIZE", defaults.enrichment_batch_size),
        enrichment_batch_delay_seconds=_env_float("ENRICHMENT_BATCH_DELAY_SECONDS", defaults.enrichment_batch_delay_seconds),
        probe_timeout_seconds=_env_float("PROBE_TIMEOUT_SECONDS", defaults.probe_timeout_seconds),
        probe_batch_size=_env_int("PROBE_BATCH_SIZE", defaults.probe_batch_size),
        slow_threshold_ms=_env_float("SLOW_THRESHOLD_MS", defaults.slow_threshold_ms),
        health_cache_ttl_seconds=_env_float("HEALTH_CACHE_TTL_SECONDS", defaults.health_cache_ttl_seconds),
        rate_limit_requests=_env_int("RATE_LIMIT_REQUESTS", defaults.rate_limit_requests),
        rate_limit_window_seconds=_env_float("RATE_LIMIT_WINDOW_SECONDS", defaults.rate_limit_window_seconds),
        history_retention_seconds=_env_float("HISTORY_RETENTION_SECONDS", defaults.history_retention_seconds),
        popular_chain_ids=_env_int_list("POPULAR_CHAIN_IDS", defaults.popular_chain_ids),
        health_refresh_batch_size=_env_int("HEALTH_REFRESH_BATCH_SIZE", defaults.health_refresh_batch_size),
        health_refresh_delay_seconds=_env_float("HEALTH_REFRESH_DELAY_SECONDS", defaults.health_refresh_delay_seconds),
        health_refresh_max_chains=_env_int("HEALTH_REFRESH_MAX_CHAINS", defaults.health_refresh_max_chains),
        max_probes_per_chain=_env_int("MAX_PROBES_PER_CHAIN", defaults.max_probes_per_chain),
        official_score_threshold=_env_int("OFFICIAL_SCORE_THRESHOLD", defaults.official_score_threshold),
        recommended_score_threshold=_env_int("RECOMMENDED_SCORE_THRESHOLD", defaults.recommended_score_threshold),
        official_latency_ceiling_ms=_env_float("OFFICIAL_LATENCY_CEILING_MS", defaults.official_latency_ceiling_ms),
        reliable_latency_ceiling_ms=_env_float("RELIABLE_LATENCY_CEILING_MS", defaults.reliable_latency_ceiling_ms),
        wallet_max_endpoints=_env_int("WALLET_MAX_ENDPOINTS", defaults.wallet_max_endpoints),
        provider_table_path=Path(os.environ.get("PROVIDER_TABLE_PATH", defaults.provider_table_path)),
        fallback_dataset_path=Path(os.environ.get("FALLBACK_DATASET_PATH", defaults.fallback_dataset_path)),
        insecure_ssl=_env_bool("INSECURE_SSL", defaults.insecure_ssl),
        allowed_origins=os.environ.get("ALLOWED_ORIGINS", defaults.allowed_origins),
        log_level=os.environ.get("LOG_LEVEL", defaults.log_level).upper(),
    )


def configure_logging(settings: Optional[Settings] = None) -> None:
    settings = settings or get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
