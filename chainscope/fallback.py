"""
Bundled static chain data, used when every registry source is unreachable.
"""

import json
import logging
from pathlib import Path
from typing import List, Optional

from .config import Settings, get_settings
from .models import ChainRecord, Explorer, NativeCurrency
from .sources import transform_many

logger = logging.getLogger(__name__)

MINIMAL_RPC = "https://ethereum.publicnode.com"


def load_fallback_dataset(path: Optional[Path] = None, settings: Optional[Settings] = None) -> List[ChainRecord]:
    """
    Read the versioned fallback file and run it through the normal record
    transform, so fallback records look exactly like fetched ones.
    """
    settings = settings or get_settings()
    path = Path(path or settings.fallback_dataset_path)
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.error("could not read fallback dataset %s: %s", path, e)
        return [minimal_fallback_record()]

    chains = payload.get("chains", []) if isinstance(payload, dict) else payload
    records = transform_many(chains, settings, "fallback")
    logger.info("loaded fallback dataset v%s (%d chains)", payload.get("version", "?") if isinstance(payload, dict) else "?", len(records))
    return records or [minimal_fallback_record()]


def minimal_fallback_record() -> ChainRecord:
    return ChainRecord(
        chain_id=1,
        name="Ethereum",
        short_name="eth",
        network="mainnet",
        network_id=1,
        native_currency=NativeCurrency("Ether", "ETH", 18),
        rpc=(MINIMAL_RPC,),
        explorers=(Explorer("Etherscan", "https://etherscan.io", "EIP3091"),),
        info_url="https://ethereum.org",
        status="active",
        verified=True,
        is_testnet=False,
        chain="ETH",
        tags=("ethereum", "mainnet", "verified"),
    )

