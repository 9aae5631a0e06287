"""
Chain registry sources and their parsers.

Each source is a URL plus a parser that turns the raw response text into
validated `ChainRecord`s. Records that fail validation are dropped one by one;
a payload that cannot be parsed at all raises `ParseError` so the fetcher can
skip the whole source.
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from .config import Settings, get_settings
from .errors import ParseError, ValidationError
from .models import BridgeInfo, ChainFeature, ChainRecord, Explorer, NativeCurrency, ParentChain
from .utils import is_valid_rpc_url, parse_chain_id

logger = logging.getLogger(__name__)

CHAINLIST_URL = "https://chainid.network/chains.json"
ETHEREUM_LISTS_URL = "https://raw.githubusercontent.com/ethereum-lists/chains/master/_data/chains_mini.json"
EXTRA_RPCS_URL = "https://raw.githubusercontent.com/DefiLlama/chainlist/main/constants/extraRpcs.js"

TESTNET_KEYWORDS = (
    "test", "sepolia", "goerli", "holesky", "mumbai", "fuji", "chapel", "rinkeby", "ropsten", "kovan",
)
TRUSTED_NAME_KEYWORDS = ("ethereum", "polygon", "binance", "avalanche", "fantom", "optimism", "arbitrum", "base")
STATUSES = ("active", "deprecated", "incubating")
SUSPICIOUS_CHAIN_ID = 999_999_999

PLACEHOLDER_SYMBOL = "UNKNOWN"
_PLACEHOLDER_NAME = re.compile(r"^Chain \d+$")

# Native L2 bridges that the registries do not always list under `parent.bridges`.
KNOWN_NATIVE_BRIDGES = {
    "arbitrum one": ("Arbitrum Bridge", "https://bridge.arbitrum.io", "optimistic"),
    "arbitrum": ("Arbitrum Bridge", "https://bridge.arbitrum.io", "optimistic"),
    "optimism": ("Optimism Bridge", "https://app.optimism.io/bridge", "optimistic"),
    "op mainnet": ("Optimism Bridge", "https://app.optimism.io/bridge", "optimistic"),
    "base": ("Base Bridge", "https://bridge.base.org", "optimistic"),
    "polygon zkevm": ("Polygon zkEVM Bridge", "https://bridge.zkevm-rpc.com", "zk"),
}
ETHEREUM_PARENTS = ("eip155-1", "ethereum")


@dataclass(frozen=True)
class Source:
    name: str
    url: str
    parser: Callable[[str, Settings], List[ChainRecord]]
    priority: int


def is_placeholder_name(name: str) -> bool:
    return not name or bool(_PLACEHOLDER_NAME.match(name))


def is_placeholder_symbol(symbol: str) -> bool:
    return not symbol or symbol.upper() == PLACEHOLDER_SYMBOL


def unique(items: Iterable) -> Tuple:
    """Order-preserving de-duplication."""
    seen = set()
    out = []
    for item in items:
        if item in seen:
            continue
        seen.add(item)
        out.append(item)
    return tuple(out)


def _text(value) -> str:
    return value.strip() if isinstance(value, str) else ""


def as_list(value) -> list:
    return value if isinstance(value, list) else []


def normalize_parent_type(value: str) -> str:
    lower = _text(value).lower()
    if "sidechain" in lower:
        return "sidechain"
    if "rollup" in lower or "optimistic" in lower or "zk" in lower:
        return "rollup"
    return "L2"


def feature_type(name: str) -> str:
    lower = name.lower()
    if lower.startswith("eip") or "eip-" in lower:
        return "eip"
    if "erc" in lower or "standard" in lower:
        return "standard"
    return "custom"


def detect_testnet(raw: dict, chain_id: int, settings: Settings) -> bool:
    if isinstance(raw.get("isTestnet"), bool):
        return raw["isTestnet"]
    haystacks = (_text(raw.get("name")).lower(), _text(raw.get("shortName")).lower(), _text(raw.get("network")).lower())
    if any(keyword in text for keyword in TESTNET_KEYWORDS for text in haystacks):
        return True
    return chain_id > settings.testnet_chain_id_threshold


def detect_verified(raw: dict, chain_id: int, settings: Settings) -> bool:
    if raw.get("verified") is True:
        return True
    if chain_id in settings.trusted_chain_ids:
        return True
    name = _text(raw.get("name")).lower()
    return any(trusted in name for trusted in TRUSTED_NAME_KEYWORDS)


def parse_parent(raw_parent) -> Optional[ParentChain]:
    if not isinstance(raw_parent, dict):
        return None
    bridges = []
    for bridge in as_list(raw_parent.get("bridges")):
        url = bridge.get("url") if isinstance(bridge, dict) else bridge
        if isinstance(url, str) and url.strip():
            bridges.append(url.strip())
    return ParentChain(
        type=normalize_parent_type(raw_parent.get("type", "")),
        chain=_text(raw_parent.get("chain")),
        bridges=unique(bridges),
    )


def parse_explorers(raw_explorers) -> Tuple[Explorer, ...]:
    explorers = []
    for item in as_list(raw_explorers):
        if not isinstance(item, dict) or not _text(item.get("url")):
            continue
        explorers.append(Explorer(
            name=_text(item.get("name")) or _text(item.get("url")),
            url=_text(item.get("url")),
            standard=_text(item.get("standard")),
            icon=_text(item.get("icon")) or None,
        ))
    return tuple(explorers)


def clean_rpc_list(urls) -> Tuple[str, ...]:
    if not isinstance(urls, list):
        return ()
    return unique(u.strip() for u in urls if isinstance(u, str) and is_valid_rpc_url(u))


def bridges_for(chain_id: int, name: str, parent: Optional[ParentChain]) -> Tuple[BridgeInfo, ...]:
    if parent is None:
        return ()
    bridges = []
    protocol = "rollup" if parent.type == "rollup" else "bridge"
    for url in parent.bridges:
        bridges.append(BridgeInfo(
            name=f"{parent.chain or 'Parent'} Bridge",
            url=url,
            type="native",
            chains=(chain_id,),
            protocols=(protocol,),
        ))

    if parent.chain.lower() in ETHEREUM_PARENTS:
        known = KNOWN_NATIVE_BRIDGES.get(name.lower())
        if known:
            bridge_name, url, bridge_protocol = known
            if url not in parent.bridges:
                bridges.append(BridgeInfo(bridge_name, url, "native", (1, chain_id), (bridge_protocol,)))
    return merge_bridges((), bridges)


def merge_bridges(existing: Iterable[BridgeInfo], new: Iterable[BridgeInfo]) -> Tuple[BridgeInfo, ...]:
    """Merge bridge lists on (name, type), unioning chains and protocols."""
    merged: Dict[Tuple[str, str], BridgeInfo] = {}
    for bridge in list(existing) + list(new):
        key = (bridge.name, bridge.type)
        current = merged.get(key)
        if current is None:
            merged[key] = bridge
            continue
        merged[key] = BridgeInfo(
            name=current.name,
            url=current.url or bridge.url,
            type=current.type,
            chains=unique(current.chains + bridge.chains),
            protocols=unique(current.protocols + bridge.protocols),
        )
    return tuple(merged.values())


def generate_tags(is_testnet: bool, verified: bool, parent: Optional[ParentChain], bridged: bool) -> Tuple[str, ...]:
    tags = ["testnet" if is_testnet else "mainnet"]
    if verified:
        tags.append("verified")
    if parent is not None and parent.type in ("L2", "rollup"):
        tags.append("L2")
    else:
        tags.append("L1")
    if parent is not None and parent.type == "rollup":
        tags.append("rollup")
    tags.append("evm-compatible")
    if bridged:
        tags.append("bridged")
    return tuple(tags)


def generate_features(rpc, explorers, faucets, parent) -> Tuple[ChainFeature, ...]:
    features = [ChainFeature("EVM Compatible", "standard", "Ethereum Virtual Machine compatibility")]
    if rpc:
        features.append(ChainFeature("JSON-RPC", "standard", "JSON-RPC API support"))
    if explorers:
        features.append(ChainFeature("Block Explorer", "standard", "Block explorer available"))
    if faucets:
        features.append(ChainFeature("Testnet Faucet", "standard", "Testnet faucet available"))
    if parent is not None:
        features.append(ChainFeature("Native Bridge", "custom", "Native bridge to parent chain"))
    return tuple(features)


def detect_red_flags(chain_id: int, rpc, explorers, info_url: str) -> Tuple[str, ...]:
    flags = []
    if not rpc:
        flags.append("No RPC endpoints available")
    if not explorers:
        flags.append("No block explorers available")
    if not info_url:
        flags.append("No official information URL")
    if chain_id > SUSPICIOUS_CHAIN_ID:
        flags.append("Suspicious chain ID range")
    return tuple(flags)


def validate_raw_chain(raw: Any) -> int:
    if not isinstance(raw, dict):
        raise ValidationError("record is not an object")
    chain_id = parse_chain_id(raw.get("chainId"))
    if chain_id <= 0:
        raise ValidationError("chainId must be a positive integer", raw.get("chainId"))
    if not _text(raw.get("name")):
        raise ValidationError("missing name", chain_id)
    currency = raw.get("nativeCurrency")
    if not isinstance(currency, dict) or not _text(currency.get("symbol")):
        raise ValidationError("missing native currency symbol", chain_id)
    return chain_id


def transform_chain(raw: dict, settings: Optional[Settings] = None) -> ChainRecord:
    """Validate and normalize one chainlist-format record."""
    settings = settings or get_settings()
    chain_id = validate_raw_chain(raw)

    name = _text(raw["name"])
    currency = raw["nativeCurrency"]
    symbol = _text(currency.get("symbol")).upper()
    decimals = currency.get("decimals")
    rpc = clean_rpc_list(raw.get("rpc"))
    faucets = unique(f.strip() for f in as_list(raw.get("faucets")) if isinstance(f, str) and f.strip())
    explorers = parse_explorers(raw.get("explorers"))
    info_url = _text(raw.get("infoURL"))
    parent = parse_parent(raw.get("parent"))
    is_testnet = detect_testnet(raw, chain_id, settings)
    verified = detect_verified(raw, chain_id, settings)
    bridges = bridges_for(chain_id, name, parent)
    status = _text(raw.get("status")).lower()
    slip44 = raw.get("slip44")
    ens = raw.get("ens")

    return ChainRecord(
        chain_id=chain_id,
        name=name,
        short_name=_text(raw.get("shortName")) or re.sub(r"\s+", "", name.lower()),
        network=_text(raw.get("network")) or re.sub(r"\s+", "-", name.lower()),
        network_id=parse_chain_id(raw.get("networkId")) or chain_id,
        native_currency=NativeCurrency(
            name=_text(currency.get("name")) or symbol,
            symbol=symbol,
            decimals=decimals if isinstance(decimals, int) and not isinstance(decimals, bool) and decimals >= 0 else 18,
        ),
        rpc=rpc,
        faucets=faucets,
        explorers=explorers,
        info_url=info_url,
        status=status if status in STATUSES else "active",
        icon=_text(raw.get("icon")) or None,
        verified=verified,
        is_testnet=is_testnet,
        parent=parent,
        features=generate_features(rpc, explorers, faucets, parent),
        bridges=bridges,
        tags=generate_tags(is_testnet, verified, parent, bool(bridges)),
        red_flags=detect_red_flags(chain_id, rpc, explorers, info_url),
        title=_text(raw.get("title")) or None,
        chain=_text(raw.get("chain")) or _text(raw.get("shortName")) or name,
        slip44=slip44 if isinstance(slip44, int) and not isinstance(slip44, bool) else None,
        ens={k: v for k, v in ens.items() if isinstance(v, str)} if isinstance(ens, dict) else None,
    )


def transform_many(items: Iterable[Any], settings: Settings, source: str) -> List[ChainRecord]:
    records = []
    dropped = 0
    for raw in items:
        try:
            records.append(transform_chain(raw, settings))
        except (ValidationError, TypeError, AttributeError, ValueError) as e:
            dropped += 1
            logger.debug("%s: dropping record: %s", source, e)
    if dropped:
        logger.debug("%s: dropped %d invalid records", source, dropped)
    return records


def parse_chainlist(payload: str, settings: Settings) -> List[ChainRecord]:
    """Parser for the chainlist / ethereum-lists JSON array format."""
    try:
        data = json.loads(payload)
    except (TypeError, ValueError) as e:
        raise ParseError("chainlist", f"invalid JSON: {e}")
    if not isinstance(data, list):
        raise ParseError("chainlist", f"expected a JSON array, got {type(data).__name__}")
    return transform_many(data, settings, "chainlist")


_EXTRA_RPC_KEY = re.compile(r"^[ \t]*[\"']?(\d+)[\"']?\s*:\s*\{", re.MULTILINE)
_RPCS_START = re.compile(r"rpcs\s*:\s*\[")
_URL_LITERAL = re.compile(r"[\"'`]((?:https?|wss?)://[^\"'`\s]+)[\"'`]")


def _bracket_body(text: str, start: int) -> str:
    """Text between the `[` at `start` and its matching `]`."""
    depth = 0
    for i in range(start, len(text)):
        ch = text[i]
        if ch == "[":
            depth += 1
        elif ch == "]":
            depth -= 1
            if depth == 0:
                return text[start + 1:i]
    return text[start + 1:]


def sparse_record(chain_id: int, urls: Iterable[str], settings: Settings) -> ChainRecord:
    """RPC-only record with placeholder name/currency; richer sources override both."""
    rpc = clean_rpc_list(list(urls))
    is_testnet = chain_id > settings.testnet_chain_id_threshold
    return ChainRecord(
        chain_id=chain_id,
        name=f"Chain {chain_id}",
        short_name=f"chain-{chain_id}",
        network=f"network-{chain_id}",
        network_id=chain_id,
        native_currency=NativeCurrency(name="Unknown", symbol=PLACEHOLDER_SYMBOL, decimals=18),
        rpc=rpc,
        is_testnet=is_testnet,
        chain=f"chain-{chain_id}",
        tags=("evm-compatible",),
    )


def parse_extra_rpcs(payload: str, settings: Settings) -> List[ChainRecord]:
    """
    Text extractor for DefiLlama's `extraRpcs.js`.

    The file is JavaScript, not JSON, so instead of evaluating it we locate
    each `<chainId>: { rpcs: [...] }` block and collect the URL string literals
    inside its `rpcs` array (plain strings and `url: "..."` entries alike).
    """
    if not isinstance(payload, str) or not payload.strip():
        raise ParseError("extra-rpcs", "empty payload")

    matches = list(_EXTRA_RPC_KEY.finditer(payload))
    if not matches:
        raise ParseError("extra-rpcs", "no chain blocks found")

    records = []
    for i, match in enumerate(matches):
        chain_id = int(match.group(1))
        end = matches[i + 1].start() if i + 1 < len(matches) else len(payload)
        block = payload[match.end():end]
        rpcs = _RPCS_START.search(block)
        if chain_id <= 0 or rpcs is None:
            continue
        urls = _URL_LITERAL.findall(_bracket_body(block, rpcs.end() - 1))
        record = sparse_record(chain_id, urls, settings)
        if record.rpc:
            records.append(record)
    return records


PARSERS: Dict[str, Callable[[str, Settings], List[ChainRecord]]] = {
    "chainlist": parse_chainlist,
    "extra-rpcs": parse_extra_rpcs,
}

DEFAULT_SOURCES = (
    Source("chainlist", CHAINLIST_URL, parse_chainlist, 1),
    Source("ethereum-lists", ETHEREUM_LISTS_URL, parse_chainlist, 2),
    Source("extra-rpcs", EXTRA_RPCS_URL, parse_extra_rpcs, 3),
)


def load_sources(settings: Optional[Settings] = None) -> Tuple[Source, ...]:
    """
    Registry sources in priority order.

    `CHAIN_SOURCES_JSON` may replace the defaults with a JSON list of
    `{"name", "url", "parser", "priority"}` objects, `parser` being one of
    the keys of `PARSERS`.
    """
    settings = settings or get_settings()
    if not settings.chain_sources_json:
        return DEFAULT_SOURCES

    try:
        entries = json.loads(settings.chain_sources_json)
    except ValueError as e:
        logger.warning("CHAIN_SOURCES_JSON is not valid JSON (%s), using default sources", e)
        return DEFAULT_SOURCES

    sources = []
    for i, entry in enumerate(entries if isinstance(entries, list) else []):
        if not isinstance(entry, dict):
            continue
        parser = PARSERS.get(entry.get("parser", "chainlist"))
        url = entry.get("url")
        if parser is None or not isinstance(url, str) or not url:
            logger.warning("CHAIN_SOURCES_JSON: skipping unusable entry %r", entry)
            continue
        sources.append(Source(
            name=entry.get("name") or f"source-{i + 1}",
            url=url,
            parser=parser,
            priority=int(entry.get("priority", i + 1)),
        ))

    if not sources:
        logger.warning("CHAIN_SOURCES_JSON has no usable entries, using default sources")
        return DEFAULT_SOURCES
    return tuple(sorted(sources, key=lambda s: s.priority))
