import dataclasses
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class RpcStatus(str, Enum):
    ONLINE = "online"
    SLOW = "slow"
    OFFLINE = "offline"
    UNKNOWN = "unknown"


class TrackingLevel(str, Enum):
    NONE = "none"
    LIMITED = "limited"
    YES = "yes"


class PrivacyLevel(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


PRIVACY_SCORES = {
    TrackingLevel.NONE: 100,
    TrackingLevel.LIMITED: 70,
    TrackingLevel.YES: 30,
}

PRIVACY_LEVELS = {
    TrackingLevel.NONE: PrivacyLevel.HIGH,
    TrackingLevel.LIMITED: PrivacyLevel.MEDIUM,
    TrackingLevel.YES: PrivacyLevel.LOW,
}


@dataclass(frozen=True)
class NativeCurrency:
    name: str
    symbol: str
    decimals: int = 18


@dataclass(frozen=True)
class Explorer:
    name: str
    url: str
    standard: str = ""
    icon: Optional[str] = None


@dataclass(frozen=True)
class ParentChain:
    type: str  # L2 | sidechain | rollup
    chain: str
    bridges: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ChainFeature:
    name: str
    type: str = "custom"  # eip | standard | custom
    description: Optional[str] = None
    supported: bool = True


@dataclass(frozen=True)
class BridgeInfo:
    name: str
    url: str
    type: str  # native | third-party
    chains: Tuple[int, ...] = ()
    protocols: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ChainRecord:
    """One chain as reported by the registry sources, after validation."""

    chain_id: int
    name: str
    native_currency: NativeCurrency
    short_name: str = ""
    network: str = ""
    network_id: int = 0
    rpc: Tuple[str, ...] = ()
    faucets: Tuple[str, ...] = ()
    explorers: Tuple[Explorer, ...] = ()
    info_url: str = ""
    status: str = "active"
    icon: Optional[str] = None
    verified: bool = False
    is_testnet: bool = False
    parent: Optional[ParentChain] = None
    features: Tuple[ChainFeature, ...] = ()
    bridges: Tuple[BridgeInfo, ...] = ()
    tags: Tuple[str, ...] = ()
    red_flags: Tuple[str, ...] = ()
    title: Optional[str] = None
    chain: str = ""
    slip44: Optional[int] = None
    ens: Optional[Dict[str, str]] = None


@dataclass(frozen=True)
class EndpointHealth:
    url: str
    status: RpcStatus
    tracking: TrackingLevel = TrackingLevel.YES
    latency_ms: Optional[float] = None
    last_checked_at: float = field(default_factory=time.time)
    reliability_score: Optional[float] = None
    privacy_score: Optional[float] = None
    composite_score: Optional[float] = None

    @classmethod
    def unprobed(cls, url: str, tracking: TrackingLevel = TrackingLevel.YES) -> "EndpointHealth":
        return cls(url=url, status=RpcStatus.UNKNOWN, tracking=tracking)

    @classmethod
    def offline(cls, url: str, tracking: TrackingLevel = TrackingLevel.YES) -> "EndpointHealth":
        return cls(
            url=url,
            status=RpcStatus.OFFLINE,
            tracking=tracking,
            latency_ms=None,
            reliability_score=0,
            privacy_score=0,
            composite_score=0,
        )

    @property
    def probed(self) -> bool:
        return self.status is not RpcStatus.UNKNOWN

    @property
    def privacy(self) -> PrivacyLevel:
        return PRIVACY_LEVELS[self.tracking]


@dataclass(frozen=True)
class ChainHealthSummary:
    average_latency: Optional[int]
    reliability_score_pct: int
    privacy_score_pct: Optional[int]
    total_endpoints: int = 0
    probed_endpoints: int = 0
    healthy_endpoints: int = 0


@dataclass(frozen=True)
class MergedChainRecord(ChainRecord):
    data_source: str = "chainlist"  # chainlist | ethereum-lists | merged | fallback
    sources: Tuple[str, ...] = ()
    last_updated: float = field(default_factory=time.time)
    endpoints: Tuple[EndpointHealth, ...] = ()
    rpc_health: Optional[ChainHealthSummary] = None

    def endpoint_for(self, url: str) -> Optional[EndpointHealth]:
        for endpoint in self.endpoints:
            if endpoint.url == url:
                return endpoint
        return None


@dataclass(frozen=True)
class RegistrySnapshot:
    chains: Tuple[MergedChainRecord, ...]
    generated_at: float = field(default_factory=time.time)
    health_refreshed_at: Optional[float] = None

    def get(self, chain_id: int) -> Optional[MergedChainRecord]:
        for chain in self.chains:
            if chain.chain_id == chain_id:
                return chain
        return None

    def __len__(self) -> int:
        return len(self.chains)


@dataclass(frozen=True)
class ChainStats:
    total_chains: int
    mainnet_chains: int
    testnet_chains: int
    verified_chains: int
    l2_chains: int
    total_rpcs: int
    healthy_rpcs: int
    bridge_supported: int


def to_dict(obj: Any) -> Dict[str, Any]:
    """Plain-JSON view of any model above (enums flattened to their values)."""
    def _factory(items):
        return {k: (v.value if isinstance(v, Enum) else v) for k, v in items}

    return dataclasses.asdict(obj, dict_factory=_factory)
