"""
Registry record and result types.
Records are what the store persists; Mapping, NotFound and the result types are derived on read.
"""

import hashlib
import json
from dataclasses import dataclass, field, asdict, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_ts(value) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


@dataclass(frozen=True)
class Topology:
    """Secondary structural metrics used as the tiebreaker similarity signal."""
    count: float = 0.0
    clustering: float = 0.0
    modularity: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "Topology":
        data = data or {}
        return cls(
            count=float(data.get("count", 0.0)),
            clustering=float(data.get("clustering", 0.0)),
            modularity=float(data.get("modularity", 0.0)),
        )


def compute_phash(source_key: str, feature_vector: List[float], topology: Topology) -> str:
    """Fingerprint of a source record, shared by both sides of its pairing."""
    canonical = json.dumps(
        {"k": source_key, "v": [round(float(x), 12) for x in feature_vector], "t": topology.to_dict()},
        sort_keys=True,
    )
    return hashlib.sha256(canonical.encode()).hexdigest()[:16]


@dataclass(frozen=True)
class PackageRecord:
    name: str
    registry: str
    version: str
    feature_vector: List[float]
    topology: Topology = field(default_factory=Topology)
    verified: bool = False
    created_at: datetime = field(default_factory=utcnow)
    phash: str = ""

    @property
    def key(self) -> str:
        return f"{self.registry}:{self.name}"

    def with_verified(self) -> "PackageRecord":
        """Return the verified version of this record; the original is untouched."""
        return replace(self, verified=True)

    def same_features(self, other: "PackageRecord") -> bool:
        return (list(self.feature_vector) == list(other.feature_vector)
                and self.topology == other.topology)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "registry": self.registry,
            "version": self.version,
            "feature_vector": [float(x) for x in self.feature_vector],
            "topology": self.topology.to_dict(),
            "verified": self.verified,
            "created_at": self.created_at.isoformat(),
            "phash": self.phash,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PackageRecord":
        return cls(
            name=data["name"],
            registry=data["registry"],
            version=data.get("version", "0.0.0"),
            feature_vector=[float(x) for x in data.get("feature_vector", [])],
            topology=Topology.from_dict(data.get("topology")),
            verified=bool(data.get("verified", False)),
            created_at=_parse_ts(data["created_at"]) if data.get("created_at") else utcnow(),
            phash=data.get("phash", ""),
        )


@dataclass(frozen=True)
class PairingEntry:
    """Index entry stored under soul:<phash> linking the two sides of a pair."""
    phash: str
    source_key: str
    target_key: Optional[str]
    registered_at: datetime = field(default_factory=utcnow)

    @property
    def member_keys(self) -> List[str]:
        return [k for k in (self.source_key, self.target_key) if k]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phash": self.phash,
            "source_key": self.source_key,
            "target_key": self.target_key,
            "registered_at": self.registered_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PairingEntry":
        return cls(
            phash=data["phash"],
            source_key=data["source_key"],
            target_key=data.get("target_key"),
            registered_at=_parse_ts(data["registered_at"]) if data.get("registered_at") else utcnow(),
        )


@dataclass(frozen=True)
class Mapping:
    """A resolved name: the record it matched plus its counterpart, if paired."""
    query: str
    source: PackageRecord
    target: Optional[PackageRecord] = None
    similarity_score: Optional[float] = None
    matched_by: str = "npm"  # npm|crate|convention
    matched_key: str = ""

    @property
    def matched(self) -> PackageRecord:
        """The record the queried name actually hit."""
        if self.target is not None and self.target.key == self.matched_key:
            return self.target
        return self.source

    @property
    def has_twin(self) -> bool:
        return self.target is not None

    @property
    def verified(self) -> bool:
        return self.source.verified and (self.target is not None and self.target.verified)

    @property
    def phash(self) -> str:
        return self.source.phash

    def to_dict(self) -> Dict[str, Any]:
        return {
            "query": self.query,
            "matched_by": self.matched_by,
            "matched_key": self.matched_key,
            "phash": self.phash,
            "source": self.source.to_dict(),
            "target": self.target.to_dict() if self.target else None,
            "similarity_score": self.similarity_score,
            "verified": self.verified,
        }


@dataclass(frozen=True)
class NotFound:
    """Resolution result for a name with no record under any tried key."""
    name: str
    tried_keys: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "tried_keys": list(self.tried_keys)}


@dataclass(frozen=True)
class Alternative:
    record: PackageRecord
    score: float

    def to_dict(self) -> Dict[str, Any]:
        return {"key": self.record.key, "score": self.score, "record": self.record.to_dict()}


@dataclass
class VerificationResult:
    verified: bool
    score: Optional[float] = None
    reason: Optional[str] = None
    source_key: Optional[str] = None
    target_key: Optional[str] = None
    missing: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Recommendation:
    name: str
    similarity: Optional[float] = None
    reason: Optional[str] = None
    priority: Optional[str] = None
    twin: Optional[str] = None
    alternatives: List[Alternative] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "similarity": self.similarity,
            "reason": self.reason,
            "priority": self.priority,
            "twin": self.twin,
            "alternatives": [a.to_dict() for a in self.alternatives],
        }


@dataclass
class Recommendations:
    replace: List[Recommendation] = field(default_factory=list)
    upgrade: List[Recommendation] = field(default_factory=list)
    transmute: List[Recommendation] = field(default_factory=list)
    perfect: List[Recommendation] = field(default_factory=list)

    def names(self, bucket: str) -> List[str]:
        return [r.name for r in getattr(self, bucket)]

    def to_dict(self) -> Dict[str, Any]:
        return {
            bucket: [r.to_dict() for r in getattr(self, bucket)]
            for bucket in ("replace", "upgrade", "transmute", "perfect")
        }


@dataclass
class GraphNode:
    id: str
    depth: int
    similarity: float
    has_twin: bool
    is_parasitic: bool
    phash: Optional[str] = None


@dataclass
class GraphEdge:
    source: str
    target: str
    depth: int
    similarity: float


@dataclass
class GraphStats:
    total_packages: int = 0
    resonant_packages: int = 0
    parasites: int = 0
    average_coherence: float = 0.0


@dataclass
class DependencyGraph:
    root: str
    nodes: List[GraphNode] = field(default_factory=list)
    edges: List[GraphEdge] = field(default_factory=list)
    stats: GraphStats = field(default_factory=GraphStats)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class RegistryStats:
    total_souls: int = 0
    npm_packages: int = 0
    crate_packages: int = 0
    verified_mappings: int = 0
    perfect_matches: int = 0
    resonant_pairs: int = 0
    parasites: int = 0
    cache_size: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class MirrorConfig:
    mappings: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    auto_transmute: List[str] = field(default_factory=list)
    parasite_replacements: Dict[str, str] = field(default_factory=dict)
    stats: Dict[str, int] = field(default_factory=lambda: {"mapped": 0, "to_transmute": 0, "parasites": 0})

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
