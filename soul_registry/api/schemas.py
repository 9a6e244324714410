"""
Request/response models for the registry HTTP surface.
Validation failures here are reported as 400s by the app's exception handlers.
"""

import math
import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

SEMVER_PATTERN = re.compile(
    r"^(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)"
    r"(?:-[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*)?"
    r"(?:\+[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*)?$"
)


class TopologyModel(BaseModel):
    count: float = 0.0
    clustering: float = 0.0
    modularity: float = 0.0

    @field_validator('count', 'clustering', 'modularity')
    @classmethod
    def must_be_finite(cls, v):
        if not math.isfinite(v):
            raise ValueError('topology metrics must be finite')
        return v


class PackageInput(BaseModel):
    name: str
    version: str
    feature_vector: List[float]
    topology: TopologyModel = Field(default_factory=TopologyModel)

    @field_validator('name')
    @classmethod
    def name_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('name cannot be empty')
        return v.strip()

    @field_validator('version')
    @classmethod
    def version_must_be_semver(cls, v):
        if not SEMVER_PATTERN.match(v):
            raise ValueError(f'version must be a semantic version, got {v!r}')
        return v

    @field_validator('feature_vector')
    @classmethod
    def vector_must_be_finite(cls, v):
        if not v:
            raise ValueError('feature_vector cannot be empty')
        if not all(math.isfinite(x) for x in v):
            raise ValueError('feature_vector values must be finite')
        return v


class RegisterRequest(BaseModel):
    npm: PackageInput
    crate: Optional[PackageInput] = None
    replace: bool = False


class VerifyRequest(BaseModel):
    npm: str
    crate: str

    @field_validator('npm', 'crate')
    @classmethod
    def names_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('package name cannot be empty')
        return v.strip()


class RecommendationsRequest(BaseModel):
    packages: List[str]


class GraphRequest(BaseModel):
    name: str
    dependencies: List[str]
    tree: Optional[Dict[str, List[str]]] = None

    @field_validator('name')
    @classmethod
    def name_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('name cannot be empty')
        return v


class MirrorConfigRequest(BaseModel):
    dependencies: List[str]


class TopologyResponse(BaseModel):
    count: float
    clustering: float
    modularity: float


class PackageRecordResponse(BaseModel):
    name: str
    registry: str
    version: str
    feature_vector: List[float]
    topology: TopologyResponse
    verified: bool
    created_at: datetime
    phash: str


class MappingResponse(BaseModel):
    query: str
    matched_by: str
    matched_key: str
    phash: str
    source: PackageRecordResponse
    target: Optional[PackageRecordResponse] = None
    similarity_score: Optional[float] = None
    verified: bool


class AlternativeResponse(BaseModel):
    key: str
    score: float
    record: PackageRecordResponse


class AlternativesResponse(BaseModel):
    package: str
    threshold: float
    alternatives: List[AlternativeResponse]


class VerificationResponse(BaseModel):
    verified: bool
    score: Optional[float] = None
    reason: Optional[str] = None
    source_key: Optional[str] = None
    target_key: Optional[str] = None
    missing: List[str] = []


class RecommendationResponse(BaseModel):
    name: str
    similarity: Optional[float] = None
    reason: Optional[str] = None
    priority: Optional[str] = None
    twin: Optional[str] = None
    alternatives: List[AlternativeResponse] = []


class RecommendationsResponse(BaseModel):
    replace: List[RecommendationResponse]
    upgrade: List[RecommendationResponse]
    transmute: List[RecommendationResponse]
    perfect: List[RecommendationResponse]


class GraphNodeResponse(BaseModel):
    id: str
    depth: int
    similarity: float
    has_twin: bool
    is_parasitic: bool
    phash: Optional[str] = None


class GraphEdgeResponse(BaseModel):
    source: str
    target: str
    depth: int
    similarity: float


class GraphStatsResponse(BaseModel):
    total_packages: int
    resonant_packages: int
    parasites: int
    average_coherence: float


class GraphResponse(BaseModel):
    root: str
    nodes: List[GraphNodeResponse]
    edges: List[GraphEdgeResponse]
    stats: GraphStatsResponse


class StatsResponse(BaseModel):
    total_souls: int
    npm_packages: int
    crate_packages: int
    verified_mappings: int
    perfect_matches: int
    resonant_pairs: int
    parasites: int
    cache_size: int


class SearchResponse(BaseModel):
    query: str
    results: List[MappingResponse]


class MirrorConfigResponse(BaseModel):
    mappings: Dict[str, Dict[str, Any]]
    auto_transmute: List[str]
    parasite_replacements: Dict[str, str]
    stats: Dict[str, int]


class PurgeResponse(BaseModel):
    success: bool
    phash: str


class HealthResponse(BaseModel):
    status: str
    version: str
    store_health: bool
    record_count: int


class ErrorResponse(BaseModel):
    error_type: str
    message: str
    timestamp: datetime = None
    details: Optional[Dict[str, Any]] = None

    def __init__(self, **data):
        super().__init__(timestamp=datetime.now(), **data)
