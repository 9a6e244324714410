"""
Registry HTTP surface - thin FastAPI layer over ResolutionService.
NotFound maps to 404, malformed input and dimension mismatches to 400,
store failures to a retryable 503. No business logic lives here.
"""

import threading
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .schemas import (
    AlternativesResponse,
    ErrorResponse,
    GraphRequest,
    GraphResponse,
    HealthResponse,
    MappingResponse,
    MirrorConfigRequest,
    MirrorConfigResponse,
    PackageInput,
    PurgeResponse,
    RecommendationsRequest,
    RecommendationsResponse,
    RegisterRequest,
    SearchResponse,
    StatsResponse,
    VerificationResponse,
    VerifyRequest,
)
from ..core.config import (
    VERSION,
    SOURCE_NAMESPACE,
    TARGET_NAMESPACE,
    debug_enabled,
    get_registry_settings,
    get_store,
)
from ..core.errors import DimensionMismatch, RecordConflict, ScanLimitExceeded, StoreUnavailable
from ..core.resolution import ResolutionService
from ..core.schema import NotFound, PackageRecord, Topology
from ..util.logging import logger

router = APIRouter()
_service_lock = threading.Lock()


def get_service(request: Request) -> ResolutionService:
    """Service injected by create_app(), or built once from configuration."""
    service = request.app.state.service
    if service is None:
        with _service_lock:
            service = request.app.state.service
            if service is None:
                service = ResolutionService(get_store(), get_registry_settings())
                request.app.state.service = service
    return service


def _to_record(package: PackageInput, registry: str) -> PackageRecord:
    return PackageRecord(
        name=package.name,
        registry=registry,
        version=package.version,
        feature_vector=list(package.feature_vector),
        topology=Topology(**package.topology.model_dump()),
    )


def _error(status_code: int, error_type: str, message: str, details: dict = None) -> JSONResponse:
    body = ErrorResponse(error_type=error_type, message=message, details=details).model_dump(mode="json")
    body["detail"] = message
    return JSONResponse(status_code=status_code, content=body)


@router.get("/health", response_model=HealthResponse)
def health_check_endpoint(service: ResolutionService = Depends(get_service)):
    """Check store health."""
    store_health = service.store.health_check()
    record_count = service.store.count() if store_health else 0

    return HealthResponse(
        status="healthy" if store_health else "unhealthy",
        version=VERSION,
        store_health=store_health,
        record_count=record_count,
    )


@router.get("/resolve/{name:path}", response_model=MappingResponse)
def resolve_endpoint(name: str, skip_cache: bool = False, service: ResolutionService = Depends(get_service)):
    """Resolve a package name to its mapping."""
    resolution = service.resolve(name, skip_cache=skip_cache)
    if isinstance(resolution, NotFound):
        raise HTTPException(status_code=404, detail={
            "error": "Package not found",
            "package": name,
            "tried_keys": resolution.tried_keys,
        })

    return MappingResponse(**resolution.to_dict())


@router.get("/alternatives/{name:path}", response_model=AlternativesResponse)
def alternatives_endpoint(
    name: str,
    threshold: Optional[float] = Query(None, ge=0.0, le=1.0, description="Minimum similarity score"),
    service: ResolutionService = Depends(get_service),
):
    """Find packages whose similarity to name is at least threshold (full scan)."""
    if threshold is None:
        threshold = service.settings.resonant_threshold

    alternatives = service.find_alternatives(name, threshold)
    return AlternativesResponse(
        package=name,
        threshold=threshold,
        alternatives=[a.to_dict() for a in alternatives],
    )


@router.post("/verify", response_model=VerificationResponse)
def verify_endpoint(request: VerifyRequest, service: ResolutionService = Depends(get_service)):
    """Verify an npm/crate pairing."""
    result = service.verify(request.npm, request.crate)
    if result.missing:
        raise HTTPException(status_code=404, detail={
            "error": "Package not found",
            "missing": result.missing,
        })

    return VerificationResponse(**result.to_dict())


@router.post("/recommendations", response_model=RecommendationsResponse)
def recommendations_endpoint(request: RecommendationsRequest, service: ResolutionService = Depends(get_service)):
    """Bucket a package list into replace / upgrade / transmute / perfect."""
    recommendations = service.recommend(request.packages)
    return RecommendationsResponse(**recommendations.to_dict())


@router.post("/graph", response_model=GraphResponse)
def graph_endpoint(request: GraphRequest, service: ResolutionService = Depends(get_service)):
    """Build a breadth-first dependency graph annotated with similarity."""
    graph = service.build_graph(request.name, request.dependencies, request.tree)
    return GraphResponse(**graph.to_dict())


@router.post("/register", response_model=MappingResponse)
def register_endpoint(request: RegisterRequest, service: ResolutionService = Depends(get_service)):
    """Register an npm package and, optionally, its crate counterpart."""
    source = _to_record(request.npm, SOURCE_NAMESPACE)
    target = _to_record(request.crate, TARGET_NAMESPACE) if request.crate else None

    try:
        mapping = service.register(source, target, replace_existing=request.replace)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return MappingResponse(**mapping.to_dict())


@router.delete("/souls/{phash}", response_model=PurgeResponse)
def purge_endpoint(phash: str, service: ResolutionService = Depends(get_service)):
    """Administrative purge of a pairing and its records."""
    if not service.purge(phash):
        raise HTTPException(status_code=404, detail=f"Pairing not found: {phash}")

    return PurgeResponse(success=True, phash=phash)


@router.get("/stats", response_model=StatsResponse)
def stats_endpoint(service: ResolutionService = Depends(get_service)):
    """Registry-wide statistics (full scan)."""
    return StatsResponse(**service.get_stats().to_dict())


@router.get("/search", response_model=SearchResponse)
def search_endpoint(
    query: str = "",
    limit: int = Query(10, ge=1),
    service: ResolutionService = Depends(get_service),
):
    """Substring search over package names."""
    results = service.search(query, limit)
    return SearchResponse(query=query, results=[MappingResponse(**m.to_dict()) for m in results])


@router.post("/mirror-config", response_model=MirrorConfigResponse)
def mirror_config_endpoint(request: MirrorConfigRequest, service: ResolutionService = Depends(get_service)):
    """Generate the npm -> crate switching config for a dependency list."""
    return MirrorConfigResponse(**service.generate_mirror_config(request.dependencies).to_dict())


def create_app(service: ResolutionService = None) -> FastAPI:
    """Build the application. Pass a service to pin the store (tests, embedding)."""
    app = FastAPI(
        title="Soul Registry API",
        version=VERSION,
        description="Similarity-based npm to crate package resolution",
        docs_url="/docs" if debug_enabled() else None,
        redoc_url="/redoc" if debug_enabled() else None,
    )
    app.state.service = service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request, exc):
        """Malformed input is a 400, not FastAPI's default 422."""
        errors = [
            {"field": ".".join(str(p) for p in err.get("loc", [])), "message": err.get("msg", "")}
            for err in exc.errors()
        ]
        return _error(400, "VALIDATION_ERROR", "Request validation failed", {"errors": errors})

    @app.exception_handler(DimensionMismatch)
    async def dimension_mismatch_handler(request, exc):
        logger.error(f"Dimension mismatch on {request.url.path}: {exc}")
        return _error(400, "DIMENSION_MISMATCH", str(exc), {"left": exc.left, "right": exc.right})

    @app.exception_handler(RecordConflict)
    async def record_conflict_handler(request, exc):
        return _error(409, "RECORD_CONFLICT", str(exc), {"key": exc.key})

    @app.exception_handler(StoreUnavailable)
    async def store_unavailable_handler(request, exc):
        logger.warning(f"Store unavailable on {request.url.path}: {exc}")
        return _error(503, "STORE_UNAVAILABLE", "Record store unavailable", {"retryable": True})

    @app.exception_handler(ScanLimitExceeded)
    async def scan_limit_handler(request, exc):
        return _error(503, "SCAN_LIMIT_EXCEEDED", str(exc), {"retryable": False, "limit": exc.limit})

    @app.exception_handler(Exception)
    async def global_exception_handler(request, exc):
        """Handle all unhandled exceptions."""
        logger.error(f"Unhandled exception: {exc}")
        content = {"detail": "Internal server error"}
        if debug_enabled():
            content["debug"] = str(exc)
        return JSONResponse(status_code=500, content=content)

    return app


# Service is built lazily from configuration on the first request
app = create_app()
