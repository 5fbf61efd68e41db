"""
Finding Override Service API
============================

FastAPI admin endpoints for dimension and message overrides.

Endpoints (all /api/admin/* require `Authorization: Bearer <ADMIN_TOKEN>`):
- GET  /health                                     - Health check
- GET  /api/admin/findings                         - List findings (filters, facets, paging)
- GET  /api/admin/findings/{id}                    - Finding detail + override history
- POST /api/admin/findings/{id}/override           - Stage a dimension draft
- POST /api/admin/findings/{id}/override/reset     - Drop the published override
- POST /api/admin/findings/bulk                    - Stage drafts for many findings (inline or preset)
- GET  /api/admin/dimensions/presets               - List dimension presets
- POST /api/admin/dimensions/presets               - Store a dimension preset
- POST /api/admin/findings/dimensions/publish      - Publish dimension drafts
- POST /api/admin/findings/dimensions/rollback     - Roll dimensions back
- GET  /api/admin/findings/{id}/messages           - Effective messages
- POST /api/admin/findings/{id}/messages           - Stage a message draft
- POST /api/admin/findings/{id}/messages/reset     - Drop the published message override
- POST /api/admin/findings/messages/publish        - Publish message drafts
- POST /api/admin/findings/messages/rollback       - Roll messages back
- GET  /api/admin/findings/{id}/changes            - Publish/rollback audit history

Append `?preview=draft` to read endpoints to see drafts.

Run with:
    uvicorn findings_admin.api:app --host 0.0.0.0 --port 8000
"""

import hmac
import logging
import math
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.exception_handlers import http_exception_handler, request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from . import audit, presets
from .catalog import SeedCatalog, get_catalog
from .config import get_default_lang, get_settings
from .db.models import EntityType, OverrideStatus
from .db.session import get_db, init_db, is_db_configured
from .errors import (
    FindingNotFoundError,
    FindingsAdminError,
    MissingAuditTrailError,
    OverrideValidationError,
    PresetNotFoundError,
    StoreNotConfiguredError,
    VersionConflictError,
)
from .ledger import OverrideLedger, dimension_ledger, message_ledger
from .publishing import publish_dimensions, publish_messages, rollback_dimensions, rollback_messages
from .resolution import (
    resolve_effective,
    resolve_effective_index,
    resolve_effective_messages,
)
from .schemas import (
    BulkDraftRequest,
    BulkDraftResponse,
    ChangeLogEntryOut,
    CreateDimensionDraftRequest,
    CreateMessageDraftRequest,
    CreatePresetRequest,
    DimensionPresetOut,
    DraftCreatedResponse,
    EffectiveMessages,
    FindingDetailResponse,
    FindingListMeta,
    FindingListResponse,
    FindingSummary,
    HealthResponse,
    OverrideRowOut,
    PresetListResponse,
    PublishRequest,
    PublishResult,
    ResetResponse,
    ResolutionMode,
    RollbackRequest,
    RollbackResult,
    ValueSource,
)

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


# =============================================================================
# FastAPI App
# =============================================================================

app = FastAPI(
    title="Finding Override Service",
    description="Draft, publish and roll back overrides of finding dimensions and messages",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins(),
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)


# =============================================================================
# Auth
# =============================================================================

def require_admin(authorization: Optional[str] = Header(None, alias="Authorization")) -> None:
    """Bearer ADMIN_TOKEN check for every /api/admin route"""
    expected = f"Bearer {get_settings().admin_token}"
    if not authorization or not hmac.compare_digest(authorization.encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(status_code=401, detail="Unauthorized")


admin_router = APIRouter(prefix="/api/admin", tags=["admin"], dependencies=[Depends(require_admin)])


# =============================================================================
# Helpers
# =============================================================================

def _row_out(ledger: OverrideLedger, row) -> Optional[OverrideRowOut]:
    if row is None:
        return None
    return OverrideRowOut(
        version=row.version,
        status=row.status,
        active=bool(getattr(row, ledger.active_attr)),
        version_text=row.version_text,
        values=ledger.values_of(row).model_dump(),
        note=getattr(row, "note", None),
        updated_by=row.updated_by,
        created_at=row.created_at,
    )


def _summaries(db: Session, catalog: SeedCatalog, mode: ResolutionMode) -> List[FindingSummary]:
    items = []
    for finding_id, effective in resolve_effective_index(db, mode=mode, catalog=catalog).items():
        definition = catalog.get(finding_id)
        items.append(FindingSummary(
            finding_id=finding_id,
            title=definition.title if definition else finding_id,
            system_group=definition.system_group if definition else None,
            space_group=definition.space_group if definition else None,
            tags=list(definition.tags) if definition else [],
            dimensions_effective=effective.dimensions,
            dimensions_source=effective.dimensions_source,
            override_version=effective.override_version,
        ))
    return items


def _facets(items: List[FindingSummary]) -> Dict[str, Dict[str, int]]:
    facets: Dict[str, Dict[str, int]] = {"system_group": {}, "space_group": {}, "tags": {}, "priority": {}}
    for item in items:
        for name, value in (
            ("system_group", item.system_group),
            ("space_group", item.space_group),
            ("priority", item.dimensions_effective.priority),
        ):
            key = value or "_"
            facets[name][key] = facets[name].get(key, 0) + 1
        for tag in item.tags:
            facets["tags"][tag] = facets["tags"].get(tag, 0) + 1
    return facets


def _split_tags(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    return [t for t in raw.replace(",", " ").split() if t]


# =============================================================================
# Findings (dimensions)
# =============================================================================

@admin_router.get("/findings", response_model=FindingListResponse)
def list_findings(
    q: Optional[str] = None,
    system_group: Optional[str] = None,
    space_group: Optional[str] = None,
    tags: Optional[str] = None,
    priority: Optional[str] = None,
    safety: Optional[str] = None,
    urgency: Optional[str] = None,
    liability: Optional[str] = None,
    has_overrides: bool = False,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    preview: Optional[str] = None,
    db: Session = Depends(get_db),
    catalog: SeedCatalog = Depends(get_catalog),
):
    """List findings with their effective dimensions"""
    items = _summaries(db, catalog, ResolutionMode.from_query(preview))

    if q and q.strip():
        needle = q.strip().lower()
        items = [i for i in items if needle in i.finding_id.lower() or needle in i.title.lower()]
    if system_group:
        items = [i for i in items if i.system_group == system_group]
    if space_group:
        items = [i for i in items if i.space_group == space_group]
    for tag in _split_tags(tags):
        items = [i for i in items if tag in i.tags]
    for field, wanted in (("priority", priority), ("safety", safety), ("urgency", urgency), ("liability", liability)):
        if wanted:
            items = [i for i in items if getattr(i.dimensions_effective, field) == wanted.strip().upper()]
    if has_overrides:
        items = [i for i in items if i.dimensions_source == ValueSource.OVERRIDE]

    total = len(items)
    start = (page - 1) * page_size
    return FindingListResponse(
        meta=FindingListMeta(
            total=total,
            page=page,
            page_size=page_size,
            total_pages=math.ceil(total / page_size),
        ),
        facets=_facets(items),
        items=items[start:start + page_size],
    )


@admin_router.get("/findings/{finding_id}", response_model=FindingDetailResponse)
def get_finding(
    finding_id: str,
    preview: Optional[str] = None,
    db: Session = Depends(get_db),
    catalog: SeedCatalog = Depends(get_catalog),
):
    """Definition, seed, active/draft overrides, effective dimensions and history"""
    effective = resolve_effective(db, finding_id, mode=ResolutionMode.from_query(preview), catalog=catalog)
    definition = catalog.get(finding_id)

    return FindingDetailResponse(
        definition=definition.to_dict() if definition else {"finding_id": finding_id},
        seed_dimensions=catalog.seed_dimensions(finding_id),
        active_override=_row_out(
            dimension_ledger, dimension_ledger.active_row(db, finding_id, OverrideStatus.PUBLISHED)
        ),
        draft_override=_row_out(
            dimension_ledger, dimension_ledger.active_row(db, finding_id, OverrideStatus.DRAFT)
        ),
        dimensions_effective=effective.dimensions,
        dimensions_source=effective.dimensions_source,
        override_version=effective.override_version,
        history=[_row_out(dimension_ledger, row) for row in dimension_ledger.history(db, finding_id)],
    )


@admin_router.post("/findings/bulk", response_model=BulkDraftResponse)
def bulk_create_drafts(
    request: BulkDraftRequest,
    db: Session = Depends(get_db),
    catalog: SeedCatalog = Depends(get_catalog),
):
    """
    Stage the same dimension draft for an explicit id list, or for every
    finding matching `filter` (system_group, space_group, effective priority).
    `preset_id` takes the values from a stored preset instead of `dimensions`.
    """
    if request.finding_ids:
        finding_ids = list(request.finding_ids)
    else:
        items = _summaries(db, catalog, ResolutionMode.PRODUCTION)
        flt = request.filter
        if flt and flt.system_group:
            items = [i for i in items if i.system_group == flt.system_group]
        if flt and flt.space_group:
            items = [i for i in items if i.space_group == flt.space_group]
        if flt and flt.priority:
            items = [i for i in items if i.dimensions_effective.priority == flt.priority.strip().upper()]
        finding_ids = [i.finding_id for i in items]

    values = presets.bulk_values(db, request.preset_id, request.dimensions)
    versions = dimension_ledger.create_drafts_bulk(
        db, finding_ids, values, actor=request.updated_by, note=request.note
    )
    db.commit()
    return BulkDraftResponse(updated=len(versions), versions=versions)


# =============================================================================
# Presets
# =============================================================================

def _preset_out(preset) -> DimensionPresetOut:
    return DimensionPresetOut(
        id=preset.id,
        name=preset.name,
        dimensions=presets.preset_values(preset),
        created_by=preset.created_by,
        created_at=preset.created_at,
    )


@admin_router.get("/dimensions/presets", response_model=PresetListResponse)
def list_dimension_presets(db: Session = Depends(get_db)):
    """Stored presets, ordered by name"""
    return PresetListResponse(presets=[_preset_out(p) for p in presets.list_presets(db)])


@admin_router.post("/dimensions/presets", response_model=DimensionPresetOut)
def create_dimension_preset(request: CreatePresetRequest, db: Session = Depends(get_db)):
    preset = presets.create_preset(db, request.name, request.dimensions, actor=request.created_by)
    db.commit()
    return _preset_out(preset)


@admin_router.post("/findings/dimensions/publish", response_model=PublishResult)
def publish_dimension_drafts(request: PublishRequest, db: Session = Depends(get_db)):
    """Publish active dimension drafts (empty finding_ids = all drafts)"""
    result = publish_dimensions(
        db, finding_ids=request.finding_ids, version_label=request.version, actor=request.actor
    )
    db.commit()
    return result


@admin_router.post("/findings/dimensions/rollback", response_model=RollbackResult)
def rollback_dimension_publish(request: RollbackRequest, db: Session = Depends(get_db)):
    """Restore the dimensions that preceded publish label `version`"""
    result = rollback_dimensions(
        db, request.version, finding_ids=request.finding_ids, actor=request.actor
    )
    db.commit()
    return result


@admin_router.post("/findings/messages/publish", response_model=PublishResult)
def publish_message_drafts(request: PublishRequest, db: Session = Depends(get_db)):
    """Publish active message drafts for one language"""
    result = publish_messages(
        db,
        finding_ids=request.finding_ids,
        lang=request.lang,
        version_label=request.version,
        actor=request.actor,
    )
    db.commit()
    return result


@admin_router.post("/findings/messages/rollback", response_model=RollbackResult)
def rollback_message_publish(request: RollbackRequest, db: Session = Depends(get_db)):
    """Restore the messages that preceded publish label `version`"""
    result = rollback_messages(
        db, request.version, finding_ids=request.finding_ids, lang=request.lang, actor=request.actor
    )
    db.commit()
    return result


@admin_router.post("/findings/{finding_id}/override", response_model=DraftCreatedResponse)
def create_dimension_draft(
    finding_id: str,
    request: CreateDimensionDraftRequest,
    db: Session = Depends(get_db),
):
    """Stage a new dimension draft; the published override is untouched"""
    version = dimension_ledger.create_draft(
        db, finding_id, request.dimensions, actor=request.updated_by, note=request.note
    )
    db.commit()
    return DraftCreatedResponse(finding_id=finding_id, version=version)


@admin_router.post("/findings/{finding_id}/override/reset", response_model=ResetResponse)
def reset_dimension_override(finding_id: str, db: Session = Depends(get_db)):
    """Deactivate the published override so production falls back to seed"""
    reset = dimension_ledger.reset_active(db, finding_id)
    db.commit()
    return ResetResponse(
        finding_id=finding_id,
        reset=reset,
        message="Override reset; effective dimensions fall back to seed.",
    )


# =============================================================================
# Messages
# =============================================================================

@admin_router.get("/findings/{finding_id}/messages", response_model=EffectiveMessages)
def get_finding_messages(
    finding_id: str,
    lang: Optional[str] = None,
    preview: Optional[str] = None,
    db: Session = Depends(get_db),
    catalog: SeedCatalog = Depends(get_catalog),
):
    return resolve_effective_messages(
        db, finding_id, lang=lang or get_default_lang(), mode=ResolutionMode.from_query(preview), catalog=catalog
    )


@admin_router.post("/findings/{finding_id}/messages", response_model=DraftCreatedResponse)
def create_message_draft(
    finding_id: str,
    request: CreateMessageDraftRequest,
    db: Session = Depends(get_db),
):
    """Stage a new message draft for one language"""
    lang = (request.lang or "").strip() or get_default_lang()
    version = message_ledger.create_draft(
        db, finding_id, request.messages, actor=request.updated_by, lang=lang, source=request.source
    )
    db.commit()
    return DraftCreatedResponse(finding_id=finding_id, version=version, lang=lang)


@admin_router.post("/findings/{finding_id}/messages/reset", response_model=ResetResponse)
def reset_message_override(finding_id: str, lang: Optional[str] = None, db: Session = Depends(get_db)):
    """Deactivate the published message override for one language"""
    lang = (lang or "").strip() or get_default_lang()
    reset = message_ledger.reset_active(db, finding_id, lang=lang)
    db.commit()
    return ResetResponse(
        finding_id=finding_id,
        reset=reset,
        lang=lang,
        message=f"Override reset; effective {lang} messages fall back to seed.",
    )


# =============================================================================
# Audit
# =============================================================================

@admin_router.get("/findings/{finding_id}/changes", response_model=List[ChangeLogEntryOut])
def get_finding_changes(
    finding_id: str,
    entity_type: EntityType = EntityType.DIMENSIONS,
    lang: Optional[str] = None,
    db: Session = Depends(get_db),
):
    """Publish/rollback history for one finding, newest first"""
    entries = audit.get_publish_history(db, entity_type, finding_id, lang=lang)
    return [ChangeLogEntryOut(**audit.entry_to_dict(entry)) for entry in entries]


app.include_router(admin_router)


# =============================================================================
# Health
# =============================================================================

@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check():
    """Health check endpoint"""
    settings = get_settings()
    return HealthResponse(
        status="healthy",
        version=settings.service_version,
        database_configured=is_db_configured(),
        timestamp=datetime.now(),
    )


# =============================================================================
# Errors
# =============================================================================

_ERROR_STATUS = {
    OverrideValidationError: 400,
    FindingNotFoundError: 404,
    VersionConflictError: 409,
    MissingAuditTrailError: 404,
    PresetNotFoundError: 404,
    StoreNotConfiguredError: 503,
}


def _is_admin_request(request: Request) -> bool:
    return request.url.path.startswith("/api/admin")


def _error_code_for_status(status_code: int) -> str:
    return {
        400: "bad_request",
        401: "unauthorized",
        404: "not_found",
        409: "conflict",
        422: "validation_error",
        500: "internal_error",
        503: "store_not_configured",
    }.get(status_code, "error")


def _build_error_payload(code: str, message: str, details: Any = None) -> Dict[str, Any]:
    return {
        "error": {
            "code": code,
            "message": message,
            "details": details,
        }
    }


@app.exception_handler(FindingsAdminError)
async def findings_admin_error_handler(request: Request, exc: FindingsAdminError):
    status_code = next(
        (code for exc_type, code in _ERROR_STATUS.items() if isinstance(exc, exc_type)),
        500,
    )
    if status_code >= 500:
        logger.warning(f"{request.url.path}: {exc.__class__.__name__}: {exc}")
    return JSONResponse(
        status_code=status_code,
        content=_build_error_payload(_error_code_for_status(status_code), str(exc)),
    )


@app.exception_handler(HTTPException)
async def api_http_exception_handler(request: Request, exc: HTTPException):
    """Structured errors for /api/admin endpoints."""
    if not _is_admin_request(request):
        return await http_exception_handler(request, exc)
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return JSONResponse(
        status_code=exc.status_code,
        content=_build_error_payload(_error_code_for_status(exc.status_code), message),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def api_validation_exception_handler(request: Request, exc: RequestValidationError):
    """Return structured validation errors without echoing inputs."""
    if not _is_admin_request(request):
        return await request_validation_exception_handler(request, exc)
    sanitized_errors = [
        {"loc": err.get("loc"), "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=422,
        content=_build_error_payload("validation_error", "Invalid request", {"errors": sanitized_errors}),
    )


# =============================================================================
# Startup
# =============================================================================

@app.on_event("startup")
async def startup_event():
    """Initialize on startup"""
    settings = get_settings()
    logger.info(f"Starting Finding Override Service v{settings.service_version}")
    for warning in settings.validate_admin_config():
        logger.warning(warning)

    if not is_db_configured():
        logger.warning("DATABASE_URL not set; admin endpoints will return 503")
        return
    try:
        init_db()
        logger.info("Database initialized")
    except Exception as e:
        logger.warning(f"Database initialization failed: {e}")
