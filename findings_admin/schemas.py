"""
Pydantic Schemas for Finding Override Service
=============================================

Value models for the nine dimensions and the narrative message fields,
plus request/response shapes for the admin API.

Overrides are whole records: a DimensionSet or MessageSet supplied by an
override is used as-is, and fields left unset stay None ("unspecified").
They are never filled in from the seed baseline.

Value models and effective records are frozen: resolved records are shared
through the process-wide cache and the seed catalog.
"""

from typing import List, Optional, Dict, Any
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from enum import Enum
from datetime import datetime


# =============================================================================
# ENUMS - Dimension values
# =============================================================================

class SafetyClass(str, Enum):
    HIGH = "HIGH"
    MODERATE = "MODERATE"
    LOW = "LOW"


class EscalationClass(str, Enum):
    HIGH = "HIGH"
    MODERATE = "MODERATE"
    LOW = "LOW"


class UrgencyClass(str, Enum):
    IMMEDIATE = "IMMEDIATE"
    SHORT_TERM = "SHORT_TERM"
    LONG_TERM = "LONG_TERM"


class LiabilityClass(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class PriorityLabel(str, Enum):
    """
    Priority labels, most to least pressing.

    PLAN_MONITOR is the fallback when nothing else is known.
    """
    IMMEDIATE = "IMMEDIATE"
    URGENT = "URGENT"
    RECOMMENDED_0_3_MONTHS = "RECOMMENDED_0_3_MONTHS"
    PLAN_MONITOR = "PLAN_MONITOR"


# =============================================================================
# ENUMS - Resolution
# =============================================================================

class ResolutionMode(str, Enum):
    """
    Which override rows resolution may see.

    - PRODUCTION: active published override, else seed
    - PREVIEW_DRAFT: active draft, else active published, else seed
    """
    PRODUCTION = "production"
    PREVIEW_DRAFT = "preview_draft"

    @classmethod
    def from_query(cls, preview: Optional[str]) -> "ResolutionMode":
        """Map the admin `?preview=draft` query flag to a mode."""
        if preview and preview.strip().lower() == "draft":
            return cls.PREVIEW_DRAFT
        return cls.PRODUCTION


class ValueSource(str, Enum):
    SEED = "seed"
    OVERRIDE = "override"


# =============================================================================
# VALUE MODELS
# =============================================================================

_ENUM_DIMENSIONS = ("safety", "escalation", "urgency", "liability", "priority")


class DimensionSet(BaseModel):
    """The nine structured risk/budget attributes of a finding"""
    model_config = ConfigDict(use_enum_values=True, extra="forbid", frozen=True)

    safety: Optional[SafetyClass] = None
    urgency: Optional[UrgencyClass] = None
    liability: Optional[LiabilityClass] = None
    budget_low: Optional[int] = Field(None, ge=0)
    budget_high: Optional[int] = Field(None, ge=0)
    priority: Optional[PriorityLabel] = None
    severity: Optional[int] = Field(None, ge=1, le=5)
    likelihood: Optional[int] = Field(None, ge=1, le=5)
    escalation: Optional[EscalationClass] = None

    @field_validator(*_ENUM_DIMENSIONS, mode="before")
    @classmethod
    def _normalize_label(cls, v):
        if isinstance(v, str):
            v = v.strip().upper()
            return v or None
        return v

    @model_validator(mode="after")
    def _check_budget_range(self):
        if self.budget_low is not None and self.budget_high is not None:
            if self.budget_low > self.budget_high:
                raise ValueError("budget_low must not exceed budget_high")
        return self


class MessageSet(BaseModel):
    """Narrative text for a finding in one language"""
    model_config = ConfigDict(extra="forbid", frozen=True)

    title: Optional[str] = None
    observed_condition: Optional[List[str]] = None
    why_it_matters: Optional[str] = None
    recommended_action: Optional[str] = None
    planning_guidance: Optional[str] = None
    priority_rationale: Optional[str] = None
    risk_interpretation: Optional[str] = None
    disclaimer_line: Optional[str] = None

    @field_validator("observed_condition", mode="before")
    @classmethod
    def _coerce_statements(cls, v):
        if v is None:
            return None
        if isinstance(v, str):
            return [v] if v.strip() else None
        if isinstance(v, (list, tuple)):
            return [str(item) for item in v]
        return v


# =============================================================================
# EFFECTIVE RECORDS
# =============================================================================

class EffectiveDimensions(BaseModel):
    """Resolved dimensions for one finding"""
    model_config = ConfigDict(frozen=True)

    finding_id: str
    dimensions: DimensionSet
    dimensions_source: ValueSource
    override_version: Optional[int] = None
    override_status: Optional[str] = None


class EffectiveMessages(BaseModel):
    """Resolved messages for one finding and language"""
    model_config = ConfigDict(frozen=True)

    finding_id: str
    lang: str
    messages: MessageSet
    messages_source: ValueSource
    override_version: Optional[int] = None
    override_status: Optional[str] = None


# =============================================================================
# INPUT SCHEMAS
# =============================================================================

class CreateDimensionDraftRequest(BaseModel):
    """Stage a dimension override draft for one finding"""
    dimensions: Dict[str, Any] = Field(default_factory=dict)
    note: Optional[str] = None
    updated_by: Optional[str] = None


class CreateMessageDraftRequest(BaseModel):
    """Stage a message override draft for one finding and language"""
    lang: Optional[str] = None
    messages: Dict[str, Any] = Field(default_factory=dict)
    source: Optional[str] = None
    updated_by: Optional[str] = None


class BulkFilter(BaseModel):
    system_group: Optional[str] = None
    space_group: Optional[str] = None
    priority: Optional[str] = None


class BulkDraftRequest(BaseModel):
    """Stage the same dimension draft for many findings"""
    finding_ids: List[str] = Field(default_factory=list)
    filter: Optional[BulkFilter] = None
    dimensions: Dict[str, Any] = Field(default_factory=dict)
    preset_id: Optional[str] = Field(None, description="Apply a stored preset instead of `dimensions`")
    note: str = "Bulk update"
    updated_by: Optional[str] = None


class CreatePresetRequest(BaseModel):
    """Store a named dimension preset"""
    name: str
    dimensions: Dict[str, Any] = Field(default_factory=dict)
    created_by: Optional[str] = None


class PublishRequest(BaseModel):
    """Publish active drafts. Empty finding_ids = all drafts."""
    version: Optional[str] = Field(None, description="Publish label (default: today's date)")
    finding_ids: List[str] = Field(default_factory=list)
    lang: Optional[str] = None
    actor: Optional[str] = None


class RollbackRequest(BaseModel):
    """Restore the snapshot that preceded a publish label"""
    version: str = Field("", description="Publish label to roll back from")
    finding_ids: List[str] = Field(default_factory=list)
    lang: Optional[str] = None
    actor: Optional[str] = None


# =============================================================================
# OUTPUT SCHEMAS
# =============================================================================

class PublishResult(BaseModel):
    ok: bool = True
    version: str
    lang: Optional[str] = None
    published: int = 0
    skipped: int = 0
    total_drafts: int = 0
    errors: List[str] = Field(default_factory=list)


class RollbackResult(BaseModel):
    ok: bool = True
    version: str
    lang: Optional[str] = None
    rolled_back: int = 0
    skipped: int = 0
    errors: List[str] = Field(default_factory=list)


class DraftCreatedResponse(BaseModel):
    ok: bool = True
    finding_id: str
    version: int
    lang: Optional[str] = None


class BulkDraftResponse(BaseModel):
    ok: bool = True
    updated: int
    versions: Dict[str, int] = Field(default_factory=dict)


class ResetResponse(BaseModel):
    ok: bool = True
    finding_id: str
    reset: bool
    lang: Optional[str] = None
    message: str


class DimensionPresetOut(BaseModel):
    id: str
    name: str
    dimensions: DimensionSet
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None


class PresetListResponse(BaseModel):
    presets: List[DimensionPresetOut]


class OverrideRowOut(BaseModel):
    """One ledger row as shown in the admin history view"""
    version: int
    status: str
    active: bool
    version_text: Optional[str] = None
    values: Dict[str, Any]
    note: Optional[str] = None
    updated_by: Optional[str] = None
    created_at: Optional[datetime] = None


class ChangeLogEntryOut(BaseModel):
    id: int
    entity_type: str
    finding_id: Optional[str] = None
    lang: Optional[str] = None
    action: str
    from_version: Optional[str] = None
    to_version: Optional[str] = None
    actor: Optional[str] = None
    diff_json: Dict[str, Any]
    created_at: Optional[datetime] = None


class FindingSummary(BaseModel):
    finding_id: str
    title: str
    system_group: Optional[str] = None
    space_group: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    dimensions_effective: DimensionSet
    dimensions_source: ValueSource
    override_version: Optional[int] = None


class FindingListMeta(BaseModel):
    total: int
    page: int
    page_size: int
    total_pages: int


class FindingListResponse(BaseModel):
    meta: FindingListMeta
    facets: Dict[str, Dict[str, int]]
    items: List[FindingSummary]


class FindingDetailResponse(BaseModel):
    definition: Dict[str, Any]
    seed_dimensions: DimensionSet
    active_override: Optional[OverrideRowOut] = None
    draft_override: Optional[OverrideRowOut] = None
    dimensions_effective: DimensionSet
    dimensions_source: ValueSource
    override_version: Optional[int] = None
    history: List[OverrideRowOut] = Field(default_factory=list)


class HealthResponse(BaseModel):
    """Health check response"""
    status: str = Field(..., description="Service status")
    version: str = Field(..., description="Service version")
    database_configured: bool = Field(..., description="DATABASE_URL is set")
    timestamp: datetime = Field(..., description="Current timestamp")
