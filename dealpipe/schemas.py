from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from .models import (
    BlastStatus,
    Channel,
    FeedbackType,
    Grade,
    HandoffStatus,
    LeadTier,
    PerformanceGrade,
    Priority,
    RecipientStatus,
    RecommendationStatus,
    RecommendationType,
    Route,
    Strategy,
    TemplateStatus,
)


class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# -----------------------------
# Leads
# -----------------------------
class LeadIntake(BaseModel):
    source: str | None = None
    property_address: str | None = None
    city: str | None = None
    county: str | None = None
    state: str | None = None
    zip_code: str | None = None
    market_key: str | None = None

    property_type: str | None = None
    beds: int | None = Field(default=None, ge=0)
    baths: float | None = Field(default=None, ge=0)
    sqft: int | None = Field(default=None, ge=0)
    year_built: int | None = None
    condition_tier: str | None = None

    asking_price: float | None = Field(default=None, ge=0)
    arv: float | None = Field(default=None, ge=0)
    estimated_rehab_cost: float | None = Field(default=None, ge=0)
    estimated_rent: float | None = Field(default=None, ge=0)
    noi: float | None = None
    annual_taxes: float | None = Field(default=None, ge=0)
    annual_insurance: float | None = Field(default=None, ge=0)

    description: str | None = None
    red_flags: list[str] | None = None


class LeadOut(ORMModel):
    id: int
    source: str
    property_address: str | None = None
    city: str | None = None
    county: str | None = None
    state: str | None = None
    zip_code: str | None = None
    market_key: str | None = None
    property_type: str | None = None
    beds: int | None = None
    baths: float | None = None
    sqft: int | None = None
    year_built: int | None = None
    condition_tier: str | None = None
    asking_price: float | None = None
    arv: float | None = None

    score: float
    grade: Grade
    lead_tier: LeadTier
    buy_box_id: int | None = None
    buy_box_label: str | None = None
    score_override: dict[str, Any] | None = None

    route: Route | None = None
    priority: Priority | None = None
    sla_hours: int | None = None
    routing_reason: str | None = None
    routing_reasons: list[str] = []
    routing_override: dict[str, Any] | None = None

    intake_locked: bool
    handoff_status: HandoffStatus
    created_at: datetime
    updated_at: datetime


class ScoreOut(BaseModel):
    lead_id: int
    score: float
    grade: str
    computed_grade: str
    lead_tier: str | None = None
    buy_box_id: int | None = None
    buy_box_key: str | None = None
    buy_box_label: str | None = None
    reasons: list[str]
    failed_checks: list[str]
    cash_flow: dict[str, Any] | None = None
    override: dict[str, Any] | None = None
    evaluated_at: datetime | None = None


class ScoreOverrideIn(BaseModel):
    grade: str | None = None
    reason: str | None = None


class RoutingOverrideIn(BaseModel):
    route: str
    priority: str
    reason: str | None = None


class RouteOut(BaseModel):
    route: Route
    priority: Priority
    sla_hours: int | None = None
    reasons: list[str]
    routing_reason: str | None = None
    blocked_by_cash_flow: bool = False


class BuyerMatchOut(BaseModel):
    buyer_id: int
    buyer_name: str
    score: float
    reasons: list[str]


class BuyerExclusionOut(BaseModel):
    buyer_id: int
    buyer_name: str
    reason: str


class MatchingBuyersOut(BaseModel):
    lead_id: int
    market_key: str | None = None
    threshold: float
    matches: list[BuyerMatchOut]
    excluded: list[BuyerExclusionOut]


# -----------------------------
# Buy boxes / buyers
# -----------------------------
class BuyBoxIn(BaseModel):
    market_key: str | None = None
    label: str | None = None
    strategy: str | None = None
    active: bool | None = None
    property_types: list[str] | None = None
    min_beds: int | None = None
    min_baths: float | None = None
    min_sqft: int | None = None
    min_year_built: int | None = None
    condition_allowed: list[str] | None = None
    buy_price_min: float | None = None
    buy_price_max: float | None = None
    arv_min: float | None = None
    arv_max: float | None = None
    counties: list[str] | None = None
    city_overrides: dict[str, dict[str, float | None]] | None = None
    exclusions: list[str] | None = None
    requires_positive_cash_flow: bool | None = None
    cash_flow_config: dict[str, Any] | None = None


class BuyBoxOut(ORMModel):
    id: int
    market_key: str
    label: str
    strategy: Strategy
    active: bool
    property_types: list[str]
    min_beds: int | None = None
    min_baths: float | None = None
    min_sqft: int | None = None
    min_year_built: int | None = None
    condition_allowed: list[str]
    buy_price_min: float | None = None
    buy_price_max: float | None = None
    arv_min: float | None = None
    arv_max: float | None = None
    counties: list[str]
    city_overrides: dict[str, Any]
    exclusions: list[str]
    requires_positive_cash_flow: bool
    cash_flow_config: dict[str, Any]
    performance_metadata: dict[str, Any]


class BuyBoxWarningOut(BaseModel):
    buy_box_id: int
    market_key: str
    label: str
    warning_tier: str
    warnings: list[str]
    metrics: dict[str, Any]
    last_calculated_at: str | None = None


class BuyerIn(BaseModel):
    name: str
    active: bool = True
    phones: list[str] = []
    emails: list[str] = []
    preferred_markets: list[str] = []
    markets: list[str] = []
    counties: list[str] = []
    cities: list[str] = []
    property_types: list[str] = []
    min_beds: int | None = None
    min_baths: float | None = None
    min_sqft: int | None = None
    min_year_built: int | None = None
    max_rehab_level: Literal["light", "medium", "heavy"] | None = None
    max_buy_price: float | None = None
    min_arv: float | None = None
    strategies: list[str] = []
    proof_of_funds: bool = False
    cooldown_hours: int = Field(default=72, ge=0)
    engagement_score: float = Field(default=50.0, ge=0, le=100)
    last_purchase_date: datetime | None = None


class BuyerOut(ORMModel):
    id: int
    name: str
    active: bool
    phones: list[str]
    emails: list[str]
    preferred_markets: list[str]
    markets: list[str]
    strategies: list[str]
    proof_of_funds: bool
    opt_out_sms: bool
    opt_out_email: bool
    cooldown_hours: int
    last_blast_at: datetime | None = None
    engagement_score: float
    responsiveness_score: float | None = None
    close_rate: float | None = None
    feedback_metrics: dict[str, Any]


# -----------------------------
# Templates / blasts
# -----------------------------
class TemplateIn(BaseModel):
    key: str
    content: str
    channel: Channel = Channel.internal
    subject: str | None = None
    activate: bool = False


class TemplateOut(ORMModel):
    id: int
    key: str
    channel: Channel
    status: TemplateStatus
    subject: str | None = None
    content: str


class BlastCreate(BaseModel):
    lead_id: int
    channel: str = "internal"
    message_template_key: str
    max_recipients: int = 25


class RecipientOut(ORMModel):
    id: int
    buyer_id: int
    match_score: float
    status: RecipientStatus
    reason_excluded: str | None = None
    message_id: str | None = None
    provider: str | None = None
    sent_at: datetime | None = None
    responded_at: datetime | None = None
    response_text: str | None = None


class BlastOut(ORMModel):
    id: int
    lead_id: int
    channel: Channel
    message_template_key: str
    max_recipients: int
    created_by: str | None = None
    status: BlastStatus
    grade_at_blast: Grade
    stats_recipients: int
    stats_delivered: int
    stats_failed: int
    stats_replies: int
    stats_interested: int
    stats_not_interested: int
    sent_at: datetime | None = None
    canceled_at: datetime | None = None
    created_at: datetime


class BlastDetailOut(BaseModel):
    blast: BlastOut
    recipients: list[RecipientOut]


class BlastSendOut(BaseModel):
    deal_blast_id: int
    total_recipients: int
    sent: int
    failed: int


class BlastResponseIn(BaseModel):
    recipient_id: int | None = None
    response_text: str | None = None
    status: str | None = None


class BuyerFeedbackOut(ORMModel):
    id: int
    buyer_id: int
    lead_id: int
    deal_blast_id: int | None = None
    recipient_id: int | None = None
    feedback_type: FeedbackType
    source: Channel
    response_text: str | None = None
    recorded_by: str | None = None
    created_at: datetime


# -----------------------------
# Performance / feedback
# -----------------------------
class PerformanceCreate(BaseModel):
    lead_id: int
    buyer_id: int
    buy_box_id: int | None = None
    strategy: str
    market_key: str
    closed_date: datetime
    purchase_price: float = Field(..., gt=0)
    rehab_cost_actual: float = Field(default=0.0, ge=0)
    loan_type: str = "DSCR"
    interest_rate: float = Field(..., ge=0)
    ltv: float = Field(..., ge=0, le=1)
    amortization: int = Field(default=30, gt=0)
    projected_rent: float
    projected_noi: float
    projected_monthly_cash_flow: float
    projected_dscr: float
    pro_forma_assumptions: list[str] = []


class PerformanceOut(ORMModel):
    id: int
    lead_id: int
    buyer_id: int
    buy_box_id: int | None = None
    strategy: Strategy
    market_key: str
    closed_date: datetime
    purchase_price: float
    projected_rent: float
    projected_noi: float
    projected_monthly_cash_flow: float
    projected_dscr: float
    pro_forma_assumptions: list[str]
    pro_forma_locked_at: datetime
    pro_forma_locked_by: str | None = None


class PeriodCreate(BaseModel):
    month: int = Field(..., ge=1, le=12)
    year: int = Field(..., ge=2000)
    actual_rent_collected: float = 0.0
    actual_vacancy_rate: float = Field(default=0.0, ge=0, le=1)
    actual_expenses_total: float = 0.0
    actual_noi: float
    actual_monthly_cash_flow: float
    actual_dscr: float


class PeriodOut(ORMModel):
    id: int
    performance_id: int
    month: int
    year: int
    actual_monthly_cash_flow: float
    actual_dscr: float
    cash_flow_variance: float
    dscr_variance: float
    rent_variance: float
    expense_variance: float
    performance_grade: PerformanceGrade
    flags: list[str]


class FeedbackSweepResult(BaseModel):
    buy_boxes_updated: int
    buyers_updated: int
    errors: int


# -----------------------------
# Recommendations
# -----------------------------
class RecommendationOut(ORMModel):
    id: int
    buy_box_id: int
    type: RecommendationType
    status: RecommendationStatus
    current_value: Any = None
    proposed_value: Any = None
    confidence: int
    rationale: str
    evidence: dict[str, Any]
    decision_note: str | None = None
    decided_by: str | None = None
    decided_at: datetime | None = None
    applied_at: datetime | None = None
    created_at: datetime


class GenerateRecommendationsOut(BaseModel):
    buy_box_id: int
    eligible: bool
    reason: str | None = None
    metrics: dict[str, Any] | None = None
    created: list[RecommendationOut]


class DecisionIn(BaseModel):
    decision_note: str | None = None


# -----------------------------
# Integrations
# -----------------------------
class WebhookSinkIn(BaseModel):
    name: str
    type: Literal["webhook"] = "webhook"
    enabled: bool = True
    url: str
    secret: str | None = None


class WebhookSinkPatch(BaseModel):
    enabled: bool | None = None
    url: str | None = None
    secret: str | None = None


class WebhookSinkOut(BaseModel):
    id: int
    name: str
    type: str
    enabled: bool
    created_at: datetime


# -----------------------------
# Jobs
# -----------------------------
class DispatchResult(BaseModel):
    delivered: int
    failed: int
    sinks: int | None = None
    events: int | None = None
    skipped_no_sinks: int | None = None
