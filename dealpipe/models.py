# dealpipe/models.py
from __future__ import annotations

import enum
from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    Float,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


# -----------------------------
# Core enums
# -----------------------------
class Grade(str, enum.Enum):
    A = "A"
    B = "B"
    C = "C"
    D = "D"
    Dead = "Dead"


class LeadTier(str, enum.Enum):
    hot = "hot"
    warm = "warm"
    cold = "cold"


class Strategy(str, enum.Enum):
    flip = "flip"
    buy_hold = "buy_hold"
    commercial = "commercial"
    wholesale = "wholesale"


class Route(str, enum.Enum):
    immediate_closer = "immediate_closer"
    dialer_priority = "dialer_priority"
    nurture = "nurture"
    archive = "archive"


class Priority(str, enum.Enum):
    urgent = "urgent"
    high = "high"
    normal = "normal"
    low = "low"


class HandoffStatus(str, enum.Enum):
    none = "none"
    back_to_dialer = "back_to_dialer"
    ready_for_closer = "ready_for_closer"
    closer_working = "closer_working"
    closed = "closed"


class Channel(str, enum.Enum):
    internal = "internal"
    sms = "sms"
    email = "email"


class TemplateStatus(str, enum.Enum):
    draft = "draft"
    active = "active"
    archived = "archived"


class BlastStatus(str, enum.Enum):
    draft = "draft"
    sent = "sent"
    canceled = "canceled"


class RecipientStatus(str, enum.Enum):
    queued = "queued"
    sent = "sent"
    failed = "failed"
    replied = "replied"
    interested = "interested"
    not_interested = "not_interested"
    opted_out = "opted_out"


class FeedbackType(str, enum.Enum):
    interested = "interested"
    price_too_high = "price_too_high"
    wrong_market = "wrong_market"
    needs_more_info = "needs_more_info"
    pass_ = "pass"


class PerformanceGrade(str, enum.Enum):
    A = "A"
    B = "B"
    C = "C"
    D = "D"


class RecommendationType(str, enum.Enum):
    dscr_minimum = "dscr_minimum"
    vacancy_assumption = "vacancy_assumption"
    expense_assumption = "expense_assumption"
    price_ceiling = "price_ceiling"
    exclusion_rule = "exclusion_rule"
    scoring_weight_adjustment = "scoring_weight_adjustment"


class RecommendationStatus(str, enum.Enum):
    proposed = "proposed"
    reviewed = "reviewed"
    accepted = "accepted"
    rejected = "rejected"


class ScoringConfigStatus(str, enum.Enum):
    draft = "draft"
    active = "active"
    archived = "archived"


class OutboxStatus(str, enum.Enum):
    pending = "pending"
    delivered = "delivered"
    failed = "failed"


class IntegrationType(str, enum.Enum):
    webhook = "webhook"


class JobRunStatus(str, enum.Enum):
    running = "running"
    success = "success"
    failed = "failed"


# -----------------------------
# Models
# -----------------------------
class Lead(Base):
    __tablename__ = "leads"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    source: Mapped[str] = mapped_column(String(50), default="manual")

    # location
    property_address: Mapped[str | None] = mapped_column(String(255), nullable=True)
    city: Mapped[str | None] = mapped_column(String(80), nullable=True)
    county: Mapped[str | None] = mapped_column(String(80), nullable=True)
    state: Mapped[str | None] = mapped_column(String(20), nullable=True)
    zip_code: Mapped[str | None] = mapped_column(String(10), nullable=True)
    market_key: Mapped[str | None] = mapped_column(String(60), nullable=True, index=True)

    # physical
    property_type: Mapped[str | None] = mapped_column(String(40), nullable=True)
    beds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    baths: Mapped[float | None] = mapped_column(Float, nullable=True)
    sqft: Mapped[int | None] = mapped_column(Integer, nullable=True)
    year_built: Mapped[int | None] = mapped_column(Integer, nullable=True)
    condition_tier: Mapped[str | None] = mapped_column(String(20), nullable=True)

    # money
    asking_price: Mapped[float | None] = mapped_column(Float, nullable=True)
    arv: Mapped[float | None] = mapped_column(Float, nullable=True)
    estimated_rehab_cost: Mapped[float | None] = mapped_column(Float, nullable=True)
    estimated_rent: Mapped[float | None] = mapped_column(Float, nullable=True)
    noi: Mapped[float | None] = mapped_column(Float, nullable=True)
    annual_taxes: Mapped[float | None] = mapped_column(Float, nullable=True)
    annual_insurance: Mapped[float | None] = mapped_column(Float, nullable=True)

    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    red_flags: Mapped[list[str]] = mapped_column(JSON, default=list)

    # score
    score: Mapped[float] = mapped_column(Float, default=0.0)
    grade: Mapped[Grade] = mapped_column(Enum(Grade), default=Grade.Dead, index=True)
    lead_tier: Mapped[LeadTier] = mapped_column(Enum(LeadTier), default=LeadTier.cold)
    buy_box_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    buy_box_key: Mapped[str | None] = mapped_column(String(60), nullable=True)
    buy_box_label: Mapped[str | None] = mapped_column(String(120), nullable=True)
    score_reasons: Mapped[list[str]] = mapped_column(JSON, default=list)
    score_failed_checks: Mapped[list[str]] = mapped_column(JSON, default=list)
    cash_flow: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    score_evaluated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    # {grade, reason, overridden_by, overridden_at}; automatic recompute never touches it
    score_override: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    # routing
    route: Mapped[Route | None] = mapped_column(Enum(Route), nullable=True, index=True)
    priority: Mapped[Priority | None] = mapped_column(Enum(Priority), nullable=True)
    sla_hours: Mapped[int | None] = mapped_column(Integer, nullable=True)
    routing_reasons: Mapped[list[str]] = mapped_column(JSON, default=list)
    routing_reason: Mapped[str | None] = mapped_column(String(120), nullable=True)
    routed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    routing_alerted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    routing_override: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    # dialer intake / closer handoff
    intake_locked: Mapped[bool] = mapped_column(Boolean, default=False)
    intake_locked_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    handoff_status: Mapped[HandoffStatus] = mapped_column(Enum(HandoffStatus), default=HandoffStatus.none)
    sent_to_closer_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class BuyBox(Base):
    __tablename__ = "buy_boxes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    market_key: Mapped[str] = mapped_column(String(60), index=True)
    label: Mapped[str] = mapped_column(String(120))
    strategy: Mapped[Strategy] = mapped_column(Enum(Strategy), default=Strategy.flip, index=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)

    property_types: Mapped[list[str]] = mapped_column(JSON, default=list)
    min_beds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    min_baths: Mapped[float | None] = mapped_column(Float, nullable=True)
    min_sqft: Mapped[int | None] = mapped_column(Integer, nullable=True)
    min_year_built: Mapped[int | None] = mapped_column(Integer, nullable=True)
    condition_allowed: Mapped[list[str]] = mapped_column(JSON, default=list)

    buy_price_min: Mapped[float | None] = mapped_column(Float, nullable=True)
    buy_price_max: Mapped[float | None] = mapped_column(Float, nullable=True)
    arv_min: Mapped[float | None] = mapped_column(Float, nullable=True)
    arv_max: Mapped[float | None] = mapped_column(Float, nullable=True)

    counties: Mapped[list[str]] = mapped_column(JSON, default=list)
    # {"Plano": {"buy_price_min": ..., "buy_price_max": ...}}
    city_overrides: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    exclusions: Mapped[list[str]] = mapped_column(JSON, default=list)

    requires_positive_cash_flow: Mapped[bool] = mapped_column(Boolean, default=False)
    # {loan_type, ltv, interest_rate, amortization, required_dscr,
    #  vacancy_reserve, maintenance_reserve, property_management}
    cash_flow_config: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)

    # advisory output of the feedback loop: {warning_tier, warnings, metrics, last_calculated_at}
    performance_metadata: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class Buyer(Base):
    __tablename__ = "buyers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(120))
    active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)

    phones: Mapped[list[str]] = mapped_column(JSON, default=list)
    emails: Mapped[list[str]] = mapped_column(JSON, default=list)

    preferred_markets: Mapped[list[str]] = mapped_column(JSON, default=list)
    markets: Mapped[list[str]] = mapped_column(JSON, default=list)  # legacy
    counties: Mapped[list[str]] = mapped_column(JSON, default=list)
    cities: Mapped[list[str]] = mapped_column(JSON, default=list)

    property_types: Mapped[list[str]] = mapped_column(JSON, default=list)
    min_beds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    min_baths: Mapped[float | None] = mapped_column(Float, nullable=True)
    min_sqft: Mapped[int | None] = mapped_column(Integer, nullable=True)
    min_year_built: Mapped[int | None] = mapped_column(Integer, nullable=True)
    max_rehab_level: Mapped[str | None] = mapped_column(String(20), nullable=True)
    max_buy_price: Mapped[float | None] = mapped_column(Float, nullable=True)
    min_arv: Mapped[float | None] = mapped_column(Float, nullable=True)
    strategies: Mapped[list[str]] = mapped_column(JSON, default=list)
    proof_of_funds: Mapped[bool] = mapped_column(Boolean, default=False)

    opt_out_sms: Mapped[bool] = mapped_column(Boolean, default=False)
    opt_out_email: Mapped[bool] = mapped_column(Boolean, default=False)
    cooldown_hours: Mapped[int] = mapped_column(Integer, default=72)
    last_blast_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    engagement_score: Mapped[float] = mapped_column(Float, default=50.0)
    responsiveness_score: Mapped[float | None] = mapped_column(Float, nullable=True)  # % of delivered blasts answered
    close_rate: Mapped[float | None] = mapped_column(Float, nullable=True)
    last_purchase_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    feedback_metrics: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class MessageTemplate(Base):
    __tablename__ = "message_templates"
    __table_args__ = (UniqueConstraint("key", name="uq_message_template_key"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    key: Mapped[str] = mapped_column(String(80))
    channel: Mapped[Channel] = mapped_column(Enum(Channel), default=Channel.internal)
    status: Mapped[TemplateStatus] = mapped_column(Enum(TemplateStatus), default=TemplateStatus.draft, index=True)
    subject: Mapped[str | None] = mapped_column(String(255), nullable=True)
    content: Mapped[str] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class DealBlast(Base):
    __tablename__ = "deal_blasts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    lead_id: Mapped[int] = mapped_column(Integer, index=True)
    channel: Mapped[Channel] = mapped_column(Enum(Channel))
    message_template_key: Mapped[str] = mapped_column(String(80))
    max_recipients: Mapped[int] = mapped_column(Integer, default=25)
    created_by: Mapped[str | None] = mapped_column(String(80), nullable=True, index=True)

    status: Mapped[BlastStatus] = mapped_column(Enum(BlastStatus), default=BlastStatus.draft, index=True)
    grade_at_blast: Mapped[Grade] = mapped_column(Enum(Grade))

    stats_recipients: Mapped[int] = mapped_column(Integer, default=0)
    stats_delivered: Mapped[int] = mapped_column(Integer, default=0)
    stats_failed: Mapped[int] = mapped_column(Integer, default=0)
    stats_replies: Mapped[int] = mapped_column(Integer, default=0)
    stats_interested: Mapped[int] = mapped_column(Integer, default=0)
    stats_not_interested: Mapped[int] = mapped_column(Integer, default=0)

    sent_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True, index=True)
    canceled_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class DealBlastRecipient(Base):
    __tablename__ = "deal_blast_recipients"
    __table_args__ = (UniqueConstraint("deal_blast_id", "buyer_id", name="uq_blast_recipient"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    deal_blast_id: Mapped[int] = mapped_column(Integer, index=True)
    buyer_id: Mapped[int] = mapped_column(Integer, index=True)
    match_score: Mapped[float] = mapped_column(Float, default=0.0)

    status: Mapped[RecipientStatus] = mapped_column(
        Enum(RecipientStatus), default=RecipientStatus.queued, index=True
    )
    reason_excluded: Mapped[str | None] = mapped_column(Text, nullable=True)

    message_id: Mapped[str | None] = mapped_column(String(120), nullable=True)
    provider: Mapped[str | None] = mapped_column(String(20), nullable=True)
    delivered_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    sent_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    responded_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    response_text: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class BuyerFeedback(Base):
    """One classified reply from a buyer about a blasted deal."""

    __tablename__ = "buyer_feedback"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    buyer_id: Mapped[int] = mapped_column(Integer, index=True)
    lead_id: Mapped[int] = mapped_column(Integer, index=True)
    deal_blast_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    recipient_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    feedback_type: Mapped[FeedbackType] = mapped_column(Enum(FeedbackType), index=True)
    source: Mapped[Channel] = mapped_column(Enum(Channel))
    response_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    recorded_by: Mapped[str | None] = mapped_column(String(80), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)


class DealPerformance(Base):
    """
    Post-close tracking for one acquired deal.
    The pro forma columns are written once at close and never edited.
    """

    __tablename__ = "deal_performances"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    lead_id: Mapped[int] = mapped_column(Integer, index=True)
    buyer_id: Mapped[int] = mapped_column(Integer, index=True)
    buy_box_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    strategy: Mapped[Strategy] = mapped_column(Enum(Strategy), index=True)
    market_key: Mapped[str] = mapped_column(String(60), index=True)

    closed_date: Mapped[datetime] = mapped_column(DateTime, index=True)
    purchase_price: Mapped[float] = mapped_column(Float)
    rehab_cost_actual: Mapped[float] = mapped_column(Float, default=0.0)

    loan_type: Mapped[str] = mapped_column(String(20), default="DSCR")
    interest_rate: Mapped[float] = mapped_column(Float)
    ltv: Mapped[float] = mapped_column(Float)
    amortization: Mapped[int] = mapped_column(Integer, default=30)

    projected_rent: Mapped[float] = mapped_column(Float)
    projected_noi: Mapped[float] = mapped_column(Float)
    projected_monthly_cash_flow: Mapped[float] = mapped_column(Float)
    projected_dscr: Mapped[float] = mapped_column(Float)
    pro_forma_assumptions: Mapped[list[str]] = mapped_column(JSON, default=list)
    pro_forma_locked_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    pro_forma_locked_by: Mapped[str | None] = mapped_column(String(80), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class PerformancePeriod(Base):
    __tablename__ = "performance_periods"
    __table_args__ = (
        UniqueConstraint("performance_id", "year", "month", name="uq_performance_period"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    performance_id: Mapped[int] = mapped_column(Integer, index=True)
    month: Mapped[int] = mapped_column(Integer)
    year: Mapped[int] = mapped_column(Integer)

    actual_rent_collected: Mapped[float] = mapped_column(Float, default=0.0)
    actual_vacancy_rate: Mapped[float] = mapped_column(Float, default=0.0)
    actual_expenses_total: Mapped[float] = mapped_column(Float, default=0.0)
    actual_noi: Mapped[float] = mapped_column(Float)
    actual_monthly_cash_flow: Mapped[float] = mapped_column(Float)
    actual_dscr: Mapped[float] = mapped_column(Float)

    cash_flow_variance: Mapped[float] = mapped_column(Float, default=0.0)
    dscr_variance: Mapped[float] = mapped_column(Float, default=0.0)
    rent_variance: Mapped[float] = mapped_column(Float, default=0.0)
    expense_variance: Mapped[float] = mapped_column(Float, default=0.0)
    performance_grade: Mapped[PerformanceGrade] = mapped_column(Enum(PerformanceGrade))
    flags: Mapped[list[str]] = mapped_column(JSON, default=list)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class BuyBoxRecommendation(Base):
    __tablename__ = "buy_box_recommendations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    buy_box_id: Mapped[int] = mapped_column(Integer, index=True)
    type: Mapped[RecommendationType] = mapped_column(Enum(RecommendationType), index=True)
    status: Mapped[RecommendationStatus] = mapped_column(
        Enum(RecommendationStatus), default=RecommendationStatus.proposed, index=True
    )

    current_value: Mapped[Any] = mapped_column(JSON, nullable=True)
    proposed_value: Mapped[Any] = mapped_column(JSON, nullable=True)
    confidence: Mapped[int] = mapped_column(Integer, default=0)
    rationale: Mapped[str] = mapped_column(Text, default="")
    evidence: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)

    decision_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    decided_by: Mapped[str | None] = mapped_column(String(80), nullable=True)
    decided_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    applied_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)


class ScoringConfig(Base):
    __tablename__ = "scoring_configs"
    __table_args__ = (UniqueConstraint("version", name="uq_scoring_config_version"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    version: Mapped[int] = mapped_column(Integer)
    status: Mapped[ScoringConfigStatus] = mapped_column(
        Enum(ScoringConfigStatus), default=ScoringConfigStatus.draft, index=True
    )
    weights: Mapped[dict[str, float]] = mapped_column(JSON, default=dict)
    assumptions: Mapped[dict[str, float]] = mapped_column(JSON, default=dict)
    change_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    source_recommendation_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    activated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    archived_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class KpiEvent(Base):
    __tablename__ = "kpi_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    event_type: Mapped[str] = mapped_column(String(60), index=True)
    lead_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    user_id: Mapped[str | None] = mapped_column(String(80), nullable=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)


class Integration(Base):
    __tablename__ = "integrations"
    __table_args__ = (UniqueConstraint("name", name="uq_integration_name"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(80))
    type: Mapped[IntegrationType] = mapped_column(Enum(IntegrationType))

    enabled: Mapped[bool] = mapped_column(Boolean, default=False)

    # {"url": "...", "secret": "..."}
    config_json: Mapped[str] = mapped_column(Text, default="{}")

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class OutboxEvent(Base):
    __tablename__ = "outbox_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    event_type: Mapped[str] = mapped_column(String(120), index=True)
    payload_json: Mapped[str] = mapped_column(Text)

    status: Mapped[OutboxStatus] = mapped_column(Enum(OutboxStatus), default=OutboxStatus.pending, index=True)
    attempts: Mapped[int] = mapped_column(Integer, default=0)

    next_attempt_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True, index=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class JobRun(Base):
    """
    Tracks job executions (feedback sweep, dispatch, ...)
    """
    __tablename__ = "job_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    job_name: Mapped[str] = mapped_column(String(80), index=True)

    status: Mapped[JobRunStatus] = mapped_column(Enum(JobRunStatus), default=JobRunStatus.running, index=True)

    started_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    meta_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    summary_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
