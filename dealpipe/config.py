# dealpipe/config.py
from __future__ import annotations

from dataclasses import dataclass, field

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # --- Runtime ---
    ENV: str = "dev"  # dev|prod
    DEALPIPE_DB_URL: str = "sqlite+aiosqlite:///./dealpipe.db"

    # --- Minimal B2B Auth (API key) ---
    # Send: X-API-Key: <key>
    API_KEY: str | None = None

    # --- Grade breakpoints (score >= value) ---
    GRADE_A_MIN: int = 85
    GRADE_B_MIN: int = 70
    GRADE_C_MIN: int = 50
    GRADE_D_MIN: int = 30

    # --- Routing SLAs (hours) ---
    SLA_HOURS_A: int = 2
    SLA_HOURS_B: int = 24
    SLA_HOURS_C: int = 72

    # --- Closer alerts ---
    QUIET_HOURS_ENABLED: bool = True
    QUIET_HOURS_START: int = 22
    QUIET_HOURS_END: int = 8

    MAJOR_EXCLUSIONS: list[str] = [
        "major fire damage",
        "extreme structural damage",
        "condemned",
        "uninhabitable",
        "total loss",
        "demolition required",
    ]

    # --- Deal blasts ---
    MAX_BLASTS_PER_HOUR: int = 10
    OPT_OUT_KEYWORDS: list[str] = ["stop", "unsubscribe", "opt out", "remove"]

    # --- Underwriting defaults (conservative) ---
    DEFAULT_VACANCY_RATE: float = 0.065
    DEFAULT_MAINTENANCE_RATE: float = 0.065
    DEFAULT_MANAGEMENT_RATE: float = 0.09
    DEFAULT_BASE_INTEREST_RATE: float = 0.07
    DEFAULT_INTEREST_RATE_BUFFER: float = 0.0075

    # --- Buy box optimization ---
    RECOMMENDATION_MIN_SAMPLE_SIZE: int = 20
    RECOMMENDATION_LOOKBACK_DAYS: int = 365

    # --- SMS (Twilio REST) ---
    TWILIO_ACCOUNT_SID: str | None = None
    TWILIO_AUTH_TOKEN: str | None = None
    TWILIO_PHONE_NUMBER: str | None = None
    TWILIO_BASE_URL: str = "https://api.twilio.com/2010-04-01"

    # --- Email relay (any JSON-over-HTTP transactional mail API) ---
    EMAIL_API_URL: str | None = None
    EMAIL_API_KEY: str | None = None
    EMAIL_FROM: str | None = None

    OUTBOUND_HTTP_TIMEOUT_S: int = 20

    # --- Outbox delivery ---
    OUTBOX_MAX_ATTEMPTS: int = 10
    OUTBOX_WEBHOOK_RPS: float = 2.0  # per process, across all sinks
    OUTBOX_BACKOFF_BASE_SECONDS: float = 5.0
    OUTBOX_BACKOFF_CAP_SECONDS: float = 3600.0

    # --- Scheduler tuning ---
    SCHED_FEEDBACK_INTERVAL_MINUTES: int = 1440  # daily
    SCHED_DISPATCH_INTERVAL_MINUTES: int = 5
    SCHED_DISPATCH_BATCH_SIZE: int = 50


settings = Settings()


@dataclass(frozen=True)
class FinancingAssumptions:
    vacancy_rate: float = 0.065
    maintenance_rate: float = 0.065
    management_rate: float = 0.09
    interest_rate_buffer: float = 0.0075
    base_interest_rate: float = 0.07


@dataclass(frozen=True)
class GradeThresholds:
    a: int = 85
    b: int = 70
    c: int = 50
    d: int = 30


@dataclass(frozen=True)
class SlaHours:
    a: int = 2
    b: int = 24
    c: int = 72


@dataclass(frozen=True)
class QuietHours:
    enabled: bool = True
    start: int = 22
    end: int = 8


@dataclass(frozen=True)
class PipelineConfig:
    """
    Everything the engines need that an operator may tune.

    Built once (app startup / scheduler boot) and passed into every call,
    so tests and tenants can run with their own copy.
    """

    grades: GradeThresholds = field(default_factory=GradeThresholds)
    sla: SlaHours = field(default_factory=SlaHours)
    quiet_hours: QuietHours = field(default_factory=QuietHours)
    financing: FinancingAssumptions = field(default_factory=FinancingAssumptions)
    major_exclusions: tuple[str, ...] = (
        "major fire damage",
        "extreme structural damage",
        "condemned",
        "uninhabitable",
        "total loss",
        "demolition required",
    )
    opt_out_keywords: tuple[str, ...] = ("stop", "unsubscribe", "opt out", "remove")
    max_blasts_per_hour: int = 10
    recommendation_min_sample_size: int = 20
    recommendation_lookback_days: int = 365

    @classmethod
    def from_settings(cls, s: Settings) -> "PipelineConfig":
        return cls(
            grades=GradeThresholds(a=s.GRADE_A_MIN, b=s.GRADE_B_MIN, c=s.GRADE_C_MIN, d=s.GRADE_D_MIN),
            sla=SlaHours(a=s.SLA_HOURS_A, b=s.SLA_HOURS_B, c=s.SLA_HOURS_C),
            quiet_hours=QuietHours(
                enabled=s.QUIET_HOURS_ENABLED,
                start=s.QUIET_HOURS_START,
                end=s.QUIET_HOURS_END,
            ),
            financing=FinancingAssumptions(
                vacancy_rate=s.DEFAULT_VACANCY_RATE,
                maintenance_rate=s.DEFAULT_MAINTENANCE_RATE,
                management_rate=s.DEFAULT_MANAGEMENT_RATE,
                interest_rate_buffer=s.DEFAULT_INTEREST_RATE_BUFFER,
                base_interest_rate=s.DEFAULT_BASE_INTEREST_RATE,
            ),
            major_exclusions=tuple(p.lower() for p in s.MAJOR_EXCLUSIONS),
            opt_out_keywords=tuple(k.lower() for k in s.OPT_OUT_KEYWORDS),
            max_blasts_per_hour=s.MAX_BLASTS_PER_HOUR,
            recommendation_min_sample_size=s.RECOMMENDATION_MIN_SAMPLE_SIZE,
            recommendation_lookback_days=s.RECOMMENDATION_LOOKBACK_DAYS,
        )
