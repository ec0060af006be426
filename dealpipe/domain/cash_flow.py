# dealpipe/domain/cash_flow.py
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

from ..config import FinancingAssumptions
from .errors import ValidationError

MISSING_INCOME_ERROR = "Missing required input: estimated_rent or noi"
INVALID_AMORTIZATION_ERROR = "Invalid input: amortization must be a positive number of years"
INVALID_EXPENSE_RATIO_ERROR = "Invalid input: vacancy, maintenance and management rates must sum below 100%"


@dataclass(frozen=True)
class CashFlowInputs:
    purchase_price: float
    rehab_cost: float = 0.0
    estimated_rent: float | None = None  # monthly
    noi: float | None = None  # annual, alternative to rent
    taxes: float = 0.0  # annual
    insurance: float = 0.0  # annual
    # absolute monthly dollars; None -> use the assumption rate
    vacancy_reserve: float | None = None
    maintenance_reserve: float | None = None
    property_management: float | None = None
    # fractions of gross rent; replace the assumption rates when no dollar reserve is set
    vacancy_rate: float | None = None
    maintenance_rate: float | None = None
    management_rate: float | None = None
    interest_rate: float | None = None
    loan_type: str = "DSCR"
    ltv: float = 0.75
    amortization: int = 30
    required_dscr: float = 1.25


@dataclass(frozen=True)
class CashFlowResult:
    monthly_cash_flow: float | None
    annual_cash_flow: float | None
    dscr: float | None
    cash_flow_pass: bool
    dscr_pass: bool
    required_dscr: float
    assumptions_used: list[str] = field(default_factory=list)
    breakdown: dict[str, Any] = field(default_factory=dict)
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _monthly_mortgage_payment(loan_amount: float, annual_rate: float = 0.07, years: int = 30) -> float:
    """
    Standard amortization payment.
    """
    if loan_amount <= 0:
        return 0.0
    r = annual_rate / 12.0
    n = years * 12
    if r <= 0:
        return loan_amount / n
    return loan_amount * (r * (1 + r) ** n) / ((1 + r) ** n - 1)


def _r2(x: float) -> float:
    return round(x, 2)


def _error_result(inputs: CashFlowInputs, error: str) -> CashFlowResult:
    return CashFlowResult(
        monthly_cash_flow=None,
        annual_cash_flow=None,
        dscr=None,
        cash_flow_pass=False,
        dscr_pass=False,
        required_dscr=inputs.required_dscr,
        error=error,
    )


def calculate_cash_flow(inputs: CashFlowInputs, assumptions: FinancingAssumptions | None = None) -> CashFlowResult:
    """
    Monthly cash flow and DSCR for a hold deal, conservative by default
    (rate buffer on top of the quoted rate, percentage reserves on gross).

    Never raises for missing income or unusable loan terms; returns a result
    with `error` set instead.
    """
    a = assumptions or FinancingAssumptions()
    vacancy_rate = inputs.vacancy_rate if inputs.vacancy_rate is not None else a.vacancy_rate
    maintenance_rate = inputs.maintenance_rate if inputs.maintenance_rate is not None else a.maintenance_rate
    management_rate = inputs.management_rate if inputs.management_rate is not None else a.management_rate

    if inputs.amortization <= 0:
        return _error_result(inputs, INVALID_AMORTIZATION_ERROR)

    total = inputs.purchase_price + (inputs.rehab_cost or 0.0)
    loan = total * inputs.ltv
    down = total - loan

    quoted = inputs.interest_rate if inputs.interest_rate is not None else a.base_interest_rate
    rate = quoted + a.interest_rate_buffer
    payment = _monthly_mortgage_payment(loan, rate, inputs.amortization)

    if inputs.noi is not None:
        expense_ratio = vacancy_rate + management_rate + maintenance_rate
        if expense_ratio >= 1.0:
            return _error_result(inputs, INVALID_EXPENSE_RATIO_ERROR)
        gross = (inputs.noi / 12.0) / (1.0 - expense_ratio)
    elif inputs.estimated_rent:
        gross = float(inputs.estimated_rent)
    else:
        return _error_result(inputs, MISSING_INCOME_ERROR)

    vacancy = inputs.vacancy_reserve if inputs.vacancy_reserve is not None else gross * vacancy_rate
    maintenance = (
        inputs.maintenance_reserve if inputs.maintenance_reserve is not None else gross * maintenance_rate
    )
    management = (
        inputs.property_management if inputs.property_management is not None else gross * management_rate
    )
    monthly_taxes = (inputs.taxes or 0.0) / 12.0
    monthly_insurance = (inputs.insurance or 0.0) / 12.0

    monthly_noi = (gross - vacancy) - (maintenance + management + monthly_taxes + monthly_insurance)
    monthly_cf = monthly_noi - payment
    annual_cf = monthly_cf * 12.0

    annual_noi = monthly_noi * 12.0
    annual_debt = payment * 12.0
    dscr = annual_noi / annual_debt if annual_debt > 0 else None

    # pass flags are judged on what we publish, so callers can re-check them
    monthly_cf_r = _r2(monthly_cf)
    dscr_r = _r2(dscr) if dscr is not None else None

    assumptions_used = [
        f"Purchase Price: ${inputs.purchase_price:,.0f}",
        f"Rehab Cost: ${inputs.rehab_cost:,.0f}" if inputs.rehab_cost and inputs.rehab_cost > 0 else None,
        f"Total Acquisition: ${total:,.0f}",
        f"Loan Amount ({inputs.ltv * 100:.0f}% LTV): ${loan:,.0f}",
        f"Down Payment: ${down:,.0f}",
        f"Interest Rate: {rate * 100:.2f}% (base {quoted * 100:.2f}% + {a.interest_rate_buffer * 100:.2f}% buffer)",
        f"Loan Type: {inputs.loan_type}",
        f"Amortization: {inputs.amortization} years",
        f"Monthly Payment: ${payment:,.2f}",
        f"Gross Monthly Income: ${gross:,.2f}",
        f"Vacancy Reserve ({vacancy_rate * 100:.1f}%): ${vacancy:,.2f}",
        f"Maintenance Reserve ({maintenance_rate * 100:.1f}%): ${maintenance:,.2f}",
        f"Property Management ({management_rate * 100:.1f}%): ${management:,.2f}",
        f"Monthly Taxes: ${monthly_taxes:,.2f}",
        f"Monthly Insurance: ${monthly_insurance:,.2f}",
        f"Monthly NOI: ${monthly_noi:,.2f}",
        f"Monthly Cash Flow: ${monthly_cf:,.2f}",
        f"Annual Cash Flow: ${annual_cf:,.2f}",
        f"DSCR: {dscr_r:.2f} (Required: {inputs.required_dscr:.2f})"
        if dscr_r is not None
        else f"DSCR: N/A (Required: {inputs.required_dscr:.2f})",
    ]

    return CashFlowResult(
        monthly_cash_flow=monthly_cf_r,
        annual_cash_flow=_r2(annual_cf),
        dscr=dscr_r,
        cash_flow_pass=monthly_cf_r > 0,
        dscr_pass=dscr_r is not None and dscr_r >= inputs.required_dscr,
        required_dscr=inputs.required_dscr,
        assumptions_used=[s for s in assumptions_used if s],
        breakdown={
            "purchase_price": inputs.purchase_price,
            "rehab_cost": inputs.rehab_cost,
            "total_acquisition_cost": _r2(total),
            "loan_amount": _r2(loan),
            "down_payment": _r2(down),
            "ltv": inputs.ltv,
            "interest_rate": rate,
            "loan_type": inputs.loan_type,
            "amortization": inputs.amortization,
            "monthly_payment": _r2(payment),
            "gross_monthly_income": _r2(gross),
            "vacancy_reserve": _r2(vacancy),
            "maintenance_reserve": _r2(maintenance),
            "property_management": _r2(management),
            "monthly_taxes": _r2(monthly_taxes),
            "monthly_insurance": _r2(monthly_insurance),
            "monthly_noi": _r2(monthly_noi),
            "annual_noi": _r2(annual_noi),
            "annual_debt_service": _r2(annual_debt),
        },
    )


def cash_flow_inputs_from_lead(lead: Any, buy_box: Any | None = None) -> CashFlowInputs:
    cfg: dict[str, Any] = (getattr(buy_box, "cash_flow_config", None) or {}) if buy_box is not None else {}

    def _cfg(key: str, default: Any) -> Any:
        v = cfg.get(key)
        return default if v is None else v

    return CashFlowInputs(
        purchase_price=float(lead.asking_price or 0.0),
        rehab_cost=float(lead.estimated_rehab_cost or 0.0),
        estimated_rent=lead.estimated_rent,
        noi=lead.noi,
        taxes=float(lead.annual_taxes or 0.0),
        insurance=float(lead.annual_insurance or 0.0),
        vacancy_reserve=cfg.get("vacancy_reserve"),
        maintenance_reserve=cfg.get("maintenance_reserve"),
        property_management=cfg.get("property_management"),
        vacancy_rate=cfg.get("vacancy_rate"),
        maintenance_rate=cfg.get("maintenance_rate"),
        management_rate=cfg.get("management_rate"),
        interest_rate=cfg.get("interest_rate"),
        loan_type=_cfg("loan_type", "DSCR"),
        ltv=float(_cfg("ltv", 0.75)),
        amortization=int(_cfg("amortization", 30)),
        required_dscr=float(_cfg("required_dscr", 1.25)),
    )


_RATE_KEYS = ("vacancy_rate", "maintenance_rate", "management_rate")
_DOLLAR_KEYS = ("vacancy_reserve", "maintenance_reserve", "property_management")


def _number(cfg: dict[str, Any], key: str) -> float | None:
    v = cfg.get(key)
    if v is None:
        return None
    if isinstance(v, bool) or not isinstance(v, (int, float)):
        raise ValidationError(f"cash_flow_config.{key} must be a number")
    return float(v)


def validate_cash_flow_config(cfg: dict[str, Any] | None) -> None:
    """Reject buy-box financing settings the calculator cannot use."""
    cfg = cfg or {}
    amortization = _number(cfg, "amortization")
    if amortization is not None and (amortization <= 0 or amortization != int(amortization)):
        raise ValidationError("cash_flow_config.amortization must be a positive whole number of years")
    ltv = _number(cfg, "ltv")
    if ltv is not None and not 0.0 <= ltv <= 1.0:
        raise ValidationError("cash_flow_config.ltv must be between 0 and 1")
    dscr = _number(cfg, "required_dscr")
    if dscr is not None and dscr <= 0:
        raise ValidationError("cash_flow_config.required_dscr must be positive")
    rate = _number(cfg, "interest_rate")
    if rate is not None and not 0.0 <= rate < 1.0:
        raise ValidationError("cash_flow_config.interest_rate must be a fraction between 0 and 1")

    total = 0.0
    for key in _RATE_KEYS:
        v = _number(cfg, key)
        if v is None:
            continue
        if not 0.0 <= v < 1.0:
            raise ValidationError(f"cash_flow_config.{key} must be a fraction between 0 and 1")
        total += v
    if total >= 1.0:
        raise ValidationError("cash_flow_config reserve rates must sum below 1")

    for key in _DOLLAR_KEYS:
        v = _number(cfg, key)
        if v is not None and v < 0:
            raise ValidationError(f"cash_flow_config.{key} must not be negative")
