"""Rule-based SBA 7(a) eligibility scoring — NO LLM calls, deterministic.

Scores run 0..100; `chance` buckets them into high / medium / low. Hard
disqualifiers (citizenship, credit floor) short-circuit to a zero score.
"""

from dataclasses import dataclass, field
from typing import List, Optional

MIN_CREDIT_SCORE = 600
MIN_EQUITY_INJECTION = 0.10
SBA_RATE = 0.105           # annual, used to estimate debt service
SBA_TERM_YEARS = 10

HIGH_THRESHOLD = 70
MEDIUM_THRESHOLD = 45


@dataclass
class EligibilityResult:
    score: int
    chance: str                          # high | medium | low
    reasons: List[str] = field(default_factory=list)

    @property
    def eligible(self) -> bool:
        return self.score > 0

    def as_dict(self) -> dict:
        return {"score": self.score, "chance": self.chance, "reasons": list(self.reasons)}


def annual_debt_service(principal: float, rate: float = SBA_RATE, years: int = SBA_TERM_YEARS) -> float:
    """Fully amortizing annual payment on `principal`."""
    if principal <= 0:
        return 0.0
    monthly_rate = rate / 12
    n = years * 12
    payment = principal * monthly_rate / (1 - (1 + monthly_rate) ** -n)
    return payment * 12


def _chance(score: int) -> str:
    if score >= HIGH_THRESHOLD:
        return "high"
    if score >= MEDIUM_THRESHOLD:
        return "medium"
    return "low"


def _disqualified(credit_score: float, is_us_citizen: bool) -> Optional[EligibilityResult]:
    reasons = []
    if not is_us_citizen:
        reasons.append("SBA loans require the applicant to be a U.S. citizen or lawful permanent resident")
    if credit_score < MIN_CREDIT_SCORE:
        reasons.append(f"Credit score {int(credit_score)} is below the {MIN_CREDIT_SCORE} minimum most SBA lenders accept")
    if reasons:
        return EligibilityResult(score=0, chance="low", reasons=reasons)
    return None


def _credit_points(credit_score: float, reasons: List[str]) -> int:
    if credit_score >= 720:
        reasons.append(f"Strong credit score ({int(credit_score)})")
        return 25
    if credit_score >= 680:
        reasons.append(f"Good credit score ({int(credit_score)})")
        return 18
    reasons.append(f"Credit score ({int(credit_score)}) meets the minimum but may limit lender options")
    return 8


def _years_points(years: float, reasons: List[str]) -> int:
    if years >= 5:
        reasons.append(f"Established business ({years:g} years in operation)")
        return 15
    if years >= 2:
        reasons.append(f"Business has {years:g} years of operating history")
        return 10
    reasons.append("Less than 2 years of operating history increases lender scrutiny")
    return 3


def _dscr_points(dscr: float, reasons: List[str]) -> int:
    if dscr >= 1.5:
        reasons.append(f"Excellent debt service coverage ({dscr:.2f}x)")
        return 40
    if dscr >= 1.25:
        reasons.append(f"Debt service coverage of {dscr:.2f}x meets the SBA 1.25x guideline")
        return 30
    if dscr >= 1.0:
        reasons.append(f"Debt service coverage of {dscr:.2f}x is below the 1.25x guideline")
        return 12
    reasons.append(f"Cash flow does not cover the projected debt service ({dscr:.2f}x)")
    return 0


def score_buyer(purchase_price: float, available_cash: float, business_cash_flow: float,
                credit_score: float, is_us_citizen: bool, business_years_running: float,
                industry_experience: Optional[str] = None) -> EligibilityResult:
    """Acquisition loan: equity injection, DSCR on the financed amount, credit, history, experience."""
    disqualified = _disqualified(credit_score, is_us_citizen)
    if disqualified:
        return disqualified

    reasons: List[str] = []
    score = 0

    equity = available_cash / purchase_price if purchase_price > 0 else 0.0
    if equity >= MIN_EQUITY_INJECTION:
        reasons.append(f"Equity injection of {equity:.0%} meets the {MIN_EQUITY_INJECTION:.0%} minimum")
        score += 10
    else:
        reasons.append(f"Equity injection of {equity:.0%} is below the {MIN_EQUITY_INJECTION:.0%} minimum")

    financed = max(purchase_price - available_cash, 0.0)
    debt_service = annual_debt_service(financed)
    dscr = business_cash_flow / debt_service if debt_service else float("inf")
    score += _dscr_points(min(dscr, 99.0), reasons)

    score += _credit_points(credit_score, reasons)
    score += _years_points(business_years_running, reasons)

    if industry_experience and industry_experience.strip().lower() not in ("no", "none", "0", "false"):
        reasons.append("Relevant industry experience")
        score += 10
    else:
        reasons.append("No stated industry experience; lenders may ask for a management plan")

    score = max(0, min(100, score))
    return EligibilityResult(score=score, chance=_chance(score), reasons=reasons)


def score_owner(monthly_revenue: float, monthly_expenses: float, existing_debt_payment: float,
                requested_loan_amount: float, credit_score: float, is_us_citizen: bool,
                business_years_running: float) -> EligibilityResult:
    """Existing business: DSCR of net operating income over existing plus new debt, credit, history."""
    disqualified = _disqualified(credit_score, is_us_citizen)
    if disqualified:
        return disqualified

    reasons: List[str] = []
    score = 0

    net_operating_income = (monthly_revenue - monthly_expenses) * 12
    debt_service = existing_debt_payment * 12 + annual_debt_service(requested_loan_amount)
    dscr = net_operating_income / debt_service if debt_service else float("inf")
    score += _dscr_points(min(dscr, 99.0), reasons)

    score += _credit_points(credit_score, reasons)
    score += _years_points(business_years_running, reasons)

    if monthly_revenue > 0 and requested_loan_amount <= monthly_revenue * 12:
        reasons.append("Requested amount is within one year of revenue")
        score += 20
    else:
        reasons.append("Requested amount exceeds one year of revenue")

    score = max(0, min(100, score))
    return EligibilityResult(score=score, chance=_chance(score), reasons=reasons)
