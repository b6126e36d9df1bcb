"""Clinical cost summary and period financial figures.

Consumers of the Session Pricer outside the import pipeline:

* ``summarize_clinical_costs`` -- per-staff cost breakdown for a period,
  e.g. "Intake / Show / Adult: 3 sessions @ 600.00 each", plus the staff
  whose rates are missing (priced at 0 and flagged, never raised).
* ``build_financial_summary`` -- headline figures (revenue, costs, profit,
  payroll ratios, averages) for the dashboard.

Usage::

    rates = current_rates_by_staff(store.list_rates())
    summary = summarize_clinical_costs(store.list_sessions(3, 2026), rates)
    for staff_id in summary.missing_rates:
        print("rates missing for", staff_id)
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from .models import (
    ClinicalSession,
    ClinicalStaffRates,
    FinancialSummary,
    FixedOverhead,
    MeetingType,
    RevenueSource,
    ServiceAgeGroup,
    ShowStatus,
    coerce_enum,
)
from .pricing import current_rates_by_staff, price_session, select_rate

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Result containers
# ---------------------------------------------------------------------------

@dataclass
class CostLine:
    """Sessions of one kind for one staff member."""
    meeting_type: MeetingType
    show_status: ShowStatus
    age_group: ServiceAgeGroup
    rate: float
    count: int = 0
    cost: float = 0.0

    @property
    def label(self) -> str:
        return (
            f"{self.meeting_type.value} / {self.show_status.value} / "
            f"{self.age_group.value}: {self.count} sessions @ {self.rate:,.2f} each"
        )


@dataclass
class StaffCostBreakdown:
    staff_id: str
    staff_name: str = ""
    lines: list[CostLine] = field(default_factory=list)
    total_cost: float = 0.0
    total_sessions: int = 0
    total_minutes: int = 0
    show_count: int = 0
    no_show_count: int = 0
    rates_missing: bool = False


@dataclass
class ClinicalCostSummary:
    staff: dict[str, StaffCostBreakdown] = field(default_factory=dict)
    missing_rates: list[str] = field(default_factory=list)

    @property
    def total_cost(self) -> float:
        return sum(b.total_cost for b in self.staff.values())

    @property
    def total_sessions(self) -> int:
        return sum(b.total_sessions for b in self.staff.values())

    @property
    def total_minutes(self) -> int:
        return sum(b.total_minutes for b in self.staff.values())


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _in_period(record: Any, month: Optional[int], year: Optional[int]) -> bool:
    if month is not None and getattr(record, "month", None) != month:
        return False
    if year is not None and getattr(record, "year", None) != year:
        return False
    return True


def _rates_lookup(rates: Any) -> dict[str, ClinicalStaffRates]:
    """Accept either a ready ``{staff_id: rates}`` map or raw rate rows."""
    if rates is None:
        return {}
    if isinstance(rates, Mapping):
        return dict(rates)
    return current_rates_by_staff(rates)


def _ratio(numerator: float, denominator: float) -> float:
    return numerator / denominator if denominator else 0.0


# ---------------------------------------------------------------------------
# Clinical cost breakdown
# ---------------------------------------------------------------------------

def summarize_clinical_costs(
    sessions: Iterable[ClinicalSession],
    rates: Any,
    *,
    month: Optional[int] = None,
    year: Optional[int] = None,
    staff_names: Optional[dict[str, str]] = None,
) -> ClinicalCostSummary:
    """Price every session of the period and break costs down per staff member.

    Args:
        sessions: Canonical sessions (e.g. from ``SessionStore.list_sessions``).
        rates: ``{staff_id: ClinicalStaffRates}`` or an iterable of rate rows
            (the latest effective date per staff member is used).
        month, year: Optional period filter.
        staff_names: Optional ``{staff_id: name}`` for display.
    """
    lookup = _rates_lookup(rates)
    names = staff_names or {}
    summary = ClinicalCostSummary()

    for session in sessions:
        if not _in_period(session, month, year):
            continue

        breakdown = summary.staff.get(session.staff_id)
        if breakdown is None:
            breakdown = StaffCostBreakdown(
                staff_id=session.staff_id,
                staff_name=names.get(session.staff_id, ""),
            )
            summary.staff[session.staff_id] = breakdown

        staff_rates = lookup.get(session.staff_id)
        if staff_rates is None and not breakdown.rates_missing:
            breakdown.rates_missing = True
            summary.missing_rates.append(session.staff_id)
            logger.warning("Rates missing for staff %s -- sessions priced at 0",
                           session.staff_id)

        count = max(int(session.count or 0), 0)
        meeting = coerce_enum(MeetingType, session.meeting_type, MeetingType.FOLLOW_UP)
        show = coerce_enum(ShowStatus, session.show_status, ShowStatus.SHOW)
        age = coerce_enum(ServiceAgeGroup, session.service_age_group, ServiceAgeGroup.ADULT)
        rate = select_rate(staff_rates, show, meeting, age) if staff_rates is not None else 0.0
        cost = price_session(session, staff_rates)

        line = next(
            (ln for ln in breakdown.lines
             if (ln.meeting_type, ln.show_status, ln.age_group, ln.rate) == (meeting, show, age, rate)),
            None,
        )
        if line is None:
            line = CostLine(meeting_type=meeting, show_status=show, age_group=age, rate=rate)
            breakdown.lines.append(line)
        line.count += count
        line.cost += cost

        breakdown.total_cost += cost
        breakdown.total_sessions += count
        breakdown.total_minutes += count * int(session.duration_minutes or 0)
        if show is ShowStatus.NO_SHOW:
            breakdown.no_show_count += count
        else:
            breakdown.show_count += count

    logger.info(
        "Clinical costs: %d staff, %d sessions, total %.2f (%d staff without rates)",
        len(summary.staff), summary.total_sessions, summary.total_cost,
        len(summary.missing_rates),
    )
    return summary


# ---------------------------------------------------------------------------
# Period financial summary
# ---------------------------------------------------------------------------

def build_financial_summary(
    sessions: Iterable[ClinicalSession],
    rates: Any,
    revenue_sources: Iterable[RevenueSource] = (),
    overheads: Iterable[FixedOverhead] = (),
    *,
    admin_costs: float = 0.0,
    patient_count: Optional[int] = None,
    month: Optional[int] = None,
    year: Optional[int] = None,
) -> FinancialSummary:
    """Headline figures for a period.

    Gross profit is revenue minus clinical costs; operating profit is
    revenue minus all expenses.  Without *patient_count*, attended session
    units stand in for patients.  Every division by zero yields 0.
    """
    costs = summarize_clinical_costs(sessions, rates, month=month, year=year)

    revenue = sum(
        src.total for src in revenue_sources if _in_period(src, month, year)
    )
    fixed = sum(
        oh.monthly_cost for oh in overheads if _in_period(oh, month, year)
    )
    clinical = costs.total_cost
    admin = float(admin_costs or 0.0)
    expenses = clinical + admin + fixed

    if patient_count is None:
        patient_count = sum(b.show_count for b in costs.staff.values())

    return FinancialSummary(
        total_revenue=revenue,
        total_clinical_costs=clinical,
        total_admin_costs=admin,
        total_fixed_overheads=fixed,
        total_expenses=expenses,
        gross_profit=revenue - clinical,
        operating_profit=revenue - expenses,
        clinical_payroll_to_revenue_ratio=_ratio(clinical, revenue),
        total_payroll_to_revenue_ratio=_ratio(clinical + admin, revenue),
        average_revenue_per_patient=_ratio(revenue, patient_count),
        average_cost_per_clinical_unit=_ratio(clinical, costs.total_sessions),
    )
