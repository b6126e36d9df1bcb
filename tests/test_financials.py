"""Tests for clinic_sessions.financials -- cost breakdown and period summary."""

import logging

import pytest

from clinic_sessions.financials import build_financial_summary, summarize_clinical_costs
from clinic_sessions.models import (
    ClinicalSession,
    ClinicalStaffRates,
    FixedOverhead,
    MeetingType,
    RevenueSource,
    ShowStatus,
)


# ============================================================================
# Test Data Helpers
# ============================================================================

def _sessions():
    return [
        ClinicalSession(staff_id="s1", meeting_type=MeetingType.INTAKE, count=2,
                        month=3, year=2026),
        ClinicalSession(staff_id="s1", show_status=ShowStatus.NO_SHOW, count=1,
                        month=3, year=2026),
        ClinicalSession(staff_id="s2", count=3, month=3, year=2026),
    ]


def _rates():
    return {
        "s1": ClinicalStaffRates(
            staff_id="s1", adult_intake_rate=600, adult_no_show_follow_up_rate=100,
        ),
    }


# ============================================================================
# Clinical cost breakdown
# ============================================================================

class TestSummarizeClinicalCosts:
    """Per-staff breakdown and missing-rate reporting."""

    def test_totals(self):
        summary = summarize_clinical_costs(_sessions(), _rates())
        assert summary.total_cost == 1300
        assert summary.total_sessions == 6
        assert summary.total_minutes == 360

    def test_missing_rates_reported_not_raised(self):
        summary = summarize_clinical_costs(_sessions(), _rates())
        assert summary.missing_rates == ["s2"]
        assert summary.staff["s2"].rates_missing
        assert summary.staff["s2"].total_cost == 0

    def test_missing_rates_logged(self, caplog):
        with caplog.at_level(logging.WARNING, logger="clinic_sessions.financials"):
            summarize_clinical_costs(_sessions(), _rates())
        assert "s2" in caplog.text

    def test_show_and_no_show_counts(self):
        breakdown = summarize_clinical_costs(_sessions(), _rates()).staff["s1"]
        assert breakdown.show_count == 2
        assert breakdown.no_show_count == 1

    def test_line_labels(self):
        breakdown = summarize_clinical_costs(_sessions(), _rates()).staff["s1"]
        labels = [line.label for line in breakdown.lines]
        assert "Intake / Show / Adult: 2 sessions @ 600.00 each" in labels
        assert "FollowUp / NoShow / Adult: 1 sessions @ 100.00 each" in labels

    def test_staff_names(self):
        summary = summarize_clinical_costs(_sessions(), _rates(), staff_names={"s1": "Dana"})
        assert summary.staff["s1"].staff_name == "Dana"

    def test_period_filter(self):
        sessions = _sessions() + [ClinicalSession(staff_id="s1", count=9, month=4, year=2026)]
        summary = summarize_clinical_costs(sessions, _rates(), month=3, year=2026)
        assert summary.total_sessions == 6

    def test_rate_rows_accepted(self):
        rows = list(_rates().values())
        assert summarize_clinical_costs(_sessions(), rows).total_cost == 1300

    def test_no_rates_at_all(self):
        summary = summarize_clinical_costs(_sessions(), None)
        assert summary.total_cost == 0
        assert summary.missing_rates == ["s1", "s2"]


# ============================================================================
# Period financial summary
# ============================================================================

class TestBuildFinancialSummary:
    """Headline figures."""

    @pytest.fixture(scope="class")
    def summary(self):
        return build_financial_summary(
            _sessions(),
            _rates(),
            revenue_sources=[
                RevenueSource(name="Insurer", quantity=10, rate_per_unit=500, month=3, year=2026),
                RevenueSource(name="Other month", quantity=1, rate_per_unit=999, month=4, year=2026),
            ],
            overheads=[FixedOverhead(name="Rent", monthly_cost=1000, month=3, year=2026)],
            admin_costs=400,
            month=3,
            year=2026,
        )

    def test_revenue_and_costs(self, summary):
        assert summary.total_revenue == 5000
        assert summary.total_clinical_costs == 1300
        assert summary.total_admin_costs == 400
        assert summary.total_fixed_overheads == 1000
        assert summary.total_expenses == 2700

    def test_profits(self, summary):
        assert summary.gross_profit == 3700
        assert summary.operating_profit == 2300

    def test_ratios(self, summary):
        assert summary.clinical_payroll_to_revenue_ratio == pytest.approx(0.26)
        assert summary.total_payroll_to_revenue_ratio == pytest.approx(0.34)

    def test_averages(self, summary):
        # 5 attended units stand in for patients
        assert summary.average_revenue_per_patient == pytest.approx(1000)
        assert summary.average_cost_per_clinical_unit == pytest.approx(1300 / 6)

    def test_explicit_patient_count(self):
        summary = build_financial_summary(
            _sessions(), _rates(),
            [RevenueSource(name="Insurer", quantity=1, rate_per_unit=800)],
            patient_count=4,
        )
        assert summary.average_revenue_per_patient == 200

    def test_zero_revenue_ratios_are_zero(self):
        summary = build_financial_summary(_sessions(), _rates())
        assert summary.total_revenue == 0
        assert summary.clinical_payroll_to_revenue_ratio == 0
        assert summary.average_revenue_per_patient == 0
        assert summary.operating_profit == -1300

    def test_empty_period(self):
        summary = build_financial_summary([], {})
        assert summary.average_cost_per_clinical_unit == 0
        assert summary.total_expenses == 0
