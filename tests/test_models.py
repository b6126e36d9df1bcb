"""Tests for clinic_sessions.models -- enums, records and row mapping."""

from datetime import date, datetime

import pytest

from clinic_sessions.models import (
    ClinicalSession,
    ClinicalStaffRates,
    ClinicType,
    MeetingType,
    RevenueSource,
    ServiceAgeGroup,
    SessionCandidate,
    ShowStatus,
    StaffMember,
    StaffRole,
    coerce_enum,
    parse_iso_date,
)


# ============================================================================
# Enums
# ============================================================================

class TestEnums:
    """Test enum values and coercion."""

    def test_clinic_codes_in_canonical_order(self):
        assert [c.value for c in ClinicType] == [
            "MCB", "PRV", "MHS", "MHN", "MHY", "MSY", "SPC", "MHB",
        ]

    def test_default_clinic(self):
        assert ClinicType.default() is ClinicType.MCB

    def test_string_values(self):
        assert MeetingType.FOLLOW_UP.value == "FollowUp"
        assert ShowStatus.NO_SHOW.value == "NoShow"
        assert StaffRole.CASE_MANAGER.value == "CaseManager"

    @pytest.mark.parametrize("value,expected", [
        (ShowStatus.NO_SHOW, ShowStatus.NO_SHOW),
        ("NoShow", ShowStatus.NO_SHOW),
        ("no_show", ShowStatus.NO_SHOW),
        ("Show", ShowStatus.SHOW),
    ])
    def test_coerce(self, value, expected):
        assert coerce_enum(ShowStatus, value) is expected

    @pytest.mark.parametrize("value", [None, "", "bogus"])
    def test_coerce_default(self, value):
        assert coerce_enum(ShowStatus, value, ShowStatus.SHOW) is ShowStatus.SHOW
        assert coerce_enum(ShowStatus, value) is None


# ============================================================================
# Sessions
# ============================================================================

class TestSessionRecords:
    """Test candidates, canonical sessions and their row mapping."""

    def test_candidate_defaults(self):
        c = SessionCandidate(staff_id="s1")
        assert c.count == 1
        assert c.duration_minutes == 60
        assert c.service_age_group is ServiceAgeGroup.ADULT
        assert c.clinic_type is ClinicType.MCB

    def test_aggregation_key_ignores_period(self):
        a = SessionCandidate(staff_id="s1", month=3, year=2026)
        b = SessionCandidate(staff_id="s1", month=4, year=2025)
        assert a.aggregation_key == b.aggregation_key

    def test_aggregation_key_treats_missing_age_as_adult(self):
        a = SessionCandidate(staff_id="s1", service_age_group=None)
        b = SessionCandidate(staff_id="s1")
        assert a.aggregation_key == b.aggregation_key

    def test_from_candidate(self):
        c = SessionCandidate(staff_id="s1", meeting_type=MeetingType.INTAKE,
                             month=3, year=2026, raw_staff_name="Dana")
        s = ClinicalSession.from_candidate(c, count=4)
        assert s.count == 4
        assert s.meeting_type is MeetingType.INTAKE
        assert (s.month, s.year) == (3, 2026)
        assert s.id is None

    def test_to_dict_uses_string_values(self):
        d = ClinicalSession(staff_id="s1", show_status=ShowStatus.NO_SHOW).to_dict()
        assert d["show_status"] == "NoShow"
        assert d["clinic_type"] == "MCB"
        assert d["service_age_group"] == "Adult"

    def test_candidate_to_dict_keeps_review_fields(self):
        d = SessionCandidate(staff_id="s1", raw_staff_name="Dana", source_row=4).to_dict()
        assert d["raw_staff_name"] == "Dana"
        assert d["source_row"] == 4
        assert d["meeting_type"] == "FollowUp"

    def test_from_row_reads_duration_column(self):
        s = ClinicalSession.from_row({
            "id": "x1", "staff_id": "s1", "clinic_type": "SPC",
            "meeting_type": "Intake", "show_status": "Show",
            "service_age_group": "Child", "count": 3, "duration": 45,
            "month": 3, "year": 2026, "import_id": "ignored",
        })
        assert s.id == "x1"
        assert s.clinic_type is ClinicType.SPC
        assert s.service_age_group is ServiceAgeGroup.CHILD
        assert s.duration_minutes == 45
        assert s.count == 3

    def test_from_row_defaults(self):
        s = ClinicalSession.from_row({"staff_id": "s1"})
        assert s.id is None
        assert s.meeting_type is MeetingType.FOLLOW_UP
        assert s.duration_minutes == 60


# ============================================================================
# Rates, staff, revenue
# ============================================================================

class TestOtherRecords:

    def test_rates_from_row(self):
        rates = ClinicalStaffRates.from_row({
            "id": "r1", "staff_id": "s1", "adult_intake_rate": "600",
            "child_intake_rate": None, "effective_date": "2026-01-01",
            "created_at": "2026-01-01T00:00:00+00:00",
        })
        assert rates.adult_intake_rate == 600.0
        assert rates.child_intake_rate is None
        assert rates.effective_date == date(2026, 1, 1)

    def test_staff_directory_entry(self):
        entry = StaffMember(id="s1", name="Dana Cohen").to_directory_entry()
        assert (entry.id, entry.display_name) == ("s1", "Dana Cohen")

    def test_revenue_total(self):
        assert RevenueSource(name="x", quantity=3, rate_per_unit=250).total == 750

    @pytest.mark.parametrize("value,expected", [
        (date(2026, 3, 1), date(2026, 3, 1)),
        (datetime(2026, 3, 1, 10, 30), date(2026, 3, 1)),
        ("2026-03-01", date(2026, 3, 1)),
        ("2026-03-01T10:00:00Z", date(2026, 3, 1)),
        ("", None),
        (None, None),
        ("not a date", None),
    ])
    def test_parse_iso_date(self, value, expected):
        assert parse_iso_date(value) == expected
