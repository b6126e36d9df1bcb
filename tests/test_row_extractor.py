"""Tests for clinic_sessions.row_extractor -- row to session candidate.

Covers:
- Staff name column aliases (resource preferred over creator)
- Clinic code extraction from titles
- Meeting type / show status synonym detection
- Duration fallbacks (column, end - start, default)
- extract_candidate with and without overrides
- extract_rows in DETECT and COMMIT modes
"""

from datetime import datetime, time, timedelta

import pytest

from clinic_sessions.config import ExtractionConfig, SessionImportConfig
from clinic_sessions.models import (
    ClinicType,
    MeetingType,
    ServiceAgeGroup,
    ShowStatus,
    StaffDirectoryEntry,
)
from clinic_sessions.name_matcher import StaffMatcher, build_name_index
from clinic_sessions.row_extractor import (
    ExtractionMode,
    build_candidate,
    detect_meeting_type,
    detect_show_status,
    extract_candidate,
    extract_clinic_type,
    extract_duration,
    extract_rows,
    find_staff_name,
)


# ============================================================================
# Test Data Helpers
# ============================================================================

DIRECTORY = [
    StaffDirectoryEntry(id="s1", display_name="Dr. Dana Cohen"),
    StaffDirectoryEntry(id="s2", display_name='ד"ר יוסי לוי'),
    StaffDirectoryEntry(id="s3", display_name="Michal Levin"),
]


def _make_row(**overrides):
    """A Hebrew-header appointment row with reasonable defaults."""
    row = {
        "שם מטפל": "Dr. Dana Cohen",
        "כותרת": "MH-PRV-1042 פגישה",
        "סוג מפגש": "מעקב",
        "סטטוס": "הגיע",
        "משך": 45,
    }
    row.update(overrides)
    return row


# ============================================================================
# Staff name columns
# ============================================================================

class TestFindStaffName:
    """Test staff-name column resolution."""

    def test_hebrew_resource_column(self):
        assert find_staff_name({"משאב": "Dr. Dana Cohen"}) == "Dr. Dana Cohen"

    def test_resource_preferred_over_creator(self):
        row = {"שם היוצר": "Secretary", "Resource": "Michal Levin"}
        assert find_staff_name(row) == "Michal Levin"

    def test_falls_back_to_creator(self):
        row = {"Resource": None, "Created By": "Michal Levin"}
        assert find_staff_name(row) == "Michal Levin"

    def test_blank_resource_falls_back(self):
        row = {"Staff": "   ", "Creator": "Michal Levin"}
        assert find_staff_name(row) == "Michal Levin"

    def test_header_case_and_spacing_ignored(self):
        assert find_staff_name({"  provider ": "Michal Levin"}) == "Michal Levin"

    def test_value_is_trimmed(self):
        assert find_staff_name({"Doctor": "  Dana Cohen  "}) == "Dana Cohen"

    def test_no_staff_column(self):
        assert find_staff_name({"Subject": "MH-PRV-1"}) == ""


# ============================================================================
# Attribute heuristics
# ============================================================================

class TestExtractClinicType:
    """Test clinic code extraction from the title string."""

    @pytest.mark.parametrize("title,expected", [
        ("MH-PRV-1042 Dana", ClinicType.PRV),
        ("H_SPC_7", ClinicType.SPC),
        ("mh-mcb-1", ClinicType.MCB),
        ("Session M/MHY/22", ClinicType.MHY),
        ("MH-MSY 5", ClinicType.MSY),
        ("MH-MHB-9", ClinicType.MHB),
    ])
    def test_codes(self, title, expected):
        assert extract_clinic_type(title) is expected

    @pytest.mark.parametrize("title,expected", [
        ("פגישה_MH-PRV-12", ClinicType.PRV),
        ("פגישהMH-SPC-3", ClinicType.SPC),
        ("12MH-MHN-7", ClinicType.MHN),
    ])
    def test_code_glued_to_preceding_text(self, title, expected):
        assert extract_clinic_type(title) is expected

    def test_code_inside_latin_word_ignored(self):
        assert extract_clinic_type("OHM-PRV-1") is ClinicType.MCB

    def test_captured_code_mapped_by_containment(self):
        assert extract_clinic_type("MH-MHSX-1") is ClinicType.MHS

    def test_unknown_code_defaults(self):
        assert extract_clinic_type("MH-XYZ-1") is ClinicType.MCB

    def test_no_pattern_defaults(self):
        assert extract_clinic_type("פגישת מעקב") is ClinicType.MCB

    def test_empty_defaults(self):
        assert extract_clinic_type("") is ClinicType.MCB


class TestMeetingAndStatus:
    """Test intake and no-show synonym detection."""

    @pytest.mark.parametrize("label", [
        "אינטייק", "פגישת אינטייק ראשונה", "הערכה ראשונית", "Intake", "INITIAL ASSESSMENT",
    ])
    def test_intake(self, label):
        assert detect_meeting_type(label) is MeetingType.INTAKE

    @pytest.mark.parametrize("label", ["מעקב", "Follow up", "", None])
    def test_follow_up_default(self, label):
        assert detect_meeting_type(label) is MeetingType.FOLLOW_UP

    @pytest.mark.parametrize("label", [
        "המשתתף לא הופיע", "לא הגיע", "בוטל", "No-Show", "no show", "Cancelled",
    ])
    def test_no_show(self, label):
        assert detect_show_status(label) is ShowStatus.NO_SHOW

    @pytest.mark.parametrize("label", ["הגיע", "Completed", "", None])
    def test_show_default(self, label):
        assert detect_show_status(label) is ShowStatus.SHOW


class TestExtractDuration:
    """Test duration resolution order."""

    def test_duration_column(self):
        assert extract_duration({"Duration": 45}) == 45

    def test_duration_text_with_unit(self):
        assert extract_duration({"משך": "50 דק'"}) == 50

    def test_fractional_duration_rounded(self):
        assert extract_duration({"Duration": 45.6}) == 46

    @pytest.mark.parametrize("value,expected", [(44.5, 45), ("44.5", 45), (0.5, 1)])
    def test_half_minutes_round_up(self, value, expected):
        assert extract_duration({"Duration": value}) == expected

    @pytest.mark.parametrize("value,expected", [
        ("1:30", 90),
        ("0:45", 45),
        ("00:50:00", 50),
        (time(0, 45), 45),
        (time(1, 15), 75),
        (timedelta(hours=2), 120),
    ])
    def test_clock_durations(self, value, expected):
        assert extract_duration({"Duration": value}) == expected

    @pytest.mark.parametrize("value", [-30, "-30", "-30 דק'", time(0, 0), "0:00"])
    def test_non_positive_duration_defaults(self, value):
        assert extract_duration({"Duration": value}) == 60

    def test_negative_text_duration_uses_times(self):
        row = {"Duration": "-30", "Start": "09:00", "End": "09:25"}
        assert extract_duration(row) == 25

    def test_zero_duration_uses_times(self):
        row = {
            "Duration": 0,
            "Start": datetime(2026, 3, 2, 9, 0),
            "End": datetime(2026, 3, 2, 9, 40),
        }
        assert extract_duration(row) == 40

    def test_time_strings(self):
        assert extract_duration({"שעת התחלה": "09:00", "שעת סיום": "09:30"}) == 30

    def test_unparseable_duration_defaults(self):
        assert extract_duration({"Duration": "n/a"}) == 60

    def test_unparseable_times_default(self):
        assert extract_duration({"Start": "soon", "End": "09:30"}) == 60

    def test_end_before_start_defaults(self):
        assert extract_duration({"Start": "10:00", "End": "09:00"}) == 60

    def test_missing_everything_defaults(self):
        assert extract_duration({}) == 60

    def test_custom_default(self):
        assert extract_duration({}, default=50) == 50


# ============================================================================
# Single row extraction
# ============================================================================

class TestExtractCandidate:
    """Test one-row extraction."""

    @pytest.fixture(scope="class")
    def index(self):
        return build_name_index(DIRECTORY)

    def test_full_row(self, index):
        c = extract_candidate(_make_row(), index, DIRECTORY, month=3, year=2026)
        assert c.staff_id == "s1"
        assert c.clinic_type is ClinicType.PRV
        assert c.meeting_type is MeetingType.FOLLOW_UP
        assert c.show_status is ShowStatus.SHOW
        assert c.service_age_group is ServiceAgeGroup.ADULT
        assert c.duration_minutes == 45
        assert c.count == 1
        assert (c.month, c.year) == (3, 2026)
        assert c.raw_staff_name == "Dr. Dana Cohen"

    def test_intake_no_show(self, index):
        row = _make_row(**{"סוג מפגש": "אינטייק", "סטטוס": "המשתתף לא הופיע"})
        c = extract_candidate(row, index, DIRECTORY)
        assert c.meeting_type is MeetingType.INTAKE
        assert c.show_status is ShowStatus.NO_SHOW

    def test_missing_staff_name(self, index):
        row = _make_row(**{"שם מטפל": None})
        assert extract_candidate(row, index, DIRECTORY) is None

    def test_unresolved_staff_name(self, index):
        row = _make_row(**{"שם מטפל": "Unknown Person"})
        assert extract_candidate(row, index, DIRECTORY) is None

    def test_override_bypasses_matcher(self, index):
        row = _make_row(**{"שם מטפל": "Unknown Person"})
        c = extract_candidate(row, index, DIRECTORY, {"Unknown Person": "s3"})
        assert c.staff_id == "s3"

    def test_override_wins_over_match(self, index):
        c = extract_candidate(_make_row(), index, DIRECTORY, {"Dr. Dana Cohen": "s2"})
        assert c.staff_id == "s2"

    def test_default_duration_from_config(self, index):
        cfg = SessionImportConfig(extraction=ExtractionConfig(default_duration_minutes=50))
        row = _make_row(**{"משך": None})
        assert extract_candidate(row, index, DIRECTORY, config=cfg).duration_minutes == 50

    def test_build_candidate_sets_source_row(self):
        c = build_candidate(_make_row(), "s1", month=1, year=2026, source_row=7)
        assert c.source_row == 7


# ============================================================================
# Full pass
# ============================================================================

class TestExtractRows:
    """Test the shared DETECT / COMMIT extraction pass."""

    @pytest.fixture(scope="class")
    def rows(self):
        return [
            _make_row(),
            _make_row(**{"סוג מפגש": "אינטייק"}),
            _make_row(**{"שם מטפל": "Unknown Person"}),
            _make_row(**{"שם מטפל": None}),
            _make_row(**{"שם מטפל": "Unknown Person"}),
            _make_row(**{"שם מטפל": "Another Stranger"}),
        ]

    @pytest.fixture(scope="class")
    def matcher(self):
        return StaffMatcher(DIRECTORY)

    def test_detect_collects_distinct_unresolved_names(self, rows, matcher):
        result = extract_rows(rows, matcher, mode=ExtractionMode.DETECT)
        assert result.unresolved_names == ["Unknown Person", "Another Stranger"]
        assert result.candidates == []

    def test_counters(self, rows, matcher):
        result = extract_rows(rows, matcher, mode=ExtractionMode.DETECT)
        assert result.rows_scanned == 6
        assert result.rows_missing_staff == 1
        assert result.rows_unresolved == 3
        assert len(result.warnings) == 2

    def test_commit_builds_candidates_for_resolved_rows(self, rows, matcher):
        result = extract_rows(rows, matcher, mode=ExtractionMode.COMMIT, month=3, year=2026)
        assert [c.source_row for c in result.candidates] == [1, 2]
        assert all(c.staff_id == "s1" for c in result.candidates)
        assert all(c.month == 3 and c.year == 2026 for c in result.candidates)

    def test_commit_with_overrides(self, rows, matcher):
        overrides = {"Unknown Person": "s3", "Another Stranger": "s2"}
        result = extract_rows(rows, matcher, mode=ExtractionMode.COMMIT, overrides=overrides)
        assert result.unresolved_names == []
        assert [c.staff_id for c in result.candidates] == ["s1", "s1", "s3", "s3", "s2"]

    def test_resolved_names(self, rows, matcher):
        result = extract_rows(rows, matcher, mode=ExtractionMode.DETECT)
        assert result.resolved_names == {"Dr. Dana Cohen": "s1"}

    def test_empty_input(self, matcher):
        result = extract_rows([], matcher)
        assert result.rows_scanned == 0
        assert result.candidates == []
        assert result.warnings == []
