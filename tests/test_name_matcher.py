"""Tests for clinic_sessions.name_matcher -- staff name resolution.

Covers:
- Name normalization (quotes, Hebrew geresh/gershayim, punctuation)
- Honorific detection and stripping
- Variation index construction
- Each match strategy, in priority order
- StaffMatcher overrides and diagnostics
"""

import pytest

from clinic_sessions.config import MatchingConfig
from clinic_sessions.models import StaffDirectoryEntry, StaffMember
from clinic_sessions.name_matcher import (
    MATCH_STRATEGIES,
    MatchRule,
    StaffMatcher,
    build_name_index,
    has_honorific,
    match_staff_name,
    normalize_name,
    resolve_staff_id,
    strip_honorific,
)


# ============================================================================
# Test Data Helpers
# ============================================================================

DIRECTORY = [
    StaffDirectoryEntry(id="s1", display_name="Dr. Dana Cohen"),
    StaffDirectoryEntry(id="s2", display_name='ד"ר יוסי לוי'),
    StaffDirectoryEntry(id="s3", display_name="Michal Levin"),
]


@pytest.fixture(scope="module")
def matcher():
    return StaffMatcher(DIRECTORY)


# ============================================================================
# Name Normalization
# ============================================================================

class TestNormalizeName:
    """Test name normalization."""

    def test_lowercase_and_trim(self):
        assert normalize_name("  Dr. Dana   Cohen ") == "dr dana cohen"

    def test_hebrew_double_quote_removed(self):
        assert normalize_name('ד"ר יוסי לוי') == "דר יוסי לוי"

    def test_hebrew_gershayim_removed(self):
        assert normalize_name("ד״ר יוסי לוי") == "דר יוסי לוי"

    def test_hebrew_geresh_removed(self):
        assert normalize_name("ד'ר יוסי") == "דר יוסי"

    def test_curly_quotes_removed(self):
        assert normalize_name("“Dana” O’Brien") == "dana obrien"

    def test_punctuation_removed(self):
        assert normalize_name("Cohen, Dana (Clinic B)") == "cohen dana clinic b"

    def test_empty(self):
        assert normalize_name("") == ""

    def test_whitespace_only(self):
        assert normalize_name("   \t ") == ""

    def test_none(self):
        assert normalize_name(None) == ""

    @pytest.mark.parametrize("raw", [
        "  Dr. Dana   Cohen ",
        'ד"ר יוסי לוי',
        "Cohen, Dana (Clinic B)",
        "MIXED case ד״ר Name!!",
        "",
        "   ",
    ])
    def test_idempotent(self, raw):
        once = normalize_name(raw)
        assert normalize_name(once) == once


class TestHonorifics:
    """Test honorific detection and stripping."""

    @pytest.mark.parametrize("name", [
        "Dr. Dana Cohen",
        "dr dana cohen",
        "DR Dana",
        'ד"ר יוסי לוי',
        "ד׳ר יוסי",
        "דר יוסי",
        "דוקטור יוסי לוי",
    ])
    def test_recognized(self, name):
        assert has_honorific(name)

    @pytest.mark.parametrize("name", ["Drake Smith", "דרור כהן", "Dana Cohen", ""])
    def test_not_recognized(self, name):
        assert not has_honorific(name)

    def test_strip_english(self):
        assert strip_honorific("Dr. Dana Cohen") == "dana cohen"

    def test_strip_hebrew(self):
        assert strip_honorific('ד"ר יוסי לוי') == "יוסי לוי"

    def test_strip_leaves_untitled_name(self):
        assert strip_honorific("Drake Smith") == "drake smith"


# ============================================================================
# Variation Index
# ============================================================================

class TestBuildNameIndex:
    """Test the name-variation index."""

    def test_titled_entry_variations(self):
        index = build_name_index([StaffDirectoryEntry("s1", "Dr. Dana Cohen")])
        assert index == {
            "dr dana cohen": "s1",
            "dana cohen": "s1",
            "דר dana cohen": "s1",
            "dana": "s1",
            "cohen": "s1",
        }

    def test_hebrew_title_gets_english_equivalent(self):
        index = build_name_index([StaffDirectoryEntry("s2", 'ד"ר יוסי לוי')])
        assert index["dr יוסי לוי"] == "s2"
        assert index["יוסי לוי"] == "s2"

    def test_untitled_entry_has_no_cross_variation(self):
        index = build_name_index([StaffDirectoryEntry("s3", "Michal Levin")])
        assert set(index) == {"michal levin", "michal", "levin"}

    def test_single_token_name(self):
        index = build_name_index([StaffDirectoryEntry("s4", "Madonna")])
        assert index == {"madonna": "s4"}

    def test_short_tokens_not_registered(self):
        index = build_name_index([StaffDirectoryEntry("s5", "A B")])
        assert "a" not in index
        assert "b" not in index
        assert index["a b"] == "s5"

    def test_later_entry_wins_on_collision(self):
        index = build_name_index([
            StaffDirectoryEntry("s1", "Dana Cohen"),
            StaffDirectoryEntry("s9", "Dana Levi"),
        ])
        assert index["dana"] == "s9"
        assert index["cohen"] == "s1"

    def test_full_name_not_overwritten_by_later_token(self):
        index = build_name_index([
            StaffDirectoryEntry("s1", "Cohen"),
            StaffDirectoryEntry("s2", "Dana Cohen"),
        ])
        assert index["cohen"] == "s1"
        assert index["dana cohen"] == "s2"

    def test_full_name_not_overwritten_by_earlier_token(self):
        index = build_name_index([
            StaffDirectoryEntry("s2", "Dana Cohen"),
            StaffDirectoryEntry("s1", "Cohen"),
        ])
        assert index["cohen"] == "s1"
        assert index["dana"] == "s2"

    def test_accepts_staff_members(self):
        index = build_name_index([StaffMember(id="s7", name="Noa Bar")])
        assert index["noa bar"] == "s7"

    def test_blank_names_skipped(self):
        assert build_name_index([StaffDirectoryEntry("s8", "  ")]) == {}


# ============================================================================
# Match Strategies
# ============================================================================

class TestMatchStrategies:
    """Each strategy fires for the kind of input it is meant for."""

    def test_strategy_order(self):
        assert [rule for rule, _ in MATCH_STRATEGIES] == [
            MatchRule.EXACT,
            MatchRule.HONORIFIC_STRIPPED,
            MatchRule.SUBSTRING,
            MatchRule.WORD_PARTIAL,
            MatchRule.TRANSLITERATION,
        ]

    def test_exact(self, matcher):
        result = matcher.match("Dr. Dana Cohen")
        assert result.staff_id == "s1"
        assert result.rule is MatchRule.EXACT

    def test_exact_cross_language_honorific(self, matcher):
        result = matcher.match("Dr יוסי לוי")
        assert result.staff_id == "s2"
        assert result.rule is MatchRule.EXACT

    def test_exact_without_title(self, matcher):
        assert matcher.match("dana cohen").rule is MatchRule.EXACT

    def test_honorific_stripped(self, matcher):
        result = matcher.match("דוקטור Michal Levin")
        assert result.staff_id == "s3"
        assert result.rule is MatchRule.HONORIFIC_STRIPPED
        assert result.matched_on == "michal levin"

    def test_substring(self, matcher):
        result = matcher.match("Cohen, Dana (Clinic B)")
        assert result.staff_id == "s1"
        assert result.rule is MatchRule.SUBSTRING
        assert result.matched_on == "dana"

    def test_word_partial(self, matcher):
        result = matcher.match("Mich X")
        assert result.staff_id == "s3"
        assert result.rule is MatchRule.WORD_PARTIAL
        assert result.matched_on == "mich~michal"

    def test_transliteration(self, matcher):
        result = matcher.match("Michel Lavin")
        assert result.staff_id == "s3"
        assert result.rule is MatchRule.TRANSLITERATION

    def test_short_skeleton_does_not_match(self):
        directory = [StaffDirectoryEntry("s1", "Abe")]
        result = match_staff_name("Oby", directory, build_name_index(directory))
        assert not result.matched

    def test_no_match(self, matcher):
        result = matcher.match("Unknown Person")
        assert result.staff_id is None
        assert result.rule is MatchRule.NO_MATCH
        assert not result.matched
        assert "Unknown Person" in result.notes

    def test_empty_name(self, matcher):
        result = matcher.match("   ")
        assert not result.matched
        assert result.notes == "Empty name"

    def test_notes_name_the_rule(self, matcher):
        assert "substring" in matcher.match("Cohen, Dana (Clinic B)").notes

    @pytest.mark.parametrize("entry", DIRECTORY, ids=lambda e: e.id)
    def test_every_display_name_resolves_to_itself(self, entry):
        index = build_name_index(DIRECTORY)
        assert resolve_staff_id(entry.display_name, DIRECTORY, index) == entry.id

    @pytest.mark.parametrize("directory", [
        [StaffDirectoryEntry("s1", "Cohen"), StaffDirectoryEntry("s2", "Dana Cohen")],
        [StaffDirectoryEntry("s1", "Dana"), StaffDirectoryEntry("s2", "Dr. Dana Levi")],
        [StaffDirectoryEntry("s1", "Dr. Levi"), StaffDirectoryEntry("s2", "Noa Levi")],
    ])
    def test_display_names_resolve_despite_token_collisions(self, directory):
        index = build_name_index(directory)
        for entry in directory:
            assert resolve_staff_id(entry.display_name, directory, index) == entry.id

    def test_thresholds_from_config(self):
        directory = [StaffDirectoryEntry("s1", "Dana Cohen")]
        strict = MatchingConfig(min_token_length=5)
        index = build_name_index(directory, strict.min_token_length)
        assert "dana" not in index
        assert "cohen" in index


# ============================================================================
# StaffMatcher
# ============================================================================

class TestStaffMatcher:
    """Test the matcher facade."""

    def test_known_ids(self, matcher):
        assert matcher.known_ids == {"s1", "s2", "s3"}

    def test_override_bypasses_heuristics(self, matcher):
        result = matcher.match("Dr. Dana Cohen", overrides={"Dr. Dana Cohen": "s3"})
        assert result.staff_id == "s3"
        assert result.rule is MatchRule.OVERRIDE

    def test_override_keyed_by_exact_raw_text(self, matcher):
        result = matcher.match("unknown person", overrides={"Unknown Person": "s3"})
        assert not result.matched

    def test_resolve(self, matcher):
        assert matcher.resolve("Michal Levin") == "s3"
        assert matcher.resolve("Unknown Person") is None
