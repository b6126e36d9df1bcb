"""Row Extractor for clinical session imports.

Turns one semi-structured appointment row (header -> cell dict from
``data_loader.read_first_sheet``) into a ``SessionCandidate``.

Columns are looked up by *header text* through alias lists, so exports
in Hebrew or English and with reordered columns all work.  For each
logical field the first alias present with a non-empty value wins.

Derived attributes:
    staff id      resource column, else creator column -> override map / matcher
    clinic type   code embedded in the title, e.g. "MH-MCB-123" -> MCB
    meeting type  Intake when the service label contains an intake synonym
    show status   NoShow when the status label contains a no-show synonym
    duration      duration column, else end - start, else the default (60)
    age group     always Adult (the export carries no age signal)

``extract_rows`` is the single extraction pass used by the importer both
to detect unresolved names (DETECT) and to build candidates (COMMIT).
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Optional

from .config import SessionImportConfig
from .data_loader import clean_str, minutes_between, parse_minutes, round_half_up
from .models import (
    ClinicType,
    MeetingType,
    ServiceAgeGroup,
    SessionCandidate,
    ShowStatus,
    coerce_enum,
)
from .name_matcher import MatchResult, StaffMatcher, resolve_staff_id

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Column header aliases
# ---------------------------------------------------------------------------

# Staff name: the "resource" group is preferred over the "creator" group.
_STAFF_RESOURCE_HEADERS: list[str] = [
    "משאב", "שם משאב", "שם מטפל", "מטפל", "מטפל/ת", "פרובידר", "רופא", "רופא/ה",
    "Resource", "Staff", "Provider", "Doctor", "Therapist",
]
_STAFF_CREATOR_HEADERS: list[str] = [
    "שם היוצר", "נוצר על ידי", "יוצר",
    "Creator", "Created By", "Name",
]

_FIELD_HEADERS: dict[str, list[str]] = {
    "title":    ["כותרת", "שם מלא", "Title", "Full Name", "Subject",
                 "Clinic", "ClinicType", "Location"],
    "service":  ["סוג מפגש", "סוג שירות", "שירות", "סוג טיפול",
                 "Service", "Service Type", "MeetingType", "Meeting Type",
                 "AppointmentType", "Appointment Type", "Type"],
    "status":   ["סטטוס", "מצב", "סטטוס הגעה", "Status", "ShowStatus", "Show Status"],
    "duration": ["משך (דק׳)", "משך (דק')", "משך בדקות", "משך",
                 "Duration", "Duration (min)", "Length"],
    "start":    ["שעת התחלה", "זמן התחלה", "התחלה", "Start", "Start Time", "StartTime"],
    "end":      ["שעת סיום", "זמן סיום", "סיום", "End", "End Time", "EndTime"],
}


# ---------------------------------------------------------------------------
# Text heuristics
# ---------------------------------------------------------------------------

# "MH-MCB-123", "H_PRV_7", "m / spc / 12"
_CLINIC_CODE_RE = re.compile(r"(?<![A-Za-z])[MH]{1,2}[-_\s/]+([A-Z]{2,5})[-_\s/]", re.IGNORECASE)

INTAKE_SYNONYMS: tuple[str, ...] = (
    "אינטייק",
    "הערכה ראשונית",
    "intake",
    "initial assessment",
    "initial evaluation",
)

NO_SHOW_SYNONYMS: tuple[str, ...] = (
    "המשתתף לא הופיע",
    "לא הופיע",
    "לא הגיע",
    "בוטל",
    "ביטול",
    "no show",
    "no-show",
    "noshow",
    "did not attend",
    "cancelled",
    "canceled",
)


class ExtractionMode(Enum):
    """DETECT only collects staff names; COMMIT also builds candidates."""
    DETECT = "detect"
    COMMIT = "commit"


@dataclass
class ExtractionResult:
    """Output of one pass of :func:`extract_rows`."""

    mode: ExtractionMode
    candidates: list[SessionCandidate] = field(default_factory=list)
    unresolved_names: list[str] = field(default_factory=list)   # distinct, first-seen order
    matches: dict[str, MatchResult] = field(default_factory=dict)

    rows_scanned: int = 0
    rows_missing_staff: int = 0
    rows_unresolved: int = 0
    warnings: list[str] = field(default_factory=list)

    @property
    def resolved_names(self) -> dict[str, str]:
        """Raw staff name -> staff id for every name that resolved."""
        return {
            name: m.staff_id for name, m in self.matches.items()
            if m.staff_id is not None
        }


# ---------------------------------------------------------------------------
# Field lookup
# ---------------------------------------------------------------------------

def _row_lookup(row: dict[str, Any]) -> dict[str, Any]:
    """Key the row by case-folded, stripped header text."""
    return {
        str(header).strip().casefold(): value
        for header, value in row.items()
        if header is not None
    }


def _first_text(lookup: dict[str, Any], aliases: list[str]) -> str:
    """Return the first non-empty cell text among *aliases*."""
    for alias in aliases:
        text = clean_str(lookup.get(alias.casefold()))
        if text:
            return text
    return ""


def _first_value(lookup: dict[str, Any], aliases: list[str]) -> Any:
    for alias in aliases:
        value = lookup.get(alias.casefold())
        if value is not None and clean_str(value):
            return value
    return None


def find_staff_name(row: dict[str, Any]) -> str:
    """The raw staff-name text of a row, or ``""`` if no alias column has one."""
    lookup = _row_lookup(row)
    return (
        _first_text(lookup, _STAFF_RESOURCE_HEADERS)
        or _first_text(lookup, _STAFF_CREATOR_HEADERS)
    )


# ---------------------------------------------------------------------------
# Attribute extraction
# ---------------------------------------------------------------------------

def extract_clinic_type(title: str) -> ClinicType:
    """Clinic code embedded in a title string; MCB when none is found.

    >>> extract_clinic_type("MH-PRV-1042 Dana").value
    'PRV'
    >>> extract_clinic_type("no code here").value
    'MCB'
    """
    m = _CLINIC_CODE_RE.search(title or "")
    if not m:
        return ClinicType.default()
    code = m.group(1).upper()
    for clinic in ClinicType:
        if clinic.value in code:
            return clinic
    return ClinicType.default()


def detect_meeting_type(label: str) -> MeetingType:
    text = (label or "").casefold()
    if any(s in text for s in INTAKE_SYNONYMS):
        return MeetingType.INTAKE
    return MeetingType.FOLLOW_UP


def detect_show_status(label: str) -> ShowStatus:
    text = (label or "").casefold()
    if any(s in text for s in NO_SHOW_SYNONYMS):
        return ShowStatus.NO_SHOW
    return ShowStatus.SHOW


def extract_duration(row: dict[str, Any], default: int = 60) -> int:
    """Session length in whole minutes.

    Order: first positive duration column (minutes, or ``h:mm`` text and
    time cells), then end minus start, then
    *default*.  Unparseable or non-positive values fall through.
    """
    lookup = _row_lookup(row)
    for alias in _FIELD_HEADERS["duration"]:
        value = parse_minutes(lookup.get(alias.casefold()))
        if value is not None and value > 0:
            minutes = round_half_up(value)
            if minutes > 0:
                return minutes

    start = _first_value(lookup, _FIELD_HEADERS["start"])
    end = _first_value(lookup, _FIELD_HEADERS["end"])
    if start is not None and end is not None:
        minutes = minutes_between(start, end)
        if minutes is not None and minutes > 0:
            return minutes

    return default


def build_candidate(
    row: dict[str, Any],
    staff_id: str,
    *,
    month: int,
    year: int,
    raw_staff_name: str = "",
    source_row: int | None = None,
    config: SessionImportConfig | None = None,
) -> SessionCandidate:
    """Build a candidate for a row whose staff id is already known."""
    cfg = config or SessionImportConfig()
    lookup = _row_lookup(row)
    return SessionCandidate(
        staff_id=staff_id,
        clinic_type=extract_clinic_type(_first_text(lookup, _FIELD_HEADERS["title"])),
        meeting_type=detect_meeting_type(_first_text(lookup, _FIELD_HEADERS["service"])),
        show_status=detect_show_status(_first_text(lookup, _FIELD_HEADERS["status"])),
        service_age_group=coerce_enum(
            ServiceAgeGroup, cfg.extraction.default_age_group, ServiceAgeGroup.ADULT,
        ),
        count=1,
        duration_minutes=extract_duration(row, cfg.extraction.default_duration_minutes),
        month=month,
        year=year,
        raw_staff_name=raw_staff_name,
        source_row=source_row,
    )


def extract_candidate(
    row: dict[str, Any],
    index: dict[str, str],
    directory: list,
    overrides: Optional[dict[str, str]] = None,
    *,
    month: int = 0,
    year: int = 0,
    config: SessionImportConfig | None = None,
) -> SessionCandidate | None:
    """Extract one candidate, or None when the staff name is missing/unresolved.

    An override keyed by the exact raw staff-name text bypasses the matcher.
    """
    cfg = config or SessionImportConfig()
    raw_name = find_staff_name(row)
    if not raw_name:
        return None

    if overrides and raw_name in overrides:
        staff_id = overrides[raw_name]
    else:
        staff_id = resolve_staff_id(raw_name, directory, index, cfg.matching)
    if staff_id is None:
        return None

    return build_candidate(
        row, staff_id, month=month, year=year, raw_staff_name=raw_name, config=cfg,
    )


# ---------------------------------------------------------------------------
# Full pass
# ---------------------------------------------------------------------------

def extract_rows(
    rows: Iterable[dict[str, Any]],
    matcher: StaffMatcher,
    *,
    mode: ExtractionMode = ExtractionMode.COMMIT,
    overrides: Optional[dict[str, str]] = None,
    month: int = 0,
    year: int = 0,
    config: SessionImportConfig | None = None,
) -> ExtractionResult:
    """Run the extractor over every row.

    Each distinct raw name is resolved once.  Rows without a staff name
    or with an unresolved one are skipped and counted; unresolved names
    are collected in first-seen order.
    """
    cfg = config or SessionImportConfig()
    result = ExtractionResult(mode=mode)

    for row_number, row in enumerate(rows, start=1):     # 1-based data row
        result.rows_scanned += 1

        raw_name = find_staff_name(row)
        if not raw_name:
            result.rows_missing_staff += 1
            logger.debug("Row %d: no staff name -- skipped", row_number)
            continue

        match = result.matches.get(raw_name)
        if match is None:
            match = matcher.match(raw_name, overrides)
            result.matches[raw_name] = match
            if not match.matched:
                result.unresolved_names.append(raw_name)
                logger.warning("Unresolved staff name: '%s'", raw_name)

        if not match.matched:
            result.rows_unresolved += 1
            continue

        if mode is ExtractionMode.COMMIT:
            result.candidates.append(build_candidate(
                row,
                match.staff_id,
                month=month,
                year=year,
                raw_staff_name=raw_name,
                source_row=row_number,
                config=cfg,
            ))

    if result.rows_missing_staff:
        result.warnings.append(
            f"{result.rows_missing_staff} row(s) have no staff name and were skipped"
        )
    if result.rows_unresolved:
        result.warnings.append(
            f"{result.rows_unresolved} row(s) skipped: "
            f"{len(result.unresolved_names)} staff name(s) could not be matched"
        )

    logger.info(
        "Extraction (%s): %d rows, %d candidates, %d unresolved names, %d rows without staff",
        mode.value,
        result.rows_scanned,
        len(result.candidates),
        len(result.unresolved_names),
        result.rows_missing_staff,
    )
    return result
