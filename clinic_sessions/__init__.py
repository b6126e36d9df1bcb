"""Clinical Session Import - spreadsheet import and costing engine.

Reads appointment exports (Hebrew or English headers), resolves free-text
staff names against the clinic's staff directory, aggregates rows into
canonical clinical sessions, and prices them from each staff member's
rate table.

The SessionImporter drives the two-pass import (detection, manual
mapping, final extraction, confirmation) and the SessionStore persists
the results in SQLite.
"""

from .models import (
    ClinicalSession,
    ClinicalStaffRates,
    ClinicType,
    FinancialSummary,
    FixedOverhead,
    MeetingType,
    RevenueSource,
    ServiceAgeGroup,
    SessionCandidate,
    ShowStatus,
    StaffDirectoryEntry,
    StaffMember,
    StaffNameMapping,
    StaffRole,
)

from .importer import (
    CommitReport,
    ImportProcessingError,
    ImportState,
    NoSessionsFoundError,
    SessionImporter,
)
from .name_matcher import StaffMatcher, normalize_name
from .pricing import price_session
from .session_store import SessionStore

__all__ = [
    "ClinicType",
    "ClinicalSession",
    "ClinicalStaffRates",
    "CommitReport",
    "FinancialSummary",
    "FixedOverhead",
    "ImportProcessingError",
    "ImportState",
    "MeetingType",
    "NoSessionsFoundError",
    "RevenueSource",
    "ServiceAgeGroup",
    "SessionCandidate",
    "SessionImporter",
    "SessionStore",
    "ShowStatus",
    "StaffDirectoryEntry",
    "StaffMatcher",
    "StaffMember",
    "StaffNameMapping",
    "StaffRole",
    "normalize_name",
    "price_session",
]
