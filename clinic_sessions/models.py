"""Data models for the clinical session import engine.

All models are plain dataclasses with type hints.  No ORM, no Pydantic --
the persistence layer (session_store.py) maps rows to these records and
back, and the import pipeline passes them between stages.

Shapes follow the clinic's database tables:
  staff_members           -> StaffMember / StaffDirectoryEntry
  clinical_sessions       -> ClinicalSession
  clinical_staff_rates    -> ClinicalStaffRates
  revenue_sources         -> RevenueSource
  fixed_overheads         -> FixedOverhead
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from datetime import date, datetime
from enum import Enum
from typing import Any, Self


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class ClinicType(str, Enum):
    """Clinic codes, in canonical order.

    The order matters: clinic extraction maps a captured code to the
    first member it contains, and MCB is the fallback.
    """

    MCB = "MCB"
    PRV = "PRV"
    MHS = "MHS"
    MHN = "MHN"
    MHY = "MHY"
    MSY = "MSY"
    SPC = "SPC"
    MHB = "MHB"

    @classmethod
    def default(cls) -> ClinicType:
        return cls.MCB


class MeetingType(str, Enum):
    """Kind of clinical meeting."""

    INTAKE = "Intake"
    FOLLOW_UP = "FollowUp"


class ShowStatus(str, Enum):
    """Whether the patient attended."""

    SHOW = "Show"
    NO_SHOW = "NoShow"


class ServiceAgeGroup(str, Enum):
    """Age group the service was billed under."""

    ADULT = "Adult"
    CHILD = "Child"


class StaffRole(str, Enum):
    PSYCHIATRIST = "Psychiatrist"
    CASE_MANAGER = "CaseManager"
    ADMIN = "Admin"


def coerce_enum(enum_cls: type[Enum], value: Any, default: Enum | None = None):
    """Return *value* as a member of *enum_cls*.

    Accepts a member, its string value, or its name.  ``None``/empty and
    unknown values return *default*.
    """
    if isinstance(value, enum_cls):
        return value
    if value is None or value == "":
        return default
    try:
        return enum_cls(value)
    except ValueError:
        pass
    member = enum_cls.__members__.get(str(value).upper())
    return member if member is not None else default


# ---------------------------------------------------------------------------
# Staff
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StaffDirectoryEntry:
    """Read-only snapshot of one staff member, as seen by the matcher."""

    id: str
    display_name: str


@dataclass
class StaffMember:
    """A row of the staff_members table."""

    id: str
    name: str
    role: StaffRole = StaffRole.PSYCHIATRIST
    start_date: date | None = None
    end_date: date | None = None
    active: bool = True

    def to_directory_entry(self) -> StaffDirectoryEntry:
        return StaffDirectoryEntry(id=self.id, display_name=self.name)


@dataclass
class StaffNameMapping:
    """Operator override: a spreadsheet name assigned to a staff id.

    Scoped to a single import run; never persisted.
    """

    excel_name: str
    system_staff_id: str


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------

@dataclass
class SessionRecord:
    """Fields shared by per-row candidates and canonical sessions."""

    staff_id: str
    clinic_type: ClinicType = ClinicType.MCB
    meeting_type: MeetingType = MeetingType.FOLLOW_UP
    show_status: ShowStatus = ShowStatus.SHOW
    service_age_group: ServiceAgeGroup | None = ServiceAgeGroup.ADULT
    count: int = 1
    duration_minutes: int = 60
    month: int = 0
    year: int = 0

    @property
    def aggregation_key(self) -> tuple:
        """Grouping key used to merge rows into canonical sessions.

        Month and year are uniform within an import batch, so they are
        not part of the key.
        """
        return (
            self.staff_id,
            _enum_value(self.clinic_type),
            _enum_value(self.meeting_type),
            _enum_value(self.show_status),
            _enum_value(self.service_age_group or ServiceAgeGroup.ADULT),
            int(self.duration_minutes),
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-safe dict (enum members become strings)."""
        d = asdict(self)
        for key in ("clinic_type", "meeting_type", "show_status", "service_age_group"):
            d[key] = _enum_value(d[key])
        return d


@dataclass
class SessionCandidate(SessionRecord):
    """One session extracted from one spreadsheet row (count is always 1).

    ``raw_staff_name`` is the trimmed spreadsheet text the staff id was
    resolved from; it is kept for operator review only.
    """

    raw_staff_name: str = ""
    source_row: int | None = None


@dataclass
class ClinicalSession(SessionRecord):
    """Canonical, count-aggregated session -- the unit that is persisted
    and priced.  ``id`` is assigned by the store."""

    id: str | None = None

    @classmethod
    def from_candidate(cls, candidate: SessionRecord, count: int | None = None) -> Self:
        """Build a canonical session from a candidate, optionally overriding count."""
        return cls(
            staff_id=candidate.staff_id,
            clinic_type=candidate.clinic_type,
            meeting_type=candidate.meeting_type,
            show_status=candidate.show_status,
            service_age_group=candidate.service_age_group or ServiceAgeGroup.ADULT,
            count=candidate.count if count is None else count,
            duration_minutes=candidate.duration_minutes,
            month=candidate.month,
            year=candidate.year,
        )

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Self:
        """Build a session from a clinical_sessions row (or similar mapping)."""
        duration = row.get("duration_minutes", row.get("duration"))
        return cls(
            id=str(row["id"]) if row.get("id") is not None else None,
            staff_id=str(row["staff_id"]),
            clinic_type=coerce_enum(ClinicType, row.get("clinic_type"), ClinicType.MCB),
            meeting_type=coerce_enum(MeetingType, row.get("meeting_type"), MeetingType.FOLLOW_UP),
            show_status=coerce_enum(ShowStatus, row.get("show_status"), ShowStatus.SHOW),
            service_age_group=coerce_enum(
                ServiceAgeGroup, row.get("service_age_group"), ServiceAgeGroup.ADULT,
            ),
            count=int(row.get("count") or 0),
            duration_minutes=int(duration) if duration is not None else 60,
            month=int(row.get("month") or 0),
            year=int(row.get("year") or 0),
        )


# ---------------------------------------------------------------------------
# Rates
# ---------------------------------------------------------------------------

@dataclass
class ClinicalStaffRates:
    """A row of the clinical_staff_rates table.

    Rate fields are optional: ``None`` means "not set", and pricing falls
    back from the age-specific fields to the legacy ones.
    """

    staff_id: str

    # --- age-specific rates ---
    adult_intake_rate: float | None = None
    adult_follow_up_rate: float | None = None
    adult_no_show_intake_rate: float | None = None
    adult_no_show_follow_up_rate: float | None = None
    child_intake_rate: float | None = None
    child_follow_up_rate: float | None = None
    child_no_show_intake_rate: float | None = None
    child_no_show_follow_up_rate: float | None = None

    # --- legacy (single age group) rates ---
    intake_session_rate: float | None = None
    follow_up_session_rate: float | None = None
    no_show_intake_rate: float | None = None
    no_show_follow_up_rate: float | None = None

    # --- non-session rates ---
    admin_rate: float | None = None
    training_rate: float | None = None
    availability_retainer_rate: float | None = None

    effective_date: date | None = None
    contract_type_identifier: str | None = None
    id: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Self:
        """Build a rate record from a mapping, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        kwargs: dict[str, Any] = {}
        for key, value in row.items():
            if key not in known:
                continue
            if key.endswith("_rate"):
                kwargs[key] = float(value) if value not in (None, "") else None
            elif key == "effective_date":
                kwargs[key] = parse_iso_date(value)
            elif key in ("staff_id", "id"):
                kwargs[key] = str(value) if value is not None else None
            else:
                kwargs[key] = value
        return cls(**kwargs)


# ---------------------------------------------------------------------------
# Revenue & overheads (inputs of the financial summary)
# ---------------------------------------------------------------------------

@dataclass
class RevenueSource:
    name: str
    quantity: float = 0.0
    rate_per_unit: float = 0.0
    month: int = 0
    year: int = 0
    id: str | None = None

    @property
    def total(self) -> float:
        return self.quantity * self.rate_per_unit


@dataclass
class FixedOverhead:
    name: str
    monthly_cost: float = 0.0
    month: int = 0
    year: int = 0
    id: str | None = None


@dataclass
class FinancialSummary:
    """Headline figures for one reporting period."""

    total_revenue: float = 0.0
    total_clinical_costs: float = 0.0
    total_admin_costs: float = 0.0
    total_fixed_overheads: float = 0.0
    total_expenses: float = 0.0
    gross_profit: float = 0.0
    operating_profit: float = 0.0
    clinical_payroll_to_revenue_ratio: float = 0.0
    total_payroll_to_revenue_ratio: float = 0.0
    average_revenue_per_patient: float = 0.0
    average_cost_per_clinical_unit: float = 0.0


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _enum_value(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def parse_iso_date(value: Any) -> date | None:
    """Parse ``date``/``datetime``/ISO-8601 text into a ``date``.

    Returns None for empty or unparseable input.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        return None
