"""Session Pricer -- per-session cost from a staff member's rate table.

The rate is chosen by (show status, meeting type, age group) from eight
age-specific fields.  When the age-specific field is unset or zero the
legacy, age-agnostic field is used instead:

    +----------+-----------+-------+------------------------------+-------------------------+
    | status   | meeting   | age   | primary field                | legacy fallback         |
    +==========+===========+=======+==============================+=========================+
    | Show     | Intake    | Adult | adult_intake_rate            | intake_session_rate     |
    | Show     | Intake    | Child | child_intake_rate            | intake_session_rate     |
    | Show     | FollowUp  | Adult | adult_follow_up_rate         | follow_up_session_rate  |
    | Show     | FollowUp  | Child | child_follow_up_rate         | follow_up_session_rate  |
    | NoShow   | Intake    | Adult | adult_no_show_intake_rate    | no_show_intake_rate     |
    | NoShow   | Intake    | Child | child_no_show_intake_rate    | no_show_intake_rate     |
    | NoShow   | FollowUp  | Adult | adult_no_show_follow_up_rate | no_show_follow_up_rate  |
    | NoShow   | FollowUp  | Child | child_no_show_follow_up_rate | no_show_follow_up_rate  |
    +----------+-----------+-------+------------------------------+-------------------------+

Cost = rate x count, never negative.  A missing rate table prices to 0;
callers that need to tell "free" from "rate missing" check for the rate
table themselves (see ``financials.summarize_clinical_costs``).

Choosing the *current* rate row per staff member (latest effective date)
is also done here, by ``select_current_rates``.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping
from datetime import date
from typing import Any, Iterable

from .models import (
    ClinicalStaffRates,
    MeetingType,
    ServiceAgeGroup,
    ShowStatus,
    coerce_enum,
    parse_iso_date,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Rate field table
# ---------------------------------------------------------------------------

RATE_FIELDS: dict[tuple[ShowStatus, MeetingType, ServiceAgeGroup], tuple[str, str]] = {
    (ShowStatus.SHOW, MeetingType.INTAKE, ServiceAgeGroup.ADULT):
        ("adult_intake_rate", "intake_session_rate"),
    (ShowStatus.SHOW, MeetingType.INTAKE, ServiceAgeGroup.CHILD):
        ("child_intake_rate", "intake_session_rate"),
    (ShowStatus.SHOW, MeetingType.FOLLOW_UP, ServiceAgeGroup.ADULT):
        ("adult_follow_up_rate", "follow_up_session_rate"),
    (ShowStatus.SHOW, MeetingType.FOLLOW_UP, ServiceAgeGroup.CHILD):
        ("child_follow_up_rate", "follow_up_session_rate"),
    (ShowStatus.NO_SHOW, MeetingType.INTAKE, ServiceAgeGroup.ADULT):
        ("adult_no_show_intake_rate", "no_show_intake_rate"),
    (ShowStatus.NO_SHOW, MeetingType.INTAKE, ServiceAgeGroup.CHILD):
        ("child_no_show_intake_rate", "no_show_intake_rate"),
    (ShowStatus.NO_SHOW, MeetingType.FOLLOW_UP, ServiceAgeGroup.ADULT):
        ("adult_no_show_follow_up_rate", "no_show_follow_up_rate"),
    (ShowStatus.NO_SHOW, MeetingType.FOLLOW_UP, ServiceAgeGroup.CHILD):
        ("child_no_show_follow_up_rate", "no_show_follow_up_rate"),
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _field(obj: Any, name: str) -> Any:
    """Read *name* from a dataclass/namespace or a mapping."""
    if isinstance(obj, Mapping):
        return obj.get(name)
    return getattr(obj, name, None)


def _as_number(value: Any) -> float:
    """Coerce to float; None, non-numeric and NaN become 0."""
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return 0.0 if math.isnan(number) else number


# ---------------------------------------------------------------------------
# Pricing
# ---------------------------------------------------------------------------

def select_rate(
    rates: Any,
    show_status: ShowStatus | str,
    meeting_type: MeetingType | str,
    age_group: ServiceAgeGroup | str | None = None,
) -> float:
    """Per-unit rate for one combination, with legacy fallback.

    An unset age group prices as Adult.  Unknown status / meeting values
    have no rate field and yield 0.
    """
    key = (
        coerce_enum(ShowStatus, show_status),
        coerce_enum(MeetingType, meeting_type),
        coerce_enum(ServiceAgeGroup, age_group, ServiceAgeGroup.ADULT),
    )
    fields = RATE_FIELDS.get(key)
    if fields is None:
        return 0.0
    primary, legacy = fields
    rate = _as_number(_field(rates, primary))
    if not rate:
        rate = _as_number(_field(rates, legacy))
    return rate


def price_session(session: Any, rates: Any | None) -> float:
    """Total cost of a session: selected rate x count, never negative.

    Returns 0 when *rates* is None or the count is not positive.

    >>> from clinic_sessions.models import ClinicalSession, ClinicalStaffRates, MeetingType
    >>> s = ClinicalSession(staff_id="s1", meeting_type=MeetingType.INTAKE, count=2)
    >>> price_session(s, ClinicalStaffRates(staff_id="s1", adult_intake_rate=600))
    1200.0
    """
    if rates is None:
        return 0.0
    count = _as_number(_field(session, "count"))
    if count <= 0:
        return 0.0
    rate = select_rate(
        rates,
        _field(session, "show_status"),
        _field(session, "meeting_type"),
        _field(session, "service_age_group"),
    )
    return max(rate * count, 0.0)


# ---------------------------------------------------------------------------
# Current rate selection
# ---------------------------------------------------------------------------

def _as_rates(row: Any) -> ClinicalStaffRates:
    if isinstance(row, ClinicalStaffRates):
        return row
    if isinstance(row, Mapping):
        return ClinicalStaffRates.from_row(dict(row))
    raise TypeError(f"Unsupported rate row type: {type(row).__name__}")


def select_current_rates(rates: Iterable[Any], staff_id: str) -> ClinicalStaffRates | None:
    """The rate row for *staff_id* with the latest effective date.

    Rows without an effective date rank below dated ones; among equal
    dates the later row wins.
    """
    best: ClinicalStaffRates | None = None
    best_date = date.min
    for row in rates:
        record = _as_rates(row)
        if record.staff_id != staff_id:
            continue
        effective = parse_iso_date(record.effective_date) or date.min
        if best is None or effective >= best_date:
            best, best_date = record, effective
    return best


def current_rates_by_staff(rates: Iterable[Any]) -> dict[str, ClinicalStaffRates]:
    """Map every staff id to its current rate row."""
    current: dict[str, ClinicalStaffRates] = {}
    dates: dict[str, date] = {}
    for row in rates:
        record = _as_rates(row)
        effective = parse_iso_date(record.effective_date) or date.min
        if record.staff_id not in current or effective >= dates[record.staff_id]:
            current[record.staff_id] = record
            dates[record.staff_id] = effective
    logger.debug("Current rates resolved for %d staff", len(current))
    return current
