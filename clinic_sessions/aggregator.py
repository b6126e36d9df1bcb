"""Session Aggregator -- merge per-row candidates into canonical sessions.

Candidates sharing (staff, clinic, meeting type, show status, age group,
duration) collapse into one ``ClinicalSession`` whose count is the sum of
the group.  Month and year are uniform within an import batch and do not
take part in the key.  Output order follows first appearance, but callers
must not rely on it.
"""

from __future__ import annotations

import logging
from typing import Iterable

from .models import ClinicalSession, SessionRecord

logger = logging.getLogger(__name__)


def aggregate_sessions(candidates: Iterable[SessionRecord]) -> list[ClinicalSession]:
    """Group candidates by ``aggregation_key`` and sum their counts."""
    groups: dict[tuple, ClinicalSession] = {}
    total = 0
    for candidate in candidates:
        total += 1
        key = candidate.aggregation_key
        session = groups.get(key)
        if session is None:
            groups[key] = ClinicalSession.from_candidate(candidate)
        else:
            session.count += candidate.count

    logger.info("Aggregated %d candidates into %d sessions", total, len(groups))
    return list(groups.values())
