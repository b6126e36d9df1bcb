"""
Clinical Session Import -- SQLite Persistence Store

Row-oriented store for the clinic's staff directory, rate tables,
clinical sessions, revenue / overhead inputs, and import run history.

Each call opens and closes its own connection; there are no
cross-call transactions.  Sessions are added one at a time so the
importer can report exactly which ones were persisted.

Database schema:
    staff_members         - Staff directory (name, role, active flag)
    clinical_staff_rates  - Rate rows, one per (staff, effective_date)
    clinical_sessions     - Canonical aggregated sessions
    revenue_sources       - Revenue lines per period
    fixed_overheads       - Monthly fixed costs per period
    import_runs           - One row per spreadsheet import

Usage:
    from clinic_sessions.session_store import SessionStore

    store = SessionStore()                       # uses default db path
    store = SessionStore("path/to/clinic.db")    # custom path

    staff_id = store.add_staff("Dr. Dana Cohen")
    store.add_rates(ClinicalStaffRates(staff_id=staff_id, adult_intake_rate=600,
                                       effective_date=date(2026, 1, 1)))
    session_id = store.add_session(session)
    sessions = store.list_sessions(month=3, year=2026)
"""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from dataclasses import fields
from datetime import date, datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from .config import get_config
from .models import (
    ClinicalSession,
    ClinicalStaffRates,
    FixedOverhead,
    RevenueSource,
    StaffDirectoryEntry,
    StaffMember,
    StaffRole,
    coerce_enum,
    parse_iso_date,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_PRAGMA_SETTINGS = [
    "PRAGMA journal_mode=WAL;",
    "PRAGMA foreign_keys=ON;",
    "PRAGMA busy_timeout=5000;",
]

_RATE_COLUMNS = [
    f.name for f in fields(ClinicalStaffRates) if f.name.endswith("_rate")
]

_SESSION_UPDATABLE = {
    "staff_id", "clinic_type", "meeting_type", "show_status",
    "service_age_group", "count", "duration_minutes", "month", "year",
}


# ---------------------------------------------------------------------------
# Database Schema
# ---------------------------------------------------------------------------

_SCHEMA_SQL = """
-- Staff directory
CREATE TABLE IF NOT EXISTS staff_members (
    id              TEXT PRIMARY KEY,
    name            TEXT NOT NULL,
    role            TEXT NOT NULL DEFAULT 'Psychiatrist',
    start_date      TEXT,
    end_date        TEXT,
    active          INTEGER NOT NULL DEFAULT 1,
    created_at      TEXT NOT NULL DEFAULT ''
);

-- Rate rows; the current one per staff member has the latest effective_date
CREATE TABLE IF NOT EXISTS clinical_staff_rates (
    id                              TEXT PRIMARY KEY,
    staff_id                        TEXT NOT NULL,
    adult_intake_rate               REAL,
    adult_follow_up_rate            REAL,
    adult_no_show_intake_rate       REAL,
    adult_no_show_follow_up_rate    REAL,
    child_intake_rate               REAL,
    child_follow_up_rate            REAL,
    child_no_show_intake_rate       REAL,
    child_no_show_follow_up_rate    REAL,
    intake_session_rate             REAL,
    follow_up_session_rate          REAL,
    no_show_intake_rate             REAL,
    no_show_follow_up_rate          REAL,
    admin_rate                      REAL,
    training_rate                   REAL,
    availability_retainer_rate      REAL,
    effective_date                  TEXT,
    contract_type_identifier        TEXT,
    created_at                      TEXT NOT NULL DEFAULT '',
    FOREIGN KEY (staff_id) REFERENCES staff_members(id)
);

-- Canonical sessions
CREATE TABLE IF NOT EXISTS clinical_sessions (
    id                  TEXT PRIMARY KEY,
    staff_id            TEXT NOT NULL,
    clinic_type         TEXT NOT NULL,
    meeting_type        TEXT NOT NULL,
    show_status         TEXT NOT NULL,
    service_age_group   TEXT NOT NULL DEFAULT 'Adult',
    count               INTEGER NOT NULL DEFAULT 1,
    duration            INTEGER NOT NULL DEFAULT 60,
    month               INTEGER NOT NULL,
    year                INTEGER NOT NULL,
    import_id           TEXT NOT NULL DEFAULT '',
    created_at          TEXT NOT NULL DEFAULT '',
    FOREIGN KEY (staff_id) REFERENCES staff_members(id)
);

CREATE TABLE IF NOT EXISTS revenue_sources (
    id              TEXT PRIMARY KEY,
    name            TEXT NOT NULL,
    quantity        REAL NOT NULL DEFAULT 0.0,
    rate_per_unit   REAL NOT NULL DEFAULT 0.0,
    month           INTEGER NOT NULL,
    year            INTEGER NOT NULL,
    created_at      TEXT NOT NULL DEFAULT ''
);

CREATE TABLE IF NOT EXISTS fixed_overheads (
    id              TEXT PRIMARY KEY,
    name            TEXT NOT NULL,
    monthly_cost    REAL NOT NULL DEFAULT 0.0,
    month           INTEGER NOT NULL,
    year            INTEGER NOT NULL,
    created_at      TEXT NOT NULL DEFAULT ''
);

-- Import run tracking
CREATE TABLE IF NOT EXISTS import_runs (
    import_id           TEXT PRIMARY KEY,
    source_file         TEXT NOT NULL DEFAULT '',
    month               INTEGER NOT NULL DEFAULT 0,
    year                INTEGER NOT NULL DEFAULT 0,
    rows_scanned        INTEGER NOT NULL DEFAULT 0,
    sessions_extracted  INTEGER NOT NULL DEFAULT 0,
    sessions_committed  INTEGER NOT NULL DEFAULT 0,
    sessions_failed     INTEGER NOT NULL DEFAULT 0,
    unresolved_names    TEXT NOT NULL DEFAULT '[]',       -- JSON array
    manual_mappings     TEXT NOT NULL DEFAULT '{}',       -- JSON dict
    created_at          TEXT NOT NULL DEFAULT '',
    completed_at        TEXT
);

CREATE INDEX IF NOT EXISTS idx_sessions_period ON clinical_sessions(year, month);
CREATE INDEX IF NOT EXISTS idx_sessions_staff ON clinical_sessions(staff_id);
CREATE INDEX IF NOT EXISTS idx_rates_staff ON clinical_staff_rates(staff_id, effective_date);
CREATE INDEX IF NOT EXISTS idx_revenue_period ON revenue_sources(year, month);
CREATE INDEX IF NOT EXISTS idx_overheads_period ON fixed_overheads(year, month);
"""


# ---------------------------------------------------------------------------
# Serialization Helpers
# ---------------------------------------------------------------------------

def _now_iso() -> str:
    """Return current UTC datetime as ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat()


def _new_id() -> str:
    return str(uuid.uuid4())


def _date_str(value: date | datetime | str | None) -> str | None:
    parsed = parse_iso_date(value)
    return parsed.isoformat() if parsed else None


def _enum_str(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def _row_to_staff(row: dict[str, Any]) -> StaffMember:
    return StaffMember(
        id=row["id"],
        name=row["name"],
        role=coerce_enum(StaffRole, row.get("role"), StaffRole.PSYCHIATRIST),
        start_date=parse_iso_date(row.get("start_date")),
        end_date=parse_iso_date(row.get("end_date")),
        active=bool(row.get("active", 1)),
    )


def _session_to_row(session: ClinicalSession, session_id: str, import_id: str) -> dict[str, Any]:
    d = session.to_dict()
    return {
        "id": session_id,
        "staff_id": d["staff_id"],
        "clinic_type": d["clinic_type"],
        "meeting_type": d["meeting_type"],
        "show_status": d["show_status"],
        "service_age_group": d["service_age_group"] or "Adult",
        "count": int(d["count"]),
        "duration": int(d["duration_minutes"]),
        "month": int(d["month"]),
        "year": int(d["year"]),
        "import_id": import_id,
        "created_at": _now_iso(),
    }


def _insert(conn: sqlite3.Connection, table: str, row: dict[str, Any]) -> None:
    columns = list(row.keys())
    placeholders = ", ".join(["?"] * len(columns))
    col_str = ", ".join(columns)
    conn.execute(
        f"INSERT INTO {table} ({col_str}) VALUES ({placeholders})",
        [row[c] for c in columns],
    )


def _period_clause(month: Optional[int], year: Optional[int]) -> tuple[str, list[Any]]:
    clauses: list[str] = []
    params: list[Any] = []
    if month is not None:
        clauses.append("month = ?")
        params.append(month)
    if year is not None:
        clauses.append("year = ?")
        params.append(year)
    return (" WHERE " + " AND ".join(clauses)) if clauses else "", params


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

class SessionStore:
    """SQLite-backed persistence for the clinic's session data."""

    def __init__(self, db_path: str | Path | None = None):
        self.db_path = Path(db_path) if db_path else get_config().storage.resolved_db_path
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    # ------------------------------------------------------------------
    # Database connection helpers
    # ------------------------------------------------------------------

    def _get_conn(self) -> sqlite3.Connection:
        """Open a new SQLite connection with row_factory and pragmas."""
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        for pragma in _PRAGMA_SETTINGS:
            conn.execute(pragma)
        return conn

    def _init_db(self) -> None:
        """Create tables and indexes if they don't exist."""
        conn = self._get_conn()
        try:
            conn.executescript(_SCHEMA_SQL)
            conn.commit()
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Staff
    # ------------------------------------------------------------------

    def add_staff(
        self,
        name: str,
        role: StaffRole | str = StaffRole.PSYCHIATRIST,
        *,
        staff_id: str | None = None,
        start_date: date | str | None = None,
        end_date: date | str | None = None,
        active: bool = True,
    ) -> str:
        """Add a staff member and return their id."""
        if not name or not name.strip():
            raise ValueError("Staff name is required")
        staff_id = staff_id or _new_id()
        conn = self._get_conn()
        try:
            _insert(conn, "staff_members", {
                "id": staff_id,
                "name": name.strip(),
                "role": _enum_str(coerce_enum(StaffRole, role, StaffRole.PSYCHIATRIST)),
                "start_date": _date_str(start_date),
                "end_date": _date_str(end_date),
                "active": 1 if active else 0,
                "created_at": _now_iso(),
            })
            conn.commit()
        finally:
            conn.close()
        logger.info("Added staff member %s (%s)", name.strip(), staff_id)
        return staff_id

    def get_staff(self, staff_id: str) -> StaffMember | None:
        conn = self._get_conn()
        try:
            row = conn.execute(
                "SELECT * FROM staff_members WHERE id = ?", (staff_id,)
            ).fetchone()
            return _row_to_staff(dict(row)) if row else None
        finally:
            conn.close()

    def list_staff(self, active_only: bool = False) -> list[StaffMember]:
        """All staff members ordered by name."""
        sql = "SELECT * FROM staff_members"
        if active_only:
            sql += " WHERE active = 1"
        sql += " ORDER BY name ASC"
        conn = self._get_conn()
        try:
            return [_row_to_staff(dict(r)) for r in conn.execute(sql).fetchall()]
        finally:
            conn.close()

    def set_staff_active(self, staff_id: str, active: bool) -> bool:
        conn = self._get_conn()
        try:
            result = conn.execute(
                "UPDATE staff_members SET active = ? WHERE id = ?",
                (1 if active else 0, staff_id),
            )
            conn.commit()
            return result.rowcount > 0
        finally:
            conn.close()

    def get_directory(self) -> list[StaffDirectoryEntry]:
        """Snapshot of active staff for the name matcher."""
        return [m.to_directory_entry() for m in self.list_staff(active_only=True)]

    # ------------------------------------------------------------------
    # Rates
    # ------------------------------------------------------------------

    def add_rates(self, rates: ClinicalStaffRates) -> str:
        """Insert a rate row and return its id."""
        rate_id = rates.id or _new_id()
        row: dict[str, Any] = {"id": rate_id, "staff_id": rates.staff_id}
        for col in _RATE_COLUMNS:
            row[col] = getattr(rates, col)
        row["effective_date"] = _date_str(rates.effective_date) or date.today().isoformat()
        row["contract_type_identifier"] = rates.contract_type_identifier
        row["created_at"] = _now_iso()

        conn = self._get_conn()
        try:
            _insert(conn, "clinical_staff_rates", row)
            conn.commit()
        finally:
            conn.close()
        return rate_id

    def list_rates(self, staff_id: str | None = None) -> list[ClinicalStaffRates]:
        """Rate rows, newest effective date first."""
        conn = self._get_conn()
        try:
            if staff_id:
                rows = conn.execute(
                    """SELECT * FROM clinical_staff_rates WHERE staff_id = ?
                       ORDER BY effective_date DESC, created_at DESC""",
                    (staff_id,),
                ).fetchall()
            else:
                rows = conn.execute(
                    """SELECT * FROM clinical_staff_rates
                       ORDER BY staff_id, effective_date DESC, created_at DESC"""
                ).fetchall()
            return [ClinicalStaffRates.from_row(dict(r)) for r in rows]
        finally:
            conn.close()

    def get_current_rates(self, staff_id: str) -> ClinicalStaffRates | None:
        """The rate row with the latest effective date, or None."""
        rows = self.list_rates(staff_id)
        return rows[0] if rows else None

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def add_session(self, session: ClinicalSession, import_id: str = "") -> str:
        """Persist one session and return the assigned id.

        Raises ``sqlite3.Error`` when the insert fails (e.g. unknown staff id).
        """
        session_id = _new_id()
        conn = self._get_conn()
        try:
            _insert(conn, "clinical_sessions", _session_to_row(session, session_id, import_id))
            conn.commit()
        finally:
            conn.close()
        return session_id

    def get_session(self, session_id: str) -> ClinicalSession | None:
        conn = self._get_conn()
        try:
            row = conn.execute(
                "SELECT * FROM clinical_sessions WHERE id = ?", (session_id,)
            ).fetchone()
            return ClinicalSession.from_row(dict(row)) if row else None
        finally:
            conn.close()

    def update_session(self, session_id: str, **changes: Any) -> bool:
        """Update selected fields of a session.  Returns True if a row changed."""
        unknown = set(changes) - _SESSION_UPDATABLE
        if unknown:
            raise ValueError(f"Cannot update session fields: {sorted(unknown)}")
        if not changes:
            return False

        assignments: list[str] = []
        params: list[Any] = []
        for key, value in changes.items():
            column = "duration" if key == "duration_minutes" else key
            assignments.append(f"{column} = ?")
            params.append(_enum_str(value))
        params.append(session_id)

        conn = self._get_conn()
        try:
            result = conn.execute(
                f"UPDATE clinical_sessions SET {', '.join(assignments)} WHERE id = ?",
                params,
            )
            conn.commit()
            return result.rowcount > 0
        finally:
            conn.close()

    def delete_session(self, session_id: str) -> bool:
        conn = self._get_conn()
        try:
            result = conn.execute(
                "DELETE FROM clinical_sessions WHERE id = ?", (session_id,)
            )
            conn.commit()
            return result.rowcount > 0
        finally:
            conn.close()

    def list_sessions(
        self,
        month: Optional[int] = None,
        year: Optional[int] = None,
        staff_id: Optional[str] = None,
    ) -> list[ClinicalSession]:
        """Sessions filtered by period and/or staff member."""
        where, params = _period_clause(month, year)
        if staff_id:
            where = f"{where} AND staff_id = ?" if where else " WHERE staff_id = ?"
            params.append(staff_id)
        conn = self._get_conn()
        try:
            rows = conn.execute(
                f"SELECT * FROM clinical_sessions{where} ORDER BY created_at ASC",
                params,
            ).fetchall()
            return [ClinicalSession.from_row(dict(r)) for r in rows]
        finally:
            conn.close()

    def count_sessions(self, month: Optional[int] = None, year: Optional[int] = None) -> int:
        """Number of session rows (not units) in the period."""
        where, params = _period_clause(month, year)
        conn = self._get_conn()
        try:
            row = conn.execute(
                f"SELECT COUNT(*) AS cnt FROM clinical_sessions{where}", params
            ).fetchone()
            return dict(row)["cnt"]
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Revenue & overheads
    # ------------------------------------------------------------------

    def add_revenue_source(self, source: RevenueSource) -> str:
        source_id = source.id or _new_id()
        conn = self._get_conn()
        try:
            _insert(conn, "revenue_sources", {
                "id": source_id,
                "name": source.name,
                "quantity": float(source.quantity),
                "rate_per_unit": float(source.rate_per_unit),
                "month": source.month,
                "year": source.year,
                "created_at": _now_iso(),
            })
            conn.commit()
        finally:
            conn.close()
        return source_id

    def list_revenue_sources(
        self, month: Optional[int] = None, year: Optional[int] = None,
    ) -> list[RevenueSource]:
        where, params = _period_clause(month, year)
        conn = self._get_conn()
        try:
            rows = conn.execute(
                f"SELECT * FROM revenue_sources{where} ORDER BY name ASC", params
            ).fetchall()
            return [
                RevenueSource(
                    id=r["id"], name=r["name"], quantity=r["quantity"],
                    rate_per_unit=r["rate_per_unit"], month=r["month"], year=r["year"],
                )
                for r in rows
            ]
        finally:
            conn.close()

    def add_overhead(self, overhead: FixedOverhead) -> str:
        overhead_id = overhead.id or _new_id()
        conn = self._get_conn()
        try:
            _insert(conn, "fixed_overheads", {
                "id": overhead_id,
                "name": overhead.name,
                "monthly_cost": float(overhead.monthly_cost),
                "month": overhead.month,
                "year": overhead.year,
                "created_at": _now_iso(),
            })
            conn.commit()
        finally:
            conn.close()
        return overhead_id

    def list_overheads(
        self, month: Optional[int] = None, year: Optional[int] = None,
    ) -> list[FixedOverhead]:
        where, params = _period_clause(month, year)
        conn = self._get_conn()
        try:
            rows = conn.execute(
                f"SELECT * FROM fixed_overheads{where} ORDER BY name ASC", params
            ).fetchall()
            return [
                FixedOverhead(
                    id=r["id"], name=r["name"], monthly_cost=r["monthly_cost"],
                    month=r["month"], year=r["year"],
                )
                for r in rows
            ]
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Import Run Tracking
    # ------------------------------------------------------------------

    def record_import_run(
        self,
        *,
        source_file: str = "",
        month: int = 0,
        year: int = 0,
        rows_scanned: int = 0,
        sessions_extracted: int = 0,
        unresolved_names: list[str] | None = None,
        manual_mappings: dict[str, str] | None = None,
    ) -> str:
        """Open an import_runs entry and return its id."""
        import_id = _new_id()
        conn = self._get_conn()
        try:
            _insert(conn, "import_runs", {
                "import_id": import_id,
                "source_file": source_file,
                "month": month,
                "year": year,
                "rows_scanned": rows_scanned,
                "sessions_extracted": sessions_extracted,
                "unresolved_names": json.dumps(unresolved_names or [], ensure_ascii=False),
                "manual_mappings": json.dumps(manual_mappings or {}, ensure_ascii=False),
                "created_at": _now_iso(),
            })
            conn.commit()
        finally:
            conn.close()
        return import_id

    def complete_import_run(self, import_id: str, committed: int, failed: int) -> bool:
        """Stamp the outcome of an import run."""
        conn = self._get_conn()
        try:
            result = conn.execute(
                """UPDATE import_runs
                   SET sessions_committed = ?, sessions_failed = ?, completed_at = ?
                   WHERE import_id = ?""",
                (committed, failed, _now_iso(), import_id),
            )
            conn.commit()
            return result.rowcount > 0
        finally:
            conn.close()

    def list_import_runs(self, limit: int = 20) -> list[dict[str, Any]]:
        """Recent import runs, newest first, with JSON columns decoded."""
        conn = self._get_conn()
        try:
            rows = conn.execute(
                "SELECT * FROM import_runs ORDER BY created_at DESC LIMIT ?",
                (limit,),
            ).fetchall()
        finally:
            conn.close()
        runs = []
        for r in rows:
            run = dict(r)
            run["unresolved_names"] = json.loads(run["unresolved_names"] or "[]")
            run["manual_mappings"] = json.loads(run["manual_mappings"] or "{}")
            runs.append(run)
        return runs
