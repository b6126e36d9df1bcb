"""Import Orchestrator -- two-pass spreadsheet import with manual mapping.

State machine::

    IDLE -> EXTRACTING_RAW -+-> AWAITING_MANUAL_MAPPING -+
                            |                            |  (mapping complete)
                            +----------------------------+-> EXTRACTING_FINAL
                                                               |
                               AWAITING_CONFIRMATION <---------+
                                       |
                                       +-> COMMITTED

* EXTRACTING_RAW decodes the file and runs a DETECT pass to find staff
  names the matcher cannot resolve.
* AWAITING_MANUAL_MAPPING waits until *every* unresolved name has been
  assigned a staff id; partial mappings keep the importer parked.
* EXTRACTING_FINAL runs a COMMIT pass with the operator's overrides and
  aggregates the candidates into canonical sessions.
* AWAITING_CONFIRMATION holds the sessions for review.
* ``confirm`` hands the sessions to the store one by one and returns a
  ``CommitReport`` naming any that failed.

A decode or extraction failure resets the importer to IDLE and raises
``ImportProcessingError``.  A run that yields zero sessions resets to
IDLE and raises ``NoSessionsFoundError``.  Calling an operation in the
wrong state raises ``ValueError``.

Usage::

    importer = SessionImporter(store.get_directory(), month=3, year=2026)
    state = importer.load("appointments.xlsx")
    if state is ImportState.AWAITING_MANUAL_MAPPING:
        for name in importer.pending_names:
            importer.assign(name, pick_staff_id(name))
    report = importer.confirm(store)
    print(report.summary())
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Iterable, NoReturn, Protocol

from .aggregator import aggregate_sessions
from .config import SessionImportConfig, get_config
from .data_loader import read_first_sheet
from .financials import ClinicalCostSummary, summarize_clinical_costs
from .models import ClinicalSession, StaffNameMapping
from .name_matcher import MatchResult, StaffMatcher
from .row_extractor import ExtractionMode, ExtractionResult, extract_rows

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# States & errors
# ---------------------------------------------------------------------------

class ImportState(Enum):
    IDLE = "idle"
    EXTRACTING_RAW = "extracting_raw"
    AWAITING_MANUAL_MAPPING = "awaiting_manual_mapping"
    EXTRACTING_FINAL = "extracting_final"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    COMMITTED = "committed"


class SessionImportError(Exception):
    """Base class for import failures reported to the operator."""


class ImportProcessingError(SessionImportError):
    """The spreadsheet could not be decoded or processed."""


class NoSessionsFoundError(SessionImportError):
    """Extraction finished but produced no sessions."""


class SessionSink(Protocol):
    """What ``confirm`` needs from the persistence store."""

    def add_session(self, session: ClinicalSession, import_id: str = "") -> str: ...


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------

@dataclass
class StateTransition:
    from_state: ImportState
    to_state: ImportState
    reason: str = ""
    at: datetime = field(default_factory=datetime.now)


@dataclass
class CommitFailure:
    session: ClinicalSession
    error: str


@dataclass
class CommitReport:
    """Outcome of handing the confirmed sessions to the store.

    Sessions are submitted independently, so a failure part-way leaves
    the earlier sessions persisted.  ``failures`` lists what was not.
    """
    total: int = 0
    committed_ids: list[str] = field(default_factory=list)
    failures: list[CommitFailure] = field(default_factory=list)
    import_id: str = ""

    @property
    def committed_count(self) -> int:
        return len(self.committed_ids)

    @property
    def failed_count(self) -> int:
        return len(self.failures)

    @property
    def is_complete(self) -> bool:
        return not self.failures and self.committed_count == self.total

    def summary(self) -> str:
        text = f"Committed {self.committed_count} of {self.total} sessions"
        if self.failures:
            text += f"; {self.failed_count} failed"
        return text


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

class SessionImporter:
    """Drives one spreadsheet import from file selection to commit.

    Each instance owns one directory snapshot; the name index is rebuilt
    on every ``load`` so directory edits between runs are picked up by
    creating a new importer (or calling ``reset`` with a new directory).
    """

    def __init__(
        self,
        directory: Iterable,
        month: int,
        year: int,
        *,
        config: SessionImportConfig | None = None,
        decoder: Callable[[Any], list[dict[str, Any]]] = read_first_sheet,
    ) -> None:
        if not 1 <= int(month) <= 12:
            raise ValueError(f"Month must be 1-12, got {month}")
        self.directory = list(directory)
        self.month = int(month)
        self.year = int(year)
        self.config = config or get_config()
        self._decoder = decoder

        self.state = ImportState.IDLE
        self.history: list[StateTransition] = []
        self.last_error = ""
        self._clear_run_data()

    # ------------------------------------------------------------------
    # Run data
    # ------------------------------------------------------------------

    def _clear_run_data(self) -> None:
        self.source_name = ""
        self._rows: list[dict[str, Any]] = []
        self.matcher: StaffMatcher | None = None
        self.detection: ExtractionResult | None = None
        self.extraction: ExtractionResult | None = None
        self.mappings: dict[str, str] = {}
        self.sessions: list[ClinicalSession] = []
        self.commit_report: CommitReport | None = None

    @property
    def unresolved_names(self) -> list[str]:
        """Distinct names the matcher could not resolve in the detection pass."""
        return list(self.detection.unresolved_names) if self.detection else []

    @property
    def pending_names(self) -> list[str]:
        """Unresolved names still waiting for an operator assignment."""
        return [n for n in self.unresolved_names if n not in self.mappings]

    @property
    def match_results(self) -> dict[str, MatchResult]:
        """Raw name -> match diagnostics from the detection pass."""
        return dict(self.detection.matches) if self.detection else {}

    @property
    def warnings(self) -> list[str]:
        source = self.extraction or self.detection
        return list(source.warnings) if source else []

    # ------------------------------------------------------------------
    # State helpers
    # ------------------------------------------------------------------

    def _transition(self, new_state: ImportState, reason: str = "") -> None:
        self.history.append(StateTransition(self.state, new_state, reason))
        logger.info(
            "Import state: %s -> %s%s",
            self.state.value, new_state.value, f" ({reason})" if reason else "",
        )
        self.state = new_state

    def _require(self, action: str, *states: ImportState) -> None:
        if self.state not in states:
            raise ValueError(
                f"Cannot {action} while import is {self.state.value}; "
                f"expected {' or '.join(s.value for s in states)}"
            )

    def _fail(self, exc: Exception) -> NoReturn:
        self.last_error = str(exc)
        logger.exception("Import of '%s' failed", self.source_name or "<buffer>")
        self._transition(ImportState.IDLE, "processing error")
        raise ImportProcessingError(f"Could not process spreadsheet: {exc}") from exc

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def load(self, source: Any, source_name: str = "") -> ImportState:
        """Decode *source* and run the detection pass.

        Returns the resulting state: AWAITING_MANUAL_MAPPING when some
        names need an operator, otherwise AWAITING_CONFIRMATION.
        """
        self._require("load a file", ImportState.IDLE)
        self._clear_run_data()
        self.last_error = ""
        if not source_name and isinstance(source, (str, Path)):
            source_name = Path(source).name
        self.source_name = source_name or getattr(source, "name", "") or ""

        self._transition(ImportState.EXTRACTING_RAW, "file selected")
        try:
            self._rows = self._decoder(source)
            self.matcher = StaffMatcher(self.directory, self.config.matching)
            self.detection = extract_rows(
                self._rows,
                self.matcher,
                mode=ExtractionMode.DETECT,
                month=self.month,
                year=self.year,
                config=self.config,
            )
        except Exception as exc:
            self._fail(exc)

        if self.detection.unresolved_names:
            self._transition(
                ImportState.AWAITING_MANUAL_MAPPING,
                f"{len(self.detection.unresolved_names)} unresolved staff names",
            )
            return self.state
        return self._run_final_pass()

    def assign(self, excel_name: str, staff_id: str) -> ImportState:
        """Assign one unresolved name; runs the final pass once none remain."""
        return self.submit_mappings({excel_name: staff_id})

    def submit_mappings(
        self,
        mappings: dict[str, str] | Iterable[StaffNameMapping],
    ) -> ImportState:
        """Apply operator mappings.

        All mappings are validated before any is applied.  The importer
        stays in AWAITING_MANUAL_MAPPING until every unresolved name has
        an assignment.
        """
        self._require("apply staff mappings", ImportState.AWAITING_MANUAL_MAPPING)
        if isinstance(mappings, dict):
            pairs = list(mappings.items())
        else:
            pairs = [(m.excel_name, m.system_staff_id) for m in mappings]

        unresolved = set(self.unresolved_names)
        for excel_name, staff_id in pairs:
            if excel_name not in unresolved:
                raise ValueError(f"'{excel_name}' is not an unresolved staff name")
            if staff_id not in self.matcher.known_ids:
                raise ValueError(f"Unknown staff id '{staff_id}' for '{excel_name}'")

        for excel_name, staff_id in pairs:
            self.mappings[excel_name] = staff_id
            logger.info("Mapped '%s' -> %s", excel_name, staff_id)

        pending = self.pending_names
        if pending:
            logger.info("%d staff names still unmapped", len(pending))
            return self.state
        return self._run_final_pass()

    def _run_final_pass(self) -> ImportState:
        self._transition(ImportState.EXTRACTING_FINAL)
        try:
            self.extraction = extract_rows(
                self._rows,
                self.matcher,
                mode=ExtractionMode.COMMIT,
                overrides=self.mappings or None,
                month=self.month,
                year=self.year,
                config=self.config,
            )
            self.sessions = aggregate_sessions(self.extraction.candidates)
        except Exception as exc:
            self._fail(exc)

        if not self.sessions:
            self.last_error = "No sessions found in the spreadsheet"
            self._transition(ImportState.IDLE, "no sessions found")
            raise NoSessionsFoundError(
                f"No sessions found in '{self.source_name or 'spreadsheet'}' "
                f"({self.extraction.rows_scanned} rows scanned)"
            )

        self._transition(
            ImportState.AWAITING_CONFIRMATION,
            f"{len(self.sessions)} sessions ready",
        )
        return self.state

    def cost_preview(self, rates: Any) -> ClinicalCostSummary:
        """Price the pending sessions; missing rates are reported, not raised."""
        self._require(
            "preview costs", ImportState.AWAITING_CONFIRMATION, ImportState.COMMITTED,
        )
        return summarize_clinical_costs(self.sessions, rates)

    def confirm(self, store: SessionSink) -> CommitReport:
        """Persist the sessions one at a time and report the outcome."""
        self._require("confirm", ImportState.AWAITING_CONFIRMATION)
        report = CommitReport(total=len(self.sessions))

        record_run = getattr(store, "record_import_run", None)
        if callable(record_run):
            report.import_id = record_run(
                source_file=self.source_name,
                month=self.month,
                year=self.year,
                rows_scanned=self.extraction.rows_scanned if self.extraction else 0,
                sessions_extracted=len(self.sessions),
                unresolved_names=self.unresolved_names,
                manual_mappings=dict(self.mappings),
            )

        for session in self.sessions:
            try:
                session.id = store.add_session(session, import_id=report.import_id)
            except Exception as exc:
                logger.exception(
                    "Failed to persist session for staff %s (%s/%s, x%d)",
                    session.staff_id, session.meeting_type.value,
                    session.show_status.value, session.count,
                )
                report.failures.append(CommitFailure(session=session, error=str(exc)))
                continue
            report.committed_ids.append(session.id)

        complete_run = getattr(store, "complete_import_run", None)
        if report.import_id and callable(complete_run):
            complete_run(report.import_id, report.committed_count, report.failed_count)

        if report.failures:
            logger.warning("Partial commit: %s", report.summary())
        self.commit_report = report
        self._transition(ImportState.COMMITTED, report.summary())
        return report

    def reset(self, directory: Iterable | None = None) -> None:
        """Drop the current run and return to IDLE, optionally with a new directory."""
        if directory is not None:
            self.directory = list(directory)
        self._clear_run_data()
        if self.state is not ImportState.IDLE:
            self._transition(ImportState.IDLE, "reset")
