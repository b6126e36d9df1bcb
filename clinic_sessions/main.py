"""Clinical Session Import -- Command Line Entry Point.

Runs a spreadsheet import without the Streamlit UI:

    1. Load configuration (config.yaml or defaults)
    2. Read the staff directory and rates from the SQLite store
    3. Decode the XLSX and detect staff names that need manual mapping
    4. Apply a YAML mapping file (``{spreadsheet name: staff id or name}``)
    5. Aggregate sessions and print them with a cost preview
    6. With ``--commit``, persist the sessions and print the commit report

Usage::

    # Preview March 2026 sessions
    python -m clinic_sessions.main --xlsx exports/march.xlsx --month 3 --year 2026

    # Resolve unknown names and commit
    python -m clinic_sessions.main --xlsx exports/march.xlsx --mapping mapping.yaml --commit

Exit codes:
    0  success (preview or full commit)
    1  processing error (missing file, corrupt workbook, bad mapping)
    2  staff names still need a mapping
    3  no sessions found
    4  commit finished with failures
"""

from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Optional

import yaml

from .config import LoggingConfig, SessionImportConfig, get_config
from .financials import ClinicalCostSummary
from .importer import (
    CommitReport,
    ImportProcessingError,
    ImportState,
    NoSessionsFoundError,
    SessionImporter,
)
from .models import ClinicalSession
from .name_matcher import normalize_name
from .pricing import current_rates_by_staff
from .session_store import SessionStore

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_UNMAPPED = 2
EXIT_NO_SESSIONS = 3
EXIT_PARTIAL_COMMIT = 4


# ---------------------------------------------------------------------------
# Run Result
# ---------------------------------------------------------------------------

@dataclass
class ImportRunResult:
    """Container for one CLI import run."""

    state: ImportState = ImportState.IDLE
    source_file: str = ""
    month: int = 0
    year: int = 0

    sessions: list[ClinicalSession] = field(default_factory=list)
    unresolved_names: list[str] = field(default_factory=list)
    pending_names: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    staff_names: dict[str, str] = field(default_factory=dict)

    cost_summary: ClinicalCostSummary | None = None
    commit_report: CommitReport | None = None

    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def duration_seconds(self) -> float:
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return 0.0

    @property
    def exit_code(self) -> int:
        if self.state is ImportState.AWAITING_MANUAL_MAPPING:
            return EXIT_UNMAPPED
        if self.commit_report is not None and not self.commit_report.is_complete:
            return EXIT_PARTIAL_COMMIT
        return EXIT_OK


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _configure_logging(log_cfg: LoggingConfig, verbose: bool) -> None:
    level = logging.DEBUG if verbose else log_cfg.level_number
    logging.basicConfig(level=level, format=log_cfg.format, datefmt=log_cfg.datefmt)
    if log_cfg.log_file:
        log_path = Path(log_cfg.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(log_path, encoding="utf-8")
        handler.setFormatter(logging.Formatter(log_cfg.format, log_cfg.datefmt))
        logging.getLogger().addHandler(handler)


def load_mapping_file(path: str | Path) -> dict[str, str]:
    """Read ``{spreadsheet name: staff id or staff name}`` from YAML."""
    mapping_path = Path(path)
    if not mapping_path.exists():
        raise FileNotFoundError(f"Mapping file not found: {mapping_path}")
    with open(mapping_path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Mapping file must contain a name -> staff mapping: {mapping_path}")
    return {str(k).strip(): str(v).strip() for k, v in data.items() if v is not None}


def _resolve_mapping_targets(mapping: dict[str, str], directory: list) -> dict[str, str]:
    """Allow mapping values to be staff names as well as ids."""
    ids = {entry.id for entry in directory}
    by_name = {normalize_name(entry.display_name): entry.id for entry in directory}
    resolved: dict[str, str] = {}
    for excel_name, target in mapping.items():
        if target in ids:
            resolved[excel_name] = target
        else:
            resolved[excel_name] = by_name.get(normalize_name(target), target)
    return resolved


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

def run_import(
    xlsx_path: str | Path,
    *,
    month: Optional[int] = None,
    year: Optional[int] = None,
    db_path: Optional[str | Path] = None,
    mapping_path: Optional[str | Path] = None,
    commit: bool = False,
    config: SessionImportConfig | None = None,
) -> ImportRunResult:
    """Run one import end to end.

    Raises:
        FileNotFoundError: XLSX or mapping file missing.
        ImportProcessingError: the workbook could not be processed.
        NoSessionsFoundError: nothing to import after mapping.
        ValueError: a mapping names an unknown staff id.
    """
    cfg = config or get_config()
    today = date.today()
    result = ImportRunResult(
        started_at=datetime.now(),
        source_file=str(xlsx_path),
        month=month or cfg.period.month or today.month,
        year=year or cfg.period.year or today.year,
    )

    store = SessionStore(db_path or cfg.storage.resolved_db_path)
    directory = store.get_directory()
    result.staff_names = {entry.id: entry.display_name for entry in directory}
    logger.info("Loaded %d active staff from %s", len(directory), store.db_path)

    importer = SessionImporter(directory, result.month, result.year, config=cfg)
    state = importer.load(xlsx_path)
    result.unresolved_names = importer.unresolved_names

    if state is ImportState.AWAITING_MANUAL_MAPPING and mapping_path:
        mapping = _resolve_mapping_targets(load_mapping_file(mapping_path), directory)
        relevant = {k: v for k, v in mapping.items() if k in importer.pending_names}
        ignored = set(mapping) - set(relevant)
        if ignored:
            logger.info("Mapping entries not needed for this file: %s", sorted(ignored))
        if relevant:
            state = importer.submit_mappings(relevant)

    result.state = state
    result.pending_names = importer.pending_names
    result.warnings = importer.warnings

    if state is ImportState.AWAITING_CONFIRMATION:
        result.sessions = list(importer.sessions)
        rates = current_rates_by_staff(store.list_rates())
        result.cost_summary = importer.cost_preview(rates)

        if commit:
            result.commit_report = importer.confirm(store)
            result.state = importer.state

    result.completed_at = datetime.now()
    return result


def _print_run_summary(result: ImportRunResult) -> None:
    """Print a human-readable summary of the import run."""
    print()
    print("=" * 72)
    print("  Clinical Session Import -- Summary")
    print("=" * 72)
    print(f"  Source file       : {result.source_file}")
    print(f"  Period            : {result.month:02d}/{result.year}")
    print(f"  State             : {result.state.value}")
    print(f"  Unresolved names  : {len(result.unresolved_names)}")

    if result.pending_names:
        print("-" * 72)
        print("  Names needing a mapping (add them to --mapping):")
        for name in result.pending_names:
            print(f"    - {name}")

    if result.sessions:
        print("-" * 72)
        print(f"  Sessions ({len(result.sessions)}):")
        for s in result.sessions:
            staff = result.staff_names.get(s.staff_id, s.staff_id)
            print(
                f"    {staff:<24.24s} {s.clinic_type.value:<4s} "
                f"{s.meeting_type.value:<9s} {s.show_status.value:<7s} "
                f"{s.duration_minutes:>4d}m x{s.count:<3d}"
            )

    if result.cost_summary is not None:
        summary = result.cost_summary
        print("-" * 72)
        print(f"  Total units       : {summary.total_sessions}")
        print(f"  Total minutes     : {summary.total_minutes}")
        print(f"  Estimated cost    : {summary.total_cost:,.2f}")
        for staff_id in summary.missing_rates:
            print(f"  WARNING: rates missing for {result.staff_names.get(staff_id, staff_id)}")

    if result.warnings:
        print("-" * 72)
        for w in result.warnings:
            print(f"  - {w}")

    if result.commit_report is not None:
        print("-" * 72)
        print(f"  {result.commit_report.summary()}")
        for failure in result.commit_report.failures:
            print(f"    FAILED {failure.session.staff_id}: {failure.error}")
    print("=" * 72)


# ---------------------------------------------------------------------------
# CLI Entry Point
# ---------------------------------------------------------------------------

def main() -> int:
    """CLI entry point for the clinical session import.

    Returns:
        Exit code (see module docstring).
    """
    parser = argparse.ArgumentParser(
        description="Clinical Session Import - load appointment exports into the clinic database",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  python -m clinic_sessions.main --xlsx march.xlsx --month 3 --year 2026\n"
            "  python -m clinic_sessions.main --xlsx march.xlsx --mapping mapping.yaml --commit\n"
        ),
    )
    parser.add_argument("--xlsx", type=str, required=True,
                        help="Path to the appointments XLSX export")
    parser.add_argument("--month", type=int, default=None,
                        help="Month stamped on the sessions (default: config or current)")
    parser.add_argument("--year", type=int, default=None,
                        help="Year stamped on the sessions (default: config or current)")
    parser.add_argument("--db", type=str, default=None,
                        help="SQLite database path (overrides config)")
    parser.add_argument("--mapping", type=str, default=None,
                        help="YAML file mapping spreadsheet names to staff ids or names")
    parser.add_argument("--commit", action="store_true",
                        help="Persist the sessions (default: preview only)")
    parser.add_argument("--config", type=str, default=None,
                        help="Path to config.yaml (default: project root config.yaml)")
    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Enable verbose (DEBUG) logging")

    args = parser.parse_args()

    cfg = get_config(args.config)
    _configure_logging(cfg.logging, args.verbose)

    try:
        result = run_import(
            args.xlsx,
            month=args.month,
            year=args.year,
            db_path=args.db,
            mapping_path=args.mapping,
            commit=args.commit,
            config=cfg,
        )
    except NoSessionsFoundError as exc:
        logger.error("No sessions: %s", exc)
        print(f"\nNO SESSIONS FOUND: {exc}")
        return EXIT_NO_SESSIONS
    except (FileNotFoundError, ImportProcessingError) as exc:
        logger.error("Import failed: %s", exc)
        print(f"\nERROR: {exc}")
        return EXIT_ERROR
    except ValueError as exc:
        logger.error("Data error: %s", exc)
        print(f"\nERROR: {exc}")
        return EXIT_ERROR
    except Exception as exc:
        logger.exception("Unexpected error during import")
        print(f"\nUNEXPECTED ERROR: {exc}")
        return EXIT_ERROR

    _print_run_summary(result)
    if result.state is ImportState.AWAITING_CONFIRMATION:
        print("\nPreview only -- re-run with --commit to save these sessions.")
    return result.exit_code


if __name__ == "__main__":
    sys.exit(main())
