"""Clinical Session Import - XLSX Data Loader.

Decodes an appointment export workbook into plain row dicts for the row
extractor.  Only the first worksheet is read; row 1 is the header row.

Supported data sources
~~~~~~~~~~~~~~~~~~~~~~
* **File path** -- local ``.xlsx`` file exported from the scheduling system.
* **Bytes** -- raw file contents (``bytes``), e.g. an HTTP download.
* **Bytes buffer** -- ``io.BytesIO`` or a Streamlit ``UploadedFile``.

Usage::

    from clinic_sessions.data_loader import read_first_sheet

    rows = read_first_sheet("exports/appointments_2026_03.xlsx")
    print(rows[0]["שם מטפל"])

The module also hosts the cell coercion helpers (``clean_str``,
``parse_number``, ``parse_minutes``, ``parse_datetime``) shared by the row
extractor.
"""

from __future__ import annotations

import io
import logging
import math
import re
from datetime import date, datetime, time, timedelta
from pathlib import Path
from typing import IO, Any, Union

import openpyxl
from openpyxl.utils.datetime import from_excel
from openpyxl.workbook import Workbook

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Cell values that should be treated as null / unknown.
_NULL_SIGNALS: set[str | None] = {"", "#N/A", "N/A", "#REF!", "-", None}

_NUMBER_RE = re.compile(r"-?\d+(?:[.,]\d+)?")

# "1:30", "0:45:00" -- hours and minutes (optionally seconds)
_CLOCK_DURATION_RE = re.compile(r"(\d+):([0-5]\d)(?::([0-5]\d))?")

# Time-only cells are anchored to this date so that differences work.
_TIME_ANCHOR = date(1900, 1, 1)

_DATETIME_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%dT%H:%M",
    "%d/%m/%Y %H:%M:%S",
    "%d/%m/%Y %H:%M",
    "%d.%m.%Y %H:%M",
    "%d/%m/%Y",
    "%Y-%m-%d",
)

_TIME_FORMATS = ("%H:%M:%S", "%H:%M")

Source = Union[str, Path, bytes, IO[bytes]]


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def read_first_sheet(source: Source) -> list[dict[str, Any]]:
    """Decode the first worksheet into a list of ``{header: cell}`` dicts.

    Parameters
    ----------
    source:
        File path (``str`` or ``Path``), raw ``bytes``, or a readable
        bytes buffer.

    Returns
    -------
    list[dict]
        One dict per non-empty data row.  Header text is stripped; columns
        with an empty header are ignored; when a header repeats, the first
        column wins.

    Raises
    ------
    FileNotFoundError
        When *source* is a path that does not exist.
    Exception
        Whatever openpyxl raises for corrupt or non-xlsx content.
    """
    wb = _open_workbook(source)
    try:
        if not wb.worksheets:
            return []
        ws = wb.worksheets[0]
        rows_iter = ws.iter_rows(values_only=True)

        header_row = next(rows_iter, None)
        if header_row is None:
            logger.warning("Worksheet '%s' is empty", ws.title)
            return []
        columns = _header_columns(header_row)

        rows: list[dict[str, Any]] = []
        empty_rows = 0
        for values in rows_iter:
            record = {
                header: values[idx]
                for idx, header in columns
                if idx < len(values)
            }
            if all(_is_blank(v) for v in record.values()):
                empty_rows += 1
                continue
            rows.append(record)

        logger.info(
            "Read %d rows from sheet '%s' (%d columns, %d empty rows skipped)",
            len(rows), ws.title, len(columns), empty_rows,
        )
        return rows
    finally:
        wb.close()


# ---------------------------------------------------------------------------
# Workbook opening
# ---------------------------------------------------------------------------

def _open_workbook(source: Source) -> Workbook:
    """Open an openpyxl Workbook from a file path, bytes, or bytes buffer."""
    if isinstance(source, (str, Path)):
        path = Path(source)
        if not path.exists():
            raise FileNotFoundError(f"XLSX file not found: {path}")
        logger.info("Opening XLSX file: %s", path)
        return openpyxl.load_workbook(path, data_only=True, read_only=False)

    if isinstance(source, (bytes, bytearray)):
        source = io.BytesIO(source)

    logger.info("Opening XLSX from bytes buffer")
    return openpyxl.load_workbook(source, data_only=True, read_only=False)


def _header_columns(header_row: tuple) -> list[tuple[int, str]]:
    """Return ``(column index, header text)`` for every usable header cell."""
    columns: list[tuple[int, str]] = []
    seen: set[str] = set()
    for idx, value in enumerate(header_row):
        if value is None:
            continue
        header = str(value).strip()
        if not header:
            continue
        if header in seen:
            logger.debug("Duplicate header '%s' in column %d ignored", header, idx + 1)
            continue
        seen.add(header)
        columns.append((idx, header))
    return columns


def _is_blank(val: Any) -> bool:
    return val is None or (isinstance(val, str) and not val.strip())


# ---------------------------------------------------------------------------
# Data cleaning / type coercion helpers
# ---------------------------------------------------------------------------

def clean_str(val: Any) -> str:
    """Convert a cell value to a stripped string.  Nullish becomes ``""``."""
    if val is None:
        return ""
    if isinstance(val, float) and math.isnan(val):
        return ""
    s = str(val).strip()
    return "" if s in _NULL_SIGNALS else s


def parse_number(val: Any) -> float | None:
    """Parse a numeric cell value.

    Handles ints/floats from openpyxl and text such as ``"45"``,
    ``"45 דק'"`` or ``"1,5"``.  Returns None when no number is present.
    """
    if val is None or isinstance(val, bool):
        return None
    if isinstance(val, (int, float)):
        return None if math.isnan(val) else float(val)

    m = _NUMBER_RE.search(str(val))
    if not m:
        return None
    try:
        return float(m.group(0).replace(",", "."))
    except ValueError:
        return None


def parse_datetime(val: Any) -> datetime | None:
    """Parse a start/end time cell into a ``datetime``.

    openpyxl returns ``datetime`` or ``time`` objects for typed cells.
    Excel serial numbers (day fractions for time-only cells) and common
    text formats are handled too.  Time-only values are anchored to a
    fixed date.  Returns None when the value cannot be parsed.
    """
    if val is None or isinstance(val, bool):
        return None

    if isinstance(val, datetime):
        return val
    if isinstance(val, date):
        return datetime.combine(val, time())
    if isinstance(val, time):
        return datetime.combine(_TIME_ANCHOR, val)

    if isinstance(val, (int, float)):
        if math.isnan(val) or val < 0:
            return None
        try:
            return parse_datetime(from_excel(val))
        except (ValueError, OverflowError):
            return None

    s = str(val).strip()
    if not s:
        return None
    for fmt in _DATETIME_FORMATS:
        try:
            return datetime.strptime(s, fmt)
        except ValueError:
            continue
    for fmt in _TIME_FORMATS:
        try:
            return datetime.combine(_TIME_ANCHOR, datetime.strptime(s, fmt).time())
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(s)
    except ValueError:
        return None


def minutes_between(start: Any, end: Any) -> int | None:
    """Whole minutes from *start* to *end*, or None if either cannot be parsed.

    Timezone-aware and naive values are compared after dropping tzinfo.
    """
    start_dt = parse_datetime(start)
    end_dt = parse_datetime(end)
    if start_dt is None or end_dt is None:
        return None
    delta = end_dt.replace(tzinfo=None) - start_dt.replace(tzinfo=None)
    return round_half_up(delta.total_seconds() / 60)


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves upward (44.5 -> 45)."""
    return math.floor(value + 0.5)


def parse_minutes(val: Any) -> float | None:
    """Parse a duration cell into minutes.

    ``time`` and ``timedelta`` cells (openpyxl returns these for ``h:mm``
    formatted cells) and ``"H:MM"`` text are read as hours and minutes.
    Anything else is parsed as a plain number of minutes.
    """
    if isinstance(val, timedelta):
        return val.total_seconds() / 60
    if isinstance(val, time):
        return val.hour * 60 + val.minute + val.second / 60
    if isinstance(val, str):
        m = _CLOCK_DURATION_RE.fullmatch(val.strip())
        if m:
            hours, minutes, seconds = m.groups()
            return int(hours) * 60 + int(minutes) + int(seconds or 0) / 60
    return parse_number(val)
