"""Staff Name Matcher for clinical session imports.

Resolves free-text staff names from an appointment spreadsheet (Hebrew,
English, or a mix of both, with or without a "Dr." title) to staff ids
from the clinic's staff directory.

A variation index is built fresh for every import run from the current
directory snapshot.  Each staff member registers several normalized
variations of their name:

    - full name                       "dr dana cohen"
    - name without honorific          "dana cohen"
    - cross-language honorific        "דר dana cohen"  (only if titled)
    - first token                     "dana"
    - last token                      "cohen"

Matching strategy (priority order, first hit wins):
    1. Exact           normalized name is an index key
    2. Stripped        honorific-stripped name is an index key
    3. Substring       an index key (3+ chars) contains / is contained in the name
    4. Word partial    a name token and a staff-name token contain one another
    5. Transliteration consonant skeletons contain one another
    6. No match        caller surfaces the name for manual mapping

This is a recall-oriented heuristic: false positives are possible.  The
ordering decides which of several plausible staff members wins, so it is
kept explicit in ``MATCH_STRATEGIES``.  Every result records the rule
that fired for the operator's review screen.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, Optional

from .config import MatchingConfig

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

MIN_TOKEN_LENGTH: int = 2
MIN_SUBSTRING_TOKEN_LENGTH: int = 3
MIN_SKELETON_LENGTH: int = 4

# Straight / curly quotes plus Hebrew geresh and gershayim.  "ד״ר" and
# "ד'ר" both collapse to "דר" once these are gone.
_QUOTES_RE = re.compile(r"[\"'`\u2018\u2019\u201C\u201D\u05F3\u05F4]")

# Anything that is not a word character, whitespace or a Hebrew letter.
_NON_NAME_CHARS_RE = re.compile(r"[^\w\s\u0590-\u05FF]")

_WHITESPACE_RE = re.compile(r"\s+")

# Applied to *normalized* text, so "Dr.", "ד״ר", "ד'ר" have already been
# reduced to "dr" / "דר".  A trailing space is required so that names
# like "Drake" or "דרור" are left alone.
_HONORIFIC_RE = re.compile(r"^(?:dr|דר|דוקטור)\s+", re.IGNORECASE)

_HONORIFIC_FORMS = ("dr", "דר")

_VOWELS_AND_SPACES_RE = re.compile(r"[aeiouy\s]")


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------

class MatchRule(Enum):
    """Describes how a spreadsheet name was matched to a staff member."""
    OVERRIDE = "override"
    EXACT = "exact"
    HONORIFIC_STRIPPED = "honorific_stripped"
    SUBSTRING = "substring"
    WORD_PARTIAL = "word_partial"
    TRANSLITERATION = "transliteration"
    NO_MATCH = "no_match"


@dataclass
class MatchResult:
    """Outcome of resolving one raw staff name.

    Attributes:
        raw_name: The name exactly as it appeared in the spreadsheet.
        normalized: The normalized form used for lookups.
        staff_id: Resolved staff id, or None when unmatched.
        rule: Which strategy produced the result.
        matched_on: The index key / token / skeleton that matched.
        notes: Human-readable explanation for the review screen.
    """
    raw_name: str
    normalized: str = ""
    staff_id: Optional[str] = None
    rule: MatchRule = MatchRule.NO_MATCH
    matched_on: str = ""
    notes: str = ""

    @property
    def matched(self) -> bool:
        return self.staff_id is not None


# ---------------------------------------------------------------------------
# Name normalization
# ---------------------------------------------------------------------------

def normalize_name(raw: object) -> str:
    """Normalize a staff name for comparison.

    Lowercases, removes quote characters (including Hebrew geresh /
    gershayim), drops anything that is not a word character, whitespace
    or Hebrew letter, and collapses whitespace.  Idempotent.

    Examples:
        >>> normalize_name("  Dr. Dana   Cohen ")
        'dr dana cohen'
        >>> normalize_name('ד"ר יוסי לוי')
        'דר יוסי לוי'
        >>> normalize_name("")
        ''
    """
    if raw is None:
        return ""
    text = _QUOTES_RE.sub("", str(raw)).lower()
    text = _NON_NAME_CHARS_RE.sub("", text)
    return _WHITESPACE_RE.sub(" ", text).strip()


def has_honorific(name: str) -> bool:
    """True when the (normalized) name starts with a recognized title."""
    return bool(_HONORIFIC_RE.match(normalize_name(name)))


def strip_honorific(name: str) -> str:
    """Return the normalized name with a leading "Dr." / "ד״ר" / "דוקטור" removed."""
    return _HONORIFIC_RE.sub("", normalize_name(name), count=1).strip()


def _consonant_skeleton(text: str) -> str:
    return _VOWELS_AND_SPACES_RE.sub("", text)


def _entry_name(entry) -> str:
    """Display name of a directory entry (StaffDirectoryEntry or StaffMember)."""
    name = getattr(entry, "display_name", None)
    if name is None:
        name = getattr(entry, "name", "")
    return str(name or "")


# ---------------------------------------------------------------------------
# Index builder
# ---------------------------------------------------------------------------

def _register(index: dict[str, str], variation: str, staff_id: str) -> None:
    previous = index.get(variation)
    if previous is not None and previous != staff_id:
        logger.debug(
            "Name variation '%s' reassigned from %s to %s",
            variation, previous, staff_id,
        )
    index[variation] = staff_id


def build_name_index(
    directory: Iterable,
    min_token_length: int = MIN_TOKEN_LENGTH,
) -> dict[str, str]:
    """Build the name-variation index: normalized token -> staff id.

    First and last name tokens are registered before full names, so a
    full name always maps to its own entry even when it equals another
    entry's token.  Within each pass, when two staff members produce the
    same variation, the later entry wins.

    Args:
        directory: Staff directory entries (``id`` + ``display_name``).
        min_token_length: Variations shorter than this are not registered.

    Returns:
        Dict mapping normalized name variations to staff ids.
    """
    full_names: list[tuple[str, list[str]]] = []
    name_tokens: list[tuple[str, list[str]]] = []
    for entry in directory:
        full = normalize_name(_entry_name(entry))
        if not full:
            continue
        stripped = strip_honorific(full)

        variations = [full, stripped]
        if stripped != full:
            variations.extend(f"{form} {stripped}" for form in _HONORIFIC_FORMS)
        full_names.append((entry.id, variations))

        tokens = stripped.split()
        edge_tokens = []
        if tokens:
            edge_tokens.append(tokens[0])
        if len(tokens) > 1:
            edge_tokens.append(tokens[-1])
        name_tokens.append((entry.id, edge_tokens))

    index: dict[str, str] = {}
    for staff_id, variations in name_tokens + full_names:
        for variation in variations:
            if len(variation) >= min_token_length:
                _register(index, variation, staff_id)
    return index


# ---------------------------------------------------------------------------
# Match strategies
# ---------------------------------------------------------------------------
# Each strategy takes the normalized candidate, the directory, the index
# and the thresholds, and returns (staff_id, matched_on) or None.

def _match_exact(candidate, directory, index, cfg):
    staff_id = index.get(candidate)
    return (staff_id, candidate) if staff_id is not None else None


def _match_honorific_stripped(candidate, directory, index, cfg):
    stripped = strip_honorific(candidate)
    if not stripped:
        return None
    staff_id = index.get(stripped)
    return (staff_id, stripped) if staff_id is not None else None


def _match_substring(candidate, directory, index, cfg):
    for token, staff_id in index.items():
        if len(token) < cfg.min_substring_token_length:
            continue
        if token in candidate or candidate in token:
            return staff_id, token
    return None


def _match_word_partial(candidate, directory, index, cfg):
    cand_tokens = [
        t for t in strip_honorific(candidate).split()
        if len(t) >= cfg.min_token_length
    ]
    if not cand_tokens:
        return None
    for entry in directory:
        staff_tokens = [
            t for t in normalize_name(_entry_name(entry)).split()
            if len(t) >= cfg.min_token_length
        ]
        for ct in cand_tokens:
            for st in staff_tokens:
                if ct in st or st in ct:
                    return entry.id, f"{ct}~{st}"
    return None


def _match_transliteration(candidate, directory, index, cfg):
    cand_skeleton = _consonant_skeleton(strip_honorific(candidate))
    if len(cand_skeleton) < cfg.min_skeleton_length:
        return None
    for entry in directory:
        staff_skeleton = _consonant_skeleton(strip_honorific(_entry_name(entry)))
        if len(staff_skeleton) < cfg.min_skeleton_length:
            continue
        if cand_skeleton in staff_skeleton or staff_skeleton in cand_skeleton:
            return entry.id, f"{cand_skeleton}~{staff_skeleton}"
    return None


MATCH_STRATEGIES: list[tuple[MatchRule, Callable]] = [
    (MatchRule.EXACT, _match_exact),
    (MatchRule.HONORIFIC_STRIPPED, _match_honorific_stripped),
    (MatchRule.SUBSTRING, _match_substring),
    (MatchRule.WORD_PARTIAL, _match_word_partial),
    (MatchRule.TRANSLITERATION, _match_transliteration),
]


def match_staff_name(
    raw_name: str,
    directory: list,
    index: dict[str, str],
    config: MatchingConfig | None = None,
) -> MatchResult:
    """Run the strategies in order and describe the first hit.

    Never raises for an unknown name; returns a NO_MATCH result instead.
    """
    cfg = config or MatchingConfig()
    raw = "" if raw_name is None else str(raw_name)
    candidate = normalize_name(raw)
    result = MatchResult(raw_name=raw, normalized=candidate)

    if not candidate:
        result.notes = "Empty name"
        return result

    for rule, strategy in MATCH_STRATEGIES:
        hit = strategy(candidate, directory, index, cfg)
        if hit is None:
            continue
        result.staff_id, result.matched_on = hit
        result.rule = rule
        result.notes = f"{rule.value} match on '{result.matched_on}'"
        logger.debug(
            "Staff name '%s' -> %s (%s on '%s')",
            raw, result.staff_id, rule.value, result.matched_on,
        )
        return result

    result.notes = f"No staff member matches '{raw}'"
    logger.debug("Staff name '%s' unresolved", raw)
    return result


def resolve_staff_id(
    raw_name: str,
    directory: list,
    index: dict[str, str],
    config: MatchingConfig | None = None,
) -> str | None:
    """Resolve a raw name to a staff id, or None when unmatched."""
    return match_staff_name(raw_name, directory, index, config).staff_id


# ---------------------------------------------------------------------------
# Matcher
# ---------------------------------------------------------------------------

class StaffMatcher:
    """Resolves spreadsheet staff names against one directory snapshot.

    Usage:
        matcher = StaffMatcher(directory)
        result = matcher.match("ד״ר דנה כהן")
        if result.matched:
            print(result.staff_id, result.rule.value)

        # Operator overrides bypass the heuristics entirely
        result = matcher.match("Unknown Doc", overrides={"Unknown Doc": "s-7"})
    """

    def __init__(
        self,
        directory: Iterable,
        config: MatchingConfig | None = None,
    ) -> None:
        self.directory = list(directory)
        self.config = config or MatchingConfig()
        self.index = build_name_index(self.directory, self.config.min_token_length)
        self.known_ids = {entry.id for entry in self.directory}

        logger.info(
            "StaffMatcher initialized: %d staff, %d name variations",
            len(self.directory),
            len(self.index),
        )

    def match(
        self,
        raw_name: str,
        overrides: dict[str, str] | None = None,
    ) -> MatchResult:
        """Resolve *raw_name*, consulting operator overrides first.

        Overrides are keyed by the exact raw spreadsheet string.
        """
        if overrides and raw_name in overrides:
            staff_id = overrides[raw_name]
            logger.debug("Staff name '%s' -> %s (override)", raw_name, staff_id)
            return MatchResult(
                raw_name=raw_name,
                normalized=normalize_name(raw_name),
                staff_id=staff_id,
                rule=MatchRule.OVERRIDE,
                matched_on=raw_name,
                notes="Assigned manually by operator",
            )
        return match_staff_name(raw_name, self.directory, self.index, self.config)

    def resolve(self, raw_name: str, overrides: dict[str, str] | None = None) -> str | None:
        return self.match(raw_name, overrides).staff_id
