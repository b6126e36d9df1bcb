"""
Clinical Session Import -- Configuration Module

Centralizes configuration for the session import engine.
Loads defaults from dataclasses, then overlays any overrides from config.yaml.

Usage:
    from clinic_sessions.config import get_config
    cfg = get_config()                         # loads config.yaml if present
    cfg = get_config("path/to/custom.yaml")    # loads a specific file
    print(cfg.extraction.default_duration_minutes)   # 60
    print(cfg.storage.resolved_db_path)              # <project>/clinic_sessions.db
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

# ---------------------------------------------------------------------------
# Path constants -- everything relative to the project root
# ---------------------------------------------------------------------------
_THIS_DIR = Path(__file__).resolve().parent          # clinic_sessions/
PROJECT_ROOT = _THIS_DIR.parent                       # repository root
DEFAULT_CONFIG_PATH = PROJECT_ROOT / "config.yaml"


# ===================================================================
# 1. Row extraction
# ===================================================================

@dataclass
class ExtractionConfig:
    """Defaults applied when a spreadsheet row lacks a usable value."""
    default_duration_minutes: int = 60
    # Spreadsheets carry no age-group signal; every row is billed as Adult.
    default_age_group: str = "Adult"


# ===================================================================
# 2. Staff name matching
# ===================================================================

@dataclass
class MatchingConfig:
    """Length thresholds for the staff-name matcher."""
    min_token_length: int = 2              # shorter index tokens are not registered
    min_substring_token_length: int = 3    # shorter tokens skipped in substring pass
    min_skeleton_length: int = 4           # consonant skeletons must be at least this long


# ===================================================================
# 3. Storage
# ===================================================================

@dataclass
class StorageConfig:
    """SQLite database location (relative to project root unless absolute)."""
    db_path: str = "clinic_sessions.db"

    @property
    def resolved_db_path(self) -> Path:
        p = Path(self.db_path)
        if not p.is_absolute():
            p = PROJECT_ROOT / p
        return p


# ===================================================================
# 4. Logging
# ===================================================================

@dataclass
class LoggingConfig:
    level: str = "INFO"
    format: str = "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s"
    datefmt: str = "%H:%M:%S"
    log_file: str = ""          # empty = console only

    @property
    def level_number(self) -> int:
        level = logging.getLevelName(str(self.level).upper())
        return level if isinstance(level, int) else logging.INFO


# ===================================================================
# 5. Reporting period
# ===================================================================

@dataclass
class PeriodConfig:
    """Default month/year stamped on imported sessions.  None = today."""
    month: Optional[int] = None
    year: Optional[int] = None


# ===================================================================
# Master Config
# ===================================================================

@dataclass
class SessionImportConfig:
    """Top-level configuration container for the session import engine."""
    extraction: ExtractionConfig = field(default_factory=ExtractionConfig)
    matching: MatchingConfig = field(default_factory=MatchingConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    period: PeriodConfig = field(default_factory=PeriodConfig)


# ===================================================================
# YAML Loading
# ===================================================================

def _apply_yaml_to_config(cfg: SessionImportConfig, data: dict) -> None:
    """Apply a parsed YAML dict onto a SessionImportConfig instance.

    Unknown sections and keys are ignored.
    """
    _section_map = {
        "extraction": cfg.extraction,
        "matching": cfg.matching,
        "storage": cfg.storage,
        "logging": cfg.logging,
        "period": cfg.period,
    }

    for section_key, section_obj in _section_map.items():
        if section_key in data and isinstance(data[section_key], dict):
            for attr, val in data[section_key].items():
                if hasattr(section_obj, attr):
                    setattr(section_obj, attr, val)


def get_config(yaml_path: Optional[str | Path] = None) -> SessionImportConfig:
    """Build a SessionImportConfig, optionally overlaying values from a YAML file.

    Args:
        yaml_path: Path to a config.yaml file.  If None, looks for the
                   default config.yaml at the project root.  If that file
                   doesn't exist, returns pure defaults.

    Returns:
        Fully populated SessionImportConfig instance.
    """
    cfg = SessionImportConfig()

    path = Path(yaml_path) if yaml_path else DEFAULT_CONFIG_PATH
    if path.exists():
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        _apply_yaml_to_config(cfg, data)

    return cfg
