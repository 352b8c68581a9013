"""
codemem Configuration

Configuration dataclasses for codemem: scope storage, retrieval clamps,
code indexing, and context enrichment.  Includes load_config() for reading
a JSON config file with silent fallback to compiled defaults.

Author: Olivier Vitrac, PhD, HDR | olivier.vitrac@adservio.fr | Adservio
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class ValidationError(ValueError):
    """Raised when config values are out of valid range."""

    pass


def _check_range(
    errors: List[str], name: str, value, lo, hi, typ=None,
) -> None:
    """Append an error message if value is out of [lo, hi] or wrong type."""
    if typ is not None and not isinstance(value, typ):
        errors.append(f"{name}: expected {typ.__name__}, got {type(value).__name__}")
        return
    if value < lo or value > hi:
        errors.append(f"{name}: {value} not in [{lo}, {hi}]")


def default_db_root() -> str:
    """XDG data directory for scope databases."""
    base = os.environ.get("XDG_DATA_HOME") or str(Path.home() / ".local" / "share")
    return str(Path(base) / "codemem" / "db")


@dataclass
class StoreConfig:
    """Scope storage configuration.

    One SQLite file per scope lives under ``db_root``; the project scope's
    file is named after the base name of ``workspace``.
    """
    db_root: str = field(default_factory=default_db_root)
    workspace: str = field(default_factory=os.getcwd)
    wal_mode: bool = True
    cache_size_kib: int = 64000

    def validate(self) -> List[str]:
        """Return list of validation error messages (empty = valid)."""
        errors: List[str] = []
        _check_range(errors, "store.cache_size_kib",
                     self.cache_size_kib, 256, 4_000_000, int)
        if not self.db_root:
            errors.append("store.db_root: must not be empty")
        return errors


@dataclass
class RetrievalConfig:
    """Server-side clamps for knowledge retrieval and listing."""
    retrieve_default: int = 5
    retrieve_max: int = 20
    list_default: int = 10
    list_max: int = 50

    def validate(self) -> List[str]:
        """Return list of validation error messages (empty = valid)."""
        errors: List[str] = []
        _check_range(errors, "retrieval.retrieve_max", self.retrieve_max, 1, 1000, int)
        _check_range(errors, "retrieval.list_max", self.list_max, 1, 1000, int)
        _check_range(errors, "retrieval.retrieve_default",
                     self.retrieve_default, 1, self.retrieve_max, int)
        _check_range(errors, "retrieval.list_default",
                     self.list_default, 1, self.list_max, int)
        return errors


@dataclass
class IndexConfig:
    """Code indexing configuration."""
    batch_size: int = 50
    max_errors: int = 5
    symbol_search_max: int = 100
    references_max: int = 50

    def validate(self) -> List[str]:
        """Return list of validation error messages (empty = valid)."""
        errors: List[str] = []
        _check_range(errors, "index.batch_size", self.batch_size, 1, 10000, int)
        _check_range(errors, "index.max_errors", self.max_errors, 0, 1000, int)
        _check_range(errors, "index.symbol_search_max",
                     self.symbol_search_max, 1, 10000, int)
        _check_range(errors, "index.references_max",
                     self.references_max, 1, 10000, int)
        return errors


@dataclass
class EnrichConfig:
    """Context enrichment caps."""
    enabled: bool = True
    symbol_limit: int = 20
    file_limit: int = 10
    per_name_limit: int = 5

    def validate(self) -> List[str]:
        """Return list of validation error messages (empty = valid)."""
        errors: List[str] = []
        _check_range(errors, "enrich.symbol_limit", self.symbol_limit, 0, 500, int)
        _check_range(errors, "enrich.file_limit", self.file_limit, 0, 500, int)
        _check_range(errors, "enrich.per_name_limit", self.per_name_limit, 1, 100, int)
        return errors


@dataclass
class CodememConfig:
    """Top-level codemem configuration."""
    store: StoreConfig = field(default_factory=StoreConfig)
    retrieval: RetrievalConfig = field(default_factory=RetrievalConfig)
    index: IndexConfig = field(default_factory=IndexConfig)
    enrich: EnrichConfig = field(default_factory=EnrichConfig)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> CodememConfig:
        """Build config from a nested dict (e.g. JSON)."""
        kwargs: Dict[str, Any] = {}
        if "store" in d:
            kwargs["store"] = StoreConfig(**d["store"])
        if "retrieval" in d:
            kwargs["retrieval"] = RetrievalConfig(**d["retrieval"])
        if "index" in d:
            kwargs["index"] = IndexConfig(**d["index"])
        if "enrich" in d:
            kwargs["enrich"] = EnrichConfig(**d["enrich"])
        return cls(**kwargs)

    def validate(self) -> List[str]:
        """Validate all config sections. Returns list of error messages."""
        errors: List[str] = []
        errors.extend(self.store.validate())
        errors.extend(self.retrieval.validate())
        errors.extend(self.index.validate())
        errors.extend(self.enrich.validate())
        return errors


def load_config(
    path: Optional[str] = None, *, strict: bool = False,
) -> CodememConfig:
    """Load config from a JSON file. Returns defaults if file missing/invalid.

    Args:
        path: Path to config.json. If None, returns compiled defaults.
        strict: If True, raise ValidationError on invalid config values.

    Returns:
        CodememConfig with values from file or defaults.

    Raises:
        ValidationError: If strict=True and config values are out of range.
    """
    if path is None:
        cfg = CodememConfig()
    else:
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            cfg = CodememConfig.from_dict(data)
        except (FileNotFoundError, json.JSONDecodeError, TypeError, KeyError):
            cfg = CodememConfig()

    if strict:
        errors = cfg.validate()
        if errors:
            raise ValidationError(
                f"Config validation failed: {'; '.join(errors)}"
            )

    return cfg
