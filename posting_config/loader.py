"""
Configuration Loader (``posting_config.loader``).

Responsibility
--------------
Loads a YAML settings file and parses it into the frozen dataclasses of
``posting_config.schema``.  Callers use ``posting_config.get_active_settings()``
rather than this module.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` or ``KeyError`` with descriptive
  messages; malformed values never fall back to defaults silently.
* Absent keys take the schema default.
* ``compute_checksum`` is deterministic for identical parsed data.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from posting_config.schema import AutoPostDefaults, EngineSettings, SessionDefaults

_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top-level YAML must be a mapping, got {type(data).__name__}")
    return data


def parse_decimal(value: Any, name: str) -> Decimal:
    """YAML floats go through str() so 0.1 stays 0.1."""
    if isinstance(value, bool):
        raise ValueError(f"{name}: expected a number, got {value!r}")
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"{name}: expected a number, got {value!r}") from None


def parse_positive_int(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name}: expected an integer, got {value!r}")
    if value < 1:
        raise ValueError(f"{name}: must be >= 1, got {value}")
    return value


def parse_bool(value: Any, name: str) -> bool:
    if not isinstance(value, bool):
        raise ValueError(f"{name}: expected true/false, got {value!r}")
    return value


def parse_session_defaults(data: dict[str, Any]) -> SessionDefaults:
    """
    Parse ``session_defaults``.

    Raises:
        ValueError: on a non-numeric value, a percentage outside [0, 100],
            or a DSA band with min > max.
    """
    base = SessionDefaults()
    prefix = "session_defaults"
    defaults = SessionDefaults(
        inside_distance_threshold_km=parse_decimal(
            data.get("inside_distance_threshold_km", base.inside_distance_threshold_km),
            f"{prefix}.inside_distance_threshold_km",
        ),
        dsa_enabled=parse_bool(
            data.get("dsa_enabled", base.dsa_enabled), f"{prefix}.dsa_enabled"
        ),
        dsa_min_distance_km=parse_decimal(
            data.get("dsa_min_distance_km", base.dsa_min_distance_km),
            f"{prefix}.dsa_min_distance_km",
        ),
        dsa_max_distance_km=parse_decimal(
            data.get("dsa_max_distance_km", base.dsa_max_distance_km),
            f"{prefix}.dsa_max_distance_km",
        ),
        dsa_percentage=parse_decimal(
            data.get("dsa_percentage", base.dsa_percentage), f"{prefix}.dsa_percentage"
        ),
        max_postings_per_supervisor=parse_positive_int(
            data.get("max_postings_per_supervisor", base.max_postings_per_supervisor),
            f"{prefix}.max_postings_per_supervisor",
        ),
        max_supervision_visits=parse_positive_int(
            data.get("max_supervision_visits", base.max_supervision_visits),
            f"{prefix}.max_supervision_visits",
        ),
    )

    if not Decimal("0") <= defaults.dsa_percentage <= Decimal("100"):
        raise ValueError(f"{prefix}.dsa_percentage must be between 0 and 100")
    if defaults.dsa_min_distance_km > defaults.dsa_max_distance_km:
        raise ValueError(f"{prefix}.dsa_min_distance_km exceeds dsa_max_distance_km")
    if defaults.inside_distance_threshold_km < 0:
        raise ValueError(f"{prefix}.inside_distance_threshold_km must not be negative")
    return defaults


def parse_auto_post(data: dict[str, Any]) -> AutoPostDefaults:
    base = AutoPostDefaults()
    return AutoPostDefaults(
        group_number=parse_positive_int(
            data.get("group_number", base.group_number), "auto_post.group_number"
        ),
        visit_number=parse_positive_int(
            data.get("visit_number", base.visit_number), "auto_post.visit_number"
        ),
    )


def parse_settings(data: dict[str, Any]) -> EngineSettings:
    """
    Parse an ``EngineSettings`` from a dict.

    Raises:
        ValueError: on malformed values or an unknown log level.
    """
    base = EngineSettings()
    log_level = str(data.get("log_level", base.log_level)).upper()
    if log_level not in _LOG_LEVELS:
        raise ValueError(f"log_level: unknown level {log_level!r}")

    database = data.get("database", {}) or {}
    return EngineSettings(
        database_url=str(database.get("url", base.database_url)),
        echo_sql=parse_bool(database.get("echo", base.echo_sql), "database.echo"),
        log_level=log_level,
        session_defaults=parse_session_defaults(data.get("session_defaults", {}) or {}),
        auto_post=parse_auto_post(data.get("auto_post", {}) or {}),
        checksum=compute_checksum(data),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
