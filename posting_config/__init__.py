"""
posting_config -- single public entrypoint for engine settings.

Responsibility:
    Provides the ONLY way to obtain settings at runtime through
    ``get_active_settings()``.  Returns a frozen ``EngineSettings``.

Architecture position:
    Configuration -- sits beside ``posting_kernel``.  Kernel services
    receive ``SessionDefaults`` by constructor injection and never read
    files themselves.

Invariants enforced:
    - Single entrypoint: all runtime settings flow through
      ``get_active_settings()``.
    - Deterministic parsing: the same YAML always produces the same
      checksum.

Failure modes:
    - ``FileNotFoundError`` -- the settings file does not exist.
    - ``ValueError`` -- a value is malformed.

Audit relevance:
    Every call emits a ``POSTING_CONFIG_TRACE`` log entry with the source
    path and checksum, tying a run's allowances to the defaults in force.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from posting_config.loader import load_yaml_file, parse_settings
from posting_config.schema import AutoPostDefaults, EngineSettings, SessionDefaults

_logger = logging.getLogger("posting_kernel.config")

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"

DATABASE_URL_ENV = "POSTING_DATABASE_URL"

__all__ = [
    "AutoPostDefaults",
    "EngineSettings",
    "SessionDefaults",
    "get_active_settings",
]


def get_active_settings(config_path: Path | str | None = None) -> EngineSettings:
    """The ONLY public settings entrypoint.

    Args:
        config_path: YAML file to load.  Defaults to posting_config/defaults.yaml.

    Returns:
        EngineSettings.  ``POSTING_DATABASE_URL``, when set, replaces the
        file's database url.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If a value is malformed.
    """
    path = Path(config_path) if config_path is not None else _DEFAULT_CONFIG_PATH
    data = load_yaml_file(path)

    env_url = os.environ.get(DATABASE_URL_ENV)
    if env_url:
        data.setdefault("database", {})
        data["database"] = {**(data["database"] or {}), "url": env_url}

    settings = parse_settings(data)

    _logger.info(
        "POSTING_CONFIG_TRACE",
        extra={
            "trace_type": "POSTING_CONFIG_TRACE",
            "config_path": str(path),
            "checksum": settings.checksum,
            "log_level": settings.log_level,
            "inside_threshold_km": str(settings.session_defaults.inside_distance_threshold_km),
            "dsa_enabled": settings.session_defaults.dsa_enabled,
        },
    )
    return settings
