"""
Tests for engine settings loading (posting_config).

Covers:
- Packaged defaults
- YAML overrides and absent keys falling back to schema defaults
- Rejection of malformed values
- POSTING_DATABASE_URL override
- Deterministic checksum and the POSTING_CONFIG_TRACE log entry
"""

from decimal import Decimal

import pytest
import yaml

from posting_config import EngineSettings, SessionDefaults, get_active_settings
from posting_config.loader import compute_checksum, parse_settings


def _write(tmp_path, data) -> str:
    path = tmp_path / "settings.yaml"
    path.write_text(yaml.safe_dump(data))
    return str(path)


@pytest.fixture(autouse=True)
def _no_env_url(monkeypatch):
    monkeypatch.delenv("POSTING_DATABASE_URL", raising=False)


class TestDefaults:

    def test_packaged_defaults_match_schema(self):
        settings = get_active_settings()

        assert settings.session_defaults == SessionDefaults()
        assert settings.auto_post.group_number == 1
        assert settings.auto_post.visit_number == 1
        assert settings.log_level == "INFO"
        assert settings.database_url == "sqlite:///:memory:"

    def test_empty_file_uses_schema_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")

        settings = get_active_settings(path)

        assert settings.session_defaults == EngineSettings().session_defaults

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_settings(tmp_path / "nope.yaml")


class TestOverrides:

    def test_yaml_values_override(self, tmp_path):
        path = _write(tmp_path, {
            "log_level": "debug",
            "session_defaults": {
                "inside_distance_threshold_km": 12.5,
                "dsa_enabled": True,
                "max_postings_per_supervisor": 20,
            },
            "auto_post": {"visit_number": 2},
        })

        settings = get_active_settings(path)

        assert settings.log_level == "DEBUG"
        assert settings.session_defaults.inside_distance_threshold_km == Decimal("12.5")
        assert settings.session_defaults.dsa_enabled is True
        assert settings.session_defaults.max_postings_per_supervisor == 20
        assert settings.session_defaults.max_supervision_visits == 3
        assert settings.auto_post.visit_number == 2

    def test_float_values_keep_their_decimal_text(self):
        settings = parse_settings({"session_defaults": {"dsa_percentage": 0.1}})

        assert settings.session_defaults.dsa_percentage == Decimal("0.1")

    def test_env_database_url_wins(self, tmp_path, monkeypatch):
        path = _write(tmp_path, {"database": {"url": "sqlite:///file.db"}})
        monkeypatch.setenv("POSTING_DATABASE_URL", "postgresql://u:p@localhost/postings")

        assert get_active_settings(path).database_url == "postgresql://u:p@localhost/postings"


class TestInvalidValues:

    @pytest.mark.parametrize(
        "section",
        [
            {"session_defaults": {"dsa_percentage": 150}},
            {"session_defaults": {"dsa_min_distance_km": 40, "dsa_max_distance_km": 30}},
            {"session_defaults": {"inside_distance_threshold_km": -1}},
            {"session_defaults": {"inside_distance_threshold_km": "far"}},
            {"session_defaults": {"max_supervision_visits": 0}},
            {"session_defaults": {"max_postings_per_supervisor": "many"}},
            {"session_defaults": {"dsa_enabled": "yes please"}},
            {"auto_post": {"group_number": 0}},
            {"log_level": "LOUD"},
        ],
    )
    def test_rejected(self, section):
        with pytest.raises(ValueError):
            parse_settings(section)

    def test_non_mapping_document_rejected(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")

        with pytest.raises(ValueError, match="mapping"):
            get_active_settings(path)


class TestChecksum:

    def test_checksum_is_deterministic(self):
        a = {"log_level": "INFO", "session_defaults": {"dsa_enabled": True}}
        b = {"session_defaults": {"dsa_enabled": True}, "log_level": "INFO"}

        assert compute_checksum(a) == compute_checksum(b)
        assert compute_checksum(a) != compute_checksum({"log_level": "DEBUG"})

    def test_trace_logged(self, tmp_path, captured_logs):
        path = _write(tmp_path, {"session_defaults": {"dsa_enabled": True}})

        settings = get_active_settings(path)

        traces = [r for r in captured_logs() if r["message"] == "POSTING_CONFIG_TRACE"]
        assert len(traces) == 1
        assert traces[0]["checksum"] == settings.checksum
        assert traces[0]["config_path"] == path
        assert traces[0]["dsa_enabled"] is True
