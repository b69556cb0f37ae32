"""Tests for SummarySettings."""

import pytest

from chronicler.settings import SummarySettings, TruncatePolicy

_ENV_VARS = [
    "SUMMARY_ENABLED",
    "SUMMARY_MINOR_THRESHOLD",
    "SUMMARY_MAJOR_THRESHOLD",
    "SUMMARY_USE_ASSISTANT_CHANNEL",
    "SUMMARY_BATCH_SIZE",
    "SUMMARY_TRUNCATE_POLICY",
    "SUMMARY_PRIMARY_API",
    "SUMMARY_PRIMARY_MODEL",
    "SUMMARY_ASSISTANT_API",
    "SUMMARY_ASSISTANT_MODEL",
    "SUMMARY_DB_PATH",
    "SUMMARY_SESSION_ID",
]


@pytest.fixture
def clean_env(monkeypatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestFromEnv:
    """Test reading settings from the environment."""

    def test_defaults(self, clean_env):
        settings = SummarySettings.from_env()

        assert settings.enabled is False
        assert settings.minor_threshold == 8
        assert settings.major_threshold == 25
        assert settings.use_assistant_channel is False
        assert settings.batch_size == 0
        assert settings.truncate_policy == TruncatePolicy.KEEP
        assert settings.primary_api == "anthropic"
        assert settings.assistant_api == "openrouter"
        assert settings.db_path is None
        assert settings.session_id == "default"

    def test_overrides(self, clean_env, temp_dir):
        clean_env.setenv("SUMMARY_ENABLED", "yes")
        clean_env.setenv("SUMMARY_MINOR_THRESHOLD", "4")
        clean_env.setenv("SUMMARY_MAJOR_THRESHOLD", "12")
        clean_env.setenv("SUMMARY_USE_ASSISTANT_CHANNEL", "1")
        clean_env.setenv("SUMMARY_BATCH_SIZE", "10")
        clean_env.setenv("SUMMARY_TRUNCATE_POLICY", "DROP")
        clean_env.setenv("SUMMARY_DB_PATH", str(temp_dir / "s.db"))
        clean_env.setenv("SUMMARY_SESSION_ID", "campaign-2")

        settings = SummarySettings.from_env()

        assert settings.enabled is True
        assert (settings.minor_threshold, settings.major_threshold) == (4, 12)
        assert settings.use_assistant_channel is True
        assert settings.batch_size == 10
        assert settings.truncate_policy == TruncatePolicy.DROP
        assert settings.db_path == str(temp_dir / "s.db")
        assert settings.session_id == "campaign-2"

    @pytest.mark.parametrize("value", ["0", "false", "no", "off", "nonsense"])
    def test_falsy_enabled(self, clean_env, value):
        clean_env.setenv("SUMMARY_ENABLED", value)
        assert SummarySettings.from_env().enabled is False

    def test_bad_integer(self, clean_env):
        clean_env.setenv("SUMMARY_MINOR_THRESHOLD", "eight")
        with pytest.raises(ValueError, match="SUMMARY_MINOR_THRESHOLD"):
            SummarySettings.from_env()

    def test_bad_truncate_policy(self, clean_env):
        clean_env.setenv("SUMMARY_TRUNCATE_POLICY", "maybe")
        with pytest.raises(ValueError, match="SUMMARY_TRUNCATE_POLICY"):
            SummarySettings.from_env()


class TestValidation:
    def test_major_below_minor(self):
        with pytest.raises(ValueError):
            SummarySettings(minor_threshold=10, major_threshold=5)

    def test_negative_threshold(self):
        with pytest.raises(ValueError):
            SummarySettings(minor_threshold=-1)

    def test_negative_batch_size(self):
        with pytest.raises(ValueError):
            SummarySettings(batch_size=-2)

    def test_policy_string_is_coerced(self):
        assert SummarySettings(truncate_policy="drop").truncate_policy == TruncatePolicy.DROP

    def test_equal_thresholds_allowed(self):
        settings = SummarySettings(minor_threshold=10, major_threshold=10)
        assert settings.major_threshold == 10
