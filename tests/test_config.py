"""Unit tests for Config and FailurePolicySettings."""

import pytest
from pydantic import ValidationError

from index_queue import Config, FailurePolicySettings


class TestConfig:
    """Test suite for Config class."""

    def test_config_has_required_attributes(self):
        """Test that Config class has all required configuration attributes."""
        # Database configuration
        assert hasattr(Config, "DATABASE_URL")
        assert hasattr(Config, "LOG_LEVEL")

        # Failure policy
        assert hasattr(Config, "MAX_ATTEMPTS")
        assert hasattr(Config, "DEADLY_ERRORS")
        assert hasattr(Config, "UNDELETABLE_CLASSES")

    def test_config_values_have_expected_types(self):
        assert isinstance(Config.DATABASE_URL, str)
        assert isinstance(Config.MAX_ATTEMPTS, int)
        assert isinstance(Config.DEADLY_ERRORS, list)
        assert isinstance(Config.UNDELETABLE_CLASSES, list)

    def test_get_list_skips_empty_items(self, monkeypatch):
        monkeypatch.setenv("TEST_LIST", " Widget, ,Gadget,")

        assert Config._get_list("TEST_LIST") == ["Widget", "Gadget"]
        assert Config._get_list("TEST_LIST_UNSET") == []

    def test_get_int(self, monkeypatch):
        monkeypatch.setenv("TEST_INT", "7")

        assert Config._get_int("TEST_INT", 1) == 7
        assert Config._get_int("TEST_INT_UNSET", 3) == 3


class TestFailurePolicySettings:
    """Test suite for FailurePolicySettings."""

    def test_defaults(self):
        settings = FailurePolicySettings()

        assert settings.max_attempts == 5
        assert settings.deadly_errors == []
        assert settings.undeletable_class_names == []

    def test_from_config(self, monkeypatch):
        """Test that settings follow the Config class values."""
        monkeypatch.setattr(Config, "MAX_ATTEMPTS", 2)
        monkeypatch.setattr(Config, "DEADLY_ERRORS", ["Connection refused", "Unknown field"])
        monkeypatch.setattr(Config, "UNDELETABLE_CLASSES", ["Account"])

        settings = FailurePolicySettings.from_config()

        assert settings.max_attempts == 2
        assert settings.deadly_errors == ["Connection refused", "Unknown field"]
        assert settings.undeletable_class_names == ["Account"]

    def test_from_config_copies_lists(self, monkeypatch):
        monkeypatch.setattr(Config, "DEADLY_ERRORS", ["fatal"])

        settings = FailurePolicySettings.from_config()
        settings.deadly_errors.append("other")

        assert Config.DEADLY_ERRORS == ["fatal"]

    def test_negative_max_attempts_rejected(self):
        with pytest.raises(ValidationError):
            _ = FailurePolicySettings(max_attempts=-1)
