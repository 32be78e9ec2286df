"""Unit tests for logging configuration."""

import logging
import os
from unittest.mock import patch

import pytest

from zenith.logging_config import (
    configure_logging,
    get_logger,
    log_prompts,
    set_verbosity,
)


@pytest.mark.unit
class TestSetVerbosity:
    """Test set_verbosity level and log_prompts flag."""

    def test_level_0_sets_info_no_prompts(self):
        set_verbosity(0)
        root = logging.getLogger("zenith")
        assert root.level == logging.INFO
        assert log_prompts() is False

    def test_level_1_sets_info_with_prompts(self):
        set_verbosity(1)
        root = logging.getLogger("zenith")
        assert root.level == logging.INFO
        assert log_prompts() is True

    def test_level_2_sets_debug_with_prompts(self):
        set_verbosity(2)
        root = logging.getLogger("zenith")
        assert root.level == logging.DEBUG
        assert log_prompts() is True

    def test_negative_treated_as_default(self):
        set_verbosity(-1)
        assert logging.getLogger("zenith").level == logging.INFO
        assert log_prompts() is False

    def test_above_range_clamped_to_verbose(self):
        set_verbosity(5)
        assert logging.getLogger("zenith").level == logging.DEBUG
        assert log_prompts() is True

    def test_handler_attached_once(self):
        set_verbosity(0)
        set_verbosity(2)
        assert len(logging.getLogger("zenith").handlers) == 1


@pytest.mark.unit
class TestConfigureLogging:
    """Test configure_logging with quiet and verbose_level."""

    def test_quiet_sets_warning_and_no_prompts(self):
        set_verbosity(1)
        configure_logging(verbose_level=1, quiet=True)
        assert logging.getLogger("zenith").level == logging.WARNING
        assert log_prompts() is False

    def test_not_quiet_delegates_to_set_verbosity(self):
        configure_logging(verbose_level=2, quiet=False)
        assert logging.getLogger("zenith").level == logging.DEBUG
        assert log_prompts() is True


@pytest.mark.unit
class TestVerbosityFromEnv:
    """configure_logging without a level falls back to ZENITH_VERBOSITY."""

    @pytest.mark.parametrize(
        "raw,level,prompts",
        [
            ("1", logging.INFO, True),
            (" 2 ", logging.DEBUG, True),
            ("0", logging.INFO, False),
            ("debug", logging.INFO, False),
            ("3", logging.INFO, False),
        ],
    )
    def test_env_values(self, raw, level, prompts):
        with patch.dict(os.environ, {"ZENITH_VERBOSITY": raw}, clear=False):
            configure_logging()
        assert logging.getLogger("zenith").level == level
        assert log_prompts() is prompts

    def test_missing_env_is_default(self):
        with patch.dict(os.environ, {}, clear=False):
            os.environ.pop("ZENITH_VERBOSITY", None)
            configure_logging()
        assert logging.getLogger("zenith").level == logging.INFO
        assert log_prompts() is False

    def test_explicit_level_wins_over_env(self):
        with patch.dict(os.environ, {"ZENITH_VERBOSITY": "2"}, clear=False):
            configure_logging(verbose_level=1)
        assert logging.getLogger("zenith").level == logging.INFO
        assert log_prompts() is True


@pytest.mark.unit
class TestGetLogger:
    def test_child_of_root(self):
        assert get_logger("core.graph").name == "zenith.core.graph"

    def test_already_qualified(self):
        assert get_logger("zenith.storage.blob_cache").name == "zenith.storage.blob_cache"
        assert get_logger("zenith").name == "zenith"
