"""Tests for the debug log sink and its admin actions."""

import pytest
from loguru import logger

from order_notifier.shared.config import Settings
from order_notifier.shared.debug_log import (
    archived_log_names,
    clear_debug_log,
    configure_logging,
    delete_all_logs,
    read_archived_log,
    read_debug_log,
)


@pytest.fixture()
def debug_settings(tmp_path):
    settings = Settings(_env_file=None, DATA_DIR=tmp_path, DEBUG=True)
    configure_logging(settings)
    yield settings
    logger.remove()


class TestDebugLog:
    def test_debug_writes_the_sink(self, debug_settings):
        logger.debug("event=sample marker=xyz")
        assert "marker=xyz" in read_debug_log(debug_settings)

    def test_no_file_without_debug(self, tmp_path):
        settings = Settings(_env_file=None, DATA_DIR=tmp_path, DEBUG=False)
        configure_logging(settings)
        logger.debug("event=sample")
        assert read_debug_log(settings) == ""
        assert clear_debug_log(settings) is False

    def test_clear_truncates(self, debug_settings):
        logger.debug("event=sample")
        assert clear_debug_log(debug_settings) is True
        assert debug_settings.debug_log_path.exists()
        assert read_debug_log(debug_settings) == ""

    def test_archives_are_listed_and_opened_by_name(self, debug_settings):
        archive = debug_settings.DATA_DIR / "ON_debug.2026-01-01_10-00-00_000000.log"
        archive.write_text("old lines", encoding="utf-8")
        assert archived_log_names(debug_settings) == [archive.name]
        assert read_archived_log(debug_settings, archive.name) == "old lines"
        assert read_archived_log(debug_settings, "../settings.json") is None

    def test_delete_all(self, debug_settings):
        logger.debug("event=sample")
        (debug_settings.DATA_DIR / "ON_debug.2026-01-01_10-00-00_000000.log").write_text("x", encoding="utf-8")
        logger.remove()
        assert delete_all_logs(debug_settings) == 2
        assert archived_log_names(debug_settings) == []
