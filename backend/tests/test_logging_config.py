"""
Tests for the MetaDJai log helpers and handler setup.
"""

import logging

import logging_config
from logging_config import (
    ColorFormatter,
    log_proposal,
    log_provider,
    log_tool,
    log_turn_in,
    log_turn_out,
    setup_logging,
)


class TestSetup:
    """Root handler installation."""

    def test_log_level_env_override(self, monkeypatch):
        root = logging.getLogger()
        saved = (root.level, list(root.handlers))
        monkeypatch.setenv("LOG_LEVEL", "debug")
        monkeypatch.setenv("NO_COLOR", "1")
        try:
            setup_logging(logging.INFO)
            assert root.level == logging.DEBUG
            assert len(root.handlers) == 1
            assert isinstance(root.handlers[0].formatter, ColorFormatter)
            assert logging_config._use_color is False
            assert logging.getLogger("httpx").level == logging.WARNING
        finally:
            root.setLevel(saved[0])
            root.handlers = saved[1]

    def test_unknown_level_falls_back(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "chatty")
        assert logging_config._resolve_level(logging.WARNING) == logging.WARNING

    def test_warning_records_carry_logger_name(self, monkeypatch):
        monkeypatch.setattr(logging_config, "_use_color", False)
        record = logging.LogRecord("services.redis_client", logging.WARNING, __file__, 1, "degraded", None, None)
        line = ColorFormatter().format(record)
        assert "[WARN] degraded (services.redis_client)" in line


class TestEventHelpers:
    """Turn, tool, provider and proposal lines."""

    def test_turn_in_preview(self, caplog, monkeypatch):
        monkeypatch.setattr(logging_config, "_use_color", False)
        logger = logging.getLogger("test.turns")
        with caplog.at_level(logging.INFO, logger="test.turns"):
            log_turn_in(logger, "play   something\n" + "x" * 200, mode="chat")
        message = caplog.records[0].getMessage()
        assert message.startswith(">>> TURN play something x")
        assert "..." in message
        assert message.endswith("[mode=chat]")

    def test_turn_out_summary(self, caplog, monkeypatch):
        monkeypatch.setattr(logging_config, "_use_color", False)
        logger = logging.getLogger("test.turns")
        with caplog.at_level(logging.INFO, logger="test.turns"):
            log_turn_out(logger, "openai", "gpt-5.2-chat-latest", ["searchCatalog"], proposals=1, cost_usd=0.000875)
        assert caplog.records[0].getMessage() == (
            "<<< TURN openai/gpt-5.2-chat-latest tools=[searchCatalog] proposals=1 cached=False cost=$0.000875"
        )

    def test_tool_error_is_error_level(self, caplog):
        logger = logging.getLogger("test.tools")
        with caplog.at_level(logging.INFO, logger="test.tools"):
            log_tool(logger, "searchCatalog", "start", kind="query")
            log_tool(logger, "searchCatalog", "error")
        assert [r.levelno for r in caplog.records] == [logging.INFO, logging.ERROR]
        assert "kind=query" in caplog.records[0].getMessage()

    def test_failover_is_warning(self, caplog, monkeypatch):
        monkeypatch.setattr(logging_config, "_use_color", False)
        logger = logging.getLogger("test.providers")
        with caplog.at_level(logging.INFO, logger="test.providers"):
            log_provider(logger, "failover", model="claude-haiku-4-5", reason="circuit_open", primary="openai")
        record = caplog.records[0]
        assert record.levelno == logging.WARNING
        assert record.getMessage() == "~~> PROVIDER failover to claude-haiku-4-5 [reason=circuit_open primary=openai]"

    def test_proposal_line(self, caplog, monkeypatch):
        monkeypatch.setattr(logging_config, "_use_color", False)
        logger = logging.getLogger("test.proposals")
        with caplog.at_level(logging.INFO, logger="test.proposals"):
            log_proposal(logger, {"type": "playback", "action": "play", "trackTitle": "Cosmic Drift"})
        assert caplog.records[0].getMessage() == "??? PROPOSAL playback:play Cosmic Drift"
