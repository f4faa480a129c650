"""
Structured logging and audit trail tests.
"""

import io
import json

import pytest

from ccbridge.observability import (
    AuditLogger,
    BridgeLayer,
    BridgeLogger,
    LogLevel,
    StructuredHandler,
    get_correlation_id,
    set_correlation_id,
    timed_operation,
)


@pytest.fixture
def stream():
    return io.StringIO()


@pytest.fixture
def logger(stream, request):
    log = BridgeLogger(f"test-{request.node.name}", BridgeLayer.ENDPOINT, level=LogLevel.DEBUG, fmt="json")
    handler = next(h for h in log._logger.handlers if isinstance(h, StructuredHandler))
    handler._stream = stream
    return log


def lines(stream):
    return [json.loads(line) for line in stream.getvalue().splitlines()]


class TestStructuredLogging:

    def test_json_line_per_record(self, logger, stream):
        set_correlation_id("corr-test")
        logger.info("Transfer sent", operation="send", asset_id=1)

        [event] = lines(stream)
        assert event["message"] == "Transfer sent"
        assert event["level"] == "info"
        assert event["layer"] == "endpoint"
        assert event["operation"] == "send"
        assert event["correlation_id"] == "corr-test"
        assert event["context"] == {"asset_id": 1}
        assert event["logger"].startswith("ccbridge.endpoint.")

    def test_empty_fields_omitted(self, logger, stream):
        logger.debug("plain")
        [event] = lines(stream)
        assert "error_code" not in event
        assert "duration_ms" not in event

    def test_text_format(self, logger, stream):
        handler = next(h for h in logger._logger.handlers if isinstance(h, StructuredHandler))
        handler.fmt = "text"
        logger.warning("Rejected", error_code="unauthorized_source", peer="0xabc")

        line = stream.getvalue().strip()
        assert "WARNING" in line
        assert "error_code=unauthorized_source" in line
        assert "peer=0xabc" in line

    def test_level_from_configuration(self, fresh_config):
        fresh_config.set("observability.log_level", "error")
        log = BridgeLogger("configured-level", BridgeLayer.CONFIG)
        assert log._logger.level == 40

    def test_correlation_id_generated_on_demand(self):
        set_correlation_id("")
        cid = get_correlation_id()
        assert cid.startswith("corr-")
        assert get_correlation_id() == cid


class TestTimedOperation:

    class Worker:
        def __init__(self, log):
            self._log = log

        @timed_operation("work")
        def work(self, fail=False):
            if fail:
                raise KeyError("missing")
            return "done"

    def test_success_logged_with_duration(self, logger, stream):
        assert self.Worker(logger).work() == "done"

        [event] = lines(stream)
        assert event["message"] == "Operation work completed"
        assert event["duration_ms"] >= 0

    def test_failure_logged_and_reraised(self, logger, stream):
        with pytest.raises(KeyError):
            self.Worker(logger).work(fail=True)

        [event] = lines(stream)
        assert event["level"] == "warning"
        assert event["error_code"] == "KeyError"


class TestAuditLogger:

    @pytest.fixture
    def audit(self, logger):
        return AuditLogger(logger)

    def test_chain_verifies(self, audit):
        audit.log("0xadmin", "set_peer", "peer_registry", "0xpeers", "success", ledger_id=1)
        audit.log("0xadmin", "remove_peer", "peer_registry", "0xpeers", "success")

        assert audit.verify_chain() == (True, None)
        events = audit.events()
        assert events[0].previous_hash == AuditLogger.GENESIS
        assert events[1].previous_hash == events[0].compute_hash()

    def test_tampering_detected(self, audit):
        audit.log("0xadmin", "set_peer", "peer_registry", "0xpeers", "success")
        audit.log("0xadmin", "set_minter", "asset_registry", "0xreg", "success")

        audit.events()[0].actor = "0xmallory"

        assert audit.verify_chain() == (False, 0)

    def test_filter_by_action(self, audit):
        audit.log("0xadmin", "set_peer", "peer_registry", "0xpeers", "success")
        audit.log("0xadmin", "withdraw_token", "bridge_endpoint", "0xep", "success")
        assert [e.action for e in audit.events(action="withdraw_token")] == ["withdraw_token"]

    def test_audit_emits_log_line(self, audit, stream):
        audit.log("0xadmin", "set_peer", "peer_registry", "0xpeers", "denied")
        [event] = lines(stream)
        assert event["message"] == "AUDIT: set_peer on peer_registry/0xpeers"
        assert event["context"]["outcome"] == "denied"
