"""
Tests for structured logging and the audit trail.
"""

import io
import json

import pytest

from conftest import ISSUER_A, OTHER, OWNER


@pytest.fixture
def log_stream():
    from trustreg.observability import configure_logging

    stream = io.StringIO()
    configure_logging(level="debug", fmt="json", stream=stream)
    return stream


def _lines(stream):
    return [json.loads(line) for line in stream.getvalue().splitlines() if line]


class TestStructuredLogging:
    """Tests for RegistryLogger and StructuredHandler."""

    def test_json_record_fields(self, log_stream):
        from trustreg.observability import correlation_id_var, get_logger, set_correlation_id

        token = set_correlation_id("corr-abc")
        try:
            get_logger("unit").warning("Something odd", operation="lookup", error_code="e1", issuer="x")
        finally:
            correlation_id_var.reset(token)

        record = _lines(log_stream)[-1]
        assert record["level"] == "warning"
        assert record["logger"] == "trustreg.unit"
        assert record["component"] == "unit"
        assert record["operation"] == "lookup"
        assert record["error_code"] == "e1"
        assert record["correlation_id"] == "corr-abc"
        assert record["context"] == {"issuer": "x"}

    def test_registry_logs_mutations(self, log_stream, registry):
        from trustreg.hardening import Unauthorized

        registry.add_trusted_issuer(OWNER, ISSUER_A, [1])
        with pytest.raises(Unauthorized):
            registry.remove_trusted_issuer(OTHER, ISSUER_A)

        records = [r for r in _lines(log_stream) if r["logger"] == "trustreg.registry"]
        assert records[0]["operation"] == "add_trusted_issuer"
        assert records[0]["context"]["claim_topics"] == [1]
        assert records[-1]["error_code"] == "unauthorized"
        assert records[-1]["level"] == "warning"

    def test_text_format(self):
        from trustreg.observability import configure_logging, get_logger

        stream = io.StringIO()
        configure_logging(level="info", fmt="text", stream=stream)
        get_logger("unit").info("plain message")
        assert "trustreg.unit - INFO - plain message" in stream.getvalue()

    def test_reconfigure_replaces_handler(self):
        import logging
        from trustreg.observability import ROOT_LOGGER, configure_logging

        configure_logging(stream=io.StringIO())
        configure_logging(stream=io.StringIO())
        root = logging.getLogger(ROOT_LOGGER)
        assert sum(1 for h in root.handlers if getattr(h, "_trustreg_handler", False)) == 1

    def test_timed_operation(self, log_stream):
        from trustreg.observability import get_logger, timed_operation

        @timed_operation(get_logger("unit"), "compute")
        def compute(x):
            return x * 2

        @timed_operation(get_logger("unit"), "explode")
        def explode():
            raise ValueError("nope")

        assert compute(21) == 42
        with pytest.raises(ValueError):
            explode()

        records = [r for r in _lines(log_stream) if r.get("operation") in ("compute", "explode")]
        assert records[0]["message"] == "Operation compute completed"
        assert "duration_ms" in records[0]
        assert records[1]["message"] == "Operation explode failed"
        assert records[1]["level"] == "warning"

    def test_correlation_id_generated_once(self):
        from trustreg.observability import correlation_id_var, get_correlation_id

        token = correlation_id_var.set("")
        try:
            first = get_correlation_id()
            assert first.startswith("corr-")
            assert get_correlation_id() == first
        finally:
            correlation_id_var.reset(token)


class TestAuditTrail:
    """Tests for the hash-chained audit trail."""

    def test_chain_links(self):
        from trustreg.observability import AuditOutcome, AuditTrail

        trail = AuditTrail()
        first = trail.record(OWNER, "add_trusted_issuer", ISSUER_A, AuditOutcome.SUCCESS)
        second = trail.record(OTHER, "remove_trusted_issuer", ISSUER_A, AuditOutcome.DENIED)

        assert first.previous_digest is None
        assert second.previous_digest == first.record_digest
        assert trail.verify_chain() == (True, None)
        assert len(trail) == 2

    def test_tampering_detected(self):
        from trustreg.observability import AuditOutcome, AuditTrail

        trail = AuditTrail()
        trail.record(OWNER, "add_trusted_issuer", ISSUER_A, AuditOutcome.SUCCESS, claim_topics=[1])
        trail.record(OWNER, "update_issuer_claim_topics", ISSUER_A, AuditOutcome.SUCCESS)

        trail.records()[0].details["claim_topics"] = [99]
        assert trail.verify_chain() == (False, 0)

    def test_query_and_export(self):
        from trustreg.observability import AuditOutcome, AuditTrail

        trail = AuditTrail()
        trail.record(OWNER, "add_trusted_issuer", ISSUER_A, AuditOutcome.SUCCESS)
        trail.record(OTHER, "add_trusted_issuer", ISSUER_A, AuditOutcome.DENIED)
        trail.record(OWNER, "remove_trusted_issuer", "did:example:gone", AuditOutcome.FAILURE)

        assert len(trail.records(actor=OWNER)) == 2
        assert len(trail.records(outcome=AuditOutcome.DENIED)) == 1
        assert len(trail.records(resource_id=ISSUER_A)) == 2

        exported = trail.export()
        assert [r["outcome"] for r in exported] == ["success", "denied", "failure"]
        assert exported[0]["record_id"] == "audit-000000000001"
