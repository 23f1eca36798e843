# =============================================================================
# Unit Tests — Request-Correlated Logging
# =============================================================================

import logging

from app.logging_config import PipelineLogger, scrub

logger = logging.getLogger("tests.pipeline")


class TestScrub:
    def test_bearer_redacted(self):
        assert scrub({"auth": "Bearer sk-123"}) == '{"auth": "[redacted]"}'

    def test_signed_url_redacted(self):
        out = scrub({"url": "https://s.test/obj?token=abc", "key": "docs/a.pdf"})
        assert "[signed-url-redacted]" in out
        assert "token=abc" not in out
        assert "docs/a.pdf" in out

    def test_nested_values(self):
        assert "[redacted]" in scrub({"headers": [{"Authorization": "x", "v": "authorization: x"}]})

    def test_long_payload_clipped(self):
        out = scrub({"blob": "x" * 5000})
        assert len(out) == 1200 + len("…[trimmed]")
        assert out.endswith("…[trimmed]")


class TestPipelineLogger:
    def test_prefix_rid_and_stage(self, caplog):
        plog = PipelineLogger(logger, "index-now", "rid-7")
        with caplog.at_level(logging.INFO, logger="tests.pipeline"):
            plog.stage("storage.download", "Downloaded bytes", {"size": 10})

        record = caplog.records[-1]
        assert record.getMessage() == (
            '[index-now][rid-7] [storage.download] Downloaded bytes :: {"size": 10}'
        )
        assert record.rid == "rid-7"
        assert record.pipeline == "index-now"

    def test_generates_rid(self):
        assert len(PipelineLogger(logger, "ask").rid) == 36

    def test_disabled_level_skipped(self, caplog):
        plog = PipelineLogger(logger, "ask", "r")
        with caplog.at_level(logging.WARNING, logger="tests.pipeline"):
            plog.stage("intent", "classified", {"k": 6})
        assert caplog.records == []
