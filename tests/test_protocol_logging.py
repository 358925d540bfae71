"""Tests for protocol logging module."""

import logging
from datetime import UTC, datetime

import httpx
import pytest

from fedbroker.core.logging import (
    HTTPExchange,
    LoggingClient,
    LogLevel,
    ProtocolLog,
    ProtocolLogger,
    configure_logging,
    fingerprint_secret,
    get_protocol_logger,
    redact_sensitive,
    set_protocol_logger,
)


@pytest.fixture
def restore_logging():
    """Put the global protocol logger and package handlers back after a test."""
    package_logger = logging.getLogger("fedbroker")
    handlers = list(package_logger.handlers)
    level = package_logger.level
    previous = get_protocol_logger()
    yield
    package_logger.handlers[:] = handlers
    package_logger.setLevel(level)
    set_protocol_logger(previous)


def _exchange(**overrides):
    data = {
        "id": "ex_001",
        "timestamp": datetime(2026, 1, 1, 12, 0, 0, tzinfo=UTC),
        "method": "POST",
        "url": "https://idp.example.com/token",
        "request_headers": {},
    }
    data.update(overrides)
    return HTTPExchange(**data)


class TestRedactSensitive:
    """Tests for sensitive data redaction."""

    @pytest.mark.parametrize(
        "name",
        ["client_secret", "client_assertion", "code", "access_token", "accessToken", "subject_token"],
    )
    def test_form_fields(self, name):
        result = redact_sensitive(f"grant_type=authorization_code&{name}=value-123&client_id=c1")

        assert "value-123" not in result
        assert f"{name}=[REDACTED]" in result
        assert "client_id=c1" in result

    def test_client_assertion_type_is_kept(self):
        text = "client_assertion_type=urn%3Aietf%3Aparams&client_assertion=eyJh.e30.sig"

        result = redact_sensitive(text)

        assert "client_assertion_type=urn%3Aietf%3Aparams" in result
        assert "eyJh.e30.sig" not in result

    def test_authorization_headers(self):
        assert redact_sensitive("Authorization: Bearer at-1") == "Authorization: Bearer [REDACTED]"
        assert redact_sensitive("Basic YzE6czM=") == "Basic [REDACTED]"

    def test_cookie_header(self):
        result = redact_sensitive("Cookie: session=abc123; user=ada")
        assert "abc123" not in result

    def test_json_fields(self):
        text = '{"access_token": "at-1", "token_type": "bearer", "subject_token": "st-1"}'

        result = redact_sensitive(text)

        assert "at-1" not in result
        assert "st-1" not in result
        assert '"token_type": "bearer"' in result

    def test_plain_text_untouched(self):
        text = "Redirecting broker login to provider idp1"
        assert redact_sensitive(text) == text


class TestFingerprintSecret:
    """Tests for secret fingerprints."""

    def test_short_and_stable(self):
        assert fingerprint_secret("s3cret") == fingerprint_secret("s3cret")
        assert len(fingerprint_secret("s3cret")) == 8
        assert "s3cret" not in fingerprint_secret("s3cret")

    def test_differs_per_secret(self):
        assert fingerprint_secret("a") != fingerprint_secret("b")

    @pytest.mark.parametrize("secret", [None, ""])
    def test_empty(self, secret):
        assert fingerprint_secret(secret) is None


class TestHTTPExchange:
    """Tests for HTTPExchange dataclass."""

    def test_to_dict_redacts(self):
        exchange = _exchange(
            url="https://idp.example.com/token?client_secret=secret",
            request_headers={"Authorization": "Basic YzE6czM="},
            request_body="grant_type=authorization_code&code=code-1",
            response_status=200,
            response_body='{"access_token": "at-1", "token_type": "bearer"}',
            redirects=[{"url": "https://idp.example.com/cb?code=code-2", "status": 302}],
        )

        result = exchange.to_dict()

        assert "secret" not in result["url"].replace("client_secret", "")
        assert result["request_headers"]["Authorization"] == "Basic [REDACTED]"
        assert "code-1" not in result["request_body"]
        assert "at-1" not in result["response_body"]
        assert "code-2" not in result["redirects"][0]["url"]

    def test_to_dict_with_sensitive(self):
        exchange = _exchange(
            request_headers={"Authorization": "Basic YzE6czM="},
            request_body="code=code-1",
        )

        result = exchange.to_dict(include_sensitive=True)

        assert result["request_headers"]["Authorization"] == "Basic YzE6czM="
        assert result["request_body"] == "code=code-1"

    def test_format_log_info_level(self):
        log = _exchange(method="GET", response_status=200, duration_ms=50.0).format_log(LogLevel.INFO)

        assert "HTTP GET https://idp.example.com/token -> 200" in log
        assert "50.0ms" in log
        assert "Request Headers" not in log

    def test_format_log_debug_level(self):
        exchange = _exchange(
            request_headers={"Authorization": "Bearer at-1"},
            response_status=200,
            response_headers={"Content-Type": "application/json"},
            request_body="code=code-1",
        )

        log = exchange.format_log(LogLevel.DEBUG)

        assert "Request Headers" in log
        assert "Response Headers" in log
        assert "at-1" not in log
        assert "Request Body" not in log

    def test_format_log_trace_level(self):
        exchange = _exchange(request_body="grant_type=authorization_code&code=code-1")

        redacted = exchange.format_log(LogLevel.TRACE)
        raw = exchange.format_log(LogLevel.TRACE, include_sensitive=True)

        assert "Request Body" in redacted
        assert "code-1" not in redacted
        assert "code-1" in raw

    def test_format_log_error(self):
        log = _exchange(error="connection refused").format_log(LogLevel.INFO)

        assert "-> ERROR" in log
        assert "Error: connection refused" in log


class TestProtocolLog:
    """Tests for ProtocolLog dataclass."""

    def test_collects_exchanges(self):
        log = ProtocolLog(flow_id="flow-1", flow_type="broker_callback")

        log.add_exchange(_exchange(id="ex_001"))
        log.add_exchange(_exchange(id="ex_002", method="GET"))

        assert [e.id for e in log.exchanges] == ["ex_001", "ex_002"]

    def test_to_dict(self):
        log = ProtocolLog(flow_id="flow-1", flow_type="broker_callback")
        log.add_exchange(_exchange(request_body="code=code-1"))
        log.complete()

        result = log.to_dict()

        assert result["flow_id"] == "flow-1"
        assert result["flow_type"] == "broker_callback"
        assert result["exchange_count"] == 1
        assert result["completed_at"] is not None
        assert "code-1" not in result["exchanges"][0]["request_body"]


class TestProtocolLogger:
    """Tests for ProtocolLogger class."""

    def test_levels(self):
        logger = ProtocolLogger()
        assert logger.level == LogLevel.INFO

        logger.level = LogLevel.ERROR
        assert logger.level == LogLevel.ERROR

    def test_trace_requires_explicit_enable(self):
        logger = ProtocolLogger(level=LogLevel.TRACE)
        assert logger.effective_level == LogLevel.DEBUG

        logger.trace_enabled = True
        assert logger.effective_level == LogLevel.TRACE

    def test_flow_logs_are_independent(self):
        """Concurrent flows keep their own exchanges."""
        logger = ProtocolLogger()
        first = logger.start_flow("flow-1", "broker_callback")
        second = logger.start_flow("flow-2", "external_token_validation")

        logger.log_exchange(_exchange(id="ex_001"), first)
        logger.log_exchange(_exchange(id="ex_002"), second)
        logger.log_exchange(_exchange(id="ex_003"), second)

        assert logger.end_flow(first) is first
        assert first.completed_at is not None
        assert second.completed_at is None
        assert len(first.exchanges) == 1
        assert len(second.exchanges) == 2

    def test_log_exchange_without_flow(self, caplog):
        logger = ProtocolLogger()

        with caplog.at_level(logging.INFO, logger="fedbroker.protocol"):
            logger.log_exchange(_exchange(response_status=200))

        assert "HTTP POST https://idp.example.com/token -> 200" in caplog.text

    def test_error_exchange_logged_at_error(self, caplog):
        logger = ProtocolLogger(level=LogLevel.ERROR)

        with caplog.at_level(logging.INFO, logger="fedbroker.protocol"):
            logger.log_exchange(_exchange(url="https://idp.example.com/token?code=code-1", error="timeout"))

        assert [r.levelno for r in caplog.records] == [logging.ERROR]
        assert "code-1" not in caplog.text


class TestLoggingClient:
    """Tests for the logging HTTP client."""

    def test_records_exchange_in_flow_log(self):
        log = ProtocolLog(flow_id="flow-1", flow_type="broker_callback")
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"ok": True}))

        with LoggingClient(protocol_logger=ProtocolLogger(), protocol_log=log, transport=transport) as client:
            client.post("https://idp.example.com/token", data={"code": "code-1"})

        (exchange,) = log.exchanges
        assert exchange.method == "POST"
        assert exchange.response_status == 200
        assert exchange.request_body == "code=code-1"

    def test_send_options_are_accepted(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"ok": True})

        log = ProtocolLog(flow_id="flow-1", flow_type="broker_callback")
        with LoggingClient(
            protocol_logger=ProtocolLogger(), protocol_log=log, transport=httpx.MockTransport(handler)
        ) as client:
            client.post("https://idp.example.com/token", data={"code": "code-1"}, auth=("c1", "secret"))
            client.get("https://idp.example.com/userinfo", follow_redirects=True, timeout=5.0)

        assert seen[0].headers["Authorization"] == "Basic YzE6c2VjcmV0"
        assert "Authorization" not in seen[1].headers
        assert [e.method for e in log.exchanges] == ["POST", "GET"]

    def test_records_redirect_chain(self):
        def handler(request):
            if request.url.path == "/start":
                return httpx.Response(302, headers={"location": "/done"})
            return httpx.Response(200, text="done")

        log = ProtocolLog(flow_id="flow-1", flow_type="broker_callback")
        with LoggingClient(
            protocol_logger=ProtocolLogger(), protocol_log=log, transport=httpx.MockTransport(handler)
        ) as client:
            response = client.get("https://idp.example.com/start")

        assert response.text == "done"
        assert log.exchanges[0].redirects == [{"url": "/done", "status": 302}]

    def test_records_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        log = ProtocolLog(flow_id="flow-1", flow_type="broker_callback")
        with LoggingClient(
            protocol_logger=ProtocolLogger(level=LogLevel.ERROR),
            protocol_log=log,
            transport=httpx.MockTransport(handler),
        ) as client:
            with pytest.raises(httpx.ConnectError):
                client.get("https://idp.example.com/userinfo")

        assert log.exchanges[0].error == "connection refused"
        assert log.exchanges[0].response_status is None


@pytest.mark.usefixtures("restore_logging")
class TestConfigureLogging:
    """Tests for configure_logging function."""

    def test_defaults(self):
        logger = configure_logging()

        assert logger.level == LogLevel.INFO
        assert not logger.trace_enabled
        assert get_protocol_logger() is logger

    def test_string_level(self):
        assert configure_logging(level="debug").level == LogLevel.DEBUG
        assert configure_logging(level="bogus").level == LogLevel.INFO

    def test_trace_warning(self, caplog):
        with caplog.at_level(logging.WARNING, logger="fedbroker.protocol"):
            logger = configure_logging(level=LogLevel.TRACE, trace_enabled=True)

        assert logger.effective_level == LogLevel.TRACE
        assert "TRACE logging enabled" in caplog.text

    def test_log_file(self, tmp_path):
        path = tmp_path / "fedbroker.log"

        configure_logging(level="INFO", log_file=path)
        logging.getLogger("fedbroker.broker").info("broker started")
        for handler in logging.getLogger("fedbroker").handlers:
            handler.flush()

        assert "broker started" in path.read_text()


@pytest.mark.usefixtures("restore_logging")
class TestGlobalLogger:
    """Tests for global logger management."""

    def test_get_protocol_logger(self):
        assert get_protocol_logger() is get_protocol_logger()

    def test_set_protocol_logger(self):
        custom = ProtocolLogger(level=LogLevel.DEBUG)
        set_protocol_logger(custom)

        assert get_protocol_logger() is custom
