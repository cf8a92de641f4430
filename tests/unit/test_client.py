"""Tests for the Client capture pipeline."""

from typing import Any

import pytest
from structlog.testing import capture_logs

from errata.client import Capture, Client
from errata.contracts.enums import Level, SendStatus
from errata.contracts.events import Attachment, Event
from errata.core.config import ClientOptions
from errata.scope import Scope
from errata.tracing import Transaction
from tests.fixtures import TEST_DSN, make_client, make_event

RESULT_TIMEOUT = 5.0


def _payloads(executor: Any) -> list[dict[str, Any]]:
    return [envelope.items[0].payload for envelope in executor.envelopes]


def _transaction_event(**fields: Any) -> Event:
    return make_event(type="transaction", transaction="GET /items", start_timestamp=1.0, **fields)


# =============================================================================
# Event construction
# =============================================================================


class TestCaptureMessage:
    """Tests for message capture."""

    def test_delivered_with_metadata(self) -> None:
        """Release, environment and server name are attached to the event."""
        client, executor = make_client(release="app@1.2.0", environment="staging")
        try:
            capture = client.capture_message("deploy finished")
            result = capture.future.result(timeout=RESULT_TIMEOUT)
        finally:
            client.close()

        assert capture.sent
        assert result.status == SendStatus.SUCCESS
        payload = _payloads(executor)[0]
        assert payload["event_id"] == capture.event_id
        assert payload["message"] == "deploy finished"
        assert payload["level"] == "info"
        assert payload["release"] == "app@1.2.0"
        assert payload["environment"] == "staging"
        assert payload["server_name"] == "test-host"
        assert payload["sdk"]["name"] == "errata.python"

    def test_explicit_context(self) -> None:
        client, executor = make_client()
        try:
            client.capture_message("hi", Level.WARNING, tags={"a": "1"}, fingerprint=["group-a"])
            client.flush(timeout=RESULT_TIMEOUT)
        finally:
            client.close()

        payload = _payloads(executor)[0]
        assert payload["level"] == "warning"
        assert payload["tags"] == {"a": "1"}
        assert payload["fingerprint"] == ["group-a"]

    def test_attach_stacktrace(self) -> None:
        client, executor = make_client(attach_stacktrace=True)
        try:
            client.capture_message("with stack")
            client.flush(timeout=RESULT_TIMEOUT)
        finally:
            client.close()

        frames = _payloads(executor)[0]["stacktrace"]["frames"]
        assert frames
        assert frames[-1]["function"] == "test_attach_stacktrace"


class TestCaptureException:
    """Tests for exception capture."""

    def test_exception_values(self) -> None:
        client, executor = make_client()
        try:
            try:
                raise ValueError("bad input")
            except ValueError as e:
                client.capture_exception(e)
            client.flush(timeout=RESULT_TIMEOUT)
        finally:
            client.close()

        payload = _payloads(executor)[0]
        assert payload["level"] == "error"
        value = payload["exception"]["values"][-1]
        assert value["type"] == "ValueError"
        assert value["value"] == "bad input"
        assert value["stacktrace"]["frames"][-1]["function"] == "test_exception_values"

    def test_hint_carries_original_exception(self) -> None:
        seen: list[dict[str, Any]] = []

        def before_send(event: Event, hint: dict[str, Any]) -> Event:
            seen.append(hint)
            return event

        client, _ = make_client(before_send=before_send)
        error = RuntimeError("x")
        try:
            client.capture_exception(error)
        finally:
            client.close()

        assert seen[0]["original_exception"] is error


# =============================================================================
# Scope merge and processors
# =============================================================================


class TestScopeMerge:
    """Tests for applying the scope during capture."""

    def test_capture_values_win_over_scope(self) -> None:
        scope = Scope()
        scope.set_tag("region", "eu")
        scope.set_tag("tier", "gold")
        client, executor = make_client()
        try:
            client.capture_message("hi", scope=scope, tags={"region": "us"})
            client.flush(timeout=RESULT_TIMEOUT)
        finally:
            client.close()

        assert _payloads(executor)[0]["tags"] == {"region": "us", "tier": "gold"}

    def test_scope_attachments_are_sent(self) -> None:
        scope = Scope()
        scope.add_attachment(Attachment.from_text("scope log", "scope.log"))
        client, executor = make_client()
        try:
            client.capture_event(
                make_event(message="with files"),
                scope=scope,
                attachments=[Attachment(payload=b"\x00\x01", filename="dump.bin")],
            )
            client.flush(timeout=RESULT_TIMEOUT)
        finally:
            client.close()

        items = executor.envelopes[0].items
        assert [item.headers.get("filename") for item in items[1:]] == ["scope.log", "dump.bin"]
        assert items[2].payload == b"\x00\x01"

    def test_envelope_carries_dsn(self) -> None:
        client, executor = make_client()
        try:
            client.capture_message("hi")
            client.flush(timeout=RESULT_TIMEOUT)
        finally:
            client.close()

        assert executor.envelopes[0].headers["dsn"] == TEST_DSN

    def test_scope_level_applies_to_messages(self) -> None:
        scope = Scope()
        scope.set_level(Level.FATAL)
        client, executor = make_client()
        try:
            client.capture_message("escalated", scope=scope)
            client.flush(timeout=RESULT_TIMEOUT)
        finally:
            client.close()

        assert _payloads(executor)[0]["level"] == "fatal"

    def test_scope_level_applies_to_exceptions(self) -> None:
        scope = Scope()
        scope.set_level("warning")
        client, executor = make_client()
        try:
            client.capture_exception(ValueError("soft failure"), scope=scope)
            client.flush(timeout=RESULT_TIMEOUT)
        finally:
            client.close()

        assert _payloads(executor)[0]["level"] == "warning"

    def test_explicit_level_wins_over_scope_level(self) -> None:
        scope = Scope()
        scope.set_level(Level.FATAL)
        client, executor = make_client()
        try:
            client.capture_message("quiet", Level.DEBUG, scope=scope)
            client.flush(timeout=RESULT_TIMEOUT)
        finally:
            client.close()

        assert _payloads(executor)[0]["level"] == "debug"


class TestEventProcessors:
    """Tests for client and scope processors."""

    def test_client_processors_run_before_scope_processors(self) -> None:
        order: list[str] = []

        def client_processor(event: Event) -> Event:
            order.append("client")
            return event

        def scope_processor(event: Event) -> Event:
            order.append("scope")
            return event

        scope = Scope()
        scope.add_event_processor(scope_processor)
        client, _ = make_client()
        client.add_event_processor(client_processor)
        try:
            client.capture_message("hi", scope=scope)
        finally:
            client.close()

        assert order == ["client", "scope"]

    def test_processor_drop_is_recorded(self) -> None:
        scope = Scope()
        scope.add_event_processor(lambda event: None)
        client, executor = make_client()
        try:
            capture = client.capture_message("dropped", scope=scope)
            metrics = client.transport.health_metrics
        finally:
            client.close()

        assert not capture.sent
        assert executor.call_count == 0
        assert metrics["dropped"] == {"event_processor:error": 1}

    def test_processor_can_rewrite_event(self) -> None:
        client, executor = make_client()
        client.add_event_processor(lambda event: event.with_changes(message="[redacted]"))
        try:
            client.capture_message("secret")
            client.flush(timeout=RESULT_TIMEOUT)
        finally:
            client.close()

        assert _payloads(executor)[0]["message"] == "[redacted]"


# =============================================================================
# Sampling and before_send
# =============================================================================


class TestSampling:
    """Tests for error and transaction sampling."""

    def test_zero_sample_rate_drops_errors(self) -> None:
        client, executor = make_client(sample_rate=0.0)
        try:
            capture = client.capture_message("never sent")
            metrics = client.transport.health_metrics
        finally:
            client.close()

        assert not capture.sent
        assert executor.call_count == 0
        assert metrics["dropped"] == {"sample_rate:error": 1}

    def test_transactions_unsampled_by_default(self) -> None:
        """Without a rate, sampler or explicit decision, transactions are dropped."""
        client, executor = make_client()
        try:
            capture = client.capture_event(_transaction_event())
        finally:
            client.close()

        assert not capture.sent
        assert executor.call_count == 0

    def test_explicit_decision_wins(self) -> None:
        client, _ = make_client(traces_sample_rate=0.0)
        try:
            kept = client.capture_event(_transaction_event(), hint={"sampled": True})
            dropped = client.capture_event(_transaction_event(), hint={"sampled": False})
        finally:
            client.close()

        assert kept.sent
        assert not dropped.sent

    def test_traces_sample_rate(self) -> None:
        client, executor = make_client(traces_sample_rate=1.0)
        try:
            client.capture_event(_transaction_event())
            client.flush(timeout=RESULT_TIMEOUT)
        finally:
            client.close()

        assert executor.envelopes[0].items[0].type == "transaction"

    def test_traces_sampler_receives_context(self) -> None:
        contexts: list[dict[str, Any]] = []

        def sampler(context: dict[str, Any]) -> float:
            contexts.append(context)
            return 0.0 if context.get("skip") else 1.0

        client, _ = make_client(traces_sample_rate=1.0, traces_sampler=sampler)
        try:
            kept = client.capture_event(_transaction_event(), hint={"sampling_context": {"skip": False}})
            skipped = client.capture_event(_transaction_event(), hint={"sampling_context": {"skip": True}})
        finally:
            client.close()

        assert kept.sent
        assert not skipped.sent
        assert contexts == [{"skip": False}, {"skip": True}]

    def test_raising_sampler_drops(self) -> None:
        def sampler(context: dict[str, Any]) -> float:
            raise RuntimeError("sampler bug")

        client, _ = make_client(traces_sampler=sampler)
        try:
            capture = client.capture_event(_transaction_event())
        finally:
            client.close()

        assert not capture.sent

    def test_sample_rate_does_not_apply_to_transactions(self) -> None:
        client, _ = make_client(sample_rate=0.0, traces_sample_rate=1.0)
        try:
            capture = client.capture_event(_transaction_event())
        finally:
            client.close()

        assert capture.sent


class TestBeforeSend:
    """Tests for the final transform hooks."""

    def test_before_send_can_modify(self) -> None:
        def before_send(event: Event, hint: dict[str, Any]) -> Event:
            return event.with_changes(tags={**event.tags, "scrubbed": "yes"})

        client, executor = make_client(before_send=before_send)
        try:
            client.capture_message("hi")
            client.flush(timeout=RESULT_TIMEOUT)
        finally:
            client.close()

        assert _payloads(executor)[0]["tags"] == {"scrubbed": "yes"}

    def test_before_send_can_drop(self) -> None:
        client, executor = make_client(before_send=lambda event, hint: None)
        try:
            capture = client.capture_message("hi")
            metrics = client.transport.health_metrics
        finally:
            client.close()

        assert not capture.sent
        assert executor.call_count == 0
        assert metrics["dropped"] == {"before_send:error": 1}

    def test_raising_before_send_drops_with_warning(self) -> None:
        """A failing hook never propagates to the caller."""

        def before_send(event: Event, hint: dict[str, Any]) -> Event:
            raise RuntimeError("hook bug")

        client, executor = make_client(before_send=before_send)
        try:
            with capture_logs() as logs:
                capture = client.capture_message("hi")
        finally:
            client.close()

        assert isinstance(capture, Capture)
        assert not capture.sent
        assert executor.call_count == 0
        assert any(entry["event"] == "before_send_failed" for entry in logs)

    def test_transactions_use_their_own_hook(self) -> None:
        calls: list[str] = []

        def before_send(event: Event, hint: dict[str, Any]) -> Event:
            calls.append("error")
            return event

        def before_send_transaction(event: Event, hint: dict[str, Any]) -> Event:
            calls.append("transaction")
            return event

        client, _ = make_client(
            before_send=before_send,
            before_send_transaction=before_send_transaction,
            traces_sample_rate=1.0,
        )
        try:
            client.capture_event(_transaction_event())
            client.capture_message("hi")
        finally:
            client.close()

        assert calls == ["transaction", "error"]


# =============================================================================
# Lifecycle
# =============================================================================


class TestLifecycle:
    """Tests for enabled/disabled clients and shutdown."""

    def test_client_without_dsn_is_disabled(self) -> None:
        client = Client(ClientOptions(default_integrations=False))

        capture = client.capture_message("nowhere")

        assert not client.enabled
        assert len(capture.event_id) == 32
        assert capture.future is None
        assert client.flush() is True
        assert client.close() is True

    def test_dsn_builds_http_transport(self) -> None:
        client = Client(ClientOptions(dsn=TEST_DSN, default_integrations=False))
        try:
            assert client.enabled
            assert client.dsn is not None
            assert client.dsn.project_id == "42"
        finally:
            client.close()

    def test_close_stops_sending(self) -> None:
        client, executor = make_client()
        client.close()

        capture = client.capture_message("after close")

        assert not capture.sent
        assert executor.closed
        assert executor.call_count == 0

    def test_close_inside_before_send_skips_delivery(self) -> None:
        """A client closed while an event is in the pipeline drops it without an error."""
        clients: list[Client] = []

        def close_then_keep(event: Event, hint: dict[str, Any]) -> Event:
            clients[0].close()
            return event

        client, executor = make_client(before_send=close_then_keep)
        clients.append(client)

        with capture_logs() as logs:
            capture = client.capture_message("racing shutdown")

        assert not capture.sent
        assert executor.call_count == 0
        assert "event_pipeline_failed" not in [entry["event"] for entry in logs]
        assert "client_closed_during_capture" in [entry["event"] for entry in logs]

    def test_flush_waits_for_delivery(self) -> None:
        client, executor = make_client()
        try:
            for n in range(5):
                client.capture_message(f"message {n}")
            assert client.flush(timeout=RESULT_TIMEOUT) is True
            assert executor.call_count == 5
        finally:
            client.close()


# =============================================================================
# Integrations
# =============================================================================


class _RecordingIntegration:
    identifier = "recording"

    def __init__(self) -> None:
        self.installed_on: list[Client] = []

    def install(self, client: Client) -> None:
        self.installed_on.append(client)


class _BrokenIntegration:
    identifier = "broken"

    def install(self, client: Client) -> None:
        raise RuntimeError("cannot install")


class TestIntegrationSetup:
    """Tests for installing explicit integrations."""

    def test_installed_once_per_identifier(self) -> None:
        first, second = _RecordingIntegration(), _RecordingIntegration()
        client, _ = make_client(integrations=(first, second))
        try:
            assert client.get_integration("recording") is first
            assert first.installed_on == [client]
            assert second.installed_on == []
        finally:
            client.close()

    def test_failing_install_is_skipped(self) -> None:
        client, _ = make_client(integrations=(_BrokenIntegration(), _RecordingIntegration()))
        try:
            assert client.get_integration("broken") is None
            assert client.get_integration("recording") is not None
        finally:
            client.close()

    @pytest.mark.parametrize("identifier", ["dedupe", "excepthook"])
    def test_default_integrations_disabled(self, identifier: str) -> None:
        client, _ = make_client()
        try:
            assert client.get_integration(identifier) is None
        finally:
            client.close()
