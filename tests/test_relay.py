"""Tests for the best-effort relay webhook."""

import json

import httpx
from conftest import make_record

from referral_intake.models import RelayOutcome
from referral_intake.services.relay import REFERRAL_CREATED, SERVICE_COMPLETED, RelayClient

WEBHOOK_URL = "https://hooks.example.com/catch/123"


def _client(handler, **kwargs) -> RelayClient:
    return RelayClient(WEBHOOK_URL, transport=httpx.MockTransport(handler), **kwargs)


def test_acknowledged_on_2xx():
    received = []

    def handler(request: httpx.Request) -> httpx.Response:
        received.append(json.loads(request.content))
        return httpx.Response(200, json={"status": "success"})

    outcome = _client(handler).dispatch(REFERRAL_CREATED, make_record())

    assert outcome == RelayOutcome.ACKNOWLEDGED
    assert outcome.succeeded
    assert received[0]["event"] == "referral_created"
    assert received[0]["clientName"] == "Jane Client"
    assert received[0]["serviceType"] == "tax_preparation"


def test_read_timeout_counts_as_success():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("no response", request=request)

    outcome = _client(handler).dispatch(SERVICE_COMPLETED, make_record())

    assert outcome == RelayOutcome.TIMED_OUT
    assert outcome.succeeded


def test_connection_failure_is_failed_not_raised():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    outcome = _client(handler).dispatch(SERVICE_COMPLETED, make_record())

    assert outcome == RelayOutcome.FAILED
    assert not outcome.succeeded


def test_error_status_is_failed():
    outcome = _client(lambda request: httpx.Response(500)).dispatch(
        SERVICE_COMPLETED, make_record()
    )
    assert outcome == RelayOutcome.FAILED


def test_malformed_webhook_url_is_failed_not_raised():
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("request should not be sent")

    relay = RelayClient(
        "https://hooks.example.com:99999/catch", transport=httpx.MockTransport(handler)
    )

    assert relay.dispatch(REFERRAL_CREATED, make_record()) == RelayOutcome.FAILED


def test_unconfigured_relay_is_skipped():
    relay = RelayClient(None)
    assert not relay.is_configured()
    assert relay.dispatch(REFERRAL_CREATED, make_record()) == RelayOutcome.SKIPPED


def test_snake_payload_uses_spaced_service_type():
    payload = RelayClient(WEBHOOK_URL, payload_style="snake").build_payload(
        REFERRAL_CREATED, make_record()
    )
    assert payload["id"] == "REF-ABCD1234"
    assert payload["client_name"] == "Jane Client"
    assert payload["service_type"] == "tax preparation"
    assert payload["appointment_date"] == ""
    assert payload["event"] == "referral_created"
