"""Tests for webhook signature checks and event parsing."""

import json

import pytest
from pydantic import ValidationError as PydanticValidationError

from calvarypay.core.exceptions import InvalidSignatureError
from calvarypay.webhooks.audit import VERIFIED_MARKER, build_audit_entry
from calvarypay.webhooks.events import (
    ChargeFailed,
    ChargeSuccess,
    TransferFailed,
    TransferSuccess,
    UnhandledEvent,
    parse_event,
)
from calvarypay.webhooks.signature import compute_signature, verify_signature

pytestmark = pytest.mark.unit

SECRET = "whsec_unit"


def _body(payload: dict) -> bytes:
    return json.dumps(payload).encode()


# ============================================================================
# Signature
# ============================================================================


def test_valid_signature_passes():
    body = _body({"event": "charge.success", "data": {"reference": "ref-1"}})
    verify_signature(body, compute_signature(body, SECRET), SECRET)


def test_signature_is_case_insensitive_hex():
    body = _body({"event": "charge.success"})
    verify_signature(body, compute_signature(body, SECRET).upper(), SECRET)


def test_signature_is_sha512_hex():
    assert len(compute_signature(b"{}", SECRET)) == 128


def test_missing_signature_rejected():
    with pytest.raises(InvalidSignatureError) as exc_info:
        verify_signature(b"{}", None, SECRET)

    assert exc_info.value.status_code == 401
    assert exc_info.value.code == "MISSING_SIGNATURE"


def test_wrong_signature_rejected():
    body = _body({"event": "charge.success"})
    with pytest.raises(InvalidSignatureError) as exc_info:
        verify_signature(body, compute_signature(body, "other-secret"), SECRET)

    assert exc_info.value.code == "INVALID_SIGNATURE"


def test_signature_over_reserialized_body_rejected():
    """The HMAC covers the exact bytes received, not a re-encoding of them."""
    original = b'{"event": "charge.success",  "data": {}}'
    reencoded = json.dumps(json.loads(original)).encode()

    with pytest.raises(InvalidSignatureError):
        verify_signature(reencoded, compute_signature(original, SECRET), SECRET)


@pytest.mark.parametrize("signature", ["caf\xe9", "\u00e9" * 128, "\udcff"])
def test_non_ascii_signature_is_a_mismatch(signature):
    with pytest.raises(InvalidSignatureError) as exc_info:
        verify_signature(b"{}", signature, SECRET)

    assert exc_info.value.code == "INVALID_SIGNATURE"


def test_unconfigured_secret_rejects_everything():
    body = b"{}"
    with pytest.raises(InvalidSignatureError):
        verify_signature(body, compute_signature(body, ""), "")


# ============================================================================
# Event parsing
# ============================================================================


@pytest.mark.parametrize(
    ("event_type", "expected_cls"),
    [
        ("charge.success", ChargeSuccess),
        ("charge.failed", ChargeFailed),
        ("transfer.success", TransferSuccess),
        ("transfer.failed", TransferFailed),
    ],
)
def test_known_events_parse_to_their_variant(event_type, expected_cls):
    event = parse_event({"event": event_type, "data": {"reference": "ref-1", "amount": 5000}})

    assert isinstance(event, expected_cls)
    assert event.reference == "ref-1"
    assert event.data.amount == 5000


def test_unknown_event_becomes_unhandled():
    event = parse_event({"event": "subscription.create", "data": {"reference": "ref-1"}})

    assert isinstance(event, UnhandledEvent)
    assert event.event == "subscription.create"


def test_event_without_type_becomes_unhandled():
    event = parse_event({"data": {}})

    assert isinstance(event, UnhandledEvent)
    assert event.event == "unknown"
    assert event.reference is None


def test_provider_fields_are_preserved():
    event = parse_event(
        {"event": "charge.success", "data": {"reference": "ref-1", "id": 302961, "channel": "card", "metadata": ""}}
    )

    raw = event.raw_data()
    assert raw["id"] == 302961
    assert raw["channel"] == "card"
    assert raw["metadata"] == ""


def test_malformed_known_event_raises():
    with pytest.raises(PydanticValidationError):
        parse_event({"event": "charge.success", "data": {"amount": "not-a-number"}})


def test_failure_reason_prefers_message():
    event = parse_event(
        {"event": "charge.failed", "data": {"reference": "r", "message": "Insufficient funds", "gateway_response": "Declined"}}
    )
    assert event.failure_reason == "Insufficient funds"

    fallback = parse_event({"event": "charge.failed", "data": {"reference": "r", "gateway_response": "Declined"}})
    assert fallback.failure_reason == "Declined"


# ============================================================================
# Audit entry
# ============================================================================


def test_audit_entry_keeps_only_safe_fields():
    event = parse_event(
        {
            "event": "charge.success",
            "data": {
                "reference": "ref-1",
                "status": "success",
                "amount": 5000,
                "currency": "GHS",
                "authorization": {"last4": "4081", "bin": "408408"},
                "customer": {"email": "payer@example.com"},
            },
        }
    )

    entry = build_audit_entry(event)

    assert entry.type == "webhook.charge.success"
    assert entry.correlation_id == "webhook_ref-1"
    assert entry.signature_hmac == VERIFIED_MARKER
    assert entry.id.startswith("webhook_")
    assert entry.payload == {
        "event": "charge.success",
        "reference": "ref-1",
        "status": "success",
        "amount": 5000,
        "currency": "GHS",
    }


def test_audit_entry_without_reference_has_no_correlation_id():
    entry = build_audit_entry(parse_event({"event": "subscription.create", "data": {}}))

    assert entry.correlation_id is None
    assert entry.payload["reference"] is None
