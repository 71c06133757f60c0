"""Tests for the login event model."""

import json

import pytest
from pydantic import ValidationError

from sshlogin_monitor.core.events import LoginEvent


def test_wire_field_names():
    event = LoginEvent(
        username="alice",
        source_ip="10.0.0.5",
        source_port="54321",
        timestamp_millis=1700000000000,
        status="success",
        tty="pts/0",
        session_id="4242",
    )

    payload = json.loads(event.to_wire())
    assert payload == {
        "username": "alice",
        "sourceIP": "10.0.0.5",
        "sourcePort": "54321",
        "timestampMillis": 1700000000000,
        "status": "success",
        "authMethod": "unknown",
        "tty": "pts/0",
        "sessionID": "4242",
    }


def test_decode_legacy_field_names():
    data = (
        b'{"username": "bob", "ip": "192.0.2.1", "port": "2222",'
        b' "timestamp": 1700000000000, "status": "success",'
        b' "method": "publickey", "sessionId": "77"}'
    )

    event = LoginEvent.from_wire(data)
    assert event.source_ip == "192.0.2.1"
    assert event.source_port == "2222"
    assert event.timestamp_millis == 1700000000000
    assert event.auth_method == "publickey"
    assert event.session_id == "77"


def test_decode_fills_defaults_and_ignores_unknown_keys():
    event = LoginEvent.from_wire(b'{"username": "carol", "extra": 1}')
    assert event.source_ip == "localhost"
    assert event.timestamp_millis == 0
    assert event.status == ""


@pytest.mark.parametrize(
    "payload",
    [b"not json", b'{"username": "alice"', b"[1, 2, 3]", b'{"timestampMillis": "soon"}'],
)
def test_decode_rejects_malformed_payloads(payload):
    with pytest.raises(ValidationError):
        LoginEvent.from_wire(payload)


def test_backfill_only_fills_missing_fields():
    event = LoginEvent(username="alice")
    event.backfill(now=1234)
    assert event.timestamp_millis == 1234
    assert event.status == "success"

    event = LoginEvent(username="alice", timestamp_millis=99, status="failed")
    event.backfill(now=1234)
    assert event.timestamp_millis == 99
    assert event.status == "failed"
