"""Tests for the PAM hook client."""

import os
import socket

import pytest

from sshlogin_monitor.core.events import LoginEvent
from sshlogin_monitor.pam.hook_client import (
    build_event_from_env,
    send_event,
    send_event_from_env,
)


def test_build_event_from_ssh_connection():
    env = {"PAM_USER": "alice", "SSH_CONNECTION": "10.0.0.5 54321 10.0.0.1 22"}

    event = build_event_from_env(env)
    assert event.username == "alice"
    assert event.source_ip == "10.0.0.5"
    assert event.source_port == "54321"
    assert event.status == "success"
    assert event.tty == "unknown"
    assert event.auth_method == "unknown"
    assert event.session_id == str(os.getpid())
    assert event.timestamp_millis > 0


def test_pam_rhost_takes_precedence():
    env = {
        "PAM_USER": "bob",
        "PAM_RHOST": "203.0.113.9",
        "PAM_TTY": "ssh",
        "SSH_CONNECTION": "10.0.0.5 54321 10.0.0.1 22",
    }

    event = build_event_from_env(env)
    assert event.source_ip == "203.0.113.9"
    assert event.source_port == "54321"
    assert event.tty == "ssh"


def test_stripped_environment_uses_sentinels():
    event = build_event_from_env({})
    assert event.username == "unknown"
    assert event.source_ip == "localhost"
    assert event.source_port is None
    assert event.tty == "unknown"


def test_send_event_from_env_ignores_other_pam_phases(short_tmp):
    """close_session and friends must not produce events."""
    env = {"PAM_TYPE": "close_session", "PAM_USER": "alice"}
    # nothing listens here, so an attempted send would raise
    assert send_event_from_env(env, str(short_tmp / "missing.sock")) is False
    assert send_event_from_env({}, str(short_tmp / "missing.sock")) is False


def test_send_event_without_listener_raises(short_tmp):
    with pytest.raises(OSError):
        send_event(build_event_from_env({}), str(short_tmp / "missing.sock"))


def test_send_event_delivers_one_datagram(short_tmp):
    path = str(short_tmp / "hook.sock")
    with socket.socket(socket.AF_UNIX, socket.SOCK_DGRAM) as receiver:
        receiver.bind(path)
        receiver.settimeout(5)

        env = {
            "PAM_TYPE": "open_session",
            "PAM_USER": "carol",
            "SSH_CONNECTION": "192.0.2.7 40000 192.0.2.1 22",
        }
        assert send_event_from_env(env, path) is True

        event = LoginEvent.from_wire(receiver.recv(4096))

    assert event.username == "carol"
    assert event.source_ip == "192.0.2.7"
    assert event.source_port == "40000"
