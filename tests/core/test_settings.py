"""Tests for configuration."""

import pytest
from pydantic import ValidationError

from sshlogin_monitor.core.config import Config, MonitorConfig, ReportingConfig


def test_config_defaults():
    """Test default configuration values."""
    config = Config()
    assert config.ssh_login.enabled is False
    assert config.monitor.socket_path == "/run/sshlogin-monitor/ssh_login.sock"
    assert config.monitor.queue_size == 100
    assert config.hooks.pam_config_file == "/etc/pam.d/sshd"
    assert config.hooks.sshd_config_file == "/etc/ssh/sshd_config"
    assert config.hooks.hook_command == "ssh-login-hook"
    assert config.reporting.enabled is False


def test_config_load_valid(tmp_path):
    config_file = tmp_path / "sshlogin.toml"
    config_file.write_text(
        """
[ssh_login]
enabled = true

[monitor]
queue_size = 10

[hooks]
restart_sshd = false

[reporting]
enabled = true
endpoint_url = "https://monitor.example.com/api/events"
agent_id = "agent-1"

[logging]
level = "DEBUG"
"""
    )

    config = Config.load(config_file)
    assert config.ssh_login.enabled is True
    assert config.monitor.queue_size == 10
    assert config.hooks.restart_sshd is False
    assert config.reporting.agent_id == "agent-1"
    assert config.logging.level == "DEBUG"


def test_config_load_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        Config.load(tmp_path / "nonexistent.toml")


def test_queue_size_must_be_positive():
    with pytest.raises(ValidationError):
        MonitorConfig(queue_size=0)


def test_reporting_rejects_invalid_url():
    with pytest.raises(ValidationError):
        ReportingConfig(enabled=True, endpoint_url="not-a-url")


def test_reporting_agent_id_defaults_to_hostname():
    assert ReportingConfig().agent_id
