"""Configuration handling for the SSH login monitor."""

import socket
from pathlib import Path

import toml
from pydantic import BaseModel, Field, HttpUrl


class SSHLoginConfig(BaseModel):
    """SSH login monitoring toggle, pushed from the web console."""

    enabled: bool = False


class MonitorConfig(BaseModel):
    """Configuration for the login event listener."""

    socket_dir: str = "/run/sshlogin-monitor"
    socket_path: str = "/run/sshlogin-monitor/ssh_login.sock"
    queue_size: int = Field(default=100, gt=0)
    buffer_size: int = Field(default=4096, gt=0)
    poll_interval: float = Field(default=0.5, gt=0)


class HookConfig(BaseModel):
    """Configuration for the PAM hook installation."""

    pam_config_file: str = "/etc/pam.d/sshd"
    sshd_config_file: str = "/etc/ssh/sshd_config"
    hook_binary_path: str = "/usr/local/bin/sshlogin-monitor"
    hook_command: str = "ssh-login-hook"
    restart_sshd: bool = True
    restart_timeout_seconds: int = 30


class ReportingConfig(BaseModel):
    """Upstream event reporting configuration."""

    enabled: bool = False
    endpoint_url: HttpUrl | None = None
    agent_id: str = Field(default_factory=socket.gethostname)
    timeout_seconds: int = 10


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    file: str | None = None
    max_size_mb: int = 100
    backup_count: int = 5


class Config(BaseModel):
    """Main configuration class."""

    ssh_login: SSHLoginConfig = SSHLoginConfig()
    monitor: MonitorConfig = MonitorConfig()
    hooks: HookConfig = HookConfig()
    reporting: ReportingConfig = ReportingConfig()
    logging: LoggingConfig = LoggingConfig()

    @classmethod
    def load(cls, config_path: Path) -> "Config":
        """Load configuration from TOML file."""
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path) as f:
            data = toml.load(f)

        return cls(**data)
