"""Entry point for the SSH login monitor agent."""

import argparse
import asyncio
import logging
import logging.handlers
import queue
import signal
import sys
from collections.abc import Awaitable, Callable
from enum import Enum
from pathlib import Path

from .core.config import Config, LoggingConfig
from .core.config_watcher import ConfigWatcher
from .core.dispatcher import EventDispatcher
from .core.events import LoginEvent
from .monitors.ssh_login import SSHLoginMonitor
from .pam.hook_client import send_event_from_env
from .pam.hook_manager import HookManager
from .reporting.reporter import EventReporter

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
HOOK_COMMAND = "ssh-login-hook"


class LogLevel(Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class Command(Enum):
    RUN = "run"
    SSH_LOGIN_HOOK = HOOK_COMMAND
    INSTALL_HOOK = "install-hook"
    UNINSTALL_HOOK = "uninstall-hook"


def _setup_logging(level: int, logging_config: LoggingConfig | None = None) -> None:
    """Configure stderr logging plus an optional rotating log file."""
    logging.basicConfig(level=level, format=LOG_FORMAT)

    if logging_config is None or not logging_config.file:
        return

    try:
        Path(logging_config.file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            logging_config.file,
            maxBytes=logging_config.max_size_mb * 1024 * 1024,
            backupCount=logging_config.backup_count,
        )
    except OSError as e:
        logger.warning("Cannot open log file %s: %s", logging_config.file, e)
        return

    file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logging.getLogger().addHandler(file_handler)


def _create_login_event_handler() -> Callable[[LoginEvent], Awaitable[None]]:
    """Create the handler that records each login in the agent log."""

    async def log_login_event(event: LoginEvent):
        logger.info(
            "SSH login: %s from %s:%s on %s (pid %s)",
            event.username,
            event.source_ip,
            event.source_port or "-",
            event.tty or "-",
            event.session_id,
        )

    return log_login_event


def _initialize_components(
    config: Config,
) -> tuple[SSHLoginMonitor, EventDispatcher, EventReporter]:
    """Initialize all system components."""
    monitor = SSHLoginMonitor.from_config(config)

    reporter = EventReporter(
        enabled=config.reporting.enabled,
        endpoint_url=config.reporting.endpoint_url,
        agent_id=config.reporting.agent_id,
        timeout_seconds=config.reporting.timeout_seconds,
    )
    if reporter.enabled:
        logger.info("Event reporting enabled: %s", config.reporting.endpoint_url)
    else:
        logger.info("Event reporting disabled")

    dispatcher = EventDispatcher()
    dispatcher.register_handler(_create_login_event_handler())
    dispatcher.register_handler(reporter.report)

    return monitor, dispatcher, reporter


async def _drain_events(
    monitor: SSHLoginMonitor, dispatcher: EventDispatcher, poll_interval: float = 1.0
) -> None:
    """Hand queued login events to the dispatcher until cancelled."""
    events = monitor.get_events()
    while True:
        try:
            event = await asyncio.to_thread(events.get, timeout=poll_interval)
        except queue.Empty:
            continue
        await dispatcher.dispatch(event)


def _setup_signal_handlers() -> asyncio.Event:
    """Setup signal handlers for graceful shutdown."""
    shutdown_event = asyncio.Event()

    def signal_handler():
        logger.info("Shutdown signal received")
        shutdown_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, signal_handler)

    return shutdown_event


async def main_loop(config: Config, config_path: Path | None = None):
    """Main monitoring loop."""
    logger.info("Starting SSH login monitor")

    monitor, dispatcher, reporter = _initialize_components(config)
    await asyncio.to_thread(monitor.start, config.ssh_login)

    watcher = None
    if config_path is not None:
        watcher = ConfigWatcher(
            config_path,
            on_change=lambda new_config: monitor.start(new_config.ssh_login),
            initial=config,
        )
        watcher.start()

    drain_task = asyncio.create_task(_drain_events(monitor, dispatcher))

    shutdown_event = _setup_signal_handlers()
    try:
        await shutdown_event.wait()
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")
    finally:
        logger.info("Shutting down...")
        if watcher is not None:
            watcher.stop()
        drain_task.cancel()
        await asyncio.gather(drain_task, return_exceptions=True)
        monitor.stop()
        await reporter.close()
        logger.info("Shutdown complete")


def run_ssh_login_hook() -> int:
    """Handle a pam_exec invocation. Always succeeds so logins are never held up."""
    try:
        send_event_from_env()
    except OSError as e:
        logger.warning("Failed to send SSH login event: %s", e)
    return 0


def run_hook_manager(config: Config, install: bool) -> int:
    """Install or remove the PAM hook once, for manual setups."""
    manager = HookManager(config.hooks)
    if not install:
        manager.uninstall()
        return 0

    try:
        manager.install()
    except PermissionError as e:
        logger.error("%s; run this command as root", e)
        return 1
    except Exception as e:
        logger.error("PAM hook installation failed: %s", e)
        return 1
    return 0


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="SSH Login Monitor - PAM-based SSH login surveillance"
    )
    parser.add_argument(
        "command",
        nargs="?",
        choices=[command.value for command in Command],
        default=Command.RUN.value,
        help="What to do (default: run the monitoring agent)",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default="sshlogin.toml",
        help="Path to configuration file",
    )
    parser.add_argument(
        "--log-level",
        choices=[level.value for level in LogLevel],
        default=None,
        help="Logging level (overrides the configuration file)",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None):
    """Main entry point."""
    args = _parse_args(argv)
    command = Command(args.command)

    # pam_exec runs us once per session; stay quiet and never fail the login
    if command is Command.SSH_LOGIN_HOOK:
        _setup_logging(logging.WARNING)
        sys.exit(run_ssh_login_hook())

    try:
        config = Config.load(args.config)

        level_name = args.log_level or config.logging.level.upper()
        log_level = getattr(logging, level_name, logging.INFO)

        _setup_logging(log_level, config.logging)

        logger.info("Configuration loaded from: %s", args.config)
        logger.info("Logging level set to: %s", logging.getLevelName(log_level))

        if command is Command.INSTALL_HOOK:
            sys.exit(run_hook_manager(config, install=True))
        if command is Command.UNINSTALL_HOOK:
            sys.exit(run_hook_manager(config, install=False))

        asyncio.run(main_loop(config, args.config))

    except FileNotFoundError as e:
        logger.error("Configuration file not found: %s", e)
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(0)
    except Exception as e:
        logger.error("Fatal error: %s", e)
        sys.exit(1)


if __name__ == "__main__":
    main()
