"""SSH login monitor.

Listens on a local datagram socket for events sent by the PAM hook and
publishes them into a bounded queue for the reporting side to drain.
"""

import logging
import os
import queue
import socket
import sys
import threading
from pathlib import Path

from pydantic import ValidationError

from ..core.config import Config, SSHLoginConfig
from ..core.events import LoginEvent
from ..pam.hook_client import DEFAULT_SOCKET_PATH
from ..pam.hook_manager import HookManager

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 100
DEFAULT_BUFFER_SIZE = 4096
STOP_JOIN_TIMEOUT = 5.0


class UnsupportedPlatformError(RuntimeError):
    """Raised when SSH login monitoring is started on a non-Linux host."""


class SSHLoginMonitor:
    """Receive SSH login events from PAM hook processes.

    Two states, stopped and running. ``start``, ``stop`` and the decode
    loop's shutdown path serialize through one lock; the decode loop itself
    only watches the cancellation event.
    """

    def __init__(
        self,
        hook_manager: HookManager | None = None,
        socket_path: str = DEFAULT_SOCKET_PATH,
        socket_dir: str | None = None,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        buffer_size: int = DEFAULT_BUFFER_SIZE,
        poll_interval: float = 0.5,
    ):
        self.hook_manager = hook_manager or HookManager()
        self._socket_path = Path(socket_path)
        self._socket_dir = Path(socket_dir) if socket_dir else self._socket_path.parent
        self.buffer_size = buffer_size
        self.poll_interval = poll_interval

        self._events: queue.Queue[LoginEvent] = queue.Queue(maxsize=queue_size)
        self._lock = threading.Lock()
        self._enabled = False
        self._listener: socket.socket | None = None
        self._cancel: threading.Event | None = None
        self._thread: threading.Thread | None = None

        self.received_events = 0
        self.dropped_events = 0

    @classmethod
    def from_config(cls, config: Config) -> "SSHLoginMonitor":
        return cls(
            hook_manager=HookManager(config.hooks),
            socket_path=config.monitor.socket_path,
            socket_dir=config.monitor.socket_dir,
            queue_size=config.monitor.queue_size,
            buffer_size=config.monitor.buffer_size,
            poll_interval=config.monitor.poll_interval,
        )

    @property
    def socket_path(self) -> Path:
        return self._socket_path

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._enabled

    def get_events(self) -> "queue.Queue[LoginEvent]":
        """Bounded queue of received events. Consumers must only read from it."""
        return self._events

    def start(
        self, config: SSHLoginConfig, cancel: threading.Event | None = None
    ) -> None:
        """Start, restart or disable monitoring according to ``config``.

        Args:
            config: SSH login monitoring configuration
            cancel: optional caller-owned event; setting it also ends the
                decode loop

        Raises:
            UnsupportedPlatformError: not running on Linux
            OSError: the listening socket could not be set up
            HookInstallError: the PAM hook could not be installed
        """
        if not sys.platform.startswith("linux"):
            raise UnsupportedPlatformError("SSH login monitoring is only supported on Linux")

        with self._lock:
            if self._enabled:
                self._stop_locked()

            if not config.enabled:
                logger.info("SSH login monitoring disabled")
                return

            self._init_socket(cancel)
            self._enabled = True

            try:
                self.hook_manager.install()
            except PermissionError as e:
                logger.warning("Insufficient privileges to install the PAM hook: %s", e)
                logger.info(
                    "Monitoring continues; install the hook manually with "
                    "'sshlogin-monitor install-hook' as root"
                )
            except Exception as e:
                logger.warning("Failed to install the PAM hook: %s", e)
                self._stop_locked()
                raise

            logger.info("SSH login monitoring started on %s", self._socket_path)

    def stop(self) -> None:
        """Stop monitoring. Safe to call when already stopped."""
        with self._lock:
            self._stop_locked()

    def _stop_locked(self) -> None:
        if not self._enabled:
            return

        if self._cancel is not None:
            self._cancel.set()

        if self._listener is not None:
            try:
                # wakes a receive blocked in the decode loop
                self._listener.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass

        if self._thread is not None:
            if self._thread is not threading.current_thread():
                self._thread.join(timeout=STOP_JOIN_TIMEOUT)
                if self._thread.is_alive():
                    logger.warning("SSH login decode loop did not exit in time")
            self._thread = None

        if self._listener is not None:
            self._listener.close()
            self._listener = None

        try:
            self._socket_path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Failed to remove socket %s: %s", self._socket_path, e)

        try:
            self.hook_manager.uninstall()
        except Exception as e:
            logger.warning("Failed to uninstall the PAM hook: %s", e)

        self._cancel = None
        self._enabled = False
        logger.info("SSH login monitoring stopped")

    def _init_socket(self, parent_cancel: threading.Event | None) -> None:
        self._socket_dir.mkdir(mode=0o755, parents=True, exist_ok=True)

        try:
            self._socket_path.unlink()
        except FileNotFoundError:
            pass

        listener = socket.socket(socket.AF_UNIX, socket.SOCK_DGRAM)
        try:
            listener.bind(str(self._socket_path))
        except OSError:
            listener.close()
            raise
        listener.settimeout(self.poll_interval)

        try:
            os.chmod(self._socket_path, 0o600)
        except OSError as e:
            logger.warning("Failed to set permissions on %s: %s", self._socket_path, e)

        self._listener = listener
        self._cancel = threading.Event()
        self._thread = threading.Thread(
            target=self._read_loop,
            args=(listener, self._cancel, parent_cancel),
            name="ssh-login-decode",
            daemon=True,
        )
        self._thread.start()
        logger.debug("SSH login socket listening on %s", self._socket_path)

    def _read_loop(
        self,
        listener: socket.socket,
        cancel: threading.Event,
        parent_cancel: threading.Event | None,
    ) -> None:
        def cancelled() -> bool:
            return cancel.is_set() or (parent_cancel is not None and parent_cancel.is_set())

        while not cancelled():
            try:
                data = listener.recv(self.buffer_size)
            except TimeoutError:
                continue
            except OSError as e:
                if cancelled() or listener.fileno() == -1:
                    return
                logger.warning("Failed to receive SSH login event: %s", e)
                continue

            if not data:
                continue

            self.handle_datagram(data)

    def handle_datagram(self, data: bytes) -> LoginEvent | None:
        """Decode one datagram and publish it without blocking.

        Returns:
            The published event, or None if it was malformed or dropped
        """
        try:
            event = LoginEvent.from_wire(data)
        except (ValidationError, UnicodeDecodeError) as e:
            logger.warning("Failed to decode SSH login event: %s", e)
            return None

        event.backfill()
        self.received_events += 1

        try:
            self._events.put_nowait(event)
        except queue.Full:
            self.dropped_events += 1
            logger.warning(
                "Event queue full, dropping SSH login event for %s from %s",
                event.username,
                event.source_ip,
            )
            return None

        logger.info(
            "SSH login detected: user=%s ip=%s status=%s",
            event.username,
            event.source_ip,
            event.status,
        )
        return event
