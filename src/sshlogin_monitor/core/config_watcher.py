"""Reload the configuration file when the web console rewrites it."""

import logging
import threading
from collections.abc import Callable
from pathlib import Path

import toml
from pydantic import ValidationError
from watchdog.events import (
    DirCreatedEvent,
    DirModifiedEvent,
    DirMovedEvent,
    FileCreatedEvent,
    FileModifiedEvent,
    FileMovedEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from .config import Config

logger = logging.getLogger(__name__)


class _ConfigFileHandler(FileSystemEventHandler):
    """File system event handler for the configuration file."""

    def __init__(self, watcher: "ConfigWatcher"):
        self.watcher = watcher

    def on_created(self, event: DirCreatedEvent | FileCreatedEvent):
        if not event.is_directory and self._is_config(event.src_path):
            self.watcher.reload()

    def on_modified(self, event: DirModifiedEvent | FileModifiedEvent):
        if not event.is_directory and self._is_config(event.src_path):
            self.watcher.reload()

    def on_moved(self, event: DirMovedEvent | FileMovedEvent):
        # editors and the console save by writing a temp file and renaming it
        if self._is_config(event.dest_path):
            self.watcher.reload()

    def _is_config(self, path) -> bool:
        return Path(str(path)).resolve() == self.watcher.config_path


class ConfigWatcher:
    """Watch the config file and report changes to the SSH login section."""

    def __init__(
        self,
        config_path: Path,
        on_change: Callable[[Config], None],
        initial: Config | None = None,
    ):
        self.config_path = Path(config_path).resolve()
        self.on_change = on_change
        self._applied = initial.ssh_login if initial is not None else None
        self._lock = threading.Lock()
        self._observer = None

    def start(self) -> None:
        handler = _ConfigFileHandler(self)
        self._observer = Observer()
        self._observer.schedule(handler, str(self.config_path.parent), recursive=False)
        self._observer.start()
        logger.info("Watching %s for configuration changes", self.config_path)

    def stop(self) -> None:
        if self._observer is None:
            return
        self._observer.stop()
        self._observer.join()
        self._observer = None

    def reload(self) -> bool:
        """Reload the file and notify if the SSH login section changed.

        Returns:
            True if ``on_change`` was called
        """
        with self._lock:
            try:
                config = Config.load(self.config_path)
            except (OSError, toml.TomlDecodeError, ValidationError) as e:
                logger.warning("Ignoring unreadable configuration %s: %s", self.config_path, e)
                return False

            if config.ssh_login == self._applied:
                logger.debug("SSH login configuration unchanged")
                return False

            logger.info(
                "SSH login configuration changed: enabled=%s", config.ssh_login.enabled
            )
            try:
                self.on_change(config)
            except Exception as e:
                # left unapplied so saving the same settings again retries
                logger.error("Failed to apply configuration change: %s", e, exc_info=True)
                return True

            self._applied = config.ssh_login
            return True
