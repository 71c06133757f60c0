"""PAM hook installation for SSH login monitoring."""

import logging
import os
import shutil
import stat
import subprocess
import sys
from pathlib import Path
from typing import ClassVar

from ..core.config import HookConfig

logger = logging.getLogger(__name__)

USE_PAM_KEYWORD = "usepam"
USE_PAM_DIRECTIVE = "UsePAM yes"
BACKUP_SUFFIX = ".bak"
CONSOLE_SCRIPT = "sshlogin-monitor"


class HookInstallError(RuntimeError):
    """Raised when the PAM hook could not be installed."""


def _read_lines(path: Path) -> list[str]:
    with open(path, encoding="utf-8") as f:
        return f.read().splitlines()


def _write_lines(path: Path, lines: list[str]) -> None:
    with open(path, "w", encoding="utf-8") as f:
        for line in lines:
            f.write(line + "\n")


def _rewrite_config(path: Path, lines: list[str]) -> None:
    """Replace a system configuration file, keeping a ``.bak`` copy.

    The original is renamed to the backup path before the new content is
    written. If writing fails the backup is moved back so the file is left
    exactly as it was.
    """
    mode = stat.S_IMODE(path.stat().st_mode)
    backup_path = path.with_name(path.name + BACKUP_SUFFIX)

    os.rename(path, backup_path)
    try:
        _write_lines(path, lines)
    except OSError:
        try:
            path.unlink(missing_ok=True)
            os.replace(backup_path, path)
        except OSError as restore_error:
            logger.error(
                "Failed to restore %s from %s: %s", path, backup_path, restore_error
            )
        raise

    try:
        os.chmod(path, mode)
    except OSError as e:
        logger.warning("Failed to restore permissions on %s: %s", path, e)


def _current_executable(argv0: str | None = None) -> str:
    """Resolve the path of the running agent executable.

    Under ``python -m sshlogin_monitor`` argv[0] is the package's
    ``__main__.py``, which pam_exec cannot run, so the installed console
    script is used instead.
    """
    if argv0 is None:
        argv0 = sys.argv[0] if sys.argv else ""
    if argv0 and os.sep not in argv0:
        argv0 = shutil.which(argv0) or argv0

    if not argv0 or argv0.endswith(".py") or not os.path.isfile(argv0):
        script = shutil.which(CONSOLE_SCRIPT)
        if script is None:
            raise FileNotFoundError(
                f"Cannot locate the {CONSOLE_SCRIPT} executable for the PAM hook"
            )
        argv0 = script

    return os.path.realpath(argv0)


class HookManager:
    """Install and remove the pam_exec hook that reports SSH logins.

    Installation state is never cached: it is derived from the PAM service
    file on every call, so ``install`` can be called redundantly.
    """

    LEGACY_HOOK_SCRIPTS: ClassVar = (
        "/usr/local/bin/pika_ssh_hook.sh",
        "/usr/local/bin/sshlogin_hook.sh",
    )

    RESTART_COMMANDS: ClassVar = (
        ("systemctl", "restart", "sshd"),
        ("systemctl", "restart", "ssh"),
        ("service", "sshd", "restart"),
        ("service", "ssh", "restart"),
    )

    def __init__(
        self, config: HookConfig | None = None, executable_path: str | None = None
    ):
        self.config = config or HookConfig()
        self.pam_config_file = Path(self.config.pam_config_file)
        self.sshd_config_file = Path(self.config.sshd_config_file)
        self.hook_binary_path = Path(self.config.hook_binary_path)
        self._executable_path = executable_path

    @property
    def pam_config_line(self) -> str:
        return (
            f"session optional pam_exec.so {self.hook_binary_path} "
            f"{self.config.hook_command}"
        )

    @property
    def legacy_pam_config_lines(self) -> set[str]:
        return {
            f"session optional pam_exec.so {script}"
            for script in self.LEGACY_HOOK_SCRIPTS
        }

    @property
    def executable_path(self) -> str:
        return self._executable_path or _current_executable()

    def install(self) -> None:
        """Install the PAM hook.

        Raises:
            PermissionError: not running as root; nothing was changed.
            HookInstallError: a configuration file or the hook binary could
                not be written. Configuration files are restored from backup.
        """
        if os.geteuid() != 0:
            raise PermissionError("Installing the PAM hook requires root privileges")

        if self.is_installed():
            logger.info("PAM hook already installed, skipping")
            return

        try:
            self.ensure_use_pam()
        except OSError as e:
            raise HookInstallError(f"Failed to enable UsePAM in sshd config: {e}") from e

        try:
            self.ensure_hook_binary()
        except OSError as e:
            raise HookInstallError(f"Failed to install hook binary: {e}") from e

        try:
            self.modify_pam_config(add=True)
        except OSError as e:
            self.remove_hook_binary()
            raise HookInstallError(f"Failed to modify PAM config: {e}") from e

        logger.info("PAM hook installed: %s", self.pam_config_line)

    def uninstall(self) -> None:
        """Remove the PAM hook. Failures are logged, never raised."""
        try:
            self.modify_pam_config(add=False)
        except OSError as e:
            logger.warning("Failed to remove PAM hook configuration: %s", e)

        self.remove_hook_binary()
        logger.info("PAM hook uninstalled")

    def is_installed(self) -> bool:
        """Check whether the PAM service file carries the hook directive."""
        try:
            lines = _read_lines(self.pam_config_file)
        except OSError:
            return False

        expected = self.pam_config_line
        return any(line.strip() == expected for line in lines)

    def ensure_use_pam(self) -> bool:
        """Make sure sshd is configured with ``UsePAM yes``.

        Returns:
            True if the sshd config was changed, False if PAM was already enabled
        """
        lines = _read_lines(self.sshd_config_file)

        new_lines = []
        use_pam_enabled = False

        for line in lines:
            parts = line.split()
            if not parts or parts[0].lower() != USE_PAM_KEYWORD:
                new_lines.append(line)
                continue

            if len(parts) > 1 and parts[1].lower() == "yes":
                use_pam_enabled = True
                new_lines.append(line)
            else:
                new_lines.append("# " + line)

        if use_pam_enabled:
            logger.info("sshd UsePAM already enabled, skipping")
            return False

        new_lines.append(USE_PAM_DIRECTIVE)
        _rewrite_config(self.sshd_config_file, new_lines)
        logger.info("Enabled UsePAM in %s", self.sshd_config_file)

        if self.config.restart_sshd:
            if self.restart_sshd() is None:
                logger.warning(
                    "Could not restart the SSH daemon, restart it manually to apply UsePAM"
                )
        else:
            logger.warning(
                "SSH daemon restart disabled, restart it manually to apply UsePAM"
            )

        return True

    def restart_sshd(self) -> tuple[str, ...] | None:
        """Restart the SSH daemon with the first service manager that works.

        Returns:
            The command that succeeded, or None if every attempt failed
        """
        for command in self.RESTART_COMMANDS:
            try:
                subprocess.run(
                    command,
                    check=True,
                    capture_output=True,
                    timeout=self.config.restart_timeout_seconds,
                )
            except (OSError, subprocess.SubprocessError) as e:
                logger.debug("'%s' failed: %s", " ".join(command), e)
                continue

            logger.info("Restarted SSH daemon via '%s'", " ".join(command))
            return command

        return None

    def ensure_hook_binary(self) -> None:
        """Make the agent executable reachable at the hook path."""
        exec_path = self.executable_path
        hook_path = self.hook_binary_path

        if os.path.realpath(hook_path) == exec_path and not hook_path.is_symlink():
            return

        hook_path.parent.mkdir(mode=0o755, parents=True, exist_ok=True)

        if hook_path.is_symlink():
            if os.readlink(hook_path) == exec_path:
                return
            hook_path.unlink()
        elif hook_path.exists():
            hook_path.unlink()

        try:
            os.symlink(exec_path, hook_path)
            logger.info("Linked hook binary %s -> %s", hook_path, exec_path)
            return
        except OSError as e:
            logger.debug("Symlink not supported at %s (%s), copying instead", hook_path, e)

        shutil.copyfile(exec_path, hook_path)
        os.chmod(hook_path, 0o755)
        logger.info("Copied hook binary %s to %s", exec_path, hook_path)

    def remove_hook_binary(self) -> None:
        """Remove the hook binary, but only if it is a symlink."""
        if not self.hook_binary_path.is_symlink():
            return

        try:
            self.hook_binary_path.unlink()
        except OSError as e:
            logger.warning("Failed to remove hook link %s: %s", self.hook_binary_path, e)

    def modify_pam_config(self, add: bool) -> bool:
        """Add or remove the hook directive in the PAM service file.

        Legacy hook directives are always dropped.

        Returns:
            True if the hook directive was present before the call
        """
        lines = _read_lines(self.pam_config_file)
        expected = self.pam_config_line
        legacy = self.legacy_pam_config_lines

        new_lines = []
        found = False

        for line in lines:
            trimmed = line.strip()

            if trimmed in legacy:
                continue

            if trimmed == expected:
                found = True
                if add:
                    new_lines.append(line)
                continue

            new_lines.append(line)

        if add and not found:
            new_lines.append(expected)

        _rewrite_config(self.pam_config_file, new_lines)
        logger.info("PAM config updated (add=%s): %s", add, self.pam_config_file)
        return found
