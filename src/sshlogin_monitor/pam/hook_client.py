"""Hook-side login event emission.

Runs inside the short-lived process pam_exec starts for every SSH session.
Delivery is fire-and-forget: one datagram, no acknowledgement, no retry, so a
missing listener never delays the user's login.
"""

import os
import socket
from collections.abc import Mapping

from ..core.events import LOCALHOST, STATUS_SUCCESS, UNKNOWN, LoginEvent, now_millis

DEFAULT_SOCKET_PATH = "/run/sshlogin-monitor/ssh_login.sock"
OPEN_SESSION = "open_session"


def send_event_from_env(
    environ: Mapping[str, str] | None = None,
    socket_path: str = DEFAULT_SOCKET_PATH,
) -> bool:
    """Build and send a login event if this is a session-open PAM call.

    Returns:
        True if an event was sent, False if the PAM phase was skipped
    """
    env = os.environ if environ is None else environ
    if env.get("PAM_TYPE") != OPEN_SESSION:
        return False

    send_event(build_event_from_env(env), socket_path)
    return True


def build_event_from_env(environ: Mapping[str, str] | None = None) -> LoginEvent:
    """Build a login event from the PAM session environment."""
    env = os.environ if environ is None else environ

    username = env.get("PAM_USER") or UNKNOWN
    ip = env.get("PAM_RHOST", "")
    tty = env.get("PAM_TTY") or UNKNOWN

    port = None
    # SSH_CONNECTION: "<client ip> <client port> <server ip> <server port>"
    parts = env.get("SSH_CONNECTION", "").split()
    if len(parts) >= 2:
        port = parts[1]
    if not ip and parts:
        ip = parts[0]

    return LoginEvent(
        username=username,
        source_ip=ip or LOCALHOST,
        source_port=port,
        timestamp_millis=now_millis(),
        status=STATUS_SUCCESS,
        auth_method=UNKNOWN,
        tty=tty,
        session_id=str(os.getpid()),
    )


def send_event(event: LoginEvent, socket_path: str = DEFAULT_SOCKET_PATH) -> None:
    """Send one event to the monitor socket.

    Raises:
        OSError: the monitor socket is unreachable or the send failed
    """
    with socket.socket(socket.AF_UNIX, socket.SOCK_DGRAM) as sock:
        sock.connect(socket_path)
        sock.send(event.to_wire())
