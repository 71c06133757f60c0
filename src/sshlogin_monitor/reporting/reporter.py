"""Upstream reporting of SSH login events."""

import logging

import aiohttp

from ..core.events import LoginEvent

logger = logging.getLogger(__name__)


class EventReporter:
    """Forward login events to the monitoring server for storage and alerting."""

    def __init__(
        self,
        enabled: bool = False,
        endpoint_url: str | None = None,
        agent_id: str = "",
        timeout_seconds: int = 10,
    ):
        self.enabled = enabled
        self.endpoint_url = endpoint_url
        self.agent_id = agent_id
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session: aiohttp.ClientSession | None = None

    def build_payload(self, login_event: LoginEvent) -> dict:
        return {
            "agentId": self.agent_id,
            "type": "ssh_login",
            "event": login_event.model_dump(by_alias=True),
        }

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self._session

    async def report(self, login_event: LoginEvent) -> bool:
        """Post one event upstream. Failures are logged, never raised."""
        if not self.enabled:
            return False

        if not self.endpoint_url:
            logger.error("Reporting endpoint URL not configured")
            return False

        try:
            session = await self._get_session()
            async with session.post(
                str(self.endpoint_url), json=self.build_payload(login_event)
            ) as response:
                if 200 <= response.status < 300:
                    logger.debug(
                        "Reported SSH login of %s (session %s)",
                        login_event.username,
                        login_event.session_id,
                    )
                    return True

                error_text = await response.text()
                logger.error(
                    "Event report failed: HTTP %s: %s", response.status, error_text
                )
                return False

        except (aiohttp.ClientError, TimeoutError) as e:
            logger.error("Event report failed: %s", e)
            logger.warning(
                "SSH login event NOT REPORTED: %s from %s",
                login_event.username,
                login_event.source_ip,
            )
            return False

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
