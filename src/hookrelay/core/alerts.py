"""
Best-effort Slack alerting for fatal relay errors.

Delivery never blocks a response and never raises: failures are logged.
Identical alerts are sent at most once per dedup window.
"""

import asyncio
import threading
import time
from typing import Callable, Dict, Optional, Set

import aiohttp
import structlog

from ..config import AlertSettings

logger = structlog.get_logger(__name__)

SLACK_POST_MESSAGE_URL = "https://slack.com/api/chat.postMessage"


class AlertDeduplicator:
    """Remembers when each alert key was last sent."""

    def __init__(self, window_seconds: float = 60.0, clock: Callable[[], float] = time.monotonic) -> None:
        self.window_seconds = window_seconds
        self._clock = clock
        self._last_sent: Dict[str, float] = {}
        self._lock = threading.Lock()

    def should_send(self, key: str) -> bool:
        """True (and mark as sent) unless key was sent within the window."""
        now = self._clock()
        with self._lock:
            last = self._last_sent.get(key)
            if last is not None and now - last < self.window_seconds:
                return False
            self._last_sent[key] = now
            # Forget keys that can no longer suppress anything
            stale = [k for k, t in self._last_sent.items() if now - t >= self.window_seconds]
            for k in stale:
                del self._last_sent[k]
            return True


class SlackAlerter:
    """
    Posts alerts to a Slack incoming webhook, or via chat.postMessage with a
    bot token when no webhook URL is configured.
    """

    def __init__(self, settings: AlertSettings, deduplicator: Optional[AlertDeduplicator] = None) -> None:
        self.webhook_url = settings.slack_webhook_url.strip()
        self.bot_token = settings.slack_bot_token.strip()
        self.channel_id = settings.slack_channel_id.strip()
        self.timeout_seconds = settings.timeout_seconds
        self.deduplicator = deduplicator or AlertDeduplicator(settings.dedup_window_seconds)
        self.session: Optional[aiohttp.ClientSession] = None
        self._tasks: Set[asyncio.Task[bool]] = set()

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_url or (self.bot_token and self.channel_id))

    async def start(self) -> None:
        if self.session is None:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds)
            )
        logger.info("Slack alerter started", enabled=self.enabled)

    async def stop(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        if self.session:
            await self.session.close()
            self.session = None
        logger.info("Slack alerter stopped")

    def notify(self, message: str) -> None:
        """Schedule delivery in the background and return immediately."""
        if not self.enabled or not message:
            return
        task = asyncio.create_task(self.send(message))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def send(self, message: str) -> bool:
        """Deliver one alert; returns whether Slack accepted it."""
        if not message or not self.session:
            return False

        if self.webhook_url:
            key = message
            url = self.webhook_url
            payload = {"text": message}
            headers = {"Content-Type": "application/json"}
        elif self.bot_token and self.channel_id:
            key = f"bot:{self.channel_id}:{message}"
            url = SLACK_POST_MESSAGE_URL
            payload = {"channel": self.channel_id, "text": message}
            headers = {
                "Content-Type": "application/json; charset=utf-8",
                "Authorization": f"Bearer {self.bot_token}",
            }
        else:
            return False

        if not self.deduplicator.should_send(key):
            logger.debug("Alert suppressed by dedup window")
            return False

        try:
            async with self.session.post(url, json=payload, headers=headers) as response:
                if response.status >= 300:
                    logger.warning("Slack alert rejected", status=response.status)
                    return False
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning("Slack alert failed", error=str(e), error_type=type(e).__name__)
            return False

        return True
