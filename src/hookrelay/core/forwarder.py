"""
Outbound relay of webhook bodies to tenant destinations.

The original bytes and Content-Type are sent unchanged; the destination's
status, Content-Type and body are handed back to the caller as-is.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Optional

import aiohttp
import structlog

from ..config import ForwarderSettings
from .exceptions import InternalRelayError, UpstreamUnavailableError

logger = structlog.get_logger(__name__)


@dataclass
class RelayResponse:
    """What the destination answered."""
    status_code: int
    body: bytes
    content_type: str


class WebhookForwarder:
    """
    Async forwarder for relaying webhooks to tenant destinations.

    Handles:
    - Content-Type preservation (with a default for bare requests)
    - Bounded request timeout
    - Mapping of transport failures vs. malformed destinations
    """

    def __init__(self, settings: ForwarderSettings, metrics=None):
        self.settings = settings
        self.metrics = metrics
        self.session: Optional[aiohttp.ClientSession] = None
        self._running = False

        logger.info("Webhook Forwarder initialized", timeout_seconds=settings.timeout_seconds)

    async def start(self) -> None:
        """Start the forwarder."""
        if self._running:
            return

        self._running = True
        self.session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.settings.timeout_seconds)
        )

        logger.info("Webhook Forwarder started")

    async def stop(self) -> None:
        """Stop the forwarder."""
        self._running = False

        if self.session:
            await self.session.close()
            self.session = None

        logger.info("Webhook Forwarder stopped")

    def is_healthy(self) -> bool:
        return self._running and self.session is not None

    async def relay(self, destination_url: str, raw_body: bytes, content_type: str) -> RelayResponse:
        """
        POST raw_body to destination_url.

        Raises:
            InternalRelayError: destination URL is malformed or forwarder not started
            UpstreamUnavailableError: destination unreachable or timed out
        """
        if not self.session:
            raise InternalRelayError("Forwarder not started")

        headers = {
            "Content-Type": content_type or self.settings.default_content_type,
            "User-Agent": self.settings.user_agent,
        }

        start = time.perf_counter()
        try:
            async with self.session.post(destination_url, data=raw_body, headers=headers) as response:
                body = await response.read()
                result = RelayResponse(
                    status_code=response.status,
                    body=body,
                    content_type=response.headers.get("Content-Type", ""),
                )
        except aiohttp.InvalidURL as e:
            logger.error("Invalid destination URL", destination=destination_url, error=str(e))
            raise InternalRelayError(
                "Failed to build relay request",
                details={"destination": destination_url},
            ) from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(
                "Relay failed",
                destination=destination_url,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise UpstreamUnavailableError(
                "Destination unavailable",
                details={"destination": destination_url},
            ) from e
        finally:
            if self.metrics:
                self.metrics.record_forward_duration(time.perf_counter() - start)

        logger.debug(
            "Relay completed",
            destination=destination_url,
            status=result.status_code,
            response_bytes=len(result.body),
        )
        return result
