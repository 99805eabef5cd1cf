"""
Webhook relay pipeline.

Orchestrates the flow for one inbound webhook:
1. Tenant resolution (cache -> env override -> tenant store)
2. Optional per-tenant rate limiting
3. Payload extraction
4. Group/broadcast filtering (plus identifier conversion when enabled)
5. Relay of the original raw body

Fatal errors raise RelayException subclasses and trigger a best-effort alert.
"""

from dataclasses import dataclass
from typing import Optional

import structlog

from .alerts import SlackAlerter
from .auth import TenantRateLimiter
from .classifier import ClassifiedEvent, GroupFilter
from .converter import LegacyIdConverter
from .exceptions import ClientError, RelayException, TenantNotFoundError
from .extractor import ExtractedEvent, PayloadExtractor
from .forwarder import RelayResponse, WebhookForwarder
from .metrics import MetricsCollector
from .resolver import TenantResolver

logger = structlog.get_logger(__name__)


@dataclass
class PipelineResult:
    """Outcome of one webhook: either ignored or relayed."""
    event: ExtractedEvent
    classification: ClassifiedEvent
    relay: Optional[RelayResponse] = None

    @property
    def ignored(self) -> bool:
        return self.relay is None


class WebhookPipeline:
    """
    Main processing pipeline for webhook relay.

    Components are shared across requests; the pipeline itself holds no
    per-request state.
    """

    def __init__(
        self,
        resolver: TenantResolver,
        extractor: PayloadExtractor,
        group_filter: GroupFilter,
        forwarder: WebhookForwarder,
        alerter: Optional[SlackAlerter] = None,
        converter: Optional[LegacyIdConverter] = None,
        rate_limiter: Optional[TenantRateLimiter] = None,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        self.resolver = resolver
        self.extractor = extractor
        self.group_filter = group_filter
        self.forwarder = forwarder
        self.alerter = alerter
        self.converter = converter
        self.rate_limiter = rate_limiter
        self.metrics = metrics

    async def process(self, secret_id: str, raw_body: bytes, content_type: str) -> PipelineResult:
        """Run one webhook through the pipeline."""
        secret_id = (secret_id or "").strip()
        if self.metrics:
            self.metrics.record_received()

        try:
            return await self._process(secret_id, raw_body, content_type)
        except RelayException as e:
            self.reject(e, secret_id, content_type, len(raw_body))
            raise

    def reject(self, error: RelayException, secret_id: str, content_type: str, body_len: int) -> None:
        """Record a fatal error and raise a best-effort alert for it."""
        if self.metrics:
            self.metrics.record_rejected(error.error_code)
        self._alert(
            f":warning: {error.error_code} | secretId={secret_id} | "
            f"CT={content_type} | len={body_len} | err={error}"
        )

    async def _process(self, secret_id: str, raw_body: bytes, content_type: str) -> PipelineResult:
        if not secret_id:
            raise ClientError("secret id missing")

        route = await self.resolver.resolve(secret_id)
        if route is None:
            logger.info("Client not found", secret_id=secret_id[:8] + "...")
            raise TenantNotFoundError("Tenant not found")

        if self.rate_limiter:
            await self.rate_limiter.check(route)

        payload, ok = await self.extractor.extract(raw_body, content_type)
        if not ok:
            raise ClientError(
                "jsonData missing",
                details={"content_type": content_type, "body_len": len(raw_body)},
            )

        event = ExtractedEvent(
            secret_id=secret_id,
            raw_body=raw_body,
            content_type=content_type,
            json_payload=payload,
        )

        classification = self.group_filter.classify(payload)
        if not classification.is_group and self.converter is not None:
            classification, _ = await self.group_filter.classify_with_conversion(
                payload, self.converter, route.api_token or ""
            )

        if classification.is_group:
            logger.info(
                "Rejected group message",
                secret_id=secret_id[:8] + "...",
                reason=classification.reason,
                chat=classification.chat,
            )
            if self.metrics:
                self.metrics.record_ignored(classification.reason)
            return PipelineResult(event=event, classification=classification)

        logger.info(
            "Webhook send",
            secret_id=secret_id[:8] + "...",
            size=len(raw_body),
            chat=classification.chat or None,
            sender=classification.sender or None,
        )
        # Always the original bytes, never re-serialized JSON
        relay = await self.forwarder.relay(route.destination_url, raw_body, content_type)

        if self.metrics:
            self.metrics.record_forwarded(relay.status_code)

        return PipelineResult(event=event, classification=classification, relay=relay)

    def _alert(self, message: str) -> None:
        if not self.alerter:
            return
        try:
            self.alerter.notify(message)
        except Exception as e:
            logger.warning("Failed to schedule alert", error=str(e))
