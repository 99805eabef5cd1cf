"""
Locate the event JSON inside an inbound webhook body.

Supported encodings:
- application/json: the event itself, a {"jsonData": "..."} envelope, or a
  {"body": {...}} envelope whose key or value carries the event
- multipart/form-data: the jsonData field
- anything else: URL-encoded form, jsonData field
"""

import json
from dataclasses import dataclass
from typing import Any, AsyncGenerator, Dict, Tuple

import structlog
from starlette.datastructures import Headers
from starlette.formparsers import FormParser, MultiPartException, MultiPartParser

logger = structlog.get_logger(__name__)

JSON_DATA_FIELD = "jsonData"

JSON_CONTENT_TYPE = "application/json"
MULTIPART_CONTENT_TYPE = "multipart/form-data"
FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"
KNOWN_CONTENT_TYPES = (JSON_CONTENT_TYPE, MULTIPART_CONTENT_TYPE, FORM_CONTENT_TYPE)


@dataclass
class ExtractedEvent:
    """Raw inbound bytes plus the event JSON located inside them."""
    secret_id: str
    raw_body: bytes
    content_type: str
    json_payload: str


async def _single_chunk(raw_body: bytes) -> AsyncGenerator[bytes, None]:
    yield raw_body
    yield b""


def _preview(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


def _looks_like_json_object(text: str) -> bool:
    return text.startswith("{") and text.endswith("}")


def _non_blank_string(value: Any) -> bool:
    return isinstance(value, str) and value.strip() != ""


class PayloadExtractor:
    """Dispatch on content type and pull out the event JSON string."""

    def __init__(self, max_multipart_bytes: int = 10 * 1024 * 1024) -> None:
        self.max_multipart_bytes = max_multipart_bytes

    async def extract(self, raw_body: bytes, content_type: str) -> Tuple[str, bool]:
        """
        Return (payload, ok).

        ok is False when the located payload is blank; that is a client
        error for the request.
        """
        ct_lower = (content_type or "").strip().lower()
        if not ct_lower.startswith(KNOWN_CONTENT_TYPES):
            logger.info("Unexpected Content-Type", content_type=content_type)

        if ct_lower.startswith(JSON_CONTENT_TYPE):
            payload = self.extract_json(raw_body)
        elif ct_lower.startswith(MULTIPART_CONTENT_TYPE):
            payload = await self.extract_multipart(raw_body, content_type)
        else:
            payload = await self.extract_form(raw_body)

        if not payload.strip():
            logger.warning(
                "jsonData missing or empty",
                content_type=content_type,
                body_len=len(raw_body),
                preview=_preview(raw_body.decode("utf-8", errors="replace"), 256),
            )
            return "", False

        logger.debug("jsonData extracted", preview=_preview(payload, 100))
        return payload, True

    def extract_json(self, raw_body: bytes) -> str:
        """Unwrap a JSON body, falling back to the whole trimmed body."""
        body_trim = raw_body.decode("utf-8", errors="replace").strip()
        if not body_trim:
            return ""

        try:
            envelope = json.loads(raw_body)
        except (ValueError, RecursionError) as e:
            logger.debug("Envelope parse failed, using whole body", error=str(e))
            return body_trim

        if not isinstance(envelope, dict):
            return body_trim

        logger.debug("Envelope keys", keys=list(envelope.keys()))

        json_data = envelope.get(JSON_DATA_FIELD)
        if _non_blank_string(json_data):
            return json_data

        body = envelope.get("body")
        if isinstance(body, dict):
            return self._unwrap_body(body, body_trim)

        logger.debug("Neither jsonData nor body found, using whole body")
        return body_trim

    def _unwrap_body(self, body: Dict[str, Any], body_trim: str) -> str:
        logger.debug("Inspecting body envelope", keys=list(body.keys()))

        for key, value in body.items():
            # Form-to-JSON bridges sometimes turn the whole event into a key
            if _looks_like_json_object(key):
                return key
            if isinstance(value, str) and value.startswith("{"):
                return value

        json_data = body.get(JSON_DATA_FIELD)
        if _non_blank_string(json_data):
            return json_data

        logger.debug("body carries no event, using whole body")
        return body_trim

    async def extract_multipart(self, raw_body: bytes, content_type: str) -> str:
        headers = Headers({"content-type": content_type})
        parser = MultiPartParser(
            headers,
            _single_chunk(raw_body),
            max_part_size=self.max_multipart_bytes,
        )
        try:
            form = await parser.parse()
        except (MultiPartException, ValueError) as e:
            logger.warning("Multipart parse failed", error=str(e))
            return ""

        try:
            value = form.get(JSON_DATA_FIELD)
            return value if isinstance(value, str) else ""
        finally:
            await form.close()

    async def extract_form(self, raw_body: bytes) -> str:
        headers = Headers({"content-type": FORM_CONTENT_TYPE})
        form = await FormParser(headers, _single_chunk(raw_body)).parse()
        value = form.get(JSON_DATA_FIELD)
        return value if isinstance(value, str) else ""
