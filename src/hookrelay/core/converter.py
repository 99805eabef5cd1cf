"""
Legacy identifier normalization.

Identifiers ending in "@lid" are legacy-format; the normalization API maps
each one to its canonical form. Conversion is enrichment only: a failure for
one field is recorded and the other fields still convert.
"""

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import aiohttp
import structlog

from .classifier import BROADCAST_MARKERS, GROUP_MARKER, load_event, parse_is_group
from .exceptions import ConversionError

logger = structlog.get_logger(__name__)

LEGACY_SUFFIX = "@lid"
CANONICAL_MARKERS = ("@s.whatsapp.net", GROUP_MARKER)
PARSE_ENDPOINT = "/user/parselid"


def is_legacy_id(identifier: str) -> bool:
    return identifier.lower().endswith(LEGACY_SUFFIX)


def is_canonical_id(identifier: str) -> bool:
    lowered = identifier.lower()
    return any(marker in lowered for marker in CANONICAL_MARKERS)


@dataclass
class ConversionResult:
    """
    Identifiers found in an event and their canonical forms.

    `conversions` only holds fields whose legacy identifier converted, as
    "from -> to" records.
    """
    original_data: str
    chat: str = ""
    canonical_chat: str = ""
    sender: str = ""
    canonical_sender: str = ""
    sender_alt: str = ""
    canonical_sender_alt: str = ""
    recipient_alt: str = ""
    canonical_recipient_alt: str = ""
    is_group: bool = False
    conversions: Dict[str, str] = field(default_factory=dict)

    @property
    def final_chat(self) -> str:
        return self.canonical_chat or self.chat

    @property
    def final_sender(self) -> str:
        return self.canonical_sender or self.sender

    @property
    def has_conversions(self) -> bool:
        return bool(self.conversions)

    def apply_conversions(self) -> str:
        """
        Return the event JSON with canonical identifiers substituted.

        The original string is left untouched; without conversions it is
        returned as-is.
        """
        if not self.has_conversions:
            return self.original_data

        try:
            data = json.loads(self.original_data)
        except (ValueError, RecursionError) as e:
            raise ConversionError(f"Failed to parse original event: {e}") from e

        event = data.get("event") if isinstance(data, dict) else None
        info = event.get("Info") if isinstance(event, dict) else None
        if isinstance(info, dict):
            for key, original, canonical in (
                ("Chat", self.chat, self.canonical_chat),
                ("Sender", self.sender, self.canonical_sender),
                ("SenderAlt", self.sender_alt, self.canonical_sender_alt),
                ("RecipientAlt", self.recipient_alt, self.canonical_recipient_alt),
            ):
                if original and canonical and original != canonical:
                    info[key] = canonical

        return json.dumps(data, ensure_ascii=False, separators=(",", ":"))


class LegacyIdConverter:
    """
    Client for the identifier normalization API.

    POST {base_url}/user/parselid {"lid": "..."} with bearer auth; the token
    is passed per call since it belongs to the tenant.
    """

    def __init__(self, base_url: str, timeout_seconds: float = 10.0, metrics=None) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.metrics = metrics
        self.session: Optional[aiohttp.ClientSession] = None

    async def start(self) -> None:
        if self.session is None:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds)
            )
        logger.info("Legacy-ID converter started", base_url=self.base_url or None)

    async def stop(self) -> None:
        if self.session:
            await self.session.close()
            self.session = None
        logger.info("Legacy-ID converter stopped")

    async def convert_identifier(self, legacy_id: str, auth_token: str) -> str:
        """Return the canonical form of legacy_id; non-legacy input is returned unchanged."""
        if not is_legacy_id(legacy_id):
            return legacy_id

        if not self.base_url:
            raise ConversionError("Normalization API URL not configured")
        if not auth_token:
            raise ConversionError("API token missing for identifier conversion")
        if not self.session:
            raise ConversionError("Converter not started")

        url = f"{self.base_url}{PARSE_ENDPOINT}"
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {auth_token}",
        }

        try:
            async with self.session.post(url, json={"lid": legacy_id}, headers=headers) as response:
                if not 200 <= response.status < 300:
                    body = await response.text()
                    if len(body) > 200:
                        body = body[:200] + "..."
                    raise ConversionError(
                        f"Normalization API returned status {response.status}",
                        details={"status": response.status, "body": body},
                    )
                data = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self._record("unreachable")
            raise ConversionError(f"Normalization API request failed: {e}") from e
        except (ValueError, RecursionError) as e:
            self._record("bad_response")
            raise ConversionError(f"Failed to decode normalization response: {e}") from e
        except ConversionError:
            self._record("bad_status")
            raise

        canonical = self._canonical_from_response(data)
        if canonical is None:
            self._record("rejected")
            raise ConversionError("Normalization API reported failure")

        self._record("converted")
        return canonical

    @staticmethod
    def _canonical_from_response(data: Any) -> Optional[str]:
        if not isinstance(data, dict) or data.get("status") is not True:
            return None
        inner = data.get("data")
        if not isinstance(inner, dict) or inner.get("success") is not True:
            return None
        jid = inner.get("jid")
        return jid if isinstance(jid, str) and jid else None

    async def _try_convert(self, field_name: str, identifier: str, auth_token: str) -> Optional[str]:
        try:
            return await self.convert_identifier(identifier, auth_token)
        except ConversionError as e:
            logger.warning(
                "Identifier conversion failed",
                field=field_name,
                identifier=identifier,
                error=str(e),
            )
            return None

    async def detect_and_convert(self, payload: str, auth_token: str) -> ConversionResult:
        """
        Convert Chat, Sender, SenderAlt and RecipientAlt of event.Info.

        Only an unparseable envelope raises; per-field failures are skipped.
        """
        event = load_event(payload)
        if event is None:
            raise ConversionError("Failed to parse event envelope")

        info = event["Info"]
        result = ConversionResult(original_data=payload)

        def _string(key: str) -> str:
            value = info.get(key)
            return value if isinstance(value, str) else ""

        chat = _string("Chat")
        if chat:
            result.chat = chat
            if is_legacy_id(chat):
                canonical = await self._try_convert("Chat", chat, auth_token)
                if canonical:
                    result.canonical_chat = canonical
                    result.conversions["Chat"] = f"{chat} -> {canonical}"
            else:
                result.canonical_chat = chat

        sender = _string("Sender")
        if sender:
            result.sender = sender
            if is_legacy_id(sender):
                canonical = await self._try_convert("Sender", sender, auth_token)
                if canonical:
                    result.canonical_sender = canonical
                    result.conversions["Sender"] = f"{sender} -> {canonical}"
            else:
                result.canonical_sender = sender

        sender_alt = _string("SenderAlt")
        if sender_alt:
            result.sender_alt = sender_alt
            if is_legacy_id(sender_alt):
                canonical = await self._try_convert("SenderAlt", sender_alt, auth_token)
                if canonical:
                    result.canonical_sender_alt = canonical
                    result.conversions["SenderAlt"] = f"{sender_alt} -> {canonical}"
                    if not result.canonical_sender:
                        result.canonical_sender = canonical

        recipient_alt = _string("RecipientAlt")
        if recipient_alt:
            result.recipient_alt = recipient_alt
            if is_legacy_id(recipient_alt):
                canonical = await self._try_convert("RecipientAlt", recipient_alt, auth_token)
                if canonical:
                    result.canonical_recipient_alt = canonical
                    result.conversions["RecipientAlt"] = f"{recipient_alt} -> {canonical}"
                    if not result.canonical_chat:
                        result.canonical_chat = canonical

        if "IsGroup" in info:
            result.is_group = parse_is_group(info["IsGroup"])

        lowered_chat = result.canonical_chat.lower()
        if GROUP_MARKER in lowered_chat or any(m in lowered_chat for m in BROADCAST_MARKERS):
            result.is_group = True

        return result

    def _record(self, outcome: str) -> None:
        if self.metrics:
            self.metrics.record_conversion(outcome)
