"""
Group/broadcast classification of extracted events.

Two layers, OR'd:
1. a raw substring scan of the payload, which also catches double-encoded
   or malformed JSON that a parser would reject
2. structured inspection of event.Info and
   event.Message.senderKeyDistributionMessage.groupID

Group and broadcast messages are never relayed.
"""

import json
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Optional, Tuple

import structlog

from .exceptions import ConversionError

if TYPE_CHECKING:
    from .converter import ConversionResult, LegacyIdConverter

logger = structlog.get_logger(__name__)

GROUP_MARKER = "@g.us"
BROADCAST_MARKERS = ("@broadcast", "status@broadcast")
RAW_MARKERS = (GROUP_MARKER,) + BROADCAST_MARKERS
RAW_COMPACT_FLAGS = ('"isgroup":true', '\\"isgroup\\":true')

# Classification reasons
REASON_RAW_MATCH = "filter_raw_match"
REASON_IS_GROUP_TRUE = "is_group_true"
REASON_CHAT_GROUP = "chat_has_g_us"
REASON_CHAT_BROADCAST = "chat_status_broadcast"
REASON_CONVERTED_CHAT_BROADCAST = "chat_broadcast"
REASON_GROUP_ID_BROADCAST = "message_group_id_broadcast"
REASON_JSON_PARSE_FAILED = "json_parse_failed"

_WHITESPACE = re.compile(r"[ \t\r\n]")


@dataclass
class ClassifiedEvent:
    """Classification outcome; is_group implies a non-empty reason."""
    is_group: bool = False
    chat: str = ""
    sender: str = ""
    reason: str = ""
    conversions: Dict[str, str] = field(default_factory=dict)


def raw_group_match(payload: str) -> bool:
    """Substring scan over the case-folded payload, as-is and whitespace-stripped."""
    lowered = payload.lower()
    compact = _WHITESPACE.sub("", lowered)
    if any(marker in lowered or marker in compact for marker in RAW_MARKERS):
        return True
    return any(flag in compact for flag in RAW_COMPACT_FLAGS)


def parse_is_group(value: Any) -> bool:
    """Accept a boolean or the string "true" in any case."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return False


def chat_group_reason(chat: str) -> str:
    """Reason a chat identifier denotes a group/broadcast, or ''."""
    lowered = chat.lower()
    if GROUP_MARKER in lowered:
        return REASON_CHAT_GROUP
    if any(marker in lowered for marker in BROADCAST_MARKERS):
        return REASON_CHAT_BROADCAST
    return ""


def converted_group_reason(chat: str) -> str:
    """Reason for a group decided on canonical identifiers."""
    reason = chat_group_reason(chat)
    if reason == REASON_CHAT_BROADCAST:
        return REASON_CONVERTED_CHAT_BROADCAST
    return reason or REASON_IS_GROUP_TRUE


def load_event(payload: str) -> Optional[Dict[str, Any]]:
    """
    Parse {"event": {"Info": {...}, "Message": {...}}}.

    Returns the event object with Info/Message normalized to dicts, or None
    when the payload does not have that shape. Missing parts are empty.
    """
    try:
        envelope = json.loads(payload)
    except (ValueError, RecursionError):
        return None

    if envelope is None:
        envelope = {}
    if not isinstance(envelope, dict):
        return None

    event = envelope.get("event")
    if event is None:
        event = {}
    if not isinstance(event, dict):
        return None

    normalized = {}
    for part in ("Info", "Message"):
        value = event.get(part)
        if value is None:
            value = {}
        if not isinstance(value, dict):
            return None
        normalized[part] = value
    return normalized


def classify_structured(payload: str) -> ClassifiedEvent:
    """Inspect the parsed envelope; unparseable payloads are not groups."""
    event = load_event(payload)
    if event is None:
        return ClassifiedEvent(reason=REASON_JSON_PARSE_FAILED)

    info = event["Info"]
    result = ClassifiedEvent()

    if "IsGroup" in info:
        result.is_group = parse_is_group(info["IsGroup"])
        if result.is_group:
            result.reason = REASON_IS_GROUP_TRUE

    chat = info.get("Chat")
    if isinstance(chat, str):
        result.chat = chat
    sender = info.get("Sender")
    if isinstance(sender, str):
        result.sender = sender

    chat_reason = chat_group_reason(result.chat)
    if chat_reason:
        result.is_group = True
        result.reason = result.reason or chat_reason

    skdm = event["Message"].get("senderKeyDistributionMessage")
    if isinstance(skdm, dict):
        group_id = skdm.get("groupID")
        if isinstance(group_id, str):
            lowered = group_id.lower()
            if any(marker in lowered for marker in RAW_MARKERS):
                result.is_group = True
                result.reason = result.reason or REASON_GROUP_ID_BROADCAST

    return result


class GroupFilter:
    """Decide whether an extracted event is a group/broadcast message."""

    def classify(self, payload: str) -> ClassifiedEvent:
        result = classify_structured(payload)
        if raw_group_match(payload):
            result.is_group = True
            result.reason = REASON_RAW_MATCH
        return result

    async def classify_with_conversion(
        self,
        payload: str,
        converter: "LegacyIdConverter",
        auth_token: str,
    ) -> Tuple[ClassifiedEvent, Optional["ConversionResult"]]:
        """
        Re-classify using canonical identifiers from the normalization API.

        Falls back to structured classification when the envelope cannot be
        parsed; the failure is recorded under conversions["conversion_error"].
        """
        if not auth_token:
            logger.warning("No tenant token for identifier conversion, conversions may fail")

        try:
            converted = await converter.detect_and_convert(payload, auth_token)
        except ConversionError as e:
            logger.warning("Identifier conversion failed", error=str(e))
            result = classify_structured(payload)
            result.conversions["conversion_error"] = str(e)
            return result, None

        result = ClassifiedEvent(
            is_group=converted.is_group,
            chat=converted.final_chat,
            sender=converted.final_sender,
            conversions=dict(converted.conversions),
        )
        if result.is_group:
            result.reason = converted_group_reason(result.chat)

        logger.info(
            "Event analysed",
            is_group=result.is_group,
            chat=result.chat,
            sender=result.sender,
            conversions=result.conversions or None,
        )
        return result, converted
