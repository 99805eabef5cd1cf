"""
Tests for legacy identifier normalization.

The normalization API is replaced by a mocked aiohttp session.
"""

import json
from typing import Dict
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from hookrelay.core.converter import (
    ConversionResult,
    LegacyIdConverter,
    is_canonical_id,
    is_legacy_id,
)
from hookrelay.core.exceptions import ConversionError


SUCCESS = {"status": True, "data": {"success": True, "jid": "5511999990000@s.whatsapp.net"}}


def converter_with(session) -> LegacyIdConverter:
    converter = LegacyIdConverter(base_url="http://normalizer/")
    converter.session = session
    return converter


def routed_session(mapping: Dict[str, str]) -> MagicMock:
    """Session answering each legacy id from mapping; unmapped ids get 500."""

    def post(url, json=None, headers=None):
        lid = json["lid"]
        response = MagicMock()
        if lid in mapping:
            response.status = 200
            response.json = AsyncMock(
                return_value={"status": True, "data": {"success": True, "jid": mapping[lid]}}
            )
        else:
            response.status = 500
            response.text = AsyncMock(return_value="boom")
        ctx = MagicMock()
        ctx.__aenter__ = AsyncMock(return_value=response)
        ctx.__aexit__ = AsyncMock(return_value=False)
        return ctx

    session = MagicMock()
    session.post.side_effect = post
    return session


class TestIdentifierShapes:

    def test_legacy_suffix(self) -> None:
        assert is_legacy_id("123@lid")
        assert is_legacy_id("123@LID")
        assert not is_legacy_id("123@s.whatsapp.net")

    def test_canonical_markers(self) -> None:
        assert is_canonical_id("123@s.whatsapp.net")
        assert is_canonical_id("123@g.us")
        assert not is_canonical_id("123@lid")


class TestConvertIdentifier:
    """Test single identifier conversion."""

    @pytest.mark.asyncio
    async def test_canonical_input_is_returned_unchanged(self, session_factory) -> None:
        session = session_factory()
        converter = converter_with(session)

        assert await converter.convert_identifier("1@s.whatsapp.net", "tok") == "1@s.whatsapp.net"
        session.post.assert_not_called()

    @pytest.mark.asyncio
    async def test_success(self, session_factory) -> None:
        session = session_factory(status=200, json_body=SUCCESS)
        converter = converter_with(session)

        result = await converter.convert_identifier("42@lid", "tok")
        assert result == "5511999990000@s.whatsapp.net"

        args, kwargs = session.post.call_args
        assert args[0] == "http://normalizer/user/parselid"
        assert kwargs["json"] == {"lid": "42@lid"}
        assert kwargs["headers"]["Authorization"] == "Bearer tok"

    @pytest.mark.asyncio
    async def test_missing_token_makes_no_call(self, session_factory) -> None:
        session = session_factory(status=200, json_body=SUCCESS)
        converter = converter_with(session)

        with pytest.raises(ConversionError):
            await converter.convert_identifier("42@lid", "")
        session.post.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_base_url(self, session_factory) -> None:
        converter = LegacyIdConverter(base_url="")
        converter.session = session_factory()

        with pytest.raises(ConversionError):
            await converter.convert_identifier("42@lid", "tok")

    @pytest.mark.asyncio
    async def test_not_started(self) -> None:
        converter = LegacyIdConverter(base_url="http://normalizer")
        with pytest.raises(ConversionError):
            await converter.convert_identifier("42@lid", "tok")

    @pytest.mark.asyncio
    async def test_non_2xx_status(self, session_factory) -> None:
        converter = converter_with(session_factory(status=401, text="denied"))

        with pytest.raises(ConversionError) as exc_info:
            await converter.convert_identifier("42@lid", "tok")
        assert exc_info.value.details["status"] == 401

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [
        {"status": False, "data": {"success": True, "jid": "x@s.whatsapp.net"}},
        {"status": True, "data": {"success": False, "jid": "x@s.whatsapp.net"}},
        {"status": True, "data": {"success": True, "jid": ""}},
        {"status": True},
        ["not", "an", "object"],
    ])
    async def test_unsuccessful_response(self, session_factory, body) -> None:
        converter = converter_with(session_factory(status=200, json_body=body))

        with pytest.raises(ConversionError):
            await converter.convert_identifier("42@lid", "tok")

    @pytest.mark.asyncio
    async def test_transport_error(self) -> None:
        session = MagicMock()
        session.post.side_effect = aiohttp.ClientConnectionError("refused")

        with pytest.raises(ConversionError):
            await converter_with(session).convert_identifier("42@lid", "tok")

    @pytest.mark.asyncio
    async def test_records_outcome_metrics(self, session_factory) -> None:
        metrics = MagicMock()
        converter = LegacyIdConverter(base_url="http://normalizer", metrics=metrics)
        converter.session = session_factory(status=500, text="err")

        with pytest.raises(ConversionError):
            await converter.convert_identifier("42@lid", "tok")
        metrics.record_conversion.assert_called_once_with("bad_status")


class TestDetectAndConvert:
    """Test event-level conversion."""

    @pytest.mark.asyncio
    async def test_converts_legacy_chat(self) -> None:
        payload = json.dumps({"event": {"Info": {"Chat": "9@lid", "Sender": "1@s.whatsapp.net"}}})
        converter = converter_with(routed_session({"9@lid": "120363@g.us"}))

        result = await converter.detect_and_convert(payload, "tok")
        assert result.canonical_chat == "120363@g.us"
        assert result.canonical_sender == "1@s.whatsapp.net"
        assert result.conversions == {"Chat": "9@lid -> 120363@g.us"}
        assert result.is_group

    @pytest.mark.asyncio
    async def test_one_failed_field_does_not_block_others(self) -> None:
        payload = json.dumps({"event": {"Info": {"Chat": "9@lid", "Sender": "7@lid"}}})
        converter = converter_with(routed_session({"7@lid": "7@s.whatsapp.net"}))

        result = await converter.detect_and_convert(payload, "tok")
        assert result.canonical_chat == ""
        assert result.final_chat == "9@lid"
        assert result.canonical_sender == "7@s.whatsapp.net"
        assert list(result.conversions) == ["Sender"]

    @pytest.mark.asyncio
    async def test_sender_alt_fills_sender(self) -> None:
        payload = json.dumps({"event": {"Info": {"SenderAlt": "8@lid"}}})
        converter = converter_with(routed_session({"8@lid": "8@s.whatsapp.net"}))

        result = await converter.detect_and_convert(payload, "tok")
        assert result.canonical_sender_alt == "8@s.whatsapp.net"
        assert result.final_sender == "8@s.whatsapp.net"

    @pytest.mark.asyncio
    async def test_recipient_alt_fills_chat(self) -> None:
        payload = json.dumps({"event": {"Info": {"RecipientAlt": "3@lid", "IsGroup": False}}})
        converter = converter_with(routed_session({"3@lid": "555@g.us"}))

        result = await converter.detect_and_convert(payload, "tok")
        assert result.final_chat == "555@g.us"
        assert result.is_group

    @pytest.mark.asyncio
    async def test_unparseable_event_raises(self) -> None:
        converter = converter_with(routed_session({}))
        with pytest.raises(ConversionError):
            await converter.detect_and_convert("{broken", "tok")

    @pytest.mark.asyncio
    async def test_without_token_nothing_converts(self, session_factory) -> None:
        session = session_factory(status=200, json_body=SUCCESS)
        payload = json.dumps({"event": {"Info": {"Chat": "9@lid"}}})

        result = await converter_with(session).detect_and_convert(payload, "")
        assert not result.has_conversions
        session.post.assert_not_called()


class TestApplyConversions:

    def test_without_conversions_returns_original(self) -> None:
        payload = '{"event": {"Info": {"Chat": "1@s.whatsapp.net"}}}'
        assert ConversionResult(original_data=payload).apply_conversions() == payload

    def test_substitutes_converted_fields(self) -> None:
        payload = json.dumps({"event": {"Info": {"Chat": "9@lid", "Sender": "1@s.whatsapp.net"}, "Message": {"x": 1}}})
        result = ConversionResult(
            original_data=payload,
            chat="9@lid",
            canonical_chat="9@s.whatsapp.net",
            sender="1@s.whatsapp.net",
            canonical_sender="1@s.whatsapp.net",
            conversions={"Chat": "9@lid -> 9@s.whatsapp.net"},
        )

        data = json.loads(result.apply_conversions())
        assert data["event"]["Info"] == {"Chat": "9@s.whatsapp.net", "Sender": "1@s.whatsapp.net"}
        assert data["event"]["Message"] == {"x": 1}
        assert json.loads(payload)["event"]["Info"]["Chat"] == "9@lid"

    def test_deeply_nested_original_raises_conversion_error(self) -> None:
        result = ConversionResult(
            original_data='{"a":' * 5000 + "1" + "}" * 5000,
            conversions={"Chat": "9@lid -> 9@s.whatsapp.net"},
        )
        with pytest.raises(ConversionError):
            result.apply_conversions()

    @pytest.mark.asyncio
    async def test_deeply_nested_event_raises_conversion_error(self) -> None:
        converter = converter_with(routed_session({}))
        with pytest.raises(ConversionError):
            await converter.detect_and_convert('{"a":' * 5000 + "1" + "}" * 5000, "tok")
