"""
Tests for WebhookForwarder relay behaviour.
"""

import asyncio
from unittest.mock import MagicMock

import aiohttp
import pytest

from hookrelay.config import ForwarderSettings
from hookrelay.core.exceptions import InternalRelayError, UpstreamUnavailableError
from hookrelay.core.forwarder import WebhookForwarder


@pytest.fixture
def settings() -> ForwarderSettings:
    return ForwarderSettings(timeout_seconds=15, user_agent="hookrelay-test")


def failing_session(error: Exception) -> MagicMock:
    session = MagicMock()
    session.post.side_effect = error
    return session


class TestRelay:
    """Test relaying a body to a destination."""

    @pytest.mark.asyncio
    async def test_relays_bytes_and_mirrors_response(self, settings, session_factory) -> None:
        forwarder = WebhookForwarder(settings)
        forwarder.session = session_factory(
            status=201, body=b"ok", headers={"Content-Type": "text/plain"}
        )

        raw = b'{"jsonData": "{}"}'
        result = await forwarder.relay("http://dest/x", raw, "application/json")

        assert result.status_code == 201
        assert result.body == b"ok"
        assert result.content_type == "text/plain"

        args, kwargs = forwarder.session.post.call_args
        assert args[0] == "http://dest/x"
        assert kwargs["data"] is raw
        assert kwargs["headers"]["Content-Type"] == "application/json"
        assert kwargs["headers"]["User-Agent"] == "hookrelay-test"

    @pytest.mark.asyncio
    async def test_default_content_type(self, settings, session_factory) -> None:
        forwarder = WebhookForwarder(settings)
        forwarder.session = session_factory(status=200)

        result = await forwarder.relay("http://dest/x", b"jsonData=1", "")

        _, kwargs = forwarder.session.post.call_args
        assert kwargs["headers"]["Content-Type"] == "application/x-www-form-urlencoded"
        assert result.content_type == ""

    @pytest.mark.asyncio
    async def test_destination_error_status_is_passed_through(self, settings, session_factory) -> None:
        forwarder = WebhookForwarder(settings)
        forwarder.session = session_factory(
            status=503, body=b"busy", headers={"Content-Type": "text/html"}
        )

        result = await forwarder.relay("http://dest/x", b"{}", "application/json")
        assert (result.status_code, result.body) == (503, b"busy")

    @pytest.mark.asyncio
    async def test_records_duration(self, settings, session_factory) -> None:
        metrics = MagicMock()
        forwarder = WebhookForwarder(settings, metrics=metrics)
        forwarder.session = session_factory(status=200)

        await forwarder.relay("http://dest/x", b"{}", "application/json")
        metrics.record_forward_duration.assert_called_once()


class TestRelayFailures:
    """Test error mapping."""

    @pytest.mark.asyncio
    async def test_connection_refused(self, settings) -> None:
        forwarder = WebhookForwarder(settings)
        forwarder.session = failing_session(aiohttp.ClientConnectionError("refused"))

        with pytest.raises(UpstreamUnavailableError) as exc_info:
            await forwarder.relay("http://dest/x", b"{}", "application/json")
        assert exc_info.value.status_code == 502

    @pytest.mark.asyncio
    async def test_timeout(self, settings) -> None:
        forwarder = WebhookForwarder(settings)
        forwarder.session = failing_session(asyncio.TimeoutError())

        with pytest.raises(UpstreamUnavailableError):
            await forwarder.relay("http://dest/x", b"{}", "application/json")

    @pytest.mark.asyncio
    async def test_invalid_url(self, settings) -> None:
        forwarder = WebhookForwarder(settings)
        forwarder.session = failing_session(aiohttp.InvalidURL("not a url"))

        with pytest.raises(InternalRelayError) as exc_info:
            await forwarder.relay("not a url", b"{}", "application/json")
        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_not_started(self, settings) -> None:
        forwarder = WebhookForwarder(settings)
        with pytest.raises(InternalRelayError):
            await forwarder.relay("http://dest/x", b"{}", "application/json")


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_start_stop(self, settings) -> None:
        forwarder = WebhookForwarder(settings)
        assert not forwarder.is_healthy()

        await forwarder.start()
        assert forwarder.is_healthy()

        await forwarder.stop()
        assert not forwarder.is_healthy()
        assert forwarder.session is None
