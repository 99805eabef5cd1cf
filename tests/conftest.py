"""
Pytest configuration and shared fixtures.

Contains common test fixtures and setup for all test modules.
"""

import json
from typing import Any, Dict, Generator, List, Optional, Tuple
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from hookrelay.main import app
from hookrelay.config import reload_settings
from hookrelay.core.forwarder import RelayResponse


ADMIN_TOKEN = "test_admin_token_123456789abc"


class FakeForwarder:
    """Records relay calls and answers with a canned response or error."""

    def __init__(self, response: Optional[RelayResponse] = None, error: Optional[Exception] = None) -> None:
        self.response = response or RelayResponse(status_code=200, body=b"", content_type="")
        self.error = error
        self.calls: List[Tuple[str, bytes, str]] = []

    async def relay(self, destination_url: str, raw_body: bytes, content_type: str) -> RelayResponse:
        self.calls.append((destination_url, raw_body, content_type))
        if self.error:
            raise self.error
        return self.response

    def is_healthy(self) -> bool:
        return True


def make_session(
    status: int = 200,
    json_body: Any = None,
    text: str = "",
    body: bytes = b"",
    headers: Optional[Dict[str, str]] = None,
) -> MagicMock:
    """Mock aiohttp session whose post() yields one canned response."""
    response = MagicMock()
    response.status = status
    response.json = AsyncMock(return_value=json_body)
    response.text = AsyncMock(return_value=text)
    response.read = AsyncMock(return_value=body)
    response.headers = headers or {}

    session = MagicMock()
    session.post.return_value.__aenter__.return_value = response
    session.post.return_value.__aexit__.return_value = False
    return session


@pytest.fixture
def test_config() -> Dict[str, Any]:
    """Test configuration data."""
    return {
        "server": {
            "host": "0.0.0.0",
            "port": 8080,
            "debug": True,
            "log_level": "DEBUG"
        },
        "cache": {
            "ttl_seconds": 60,
            "sweep_interval_seconds": 300
        },
        "tenants": {
            "env_override_prefix": "CLIENT_",
            "routes": {
                "store-tenant-1": {
                    "webhook_url": "http://dest/store",
                    "plan": "PRO",
                    "rate_limit_per_min": 2,
                    "active": True
                },
                "inactive-tenant": {
                    "webhook_url": "http://dest/inactive",
                    "active": False
                }
            }
        },
        "security": {
            "admin_token": ADMIN_TOKEN
        }
    }


@pytest.fixture
def test_client(test_config: Dict[str, Any]) -> Generator[TestClient, None, None]:
    """FastAPI test client with test configuration."""
    with patch('hookrelay.config.load_config_file') as mock_load:
        mock_load.return_value = test_config

        # Reload settings to pick up test config
        reload_settings()

        with TestClient(app) as client:
            yield client


@pytest.fixture
def admin_token() -> str:
    return ADMIN_TOKEN


@pytest.fixture
def fake_forwarder() -> FakeForwarder:
    return FakeForwarder(
        RelayResponse(status_code=201, body=b"ok", content_type="text/plain")
    )


@pytest.fixture
def group_event() -> str:
    return json.dumps({"event": {"Info": {"Chat": "123@g.us", "Sender": "55119999@s.whatsapp.net"}}})


@pytest.fixture
def direct_event() -> str:
    return json.dumps({
        "event": {
            "Info": {
                "Chat": "5511988887777@s.whatsapp.net",
                "Sender": "5511988887777@s.whatsapp.net",
                "IsGroup": False
            },
            "Message": {"conversation": "hello"}
        }
    })


@pytest.fixture
def session_factory():
    """Factory for mocked aiohttp sessions."""
    return make_session


@pytest.fixture
def forwarder_factory():
    """Factory for FakeForwarder instances."""
    return FakeForwarder
