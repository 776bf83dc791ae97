"""
Unit tests for the HTTP tool collaborator.

The aiohttp session is replaced through ``session_factory``.
"""

from unittest.mock import Mock

import aiohttp
import pytest

from vivid_voice.core.errors import ToolExecutionError
from vivid_voice.tools.collaborator import HttpToolCollaborator, ToolExecutionOutcome


class _FakeResponse:

    def __init__(self, status, body):
        self.status = status
        self._body = body

    async def json(self, content_type=None):
        return self._body

    async def text(self):
        return str(self._body)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class _FakeSession:

    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.requests = []
        self.closed = False

    def post(self, url, **kwargs):
        self.requests.append((url, kwargs))
        if self.error is not None:
            raise self.error
        return self.response

    async def close(self):
        self.closed = True


class TestToolExecutionOutcome:

    def test_success_body(self):
        outcome = ToolExecutionOutcome.from_body({"success": True, "data": {"price": 1}})
        assert outcome.success is True
        assert outcome.error is None

    def test_failure_body(self):
        outcome = ToolExecutionOutcome.from_body({"success": False, "error": "Unknown tool: x"})
        assert outcome.success is False
        assert outcome.error == "Unknown tool: x"

    def test_non_object_body(self):
        outcome = ToolExecutionOutcome.from_body([1, 2])
        assert outcome.success is True
        assert outcome.output == {"success": True, "data": [1, 2]}


class TestHttpToolCollaborator:

    @pytest.mark.asyncio
    async def test_posts_tool_request(self):
        session = _FakeSession(_FakeResponse(200, {"success": True, "data": {"symbol": "AAPL"}}))
        collaborator = HttpToolCollaborator(
            "http://backend/api/voice/tools", api_token="secret", session_factory=lambda: session
        )

        outcome = await collaborator.execute("get_market_price", {"symbol": "AAPL"}, identity="user-1")

        assert outcome.success is True
        url, kwargs = session.requests[0]
        assert url == "http://backend/api/voice/tools"
        assert kwargs["json"] == {"tool": "get_market_price", "arguments": {"symbol": "AAPL"}, "userId": "user-1"}
        assert kwargs["headers"]["Authorization"] == "Bearer secret"
        assert isinstance(kwargs["timeout"], aiohttp.ClientTimeout)

    @pytest.mark.asyncio
    async def test_anonymous_request_has_no_user(self):
        session = _FakeSession(_FakeResponse(200, {"success": True}))
        collaborator = HttpToolCollaborator("http://backend/tools", session_factory=lambda: session)

        await collaborator.execute("get_market_news", {"limit": 5})

        _, kwargs = session.requests[0]
        assert "userId" not in kwargs["json"]
        assert "Authorization" not in kwargs["headers"]

    @pytest.mark.asyncio
    async def test_http_error_raises(self):
        session = _FakeSession(_FakeResponse(500, {"error": "Tool execution failed"}))
        collaborator = HttpToolCollaborator("http://backend/tools", session_factory=lambda: session)

        with pytest.raises(ToolExecutionError, match="HTTP 500"):
            await collaborator.execute("get_market_price", {"symbol": "AAPL"})

    @pytest.mark.asyncio
    async def test_connection_error_raises(self):
        session = _FakeSession(error=aiohttp.ClientConnectionError("refused"))
        collaborator = HttpToolCollaborator("http://backend/tools", session_factory=lambda: session)

        with pytest.raises(ToolExecutionError, match="unreachable"):
            await collaborator.execute("get_market_price", {"symbol": "AAPL"})

    @pytest.mark.asyncio
    async def test_session_reused_and_closed(self):
        session = _FakeSession(_FakeResponse(200, {"success": True}))
        factory = Mock(return_value=session)
        collaborator = HttpToolCollaborator("http://backend/tools", session_factory=factory)

        await collaborator.execute("get_user_portfolio", {})
        await collaborator.execute("get_user_portfolio", {})
        await collaborator.close()

        assert factory.call_count == 1
        assert session.closed is True
