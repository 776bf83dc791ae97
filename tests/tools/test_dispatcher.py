"""
Unit tests for the tool dispatch protocol.

Tests cover:
- Successful call: result, resume, fetching flag toggle
- Collaborator failures, timeouts and invalid arguments
- Concurrent calls resolving out of order
- Sending on a channel that has closed
"""

import asyncio
import json

import pytest

from vivid_voice.core.errors import ToolExecutionError
from vivid_voice.core.models import ToolCallRequest
from vivid_voice.core.signals import FetchingChanged
from vivid_voice.tools.dispatcher import ToolDispatcher


def _outputs(channel):
    return [
        (event["item"]["call_id"], json.loads(event["item"]["output"]))
        for event in channel.sent
        if event["type"] == "conversation.item.create"
    ]


@pytest.fixture
def dispatcher(registry, collaborator, flags):
    return ToolDispatcher(registry, collaborator, flags, default_timeout_sec=1.0)


class TestToolDispatcher:

    @pytest.mark.asyncio
    async def test_market_price_success(self, dispatcher, collaborator, make_channel, recorder, flags):
        collaborator.results["AAPL"] = {"success": True, "data": {"symbol": "AAPL", "price": 189.5}}
        channel = make_channel()

        request = ToolCallRequest("call_a", "get_market_price", '{"symbol": "aapl"}')
        result = await dispatcher.dispatch(request, channel, context="dashboard", identity="user-1")

        assert result.succeeded is True
        assert result.output_payload["data"]["price"] == 189.5
        assert channel.sent_types() == ["conversation.item.create", "response.create"]
        assert _outputs(channel) == [("call_a", result.output_payload)]
        assert collaborator.calls == [("get_market_price", {"symbol": "AAPL"}, "user-1")]

        fetching = recorder.of(FetchingChanged)
        assert [s.fetching for s in fetching] == [True, False]
        assert fetching[0].tool_name == "get_market_price"
        assert flags.fetching is False

    @pytest.mark.asyncio
    async def test_collaborator_raises(self, dispatcher, collaborator, make_channel, flags):
        collaborator.results["AAPL"] = ToolExecutionError("backend down")
        channel = make_channel()

        result = await dispatcher.dispatch(
            ToolCallRequest("call_b", "get_market_price", '{"symbol": "AAPL"}'), channel
        )

        assert result.succeeded is False
        assert result.output_payload == {"success": False, "error": "Failed to fetch data"}
        assert channel.sent_types() == ["conversation.item.create", "response.create"]
        assert flags.fetching is False

    @pytest.mark.asyncio
    async def test_unexpected_exception_still_yields_result(self, dispatcher, collaborator, make_channel):
        collaborator.results["AAPL"] = RuntimeError("boom")
        channel = make_channel()

        result = await dispatcher.dispatch(
            ToolCallRequest("call_c", "get_market_price", '{"symbol": "AAPL"}'), channel
        )

        assert result.succeeded is False
        assert result.output_payload["error"]

    @pytest.mark.asyncio
    async def test_failure_body_is_forwarded(self, dispatcher, collaborator, make_channel):
        collaborator.results["get_user_portfolio"] = {"success": False, "error": "User not authenticated"}
        channel = make_channel()

        result = await dispatcher.dispatch(ToolCallRequest("call_d", "get_user_portfolio", "{}"), channel)

        assert result.succeeded is False
        assert result.output_payload == {"success": False, "error": "User not authenticated"}

    @pytest.mark.asyncio
    async def test_invalid_arguments_skip_collaborator(self, dispatcher, collaborator, make_channel):
        channel = make_channel()

        result = await dispatcher.dispatch(ToolCallRequest("call_e", "get_market_price", "{oops"), channel)

        assert result.succeeded is False
        assert "Invalid tool arguments" in result.output_payload["error"]
        assert collaborator.calls == []
        assert _outputs(channel)[0][0] == "call_e"

    @pytest.mark.asyncio
    async def test_tool_not_exposed_in_context(self, dispatcher, collaborator, make_channel):
        channel = make_channel()

        result = await dispatcher.dispatch(
            ToolCallRequest("call_f", "get_market_price", '{"symbol": "AAPL"}'), channel, context="auth"
        )

        assert result.succeeded is False
        assert result.output_payload["error"] == "Unknown tool: get_market_price"
        assert collaborator.calls == []

    @pytest.mark.asyncio
    async def test_timeout(self, registry, collaborator, flags, make_channel):
        dispatcher = ToolDispatcher(registry, collaborator, flags, default_timeout_sec=0.01)
        collaborator.gates["AAPL"] = asyncio.Event()
        channel = make_channel()

        result = await dispatcher.dispatch(
            ToolCallRequest("call_g", "get_market_price", '{"symbol": "AAPL"}'), channel
        )

        assert result.succeeded is False
        assert "timed out" in result.output_payload["error"]
        assert flags.fetching is False

    @pytest.mark.asyncio
    async def test_out_of_order_completion(self, dispatcher, collaborator, make_channel, settled):
        collaborator.gates["XXX"] = asyncio.Event()
        collaborator.gates["YYY"] = asyncio.Event()
        channel = make_channel()

        task_x = dispatcher.dispatch(ToolCallRequest("call_x", "get_market_price", '{"symbol": "xxx"}'), channel)
        task_y = dispatcher.dispatch(ToolCallRequest("call_y", "get_market_price", '{"symbol": "yyy"}'), channel)
        await settled()
        assert set(dispatcher.outstanding) == {"call_x", "call_y"}

        collaborator.gates["YYY"].set()
        await task_y
        collaborator.gates["XXX"].set()
        await task_x

        assert [call_id for call_id, _ in _outputs(channel)] == ["call_y", "call_x"]
        assert channel.sent_types() == [
            "conversation.item.create",
            "response.create",
            "conversation.item.create",
            "response.create",
        ]
        assert dispatcher.outstanding == {}

    @pytest.mark.asyncio
    async def test_fetching_stays_raised_until_last_call(self, dispatcher, collaborator, make_channel, flags, settled):
        collaborator.gates["XXX"] = asyncio.Event()
        collaborator.gates["YYY"] = asyncio.Event()
        channel = make_channel()

        task_x = dispatcher.dispatch(ToolCallRequest("call_x", "get_market_price", '{"symbol": "xxx"}'), channel)
        task_y = dispatcher.dispatch(ToolCallRequest("call_y", "get_market_price", '{"symbol": "yyy"}'), channel)
        await settled()

        collaborator.gates["XXX"].set()
        await task_x
        assert flags.fetching is True

        collaborator.gates["YYY"].set()
        await task_y
        assert flags.fetching is False

    @pytest.mark.asyncio
    async def test_closed_channel_is_swallowed(self, dispatcher, make_channel, flags):
        channel = make_channel()
        await channel.close()

        result = await dispatcher.dispatch(
            ToolCallRequest("call_h", "get_market_price", '{"symbol": "AAPL"}'), channel
        )

        assert result.succeeded is True
        assert channel.sent == []
        assert flags.fetching is False

    @pytest.mark.asyncio
    async def test_cancel_all(self, dispatcher, collaborator, make_channel, settled):
        collaborator.gates["AAPL"] = asyncio.Event()
        task = dispatcher.dispatch(
            ToolCallRequest("call_i", "get_market_price", '{"symbol": "AAPL"}'), make_channel()
        )
        await settled()

        await dispatcher.cancel_all()

        assert task.cancelled()
        assert dispatcher.outstanding == {}
