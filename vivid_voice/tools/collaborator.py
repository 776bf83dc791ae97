"""
Tool Execution Collaborator - the backend that actually runs tools.

The dispatcher talks to an abstract ToolCollaborator; HttpToolCollaborator
posts ``{tool, arguments, userId?}`` to the internal tools endpoint.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

import aiohttp
import structlog

from vivid_voice.core.errors import ToolExecutionError

logger = structlog.get_logger(__name__)


@dataclass
class ToolExecutionOutcome:
    """What the collaborator returned for one call."""
    success: bool
    output: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    @classmethod
    def from_body(cls, body: Any) -> "ToolExecutionOutcome":
        if not isinstance(body, dict):
            return cls(success=True, output={"success": True, "data": body})
        success = bool(body.get("success", True))
        error = body.get("error")
        return cls(success=success, output=dict(body), error=str(error) if error else None)


class ToolCollaborator(ABC):

    @abstractmethod
    async def execute(
        self,
        tool_name: str,
        arguments: Dict[str, Any],
        identity: Optional[str] = None,
    ) -> ToolExecutionOutcome:
        """
        Run one tool.

        Raises:
            ToolExecutionError: The collaborator could not be reached or failed
        """

    async def close(self) -> None:
        return


class HttpToolCollaborator(ToolCollaborator):
    """POSTs tool calls to the internal tools endpoint with aiohttp."""

    def __init__(
        self,
        url: str,
        *,
        api_token: Optional[str] = None,
        timeout_sec: float = 10.0,
        session_factory: Optional[Callable[[], aiohttp.ClientSession]] = None,
    ):
        self.url = url
        self._api_token = api_token
        self._timeout_sec = timeout_sec
        self._session_factory = session_factory
        self._session: Optional[aiohttp.ClientSession] = None

    async def execute(
        self,
        tool_name: str,
        arguments: Dict[str, Any],
        identity: Optional[str] = None,
    ) -> ToolExecutionOutcome:
        await self._ensure_session()

        payload: Dict[str, Any] = {"tool": tool_name, "arguments": arguments}
        if identity:
            payload["userId"] = identity
        headers = {"Content-Type": "application/json"}
        if self._api_token:
            headers["Authorization"] = f"Bearer {self._api_token}"

        try:
            async with self._session.post(
                self.url,
                json=payload,
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=self._timeout_sec),
            ) as response:
                if response.status >= 400:
                    body = await response.text()
                    logger.error(
                        "Tool endpoint request failed",
                        tool=tool_name,
                        status=response.status,
                        body=body[:256],
                    )
                    raise ToolExecutionError(f"Tool endpoint returned HTTP {response.status}")
                body = await response.json(content_type=None)
        except aiohttp.ClientError as exc:
            raise ToolExecutionError(f"Tool endpoint unreachable: {exc}") from exc

        return ToolExecutionOutcome.from_body(body)

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _ensure_session(self) -> None:
        if self._session and not self._session.closed:
            return
        factory = self._session_factory or aiohttp.ClientSession
        self._session = factory()
