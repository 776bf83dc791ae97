"""
Credential Acquirer.

Requests a short-lived session credential from the internal credential
endpoint. A fresh credential is requested for every connect; credentials are
never cached or reused.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional

import aiohttp
import structlog

from vivid_voice.core.errors import CredentialError
from vivid_voice.core.models import SessionCredential
from vivid_voice.session.rate_limit import RateLimiter

logger = structlog.get_logger(__name__)


class CredentialSource(ABC):

    @abstractmethod
    async def acquire(self, context: str, identity: Optional[str] = None) -> SessionCredential:
        """
        Raises:
            CredentialError: The credential could not be issued
        """

    async def close(self) -> None:
        return


class CredentialAcquirer(CredentialSource):
    """
    POSTs ``{context, userId?, voice?, tools?}`` to the credential endpoint and
    returns the ``client_secret`` it issues.

    ``tools_for_context`` supplies the realtime tool schemas to attach to the
    session for a context; ``rate_limiter`` throttles requests per identity
    (or per context for anonymous sessions).
    """

    def __init__(
        self,
        url: str,
        *,
        api_token: Optional[str] = None,
        timeout_sec: float = 10.0,
        voice: Optional[str] = None,
        tools_for_context: Optional[Callable[[str], List[Dict[str, Any]]]] = None,
        rate_limiter: Optional[RateLimiter] = None,
        session_factory: Optional[Callable[[], aiohttp.ClientSession]] = None,
    ):
        self.url = url
        self._api_token = api_token
        self._timeout_sec = timeout_sec
        self._voice = voice
        self._tools_for_context = tools_for_context
        self._rate_limiter = rate_limiter
        self._session_factory = session_factory
        self._session: Optional[aiohttp.ClientSession] = None

    async def acquire(self, context: str, identity: Optional[str] = None) -> SessionCredential:
        if self._rate_limiter is not None:
            key = f"user:{identity}" if identity else f"context:{context}"
            decision = self._rate_limiter.check(key)
            if not decision.allowed:
                raise CredentialError(
                    f"Too many session requests; retry in {int(decision.retry_after) + 1}s"
                )

        await self._ensure_session()

        payload: Dict[str, Any] = {"context": context}
        if identity:
            payload["userId"] = identity
        if self._voice:
            payload["voice"] = self._voice
        if self._tools_for_context is not None:
            payload["tools"] = self._tools_for_context(context)
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
                body = await response.json(content_type=None)
                status = response.status
        except asyncio.TimeoutError as exc:
            logger.error("Credential request timed out", url=self.url, timeout_sec=self._timeout_sec)
            raise CredentialError(
                f"Failed to create voice session: no response within {self._timeout_sec:g}s"
            ) from exc
        except (aiohttp.ClientError, ValueError) as exc:
            logger.error("Credential request failed", url=self.url, error=str(exc))
            raise CredentialError(f"Failed to create voice session: {exc}") from exc

        if status >= 400:
            message = body.get("error") if isinstance(body, dict) else None
            logger.error("Credential endpoint refused", status=status, error=message)
            raise CredentialError(message or f"Failed to create voice session (HTTP {status})")

        return self._parse(body)

    @staticmethod
    def _parse(body: Any) -> SessionCredential:
        if not isinstance(body, dict):
            raise CredentialError("Credential endpoint returned an unexpected body")
        secret = body.get("client_secret")
        # Some deployments forward the upstream shape {"client_secret": {"value", "expires_at"}}
        if isinstance(secret, dict):
            expires_at = secret.get("expires_at", body.get("expires_at"))
            secret = secret.get("value")
        else:
            expires_at = body.get("expires_at")
        if not isinstance(secret, str) or not secret:
            raise CredentialError("Credential endpoint returned no client_secret")
        try:
            expires = float(expires_at) if expires_at is not None else None
        except (TypeError, ValueError):
            expires = None
        logger.info("🔑 Session credential issued", expires_at=expires)
        return SessionCredential(value=secret, expires_at=expires)

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _ensure_session(self) -> None:
        if self._session and not self._session.closed:
            return
        factory = self._session_factory or aiohttp.ClientSession
        self._session = factory()
