"""
Credential client (async, httpx) for the token endpoint.

`GET /api/token[?room=NAME]` returns `{token, url, identity, room}`. Any
non-2xx status or network failure becomes CredentialFetchError; the response
body is carried as the error detail.
"""

from __future__ import annotations

from typing import Optional

import httpx
from pydantic import ValidationError

from botical.core.config import get_settings
from botical.core.errors import CredentialFetchError
from botical.core.logger import get_logger
from botical.schemas.events import JoinCredential

log = get_logger(__name__)


class CredentialClient:
    def __init__(self, endpoint: Optional[str] = None, timeout: Optional[float] = None) -> None:
        settings = get_settings()
        self.endpoint = endpoint or settings.TOKEN_ENDPOINT
        self._timeout = timeout or settings.HTTP_TIMEOUT
        self._aclient: Optional[httpx.AsyncClient] = None

    def _get_async_client(self) -> httpx.AsyncClient:
        if self._aclient is None:
            self._aclient = httpx.AsyncClient(timeout=self._timeout)
        return self._aclient

    async def fetch(self, room: Optional[str] = None) -> JoinCredential:
        params = {"room": room} if room else None
        log.info("Fetching token from %s...", self.endpoint)
        try:
            resp = await self._get_async_client().get(self.endpoint, params=params)
        except httpx.HTTPError as exc:
            raise CredentialFetchError(None, str(exc)) from exc

        if not resp.is_success:
            raise CredentialFetchError(resp.status_code, resp.text)

        try:
            cred = JoinCredential.model_validate(resp.json())
        except (ValueError, ValidationError) as exc:
            raise CredentialFetchError(resp.status_code, f"malformed token response: {exc}") from exc

        log.info("Token received: identity=%s, room=%s", cred.identity, cred.room)
        return cred

    async def aclose(self) -> None:
        if self._aclient is not None:
            await self._aclient.aclose()
            self._aclient = None
