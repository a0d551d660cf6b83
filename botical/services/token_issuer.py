"""
LiveKit join-token minting and agent dispatch for the token endpoint.

The issuer signs short-lived room-join tokens with LIVEKIT_API_KEY/SECRET and
asks the LiveKit server to dispatch the named agent into the room. A failed
dispatch is logged but never fails the token request: the agent may already
be in the room.
"""

from __future__ import annotations

import secrets
import string
from typing import Optional

from livekit import api as lk_api

from botical.core.config import get_settings
from botical.core.logger import get_logger
from botical.schemas.events import JoinCredential

log = get_logger(__name__)

_ALPHABET = string.ascii_lowercase + string.digits


def _rest_host(url: str) -> str:
    """Map the signalling URL (ws/wss) to the REST host (http/https)."""
    if url.startswith("wss://"):
        return "https://" + url[len("wss://"):]
    if url.startswith("ws://"):
        return "http://" + url[len("ws://"):]
    return url


def random_identity(prefix: str = "user") -> str:
    return f"{prefix}-{''.join(secrets.choice(_ALPHABET) for _ in range(6))}"


class TokenIssuer:
    def __init__(self) -> None:
        self._settings = get_settings()

    def create_join_token(self, room_name: str, identity: str) -> str:
        grants = lk_api.VideoGrants(room_join=True, room=room_name)
        token = (
            lk_api.AccessToken(self._settings.LIVEKIT_API_KEY, self._settings.LIVEKIT_API_SECRET)
            .with_identity(identity)
            .with_grants(grants)
        )
        return token.to_jwt()

    async def dispatch_agent(self, room_name: str) -> Optional[str]:
        agent_name = self._settings.AGENT_NAME
        log.info('[dispatch] requesting agent "%s" for room "%s"...', agent_name, room_name)
        lkapi = lk_api.LiveKitAPI(
            url=_rest_host(self._settings.LIVEKIT_URL),
            api_key=self._settings.LIVEKIT_API_KEY,
            api_secret=self._settings.LIVEKIT_API_SECRET,
        )
        try:
            dispatch = await lkapi.agent_dispatch.create_dispatch(
                lk_api.CreateAgentDispatchRequest(agent_name=agent_name, room=room_name)
            )
            log.info('[dispatch] created dispatch id=%s for room "%s"', dispatch.id, room_name)
            return dispatch.id
        except Exception:
            log.exception("[dispatch] agent dispatch failed for room %s", room_name)
            return None
        finally:
            await lkapi.aclose()

    async def issue(self, room_name: Optional[str] = None) -> JoinCredential:
        room_name = room_name or self._settings.ROOM_NAME
        identity = random_identity()
        token = self.create_join_token(room_name, identity)
        log.info('[token] generated for %s in room "%s" -> %s', identity, room_name, self._settings.LIVEKIT_URL)
        await self.dispatch_agent(room_name)
        return JoinCredential(token=token, url=self._settings.LIVEKIT_URL, identity=identity, room=room_name)


_issuer: Optional[TokenIssuer] = None


def get_token_issuer() -> TokenIssuer:
    global _issuer
    if _issuer is None:
        _issuer = TokenIssuer()
    return _issuer
