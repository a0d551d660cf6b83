from typing import Optional

from fastapi import APIRouter, HTTPException

from botical.core.logger import get_logger
from botical.schemas.events import JoinCredential
from botical.services import token_issuer

router = APIRouter()
log = get_logger(__name__)


@router.get("/token", response_model=JoinCredential)
async def get_token(room: Optional[str] = None):
    """Mint a join token for a fresh client identity and dispatch the agent.

    Returns `{token, url, identity, room}`; the client connects to `url` with
    `token`. Server secrets never leave this process.
    """
    try:
        return await token_issuer.get_token_issuer().issue(room)
    except Exception as e:
        log.exception("[token] minting failed: %s", e)
        raise HTTPException(status_code=500, detail=str(e))
