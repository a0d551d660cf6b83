from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from botical.api import routes_token
from botical.core.config import get_settings

settings = get_settings()

app = FastAPI(
    title="Botical token service",
    description="Join-token issuance and agent dispatch for the Botical voice client",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET"],
    allow_headers=["*"],
)

app.include_router(routes_token.router, prefix="/api", tags=["Token"])


@app.get("/health")
def health():
    return {"status": "alive", "livekit_url": settings.LIVEKIT_URL, "agent": settings.AGENT_NAME}
