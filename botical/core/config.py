from functools import lru_cache

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # LiveKit
    LIVEKIT_URL: str = "ws://localhost:7880"
    LIVEKIT_API_KEY: str = "devkey"
    LIVEKIT_API_SECRET: str = "secret"

    # Token service / room
    TOKEN_ENDPOINT: str = "http://localhost:3000/api/token"
    ROOM_NAME: str = "botical-room"
    AGENT_NAME: str = "botical"
    HTTP_TIMEOUT: float = 10.0

    # Data channel topics
    TOOL_EVENTS_TOPIC: str = "tool-events"
    COST_EVENTS_TOPIC: str = "cost-events"
    TEXT_TOPIC: str = "text"
    GREETING_TEXT: str = "hi"

    # Reconnect delays (milliseconds)
    RECONNECT_DELAY_MS: int = 2000
    CONNECT_RETRY_DELAY_MS: int = 3000

    # Pricing (dollars)
    STT_RATE_PER_MINUTE: float = 0.0077
    LLM_INPUT_RATE: float = 3.0 / 1_000_000
    LLM_CACHED_INPUT_RATE: float = 0.3 / 1_000_000
    LLM_OUTPUT_RATE: float = 15.0 / 1_000_000
    TTS_RATE_PER_CHARACTER: float = 46.7 / 1_000_000

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    # Ensure .env is loaded once
    load_dotenv(override=False)
    return Settings()
