"""
Headless console client for the Botical voice assistant.

Usage:
1. Start the token service: `uvicorn botical.main:app --port 3000`
   (with LIVEKIT_* set in `.env`), plus the LiveKit server and the agent.
2. Run: `python tools/console_client/console_client.py`
   Optional flags:
     --room botical-room                        # room to join
     --token-endpoint http://host/api/token     # credential endpoint

Type a line and press Enter to send it as chat text. Commands:
  /voice   toggle voice mode (microphone + agent audio)
  /quit    leave the room and exit

Transcript, tool calls and running cost are written to the log.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

# Ensure repo root is on sys.path so `import botical` works when running this script directly
ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from botical.core.logger import get_logger  # noqa: E402
from botical.services.session_manager import ConnectionManager  # noqa: E402
from botical.services.token_client import CredentialClient  # noqa: E402
from botical.services.view import LoggingView  # noqa: E402

log = get_logger("botical.console")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Botical headless console client")
    parser.add_argument("--room", default=None, help="room name passed to the token endpoint")
    parser.add_argument("--token-endpoint", default=None, help="override TOKEN_ENDPOINT")
    return parser.parse_args()


async def run(args: argparse.Namespace) -> None:
    view = LoggingView()
    manager = ConnectionManager(
        view,
        credentials=CredentialClient(endpoint=args.token_endpoint),
        room=args.room,
    )
    await manager.connect()

    try:
        while True:
            line = await asyncio.to_thread(sys.stdin.readline)
            if not line:
                break
            line = line.strip()
            if line == "/quit":
                break
            if line == "/voice":
                await manager.toggle_voice()
                continue
            await manager.send_text(line)
    finally:
        await manager.aclose()
        log.info("Session closed after %d messages", len(view.messages))


def main() -> None:
    args = parse_args()
    try:
        asyncio.run(run(args))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
