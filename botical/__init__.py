"""Botical voice client package.

Session orchestration for a LiveKit-based voice assistant front end.
Subpackages:
- core: configuration, logging and the error taxonomy
- schemas: wire events (pydantic) and render instructions
- services: connection manager, transcript reconciler, tool relay,
  cost tracking, voice state, transport and credential clients
- workers: reconnect timer
- api: FastAPI token endpoint
"""

__all__ = [
    "api",
    "core",
    "schemas",
    "services",
    "workers",
]

__version__ = "1.0.0"
