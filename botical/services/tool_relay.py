"""
Decoding of structured events received over the data channel.

Malformed payloads never escape this module as anything other than
DecodeError, and `handle` turns that into a logged, dropped event.
"""

from __future__ import annotations

import json
from typing import Any, Callable, List, Optional

from pydantic import ValidationError

from botical.core.errors import DecodeError
from botical.core.logger import get_logger
from botical.schemas.events import CostUpdate, ToolCallRecord, ToolCallsEvent
from botical.schemas.render import RenderToolCard

log = get_logger(__name__)


def _load_json(payload: bytes) -> Any:
    try:
        return json.loads(payload.decode("utf-8"))
    except UnicodeDecodeError as exc:
        raise DecodeError(f"payload is not valid UTF-8: {exc}") from exc
    except ValueError as exc:
        raise DecodeError(f"payload is not valid JSON: {exc}") from exc


def _expect_type(msg: Any, expected: str) -> None:
    if not isinstance(msg, dict):
        raise DecodeError(f"expected a JSON object, got {type(msg).__name__}")
    if msg.get("type") != expected:
        raise DecodeError(f"unexpected event type {msg.get('type')!r}")


def decode_cost_update(payload: bytes) -> CostUpdate:
    msg = _load_json(payload)
    _expect_type(msg, "cost_update")
    try:
        return CostUpdate.model_validate(msg)
    except ValidationError as exc:
        raise DecodeError(f"invalid cost_update: {exc}") from exc


class ToolEventRelay:
    """Turns tool-events payloads into tool cards.

    `notify` is the audible cue; it fires once per successfully decoded
    payload, however many records it carries.
    """

    def __init__(self, notify: Optional[Callable[[], None]] = None) -> None:
        self._notify = notify

    def decode(self, payload: bytes) -> List[ToolCallRecord]:
        msg = _load_json(payload)
        _expect_type(msg, "tool_calls")
        try:
            event = ToolCallsEvent.model_validate(msg)
        except ValidationError as exc:
            raise DecodeError(f"invalid tool_calls: {exc}") from exc
        return event.tools

    def handle(self, payload: bytes) -> List[RenderToolCard]:
        try:
            records = self.decode(payload)
        except DecodeError as exc:
            log.error("Failed to parse event data: %s", exc)
            return []

        for record in records:
            log.info("Tool call: %s(%s)%s", record.name, record.args, " [error]" if record.is_error else "")
        if self._notify is not None:
            try:
                self._notify()
            except Exception:
                log.exception("Tool notification failed")
        return [RenderToolCard(record=record) for record in records]
