"""
View sink interface consumed by the connection manager.

Concrete renderers (a browser bridge, a TUI, ...) implement `ViewSink`.
`LoggingView` is the headless implementation used by the console client; it
keeps the transcript in memory and writes every update to the log.
"""

from __future__ import annotations

from typing import Dict, List, Protocol, Tuple

from botical.core.logger import get_logger
from botical.schemas.events import CostBreakdown, ToolCallRecord
from botical.services.cost_tracker import format_cost

log = get_logger(__name__)


class ViewSink(Protocol):
    def render_completed_message(self, role: str, text: str) -> None: ...

    def render_pending_message(self, segment_id: str, role: str, text: str) -> None: ...

    def finalize_pending_message(self, segment_id: str, text: str) -> None: ...

    def render_tool_card(self, record: ToolCallRecord) -> None: ...

    def update_cost_display(self, breakdown: CostBreakdown) -> None: ...

    def set_connection_indicator(self, state: str) -> None: ...

    def set_voice_indicator_state(self, label: str) -> None: ...

    def set_inputs_enabled(self, enabled: bool) -> None: ...

    def clear_text_input(self) -> None: ...

    def set_voice_active(self, enabled: bool) -> None: ...

    def play_tool_sound(self) -> None: ...


class LoggingView:
    """In-memory transcript plus log lines for every UI update."""

    def __init__(self) -> None:
        self.messages: List[Tuple[str, str]] = []
        self.pending: Dict[str, Tuple[str, str]] = {}
        self.indicator = "idle"
        self.voice_label = "Waiting"

    def render_completed_message(self, role: str, text: str) -> None:
        self.messages.append((role, text))
        log.info("[%s] %s", role, text)

    def render_pending_message(self, segment_id: str, role: str, text: str) -> None:
        self.pending[segment_id] = (role, text)
        log.debug("[%s:interim] %s", role, text)

    def finalize_pending_message(self, segment_id: str, text: str) -> None:
        role, _ = self.pending.pop(segment_id, ("agent", ""))
        self.messages.append((role, text))
        log.info("[%s] %s", role, text)

    def render_tool_card(self, record: ToolCallRecord) -> None:
        status = "error" if record.is_error else "ok"
        log.info(
            "[tool] %s (%s)\n  args: %s\n  result: %s",
            record.name, status, record.display_args, record.display_output,
        )

    def update_cost_display(self, breakdown: CostBreakdown) -> None:
        log.info(
            "[cost] total=%s stt=%s llm=%s tts=%s",
            format_cost(breakdown.total),
            format_cost(breakdown.stt),
            format_cost(breakdown.llm),
            format_cost(breakdown.tts),
        )

    def set_connection_indicator(self, state: str) -> None:
        self.indicator = state
        log.info("Connection indicator: %s", state)

    def set_voice_indicator_state(self, label: str) -> None:
        if label != self.voice_label:
            log.debug("Voice state: %s", label)
        self.voice_label = label

    def set_inputs_enabled(self, enabled: bool) -> None:
        log.debug("Inputs %s", "enabled" if enabled else "disabled")

    def clear_text_input(self) -> None:
        pass

    def set_voice_active(self, enabled: bool) -> None:
        log.info("Voice %s", "enabled" if enabled else "disabled")

    def play_tool_sound(self) -> None:
        log.debug("Tool call sound")
