"""
Render instructions: side-effect-free descriptions of a UI update.

Producers (reconciler, relay, connection manager) build these; the view layer
consumes them through `apply(view)`, which calls exactly one sink method.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal, Union

from botical.schemas.events import CostBreakdown, ToolCallRecord

if TYPE_CHECKING:  # pragma: no cover
    from botical.services.view import ViewSink

Role = Literal["user", "agent"]


@dataclass(frozen=True)
class RenderCompletedMessage:
    role: Role
    text: str

    def apply(self, view: "ViewSink") -> None:
        view.render_completed_message(self.role, self.text)


@dataclass(frozen=True)
class RenderPendingMessage:
    """Create or update the interim bubble for `segment_id`."""

    segment_id: str
    role: Role
    text: str

    def apply(self, view: "ViewSink") -> None:
        view.render_pending_message(self.segment_id, self.role, self.text)


@dataclass(frozen=True)
class FinalizePendingMessage:
    segment_id: str
    text: str

    def apply(self, view: "ViewSink") -> None:
        view.finalize_pending_message(self.segment_id, self.text)


@dataclass(frozen=True)
class RenderToolCard:
    record: ToolCallRecord

    def apply(self, view: "ViewSink") -> None:
        view.render_tool_card(self.record)


@dataclass(frozen=True)
class UpdateCostDisplay:
    breakdown: CostBreakdown

    def apply(self, view: "ViewSink") -> None:
        view.update_cost_display(self.breakdown)


RenderInstruction = Union[
    RenderCompletedMessage,
    RenderPendingMessage,
    FinalizePendingMessage,
    RenderToolCard,
    UpdateCostDisplay,
]
