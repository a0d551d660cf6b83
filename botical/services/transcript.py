from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List

from botical.schemas.render import (
    FinalizePendingMessage,
    RenderCompletedMessage,
    RenderInstruction,
    RenderPendingMessage,
    Role,
)


@dataclass
class TranscriptSegment:
    segment_id: str
    text: str
    role: Role
    is_final: bool = False


class TranscriptReconciler:
    """Tracks in-flight utterances and turns segment updates into render instructions.

    An id gets a pending entry on its first interim update and loses it on its
    final update. A final update for an id that never had an interim renders
    as a completed message directly. Entries never expire on their own; the
    owner calls clear() when the session is torn down.
    """

    def __init__(self) -> None:
        self._pending: Dict[str, TranscriptSegment] = {}

    @property
    def pending_ids(self) -> List[str]:
        return list(self._pending)

    def observe(self, segment_id: str, text: str, is_final: bool, is_user: bool) -> RenderInstruction:
        role: Role = "user" if is_user else "agent"
        segment = self._pending.get(segment_id)

        if segment is not None:
            segment.text = text
            if is_final:
                segment.is_final = True
                del self._pending[segment_id]
                return FinalizePendingMessage(segment_id=segment_id, text=text)
            return RenderPendingMessage(segment_id=segment_id, role=segment.role, text=text)

        if is_final:
            return RenderCompletedMessage(role=role, text=text)

        self._pending[segment_id] = TranscriptSegment(segment_id=segment_id, text=text, role=role)
        return RenderPendingMessage(segment_id=segment_id, role=role, text=text)

    def clear(self) -> None:
        self._pending.clear()
