from __future__ import annotations

from typing import Callable, Optional

AGENT_STATE_ATTRIBUTE = "lk.agent.state"


class VoiceStateTracker:
    """Folds agent state, user speech and voice mode into one display label."""

    def __init__(self, on_change: Optional[Callable[[str], None]] = None) -> None:
        self._on_change = on_change
        self.agent_state = "initializing"
        self.user_speaking = False
        self.voice_enabled = False

    @property
    def label(self) -> str:
        if self.agent_state == "listening":
            return "Listening" if self.user_speaking else "Waiting"
        if self.agent_state == "thinking":
            return "Thinking"
        if self.agent_state == "speaking":
            return "Speaking"
        return "Waiting"

    def update_agent_state(self, state: str) -> None:
        self.agent_state = state
        self._refresh()

    def set_user_speaking(self, speaking: bool) -> None:
        self.user_speaking = speaking
        self._refresh()

    def set_voice_enabled(self, enabled: bool) -> None:
        self.voice_enabled = enabled
        self._refresh()

    def reset(self) -> None:
        self.user_speaking = False
        self.agent_state = "initializing"
        self._refresh()

    def _refresh(self) -> None:
        if self._on_change is not None:
            self._on_change(self.label)
