"""
Running service cost for one session.

CostAggregator turns raw usage metrics (audio duration, token counts,
character counts) into per-service dollar totals. CostReporter sits on the
agent side: it reads the usage-metrics objects emitted by the agent session,
feeds the aggregator and produces the `cost_update` payload published on the
cost-events topic.

Rates come from settings so they can follow provider price changes without a
code change.
"""

from __future__ import annotations

from typing import Any, Optional

from botical.core.config import get_settings
from botical.core.logger import get_logger
from botical.schemas.events import CostBreakdown, CostUpdate

log = get_logger(__name__)


class CostAggregator:
    """Monotonic per-service cost accumulator. One instance per session."""

    def __init__(
        self,
        stt_rate_per_minute: Optional[float] = None,
        llm_input_rate: Optional[float] = None,
        llm_cached_input_rate: Optional[float] = None,
        llm_output_rate: Optional[float] = None,
        tts_rate_per_character: Optional[float] = None,
    ) -> None:
        settings = get_settings()
        self.stt_rate_per_minute = _pick(stt_rate_per_minute, settings.STT_RATE_PER_MINUTE)
        self.llm_input_rate = _pick(llm_input_rate, settings.LLM_INPUT_RATE)
        self.llm_cached_input_rate = _pick(llm_cached_input_rate, settings.LLM_CACHED_INPUT_RATE)
        self.llm_output_rate = _pick(llm_output_rate, settings.LLM_OUTPUT_RATE)
        self.tts_rate_per_character = _pick(tts_rate_per_character, settings.TTS_RATE_PER_CHARACTER)
        self._stt = 0.0
        self._llm = 0.0
        self._tts = 0.0

    def add_speech_to_text(self, duration_ms: float) -> float:
        cost = max(0.0, float(duration_ms)) / 60_000 * self.stt_rate_per_minute
        self._stt += cost
        return cost

    def add_language_model(
        self, prompt_tokens: int, completion_tokens: int, cached_tokens: int = 0
    ) -> float:
        cached = max(0, cached_tokens)
        # Providers report cached tokens as a subset of the prompt
        uncached = max(0, prompt_tokens - cached)
        cost = (
            float(uncached) * self.llm_input_rate
            + float(cached) * self.llm_cached_input_rate
            + float(max(0, completion_tokens)) * self.llm_output_rate
        )
        self._llm += cost
        return cost

    def add_text_to_speech(self, character_count: int) -> float:
        cost = float(max(0, character_count)) * self.tts_rate_per_character
        self._tts += cost
        return cost

    def snapshot(self) -> CostBreakdown:
        return CostBreakdown(
            stt=self._stt,
            llm=self._llm,
            tts=self._tts,
            total=self._stt + self._llm + self._tts,
        )

    def reset(self) -> None:
        self._stt = 0.0
        self._llm = 0.0
        self._tts = 0.0


def _pick(value: Optional[float], default: float) -> float:
    return default if value is None else float(value)


def format_cost(dollars: float) -> str:
    """Format a dollar amount with precision scaled to its magnitude."""
    if dollars < 0.01:
        return f"${dollars:.4f}"
    if dollars < 1:
        return f"${dollars:.3f}"
    return f"${dollars:.2f}"


class CostReporter:
    """Maps agent usage-metrics events to CostUpdate payloads."""

    def __init__(self, aggregator: Optional[CostAggregator] = None) -> None:
        self.aggregator = aggregator or CostAggregator()

    def on_metrics(self, metrics: Any) -> Optional[CostUpdate]:
        kind = getattr(metrics, "type", None)
        if kind == "stt_metrics":
            service = "stt"
            cost = self.aggregator.add_speech_to_text(getattr(metrics, "audio_duration_ms", 0) or 0)
        elif kind == "llm_metrics":
            service = "llm"
            cost = self.aggregator.add_language_model(
                getattr(metrics, "prompt_tokens", 0) or 0,
                getattr(metrics, "completion_tokens", 0) or 0,
                getattr(metrics, "prompt_cached_tokens", 0) or 0,
            )
        elif kind == "tts_metrics":
            service = "tts"
            cost = self.aggregator.add_text_to_speech(getattr(metrics, "characters_count", 0) or 0)
        else:
            return None

        update = CostUpdate(service=service, cost=cost, session=self.aggregator.snapshot())
        log.debug(
            "[cost] %s +%s (session %s)",
            service, format_cost(cost), format_cost(update.session.total),
        )
        return update

    @staticmethod
    def encode(update: CostUpdate) -> bytes:
        return update.model_dump_json().encode("utf-8")
