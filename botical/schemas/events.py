from __future__ import annotations

import json
from typing import List, Literal

from pydantic import BaseModel, ConfigDict, Field

ServiceName = Literal["stt", "llm", "tts"]


class JoinCredential(BaseModel):
    """Response body of GET /api/token."""

    token: str
    url: str
    identity: str
    room: str


class ToolCallRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    args: str = ""
    output: str = ""
    is_error: bool = Field(default=False, alias="isError")

    @property
    def display_args(self) -> str:
        # Arguments are opaque; pretty-print when they happen to be JSON
        try:
            parsed = json.loads(self.args)
        except (TypeError, ValueError):
            return self.args or "(none)"
        return json.dumps(parsed, indent=2)

    @property
    def display_output(self) -> str:
        return self.output or "(empty)"


class ToolCallsEvent(BaseModel):
    type: Literal["tool_calls"]
    tools: List[ToolCallRecord]


class CostBreakdown(BaseModel):
    stt: float = Field(default=0.0, ge=0)
    llm: float = Field(default=0.0, ge=0)
    tts: float = Field(default=0.0, ge=0)
    total: float = Field(default=0.0, ge=0)


class CostUpdate(BaseModel):
    type: Literal["cost_update"] = "cost_update"
    service: ServiceName
    cost: float
    session: CostBreakdown
