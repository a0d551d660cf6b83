import json

import pytest

from botical.core.errors import DecodeError
from botical.schemas.render import RenderToolCard
from botical.services.tool_relay import ToolEventRelay, decode_cost_update


def _payload(obj) -> bytes:
    return json.dumps(obj).encode("utf-8")


TOOLS = {
    "type": "tool_calls",
    "tools": [
        {"name": "get_weather", "args": '{"city": "Paris"}', "output": "sunny", "isError": False},
        {"name": "lookup", "args": "not json", "output": "", "isError": True},
    ],
}


def test_decode_returns_records_in_payload_order():
    records = ToolEventRelay().decode(_payload(TOOLS))
    assert [r.name for r in records] == ["get_weather", "lookup"]
    assert records[1].is_error is True
    assert records[0].display_args == json.dumps({"city": "Paris"}, indent=2)
    assert records[1].display_args == "not json"
    assert records[1].display_output == "(empty)"


def test_handle_emits_one_card_per_record_and_one_notification():
    cues = []
    relay = ToolEventRelay(notify=lambda: cues.append(1))
    cards = relay.handle(_payload(TOOLS))
    assert len(cards) == 2
    assert all(isinstance(c, RenderToolCard) for c in cards)
    assert [c.record.name for c in cards] == ["get_weather", "lookup"]
    assert cues == [1]


@pytest.mark.parametrize(
    "payload",
    [
        _payload({"type": "something_else", "tools": []}),
        _payload([1, 2, 3]),
        _payload({"type": "tool_calls"}),
        _payload({"type": "tool_calls", "tools": [{"args": "{}"}]}),
        b"{not json",
        b"\xff\xfe\x00",
    ],
)
def test_malformed_payloads_raise_decode_error(payload):
    with pytest.raises(DecodeError):
        ToolEventRelay().decode(payload)


def test_unknown_type_produces_no_cards_and_no_side_effects():
    cues = []
    relay = ToolEventRelay(notify=lambda: cues.append(1))
    assert relay.handle(_payload({"type": "cost_update", "tools": []})) == []
    assert cues == []


def test_empty_args_display_placeholder():
    records = ToolEventRelay().decode(
        _payload({"type": "tool_calls", "tools": [{"name": "ping", "args": "", "output": "pong", "isError": False}]})
    )
    assert records[0].display_args == "(none)"


def test_decode_cost_update():
    update = decode_cost_update(
        _payload(
            {
                "type": "cost_update",
                "service": "llm",
                "cost": 0.001,
                "session": {"stt": 0.01, "llm": 0.02, "tts": 0.03, "total": 0.06},
            }
        )
    )
    assert update.service == "llm"
    assert update.session.total == pytest.approx(0.06)

    with pytest.raises(DecodeError):
        decode_cost_update(_payload({"type": "cost_update", "service": "gpu", "cost": 1, "session": {}}))
    with pytest.raises(DecodeError):
        decode_cost_update(_payload({"type": "tool_calls"}))
