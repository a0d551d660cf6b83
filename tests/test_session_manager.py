import asyncio
import json
from types import SimpleNamespace

import pytest
from livekit import rtc

from botical.core.config import Settings
from botical.core.errors import CredentialFetchError
from botical.schemas.events import JoinCredential
from botical.services.session_manager import ConnectionManager, ConnectionState


class RecordingView:
    def __init__(self):
        self.calls = []

    def __getattr__(self, name):
        def _record(*args):
            self.calls.append((name,) + args)

        return _record

    def named(self, name):
        return [c[1:] for c in self.calls if c[0] == name]


class FakeSink:
    def __init__(self, track):
        self.track = track
        self.muted = True
        self.closed = False

    def close(self):
        self.closed = True


class FakeTransport:
    def __init__(self, fail_connect=False):
        self.handlers = {}
        self.fail_connect = fail_connect
        self.connected = False
        self.mic = []
        self.sent = []
        self.send_error = None
        self.name = "botical-room"
        self.remote_identities = ["agent-1"]

    def on(self, event, callback):
        self.handlers.setdefault(event, []).append(callback)

    def off(self, event, callback):
        self.handlers[event].remove(callback)

    def emit(self, event, *args):
        for cb in list(self.handlers.get(event, [])):
            cb(*args)

    async def connect(self, url, token):
        await asyncio.sleep(0)
        if self.fail_connect:
            raise RuntimeError("handshake failed")
        self.connected = True

    async def disconnect(self):
        self.connected = False

    async def set_microphone_enabled(self, enabled):
        self.mic.append(enabled)

    async def send_text(self, text, topic):
        if self.send_error is not None:
            raise self.send_error
        self.sent.append((topic, text))

    def attach(self, track):
        return FakeSink(track)


class FakeCredentials:
    def __init__(self, failures=0):
        self.failures = failures
        self.calls = 0
        self.closed = False

    async def fetch(self, room=None):
        self.calls += 1
        await asyncio.sleep(0)
        if self.calls <= self.failures:
            raise CredentialFetchError(500, "boom")
        return JoinCredential(token="tok", url="ws://lk", identity="user-abc123", room=room or "botical-room")

    async def aclose(self):
        self.closed = True


def _settings():
    return Settings(RECONNECT_DELAY_MS=10, CONNECT_RETRY_DELAY_MS=20)


def _make(failures=0, fail_connect=False):
    view = RecordingView()
    creds = FakeCredentials(failures=failures)
    transports = []

    def factory():
        t = FakeTransport(fail_connect=fail_connect)
        transports.append(t)
        return t

    mgr = ConnectionManager(view, credentials=creds, transport_factory=factory, settings=_settings())
    return mgr, view, creds, transports


AGENT = SimpleNamespace(identity="agent-1", attributes={})
LOCAL = SimpleNamespace(identity="user-abc123", attributes={})


def _audio_track():
    return SimpleNamespace(kind=rtc.TrackKind.KIND_AUDIO, sid="TR_1")


@pytest.mark.asyncio
async def test_connect_is_idempotent():
    mgr, view, creds, transports = _make()
    await mgr.connect()
    await mgr.connect()
    assert len(transports) == 1
    assert creds.calls == 1
    assert mgr.state is ConnectionState.CONNECTED
    assert transports[0].connected is True
    assert view.named("set_connection_indicator") == [("connecting",), ("connected",)]
    assert ("set_inputs_enabled", True) in view.calls


@pytest.mark.asyncio
async def test_concurrent_connect_calls_build_one_session():
    mgr, _, creds, transports = _make()
    await asyncio.gather(mgr.connect(), mgr.connect(), mgr.connect())
    assert creds.calls == 1
    assert len(transports) == 1


@pytest.mark.asyncio
async def test_credential_failure_schedules_retry():
    mgr, view, creds, transports = _make(failures=1)
    await mgr.connect()
    assert mgr.state is ConnectionState.RECONNECTING
    assert mgr.session is None
    assert mgr.retry_pending
    assert transports == []

    await asyncio.sleep(0.1)
    assert creds.calls == 2
    assert mgr.state is ConnectionState.CONNECTED
    assert len(transports) == 1


@pytest.mark.asyncio
async def test_transport_connect_failure_tears_down_and_retries():
    mgr, view, creds, transports = _make(fail_connect=True)
    await mgr.connect()
    assert mgr.session is None
    assert mgr.state is ConnectionState.RECONNECTING
    assert transports[0].handlers["disconnected"] == []
    await mgr.disconnect()
    assert not mgr.retry_pending
    assert mgr.state is ConnectionState.IDLE


@pytest.mark.asyncio
async def test_burst_of_disconnects_fires_exactly_one_retry():
    mgr, view, creds, transports = _make()
    await mgr.connect()
    first = transports[0]
    captured = list(first.handlers["disconnected"])

    for _ in range(5):
        for cb in captured:
            cb("SIGNAL_CLOSE")

    assert mgr.session is None
    assert mgr.state is ConnectionState.RECONNECTING
    assert ("set_inputs_enabled", False) in view.calls

    await asyncio.sleep(0.1)
    assert creds.calls == 2
    assert len(transports) == 2
    assert mgr.state is ConnectionState.CONNECTED


@pytest.mark.asyncio
async def test_first_voice_enable_sends_single_greeting():
    mgr, view, _, transports = _make()
    await mgr.connect()
    t = transports[0]

    await mgr.toggle_voice()
    await mgr.toggle_voice()
    await mgr.toggle_voice()

    assert t.mic == [True, False, True]
    assert t.sent == [("text", "hi")]
    assert mgr.session.greeting_sent is True
    assert view.named("set_voice_active") == [(True,), (False,), (True,)]


@pytest.mark.asyncio
async def test_greeting_send_failure_is_swallowed():
    mgr, _, _, transports = _make()
    await mgr.connect()
    transports[0].send_error = RuntimeError("closed")

    await mgr.toggle_voice()
    assert mgr.session.voice_enabled is True
    assert mgr.session.greeting_sent is True


@pytest.mark.asyncio
async def test_new_session_gets_a_new_greeting():
    mgr, _, _, transports = _make()
    await mgr.connect()
    await mgr.toggle_voice()
    transports[0].emit("disconnected", None)
    await asyncio.sleep(0.1)

    await mgr.toggle_voice()
    assert transports[1].sent == [("text", "hi")]


@pytest.mark.asyncio
async def test_send_text_is_optimistic():
    mgr, view, _, transports = _make()
    await mgr.send_text("ignored, no session")
    assert view.named("render_completed_message") == []

    await mgr.connect()
    await mgr.send_text("   ")
    assert view.named("clear_text_input") == []

    await mgr.send_text("  hello agent  ")
    assert transports[0].sent == [("text", "hello agent")]

    transports[0].send_error = RuntimeError("gone")
    await mgr.send_text("lost message")
    assert view.named("render_completed_message") == [("user", "hello agent"), ("user", "lost message")]
    assert len(view.named("clear_text_input")) == 2


@pytest.mark.asyncio
async def test_transcription_segments_are_reconciled():
    mgr, view, _, transports = _make()
    await mgr.connect()
    t = transports[0]

    seg = lambda text, final: SimpleNamespace(id="s1", text=text, final=final)  # noqa: E731
    t.emit("transcription_received", [seg("hel", False)], AGENT, None)
    t.emit("transcription_received", [seg("hello", False), SimpleNamespace(id="s2", text="  ", final=True)], AGENT, None)
    t.emit("transcription_received", [seg("Hello.", True)], AGENT, None)
    t.emit("transcription_received", [SimpleNamespace(id="u1", text="hi there", final=True)], LOCAL, None)

    assert view.named("render_pending_message") == [("s1", "agent", "hel"), ("s1", "agent", "hello")]
    assert view.named("finalize_pending_message") == [("s1", "Hello.")]
    assert ("render_completed_message", "user", "hi there") in view.calls
    assert mgr.session.transcript.pending_ids == []


@pytest.mark.asyncio
async def test_tool_and_cost_events_are_routed_by_topic():
    mgr, view, _, transports = _make()
    await mgr.connect()
    t = transports[0]

    tools = {"type": "tool_calls", "tools": [
        {"name": "a", "args": "{}", "output": "1", "isError": False},
        {"name": "b", "args": "{}", "output": "2", "isError": False},
    ]}
    t.emit("data_received", SimpleNamespace(data=json.dumps(tools).encode(), topic="tool-events", participant=AGENT))
    assert [r[0].name for r in view.named("render_tool_card")] == ["a", "b"]
    assert len(view.named("play_tool_sound")) == 1

    bad = {"type": "mystery", "tools": []}
    t.emit("data_received", SimpleNamespace(data=json.dumps(bad).encode(), topic="tool-events", participant=None))
    assert len(view.named("render_tool_card")) == 2
    assert len(view.named("play_tool_sound")) == 1

    cost = {"type": "cost_update", "service": "tts", "cost": 0.005,
            "session": {"stt": 0.0, "llm": 0.0, "tts": 0.005, "total": 0.005}}
    t.emit("data_received", SimpleNamespace(data=json.dumps(cost).encode(), topic="cost-events", participant=AGENT))
    assert view.named("update_cost_display")[-1][0].total == pytest.approx(0.005)
    assert mgr.session.costs.tts == pytest.approx(0.005)


@pytest.mark.asyncio
async def test_audio_sinks_mirror_voice_flag_and_are_cleaned_up():
    mgr, _, _, transports = _make()
    await mgr.connect()
    t = transports[0]
    track = _audio_track()

    t.emit("track_subscribed", track, None, AGENT)
    t.emit("track_subscribed", SimpleNamespace(kind=rtc.TrackKind.KIND_VIDEO), None, AGENT)
    sinks = list(mgr.session.audio_sinks)
    assert len(sinks) == 1
    assert sinks[0].muted is True

    await mgr.toggle_voice()
    assert sinks[0].muted is False

    t.emit("track_unsubscribed", track, None, AGENT)
    assert sinks[0].closed is True
    assert mgr.session.audio_sinks == []

    t.emit("track_subscribed", track, None, AGENT)
    late = mgr.session.audio_sinks[0]
    assert late.muted is False

    await mgr.toggle_voice()
    assert late.muted is True
    await mgr.toggle_voice()
    assert late.muted is False

    t.emit("disconnected", None)
    assert late.closed is True


@pytest.mark.asyncio
async def test_agent_state_and_speakers_drive_voice_label():
    mgr, view, _, transports = _make()
    await mgr.connect()
    t = transports[0]

    agent = SimpleNamespace(identity="agent-1", attributes={"lk.agent.state": "listening"})
    t.emit("participant_attributes_changed", {"lk.agent.state": "listening"}, agent)
    t.emit("active_speakers_changed", [LOCAL])
    agent.attributes["lk.agent.state"] = "thinking"
    t.emit("participant_attributes_changed", {"lk.agent.state": "thinking"}, agent)

    assert view.named("set_voice_indicator_state")[-3:] == [("Waiting",), ("Listening",), ("Thinking",)]


@pytest.mark.asyncio
async def test_transport_reconnecting_keeps_session():
    mgr, view, _, transports = _make()
    await mgr.connect()
    session = mgr.session
    transports[0].emit("reconnecting")
    transports[0].emit("reconnected")
    assert mgr.session is session
    assert view.named("set_connection_indicator")[-2:] == [("reconnecting",), ("connected",)]
    assert not mgr.retry_pending


@pytest.mark.asyncio
async def test_explicit_disconnect_returns_to_idle_without_retry():
    mgr, _, creds, transports = _make()
    await mgr.connect()
    await mgr.aclose()
    assert mgr.state is ConnectionState.IDLE
    assert transports[0].connected is False
    assert creds.closed is True
    await asyncio.sleep(0.05)
    assert len(transports) == 1


@pytest.mark.asyncio
async def test_late_cost_snapshot_never_lowers_the_display():
    mgr, view, _, transports = _make()
    await mgr.connect()
    t = transports[0]

    def cost_packet(total):
        body = {"type": "cost_update", "service": "llm", "cost": 0.001,
                "session": {"stt": 0.0, "llm": total, "tts": 0.0, "total": total}}
        return SimpleNamespace(data=json.dumps(body).encode(), topic="cost-events", participant=AGENT)

    t.emit("data_received", cost_packet(0.02))
    t.emit("data_received", cost_packet(0.01))
    t.emit("data_received", cost_packet(0.03))

    totals = [c[0].total for c in view.named("update_cost_display")]
    assert totals == [0.0, pytest.approx(0.02), pytest.approx(0.03)]
    assert mgr.session.costs.total == pytest.approx(0.03)


@pytest.mark.asyncio
async def test_retry_logs_the_disconnect_cause(caplog):
    mgr, _, _, transports = _make()
    await mgr.connect()

    with caplog.at_level("INFO", logger="botical.services.session_manager"):
        transports[0].emit("disconnected", "SERVER_SHUTDOWN")

    messages = [r.getMessage() for r in caplog.records]
    assert any("UnsolicitedDisconnect" in m and "SERVER_SHUTDOWN" in m for m in messages)
    await mgr.disconnect()
