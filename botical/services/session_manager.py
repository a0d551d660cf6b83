"""
Session orchestration: connection lifecycle and transport event fan-out.

Responsibilities:
- Fetch a join credential and connect one transport session at a time.
- Subscribe to every transport event through an explicit subscription list
  that is torn down atomically with the session.
- Dispatch transcription, data-channel and presence events to the
  reconciler, the tool relay and the voice-state tracker, and apply the
  resulting render instructions to the view.
- Rebuild the session after failures: 3 s after a failed connect attempt,
  2 s after a live session drops. At most one retry is ever pending.

State machine: idle -> connecting -> connected -> reconnecting -> connecting.
LiveKit's own short-interruption recovery (reconnecting/reconnected events)
only changes the indicator and keeps the session.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, List, Optional, Tuple

from botical.core.config import Settings, get_settings
from botical.core.errors import DecodeError, SendError, TransportConnectError, UnsolicitedDisconnect
from botical.core.logger import get_logger
from botical.schemas.events import CostBreakdown
from botical.schemas.render import RenderCompletedMessage, UpdateCostDisplay
from botical.services.token_client import CredentialClient
from botical.services.tool_relay import ToolEventRelay, decode_cost_update
from botical.services.transcript import TranscriptReconciler
from botical.services.transport import LiveKitTransport, is_audio_track
from botical.services.view import ViewSink
from botical.services.voice_state import AGENT_STATE_ATTRIBUTE, VoiceStateTracker
from botical.workers.reconnect import ReconnectTimer

log = get_logger(__name__)


TransportFactory = Callable[[], Any]


class ConnectionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


@dataclass
class Session:
    transport: Any
    identity: str
    room: str
    voice_state: VoiceStateTracker
    transcript: TranscriptReconciler = field(default_factory=TranscriptReconciler)
    subscriptions: List[Tuple[str, Callable[..., Any]]] = field(default_factory=list)
    audio_sinks: List[Any] = field(default_factory=list)
    voice_enabled: bool = False
    greeting_sent: bool = False
    costs: CostBreakdown = field(default_factory=CostBreakdown)


class ConnectionManager:
    """Owns the transport handle and the single live Session."""

    def __init__(
        self,
        view: ViewSink,
        credentials: Optional[CredentialClient] = None,
        transport_factory: Optional[TransportFactory] = None,
        settings: Optional[Settings] = None,
        room: Optional[str] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self.view = view
        self.room = room
        self._credentials = credentials or CredentialClient()
        self._transport_factory = transport_factory or LiveKitTransport
        self._relay = ToolEventRelay(notify=view.play_tool_sound)
        self._timer = ReconnectTimer()
        self._session: Optional[Session] = None
        self._state = ConnectionState.IDLE
        self._generation = 0

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def retry_pending(self) -> bool:
        return self._timer.pending

    # -------------------------
    # Lifecycle
    # -------------------------
    async def connect(self) -> None:
        if self._session is not None or self._state is ConnectionState.CONNECTING:
            return

        self._generation += 1
        generation = self._generation
        self._set_state(ConnectionState.CONNECTING)

        session: Optional[Session] = None
        try:
            cred = await self._credentials.fetch(self.room)
            if generation != self._generation:
                # disconnect() was called while the credential was in flight
                return

            transport = self._transport_factory()
            session = Session(
                transport=transport,
                identity=cred.identity,
                room=cred.room,
                voice_state=VoiceStateTracker(on_change=self.view.set_voice_indicator_state),
            )
            self._subscribe(session)
            self._session = session

            log.info("Connecting to %s...", cred.url)
            try:
                await transport.connect(cred.url, cred.token)
            except Exception as exc:
                raise TransportConnectError(str(exc)) from exc
        except Exception as exc:
            log.error("Connection error: %s", exc)
            if session is not None and session is self._session:
                self._teardown(session)
                await self._close_transport(session)
            if generation == self._generation and self._session is None:
                self._schedule_retry(self._settings.CONNECT_RETRY_DELAY_MS, exc)
            return

        if session is not self._session:
            # Torn down while the transport handshake was in flight
            return

        log.info("Connected to room: %s", session.transport.name)
        remotes = list(session.transport.remote_identities)
        if remotes:
            log.info("%d participant(s) in room: %s", len(remotes), ", ".join(remotes))

        self._set_state(ConnectionState.CONNECTED)
        UpdateCostDisplay(breakdown=CostBreakdown()).apply(self.view)
        self.view.set_inputs_enabled(True)

    async def disconnect(self) -> None:
        """Leave the room without scheduling a retry."""
        self._generation += 1
        self._timer.cancel()
        session = self._session
        if session is not None:
            self._teardown(session)
            await self._close_transport(session)
        self._set_state(ConnectionState.IDLE)

    async def aclose(self) -> None:
        await self.disconnect()
        await self._credentials.aclose()

    def _schedule_retry(self, delay_ms: int, cause: Exception) -> None:
        log.info("Retrying in %d ms after %s: %s", delay_ms, type(cause).__name__, cause)
        self._set_state(ConnectionState.RECONNECTING)
        self._timer.arm(delay_ms, self.connect)

    def _set_state(self, state: ConnectionState) -> None:
        self._state = state
        self.view.set_connection_indicator(state.value)

    def _teardown(self, session: Session) -> None:
        """Synchronously release everything the session holds."""
        for event, handler in session.subscriptions:
            try:
                session.transport.off(event, handler)
            except Exception:
                log.exception("Failed to unsubscribe %s handler", event)
        session.subscriptions.clear()

        self.view.set_inputs_enabled(False)
        self.view.set_voice_active(False)
        for sink in session.audio_sinks:
            sink.close()
        session.audio_sinks.clear()
        session.voice_enabled = False
        session.voice_state.set_voice_enabled(False)
        session.voice_state.reset()
        session.transcript.clear()

        if self._session is session:
            self._session = None

    async def _close_transport(self, session: Session) -> None:
        try:
            await session.transport.disconnect()
        except Exception:
            log.exception("Error disconnecting transport for room %s", session.room)

    # -------------------------
    # User actions
    # -------------------------
    async def toggle_voice(self) -> None:
        session = self._session
        if session is None:
            return

        session.voice_enabled = not session.voice_enabled
        enabled = session.voice_enabled
        self.view.set_voice_active(enabled)

        try:
            await session.transport.set_microphone_enabled(enabled)
        except Exception:
            log.exception("Failed to %s microphone", "enable" if enabled else "disable")
        if session is not self._session:
            return

        for sink in session.audio_sinks:
            sink.muted = not enabled
        session.voice_state.set_voice_enabled(enabled)
        log.info("Voice %s", "enabled" if enabled else "disabled")

        if enabled and not session.greeting_sent:
            # Best effort: the flag stays set even if the greeting is lost
            session.greeting_sent = True
            try:
                await self._send(session, self._settings.GREETING_TEXT)
            except SendError as exc:
                log.warning("Greeting not delivered: %s", exc)

    async def send_text(self, text: str) -> None:
        text = (text or "").strip()
        session = self._session
        if not text or session is None:
            return

        self.view.clear_text_input()
        RenderCompletedMessage(role="user", text=text).apply(self.view)
        try:
            await self._send(session, text)
            log.info('Sent text: "%s"', text)
        except SendError as exc:
            log.error("Send error: %s", exc)

    async def _send(self, session: Session, text: str) -> None:
        try:
            await session.transport.send_text(text, topic=self._settings.TEXT_TOPIC)
        except Exception as exc:
            raise SendError(str(exc)) from exc

    # -------------------------
    # Transport events
    # -------------------------
    def _subscribe(self, session: Session) -> None:
        handlers = {
            "connection_state_changed": self._on_connection_state_changed,
            "track_subscribed": self._on_track_subscribed,
            "track_unsubscribed": self._on_track_unsubscribed,
            "local_track_published": self._on_local_track_published,
            "participant_connected": self._on_participant_connected,
            "participant_disconnected": self._on_participant_disconnected,
            "participant_attributes_changed": self._on_participant_attributes_changed,
            "active_speakers_changed": self._on_active_speakers_changed,
            "data_received": self._on_data_received,
            "transcription_received": self._on_transcription_received,
            "reconnecting": self._on_reconnecting,
            "reconnected": self._on_reconnected,
            "disconnected": self._on_disconnected,
        }
        for event, method in handlers.items():
            handler = self._bind(session, method)
            session.transport.on(event, handler)
            session.subscriptions.append((event, handler))

    def _bind(self, session: Session, method: Callable[..., None]) -> Callable[..., None]:
        def _handler(*args: Any) -> None:
            if session is not self._session:
                log.debug("Dropping %s from a stale session", method.__name__)
                return
            try:
                method(session, *args)
            except Exception:
                log.exception("%s handler failed", method.__name__)

        return _handler

    def _on_connection_state_changed(self, session: Session, state: Any) -> None:
        log.info("Connection state: %s", state)

    def _on_track_subscribed(self, session: Session, track: Any, publication: Any, participant: Any) -> None:
        log.info("Track subscribed: %s from %s", track.kind, participant.identity)
        if not is_audio_track(track):
            return
        sink = session.transport.attach(track)
        sink.muted = not session.voice_enabled
        session.audio_sinks.append(sink)
        log.info("Audio attached from %s", participant.identity)

    def _on_track_unsubscribed(self, session: Session, track: Any, publication: Any, participant: Any) -> None:
        detached = [sink for sink in session.audio_sinks if sink.track is track]
        for sink in detached:
            sink.close()
            session.audio_sinks.remove(sink)

    def _on_local_track_published(self, session: Session, publication: Any, track: Any) -> None:
        log.info("Local track published: %s", getattr(publication, "kind", "?"))

    def _on_participant_connected(self, session: Session, participant: Any) -> None:
        log.info("Participant joined: %s", participant.identity)

    def _on_participant_disconnected(self, session: Session, participant: Any) -> None:
        log.info("Participant left: %s", participant.identity)

    def _on_participant_attributes_changed(self, session: Session, changed: Any, participant: Any) -> None:
        if participant.identity == session.identity:
            return
        agent_state = (participant.attributes or {}).get(AGENT_STATE_ATTRIBUTE)
        if agent_state:
            log.debug("Agent state: %s", agent_state)
            session.voice_state.update_agent_state(agent_state)

    def _on_active_speakers_changed(self, session: Session, speakers: List[Any]) -> None:
        session.voice_state.set_user_speaking(any(s.identity == session.identity for s in speakers))
        if speakers:
            log.debug("Active speakers: %s", ", ".join(s.identity for s in speakers))

    def _on_data_received(self, session: Session, packet: Any) -> None:
        topic = packet.topic
        sender = packet.participant.identity if packet.participant is not None else "server"
        log.debug("Data received: topic=%s, from=%s, %d bytes", topic, sender, len(packet.data))

        if topic == self._settings.TOOL_EVENTS_TOPIC:
            for instruction in self._relay.handle(packet.data):
                instruction.apply(self.view)
        elif topic == self._settings.COST_EVENTS_TOPIC:
            try:
                update = decode_cost_update(packet.data)
            except DecodeError as exc:
                log.error("Failed to parse cost event: %s", exc)
                return
            if update.session.total < session.costs.total:
                # Totals never decrease within a session
                log.debug("Ignoring stale cost snapshot (%s < %s)", update.session.total, session.costs.total)
                return
            session.costs = update.session
            UpdateCostDisplay(breakdown=update.session).apply(self.view)

    def _on_transcription_received(self, session: Session, segments: List[Any], participant: Any, publication: Any = None) -> None:
        is_user = participant is not None and participant.identity == session.identity
        for seg in segments:
            if not (seg.text or "").strip():
                continue
            session.transcript.observe(seg.id, seg.text, seg.final, is_user).apply(self.view)
            log.debug("[%s:%s] %s", "user" if is_user else "agent", "final" if seg.final else "interim", seg.text)

    def _on_reconnecting(self, session: Session) -> None:
        log.info("Reconnecting...")
        self.view.set_connection_indicator(ConnectionState.RECONNECTING.value)

    def _on_reconnected(self, session: Session) -> None:
        log.info("Reconnected")
        self.view.set_connection_indicator(ConnectionState.CONNECTED.value)

    def _on_disconnected(self, session: Session, reason: Any = None) -> None:
        cause = UnsolicitedDisconnect(str(reason) if reason is not None else None)
        self._teardown(session)
        self._schedule_retry(self._settings.RECONNECT_DELAY_MS, cause)
