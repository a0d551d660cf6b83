"""
Thin adapter over the LiveKit rtc engine.

The connection manager only talks to the transport through this surface:
event subscription (`on`/`off`, LiveKit event names and callback signatures),
connect/disconnect, microphone toggle and text send. Audio capture and
playback devices stay outside; the microphone AudioSource is exposed so a
capture loop can push frames into it, and RemoteAudioSink hands decoded frames
to an optional playback callback.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, List, Optional

from livekit import rtc

from botical.core.logger import get_logger

log = get_logger(__name__)

SAMPLE_RATE = 48000
NUM_CHANNELS = 1

FrameHandler = Callable[["rtc.AudioFrame"], None]


def is_audio_track(track: Any) -> bool:
    return getattr(track, "kind", None) == rtc.TrackKind.KIND_AUDIO


def _log_close_failure(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        log.error("Failed to close audio stream: %s", exc)


class RemoteAudioSink:
    """Drains one remote audio track; frames are dropped while muted."""

    def __init__(self, track: "rtc.Track", on_frame: Optional[FrameHandler] = None) -> None:
        self.track = track
        self.muted = True
        self._on_frame = on_frame
        self._stream = rtc.AudioStream(track, sample_rate=SAMPLE_RATE, num_channels=NUM_CHANNELS)
        self._task: Optional[asyncio.Task] = asyncio.create_task(self._drain(), name="botical-audio-sink")
        self._close_task: Optional[asyncio.Task] = None

    async def _drain(self) -> None:
        async for event in self._stream:
            if not self.muted and self._on_frame is not None:
                self._on_frame(event.frame)

    def close(self) -> None:
        """Stop draining; the stream itself is closed in the background."""
        if self._task is None:
            return
        self._task.cancel()
        self._task = None
        self._close_task = asyncio.create_task(self._stream.aclose(), name="botical-audio-sink-close")
        self._close_task.add_done_callback(_log_close_failure)


class LiveKitTransport:
    """One LiveKit room connection."""

    def __init__(self, on_frame: Optional[FrameHandler] = None) -> None:
        self.room = rtc.Room()
        self.microphone_source = rtc.AudioSource(SAMPLE_RATE, NUM_CHANNELS)
        self._on_frame = on_frame
        self._mic_track: Optional[rtc.LocalAudioTrack] = None

    def on(self, event: str, callback: Callable[..., Any]) -> None:
        self.room.on(event, callback)

    def off(self, event: str, callback: Callable[..., Any]) -> None:
        self.room.off(event, callback)

    @property
    def name(self) -> str:
        return self.room.name

    @property
    def local_identity(self) -> str:
        return self.room.local_participant.identity

    @property
    def remote_identities(self) -> List[str]:
        return [p.identity for p in self.room.remote_participants.values()]

    async def connect(self, url: str, token: str) -> None:
        await self.room.connect(url, token, options=rtc.RoomOptions(auto_subscribe=True))

    async def disconnect(self) -> None:
        await self.room.disconnect()

    async def set_microphone_enabled(self, enabled: bool) -> None:
        if self._mic_track is None:
            if not enabled:
                return
            track = rtc.LocalAudioTrack.create_audio_track("microphone", self.microphone_source)
            options = rtc.TrackPublishOptions()
            options.source = rtc.TrackSource.SOURCE_MICROPHONE
            # Cached only after a successful publish
            await self.room.local_participant.publish_track(track, options)
            self._mic_track = track
            return
        if enabled:
            self._mic_track.unmute()
        else:
            self._mic_track.mute()

    async def send_text(self, text: str, topic: str) -> None:
        await self.room.local_participant.send_text(text, topic=topic)

    def attach(self, track: "rtc.Track") -> RemoteAudioSink:
        return RemoteAudioSink(track, on_frame=self._on_frame)
