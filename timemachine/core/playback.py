# core/playback.py
from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol

from timemachine.core.config import TimeMachineConfig
from timemachine.core.display import Display, Slide
from timemachine.core.schemas import FactRecord
from timemachine.tools import wav_codec

logger = logging.getLogger(__name__)


class AudioSink(Protocol):
    async def play(self, wav: bytes) -> None: ...

    def stop(self) -> None: ...


class SpeechSynthesizer(Protocol):
    speaking: bool

    def is_supported(self) -> bool: ...

    async def speak(self, text: str) -> None: ...

    def cancel(self) -> None: ...

    def pause(self) -> None: ...

    def resume(self) -> None: ...


class PlaybackState(str, Enum):
    IDLE = "idle"
    PLAYING = "playing"
    STOPPED = "stopped"
    FINISHED = "finished"


@dataclass
class PlaybackEvent:
    kind: str  # state | slide_active | image_shown | narration_start | narration_end | slide_inactive | finished | closed
    fact_id: Optional[int] = None
    detail: Dict[str, Any] = field(default_factory=dict)


Listener = Callable[[PlaybackEvent], None]

_UTTERANCE_RE = re.compile(r"[^.!?:]+[.!?:]*")


def split_utterances(text: str) -> List[str]:
    """Sentence-sized chunks; speech engines drop or stall on long utterances."""
    return [u.strip() for u in _UTTERANCE_RE.findall(text or "") if u.strip()]


class PlaybackEngine:
    """
    Slideshow state machine: idle -> playing -> stopped | finished.

    Every await is followed by a check of the run's playing flag. stop() and
    a restart bump the run counter, so a superseded run falls through at its
    next suspension point without touching display, sink or listeners.
    """

    def __init__(
        self,
        facts: List[FactRecord],
        *,
        display: Optional[Display] = None,
        audio_sink: Optional[AudioSink] = None,
        speech: Optional[SpeechSynthesizer] = None,
        cfg: Optional[TimeMachineConfig] = None,
        listeners: Iterable[Listener] = (),
    ):
        self.facts = facts
        self.display = display
        self.audio_sink = audio_sink
        self.speech = speech
        self.cfg = cfg or TimeMachineConfig()
        self.listeners: List[Listener] = list(listeners)

        self.state = PlaybackState.IDLE
        self.index = 0
        self.slides: List[Slide] = []
        self._run = 0
        self._task: Optional[asyncio.Task] = None
        self._rotation: Optional[asyncio.Task] = None
        self._keep_alive: Optional[asyncio.Task] = None
        self._narration: Optional[asyncio.Task] = None

    # ----------------------------
    # Events
    # ----------------------------
    def add_listener(self, fn: Listener) -> None:
        self.listeners.append(fn)

    def _emit(self, kind: str, fact_id: Optional[int] = None, **detail: Any) -> None:
        event = PlaybackEvent(kind=kind, fact_id=fact_id, detail=detail)
        for fn in list(self.listeners):
            try:
                fn(event)
            except Exception:
                logger.exception("playback listener failed on %s", kind)

    def _set_state(self, state: PlaybackState) -> None:
        self.state = state
        logger.debug("Cinema state: %s", state.value)
        self._emit("state", state=state.value)

    def is_playing(self, run: int) -> bool:
        return self.state is PlaybackState.PLAYING and run == self._run

    # ----------------------------
    # Control
    # ----------------------------
    def start(self) -> asyncio.Task:
        """Begin (or restart) from the first fact. Needs a running event loop."""
        if self.state is PlaybackState.PLAYING:
            self._cancel_media()
        self._run += 1
        run = self._run
        self.index = 0

        for fact in self.facts:
            fact.narration_status = "pending"
        self.slides = [Slide.for_fact(f) for f in self.facts]
        if self.display:
            self.display.build_slides(self.slides)

        self._set_state(PlaybackState.PLAYING)
        self._task = asyncio.get_running_loop().create_task(self._play(run))
        return self._task

    async def play(self) -> PlaybackState:
        """start() and wait for this run to end."""
        await self.start()
        return self.state

    async def wait(self) -> PlaybackState:
        if self._task is not None:
            await self._task
        return self.state

    def stop(self) -> None:
        if self.state is PlaybackState.STOPPED:
            return
        self._run += 1
        self._cancel_media()
        if self.display:
            if self.state is PlaybackState.PLAYING and self.index < len(self.facts):
                self.display.deactivate(self.facts[self.index].id)
            self.display.teardown()
        self._set_state(PlaybackState.STOPPED)
        self._emit("closed")

    def _cancel_media(self) -> None:
        if self.audio_sink is not None:
            self.audio_sink.stop()
        if self.speech is not None:
            self.speech.cancel()
        for task in (self._narration, self._rotation, self._keep_alive):
            if task is not None and not task.done():
                task.cancel()
        self._narration = None
        self._rotation = None
        self._keep_alive = None

    # ----------------------------
    # Run
    # ----------------------------
    async def _play(self, run: int) -> None:
        while self.index < len(self.facts):
            if not self.is_playing(run):
                return
            if not await self._cycle(run, self.facts[self.index], self.slides[self.index]):
                return
            self.index += 1

        if not self.is_playing(run):
            return
        self._set_state(PlaybackState.FINISHED)
        if self.display:
            self.display.show_end_screen()
        self._emit("finished")

    async def _cycle(self, run: int, fact: FactRecord, slide: Slide) -> bool:
        logger.debug("Slideshow: card %d start", fact.id)
        if self.display:
            self.display.activate(fact.id)
        self._emit("slide_active", fact.id, images=len(slide.images))

        # crossfade settles fully before anything else happens
        await asyncio.sleep(self.cfg.settle_delay_s)
        if not self.is_playing(run):
            return False

        fact.narration_status = "speaking"
        self._emit("narration_start", fact.id, mode="audio" if fact.audio and self.audio_sink is not None else "speech")

        loop = asyncio.get_running_loop()
        rotation = None
        if len(slide.images) > 1:
            rotation = self._rotation = loop.create_task(self._rotate(run, slide))
        # a task of its own so stop() can cancel a clip or utterance mid-spawn
        narration = self._narration = loop.create_task(self._narrate(run, fact))
        try:
            await asyncio.wait({narration})
        finally:
            narration.cancel()
            if self._narration is narration:
                self._narration = None
            if rotation is not None:
                rotation.cancel()
                if self._rotation is rotation:
                    self._rotation = None
        if not self.is_playing(run):
            return False
        fact.narration_status = "done"
        self._emit("narration_end", fact.id)

        # let the image register
        await asyncio.sleep(self.cfg.post_narration_pause_s)
        if not self.is_playing(run):
            return False

        if self.display:
            self.display.deactivate(fact.id)
        self._emit("slide_inactive", fact.id)
        return True

    async def _rotate(self, run: int, slide: Slide) -> None:
        while True:
            await asyncio.sleep(self.cfg.rotate_interval_s)
            if not self.is_playing(run):
                return
            prev = slide.visible
            slide.visible = (prev + 1) % len(slide.images)
            if self.display:
                self.display.crossfade(slide.fact_id, prev, slide.visible)
            self._emit("image_shown", slide.fact_id, index=slide.visible, previous=prev)

    # ----------------------------
    # Narration
    # ----------------------------
    async def _narrate(self, run: int, fact: FactRecord) -> None:
        """Never raises except on task cancellation; a broken clip just ends narration."""
        if not self.is_playing(run):
            return
        if fact.audio and self.audio_sink is not None:
            try:
                wav = wav_codec.encode(fact.audio, self.cfg.sample_rate)
                await self.audio_sink.play(wav)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.debug("Slideshow: audio playback failed for card %d: %s", fact.id, e)
            return
        await self._speak(run, fact.fact)

    async def _speak(self, run: int, text: str) -> None:
        speech = self.speech
        if speech is None or not speech.is_supported():
            logger.debug("Slideshow: no speech synthesis available")
            return

        keep_alive = self._keep_alive = asyncio.get_running_loop().create_task(self._keep_speech_alive(run))
        try:
            for utterance in split_utterances(text):
                if not self.is_playing(run):
                    return
                try:
                    await asyncio.wait_for(speech.speak(utterance), timeout=self.cfg.utterance_timeout_s)
                except asyncio.TimeoutError:
                    logger.debug("Slideshow: utterance watchdog fired")
                    speech.cancel()
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.debug("Slideshow: speech error: %s", e)
        finally:
            keep_alive.cancel()
            if self._keep_alive is keep_alive:
                self._keep_alive = None

    async def _keep_speech_alive(self, run: int) -> None:
        # some engines silently halt long synthesis unless nudged
        while True:
            await asyncio.sleep(self.cfg.keep_alive_s)
            if not self.is_playing(run):
                return
            if self.speech is not None and self.speech.speaking:
                self.speech.pause()
                self.speech.resume()
