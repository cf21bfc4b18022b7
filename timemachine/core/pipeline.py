# core/pipeline.py
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from timemachine.core.config import TimeMachineConfig
from timemachine.core.display import Display
from timemachine.core.media import ImageSearch, MediaSynthesizer
from timemachine.core.playback import AudioSink, Listener, PlaybackEngine, PlaybackEvent, SpeechSynthesizer
from timemachine.core.research import research
from timemachine.core.schemas import FactRecord, MediaProgress
from timemachine.errors import InvalidCredential, SessionStateError, TimeMachineError, TravelFailed, user_message
from timemachine.tools.credentials import CredentialStore
from timemachine.tools.genai_client import GeminiClient
from timemachine.tools.progress import ProgressTracker

logger = logging.getLogger(__name__)


# ----------------------------
# Session
# ----------------------------
class SessionState(str, Enum):
    IDLE = "idle"
    RESEARCHING = "researching"
    GENERATING = "generating"
    READY = "ready"
    PLAYING = "playing"


_TRANSITIONS: Dict[SessionState, Set[SessionState]] = {
    SessionState.IDLE: {SessionState.RESEARCHING},
    SessionState.RESEARCHING: {SessionState.GENERATING, SessionState.IDLE},
    SessionState.GENERATING: {SessionState.READY, SessionState.IDLE},
    SessionState.READY: {SessionState.PLAYING, SessionState.RESEARCHING, SessionState.IDLE},
    SessionState.PLAYING: {SessionState.READY, SessionState.IDLE},
}


@dataclass
class Session:
    state: SessionState = SessionState.IDLE
    facts: List[FactRecord] = field(default_factory=list)
    images_loaded: int = 0
    engine: Optional[PlaybackEngine] = None

    def transition(self, new: SessionState) -> None:
        if new is self.state:
            return
        if new not in _TRANSITIONS[self.state]:
            raise SessionStateError(f"cannot go from {self.state.value} to {new.value}")
        logger.debug("App state: %s", new.value)
        self.state = new

    def replace_facts(self, facts: List[FactRecord]) -> None:
        # the list is read-only while a slideshow is running
        if self.state is SessionState.PLAYING:
            raise SessionStateError("fact list is locked during playback")
        self.facts = list(facts)
        self.images_loaded = 0


class TravelObserver:
    """Hooks for a front end. Override what you need; all are no-ops."""

    def state_changed(self, state: SessionState) -> None:
        pass

    def facts_ready(self, facts: List[FactRecord]) -> None:
        pass

    def media_progress(self, fact: FactRecord, progress: MediaProgress) -> None:
        pass

    def progress(self, fraction: float, message: str) -> None:
        pass


# ----------------------------
# Orchestrator
# ----------------------------
class TimeMachine:
    def __init__(
        self,
        *,
        cfg: Optional[TimeMachineConfig] = None,
        credentials: Optional[CredentialStore] = None,
        client_factory: Optional[Callable[[str], Any]] = None,
        image_search: Optional[ImageSearch] = None,
        session: Optional[Session] = None,
    ):
        self.cfg = cfg or TimeMachineConfig()
        self.credentials = credentials or CredentialStore()
        self.client_factory = client_factory or (lambda key: GeminiClient.from_config(key, self.cfg))
        self.image_search = image_search
        self.session = session or Session()
        self._observer = TravelObserver()

    def _set_state(self, state: SessionState) -> None:
        self.session.transition(state)
        self._observer.state_changed(state)

    def _fail(self, exc: BaseException) -> TravelFailed:
        if isinstance(exc, InvalidCredential):
            logger.info("API key rejected, clearing stored credential")
            self.credentials.clear()
        self.session.replace_facts([])
        self._set_state(SessionState.IDLE)
        return TravelFailed(user_message(exc), exc)

    async def travel(self, date: str, location: str, observer: Optional[TravelObserver] = None) -> List[FactRecord]:
        """
        Research, then media synthesis. Returns the enriched facts with the
        session in `ready`; any failure comes back as TravelFailed with the
        session in `idle`.
        """
        date, location = (date or "").strip(), (location or "").strip()
        if not date or not location:
            raise ValueError("date and location are required")

        self._observer = observer or TravelObserver()
        api_key = self.credentials.get()
        if not api_key:
            raise TravelFailed(user_message(InvalidCredential()), InvalidCredential("no API key stored"))

        if self.session.state is SessionState.PLAYING:
            self.stop()
        self._set_state(SessionState.RESEARCHING)
        self.session.replace_facts([])

        tracker = ProgressTracker(cb=self._observer.progress)
        try:
            client = self.client_factory(api_key)

            tracker.start("research", "Researching historical facts…")
            facts = await research(client, date=date, location=location, cfg=self.cfg)
            tracker.done("research", f"{len(facts)} facts found")
            self.session.replace_facts(facts)
            self._observer.facts_ready(facts)

            self._set_state(SessionState.GENERATING)
            tracker.start("images", f"Images: 0/{len(facts)}")
            tracker.start("audio")

            def on_media(fact_id: int, progress: MediaProgress) -> None:
                self.session.images_loaded = progress.images_done
                tracker.update("images", progress.images_done, progress.total, "Images")
                tracker.update("audio", progress.audio_done, progress.total, "Narration")
                self._observer.media_progress(facts[fact_id - 1], progress)

            synth = MediaSynthesizer(client, cfg=self.cfg, image_search=self.image_search)
            await synth.synthesize(facts, on_media)
            tracker.done("images")
            tracker.done("audio", "Ready to travel")

            self._set_state(SessionState.READY)
            return facts
        except asyncio.CancelledError:
            self.session.replace_facts([])
            self.session.state = SessionState.IDLE
            raise
        except TimeMachineError as e:
            logger.info("Travel failed: %s", e)
            raise self._fail(e) from e
        except Exception as e:
            logger.exception("Travel failed unexpectedly")
            raise self._fail(e) from e

    # ----------------------------
    # Playback
    # ----------------------------
    def play(
        self,
        *,
        display: Optional[Display] = None,
        audio_sink: Optional[AudioSink] = None,
        speech: Optional[SpeechSynthesizer] = None,
        listeners: Iterable[Listener] = (),
    ) -> PlaybackEngine:
        if self.session.state is not SessionState.READY:
            raise SessionStateError(f"nothing to play in state {self.session.state.value}")

        engine = PlaybackEngine(
            self.session.facts,
            display=display,
            audio_sink=audio_sink,
            speech=speech,
            cfg=self.cfg,
            listeners=listeners,
        )
        engine.add_listener(lambda ev: self._on_playback(engine, ev))
        self.session.engine = engine
        self._set_state(SessionState.PLAYING)
        engine.start()
        return engine

    def _on_playback(self, engine: PlaybackEngine, ev: PlaybackEvent) -> None:
        if engine is not self.session.engine:
            return
        if ev.kind in ("finished", "closed") and self.session.state is SessionState.PLAYING:
            self._set_state(SessionState.READY)
        elif ev.kind == "state" and ev.detail.get("state") == "playing" and self.session.state is SessionState.READY:
            # replay from the end screen
            self._set_state(SessionState.PLAYING)

    def stop(self) -> None:
        if self.session.engine is not None:
            self.session.engine.stop()

    def reset(self) -> None:
        """New journey: stop playback and drop everything."""
        self.stop()
        self.session.engine = None
        self.session.state = SessionState.IDLE
        self.session.replace_facts([])
        self._observer.state_changed(SessionState.IDLE)
