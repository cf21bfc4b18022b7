# cards.py
from __future__ import annotations

import base64
from typing import Any, Callable, Dict, List, Optional

import streamlit as st

from timemachine.core.pipeline import TravelObserver
from timemachine.core.schemas import FactRecord, MediaProgress
from timemachine.tools import wav_codec


def image_source(handle: str):
    # st.image takes URLs directly, data URIs need decoding
    if handle.startswith("data:"):
        return base64.b64decode(handle.split(",", 1)[1])
    return handle


def render_card(fact: FactRecord) -> None:
    """One fact card; shows loading captions for media that has not settled yet."""
    with st.container(border=True):
        st.markdown(f"### {fact.id}")
        status = fact.image_status
        if status == "pending":
            st.caption("Loading images…")
        elif status == "present":
            handles = fact.present_images
            cols = st.columns(len(handles))
            for col, h in zip(cols, handles):
                col.image(image_source(h), use_container_width=True)
        else:
            st.caption("Image not available")
        st.write(fact.fact)
        if fact.audio:
            st.audio(wav_codec.encode(fact.audio), format="audio/wav")
        elif fact.audio_settled:
            st.caption("No generated narration (the CLI falls back to local speech)")
        else:
            st.caption("Generating narration…")


class CardBoard(TravelObserver):
    """
    Puts one card per fact on screen as soon as research is done, then
    redraws a fact's card each time its images or narration arrive.
    `new_slot` returns a placeholder with a `.container()` (st.empty()).
    """

    def __init__(
        self,
        new_slot: Callable[[], Any],
        render: Callable[[FactRecord], None] = render_card,
        on_progress: Optional[Callable[[float, str], None]] = None,
    ):
        self.new_slot = new_slot
        self.render = render
        self.on_progress = on_progress
        self.slots: Dict[int, Any] = {}

    def _draw(self, fact: FactRecord) -> None:
        slot = self.slots.get(fact.id)
        if slot is None:
            return
        with slot.container():
            self.render(fact)

    def facts_ready(self, facts: List[FactRecord]) -> None:
        self.slots = {f.id: self.new_slot() for f in facts}
        for f in facts:
            self._draw(f)

    def media_progress(self, fact: FactRecord, progress: MediaProgress) -> None:
        self._draw(fact)

    def progress(self, fraction: float, message: str) -> None:
        if self.on_progress:
            self.on_progress(fraction, message)
