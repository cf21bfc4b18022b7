# app.py
from __future__ import annotations

import asyncio
import traceback

import streamlit as st

from timemachine.cards import CardBoard, render_card
from timemachine.core.config import TimeMachineConfig
from timemachine.core.pipeline import TimeMachine
from timemachine.errors import TravelFailed
from timemachine.tools.credentials import CredentialStore


def _machine() -> TimeMachine:
    if "machine" not in st.session_state:
        st.session_state.machine = TimeMachine(cfg=TimeMachineConfig.from_env())
    return st.session_state.machine


st.set_page_config(page_title="Time Machine", layout="centered")

st.markdown(
    """
    <div style="text-align:center; margin-bottom: 1.2rem;">
        <div style="font-size:32px; font-weight:800;">Time Machine</div>
        <div style="opacity:0.75; font-size:16px;">
            Date + place → narrated history slideshow
        </div>
    </div>
    """,
    unsafe_allow_html=True,
)
st.divider()

store = CredentialStore()
tm = _machine()

if not store.get():
    with st.form("api-key"):
        key = st.text_input("Gemini API key", type="password")
        if st.form_submit_button("Save") and key.strip():
            store.set(key)
            st.rerun()
    st.stop()

with st.form("time-travel"):
    date = st.text_input("Date", value="9 November 1989")
    location = st.text_input("Place", value="Berlin")
    travel = st.form_submit_button("Travel", type="primary", use_container_width=True)

rendered_live = False
if travel:
    if not date.strip() or not location.strip():
        st.error("Please enter a date and a place.")
        st.stop()

    st.subheader("Progress")
    bar = st.progress(0, text="Starting…")
    st.divider()
    cards_box = st.container()
    # cards appear after research and fill in as images / narration arrive
    board = CardBoard(
        new_slot=cards_box.empty,
        on_progress=lambda fraction, msg: bar.progress(int(fraction * 100), text=msg),
    )

    try:
        asyncio.run(tm.travel(date, location, board))
        rendered_live = True
    except TravelFailed as e:
        bar.progress(0, text="Failed")
        st.error(e.message)
        if e.needs_credential:
            st.info("The stored key was removed. Reload the page to enter a new one.")
        st.stop()
    except Exception as e:
        bar.progress(0, text="Failed")
        st.error("Something went wrong during the journey.")
        with st.expander("Advanced (backend logs)", expanded=False):
            st.code(f"UNCAUGHT EXCEPTION:\n{e!r}\n\n{traceback.format_exc()}", language="text")
        st.stop()

if tm.session.facts:
    if not rendered_live:
        st.divider()
        for fact in tm.session.facts:
            render_card(fact)
    if st.button("New journey", use_container_width=True):
        tm.reset()
        st.rerun()
