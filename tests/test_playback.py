"""Tests for the slideshow state machine: ordering, cancellation, narration fallbacks."""

import asyncio
import dataclasses
import sys

import pytest

from fakes import EventLog, FakeSink, FakeSpeech, RecordingDisplay, make_facts
from timemachine.core.playback import PlaybackEngine, PlaybackState, split_utterances
from timemachine.errors import PlaybackDecodeFailure
from timemachine.tools import wav_codec
from timemachine.tools.local_tts import SubprocessSpeech


def _engine(facts, cfg, **kw):
    log = EventLog()
    kw.setdefault("speech", FakeSpeech())
    kw.setdefault("display", RecordingDisplay())
    engine = PlaybackEngine(facts, cfg=cfg, listeners=[log], **kw)
    return engine, log


def test_full_run_orders_slides_and_finishes_once(fast_cfg):
    facts = make_facts(3)
    engine, log = _engine(facts, fast_cfg)

    state = asyncio.run(engine.play())

    assert state is PlaybackState.FINISHED
    assert log.ids("slide_active") == [1, 2, 3]
    assert log.ids("narration_start") == [1, 2, 3]
    assert log.ids("narration_end") == [1, 2, 3]
    assert len(log.kinds("finished")) == 1
    assert log.kinds("closed") == []
    assert all(f.narration_status == "done" for f in facts)
    assert engine.display.calls[-1] == ("end",)


def test_per_fact_events_are_sequential(fast_cfg):
    engine, log = _engine(make_facts(2), fast_cfg)
    asyncio.run(engine.play())

    seq = [(e.kind, e.fact_id) for e in log.events if e.kind != "state"]
    assert seq == [
        ("slide_active", 1), ("narration_start", 1), ("narration_end", 1), ("slide_inactive", 1),
        ("slide_active", 2), ("narration_start", 2), ("narration_end", 2), ("slide_inactive", 2),
        ("finished", None),
    ]


def test_stop_during_settle_delay_never_narrates(fast_cfg):
    speech = FakeSpeech()
    engine, log = _engine(make_facts(3), fast_cfg, speech=speech)

    async def scenario():
        task = engine.start()
        await asyncio.sleep(0)
        engine.stop()
        await task

    asyncio.run(scenario())

    assert engine.state is PlaybackState.STOPPED
    assert log.kinds("narration_start") == []
    assert speech.spoken == []
    assert len(log.kinds("closed")) == 1
    assert log.kinds("finished") == []
    assert ("teardown",) in engine.display.calls


def test_stop_is_idempotent(fast_cfg):
    engine, log = _engine(make_facts(1), fast_cfg)

    async def scenario():
        task = engine.start()
        engine.stop()
        engine.stop()
        await task
        engine.stop()

    asyncio.run(scenario())
    assert len(log.kinds("closed")) == 1


def test_stop_during_narration_cancels_sink(fast_cfg):
    sink = FakeSink(duration=5.0)
    engine, log = _engine(make_facts(2, audio=b"\x00\x01" * 10), fast_cfg, audio_sink=sink)

    async def scenario():
        task = engine.start()
        while not sink.played:
            await asyncio.sleep(0.005)
        engine.stop()
        await asyncio.wait_for(task, timeout=1.0)

    asyncio.run(scenario())

    assert sink.stops >= 1
    assert log.ids("narration_start") == [1]
    assert log.kinds("narration_end") == []
    assert engine.state is PlaybackState.STOPPED


def test_generated_audio_goes_through_codec_and_sink(fast_cfg):
    pcm = b"\x10\x00\x20\x00" * 50
    sink = FakeSink()
    speech = FakeSpeech()
    engine, log = _engine(make_facts(2, audio=pcm), fast_cfg, audio_sink=sink, speech=speech)

    asyncio.run(engine.play())

    assert len(sink.played) == 2
    assert all(wav_codec.decode(w) == pcm for w in sink.played)
    assert speech.spoken == []
    assert [e.detail["mode"] for e in log.kinds("narration_start")] == ["audio", "audio"]


def test_broken_audio_skips_forward(fast_cfg):
    sink = FakeSink(error=PlaybackDecodeFailure("garbage"))
    engine, log = _engine(make_facts(3, audio=b"\x00\x00"), fast_cfg, audio_sink=sink)

    assert asyncio.run(engine.play()) is PlaybackState.FINISHED
    assert log.ids("narration_end") == [1, 2, 3]


def test_speech_fallback_speaks_sentences_in_order(fast_cfg):
    speech = FakeSpeech()
    engine, log = _engine(make_facts(2), fast_cfg, speech=speech)

    asyncio.run(engine.play())

    assert speech.spoken == [
        "Fakt Nummer 1 ist wichtig.", "Er hat zwei Sätze!",
        "Fakt Nummer 2 ist wichtig.", "Er hat zwei Sätze!",
    ]
    assert [e.detail["mode"] for e in log.kinds("narration_start")] == ["speech", "speech"]


def test_watchdog_releases_a_stuck_utterance(fast_cfg):
    speech = FakeSpeech(hang=True)
    engine, log = _engine(make_facts(1), fast_cfg, speech=speech)

    state = asyncio.run(asyncio.wait_for(engine.play(), timeout=3.0))

    assert state is PlaybackState.FINISHED
    # two sentences, each cut off by the watchdog
    assert len(speech.spoken) == 2
    assert speech.cancels >= 2
    # keep-alive nudged the engine while it hung
    assert speech.pauses > 0 and speech.pauses == speech.resumes


def test_unsupported_speech_still_advances(fast_cfg):
    engine, log = _engine(make_facts(2), fast_cfg, speech=FakeSpeech(supported=False))
    assert asyncio.run(engine.play()) is PlaybackState.FINISHED
    assert log.ids("narration_end") == [1, 2]


def test_images_rotate_only_while_narrating(fast_cfg):
    speech = FakeSpeech(duration=0.06)
    facts = make_facts(1, images=3)
    engine, log = _engine(facts, fast_cfg, speech=speech)

    asyncio.run(engine.play())

    shown = log.kinds("image_shown")
    assert shown, "expected at least one crossfade"
    indices = [e.detail["index"] for e in shown]
    assert indices[:3] == [1, 2, 0][: len(indices[:3])]
    assert all(e.detail["previous"] != e.detail["index"] for e in shown)

    order = [e.kind for e in log.events]
    last_rotation = max(i for i, k in enumerate(order) if k == "image_shown")
    assert last_rotation < order.index("narration_end")


def test_single_image_never_rotates(fast_cfg):
    engine, log = _engine(make_facts(1, images=1), fast_cfg, speech=FakeSpeech(duration=0.08))
    asyncio.run(engine.play())
    assert log.kinds("image_shown") == []


def test_replay_after_finish_resets_index(fast_cfg):
    engine, log = _engine(make_facts(2), fast_cfg)

    async def scenario():
        await engine.play()
        await engine.play()

    asyncio.run(scenario())

    assert log.ids("slide_active") == [1, 2, 1, 2]
    assert len(log.kinds("finished")) == 2


def test_restart_while_playing_supersedes_old_run(fast_cfg):
    engine, log = _engine(make_facts(2), fast_cfg)

    async def scenario():
        old = engine.start()
        await asyncio.sleep(0)
        new = engine.start()
        await asyncio.gather(old, new)

    asyncio.run(scenario())

    assert engine.state is PlaybackState.FINISHED
    assert len(log.kinds("finished")) == 1
    assert log.ids("narration_start") == [1, 2]


def test_start_after_stop(fast_cfg):
    engine, log = _engine(make_facts(1), fast_cfg)

    async def scenario():
        task = engine.start()
        engine.stop()
        await task
        return await engine.play()

    assert asyncio.run(scenario()) is PlaybackState.FINISHED
    assert len(log.kinds("closed")) == 1
    assert len(log.kinds("finished")) == 1


def test_placeholder_slide_for_fact_without_images(fast_cfg):
    facts = make_facts(1, images=0)
    engine, _ = _engine(facts, fast_cfg)
    asyncio.run(engine.play())
    assert engine.slides[0].placeholder


def test_split_utterances():
    assert split_utterances("Erster Satz. Zweiter Satz! Frage? Liste: a, b") == [
        "Erster Satz.", "Zweiter Satz!", "Frage?", "Liste:", "a, b",
    ]
    assert split_utterances("") == []
    assert split_utterances("...") == []


@pytest.mark.skipif(sys.platform == "win32", reason="needs /bin/sh")
def test_stop_silences_a_real_speech_process(fast_cfg, make_script, tmp_path):
    marker = tmp_path / "still_talking"
    speech = SubprocessSpeech(engine=make_script("espeak", f'sleep 1; touch "{marker}"'))
    cfg = dataclasses.replace(fast_cfg, utterance_timeout_s=30.0)
    engine, log = _engine(make_facts(1), cfg, speech=speech)

    async def scenario():
        loop = asyncio.get_running_loop()
        engine.add_listener(lambda ev: ev.kind == "narration_start" and loop.call_soon(engine.stop))
        t0 = loop.time()
        await asyncio.wait_for(engine.start(), timeout=3.0)
        elapsed = loop.time() - t0
        await asyncio.sleep(1.3)
        return elapsed

    assert asyncio.run(scenario()) < 0.8
    assert engine.state is PlaybackState.STOPPED
    assert not marker.exists()
    assert not speech.speaking


def test_stop_cancels_narration_that_ignores_sink_stop(fast_cfg):
    class DeafSink(FakeSink):
        def stop(self):
            self.stops += 1

    sink = DeafSink(duration=5.0)
    engine, log = _engine(make_facts(1, audio=b"\x00\x01" * 10), fast_cfg, audio_sink=sink)

    async def scenario():
        task = engine.start()
        while not sink.played:
            await asyncio.sleep(0.005)
        engine.stop()
        await asyncio.wait_for(task, timeout=1.0)

    asyncio.run(scenario())
    assert engine.state is PlaybackState.STOPPED
    assert log.kinds("narration_end") == []


def test_missing_sink_narrates_generated_audio_with_speech(fast_cfg):
    speech = FakeSpeech()
    engine, log = _engine(make_facts(1, audio=b"\x00\x01" * 10), fast_cfg, audio_sink=None, speech=speech)

    asyncio.run(engine.play())

    assert speech.spoken == ["Fakt Nummer 1 ist wichtig.", "Er hat zwei Sätze!"]
    assert log.kinds("narration_start")[0].detail["mode"] == "speech"


def test_superseded_run_leaves_narration_status_alone(fast_cfg):
    cfg = dataclasses.replace(fast_cfg, settle_delay_s=0.2)
    facts = make_facts(2)
    engine, _ = _engine(facts, cfg, speech=FakeSpeech(duration=0.5))

    async def scenario():
        old = engine.start()
        while facts[0].narration_status != "speaking":
            await asyncio.sleep(0.01)
        new = engine.start()
        await old
        status_after_restart = facts[0].narration_status
        await new
        return status_after_restart

    assert asyncio.run(scenario()) == "pending"
    assert [f.narration_status for f in facts] == ["done", "done"]
