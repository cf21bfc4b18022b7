"""CLI entry point for the time machine."""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional, Tuple

from timemachine.core.config import TimeMachineConfig
from timemachine.core.display import ConsoleDisplay
from timemachine.core.pipeline import TimeMachine, TravelObserver
from timemachine.core.playback import PlaybackState
from timemachine.core.schemas import FactRecord, MediaProgress
from timemachine.errors import TravelFailed
from timemachine.tools.audio_sink import SubprocessAudioSink
from timemachine.tools.credentials import CredentialStore
from timemachine.tools.local_tts import SubprocessSpeech

logger = logging.getLogger(__name__)


class _ConsoleObserver(TravelObserver):
    def progress(self, fraction: float, message: str) -> None:
        print(f"[{int(fraction * 100):3d}%] {message}")

    def facts_ready(self, facts: List[FactRecord]) -> None:
        for f in facts:
            print(f"  {f.id}. {f.fact}")

    def media_progress(self, fact: FactRecord, progress: MediaProgress) -> None:
        logger.debug("fact %d: images=%s audio=%s", fact.id, fact.image_status, bool(fact.audio))


async def _ask(prompt: str) -> bool:
    answer = await asyncio.to_thread(input, prompt)
    return answer.strip().lower() in ("y", "yes", "j", "ja")


def _outputs(cfg: TimeMachineConfig) -> Tuple[Optional[SubprocessAudioSink], SubprocessSpeech]:
    """Audio sink (None without a player, so local speech takes over) and speech engine."""
    sink: Optional[SubprocessAudioSink] = SubprocessAudioSink()
    speech = SubprocessSpeech(lang=cfg.speech_lang, rate=cfg.speech_rate)
    if not sink.available:
        sink.close()
        sink = None
        if not speech.is_supported():
            logger.warning("No audio player or speech engine found, the slideshow will be silent")
        else:
            logger.info("No audio player found, narrating with %s", speech.engine)
    return sink, speech


async def _travel(args: argparse.Namespace, cfg: TimeMachineConfig) -> int:
    tm = TimeMachine(cfg=cfg)
    try:
        await tm.travel(args.date, args.location, _ConsoleObserver())
    except TravelFailed as e:
        print(f"Error: {e.message}", file=sys.stderr)
        if e.needs_credential:
            print("Store a new key with: timemachine key set <API_KEY>", file=sys.stderr)
        return 1

    if args.no_play:
        return 0

    sink, speech = _outputs(cfg)

    engine = tm.play(display=ConsoleDisplay(), audio_sink=sink, speech=speech)
    try:
        while True:
            state = await engine.wait()
            if state is PlaybackState.FINISHED and await _ask("Replay? [y/N] "):
                engine.start()
                continue
            break
    finally:
        engine.stop()
        if sink is not None:
            sink.close()
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Time Machine: narrated history slideshows")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command")

    # travel command
    travel_parser = sub.add_parser("travel", help="Research a date and place, then play the slideshow")
    travel_parser.add_argument("date", help='Date, e.g. "9 November 1989"')
    travel_parser.add_argument("location", help="Place, e.g. Berlin")
    travel_parser.add_argument("--no-play", action="store_true", help="Only generate, do not play")

    # key command
    key_parser = sub.add_parser("key", help="Manage the stored Gemini API key")
    key_sub = key_parser.add_subparsers(dest="key_command")
    set_parser = key_sub.add_parser("set", help="Store an API key")
    set_parser.add_argument("api_key")
    key_sub.add_parser("clear", help="Forget the stored API key")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )
    # the SDK's transport is chatty at DEBUG
    logging.getLogger("httpx").setLevel(logging.WARNING)

    cfg = TimeMachineConfig.from_env()

    if args.command == "travel":
        try:
            sys.exit(asyncio.run(_travel(args, cfg)))
        except KeyboardInterrupt:
            sys.exit(130)
    elif args.command == "key":
        store = CredentialStore()
        if args.key_command == "set":
            store.set(args.api_key)
            print(f"Key stored in {store.path}")
        elif args.key_command == "clear":
            store.clear()
            print("Key cleared")
        else:
            key_parser.print_help()
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
