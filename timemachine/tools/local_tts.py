# tools/local_tts.py
from __future__ import annotations

import asyncio
import logging
import re
import shutil
import signal
from typing import List, Optional

logger = logging.getLogger(__name__)

# voices per engine for the narration locale
_SAY_VOICES = {"de": "Anna", "en": "Samantha"}
_BASE_WPM = 175


def _clean_tts_text(text: str) -> str:
    """Strip quotes and collapse whitespace so the engine reads it plainly."""
    t = (text or "").strip()
    t = t.replace('"', "").replace("“", "").replace("”", "").replace("„", "")
    return re.sub(r"\s+", " ", t).strip()


class SubprocessSpeech:
    """
    On-device speech via macOS `say` or `espeak-ng`/`espeak`. One utterance
    at a time; pause()/resume() stop and continue the engine process.
    """

    def __init__(self, lang: str = "de-DE", rate: float = 0.95, engine: Optional[str] = None):
        self.lang = lang
        self.rate = rate
        self.engine = engine or next((e for e in ("say", "espeak-ng", "espeak") if shutil.which(e)), None)
        self._proc: Optional[asyncio.subprocess.Process] = None
        self._cancelled = False

    def is_supported(self) -> bool:
        return self.engine is not None

    @property
    def speaking(self) -> bool:
        return self._proc is not None and self._proc.returncode is None

    def _command(self, text: str) -> List[str]:
        wpm = str(int(_BASE_WPM * self.rate))
        short = self.lang.split("-")[0].lower()
        if self.engine == "say":
            return ["say", "-v", _SAY_VOICES.get(short, "Anna"), "-r", wpm, text]
        return [self.engine, "-v", short, "-s", wpm, text]

    async def speak(self, text: str) -> None:
        text = _clean_tts_text(text)
        if not text:
            return
        if not self.engine:
            logger.debug("Speech: no local speech engine available")
            return

        self._cancelled = False
        self._proc = await asyncio.create_subprocess_exec(
            *self._command(text),
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )
        if self._cancelled:
            # cancel() arrived while the process was starting
            self.cancel()
        try:
            code = await self._proc.wait()
        except asyncio.CancelledError:
            self.cancel()
            raise
        if code and code > 0:
            raise RuntimeError(f"{self.engine} exited with {code}")

    def cancel(self) -> None:
        self._cancelled = True
        if self.speaking:
            try:
                self._proc.send_signal(signal.SIGCONT)
                self._proc.terminate()
            except ProcessLookupError:
                pass

    def pause(self) -> None:
        if self.speaking:
            self._proc.send_signal(signal.SIGSTOP)

    def resume(self) -> None:
        if self.speaking:
            self._proc.send_signal(signal.SIGCONT)
