# tools/audio_sink.py
from __future__ import annotations

import asyncio
import logging
import os
import shutil
import tempfile
from typing import List, Optional

from timemachine.errors import PlaybackDecodeFailure
from timemachine.tools import wav_codec

logger = logging.getLogger(__name__)

# first one found on PATH wins
_PLAYERS = {
    "ffplay": ["ffplay", "-nodisp", "-autoexit", "-loglevel", "error"],
    "afplay": ["afplay"],
    "aplay": ["aplay", "-q"],
}


def _find_player() -> Optional[List[str]]:
    for name, cmd in _PLAYERS.items():
        if shutil.which(name):
            return list(cmd)
    return None


class SubprocessAudioSink:
    """
    One reusable output for all narration clips. Each play() writes the WAV to
    the same scratch file and runs the system player until it exits.
    """

    def __init__(self, player: Optional[List[str]] = None):
        self.player = player or _find_player()
        self._proc: Optional[asyncio.subprocess.Process] = None
        self._stopped = False
        fd, self._path = tempfile.mkstemp(prefix="timemachine_", suffix=".wav")
        os.close(fd)

    @property
    def available(self) -> bool:
        return bool(self.player)

    async def play(self, wav: bytes) -> None:
        wav_codec.decode(wav)  # reject malformed containers before spawning anything
        if not self.player:
            raise PlaybackDecodeFailure("no audio player found (install ffmpeg)")

        with open(self._path, "wb") as f:
            f.write(wav)

        self._stopped = False
        self._proc = await asyncio.create_subprocess_exec(
            *self.player,
            self._path,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )
        if self._stopped:
            # stop() arrived while the player was starting
            self.stop()
        try:
            _, err = await self._proc.communicate()
        except asyncio.CancelledError:
            self.stop()
            raise
        code = self._proc.returncode
        self._proc = None
        # negative = killed by stop(), that is a normal end for us
        if code and code > 0:
            raise PlaybackDecodeFailure(f"player exited {code}: {(err or b'')[:500]!r}")

    def stop(self) -> None:
        self._stopped = True
        proc = self._proc
        if proc is not None and proc.returncode is None:
            try:
                proc.terminate()
            except ProcessLookupError:
                pass

    def close(self) -> None:
        self.stop()
        try:
            os.remove(self._path)
        except OSError:
            pass
