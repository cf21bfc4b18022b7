# tools/wav_codec.py
from __future__ import annotations

import struct

from timemachine.errors import PlaybackDecodeFailure

SAMPLE_RATE = 24000  # Gemini TTS: PCM L16, 24 kHz, mono
CHANNELS = 1
BITS_PER_SAMPLE = 16
HEADER_SIZE = 44

_HEADER = struct.Struct("<4sI4s4sIHHIIHH4sI")


def encode(pcm: bytes, sample_rate: int = SAMPLE_RATE) -> bytes:
    """Wrap raw little-endian 16-bit mono PCM in a 44-byte RIFF/WAVE header."""
    pcm = bytes(pcm or b"")
    block_align = CHANNELS * BITS_PER_SAMPLE // 8
    header = _HEADER.pack(
        b"RIFF",
        36 + len(pcm),
        b"WAVE",
        b"fmt ",
        16,  # fmt chunk size
        1,  # linear PCM
        CHANNELS,
        sample_rate,
        sample_rate * block_align,  # byte rate
        block_align,
        BITS_PER_SAMPLE,
        b"data",
        len(pcm),
    )
    return header + pcm


def decode(wav: bytes) -> bytes:
    """
    Return the data chunk of a PCM WAV container. Walks the chunk list so
    containers with extra chunks (LIST, fact) decode too.
    """
    wav = bytes(wav or b"")
    if len(wav) < 12 or wav[0:4] != b"RIFF" or wav[8:12] != b"WAVE":
        raise PlaybackDecodeFailure("not a RIFF/WAVE container")

    fmt_seen = False
    pos = 12
    while pos + 8 <= len(wav):
        chunk_id, size = struct.unpack_from("<4sI", wav, pos)
        body = pos + 8
        if chunk_id == b"fmt ":
            if size < 16 or body + 16 > len(wav):
                raise PlaybackDecodeFailure("truncated fmt chunk")
            fmt_code, channels, _, _, _, bits = struct.unpack_from("<HHIIHH", wav, body)
            if fmt_code != 1 or bits != BITS_PER_SAMPLE or channels < 1:
                raise PlaybackDecodeFailure(f"unsupported format {fmt_code}/{channels}ch/{bits}bit")
            fmt_seen = True
        elif chunk_id == b"data":
            if not fmt_seen:
                raise PlaybackDecodeFailure("data chunk before fmt chunk")
            if body + size > len(wav):
                raise PlaybackDecodeFailure("truncated data chunk")
            return wav[body : body + size]
        # chunks are word aligned
        pos = body + size + (size & 1)

    raise PlaybackDecodeFailure("no data chunk")


def duration_s(pcm: bytes, sample_rate: int = SAMPLE_RATE) -> float:
    return len(pcm or b"") / float(sample_rate * CHANNELS * BITS_PER_SAMPLE // 8)
