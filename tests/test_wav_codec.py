"""Tests for the PCM -> WAV container codec."""

import struct

import pytest

from timemachine.errors import PlaybackDecodeFailure
from timemachine.tools import wav_codec


def test_header_fields():
    pcm = bytes(range(256)) * 10
    wav = wav_codec.encode(pcm)

    assert len(wav) == 44 + len(pcm)
    riff, size, wave, fmt, fmt_size, code, channels, rate, byte_rate, align, bits, data, data_size = struct.unpack(
        "<4sI4s4sIHHIIHH4sI", wav[:44]
    )
    assert (riff, wave, fmt, data) == (b"RIFF", b"WAVE", b"fmt ", b"data")
    assert size == 36 + len(pcm)
    assert data_size == len(pcm)
    assert (fmt_size, code, channels, bits) == (16, 1, 1, 16)
    assert rate == 24000
    assert byte_rate == 48000
    assert align == 2
    assert wav[44:] == pcm


@pytest.mark.parametrize("pcm", [b"", b"\x7f", b"\x00\x80\xff\x7f" * 1000, bytes(range(256)) + b"\x01"])
def test_decode_returns_original_pcm(pcm):
    assert wav_codec.decode(wav_codec.encode(pcm)) == pcm


def test_custom_sample_rate():
    wav = wav_codec.encode(b"\x00\x00", sample_rate=16000)
    assert struct.unpack_from("<I", wav, 24)[0] == 16000
    assert struct.unpack_from("<I", wav, 28)[0] == 32000


def test_decode_skips_unknown_chunks():
    pcm = b"\x01\x02\x03\x04"
    wav = wav_codec.encode(pcm)
    extra = b"LIST" + struct.pack("<I", 3) + b"abc" + b"\x00"  # odd size, padded
    spliced = wav[:36] + extra + wav[36:]
    assert wav_codec.decode(spliced) == pcm


@pytest.mark.parametrize(
    "blob",
    [
        b"",
        b"not a wav file at all",
        wav_codec.encode(b"\x00" * 100)[:60],  # truncated data chunk
        wav_codec.encode(b"\x00\x00")[:36],  # no data chunk
    ],
)
def test_malformed_containers_raise(blob):
    with pytest.raises(PlaybackDecodeFailure):
        wav_codec.decode(blob)


def test_non_pcm_format_is_rejected():
    wav = bytearray(wav_codec.encode(b"\x00\x00"))
    struct.pack_into("<H", wav, 20, 3)  # IEEE float
    with pytest.raises(PlaybackDecodeFailure):
        wav_codec.decode(bytes(wav))


def test_duration():
    assert wav_codec.duration_s(b"\x00" * 48000) == pytest.approx(1.0)
