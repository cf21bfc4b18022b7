# core/config.py
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv


# ----------------------------
# Dotenv loading
# ----------------------------
def load_env_safely() -> None:
    """
    Load .env explicitly instead of relying on find_dotenv() (it inspects call
    frames and breaks under Streamlit). Existing environment variables win.
    """
    candidates = [
        Path(os.getcwd()) / ".env",
        Path(__file__).resolve().parents[2] / ".env",  # repo root
    ]
    for p in candidates:
        if p.exists():
            load_dotenv(dotenv_path=str(p), override=False)
            return


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    try:
        return float(raw) if raw else default
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    try:
        return int(raw) if raw else default
    except ValueError:
        return default


# ----------------------------
# Config
# ----------------------------
@dataclass
class TimeMachineConfig:
    # Models (Gemini REST API, v1beta)
    research_model: str = "gemini-2.0-flash"
    image_model: str = "gemini-2.5-flash-image"
    tts_model: str = "gemini-2.5-flash-preview-tts"
    tts_voice: str = "Enceladus"  # works well for German
    request_timeout_s: float = 60.0

    # Research
    max_facts: int = 3
    narration_language: str = "German"

    # Media synthesis
    images_per_fact: int = 3
    sample_rate: int = 24000
    retries: int = 1
    backoff_base_s: float = 2.0
    backoff_max_s: float = 8.0
    retry_delay_s: float = 1.0
    wikimedia_api: str = "https://commons.wikimedia.org/w/api.php"
    wikimedia_thumb_width: int = 800

    # Playback timing
    settle_delay_s: float = 1.2
    rotate_interval_s: float = 4.0
    post_narration_pause_s: float = 1.5
    utterance_timeout_s: float = 30.0
    keep_alive_s: float = 10.0

    # Local speech fallback
    speech_lang: str = "de-DE"
    speech_rate: float = 0.95

    @classmethod
    def from_env(cls) -> "TimeMachineConfig":
        load_env_safely()
        d = cls()
        return cls(
            research_model=os.getenv("GEMINI_RESEARCH_MODEL", d.research_model).strip(),
            image_model=os.getenv("GEMINI_IMAGE_MODEL", d.image_model).strip(),
            tts_model=os.getenv("GEMINI_TTS_MODEL", d.tts_model).strip(),
            tts_voice=os.getenv("GEMINI_TTS_VOICE", d.tts_voice).strip(),
            request_timeout_s=_env_float("TIMEMACHINE_REQUEST_TIMEOUT_S", d.request_timeout_s),
            max_facts=_env_int("TIMEMACHINE_MAX_FACTS", d.max_facts),
            images_per_fact=_env_int("TIMEMACHINE_IMAGES_PER_FACT", d.images_per_fact),
            settle_delay_s=_env_float("TIMEMACHINE_SETTLE_DELAY_S", d.settle_delay_s),
            rotate_interval_s=_env_float("TIMEMACHINE_ROTATE_INTERVAL_S", d.rotate_interval_s),
            post_narration_pause_s=_env_float("TIMEMACHINE_CARD_PAUSE_S", d.post_narration_pause_s),
            speech_lang=os.getenv("TIMEMACHINE_SPEECH_LANG", d.speech_lang).strip(),
        )
