# tools/genai_client.py
from __future__ import annotations

import base64
import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional

from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from timemachine.core.config import TimeMachineConfig
from timemachine.errors import InvalidCredential, RateLimited, UpstreamError, classify_upstream

logger = logging.getLogger(__name__)


# ----------------------------
# Response helpers
# ----------------------------
def _parts(resp: Any) -> List[Any]:
    candidates = getattr(resp, "candidates", None) or []
    if not candidates:
        return []
    content = getattr(candidates[0], "content", None)
    return list(getattr(content, "parts", None) or [])


def extract_text(resp: Any) -> str:
    """Join all text parts of the first candidate (search grounding may split them)."""
    texts = [p.text for p in _parts(resp) if getattr(p, "text", None)]
    return "\n".join(texts).strip()


def extract_inline(resp: Any) -> Optional[Any]:
    for part in _parts(resp):
        inline = getattr(part, "inline_data", None)
        if inline is not None and getattr(inline, "data", None):
            return inline
    return None


def _as_bytes(data: Any) -> bytes:
    # the SDK hands out bytes, raw REST payloads carry base64 strings
    if isinstance(data, (bytes, bytearray)):
        return bytes(data)
    return base64.b64decode(data)


def to_data_uri(mime_type: Optional[str], data: Any) -> str:
    b64 = base64.b64encode(_as_bytes(data)).decode("ascii")
    return f"data:{mime_type or 'image/png'};base64,{b64}"


def map_api_error(exc: Exception) -> UpstreamError:
    code = getattr(exc, "code", None)
    message = getattr(exc, "message", None) or str(exc)
    status = getattr(exc, "status", None)
    if status and status not in message:
        message = f"{message} ({status})"
    try:
        code = int(code) if code is not None else None
    except (TypeError, ValueError):
        code = None
    return classify_upstream(code, message)


# ----------------------------
# Gemini wrapper (google-genai, async surface)
# ----------------------------
@dataclass
class GeminiClient:
    api_key: str
    research_model: str = "gemini-2.0-flash"
    image_model: str = "gemini-2.5-flash-image"
    tts_model: str = "gemini-2.5-flash-preview-tts"
    tts_voice: str = "Enceladus"
    timeout_s: float = 60.0
    client: Any = field(default=None, repr=False)

    def __post_init__(self) -> None:
        self.api_key = (self.api_key or "").strip()
        if not self.api_key and self.client is None:
            raise InvalidCredential("Missing GEMINI_API_KEY. Enter a key or put it in .env as GEMINI_API_KEY=...")

        try:
            from google import genai  # type: ignore
            from google.genai import errors, types  # type: ignore
        except ImportError as e:
            raise RuntimeError(
                "google-genai not installed. Install with:\n"
                "  pip install google-genai\n"
            ) from e

        self._types = types
        self._api_error = errors.APIError
        if self.client is None:
            self.client = genai.Client(
                api_key=self.api_key,
                http_options=types.HttpOptions(timeout=int(self.timeout_s * 1000)),
            )

    @classmethod
    def from_config(cls, api_key: str, cfg: TimeMachineConfig) -> "GeminiClient":
        return cls(
            api_key=api_key,
            research_model=cfg.research_model,
            image_model=cfg.image_model,
            tts_model=cfg.tts_model,
            tts_voice=cfg.tts_voice,
            timeout_s=cfg.request_timeout_s,
        )

    async def _generate(self, *, model: str, contents: Any, config: Any) -> Any:
        try:
            return await self.client.aio.models.generate_content(model=model, contents=contents, config=config)
        except self._api_error as e:
            raise map_api_error(e) from e

    @retry(
        retry=retry_if_exception_type(RateLimited),
        stop=stop_after_attempt(2),
        wait=wait_exponential(multiplier=1, min=2, max=8),
        reraise=True,
    )
    async def generate_text(self, *, system: str, prompt: str, search: bool = True) -> str:
        """Plain text from the research model, optionally grounded with Google Search."""
        t = self._types
        config = t.GenerateContentConfig(
            system_instruction=system,
            tools=[t.Tool(google_search=t.GoogleSearch())] if search else None,
        )
        resp = await self._generate(model=self.research_model, contents=prompt, config=config)
        return extract_text(resp)

    async def generate_image(self, prompt: str) -> Optional[str]:
        """
        One image as a data URI, or None when the model answered without an
        image part. Region / model restrictions raise UpstreamUnavailable.
        """
        t = self._types
        config = t.GenerateContentConfig(response_modalities=["IMAGE", "TEXT"], temperature=1.0)
        resp = await self._generate(
            model=self.image_model,
            contents=f"Generate this image: {prompt}",
            config=config,
        )
        inline = extract_inline(resp)
        if inline is None:
            return None
        return to_data_uri(getattr(inline, "mime_type", None), inline.data)

    async def generate_speech(self, text: str) -> Optional[bytes]:
        """Raw PCM (24 kHz, mono, 16-bit LE) for the narration text, or None."""
        t = self._types
        config = t.GenerateContentConfig(
            response_modalities=["AUDIO"],
            speech_config=t.SpeechConfig(
                voice_config=t.VoiceConfig(
                    prebuilt_voice_config=t.PrebuiltVoiceConfig(voice_name=self.tts_voice),
                )
            ),
        )
        resp = await self._generate(model=self.tts_model, contents=text, config=config)
        inline = extract_inline(resp)
        if inline is None:
            return None
        pcm = _as_bytes(inline.data)
        logger.debug("TTS: audio generated, %d bytes", len(pcm))
        return pcm
