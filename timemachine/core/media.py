# core/media.py
from __future__ import annotations

import asyncio
import functools
import logging
from typing import Any, Awaitable, Callable, List, Optional, Protocol

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

from timemachine.core.config import TimeMachineConfig
from timemachine.core.schemas import FactRecord, ImageSlot, MediaProgress
from timemachine.errors import InvalidCredential, RateLimited, UpstreamUnavailable
from timemachine.tools.wikimedia_search import search_images

logger = logging.getLogger(__name__)

ProgressCB = Optional[Callable[[int, MediaProgress], None]]
ImageSearch = Callable[[str, int], List[str]]


class MediaGenerator(Protocol):
    async def generate_image(self, prompt: str) -> Optional[str]: ...

    async def generate_speech(self, text: str) -> Optional[bytes]: ...


# ----------------------------
# Retry policy
# ----------------------------
def _is_retryable(exc: BaseException) -> bool:
    # a bad key or a region block will not get better by asking again
    return not isinstance(exc, (InvalidCredential, UpstreamUnavailable, asyncio.CancelledError))


def _backoff(cfg: TimeMachineConfig) -> Callable[[RetryCallState], float]:
    def wait(rs: RetryCallState) -> float:
        exc = rs.outcome.exception() if rs.outcome else None
        if isinstance(exc, RateLimited):
            return min(cfg.backoff_base_s * 2 ** (rs.attempt_number - 1), cfg.backoff_max_s)
        return cfg.retry_delay_s

    return wait


def _log_retry(label: str) -> Callable[[RetryCallState], None]:
    def before_sleep(rs: RetryCallState) -> None:
        exc = rs.outcome.exception() if rs.outcome else None
        logger.debug("%s: attempt %d failed (%s), retrying", label, rs.attempt_number, exc)

    return before_sleep


async def call_with_retry(cfg: TimeMachineConfig, label: str, fn: Callable[..., Awaitable[Any]], *args: Any) -> Any:
    """
    One retry on rate limit (exponential delay, 2s first) and one on any other
    transient failure (flat delay). The last error is re-raised.
    """
    retrying = AsyncRetrying(
        retry=retry_if_exception(_is_retryable),
        stop=stop_after_attempt(cfg.retries + 1),
        wait=_backoff(cfg),
        before_sleep=_log_retry(label),
        reraise=True,
    )
    result = None
    async for attempt in retrying:
        with attempt:
            result = await fn(*args)
    return result


# ----------------------------
# Stage
# ----------------------------
class MediaSynthesizer:
    def __init__(
        self,
        client: MediaGenerator,
        *,
        cfg: Optional[TimeMachineConfig] = None,
        image_search: Optional[ImageSearch] = None,
    ):
        self.client = client
        self.cfg = cfg or TimeMachineConfig()
        self.image_search = image_search or functools.partial(
            search_images,
            api_url=self.cfg.wikimedia_api,
            thumb_width=self.cfg.wikimedia_thumb_width,
        )
        self._calls = 0
        self._auth_failures = 0

    # --- image track ---------------------------------------------------
    async def _try_image(self, prompt: str) -> Optional[str]:
        self._calls += 1
        try:
            return await call_with_retry(self.cfg, "Image", self.client.generate_image, prompt)
        except UpstreamUnavailable:
            logger.debug("Image: generation not available in this region")
            return None
        except InvalidCredential as e:
            self._auth_failures += 1
            logger.debug("Image: rejected key (%s)", e)
            return None
        except Exception as e:
            logger.debug("Image: generation failed: %s", e)
            return None

    async def _search(self, text: str, count: int) -> List[str]:
        try:
            return list(await asyncio.to_thread(self.image_search, text, count))[:count]
        except Exception as e:
            logger.debug("Image search failed: %s", e)
            return []

    async def images_for_fact(self, fact: FactRecord) -> List[ImageSlot]:
        """
        Waterfall: one trial call to the image model; if it works, the rest of
        the set in parallel; whatever is still missing comes from Wikimedia.
        """
        k = self.cfg.images_per_fact
        images: List[str] = []

        first = await self._try_image(fact.image_prompt)
        if first:
            images.append(first)
            rest = await asyncio.gather(*(self._try_image(fact.image_prompt) for _ in range(k - 1)))
            images.extend(r for r in rest if r)
        else:
            logger.debug("Fact %d: image model unavailable, using Wikimedia for %d images", fact.id, k)

        if len(images) < k:
            images.extend(await self._search(fact.fact or fact.image_prompt, k - len(images)))

        if not images:
            return [ImageSlot.unavailable()]
        return [ImageSlot.present(h) for h in images[:k]]

    # --- audio track ---------------------------------------------------
    async def audio_for_fact(self, fact: FactRecord) -> Optional[bytes]:
        self._calls += 1
        try:
            return await call_with_retry(self.cfg, "TTS", self.client.generate_speech, fact.fact)
        except InvalidCredential as e:
            self._auth_failures += 1
            logger.debug("TTS: rejected key (%s)", e)
        except Exception as e:
            logger.debug("TTS: failed for fact %d: %s", fact.id, e)
        return None

    # --- orchestration -------------------------------------------------
    async def synthesize(self, facts: List[FactRecord], on_progress: ProgressCB = None) -> List[FactRecord]:
        progress = MediaProgress(total=len(facts))
        self._calls = 0
        self._auth_failures = 0

        def report(fact_id: int) -> None:
            if on_progress is None:
                return
            try:
                on_progress(fact_id, progress.model_copy())
            except Exception:
                logger.exception("progress callback failed for fact %d", fact_id)

        async def image_track(fact: FactRecord) -> None:
            try:
                slots = await self.images_for_fact(fact)
            except Exception:
                logger.exception("image track crashed for fact %d", fact.id)
                slots = [ImageSlot.unavailable()]
            fact.settle_images(slots)
            progress.images_done += 1
            report(fact.id)

        async def audio_track(fact: FactRecord) -> None:
            try:
                pcm = await self.audio_for_fact(fact)
            except Exception:
                logger.exception("audio track crashed for fact %d", fact.id)
                pcm = None
            fact.settle_audio(pcm)
            progress.audio_done += 1
            report(fact.id)

        tasks = []
        for fact in facts:
            tasks.append(image_track(fact))
            tasks.append(audio_track(fact))
        await asyncio.gather(*tasks, return_exceptions=True)

        if self._calls and self._auth_failures == self._calls:
            raise InvalidCredential("Every media request was rejected: API_KEY_INVALID")
        return facts


async def synthesize(
    client: MediaGenerator,
    facts: List[FactRecord],
    on_progress: ProgressCB = None,
    *,
    cfg: Optional[TimeMachineConfig] = None,
    image_search: Optional[ImageSearch] = None,
) -> List[FactRecord]:
    return await MediaSynthesizer(client, cfg=cfg, image_search=image_search).synthesize(facts, on_progress)
