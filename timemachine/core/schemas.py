# core/schemas.py
from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, conint, constr


NarrationStatus = Literal["pending", "speaking", "done"]
ImageStatus = Literal["pending", "present", "unavailable"]


class ImageSlot(BaseModel):
    """One displayable image: a data URI / remote URL, or an explicit "no image"."""

    model_config = ConfigDict(frozen=True)

    status: Literal["present", "unavailable"]
    handle: Optional[str] = None

    @classmethod
    def present(cls, handle: str) -> "ImageSlot":
        return cls(status="present", handle=handle)

    @classmethod
    def unavailable(cls) -> "ImageSlot":
        return cls(status="unavailable")

    @property
    def is_present(self) -> bool:
        return self.status == "present" and bool(self.handle)


class FactRecord(BaseModel):
    # idx is 1-based and equals list position + 1 at creation
    id: conint(ge=1) = Field(frozen=True)

    # narration text in the spoken language (German)
    fact: constr(min_length=1) = Field(frozen=True)

    # English prompt for the image model
    image_prompt: constr(min_length=1) = Field(frozen=True)

    # None until the media stage settles the image track
    images: Optional[List[ImageSlot]] = None

    # raw PCM, mono 16-bit little endian
    audio: Optional[bytes] = None

    narration_status: NarrationStatus = "pending"

    _audio_settled: bool = PrivateAttr(default=False)

    def settle_images(self, slots: List[ImageSlot]) -> None:
        if self.images is not None:
            raise RuntimeError(f"images of fact {self.id} are already settled")
        self.images = list(slots) or [ImageSlot.unavailable()]

    def settle_audio(self, pcm: Optional[bytes]) -> None:
        if self._audio_settled:
            raise RuntimeError(f"audio of fact {self.id} is already settled")
        self._audio_settled = True
        self.audio = pcm or None

    @property
    def audio_settled(self) -> bool:
        return self._audio_settled

    @property
    def image_status(self) -> ImageStatus:
        if self.images is None:
            return "pending"
        return "present" if self.present_images else "unavailable"

    @property
    def present_images(self) -> List[str]:
        return [s.handle for s in (self.images or []) if s.is_present]


class MediaProgress(BaseModel):
    images_done: conint(ge=0) = 0
    audio_done: conint(ge=0) = 0
    total: conint(ge=0) = 0

    @property
    def complete(self) -> bool:
        return self.images_done >= self.total and self.audio_done >= self.total
