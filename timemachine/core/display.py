# core/display.py
from __future__ import annotations

import logging
import textwrap
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Protocol

from timemachine.core.schemas import FactRecord

logger = logging.getLogger(__name__)


@dataclass
class Slide:
    """Visual state of one fact: all its images, exactly one visible."""

    fact_id: int
    text: str
    images: List[str] = field(default_factory=list)
    visible: int = 0

    @classmethod
    def for_fact(cls, fact: FactRecord) -> "Slide":
        return cls(fact_id=fact.id, text=fact.fact, images=fact.present_images)

    @property
    def placeholder(self) -> bool:
        return not self.images

    def opacity(self, index: int) -> float:
        return 1.0 if index == self.visible else 0.0


class Display(Protocol):
    def build_slides(self, slides: List[Slide]) -> None: ...

    def activate(self, fact_id: int) -> None: ...

    def crossfade(self, fact_id: int, from_index: int, to_index: int) -> None: ...

    def deactivate(self, fact_id: int) -> None: ...

    def show_end_screen(self) -> None: ...

    def teardown(self) -> None: ...


def _short(handle: str) -> str:
    if handle.startswith("data:"):
        return handle.split(";", 1)[0] + " (generated)"
    return handle


class ConsoleDisplay:
    """Terminal rendition of the slideshow overlay."""

    def __init__(self, write: Optional[Callable[[str], None]] = None, width: int = 78):
        self.write = write or print
        self.width = width
        self._slides: Dict[int, Slide] = {}

    def build_slides(self, slides: List[Slide]) -> None:
        self._slides = {s.fact_id: s for s in slides}
        self.write("=" * self.width)

    def activate(self, fact_id: int) -> None:
        s = self._slides.get(fact_id)
        if s is None:
            return
        self.write(f"\n[{fact_id}] " + textwrap.fill(s.text, self.width - 4, subsequent_indent="    "))
        if s.placeholder:
            self.write("    image: not available")
        else:
            self.write(f"    image 1/{len(s.images)}: {_short(s.images[0])}")

    def crossfade(self, fact_id: int, from_index: int, to_index: int) -> None:
        s = self._slides.get(fact_id)
        if s is None or not s.images:
            return
        self.write(f"    image {to_index + 1}/{len(s.images)}: {_short(s.images[to_index])}")

    def deactivate(self, fact_id: int) -> None:
        logger.debug("Display: slide %d inactive", fact_id)

    def show_end_screen(self) -> None:
        self.write("\n" + "=" * self.width)
        self.write("End of the journey. Replay or exit.")

    def teardown(self) -> None:
        self._slides = {}
