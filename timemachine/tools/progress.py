from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Tuple

ProgressCB = Callable[[float, str], None]

# research is one call, the media fan-out dominates wall time
DEFAULT_WEIGHTS = {"research": 0.25, "images": 0.45, "audio": 0.30}
DEFAULT_EXPECTED_S = {"research": 8.0, "images": 25.0, "audio": 12.0}


@dataclass
class ProgressTracker:
    """Folds per-stage fractions into one 0..1 value for a progress bar."""

    cb: Optional[ProgressCB] = None
    weights: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_WEIGHTS))
    expected_s: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_EXPECTED_S))

    def __post_init__(self) -> None:
        self._t0 = time.monotonic()
        self._stage_start: Dict[str, float] = {}
        self._frac: Dict[str, float] = {}

    def _emit(self, msg: str) -> None:
        if self.cb:
            self.cb(max(0.0, min(1.0, self.overall())), msg)

    def start(self, stage: str, msg: Optional[str] = None) -> None:
        self._stage_start[stage] = time.monotonic()
        self._frac[stage] = 0.0
        self._emit(msg or f"{stage}…")

    def update(self, stage: str, done: int, total: int, label: str) -> None:
        frac = done / total if total else 1.0
        self._frac[stage] = max(self._frac.get(stage, 0.0), frac)
        eta_s, _ = self.eta()
        self._emit(f"{label}: {done}/{total}  ETA ~{eta_s}s")

    def done(self, stage: str, msg: Optional[str] = None) -> None:
        self._frac[stage] = 1.0
        elapsed = time.monotonic() - self._stage_start.get(stage, self._t0)
        self._emit(msg or f"{stage} done ({int(elapsed)}s)")

    def overall(self) -> float:
        total_w = sum(self.weights.values()) or 1.0
        return sum(w * self._frac.get(s, 0.0) for s, w in self.weights.items()) / total_w

    def eta(self) -> Tuple[int, int]:
        """(eta_seconds, elapsed_seconds) from the expected stage durations."""
        elapsed = int(time.monotonic() - self._t0)
        remaining = sum(exp * (1.0 - self._frac.get(s, 0.0)) for s, exp in self.expected_s.items())
        return int(remaining), elapsed
