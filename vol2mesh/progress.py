"""Progress reporting for long-running steps.

Every step that can take noticeable time (volume loading, surface extraction,
decimation, smoothing, mesh import/export) accepts an optional *progress*
argument implementing :class:`ProgressReporter`.  The step calls
``progress.update(stage, fraction)`` synchronously from inside its loop; the
caller decides what to do with the events.

Available reporters
-------------------
- :class:`NullProgress`: discards everything (the default).
- :class:`CallbackProgress`: forwards to a plain function.
- :class:`RecordingProgress`: stores :class:`ProgressEvent` records.
- :class:`LoggingProgress`: writes throttled ``DEBUG`` log lines.
- :class:`TqdmProgress`: one tqdm bar per stage, used by the CLI.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Protocol, runtime_checkable

from tqdm import tqdm

logger = logging.getLogger(__name__)


@runtime_checkable
class ProgressReporter(Protocol):
    """Observer notified with the fractional completion of a named stage."""

    def update(self, stage: str, fraction: float) -> None:
        ...


@dataclass(frozen=True)
class ProgressEvent:
    stage: str
    fraction: float


def _clamp(fraction: float) -> float:
    return min(max(float(fraction), 0.0), 1.0)


class NullProgress:
    """Ignore all progress updates."""

    def update(self, stage: str, fraction: float) -> None:
        pass


class CallbackProgress:
    """Forward clamped updates to ``fn(stage, fraction)``."""

    def __init__(self, fn: Callable[[str, float], None]) -> None:
        self._fn = fn

    def update(self, stage: str, fraction: float) -> None:
        self._fn(stage, _clamp(fraction))


@dataclass
class RecordingProgress:
    """Collect every update as a :class:`ProgressEvent`."""

    events: List[ProgressEvent] = field(default_factory=list)

    def update(self, stage: str, fraction: float) -> None:
        self.events.append(ProgressEvent(stage, _clamp(fraction)))

    def stages(self) -> List[str]:
        """Stage names in first-seen order."""
        seen: Dict[str, None] = {}
        for e in self.events:
            seen.setdefault(e.stage, None)
        return list(seen)

    def fractions(self, stage: str) -> List[float]:
        return [e.fraction for e in self.events if e.stage == stage]


class LoggingProgress:
    """Log progress at ``DEBUG`` level in steps of *step* (default 10 %)."""

    def __init__(self, step: float = 0.1, log: Optional[logging.Logger] = None) -> None:
        self._step = step
        self._log = log or logger
        self._last: Dict[str, float] = {}

    def update(self, stage: str, fraction: float) -> None:
        fraction = _clamp(fraction)
        last = self._last.get(stage, -1.0)
        if fraction >= 1.0 or fraction - last >= self._step:
            self._last[stage] = fraction
            self._log.debug("%s: %.1f%%", stage, fraction * 100.0)


class TqdmProgress:
    """Render one tqdm bar per stage; a new stage closes the previous bar."""

    def __init__(self, **tqdm_kwargs) -> None:
        self._kwargs = {"total": 100, "unit": "%", "leave": False, **tqdm_kwargs}
        self._stage: Optional[str] = None
        self._bar: Optional[tqdm] = None

    def update(self, stage: str, fraction: float) -> None:
        bar = self._bar
        if bar is None or stage != self._stage:
            self.close()
            bar = tqdm(desc=stage, **self._kwargs)
            self._stage = stage
            self._bar = bar
        target = int(round(_clamp(fraction) * 100))
        if target > bar.n:
            bar.update(target - bar.n)
        if fraction >= 1.0:
            self.close()

    def close(self) -> None:
        if self._bar is not None:
            self._bar.close()
        self._bar = None
        self._stage = None


def ensure_reporter(progress: Optional[ProgressReporter]) -> ProgressReporter:
    """Return *progress* or a :class:`NullProgress` when it is ``None``."""
    return NullProgress() if progress is None else progress
