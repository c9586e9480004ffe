"""Step and tick timing statistics with periodic reports."""

import logging
import time
from pathlib import Path
from typing import Callable, Optional

logger = logging.getLogger(__name__)

REPORT_FILENAME = "timing-report.txt"


class TimingReporter:
    """
    Collects step/tick durations and reports throughput.

    ``maybe_report`` logs one line at most every ``report_interval_seconds``;
    ``close`` writes a summary to ``timing-report.txt`` in ``report_dir``.
    """

    def __init__(self, report_dir: str, report_interval_seconds: float = 10.0,
                 clock: Callable[[], float] = time.monotonic):
        self.report_dir = Path(report_dir)
        self.report_interval = max(1.0, float(report_interval_seconds))
        self._clock = clock

        self._start = clock()
        self._last_report = self._start

        self.step_count = 0
        self.tick_count = 0
        self.episode_count = 0

        self._total_step_seconds = 0.0
        self._total_tick_seconds = 0.0
        self._max_step_seconds = 0.0
        self._max_tick_seconds = 0.0
        self._closed = False

    def record_step(self, seconds: float) -> None:
        self.step_count += 1
        self._total_step_seconds += seconds
        self._max_step_seconds = max(self._max_step_seconds, seconds)

    def record_tick(self, seconds: float) -> None:
        self.tick_count += 1
        self._total_tick_seconds += seconds
        self._max_tick_seconds = max(self._max_tick_seconds, seconds)

    def record_episode(self) -> None:
        self.episode_count += 1

    def maybe_report(self) -> Optional[str]:
        """Log a report line if the interval has elapsed. Returns the line."""
        now = self._clock()
        if now - self._last_report < self.report_interval:
            return None
        self._last_report = now
        line = self.build_report_line(now)
        logger.info(line)
        return line

    def build_report_line(self, now: Optional[float] = None, include_elapsed: bool = False) -> str:
        now = self._clock() if now is None else now
        elapsed = max(1e-9, now - self._start)

        avg_step_ms = (self._total_step_seconds * 1000.0 / self.step_count) if self.step_count else 0.0
        avg_tick_ms = (self._total_tick_seconds * 1000.0 / self.tick_count) if self.tick_count else 0.0

        parts = []
        if include_elapsed:
            parts.append(f"Elapsed: {_format_duration(elapsed)}")
        parts.append(
            f"steps={self.step_count} (avg {avg_step_ms:.3f} ms, max "
            f"{self._max_step_seconds * 1000.0:.3f} ms, {self.step_count / elapsed:.1f} steps/s)"
        )
        parts.append(
            f"ticks={self.tick_count} (avg {avg_tick_ms:.3f} ms, max "
            f"{self._max_tick_seconds * 1000.0:.3f} ms, {self.tick_count / elapsed:.1f} ticks/s)"
        )
        parts.append(f"episodes={self.episode_count} ({self.episode_count * 60.0 / elapsed:.2f} /min)")
        return " | ".join(parts)

    def close(self) -> None:
        """Write the summary file. Idempotent; write failures are logged."""
        if self._closed:
            return
        self._closed = True

        content = "gridrl timing summary\n" + self.build_report_line(include_elapsed=True) + "\n"
        try:
            self.report_dir.mkdir(parents=True, exist_ok=True)
            (self.report_dir / REPORT_FILENAME).write_text(content)
        except OSError as e:
            logger.warning("Failed to write timing report: %s", e)


def _format_duration(seconds: float) -> str:
    total = int(seconds)
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"
