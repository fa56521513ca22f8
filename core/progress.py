import re
from dataclasses import dataclass
from typing import Callable, Optional

# Duration: 00:01:02.03, start: 0.000000, bitrate: 1205 kb/s
DURATION_RE = re.compile(r"Duration:\s*(\d+):(\d{2}):(\d{2}(?:\.\d+)?)")
# frame=  123 fps= 45 q=28.0 size=    1024kB time=00:00:05.12 bitrate=...
TIME_RE = re.compile(r"time=\s*(-?\d+):(\d{2}):(\d{2}(?:\.\d+)?)")

PROGRESS_CEILING = 99.0   # 100 is reserved for a confirmed, materialized output

@dataclass(frozen=True)
class ProgressEvent:
    fraction: float        # 0.0 → 1.0 as reported by the engine, unclamped
    elapsed_time: float    # Seconds of media processed so far


def _to_seconds(hours: str, minutes: str, seconds: str) -> float:
    h = int(hours)
    sign = -1 if hours.startswith("-") else 1
    return sign * (abs(h) * 3600 + int(minutes) * 60 + float(seconds))

def parse_duration(line: str) -> Optional[float]:
    match = DURATION_RE.search(line)
    if not match:
        return None
    return _to_seconds(*match.groups())

def parse_time(line: str) -> Optional[float]:
    match = TIME_RE.search(line)
    if not match:
        return None
    return _to_seconds(*match.groups())

def clamp_progress(fraction: float) -> float:
    """Maps an engine fraction to a display percentage capped at 99."""
    return round(min(max(fraction, 0.0) * 100, PROGRESS_CEILING), 1)


class ProgressTracker:
    """
    Forwards clamped percentages to a callback, dropping anything that would
    move the bar backwards. Only finish() may report 100.
    """

    def __init__(self, callback: Callable[[float], None]):
        self._callback = callback
        self.last = 0.0
        self.finished = False

    def update(self, fraction: float) -> bool:
        if self.finished:
            return False
        percent = clamp_progress(fraction)
        if percent < self.last:
            return False
        self.last = percent
        self._callback(percent)
        return True

    def finish(self):
        self.finished = True
        self.last = 100.0
        self._callback(100.0)
