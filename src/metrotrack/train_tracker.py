"""Live table of train positions."""

import logging
import threading
from typing import Dict, List, Optional

from .models import LineCode, ScenePoint, TelemetryEvent, TrackCount, TrainState

logger = logging.getLogger(__name__)


class TrainStateTracker:
    """
    Owns the latest state of every train seen on the feed.

    Entries are created on a train's first resolved position and overwritten
    on each later one. Nothing here expires trains; callers that want a
    removal policy use remove() or remove_line().
    """

    def __init__(self):
        self._states: Dict[str, TrainState] = {}
        self._lock = threading.RLock()

    def update(self, event: TelemetryEvent, position: ScenePoint, now: float) -> Optional[TrainState]:
        """
        Create or overwrite a train's state.

        Args:
            event: Telemetry the position was derived from.
            position: Resolved scene position.
            now: Update time.

        Returns:
            The previous state, or None if this is the train's first position.
        """
        state = TrainState(
            train_id=event.train_id,
            line_code=event.line_code,
            direction=event.direction,
            circuit_id=event.circuit_id,
            seconds_at_location=event.seconds_at_location,
            position=position,
            updated_at=now,
        )
        with self._lock:
            previous = self._states.get(event.train_id)
            self._states[event.train_id] = state
        return previous

    def get(self, train_id: str) -> Optional[TrainState]:
        with self._lock:
            return self._states.get(train_id)

    def snapshot(self) -> List[TrainState]:
        """Consistent copy of all current states."""
        with self._lock:
            return list(self._states.values())

    def occupancy_counts(self, line_code: LineCode) -> TrackCount:
        """Count trains on each track of a line, recomputed from scratch."""
        count = TrackCount()
        for state in self.snapshot():
            if state.line_code != line_code:
                continue
            if state.direction == 1:
                count.track1 += 1
            elif state.direction == 2:
                count.track2 += 1
        return count

    def remove(self, train_id: str) -> bool:
        with self._lock:
            return self._states.pop(train_id, None) is not None

    def remove_line(self, line_code: LineCode) -> int:
        """Drop every train on a line. Returns how many were removed."""
        with self._lock:
            ids = [tid for tid, s in self._states.items() if s.line_code == line_code]
            for train_id in ids:
                del self._states[train_id]
        if ids:
            logger.info(f"Removed {len(ids)} trains on line {line_code.value}")
        return len(ids)

    def __len__(self) -> int:
        with self._lock:
            return len(self._states)

    def __contains__(self, train_id: str) -> bool:
        with self._lock:
            return train_id in self._states
