"""Seconds the selected train has spent on its current circuit."""

import logging
import threading
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)

DwellListener = Callable[[str, int], None]


class DwellTimer:
    """Counts up once per tick while a train is selected; resets when it changes circuit."""

    def __init__(self):
        self._train_id: Optional[str] = None
        self._last_circuit_id: Optional[int] = None
        self._seconds: Optional[int] = None
        self._generation = 0
        self._lock = threading.RLock()
        self._listeners: List[DwellListener] = []

    def add_listener(self, callback: DwellListener) -> None:
        """Register a callback receiving (train_id, seconds_since_moved)."""
        self._listeners.append(callback)

    @property
    def selected_train_id(self) -> Optional[str]:
        return self._train_id

    @property
    def last_circuit_id(self) -> Optional[int]:
        return self._last_circuit_id

    @property
    def seconds_since_moved(self) -> Optional[int]:
        return self._seconds

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def is_selected(self) -> bool:
        return self._train_id is not None

    def select(self, train_id: str, initial_circuit_id: int, initial_seconds: int = 0) -> int:
        """Start timing a train. Returns the selection's generation."""
        with self._lock:
            self._generation += 1
            self._train_id = train_id
            self._last_circuit_id = initial_circuit_id
            self._seconds = int(initial_seconds or 0)
            generation = self._generation
        logger.debug(f"Selected train {train_id} on circuit {initial_circuit_id}")
        return generation

    def deselect(self) -> None:
        with self._lock:
            self._generation += 1
            self._train_id = None
            self._last_circuit_id = None
            self._seconds = None

    def tick(self, generation: Optional[int] = None) -> Optional[int]:
        """
        Count one second for the selected train.

        Returns:
            The new counter, or None when nothing is selected or the tick is stale.
        """
        with self._lock:
            if self._train_id is None:
                return None
            if generation is not None and generation != self._generation:
                logger.debug(f"Discarding stale dwell tick (generation {generation})")
                return None
            self._seconds += 1
            self._notify(self._train_id, self._seconds)
            return self._seconds

    def observe(self, train_id: str, circuit_id: int) -> bool:
        """
        Feed a new sample for a train.

        Returns:
            True if the sample moved the selected train to another circuit.
        """
        with self._lock:
            if self._train_id is None or train_id != self._train_id:
                return False
            if circuit_id == self._last_circuit_id:
                return False
            self._last_circuit_id = circuit_id
            self._seconds = 0
            self._notify(train_id, 0)
            return True

    def _notify(self, train_id: str, seconds: int) -> None:
        # Called with the lock held so a deselect never precedes a late update
        for callback in list(self._listeners):
            try:
                callback(train_id, seconds)
            except Exception as e:
                logger.error(f"Dwell listener {callback!r} failed: {e}", exc_info=True)
