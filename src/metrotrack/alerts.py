"""Movement alerts for watched trains and the blinking highlight that flags them."""

import logging
import threading
from typing import Callable, List, Optional, Set

from .models import ScenePoint, TrainAlert

logger = logging.getLogger(__name__)

# Blink settings
BLINK_TTL = 10.0  # seconds after the last trigger
BLINK_PERIOD = 1.0  # seconds between intensity toggles
BLINK_HIGH = 1.0
BLINK_LOW = 0.2
BASELINE_INTENSITY = BLINK_HIGH

HighlightListener = Callable[[str, float], None]
AlertListener = Callable[[TrainAlert], None]


def _notify(listeners: list, *args) -> None:
    for callback in list(listeners):
        try:
            callback(*args)
        except Exception as e:
            logger.error(f"Listener {callback!r} failed: {e}", exc_info=True)


class BlinkController:
    """
    Single system-wide blink. States are idle or blinking(train_id, expires_at).

    Every trigger bumps the generation; a tick carrying an older generation
    comes from a cancelled schedule and is ignored. Effects are delivered
    while the state lock is held, so no tick can reach listeners after a
    cancel has restored the baseline.
    """

    def __init__(self, ttl: float = BLINK_TTL, high: float = BLINK_HIGH, low: float = BLINK_LOW):
        self.ttl = ttl
        self.high = high
        self.low = low
        self._target: Optional[str] = None
        self._expires_at: Optional[float] = None
        self._intensity = high
        self._generation = 0
        self._lock = threading.RLock()
        self._listeners: List[HighlightListener] = []

    def add_listener(self, callback: HighlightListener) -> None:
        """Register a callback receiving (train_id, intensity) effects."""
        self._listeners.append(callback)

    @property
    def target(self) -> Optional[str]:
        return self._target

    @property
    def expires_at(self) -> Optional[float]:
        return self._expires_at

    @property
    def intensity(self) -> float:
        return self._intensity

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def is_blinking(self) -> bool:
        return self._target is not None

    def trigger(self, train_id: str, now: float) -> int:
        """Make train_id the only blinking train until now + ttl. Returns the new generation."""
        with self._lock:
            previous = self._target
            self._generation += 1
            self._target = train_id
            self._expires_at = now + self.ttl
            self._intensity = self.high

            if previous is not None and previous != train_id:
                _notify(self._listeners, previous, BASELINE_INTENSITY)
            _notify(self._listeners, train_id, self.high)
            return self._generation

    def tick(self, now: float, generation: Optional[int] = None) -> Optional[float]:
        """
        Advance the blink: expire it or toggle the intensity.

        Returns:
            The intensity applied, or None when idle or the tick is stale.
        """
        with self._lock:
            if self._target is None:
                return None
            if generation is not None and generation != self._generation:
                logger.debug(f"Discarding stale blink tick (generation {generation})")
                return None
            train_id = self._target
            if now >= self._expires_at:
                self._clear()
                intensity = BASELINE_INTENSITY
            else:
                self._intensity = self.low if self._intensity == self.high else self.high
                intensity = self._intensity

            _notify(self._listeners, train_id, intensity)
            return intensity

    def cancel(self, train_id: str) -> bool:
        """Stop the blink if train_id is the current target."""
        with self._lock:
            if self._target != train_id:
                return False
            self._clear()
            _notify(self._listeners, train_id, BASELINE_INTENSITY)
            return True

    def _clear(self) -> None:
        self._generation += 1
        self._target = None
        self._expires_at = None
        self._intensity = BASELINE_INTENSITY


class AlertEngine:
    """Tracks watched trains and raises an alert whenever one of them moves."""

    def __init__(self, blink: Optional[BlinkController] = None):
        self.blink = blink or BlinkController()
        self._watched: Set[str] = set()
        # Guards the watch set together with the blink it starts or cancels
        self._lock = threading.RLock()
        self._listeners: List[AlertListener] = []

    def add_listener(self, callback: AlertListener) -> None:
        self._listeners.append(callback)

    def subscribe(self, train_id: str) -> None:
        with self._lock:
            self._watched.add(train_id)
        logger.info(f"Watching train {train_id}")

    def unsubscribe(self, train_id: str) -> None:
        with self._lock:
            self._watched.discard(train_id)
            self.blink.cancel(train_id)
        logger.info(f"Stopped watching train {train_id}")

    def is_subscribed(self, train_id: str) -> bool:
        with self._lock:
            return train_id in self._watched

    @property
    def subscriptions(self) -> Set[str]:
        with self._lock:
            return set(self._watched)

    def on_position(self, train_id: str, previous: Optional[ScenePoint],
                    current: ScenePoint, now: float) -> Optional[TrainAlert]:
        """
        Check a resolved position update against the train's previous one.

        Returns:
            The alert raised, or None when the train is not watched or did not move.
        """
        if previous is None:
            alert = TrainAlert(train_id=train_id)
        else:
            distance = previous.distance(current)
            if distance <= 0:
                return None
            alert = TrainAlert(train_id=train_id, distance_moved=distance)

        with self._lock:
            if train_id not in self._watched:
                return None
            self.blink.trigger(train_id, now)

        logger.info(f"{alert.title}: {alert.message}")
        _notify(self._listeners, alert)
        return alert
