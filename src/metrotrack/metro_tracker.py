"""Main MetroTrack pipeline class."""

import logging
import time
from collections import Counter
from typing import Callable, Dict, Optional

from .alerts import BLINK_PERIOD, AlertEngine
from .dwell import DwellTimer
from .filters import LineFilter
from .interpolator import CurveGeometry, PositionInterpolator, UnresolvablePosition, UnresolvableReason
from .models import LineCode, ScenePoint, TelemetryEvent, Topology, TrackCount
from .scheduler import PeriodicTask
from .train_tracker import TrainStateTracker

logger = logging.getLogger(__name__)

DWELL_PERIOD = 1.0  # seconds


class MetroTracker:
    """
    Turns the live telemetry stream into train positions and per-train state.

    This class wires together:
    - position interpolation against the static topology
    - the live train table and occupancy counts
    - movement alerts and the blinking highlight for watched trains
    - the dwell counter of the selected train
    - the line filter for the upstream stream subscription
    """

    def __init__(self, topology: Topology, curves: Optional[CurveGeometry] = None,
                 clock: Callable[[], float] = time.monotonic):
        """
        Initialize the tracker.

        Args:
            topology: Built topology (see TopologyBuilder).
            curves: Optional nearest-point-on-curve capability used for snapping.
            clock: Time source, in seconds, for updates and blink expiry.
        """
        self.topology = topology
        self.clock = clock
        self.interpolator = PositionInterpolator(topology, curves)
        self.trains = TrainStateTracker()
        self.alerts = AlertEngine()
        self.dwell = DwellTimer()
        self.line_filter = LineFilter()
        self.skipped: Counter = Counter()

        self._blink_task: Optional[PeriodicTask] = None
        self._dwell_task: Optional[PeriodicTask] = None
        self._running = False

    @staticmethod
    def parse_message(attributes: dict) -> Optional[TelemetryEvent]:
        """
        Read a telemetry event from stream message attributes.

        Args:
            attributes: {"TrainId", "LineCode", "DirectionNum", "CircuitId", "SecondsAtLocation"}

        Returns:
            TelemetryEvent, or None if the message does not name a train on a known route.
        """
        if not attributes or not attributes.get("LineCode"):
            return None
        train_id = attributes.get("TrainId")
        if train_id is None or str(train_id).strip() == "":
            return None

        line_code = LineCode.parse(attributes["LineCode"])
        if line_code is None:
            return None

        try:
            direction = int(attributes.get("DirectionNum"))
            circuit_id = int(attributes.get("CircuitId"))
            seconds = int(attributes.get("SecondsAtLocation") or 0)
        except (TypeError, ValueError):
            return None
        if direction not in (1, 2):
            return None

        return TelemetryEvent(
            train_id=str(train_id),
            line_code=line_code,
            direction=direction,
            circuit_id=circuit_id,
            seconds_at_location=seconds,
        )

    def handle_message(self, attributes: dict, now: Optional[float] = None) -> Optional[ScenePoint]:
        """Parse and process one stream message. Unknown routes are dropped."""
        event = self.parse_message(attributes)
        if event is None:
            self.skipped[UnresolvableReason.UNKNOWN_ROUTE.value] += 1
            logger.debug(f"Dropping message without a known route: {attributes}")
            return None
        return self.process(event, now)

    def process(self, event: TelemetryEvent, now: Optional[float] = None) -> Optional[ScenePoint]:
        """
        Apply one telemetry event.

        Returns:
            The train's new position, or None if the event was skipped. A
            skipped event leaves the train's last known state untouched.
        """
        if not self.line_filter.is_active(event.line_code):
            self.skipped["filtered"] += 1
            return None

        now = self.clock() if now is None else now
        self.dwell.observe(event.train_id, event.circuit_id)

        try:
            position = self.interpolator.position(event)
        except UnresolvablePosition as e:
            self.skipped[e.reason.value] += 1
            logger.debug(f"Train {event.train_id}: {e}")
            return None

        previous = self.trains.update(event, position, now)
        alert = self.alerts.on_position(
            event.train_id, previous.position if previous else None, position, now
        )
        if alert is not None and self._running:
            self._restart_blink_task()
        return position

    def subscribe(self, train_id: str) -> None:
        self.alerts.subscribe(train_id)

    def unsubscribe(self, train_id: str) -> None:
        self.alerts.unsubscribe(train_id)

    def select_train(self, train_id: str) -> None:
        """
        Start the dwell counter for a train, seeded from its latest state.

        Raises:
            ValueError: If the train has no known state.
        """
        state = self.trains.get(train_id)
        if state is None:
            raise ValueError(f"Train {train_id} not found")
        if self.dwell.selected_train_id == train_id:
            return

        generation = self.dwell.select(train_id, state.circuit_id, state.seconds_at_location)
        if self._running:
            self._replace_dwell_task(generation)

    def deselect_train(self) -> None:
        self.dwell.deselect()
        if self._dwell_task is not None:
            self._dwell_task.cancel()
            self._dwell_task = None

    def occupancy_counts(self, line_code: LineCode) -> TrackCount:
        return self.trains.occupancy_counts(line_code)

    def all_occupancy_counts(self) -> Dict[LineCode, TrackCount]:
        return {line_code: self.trains.occupancy_counts(line_code) for line_code in LineCode}

    def set_line_visible(self, line_code: LineCode, show: bool) -> str:
        """
        Show or hide a line's trains.

        Hiding a line also drops its trains from the live table.

        Returns:
            The new stream filter clause.
        """
        if show:
            return self.line_filter.show(line_code)
        self.trains.remove_line(line_code)
        return self.line_filter.hide(line_code)

    def tick(self, now: Optional[float] = None) -> None:
        """
        Advance the blink and dwell timers by one period.

        For callers driving the timers themselves. Does nothing while the
        background tasks started by start() are running.
        """
        if self._running:
            logger.debug("Ignoring manual tick while background timers are running")
            return
        now = self.clock() if now is None else now
        self.alerts.blink.tick(now)
        self.dwell.tick()

    def start(self) -> None:
        """Run the blink and dwell timers on background tasks."""
        if self._running:
            return
        self._running = True
        self._restart_blink_task()
        if self.dwell.is_selected:
            self._replace_dwell_task(self.dwell.generation)
        logger.info("Started timers")

    def stop(self) -> None:
        """Cancel the background timers."""
        self._running = False
        for task in (self._blink_task, self._dwell_task):
            if task is not None:
                task.cancel()
        self._blink_task = None
        self._dwell_task = None
        logger.info("Stopped timers")

    def _restart_blink_task(self) -> None:
        if self._blink_task is not None:
            self._blink_task.cancel()
        blink = self.alerts.blink
        generation = blink.generation
        self._blink_task = PeriodicTask(
            BLINK_PERIOD, lambda: blink.tick(self.clock(), generation), name="blink"
        )
        self._blink_task.start()

    def _replace_dwell_task(self, generation: int) -> None:
        if self._dwell_task is not None:
            self._dwell_task.cancel()
        self._dwell_task = PeriodicTask(
            DWELL_PERIOD, lambda: self.dwell.tick(generation), name="dwell"
        )
        self._dwell_task.start()
