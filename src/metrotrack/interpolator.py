"""Turns circuit-occupancy telemetry into interpolated scene positions."""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Protocol, Tuple

from pyproj import Transformer

from .models import LineCode, ScenePoint, TelemetryEvent, Topology, TrackCircuit

logger = logging.getLogger(__name__)

# Vertical spacing between lines in the scene
LINE_HEIGHT_STEP = 200.0

_TO_WEB_MERCATOR = Transformer.from_crs("EPSG:4326", "EPSG:3857", always_xy=True)


class CurveGeometry(Protocol):
    """Anything that can snap a Web Mercator point onto a rendered track curve."""

    def nearest_point_on_curve(
        self, line_code: LineCode, direction: int, point: Tuple[float, float]
    ) -> Optional[Tuple[float, float]]:
        ...


class UnresolvableReason(str, Enum):
    UNKNOWN_ROUTE = "unknown_route"
    UNKNOWN_CIRCUIT = "unknown_circuit"
    TOPOLOGY_GAP = "topology_gap"
    NO_CURVE = "no_curve"


class UnresolvablePosition(ValueError):
    """Raised when a telemetry event cannot be placed on the map."""

    def __init__(self, reason: UnresolvableReason, message: str):
        super().__init__(message)
        self.reason = reason


@dataclass(frozen=True)
class RawPosition:
    """Linear interpolation between the two stations bracketing a circuit."""
    longitude: float
    latitude: float
    fraction: float
    previous_station: TrackCircuit
    next_station: TrackCircuit


def line_height(line_code: LineCode) -> float:
    """Fixed elevation band used to keep lines visually apart."""
    return LINE_HEIGHT_STEP * (list(LineCode).index(line_code) + 1)


def to_web_mercator(longitude: float, latitude: float) -> Tuple[float, float]:
    x, y = _TO_WEB_MERCATOR.transform(longitude, latitude)
    return x, y


class PositionInterpolator:
    """
    Places trains between the stations that bracket their reported circuit.

    The raw interpolated point is snapped onto the rendered curve for the
    train's line and direction, since both tracks are drawn as parallel
    offset curves rather than on the station centreline.
    """

    def __init__(self, topology: Topology, curves: Optional[CurveGeometry] = None):
        """
        Args:
            topology: Built topology, shared read-only.
            curves: Optional nearest-point capability. Without it the raw
                    projected point is used as is.
        """
        self.topology = topology
        self.curves = curves

    def raw_position(self, event: TelemetryEvent) -> RawPosition:
        """
        Interpolate longitude/latitude for an event.

        Raises:
            UnresolvablePosition: If the route or circuit is unknown, or the
                circuit is not bracketed by two stations.
        """
        track = self.topology.track(event.line_code, event.direction)
        if track is None:
            raise UnresolvablePosition(
                UnresolvableReason.UNKNOWN_ROUTE,
                f"No track {event.direction} for line {event.line_code.value}",
            )

        found = False
        sequence_id = None
        previous_station = None
        next_station = None
        for circuit in track.circuits:
            if not found and circuit.circuit_id == event.circuit_id:
                found = True
                sequence_id = circuit.seq_num
            if found and circuit.is_station:
                next_station = circuit
                break
            if circuit.is_station:
                previous_station = circuit

        if not found:
            raise UnresolvablePosition(
                UnresolvableReason.UNKNOWN_CIRCUIT,
                f"Circuit {event.circuit_id} not on {event.line_code.value} track {event.direction}",
            )
        if previous_station is None or next_station is None:
            raise UnresolvablePosition(
                UnresolvableReason.TOPOLOGY_GAP,
                f"Circuit {event.circuit_id} is not between two stations",
            )

        span = next_station.seq_num - previous_station.seq_num
        fraction = 0.0 if span == 0 else (sequence_id - previous_station.seq_num) / span

        return RawPosition(
            longitude=previous_station.longitude + fraction * (next_station.longitude - previous_station.longitude),
            latitude=previous_station.latitude + fraction * (next_station.latitude - previous_station.latitude),
            fraction=fraction,
            previous_station=previous_station,
            next_station=next_station,
        )

    def position(self, event: TelemetryEvent) -> ScenePoint:
        """
        Project and snap an event's position.

        Raises:
            UnresolvablePosition: As raw_position, or when no curve exists for
                the event's line and direction.
        """
        raw = self.raw_position(event)
        x, y = to_web_mercator(raw.longitude, raw.latitude)

        if self.curves is not None:
            snapped = self.curves.nearest_point_on_curve(event.line_code, event.direction, (x, y))
            if snapped is None:
                raise UnresolvablePosition(
                    UnresolvableReason.NO_CURVE,
                    f"No curve for {event.line_code.value} track {event.direction}",
                )
            x, y = snapped

        return ScenePoint(x=x, y=y, z=line_height(event.line_code))

    def locate(self, event: TelemetryEvent) -> Optional[ScenePoint]:
        """Return the event's scene position, or None if it cannot be placed."""
        try:
            return self.position(event)
        except UnresolvablePosition as e:
            logger.debug(f"Train {event.train_id}: {e.reason.value}: {e}")
            return None
