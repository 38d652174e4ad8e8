"""Data models for MetroTrack."""

import math
from dataclasses import dataclass
from enum import Enum
from typing import List, Mapping, Optional, Tuple

# Web Mercator, the spatial reference every ScenePoint is expressed in
WEB_MERCATOR_WKID = 102100


class LineCode(str, Enum):
    """Closed set of rail lines known to the tracker."""
    RD = "RD"
    OR = "OR"
    YL = "YL"
    GR = "GR"
    BL = "BL"
    SV = "SV"
    YLRP = "YLRP"

    @property
    def display_name(self) -> str:
        return LINE_NAMES[self]

    @classmethod
    def parse(cls, value) -> Optional["LineCode"]:
        """Return the LineCode for a raw value, or None if it is not a known line."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            return None


LINE_NAMES = {
    LineCode.RD: "RED",
    LineCode.OR: "ORANGE",
    LineCode.YL: "YELLOW",
    LineCode.GR: "GREEN",
    LineCode.BL: "BLUE",
    LineCode.SV: "SILVER",
    LineCode.YLRP: "YELLOW-RAPID",
}


@dataclass(frozen=True)
class Station:
    """Represents a rail station."""
    code: str
    name: str
    latitude: float
    longitude: float
    lines: Tuple[str, ...] = ()  # Line codes serving this station


@dataclass(frozen=True)
class TrackCircuit:
    """A fixed occupancy-detection segment of a track."""
    circuit_id: int
    seq_num: int
    station_code: Optional[str] = None
    # Stamp, set only when the circuit coincides with a known station
    name: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    num_previous_circuits: Optional[int] = None  # Circuits since the previous stamped station

    @property
    def is_station(self) -> bool:
        return self.name is not None


@dataclass(frozen=True)
class Track:
    """Ordered circuits for one direction of travel on a line."""
    line_code: LineCode
    track_num: int
    circuits: Tuple[TrackCircuit, ...] = ()

    @property
    def stations(self) -> List[TrackCircuit]:
        return [c for c in self.circuits if c.is_station]


@dataclass(frozen=True)
class Line:
    """Both tracks of a line."""
    code: LineCode
    track1: Track
    track2: Track

    def track(self, direction: int) -> Track:
        return self.track1 if direction == 1 else self.track2


@dataclass(frozen=True)
class Extent:
    """Axis-aligned geographic bounding box (x = longitude, y = latitude)."""
    xmin: float
    ymin: float
    xmax: float
    ymax: float

    @classmethod
    def empty(cls) -> "Extent":
        return cls(math.inf, math.inf, -math.inf, -math.inf)

    @property
    def is_empty(self) -> bool:
        return self.xmin > self.xmax or self.ymin > self.ymax

    def include(self, x: float, y: float) -> "Extent":
        return Extent(
            min(self.xmin, x),
            min(self.ymin, y),
            max(self.xmax, x),
            max(self.ymax, y),
        )

    def union(self, other: "Extent") -> "Extent":
        return Extent(
            min(self.xmin, other.xmin),
            min(self.ymin, other.ymin),
            max(self.xmax, other.xmax),
            max(self.ymax, other.ymax),
        )


@dataclass(frozen=True)
class Topology:
    """Station-annotated track topology. Read-only once built."""
    lines: Mapping[LineCode, Line]
    stations: Tuple[Station, ...]
    extent: Optional[Extent]

    def track(self, line_code: LineCode, direction: int) -> Optional[Track]:
        line = self.lines.get(line_code)
        if line is None or direction not in (1, 2):
            return None
        return line.track(direction)

    def stations_for_line(self, line_code: LineCode) -> List[Station]:
        return [s for s in self.stations if line_code.value in s.lines]


@dataclass(frozen=True)
class TelemetryEvent:
    """A real-time report of the circuit a train occupies."""
    train_id: str
    line_code: LineCode
    direction: int  # 1 or 2
    circuit_id: int
    seconds_at_location: int = 0


@dataclass(frozen=True)
class ScenePoint:
    """A 3-D point in Web Mercator."""
    x: float
    y: float
    z: float = 0.0
    wkid: int = WEB_MERCATOR_WKID

    def distance(self, other: "ScenePoint") -> float:
        """Planar distance in map units (metres)."""
        return math.hypot(other.x - self.x, other.y - self.y)


@dataclass
class TrainState:
    """Latest known state of a train."""
    train_id: str
    line_code: LineCode
    direction: int
    circuit_id: int
    seconds_at_location: int
    position: ScenePoint
    updated_at: float


@dataclass
class TrackCount:
    """Number of trains on each track of a line."""
    track1: int = 0
    track2: int = 0


@dataclass(frozen=True)
class TrainAlert:
    """Movement alert for a watched train."""
    train_id: str
    distance_moved: Optional[float] = None  # None for the first position

    @property
    def title(self) -> str:
        return f"Train #{self.train_id}"

    @property
    def message(self) -> str:
        if self.distance_moved is None:
            return "First position update."
        return f"Distance changed: {self.distance_moved:.3f} meters."
