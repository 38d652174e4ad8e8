"""Parallel offset track curves built from the topology with shapely."""

import logging
from typing import Dict, Optional, Tuple

from shapely.geometry import LineString, Point
from shapely.ops import nearest_points

from .interpolator import to_web_mercator
from .models import LineCode, Topology

logger = logging.getLogger(__name__)

# Distance in metres between the station centreline and each track curve
TRACK_OFFSET = 175.0


class OffsetTrackCurves:
    """
    Nearest-point lookups on the two offset curves drawn for every line.

    Both curves are offsets of the polyline through track 1's stations;
    track 1 sits at -offset and track 2 at +offset.
    """

    def __init__(self, curves: Dict[Tuple[LineCode, int], object]):
        self._curves = curves

    @classmethod
    def from_topology(cls, topology: Topology, offset: float = TRACK_OFFSET) -> "OffsetTrackCurves":
        curves = {}
        for line_code, line in topology.lines.items():
            path = [to_web_mercator(c.longitude, c.latitude) for c in line.track1.stations]
            if len(path) < 2:
                logger.warning(f"Line {line_code.value} has fewer than two stations, no curve built")
                continue
            centreline = LineString(path)
            curves[(line_code, 1)] = centreline.offset_curve(-offset, join_style="mitre")
            curves[(line_code, 2)] = centreline.offset_curve(offset, join_style="mitre")
        logger.info(f"Built {len(curves)} track curves")
        return cls(curves)

    def curve(self, line_code: LineCode, direction: int):
        return self._curves.get((line_code, direction))

    def nearest_point_on_curve(
        self, line_code: LineCode, direction: int, point: Tuple[float, float]
    ) -> Optional[Tuple[float, float]]:
        curve = self.curve(line_code, direction)
        if curve is None or curve.is_empty:
            return None
        nearest, _ = nearest_points(curve, Point(point))
        return nearest.x, nearest.y
