"""MetroTrack - Live rail positions interpolated from track-circuit telemetry."""

__version__ = "0.1.0"

from .models import (
    Extent,
    Line,
    LineCode,
    ScenePoint,
    Station,
    TelemetryEvent,
    Topology,
    Track,
    TrackCircuit,
    TrackCount,
    TrainAlert,
    TrainState,
)
from .topology_loader import TopologyBuilder, load_topology, save_topology
from .interpolator import PositionInterpolator, UnresolvablePosition, UnresolvableReason
from .curves import OffsetTrackCurves
from .train_tracker import TrainStateTracker
from .alerts import AlertEngine, BlinkController
from .dwell import DwellTimer
from .filters import LineFilter, build_line_filter_clause
from .metro_tracker import MetroTracker

__all__ = [
    "MetroTracker",
    "TopologyBuilder",
    "load_topology",
    "save_topology",
    "PositionInterpolator",
    "UnresolvablePosition",
    "UnresolvableReason",
    "OffsetTrackCurves",
    "TrainStateTracker",
    "AlertEngine",
    "BlinkController",
    "DwellTimer",
    "LineFilter",
    "build_line_filter_clause",
    "Extent",
    "Line",
    "LineCode",
    "ScenePoint",
    "Station",
    "TelemetryEvent",
    "Topology",
    "Track",
    "TrackCircuit",
    "TrackCount",
    "TrainAlert",
    "TrainState",
]
