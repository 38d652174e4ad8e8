"""Builds the station-annotated track topology from raw station and circuit records."""

import json
import logging
import os
from types import MappingProxyType
from typing import Dict, Iterable, List, Optional

import pandas as pd
import requests

from .models import Extent, Line, LineCode, Station, Topology, Track, TrackCircuit

logger = logging.getLogger(__name__)

# Upstream REST documents
STATION_INFO_URL = "https://api.wmata.com/Rail.svc/json/jStations"
CIRCUIT_INFO_URL = "https://api.wmata.com/TrainPositions/StandardRoutes"
REQUEST_TIMEOUT = 30  # seconds

STATION_LINE_FIELDS = ("LineCode1", "LineCode2", "LineCode3", "LineCode4")
CIRCUIT_COLUMNS = ["LineCode", "TrackNum", "CircuitId", "SeqNum", "StationCode"]


def flatten_standard_routes(routes: Iterable[dict]) -> List[dict]:
    """
    Convert nested standard-route documents into flat circuit records.

    Args:
        routes: Items shaped like {"LineCode", "TrackNum", "TrackCircuits": [...]}.

    Returns:
        List of {"LineCode", "TrackNum", "CircuitId", "SeqNum", "StationCode"} dicts.
    """
    records = []
    for route in routes:
        for circuit in route.get("TrackCircuits", []):
            records.append({
                "LineCode": route.get("LineCode"),
                "TrackNum": route.get("TrackNum"),
                "CircuitId": circuit.get("CircuitId"),
                "SeqNum": circuit.get("SeqNum"),
                "StationCode": circuit.get("StationCode"),
            })
    return records


def _is_missing(value) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value == ""
    return bool(pd.isna(value))


def _station_lines(row: dict) -> List[str]:
    return [str(row[f]) for f in STATION_LINE_FIELDS if f in row and not _is_missing(row[f])]


class TopologyBuilder:
    """Turns raw station and circuit records into an immutable Topology."""

    def __init__(self):
        """Initialize the builder."""
        self.topology: Optional[Topology] = None

    def load_from_url(self, api_key: Optional[str] = None) -> Topology:
        """
        Download station and circuit documents from the upstream API and build.

        Args:
            api_key: API key; falls back to the WMATA_API_KEY environment variable.
        """
        api_key = api_key or os.environ.get("WMATA_API_KEY")
        if not api_key:
            raise ValueError("An API key is required to download topology data")

        logger.info(f"Downloading station data from {STATION_INFO_URL}")
        try:
            stations = self._fetch_json(STATION_INFO_URL, {"api_key": api_key})["Stations"]
            routes = self._fetch_json(
                CIRCUIT_INFO_URL, {"api_key": api_key, "contentType": "json"}
            )["StandardRoutes"]
        except (requests.RequestException, KeyError) as e:
            logger.error(f"Failed to download topology data: {e}")
            raise

        return self.build(stations, flatten_standard_routes(routes))

    @staticmethod
    def _fetch_json(url: str, params: dict) -> dict:
        response = requests.get(url, params=params, timeout=REQUEST_TIMEOUT)
        response.raise_for_status()
        return response.json()

    def load_from_files(self, stations_path: str, routes_path: str) -> Topology:
        """
        Load raw upstream documents from local JSON files and build.

        Both files may hold either the upstream wrapper object
        ({"Stations": [...]}, {"StandardRoutes": [...]}) or a bare list.
        """
        logger.info("Loading topology data from local files")
        with open(stations_path, "r", encoding="utf-8") as f:
            stations = json.load(f)
        with open(routes_path, "r", encoding="utf-8") as f:
            routes = json.load(f)

        if isinstance(stations, dict):
            stations = stations["Stations"]
        if isinstance(routes, dict):
            routes = routes["StandardRoutes"]

        return self.build(stations, flatten_standard_routes(routes))

    def build(self, station_records: List[dict], circuit_records: List[dict]) -> Topology:
        """
        Merge station metadata into the ordered circuit sequences.

        Args:
            station_records: {"Code", "Name", "Lat", "Lon", "LineCode1".."LineCode4"} dicts.
            circuit_records: {"LineCode", "TrackNum", "CircuitId", "SeqNum", "StationCode"} dicts.

        Returns:
            The built Topology (also kept on self.topology).
        """
        stations_df = pd.DataFrame(list(station_records))
        circuits_df = pd.DataFrame(list(circuit_records), columns=CIRCUIT_COLUMNS)

        stations_by_code = self._index_stations(stations_df)
        circuits_df = self._prepare_circuits(circuits_df)

        tracks: Dict[LineCode, Dict[int, Track]] = {}
        extent = Extent.empty()
        for (line_code, track_num), group in circuits_df.groupby(["line", "TrackNum"], sort=False):
            track, track_extent = self._stamp_track(
                LineCode(line_code), int(track_num), group, stations_by_code
            )
            tracks.setdefault(line_code, {})[track.track_num] = track
            extent = extent.union(track_extent)

        lines = {}
        for line_code in LineCode:
            if line_code not in tracks:
                continue
            by_num = tracks[line_code]
            lines[line_code] = Line(
                code=line_code,
                track1=by_num.get(1, Track(line_code, 1)),
                track2=by_num.get(2, Track(line_code, 2)),
            )
            if len(by_num) < 2:
                logger.warning(f"Line {line_code.value} has only {len(by_num)} track(s)")

        self.topology = Topology(
            lines=MappingProxyType(lines),
            stations=tuple(self._dedupe_stations(stations_df)),
            extent=None if extent.is_empty else extent,
        )
        logger.info(
            f"Built topology with {len(lines)} lines and {len(self.topology.stations)} stations"
        )
        return self.topology

    @staticmethod
    def _index_stations(stations_df: pd.DataFrame) -> Dict[str, dict]:
        """Map station code to its first raw record."""
        index: Dict[str, dict] = {}
        if stations_df.empty:
            return index
        for row in stations_df.to_dict("records"):
            code = row.get("Code")
            if _is_missing(code):
                continue
            index.setdefault(str(code), row)
        return index

    @staticmethod
    def _prepare_circuits(circuits_df: pd.DataFrame) -> pd.DataFrame:
        """Drop circuits of unknown routes and order each track by sequence number."""
        circuits_df = circuits_df.copy()
        circuits_df["line"] = circuits_df["LineCode"].map(LineCode.parse)

        unknown = circuits_df["line"].isna() | ~circuits_df["TrackNum"].isin([1, 2])
        if unknown.any():
            skipped = sorted({str(v) for v in circuits_df.loc[unknown, "LineCode"]})
            logger.warning(f"Skipping {int(unknown.sum())} circuits on unknown routes: {skipped}")
            circuits_df = circuits_df[~unknown]

        circuits_df = circuits_df.sort_values(["TrackNum", "SeqNum"], kind="mergesort")
        duplicated = circuits_df.duplicated(subset=["line", "TrackNum", "SeqNum"], keep="first")
        if duplicated.any():
            logger.warning(f"Dropping {int(duplicated.sum())} circuits with duplicate sequence numbers")
            circuits_df = circuits_df[~duplicated]
        return circuits_df

    @staticmethod
    def _stamp_track(line_code: LineCode, track_num: int, group: pd.DataFrame,
                     stations_by_code: Dict[str, dict]):
        """Stamp circuits that coincide with a station and compute the track extent."""
        circuits = []
        extent = Extent.empty()
        circuit_counter = 0

        for row in group.itertuples(index=False):
            station_code = None if _is_missing(row.StationCode) else str(row.StationCode)
            station = stations_by_code.get(station_code) if station_code else None

            if station is None:
                circuits.append(TrackCircuit(
                    circuit_id=int(row.CircuitId),
                    seq_num=int(row.SeqNum),
                    station_code=station_code,
                ))
                circuit_counter += 1
                continue

            lat, lon = float(station["Lat"]), float(station["Lon"])
            extent = extent.include(lon, lat)
            circuits.append(TrackCircuit(
                circuit_id=int(row.CircuitId),
                seq_num=int(row.SeqNum),
                station_code=station_code,
                name=station["Name"],
                latitude=lat,
                longitude=lon,
                num_previous_circuits=circuit_counter,
            ))
            circuit_counter = 0

        return Track(line_code, track_num, tuple(circuits)), extent

    @staticmethod
    def _dedupe_stations(stations_df: pd.DataFrame) -> List[Station]:
        """Collapse raw records sharing a name into one station with merged line codes."""
        if stations_df.empty:
            return []

        first_rows: Dict[str, dict] = {}
        merged_lines: Dict[str, List[str]] = {}
        for row in stations_df.to_dict("records"):
            name = row.get("Name")
            first_rows.setdefault(name, row)
            lines = merged_lines.setdefault(name, [])
            for line in _station_lines(row):
                if line not in lines:
                    lines.append(line)

        return [
            Station(
                code=str(row.get("Code")),
                name=name,
                latitude=float(row["Lat"]),
                longitude=float(row["Lon"]),
                lines=tuple(merged_lines[name]),
            )
            for name, row in first_rows.items()
        ]


def topology_to_document(topology: Topology) -> dict:
    """Render a topology as a JSON-serialisable document."""
    lines = {}
    for code, line in topology.lines.items():
        lines[code.value] = {
            "track1": _track_to_document(line.track1),
            "track2": _track_to_document(line.track2),
        }
    extent = topology.extent
    return {
        "lines": lines,
        "extent": None if extent is None else {
            "xmin": extent.xmin, "ymin": extent.ymin, "xmax": extent.xmax, "ymax": extent.ymax,
        },
        "stations": [
            {"Code": s.code, "Name": s.name, "Lat": s.latitude, "Lon": s.longitude, "lines": list(s.lines)}
            for s in topology.stations
        ],
    }


def _track_to_document(track: Track) -> dict:
    circuits = []
    for c in track.circuits:
        item = {"SeqNum": c.seq_num, "CircuitId": c.circuit_id, "StationCode": c.station_code}
        if c.is_station:
            item.update({
                "name": c.name,
                "latitude": c.latitude,
                "longitude": c.longitude,
                "numPreviousCircuits": c.num_previous_circuits,
            })
        circuits.append(item)
    return {"LineCode": track.line_code.value, "TrackNum": track.track_num, "TrackCircuits": circuits}


def topology_from_document(document: dict) -> Topology:
    """Rebuild a Topology from a document produced by topology_to_document."""
    lines = {}
    for code, item in document.get("lines", {}).items():
        line_code = LineCode.parse(code)
        if line_code is None:
            logger.warning(f"Ignoring unknown line {code} in topology document")
            continue
        lines[line_code] = Line(
            code=line_code,
            track1=_track_from_document(line_code, 1, item.get("track1")),
            track2=_track_from_document(line_code, 2, item.get("track2")),
        )

    extent = document.get("extent")
    return Topology(
        lines=MappingProxyType(lines),
        stations=tuple(
            Station(code=s["Code"], name=s["Name"], latitude=s["Lat"], longitude=s["Lon"], lines=tuple(s["lines"]))
            for s in document.get("stations", [])
        ),
        extent=None if not extent else Extent(extent["xmin"], extent["ymin"], extent["xmax"], extent["ymax"]),
    )


def _track_from_document(line_code: LineCode, track_num: int, item: Optional[dict]) -> Track:
    if not item:
        return Track(line_code, track_num)
    circuits = tuple(
        TrackCircuit(
            circuit_id=c["CircuitId"],
            seq_num=c["SeqNum"],
            station_code=c.get("StationCode"),
            name=c.get("name"),
            latitude=c.get("latitude"),
            longitude=c.get("longitude"),
            num_previous_circuits=c.get("numPreviousCircuits"),
        )
        for c in item.get("TrackCircuits", [])
    )
    return Track(line_code, track_num, circuits)


def save_topology(topology: Topology, path: str) -> None:
    """Write the topology document to a JSON file."""
    with open(path, "w", encoding="utf-8") as f:
        json.dump(topology_to_document(topology), f, indent=2)
    logger.info(f"Saved topology to {path}")


def load_topology(path: str) -> Topology:
    """Read a topology document written by save_topology."""
    with open(path, "r", encoding="utf-8") as f:
        topology = topology_from_document(json.load(f))
    logger.info(f"Loaded topology with {len(topology.lines)} lines from {path}")
    return topology
