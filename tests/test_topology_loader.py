"""Tests for TopologyBuilder."""

import json
from dataclasses import FrozenInstanceError
import os
import tempfile
import unittest
from unittest.mock import patch, MagicMock
import sys
from pathlib import Path

# Add src to path so we can import metrotrack
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from metrotrack.models import Extent, LineCode
from metrotrack.topology_loader import (
    TopologyBuilder,
    flatten_standard_routes,
    load_topology,
    save_topology,
)

STATIONS = [
    {"Code": "A01", "Name": "Alpha", "Lat": 38.90, "Lon": -77.00, "LineCode1": "RD", "LineCode2": None},
    {"Code": "A02", "Name": "Bravo", "Lat": 38.92, "Lon": -77.02, "LineCode1": "RD", "LineCode2": None},
    {"Code": "A03", "Name": "Charlie", "Lat": 38.94, "Lon": -77.06, "LineCode1": "RD", "LineCode2": None},
]

CIRCUITS = [
    {"LineCode": "RD", "TrackNum": 1, "CircuitId": 1, "SeqNum": 5, "StationCode": None},
    {"LineCode": "RD", "TrackNum": 1, "CircuitId": 2, "SeqNum": 10, "StationCode": "A01"},
    {"LineCode": "RD", "TrackNum": 1, "CircuitId": 3, "SeqNum": 12, "StationCode": None},
    {"LineCode": "RD", "TrackNum": 1, "CircuitId": 4, "SeqNum": 15, "StationCode": None},
    {"LineCode": "RD", "TrackNum": 1, "CircuitId": 5, "SeqNum": 20, "StationCode": "A02"},
    {"LineCode": "RD", "TrackNum": 1, "CircuitId": 6, "SeqNum": 25, "StationCode": None},
    {"LineCode": "RD", "TrackNum": 1, "CircuitId": 7, "SeqNum": 30, "StationCode": "A03"},
    {"LineCode": "RD", "TrackNum": 2, "CircuitId": 11, "SeqNum": 10, "StationCode": "A03"},
    {"LineCode": "RD", "TrackNum": 2, "CircuitId": 12, "SeqNum": 15, "StationCode": None},
    {"LineCode": "RD", "TrackNum": 2, "CircuitId": 13, "SeqNum": 20, "StationCode": "A02"},
]


class TestTopologyBuilder(unittest.TestCase):
    """Test building topology from raw records."""

    def setUp(self):
        self.topology = TopologyBuilder().build(STATIONS, CIRCUITS)

    def test_circuits_ordered_and_stamped(self):
        """Test that matched circuits carry the station's name and coordinates."""
        track = self.topology.lines[LineCode.RD].track1
        self.assertEqual([c.seq_num for c in track.circuits], [5, 10, 12, 15, 20, 25, 30])

        alpha = track.circuits[1]
        self.assertEqual(alpha.name, "Alpha")
        self.assertAlmostEqual(alpha.latitude, 38.90)
        self.assertAlmostEqual(alpha.longitude, -77.00)
        self.assertFalse(track.circuits[0].is_station)

    def test_circuits_sorted_by_sequence(self):
        """Test that input order does not matter."""
        topology = TopologyBuilder().build(STATIONS, list(reversed(CIRCUITS)))
        track = topology.lines[LineCode.RD].track2
        self.assertEqual([c.circuit_id for c in track.circuits], [11, 12, 13])

    def test_previous_circuit_counter(self):
        """Test counting circuits since the previous station."""
        stations = self.topology.lines[LineCode.RD].track1.stations
        self.assertEqual([s.num_previous_circuits for s in stations], [1, 2, 1])

    def test_extent(self):
        """Test bounding extent of stamped stations."""
        self.assertEqual(self.topology.extent, Extent(-77.06, 38.90, -77.00, 38.94))

    def test_extent_union_across_lines(self):
        """Test that the global extent is the union of every line's extent."""
        stations = [
            {"Code": "X1", "Name": "X One", "Lat": 1.0, "Lon": 10.0, "LineCode1": "RD"},
            {"Code": "X2", "Name": "X Two", "Lat": 3.0, "Lon": 12.0, "LineCode1": "RD"},
            {"Code": "Y1", "Name": "Y One", "Lat": -2.0, "Lon": 11.0, "LineCode1": "BL"},
            {"Code": "Y2", "Name": "Y Two", "Lat": 2.0, "Lon": 15.0, "LineCode1": "BL"},
        ]
        circuits = [
            {"LineCode": "RD", "TrackNum": 1, "CircuitId": 1, "SeqNum": 1, "StationCode": "X1"},
            {"LineCode": "RD", "TrackNum": 1, "CircuitId": 2, "SeqNum": 2, "StationCode": "X2"},
            {"LineCode": "BL", "TrackNum": 1, "CircuitId": 3, "SeqNum": 1, "StationCode": "Y1"},
            {"LineCode": "BL", "TrackNum": 1, "CircuitId": 4, "SeqNum": 2, "StationCode": "Y2"},
        ]
        topology = TopologyBuilder().build(stations, circuits)

        ex = Extent(10.0, 1.0, 12.0, 3.0)
        ey = Extent(11.0, -2.0, 15.0, 2.0)
        self.assertEqual(topology.extent, Extent(10.0, -2.0, 15.0, 3.0))
        self.assertEqual(topology.extent, ex.union(ey))
        self.assertEqual(ex.union(ey), ey.union(ex))

    def test_empty_extent_is_union_identity(self):
        """Test that an empty extent does not change a union."""
        extent = Extent(1.0, 2.0, 3.0, 4.0)
        self.assertEqual(Extent.empty().union(extent), extent)
        self.assertTrue(Extent.empty().is_empty)

    def test_station_dedupe_merges_lines(self):
        """Test that stations sharing a name collapse into the first record."""
        stations = [
            {"Code": "A01", "Name": "Metro Center", "Lat": 38.898, "Lon": -77.028, "LineCode1": "RD"},
            {"Code": "C01", "Name": "Metro Center", "Lat": 38.898, "Lon": -77.028,
             "LineCode1": "BL", "LineCode2": "RD"},
        ]
        topology = TopologyBuilder().build(stations, [])

        self.assertEqual(len(topology.stations), 1)
        station = topology.stations[0]
        self.assertEqual(station.code, "A01")
        self.assertEqual(set(station.lines), {"RD", "BL"})
        self.assertEqual(len(station.lines), 2)
        self.assertIsNone(topology.extent)

    def test_stations_are_read_only(self):
        """Test that stations in a built topology cannot be changed."""
        stations = [
            {"Code": "A01", "Name": "Metro Center", "Lat": 38.898, "Lon": -77.028, "LineCode1": "RD"},
            {"Code": "C01", "Name": "Metro Center", "Lat": 38.898, "Lon": -77.028, "LineCode1": "BL"},
        ]
        station = TopologyBuilder().build(stations, []).stations[0]

        self.assertEqual(station.lines, ("RD", "BL"))
        with self.assertRaises(FrozenInstanceError):
            station.lines = ("GR",)
        with self.assertRaises(AttributeError):
            station.lines.append("GR")

    def test_unmatched_station_code_left_unstamped(self):
        """Test that circuits referencing unknown stations are not an error."""
        circuits = [
            {"LineCode": "RD", "TrackNum": 1, "CircuitId": 1, "SeqNum": 1, "StationCode": "ZZ9"},
        ]
        topology = TopologyBuilder().build(STATIONS, circuits)
        circuit = topology.lines[LineCode.RD].track1.circuits[0]
        self.assertEqual(circuit.station_code, "ZZ9")
        self.assertFalse(circuit.is_station)

    def test_unknown_lines_skipped(self):
        """Test that circuits on routes outside the known lines are dropped."""
        circuits = CIRCUITS + [
            {"LineCode": "XX", "TrackNum": 1, "CircuitId": 99, "SeqNum": 1, "StationCode": None},
        ]
        topology = TopologyBuilder().build(STATIONS, circuits)
        self.assertEqual(list(topology.lines), [LineCode.RD])

    def test_duplicate_sequence_numbers_dropped(self):
        """Test that only the first circuit per sequence number is kept."""
        circuits = CIRCUITS + [
            {"LineCode": "RD", "TrackNum": 1, "CircuitId": 50, "SeqNum": 12, "StationCode": None},
        ]
        topology = TopologyBuilder().build(STATIONS, circuits)
        track = topology.lines[LineCode.RD].track1
        self.assertEqual(len(track.circuits), 7)
        self.assertNotIn(50, [c.circuit_id for c in track.circuits])

    def test_missing_track_is_empty(self):
        """Test that a line with a single track gets an empty second track."""
        circuits = [c for c in CIRCUITS if c["TrackNum"] == 1]
        topology = TopologyBuilder().build(STATIONS, circuits)
        self.assertEqual(topology.lines[LineCode.RD].track2.circuits, ())

    def test_stations_for_line(self):
        """Test filtering stations by line."""
        self.assertEqual(len(self.topology.stations_for_line(LineCode.RD)), 3)
        self.assertEqual(self.topology.stations_for_line(LineCode.BL), [])


class TestLoading(unittest.TestCase):
    """Test reading raw documents and saved topologies."""

    def test_flatten_standard_routes(self):
        """Test flattening nested route documents."""
        routes = [{
            "LineCode": "RD",
            "TrackNum": 1,
            "TrackCircuits": [
                {"SeqNum": 0, "CircuitId": 7, "StationCode": None},
                {"SeqNum": 1, "CircuitId": 8, "StationCode": "A01"},
            ],
        }]
        records = flatten_standard_routes(routes)
        self.assertEqual(len(records), 2)
        self.assertEqual(records[1], {
            "LineCode": "RD", "TrackNum": 1, "CircuitId": 8, "SeqNum": 1, "StationCode": "A01",
        })

    def test_load_from_files(self):
        """Test loading upstream documents from disk."""
        routes = [{"LineCode": "RD", "TrackNum": 1, "TrackCircuits": [
            {"SeqNum": 1, "CircuitId": 1, "StationCode": "A01"},
            {"SeqNum": 2, "CircuitId": 2, "StationCode": "A02"},
        ]}]
        with tempfile.TemporaryDirectory() as tmp:
            stations_path = os.path.join(tmp, "stations.json")
            routes_path = os.path.join(tmp, "routes.json")
            with open(stations_path, "w") as f:
                json.dump({"Stations": STATIONS}, f)
            with open(routes_path, "w") as f:
                json.dump({"StandardRoutes": routes}, f)

            topology = TopologyBuilder().load_from_files(stations_path, routes_path)

        self.assertEqual(len(topology.lines[LineCode.RD].track1.stations), 2)

    @patch("metrotrack.topology_loader.requests.get")
    def test_load_from_url(self, mock_get):
        """Test downloading upstream documents."""
        stations_response = MagicMock()
        stations_response.json.return_value = {"Stations": STATIONS}
        routes_response = MagicMock()
        routes_response.json.return_value = {"StandardRoutes": [
            {"LineCode": "RD", "TrackNum": 1, "TrackCircuits": [
                {"SeqNum": 1, "CircuitId": 1, "StationCode": "A01"},
            ]},
        ]}
        mock_get.side_effect = [stations_response, routes_response]

        topology = TopologyBuilder().load_from_url(api_key="secret")

        self.assertEqual(mock_get.call_count, 2)
        self.assertEqual(mock_get.call_args_list[0].kwargs["params"], {"api_key": "secret"})
        self.assertIn(LineCode.RD, topology.lines)

    @patch.dict(os.environ, {}, clear=True)
    def test_load_from_url_requires_key(self):
        """Test that a missing API key is rejected before any request."""
        with self.assertRaises(ValueError):
            TopologyBuilder().load_from_url()

    def test_save_and_load_topology(self):
        """Test that a saved topology reloads unchanged."""
        topology = TopologyBuilder().build(STATIONS, CIRCUITS)
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "metroData.json")
            save_topology(topology, path)
            loaded = load_topology(path)

        self.assertEqual(loaded.extent, topology.extent)
        self.assertEqual(loaded.stations, topology.stations)
        self.assertEqual(loaded.lines[LineCode.RD], topology.lines[LineCode.RD])


if __name__ == "__main__":
    unittest.main()
