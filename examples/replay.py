"""Replay recorded telemetry through MetroTracker."""

import json
import logging
import sys
from pathlib import Path

# Add src to path so we can import metrotrack
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from metrotrack import LineCode, MetroTracker, OffsetTrackCurves, load_topology

# Set up logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)


def replay(topology_path: str, messages_path: str, watch: list):
    """
    Feed recorded stream messages through the tracker and print the results.

    Args:
        topology_path: Topology document written by save_topology().
        messages_path: File with one JSON object of message attributes per line.
        watch: Train ids to raise movement alerts for.
    """
    topology = load_topology(topology_path)
    tracker = MetroTracker(topology, curves=OffsetTrackCurves.from_topology(topology))
    tracker.alerts.add_listener(lambda alert: print(f"{alert.title}: {alert.message}"))
    for train_id in watch:
        tracker.subscribe(train_id)

    with open(messages_path, "r", encoding="utf-8") as f:
        for now, line in enumerate(f):
            line = line.strip()
            if not line:
                continue
            tracker.handle_message(json.loads(line), now=float(now))
            tracker.tick(now=float(now))

    print(f"\n{'='*70}")
    print(f"Trains tracked: {len(tracker.trains)}")
    print(f"{'='*70}")
    for line_code in LineCode:
        count = tracker.occupancy_counts(line_code)
        print(f"  {line_code.display_name:<13} track 1: {count.track1:3d}   track 2: {count.track2:3d}")

    if tracker.skipped:
        print("\nSkipped messages:")
        for reason, count in sorted(tracker.skipped.items()):
            print(f"  {reason}: {count}")


if __name__ == "__main__":
    if len(sys.argv) < 3:
        print("Usage: replay.py TOPOLOGY_JSON MESSAGES_JSONL [TRAIN_ID ...]")
        sys.exit(1)
    try:
        replay(sys.argv[1], sys.argv[2], sys.argv[3:])
    except (OSError, ValueError) as e:
        logger.error(f"Replay failed: {e}", exc_info=True)
        sys.exit(1)
