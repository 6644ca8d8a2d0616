"""Example usage of BusTracker."""

import logging
import sys
import time
from pathlib import Path

# Add src to path so we can import bustrack
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from bustrack import BusTracker, BusTrackConfig

# Set up logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)


def print_arrivals(tracker: BusTracker, key) -> None:
    """Print the current arrivals snapshot and poll state."""
    state = tracker.state(key)
    print(f"\n[{key}] status={state.status.value}", end="")
    if state.error:
        print(f" error={state.error}", end="")
    print()

    for arrival in tracker.data(key, []):
        for bus in arrival.buses:
            minutes = "?" if bus.minutes_away is None else f"{bus.minutes_away} min"
            load = bus.load.label if bus.load is not None else "Unknown"
            source = "live" if bus.monitored else "scheduled"
            print(f"  Service {arrival.service_no}: {minutes} ({load}, {source})")


def main():
    """Follow one stop and one route for a few refresh cycles."""
    stop_code = sys.argv[1] if len(sys.argv) > 1 else "65011"
    service_no = sys.argv[2] if len(sys.argv) > 2 else "10"

    config = BusTrackConfig.from_env()
    with BusTracker(config) as tracker:
        arrivals = tracker.subscribe_arrivals(stop_code, service_no=service_no)
        route = tracker.subscribe_route(service_no)
        positions = tracker.subscribe_positions(service_no)

        try:
            for _ in range(3):
                time.sleep(5)
                print_arrivals(tracker, arrivals.key)

                route_data = tracker.data(route.key)
                if route_data is None:
                    print(f"  No route found for service {service_no}")
                else:
                    print(f"  Route {service_no}: {len(route_data.patterns)} pattern(s)")
                print(f"  Map bounds: {tracker.bounds(route.key).corners()}")

                position_state = tracker.state(positions.key)
                if position_state.capability_unavailable:
                    print(f"  Positions: {position_state.error}")
                time.sleep(config.refresh_interval)
        except KeyboardInterrupt:
            logger.info("Interrupted")


if __name__ == "__main__":
    main()
