#!/usr/bin/env python3
"""Verify that the configured OSRM server answers table and route requests."""

import sys
from pathlib import Path

project_root = Path(__file__).parent
sys.path.insert(0, str(project_root / "src"))

from tourexec.config import settings
from tourexec.exceptions import RoutingUnavailable
from tourexec.services.routing.osrm_client import OSRMClient, check_health

BERLIN = [(52.517037, 13.388860), (52.496891, 13.385983)]


def main() -> int:
    print("=" * 60)
    print("OSRM Connection Check")
    print("=" * 60)
    print(f"Base URL: {settings.osrm_base_url}")
    print(f"Profile:  {settings.osrm_profile}")
    print()

    print("1. Health check...")
    if not check_health():
        print("   [ERROR] OSRM service is not responding")
        return 1
    print("   [OK] OSRM service is reachable")

    client = OSRMClient()
    try:
        print("2. Table request...")
        matrix = client.table(BERLIN)
        distance, duration = matrix.leg(0, 1)
        print(f"   [OK] {len(matrix)}x{len(matrix)} matrix, sample leg {distance:.0f} m / {duration:.0f} s")

        print("3. Route request...")
        summary = client.route(BERLIN)
        print(
            f"   [OK] {summary.total_distance_m:.0f} m, {summary.total_duration_s:.0f} s, "
            f"{len(summary.geometry)} geometry points"
        )
    except RoutingUnavailable as exc:
        print(f"   [ERROR] {exc}")
        return 1

    print()
    print("[SUCCESS] OSRM is connected and working!")
    return 0


if __name__ == "__main__":
    sys.exit(main())
