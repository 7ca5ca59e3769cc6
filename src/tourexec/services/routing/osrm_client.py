"""HTTP client for interacting with OSRM services."""

from __future__ import annotations

import logging
import time
from typing import Any, Sequence

import httpx

from ...config import settings
from ...exceptions import RoutingUnavailable
from .models import RouteSegment, RouteSummary, TravelMatrix

logger = logging.getLogger(__name__)


class OSRMClient:
    def __init__(
        self,
        base_url: str | None = None,
        profile: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        backoff_seconds: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url or settings.osrm_base_url or "").rstrip("/")
        if not self.base_url:
            raise ValueError("OSRM base URL is not configured.")
        self.profile = profile or settings.osrm_profile
        self.timeout = timeout if timeout is not None else settings.osrm_timeout_seconds
        self.max_retries = max_retries if max_retries is not None else settings.osrm_max_retries
        self.backoff_seconds = backoff_seconds if backoff_seconds is not None else settings.osrm_backoff_seconds
        self._transport = transport

    def _get_client(self) -> httpx.Client:
        return httpx.Client(
            timeout=httpx.Timeout(self.timeout, connect=min(self.timeout, 5.0)),
            transport=self._transport,
        )

    def _get_json(self, url: str, params: dict[str, str]) -> dict[str, Any]:
        """GET ``url`` with retries; every exhausted failure becomes ``RoutingUnavailable``."""
        client = self._get_client()
        try:
            attempt = 0
            while True:
                try:
                    response = client.get(url, params=params)
                    response.raise_for_status()
                    data = response.json()
                    if not isinstance(data, dict):
                        raise ValueError("OSRM response is not a JSON object.")
                    if data.get("code") != "Ok":
                        raise ValueError(f"OSRM request failed: {data.get('message', data.get('code'))}")
                    return data
                except httpx.HTTPStatusError as e:
                    # Client errors will not improve on retry
                    if e.response.status_code < 500:
                        raise RoutingUnavailable(
                            f"OSRM rejected the request with status {e.response.status_code}."
                        ) from e
                    attempt += 1
                    if attempt > self.max_retries:
                        raise RoutingUnavailable(
                            f"OSRM returned status {e.response.status_code} after {attempt} attempts."
                        ) from e
                    time.sleep(self.backoff_seconds * attempt)
                except httpx.TimeoutException as e:
                    attempt += 1
                    if attempt > self.max_retries:
                        logger.warning(f"OSRM request timed out after {self.max_retries} retries: {e}")
                        raise RoutingUnavailable("OSRM request timed out.") from e
                    wait_time = self.backoff_seconds * (2 ** (attempt - 1))
                    logger.debug(f"OSRM request timeout, retrying in {wait_time:.1f}s (attempt {attempt}/{self.max_retries})")
                    time.sleep(wait_time)
                except httpx.TransportError as e:
                    attempt += 1
                    if attempt > self.max_retries:
                        raise RoutingUnavailable(
                            f"Failed to connect to OSRM service at {self.base_url}: {e}"
                        ) from e
                    wait_time = self.backoff_seconds * (2 ** (attempt - 1))
                    logger.debug(f"OSRM network error, retrying in {wait_time:.1f}s (attempt {attempt}/{self.max_retries}): {e}")
                    time.sleep(wait_time)
                except ValueError as e:
                    # Malformed payloads are not retried
                    raise RoutingUnavailable(str(e)) from e
        finally:
            client.close()

    def _coordinate_path(self, service: str, coordinates: Sequence[tuple[float, float]]) -> str:
        # OSRM expects "lon,lat;lon,lat;..."
        coordinate_str = ";".join(f"{lon},{lat}" for lat, lon in coordinates)
        return f"{self.base_url}/{service}/v1/{self.profile}/{coordinate_str}"

    def table(self, coordinates: Sequence[tuple[float, float]]) -> TravelMatrix:
        """Get the pairwise duration/distance matrix for ``(lat, lon)`` coordinates."""
        if len(coordinates) < 2:
            raise ValueError("At least two coordinates are required for OSRM table.")

        data = self._get_json(
            self._coordinate_path("table", coordinates),
            {"annotations": "duration,distance"},
        )
        durations = data.get("durations")
        distances = data.get("distances")
        size = len(coordinates)
        if not _is_complete_matrix(durations, size) or not _is_complete_matrix(distances, size):
            raise RoutingUnavailable("OSRM table response is missing or has unreachable entries.")
        return TravelMatrix(
            durations=[[float(value) for value in row] for row in durations],
            distances=[[float(value) for value in row] for row in distances],
        )

    def route(self, coordinates: Sequence[tuple[float, float]]) -> RouteSummary:
        """Get the street route through ``(lat, lon)`` waypoints in the given order.

        Returns totals, one segment per consecutive waypoint pair, and the
        decoded overview geometry for drawing.
        """
        if len(coordinates) < 2:
            raise ValueError("At least two coordinates are required for OSRM route.")

        data = self._get_json(
            self._coordinate_path("route", coordinates),
            {"overview": "full", "geometries": "polyline", "steps": "false"},
        )
        try:
            route = data["routes"][0]
            legs = route["legs"]
            if len(legs) != len(coordinates) - 1:
                raise ValueError(f"expected {len(coordinates) - 1} legs, got {len(legs)}")
            segments = [
                RouteSegment(
                    from_point=tuple(coordinates[index]),
                    to_point=tuple(coordinates[index + 1]),
                    distance_m=float(leg["distance"]),
                    duration_s=float(leg["duration"]),
                )
                for index, leg in enumerate(legs)
            ]
            geometry = decode_polyline(route.get("geometry") or "")
            return RouteSummary(
                total_distance_m=float(route["distance"]),
                total_duration_s=float(route["duration"]),
                segments=segments,
                geometry=geometry,
            )
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise RoutingUnavailable(f"Malformed OSRM route response: {e}") from e


def _is_complete_matrix(matrix: Any, size: int) -> bool:
    if not isinstance(matrix, list) or len(matrix) != size:
        return False
    return all(
        isinstance(row, list) and len(row) == size and all(isinstance(value, (int, float)) for value in row)
        for row in matrix
    )


def decode_polyline(polyline: str) -> list[tuple[float, float]]:
    """Decode Google polyline string to list of (lat, lon) coordinates.

    OSRM uses Google's polyline encoding format for route geometry.
    """
    coordinates = []
    index = 0
    lat = 0
    lon = 0

    while index < len(polyline):
        deltas = []
        for _ in range(2):
            shift = 0
            result = 0
            while True:
                b = ord(polyline[index]) - 63
                index += 1
                result |= (b & 0x1f) << shift
                shift += 5
                if b < 0x20:
                    break
            deltas.append(~(result >> 1) if (result & 1) else (result >> 1))
        lat += deltas[0]
        lon += deltas[1]
        coordinates.append((lat / 1e5, lon / 1e5))

    return coordinates


def check_health(base_url: str | None = None) -> bool:
    """Check OSRM service health by making a simple table request.

    Public OSRM endpoints may not have a /health endpoint, so we test
    connectivity by making a minimal table request with two coordinates.
    """
    try:
        client = OSRMClient(base_url=base_url, max_retries=0)
        client.table([(52.517037, 13.388860), (52.496891, 13.385983)])
        return True
    except (ValueError, RoutingUnavailable):
        return False
