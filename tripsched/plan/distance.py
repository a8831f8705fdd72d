from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Sequence

import numpy as np
import requests

from .errors import DistanceSourceError
from .geo import haversine_matrix, road_estimate
from .models import Location

logger = logging.getLogger(__name__)

GOOGLE_DISTANCE_MATRIX_URL = "https://maps.googleapis.com/maps/api/distancematrix/json"
METERS_PER_MILE = 1609.344


@dataclass(frozen=True)
class DistanceMatrix:
    """Row i = origins[i], column j = destinations[j]."""

    miles: np.ndarray
    minutes: np.ndarray

    def __post_init__(self):
        if self.miles.shape != self.minutes.shape:
            raise ValueError(f"distance/time shapes differ: {self.miles.shape} vs {self.minutes.shape}")


class DistanceSource(Protocol):
    name: str

    def distances(self, origins: Sequence[Location], destinations: Sequence[Location]) -> DistanceMatrix:
        ...


class HaversineDistanceSource:
    """Great-circle distances inflated by a road factor; time from a flat average speed."""

    name = "haversine"

    def __init__(self, road_factor: float = 1.25, speed_mph: float = 30.0):
        if speed_mph <= 0:
            raise ValueError("speed_mph must be positive")
        self.road_factor = float(road_factor)
        self.speed_mph = float(speed_mph)

    def distances(self, origins: Sequence[Location], destinations: Sequence[Location]) -> DistanceMatrix:
        try:
            direct = haversine_matrix(origins, destinations)
        except ValueError as e:
            raise DistanceSourceError(str(e)) from e
        miles, minutes = road_estimate(direct, self.road_factor, self.speed_mph)
        return DistanceMatrix(miles=np.asarray(miles, dtype=float), minutes=np.asarray(minutes, dtype=float))


def _address_param(loc: Location) -> str:
    if loc.has_coords:
        return f"{loc.lat},{loc.lon}"
    return loc.label()


class GoogleDistanceMatrixSource:
    """
    Network distances from the Google Distance Matrix API.
    Every failure mode (timeout, HTTP error, non-OK status, missing element) is raised
    as DistanceSourceError so the optimizer can fall back.
    """

    name = "google"

    def __init__(
        self,
        api_key: str,
        timeout_sec: float = 10.0,
        base_url: str = GOOGLE_DISTANCE_MATRIX_URL,
        session: Optional[requests.Session] = None,
    ):
        if not api_key:
            raise ValueError("api_key is required")
        self.api_key = api_key
        self.timeout_sec = float(timeout_sec)
        self.base_url = base_url
        self.session = session or requests.Session()

    def _request(self, origins: List[str], destinations: List[str]) -> Dict[str, Any]:
        params = {
            "origins": "|".join(origins),
            "destinations": "|".join(destinations),
            "units": "imperial",
            "key": self.api_key,
        }
        try:
            response = self.session.get(self.base_url, params=params, timeout=self.timeout_sec)
            response.raise_for_status()
            return response.json()
        except requests.exceptions.Timeout as e:
            raise DistanceSourceError(f"distance service timed out after {self.timeout_sec:g}s") from e
        except requests.exceptions.RequestException as e:
            raise DistanceSourceError(f"distance service request failed: {e}") from e
        except ValueError as e:
            raise DistanceSourceError("distance service returned invalid JSON") from e

    def distances(self, origins: Sequence[Location], destinations: Sequence[Location]) -> DistanceMatrix:
        blanks = [loc for loc in [*origins, *destinations] if loc.is_blank and not loc.has_coords]
        if blanks:
            raise DistanceSourceError(f"{len(blanks)} stop(s) have no address")

        data = self._request([_address_param(o) for o in origins], [_address_param(d) for d in destinations])

        if not isinstance(data, dict):
            raise DistanceSourceError(f"distance service returned {type(data).__name__}, expected an object")
        status = data.get("status")
        if status != "OK":
            detail = data.get("error_message") or ""
            raise DistanceSourceError(f"distance service returned status {status}{': ' + detail if detail else ''}")

        rows = data.get("rows") or []
        if not isinstance(rows, list):
            raise DistanceSourceError("distance service rows are not a list")
        if len(rows) != len(origins):
            raise DistanceSourceError(f"expected {len(origins)} rows, got {len(rows)}")

        n, m = len(origins), len(destinations)
        miles = np.zeros((n, m), dtype=float)
        minutes = np.zeros((n, m), dtype=float)
        for i, row in enumerate(rows):
            elements = row.get("elements") if isinstance(row, dict) else None
            if not isinstance(elements, list):
                raise DistanceSourceError(f"row {i}: malformed row")
            if len(elements) != m:
                raise DistanceSourceError(f"row {i}: expected {m} elements, got {len(elements)}")
            for j, element in enumerate(elements):
                if not isinstance(element, dict):
                    raise DistanceSourceError(f"malformed element at {i},{j}")
                if element.get("status") != "OK":
                    raise DistanceSourceError(f"no route for origin {i} -> destination {j} ({element.get('status')})")
                try:
                    miles[i, j] = float(element["distance"]["value"]) / METERS_PER_MILE
                    minutes[i, j] = float(element["duration"]["value"]) / 60.0
                except (KeyError, TypeError, ValueError) as e:
                    raise DistanceSourceError(f"malformed element at {i},{j}") from e

        logger.debug("Distance matrix %sx%s fetched from %s", n, m, self.name)
        return DistanceMatrix(miles=miles, minutes=minutes)
