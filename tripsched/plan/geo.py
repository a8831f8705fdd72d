from __future__ import annotations
from math import radians, sin, cos, asin, sqrt
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .models import Location

EARTH_RADIUS_MILES = 3958.7613

def haversine_miles(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    R = EARTH_RADIUS_MILES
    dphi = radians(lat2 - lat1)
    dlmb = radians(lon2 - lon1)
    phi1 = radians(lat1); phi2 = radians(lat2)
    a = sin(dphi/2)**2 + cos(phi1)*cos(phi2)*sin(dlmb/2)**2
    return 2 * R * asin(sqrt(a))

def location_coordinates(loc: Optional[Location]) -> Optional[Tuple[float, float]]:
    """Get lat/lon for a location, or None when either is missing or unparseable."""
    if loc is None or not loc.has_coords:
        return None
    try:
        return float(loc.lat), float(loc.lon)
    except (TypeError, ValueError):
        return None

def missing_coordinates(locations: Sequence[Location]) -> List[str]:
    return [loc.label() or "(blank address)" for loc in locations if location_coordinates(loc) is None]

def road_estimate(direct_miles: float, road_factor: float, speed_mph: float) -> Tuple[float, float]:
    """
    Turn a straight-line distance into (road miles, minutes).
    Road factor inflates the great-circle distance; minutes come from a flat average speed.
    """
    route_miles = direct_miles * road_factor
    route_minutes = (route_miles / speed_mph) * 60 if speed_mph > 0 else 0.0
    return route_miles, route_minutes

def haversine_matrix(origins: Sequence[Location], destinations: Sequence[Location]) -> np.ndarray:
    """Pairwise great-circle miles; raises ValueError if any location lacks coordinates."""
    src = [location_coordinates(o) for o in origins]
    dst = [location_coordinates(d) for d in destinations]
    if any(c is None for c in src) or any(c is None for c in dst):
        raise ValueError("coordinates missing for: " + ", ".join(missing_coordinates([*origins, *destinations])))

    out = np.zeros((len(src), len(dst)), dtype=float)
    for i, (lat1, lon1) in enumerate(src):
        for j, (lat2, lon2) in enumerate(dst):
            out[i, j] = haversine_miles(lat1, lon1, lat2, lon2)
    return out
