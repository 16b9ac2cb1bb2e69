# Created by Matthew Valancy
# Copyright 2026 Valpatel Software LLC
# Licensed under AGPL-3.0 — see LICENSE for details.
"""Geometry engine — great-circle math for the tactical picture.

Pure functions only; nothing here touches the entity registry.

Convention:
    - Spherical Earth, mean radius 6371 km (same model the map client uses
      for its distance readouts)
    - Bearing 0 = North, clockwise in degrees
    - Latitude/longitude in decimal degrees, distances in meters unless a
      unit is given
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Sequence

EARTH_RADIUS_M = 6_371_000.0
METERS_PER_DEG_LAT = 111_320.0

# Distance units accepted by destination()
_UNIT_METERS: dict[str, float] = {
    "M":  1.0,
    "KM": 1000.0,
    "MI": 1609.344,
    "NM": 1852.0,
    "FT": 0.3048,
}


@dataclass(frozen=True)
class LatLon:
    """A point on the sphere."""

    lat: float
    lon: float

    def to_dict(self) -> dict:
        return {"lat": self.lat, "lon": self.lon}


@dataclass(frozen=True)
class Bounds:
    """Axis-aligned lat/lon rectangle (south-west to north-east corner)."""

    south: float
    west: float
    north: float
    east: float


def normalize_bearing(bearing_deg: float) -> float:
    """Wrap any bearing into [0, 360)."""
    wrapped = bearing_deg % 360.0
    # -1e-17 % 360 rounds to 360.0
    return 0.0 if wrapped >= 360.0 else wrapped


def _normalize_lon(lon: float) -> float:
    return (lon + 540.0) % 360.0 - 180.0


def destination(
    lat: float,
    lon: float,
    bearing_deg: float,
    distance: float,
    unit: str = "M",
) -> LatLon:
    """Point reached travelling ``distance`` along an initial great-circle bearing.

    Args:
        lat: Origin latitude
        lon: Origin longitude
        bearing_deg: Initial bearing, any value (normalized into [0, 360))
        distance: Distance to travel, in ``unit``
        unit: One of "M", "KM", "MI", "NM", "FT"

    Returns:
        LatLon of the destination, longitude wrapped into [-180, 180)
    """
    try:
        scale = _UNIT_METERS[unit.upper()]
    except KeyError:
        raise ValueError(f"Unknown distance unit: {unit!r}") from None

    delta = (distance * scale) / EARTH_RADIUS_M
    theta = math.radians(normalize_bearing(bearing_deg))
    phi1 = math.radians(lat)
    lam1 = math.radians(lon)

    sin_phi2 = (
        math.sin(phi1) * math.cos(delta)
        + math.cos(phi1) * math.sin(delta) * math.cos(theta)
    )
    phi2 = math.asin(max(-1.0, min(1.0, sin_phi2)))
    lam2 = lam1 + math.atan2(
        math.sin(theta) * math.sin(delta) * math.cos(phi1),
        math.cos(delta) - math.sin(phi1) * sin_phi2,
    )
    return LatLon(math.degrees(phi2), _normalize_lon(math.degrees(lam2)))


def fov_cone(
    origin: LatLon,
    azimuth_deg: float,
    fov_deg: float,
    range_m: float,
) -> tuple[LatLon, LatLon, LatLon]:
    """Triangle approximating a sensor's angular coverage.

    Returns (origin, left edge point, right edge point).
    """
    left_bearing = normalize_bearing(azimuth_deg - fov_deg / 2.0)
    right_bearing = normalize_bearing(azimuth_deg + fov_deg / 2.0)
    left = destination(origin.lat, origin.lon, left_bearing, range_m, "M")
    right = destination(origin.lat, origin.lon, right_bearing, range_m, "M")
    return (origin, left, right)


def haversine_distance(a: LatLon, b: LatLon) -> float:
    """Great-circle distance in meters."""
    phi1 = math.radians(a.lat)
    phi2 = math.radians(b.lat)
    dphi = phi2 - phi1
    dlam = math.radians(b.lon - a.lon)
    h = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlam / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(h)))


def initial_bearing(a: LatLon, b: LatLon) -> float:
    """Initial great-circle bearing from a to b, in [0, 360)."""
    phi1 = math.radians(a.lat)
    phi2 = math.radians(b.lat)
    dlam = math.radians(b.lon - a.lon)
    y = math.sin(dlam) * math.cos(phi2)
    x = math.cos(phi1) * math.sin(phi2) - math.sin(phi1) * math.cos(phi2) * math.cos(dlam)
    return normalize_bearing(math.degrees(math.atan2(y, x)))


def accumulate_distance(points: Sequence[LatLon]) -> float:
    """Total path length in meters over consecutive points.

    Empty or single-point input is 0.
    """
    total = 0.0
    for prev, cur in zip(points, points[1:]):
        total += haversine_distance(prev, cur)
    return total


def approx_area_km2(bounds: Bounds) -> float:
    """Rough area of a lat/lon rectangle in km^2.

    Flat-earth estimate (degree lengths taken at the mid latitude), used for
    polygon summaries only. Not geodesically exact.
    """
    mid_lat = (bounds.north + bounds.south) / 2.0
    height_km = (bounds.north - bounds.south) * METERS_PER_DEG_LAT / 1000.0
    width_km = (
        (bounds.east - bounds.west)
        * METERS_PER_DEG_LAT * math.cos(math.radians(mid_lat)) / 1000.0
    )
    return abs(height_km * width_km)


def bounds_of(points: Iterable[LatLon]) -> Bounds:
    """Smallest Bounds containing every point. Raises ValueError when empty."""
    pts = list(points)
    if not pts:
        raise ValueError("bounds_of() needs at least one point")
    lats = [p.lat for p in pts]
    lons = [p.lon for p in pts]
    return Bounds(south=min(lats), west=min(lons), north=max(lats), east=max(lons))


# ---------------------------------------------------------------------------
# Coordinate readouts
# ---------------------------------------------------------------------------

def format_dms(value: float, axis: str) -> str:
    """Degrees/minutes/seconds readout, e.g. ``38° 53' 51.72" N``.

    Args:
        value: Decimal degrees
        axis: "lat" or "lon"
    """
    if axis not in ("lat", "lon"):
        raise ValueError(f"axis must be 'lat' or 'lon', got {axis!r}")
    absolute = abs(value)
    degrees = math.floor(absolute)
    minutes_float = (absolute - degrees) * 60
    minutes = math.floor(minutes_float)
    seconds = (minutes_float - minutes) * 60
    if axis == "lat":
        hemisphere = "N" if value >= 0 else "S"
    else:
        hemisphere = "E" if value >= 0 else "W"
    return f"{degrees}° {minutes}' {seconds:.2f}\" {hemisphere}"


def format_coordinate(lat: float, lon: float, fmt: str = "DD") -> tuple[str, str]:
    """Format a coordinate pair for display in "DD" or "DMS"."""
    if fmt == "DD":
        return (f"{lat:.6f}°", f"{lon:.6f}°")
    if fmt == "DMS":
        return (format_dms(lat, "lat"), format_dms(lon, "lon"))
    raise ValueError(f"Unsupported coordinate format: {fmt!r}")


# ---------------------------------------------------------------------------
# Measurement
# ---------------------------------------------------------------------------

class MeasurementSession:
    """Running path length while the measure tool is active.

    Keeps no state outside itself; ``clear()`` (or dropping the object) is
    the whole teardown.
    """

    def __init__(self) -> None:
        self._points: list[LatLon] = []
        self._total_m = 0.0
        self._last_segment_m = 0.0

    @property
    def points(self) -> list[LatLon]:
        return list(self._points)

    @property
    def total_m(self) -> float:
        return self._total_m

    @property
    def total_km(self) -> float:
        return self._total_m / 1000.0

    @property
    def last_segment_m(self) -> float:
        return self._last_segment_m

    def add(self, point: LatLon) -> float:
        """Append a point and return the new total in meters."""
        if self._points:
            self._last_segment_m = haversine_distance(self._points[-1], point)
            self._total_m += self._last_segment_m
        self._points.append(point)
        return self._total_m

    def clear(self) -> None:
        self._points.clear()
        self._total_m = 0.0
        self._last_segment_m = 0.0

    def __len__(self) -> int:
        return len(self._points)
