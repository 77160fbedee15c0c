# -*- coding: utf-8 -*-
"""
Level 5: building coordinates and footprint geometry.

Coordinates outside the Syria bounding box are errors here (Level 1 only
warns). Footprints are checked for a known WKT type, closed rings and
whether the building point falls inside the footprint's bounding box.
"""

import re
from typing import List, Optional, Tuple

from models.staging import BUILDING, EntityFamily, StagingBuilding, StagingRecord
from services.validation.base import BaseValidator, Findings
from utils.logger import get_logger

logger = get_logger(__name__)

GEOMETRY_TYPES = ("MULTIPOLYGON", "POLYGON", "POINT")
MIN_RING_POSITIONS = 4

Ring = List[Tuple[float, float]]

_RING_PATTERN = re.compile(r"\(([^()]+)\)")


def geometry_type(wkt: str) -> Optional[str]:
    text = wkt.strip().upper()
    for name in GEOMETRY_TYPES:
        if text.startswith(name):
            return name
    return None


def parse_rings(wkt: str) -> List[Ring]:
    """
    Rings of a POLYGON / MULTIPOLYGON as lists of (lon, lat).

    Raises:
        ValueError: a position is not two numbers
    """
    rings: List[Ring] = []
    for group in _RING_PATTERN.findall(wkt):
        ring: Ring = []
        for position in group.split(","):
            parts = position.split()
            if len(parts) < 2:
                raise ValueError(f"Bad position '{position.strip()}'")
            ring.append((float(parts[0]), float(parts[1])))
        rings.append(ring)
    return rings


def _points_equal(p1: Tuple[float, float], p2: Tuple[float, float], tolerance: float = 1e-7) -> bool:
    return abs(p1[0] - p2[0]) < tolerance and abs(p1[1] - p2[1]) < tolerance


class SpatialGeometryValidator(BaseValidator):
    """Strict coordinate bounds and footprint sanity for buildings."""

    name = "SpatialGeometryValidator"
    level = 5
    families = (BUILDING,)

    def check(self, family: EntityFamily, record: StagingRecord) -> Findings:
        if not isinstance(record, StagingBuilding):
            return [], []
        errors: List[str] = []
        warnings: List[str] = []
        s = self.settings

        lat, lng = record.latitude, record.longitude
        if (lat is None) != (lng is None):
            errors.append("Latitude and Longitude must be provided together")
        if lat is not None and not s.min_lat <= lat <= s.max_lat:
            errors.append(f"Latitude {lat} is outside Syria bounds ({s.min_lat}-{s.max_lat})")
        if lng is not None and not s.min_lng <= lng <= s.max_lng:
            errors.append(f"Longitude {lng} is outside Syria bounds ({s.min_lng}-{s.max_lng})")

        wkt = (record.building_geometry_wkt or "").strip()
        if wkt:
            warnings.extend(self._check_geometry(wkt, lat, lng))
        return errors, warnings

    def _check_geometry(self, wkt: str, lat: Optional[float], lng: Optional[float]) -> List[str]:
        kind = geometry_type(wkt)
        if kind is None:
            return ["BuildingGeometryWkt does not start with a recognized geometry type"]
        if kind == "POINT":
            return []

        try:
            rings = parse_rings(wkt)
        except ValueError as e:
            logger.debug(f"Unparseable footprint: {e}")
            return [f"BuildingGeometryWkt could not be parsed: {e}"]
        if not rings:
            return ["BuildingGeometryWkt has no coordinates"]

        warnings = []
        for index, ring in enumerate(rings, 1):
            if len(ring) < MIN_RING_POSITIONS:
                warnings.append(
                    f"Polygon ring {index} has {len(ring)} positions (at least {MIN_RING_POSITIONS} required)"
                )
            elif not _points_equal(ring[0], ring[-1]):
                warnings.append(f"Polygon ring {index} is not closed")

        if lat is not None and lng is not None:
            positions = [p for ring in rings for p in ring]
            min_lng = min(p[0] for p in positions)
            max_lng = max(p[0] for p in positions)
            min_lat = min(p[1] for p in positions)
            max_lat = max(p[1] for p in positions)
            if not (min_lat <= lat <= max_lat and min_lng <= lng <= max_lng):
                warnings.append("Building point lies outside the footprint bounding box")
        return warnings
