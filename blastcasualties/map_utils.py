"""
Blast Casualty Estimator - Map Utility Functions

Builds GeoJSON outlines of the effect zones for the map layer. Circles are
traced on the WGS84 ellipsoid with pyproj's geodesic forward solution, so a
zone drawn at high latitude keeps its true ground radius.
"""

import logging

import numpy as np
from pyproj import Geod
from shapely.geometry import Polygon, mapping

from blastcasualties.models import Coordinate

logger = logging.getLogger(__name__)

GEOD = Geod(ellps="WGS84")


def create_circle_polygon(center_lat, center_lng, radius_m, points=72):
    """
    Generates a geodesic circle around a point.

    Args:
        center_lat (float): Latitude of the circle's center, in decimal degrees.
        center_lng (float): Longitude of the circle's center, in decimal degrees.
        radius_m (float): Ground radius in meters, must be positive.
        points (int, optional): Vertices on the perimeter (default is 72, a
                                point every 5 degrees of azimuth).

    Returns:
        shapely.geometry.Polygon: Ring in (lng, lat) order. Longitudes are
        kept continuous around the center, so a circle crossing the
        antimeridian may extend past ±180.
    """
    azimuths = np.linspace(0.0, 360.0, points, endpoint=False)
    lngs, lats, _ = GEOD.fwd(
        np.full(points, center_lng, dtype=float),
        np.full(points, center_lat, dtype=float),
        azimuths,
        np.full(points, radius_m, dtype=float),
    )
    lngs = np.asarray(lngs)
    lngs = np.where(lngs - center_lng > 180, lngs - 360, lngs)
    lngs = np.where(lngs - center_lng < -180, lngs + 360, lngs)
    return Polygon(zip(lngs, np.asarray(lats)))


def zone_outlines(center, zones, points=72):
    """
    GeoJSON outlines of the effect zones around a blast center.

    Zones with a zero radius are left out. Features are ordered from the
    largest zone to the smallest so the innermost ring is drawn on top.

    Args:
        center (Coordinate or tuple): Blast center.
        zones (list): EffectZone objects.
        points (int, optional): Vertices per circle.

    Returns:
        dict: GeoJSON FeatureCollection; each feature carries the zone's key,
              name, category and radius in its properties.
    """
    if not isinstance(center, Coordinate):
        center = Coordinate(*center)

    features = []
    for zone in sorted(zones, key=lambda z: z.radius, reverse=True):
        if zone.radius <= 0:
            continue
        polygon = create_circle_polygon(center.lat, center.lng, zone.radius, points)
        features.append({
            "type": "Feature",
            "geometry": mapping(polygon),
            "properties": {
                "key": zone.key,
                "name": zone.name,
                "category": zone.category.value,
                "radius": zone.radius,
            },
        })

    logger.debug(f"Built {len(features)} zone outlines around ({center.lat}, {center.lng})")
    return {"type": "FeatureCollection", "features": features}
