"""
Blast Casualty Estimator - Utility Functions and Constants Module

This module provides the geometric helpers and constants used throughout
the casualty estimation engine. It includes:

1. Earth and unit constants
2. Unit conversion utilities (distance)
3. Circle area and great-circle distance calculations
4. Count rounding used by every population figure

Distances follow the spherical-Earth convention: all great-circle
distances are computed with the haversine formula on a mean radius of
6,371 km.
"""

import math

import numpy as np

# =============================================================================
# EARTH AND UNIT CONSTANTS
# =============================================================================

# Earth's mean radius (meters) - used for great circle distance calculations
R_EARTH = 6371000.0

# Approximate kilometers per degree of latitude - used to size bounding boxes
KM_PER_DEGREE = 111.0

# =============================================================================
# UNIT CONVERSION UTILITIES
# =============================================================================

def km_to_m(km):
    """
    Convert kilometers to meters.

    Parameters
    ----------
    km : float
        Distance in kilometers

    Returns
    -------
    float
        Distance in meters
    """
    return km * 1000.0

def m_to_km(m):
    """
    Convert meters to kilometers.

    Parameters
    ----------
    m : float
        Distance in meters

    Returns
    -------
    float
        Distance in kilometers
    """
    return m / 1000.0

def round_count(value):
    """
    Round a population figure to a whole number of people.

    Halves are rounded up (towards positive infinity) rather than to the
    nearest even number, so 12566.5 people becomes 12567.

    Parameters
    ----------
    value : float
        Fractional population count

    Returns
    -------
    int
        Rounded count
    """
    return int(math.floor(value + 0.5))

# =============================================================================
# GEOMETRIC FUNCTIONS
# =============================================================================

def circle_area(radius_m):
    """
    Calculate the area of a disc in square kilometers.

    Parameters
    ----------
    radius_m : float
        Disc radius in meters

    Returns
    -------
    float
        Area in km²
    """
    radius_km = m_to_km(radius_m)
    return math.pi * radius_km * radius_km

def _lat_lng(point):
    # Accepts (lat, lng) pairs or objects exposing lat/lng attributes
    if hasattr(point, 'lat') and hasattr(point, 'lng'):
        return point.lat, point.lng
    return point[0], point[1]

def haversine_distance(point1, point2):
    """
    Great-circle distance between two coordinates.

    Parameters
    ----------
    point1, point2 : tuple or Coordinate
        ``(lat, lng)`` pairs in decimal degrees, or objects with ``lat`` and
        ``lng`` attributes

    Returns
    -------
    float
        Distance in meters. Symmetric, and zero for identical points.

    Mathematical Form
    -----------------
    a = sin²(Δφ/2) + cos φ1 · cos φ2 · sin²(Δλ/2)
    d = 2R · atan2(√a, √(1−a))
    """
    lat1, lng1 = _lat_lng(point1)
    lat2, lng2 = _lat_lng(point2)

    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    delta_lat = math.radians(lat2 - lat1)
    delta_lng = math.radians(lng2 - lng1)

    a = (math.sin(delta_lat / 2) ** 2 +
         math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(delta_lng / 2) ** 2)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return R_EARTH * c

def haversine_distance_array(lat, lng, lats, lngs):
    """
    Vectorised haversine distance from one point to many.

    Used for grid-cell inclusion tests; the formula is identical to
    :func:`haversine_distance`.

    Parameters
    ----------
    lat, lng : float
        Reference point in decimal degrees
    lats, lngs : numpy.ndarray
        Target coordinates, broadcastable against each other

    Returns
    -------
    numpy.ndarray
        Distances in meters
    """
    lat1_rad = np.radians(lat)
    lat2_rad = np.radians(lats)
    delta_lat = np.radians(np.asarray(lats) - lat)
    delta_lng = np.radians(np.asarray(lngs) - lng)

    a = (np.sin(delta_lat / 2) ** 2 +
         np.cos(lat1_rad) * np.cos(lat2_rad) * np.sin(delta_lng / 2) ** 2)
    # Guard tiny negative values of 1 - a produced by floating point error
    a = np.clip(a, 0.0, 1.0)
    c = 2 * np.arctan2(np.sqrt(a), np.sqrt(1 - a))
    return R_EARTH * c

def bounding_box(lat, lng, radius_km):
    """
    Approximate lat/lng box extending ``radius_km`` from a point.

    Returns
    -------
    tuple
        ``(north, south, east, west)`` in decimal degrees
    """
    lat_delta = radius_km / KM_PER_DEGREE
    lng_delta = radius_km / (KM_PER_DEGREE * math.cos(math.radians(lat)))
    return lat + lat_delta, lat - lat_delta, lng + lng_delta, lng - lng_delta
