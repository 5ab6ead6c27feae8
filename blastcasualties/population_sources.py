"""
Population grid sources and the cached fallback chain that selects between them.

Sources are tried in order of fidelity:

1. ``RasterPopulationSource`` - a local population raster (GeoTIFF, one
   population count per pixel, geographic CRS), read with rasterio.
2. ``OverpassBuildingSource`` - building footprints from the OpenStreetMap
   Overpass API, converted to occupants and bucketed into a grid.
3. ``SyntheticGradientSource`` - a radial density gradient with noise, used
   when no real data can be obtained.

A source signals that it cannot serve a request by raising
``GridSourceError``; the provider logs it and moves on to the next source.
Nothing in this module raises a data-availability error to its callers: when
every source fails the result simply carries no grid.
"""

import json
import logging
import math
import re
import threading
import time
from contextlib import contextmanager
from dataclasses import replace

import numpy as np
import rasterio
import rasterio.errors
import rasterio.windows
import requests

from blastcasualties import config
from blastcasualties.cache import TTLCache
from blastcasualties.models import GridBounds, GridFetchResult, InvalidGridError, PopulationGrid
from blastcasualties.utils import KM_PER_DEGREE, bounding_box, km_to_m

logger = logging.getLogger(__name__)

OCCUPANCY_PATH = config.DATA_DIR / "occupancy.json"


class GridSourceError(Exception):
    """A population source could not produce a grid for the request."""


def load_occupancy_table(path=OCCUPANCY_PATH):
    """
    Load occupants-per-level figures by OSM ``building`` tag value.

    Returns:
        tuple: ``(per_level, default)`` where ``per_level`` maps building
               types to occupants per floor.
    """
    with open(path, 'r', encoding='utf-8') as f:
        table = json.load(f)
    return dict(table["per_level"]), table["default"]


def grid_bounds(lat, lng, radius_km):
    north, south, east, west = bounding_box(lat, lng, radius_km)
    return GridBounds(north=north, south=south, east=east, west=west)


def grid_resolution(radius_km, grid_size):
    """Nominal cell size in meters for a square grid spanning twice the radius."""
    return km_to_m(2 * radius_km) / grid_size


# =============================================================================
# RASTER SOURCE
# =============================================================================

class RasterPopulationSource:
    """
    Reads the population window around a point from a GeoTIFF.

    The raster must use a geographic CRS; band 1 holds the population count of
    each pixel. Pixels flagged as nodata, or negative, count as empty.
    """

    name = "raster"

    def __init__(self, path):
        self.path = path

    def fetch(self, lat, lng, radius_km, token=None):
        if not self.path:
            raise GridSourceError("No population raster configured")

        bounds = grid_bounds(lat, lng, radius_km)
        try:
            with rasterio.open(self.path) as src:
                if src.crs is None or not src.crs.is_geographic:
                    raise GridSourceError(f"Population raster {self.path} is not in a geographic CRS")

                # Check if coordinates fall within the dataset bounds
                if not (src.bounds.left <= lng <= src.bounds.right and
                        src.bounds.bottom <= lat <= src.bounds.top):
                    raise GridSourceError(f"Coordinates ({lat}, {lng}) are outside the population raster")

                window = rasterio.windows.from_bounds(
                    bounds.west, bounds.south, bounds.east, bounds.north, transform=src.transform
                ).round_offsets().round_lengths()
                # Clip to the dataset; the grid then only covers the raster's extent
                window = window.intersection(rasterio.windows.Window(0, 0, src.width, src.height))
                if window.width < 1 or window.height < 1:
                    raise GridSourceError("Population raster window is empty")

                band = src.read(1, window=window, masked=True)
                west, south, east, north = rasterio.windows.bounds(window, src.transform)
                pixel_height_m = km_to_m(abs(src.transform.e) * KM_PER_DEGREE)
        except rasterio.errors.RasterioError as e:
            raise GridSourceError(f"Could not read population raster {self.path}: {e}") from e

        values = np.ma.filled(band.astype(float), 0.0)
        values = np.nan_to_num(values, nan=0.0, posinf=0.0, neginf=0.0)
        values[values < 0] = 0.0

        # Raster rows run north to south; grid rows run south to north
        return PopulationGrid(
            bounds=GridBounds(north=north, south=south, east=east, west=west),
            resolution=pixel_height_m,
            data=np.flipud(values),
        )


# =============================================================================
# OVERPASS (OPENSTREETMAP BUILDINGS) SOURCE
# =============================================================================

def parse_levels(value):
    """Floor count from a ``building:levels`` tag; unparseable or zero values count as 1."""
    if value is None:
        return 1
    match = re.match(r"\s*[+-]?(\d+)", str(value))
    levels = int(match.group(1)) if match else 0
    return levels or 1


def estimate_occupants(tags, occupancy=None, default_occupancy=None):
    """
    Estimate the occupants of one building from its OSM tags.

    Args:
        tags (dict): Element tags; ``building`` gives the type and
                     ``building:levels`` the floor count.
        occupancy (dict, optional): Occupants per level by building type.
        default_occupancy (int, optional): Occupants per level for other types.

    Returns:
        int: Estimated occupants.
    """
    if occupancy is None or default_occupancy is None:
        table, default = load_occupancy_table()
        occupancy = table if occupancy is None else occupancy
        default_occupancy = default if default_occupancy is None else default_occupancy
    if not isinstance(tags, dict):
        tags = {}
    building_type = tags.get("building")
    if not isinstance(building_type, str) or not building_type:
        building_type = "yes"
    per_level = occupancy.get(building_type, default_occupancy)
    return per_level * parse_levels(tags.get("building:levels"))


def bucket_buildings(elements, bounds, grid_size, occupancy, default_occupancy):
    """
    Accumulate building occupants into a square grid.

    Elements without a usable ``center``, or whose center falls outside
    ``bounds``, are ignored.
    """
    grid = np.zeros((grid_size, grid_size), dtype=float)
    lat_span = bounds.north - bounds.south
    lng_span = bounds.east - bounds.west

    for element in elements:
        center = element.get("center") if isinstance(element, dict) else None
        if not center:
            continue
        try:
            building_lat = float(center["lat"])
            building_lng = float(center["lon"])
        except (KeyError, TypeError, ValueError):
            continue
        if not (math.isfinite(building_lat) and math.isfinite(building_lng)):
            continue

        row = math.floor((building_lat - bounds.south) / lat_span * grid_size)
        col = math.floor((building_lng - bounds.west) / lng_span * grid_size)
        if 0 <= row < grid_size and 0 <= col < grid_size:
            grid[row, col] += estimate_occupants(element.get("tags"), occupancy, default_occupancy)

    return grid


class OverpassBuildingSource:
    """
    Builds a population grid from OpenStreetMap building footprints.

    Args:
        url (str): Overpass interpreter endpoint.
        timeout (float): Limit in seconds for the whole request, body included.
        grid_size (int): Cells per side of the output grid.
        http: Object with a requests-compatible ``post``; defaults to the
              ``requests`` module.
        clock (callable, optional): Monotonic time source for the deadline.
    """

    name = "overpass"
    chunk_size = 64 * 1024

    def __init__(self, url=None, timeout=None, grid_size=None, query_timeout=None, http=None, clock=None):
        self.url = url or config.OVERPASS_URL
        self.timeout = timeout if timeout is not None else config.OVERPASS_TIMEOUT_S
        self.grid_size = grid_size or config.OSM_GRID_SIZE
        self.query_timeout = query_timeout or config.OVERPASS_QUERY_TIMEOUT_S
        self.http = http or requests
        self.clock = clock or time.monotonic
        self.occupancy, self.default_occupancy = load_occupancy_table()

    def build_query(self, lat, lng, radius_km):
        radius_m = km_to_m(radius_km)
        return (
            f"[out:json][timeout:{self.query_timeout}];\n"
            "(\n"
            f"  way[\"building\"](around:{radius_m:g},{lat},{lng});\n"
            f"  relation[\"building\"](around:{radius_m:g},{lat},{lng});\n"
            ");\n"
            "out center;"
        )

    def _read_body(self, response, deadline):
        """Read a streamed response body, giving up once ``deadline`` has passed."""
        chunks = []
        for chunk in response.iter_content(chunk_size=self.chunk_size):
            if self.clock() > deadline:
                raise GridSourceError(f"Overpass response not complete within {self.timeout:g} s")
            chunks.append(chunk)
        return b"".join(chunks)

    def fetch(self, lat, lng, radius_km, token=None):
        query = self.build_query(lat, lng, radius_km)
        deadline = self.clock() + self.timeout
        connect_timeout = min(config.OVERPASS_CONNECT_TIMEOUT_S, self.timeout)
        try:
            response = self.http.post(
                self.url,
                data={"data": query},
                headers={"User-Agent": config.USER_AGENT},
                timeout=(connect_timeout, self.timeout),
                stream=True,
            )
            try:
                response.raise_for_status()
                body = self._read_body(response, deadline)
            finally:
                response.close()
            payload = json.loads(body)
        except requests.RequestException as e:
            raise GridSourceError(f"Overpass request failed: {e}") from e
        except ValueError as e:
            raise GridSourceError(f"Overpass returned malformed JSON: {e}") from e

        # Stop before bucketing a superseded response
        if token is not None:
            token.raise_if_cancelled()

        elements = payload.get("elements") if isinstance(payload, dict) else None
        if not isinstance(elements, list):
            raise GridSourceError("Overpass response has no 'elements' list")

        bounds = grid_bounds(lat, lng, radius_km)
        try:
            data = bucket_buildings(elements, bounds, self.grid_size, self.occupancy, self.default_occupancy)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise GridSourceError(f"Overpass elements could not be parsed: {e}") from e
        logger.info("Bucketed %d Overpass elements into a %dx%d grid", len(elements), self.grid_size, self.grid_size)

        return PopulationGrid(
            bounds=bounds,
            resolution=grid_resolution(radius_km, self.grid_size),
            data=data,
        )


# =============================================================================
# SYNTHETIC GRADIENT SOURCE
# =============================================================================

class SyntheticGradientSource:
    """
    Radial urban density gradient with bounded random noise.

    Density falls linearly from the grid center to 30% of the peak at the
    corners, plus uniform noise of ±0.15 of the peak, clipped at zero.
    """

    name = "synthetic"

    def __init__(self, grid_size=None, max_density=None, rng=None):
        self.grid_size = grid_size or config.SYNTHETIC_GRID_SIZE
        self.max_density = max_density if max_density is not None else config.SYNTHETIC_MAX_DENSITY
        self.rng = rng

    def fetch(self, lat, lng, radius_km, token=None):
        if radius_km <= 0:
            raise GridSourceError(f"Cannot build a synthetic grid for radius {radius_km} km")

        size = self.grid_size
        rng = self.rng if self.rng is not None else np.random.default_rng()

        rows, cols = np.indices((size, size))
        center = size / 2
        distance = np.sqrt((rows - center) ** 2 + (cols - center) ** 2)
        normalized_distance = distance / (math.sqrt(2) * size / 2)

        base_density = np.maximum(0.0, 1 - normalized_distance * 0.7)
        noise = (rng.random((size, size)) - 0.5) * 0.3
        density = np.maximum(0.0, base_density + noise)

        cell_area_km2 = (radius_km * 2 / size) ** 2
        data = np.floor(density * self.max_density * cell_area_km2 + 0.5)

        return PopulationGrid(
            bounds=grid_bounds(lat, lng, radius_km),
            resolution=grid_resolution(radius_km, size),
            data=data,
        )


# =============================================================================
# PROVIDER
# =============================================================================

def default_sources():
    sources = []
    if config.POPULATION_RASTER_PATH:
        sources.append(RasterPopulationSource(config.POPULATION_RASTER_PATH))
    sources.append(OverpassBuildingSource())
    sources.append(SyntheticGradientSource())
    return sources


class PopulationGridProvider:
    """
    Fetches population grids through a cached fallback chain of sources.

    Args:
        sources (list, optional): Sources tried in order; defaults to
                                  ``default_sources()``.
        cache (optional): Object with ``get``/``set``/``clear``; defaults to a
                          ``TTLCache`` with ``config.CACHE_TTL_S``.
    """

    def __init__(self, sources=None, cache=None):
        self.sources = list(sources) if sources is not None else default_sources()
        self.cache = cache if cache is not None else TTLCache(config.CACHE_TTL_S)
        self._key_locks = {}
        self._key_locks_guard = threading.Lock()

    @staticmethod
    def cache_key(lat, lng, radius_km):
        return f"{lat:.4f}-{lng:.4f}-{radius_km}"

    @contextmanager
    def _key_lock(self, key):
        # One upstream fetch per key at a time
        with self._key_locks_guard:
            entry = self._key_locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._key_locks_guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._key_locks[key]

    def _cached(self, key):
        cached = self.cache.get(key)
        if cached is not None:
            logger.info("Using cached %s population grid for %s", cached.source, key)
            return replace(cached, cached=True)
        return None

    def fetch(self, lat, lng, radius_km, token=None):
        """
        Obtain a population grid around a point.

        Args:
            lat (float): Latitude of the center in decimal degrees.
            lng (float): Longitude of the center in decimal degrees.
            radius_km (float): Half-width of the area to cover.
            token (CancellationToken, optional): Checked before each source.

        Returns:
            GridFetchResult: The grid and the source that produced it, or a
                             result without a grid when every source failed.

        Raises:
            ComputationCancelled: If ``token`` was cancelled during the lookup.
        """
        key = self.cache_key(lat, lng, radius_km)

        cached = self._cached(key)
        if cached is not None:
            return cached

        with self._key_lock(key):
            cached = self._cached(key)
            if cached is not None:
                return cached

            reason = "No population sources configured"
            for source in self.sources:
                if token is not None:
                    token.raise_if_cancelled()
                try:
                    grid = source.fetch(lat, lng, radius_km, token=token)
                except (GridSourceError, InvalidGridError) as e:
                    reason = f"{source.name}: {e}"
                    logger.warning("Population source '%s' unavailable: %s", source.name, e)
                    continue

                result = GridFetchResult(grid=grid, source=source.name)
                self.cache.set(key, result)
                logger.info("Using %s population grid for %s", source.name, key)
                return result

        logger.info("External population data unavailable, using estimates")
        return GridFetchResult(grid=None, degraded_reason=reason)


_default_provider = None
_default_provider_lock = threading.Lock()

def get_default_provider():
    """Process-wide provider sharing one grid cache."""
    global _default_provider
    with _default_provider_lock:
        if _default_provider is None:
            _default_provider = PopulationGridProvider()
        return _default_provider

def fetch_population_grid(lat, lng, radius_km, provider=None, token=None):
    """
    Population grid around a point, or None when no source could provide one.
    """
    provider = provider or get_default_provider()
    return provider.fetch(lat, lng, radius_km, token=token).grid
