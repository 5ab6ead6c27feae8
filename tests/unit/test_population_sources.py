import json
import os
import tempfile
import threading
import unittest
from unittest import mock

import numpy as np
import rasterio
import requests
from rasterio.transform import from_origin

from blastcasualties import config, population_sources
from blastcasualties.cache import NullCache, TTLCache
from blastcasualties.cancellation import CancellationToken, ComputationCancelled
from blastcasualties.models import GridBounds, PopulationGrid
from blastcasualties.population_sources import (
    GridSourceError,
    OverpassBuildingSource,
    PopulationGridProvider,
    RasterPopulationSource,
    SyntheticGradientSource,
)
from blastcasualties.utils import bounding_box


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


class ConstantRandom:
    """Stands in for numpy's Generator with a fixed draw."""

    def __init__(self, value):
        self.value = value

    def random(self, shape):
        return np.full(shape, self.value)


class StubSource:
    def __init__(self, name, grid=None, error=None):
        self.name = name
        self.grid = grid
        self.error = error
        self.calls = 0

    def fetch(self, lat, lng, radius_km, token=None):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.grid


def small_grid():
    bounds = GridBounds(north=1.0, south=0.0, east=1.0, west=0.0)
    return PopulationGrid(bounds, 1000.0, np.ones((2, 2)))


def overpass_response(elements=None, status_error=None, payload=None, body=None):
    response = mock.Mock()
    if status_error is not None:
        response.raise_for_status.side_effect = status_error
    if body is None:
        body = json.dumps(payload if payload is not None else {"elements": elements or []}).encode("utf-8")
    response.iter_content.return_value = [body]
    return response


class TestSyntheticGradientSource(unittest.TestCase):
    def test_shape_bounds_and_resolution(self):
        source = SyntheticGradientSource(rng=np.random.default_rng(1))
        grid = source.fetch(40.0, -74.0, 5.0)

        self.assertEqual(grid.shape, (config.SYNTHETIC_GRID_SIZE, config.SYNTHETIC_GRID_SIZE))
        north, south, east, west = bounding_box(40.0, -74.0, 5.0)
        self.assertEqual(grid.bounds, GridBounds(north=north, south=south, east=east, west=west))
        self.assertAlmostEqual(grid.resolution, 10000.0 / config.SYNTHETIC_GRID_SIZE)
        self.assertTrue(np.all(grid.data >= 0))

    def test_radial_decay_without_noise(self):
        source = SyntheticGradientSource(grid_size=50, max_density=10000.0, rng=ConstantRandom(0.5))
        grid = source.fetch(0.0, 0.0, 5.0)

        # 0.2 km cells: 0.04 km² each
        self.assertEqual(grid.data[25, 25], 400)
        self.assertEqual(grid.data[0, 0], 120)
        self.assertGreater(grid.data[25, 25], grid.data[10, 10])

    def test_noise_is_bounded(self):
        low = SyntheticGradientSource(grid_size=50, rng=ConstantRandom(0.0)).fetch(0.0, 0.0, 5.0)
        high = SyntheticGradientSource(grid_size=50, rng=ConstantRandom(1.0)).fetch(0.0, 0.0, 5.0)

        # ±0.15 of the peak density, 400 people per cell at the peak
        self.assertEqual(high.data[25, 25] - low.data[25, 25], 120)
        self.assertTrue(np.all(low.data >= 0))

    def test_seeded_generator_is_reproducible(self):
        first = SyntheticGradientSource(rng=np.random.default_rng(42)).fetch(10.0, 10.0, 3.0)
        second = SyntheticGradientSource(rng=np.random.default_rng(42)).fetch(10.0, 10.0, 3.0)
        np.testing.assert_array_equal(first.data, second.data)

    def test_zero_radius_rejected(self):
        with self.assertRaises(GridSourceError):
            SyntheticGradientSource().fetch(0.0, 0.0, 0.0)


class TestBuildingOccupancy(unittest.TestCase):
    def test_parse_levels(self):
        self.assertEqual(population_sources.parse_levels(None), 1)
        self.assertEqual(population_sources.parse_levels("3"), 3)
        self.assertEqual(population_sources.parse_levels("2.5"), 2)
        self.assertEqual(population_sources.parse_levels("0"), 1)
        self.assertEqual(population_sources.parse_levels("many"), 1)
        self.assertEqual(population_sources.parse_levels(4), 4)

    def test_estimate_occupants(self):
        self.assertEqual(population_sources.estimate_occupants({"building": "apartments", "building:levels": "5"}), 30)
        self.assertEqual(population_sources.estimate_occupants({"building": "hospital"}), 30)
        self.assertEqual(population_sources.estimate_occupants({"building": "school", "building:levels": "2"}), 100)
        self.assertEqual(population_sources.estimate_occupants({"building": "yes"}), 4)
        self.assertEqual(population_sources.estimate_occupants(None), 4)

    def test_estimate_occupants_with_malformed_tags(self):
        self.assertEqual(population_sources.estimate_occupants("building"), 4)
        self.assertEqual(population_sources.estimate_occupants(["house"]), 4)
        self.assertEqual(population_sources.estimate_occupants({"building": ["house"], "building:levels": "2"}), 8)
        self.assertEqual(population_sources.estimate_occupants({"building": {"type": "house"}}), 4)
        self.assertEqual(population_sources.estimate_occupants({"building": ""}), 4)

    def test_bucket_buildings_skips_unusable_centers(self):
        bounds = GridBounds(north=1.0, south=0.0, east=1.0, west=0.0)
        elements = [
            {"center": {"lat": "nan", "lon": 0.5}},
            {"center": {"lat": 0.5, "lon": float("inf")}},
            {"center": {"lat": float("-inf"), "lon": 0.5}},
            {"center": "0.5,0.5"},
            {"center": {"lat": None, "lon": 0.5}},
            "way",
            {"center": {"lat": 0.05, "lon": 0.05}, "tags": "building"},
        ]
        occupancy, default = population_sources.load_occupancy_table()
        grid = population_sources.bucket_buildings(elements, bounds, 10, occupancy, default)

        self.assertEqual(grid[0, 0], 4)
        self.assertEqual(grid.sum(), 4)

    def test_bucket_buildings(self):
        bounds = GridBounds(north=1.0, south=0.0, east=1.0, west=0.0)
        elements = [
            {"center": {"lat": 0.05, "lon": 0.05}, "tags": {"building": "house"}},
            {"center": {"lat": 0.95, "lon": 0.15}, "tags": {"building": "office", "building:levels": "3"}},
            {"center": {"lat": 0.96, "lon": 0.11}, "tags": {"building": "yes"}},
            {"center": {"lat": 1.5, "lon": 0.5}, "tags": {"building": "house"}},
            {"tags": {"building": "house"}},
        ]
        occupancy, default = population_sources.load_occupancy_table()
        grid = population_sources.bucket_buildings(elements, bounds, 10, occupancy, default)

        self.assertEqual(grid.shape, (10, 10))
        self.assertEqual(grid[0, 0], 4)
        self.assertEqual(grid[9, 1], 64)
        self.assertEqual(grid.sum(), 68)


class TestOverpassBuildingSource(unittest.TestCase):
    def setUp(self):
        self.http = mock.Mock()
        self.source = OverpassBuildingSource(http=self.http)

    def test_query(self):
        query = self.source.build_query(51.5, -0.12, 2.0)
        self.assertIn('way["building"](around:2000,51.5,-0.12);', query)
        self.assertIn('relation["building"](around:2000,51.5,-0.12);', query)
        self.assertTrue(query.startswith("[out:json][timeout:25];"))
        self.assertTrue(query.endswith("out center;"))

    def test_fetch_buckets_buildings(self):
        self.http.post.return_value = overpass_response([
            {"type": "way", "center": {"lat": 51.5, "lon": -0.12}, "tags": {"building": "apartments", "building:levels": "4"}},
            {"type": "way", "center": {"lat": 51.501, "lon": -0.121}, "tags": {"building": "house"}},
        ])

        grid = self.source.fetch(51.5, -0.12, 2.0)

        self.http.post.assert_called_once()
        args, kwargs = self.http.post.call_args
        self.assertEqual(args[0], config.OVERPASS_URL)
        self.assertEqual(kwargs["data"], {"data": self.source.build_query(51.5, -0.12, 2.0)})
        self.assertEqual(kwargs["timeout"], (config.OVERPASS_CONNECT_TIMEOUT_S, config.OVERPASS_TIMEOUT_S))
        self.assertTrue(kwargs["stream"])
        self.http.post.return_value.close.assert_called_once()
        self.assertEqual(grid.shape, (config.OSM_GRID_SIZE, config.OSM_GRID_SIZE))
        self.assertEqual(grid.total(), 28)
        self.assertAlmostEqual(grid.resolution, 4000.0 / config.OSM_GRID_SIZE)

    def test_empty_result_is_a_grid(self):
        self.http.post.return_value = overpass_response([])
        grid = self.source.fetch(51.5, -0.12, 2.0)
        self.assertEqual(grid.total(), 0)

    def test_network_errors_become_source_errors(self):
        for error in (requests.Timeout("slow"), requests.ConnectionError("down")):
            self.http.post.side_effect = error
            with self.assertRaises(GridSourceError):
                self.source.fetch(51.5, -0.12, 2.0)

    def test_http_error_status(self):
        self.http.post.return_value = overpass_response(status_error=requests.HTTPError("429 Too Many Requests"))
        with self.assertRaises(GridSourceError):
            self.source.fetch(51.5, -0.12, 2.0)

    def test_malformed_json(self):
        self.http.post.return_value = overpass_response(body=b"<html>Too busy</html>")
        with self.assertRaises(GridSourceError):
            self.source.fetch(51.5, -0.12, 2.0)

    def test_slow_body_exceeds_deadline(self):
        clock = FakeClock()
        source = OverpassBuildingSource(http=self.http, timeout=10.0, clock=clock)

        def trickle(chunk_size):
            for piece in (b'{"elements": ', b'[]', b'}'):
                clock.now += 4.0
                yield piece

        response = overpass_response()
        response.iter_content.side_effect = trickle
        self.http.post.return_value = response

        with self.assertRaises(GridSourceError):
            source.fetch(51.5, -0.12, 2.0)
        response.close.assert_called_once()

    def test_connect_timeout_capped_by_total(self):
        source = OverpassBuildingSource(http=self.http, timeout=2.0)
        self.http.post.return_value = overpass_response([])
        source.fetch(51.5, -0.12, 2.0)
        self.assertEqual(self.http.post.call_args[1]["timeout"], (2.0, 2.0))

    def test_unparseable_elements_become_source_errors(self):
        self.http.post.return_value = overpass_response([{"center": {"lat": 51.5, "lon": -0.12}}])
        with mock.patch.object(population_sources, "bucket_buildings", side_effect=ValueError("bad element")):
            with self.assertRaises(GridSourceError):
                self.source.fetch(51.5, -0.12, 2.0)

    def test_malformed_elements_are_skipped(self):
        self.http.post.return_value = overpass_response([
            {"center": {"lat": "nan", "lon": 0}},
            {"center": {"lat": 51.5, "lon": "inf"}},
            {"center": {"lat": 51.5, "lon": -0.12}, "tags": "building"},
        ])
        grid = self.source.fetch(51.5, -0.12, 2.0)
        self.assertEqual(grid.total(), 4)

    def test_missing_elements(self):
        self.http.post.return_value = overpass_response(payload={"remark": "runtime error"})
        with self.assertRaises(GridSourceError):
            self.source.fetch(51.5, -0.12, 2.0)

    def test_cancelled_while_waiting(self):
        token = CancellationToken(1)
        self.http.post.side_effect = lambda *args, **kwargs: (token.cancel(), overpass_response([]))[1]
        with self.assertRaises(ComputationCancelled):
            self.source.fetch(51.5, -0.12, 2.0, token=token)


class TestRasterPopulationSource(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.path = os.path.join(self.tmpdir.name, "population.tif")
        data = np.full((100, 100), 5.0, dtype="float32")
        data[50, 50] = -9999.0
        with rasterio.open(
            self.path, "w", driver="GTiff", height=100, width=100, count=1, dtype="float32",
            crs="EPSG:4326", transform=from_origin(0.0, 1.0, 0.01, 0.01), nodata=-9999.0,
        ) as dst:
            dst.write(data, 1)

    def tearDown(self):
        self.tmpdir.cleanup()

    def test_reads_window_around_point(self):
        grid = RasterPopulationSource(self.path).fetch(0.5, 0.5, 5.55)

        rows, cols = grid.shape
        self.assertTrue(10 <= rows <= 12)
        self.assertTrue(10 <= cols <= 12)
        # The nodata pixel counts as empty
        self.assertEqual(grid.data.min(), 0.0)
        self.assertEqual(grid.total(), 5.0 * (rows * cols - 1))
        self.assertTrue(grid.bounds.south < 0.5 < grid.bounds.north)
        self.assertTrue(grid.bounds.west < 0.5 < grid.bounds.east)
        self.assertAlmostEqual(grid.resolution, 1110.0)

    def test_point_outside_raster(self):
        with self.assertRaises(GridSourceError):
            RasterPopulationSource(self.path).fetch(10.0, 10.0, 5.0)

    def test_missing_file(self):
        with self.assertRaises(GridSourceError):
            RasterPopulationSource(os.path.join(self.tmpdir.name, "missing.tif")).fetch(0.5, 0.5, 5.0)

    def test_unconfigured(self):
        with self.assertRaises(GridSourceError):
            RasterPopulationSource(None).fetch(0.5, 0.5, 5.0)


class TestPopulationGridProvider(unittest.TestCase):
    def test_cache_key(self):
        self.assertEqual(PopulationGridProvider.cache_key(51.50741, -0.12781, 20.0), "51.5074--0.1278-20.0")

    def test_first_successful_source_wins(self):
        failing = StubSource("overpass", error=GridSourceError("timed out"))
        fallback = StubSource("synthetic", grid=small_grid())
        unused = StubSource("other", grid=small_grid())
        provider = PopulationGridProvider([failing, fallback, unused], cache=NullCache())

        with self.assertLogs(population_sources.logger, level="WARNING"):
            result = provider.fetch(51.5, -0.12, 20.0)

        self.assertTrue(result.available)
        self.assertEqual(result.source, "synthetic")
        self.assertIsNone(result.degraded_reason)
        self.assertEqual((failing.calls, fallback.calls, unused.calls), (1, 1, 0))

    def test_all_sources_failing(self):
        provider = PopulationGridProvider(
            [StubSource("overpass", error=GridSourceError("timed out")),
             StubSource("synthetic", error=GridSourceError("no radius"))],
            cache=NullCache(),
        )
        result = provider.fetch(51.5, -0.12, 20.0)

        self.assertFalse(result.available)
        self.assertIsNone(result.grid)
        self.assertIn("synthetic", result.degraded_reason)
        self.assertIsNone(population_sources.fetch_population_grid(51.5, -0.12, 20.0, provider=provider))

    def test_bad_overpass_data_falls_back(self):
        http = mock.Mock()
        http.post.return_value = overpass_response([{"center": {"lat": 51.5, "lon": -0.12}, "tags": {}}])
        provider = PopulationGridProvider(
            [OverpassBuildingSource(http=http), SyntheticGradientSource(rng=np.random.default_rng(7))],
            cache=NullCache(),
        )

        with mock.patch.object(population_sources, "bucket_buildings", side_effect=TypeError("unhashable")):
            with self.assertLogs(population_sources.logger, level="WARNING"):
                result = provider.fetch(51.5, -0.12, 2.0)

        self.assertTrue(result.available)
        self.assertEqual(result.source, "synthetic")

    def test_cache_hit_skips_sources(self):
        source = StubSource("overpass", grid=small_grid())
        provider = PopulationGridProvider([source], cache=TTLCache(300))

        first = provider.fetch(51.5, -0.12, 20.0)
        second = provider.fetch(51.50001, -0.12001, 20.0)

        self.assertEqual(source.calls, 1)
        self.assertFalse(first.cached)
        self.assertTrue(second.cached)
        self.assertIs(second.grid, first.grid)
        self.assertEqual(second.source, "overpass")

    def test_expired_entry_refetched(self):
        clock = FakeClock()
        source = StubSource("overpass", grid=small_grid())
        provider = PopulationGridProvider([source], cache=TTLCache(300, clock=clock))

        provider.fetch(51.5, -0.12, 20.0)
        clock.now = 299.0
        provider.fetch(51.5, -0.12, 20.0)
        self.assertEqual(source.calls, 1)

        clock.now = 301.0
        provider.fetch(51.5, -0.12, 20.0)
        self.assertEqual(source.calls, 2)

    def test_failures_not_cached(self):
        source = StubSource("overpass", error=GridSourceError("down"))
        provider = PopulationGridProvider([source], cache=TTLCache(300))

        provider.fetch(51.5, -0.12, 20.0)
        provider.fetch(51.5, -0.12, 20.0)
        self.assertEqual(source.calls, 2)

    def test_cancelled_token_stops_chain(self):
        source = StubSource("overpass", grid=small_grid())
        provider = PopulationGridProvider([source], cache=NullCache())
        token = CancellationToken(3)
        token.cancel()

        with self.assertRaises(ComputationCancelled):
            provider.fetch(51.5, -0.12, 20.0, token=token)
        self.assertEqual(source.calls, 0)

    def test_concurrent_fetches_share_one_lookup(self):
        entered = threading.Event()
        release = threading.Event()
        grid = small_grid()

        class SlowSource:
            name = "overpass"
            calls = 0

            def fetch(self, lat, lng, radius_km, token=None):
                SlowSource.calls += 1
                entered.set()
                release.wait(5)
                return grid

        provider = PopulationGridProvider([SlowSource()], cache=TTLCache(300))
        results = []

        def worker():
            results.append(provider.fetch(51.5, -0.12, 20.0))

        first = threading.Thread(target=worker)
        first.start()
        entered.wait(5)
        second = threading.Thread(target=worker)
        second.start()
        release.set()
        first.join(5)
        second.join(5)

        self.assertEqual(SlowSource.calls, 1)
        self.assertEqual(len(results), 2)
        self.assertTrue(all(result.grid is grid for result in results))

    def test_default_sources_skip_unconfigured_raster(self):
        with mock.patch.object(config, "POPULATION_RASTER_PATH", None):
            names = [source.name for source in population_sources.default_sources()]
        self.assertEqual(names, ["overpass", "synthetic"])

        with mock.patch.object(config, "POPULATION_RASTER_PATH", "/data/population.tif"):
            names = [source.name for source in population_sources.default_sources()]
        self.assertEqual(names, ["raster", "overpass", "synthetic"])


if __name__ == '__main__':
    unittest.main()
