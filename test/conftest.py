"""
Shared pytest fixtures: small synthetic rasters, domains and incident
layers on a projected (UTM 45N) grid and on a geographic grid.
"""
import geopandas as gpd
import numpy as np
import pandas as pd
import pytest
from rasterio.transform import Affine
from shapely.geometry import box

import config
from landslide_risk.raster import Raster

UTM = "EPSG:32645"
UTM_ORIGIN = (500_000.0, 3_110_000.0)   # upper-left corner
UTM_PIXEL = 100.0

GEO_BOUNDS = (84.0, 28.0, 84.3, 28.3)
GEO_PIXEL = 0.0025


def utm_raster(data, pixel: float = UTM_PIXEL, name: str = "band") -> Raster:
    """Raster on the projected test grid, anchored at UTM_ORIGIN."""
    x0, y0 = UTM_ORIGIN
    return Raster(np.asarray(data, dtype=float), Affine(pixel, 0, x0, 0, -pixel, y0), UTM, name)


def utm_bounds(shape, pixel: float = UTM_PIXEL) -> tuple:
    x0, y0 = UTM_ORIGIN
    h, w = shape
    return (x0, y0 - h * pixel, x0 + w * pixel, y0)


def geo_raster(data, name: str = "band") -> Raster:
    west, _, _, north = GEO_BOUNDS
    return Raster(np.asarray(data, dtype=float),
                  Affine(GEO_PIXEL, 0, west, 0, -GEO_PIXEL, north), config.CRS, name)


@pytest.fixture
def rng():
    return np.random.default_rng(0)


@pytest.fixture
def utm_domain():
    """Square domain covering a 60 × 60 grid of 100 m pixels."""
    return box(*utm_bounds((60, 60)))


@pytest.fixture
def utm_sources(rng):
    """Raw factor sources on the projected 60 × 60 grid."""
    rows, cols = np.mgrid[0:60, 0:60]
    dem = 800.0 + 4.0 * cols ** 1.5 + 20.0 * np.sin(rows / 6.0)

    flow = rng.integers(0, 40, size=(60, 60)).astype(float)
    flow[:, 30] = 500.0                          # one north-south stream
    flow[45, :] = 120.0                          # one east-west stream

    landcover = rng.choice(list(config.LANDCOVER_REMAP), size=(60, 60)).astype(float)
    texture = rng.integers(1, 13, size=(60, 60)).astype(float)
    clay_top = 20.0 + 10.0 * rng.random((60, 60))
    clay_sub = 30.0 + 10.0 * rng.random((60, 60))

    return {
        "dem": utm_raster(dem, name="elevation"),
        "landcover": utm_raster(landcover, name="landcover"),
        "flow_accumulation": utm_raster(flow, name="flow_accumulation"),
        "soil_texture": utm_raster(texture, name="soil_texture"),
        "clay": [utm_raster(clay_top, name="clay"), utm_raster(clay_sub, name="clay")],
    }


# ── Geographic study area used by the pipeline / CLI tests ─────────────────

@pytest.fixture(scope="session")
def geo_domain():
    return box(*GEO_BOUNDS)


@pytest.fixture(scope="session")
def geo_inputs():
    """
    Sources at 0.0025° over a 0.3° square: terrain steepens eastwards,
    people live in the western half.
    """
    gen = np.random.default_rng(7)
    n = round((GEO_BOUNDS[2] - GEO_BOUNDS[0]) / GEO_PIXEL)
    rows, cols = np.mgrid[0:n, 0:n]
    east = cols / (n - 1)

    dem = 1000.0 + 3000.0 * east ** 2 + 40.0 * np.sin(rows / 5.0) + gen.normal(0, 5, (n, n))
    flow = gen.integers(0, 30, size=(n, n)).astype(float)
    flow[:, n // 3] = 400.0
    flow[n // 2, :] = 200.0
    landcover = gen.choice(list(config.LANDCOVER_REMAP), size=(n, n)).astype(float)
    texture = gen.integers(1, 13, size=(n, n)).astype(float)
    clay = 15.0 + 25.0 * east + gen.random((n, n))
    population = np.where(east < 0.5, 50.0, 0.0)

    sources = {
        "dem": geo_raster(dem, "elevation"),
        "landcover": geo_raster(landcover, "landcover"),
        "flow_accumulation": geo_raster(flow, "flow_accumulation"),
        "soil_texture": geo_raster(texture, "soil_texture"),
        "clay": geo_raster(clay, "clay"),
    }
    return sources, geo_raster(population, "population")


@pytest.fixture(scope="session")
def geo_incidents():
    """80 incidents in the source-layer schema, spread over the whole domain."""
    gen = np.random.default_rng(11)
    west, south, east, north = GEO_BOUNDS
    n = 80
    lon = gen.uniform(west + 0.005, east - 0.005, n)
    lat = gen.uniform(south + 0.005, north - 0.005, n)
    years = gen.integers(2011, 2024, n)
    return gpd.GeoDataFrame(
        {
            "peopleDeathCount": gen.integers(0, 3, n),
            "peopleInjuredCount": gen.integers(0, 5, n),
            "peopleMissingCount": np.zeros(n, dtype=int),
            "peopleAffectedCount": gen.integers(0, 20, n),
            "infrastructureDestroyedCount": gen.integers(0, 2, n),
            "incidentOn": [f"{y}-07-15" for y in years],
        },
        geometry=gpd.points_from_xy(lon, lat),
        crs=config.CRS,
    )


@pytest.fixture(scope="session")
def geo_districts():
    west, south, east, north = GEO_BOUNDS
    mid = (west + east) / 2
    return gpd.GeoDataFrame(
        {config.DISTRICT_FIELD: ["West", "East"]},
        geometry=[box(west, south, mid, north), box(mid, south, east, north)],
        crs=config.CRS,
    )


@pytest.fixture
def incident_table():
    """Plain incident attributes in the source-layer schema."""
    return pd.DataFrame({
        "peopleDeathCount": [0, 2, 0, None],
        "peopleInjuredCount": [0, 0, 0, 1],
        "peopleMissingCount": [0, 0, 0, 0],
        "peopleAffectedCount": [0, 10, 0, 0],
        "infrastructureDestroyedCount": [0, 0, 3, 0],
        "incidentOn": ["2012-06-01", "2015-08-20", "2019-07-03", "2021-09-11"],
    })
