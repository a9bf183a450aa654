import geopandas as gpd
import numpy as np
import pytest
import shapely
from shapely.geometry import Polygon, box

import config
from conftest import UTM, utm_bounds, utm_raster
from landslide_risk.errors import EmptySampleError
from landslide_risk.population import population_mask
from landslide_risk.sampling import (
    filter_damaging,
    filter_since_year,
    label_points,
    observed_points,
    oversample_factor,
    prepare_incidents,
    random_points,
    random_populated_points,
    sample_raster,
    sample_zones,
)

TRIANGLE = Polygon([(0, 0), (10, 0), (0, 10)])


# ── Random points ───────────────────────────────────────────────────────────

def test_random_points_are_reproducible():
    a = random_points(TRIANGLE, 200, seed=42)
    b = random_points(TRIANGLE, 200, seed=42)
    np.testing.assert_array_equal(a.geometry.x, b.geometry.x)
    np.testing.assert_array_equal(a.geometry.y, b.geometry.y)


def test_random_points_depend_on_seed():
    a = random_points(TRIANGLE, 50, seed=1)
    b = random_points(TRIANGLE, 50, seed=2)
    assert not np.array_equal(a.geometry.x, b.geometry.x)


def test_random_points_lie_inside_domain():
    pts = random_points(TRIANGLE, 500, seed=3)
    assert len(pts) == 500
    assert list(pts["point_id"]) == list(range(500))
    assert shapely.contains_xy(TRIANGLE, pts.geometry.x, pts.geometry.y).all()


def test_explicit_generator_is_advanced():
    rng = np.random.default_rng(9)
    first = random_points(TRIANGLE, 20, rng=rng)
    second = random_points(TRIANGLE, 20, rng=rng)
    assert not np.array_equal(first.geometry.x, second.geometry.x)


def test_random_points_in_empty_domain_fail():
    with pytest.raises(EmptySampleError):
        random_points(Polygon(), 10)


# ── Oversampling ────────────────────────────────────────────────────────────

def test_oversample_factor():
    assert oversample_factor(100.0, 10.0) == 10
    assert oversample_factor(101.0, 10.0) == 11
    assert oversample_factor(5.0, 10.0) == 1


def test_oversample_without_population_fails():
    with pytest.raises(EmptySampleError):
        oversample_factor(100.0, 0.0)


def test_random_populated_points_land_on_populated_pixels():
    pop = np.zeros((20, 20))
    pop[:, :4] = 10.0                            # 20 % populated
    mask = population_mask(utm_raster(pop))
    domain = box(*utm_bounds((20, 20)))

    pts = random_populated_points(domain, 50, mask, seed=5, crs=UTM, domain_km2=4.0)
    assert 0 < len(pts) <= 50
    x0 = utm_bounds((20, 20))[0]
    assert (pts.geometry.x < x0 + 400).all()


# ── Incidents ───────────────────────────────────────────────────────────────

def _incidents(table):
    return gpd.GeoDataFrame(
        table, geometry=gpd.points_from_xy(range(len(table)), [0] * len(table)), crs=config.CRS
    )


def test_prepare_incidents_renames_and_fills(incident_table):
    gdf = prepare_incidents(_incidents(incident_table))
    assert {"deaths", "injuries", "missing", "affected", "infrastructure_destroyed"} <= set(gdf.columns)
    assert gdf["deaths"].tolist() == [0, 2, 0, 0]
    assert gdf["year"].tolist() == [2012, 2015, 2019, 2021]


def test_filter_damaging(incident_table):
    gdf = filter_damaging(prepare_incidents(_incidents(incident_table)))
    assert gdf["year"].tolist() == [2015, 2019, 2021]


def test_filter_since_year(incident_table):
    gdf = filter_since_year(prepare_incidents(_incidents(incident_table)), 2016)
    assert gdf["year"].tolist() == [2019, 2021]


# ── Raster sampling ─────────────────────────────────────────────────────────

@pytest.fixture
def grid_points():
    """Points at the centres of pixels (0,0), (0,1), (1,1) and one off-grid."""
    x0, y0 = utm_bounds((2, 2))[0], utm_bounds((2, 2))[3]
    xs = [x0 + 50, x0 + 150, x0 + 150, x0 + 900]
    ys = [y0 - 50, y0 - 50, y0 - 150, y0 - 50]
    return gpd.GeoDataFrame({"id": range(4)}, geometry=gpd.points_from_xy(xs, ys), crs=UTM)


def test_sample_raster_keeps_geometry(grid_points):
    r = utm_raster([[0.1, 0.2], [0.3, 0.4]], name="risk")
    out = sample_raster(grid_points, r)
    assert out["risk"].iloc[:3].tolist() == [0.1, 0.2, 0.4]
    assert np.isnan(out["risk"].iloc[3])
    assert out.geometry.geom_equals(grid_points.geometry).all()
    assert "risk" not in grid_points.columns


def test_sample_zones_drops_points_without_zone(grid_points):
    zones = utm_raster([[1.0, 3.0], [2.0, np.nan]], name="zone")
    out = sample_zones(grid_points, zones)
    assert out["zone"].tolist() == [1, 3]
    assert out["zone"].dtype.kind == "i"


def test_observed_points_filtered_by_mask(grid_points):
    mask = population_mask(utm_raster([[1.0, 0.0], [0.0, 7.0]]))
    out = observed_points(grid_points, mask)
    assert out["id"].tolist() == [0, 2]
    assert len(observed_points(grid_points)) == 4


def test_label_points():
    pts = random_points(TRIANGLE, 3, seed=1)
    out = label_points(pts, 1)
    assert out["class"].tolist() == [1, 1, 1]
    assert "class" not in pts.columns
