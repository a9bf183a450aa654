import math

import numpy as np
import pytest

import config
from conftest import UTM, utm_bounds, utm_raster
from landslide_risk.factors import (
    FACTOR_SOURCES,
    build_factor_layers,
    compute_slope,
    distance_to_drainage,
    drainage_density,
    normalize,
    reclassify,
    soil_texture_factor,
    validate_range,
)
from landslide_risk.raster import common_grid


# ── Normalisation ───────────────────────────────────────────────────────────

def test_normalize_maps_domain_to_unit_interval(rng):
    data = rng.normal(500, 120, size=(20, 20))
    data[0, 0] = np.nan
    layer = normalize(utm_raster(data), "elevation")
    valid = layer.raster.data[layer.raster.valid]
    assert valid.min() == 0.0 and valid.max() == 1.0
    assert np.isnan(layer.raster.data[0, 0])
    assert layer.min_value == pytest.approx(np.nanmin(data))
    assert layer.weight == config.WEIGHTS["elevation"]


def test_normalize_invert():
    layer = normalize(utm_raster([[0.0, 5.0, 10.0]]), "distance_to_drainage", invert=True)
    np.testing.assert_allclose(layer.raster.data, [[1.0, 0.5, 0.0]])
    assert layer.weight == 0.0


def test_degenerate_factor_falls_back_to_zero(capsys):
    data = np.full((4, 4), 7.0)
    data[0, 0] = np.nan
    layer = normalize(utm_raster(data), "clay")
    assert np.all(layer.raster.data[1:, :] == 0.0)
    assert np.isnan(layer.raster.data[0, 0])
    assert layer.min_value == layer.max_value == 7.0
    assert "[WARN]" in capsys.readouterr().out


def test_missing_coverage_gives_all_nodata(capsys):
    layer = normalize(utm_raster(np.full((3, 3), np.nan)), "slope")
    assert not layer.raster.valid.any()
    assert "[WARN]" in capsys.readouterr().out


def test_validate_range_reports_bounds():
    layer = normalize(utm_raster([[1.0, 2.0, 3.0]]), "slope")
    assert validate_range(layer) == {"min": 0.0, "max": 1.0}


# ── Derived factors ─────────────────────────────────────────────────────────

def test_slope_of_inclined_plane():
    cols = np.tile(np.arange(10, dtype=float), (10, 1))
    dem = utm_raster(cols * 10.0)            # 10 m rise per 100 m pixel
    slope = compute_slope(dem)
    expected = math.degrees(math.atan(0.1))
    np.testing.assert_allclose(slope.data, expected, rtol=1e-9)


def test_reclassify_lookup_miss_is_nodata_not_zero(capsys):
    raw = utm_raster([[0.0, 13.0, 99.0, np.nan]])
    out = reclassify(raw, config.LANDCOVER_REMAP, "landcover")
    assert out.data[0, 0] == 0.0                 # code 0 is a real ordinal
    assert out.data[0, 1] == 1.0
    assert np.isnan(out.data[0, 2])
    assert np.isnan(out.data[0, 3])
    assert "unmapped codes [99]" in capsys.readouterr().out


def test_soil_texture_is_not_inverted():
    out = soil_texture_factor(utm_raster([[1.0, 5.0, 9.0, 10.0, 12.0]]))
    np.testing.assert_array_equal(out.data, [[3, 2, 1, 2, 1]])


def test_drainage_density_extremes():
    everywhere = drainage_density(utm_raster(np.full((10, 10), 100.0)))
    nowhere = drainage_density(utm_raster(np.zeros((10, 10))))
    assert np.allclose(everywhere.data, 1.0)
    assert np.allclose(nowhere.data, 0.0)


def test_drainage_density_ignores_nodata():
    flow = np.full((10, 10), 100.0)
    flow[:, :5] = np.nan
    out = drainage_density(utm_raster(flow))
    assert np.all(np.isnan(out.data[:, :5]))
    assert np.allclose(out.data[:, 5:], 1.0)


def test_distance_to_drainage_in_metres():
    flow = np.zeros((5, 10))
    flow[:, 0] = 1000.0
    dist = distance_to_drainage(utm_raster(flow))
    assert dist.data[2, 0] == 0.0
    assert dist.data[2, 5] == pytest.approx(500.0)


def test_distance_without_streams_is_flat(capsys):
    dist = distance_to_drainage(utm_raster(np.zeros((4, 4))))
    assert np.all(dist.data == 0.0)
    assert "[WARN]" in capsys.readouterr().out


# ── Builder ─────────────────────────────────────────────────────────────────

@pytest.fixture
def template():
    return common_grid(utm_bounds((60, 60)), scale=200, crs=UTM)


def test_build_factor_layers_on_common_grid(utm_sources, utm_domain, template):
    layers = build_factor_layers(utm_sources, utm_domain, template, UTM)

    assert set(layers) == set(FACTOR_SOURCES)
    for name, layer in layers.items():
        r = layer.raster
        assert r.same_grid(template), name
        assert r.name == name
        values = r.data[r.valid]
        assert values.size > 0, name
        assert values.min() >= 0.0 and values.max() <= 1.0, name


def test_categorical_factors_keep_their_ordinals(utm_sources, utm_domain, template):
    layers = build_factor_layers(utm_sources, utm_domain, template, UTM)
    soil = layers["soil_texture"].raster
    assert set(np.unique(soil.data[soil.valid])) <= {0.0, 0.5, 1.0}


def test_parallel_build_matches_serial(utm_sources, utm_domain, template):
    serial = build_factor_layers(utm_sources, utm_domain, template, UTM, n_workers=1)
    parallel = build_factor_layers(utm_sources, utm_domain, template, UTM, n_workers=3)
    for name in serial:
        np.testing.assert_array_equal(serial[name].raster.data, parallel[name].raster.data)


def test_missing_source_is_rejected(utm_sources, utm_domain, template):
    del utm_sources["clay"]
    with pytest.raises(ValueError, match="clay"):
        build_factor_layers(utm_sources, utm_domain, template, UTM)
