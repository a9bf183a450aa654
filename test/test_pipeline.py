import json

import geopandas as gpd
import numpy as np
import pandas as pd
import pytest

import config
import main
from landslide_risk.pipeline import RANDOM_STREAMS, PipelineOptions, random_streams, run_pipeline
from landslide_risk.raster import export_geotiff


@pytest.fixture(scope="module")
def options():
    return PipelineOptions(n_trees=10)


@pytest.fixture(scope="module")
def result(geo_inputs, geo_domain, geo_incidents, geo_districts, options):
    sources, population = geo_inputs
    return run_pipeline(sources, population, geo_domain, geo_incidents, geo_districts, options)


def test_every_artifact_is_on_the_common_grid(result):
    grid = result.susceptibility
    for raster in (result.susceptibility_populated, result.zones, result.zones_populated,
                   result.population, result.populated):
        assert raster.same_grid(grid)
    for layer in result.layers.values():
        assert layer.raster.same_grid(grid)


def test_susceptibility_range(result):
    for raster in (result.susceptibility, result.susceptibility_populated):
        values = raster.data[raster.valid]
        assert values.min() == pytest.approx(0.0) and values.max() == pytest.approx(1.0)


def test_populated_layers_are_nodata_where_nobody_lives(result):
    unpopulated = result.populated.data == 0
    assert unpopulated.any()
    assert np.isnan(result.susceptibility_populated.data[unpopulated]).all()
    assert np.isnan(result.zones_populated.data[unpopulated]).all()


def test_zone_partitions(result):
    for zones in (result.zones, result.zones_populated):
        values = zones.data[zones.valid]
        assert set(np.unique(values)) == {1.0, 2.0, 3.0}


def test_validation_scopes_are_reported_separately(result):
    assert set(result.validations) == {"global", "populated"}
    glob, pop = result.validations["global"], result.validations["populated"]
    assert pop.n_observed < glob.n_observed
    for v in (glob, pop):
        assert v.chi_square >= 0.0
        assert v.confusion.total == v.n_observed + v.n_random


def test_classifier_outputs(result):
    assert set(result.classifiers) == {"global", "populated"}
    pop = result.classifiers["populated"]
    unpopulated = result.populated.data == 0
    assert np.isnan(pop.probability.data[unpopulated]).all()
    glob = result.classifiers["global"].probability
    assert glob.data[glob.valid].min() >= 0.0 and glob.data[glob.valid].max() <= 1.0


def test_district_outputs(result):
    table = result.district_table.set_index("district")
    assert list(table.index) == ["West", "East"]
    assert table.loc["East", "avg_susceptibility"] > table.loc["West", "avg_susceptibility"]
    assert table.loc["East", "population"] == pytest.approx(0.0, abs=1e-6)
    assert result.national.total_incidents == table["incidents"].sum()
    assert "relative_risk_index" in table.columns


def test_same_seed_reproduces_every_artifact(result, geo_inputs, geo_domain,
                                             geo_incidents, geo_districts, options):
    sources, population = geo_inputs
    again = run_pipeline(sources, population, geo_domain, geo_incidents, geo_districts, options)

    np.testing.assert_array_equal(again.susceptibility.data, result.susceptibility.data)
    np.testing.assert_array_equal(again.zones_populated.data, result.zones_populated.data)
    for scope in ("global", "populated"):
        assert again.validations[scope] == result.validations[scope]
        np.testing.assert_array_equal(again.classifiers[scope].probability.data,
                                      result.classifiers[scope].probability.data)


def test_populated_pass_ignores_unpopulated_incidents(result, geo_inputs, geo_domain,
                                                     geo_incidents, geo_districts, options):
    sources, population = geo_inputs
    extra = geo_incidents.iloc[[0]].set_geometry(
        gpd.points_from_xy([84.28], [28.15]), crs=config.CRS
    )
    more = pd.concat([geo_incidents, extra], ignore_index=True)
    again = run_pipeline(sources, population, geo_domain, more, geo_districts, options)

    assert again.validations["global"].n_observed == result.validations["global"].n_observed + 1
    assert again.validations["populated"] == result.validations["populated"]
    pop_a, pop_b = again.classifiers["populated"], result.classifiers["populated"]
    assert pop_a.evaluation.confusion == pop_b.evaluation.confusion
    np.testing.assert_array_equal(pop_a.probability.data, pop_b.probability.data)


def test_random_streams_are_independent():
    a = random_streams(42)
    b = random_streams(42)
    assert list(a) == list(RANDOM_STREAMS)
    a["control"].random(1000)
    assert a["split_populated"].random() == b["split_populated"].random()
    assert random_streams(42)["control"].random() != random_streams(42)["split"].random()


def test_damaging_only_filter(geo_inputs, geo_domain, geo_incidents):
    sources, population = geo_inputs
    opts = PipelineOptions(damaging_only=True, since_year=2015, skip_classifier=True)
    filtered = run_pipeline(sources, population, geo_domain, geo_incidents, options=opts)
    assert filtered.classifiers == {}
    assert filtered.district_table is None
    assert filtered.validations["global"].n_observed < len(geo_incidents)


# ── CLI ─────────────────────────────────────────────────────────────────────

def test_cli_writes_every_artifact(tmp_path, geo_inputs, geo_incidents, geo_districts):
    sources, population = geo_inputs
    inputs = tmp_path / "inputs"
    paths = {
        key: export_geotiff(sources[key], f"{key}.tif", str(inputs))
        for key in ("dem", "landcover", "flow_accumulation", "soil_texture", "clay")
    }
    paths["population"] = export_geotiff(population, "population.tif", str(inputs))

    boundary = geo_districts.dissolve()
    boundary.to_file(inputs / "boundary.geojson", driver="GeoJSON")
    geo_incidents.to_file(inputs / "incidents.geojson", driver="GeoJSON")
    geo_districts.to_file(inputs / "districts.geojson", driver="GeoJSON")

    out = tmp_path / "out"
    main.main([
        "--dem", paths["dem"],
        "--landcover", paths["landcover"],
        "--flow-accum", paths["flow_accumulation"],
        "--soil-texture", paths["soil_texture"],
        "--clay", paths["clay"],
        "--population", paths["population"],
        "--boundary", str(inputs / "boundary.geojson"),
        "--incidents", str(inputs / "incidents.geojson"),
        "--districts", str(inputs / "districts.geojson"),
        "--output", str(out),
        "--trees", "5",
    ])

    for name in (config.SUSCEPTIBILITY_GEOTIFF, config.SUSCEPTIBILITY_POP_GEOTIFF,
                 config.ZONES_GEOTIFF, config.ZONES_POP_GEOTIFF,
                 config.RF_LABEL_GEOTIFF, config.RF_PROBABILITY_GEOTIFF,
                 config.RF_LABEL_POP_GEOTIFF, config.RF_PROBABILITY_POP_GEOTIFF,
                 config.DISTRICT_CSV, "landslide_susceptibility.png",
                 "rf_importance_global.png"):
        assert (out / name).exists(), name

    report = json.loads((out / config.REPORT_JSON).read_text())
    assert set(report["validation"]) == {"global", "populated"}
    assert set(report["classifier"]) == {"global", "populated"}
    assert report["parameters"]["n_trees"] == 5
    assert len(report["districts"]) == 2
