#!/usr/bin/env python3
"""
main.py – CLI entry point for the Landslide Risk Scoring & Validation System.

Usage:
    python main.py --dem dem.tif --landcover lc.tif --flow-accum facc.tif \
        --soil-texture texture.tif --clay clay.tif --population pop.tif \
        --boundary nepal.gpkg --incidents incidents.geojson \
        --districts districts.gpkg

The pipeline:
    1. Read source rasters, boundary and incident layers
    2. Build and normalise the seven factor layers on the common grid
    3. Composite susceptibility (global + populated)
    4. Tertile zones
    5. Chi-square + confusion-matrix validation, global and populated
    6. Random forest train / evaluate / apply, global and populated
    7. District statistics
    8. Export GeoTIFFs, report, CSV and PNG quicklooks
"""

import argparse
import os

import geopandas as gpd

import config
from landslide_risk.pipeline import PipelineOptions, run_pipeline
from landslide_risk.raster import export_geotiff, read_band_mean, read_raster
from landslide_risk.report import export_district_table, generate_report
from landslide_risk.visualization import plot_importance, render_raster_png


def parse_args(argv=None):
    p = argparse.ArgumentParser(
        description="Landslide Susceptibility Scoring & Validation System",
    )
    g = p.add_argument_group("inputs")
    g.add_argument("--dem", required=True, help="Elevation GeoTIFF")
    g.add_argument("--landcover", required=True, help="MODIS LC_Type1 land-cover GeoTIFF")
    g.add_argument("--flow-accum", required=True, help="Flow accumulation GeoTIFF")
    g.add_argument("--soil-texture", required=True, help="USDA soil-texture class GeoTIFF")
    g.add_argument("--clay", required=True, nargs="+",
                   help="Clay fraction GeoTIFF(s); bands / files are averaged")
    g.add_argument("--population", required=True, help="Population count GeoTIFF")
    g.add_argument("--boundary", required=True, help="Study-area polygon (any OGR vector)")
    g.add_argument("--incidents", required=True, help="Historical incident points")
    g.add_argument("--districts", default=None, help="District polygons (optional)")

    p.add_argument("--output", default=config.OUTPUT_DIR, help="Output directory")
    p.add_argument("--seed", type=int, default=config.SEED, help="Random seed")
    p.add_argument("--trees", type=int, default=config.N_TREES, help="Random forest size")
    p.add_argument("--split", type=float, default=config.SPLIT_RATIO, help="Train fraction")
    p.add_argument("--scale", type=float, default=config.TARGET_SCALE, help="Grid size in metres")
    p.add_argument("--damaging-only", action="store_true",
                   help="Keep only incidents with casualties or destroyed infrastructure")
    p.add_argument("--since-year", type=int, default=None, help="Keep incidents from this year on")
    p.add_argument("--skip-rf", action="store_true", help="Skip the random forest stage")
    p.add_argument("--workers", type=int, default=1, help="Threads for factor building")
    return p.parse_args(argv)


def _read_clay(paths: list[str]):
    if len(paths) == 1:
        return read_band_mean(paths[0], "clay")
    return [read_raster(path, name="clay") for path in paths]


def main(argv=None):
    args = parse_args(argv)

    print("=" * 60)
    print("  LANDSLIDE RISK SCORING & VALIDATION")
    print("=" * 60)
    print(f"  Boundary:  {args.boundary}")
    print(f"  Incidents: {args.incidents}")
    print(f"  Grid:      {args.scale} m ({config.CRS})   seed: {args.seed}")
    print("=" * 60)

    # ── Phase 1: Inputs ─────────────────────────────────────────────────
    print("\n▶ Phase 1 – Reading Inputs")
    sources = {
        "dem": read_raster(args.dem, name="elevation"),
        "landcover": read_raster(args.landcover, name="landcover"),
        "flow_accumulation": read_raster(args.flow_accum, name="flow_accumulation"),
        "soil_texture": read_raster(args.soil_texture, name="soil_texture"),
        "clay": _read_clay(args.clay),
    }
    population = read_raster(args.population, name="population")

    boundary_gdf = gpd.read_file(args.boundary).to_crs(config.CRS)
    boundary = boundary_gdf.geometry.union_all()
    incidents = gpd.read_file(args.incidents)
    districts = gpd.read_file(args.districts).to_crs(config.CRS) if args.districts else None
    print(f"[SAMPLE] {len(incidents)} incident record(s) read")

    options = PipelineOptions(
        seed=args.seed,
        n_trees=args.trees,
        split_ratio=args.split,
        scale=args.scale,
        n_workers=args.workers,
        damaging_only=args.damaging_only,
        since_year=args.since_year,
        skip_classifier=args.skip_rf,
    )

    # ── Phase 2: Model, validation, classifier, districts ───────────────
    print("\n▶ Phase 2 – Factors, Susceptibility, Validation & Classifier")
    result = run_pipeline(sources, population, boundary, incidents, districts, options)

    # ── Phase 3: Exports ────────────────────────────────────────────────
    print("\n▶ Phase 3 – Exports")
    out = args.output
    tifs = [
        export_geotiff(result.susceptibility, config.SUSCEPTIBILITY_GEOTIFF, out),
        export_geotiff(result.susceptibility_populated, config.SUSCEPTIBILITY_POP_GEOTIFF, out),
        export_geotiff(result.zones, config.ZONES_GEOTIFF, out),
        export_geotiff(result.zones_populated, config.ZONES_POP_GEOTIFF, out),
    ]
    render_raster_png(result.susceptibility, "landslide_susceptibility.png", output_dir=out)
    render_raster_png(result.susceptibility_populated,
                      "landslide_susceptibility_populated.png", output_dir=out)

    rf_files = {
        "global": (config.RF_LABEL_GEOTIFF, config.RF_PROBABILITY_GEOTIFF),
        "populated": (config.RF_LABEL_POP_GEOTIFF, config.RF_PROBABILITY_POP_GEOTIFF),
    }
    for scope, rf in result.classifiers.items():
        label_tif, prob_tif = rf_files[scope]
        tifs.append(export_geotiff(rf.label, label_tif, out))
        tifs.append(export_geotiff(rf.probability, prob_tif, out))
        render_raster_png(rf.probability, f"rf_probability_{scope}.png", output_dir=out,
                          vmin=0.0, vmax=1.0)
        plot_importance(rf.evaluation.importance, f"rf_importance_{scope}.png",
                        title=f"Variable importance ({scope})", output_dir=out)

    # ── Phase 4: Report ─────────────────────────────────────────────────
    print("\n▶ Phase 4 – Validation Report")
    if result.district_table is not None:
        export_district_table(result.district_table, out)
    generate_report(
        validations=result.validations,
        classifiers=result.classifiers,
        district_table=result.district_table,
        national=result.national,
        params=options.as_dict(),
        output_dir=out,
    )

    print("\n" + "=" * 60)
    print("  ✅  Pipeline complete!")
    print(f"  📄  GeoTIFFs → {len(tifs)} file(s) in {out}")
    print(f"  📊  Report   → {os.path.join(out, config.REPORT_JSON)}")
    print("=" * 60)
    return result


if __name__ == "__main__":
    main()
