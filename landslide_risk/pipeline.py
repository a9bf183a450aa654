"""
Pipeline – Orchestrates the stages for one study domain.

    factors → susceptibility → population gate → zones
            → samples → validation (global | populated)
            → random forest (global | populated)
            → district statistics

Every stage is a pure function of its inputs.  Each random consumer
(control points and RF split, per scope) draws from its own Generator
spawned from `PipelineOptions.seed`, so a re-run with the same inputs and
seed reproduces every artifact and the populated pass never depends on
how many draws the global pass made.
"""

from dataclasses import dataclass, field

import geopandas as gpd
import numpy as np
import pandas as pd

import config
from landslide_risk.classifier import ClassifierResult, FeatureStack, run_classifier
from landslide_risk.district_stats import (
    NationalStats,
    compute_national_stats,
    district_statistics,
    relative_risk,
)
from landslide_risk.factors import FactorLayer, build_factor_layers
from landslide_risk.population import aggregate_population, mask_susceptibility, population_mask
from landslide_risk.raster import Raster, clip, common_grid
from landslide_risk.sampling import (
    filter_damaging,
    filter_since_year,
    observed_points,
    prepare_incidents,
    random_points,
    random_populated_points,
)
from landslide_risk.susceptibility import compute_susceptibility
from landslide_risk.validation import ValidationResult, validate_zones
from landslide_risk.zonation import classify_zones, tertile_breaks


@dataclass(frozen=True)
class PipelineOptions:
    seed: int = config.SEED
    n_trees: int = config.N_TREES
    split_ratio: float = config.SPLIT_RATIO
    scale: float = config.TARGET_SCALE
    crs: str = config.CRS
    n_workers: int = 1
    damaging_only: bool = False
    since_year: int = None
    skip_classifier: bool = False

    def as_dict(self) -> dict:
        return {
            "seed": self.seed,
            "n_trees": self.n_trees,
            "split_ratio": self.split_ratio,
            "scale_m": self.scale,
            "crs": self.crs,
            "damaging_only": self.damaging_only,
            "since_year": self.since_year,
            "weights": dict(config.WEIGHTS),
        }


@dataclass(frozen=True)
class PipelineResult:
    layers: dict
    susceptibility: Raster
    susceptibility_populated: Raster
    population: Raster
    populated: Raster
    zones: Raster
    zones_populated: Raster
    validations: dict
    classifiers: dict = field(default_factory=dict)
    district_table: pd.DataFrame = None
    national: NationalStats = None


RANDOM_STREAMS = ("control", "control_populated", "split", "split_populated")


def random_streams(seed: int) -> dict[str, np.random.Generator]:
    """One independent Generator per random consumer, all spawned from `seed`."""
    children = np.random.SeedSequence(seed).spawn(len(RANDOM_STREAMS))
    return {name: np.random.default_rng(child) for name, child in zip(RANDOM_STREAMS, children)}


def run_pipeline(
    sources: dict,
    population: Raster,
    boundary,
    incidents: gpd.GeoDataFrame,
    districts: gpd.GeoDataFrame = None,
    options: PipelineOptions = None,
) -> PipelineResult:
    """
    `sources`: raw factor rasters (see factors.build_factor_layers).
    `boundary`: shapely polygon of the study domain in `options.crs`.
    `incidents`: incident points with source column names.
    """
    opts = options or PipelineOptions()
    rngs = random_streams(opts.seed)

    # ── Factors + susceptibility ─────────────────────────────────────────
    template = common_grid(boundary.bounds, opts.scale, opts.crs)
    layers: dict[str, FactorLayer] = build_factor_layers(
        sources, boundary, template, opts.crs, n_workers=opts.n_workers
    )
    susceptibility = compute_susceptibility(layers)

    # ── Population gate ──────────────────────────────────────────────────
    pop = clip(aggregate_population(population, template), boundary, opts.crs)
    populated = population_mask(pop)
    susceptibility_pop = mask_susceptibility(susceptibility, populated)

    # ── Zones ────────────────────────────────────────────────────────────
    breaks = tertile_breaks(susceptibility)
    zones = classify_zones(susceptibility, breaks)
    breaks_pop = tertile_breaks(susceptibility_pop)
    zones_pop = classify_zones(susceptibility_pop, breaks_pop)

    # ── Samples ──────────────────────────────────────────────────────────
    observed = prepare_incidents(incidents)
    if opts.damaging_only:
        observed = filter_damaging(observed)
    if opts.since_year is not None:
        observed = filter_since_year(observed, opts.since_year)
    observed_pop = observed_points(observed, populated)

    control = random_points(boundary, len(observed), rng=rngs["control"], crs=opts.crs)
    control_pop = random_populated_points(
        boundary, len(observed_pop), populated, rng=rngs["control_populated"], crs=opts.crs
    )

    # ── Validation (reported side by side) ──────────────────────────────
    validations: dict[str, ValidationResult] = {
        "global": validate_zones(zones, observed, control, "global", breaks),
        "populated": validate_zones(zones_pop, observed_pop, control_pop, "populated", breaks_pop),
    }

    # ── Random forest ────────────────────────────────────────────────────
    classifiers: dict[str, ClassifierResult] = {}
    if not opts.skip_classifier:
        stack = FeatureStack.from_layers(layers)
        classifiers["global"] = run_classifier(
            stack, observed, control, "global",
            opts.n_trees, opts.split_ratio, opts.seed, rng=rngs["split"],
        )
        classifiers["populated"] = run_classifier(
            stack.masked(populated), observed_pop, control_pop, "populated",
            opts.n_trees, opts.split_ratio, opts.seed, rng=rngs["split_populated"],
        )

    # ── Districts ────────────────────────────────────────────────────────
    table, national = None, None
    if districts is not None:
        table = district_statistics(districts, susceptibility, pop, observed)
        national = compute_national_stats(table, susceptibility, pop)
        table = relative_risk(table, national)

    return PipelineResult(
        layers=layers,
        susceptibility=susceptibility,
        susceptibility_populated=susceptibility_pop,
        population=pop,
        populated=populated,
        zones=zones,
        zones_populated=zones_pop,
        validations=validations,
        classifiers=classifiers,
        district_table=table,
        national=national,
    )
