"""
Population Gate – Restrict susceptibility to where people live.

The population-count raster is aggregated by areal sum onto the common
grid, turned into a binary mask (1 populated, 0 empty, NaN no data) and
used to mask the susceptibility raster.
"""

import numpy as np
from rasterio.enums import Resampling

from landslide_risk.raster import Raster, area_km2, reduce_sum, resample
from landslide_risk.susceptibility import renormalize


def aggregate_population(population: Raster, template: Raster) -> Raster:
    """
    Areal-sum resampling of population counts onto the template grid.
    Each target pixel receives the source counts weighted by the fraction
    of each source pixel it covers, so totals are conserved across
    resolutions and CRSs.
    """
    on_grid = resample(population, template, Resampling.sum, "population")
    print(f"[POP] Population resampled to the common grid by areal sum – "
          f"{reduce_sum(population):,.0f} → {reduce_sum(on_grid):,.0f}")
    return on_grid


def population_mask(population: Raster) -> Raster:
    """1 where count > 0, 0 where count ≤ 0, NaN where there is no data."""
    mask = np.where(population.valid, (population.data > 0).astype(np.float64), np.nan)
    n_pop = int(np.nansum(mask))
    print(f"[POP] Populated pixels: {n_pop} of {int(population.valid.sum())}")
    return population.with_data(mask, "populated")


def is_populated(mask: Raster) -> np.ndarray:
    return np.nan_to_num(mask.data, nan=0.0) == 1


def mask_susceptibility(
    susceptibility: Raster,
    mask: Raster,
    renormalize_result: bool = True,
) -> Raster:
    """
    Keep susceptibility on populated pixels only; everything else becomes
    no-data (never 0).  The result is re-normalised over the populated
    domain unless `renormalize_result` is False.
    """
    if not susceptibility.same_grid(mask):
        raise ValueError("Susceptibility and population mask are on different grids")

    masked = susceptibility.where(is_populated(mask), "risk_populated")
    if renormalize_result:
        masked = renormalize(masked, "risk_populated")
    print("[POP] Susceptibility masked to populated pixels")
    return masked


def populated_area_km2(mask: Raster) -> float:
    return area_km2(mask, where=is_populated(mask))
