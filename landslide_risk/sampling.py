"""
Spatial Sampler – Observed incident points, seeded random control points
and raster sampling at point locations.

Every random draw goes through an explicit numpy Generator, so the same
seed, domain and count always give the same coordinates.
"""

import math

import geopandas as gpd
import numpy as np
import pandas as pd
import shapely

import config
from landslide_risk.errors import EmptySampleError
from landslide_risk.population import populated_area_km2
from landslide_risk.raster import Raster, values_at

_MAX_REJECTION_ROUNDS = 1000


# ── Incidents ───────────────────────────────────────────────────────────────

def prepare_incidents(incidents: gpd.GeoDataFrame, fields: dict = None) -> gpd.GeoDataFrame:
    """
    Rename source columns to canonical names, fill missing counts with 0
    and derive `year` from `date` where the year is absent.
    """
    fields = fields or config.INCIDENT_FIELDS
    rename = {src: canon for canon, src in fields.items()
              if src in incidents.columns and src != canon}
    gdf = incidents.rename(columns=rename)

    for col in config.DAMAGE_FIELDS:
        if col in gdf.columns:
            gdf[col] = pd.to_numeric(gdf[col], errors="coerce").fillna(0)
        else:
            gdf[col] = 0

    if "date" in gdf.columns:
        gdf["date"] = pd.to_datetime(gdf["date"], errors="coerce")
        date_year = gdf["date"].dt.year
        if "year" in gdf.columns:
            gdf["year"] = pd.to_numeric(gdf["year"], errors="coerce").fillna(date_year)
        else:
            gdf["year"] = date_year
    elif "year" in gdf.columns:
        gdf["year"] = pd.to_numeric(gdf["year"], errors="coerce")

    if gdf.crs is None:
        gdf = gdf.set_crs(config.CRS)
    elif gdf.crs != config.CRS:
        gdf = gdf.to_crs(config.CRS)

    print(f"[SAMPLE] {len(gdf)} incident(s) prepared")
    return gdf


def filter_damaging(incidents: gpd.GeoDataFrame) -> gpd.GeoDataFrame:
    """Keep incidents with at least one non-zero damage count."""
    cols = [c for c in config.DAMAGE_FIELDS if c in incidents.columns]
    keep = (incidents[cols] > 0).any(axis=1)
    out = incidents[keep].reset_index(drop=True)
    print(f"[SAMPLE] Damaging incidents: {len(out)} of {len(incidents)}")
    return out


def filter_since_year(incidents: gpd.GeoDataFrame, year: int) -> gpd.GeoDataFrame:
    out = incidents[incidents["year"] >= year].reset_index(drop=True)
    print(f"[SAMPLE] Incidents since {year}: {len(out)} of {len(incidents)}")
    return out


# ── Point lookup ────────────────────────────────────────────────────────────

def point_coords(points: gpd.GeoDataFrame, raster: Raster) -> tuple[np.ndarray, np.ndarray]:
    if points.crs is not None and points.crs != raster.crs:
        points = points.to_crs(raster.crs)
    return points.geometry.x.to_numpy(), points.geometry.y.to_numpy()


def pixel_values(points: gpd.GeoDataFrame, raster: Raster) -> np.ndarray:
    """Value of the pixel containing each point; NaN outside the grid."""
    if len(points) == 0:
        return np.empty(0)
    xs, ys = point_coords(points, raster)
    return values_at(raster, xs, ys)


def observed_points(incidents: gpd.GeoDataFrame, mask: Raster = None) -> gpd.GeoDataFrame:
    """
    All incidents, or only those whose pixel in the population mask is 1.
    The test is a raster lookup, not polygon containment.
    """
    if mask is None:
        return incidents.copy()
    keep = pixel_values(incidents, mask) == 1
    out = incidents[keep].reset_index(drop=True)
    print(f"[SAMPLE] Incidents on populated pixels: {len(out)} of {len(incidents)}")
    return out


# ── Synthetic points ────────────────────────────────────────────────────────

def random_points(
    geometry,
    count: int,
    seed: int = config.SEED,
    rng: np.random.Generator = None,
    crs: str = config.CRS,
) -> gpd.GeoDataFrame:
    """
    `count` points drawn uniformly inside `geometry` by rejection sampling
    over its bounding box.
    """
    rng = rng if rng is not None else np.random.default_rng(seed)
    if geometry.is_empty or geometry.area == 0:
        raise EmptySampleError("Cannot draw random points in an empty domain")

    minx, miny, maxx, maxy = geometry.bounds
    shapely.prepare(geometry)

    xs, ys = [], []
    found = 0
    rounds = 0
    while found < count:
        if rounds >= _MAX_REJECTION_ROUNDS:
            raise EmptySampleError(
                f"Only {found} of {count} random points landed in the domain"
            )
        batch = max(2 * (count - found), 1000)
        x = rng.uniform(minx, maxx, batch)
        y = rng.uniform(miny, maxy, batch)
        inside = shapely.contains_xy(geometry, x, y)
        xs.append(x[inside])
        ys.append(y[inside])
        found += int(inside.sum())
        rounds += 1

    x = np.concatenate(xs)[:count] if xs else np.empty(0)
    y = np.concatenate(ys)[:count] if ys else np.empty(0)
    print(f"[SAMPLE] {count} random point(s) generated")
    return gpd.GeoDataFrame(
        {"point_id": np.arange(count)},
        geometry=gpd.points_from_xy(x, y),
        crs=crs,
    )


def domain_area_km2(geometry, crs: str = config.CRS) -> float:
    """Area of the domain polygon in an equal-area projection."""
    series = gpd.GeoSeries([geometry], crs=crs).to_crs(config.EQUAL_AREA_CRS)
    return float(series.area.iloc[0]) / 1e6


def oversample_factor(domain_km2: float, populated_km2: float) -> int:
    """ceil(domain area / populated area)."""
    if populated_km2 <= 0:
        raise EmptySampleError("Populated area is zero – cannot oversample")
    return max(1, math.ceil(domain_km2 / populated_km2))


def random_populated_points(
    geometry,
    count: int,
    mask: Raster,
    seed: int = config.SEED,
    rng: np.random.Generator = None,
    crs: str = config.CRS,
    domain_km2: float = None,
) -> gpd.GeoDataFrame:
    """
    Draw count × oversample-factor points in the domain, keep those on
    populated pixels and truncate to the first `count`.
    """
    rng = rng if rng is not None else np.random.default_rng(seed)
    if domain_km2 is None:
        domain_km2 = domain_area_km2(geometry, crs)
    factor = oversample_factor(domain_km2, populated_area_km2(mask))
    print(f"[SAMPLE] Oversample factor: {factor}")

    candidates = random_points(geometry, count * factor, rng=rng, crs=crs)
    on_pop = pixel_values(candidates, mask) == 1
    kept = candidates[on_pop].head(count).reset_index(drop=True)

    if len(kept) < count:
        print(f"[WARN] Only {len(kept)} of {count} random points fell on populated pixels")
    return kept


# ── Raster sampling ─────────────────────────────────────────────────────────

def sample_raster(
    points: gpd.GeoDataFrame,
    raster: Raster,
    column: str = None,
    dropna: bool = False,
) -> gpd.GeoDataFrame:
    """Copy of `points` with the raster value at each point attached."""
    col = column or raster.name
    out = points.copy()
    out[col] = pixel_values(points, raster)
    if dropna:
        out = out[out[col].notna()].reset_index(drop=True)
    return out


def sample_zones(points: gpd.GeoDataFrame, zones: Raster) -> gpd.GeoDataFrame:
    """Integer zone per point; points without a zone are dropped."""
    out = sample_raster(points, zones, "zone", dropna=True)
    out["zone"] = out["zone"].astype(int)
    return out


def label_points(points: gpd.GeoDataFrame, label: int, column: str = "class") -> gpd.GeoDataFrame:
    out = points.copy()
    out[column] = int(label)
    return out
