"""
District Statistics – Per-district susceptibility, exposure and incident
metrics, plus one immutable set of national aggregates.

Per district:
    area (km², equal-area CRS), mean / std susceptibility, % high risk,
    population, incident counts and their per-km² densities, the nearest
    districts by centroid distance.

NationalStats is computed once per run and passed to every consumer.
"""

from dataclasses import dataclass, field

import geopandas as gpd
import numpy as np
import pandas as pd

import config
from landslide_risk.raster import Raster, domain_mask, reduce_sum
from landslide_risk.zonation import threshold_zones

# incident count columns summed per district
INCIDENT_METRICS = ("deaths", "injuries", "missing", "infrastructure_destroyed")

# metrics averaged across districts for the national comparison
AVERAGED_METRICS = (
    "incidents", "deaths", "injuries", "missing", "infrastructure_destroyed",
    "incidents_per_km2", "deaths_per_km2", "injuries_per_km2",
    "infrastructure_destroyed_per_km2",
)


@dataclass(frozen=True)
class NationalStats:
    n_districts: int
    total_incidents: int
    total_deaths: float
    total_injuries: float
    total_missing: float
    total_infrastructure_destroyed: float
    total_population: float
    mean_susceptibility: float
    district_averages: dict = field(default_factory=dict)
    population_by_zone: dict = field(default_factory=dict)

    def as_dict(self) -> dict:
        return {
            "n_districts": self.n_districts,
            "total_incidents": self.total_incidents,
            "total_deaths": self.total_deaths,
            "total_injuries": self.total_injuries,
            "total_missing": self.total_missing,
            "total_infrastructure_destroyed": self.total_infrastructure_destroyed,
            "total_population": self.total_population,
            "mean_susceptibility": self.mean_susceptibility,
            "district_averages": dict(self.district_averages),
            "population_by_zone": dict(self.population_by_zone),
        }


# ── Helpers ─────────────────────────────────────────────────────────────────

def _zonal(susceptibility: Raster, mask: np.ndarray) -> dict:
    values = susceptibility.data[mask & susceptibility.valid]
    if values.size == 0:
        return {"avg_susceptibility": np.nan, "susceptibility_std": np.nan,
                "high_risk_pct": 0.0, "n_pixels": 0}
    high = values > config.RISK_THRESHOLDS["medium_max"]
    return {
        "avg_susceptibility": float(values.mean()),
        "susceptibility_std": float(values.std()),
        "high_risk_pct": round(100.0 * float(high.mean()), 2),
        "n_pixels": int(values.size),
    }


def _incident_counts(incidents: gpd.GeoDataFrame, districts: gpd.GeoDataFrame, name_field: str) -> pd.DataFrame:
    cols = [c for c in INCIDENT_METRICS if c in incidents.columns]
    pts = incidents[cols + [incidents.geometry.name]]
    if pts.crs != districts.crs:
        pts = pts.to_crs(districts.crs)

    joined = gpd.sjoin(pts, districts[[name_field, districts.geometry.name]], how="inner", predicate="within")
    grouped = joined.groupby(name_field)
    counts = grouped[cols].sum()
    counts["incidents"] = grouped.size()
    return counts


def _nearest_districts(districts: gpd.GeoDataFrame, name_field: str, k: int) -> list[list[str]]:
    centroids = districts.to_crs(config.EQUAL_AREA_CRS).geometry.centroid
    xy = np.column_stack([centroids.x.to_numpy(), centroids.y.to_numpy()])
    dist = np.hypot(xy[:, None, 0] - xy[None, :, 0], xy[:, None, 1] - xy[None, :, 1])
    np.fill_diagonal(dist, np.inf)
    names = districts[name_field].to_numpy()
    order = np.argsort(dist, axis=1, kind="stable")[:, :k]
    return [[str(names[j]) for j in row if np.isfinite(dist[i, j])] for i, row in enumerate(order)]


# ── Public API ──────────────────────────────────────────────────────────────

def district_statistics(
    districts: gpd.GeoDataFrame,
    susceptibility: Raster,
    population: Raster = None,
    incidents: gpd.GeoDataFrame = None,
    name_field: str = config.DISTRICT_FIELD,
) -> pd.DataFrame:
    """One row per district, keyed by `name_field`."""
    if name_field not in districts.columns:
        raise ValueError(f"District layer has no '{name_field}' column")
    if districts.crs is None:
        districts = districts.set_crs(config.CRS)

    areas = districts.to_crs(config.EQUAL_AREA_CRS).area.to_numpy() / 1e6
    rows = []
    for (_, d), area in zip(districts.iterrows(), areas):
        mask = domain_mask(d.geometry, susceptibility, districts.crs.to_string())
        row = {"district": d[name_field], "area_km2": round(float(area), 3)}
        row.update(_zonal(susceptibility, mask))
        row["population"] = reduce_sum(population, where=mask) if population is not None else 0.0
        rows.append(row)
    table = pd.DataFrame(rows).set_index("district")

    metric_cols = ["incidents", *INCIDENT_METRICS]
    if incidents is not None and len(incidents):
        counts = _incident_counts(incidents, districts, name_field)
        table = table.join(counts, how="left")
    for col in metric_cols:
        if col not in table.columns:
            table[col] = 0
        table[col] = table[col].fillna(0)
    table["incidents"] = table["incidents"].astype(int)

    safe_area = table["area_km2"].where(table["area_km2"] > 0)
    for col in metric_cols:
        table[f"{col}_per_km2"] = (table[col] / safe_area).fillna(0.0)
    table["population_per_km2"] = (table["population"] / safe_area).fillna(0.0)

    nearest = _nearest_districts(districts, name_field, config.NEAREST_DISTRICTS)
    table["nearest_districts"] = [", ".join(n) for n in nearest]

    print(f"[DSS] District statistics computed for {len(table)} district(s)")
    return table.reset_index()


def compute_national_stats(
    table: pd.DataFrame,
    susceptibility: Raster,
    population: Raster = None,
) -> NationalStats:
    """National totals and per-district averages (sum / number of districts)."""
    n = len(table)
    valid = susceptibility.data[susceptibility.valid]
    mean_sus = float(valid.mean()) if valid.size else 0.0

    averages = {
        m: float(table[m].sum()) / n if n else 0.0
        for m in AVERAGED_METRICS if m in table.columns
    }

    pop_by_zone = {label: 0.0 for label in config.ZONE_LABELS.values()}
    total_pop = 0.0
    if population is not None:
        zones = threshold_zones(susceptibility)
        for z, label in config.ZONE_LABELS.items():
            pop_by_zone[label] = reduce_sum(population, where=zones.data == z)
        total_pop = reduce_sum(population)

    national = NationalStats(
        n_districts=n,
        total_incidents=int(table["incidents"].sum()) if n else 0,
        total_deaths=float(table["deaths"].sum()) if n else 0.0,
        total_injuries=float(table["injuries"].sum()) if n else 0.0,
        total_missing=float(table["missing"].sum()) if n else 0.0,
        total_infrastructure_destroyed=float(table["infrastructure_destroyed"].sum()) if n else 0.0,
        total_population=total_pop,
        mean_susceptibility=mean_sus,
        district_averages=averages,
        population_by_zone=pop_by_zone,
    )
    print(f"[DSS] National mean susceptibility {mean_sus:.4f}, "
          f"{national.total_incidents} incident(s) in {n} district(s)")
    return national


def relative_risk(table: pd.DataFrame, national: NationalStats) -> pd.DataFrame:
    """
    relative_risk_index = district mean susceptibility / national mean,
    plus an above-average flag per averaged metric.
    """
    out = table.copy()
    if national.mean_susceptibility > 0:
        out["relative_risk_index"] = out["avg_susceptibility"] / national.mean_susceptibility
    else:
        out["relative_risk_index"] = np.nan
    for metric, avg in national.district_averages.items():
        out[f"{metric}_above_avg"] = out[metric] > avg
    return out
