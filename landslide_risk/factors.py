"""
Factor Layer Builder – Derive the seven environmental factors, normalise
them to [0, 1] over the study domain and put them on the common grid.

    norm = clip((value - min) / (max - min), 0, 1)

min/max are domain bounds from a best-effort reduction, fixed when the
layer is built.  Higher normalised values always mean higher landslide
susceptibility (distance to drainage is inverted).
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace

import numpy as np
from rasterio.enums import Resampling
from scipy import ndimage

import config
from landslide_risk.errors import DomainDegenerateError, MissingCoverageError
from landslide_risk.raster import (
    Raster,
    clip,
    mean_of_bands,
    pixel_size_m,
    reduce_min_max,
    resample,
)

# factor name → key of the source raster it is derived from
FACTOR_SOURCES = {
    "slope":                "dem",
    "elevation":            "dem",
    "landcover":            "landcover",
    "drainage_density":     "flow_accumulation",
    "distance_to_drainage": "flow_accumulation",
    "soil_texture":         "soil_texture",
    "clay":                 "clay",
}


@dataclass(frozen=True)
class FactorLayer:
    """Normalised factor raster plus the domain bounds used to normalise it."""

    name: str
    raster: Raster
    min_value: float
    max_value: float
    weight: float = 0.0


# ── Normalisation ───────────────────────────────────────────────────────────

def min_max_bounds(raster: Raster, max_pixels: float = config.MAX_PIXELS) -> tuple[float, float]:
    lo, hi = reduce_min_max(raster, max_pixels)
    if hi <= lo:
        raise DomainDegenerateError(
            f"'{raster.name}' has zero variance over the domain (min = max = {lo})"
        )
    return lo, hi


def normalize(
    raster: Raster,
    name: str,
    invert: bool = False,
    max_pixels: float = config.MAX_PIXELS,
) -> FactorLayer:
    """
    Min-max normalise `raster` to [0, 1] with its own domain bounds.

    Zero variance → constant 0 on valid pixels.
    No coverage   → all no-data.
    Both print a warning and return a usable layer.
    """
    weight = config.WEIGHTS.get(name, 0.0)

    try:
        lo, hi = min_max_bounds(raster, max_pixels)
    except DomainDegenerateError as e:
        print(f"[WARN] {e} → factor '{name}' set to 0")
        value = float(np.nanmin(raster.data))
        flat = np.where(raster.valid, 0.0, np.nan)
        return FactorLayer(name, raster.with_data(flat, name), value, value, weight)
    except MissingCoverageError as e:
        print(f"[WARN] {e} → factor '{name}' is all no-data")
        empty = np.full(raster.shape, np.nan)
        return FactorLayer(name, raster.with_data(empty, name), np.nan, np.nan, weight)

    norm = np.clip((raster.data - lo) / (hi - lo), 0.0, 1.0)
    if invert:
        norm = 1.0 - norm

    print(f"[FACTOR] {name} normalised – bounds [{lo:.4f}, {hi:.4f}]"
          + (" (inverted)" if invert else ""))
    return FactorLayer(name, raster.with_data(norm, name), lo, hi, weight)


def validate_range(layer: FactorLayer) -> dict:
    """Report the min/max of a layer over its valid pixels."""
    valid = layer.raster.valid
    if not valid.any():
        stats = {"min": None, "max": None}
    else:
        values = layer.raster.data[valid]
        stats = {"min": float(values.min()), "max": float(values.max())}
    print(f"[VAL] {layer.name}: {stats}")
    return stats


# ── Terrain ─────────────────────────────────────────────────────────────────

def compute_slope(dem: Raster) -> Raster:
    """Slope in degrees from central differences, spacing in metres."""
    dx, dy = pixel_size_m(dem)
    grad_rows, grad_cols = np.gradient(dem.data)
    dz_dx = grad_cols / dx
    dz_dy = grad_rows / dy
    slope = np.degrees(np.arctan(np.hypot(dz_dx, dz_dy)))
    print("[FACTOR] Slope derived from DEM")
    return dem.with_data(slope, "slope")


# ── Categorical reclassification ────────────────────────────────────────────

def reclassify(raster: Raster, table: dict, name: str) -> Raster:
    """
    Map raw category codes to risk ordinals.  Codes missing from `table`
    become no-data, never 0.
    """
    out = np.full(raster.shape, np.nan)
    for code, value in table.items():
        out[raster.data == code] = value

    missed = raster.valid & np.isnan(out)
    n_missed = int(missed.sum())
    if n_missed:
        codes = np.unique(raster.data[missed])[:10]
        print(f"[WARN] {name}: {n_missed} pixel(s) with unmapped codes "
              f"{codes.astype(int).tolist()} → no-data")
    return raster.with_data(out, name)


def landcover_factor(landcover: Raster) -> Raster:
    return reclassify(landcover, config.LANDCOVER_REMAP, "landcover")


def soil_texture_factor(texture: Raster) -> Raster:
    return reclassify(texture, config.SOIL_TEXTURE_REMAP, "soil_texture")


def clay_factor(clay) -> Raster:
    """Clay fraction; several depth bands are averaged."""
    if isinstance(clay, (list, tuple)):
        return mean_of_bands(list(clay), "clay")
    return clay.rename("clay")


# ── Hydrology ───────────────────────────────────────────────────────────────

def stream_mask(flow_accum: Raster, threshold: float = config.FLOW_ACCUM_THRESHOLD) -> np.ndarray:
    return np.nan_to_num(flow_accum.data, nan=0.0) > threshold


def _disk_kernel(radius_px: int) -> np.ndarray:
    y, x = np.ogrid[-radius_px:radius_px + 1, -radius_px:radius_px + 1]
    return (x * x + y * y <= radius_px * radius_px).astype(np.float64)


def drainage_density(
    flow_accum: Raster,
    threshold: float = config.FLOW_ACCUM_THRESHOLD,
    radius_m: float = config.DRAINAGE_KERNEL_RADIUS_M,
) -> Raster:
    """
    Fraction of stream pixels inside a circular neighbourhood of `radius_m`.
    Only valid pixels enter the mean.
    """
    dx, dy = pixel_size_m(flow_accum)
    pixel_m = (float(dx.mean()) + dy) / 2
    radius_px = max(1, int(round(radius_m / pixel_m)))
    kernel = _disk_kernel(radius_px)

    valid = flow_accum.valid
    streams = np.where(valid, stream_mask(flow_accum, threshold), False).astype(np.float64)

    hits = ndimage.convolve(streams, kernel, mode="constant", cval=0.0)
    support = ndimage.convolve(valid.astype(np.float64), kernel, mode="constant", cval=0.0)
    density = np.where(valid & (support > 0), hits / np.maximum(support, 1.0), np.nan)

    print(f"[FACTOR] Drainage density – kernel radius {radius_px} px "
          f"({radius_m:.0f} m), {int(streams.sum())} stream pixels")
    return flow_accum.with_data(density, "drainage_density")


def distance_to_drainage(
    flow_accum: Raster,
    threshold: float = config.FLOW_ACCUM_THRESHOLD,
) -> Raster:
    """Euclidean distance in metres to the nearest stream pixel."""
    valid = flow_accum.valid
    streams = stream_mask(flow_accum, threshold)

    if not streams.any():
        print(f"[WARN] No pixels with flow accumulation > {threshold} → "
              "distance to drainage is flat")
        return flow_accum.with_data(np.where(valid, 0.0, np.nan), "distance_to_drainage")

    dx, dy = pixel_size_m(flow_accum)
    distance = ndimage.distance_transform_edt(~streams, sampling=(dy, float(dx.mean())))
    print("[FACTOR] Distance to drainage computed")
    return flow_accum.with_data(np.where(valid, distance, np.nan), "distance_to_drainage")


# ── Builder ─────────────────────────────────────────────────────────────────

def derive_factor(name: str, source) -> tuple[Raster, bool]:
    """Raw (un-normalised) factor and whether it is inverted on normalisation."""
    if name == "slope":
        return compute_slope(source), False
    if name == "elevation":
        return source.rename("elevation"), False
    if name == "landcover":
        return landcover_factor(source), False
    if name == "drainage_density":
        return drainage_density(source), False
    if name == "distance_to_drainage":
        return distance_to_drainage(source), True
    if name == "soil_texture":
        return soil_texture_factor(source), False
    if name == "clay":
        return clay_factor(source), False
    raise ValueError(f"Unknown factor '{name}'")


def build_factor(
    name: str,
    source,
    domain,
    template: Raster,
    domain_crs: str = config.CRS,
    max_pixels: float = config.MAX_PIXELS,
) -> FactorLayer:
    """
    Derive one factor on its source grid, normalise it with domain bounds,
    then resample it onto `template` and clip to the domain.
    """
    raw, invert = derive_factor(name, source)
    raw = clip(raw, domain, domain_crs)
    layer = normalize(raw, name, invert=invert, max_pixels=max_pixels)

    method = Resampling.nearest if name in config.CATEGORICAL_FACTORS else Resampling.bilinear
    on_grid = resample(layer.raster, template, method, name)
    on_grid = clip(on_grid, domain, domain_crs)
    return replace(layer, raster=on_grid)


def build_factor_layers(
    sources: dict,
    domain,
    template: Raster,
    domain_crs: str = config.CRS,
    n_workers: int = 1,
    max_pixels: float = config.MAX_PIXELS,
) -> dict:
    """
    Build every factor in FACTOR_SOURCES.

    `sources` maps "dem", "landcover", "flow_accumulation", "soil_texture"
    and "clay" to Rasters ("clay" may be a list of depth bands).  Factors
    are independent, so n_workers > 1 builds them in a thread pool.
    """
    missing = sorted(set(FACTOR_SOURCES.values()) - set(sources))
    if missing:
        raise ValueError(f"Missing source rasters: {missing}")

    args = {
        name: (name, sources[key], domain, template, domain_crs, max_pixels)
        for name, key in FACTOR_SOURCES.items()
    }

    if n_workers and n_workers > 1:
        print(f"[FACTOR] Building {len(args)} factors with {n_workers} workers")
        with ThreadPoolExecutor(max_workers=n_workers) as pool:
            futures = {name: pool.submit(build_factor, *a) for name, a in args.items()}
            layers = {name: f.result() for name, f in futures.items()}
    else:
        layers = {name: build_factor(*a) for name, a in args.items()}

    for layer in layers.values():
        validate_range(layer)
    return layers
