"""
Raster Module – Immutable grid container, common grid, resampling,
best-effort reductions and GeoTIFF I/O.

No-data is NaN everywhere.  Every operation returns a new Raster; the
underlying array is read-only.
"""

import math
import os
from dataclasses import dataclass, replace

import numpy as np
import rasterio
from rasterio.crs import CRS
from rasterio.enums import Resampling
from rasterio.features import geometry_mask
from rasterio.transform import Affine, rowcol
from rasterio.warp import reproject, transform_geom
from shapely.geometry import mapping

import config
from landslide_risk.errors import MissingCoverageError


@dataclass(frozen=True)
class Raster:
    """A single-band float grid with its affine transform and CRS."""

    data: np.ndarray
    transform: Affine
    crs: str = config.CRS
    name: str = "band"

    def __post_init__(self):
        arr = np.array(self.data, dtype=np.float64)
        if arr.ndim != 2:
            raise ValueError(f"Raster '{self.name}' must be 2-D, got shape {arr.shape}")
        arr.setflags(write=False)
        object.__setattr__(self, "data", arr)

    @property
    def shape(self) -> tuple[int, int]:
        return self.data.shape

    @property
    def height(self) -> int:
        return self.data.shape[0]

    @property
    def width(self) -> int:
        return self.data.shape[1]

    @property
    def valid(self) -> np.ndarray:
        return ~np.isnan(self.data)

    @property
    def bounds(self) -> tuple[float, float, float, float]:
        """(west, south, east, north)"""
        x0, y0 = self.transform * (0, 0)
        x1, y1 = self.transform * (self.width, self.height)
        return (min(x0, x1), min(y0, y1), max(x0, x1), max(y0, y1))

    @property
    def is_geographic(self) -> bool:
        return CRS.from_user_input(self.crs).is_geographic

    def same_grid(self, other: "Raster") -> bool:
        return (
            self.shape == other.shape
            and self.transform.almost_equals(other.transform)
            and CRS.from_user_input(self.crs) == CRS.from_user_input(other.crs)
        )

    def with_data(self, data: np.ndarray, name: str = None) -> "Raster":
        return replace(self, data=data, name=name or self.name)

    def rename(self, name: str) -> "Raster":
        return replace(self, name=name)

    def where(self, keep: np.ndarray, name: str = None) -> "Raster":
        """Keep pixels where `keep` is True; every other pixel becomes no-data."""
        return self.with_data(np.where(keep, self.data, np.nan), name)


# ── Common grid ─────────────────────────────────────────────────────────────

def grid_for_bounds(
    bounds: tuple,  # (west, south, east, north)
    scale: float = config.TARGET_SCALE,
    crs: str = config.CRS,
) -> tuple[Affine, int, int]:
    """
    Build a north-up grid covering `bounds` at `scale` metres per pixel.
    On geographic CRSs the pixel step is converted to degrees at the
    mid-latitude of the bounds.
    """
    west, south, east, north = bounds

    if CRS.from_user_input(crs).is_geographic:
        mid_lat = (south + north) / 2
        step_x = scale / (config.METRES_PER_DEGREE * math.cos(math.radians(mid_lat)))
        step_y = scale / config.METRES_PER_DEGREE
    else:
        step_x = step_y = scale

    width = max(1, math.ceil((east - west) / step_x))
    height = max(1, math.ceil((north - south) / step_y))
    transform = Affine(step_x, 0.0, west, 0.0, -step_y, north)
    return transform, width, height


def common_grid(
    bounds: tuple,
    scale: float = config.TARGET_SCALE,
    crs: str = config.CRS,
) -> Raster:
    """Empty (all no-data) template raster on the common grid."""
    transform, width, height = grid_for_bounds(bounds, scale, crs)
    print(f"[RASTER] Common grid {width}×{height} at {scale} m ({crs})")
    return Raster(np.full((height, width), np.nan), transform, crs, "grid")


def pixel_size_m(raster: Raster) -> tuple[np.ndarray, float]:
    """
    Pixel size in metres as (dx per row, dy).  dx is a (height, 1) column
    because it shrinks with latitude on geographic grids.
    """
    step_x = abs(raster.transform.a)
    step_y = abs(raster.transform.e)
    if not raster.is_geographic:
        return np.full((raster.height, 1), step_x), step_y

    lats = raster.transform.f + raster.transform.e * (np.arange(raster.height) + 0.5)
    dx = step_x * config.METRES_PER_DEGREE * np.cos(np.radians(lats))
    dy = step_y * config.METRES_PER_DEGREE
    return dx[:, np.newaxis], dy


def pixel_area_km2(raster: Raster) -> np.ndarray:
    """Per-pixel area in km², broadcastable to the raster shape."""
    dx, dy = pixel_size_m(raster)
    return dx * dy / 1e6


def area_km2(raster: Raster, where: np.ndarray = None) -> float:
    """Total area of the selected pixels (default: all valid pixels)."""
    if where is None:
        where = raster.valid
    areas = np.broadcast_to(pixel_area_km2(raster), raster.shape)
    return float(areas[where].sum())


# ── Resampling ──────────────────────────────────────────────────────────────

def resample(
    raster: Raster,
    template: Raster,
    resampling: Resampling = Resampling.bilinear,
    name: str = None,
) -> Raster:
    """Warp `raster` onto the grid of `template`."""
    if raster.same_grid(template):
        return raster.rename(name or raster.name)

    dst = np.full(template.shape, np.nan, dtype=np.float64)
    reproject(
        source=raster.data.copy(),
        destination=dst,
        src_transform=raster.transform,
        src_crs=raster.crs,
        dst_transform=template.transform,
        dst_crs=template.crs,
        src_nodata=np.nan,
        dst_nodata=np.nan,
        resampling=resampling,
    )
    return Raster(dst, template.transform, template.crs, name or raster.name)


def mean_of_bands(bands: list[Raster], name: str = "mean") -> Raster:
    """Per-pixel mean over several bands on the same grid, ignoring no-data."""
    stack = np.stack([b.data for b in bands])
    counts = (~np.isnan(stack)).sum(axis=0)
    sums = np.nansum(stack, axis=0)
    mean = np.where(counts > 0, sums / np.maximum(counts, 1), np.nan)
    return bands[0].with_data(mean, name)


# ── Reductions ──────────────────────────────────────────────────────────────

def _domain_values(raster: Raster, max_pixels: float) -> np.ndarray:
    values = raster.data[raster.valid]
    if values.size == 0:
        raise MissingCoverageError(f"No valid pixels in '{raster.name}'")
    if values.size > max_pixels:
        # best effort: fixed-stride subsample, deterministic
        stride = math.ceil(values.size / max_pixels)
        values = values[::stride]
    return values


def reduce_min_max(raster: Raster, max_pixels: float = config.MAX_PIXELS) -> tuple[float, float]:
    values = _domain_values(raster, max_pixels)
    return float(values.min()), float(values.max())


def reduce_percentiles(
    raster: Raster,
    percentiles: tuple = config.ZONE_PERCENTILES,
    max_pixels: float = config.MAX_PIXELS,
) -> list[float]:
    values = _domain_values(raster, max_pixels)
    return [float(p) for p in np.percentile(values, percentiles)]


def reduce_sum(raster: Raster, where: np.ndarray = None) -> float:
    """Sum of valid pixels (optionally restricted); no coverage counts as 0."""
    keep = raster.valid if where is None else (raster.valid & where)
    if not keep.any():
        return 0.0
    return float(raster.data[keep].sum())


# ── Geometry masks ──────────────────────────────────────────────────────────

def domain_mask(geometry, template: Raster, geometry_crs: str = None) -> np.ndarray:
    """
    Boolean array, True for pixels whose centre lies inside `geometry`.
    The geometry is reprojected when `geometry_crs` differs from the grid.
    """
    shape = geometry
    if geometry_crs and CRS.from_user_input(geometry_crs) != CRS.from_user_input(template.crs):
        shape = transform_geom(geometry_crs, template.crs, mapping(geometry))
    return geometry_mask(
        [shape],
        out_shape=template.shape,
        transform=template.transform,
        invert=True,
    )


def clip(raster: Raster, geometry, geometry_crs: str = None) -> Raster:
    return raster.where(domain_mask(geometry, raster, geometry_crs))


# ── Point lookup ────────────────────────────────────────────────────────────

def pixel_indices(raster: Raster, xs, ys) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """(rows, cols, inside) of the pixels containing each (x, y)."""
    xs = np.atleast_1d(np.asarray(xs, dtype=np.float64))
    ys = np.atleast_1d(np.asarray(ys, dtype=np.float64))
    if xs.size == 0:
        empty = np.empty(0, dtype=np.int64)
        return empty, empty, np.empty(0, dtype=bool)
    rows, cols = rowcol(raster.transform, xs, ys)
    rows = np.asarray(rows, dtype=np.int64).reshape(xs.shape)
    cols = np.asarray(cols, dtype=np.int64).reshape(xs.shape)
    inside = (rows >= 0) & (rows < raster.height) & (cols >= 0) & (cols < raster.width)
    return rows, cols, inside


def values_at(raster: Raster, xs, ys) -> np.ndarray:
    """Pixel value under each point; NaN outside the grid."""
    rows, cols, inside = pixel_indices(raster, xs, ys)
    out = np.full(rows.shape, np.nan)
    out[inside] = raster.data[rows[inside], cols[inside]]
    return out


# ── GeoTIFF I/O ─────────────────────────────────────────────────────────────

def read_raster(path: str, band: int = 1, name: str = None) -> Raster:
    """Read one band as float64 with the file's no-data turned into NaN."""
    with rasterio.open(path) as src:
        data = src.read(band, masked=True).astype(np.float64).filled(np.nan)
        crs = src.crs.to_string() if src.crs else config.CRS
        transform = src.transform
    name = name or os.path.splitext(os.path.basename(path))[0]
    print(f"[RASTER] Read {name} – shape {data.shape}, {crs}")
    return Raster(data, transform, crs, name)


def read_band_mean(path: str, name: str = None) -> Raster:
    """Read every band and average them (e.g. clay fraction at several depths)."""
    with rasterio.open(path) as src:
        bands = [
            Raster(src.read(i, masked=True).astype(np.float64).filled(np.nan),
                   src.transform, src.crs.to_string() if src.crs else config.CRS)
            for i in range(1, src.count + 1)
        ]
    name = name or os.path.splitext(os.path.basename(path))[0]
    print(f"[RASTER] Read {name} – {len(bands)} band(s) averaged")
    return mean_of_bands(bands, name)


def export_geotiff(
    raster: Raster,
    filename: str,
    output_dir: str = config.OUTPUT_DIR,
) -> str:
    """Write a float32 GeoTIFF (NaN no-data, CRS + transform embedded)."""
    os.makedirs(output_dir, exist_ok=True)
    out_path = os.path.join(output_dir, filename)

    profile = {
        "driver": "GTiff",
        "height": raster.height,
        "width": raster.width,
        "count": 1,
        "dtype": "float32",
        "crs": raster.crs,
        "transform": raster.transform,
        "nodata": np.nan,
        "compress": "lzw",
    }
    with rasterio.open(out_path, "w", **profile) as dst:
        dst.write(raster.data.astype(np.float32), 1)
        dst.set_band_description(1, raster.name)

    print(f"[EXPORT] GeoTIFF saved → {out_path}")
    return out_path
