"""
Zonation Engine – Discretise a continuous raster into Low / Medium / High.

Tertile zones use the 33rd and 66th percentiles of the raster itself:
    value <  p33          → 1
    p33 ≤ value < p66     → 2
    value ≥ p66           → 3

Threshold zones use the fixed physical breaks in config.RISK_THRESHOLDS.
"""

import numpy as np

import config
from landslide_risk.raster import Raster, reduce_percentiles


def tertile_breaks(raster: Raster, max_pixels: float = config.MAX_PIXELS) -> tuple[float, float]:
    p_low, p_high = reduce_percentiles(raster, config.ZONE_PERCENTILES, max_pixels)
    print(f"[ZONE] {raster.name} breaks: p{config.ZONE_PERCENTILES[0]}={p_low:.4f}, "
          f"p{config.ZONE_PERCENTILES[1]}={p_high:.4f}")
    return p_low, p_high


def _classify(raster: Raster, low: float, high: float, upper_inclusive: bool) -> np.ndarray:
    data = raster.data
    zones = np.full(raster.shape, np.nan)
    valid = raster.valid
    if upper_inclusive:
        zones[valid] = np.where(data[valid] <= low, 1, np.where(data[valid] <= high, 2, 3))
    else:
        zones[valid] = np.where(data[valid] < low, 1, np.where(data[valid] < high, 2, 3))
    return zones


def classify_zones(raster: Raster, breaks: tuple = None) -> Raster:
    """Tertile zone raster {1, 2, 3}; no-data stays no-data."""
    low, high = breaks if breaks is not None else tertile_breaks(raster)
    zones = raster.with_data(_classify(raster, low, high, upper_inclusive=False), "zone")
    print(f"[ZONE] Zones: {zone_pixel_counts(zones)}")
    return zones


def threshold_zones(raster: Raster, thresholds: dict = None) -> Raster:
    """
    Fixed-threshold zones:
        0.0 – low_max    → 1 (Low)
        low_max – medium_max → 2 (Medium)
        > medium_max     → 3 (High)
    """
    t = thresholds or config.RISK_THRESHOLDS
    data = _classify(raster, t["low_max"], t["medium_max"], upper_inclusive=True)
    return raster.with_data(data, "risk_class")


def zone_pixel_counts(zones: Raster) -> dict:
    """Pixel count per zone over the unmasked domain."""
    return {z: int(np.count_nonzero(zones.data == z)) for z in config.ZONE_LABELS}


def zone_fractions(zones: Raster) -> dict:
    counts = zone_pixel_counts(zones)
    total = sum(counts.values())
    if total == 0:
        return {z: 0.0 for z in counts}
    return {z: n / total for z, n in counts.items()}
