"""
Susceptibility Compositor – Weighted linear combination of factor layers.

Model:
    Raw(x)            = Σ w_i · Factor_i(x)
    Susceptibility(x) = (Raw(x) - min Raw) / (max Raw - min Raw)

Weights must sum to 1.  Every layer must sit on the same grid.
"""

import math

import numpy as np

import config
from landslide_risk.errors import MissingCoverageError
from landslide_risk.raster import Raster, reduce_min_max


def check_weights(weights: dict) -> None:
    total = math.fsum(weights.values())
    assert abs(total - 1.0) <= config.WEIGHT_TOLERANCE, \
        f"Weights must sum to 1.0, got {total}"


def _as_raster(layer) -> Raster:
    # FactorLayer or a bare Raster
    return getattr(layer, "raster", layer)


def composite_raw(layers: dict, weights: dict = None) -> Raster:
    """Σ w_i · layer_i on the common grid, before re-normalisation."""
    w = weights or config.WEIGHTS
    check_weights(w)

    missing = sorted(set(w) - set(layers))
    if missing:
        raise ValueError(f"No factor layer for weighted factor(s): {missing}")

    rasters = {name: _as_raster(layers[name]) for name in w}
    first = next(iter(rasters.values()))
    for name, r in rasters.items():
        if not r.same_grid(first):
            raise ValueError(
                f"Factor '{name}' is not on the common grid "
                f"({r.shape} vs {first.shape})"
            )

    total = np.zeros(first.shape)
    for name, r in rasters.items():
        total = total + w[name] * r.data

    print(f"[MODEL] Composite computed – weights: {w}")
    return first.with_data(total, "risk_raw")


def renormalize(raster: Raster, name: str = "risk") -> Raster:
    """Rescale by the raster's own min/max to [0, 1]; flat input → 0."""
    try:
        lo, hi = reduce_min_max(raster)
    except MissingCoverageError as e:
        print(f"[WARN] {e} → nothing to re-normalise")
        return raster.rename(name)

    if hi <= lo:
        print(f"[WARN] '{raster.name}' is flat (min = max = {lo}) → set to 0")
        return raster.with_data(np.where(raster.valid, 0.0, np.nan), name)

    scaled = np.clip((raster.data - lo) / (hi - lo), 0.0, 1.0)
    return raster.with_data(scaled, name)


def compute_susceptibility(layers: dict, weights: dict = None) -> Raster:
    """Composite then re-normalise: the susceptibility raster, values in [0, 1]."""
    risk = renormalize(composite_raw(layers, weights), "risk")
    print("[MODEL] Susceptibility re-normalised to [0, 1]")
    return risk
