"""
Visualization Module – Static PNG quicklooks of the output rasters and the
random-forest importance chart.
"""

import os

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt
import numpy as np
from matplotlib import colormaps
from PIL import Image

import config
from landslide_risk.raster import Raster


def render_raster_png(
    raster: Raster,
    filename: str,
    cmap: str = "RdYlGn_r",
    output_dir: str = config.OUTPUT_DIR,
    vmin: float = None,
    vmax: float = None,
) -> str:
    """Colour-map a raster (red = high) with transparent no-data and save it."""
    band = raster.data
    valid = raster.valid
    if vmin is None or vmax is None:
        lo = float(np.nanmin(band)) if valid.any() else 0.0
        hi = float(np.nanmax(band)) if valid.any() else 1.0
        vmin = lo if vmin is None else vmin
        vmax = hi if vmax is None else vmax

    if vmax - vmin > 0:
        norm = np.clip((band - vmin) / (vmax - vmin), 0.0, 1.0)
    else:
        norm = np.zeros_like(band)

    rgba = colormaps[cmap](np.nan_to_num(norm, nan=0.0))
    rgba[..., 3] = np.where(valid, 1.0, 0.0)

    os.makedirs(output_dir, exist_ok=True)
    out_path = os.path.join(output_dir, filename)
    Image.fromarray((rgba * 255).astype(np.uint8)).save(out_path, format="PNG")
    print(f"[VIS] {raster.name} quicklook saved → {out_path}")
    return out_path


def plot_importance(
    importance: list,
    filename: str,
    title: str = "Random forest variable importance",
    output_dir: str = config.OUTPUT_DIR,
) -> str:
    """Horizontal bar chart, most important band on top."""
    bands = [b for b, _ in importance][::-1]
    scores = [s for _, s in importance][::-1]

    fig, ax = plt.subplots(figsize=(6, 0.5 * len(bands) + 1.5))
    ax.barh(bands, scores, color="#c0392b")
    ax.set_xlabel("Importance")
    ax.set_title(title)
    fig.tight_layout()

    os.makedirs(output_dir, exist_ok=True)
    out_path = os.path.join(output_dir, filename)
    fig.savefig(out_path, dpi=120)
    plt.close(fig)
    print(f"[VIS] Importance chart saved → {out_path}")
    return out_path
