"""Visualization utilities for QC artifacts.

These functions render which pixels were attributed to each spot, so a human
can check polygon ROIs, radius regions and single-pixel fallbacks at a glance.

Notes
-----
- QC outputs are not part of the strict data contracts (intensity table +
  manifest), but they are how we build trust in the per-spot pixel sets.
- 3D inputs are shown as maximum-intensity projections.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from skimage.segmentation import find_boundaries


def _rescale_to_unit(img: np.ndarray, pmin: float, pmax: float) -> np.ndarray:
    """Robustly rescale an image to [0, 1] using percentiles.

    Parameters
    ----------
    img:
        2D array.
    pmin, pmax:
        Percentiles (0-100). Typical values: (1, 99) or (1, 99.8).

    Returns
    -------
    np.ndarray
        float32 array in [0, 1].
    """
    x = np.asarray(img, dtype=np.float32)
    if x.size == 0:
        return np.zeros_like(x, dtype=np.float32)

    lo, hi = np.percentile(x, [float(pmin), float(pmax)])
    if not np.isfinite(lo) or not np.isfinite(hi) or hi <= lo:
        return np.zeros_like(x, dtype=np.float32)

    y = (x - float(lo)) / float(hi - lo)
    return np.clip(y, 0.0, 1.0).astype(np.float32, copy=False)


def project_2d(arr: np.ndarray) -> np.ndarray:
    """Max projection along Z for ``(Z, Y, X)`` arrays; 2D arrays pass through."""
    a = np.asarray(arr)
    if a.ndim == 3:
        return a.max(axis=0)
    if a.ndim != 2:
        raise ValueError(f"Expected a 2D or 3D array, got shape={a.shape}")
    return a


def spot_outline_rgba(labels_2d: np.ndarray, color=(0.0, 1.0, 1.0), alpha: float = 0.8) -> np.ndarray:
    """RGBA layer with the inner boundary of every labeled spot region."""
    labels_2d = np.asarray(labels_2d)
    boundaries = find_boundaries(labels_2d, mode="inner") & (labels_2d > 0)
    rgba = np.zeros(labels_2d.shape + (4,), dtype=np.float32)
    rgba[boundaries, 0] = color[0]
    rgba[boundaries, 1] = color[1]
    rgba[boundaries, 2] = color[2]
    rgba[boundaries, 3] = alpha
    return rgba


def write_spot_mask_overlay(
    image: np.ndarray,
    labels: np.ndarray,
    spots_df: pd.DataFrame,
    out_path: Path,
    *,
    title: Optional[str] = None,
    polygons: Optional[Sequence[Tuple[np.ndarray, np.ndarray]]] = None,
) -> None:
    """Write a PNG of the image with spot pixel-set outlines and spot centers.

    `polygons` are optional ROI contours in pixel coordinates, drawn as closed lines.
    """
    import matplotlib.pyplot as plt

    img = _rescale_to_unit(project_2d(image), 1.0, 99.0)
    lab = project_2d(labels)

    fig = plt.figure(figsize=(10, 10), dpi=150)
    ax = fig.add_subplot(111)

    ax.imshow(img, cmap="gray", vmin=0.0, vmax=1.0, interpolation="nearest")
    ax.imshow(spot_outline_rgba(lab), interpolation="nearest")

    if not spots_df.empty:
        ax.scatter(
            spots_df["x_px"],
            spots_df["y_px"],
            s=6,
            c="red",
            marker="+",
            linewidths=0.8,
        )
    for xs, ys in polygons or ():
        ax.plot(np.append(xs, xs[0]), np.append(ys, ys[0]), color="yellow", linewidth=0.6)
    if title is None:
        title = f"Spot pixels QC: {len(spots_df)} spots, {int(np.count_nonzero(lab))} pixels"
    ax.set_title(title)

    ax.set_axis_off()
    fig.tight_layout(pad=0)
    fig.savefig(out_path, bbox_inches="tight")
    plt.close(fig)
