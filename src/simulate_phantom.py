from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Tuple

import numpy as np
import pandas as pd
import tifffile


@dataclass(frozen=True)
class PhantomParams:
    height: int = 256
    width: int = 256
    num_spots: int = 20
    radius_px: float = 3.0
    min_separation_px: float = 12.0  # keeps spot disks from overlapping
    background_level: float = 100.0
    noise_sigma: float = 0.0
    intensity_min: float = 800.0
    intensity_max: float = 2500.0
    pixel_size_nm: float = 65.0
    seed: int = 42


def _place_spots_separated(
    rng: np.random.Generator,
    height: int,
    width: int,
    num_spots: int,
    margin: int,
    min_sep: float,
    max_attempts: int = 2000,
) -> Tuple[np.ndarray, np.ndarray]:
    """Rejection-sample integer spot centers with a minimum separation.

    Returns fewer than num_spots if it can't satisfy constraints.
    """
    ys: list[int] = []
    xs: list[int] = []
    for _ in range(num_spots):
        placed = False
        for _attempt in range(max_attempts):
            y = int(rng.integers(margin, height - margin))
            x = int(rng.integers(margin, width - margin))
            if not ys:
                ys.append(y); xs.append(x); placed = True; break
            d2 = (np.asarray(ys) - y) ** 2 + (np.asarray(xs) - x) ** 2
            if float(np.min(d2)) >= (min_sep ** 2):
                ys.append(y); xs.append(x); placed = True; break
        if not placed:
            break
    return np.asarray(ys, dtype=int), np.asarray(xs, dtype=int)


def generate_phantom(params: PhantomParams) -> Tuple[np.ndarray, pd.DataFrame]:
    """Generate a uint16 2D image of flat disks plus the matching spots table.

    Each spot is a disk of constant amplitude (on top of the background) whose
    pixel membership uses the same rule as the radius regions of the spot
    pixel kernels: ``(x - cx)^2 + (y - cy)^2 <= r_px^2`` with ``r_px`` the
    half-up rounded radius. With ``noise_sigma=0`` the measured mean intensity
    of each spot is therefore exactly ``background + amplitude``.

    The spots table has ``x_px``, ``y_px``, ``radius`` (nm), ``quality`` and
    ``amplitude`` columns.
    """
    if params.height <= 0 or params.width <= 0:
        raise ValueError("height/width must be positive")
    if params.radius_px <= 0:
        raise ValueError("radius_px must be positive")
    if params.num_spots < 0:
        raise ValueError("num_spots must be >= 0")

    rng = np.random.default_rng(params.seed)

    r_px = int(np.floor(float(params.radius_px) + 0.5))
    margin = r_px + 1

    ys, xs = _place_spots_separated(
        rng=rng,
        height=params.height,
        width=params.width,
        num_spots=params.num_spots,
        margin=margin,
        min_sep=float(params.min_separation_px),
    )

    img = np.full((params.height, params.width), float(params.background_level), dtype=np.float32)
    if params.noise_sigma > 0:
        img += rng.normal(0.0, float(params.noise_sigma), size=img.shape).astype(np.float32)

    yy = np.arange(-r_px, r_px + 1)
    YY, XX = np.meshgrid(yy, yy, indexing="ij")
    disk = (XX ** 2 + YY ** 2) <= r_px ** 2

    amplitudes = []
    for y_c, x_c in zip(ys, xs):
        amp = float(np.round(rng.uniform(float(params.intensity_min), float(params.intensity_max))))
        amplitudes.append(amp)
        patch = img[y_c - r_px : y_c + r_px + 1, x_c - r_px : x_c + r_px + 1]
        patch[disk] += amp

    img = np.clip(img, 0, 65535).astype(np.uint16)

    spots = pd.DataFrame(
        {
            "x_px": xs.astype(float),
            "y_px": ys.astype(float),
            "radius": np.full(len(xs), float(params.radius_px) * float(params.pixel_size_nm)),
            "quality": np.asarray(amplitudes, dtype=float),
            "amplitude": np.asarray(amplitudes, dtype=float),
        }
    )
    return img, spots


def write_phantom_tiff(output_path: Path, params: PhantomParams, overwrite: bool = False) -> Tuple[Path, pd.DataFrame]:
    output_path = output_path.expanduser().resolve()
    output_path.parent.mkdir(parents=True, exist_ok=True)

    if output_path.exists() and not overwrite:
        raise FileExistsError(
            f"Refusing to overwrite existing file: {output_path}. "
            "Pass --overwrite if you intend to replace it."
        )

    img, spots = generate_phantom(params)
    tifffile.imwrite(str(output_path), img)
    return output_path, spots
