"""Spot data model consumed by the pixel iteration kernels.

A :class:`Spot` is a detected object: a unique integer ID, a feature map
(positions and radius in *physical* units) and an optional polygon
:class:`SpotRoi` attached at detection time.

Feature names follow TrackMate (``POSITION_X``, ``RADIUS``, ...) so that spot
tables exported from Fiji can be used as-is.
"""

from __future__ import annotations

import itertools
import math
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
import yaml

from calibrated_image import Calibration


POSITION_X = "POSITION_X"
POSITION_Y = "POSITION_Y"
POSITION_Z = "POSITION_Z"
POSITION_T = "POSITION_T"
RADIUS = "RADIUS"
QUALITY = "QUALITY"
FRAME = "FRAME"

POSITION_FEATURES = (POSITION_X, POSITION_Y, POSITION_Z)

_ID_COUNTER = itertools.count()


class SpotRoi:
    """Polygon contour around a spot center.

    ``x`` and ``y`` are vertex *offsets* in physical units, relative to the
    spot center. The polygon is closed implicitly (last vertex joins the first).
    Self-intersection is not checked.
    """

    __slots__ = ("_x", "_y")

    def __init__(self, x: Sequence[float], y: Sequence[float]) -> None:
        xs = tuple(float(v) for v in x)
        ys = tuple(float(v) for v in y)
        if len(xs) != len(ys):
            raise ValueError(f"ROI x/y lengths differ: {len(xs)} != {len(ys)}")
        if len(xs) < 3:
            raise ValueError(f"ROI polygon needs at least 3 vertices, got {len(xs)}")
        self._x = xs
        self._y = ys

    @property
    def x(self) -> Tuple[float, ...]:
        return self._x

    @property
    def y(self) -> Tuple[float, ...]:
        return self._y

    def __len__(self) -> int:
        return len(self._x)

    def __repr__(self) -> str:
        return f"SpotRoi(n_vertices={len(self)})"

    def to_polygon_x(
        self, calibration: float, xcorner: float, spot_x_center: float, magnification: float
    ) -> np.ndarray:
        """Vertex X coordinates in pixel units: ``((center + x) / cal - corner) * mag``."""
        xc = (float(spot_x_center) + np.asarray(self._x)) / float(calibration)
        return (xc - float(xcorner)) * float(magnification)

    def to_polygon_y(
        self, calibration: float, ycorner: float, spot_y_center: float, magnification: float
    ) -> np.ndarray:
        yc = (float(spot_y_center) + np.asarray(self._y)) / float(calibration)
        return (yc - float(ycorner)) * float(magnification)

    @classmethod
    def square(cls, half_side: float) -> "SpotRoi":
        h = float(half_side)
        return cls([-h, h, h, -h], [-h, -h, h, h])


class Spot:
    """A detected object with identity, features and an optional ROI.

    The ID is drawn from a process-wide counter at construction and never
    changes. The ROI is fixed at construction. Features stay mutable so that
    analyzers can add their measurements.
    """

    def __init__(
        self,
        x: float,
        y: float,
        z: float,
        radius: float,
        quality: float = 0.0,
        name: Optional[str] = None,
        roi: Optional[SpotRoi] = None,
    ) -> None:
        self._id = next(_ID_COUNTER)
        self._roi = roi
        self._name = name
        self._features: Dict[str, float] = {
            POSITION_X: float(x),
            POSITION_Y: float(y),
            POSITION_Z: float(z),
            RADIUS: float(radius),
            QUALITY: float(quality),
        }

    @classmethod
    def from_features(
        cls, features: Dict[str, float], name: Optional[str] = None, roi: Optional[SpotRoi] = None
    ) -> "Spot":
        """Build a spot from an arbitrary feature map (positions may be partial)."""
        spot = cls.__new__(cls)
        spot._id = next(_ID_COUNTER)
        spot._roi = roi
        spot._name = name
        spot._features = {str(k): float(v) for k, v in features.items()}
        return spot

    @property
    def ID(self) -> int:
        return self._id

    @property
    def roi(self) -> Optional[SpotRoi]:
        return self._roi

    @property
    def name(self) -> str:
        return self._name if self._name is not None else f"ID{self._id}"

    @property
    def features(self) -> Dict[str, float]:
        return dict(self._features)

    def get_feature(self, feature: str) -> float:
        try:
            return self._features[feature]
        except KeyError:
            raise KeyError(f"Spot {self.name} has no feature {feature!r}") from None

    def put_feature(self, feature: str, value: float) -> None:
        self._features[str(feature)] = float(value)

    def get_double_position(self, d: int) -> float:
        return self.get_feature(POSITION_FEATURES[d])

    def square_distance_to(self, other: "Spot") -> float:
        total = 0.0
        for feature in POSITION_FEATURES:
            delta = self._features.get(feature, 0.0) - other._features.get(feature, 0.0)
            total += delta * delta
        return total

    def __hash__(self) -> int:
        return hash(self._id)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Spot) and other._id == self._id

    def __repr__(self) -> str:
        pos = ", ".join(f"{self._features.get(f, float('nan')):.3f}" for f in POSITION_FEATURES)
        return f"Spot({self.name}, pos=({pos}), roi={self._roi is not None})"


def _roi_from_row(row: pd.Series) -> Optional[SpotRoi]:
    if "roi_x" not in row.index or "roi_y" not in row.index:
        return None
    rx, ry = row["roi_x"], row["roi_y"]
    if rx is None or ry is None:
        return None
    if isinstance(rx, float) and math.isnan(rx):
        return None
    if isinstance(rx, str):
        # CSV tables store the vertex lists as text, e.g. "[-130.0, 130.0, ...]".
        rx, ry = yaml.safe_load(rx), yaml.safe_load(ry)
    return SpotRoi(list(rx), list(ry))


def spots_from_table(
    df: pd.DataFrame,
    calibration: Calibration,
    default_radius: Optional[float] = None,
) -> List[Spot]:
    """Convert a detection table (pixel columns) to physical-unit :class:`Spot` objects.

    Expected columns
    ----------------
    - ``x_px``, ``y_px`` (required), ``z_px`` (required for 3D calibrations)
    - ``radius`` in physical units (optional; falls back to ``default_radius``)
    - ``quality`` / ``frame`` (optional)
    - ``roi_x`` / ``roi_y`` vertex offset lists in physical units (optional)
    """
    for col in ("x_px", "y_px"):
        if col not in df.columns:
            raise KeyError(f"spots table is missing required column: {col}")
    ndim = len(calibration)
    if ndim == 3 and "z_px" not in df.columns:
        raise KeyError("spots table is missing required column for a 3D image: z_px")

    spots: List[Spot] = []
    for _, row in df.iterrows():
        radius = row["radius"] if "radius" in df.columns else None
        if radius is None or pd.isna(radius):
            if default_radius is None:
                raise ValueError("spot row has no radius and no default_radius was given")
            radius = default_radius

        z = float(row["z_px"]) * calibration[2] if ndim == 3 else 0.0
        spot = Spot(
            x=float(row["x_px"]) * calibration[0],
            y=float(row["y_px"]) * calibration[1],
            z=z,
            radius=float(radius),
            quality=float(row["quality"]) if "quality" in df.columns else 0.0,
            roi=_roi_from_row(row),
        )
        if "frame" in df.columns:
            spot.put_feature(FRAME, float(row["frame"]))
        spots.append(spot)
    return spots
