"""Region descriptors, bounding boxes and membership tests for spot pixels.

A spot's region is one of three variants:

  - :class:`PolygonContour` : 2D vertex offsets (physical units) around a center
  - :class:`RadiusRegion`   : per-axis radius (physical units) around a center,
                              i.e. a circle / ellipse / sphere / ellipsoid
  - :class:`PixelBox`       : an explicit pixel box where every pixel is a member
                              (used for the single-pixel fallback)

Both :func:`resolve_bounding_box` and :func:`membership_test` dispatch once on
the variant, so the per-pixel loop only calls a plain function.

Pixel centers sit on integer coordinates. Rounding is half-up
(``floor(v + 0.5)``), which is what TrackMate / ImgLib2 use, and which differs
from Python's ``round`` at exact halves.
"""

from __future__ import annotations

import itertools
import math
from dataclasses import dataclass
from typing import Callable, Iterator, Sequence, Tuple, Union

import numpy as np

from calibrated_image import Calibration


Position = Tuple[int, ...]
MembershipTest = Callable[[Position], bool]


def round_half_up(value: float) -> int:
    return int(math.floor(float(value) + 0.5))


@dataclass(frozen=True)
class BoundingBox:
    """Integer half-open pixel interval ``[min, max)`` per axis."""

    min: Tuple[int, ...]
    max: Tuple[int, ...]

    def __post_init__(self) -> None:
        if len(self.min) != len(self.max):
            raise ValueError(f"min/max have different lengths: {self.min} vs {self.max}")
        object.__setattr__(self, "min", tuple(int(v) for v in self.min))
        object.__setattr__(self, "max", tuple(int(v) for v in self.max))

    @classmethod
    def unit(cls, center: Sequence[int]) -> "BoundingBox":
        """Single-pixel box ``[c, c + 1)`` on every axis."""
        return cls(tuple(center), tuple(int(c) + 1 for c in center))

    @property
    def num_dimensions(self) -> int:
        return len(self.min)

    @property
    def shape(self) -> Tuple[int, ...]:
        return tuple(max(0, hi - lo) for lo, hi in zip(self.min, self.max))

    @property
    def volume(self) -> int:
        return int(np.prod(self.shape, dtype=np.int64)) if self.min else 0

    def is_empty(self) -> bool:
        return self.volume == 0

    def contains(self, position: Sequence[int]) -> bool:
        return all(lo <= p < hi for p, lo, hi in zip(position, self.min, self.max))

    def positions(self) -> Iterator[Position]:
        """All box positions in raster order (first axis varies fastest)."""
        ranges = [range(lo, hi) for lo, hi in zip(self.min, self.max)]
        for rev in itertools.product(*reversed(ranges)):
            yield rev[::-1]


@dataclass(frozen=True)
class PolygonContour:
    """2D polygon: vertex offsets around ``center``, all in physical units."""

    x: Tuple[float, ...]
    y: Tuple[float, ...]
    center: Tuple[float, float]

    def __post_init__(self) -> None:
        if len(self.x) != len(self.y):
            raise ValueError(f"polygon x/y lengths differ: {len(self.x)} != {len(self.y)}")
        if len(self.x) < 3:
            raise ValueError(f"polygon needs at least 3 vertices, got {len(self.x)}")
        if len(self.center) != 2:
            raise ValueError(f"polygon center must be 2D, got {self.center}")

    @property
    def num_dimensions(self) -> int:
        return 2

    def to_pixels(self, calibration: Calibration) -> Tuple[np.ndarray, np.ndarray]:
        """Absolute vertex coordinates in pixel units."""
        xp = (self.center[0] + np.asarray(self.x, dtype=float)) / calibration[0]
        yp = (self.center[1] + np.asarray(self.y, dtype=float)) / calibration[1]
        return xp, yp


@dataclass(frozen=True)
class RadiusRegion:
    """Implicit circle / ellipsoid: per-axis ``radius`` around ``center`` (physical units)."""

    center: Tuple[float, ...]
    radius: Tuple[float, ...]

    def __post_init__(self) -> None:
        if len(self.center) != len(self.radius):
            raise ValueError(
                f"center has {len(self.center)} axes but radius has {len(self.radius)}"
            )

    @property
    def num_dimensions(self) -> int:
        return len(self.center)

    def to_pixels(self, calibration: Calibration) -> Tuple[Position, Position]:
        """Rounded pixel center and per-axis pixel span."""
        center = tuple(round_half_up(c / calibration[d]) for d, c in enumerate(self.center))
        span = tuple(max(0, round_half_up(r / calibration[d])) for d, r in enumerate(self.radius))
        return center, span


@dataclass(frozen=True)
class PixelBox:
    """Explicit pixel box; every position inside is a member."""

    box: BoundingBox

    @property
    def num_dimensions(self) -> int:
        return self.box.num_dimensions


RegionDescriptor = Union[PolygonContour, RadiusRegion, PixelBox]


def resolve_bounding_box(region: RegionDescriptor, calibration: Calibration) -> BoundingBox:
    """Smallest half-open integer box enclosing ``region`` in pixel coordinates.

    - polygon: ``[floor(min), ceil(max))`` of the pixel-space vertices, per axis
    - radius: the full pixel diameter ``[c - span, c + span + 1)``
    - pixel box: returned unchanged
    """
    if isinstance(region, PolygonContour):
        xp, yp = region.to_pixels(calibration)
        return BoundingBox(
            (math.floor(float(xp.min())), math.floor(float(yp.min()))),
            (math.ceil(float(xp.max())), math.ceil(float(yp.max()))),
        )
    if isinstance(region, RadiusRegion):
        center, span = region.to_pixels(calibration)
        return BoundingBox(
            tuple(c - s for c, s in zip(center, span)),
            tuple(c + s + 1 for c, s in zip(center, span)),
        )
    if isinstance(region, PixelBox):
        return region.box
    raise TypeError(f"Unsupported region descriptor: {type(region).__name__}")


def is_inside_polygon(xq: float, yq: float, x: Sequence[float], y: Sequence[float]) -> bool:
    """Even-odd ray casting. No tie-break for points on an edge or vertex."""
    inside = False
    n = len(x)
    j = n - 1
    for i in range(n):
        xi, yi = x[i], y[i]
        xj, yj = x[j], y[j]
        if (yi > yq) != (yj > yq) and xq < (xj - xi) * (yq - yi) / (yj - yi) + xi:
            inside = not inside
        j = i
    return inside


def _polygon_test(region: PolygonContour, calibration: Calibration) -> MembershipTest:
    xp, yp = region.to_pixels(calibration)
    x = tuple(float(v) for v in xp)
    y = tuple(float(v) for v in yp)

    def test(position: Position) -> bool:
        return is_inside_polygon(float(position[0]), float(position[1]), x, y)

    return test


def _radius_test(region: RadiusRegion, calibration: Calibration) -> MembershipTest:
    center, span = region.to_pixels(calibration)
    # sum((delta_d / s_d)^2) <= 1, scaled by L = prod(s_d^2) to stay in integers.
    # Zero-span axes are pinned to the center by the bounding box.
    spans = [(d, s) for d, s in enumerate(span) if s > 0]
    limit = 1
    for _, s in spans:
        limit *= s * s
    axes = tuple((d, center[d], limit // (s * s)) for d, s in spans)

    def test(position: Position) -> bool:
        total = 0
        for d, c, weight in axes:
            delta = position[d] - c
            total += delta * delta * weight
        return total <= limit

    return test


def _always(position: Position) -> bool:
    return True


def membership_test(region: RegionDescriptor, calibration: Calibration) -> MembershipTest:
    """Return ``test(position) -> bool`` deciding whether a pixel belongs to ``region``."""
    if isinstance(region, PolygonContour):
        return _polygon_test(region, calibration)
    if isinstance(region, RadiusRegion):
        return _radius_test(region, calibration)
    if isinstance(region, PixelBox):
        return _always
    raise TypeError(f"Unsupported region descriptor: {type(region).__name__}")
