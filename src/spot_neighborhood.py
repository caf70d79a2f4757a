"""Spot neighborhood: the pixels of an image that belong to a spot.

This is the entry point every per-spot measurement goes through:

    pixels = iterable(spot, image)
    for position, value in pixels:
        ...

Region selection (once per spot / image pair)
---------------------------------------------
- If the spot has a ROI **and** the image is exactly 2D, iterate the polygon
  (even-odd point-in-polygon test at pixel centers).
- Otherwise iterate the circle / sphere given by the spot radius, calibrated
  separately on each axis (so anisotropic pixels give an ellipse / ellipsoid).

Single-pixel fallback
---------------------
If the selected region holds 0 or 1 pixels, it is replaced by the single pixel
at the rounded spot position, on every image axis. Every spot therefore
contributes at least one sample, even when its extent is sub-pixel.
"""

from __future__ import annotations

from typing import Iterator, Tuple

import numpy as np

from calibrated_image import CalibratedImage, is_2d
from spot_cursor import PixelCursor, PixelSample
from spot_model import POSITION_FEATURES, RADIUS, Spot
from spot_region import (
    BoundingBox,
    PixelBox,
    PolygonContour,
    RadiusRegion,
    RegionDescriptor,
    resolve_bounding_box,
    round_half_up,
)


class SpotPixels:
    """Iterable view over the member pixels of one region in one image.

    Nothing is cached except the bounding box: ``size()`` drains a throw-away
    cursor on every call, and each ``iter()`` starts an independent cursor.
    """

    def __init__(self, region: RegionDescriptor, image: CalibratedImage, *, is_fallback: bool = False) -> None:
        self._region = region
        self._image = image
        self._box = resolve_bounding_box(region, image.calibration)
        self.is_fallback = bool(is_fallback)

    @property
    def region(self) -> RegionDescriptor:
        return self._region

    @property
    def image(self) -> CalibratedImage:
        return self._image

    @property
    def bounding_box(self) -> BoundingBox:
        return self._box

    @property
    def num_dimensions(self) -> int:
        return self._box.num_dimensions

    @property
    def used_roi(self) -> bool:
        return isinstance(self._region, PolygonContour)

    def cursor(self) -> PixelCursor:
        return PixelCursor(self._region, self._image)

    def localizing_cursor(self) -> PixelCursor:
        return self.cursor()

    def __iter__(self) -> Iterator[PixelSample]:
        return self.cursor()

    def size(self) -> int:
        cursor = self.cursor()
        n = 0
        while cursor.has_next():
            cursor.fwd()
            n += 1
        return n

    def __len__(self) -> int:
        return self.size()

    def first_element(self):
        cursor = self.cursor()
        if not cursor.has_next():
            raise LookupError("spot region contains no pixels")
        return cursor.next()

    def min(self, d: int) -> int:
        """Inclusive lower bound of the bounding box on axis ``d`` (pixels)."""
        return self._box.min[d]

    def max(self, d: int) -> int:
        """Exclusive upper bound of the bounding box on axis ``d`` (pixels)."""
        return self._box.max[d]

    def real_min(self, d: int) -> float:
        """:meth:`min` in physical units."""
        return self._image.calibration.to_physical(self._box.min[d], d)

    def real_max(self, d: int) -> float:
        """:meth:`max` in physical units."""
        return self._image.calibration.to_physical(self._box.max[d], d)

    def positions(self) -> np.ndarray:
        """``(n, ndim)`` int64 array of member positions, in iteration order."""
        pos = [sample.position for sample in self]
        return np.asarray(pos, dtype=np.int64).reshape(len(pos), self.num_dimensions)

    def values(self) -> np.ndarray:
        return np.asarray([sample.value for sample in self])

    def __repr__(self) -> str:
        return (
            f"SpotPixels(region={type(self._region).__name__}, "
            f"box=[{self._box.min}, {self._box.max}), fallback={self.is_fallback})"
        )


def _spot_center(spot: Spot, ndim: int) -> Tuple[float, ...]:
    return tuple(spot.get_double_position(d) for d in range(ndim))


def select_region(spot: Spot, image: CalibratedImage, radius_feature: str = RADIUS) -> RegionDescriptor:
    """Polygon region if the spot has a ROI and the image is 2D, radius region otherwise."""
    ndim = int(image.ndim)
    if ndim > len(POSITION_FEATURES):
        raise ValueError(f"Spot regions are defined for 2D and 3D images only, got ndim={ndim}")

    roi = spot.roi
    if roi is not None and is_2d(image):
        return PolygonContour(x=roi.x, y=roi.y, center=_spot_center(spot, 2))

    radius = spot.get_feature(radius_feature)
    return RadiusRegion(center=_spot_center(spot, ndim), radius=(radius,) * ndim)


def single_pixel_region(spot: Spot, image: CalibratedImage) -> PixelBox:
    """The pixel at the rounded spot position, on every image axis."""
    calibration = image.calibration
    center = tuple(
        round_half_up(spot.get_double_position(d) / calibration[d]) for d in range(int(image.ndim))
    )
    return PixelBox(BoundingBox.unit(center))


def iterable(spot: Spot, image: CalibratedImage, radius_feature: str = RADIUS) -> SpotPixels:
    """Pixels of ``image`` belonging to ``spot``, never fewer than one."""
    pixels = SpotPixels(select_region(spot, image, radius_feature), image)
    if pixels.size() <= 1:
        return SpotPixels(single_pixel_region(spot, image), image, is_fallback=True)
    return pixels
