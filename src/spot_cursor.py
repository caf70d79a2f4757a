"""Lazy, restartable cursor over the pixels of a spot region.

The cursor walks the region's bounding box in raster order (first axis, x,
varies fastest; this is numpy row-major order over a ``(Z, Y, X)`` array) and
stops only on positions that pass the region's membership test.

It buffers one pixel ahead, so ``has_next()`` can be answered without
consuming anything:

    FRESH       nothing scanned yet (after construction or ``reset()``)
    POSITIONED  a passing pixel is buffered and will be served by ``fwd()``
    EXHAUSTED   the box has been scanned to the end

Geometry (bounding box + membership test) is derived once at construction;
``reset()`` only restarts the scan. Each cursor owns its scan state, so any
number of cursors may read the same image at once.
"""

from __future__ import annotations

from enum import Enum
from typing import Iterator, NamedTuple, Optional, Tuple

from calibrated_image import CalibratedImage
from spot_region import BoundingBox, Position, RegionDescriptor, membership_test, resolve_bounding_box


class PixelSample(NamedTuple):
    position: Tuple[int, ...]
    value: object


class CursorState(Enum):
    FRESH = "fresh"
    POSITIONED = "positioned"
    EXHAUSTED = "exhausted"


class PixelCursor:
    """Cursor over the member pixels of ``region`` in ``image``.

    Parameters
    ----------
    region:
        Region descriptor (polygon, radius or pixel box).
    image:
        Any :class:`~calibrated_image.CalibratedImage`. Must have at least as
        many dimensions as the region; this is not checked.
    """

    def __init__(self, region: RegionDescriptor, image: CalibratedImage) -> None:
        self._region = region
        self._image = image
        self._box = resolve_bounding_box(region, image.calibration)
        self._test = membership_test(region, image.calibration)
        self.reset()

    # -- state -------------------------------------------------------------

    def reset(self) -> None:
        """Restart the scan from the first position of the bounding box."""
        self._scan: Iterator[Position] = self._box.positions()
        self._next: Optional[Position] = None
        self._current: Optional[Position] = None
        self._state = CursorState.FRESH

    def _fetch(self) -> None:
        for position in self._scan:
            if self._test(position):
                self._next = position
                self._state = CursorState.POSITIONED
                return
        self._next = None
        self._state = CursorState.EXHAUSTED

    def _prime(self) -> None:
        if self._state is CursorState.FRESH:
            self._fetch()

    @property
    def state(self) -> CursorState:
        return self._state

    # -- iteration ---------------------------------------------------------

    def has_next(self) -> bool:
        self._prime()
        return self._state is CursorState.POSITIONED

    def fwd(self) -> None:
        """Move onto the buffered pixel and look ahead for the following one."""
        self._prime()
        if self._next is None:
            raise StopIteration("cursor is exhausted")
        self._current = self._next
        self._fetch()

    def jump_fwd(self, steps: int) -> None:
        for _ in range(int(steps)):
            self.fwd()

    def get(self):
        """Sample value at the current position."""
        return self._image.sample(self.position)

    def next(self):
        self.fwd()
        return self.get()

    def __iter__(self) -> "PixelCursor":
        return self

    def __next__(self) -> PixelSample:
        self.fwd()
        position = self._current
        return PixelSample(position, self._image.sample(position))

    def copy(self) -> "PixelCursor":
        """A fresh cursor over the same region and image (scan state is not copied)."""
        return PixelCursor(self._region, self._image)

    # -- localization ------------------------------------------------------

    @property
    def position(self) -> Tuple[int, ...]:
        if self._current is None:
            raise LookupError("cursor is not on a pixel yet; call fwd() first")
        return self._current

    def get_long_position(self, d: int) -> int:
        return self.position[d]

    def get_double_position(self, d: int) -> float:
        return float(self.position[d])

    @property
    def num_dimensions(self) -> int:
        return self._box.num_dimensions

    @property
    def bounding_box(self) -> BoundingBox:
        return self._box

    @property
    def region(self) -> RegionDescriptor:
        return self._region
