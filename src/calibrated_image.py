"""Calibrated image abstraction used by the spot pixel iteration kernels.

The kernels never touch a concrete buffer directly. They depend on the small
:class:`CalibratedImage` protocol:

  - ``ndim`` / ``shape``   (axis order is ``(x, y[, z])``)
  - ``calibration``       (physical units per pixel, same axis order)
  - ``sample(position)``  (value at an integer position, same axis order)

:class:`ArrayImage` is the numpy-backed implementation. Numpy stores planes as
``(Y, X)`` and stacks as ``(Z, Y, X)``, so the position tuple is reversed
before indexing. Pixel centers sit on integer coordinates.

No filesystem I/O here (see ``image_io.py``).
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Literal, Protocol, Sequence, Tuple, runtime_checkable

import numpy as np


OutOfBounds = Literal["mirror", "constant", "raise"]


@dataclass(frozen=True)
class Calibration:
    """Per-axis pixel sizes (physical units per pixel), ordered ``(x, y[, z])``."""

    scales: Tuple[float, ...]

    def __post_init__(self) -> None:
        scales = tuple(float(s) for s in self.scales)
        if not scales:
            raise ValueError("calibration needs at least one axis")
        for d, s in enumerate(scales):
            if not math.isfinite(s) or s <= 0:
                raise ValueError(f"calibration[{d}] must be a finite value > 0, got {s}")
        object.__setattr__(self, "scales", scales)

    @classmethod
    def isotropic(cls, pixel_size: float, ndim: int = 2) -> "Calibration":
        return cls((float(pixel_size),) * int(ndim))

    @classmethod
    def from_pixel_size(
        cls, pixel_size_xy: float, z_step: float | None = None, ndim: int = 2
    ) -> "Calibration":
        """Build an ``(x, y[, z])`` calibration from an XY pixel size and a Z step.

        A missing Z step on a 3D image falls back to the XY pixel size.
        """
        if ndim == 2:
            return cls((pixel_size_xy, pixel_size_xy))
        if ndim == 3:
            return cls((pixel_size_xy, pixel_size_xy, pixel_size_xy if z_step is None else z_step))
        raise ValueError(f"Only 2D and 3D calibrations are supported, got ndim={ndim}")

    def __len__(self) -> int:
        return len(self.scales)

    def __getitem__(self, d: int) -> float:
        return self.scales[d]

    def to_pixel(self, value: float, d: int) -> float:
        return float(value) / self.scales[d]

    def to_physical(self, value: float, d: int) -> float:
        return float(value) * self.scales[d]


@runtime_checkable
class CalibratedImage(Protocol):
    """Read-only, positioned random access into a calibrated image."""

    @property
    def ndim(self) -> int: ...

    @property
    def shape(self) -> Tuple[int, ...]: ...

    @property
    def calibration(self) -> Calibration: ...

    def sample(self, position: Sequence[int]): ...


def _mirror_index(i: int, n: int) -> int:
    # Single mirror: the edge pixel is not repeated (-1 -> 1, n -> n - 2).
    if n == 1:
        return 0
    period = 2 * (n - 1)
    i = i % period
    return period - i if i >= n else i


class ArrayImage:
    """:class:`CalibratedImage` over an in-memory numpy array.

    Parameters
    ----------
    array:
        2D ``(Y, X)`` or 3D ``(Z, Y, X)`` array. Not copied; treated as read-only.
    calibration:
        :class:`Calibration` or a plain sequence of per-axis sizes, ``(x, y[, z])``.
    out_of_bounds:
        What ``sample`` does outside the array: ``"mirror"`` reflects back into
        the image, ``"constant"`` returns ``fill_value``, ``"raise"`` raises
        ``IndexError``.
    """

    def __init__(
        self,
        array: np.ndarray,
        calibration: Calibration | Sequence[float] | None = None,
        *,
        out_of_bounds: OutOfBounds = "mirror",
        fill_value: float = 0,
    ) -> None:
        arr = np.asarray(array)
        if arr.ndim not in (2, 3):
            raise ValueError(f"ArrayImage expects a (Y, X) or (Z, Y, X) array, got shape={arr.shape}")
        if out_of_bounds not in ("mirror", "constant", "raise"):
            raise ValueError(f"Unknown out_of_bounds policy: {out_of_bounds!r}")

        if calibration is None:
            calibration = Calibration((1.0,) * arr.ndim)
        elif not isinstance(calibration, Calibration):
            calibration = Calibration(tuple(calibration))
        if len(calibration) != arr.ndim:
            raise ValueError(
                f"calibration has {len(calibration)} axes but the image has {arr.ndim} dimensions"
            )

        self._array = arr
        self._calibration = calibration
        self._shape = tuple(int(n) for n in reversed(arr.shape))
        self.out_of_bounds = out_of_bounds
        self.fill_value = arr.dtype.type(fill_value)

    @property
    def array(self) -> np.ndarray:
        return self._array

    @property
    def ndim(self) -> int:
        return self._array.ndim

    @property
    def shape(self) -> Tuple[int, ...]:
        return self._shape

    @property
    def dtype(self) -> np.dtype:
        return self._array.dtype

    @property
    def calibration(self) -> Calibration:
        return self._calibration

    def in_bounds(self, position: Sequence[int]) -> bool:
        return all(0 <= int(p) < n for p, n in zip(position, self._shape))

    def sample(self, position: Sequence[int]):
        if len(position) != self.ndim:
            raise ValueError(
                f"position {tuple(position)} has {len(position)} axes, image has {self.ndim}"
            )
        if self.in_bounds(position):
            return self._array[tuple(int(p) for p in reversed(position))]

        if self.out_of_bounds == "constant":
            return self.fill_value
        if self.out_of_bounds == "raise":
            raise IndexError(f"position {tuple(position)} is outside image of shape {self._shape}")
        idx = tuple(_mirror_index(int(p), n) for p, n in zip(position, self._shape))
        return self._array[tuple(reversed(idx))]


def is_2d(image: CalibratedImage) -> bool:
    """True iff the image is exactly 2-dimensional (a single in-plane slice)."""
    return int(image.ndim) == 2


def spatial_calibration(image: CalibratedImage) -> Tuple[float, ...]:
    return tuple(float(s) for s in image.calibration.scales)
