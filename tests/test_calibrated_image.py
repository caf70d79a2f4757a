from __future__ import annotations

import math

import numpy as np
import pytest

from calibrated_image import ArrayImage, CalibratedImage, Calibration, is_2d, spatial_calibration


@pytest.mark.parametrize("bad", [(0.0, 1.0), (-1.0, 1.0), (math.nan, 1.0), (math.inf, 1.0), ()])
def test_calibration_rejects_invalid_scales(bad) -> None:
    with pytest.raises(ValueError):
        Calibration(bad)


def test_calibration_from_pixel_size() -> None:
    assert Calibration.from_pixel_size(65.0).scales == (65.0, 65.0)
    assert Calibration.from_pixel_size(65.0, 200.0, ndim=3).scales == (65.0, 65.0, 200.0)
    # Missing Z step on a stack falls back to the XY pixel size.
    assert Calibration.from_pixel_size(65.0, None, ndim=3).scales == (65.0, 65.0, 65.0)
    with pytest.raises(ValueError):
        Calibration.from_pixel_size(65.0, ndim=4)


def test_calibration_unit_conversion() -> None:
    cal = Calibration((0.5, 2.0))
    assert cal.to_pixel(5.0, 0) == 10.0
    assert cal.to_physical(3, 1) == 6.0
    assert len(cal) == 2
    assert cal[1] == 2.0


def test_array_image_reverses_axes() -> None:
    arr = np.arange(12).reshape(3, 4)  # (Y=3, X=4)
    image = ArrayImage(arr, (1.0, 1.0))
    assert image.shape == (4, 3)
    assert image.ndim == 2
    assert image.sample((1, 2)) == arr[2, 1] == 9
    assert isinstance(image, CalibratedImage)


def test_array_image_3d_axes() -> None:
    arr = np.arange(2 * 3 * 4).reshape(2, 3, 4)  # (Z, Y, X)
    image = ArrayImage(arr, (1.0, 1.0, 2.0))
    assert image.shape == (4, 3, 2)
    assert image.sample((3, 2, 1)) == arr[1, 2, 3]


def test_mirror_out_of_bounds() -> None:
    arr = np.arange(12).reshape(3, 4)
    image = ArrayImage(arr, (1.0, 1.0), out_of_bounds="mirror")
    assert image.sample((-1, 0)) == arr[0, 1]
    assert image.sample((4, 0)) == arr[0, 2]
    assert image.sample((0, -2)) == arr[2, 0]


def test_constant_and_raise_out_of_bounds() -> None:
    arr = np.arange(12, dtype=np.uint16).reshape(3, 4)
    assert ArrayImage(arr, (1.0, 1.0), out_of_bounds="constant", fill_value=7).sample((9, 9)) == 7
    with pytest.raises(IndexError):
        ArrayImage(arr, (1.0, 1.0), out_of_bounds="raise").sample((-1, 0))


def test_array_image_validation() -> None:
    with pytest.raises(ValueError):
        ArrayImage(np.zeros(5), (1.0,))
    with pytest.raises(ValueError):
        ArrayImage(np.zeros((3, 3)), (1.0, 1.0, 1.0))
    with pytest.raises(ValueError):
        ArrayImage(np.zeros((3, 3)), (1.0, 1.0), out_of_bounds="wrap")  # type: ignore[arg-type]
    with pytest.raises(ValueError):
        ArrayImage(np.zeros((3, 3))).sample((0, 0, 0))


def test_default_calibration_is_unit() -> None:
    image = ArrayImage(np.zeros((2, 5, 5)))
    assert spatial_calibration(image) == (1.0, 1.0, 1.0)
    assert not is_2d(image)
    assert is_2d(ArrayImage(np.zeros((5, 5))))
