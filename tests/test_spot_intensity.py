from __future__ import annotations

import numpy as np
import pytest

from calibrated_image import ArrayImage, Calibration
from simulate_phantom import PhantomParams, generate_phantom
from spot_intensity import REQUIRED_COLUMNS, SpotIntensityParams, measure_spot_intensity, measure_spots, spot_mask
from spot_model import Spot, SpotRoi, spots_from_table


PARAMS = PhantomParams(height=64, width=64, num_spots=5, radius_px=3.0, background_level=100.0, seed=1)


def _phantom():
    img, spots_df = generate_phantom(PARAMS)
    cal = Calibration.from_pixel_size(PARAMS.pixel_size_nm)
    image = ArrayImage(img, cal)
    spots = spots_from_table(spots_df, cal)
    return img, spots_df, image, spots


def test_flat_disks_measure_exactly() -> None:
    _img, spots_df, image, spots = _phantom()
    assert len(spots) > 0

    table = measure_spots(spots, image)
    assert list(table.columns) == REQUIRED_COLUMNS
    assert len(table) == len(spots_df)

    expected = PARAMS.background_level + spots_df["amplitude"].to_numpy()
    assert table["MEAN_INTENSITY"].to_numpy() == pytest.approx(expected)
    assert table["MIN_INTENSITY"].to_numpy() == pytest.approx(expected)
    assert table["MAX_INTENSITY"].to_numpy() == pytest.approx(expected)
    assert table["STD_INTENSITY"].to_numpy() == pytest.approx(0.0)
    # Disk of radius 3 px holds 29 pixels.
    assert table["n_pixels"].tolist() == [29] * len(spots)
    assert table["TOTAL_INTENSITY"].to_numpy() == pytest.approx(29 * expected)
    assert not table["used_roi"].any()
    assert not table["is_fallback"].any()


def test_measurements_are_stored_on_spots() -> None:
    _img, _df, image, spots = _phantom()
    row = measure_spot_intensity(spots[0], image)
    assert spots[0].get_feature("MEAN_INTENSITY") == row["MEAN_INTENSITY"]
    assert row["spot_id"] == spots[0].ID


def test_store_features_can_be_disabled() -> None:
    _img, _df, image, spots = _phantom()
    measure_spot_intensity(spots[0], image, SpotIntensityParams(store_features=False))
    with pytest.raises(KeyError):
        spots[0].get_feature("MEAN_INTENSITY")


def test_roi_spot_statistics() -> None:
    arr = np.zeros((20, 20), dtype=np.uint16)
    arr[8:12, 8:12] = 10
    arr[9, 9] = 50
    image = ArrayImage(arr, (1.0, 1.0))
    spot = Spot(10.0, 10.0, 0.0, radius=0.1, roi=SpotRoi.square(2.0))

    row = measure_spot_intensity(spot, image)
    assert row["used_roi"]
    assert row["n_pixels"] == 16
    assert row["MAX_INTENSITY"] == 50.0
    assert row["MIN_INTENSITY"] == 10.0
    assert row["MEDIAN_INTENSITY"] == 10.0
    assert row["TOTAL_INTENSITY"] == 15 * 10 + 50


def test_fallback_spot_reports_single_pixel() -> None:
    arr = np.zeros((20, 20), dtype=np.float32)
    arr[10, 10] = 3.5
    row = measure_spot_intensity(Spot(10.0, 10.0, 0.0, radius=0.4), ArrayImage(arr, (1.0, 1.0)))
    assert row["is_fallback"]
    assert row["n_pixels"] == 1
    assert row["MEAN_INTENSITY"] == 3.5


def test_empty_spot_list() -> None:
    image = ArrayImage(np.zeros((4, 4)), (1.0, 1.0))
    table = measure_spots([], image)
    assert table.empty
    assert list(table.columns) == REQUIRED_COLUMNS


def test_spot_mask_matches_phantom_disks() -> None:
    img, spots_df, image, spots = _phantom()
    labels = spot_mask(spots, image)
    assert labels.shape == img.shape
    assert int(labels.max()) == len(spots)
    assert int(np.count_nonzero(labels)) == 29 * len(spots)
    # The labeled pixels are exactly the bright ones.
    assert np.array_equal(labels > 0, img > PARAMS.background_level)


def test_spot_mask_skips_pixels_outside_image() -> None:
    image = ArrayImage(np.zeros((10, 10), dtype=np.uint8), (1.0, 1.0))
    labels = spot_mask([Spot(0.0, 0.0, 0.0, radius=2.0)], image)
    # Quarter disk (plus axes) of the 13-pixel radius-2 disk survives.
    assert int(np.count_nonzero(labels)) == 6
