from __future__ import annotations

from pathlib import Path

import pandas as pd
import pytest
import yaml

from drivers.run_spot_intensity import _build_calibration, run_spot_intensity
from simulate_phantom import PhantomParams, write_phantom_tiff


def _bench(tmp_path: Path, monkeypatch) -> Path:
    data_root = tmp_path / "bench"
    for name in ["raw_staging", "runs"]:
        (data_root / name).mkdir(parents=True, exist_ok=True)
    monkeypatch.setenv("BIOIMG_DATA_ROOT", str(data_root))
    return data_root


def test_end_to_end_phantom(tmp_path, monkeypatch) -> None:
    data_root = _bench(tmp_path, monkeypatch)

    params = PhantomParams(height=64, width=64, num_spots=6, radius_px=3.0, seed=3)
    _tif, spots_df = write_phantom_tiff(data_root / "raw_staging" / "phantom.tif", params, overwrite=True)

    # One extra spot with a square ROI and one sub-pixel spot that falls back.
    extra = pd.DataFrame(
        {
            "x_px": [20.0, 40.0],
            "y_px": [60.0, 2.0],
            "radius": [195.0, 10.0],
            "roi_x": [[-130.0, 130.0, 130.0, -130.0], None],
            "roi_y": [[-130.0, -130.0, 130.0, 130.0], None],
        }
    )
    table_in = pd.concat([spots_df.assign(roi_x=None, roi_y=None), extra], ignore_index=True)
    table_in.to_parquet(data_root / "raw_staging" / "phantom.parquet", index=False)

    cfg = {
        "input_relpath": "raw_staging/phantom.tif",
        "spots_relpath": "raw_staging/phantom.parquet",
        "output_runs_dir": "runs",
        "pixel_size_nm": params.pixel_size_nm,
        "default_radius_nm": 195.0,
        "out_of_bounds": "mirror",
    }
    cfg_path = tmp_path / "spot_intensity.yaml"
    cfg_path.write_text(yaml.safe_dump(cfg), encoding="utf-8")

    out_dir = run_spot_intensity(cfg_path)
    assert out_dir.exists()

    table_path = out_dir / "spot_intensity.parquet"
    manifest_path = out_dir / "run_manifest.yaml"
    qc_path = out_dir / "qc_overlay.png"
    assert table_path.exists()
    assert manifest_path.exists()
    assert qc_path.exists()

    table = pd.read_parquet(table_path)
    assert len(table) == len(table_in)
    for col in ["x_px", "y_px", "spot_id", "n_pixels", "MEAN_INTENSITY", "used_roi", "is_fallback"]:
        assert col in table.columns

    n = len(spots_df)
    expected = params.background_level + spots_df["amplitude"].to_numpy()
    assert table["MEAN_INTENSITY"].to_numpy()[:n] == pytest.approx(expected)
    assert table["used_roi"].tolist() == [False] * n + [True, False]
    assert table["is_fallback"].tolist() == [False] * n + [False, True]
    # 260 nm square at 65 nm/px: 4 x 4 pixels.
    assert int(table["n_pixels"].iloc[n]) == 16

    with manifest_path.open("r", encoding="utf-8") as f:
        manifest = yaml.safe_load(f)
    assert manifest["num_spots"] == len(table_in)
    assert manifest["num_roi_spots"] == 1
    assert manifest["num_fallback_spots"] == 1
    assert manifest["calibration_nm"] == [65.0, 65.0]
    assert manifest["calibration_source"] == "config"


def test_missing_data_root(tmp_path, monkeypatch) -> None:
    monkeypatch.delenv("BIOIMG_DATA_ROOT", raising=False)
    cfg_path = tmp_path / "cfg.yaml"
    cfg_path.write_text(yaml.safe_dump({"input_relpath": "x.tif", "spots_relpath": "s.csv"}), encoding="utf-8")
    with pytest.raises(RuntimeError):
        run_spot_intensity(cfg_path)


def test_missing_input_file(tmp_path, monkeypatch) -> None:
    _bench(tmp_path, monkeypatch)
    cfg_path = tmp_path / "cfg.yaml"
    cfg_path.write_text(
        yaml.safe_dump({"input_relpath": "raw_staging/none.tif", "spots_relpath": "raw_staging/none.csv"}),
        encoding="utf-8",
    )
    with pytest.raises(FileNotFoundError):
        run_spot_intensity(cfg_path)


def test_build_calibration_from_config(tmp_path) -> None:
    cal, source = _build_calibration({"pixel_size_nm": 65.0, "z_step_nm": 250.0}, tmp_path / "unused.tif", ndim=3)
    assert cal.scales == (65.0, 65.0, 250.0)
    assert source == "config"
