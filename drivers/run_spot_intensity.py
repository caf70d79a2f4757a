from __future__ import annotations

import argparse
import os
import subprocess
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import pandas as pd
import yaml

# Parquet support
try:
    import pyarrow  # noqa: F401
except ModuleNotFoundError:  # pragma: no cover
    pyarrow = None  # type: ignore[assignment]

# Matplotlib: write PNGs without needing a display
import matplotlib

matplotlib.use("Agg")

# Allow running without packaging
REPO_ROOT = Path(__file__).resolve().parents[1]
import sys

sys.path.insert(0, str(REPO_ROOT / "src"))

from calibrated_image import ArrayImage, Calibration  # noqa: E402
from image_io import StackSelection, infer_calibration_nm, read_image  # noqa: E402
from spot_intensity import SpotIntensityParams, measure_spots, spot_mask  # noqa: E402
from spot_model import Spot, spots_from_table  # noqa: E402
from vis_utils import write_spot_mask_overlay  # noqa: E402


def _load_config(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as f:
        cfg = yaml.safe_load(f)
    if not isinstance(cfg, dict):
        raise ValueError(f"Config must be a YAML mapping: {path}")
    return cfg


def _data_root() -> Path:
    root = os.environ.get("BIOIMG_DATA_ROOT")
    if not root:
        raise RuntimeError("BIOIMG_DATA_ROOT is not set")
    return Path(root).expanduser().resolve()


def _try_git_commit(repo_root: Path) -> Optional[str]:
    try:
        out = subprocess.check_output(
            ["git", "rev-parse", "HEAD"],
            cwd=str(repo_root),
            stderr=subprocess.STDOUT,
            text=True,
        ).strip()
        return out or None
    except (OSError, subprocess.CalledProcessError):
        return None


def _resolve_input(data_root: Path, cfg: Dict[str, Any], key: str) -> Path:
    relpath = cfg.get(key)
    if not relpath:
        raise ValueError(f"config missing required key: {key}")
    path = (data_root / relpath).resolve()
    if not path.exists():
        raise FileNotFoundError(f"Input not found ({key}): {path}")
    return path


def _read_spots_table(path: Path) -> pd.DataFrame:
    suffix = path.suffix.lower()
    if suffix == ".parquet":
        if pyarrow is None:
            raise RuntimeError("pyarrow is required to read parquet spot tables.")
        return pd.read_parquet(path)
    if suffix == ".csv":
        return pd.read_csv(path)
    raise ValueError(f"Unsupported spots table format: {path}")


def _build_calibration(cfg: Dict[str, Any], input_path: Path, ndim: int) -> Tuple[Calibration, str]:
    """Calibration in nm/px: config values win; otherwise TIFF metadata; else an error."""
    px_nm = cfg.get("pixel_size_nm")
    z_nm = cfg.get("z_step_nm")
    source = "config"

    if px_nm is None:
        meta, note = infer_calibration_nm(input_path)
        if meta is None:
            raise ValueError(f"pixel_size_nm not set in config and not inferable from metadata: {note}")
        sx, sy, sz = meta
        print(f"[pixel_size] metadata: x={sx:.3f} nm/px, y={sy:.3f} nm/px ({note})")
        if z_nm is None:
            z_nm = sz
        source = "metadata"
        if ndim == 3:
            cal = Calibration((sx, sy, sx if z_nm is None else float(z_nm)))
        else:
            cal = Calibration((sx, sy))
        return cal, source

    return Calibration.from_pixel_size(float(px_nm), None if z_nm is None else float(z_nm), ndim=ndim), source


def _roi_polygons(spots: List[Spot], calibration: Calibration) -> List[Tuple[np.ndarray, np.ndarray]]:
    polys = []
    for spot in spots:
        roi = spot.roi
        if roi is None:
            continue
        xs = roi.to_polygon_x(calibration[0], 0.0, spot.get_double_position(0), 1.0)
        ys = roi.to_polygon_y(calibration[1], 0.0, spot.get_double_position(1), 1.0)
        polys.append((xs, ys))
    return polys


def run_spot_intensity(config_path: Path) -> Path:
    cfg = _load_config(config_path)
    data_root = _data_root()

    input_path = _resolve_input(data_root, cfg, "input_relpath")
    spots_path = _resolve_input(data_root, cfg, "spots_relpath")

    selection = StackSelection(
        channel=int(cfg.get("channel", 1)),
        time_index=int(cfg.get("time_index", 0)),
        z_index=None if cfg.get("z_index") is None else int(cfg["z_index"]),
    )
    arr = read_image(input_path, selection)
    calibration, cal_source = _build_calibration(cfg, input_path, arr.ndim)
    print(f"[pixel_size] using calibration={calibration.scales} nm/px (source={cal_source})")

    image = ArrayImage(
        arr,
        calibration,
        out_of_bounds=cfg.get("out_of_bounds", "mirror"),
        fill_value=float(cfg.get("fill_value", 0.0)),
    )

    spots_df = _read_spots_table(spots_path)
    default_radius = cfg.get("default_radius_nm")
    spots = spots_from_table(
        spots_df,
        calibration,
        default_radius=None if default_radius is None else float(default_radius),
    )
    print(f"Measuring {len(spots)} spots in {input_path.name} (shape={arr.shape})...")

    params = SpotIntensityParams(
        radius_feature=str(cfg.get("radius_feature", "RADIUS")),
    )
    table = measure_spots(spots, image, params)

    # Carry the input pixel columns through so the output is self-contained.
    for col in ("frame", "z_px", "y_px", "x_px"):
        if col in spots_df.columns:
            table.insert(0, col, spots_df[col].to_numpy())

    # Create run folder
    runs_dir = (data_root / cfg.get("output_runs_dir", "runs")).resolve()
    ts = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    out_dir = (runs_dir / f"{ts}__spot_intensity").resolve()
    out_dir.mkdir(parents=True, exist_ok=False)

    # Outputs
    if pyarrow is None:
        raise RuntimeError("pyarrow is required to write spot_intensity.parquet.")
    table_path = out_dir / "spot_intensity.parquet"
    table.to_parquet(table_path, index=False)

    qc_path: Optional[Path] = None
    if bool(cfg.get("write_qc_overlay", True)):
        qc_path = out_dir / "qc_overlay.png"
        labels = spot_mask(spots, image, params)
        write_spot_mask_overlay(
            arr,
            labels,
            spots_df,
            qc_path,
            polygons=_roi_polygons(spots, calibration) if arr.ndim == 2 else None,
        )

    manifest: Dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z"),
        "input_path": str(input_path),
        "spots_path": str(spots_path),
        "config_snapshot": cfg,
        "output_dir": str(out_dir),
        "git_commit": _try_git_commit(REPO_ROOT),
        "env_name": os.environ.get("CONDA_DEFAULT_ENV", "unknown"),
        "image_shape": list(arr.shape),
        "image_dtype": str(arr.dtype),
        "calibration_nm": list(calibration.scales),
        "calibration_source": cal_source,
        "num_spots": int(len(table)),
        "num_roi_spots": int(table["used_roi"].sum()) if len(table) else 0,
        "num_fallback_spots": int(table["is_fallback"].sum()) if len(table) else 0,
        "qc_overlay": None if qc_path is None else str(qc_path),
        "kernel_params": asdict(params),
    }

    manifest_path = out_dir / "run_manifest.yaml"
    with manifest_path.open("w", encoding="utf-8") as f:
        yaml.safe_dump(manifest, f, sort_keys=False)

    return out_dir


def main() -> int:
    ap = argparse.ArgumentParser(description="Measure per-spot pixel intensities on a TIFF image")
    ap.add_argument("--config", default="configs/spot_intensity.yaml", help="Path to YAML config (relative or absolute)")
    args = ap.parse_args()

    config_path = Path(args.config)
    if not config_path.is_absolute():
        config_path = (REPO_ROOT / config_path).resolve()

    out_dir = run_spot_intensity(config_path)
    print(f"Spot intensity complete: {out_dir}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
