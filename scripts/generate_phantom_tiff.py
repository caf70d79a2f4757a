from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path
from typing import Any, Dict

import yaml

# Allow running without packaging
REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT / "src"))

from simulate_phantom import PhantomParams, write_phantom_tiff  # noqa: E402


def _load_config(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f)


def _data_root() -> Path:
    root = os.environ.get("BIOIMG_DATA_ROOT")
    if not root:
        raise RuntimeError("BIOIMG_DATA_ROOT is not set")
    return Path(root).expanduser().resolve()


def _phantom_params(cfg: Dict[str, Any]) -> PhantomParams:
    defaults = PhantomParams()
    return PhantomParams(
        height=int(cfg.get("sim_height", defaults.height)),
        width=int(cfg.get("sim_width", defaults.width)),
        num_spots=int(cfg.get("sim_num_spots", defaults.num_spots)),
        radius_px=float(cfg.get("sim_radius_px", defaults.radius_px)),
        noise_sigma=float(cfg.get("sim_noise_sigma", defaults.noise_sigma)),
        pixel_size_nm=float(cfg.get("pixel_size_nm", defaults.pixel_size_nm)),
        seed=int(cfg.get("sim_seed", defaults.seed)),
    )


def main() -> int:
    ap = argparse.ArgumentParser(description="Generate a flat-disk spot phantom TIFF plus its spot table")
    ap.add_argument("--config", default="configs/spot_intensity.yaml")
    ap.add_argument("--overwrite", action="store_true")
    args = ap.parse_args()

    cfg_path = Path(args.config)
    if not cfg_path.is_absolute():
        cfg_path = (REPO_ROOT / cfg_path).resolve()

    cfg = _load_config(cfg_path)
    data_root = _data_root()

    for key in ("input_relpath", "spots_relpath"):
        if not cfg.get(key):
            raise ValueError(f"config missing required key: {key}")
    tif_path = (data_root / cfg["input_relpath"]).resolve()
    spots_path = (data_root / cfg["spots_relpath"]).resolve()

    if spots_path.exists() and not args.overwrite:
        raise FileExistsError(f"File exists: {spots_path}. Use --overwrite.")

    params = _phantom_params(cfg)
    tif_path, spots = write_phantom_tiff(tif_path, params, overwrite=args.overwrite)

    spots_path.parent.mkdir(parents=True, exist_ok=True)
    if spots_path.suffix.lower() == ".csv":
        spots.to_csv(spots_path, index=False)
    else:
        spots.to_parquet(spots_path, index=False)

    print(f"Wrote phantom: {tif_path}")
    print(f"Shape: ({params.height}, {params.width}) (Y, X)")
    print(f"Wrote spots: {spots_path} ({len(spots)} rows)")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
