from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT / "src"))

from image_io import infer_calibration_nm  # noqa: E402


def main() -> int:
    ap = argparse.ArgumentParser(
        description="Inspect the pixel calibration (nm/px) stored in TIFF / OME-TIFF metadata.",
    )
    ap.add_argument(
        "--input",
        required=True,
        help="Input image path (absolute or relative to $BIOIMG_DATA_ROOT).",
    )
    args = ap.parse_args()

    p = Path(args.input)
    if not p.is_absolute():
        root = os.environ.get("BIOIMG_DATA_ROOT")
        if not root:
            raise RuntimeError("BIOIMG_DATA_ROOT is not set; provide an absolute --input path.")
        p = (Path(root) / p).resolve()

    if not p.exists():
        raise FileNotFoundError(f"Input not found: {p}")

    sizes, note = infer_calibration_nm(p)

    print("=== inspect_pixel_size ===")
    print("input:", p)
    print("note:", note)
    print()

    if sizes is None:
        print("ERROR: could not determine pixel size from metadata.")
        print("Set pixel_size_nm in the config if you know the calibration.")
        return 2

    px_nm, py_nm, pz_nm = sizes
    print(f"pixel_size_x: {px_nm:.3f} nm/px")
    print(f"pixel_size_y: {py_nm:.3f} nm/px")
    if pz_nm is not None:
        print(f"z_step: {pz_nm:.3f} nm")
    print()
    print("Suggested config entries:")
    print(f"  pixel_size_nm: {0.5 * (px_nm + py_nm):.3f}")
    if pz_nm is not None:
        print(f"  z_step_nm: {pz_nm:.3f}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
