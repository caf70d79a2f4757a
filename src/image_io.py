"""Image I/O helpers.

Goal: keep file format quirks out of kernels.

- Drivers handle filesystem paths and choose which channel / time point to load.
- Kernels operate on in-memory ``(Y, X)`` or ``(Z, Y, X)`` arrays wrapped in
  :class:`calibrated_image.ArrayImage`.

TIFF only. Axis labels come from tifffile's series axes (``TZCYX``-style for
ImageJ hyperstacks and OME-TIFF). Calibration is read from OME-XML
``PhysicalSize*`` attributes where available, else from TIFF resolution tags.
"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

import numpy as np
import tifffile


@dataclass(frozen=True)
class StackSelection:
    """How to select a single 2D plane or 3D stack from a multi-dimensional TIFF.

    Notes
    -----
    * `channel` is **1-based** for user friendliness (channel=0 also means first).
    * `z_index=None` keeps the full Z stack; an integer selects one plane.
    """

    channel: int = 1
    time_index: int = 0
    z_index: Optional[int] = None


def _index_for(axis: str, size: int, selection: StackSelection) -> int:
    if axis in ("C", "S"):
        ch = int(selection.channel)
        idx = ch - 1 if ch >= 1 else 0
    elif axis == "T":
        idx = int(selection.time_index)
    else:
        idx = 0
    if not 0 <= idx < size:
        raise IndexError(f"{axis} index {idx} out of range for axis of size {size}")
    return idx


def select_stack(arr: np.ndarray, axes: str, selection: StackSelection) -> np.ndarray:
    """Reduce a labeled array to ``(Y, X)`` or ``(Z, Y, X)``.

    Parameters
    ----------
    arr:
        Image data.
    axes:
        One character per array axis (tifffile convention, e.g. ``"TZCYX"``).
        Unknown / size-1 axes other than Y, X, Z are collapsed by taking index 0.
    """
    arr = np.asarray(arr)
    axes = axes.upper()
    if len(axes) != arr.ndim:
        raise ValueError(f"axes {axes!r} do not match array shape {arr.shape}")

    index = []
    kept = []
    for ax, n in zip(axes, arr.shape):
        if ax in ("Y", "X"):
            index.append(slice(None))
            kept.append(ax)
        elif ax == "Z":
            if selection.z_index is None:
                index.append(slice(None))
                kept.append(ax)
            else:
                z = int(selection.z_index)
                if not 0 <= z < n:
                    raise IndexError(f"z_index={z} out of range for Z axis of size {n}")
                index.append(z)
        else:
            index.append(_index_for(ax, n, selection))

    out = arr[tuple(index)]
    order = [kept.index(ax) for ax in ("Z", "Y", "X") if ax in kept]
    out = np.transpose(out, order)
    if out.ndim == 3 and out.shape[0] == 1:
        out = out[0]
    if out.ndim not in (2, 3):
        raise ValueError(f"Unsupported image layout after selection: axes={axes!r}, shape={arr.shape}")
    return out


def read_image(input_path: Path, selection: StackSelection) -> np.ndarray:
    """Read a 2D plane or a 3D Z stack from a TIFF.

    Returns
    -------
    np.ndarray
        ``(Y, X)`` or ``(Z, Y, X)``. The dtype is preserved from file.
    """
    suffix = input_path.suffix.lower()
    if suffix not in {".tif", ".tiff"}:
        raise ValueError(f"Unsupported input format: {input_path}")
    if not input_path.exists():
        raise FileNotFoundError(f"Input TIFF not found: {input_path}")

    with tifffile.TiffFile(str(input_path)) as tif:
        series = tif.series[0]
        arr = np.asarray(series.asarray())
        axes = str(series.axes)

    # Unlabeled page stacks: a short leading axis is channels, a long one is Z.
    if arr.ndim == 3 and axes[0] in ("Q", "I"):
        axes = ("C" if arr.shape[0] <= 4 else "Z") + axes[1:]
    axes = axes.replace("Q", "Z").replace("I", "Z")
    return select_stack(arr, axes, selection)


def _unit_to_nm_factor(unit: str) -> Optional[float]:
    u = unit.strip().lower()
    u = u.replace("μ", "u").replace("µ", "u")
    if u in ("nm", "nanometer", "nanometers"):
        return 1.0
    if u in ("um", "micrometer", "micrometers", "micron", "microns"):
        return 1000.0
    if u in ("mm", "millimeter", "millimeters"):
        return 1_000_000.0
    if u in ("m", "meter", "meters"):
        return 1e9
    return None


def _ome_sizes_nm(ome: str) -> Tuple[Optional[float], Optional[float], Optional[float]]:
    root = ET.fromstring(ome)
    pixels = root.find(".//{*}Pixels")
    if pixels is None:
        return None, None, None

    def _size(axis: str) -> Optional[float]:
        value = pixels.attrib.get(f"PhysicalSize{axis}")
        if value is None:
            return None
        unit = pixels.attrib.get(f"PhysicalSize{axis}Unit", "µm")
        factor = _unit_to_nm_factor(unit)
        return float(value) * factor if factor else None

    return _size("X"), _size("Y"), _size("Z")


def infer_calibration_nm(path: Path) -> Tuple[Optional[Tuple[float, float, Optional[float]]], str]:
    """Return ``((x_nm, y_nm, z_nm_or_None), note)`` or ``(None, note)``."""
    with tifffile.TiffFile(str(path)) as tif:
        ome = tif.ome_metadata
        if ome:
            try:
                sx, sy, sz = _ome_sizes_nm(ome)
            except ET.ParseError as exc:
                return None, f"Unreadable OME-XML: {exc}"
            if sx is not None and sy is not None:
                return (sx, sy, sz), "OME metadata (PhysicalSizeX/Y/Z)"

        tags = tif.pages[0].tags
        if "XResolution" in tags and "YResolution" in tags and "ResolutionUnit" in tags:
            unit = int(tags["ResolutionUnit"].value)  # 2=inch, 3=cm
            um_per_unit = {2: 25400.0, 3: 10000.0}.get(unit)

            def _to_float(res) -> float:
                if isinstance(res, tuple) and len(res) == 2:
                    return float(res[0]) / float(res[1])
                return float(res)

            xres = _to_float(tags["XResolution"].value)
            yres = _to_float(tags["YResolution"].value)
            if um_per_unit is not None and xres > 0 and yres > 0:
                return (
                    (um_per_unit / xres * 1000.0, um_per_unit / yres * 1000.0, None),
                    f"TIFF resolution tags (ResolutionUnit={unit})",
                )

    return None, "No usable pixel size metadata found in TIFF."
