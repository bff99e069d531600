"""Loading of solver output and field, channel and material queries in SI units."""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence, Union

import numpy as np

logger = logging.getLogger(__name__)

Q_PROTON = 1.60217663e-19  # coulombs
M_PROTON = 1.67262192e-27  # kilograms
K_ACCEL = Q_PROTON / M_PROTON  # (C/kg) * (V/m) gives m/s^2

MATERIAL_THRESHOLD = 1.1  # relative permittivity at or above this is material
MICROMETRE = 1.0e-6
FIELD_SCALE = 1.0e6  # V/um to V/m

_EFFECTIVE_ZERO = 1e-9

_FLOAT_PREFIX = re.compile(
    r"\s*([+-]?(?:(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?|inf(?:inity)?|nan))",
    re.IGNORECASE,
)

PathLike = Union[str, Path]


@dataclass
class GeometryParameters:
    """Grid spacing and structure extent, in metres; 0.0 when not given."""

    h: float = 0.0
    x_fs: float = 0.0
    x_sl: float = 0.0


def _parse_number(text: str) -> float:
    """Parse the leading number of text, ignoring anything after it."""
    match = _FLOAT_PREFIX.match(text)
    if match is None:
        raise ValueError(f"not a number: {text!r}")
    literal = match.group(1)
    value = float(literal)
    if math.isinf(value) and "inf" not in literal.lower():
        raise ValueError(f"number out of range: {text!r}")
    return value


def _cells(line: str) -> list[str]:
    """Split a CSV line the way a delimiter-driven reader sees it."""
    line = line.rstrip("\n")
    if not line:
        return []
    parts = line.split(",")
    if parts[-1] == "":
        parts.pop()
    return parts


def load_1d_csv(path: PathLike, to_meters: bool = False) -> np.ndarray:
    """Read one number per line, skipping blank lines; optionally convert um to m."""
    values = []
    with open(path, encoding="utf-8") as handle:
        for line in handle:
            line = line.rstrip("\n")
            if not line:
                continue
            try:
                value = _parse_number(line)
            except ValueError as exc:
                raise ValueError(f"{path}: invalid line {line!r}") from exc
            values.append(value * MICROMETRE if to_meters else value)
    return np.array(values, dtype=float)


def _load_grid(path: PathLike, nx: int, ny: int, scale: float) -> np.ndarray:
    """Read a CSV with one line per j and one column per i into an [i, j] array."""
    grid = np.zeros((nx, ny), dtype=float)
    rows = 0
    with open(path, encoding="utf-8") as handle:
        for j, line in enumerate(handle):
            if j >= ny:
                break
            cells = _cells(line)[:nx]
            for i, cell in enumerate(cells):
                try:
                    grid[i, j] = _parse_number(cell) * scale
                except ValueError as exc:
                    raise ValueError(
                        f"{path}: invalid value {cell!r} at ({i},{j})") from exc
            if len(cells) != nx:
                logger.debug("%s: row %d has %d columns, expected %d",
                             path, j, len(cells), nx)
            rows = j + 1
    if rows != ny:
        logger.debug("%s: has %d rows, expected %d", path, rows, ny)
    return grid


def load_field_csv(path: PathLike, nx: int, ny: int) -> np.ndarray:
    """Load a field component written in V/um and return it in V/m, indexed [i, j]."""
    return _load_grid(path, nx, ny, FIELD_SCALE)


def load_permittivity_map(path: PathLike, nx: int, ny: int) -> np.ndarray:
    """Load a relative permittivity map, indexed [i, j]."""
    grid = _load_grid(path, nx, ny, 1.0)
    logger.info("Permittivity map loaded successfully from %s", path)
    return grid


def load_geometry_params(path: PathLike) -> GeometryParameters:
    """Read h, x_free_space and x_structure_len (um) from a 'key,value' file, in metres."""
    geom = GeometryParameters()
    found = set()
    with open(path, encoding="utf-8") as handle:
        for line in handle:
            line = line.rstrip("\n")
            key, _, rest = line.partition(",")
            value_text = rest.split(",", 1)[0]
            try:
                value = _parse_number(value_text) * MICROMETRE
            except ValueError:
                logger.debug("Skipping value for key %r: %r", key, value_text)
                continue
            if key == "h":
                geom.h = value
            elif key == "x_free_space":
                geom.x_fs = value
            elif key == "x_structure_len":
                geom.x_sl = value
            else:
                continue
            found.add(key)

    if "h" not in found:
        logger.info("Grid spacing 'h' not found in %s.", path)
    if not {"x_free_space", "x_structure_len"} <= found:
        logger.info("'x_free_space' or 'x_structure_len' not found in %s.", path)
    logger.info("Geometry parameters: h=%g m, x_fs=%g m, x_sl=%g m",
                geom.h, geom.x_fs, geom.x_sl)
    return geom


def _middle_third(y_coords: Sequence[float]) -> tuple[float, float]:
    height = y_coords[-1] - y_coords[0]
    return y_coords[0] + height / 3.0, y_coords[-1] - height / 3.0


def _column_gap(column, y_coords: Sequence[float], h: float) -> tuple[float, float]:
    """Vacuum interval between the bottom and top material runs of one column."""
    ny = len(column)
    bottom_top = -1
    for j in range(ny):
        if column[j] >= MATERIAL_THRESHOLD:
            bottom_top = j
        else:
            break
    top_bottom = -1
    for j in range(ny - 1, -1, -1):
        if column[j] >= MATERIAL_THRESHOLD:
            top_bottom = j
        else:
            break

    start = y_coords[0] if bottom_top == -1 else y_coords[bottom_top] + h
    end = y_coords[-1] if top_bottom == -1 else y_coords[top_bottom]
    return max(start, y_coords[0]), min(end, y_coords[-1])


def find_vacuum_channel(eps_r, x_coords: Sequence[float], y_coords: Sequence[float],
                        h: float, x_start: float, x_end: float) -> tuple[float, float]:
    """Vacuum y-interval common to every column in [x_start, x_end] of the map.

    Falls back to the middle third of the domain when no common gap exists,
    and trims a tenth of a cell from each side of a comfortably wide gap.
    """
    eps = np.asarray(eps_r, dtype=float)
    if len(y_coords) == 0:
        return 0.0, 0.0
    nx = eps.shape[0] if eps.ndim >= 1 else 0
    if nx == 0:
        return _middle_third(y_coords)
    if eps.ndim < 2 or eps.shape[1] == 0:
        return 0.0, 0.0

    spacing = x_coords[1] - x_coords[0] if len(x_coords) > 1 else 1.0
    if spacing <= 0:
        spacing = 1.0
    inv_spacing = 1.0 / spacing if spacing > _EFFECTIVE_ZERO else 1.0

    first = min(max(int(x_start * inv_spacing), 0), nx - 1)
    last = min(max(int(x_end * inv_spacing), 0), nx - 1)
    if first > last:
        logger.warning("Invalid x-search range for vacuum; analysing central 50%% of x.")
        middle, quarter = nx // 2, nx // 4
        first = max(0, middle - quarter)
        last = min(nx - 1, middle + quarter)

    low, high = y_coords[-1], y_coords[0]
    found = False
    for column in eps[first:last + 1]:
        start, end = _column_gap(column, y_coords, h)
        if start < end:
            if found:
                low, high = max(low, start), min(high, end)
            else:
                low, high, found = start, end, True

    if not found or low >= high:
        low, high = _middle_third(y_coords)
        logger.warning("No consistent vacuum channel; using fallback [%g um, %g um]",
                       low * 1e6, high * 1e6)
        return low, high

    if high - low > 2.0 * h:
        margin = 0.1 * h
        new_low, new_high = low + margin, high - margin
        if new_low < new_high and new_high - new_low >= 0.5 * h:
            low, high = new_low, new_high
    return low, high


def field_at_point(px: float, py: float, x_coords: Sequence[float],
                   y_coords: Sequence[float], ex, ey, h: float) -> tuple[float, float]:
    """Bilinearly interpolated (Ex, Ey) at a point; zero outside the grid."""
    if px < x_coords[0] or px > x_coords[-1] or py < y_coords[0] or py > y_coords[-1]:
        return 0.0, 0.0

    nx, ny = len(x_coords), len(y_coords)
    px_n = px / h
    py_n = py / h
    i = max(0, min(math.floor(px_n), nx - 2))
    j = max(0, min(math.floor(py_n), ny - 2))

    tx = px_n - i
    ty = py_n - j
    w00 = (1.0 - tx) * (1.0 - ty)
    w10 = tx * (1.0 - ty)
    w01 = (1.0 - tx) * ty
    w11 = tx * ty

    ex_value = (w00 * ex[i][j] + w10 * ex[i + 1][j]
                + w01 * ex[i][j + 1] + w11 * ex[i + 1][j + 1])
    ey_value = (w00 * ey[i][j] + w10 * ey[i + 1][j]
                + w01 * ey[i][j + 1] + w11 * ey[i + 1][j + 1])
    return float(ex_value), float(ey_value)


def acceleration(px: float, py: float, x_coords: Sequence[float],
                 y_coords: Sequence[float], ex, ey, h: float) -> tuple[float, float]:
    """Proton acceleration (m/s^2) at a point from the interpolated field."""
    fx, fy = field_at_point(px, py, x_coords, y_coords, ex, ey, h)
    return K_ACCEL * fx, K_ACCEL * fy


def is_in_material_or_out_of_bounds(px: float, py: float, eps_r, h: float,
                                    length: float, height: float) -> bool:
    """True when the point lies outside the open box or on material."""
    if px <= 0.0 or px >= length or py <= 0.0 or py >= height:
        return True
    nx = len(eps_r)
    if nx == 0:
        return True
    ny = len(eps_r[0])
    if ny == 0:
        return True
    inv_h = 1.0 / h
    i = max(0, min(int(px * inv_h), nx - 1))
    j = max(0, min(int(py * inv_h), ny - 1))
    return bool(eps_r[i][j] >= MATERIAL_THRESHOLD)