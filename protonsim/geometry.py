"""Device geometries: parameters, permittivity maps and electrode boundary conditions."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, fields
from enum import Enum
from pathlib import Path
from typing import Union

import numpy as np

logger = logging.getLogger(__name__)

_MATERIAL_MATCH_TOLERANCE = 1e-3


class GeometryType(Enum):
    """Supported device geometries, valued by their command-line names."""

    PIANA = "piana"
    DENTI_SFASATI_PROFONDI = "denti_sfasati_profondi"
    DENTI_UGUALI = "denti_uguali"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class PointMaterialInfo:
    """What lies at a given x inside the staggered-teeth structure."""

    is_silicon_tooth_region: bool = False
    dig_depth: float = 0.0
    tooth_height: float = 0.0


@dataclass(frozen=True)
class GeometryConfig:
    """Parameters shared by every geometry (lengths in micrometres)."""

    h: float
    l_total: float
    x_free_space: float
    x_structure_len: float
    h_total: float
    tolerance: float
    eps_material: float
    eps_vacuum: float


@dataclass(frozen=True)
class PianaParams:
    """Two flat layers separated by a vacuum gap."""

    y_si_layer_thick: float = 10.0
    y_vacuum_gap_thick: float = 10.0


@dataclass(frozen=True)
class DentiSfasatiProfondiParams:
    """Teeth of decreasing height separated by widening, deepening spaces."""

    y_si_base_height: float = 10.0
    initial_y_teeth_height: float = 10.0
    y_teeth_height_decrement: float = 1.0
    x_teeth_width: float = 10.0
    initial_x_spacing_width: float = 10.0
    x_spacing_width_increment: float = 2.0
    initial_y_spacing_dig_depth: float = 0.0
    y_spacing_dig_depth_increment: float = 1.0
    y_vacuum_gap_thick: float = 10.0


@dataclass(frozen=True)
class DentiUgualiParams:
    """Identical, evenly spaced teeth facing each other across the gap."""

    y_si_base_height: float = 10.0
    y_tooth_height: float = 5.0
    x_tooth_width: float = 10.0
    x_spacing_width: float = 10.0
    y_vacuum_gap_thick: float = 20.0


GeometryParams = Union[PianaParams, DentiSfasatiProfondiParams, DentiUgualiParams]

_PARAMS_FOR_TYPE = {
    GeometryType.PIANA: PianaParams,
    GeometryType.DENTI_SFASATI_PROFONDI: DentiSfasatiProfondiParams,
    GeometryType.DENTI_UGUALI: DentiUgualiParams,
}

# Order in which the geometry-specific parameters are written.
_SAVE_ORDER = {
    PianaParams: ("y_si_layer_thick", "y_vacuum_gap_thick"),
    DentiSfasatiProfondiParams: (
        "y_si_base_height",
        "initial_y_teeth_height",
        "y_teeth_height_decrement",
        "y_vacuum_gap_thick",
        "x_teeth_width",
        "initial_x_spacing_width",
        "x_spacing_width_increment",
        "initial_y_spacing_dig_depth",
        "y_spacing_dig_depth_increment",
    ),
    DentiUgualiParams: (
        "y_si_base_height",
        "y_tooth_height",
        "x_tooth_width",
        "x_spacing_width",
        "y_vacuum_gap_thick",
    ),
}


def geometry_type_from_string(text: str) -> GeometryType:
    """Map a geometry name to its type; unrecognised names give UNKNOWN."""
    try:
        return GeometryType(text)
    except ValueError:
        return GeometryType.UNKNOWN


def geometry_type_to_string(kind: GeometryType) -> str:
    """Return the command-line name of a geometry type."""
    return kind.value


def _common_config(h: float, h_total: float, tolerance: float,
                   eps_material: float, eps_vacuum: float) -> GeometryConfig:
    return GeometryConfig(
        h=h,
        l_total=320.0,
        x_free_space=10.0,
        x_structure_len=300.0,
        h_total=h_total,
        tolerance=tolerance,
        eps_material=eps_material,
        eps_vacuum=eps_vacuum,
    )


def initialize_piana_geometry(h: float, eps_material: float,
                              eps_vacuum: float) -> tuple[GeometryConfig, PianaParams]:
    """Default configuration for the flat geometry."""
    return _common_config(h, 30.0, 1e-3, eps_material, eps_vacuum), PianaParams()


def initialize_denti_sfasati_profondi_geometry(
    h: float, eps_material: float, eps_vacuum: float
) -> tuple[GeometryConfig, DentiSfasatiProfondiParams]:
    """Default configuration for the staggered deep-teeth geometry."""
    config = _common_config(h, 50.0, 1e-5, eps_material, eps_vacuum)
    return config, DentiSfasatiProfondiParams()


def initialize_denti_uguali_geometry(
    h: float, eps_material: float, eps_vacuum: float
) -> tuple[GeometryConfig, DentiUgualiParams]:
    """Default configuration for the equal-teeth geometry."""
    return _common_config(h, 50.0, 1e-5, eps_material, eps_vacuum), DentiUgualiParams()


def denti_point_x_info(x_rel: float, total_len: float,
                       params: DentiSfasatiProfondiParams) -> PointMaterialInfo:
    """Classify a position measured from the start of the structure.

    The structure starts with a tooth; teeth and spaces alternate, each space
    wider and dug deeper than the last, each tooth lower than the last.
    """
    if x_rel < 0 or x_rel >= total_len:
        return PointMaterialInfo()

    position = 0.0
    space_width = params.initial_x_spacing_width
    dig_depth = params.initial_y_spacing_dig_depth
    tooth_height = params.initial_y_teeth_height
    in_tooth = True

    while position < total_len:
        if in_tooth:
            end = position + params.x_teeth_width
            if position <= x_rel < end:
                return PointMaterialInfo(True, 0.0, tooth_height)
        else:
            end = position + space_width
            if position <= x_rel < end:
                return PointMaterialInfo(False, dig_depth, 0.0)
            space_width += params.x_spacing_width_increment
            dig_depth = min(dig_depth + params.y_spacing_dig_depth_increment,
                            params.y_si_base_height)
            tooth_height = max(0.0, tooth_height - params.y_teeth_height_decrement)
        position = end
        in_tooth = not in_tooth
    return PointMaterialInfo()


def _structure_columns(config: GeometryConfig, nx: int):
    """Yield (i, x_rel) for each column whose x lies inside the structure."""
    end = config.x_free_space + config.x_structure_len
    for i in range(nx):
        x_abs = i * config.h
        if config.x_free_space <= x_abs < end:
            yield i, x_abs - config.x_free_space


def piana_permittivity(config: GeometryConfig, params: PianaParams,
                       nx: int, ny: int) -> np.ndarray:
    """Permittivity map, indexed [i, j], for the flat geometry."""
    eps_r = np.full((nx, ny), config.eps_vacuum, dtype=float)
    x_start = int(config.x_free_space / config.h)
    x_end = int((config.x_free_space + config.x_structure_len) / config.h)
    bottom_end = int(params.y_si_layer_thick / config.h)
    top_start = int((params.y_si_layer_thick + params.y_vacuum_gap_thick) / config.h)

    columns = slice(max(x_start, 0), x_end + 1)
    eps_r[columns, : bottom_end + 1] = config.eps_material
    eps_r[columns, max(top_start, 0):] = config.eps_material
    return eps_r


def denti_sfasati_profondi_permittivity(config: GeometryConfig,
                                        params: DentiSfasatiProfondiParams,
                                        nx: int, ny: int) -> np.ndarray:
    """Permittivity map, indexed [i, j], for the staggered deep-teeth geometry."""
    eps_r = np.full((nx, ny), config.eps_vacuum, dtype=float)
    y = np.arange(ny) * config.h
    base = params.y_si_base_height
    top_base_surface = config.h_total - base

    for i, x_rel in _structure_columns(config, nx):
        info = denti_point_x_info(x_rel, config.x_structure_len, params)
        tooth_h = info.tooth_height if info.is_silicon_tooth_region else 0.0
        has_tooth = info.is_silicon_tooth_region and info.tooth_height > 0

        in_bottom_base = (y >= 0) & (y < base)
        if info.is_silicon_tooth_region:
            material = in_bottom_base.copy()
        else:
            material = in_bottom_base & (y < base - info.dig_depth)
        claimed = in_bottom_base.copy()

        if has_tooth:
            bottom_teeth = ~claimed & (y >= base) & (y < base + tooth_h)
            material |= bottom_teeth
            claimed |= bottom_teeth
            top_teeth = ~claimed & (y >= top_base_surface - tooth_h) & (y < top_base_surface)
            material |= top_teeth
            claimed |= top_teeth

        top_base = ~claimed & (y >= top_base_surface) & (y < config.h_total)
        if info.is_silicon_tooth_region:
            material |= top_base
        else:
            material |= top_base & (y >= top_base_surface + info.dig_depth)

        eps_r[i, material] = config.eps_material
    return eps_r


def denti_uguali_permittivity(config: GeometryConfig, params: DentiUgualiParams,
                              nx: int, ny: int) -> np.ndarray:
    """Permittivity map, indexed [i, j], for the equal-teeth geometry.

    Top teeth sit directly above the bottom teeth.
    """
    eps_r = np.full((nx, ny), config.eps_vacuum, dtype=float)
    y = np.arange(ny) * config.h
    period = params.x_tooth_width + params.x_spacing_width

    bottom_base_top = params.y_si_base_height
    bottom_tooth_tip = bottom_base_top + params.y_tooth_height
    top_base_bottom = config.h_total - params.y_si_base_height
    top_tooth_tip = top_base_bottom - params.y_tooth_height

    for i, x_rel in _structure_columns(config, nx):
        in_tooth = math.fmod(x_rel, period) < params.x_tooth_width
        material = y < bottom_base_top
        material |= y >= top_base_bottom
        if in_tooth:
            material |= y < bottom_tooth_tip
            material |= y >= top_tooth_tip
        eps_r[i, material] = config.eps_material
    return eps_r


def boundary_conditions(eps_r: np.ndarray, config: GeometryConfig,
                        v_left: float, v_right: float) -> tuple[np.ndarray, np.ndarray]:
    """Fix the potential on the material at the two ends of the structure.

    Returns the initial potential and the mask of fixed points.
    """
    eps_r = np.asarray(eps_r, dtype=float)
    nx = eps_r.shape[0]
    potential = np.zeros_like(eps_r)
    fixed = np.zeros(eps_r.shape, dtype=bool)

    start = int(config.x_free_space / config.h)
    end = int((config.x_free_space + config.x_structure_len - config.h * 0.5) / config.h)

    for column, voltage in ((start, v_left), (end, v_right)):
        if 0 <= column < nx:
            is_material = np.abs(eps_r[column] - config.eps_material) < _MATERIAL_MATCH_TOLERANCE
            potential[column, is_material] = voltage
            fixed[column, is_material] = True
    return potential, fixed


def save_geometry_params(path: str | Path, kind: GeometryType, config: GeometryConfig,
                         params: GeometryParams | None) -> None:
    """Write the geometry as 'key,value' lines with ten decimal places."""
    rows = [
        ("h", config.h),
        ("x_free_space", config.x_free_space),
        ("x_structure_len", config.x_structure_len),
        ("H_total", config.h_total),
        ("eps_material", config.eps_material),
        ("eps_vacuum", config.eps_vacuum),
        ("tolerance", config.tolerance),
    ]
    expected = _PARAMS_FOR_TYPE.get(kind)
    if params is not None and expected is not None and isinstance(params, expected):
        known = {f.name for f in fields(params)}
        rows.extend((name, getattr(params, name))
                    for name in _SAVE_ORDER[expected] if name in known)

    lines = [f"geometry_type,{geometry_type_to_string(kind)}"]
    lines.extend(f"{key},{value:.10f}" for key, value in rows)
    with open(path, "w", encoding="utf-8") as handle:
        handle.write("\n".join(lines) + "\n")
    logger.info("Geometry parameters saved to %s", path)