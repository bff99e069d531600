"""Electrostatic potential of a device geometry by red-black SOR, plus field and CSV output."""

from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Union

import numpy as np

from protonsim.geometry import (
    GeometryConfig,
    GeometryParams,
    GeometryType,
    boundary_conditions,
    denti_sfasati_profondi_permittivity,
    denti_uguali_permittivity,
    geometry_type_from_string,
    geometry_type_to_string,
    initialize_denti_sfasati_profondi_geometry,
    initialize_denti_uguali_geometry,
    initialize_piana_geometry,
    piana_permittivity,
    save_geometry_params,
)

logger = logging.getLogger(__name__)

GRID_SPACING = 0.5  # micrometres
V_LEFT = 0.0  # volts
V_RIGHT = -1000.0  # volts
OMEGA = 1.8
MAX_ITERATIONS = 500_000

EPS_SIO2 = 3.9
EPS_SI = 11.7
EPS_VACUUM = 1.0

_PROGRESS_EVERY = 100

_INITIALIZERS = {
    GeometryType.PIANA: initialize_piana_geometry,
    GeometryType.DENTI_SFASATI_PROFONDI: initialize_denti_sfasati_profondi_geometry,
    GeometryType.DENTI_UGUALI: initialize_denti_uguali_geometry,
}

_PERMITTIVITY = {
    GeometryType.PIANA: piana_permittivity,
    GeometryType.DENTI_SFASATI_PROFONDI: denti_sfasati_profondi_permittivity,
    GeometryType.DENTI_UGUALI: denti_uguali_permittivity,
}


@dataclass
class SolverResult:
    """Outcome of an SOR run."""

    potential: np.ndarray
    iterations: int
    converged: bool
    max_diff: float


def _as_geometry_type(kind: Union[GeometryType, str]) -> GeometryType:
    if isinstance(kind, str):
        kind = geometry_type_from_string(kind)
    if kind not in _INITIALIZERS:
        raise ValueError(f"unknown geometry type: {kind!r}")
    return kind


def grid_coordinates(length: float, h: float) -> np.ndarray:
    """Grid node positions 0, h, 2h, ... covering [0, length]."""
    if h <= 0:
        raise ValueError("grid spacing must be positive")
    count = int(length / h) + 1
    return np.arange(count) * h


def build_geometry(kind: Union[GeometryType, str],
                   h: float) -> tuple[GeometryConfig, GeometryParams]:
    """Default configuration and parameters for a geometry, with SiO2 as material."""
    kind = _as_geometry_type(kind)
    return _INITIALIZERS[kind](h, EPS_SIO2, EPS_VACUUM)


def _apply_neumann(potential: np.ndarray, fixed: np.ndarray) -> None:
    """Zero normal derivative on the outer boundary, sparing fixed points."""
    left = ~fixed[0]
    potential[0, left] = potential[1, left]
    right = ~fixed[-1]
    potential[-1, right] = potential[-2, right]
    bottom = ~fixed[:, 0]
    potential[bottom, 0] = potential[bottom, 1]
    top = ~fixed[:, -1]
    potential[top, -1] = potential[top, -2]


def solve_sor(eps_r, potential, fixed_mask, omega: float = OMEGA,
              tolerance: float = 1e-4, max_iter: int = MAX_ITERATIONS) -> SolverResult:
    """Solve div(eps grad V) = 0 by red-black successive over-relaxation.

    Arrays are indexed [i, j]; the inputs are not modified.
    """
    eps = np.asarray(eps_r, dtype=float)
    v = np.array(potential, dtype=float, copy=True)
    fixed = np.asarray(fixed_mask, dtype=bool)
    if eps.ndim != 2 or eps.shape != v.shape or fixed.shape != eps.shape:
        raise ValueError("permittivity, potential and mask must be 2-D arrays of one shape")
    nx, ny = eps.shape
    if nx < 2 or ny < 2:
        raise ValueError("grid must have at least two points in each direction")

    centre = eps[1:-1, 1:-1]
    w_east = (centre + eps[2:, 1:-1]) * 0.5
    w_west = (centre + eps[:-2, 1:-1]) * 0.5
    w_north = (centre + eps[1:-1, 2:]) * 0.5
    w_south = (centre + eps[1:-1, :-2]) * 0.5
    total = w_east + w_west + w_north + w_south
    safe_total = np.where(total > 0, total, 1.0)

    ii, jj = np.meshgrid(np.arange(1, nx - 1), np.arange(1, ny - 1), indexing="ij")
    updatable = ~fixed[1:-1, 1:-1] & (total > 0)
    parity = (ii + jj) % 2
    phases = [updatable & (parity == 0), updatable & (parity == 1)]

    inner = v[1:-1, 1:-1]
    one_minus_omega = 1.0 - omega
    max_diff = 0.0
    iterations = 0
    converged = False

    for iterations in range(1, max_iter + 1):
        max_diff = 0.0
        for mask in phases:
            if not mask.any():
                continue
            gauss_seidel = (w_east * v[2:, 1:-1] + w_west * v[:-2, 1:-1]
                            + w_north * v[1:-1, 2:] + w_south * v[1:-1, :-2]) / safe_total
            updated = one_minus_omega * inner + omega * gauss_seidel
            change = np.abs(updated[mask] - inner[mask])
            max_diff = max(max_diff, float(change.max()))
            inner[mask] = updated[mask]

        _apply_neumann(v, fixed)

        if iterations % _PROGRESS_EVERY == 0:
            logger.info("Iteration %d, max potential change: %e", iterations, max_diff)
        if max_diff < tolerance:
            converged = True
            logger.info("Converged after %d iterations.", iterations)
            break
    else:
        if max_iter > 0:
            logger.warning("Max iterations (%d) reached. Max diff: %e", max_iter, max_diff)

    return SolverResult(potential=v, iterations=iterations,
                        converged=converged, max_diff=max_diff)


def electric_field(potential, h: float) -> tuple[np.ndarray, np.ndarray]:
    """E = -grad V, central differences inside, one-sided in x at the ends.

    Ey is set to zero on the bottom and top rows.
    """
    v = np.asarray(potential, dtype=float)
    if v.ndim != 2 or v.shape[0] < 2 or v.shape[1] < 2:
        raise ValueError("potential must be a 2-D array at least 2x2")
    ex = np.zeros_like(v)
    ey = np.zeros_like(v)
    ex[1:-1, :] = -(v[2:, :] - v[:-2, :]) / (2.0 * h)
    ey[:, 1:-1] = -(v[:, 2:] - v[:, :-2]) / (2.0 * h)
    ex[0, :] = -(v[1, :] - v[0, :]) / h
    ex[-1, :] = -(v[-1, :] - v[-2, :]) / h
    ey[:, 0] = 0.0
    ey[:, -1] = 0.0
    return ex, ey


def _format(value: float) -> str:
    return f"{float(value):.10g}"


def save_grid_csv(data, path: Union[str, Path]) -> None:
    """Write an [i, j] grid as CSV with one line per j and one column per i."""
    grid = np.asarray(data, dtype=float)
    with open(path, "w", encoding="utf-8", newline="") as handle:
        if grid.ndim == 2 and grid.size:
            handle.writelines(",".join(_format(v) for v in row) + "\n" for row in grid.T)
    logger.info("Data saved to %s", path)


def save_coordinates_csv(coords: Iterable[float], path: Union[str, Path]) -> None:
    """Write coordinates one per line."""
    with open(path, "w", encoding="utf-8", newline="") as handle:
        handle.writelines(_format(v) + "\n" for v in coords)
    logger.info("Coordinates saved to %s", path)


def ensure_output_dir(base: Union[str, Path], name: str) -> Path:
    """Create every '/'-separated component of name below base and return the result."""
    base = Path(base)
    if not name:
        if not base.exists():
            raise FileNotFoundError(f"base directory {base} does not exist")
        if not base.is_dir():
            raise NotADirectoryError(f"{base} is not a directory")
        return base

    path = base
    for part in name.split("/"):
        if not part:
            continue
        path = path / part
        if not path.exists():
            path.mkdir()
            logger.info("Created directory: %s", path)
        elif not path.is_dir():
            raise NotADirectoryError(f"{path} exists but is not a directory")
    return path


def run(output_dir: Union[str, Path], kind: Union[GeometryType, str]) -> SolverResult:
    """Solve the given geometry and write parameters, potential, fields and grid to output_dir."""
    kind = _as_geometry_type(kind)
    out = Path(output_dir)
    out.mkdir(parents=True, exist_ok=True)
    logger.info("Selected geometry type: %s", geometry_type_to_string(kind))

    config, params = build_geometry(kind, GRID_SPACING)
    save_geometry_params(out / "geometry_params.csv", kind, config, params)

    x_coords = grid_coordinates(config.l_total, config.h)
    y_coords = grid_coordinates(config.h_total, config.h)
    nx, ny = len(x_coords), len(y_coords)

    eps_r = _PERMITTIVITY[kind](config, params, nx, ny)
    logger.info("Grid size: Nx=%d, Ny=%d", nx, ny)

    potential, fixed = boundary_conditions(eps_r, config, V_LEFT, V_RIGHT)
    result = solve_sor(eps_r, potential, fixed, OMEGA, config.tolerance, MAX_ITERATIONS)
    ex, ey = electric_field(result.potential, config.h)

    save_grid_csv(result.potential, out / "potential.csv")
    save_grid_csv(ex, out / "electric_field_x.csv")
    save_grid_csv(ey, out / "electric_field_y.csv")
    save_grid_csv(eps_r, out / "permittivity.csv")
    save_coordinates_csv(x_coords, out / "x_coordinates.csv")
    save_coordinates_csv(y_coords, out / "y_coordinates.csv")
    return result


def main(argv=None) -> int:
    """Command-line entry point: [output_folder] [geometry]."""
    parser = argparse.ArgumentParser(
        description="Solve the electrostatic potential of a device geometry.")
    parser.add_argument("output_folder", nargs="?", default="default_output",
                        help="output folder, created below the current directory")
    parser.add_argument("geometry", nargs="?", default="piana",
                        help="piana, denti_sfasati_profondi or denti_uguali")
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(message)s")

    kind = geometry_type_from_string(args.geometry)
    if kind is GeometryType.UNKNOWN:
        print(f"Error: Unknown geometry type '{args.geometry}'.", file=sys.stderr)
        return 1

    try:
        output_dir = ensure_output_dir(Path.cwd(), args.output_folder)
    except OSError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    run(output_dir, kind)
    return 0


if __name__ == "__main__":
    sys.exit(main())