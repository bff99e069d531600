"""Proton tracking through a precomputed electric field with fourth-order Runge-Kutta."""

from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Callable, Optional, Sequence, Union

import numpy as np

from protonsim.fields import (
    K_ACCEL,
    MATERIAL_THRESHOLD,
    GeometryParameters,
    find_vacuum_channel,
    load_1d_csv,
    load_field_csv,
    load_geometry_params,
    load_permittivity_map,
)

logger = logging.getLogger(__name__)

NUM_PROTONS = 10_000
TIME_STEP_S = 1e-12
TOTAL_SIM_TIME_S = 1e-8
OUTPUT_TIME_INTERVAL_S = 1e-11
INITIAL_X_M = 5e-6
INITIAL_Y_RANGE_M = (20e-6, 30e-6)
DEFAULT_FOLDER = "geometria_Denti_sfasati_profondi_5um_default"
TRAJECTORY_FILE = "all_proton_trajectories.csv"
TRAJECTORY_HEADER = "proton_id,time_s,x_m,y_m,vx_m_per_s,vy_m_per_s"

_EFFECTIVE_ZERO = 1e-9
_ONE_SIXTH = 1.0 / 6.0
_ONE_THIRD = 1.0 / 3.0

PathLike = Union[str, Path]
Accelerator = Callable[[float, float], tuple]
Writer = Callable[["Proton", float], None]


@dataclass(frozen=True)
class Proton:
    """State of one proton, in SI units."""

    id: int
    x: float
    y: float
    vx: float = 0.0
    vy: float = 0.0
    active: bool = True


@dataclass
class SimulationResult:
    """Final proton states and counters of a simulation run."""

    protons: list
    reached_end: int
    steps: int

    @property
    def active_count(self) -> int:
        return sum(1 for p in self.protons if p.active)

    @property
    def success_percentage(self) -> float:
        if not self.protons:
            return 0.0
        return self.reached_end / len(self.protons) * 100.0


def _spacing(coords: Sequence[float]) -> float:
    return float(coords[1] - coords[0]) if len(coords) > 1 else 0.0


def resolve_grid_spacing(geom_h: float, x_coords: Sequence[float],
                         y_coords: Sequence[float]) -> float:
    """Grid spacing to simulate with: the given one, else one derived from the coordinates."""
    hx = _spacing(x_coords)
    hy = _spacing(y_coords)
    if geom_h <= _EFFECTIVE_ZERO:
        if hx > _EFFECTIVE_ZERO and hy > _EFFECTIVE_ZERO and abs(hx - hy) < _EFFECTIVE_ZERO:
            h = hx
            logger.info("Using h derived from coordinate files: %g um.", h * 1e6)
        elif hx > _EFFECTIVE_ZERO:
            h = hx
            logger.warning("y spacing inconsistent or zero; using h from x: %g um.", h * 1e6)
        elif hy > _EFFECTIVE_ZERO:
            h = hy
            logger.warning("x spacing inconsistent or zero; using h from y: %g um.", h * 1e6)
        else:
            raise ValueError("grid spacing is missing and cannot be derived from coordinates")
    else:
        h = geom_h
        if ((hx > _EFFECTIVE_ZERO and abs(geom_h - hx) > _EFFECTIVE_ZERO)
                or (hy > _EFFECTIVE_ZERO and abs(geom_h - hy) > _EFFECTIVE_ZERO)):
            logger.warning("h from parameters (%g um) differs from coordinates "
                           "(x: %g um, y: %g um); keeping the parameter value.",
                           geom_h * 1e6, hx * 1e6, hy * 1e6)
    if h <= _EFFECTIVE_ZERO:
        raise ValueError("grid spacing must be positive")
    return h


def vacuum_search_range(geom: GeometryParameters, length: float) -> tuple[float, float]:
    """x-range in which to look for the vacuum channel, with a central-80% fallback."""
    start = geom.x_fs
    end = geom.x_fs + geom.x_sl
    if (geom.x_fs <= _EFFECTIVE_ZERO or geom.x_sl <= _EFFECTIVE_ZERO or start < 0
            or end <= start or end > length):
        logger.warning("Structure extent missing or invalid; searching central 80%% of x.")
        start = length * 0.1
        end = length * 0.9
        if start >= end:
            start, end = 0.0, length
    return start, end


def _rk4(px, py, vx, vy, dt, accel):
    """One classical Runge-Kutta step; works on scalars and on arrays alike."""
    ax1, ay1 = accel(px, py)
    k1vx, k1vy = dt * ax1, dt * ay1
    k1x, k1y = dt * vx, dt * vy

    ax2, ay2 = accel(px + k1x * 0.5, py + k1y * 0.5)
    k2vx, k2vy = dt * ax2, dt * ay2
    k2x, k2y = dt * (vx + k1vx * 0.5), dt * (vy + k1vy * 0.5)

    ax3, ay3 = accel(px + k2x * 0.5, py + k2y * 0.5)
    k3vx, k3vy = dt * ax3, dt * ay3
    k3x, k3y = dt * (vx + k2vx * 0.5), dt * (vy + k2vy * 0.5)

    ax4, ay4 = accel(px + k3x, py + k3y)
    k4vx, k4vy = dt * ax4, dt * ay4
    k4x, k4y = dt * (vx + k3vx), dt * (vy + k3vy)

    return (
        px + (k1x + k4x) * _ONE_SIXTH + (k2x + k3x) * _ONE_THIRD,
        py + (k1y + k4y) * _ONE_SIXTH + (k2y + k3y) * _ONE_THIRD,
        vx + (k1vx + k4vx) * _ONE_SIXTH + (k2vx + k3vx) * _ONE_THIRD,
        vy + (k1vy + k4vy) * _ONE_SIXTH + (k2vy + k3vy) * _ONE_THIRD,
    )


def rk4_step(proton: Proton, dt: float, accel: Accelerator) -> Proton:
    """Advance a proton by dt under accel(x, y) -> (ax, ay); returns the new state."""
    x, y, vx, vy = _rk4(proton.x, proton.y, proton.vx, proton.vy, dt, accel)
    return replace(proton, x=float(x), y=float(y), vx=float(vx), vy=float(vy))


def _field_accelerator(x_coords, y_coords, ex, ey, h: float):
    """Vectorised bilinear field lookup turned into proton acceleration."""
    x_coords = np.asarray(x_coords, dtype=float)
    y_coords = np.asarray(y_coords, dtype=float)
    ex = np.asarray(ex, dtype=float)
    ey = np.asarray(ey, dtype=float)
    nx, ny = len(x_coords), len(y_coords)
    x_lo, x_hi = x_coords[0], x_coords[-1]
    y_lo, y_hi = y_coords[0], y_coords[-1]

    def accel(px, py):
        px = np.asarray(px, dtype=float)
        py = np.asarray(py, dtype=float)
        outside = (px < x_lo) | (px > x_hi) | (py < y_lo) | (py > y_hi)
        px_n = np.where(outside, 0.0, px) / h
        py_n = np.where(outside, 0.0, py) / h
        i = np.clip(np.floor(px_n).astype(np.int64), 0, nx - 2)
        j = np.clip(np.floor(py_n).astype(np.int64), 0, ny - 2)
        tx = px_n - i
        ty = py_n - j
        w00 = (1.0 - tx) * (1.0 - ty)
        w10 = tx * (1.0 - ty)
        w01 = (1.0 - tx) * ty
        w11 = tx * ty
        fx = w00 * ex[i, j] + w10 * ex[i + 1, j] + w01 * ex[i, j + 1] + w11 * ex[i + 1, j + 1]
        fy = w00 * ey[i, j] + w10 * ey[i + 1, j] + w01 * ey[i, j + 1] + w11 * ey[i + 1, j + 1]
        fx = np.where(outside, 0.0, fx)
        fy = np.where(outside, 0.0, fy)
        return K_ACCEL * fx, K_ACCEL * fy

    return accel


def _blocked(px, py, eps: np.ndarray, h: float, length: float, height: float) -> np.ndarray:
    """Vectorised material / out-of-box test."""
    out = (px <= 0.0) | (px >= length) | (py <= 0.0) | (py >= height)
    if eps.ndim != 2 or eps.shape[0] == 0 or eps.shape[1] == 0:
        return np.ones_like(out, dtype=bool)
    inv_h = 1.0 / h
    i = np.clip((np.where(out, 0.0, px) * inv_h).astype(np.int64), 0, eps.shape[0] - 1)
    j = np.clip((np.where(out, 0.0, py) * inv_h).astype(np.int64), 0, eps.shape[1] - 1)
    return out | (eps[i, j] >= MATERIAL_THRESHOLD)


def simulate(protons: Sequence[Proton], x_coords, y_coords, ex, ey, eps_r, h: float,
             writer: Optional[Writer] = None, dt: float = TIME_STEP_S,
             total_time: float = TOTAL_SIM_TIME_S,
             output_interval: float = OUTPUT_TIME_INTERVAL_S) -> SimulationResult:
    """Track protons until they pass the right edge, hit material or time runs out.

    writer(proton, time) receives every exit, every hit and, every output
    interval, each proton still active. The input protons are not modified.
    """
    if len(x_coords) < 2 or len(y_coords) < 2:
        raise ValueError("coordinate grids need at least two points")
    ids = [p.id for p in protons]
    px = np.array([p.x for p in protons], dtype=float)
    py = np.array([p.y for p in protons], dtype=float)
    vx = np.array([p.vx for p in protons], dtype=float)
    vy = np.array([p.vy for p in protons], dtype=float)
    active = np.array([p.active for p in protons], dtype=bool)

    eps = np.asarray(eps_r, dtype=float)
    length = float(x_coords[-1])
    height = float(y_coords[-1])
    accel = _field_accelerator(x_coords, y_coords, ex, ey, h)

    num_steps = int(total_time / dt)
    output_every = int(max(1.0, output_interval / dt))
    progress_every = max(1, num_steps // 100)
    reached = 0
    current_time = 0.0
    steps_run = 0

    for step in range(num_steps):
        idx = np.flatnonzero(active)
        if idx.size == 0:
            logger.info("All protons inactive. Stopping early at step %d.", step)
            break
        needs_output = (step + 1) % output_every == 0
        step_time = current_time + dt

        nx_, ny_, nvx, nvy = _rk4(px[idx], py[idx], vx[idx], vy[idx], dt, accel)
        px[idx], py[idx], vx[idx], vy[idx] = nx_, ny_, nvx, nvy

        done = nx_ >= length
        hit = ~done & _blocked(nx_, ny_, eps, h, length, height)
        reached += int(done.sum())
        active[idx[done | hit]] = False

        if writer is not None:
            emit = np.ones_like(done) if needs_output else (done | hit)
            for k in idx[emit]:
                writer(Proton(ids[k], float(px[k]), float(py[k]), float(vx[k]),
                              float(vy[k]), bool(active[k])), step_time)

        current_time += dt
        steps_run = step + 1
        if steps_run % progress_every == 0 or step == num_steps - 1:
            logger.debug("Simulation progress: %.2f%% (%d active protons)",
                         steps_run / num_steps * 100.0, int(active.sum()))

    final = [Proton(ids[k], float(px[k]), float(py[k]), float(vx[k]), float(vy[k]),
                    bool(active[k])) for k in range(len(ids))]
    return SimulationResult(protons=final, reached_end=reached, steps=steps_run)


def _format_row(proton: Proton, time: float) -> str:
    return (f"{proton.id},{time:.8e},{proton.x:.8e},{proton.y:.8e},"
            f"{proton.vx:.8e},{proton.vy:.8e}\n")


def run(folder: PathLike, num_protons: int = NUM_PROTONS,
        seed: Optional[int] = None) -> SimulationResult:
    """Load the solver output in folder, simulate protons and write their trajectories."""
    folder = Path(folder)
    try:
        geom = load_geometry_params(folder / "geometry_params.csv")
    except OSError:
        logger.warning("Could not read geometry_params.csv; using derived values.")
        geom = GeometryParameters()

    x_coords = load_1d_csv(folder / "x_coordinates.csv", to_meters=True)
    y_coords = load_1d_csv(folder / "y_coordinates.csv", to_meters=True)
    nx, ny = len(x_coords), len(y_coords)
    if nx == 0 or ny == 0:
        raise ValueError("coordinate data is empty")
    length = float(x_coords[-1])

    h = resolve_grid_spacing(geom.h, x_coords, y_coords)

    ex = load_field_csv(folder / "electric_field_x.csv", nx, ny)
    ey = load_field_csv(folder / "electric_field_y.csv", nx, ny)
    eps_r = load_permittivity_map(folder / "permittivity.csv", nx, ny)
    logger.info("Data loaded successfully. Nx=%d, Ny=%d", nx, ny)

    x_start, x_end = vacuum_search_range(geom, length)
    hx, hy = _spacing(x_coords), _spacing(y_coords)
    h_vacuum = hy if hy > _EFFECTIVE_ZERO else hx
    if h_vacuum <= _EFFECTIVE_ZERO:
        h_vacuum = h
    gap_start, gap_end = find_vacuum_channel(eps_r, x_coords, y_coords, h_vacuum,
                                             x_start, x_end)
    if gap_start >= gap_end - h * 0.5:
        raise ValueError(f"vacuum gap too small or invalid: [{gap_start}, {gap_end}]")
    logger.info("Vacuum channel (m): [%g, %g]", gap_start, gap_end)

    rng = np.random.default_rng(seed)
    ys = rng.uniform(*INITIAL_Y_RANGE_M, size=num_protons)
    protons = [Proton(i, INITIAL_X_M, float(y)) for i, y in enumerate(ys)]

    path = folder / TRAJECTORY_FILE
    with open(path, "w", encoding="utf-8", newline="") as handle:
        handle.write(TRAJECTORY_HEADER + "\n")
        handle.writelines(_format_row(p, 0.0) for p in protons)
        result = simulate(protons, x_coords, y_coords, ex, ey, eps_r, h,
                          lambda p, t: handle.write(_format_row(p, t)))

    logger.info("%d out of %d protons reached the end successfully.",
                result.reached_end, num_protons)
    logger.info("Success percentage: %.2f%%", result.success_percentage)
    logger.info("All proton trajectories saved to '%s' (SI units).", path)
    return result


def main(argv=None) -> int:
    """Command-line entry point: [folder] [--protons N] [--seed S]."""
    parser = argparse.ArgumentParser(description="Track protons through a solved field.")
    parser.add_argument("folder", nargs="?", default=DEFAULT_FOLDER,
                        help="folder holding the solver output")
    parser.add_argument("--protons", type=int, default=NUM_PROTONS,
                        help="number of protons to simulate")
    parser.add_argument("--seed", type=int, default=None, help="random seed")
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    try:
        run(args.folder, args.protons, args.seed)
    except (OSError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())