"""Figures of proton trajectories, final energies and position profiles."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Iterable, Sequence, Union

import numpy as np
from matplotlib.figure import Figure
from matplotlib.lines import Line2D

from protonsim.trajdata import (
    DEFAULT_GRID_SPACING_UM,
    EnergyStats,
    Profile,
    ProtonTrajectory,
    energy_statistics,
    final_energies,
    load_2d_csv,
    load_all_trajectories,
    load_coordinates,
    outline_threshold,
    position_profiles,
)

logger = logging.getLogger(__name__)

DEFAULT_FOLDER = "geometria_Denti_uguali_5um"
MAX_TRAJECTORIES = 1000
PROFILE_BINS = 100
HISTOGRAM_BINS = 50
_UM_PER_M = 1e6
_HIST_FILL = (152 / 255, 251 / 255, 152 / 255)

PathLike = Union[str, Path]
Destinations = Union[PathLike, Iterable[PathLike]]


def _destinations(path: Destinations) -> list[Path]:
    if isinstance(path, (str, Path)):
        return [Path(path)]
    return [Path(p) for p in path]


def _save(fig: Figure, path: Destinations) -> list[Path]:
    written = _destinations(path)
    for target in written:
        fig.savefig(target)
        logger.info("Saved %s", target)
    return written


def _outline_matches(eps_r, x_coords, y_coords) -> bool:
    if not eps_r or not x_coords or not y_coords:
        return False
    return len(eps_r) == len(y_coords) and all(len(row) == len(x_coords) for row in eps_r)


def plot_trajectories(trajectories: Sequence[ProtonTrajectory], eps_r, x_coords,
                      y_coords, path: Destinations, limit: int = MAX_TRAJECTORIES) -> int:
    """Draw the structure outline and up to limit trajectories (in um).

    eps_r holds one row per y coordinate. Returns the number of trajectories drawn.
    """
    x_coords = list(x_coords)
    y_coords = list(y_coords)
    if not x_coords or not y_coords:
        raise ValueError("coordinates are required to frame the plot")

    fig = Figure(figsize=(12, 8), dpi=100)
    ax = fig.add_subplot()
    ax.set_xlim(x_coords[0], x_coords[-1])
    ax.set_ylim(y_coords[0], y_coords[-1])
    ax.set_xlabel(r"X ($\mu$m)")
    ax.set_ylabel(r"Y ($\mu$m)")
    ax.grid(True)

    handles = []
    threshold = outline_threshold(eps_r) if eps_r else None
    outline_drawn = False
    if threshold is not None and _outline_matches(eps_r, x_coords, y_coords):
        ax.contour(np.asarray(x_coords), np.asarray(y_coords), np.asarray(eps_r, dtype=float),
                   levels=[threshold], colors="blue", linestyles="dashed", linewidths=2)
        outline_drawn = True
    else:
        logger.info("Skipping structure outline: threshold not determined, or data mismatch.")
    handles.append(Line2D([], [], color="blue", linestyle="--", linewidth=2,
                          label=r"Structure Outline (from $\epsilon_r$)" if outline_drawn
                          else "Structure Outline (not drawn)"))

    shown = min(len(trajectories), max(limit, 0))
    drawn = 0
    for traj in trajectories[:shown]:
        if not traj.x_m:
            continue
        xs = [x * _UM_PER_M for x in traj.x_m]
        ys = [y * _UM_PER_M for y in traj.y_m]
        line, = ax.plot(xs, ys, color="red", alpha=0.7, linewidth=1)
        if drawn == 0:
            line.set_label("Proton Trajectories")
            handles.append(line)
        drawn += 1

    ax.set_title(f"Proton Trajectories ({shown} of {len(trajectories)} shown, "
                 r"plotted in $\mu$m)")
    ax.legend(handles=handles, loc="upper right")
    _save(fig, path)
    return drawn


def plot_energy_histogram(energies: Sequence[float], stats: EnergyStats,
                          path: Destinations) -> list[Path]:
    """Histogram of final kinetic energies with a summary box; returns files written."""
    if not energies:
        raise ValueError("no energies to plot")
    low, high = stats.histogram_range
    value_range = (low, high) if high > low else None

    fig = Figure(figsize=(10, 6), dpi=100)
    ax = fig.add_subplot()
    ax.hist(list(energies), bins=HISTOGRAM_BINS, range=value_range,
            color=_HIST_FILL, edgecolor="black")
    ax.set_title("Histogram of Final Kinetic Energies")
    ax.set_xlabel("Final Kinetic Energy (eV)")
    ax.set_ylabel("Number of Protons")
    ax.grid(True)

    summary = "\n".join([
        f"Mean: {stats.mean:.2f} eV",
        f"Std Dev: {stats.std_dev:.2f} eV",
        f"Min: {stats.minimum:.2f} eV",
        f"Max: {stats.maximum:.2f} eV",
        f"Count: {stats.count}",
        f"Efficiency: {stats.efficiency * 100.0:.2f}%",
    ])
    ax.text(0.95, 0.95, summary, transform=ax.transAxes, ha="right", va="top",
            fontsize=9, bbox={"boxstyle": "round", "facecolor": "wheat", "alpha": 0.5})
    return _save(fig, path)


def _plot_profile(profile: Profile, path: Destinations, title: str, ylabel: str,
                  labels: tuple[str, str, str]) -> list[Path]:
    if len(profile) == 0:
        raise ValueError("profile has no data")
    fig = Figure(figsize=(12, 8), dpi=100)
    ax = fig.add_subplot()
    ax.plot(profile.x_um, profile.x_component, color="blue", linewidth=2, label=labels[0])
    ax.plot(profile.x_um, profile.y_component, color="green", linewidth=2, label=labels[1])
    ax.plot(profile.x_um, profile.magnitude, color="red", linewidth=2, label=labels[2])
    ax.set_title(title)
    ax.set_xlabel(r"X Position ($\mu$m)")
    ax.set_ylabel(ylabel)
    ax.grid(True)
    ax.legend(loc="upper right")
    return _save(fig, path)


def plot_acceleration_profile(profile: Profile, path: Destinations) -> list[Path]:
    """Average acceleration components and magnitude against x; returns files written."""
    return _plot_profile(profile, path, "Average Proton Acceleration vs Position",
                         r"Acceleration (m/s$^2$)",
                         (r"Avg. $A_x$", r"Avg. $A_y$", r"Avg. $|A|$"))


def plot_velocity_profile(profile: Profile, path: Destinations) -> list[Path]:
    """Average velocity components and magnitude against x; returns files written."""
    return _plot_profile(profile, path, "Average Proton Velocity vs Position",
                         "Velocity (m/s)",
                         (r"Avg. $V_x$", r"Avg. $V_y$", r"Avg. $|V|$"))


def _pair(folder: Path, stem: str) -> list[Path]:
    return [folder / f"{stem}.png", folder / f"{stem}.pdf"]


def run(folder: PathLike) -> list[Path]:
    """Make every figure for the simulation output in folder; returns files written."""
    folder = Path(folder)
    if not folder.is_dir():
        raise NotADirectoryError(f"{folder} does not exist or is not a directory")

    eps_r = load_2d_csv(folder / "permittivity.csv")
    x_coords = load_coordinates(folder / "x_coordinates.csv")
    y_coords = load_coordinates(folder / "y_coordinates.csv")
    if not eps_r or not x_coords or not y_coords:
        raise ValueError("could not load permittivity and coordinate data")

    try:
        trajectories = load_all_trajectories(folder / "all_proton_trajectories.csv")
    except OSError as exc:
        logger.error("Trajectory file not readable: %s", exc)
        trajectories = []
    logger.info("Loaded %d proton trajectories.", len(trajectories))

    written: list[Path] = []
    traj_paths = _pair(folder, "proton_trajectories_plot_root")
    plot_trajectories(trajectories, eps_r, x_coords, y_coords, traj_paths)
    written.extend(traj_paths)

    length_um = x_coords[-1]
    threshold = length_um * 1e-6 - DEFAULT_GRID_SPACING_UM * 1e-6 / 2.0
    energies = final_energies(trajectories, threshold)
    if energies:
        stats = energy_statistics(energies, len(trajectories))
        logger.info("Protons counted as successful: %d", stats.count)
        written.extend(plot_energy_histogram(
            energies, stats, _pair(folder, "proton_final_energy_histogram_root")))
    else:
        logger.info("No successful protons found to generate an energy histogram.")

    x_min = x_coords[0] * 1e-6
    x_max = x_coords[-1] * 1e-6
    if x_max > x_min:
        accel, velocity = position_profiles(trajectories, x_min, x_max, PROFILE_BINS)
    else:
        accel = velocity = Profile([], [], [], [])

    if len(accel):
        written.extend(plot_acceleration_profile(
            accel, _pair(folder, "proton_acceleration_profile_root")))
    else:
        logger.info("Not enough data to generate acceleration vs position profiles.")
    if len(velocity):
        written.extend(plot_velocity_profile(
            velocity, _pair(folder, "proton_velocity_profile_root")))
    else:
        logger.info("Not enough data to generate velocity vs position profiles.")
    return written


def main(argv=None) -> int:
    """Command-line entry point: [folder]."""
    parser = argparse.ArgumentParser(description="Plot proton simulation results.")
    parser.add_argument("folder", nargs="?", default=DEFAULT_FOLDER,
                        help="folder holding the simulation output")
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(message)s")

    folder = args.folder.rstrip("/\\") or args.folder
    try:
        run(folder)
    except (OSError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())