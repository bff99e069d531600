"""Reading of trajectory output and the statistics drawn from it."""

from __future__ import annotations

import logging
import math
import re
import statistics
from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional, Sequence, Union

from protonsim.fields import M_PROTON, Q_PROTON, _parse_number

logger = logging.getLogger(__name__)

DEFAULT_GRID_SPACING_UM = 0.5
MIN_TIME_STEP_S = 1e-12
MIN_OUTLINE_CONTRAST = 0.5

_INT_PREFIX = re.compile(r"\s*([+-]?\d+)")
_BLANK_ROW = re.compile(r"[\s,]*")

PathLike = Union[str, Path]


@dataclass
class ProtonTrajectory:
    """Recorded states of one proton, in SI units."""

    id: int
    time_s: list = field(default_factory=list)
    x_m: list = field(default_factory=list)
    y_m: list = field(default_factory=list)
    vx_m_per_s: list = field(default_factory=list)
    vy_m_per_s: list = field(default_factory=list)


@dataclass(frozen=True)
class EnergyStats:
    """Summary of the final kinetic energies (eV) of the protons that got through."""

    mean: float
    std_dev: float
    minimum: float
    maximum: float
    count: int
    efficiency: float

    @property
    def histogram_range(self) -> tuple[float, float]:
        """Axis range for a histogram: 5% margin below, 10% above."""
        spread = self.maximum - self.minimum
        return self.minimum - spread * 0.05, self.maximum + spread * 0.1


@dataclass(frozen=True)
class Profile:
    """Averages of a vector quantity per position bin; positions in micrometres."""

    x_um: list
    x_component: list
    y_component: list
    magnitude: list

    def __len__(self) -> int:
        return len(self.x_um)


def _parse_int(text: str) -> int:
    match = _INT_PREFIX.match(text)
    if match is None:
        raise ValueError(f"not an integer: {text!r}")
    return int(match.group(1))


def _split(line: str) -> list[str]:
    """Split on commas, dropping the empty piece after a trailing comma."""
    parts = line.split(",")
    if parts and parts[-1] == "":
        parts.pop()
    return parts


def _numbers(cells: Iterable[str], path: PathLike) -> list[float]:
    values = []
    for cell in cells:
        try:
            values.append(_parse_number(cell))
        except ValueError:
            logger.warning("Could not convert value to number in %s: %r", path, cell)
    return values


def load_coordinates(path: PathLike) -> list[float]:
    """Read every comma- or line-separated number of a file; bad values are skipped."""
    coords: list[float] = []
    with open(path, encoding="utf-8") as handle:
        for line in handle:
            coords.extend(_numbers(_split(line.rstrip("\r\n")), path))
    return coords


def load_2d_csv(path: PathLike) -> list[list[float]]:
    """Read a CSV into rows of numbers, skipping rows of only blanks and commas."""
    rows: list[list[float]] = []
    expected: Optional[int] = None
    with open(path, encoding="utf-8") as handle:
        for line in handle:
            line = line.rstrip("\r\n")
            if _BLANK_ROW.fullmatch(line):
                continue
            row = _numbers(_split(line), path)
            if expected is None:
                expected = len(row)
            elif row and len(row) != expected:
                logger.warning("Inconsistent number of columns in %s: expected %d, got %d",
                               path, expected, len(row))
            if row:
                rows.append(row)
    return rows


def load_all_trajectories(path: PathLike) -> list[ProtonTrajectory]:
    """Group the rows of a trajectory file by proton, ordered by proton id.

    The first line is a header; malformed rows are skipped.
    """
    by_id: dict[int, ProtonTrajectory] = {}
    with open(path, encoding="utf-8") as handle:
        next(handle, None)
        for line_number, line in enumerate(handle, start=2):
            line = line.rstrip("\r\n")
            if _BLANK_ROW.fullmatch(line):
                continue
            values = _split(line)
            if len(values) < 6:
                logger.warning("Skipping malformed line %d in %s: %r (got %d columns)",
                               line_number, path, line, len(values))
                continue
            try:
                proton_id = _parse_int(values[0])
                t, x, y, vx, vy = (_parse_number(v) for v in values[1:6])
            except ValueError as exc:
                logger.warning("Error parsing line %d in %s: %r (%s)",
                               line_number, path, line, exc)
                continue
            traj = by_id.setdefault(proton_id, ProtonTrajectory(proton_id))
            traj.time_s.append(t)
            traj.x_m.append(x)
            traj.y_m.append(y)
            traj.vx_m_per_s.append(vx)
            traj.vy_m_per_s.append(vy)
    return [by_id[key] for key in sorted(by_id)]


def outline_threshold(eps_r: Sequence[Sequence[float]]) -> Optional[float]:
    """Level halfway between the smallest and largest permittivity.

    None when the map is empty or its values are too close to separate.
    """
    values = [v for row in eps_r for v in row]
    if not values:
        logger.warning("Permittivity data is empty; no outline.")
        return None
    low, high = min(values), max(values)
    if low == high:
        logger.warning("Permittivity has a single value (%.2f); no outline.", low)
        return None
    if high <= low + MIN_OUTLINE_CONTRAST:
        logger.warning("Permittivity values (%.2f-%.2f) are too close for an outline.",
                       low, high)
        return None
    return (low + high) / 2.0


def final_energies(trajectories: Iterable[ProtonTrajectory],
                   x_threshold: float) -> list[float]:
    """Final kinetic energy (eV) of each proton whose last x reached the threshold."""
    energies = []
    for traj in trajectories:
        if not traj.x_m or traj.x_m[-1] < x_threshold:
            continue
        vx = traj.vx_m_per_s[-1]
        vy = traj.vy_m_per_s[-1]
        energies.append(0.5 * M_PROTON * (vx * vx + vy * vy) / Q_PROTON)
    return energies


def energy_statistics(energies: Sequence[float], total: int) -> EnergyStats:
    """Mean, sample standard deviation, extremes and efficiency against total protons."""
    if not energies:
        raise ValueError("no energies to summarise")
    count = len(energies)
    return EnergyStats(
        mean=sum(energies) / count,
        std_dev=statistics.stdev(energies) if count > 1 else 0.0,
        minimum=min(energies),
        maximum=max(energies),
        count=count,
        efficiency=count / total if total > 0 else 0.0,
    )


def _round_half_away(value: float) -> int:
    return int(math.copysign(math.floor(abs(value) + 0.5), value))


def _average_profile(bins: dict) -> Profile:
    xs, cx, cy, mag = [], [], [], []
    for x_m in sorted(bins):
        samples_x, samples_y, samples_m = bins[x_m]
        if not samples_x or not samples_y or not samples_m:
            continue
        xs.append(x_m * 1e6)
        cx.append(sum(samples_x) / len(samples_x))
        cy.append(sum(samples_y) / len(samples_y))
        mag.append(sum(samples_m) / len(samples_m))
    return Profile(xs, cx, cy, mag)


def position_profiles(trajectories: Iterable[ProtonTrajectory], x_min: float,
                      x_max: float, bins: int = 100) -> tuple[Profile, Profile]:
    """Average acceleration and velocity per x bin; returns (acceleration, velocity).

    x_min and x_max are in metres. Acceleration comes from successive velocity
    samples, skipping steps shorter than a picosecond.
    """
    if bins <= 0:
        raise ValueError("number of bins must be positive")
    bin_size = (x_max - x_min) / bins
    if not bin_size > 0:
        raise ValueError("x_max must be greater than x_min")

    accel = defaultdict(lambda: ([], [], []))
    velocity = defaultdict(lambda: ([], [], []))

    for traj in trajectories:
        if not traj.time_s or not traj.x_m:
            continue
        previous = None
        for t, x, vx, vy in zip(traj.time_s, traj.x_m, traj.vx_m_per_s, traj.vy_m_per_s):
            key = _round_half_away(x / bin_size) * bin_size
            vel = velocity[key]
            vel[0].append(vx)
            vel[1].append(vy)
            vel[2].append(math.hypot(vx, vy))
            if previous is not None:
                t_prev, vx_prev, vy_prev = previous
                dt = t - t_prev
                if dt > MIN_TIME_STEP_S:
                    ax = (vx - vx_prev) / dt
                    ay = (vy - vy_prev) / dt
                    acc = accel[key]
                    acc[0].append(ax)
                    acc[1].append(ay)
                    acc[2].append(math.hypot(ax, ay))
            previous = (t, vx, vy)

    return _average_profile(accel), _average_profile(velocity)