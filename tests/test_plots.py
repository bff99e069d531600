import struct

import pytest

from protonsim.plots import (
    main,
    plot_acceleration_profile,
    plot_energy_histogram,
    plot_trajectories,
    plot_velocity_profile,
    run,
)
from protonsim.trajdata import EnergyStats, Profile, ProtonTrajectory

PNG_MAGIC = b"\x89PNG\r\n\x1a\n"


def _png_size(path):
    data = path.read_bytes()
    assert data[:8] == PNG_MAGIC
    return struct.unpack(">II", data[16:24])


def _write_folder(folder, with_success=True):
    xs = [i * 0.5 for i in range(21)]
    ys = [j * 0.5 for j in range(11)]
    (folder / "x_coordinates.csv").write_text("\n".join(str(x) for x in xs) + "\n")
    (folder / "y_coordinates.csv").write_text("\n".join(str(y) for y in ys) + "\n")
    rows = []
    for y in ys:
        value = 3.9 if (y <= 1.0 or y >= 4.0) else 1.0
        rows.append(",".join(str(value) for _ in xs))
    (folder / "permittivity.csv").write_text("\n".join(rows) + "\n")

    lines = ["proton_id,time_s,x_m,y_m,vx_m_per_s,vy_m_per_s"]
    end_x = 10e-6 if with_success else 6e-6
    for k in range(5):
        t = k * 1e-11
        lines.append(f"0,{t:e},{5e-6 + k * (end_x - 5e-6) / 4:e},2.5e-06,{1000.0 * k:e},0")
    for k in range(3):
        t = k * 1e-11
        lines.append(f"1,{t:e},{1e-6 + k * 1e-6:e},2.0e-06,{500.0 * k:e},10")
    (folder / "all_proton_trajectories.csv").write_text("\n".join(lines) + "\n")


def _trajectory(pid, n):
    return ProtonTrajectory(
        pid,
        time_s=[k * 1e-11 for k in range(n)],
        x_m=[1e-6 * (k + 1) for k in range(n)],
        y_m=[2e-6] * n,
        vx_m_per_s=[100.0 * k for k in range(n)],
        vy_m_per_s=[0.0] * n,
    )


def test_plot_trajectories_respects_limit(tmp_path):
    trajs = [_trajectory(i, 4) for i in range(5)]
    eps = [[1.0, 3.9], [1.0, 3.9]]
    out = tmp_path / "t.png"
    drawn = plot_trajectories(trajs, eps, [0.0, 10.0], [0.0, 5.0], out, limit=3)
    assert drawn == 3
    assert _png_size(out) == (1200, 800)


def test_plot_trajectories_skips_empty(tmp_path):
    trajs = [ProtonTrajectory(0), _trajectory(1, 3)]
    drawn = plot_trajectories(trajs, [], [0.0, 10.0], [0.0, 5.0], tmp_path / "t.png")
    assert drawn == 1


def test_plot_trajectories_needs_coordinates(tmp_path):
    with pytest.raises(ValueError):
        plot_trajectories([], [], [], [0.0, 1.0], tmp_path / "t.png")


def test_energy_histogram_writes_png_and_pdf(tmp_path):
    energies = [1.0, 2.0, 3.0]
    stats = EnergyStats(2.0, 1.0, 1.0, 3.0, 3, 0.5)
    paths = [tmp_path / "h.png", tmp_path / "h.pdf"]
    written = plot_energy_histogram(energies, stats, paths)
    assert written == paths
    assert _png_size(paths[0]) == (1000, 600)
    assert paths[1].read_bytes()[:4] == b"%PDF"


def test_energy_histogram_single_value(tmp_path):
    stats = EnergyStats(5.0, 0.0, 5.0, 5.0, 1, 1.0)
    written = plot_energy_histogram([5.0], stats, tmp_path / "h.png")
    assert written[0].read_bytes()[:8] == PNG_MAGIC


def test_energy_histogram_empty_raises(tmp_path):
    stats = EnergyStats(0.0, 0.0, 0.0, 0.0, 0, 0.0)
    with pytest.raises(ValueError):
        plot_energy_histogram([], stats, tmp_path / "h.png")


def test_profiles_plot(tmp_path):
    profile = Profile([1.0, 2.0], [3.0, 4.0], [0.0, 1.0], [3.0, 4.2])
    accel = plot_acceleration_profile(profile, tmp_path / "a.png")
    velo = plot_velocity_profile(profile, tmp_path / "v.png")
    assert _png_size(accel[0]) == (1200, 800)
    assert _png_size(velo[0]) == (1200, 800)


@pytest.mark.parametrize("plotter", [plot_acceleration_profile, plot_velocity_profile])
def test_empty_profile_raises(tmp_path, plotter):
    with pytest.raises(ValueError):
        plotter(Profile([], [], [], []), tmp_path / "p.png")


def test_run_writes_all_figures(tmp_path):
    _write_folder(tmp_path)
    written = run(tmp_path)
    names = {p.name for p in written}
    assert "proton_trajectories_plot_root.png" in names
    assert "proton_final_energy_histogram_root.pdf" in names
    assert "proton_acceleration_profile_root.png" in names
    assert "proton_velocity_profile_root.png" in names
    assert all(p.exists() for p in written)


def test_run_without_success_has_no_histogram(tmp_path):
    _write_folder(tmp_path, with_success=False)
    names = {p.name for p in run(tmp_path)}
    assert "proton_final_energy_histogram_root.png" not in names
    assert "proton_trajectories_plot_root.png" in names


def test_run_missing_folder_raises(tmp_path):
    with pytest.raises(NotADirectoryError):
        run(tmp_path / "absent")


def test_main_exit_codes(tmp_path):
    assert main([str(tmp_path / "absent")]) == 1
    _write_folder(tmp_path)
    assert main([str(tmp_path) + "/"]) == 0
    assert (tmp_path / "proton_trajectories_plot_root.pdf").exists()