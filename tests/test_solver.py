import numpy as np
import pytest

from protonsim.geometry import GeometryType, PianaParams, DentiUgualiParams
from protonsim.solver import (
    EPS_SIO2,
    SolverResult,
    build_geometry,
    electric_field,
    ensure_output_dir,
    grid_coordinates,
    main,
    save_coordinates_csv,
    save_grid_csv,
    solve_sor,
)


def _plates(nx=10, ny=5, v_left=0.0, v_right=-10.0):
    eps = np.ones((nx, ny))
    potential = np.zeros((nx, ny))
    fixed = np.zeros((nx, ny), dtype=bool)
    potential[1, :] = v_left
    potential[nx - 2, :] = v_right
    fixed[1, :] = True
    fixed[nx - 2, :] = True
    return eps, potential, fixed


def test_grid_coordinates_spans_length():
    coords = grid_coordinates(320.0, 0.5)
    assert len(coords) == 641
    assert coords[0] == 0.0
    assert coords[-1] == pytest.approx(320.0)
    assert np.allclose(np.diff(coords), 0.5)


def test_grid_coordinates_rejects_bad_spacing():
    with pytest.raises(ValueError):
        grid_coordinates(10.0, 0.0)


def test_build_geometry_piana_uses_sio2():
    config, params = build_geometry(GeometryType.PIANA, 0.5)
    assert isinstance(params, PianaParams)
    assert config.eps_material == EPS_SIO2
    assert config.h == 0.5
    assert config.h_total == 30.0


def test_build_geometry_accepts_name():
    config, params = build_geometry("denti_uguali", 0.5)
    assert isinstance(params, DentiUgualiParams)
    assert config.h_total == 50.0


@pytest.mark.parametrize("kind", ["bogus", GeometryType.UNKNOWN])
def test_build_geometry_rejects_unknown(kind):
    with pytest.raises(ValueError):
        build_geometry(kind, 0.5)


def test_solve_sor_linear_between_plates():
    eps, potential, fixed = _plates()
    result = solve_sor(eps, potential, fixed, 1.8, 1e-10, 100000)
    assert isinstance(result, SolverResult)
    assert result.converged
    assert result.max_diff < 1e-10
    v = result.potential
    assert np.allclose(v[1, :], 0.0)
    assert np.allclose(v[8, :], -10.0)
    steps = np.diff(v[1:9, 2])
    assert np.allclose(steps, steps[0], atol=1e-6)
    # Uniform in y: no transverse variation.
    assert np.allclose(v, v[:, :1], atol=1e-6)
    # Neumann edges copy their neighbours.
    assert np.allclose(v[0, :], v[1, :])
    assert np.allclose(v[9, :], v[8, :], atol=1e-6)


def test_solve_sor_does_not_modify_inputs():
    eps, potential, fixed = _plates()
    before = potential.copy()
    solve_sor(eps, potential, fixed, 1.8, 1e-6, 50)
    assert np.array_equal(potential, before)


def test_solve_sor_stops_at_max_iter():
    eps, potential, fixed = _plates()
    result = solve_sor(eps, potential, fixed, 1.8, 1e-15, 1)
    assert result.iterations == 1
    assert not result.converged
    assert result.max_diff > 0


def test_solve_sor_rejects_shape_mismatch():
    eps, potential, fixed = _plates()
    with pytest.raises(ValueError):
        solve_sor(eps, potential[:, :3], fixed, 1.8, 1e-6, 10)


def test_electric_field_of_linear_potential_in_x():
    h = 0.5
    i = np.arange(6)[:, None] * np.ones((1, 4))
    potential = -3.0 * i * h
    ex, ey = electric_field(potential, h)
    assert np.allclose(ex, 3.0)
    assert np.allclose(ey, 0.0)


def test_electric_field_y_zero_on_edges():
    h = 0.5
    j = np.ones((4, 1)) * np.arange(5)[None, :]
    potential = 2.0 * j * h
    ex, ey = electric_field(potential, h)
    assert np.allclose(ex, 0.0)
    assert np.allclose(ey[:, 1:-1], -2.0)
    assert np.all(ey[:, 0] == 0.0)
    assert np.all(ey[:, -1] == 0.0)


def test_save_grid_csv_round_trip(tmp_path):
    data = np.array([[1.0, 0.25, -3.5], [2.0, 0.125, 7.0]])
    path = tmp_path / "grid.csv"
    save_grid_csv(data, path)
    lines = path.read_text().splitlines()
    assert len(lines) == data.shape[1]
    assert lines[0].split(",")[0] == "1"
    loaded = np.loadtxt(path, delimiter=",", ndmin=2)
    assert np.allclose(loaded.T, data)


def test_save_coordinates_csv_round_trip(tmp_path):
    coords = grid_coordinates(5.0, 0.5)
    path = tmp_path / "x.csv"
    save_coordinates_csv(coords, path)
    values = [float(line) for line in path.read_text().splitlines()]
    assert np.allclose(values, coords)


def test_ensure_output_dir_creates_nested(tmp_path):
    result = ensure_output_dir(tmp_path, "a//b/")
    assert result == tmp_path / "a" / "b"
    assert result.is_dir()
    assert ensure_output_dir(tmp_path, "a/b") == result


def test_ensure_output_dir_rejects_file(tmp_path):
    (tmp_path / "a").write_text("x")
    with pytest.raises(NotADirectoryError):
        ensure_output_dir(tmp_path, "a/b")


def test_ensure_output_dir_empty_name(tmp_path):
    assert ensure_output_dir(tmp_path, "") == tmp_path
    with pytest.raises(FileNotFoundError):
        ensure_output_dir(tmp_path / "missing", "")


def test_main_rejects_unknown_geometry(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    assert main(["out", "bogus"]) == 1
    assert not (tmp_path / "out").exists()