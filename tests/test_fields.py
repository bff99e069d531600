import numpy as np
import pytest

from protonsim.fields import (
    K_ACCEL,
    M_PROTON,
    MATERIAL_THRESHOLD,
    Q_PROTON,
    GeometryParameters,
    acceleration,
    field_at_point,
    find_vacuum_channel,
    is_in_material_or_out_of_bounds,
    load_1d_csv,
    load_field_csv,
    load_geometry_params,
    load_permittivity_map,
)
from protonsim.geometry import (
    GeometryType,
    initialize_piana_geometry,
    save_geometry_params,
)
from protonsim.solver import save_coordinates_csv, save_grid_csv

H = 1e-6


def _write(path, text):
    path.write_text(text, encoding="utf-8")
    return path


def test_load_1d_csv_skips_blank_lines(tmp_path):
    path = _write(tmp_path / "c.csv", "0\n\n0.5\n1\n")
    assert list(load_1d_csv(path)) == [0.0, 0.5, 1.0]


def test_load_1d_csv_converts_to_meters(tmp_path):
    path = _write(tmp_path / "c.csv", "2\n4\n")
    assert load_1d_csv(path, True) == pytest.approx([2e-6, 4e-6])


def test_load_1d_csv_round_trip(tmp_path):
    coords = [0.0, 0.5, 1.0, 1.5]
    path = tmp_path / "x.csv"
    save_coordinates_csv(coords, path)
    assert list(load_1d_csv(path)) == coords


def test_load_1d_csv_invalid_raises(tmp_path):
    path = _write(tmp_path / "c.csv", "1\nabc\n")
    with pytest.raises(ValueError):
        load_1d_csv(path)


def test_load_1d_csv_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_1d_csv(tmp_path / "none.csv")


def test_load_field_csv_scales_and_transposes(tmp_path):
    path = _write(tmp_path / "e.csv", "1,2,3\n4,5,6\n")
    field = load_field_csv(path, 3, 2)
    assert field.shape == (3, 2)
    assert field[0, 0] == pytest.approx(1e6)
    assert field[2, 1] == pytest.approx(6e6)
    assert field[1, 1] == pytest.approx(5e6)


def test_load_field_csv_short_file_leaves_zeros(tmp_path):
    path = _write(tmp_path / "e.csv", "1,2,\n")
    field = load_field_csv(path, 2, 3)
    assert field[:, 0] == pytest.approx([1e6, 2e6])
    assert np.all(field[:, 1:] == 0.0)


def test_load_field_csv_extra_columns_ignored(tmp_path):
    path = _write(tmp_path / "e.csv", "1,2,9\n3,4,9\n")
    field = load_field_csv(path, 2, 2)
    assert field[:, 1] == pytest.approx([3e6, 4e6])


def test_load_field_csv_invalid_cell(tmp_path):
    path = _write(tmp_path / "e.csv", "1,x\n")
    with pytest.raises(ValueError):
        load_field_csv(path, 2, 1)


def test_permittivity_round_trip(tmp_path):
    grid = np.array([[1.0, 3.9, 3.9], [1.0, 1.0, 11.7]])
    path = tmp_path / "p.csv"
    save_grid_csv(grid, path)
    loaded = load_permittivity_map(path, 2, 3)
    assert np.array_equal(loaded, grid)


def test_load_geometry_params_from_saved_file(tmp_path):
    config, params = initialize_piana_geometry(0.5, 3.9, 1.0)
    path = tmp_path / "geometry_params.csv"
    save_geometry_params(path, GeometryType.PIANA, config, params)
    geom = load_geometry_params(path)
    assert geom.h == pytest.approx(config.h * 1e-6)
    assert geom.x_fs == pytest.approx(config.x_free_space * 1e-6)
    assert geom.x_sl == pytest.approx(config.x_structure_len * 1e-6)


def test_load_geometry_params_missing_keys_default_zero(tmp_path):
    path = _write(tmp_path / "g.csv", "geometry_type,piana\nh,bad\nother,3\n")
    assert load_geometry_params(path) == GeometryParameters(0.0, 0.0, 0.0)


def _channel_map(nx=10, ny=21, bottom=5, top=16):
    eps = np.ones((nx, ny))
    eps[:, :bottom] = 11.7
    eps[:, top:] = 11.7
    x = np.arange(nx) * H
    y = np.arange(ny) * H
    return eps, x, y


def test_vacuum_channel_lies_inside_gap():
    eps, x, y = _channel_map()
    low, high = find_vacuum_channel(eps, x, y, H, 0.0, x[-1])
    assert y[4] < low < high < y[16]
    assert high - low < y[16] - y[4]


def test_vacuum_channel_margin_is_tenth_of_cell():
    eps, x, y = _channel_map()
    low, high = find_vacuum_channel(eps, x, y, H, 0.0, x[-1])
    assert low == pytest.approx(5.1 * H)
    assert high == pytest.approx(15.9 * H)


def test_vacuum_channel_intersects_columns():
    eps, x, y = _channel_map()
    wide = find_vacuum_channel(eps, x, y, H, 0.0, x[-1])
    eps[3, :8] = 11.7
    narrow = find_vacuum_channel(eps, x, y, H, 0.0, x[-1])
    assert narrow[0] > wide[0]
    assert narrow[1] == pytest.approx(wide[1])


def test_vacuum_channel_fallback_when_all_material():
    eps, x, y = _channel_map()
    eps[:, :] = 11.7
    low, high = find_vacuum_channel(eps, x, y, H, 0.0, x[-1])
    height = y[-1] - y[0]
    assert low == pytest.approx(y[0] + height / 3.0)
    assert high == pytest.approx(y[-1] - height / 3.0)


def test_vacuum_channel_empty_map_falls_back():
    y = np.arange(7) * H
    low, high = find_vacuum_channel(np.zeros((0, 7)), [], y, H, 0.0, 1.0)
    assert (low, high) == pytest.approx((y[-1] / 3.0, y[-1] * 2.0 / 3.0))


def test_vacuum_channel_no_rows():
    assert find_vacuum_channel(np.zeros((3, 0)), [0.0, H, 2 * H], [], H, 0.0, H) == (0.0, 0.0)


def test_field_uniform():
    x = np.arange(4) * H
    y = np.arange(3) * H
    ex = np.full((4, 3), 2.0)
    ey = np.full((4, 3), -3.0)
    assert field_at_point(1.3 * H, 0.7 * H, x, y, ex, ey, H) == pytest.approx((2.0, -3.0))


def test_field_interpolates_linearly():
    x = np.arange(4) * H
    y = np.arange(3) * H
    ex = np.repeat(np.arange(4.0)[:, None], 3, axis=1)
    ey = np.repeat(np.arange(3.0)[None, :], 4, axis=0)
    fx, fy = field_at_point(1.5 * H, 0.25 * H, x, y, ex, ey, H)
    assert fx == pytest.approx(1.5)
    assert fy == pytest.approx(0.25)


def test_field_at_grid_node_matches_value():
    x = np.arange(3) * H
    y = np.arange(3) * H
    ex = np.arange(9.0).reshape(3, 3)
    ey = -ex
    assert field_at_point(x[1], y[2], x, y, ex, ey, H) == pytest.approx((ex[1, 2], ey[1, 2]))


def test_field_outside_grid_is_zero():
    x = np.arange(3) * H
    y = np.arange(3) * H
    ex = np.ones((3, 3))
    assert field_at_point(3 * H, H, x, y, ex, ex, H) == (0.0, 0.0)
    assert field_at_point(H, -H, x, y, ex, ex, H) == (0.0, 0.0)


def test_acceleration_scales_field():
    x = np.arange(3) * H
    y = np.arange(3) * H
    ex = np.full((3, 3), 1000.0)
    ey = np.full((3, 3), -500.0)
    ax, ay = acceleration(H, H, x, y, ex, ey, H)
    assert ax == pytest.approx(K_ACCEL * 1000.0)
    assert ay == pytest.approx(K_ACCEL * -500.0)
    assert K_ACCEL == pytest.approx(Q_PROTON / M_PROTON)


def test_material_and_bounds_checks():
    eps = np.ones((5, 5))
    eps[3, 2] = 11.7
    assert is_in_material_or_out_of_bounds(0.0, 2 * H, eps, H, 4 * H, 4 * H)
    assert is_in_material_or_out_of_bounds(2 * H, 4 * H, eps, H, 4 * H, 4 * H)
    assert is_in_material_or_out_of_bounds(3.5 * H, 2.5 * H, eps, H, 4 * H, 4 * H)
    assert not is_in_material_or_out_of_bounds(1.5 * H, 1.5 * H, eps, H, 4 * H, 4 * H)


def test_material_threshold_is_inclusive():
    eps = np.ones((3, 3))
    eps[1, 1] = MATERIAL_THRESHOLD
    assert is_in_material_or_out_of_bounds(1.2 * H, 1.2 * H, eps, H, 2 * H, 2 * H)


def test_empty_map_counts_as_blocked():
    assert is_in_material_or_out_of_bounds(H, H, [], H, 2 * H, 2 * H)