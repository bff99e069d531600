# protonsim

Tools to compute the electrostatic field inside a toothed dielectric
accelerator structure and to follow protons through it.

The work is done in three steps, and each step has its own command:

1. **Solve the field.** A permittivity map is built for one of the
   built-in geometries. The Laplace equation with variable permittivity
   is solved by red–black successive over-relaxation (ω = 1.8). The
   potential, the electric field, the permittivity and the grid
   coordinates are written as CSV files.
2. **Simulate protons.** Protons start at rest at x = 5 µm, with y drawn
   uniformly between 20 and 30 µm. They are integrated with fourth-order
   Runge–Kutta through the bilinearly interpolated field, in 1 ps steps
   for up to 10 ns. A proton stops when it reaches the right end of the
   grid, hits material or leaves the box. Trajectories are written to
   `all_proton_trajectories.csv`: the start of each proton, one row every
   10 ps while it is active, and its final state.
3. **Plot.** The program draws the first 1000 trajectories over the
   structure outline, a histogram of the final kinetic energies of the
   protons that got through with summary statistics, and the average
   velocity and acceleration in 100 bins along x.

## Installation

```
pip install .
```

Add the `test` extra to run the test suite:

```
pip install ".[test]"
pytest
```

## Geometries

| name                     | description                                                     |
|--------------------------|-----------------------------------------------------------------|
| `piana`                  | two flat layers with a vacuum gap between them                  |
| `denti_sfasati_profondi` | teeth that get shorter and spaces that get wider and deeper     |
| `denti_uguali`           | identical teeth repeating with a fixed period, top above bottom |

All lengths are in micrometres. The grid spacing is 0.5 µm and the domain
is 320 µm long. The structure runs from x = 10 µm to x = 310 µm. The
material has a relative permittivity of 3.9 and the vacuum 1.0. The
material at the left end of the structure is held at 0 V. The material at
the right end is held at −1000 V.

## Usage

Solve the field for a geometry and write the results to a folder:

```
protonsim-solve my_run denti_uguali
```

The folder name is taken relative to the current directory. Any missing
components of the path are created. The defaults are `default_output` and
`piana`. The command writes `geometry_params.csv`, `potential.csv`,
`electric_field_x.csv`, `electric_field_y.csv`, `permittivity.csv`,
`x_coordinates.csv` and `y_coordinates.csv`. Grid files have one row per
y and one column per x.

Simulate protons through the solved field:

```
protonsim-simulate my_run --protons 10000 --seed 1
```

`--protons` sets how many protons to simulate (default 10000). `--seed`
fixes the random start positions.

Make the plots. They are saved as PNG and PDF files in the same folder:

```
protonsim-plot my_run
```

## Library use

- `protonsim.geometry`: `GeometryType`, the parameter dataclasses, the
  `initialize_*_geometry` functions, the permittivity map builders,
  `boundary_conditions` and `save_geometry_params`.
- `protonsim.solver`: `solve_sor`, `electric_field`, `grid_coordinates`,
  `build_geometry`, the CSV writers, and `run`, which performs the whole
  solve step.
- `protonsim.fields`: loaders for the solver output, `field_at_point`,
  `acceleration`, `find_vacuum_channel` and
  `is_in_material_or_out_of_bounds`.
- `protonsim.simulator`: `Proton`, `rk4_step`, `simulate`,
  `SimulationResult` and `run`.
- `protonsim.trajdata`: `load_all_trajectories`, `final_energies`,
  `energy_statistics`, `position_profiles` and `outline_threshold`.
- `protonsim.plots`: the matplotlib figures and `run`.

```python
from protonsim import geometry

config, params = geometry.initialize_piana_geometry(0.5, 3.9, 1.0)
eps_r = geometry.piana_permittivity(config, params, 641, 61)
```

## Limits

The geometry dimensions, voltages and material values are fixed defaults.
The commands do not let you change them. To use other values, build a
`GeometryConfig` and a parameter object yourself, then call the library
functions.