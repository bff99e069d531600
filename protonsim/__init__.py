"""Electrostatic field solver, proton trajectory simulator and result plots."""

__version__ = "0.1.0"
__all__ = ["geometry", "solver", "fields", "simulator", "trajdata", "plots"]