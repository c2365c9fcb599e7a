"""Solver backends for cone programs."""

from conejax.solvers import clarabel_bridge, osqp_bridge

__all__ = ["clarabel_bridge", "osqp_bridge"]
