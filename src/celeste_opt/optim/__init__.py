"""
Optimization utilities for constrained light-source parameters.

This package provides:
- An interpolating line search enforcing the strong Wolfe conditions
- An L-BFGS maximizer driven by that line search
- Function conditioning (box transformation and gradient-based scaling)

Example usage:
    >>> from celeste_opt.optim import condition, maximize
    >>>
    >>> fn, to_opt, from_opt = condition(
    ...     log_likelihood,
    ...     lower=jnp.array([0.01, 0.2]),
    ...     upper=jnp.array([0.99, 5.0]),
    ... )
    >>> state = maximize(fn, to_opt(init_params))
    >>> params = from_opt(state.params)
"""

from .linesearch import (
    Accepted,
    Expand,
    LineSearchResult,
    NeedsZoom,
    curvature_outcome,
    interpolate,
    interpolating_linesearch,
    sufficient_decrease_outcome,
    zoom,
)
from .maximize import MaximizeState, maximize
from .utils import condition

__all__ = [
    "Accepted",
    "Expand",
    "LineSearchResult",
    "MaximizeState",
    "NeedsZoom",
    "condition",
    "curvature_outcome",
    "interpolate",
    "interpolating_linesearch",
    "maximize",
    "sufficient_decrease_outcome",
    "zoom",
]
