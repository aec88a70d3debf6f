"""
Constrained/unconstrained parameter transforms.

This package provides:
- unbox / box and their closed-form derivatives for box-constrained parameters
- ParameterTransform for whole per-source parameter sets
- YAML loading of parameter bounds

Example usage:
    >>> from celeste_opt.transform import BoundSpec, box, unbox
    >>>
    >>> free = unbox(0.3, 0.0, 1.0)
    >>> box(free, 0.0, 1.0)
    Array(0.3, dtype=float64)
"""

from .box import BoundSpec, box, box_derivative, check_bounds, unbox, unbox_derivative
from .config import bounds_from_config, dump_default_bounds, load_bounds, validate_bounds
from .params import ParameterTransform

__all__ = [
    "BoundSpec",
    "ParameterTransform",
    "bounds_from_config",
    "box",
    "box_derivative",
    "check_bounds",
    "dump_default_bounds",
    "load_bounds",
    "unbox",
    "unbox_derivative",
    "validate_bounds",
]
