"""
Box transforms between bounded parameters and the real line.

This module contains:
- BoundSpec: lower bound, optional upper bound and scale of a parameter
- unbox / box: logit (bounded above) and log (bounded below only) maps
- unbox_derivative / box_derivative: closed-form tangents of both maps

Every formula is written with jax.numpy, so the same functions accept Python
floats, NumPy arrays, JAX arrays and forward-mode dual numbers (the tracers
created by ``jax.jvp``).
"""

from typing import NamedTuple

import jax
import jax.numpy as jnp
import numpy as np
from jaxtyping import ArrayLike

from ..errors import BoundsError, ShapeError, ValidationError


class BoundSpec(NamedTuple):
    """Bounds of a scalar or vector parameter.

    Attributes
    ----------
    lower : float or array_like
        Finite lower bound (scalar, or one entry per element).
    upper : float, array_like or None
        Upper bound. ``None`` or ``inf`` means unbounded above.
    scale : float or array_like
        Strictly positive factor dividing the unconstrained coordinate.
    """

    lower: ArrayLike
    upper: ArrayLike | None = None
    scale: ArrayLike = 1.0


def _prepare_bounds(value, lower, upper, scale):
    """Validate bounds against ``value`` and convert them to float arrays.

    Returns
    -------
    tuple
        ``(lower, upper, scale, bounded)`` where ``bounded`` is True when every
        upper bound is finite and False when none is.
    """
    shape = jnp.shape(value)
    lower = np.asarray(lower, dtype=float)
    upper = np.asarray(np.inf if upper is None else upper, dtype=float)
    scale = np.asarray(scale, dtype=float)

    for name, bound in (("lower", lower), ("upper", upper), ("scale", scale)):
        if bound.ndim > 0 and bound.shape != shape:
            raise ShapeError(
                f"{name} bound has shape {bound.shape} but the parameter has shape {shape}"
            )

    finite_upper = np.isfinite(upper)
    if finite_upper.any() and not finite_upper.all():
        raise ValidationError(
            f"Upper bounds must be all finite or all infinite, got {upper.tolist()}"
        )
    if np.any(np.isnan(upper)) or np.any(upper == -np.inf):
        raise ValidationError(f"Invalid upper bounds {upper.tolist()}")
    if not np.all(np.isfinite(lower)):
        raise ValidationError(f"Lower bounds must be finite, got {lower.tolist()}")
    if np.any(upper <= lower):
        raise ValidationError(
            f"Lower bounds {lower.tolist()} must be below upper bounds {upper.tolist()}"
        )
    if not np.all(scale > 0):
        raise ValidationError(f"Scale must be strictly positive, got {scale.tolist()}")

    return lower, upper, scale, bool(finite_upper.all())


def _as_param(param):
    """Concrete inputs stay float64 NumPy arrays so bound checks see the exact value."""
    if isinstance(param, jax.core.Tracer):
        return param
    return np.asarray(param, dtype=float)


def _check_inside(param, lower, upper, bounded):
    # Requires concrete values; jitted callers pass check=False.
    if bool(jnp.any(param <= lower)):
        raise BoundsError(
            f"Parameter must be strictly greater than its lower bound {lower.tolist()}"
        )
    if bounded and bool(jnp.any(param >= upper)):
        raise BoundsError(f"Parameter must be strictly less than its upper bound {upper.tolist()}")


def _check_derivative_shape(value, derivative):
    if jnp.shape(derivative) != jnp.shape(value):
        raise ShapeError(
            f"Derivative has shape {jnp.shape(derivative)} "
            f"but the parameter has shape {jnp.shape(value)}"
        )


def unbox(param, lower, upper=None, scale=1.0, check=True):
    """Map a bounded parameter to the real line.

    Parameters
    ----------
    param : float or array_like
        Constrained value, strictly inside the bounds.
    lower : float or array_like
        Lower bound, shared or elementwise.
    upper : float, array_like or None
        Upper bound; ``None``/``inf`` selects the log map.
    scale : float or array_like
        The unconstrained value is divided by this factor.
    check : bool
        Verify that ``param`` is strictly inside the bounds. Set to False when
        calling from traced (jitted) code, where values are not concrete.

    Returns
    -------
    jax.Array
        ``log((param - lower) / (upper - param)) / scale`` when bounded above,
        ``log(param - lower) / scale`` otherwise.

    Raises
    ------
    BoundsError
        If ``param`` is on or outside a bound.
    ShapeError
        If vector bounds do not match the shape of ``param``.
    ValidationError
        If upper bounds mix finite and infinite values.
    """
    param = _as_param(param)
    lower, upper, scale, bounded = _prepare_bounds(param, lower, upper, scale)
    if check:
        _check_inside(param, lower, upper, bounded)

    if bounded:
        return jnp.log((param - lower) / (upper - param)) / scale
    return jnp.log(param - lower) / scale


def box(free, lower, upper=None, scale=1.0):
    """Map an unconstrained value back inside its bounds.

    Exact inverse of :func:`unbox`. Every real input maps to an interior point.

    Parameters
    ----------
    free : float or array_like
        Unconstrained value.
    lower, upper, scale
        Same meaning as in :func:`unbox`.

    Returns
    -------
    jax.Array
        ``lower + (upper - lower) / (1 + exp(-scale * free))`` when bounded
        above, ``lower + exp(scale * free)`` otherwise.
    """
    free = jnp.asarray(free)
    lower, upper, scale, bounded = _prepare_bounds(free, lower, upper, scale)

    if bounded:
        return lower + (upper - lower) / (1.0 + jnp.exp(-scale * free))
    return lower + jnp.exp(scale * free)


def unbox_derivative(param, param_derivative, lower, upper=None, scale=1.0, check=True):
    """Push a derivative of ``param`` through :func:`unbox`.

    Computes ``param_derivative * d(free)/d(param)`` in closed form. This is the
    tangent ``jax.jvp(unbox, (param,), (param_derivative,))`` would produce.

    Parameters
    ----------
    param : float or array_like
        Constrained value at which the derivative is evaluated.
    param_derivative : float or array_like
        Upstream derivative of ``param``, same shape as ``param``.
    lower, upper, scale, check
        Same meaning as in :func:`unbox`.

    Returns
    -------
    jax.Array
        Derivative of the unconstrained value. Scales as ``1 / scale``.
    """
    param = _as_param(param)
    param_derivative = jnp.asarray(param_derivative)
    _check_derivative_shape(param, param_derivative)
    lower, upper, scale, bounded = _prepare_bounds(param, lower, upper, scale)
    if check:
        _check_inside(param, lower, upper, bounded)

    if bounded:
        return param_derivative * (upper - lower) / (scale * (param - lower) * (upper - param))
    return param_derivative / (scale * (param - lower))


def box_derivative(free, free_derivative, lower, upper=None, scale=1.0):
    """Push a derivative of ``free`` through :func:`box`.

    Computes ``free_derivative * d(param)/d(free)`` in closed form.

    Parameters
    ----------
    free : float or array_like
        Unconstrained value at which the derivative is evaluated.
    free_derivative : float or array_like
        Upstream derivative of ``free``, same shape as ``free``.
    lower, upper, scale
        Same meaning as in :func:`unbox`.

    Returns
    -------
    jax.Array
        Derivative of the constrained value.
    """
    free = jnp.asarray(free)
    free_derivative = jnp.asarray(free_derivative)
    _check_derivative_shape(free, free_derivative)
    lower, upper, scale, bounded = _prepare_bounds(free, lower, upper, scale)

    if bounded:
        sigmoid = 1.0 / (1.0 + jnp.exp(-scale * free))
        return free_derivative * scale * (upper - lower) * sigmoid * (1.0 - sigmoid)
    return free_derivative * scale * jnp.exp(scale * free)


def check_bounds(spec: BoundSpec, shape=()):
    """Validate a BoundSpec for a parameter of the given shape.

    Raises
    ------
    ShapeError
        If an elementwise bound does not have ``shape``.
    ValidationError
        If the bounds are malformed.
    """
    _prepare_bounds(np.zeros(shape), spec.lower, spec.upper, spec.scale)
