"""
Function conditioning utilities.

This module contains the condition function for:
- Parameter transformation (box constraints mapped to the real line)
- Gradient-based output scaling (like scipy TNC's fscale)
"""

from collections.abc import Callable
from functools import wraps
from typing import Any

import jax
from jaxtyping import PyTree
from lineax.internal import two_norm

from ..transform import box, unbox


def condition(
    fn: Callable[..., Any],
    lower: Any | None = None,
    upper: Any | None = None,
    scale: Any | None = None,
    scale_function: bool = False,
    init_params: Any | None = None,
    *args,
    **kwargs,
) -> tuple[Callable[..., Any], Callable[[PyTree], PyTree], Callable[[PyTree], PyTree]]:
    """Evaluate a function in unconstrained coordinates.

    Parameters are mapped from their box constraints to the real line with
    :func:`~celeste_opt.transform.unbox` and back with
    :func:`~celeste_opt.transform.box`, so an unconstrained optimizer can be
    used. The function output is optionally scaled by the inverse gradient
    norm at ``init_params`` (like scipy TNC's fscale).

    Args:
        fn: Function to wrap, fn(params, *args, **kwargs) -> scalar
        lower: Lower bounds (pytree, same structure as params)
        upper: Upper bounds (pytree, same structure as params). Leaves may be
            ``inf`` for parameters bounded below only. If None, every
            parameter is bounded below only.
        scale: Unbox scale factors (pytree, same structure as params). Defaults to 1.
        scale_function: If True, compute fscale from gradient norm at init_params
        init_params: Initial parameters for computing fscale (required if scale_function=True)
        *args, **kwargs: Additional arguments passed to fn for gradient computation

    Returns:
        Tuple of (wrapped_fn, to_opt, from_opt) where:
            - wrapped_fn: Function that takes unconstrained params and returns scaled output
            - to_opt: Convert physical params to unconstrained space
            - from_opt: Convert unconstrained params back to physical space

    Example:
        >>> fn, to_opt, from_opt = condition(
        ...     log_likelihood,
        ...     lower={'e_dev': 0.01, 'e_scale': 0.2},
        ...     upper={'e_dev': 0.99, 'e_scale': jnp.inf},
        ...     scale_function=True,
        ...     init_params={'e_dev': 0.5, 'e_scale': 1.5},
        ... )
        >>> opt_params = to_opt(init_params)  # transform to the real line
        >>> result = fn(opt_params)  # scaled output
        >>> physical_params = from_opt(opt_params)  # back to physical
    """
    if lower is None:
        # Identity transformation
        def to_opt(params: PyTree) -> PyTree:
            return params

        def from_opt(opt_params: PyTree) -> PyTree:
            return opt_params

    else:
        upper = jax.tree.map(lambda _: None, lower) if upper is None else upper
        scale = jax.tree.map(lambda _: 1.0, lower) if scale is None else scale

        def to_opt(params: PyTree) -> PyTree:
            return jax.tree.map(
                lambda p, lo, hi, s: unbox(p, lo, hi, s), params, lower, upper, scale,
                is_leaf=lambda x: x is None,
            )

        def from_opt(opt_params: PyTree) -> PyTree:
            return jax.tree.map(
                lambda u, lo, hi, s: box(u, lo, hi, s), opt_params, lower, upper, scale,
                is_leaf=lambda x: x is None,
            )

    # Compute fscale from gradient if requested
    factor = 1.0
    if scale_function:
        if init_params is None:
            raise ValueError("init_params required when scale_function=True")

        # Build unscaled wrapped function
        def wrapped_fn_unscaled(opt_params: PyTree, *a: Any, **kw: Any) -> Any:
            physical_params = from_opt(opt_params)
            return fn(physical_params, *a, **kw)

        # Compute gradient at init_params
        opt_init_params = to_opt(init_params)
        grad = jax.grad(wrapped_fn_unscaled)(opt_init_params, *args, **kwargs)
        gnorm = two_norm(grad)
        factor = 1.0 / gnorm

    # Build final wrapped function
    @wraps(fn)
    def wrapped_fn(opt_params: PyTree, *a: Any, **kw: Any) -> Any:
        physical_params = from_opt(opt_params)
        return fn(physical_params, *a, **kw) * factor

    # Attach utilities and metadata
    wrapped_fn.to_opt = to_opt  # type: ignore[attr-defined]
    wrapped_fn.from_opt = from_opt  # type: ignore[attr-defined]
    wrapped_fn.factor = factor  # type: ignore[attr-defined]
    wrapped_fn.original_fn = fn  # type: ignore[attr-defined]

    return wrapped_fn, to_opt, from_opt
