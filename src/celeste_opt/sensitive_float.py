"""
Sensitivity-tracked scalars.

A SensitiveFloat carries a value together with its gradient and Hessian with
respect to a fixed parameter layout repeated over ``num_sources`` sources.
The objective is assembled by summing many such contributions; triples are
immutable and accumulation is an explicit left fold, so a given list of
contributions always sums to the same bits.
"""

import functools
from collections.abc import Callable, Iterable

import equinox as eqx
import jax
import jax.numpy as jnp

from .errors import ShapeError
from .layout import ParamLayout


class SensitiveFloat(eqx.Module):
    """Value, gradient and Hessian of a scalar.

    Attributes
    ----------
    v : jax.Array
        Scalar value.
    d : jax.Array
        Flat gradient of length ``layout.size * num_sources``. Entries
        ``s * layout.size`` to ``(s + 1) * layout.size - 1`` belong to source ``s``.
    h : jax.Array
        Hessian, square with the gradient's length on each side.
    layout : ParamLayout
        Parameterization the derivatives are taken with respect to.
    num_sources : int
        Number of sources the layout is repeated over.
    """

    v: jax.Array = eqx.field(converter=jnp.asarray)
    d: jax.Array = eqx.field(converter=jnp.asarray)
    h: jax.Array = eqx.field(converter=jnp.asarray)
    layout: ParamLayout = eqx.field(static=True)
    num_sources: int = eqx.field(static=True, default=1)

    def __check_init__(self):
        n = self.layout.size * self.num_sources
        if self.v.shape != ():
            raise ShapeError(f"SensitiveFloat value must be a scalar, got shape {self.v.shape}")
        if self.d.shape != (n,):
            raise ShapeError(f"Gradient must have shape {(n,)}, got {self.d.shape}")
        if self.h.shape != (n, n):
            raise ShapeError(f"Hessian must have shape {(n, n)}, got {self.h.shape}")

    @property
    def d_by_source(self) -> jax.Array:
        """Gradient reshaped to ``(num_sources, layout.size)``."""
        return self.d.reshape(self.num_sources, self.layout.size)

    def __add__(self, other):
        if not isinstance(other, SensitiveFloat):
            return NotImplemented
        return add(self, other)

    def __radd__(self, other):
        # Lets the builtin sum() start from its integer 0.
        if isinstance(other, int) and other == 0:
            return self
        return NotImplemented


def zero_sensitive_float(
    layout: ParamLayout, dtype=None, num_sources: int = 1
) -> SensitiveFloat:
    """Return a SensitiveFloat with zero value, gradient and Hessian.

    Parameters
    ----------
    layout : ParamLayout
        Parameter layout the derivatives refer to.
    dtype : dtype, optional
        Numeric type of the arrays (JAX default float if None).
    num_sources : int
        Number of sources.
    """
    if num_sources < 1:
        raise ValueError(f"num_sources must be positive, got {num_sources}")
    n = layout.size * num_sources
    return SensitiveFloat(
        v=jnp.zeros((), dtype=dtype),
        d=jnp.zeros((n,), dtype=dtype),
        h=jnp.zeros((n, n), dtype=dtype),
        layout=layout,
        num_sources=num_sources,
    )


def add(a: SensitiveFloat, b: SensitiveFloat) -> SensitiveFloat:
    """Elementwise sum of two SensitiveFloats.

    Raises
    ------
    ShapeError
        If the layouts or source counts differ.
    """
    if a.layout != b.layout:
        raise ShapeError(f"Cannot add SensitiveFloats with layouts {a.layout} and {b.layout}")
    if a.num_sources != b.num_sources:
        raise ShapeError(
            f"Cannot add SensitiveFloats over {a.num_sources} and {b.num_sources} sources"
        )
    return SensitiveFloat(
        v=a.v + b.v,
        d=a.d + b.d,
        h=a.h + b.h,
        layout=a.layout,
        num_sources=a.num_sources,
    )


def sum_sensitive_floats(
    sfs: Iterable[SensitiveFloat],
    layout: ParamLayout | None = None,
    num_sources: int = 1,
) -> SensitiveFloat:
    """Sum SensitiveFloats by folding :func:`add` from left to right.

    The result is identical to ``((sfs[0] + sfs[1]) + sfs[2]) + ...``.

    Parameters
    ----------
    sfs : iterable of SensitiveFloat
        Contributions to sum, in evaluation order.
    layout : ParamLayout, optional
        Layout of the zero returned when ``sfs`` is empty.
    num_sources : int
        Source count of the zero returned when ``sfs`` is empty.
    """
    sfs = list(sfs)
    if not sfs:
        if layout is None:
            raise ValueError("Cannot sum an empty sequence without a layout")
        return zero_sensitive_float(layout, num_sources=num_sources)
    return functools.reduce(add, sfs)


def sensitive_float_from_fn(
    fn: Callable[[jax.Array], jax.Array],
    x: jax.Array,
    layout: ParamLayout,
    num_sources: int = 1,
) -> SensitiveFloat:
    """Evaluate a JAX scalar function with its gradient and Hessian at ``x``.

    Parameters
    ----------
    fn : Callable
        Differentiable scalar function of a flat parameter vector.
    x : jax.Array
        Point of evaluation, of length ``layout.size * num_sources``.
    layout : ParamLayout
        Layout of ``x``.
    num_sources : int
        Number of sources in ``x``.
    """
    x = jnp.asarray(x)
    n = layout.size * num_sources
    if x.shape != (n,):
        raise ShapeError(f"Expected a parameter vector of shape {(n,)}, got {x.shape}")
    value, grad = jax.value_and_grad(fn)(x)
    hess = jax.hessian(fn)(x)
    return SensitiveFloat(v=value, d=grad, h=hess, layout=layout, num_sources=num_sources)
