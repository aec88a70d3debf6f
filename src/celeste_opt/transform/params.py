"""
Conversion of whole variational parameter sets between constrained and free space.

A variational parameter set (``vp``) is a dict mapping every id of a
:class:`~celeste_opt.layout.ParamLayout` to an array of shape
``(num_sources, layout.length(id))``. Ids with a :class:`BoundSpec` are boxed;
all other ids are already unconstrained and pass through unchanged.
"""

from collections.abc import Iterable, Mapping

import jax
import jax.numpy as jnp
import numpy as np

from ..errors import ShapeError, ValidationError
from ..layout import ParamLayout
from ..sensitive_float import SensitiveFloat
from .box import BoundSpec, box, box_derivative, check_bounds, unbox


class ParameterTransform:
    """Bijection between constrained parameter sets and the optimizer's free vector.

    Parameters
    ----------
    layout : ParamLayout
        Layout of the constrained parameters of a single source.
    bounds : mapping of str to BoundSpec
        Bounds for each constrained id. Scalar bounds apply to every element of
        the id; vector bounds have one entry per element and are shared by all
        sources.
    num_sources : int
        Number of sources in a parameter set.

    Example
    -------
    >>> layout = ParamLayout("canonical", {"u": 2, "e_dev": 1, "r1": 1})
    >>> transform = ParameterTransform(
    ...     layout, {"e_dev": BoundSpec(0.01, 0.99), "r1": BoundSpec(1e-4)}, num_sources=2
    ... )
    >>> x = transform.vp_to_vector(vp)
    >>> vp2 = transform.vector_to_vp(x, vp)
    """

    def __init__(self, layout: ParamLayout, bounds: Mapping[str, BoundSpec], num_sources: int = 1):
        if num_sources < 1:
            raise ValueError(f"num_sources must be positive, got {num_sources}")
        unknown = [param_id for param_id in bounds if param_id not in layout]
        if unknown:
            raise ValidationError(f"Bounds given for ids not in layout {layout.name!r}: {unknown}")

        self.layout = layout
        self.free_layout = layout.renamed(f"{layout.name}_unconstrained")
        self.num_sources = num_sources
        self.bounds: dict[str, BoundSpec] = {}
        for param_id, spec in bounds.items():
            spec = BoundSpec(*spec)
            shape = (num_sources, layout.length(param_id))
            spec = BoundSpec(*(_broadcast_bound(bound, shape) for bound in spec))
            check_bounds(spec, shape)
            self.bounds[param_id] = spec

    def _check_vp(self, vp: Mapping[str, jax.Array]) -> None:
        for param_id in self.layout.ids:
            if param_id not in vp:
                raise ShapeError(f"Parameter set is missing id {param_id!r}")
            expected = (self.num_sources, self.layout.length(param_id))
            if jnp.shape(vp[param_id]) != expected:
                raise ShapeError(
                    f"Parameter {param_id!r} has shape {jnp.shape(vp[param_id])}, expected {expected}"
                )

    def _kept_ids(self, omitted_ids: Iterable[str]) -> list[str]:
        omitted = set(omitted_ids)
        unknown = omitted.difference(self.layout.ids)
        if unknown:
            raise ValidationError(f"Omitted ids not in layout {self.layout.name!r}: {sorted(unknown)}")
        return [param_id for param_id in self.layout.ids if param_id not in omitted]

    def free_size(self, omitted_ids: Iterable[str] = ()) -> int:
        """Length of the free vector produced by :meth:`vp_to_vector`."""
        kept = self._kept_ids(omitted_ids)
        return self.num_sources * sum(self.layout.length(param_id) for param_id in kept)

    def from_vp(self, vp: Mapping[str, jax.Array]) -> dict[str, jax.Array]:
        """Unbox every constrained id of ``vp``."""
        self._check_vp(vp)
        vp_free = {}
        for param_id in self.layout.ids:
            value = vp[param_id]
            if param_id in self.bounds:
                value = unbox(value, *self.bounds[param_id])
            vp_free[param_id] = jnp.asarray(value)
        return vp_free

    def to_vp(self, vp_free: Mapping[str, jax.Array]) -> dict[str, jax.Array]:
        """Box every constrained id of ``vp_free``."""
        self._check_vp(vp_free)
        vp = {}
        for param_id in self.layout.ids:
            value = jnp.asarray(vp_free[param_id])
            if param_id in self.bounds:
                value = box(value, *self.bounds[param_id])
            vp[param_id] = value
        return vp

    def vp_to_vector(self, vp: Mapping[str, jax.Array], omitted_ids: Iterable[str] = ()) -> jax.Array:
        """Flatten ``vp`` into the free vector, source by source.

        Parameters
        ----------
        vp : dict
            Constrained parameter set.
        omitted_ids : iterable of str
            Ids left out of the vector (held fixed by the optimizer).
        """
        kept = self._kept_ids(omitted_ids)
        vp_free = self.from_vp(vp)
        return jnp.concatenate([vp_free[param_id] for param_id in kept], axis=1).reshape(-1)

    def vector_to_vp(
        self,
        x: jax.Array,
        vp: Mapping[str, jax.Array],
        omitted_ids: Iterable[str] = (),
    ) -> dict[str, jax.Array]:
        """Inverse of :meth:`vp_to_vector`.

        Parameters
        ----------
        x : jax.Array
            Free vector.
        vp : dict
            Constrained parameter set supplying the omitted ids.
        omitted_ids : iterable of str
            Ids absent from ``x``.

        Returns
        -------
        dict
            New constrained parameter set; ``vp`` is not modified.
        """
        omitted_ids = list(omitted_ids)
        kept = self._kept_ids(omitted_ids)
        self._check_vp(vp)
        x = jnp.asarray(x)
        if x.shape != (self.free_size(omitted_ids),):
            raise ShapeError(
                f"Free vector has shape {x.shape}, expected {(self.free_size(omitted_ids),)}"
            )

        rows = x.reshape(self.num_sources, -1)
        new_vp = {param_id: jnp.asarray(vp[param_id]) for param_id in omitted_ids}
        offset = 0
        for param_id in kept:
            length = self.layout.length(param_id)
            value = rows[:, offset : offset + length]
            if param_id in self.bounds:
                value = box(value, *self.bounds[param_id])
            new_vp[param_id] = value
            offset += length
        return {param_id: new_vp[param_id] for param_id in self.layout.ids}

    def _box_jacobian(self, vp_free: Mapping[str, jax.Array]) -> tuple[jax.Array, jax.Array]:
        """First and second elementwise derivatives of the box map, flattened."""
        first, second = [], []
        for param_id in self.layout.ids:
            free = vp_free[param_id]
            ones = jnp.ones_like(free)
            if param_id in self.bounds:
                spec = self.bounds[param_id]
                jac, jac2 = jax.jvp(lambda z: box_derivative(z, ones, *spec), (free,), (ones,))
            else:
                jac, jac2 = ones, jnp.zeros_like(free)
            first.append(jac)
            second.append(jac2)
        return (
            jnp.concatenate(first, axis=1).reshape(-1),
            jnp.concatenate(second, axis=1).reshape(-1),
        )

    def transform_sensitive_float(self, sf: SensitiveFloat, vp: Mapping[str, jax.Array]) -> SensitiveFloat:
        """Express derivatives taken in constrained space in free coordinates.

        Parameters
        ----------
        sf : SensitiveFloat
            Value with derivatives with respect to the constrained parameters.
        vp : dict
            Constrained parameter set at which ``sf`` was evaluated.

        Returns
        -------
        SensitiveFloat
            Same value; gradient ``J d`` and Hessian ``J h J + diag(d J2)``,
            tagged with :attr:`free_layout`.
        """
        if sf.layout != self.layout:
            raise ShapeError(f"Expected a SensitiveFloat over {self.layout}, got {sf.layout}")
        if sf.num_sources != self.num_sources:
            raise ShapeError(
                f"Expected a SensitiveFloat over {self.num_sources} sources, got {sf.num_sources}"
            )

        jac, jac2 = self._box_jacobian(self.from_vp(vp))
        return SensitiveFloat(
            v=sf.v,
            d=jac * sf.d,
            h=jac[:, None] * sf.h * jac[None, :] + jnp.diag(sf.d * jac2),
            layout=self.free_layout,
            num_sources=self.num_sources,
        )


def _broadcast_bound(bound, shape):
    if bound is None:
        return None
    bound = np.asarray(bound, dtype=float)
    if bound.ndim == 0:
        return bound
    if bound.shape != shape[1:]:
        raise ShapeError(f"Elementwise bound has shape {bound.shape}, expected {shape[1:]}")
    return np.broadcast_to(bound, shape)
