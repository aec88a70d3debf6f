"""
Interpolating line search satisfying the strong Wolfe conditions.

This module contains:
- interpolating_linesearch: bracketing phase, expanding the step by ``rho``
- zoom: refinement of a bracket known to contain an acceptable step
- interpolate: cubic interpolation of a step from the two ends of a bracket
- sufficient_decrease_outcome / curvature_outcome: the per-trial decisions of
  the bracketing phase, returned as Accepted, NeedsZoom or Expand

The search minimizes ``phi(alpha) = f(x + alpha * p)``. Objectives that are
maximized are negated by the caller.
"""

import math
from collections.abc import Callable
from typing import NamedTuple

import jax.numpy as jnp

from ..errors import DescentDirectionError, InterpolationError, LineSearchError, ShapeError
from ..logging_utils import debug, format_linesearch_result, warning
from ..sensitive_float import SensitiveFloat


class LineSearchResult(NamedTuple):
    """Step length with the number of objective and gradient evaluations.

    ``exhausted`` is True when the search budget ran out before the strong
    Wolfe conditions were met; ``alpha`` is then a best-effort value.
    """

    alpha: float
    f_calls: int
    g_calls: int
    exhausted: bool = False


class Accepted(NamedTuple):
    """The trial step satisfies the strong Wolfe conditions."""

    alpha: float


class NeedsZoom(NamedTuple):
    """An acceptable step lies between ``a_lo`` and ``a_hi``."""

    a_lo: float
    a_hi: float


class Expand(NamedTuple):
    """The trial step is too short; continue from ``alpha``."""

    alpha: float


def as_scalar(value) -> float:
    """Objective value as a float; SensitiveFloats contribute their value."""
    if isinstance(value, SensitiveFloat):
        value = value.v
    return float(value)


def interpolate(a_1, a_2, phi_1, phi_2, phiprime_1, phiprime_2):
    """Minimizer of the cubic matching values and slopes at two steps.

    Parameters
    ----------
    a_1, a_2 : float
        Distinct step lengths.
    phi_1, phi_2 : float
        ``phi`` at ``a_1`` and ``a_2``.
    phiprime_1, phiprime_2 : float
        ``phi'`` at ``a_1`` and ``a_2``.

    Returns
    -------
    float
        ``a_2 - (a_2 - a_1) * (phiprime_2 + d2 - d1) / (phiprime_2 - phiprime_1 + 2 d2)``
        with ``d1 = phiprime_1 + phiprime_2 - 3 (phi_1 - phi_2) / (a_1 - a_2)`` and
        ``d2 = sqrt(d1**2 - phiprime_1 * phiprime_2)``.

    Raises
    ------
    InterpolationError
        If the steps coincide, ``d2`` is not real, or the denominator vanishes.
    """
    if a_1 == a_2:
        raise InterpolationError(f"Cannot interpolate between identical steps {a_1}")
    d1 = phiprime_1 + phiprime_2 - 3.0 * (phi_1 - phi_2) / (a_1 - a_2)
    radicand = d1 * d1 - phiprime_1 * phiprime_2
    if not radicand >= 0.0:
        raise InterpolationError(f"Cubic interpolation has a negative radicand {radicand}")
    d2 = math.sqrt(radicand)
    denominator = phiprime_2 - phiprime_1 + 2.0 * d2
    if denominator == 0.0:
        raise InterpolationError("Cubic interpolation has a zero denominator")
    return a_2 - (a_2 - a_1) * ((phiprime_2 + d2 - d1) / denominator)


def _interpolate_or_bisect(a_lo, a_hi, phi_a_lo, phi_a_hi, phiprime_a_lo, phiprime_a_hi):
    if a_lo < a_hi:
        args = (a_lo, a_hi, phi_a_lo, phi_a_hi, phiprime_a_lo, phiprime_a_hi)
    else:
        args = (a_hi, a_lo, phi_a_hi, phi_a_lo, phiprime_a_hi, phiprime_a_lo)
    midpoint = 0.5 * (a_lo + a_hi)
    try:
        a_j = interpolate(*args)
    except InterpolationError:
        return midpoint
    if not min(a_lo, a_hi) < a_j < max(a_lo, a_hi):
        return midpoint
    return a_j


def sufficient_decrease_outcome(a_prev, a_i, phi_a_prev, phi_a_i, phi_0, phiprime_0, first_trial, c1):
    """Decide whether the bracketing phase must zoom after evaluating ``phi(a_i)``.

    Returns
    -------
    NeedsZoom or None
        ``NeedsZoom(a_prev, a_i)`` if the Armijo condition fails, ``phi`` did not
        decrease since the previous trial, or ``phi(a_i)`` is not finite;
        None if the curvature condition should be checked next.
    """
    if (
        not math.isfinite(phi_a_i)
        or phi_a_i > phi_0 + c1 * a_i * phiprime_0
        or (phi_a_i >= phi_a_prev and not first_trial)
    ):
        return NeedsZoom(a_prev, a_i)
    return None


def curvature_outcome(a_prev, a_i, phiprime_a_i, phiprime_0, c2):
    """Decide the bracketing step once ``phi'(a_i)`` is known.

    Returns
    -------
    Accepted, NeedsZoom or Expand
        Accepted if ``|phi'(a_i)| <= -c2 phi'(0)``; ``NeedsZoom(a_i, a_prev)`` if
        the minimum was overshot (``phi'(a_i) >= 0``); Expand otherwise.
    """
    if abs(phiprime_a_i) <= -c2 * phiprime_0:
        return Accepted(a_i)
    if phiprime_a_i >= 0.0:
        return NeedsZoom(a_i, a_prev)
    return Expand(a_i)


def zoom(
    a_lo: float,
    a_hi: float,
    phi_0: float,
    phiprime_0: float,
    phi: Callable[[float], float],
    phiprime: Callable[[float], float],
    c1: float = 1e-4,
    c2: float = 0.9,
    rho: float = 2.0,
    max_iterations: int = 10,
    verbose: bool = False,
) -> LineSearchResult:
    """Shrink a bracket until a step satisfies the strong Wolfe conditions.

    Parameters
    ----------
    a_lo : float
        End of the bracket with the lowest ``phi`` seen so far.
    a_hi : float
        Other end of the bracket; may be smaller than ``a_lo``.
    phi_0, phiprime_0 : float
        ``phi(0)`` and ``phi'(0)``.
    phi, phiprime : Callable
        ``phi(alpha)`` and ``phi'(alpha)``.
    c1, c2 : float
        Armijo and curvature constants.
    rho : float
        Factor by which steps with non-finite ``phi`` are shortened.
    max_iterations : int
        Maximum number of refinements.
    verbose : bool
        Print the bracket at every iteration.

    Returns
    -------
    LineSearchResult
        Evaluation counts are those made by this call only. If the iteration
        cap is reached the last trial step is returned with ``exhausted=True``.
    """
    f_calls, g_calls = 0, 0
    a_j = math.nan

    for iteration in range(max_iterations):
        if verbose:
            debug(f"zoom iteration {iteration}: a_lo = {a_lo:.6g}, a_hi = {a_hi:.6g}")

        phi_a_lo = phi(a_lo)
        phiprime_a_lo = phiprime(a_lo)
        phi_a_hi = phi(a_hi)
        f_calls += 2
        g_calls += 1

        if not math.isfinite(phi_a_hi):
            a_hi /= rho
            a_j = a_hi
            if verbose:
                debug(f"phi(a_hi) is not finite, scaling back to {a_j:.6g}")
        else:
            phiprime_a_hi = phiprime(a_hi)
            g_calls += 1
            a_j = _interpolate_or_bisect(a_lo, a_hi, phi_a_lo, phi_a_hi, phiprime_a_lo, phiprime_a_hi)

        phi_a_j = phi(a_j)
        f_calls += 1

        if not math.isfinite(phi_a_j):
            a_j /= rho
            a_hi = a_j
            if verbose:
                debug(f"phi(a_j) is not finite, scaling back to {a_j:.6g}")
        elif phi_a_j > phi_0 + c1 * a_j * phiprime_0 or phi_a_j > phi_a_lo:
            a_hi = a_j
        else:
            phiprime_a_j = phiprime(a_j)
            g_calls += 1

            if abs(phiprime_a_j) <= -c2 * phiprime_0:
                return LineSearchResult(a_j, f_calls, g_calls)

            # The slope points back into the bracket at a_j; a_j is returned
            # rather than continuing with a_hi = a_lo.
            if phiprime_a_j * (a_hi - a_lo) >= 0.0:
                return LineSearchResult(a_j, f_calls, g_calls)

            a_lo = a_j

    if verbose:
        warning(f"zoom iterations exceeded ({max_iterations}), returning a_j = {a_j:.6g}")
    return LineSearchResult(a_j, f_calls, g_calls, exhausted=True)


def _line_functions(f, grad, x, p):
    # Without a gradient callback, phiprime reuses the SensitiveFloat that phi
    # produced at the same step.
    last = {"alpha": None, "out": None}

    def evaluate(alpha):
        if last["alpha"] != alpha:
            last["alpha"], last["out"] = alpha, f(x + alpha * p)
        return last["out"]

    def phi(alpha):
        if grad is None:
            return as_scalar(evaluate(alpha))
        return as_scalar(f(x + alpha * p))

    def phiprime(alpha):
        if grad is not None:
            return float(jnp.dot(jnp.asarray(grad(x + alpha * p)), p))
        out = evaluate(alpha)
        if not isinstance(out, SensitiveFloat):
            raise TypeError("grad is required unless f returns a SensitiveFloat")
        return float(jnp.dot(out.d, p))

    return phi, phiprime


def interpolating_linesearch(
    f: Callable,
    grad: Callable | None,
    x,
    p,
    c1: float = 1e-4,
    c2: float = 0.9,
    rho: float = 2.0,
    a_max: float = 65536.0,
    max_zoom_iterations: int = 10,
    verbose: bool = False,
) -> LineSearchResult:
    """Find a step length along ``p`` satisfying the strong Wolfe conditions.

    Starting from ``alpha = 1``, the step is multiplied by ``rho`` until a
    bracket containing an acceptable step is found, which is then refined
    with :func:`zoom`.

    Parameters
    ----------
    f : Callable
        Objective to minimize, returning a scalar or a SensitiveFloat.
    grad : Callable or None
        Gradient of ``f``. If None, ``f`` must return a SensitiveFloat and its
        gradient ``d`` is used.
    x : array_like
        Current point.
    p : array_like
        Descent direction, ``grad(x) . p < 0``.
    c1, c2 : float
        Armijo and curvature constants, ``0 < c1 < c2 < 1``.
    rho : float
        Expansion factor, greater than 1.
    a_max : float
        Largest step tried.
    max_zoom_iterations : int
        Iteration cap of :func:`zoom`.
    verbose : bool
        Print the search trace.

    Returns
    -------
    LineSearchResult
        ``(alpha, f_calls, g_calls, exhausted)``. If ``a_max`` is reached,
        ``alpha = a_max`` and ``exhausted`` is True.

    Raises
    ------
    DescentDirectionError
        If ``p`` is not a descent direction at ``x``.
    LineSearchError
        If ``phi(0)`` or ``phi'(0)`` is not finite.
    """
    if not 0.0 < c1 < c2 < 1.0:
        raise ValueError(f"Line search constants must satisfy 0 < c1 < c2 < 1, got c1={c1}, c2={c2}")
    if rho <= 1.0:
        raise ValueError(f"Expansion factor rho must be greater than 1, got {rho}")

    x = jnp.asarray(x)
    p = jnp.asarray(p)
    if x.shape != p.shape:
        raise ShapeError(f"Point has shape {x.shape} but direction has shape {p.shape}")
    phi, phiprime = _line_functions(f, grad, x, p)

    phi_0 = phi(0.0)
    phiprime_0 = phiprime(0.0)
    f_calls, g_calls = 1, 1
    if not (math.isfinite(phi_0) and math.isfinite(phiprime_0)):
        raise LineSearchError(
            f"Objective is not finite at the starting point: phi(0) = {phi_0}, phi'(0) = {phiprime_0}"
        )
    if phiprime_0 >= 0.0:
        raise DescentDirectionError(f"p is not a descent direction: phi'(0) = {phiprime_0}")

    a_prev, a_i = 0.0, 1.0
    phi_a_prev = phi_0
    first_trial = True

    while a_i < a_max:
        phi_a_i = phi(a_i)
        f_calls += 1
        if verbose:
            debug(f"trial alpha = {a_i:.6g}: phi = {phi_a_i:.10g}")

        outcome = sufficient_decrease_outcome(
            a_prev, a_i, phi_a_prev, phi_a_i, phi_0, phiprime_0, first_trial, c1
        )
        if outcome is None:
            phiprime_a_i = phiprime(a_i)
            g_calls += 1
            outcome = curvature_outcome(a_prev, a_i, phiprime_a_i, phiprime_0, c2)

        if isinstance(outcome, Accepted):
            result = LineSearchResult(outcome.alpha, f_calls, g_calls)
            if verbose:
                debug(format_linesearch_result(result))
            return result

        if isinstance(outcome, NeedsZoom):
            if verbose:
                debug(f"zooming between {outcome.a_lo:.6g} and {outcome.a_hi:.6g}")
            zoomed = zoom(
                outcome.a_lo,
                outcome.a_hi,
                phi_0,
                phiprime_0,
                phi,
                phiprime,
                c1=c1,
                c2=c2,
                rho=rho,
                max_iterations=max_zoom_iterations,
                verbose=verbose,
            )
            result = zoomed._replace(f_calls=f_calls + zoomed.f_calls, g_calls=g_calls + zoomed.g_calls)
            if verbose:
                debug(format_linesearch_result(result))
            return result

        a_prev, phi_a_prev = outcome.alpha, phi_a_i
        a_i = outcome.alpha * rho
        first_trial = False

    result = LineSearchResult(a_max, f_calls, g_calls, exhausted=True)
    if verbose:
        warning(f"line search reached a_max; {format_linesearch_result(result)}")
    return result
