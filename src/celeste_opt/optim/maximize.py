"""
Outer optimization loop.

This module contains:
- maximize: L-BFGS ascent driven by the interpolating Wolfe line search
- MaximizeState: State class for maximize results
"""

import math
from collections.abc import Callable

import equinox as eqx
import jax
import jax.numpy as jnp
import optax
from lineax.internal import two_norm

from ..logging_utils import banner, error, format_iteration, info, success, warning
from ..sensitive_float import SensitiveFloat
from .linesearch import as_scalar, interpolating_linesearch


class MaximizeState(eqx.Module):
    """State returned by maximize.

    Attributes
    ----------
    params : jax.Array
        Final unconstrained parameters.
    fun_val : jax.Array
        Objective value at ``params`` (scalar).
    success : jax.Array
        Whether a convergence criterion was met (bool scalar).
    iter_num : jax.Array
        Number of line searches performed (int32 scalar).
    f_calls : jax.Array
        Total objective evaluations, line searches included.
    g_calls : jax.Array
        Total gradient evaluations, line searches included.
    """

    params: jax.Array
    fun_val: jax.Array
    success: jax.Array
    iter_num: jax.Array
    f_calls: jax.Array
    g_calls: jax.Array


class _Evaluator:
    """Value and gradient of an objective returning a scalar or a SensitiveFloat.

    Results at the most recent point are cached, so the step accepted by the
    line search is not evaluated again. ``f_calls`` and ``g_calls`` count the
    evaluations actually made.
    """

    def __init__(self, objective: Callable, grad: Callable | None):
        self.objective = objective
        self.grad = grad
        self.f_calls = 0
        self.g_calls = 0
        self._point = None
        self._value = None
        self._gradient = None

    def _move_to(self, x):
        if (
            self._point is not None
            and self._point.shape == x.shape
            and bool(jnp.array_equal(self._point, x))
        ):
            return
        self._point, self._value, self._gradient = x, None, None

    def value(self, x) -> float:
        self._move_to(x)
        if self._value is None:
            out = self.objective(x)
            self.f_calls += 1
            if isinstance(out, SensitiveFloat):
                self._gradient = out.d
                self.g_calls += 1
            self._value = as_scalar(out)
        return self._value

    def gradient(self, x) -> jax.Array:
        self._move_to(x)
        if self._gradient is None and self.grad is None:
            # SensitiveFloat objectives carry their gradient.
            self.value(x)
        if self._gradient is None:
            g = self.grad(x) if self.grad is not None else jax.grad(self.objective)(x)
            self._gradient = jnp.asarray(g)
            self.g_calls += 1
        return self._gradient


def maximize(
    objective: Callable,
    init_params,
    grad: Callable | None = None,
    max_iter: int = 100,
    gtol: float = 1e-6,
    ftol: float = 1e-10,
    memory_size: int = 10,
    c1: float = 1e-4,
    c2: float = 0.9,
    rho: float = 2.0,
    a_max: float = 65536.0,
    max_zoom_iterations: int = 10,
    verbose: bool = False,
) -> MaximizeState:
    """Maximize an objective over an unconstrained parameter vector.

    Search directions come from L-BFGS (``optax.scale_by_lbfgs``) applied to
    the negated objective, and step lengths from
    :func:`~celeste_opt.optim.linesearch.interpolating_linesearch`.

    Parameters
    ----------
    objective : Callable
        Function of the parameter vector returning a scalar or a
        SensitiveFloat (whose gradient ``d`` is then used).
    init_params : array_like
        Starting point.
    grad : Callable, optional
        Gradient of the objective. Defaults to the SensitiveFloat gradient,
        or to ``jax.grad(objective)`` for scalar objectives.
    max_iter : int
        Maximum number of line searches.
    gtol : float
        Stop when the gradient two-norm falls below this value.
    ftol : float
        Stop when the relative change of the objective falls below this value.
    memory_size : int
        Number of past updates kept by L-BFGS.
    c1, c2, rho, a_max, max_zoom_iterations
        Line search settings.
    verbose : bool
        Print one line per iteration.

    Returns
    -------
    MaximizeState
        Optimization result with evaluation counts. The ``ftol`` test is
        skipped after an exhausted line search. A step from an exhausted search
        that does not increase the objective is rejected: the search is retried
        along the gradient, and if that also fails the loop stops with
        ``success=False``.
    """
    evaluate = _Evaluator(objective, grad)
    x = jnp.asarray(init_params)
    fun_val = evaluate.value(x)
    if not math.isfinite(fun_val):
        error(f"Objective is not finite at the initial parameters: {fun_val}")
        raise ValueError("Objective is not finite at the initial parameters")
    g = evaluate.gradient(x)

    direction_fn = optax.scale_by_lbfgs(memory_size=memory_size)
    lbfgs_state = direction_fn.init(x)

    def neg_objective(y):
        return -evaluate.value(y)

    def neg_gradient(y):
        return -evaluate.gradient(y)

    if verbose:
        banner(f"maximize: {x.size} parameters, max_iter = {max_iter}")
        print(format_iteration(0, fun_val, float(two_norm(g))))

    converged = False
    use_gradient = False
    iter_num = 0
    while iter_num < max_iter:
        grad_norm = float(two_norm(g))
        if grad_norm <= gtol:
            converged = True
            break

        if use_gradient:
            p = g
        else:
            # L-BFGS works on the negated objective, whose gradient is -g.
            updates, lbfgs_state = direction_fn.update(-g, lbfgs_state, x)
            p = -updates
            if not float(jnp.dot(g, p)) > 0.0:
                if verbose:
                    info("L-BFGS direction is not an ascent direction, using the gradient")
                p = g
                lbfgs_state = direction_fn.init(x)

        result = interpolating_linesearch(
            neg_objective,
            neg_gradient,
            x,
            p,
            c1=c1,
            c2=c2,
            rho=rho,
            a_max=a_max,
            max_zoom_iterations=max_zoom_iterations,
            verbose=verbose,
        )
        iter_num += 1

        x_new = x + result.alpha * p
        new_val = evaluate.value(x_new)
        if not math.isfinite(new_val):
            warning(f"Objective is not finite after step alpha = {result.alpha:.3e}; stopping")
            break

        if result.exhausted and not new_val > fun_val:
            # The step is rejected; x and fun_val are unchanged.
            if use_gradient:
                warning("Line search exhausted along the gradient without improving the objective; stopping")
                break
            if verbose:
                info("Line search exhausted without improving the objective, restarting from the gradient")
            lbfgs_state = direction_fn.init(x)
            use_gradient = True
            continue

        use_gradient = False
        change = abs(new_val - fun_val)
        x, fun_val, g = x_new, new_val, evaluate.gradient(x_new)
        if verbose:
            print(format_iteration(iter_num, fun_val, float(two_norm(g)), result.alpha))
        if not result.exhausted and change <= ftol * max(abs(fun_val), 1.0):
            converged = True
            break

    if verbose:
        if converged:
            success(f"Converged after {iter_num} iterations: f = {fun_val:.10e}")
        else:
            warning(f"Stopped after {iter_num} iterations without converging")

    return MaximizeState(
        params=x,
        fun_val=jnp.asarray(fun_val),
        success=jnp.asarray(converged),
        iter_num=jnp.asarray(iter_num, dtype=jnp.int32),
        f_calls=jnp.asarray(evaluate.f_calls, dtype=jnp.int32),
        g_calls=jnp.asarray(evaluate.g_calls, dtype=jnp.int32),
    )
