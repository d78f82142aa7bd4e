"""Step-size control.

The Armijo-Goldstein backtracking rule picks a step length alpha along a
search direction d such that

    f(x) - f(x + alpha d) >= alpha * t,    t = -c * (grad . d)

for minimisation (the inequality is reversed for maximisation). Trial
points at which the objective is NaN, for example outside the domain of a
log-barrier, are first recovered by halving alpha until the value is a
number.
"""

import abc
from typing import NamedTuple

import equinox as eqx
import jax
import jax.numpy as jnp
from jaxtyping import Array, Bool, Int

from nlpsolve_jax.types import ObjectiveFn, ObjectiveSense, Scalar, Vector
from nlpsolve_jax.utils import add, inner_product, scaled


class StepResult(NamedTuple):
    """Result of one line search.

    Attributes:
        x: The accepted point ``x + alpha * d``.
        obj_value: Objective value at the starting point, before the step.
        direction_scale_factor: The accepted step length alpha.
        n_evals: Number of objective evaluations.
    """

    x: Vector
    obj_value: Scalar
    direction_scale_factor: Scalar
    n_evals: Int[Array, ""]


class AbstractStepSizeControl(eqx.Module):
    """Strategy that advances a point along a search direction."""

    @abc.abstractmethod
    def do_step(
        self,
        f: ObjectiveFn,
        x: Vector,
        grad_f: Vector,
        direction: Vector,
        sense: ObjectiveSense = ObjectiveSense.MIN,
    ) -> StepResult:
        """Find a step length along ``direction`` and apply it to ``x``."""


class ArmijoGoldsteinRule(AbstractStepSizeControl):
    """Backtracking line search with the Armijo-Goldstein condition.

    Attributes:
        alpha_0: Initial step length (at least 1e-4).
        tau: Backtracking factor, clamped into [1e-4, 1 - 1e-4].
        c: Sufficient-decrease constant, clamped into [1e-4, 1 - 1e-4].
    """

    alpha_0: float = eqx.field(static=True)
    tau: float = eqx.field(static=True)
    c: float = eqx.field(static=True)

    def __init__(self, alpha_0: float = 1.0, tau: float = 0.5, c: float = 0.2):
        self.alpha_0 = float(max(alpha_0, 1e-4))
        self.tau = float(min(max(tau, 1e-4), 1.0 - 1e-4))
        self.c = float(min(max(c, 1e-4), 1.0 - 1e-4))

    def do_step(
        self,
        f: ObjectiveFn,
        x: Vector,
        grad_f: Vector,
        direction: Vector,
        sense: ObjectiveSense = ObjectiveSense.MIN,
    ) -> StepResult:
        """Perform the backtracking line search.

        Args:
            f: Objective to evaluate along the ray.
            x: Current point.
            grad_f: Gradient of ``f`` at ``x``.
            direction: Search direction (descent for MIN, ascent for MAX).
            sense: Whether ``f`` is being minimised or maximised.

        Returns:
            StepResult with the new point, the value of ``f`` at ``x`` and
            the accepted step length.
        """
        m = inner_product(grad_f, direction)
        t = -self.c * m

        f_x = f(x)

        def trial(alpha: Scalar) -> tuple[Vector, Scalar]:
            x_step = add(x, scaled(direction, alpha))
            return x_step, f(x_step)

        def sufficient(alpha: Scalar, f_step: Scalar) -> Bool[Array, ""]:
            # NaN compares False, so a NaN trial value is never sufficient.
            if sense is ObjectiveSense.MIN:
                return f_x - f_step >= alpha * t
            return f_x - f_step <= alpha * t

        alpha_0 = jnp.asarray(self.alpha_0, dtype=jnp.result_type(x))
        x_step, f_step = trial(alpha_0)

        class LSState(NamedTuple):
            alpha: Scalar
            x_step: Vector
            f_step: Scalar
            n_evals: Int[Array, ""]

        def nan_cond(state: LSState) -> Bool[Array, ""]:
            return jnp.isnan(state.f_step) & (state.alpha > 0.0)

        def nan_body(state: LSState) -> LSState:
            alpha = 0.5 * state.alpha
            x_new, f_new = trial(alpha)
            return LSState(alpha, x_new, f_new, state.n_evals + 1)

        def armijo_cond(state: LSState) -> Bool[Array, ""]:
            return ~sufficient(state.alpha, state.f_step) & (state.alpha > 0.0)

        def armijo_body(state: LSState) -> LSState:
            alpha = self.tau * state.alpha
            x_new, f_new = trial(alpha)
            return LSState(alpha, x_new, f_new, state.n_evals + 1)

        init_state = LSState(alpha_0, x_step, f_step, jnp.array(2))
        state = jax.lax.while_loop(nan_cond, nan_body, init_state)
        state = jax.lax.while_loop(armijo_cond, armijo_body, state)

        return StepResult(
            x=state.x_step,
            obj_value=f_x,
            direction_scale_factor=state.alpha,
            n_evals=state.n_evals,
        )

