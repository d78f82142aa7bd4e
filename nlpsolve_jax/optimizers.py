"""Search-direction strategies.

An optimizer turns the adapted gradient held in an :class:`OptContext` into
a search direction and decides when the iterates have converged. Both
strategies here work in minimisation form and declare convergence when the
adapted objective changes by less than ``tol`` between two iterations.
"""

import abc
from typing import Any

import equinox as eqx
import jax
import jax.numpy as jnp
from jaxtyping import Array, Bool

from nlpsolve_jax.context import OptContext
from nlpsolve_jax.hessian import (
    InverseHessian,
    bfgs_direction,
    bfgs_init,
    bfgs_update,
)
from nlpsolve_jax.types import Vector
from nlpsolve_jax.utils import add, scaled


def _objective_settled(context: OptContext, tol: float) -> Bool[Array, ""]:
    change = jnp.abs(context.objective_current - context.objective_previous)
    return (context.iteration > 0) & (change < tol)


class AbstractOptimizer(eqx.Module):
    """Strategy producing search directions from an :class:`OptContext`."""

    @abc.abstractmethod
    def init(self, x0: Vector, grad0: Vector) -> Any:
        """Build the optimizer state at the starting point."""

    @abc.abstractmethod
    def iterate(self, state: Any, context: OptContext) -> tuple[Vector, Any]:
        """Return the next search direction and the updated state."""

    @abc.abstractmethod
    def done(self, context: OptContext) -> Bool[Array, ""]:
        """Whether the iterates have converged."""


class SteepestDescent(AbstractOptimizer):
    """Moves along the negative adapted gradient.

    Attributes:
        tol: Convergence threshold on the change of the adapted objective.
    """

    tol: float = eqx.field(static=True, default=1e-9)

    def init(self, x0: Vector, grad0: Vector) -> None:
        return None

    def iterate(self, state: None, context: OptContext) -> tuple[Vector, None]:
        return scaled(context.objective_grad, -1.0), None

    def done(self, context: OptContext) -> Bool[Array, ""]:
        return _objective_settled(context, self.tol)


class BFGSState(eqx.Module):
    """State of the BFGS strategy.

    Attributes:
        inverse_hessian: Current inverse-Hessian approximation.
        grad: Adapted gradient the last direction was computed from.
        direction: Last direction handed out.
        first: True until the first direction has been requested.
    """

    inverse_hessian: InverseHessian
    grad: Vector
    direction: Vector
    first: Bool[Array, ""]


class BFGS(AbstractOptimizer):
    """Quasi-Newton directions from a dense inverse-Hessian approximation.

    The approximation starts at the identity, so the first direction is the
    steepest-descent one. Every later request first folds in the pair
    p = alpha * d_old and q = g_new - g_old, see :mod:`nlpsolve_jax.hessian`
    for the treatment of degenerate pairs.

    Attributes:
        tol: Convergence threshold on the change of the adapted objective.
        curvature_tol: Relative threshold below which p^T q counts as zero.
    """

    tol: float = eqx.field(static=True, default=1e-12)
    curvature_tol: float = eqx.field(static=True, default=1e-10)

    def init(self, x0: Vector, grad0: Vector) -> BFGSState:
        approx = bfgs_init(x0.shape[0], dtype=jnp.result_type(x0))
        return BFGSState(
            inverse_hessian=approx,
            grad=grad0,
            direction=bfgs_direction(approx, grad0),
            first=jnp.array(True),
        )

    def iterate(
        self, state: BFGSState, context: OptContext
    ) -> tuple[Vector, BFGSState]:
        g_new = context.objective_grad

        def first_request():
            return state.direction, state.inverse_hessian

        def later_request():
            p = scaled(state.direction, context.direction_scale_factor)
            q = add(g_new, scaled(state.grad, -1.0))
            updated = bfgs_update(state.inverse_hessian, p, q, self.curvature_tol)
            return bfgs_direction(updated, g_new), updated

        direction, approx = jax.lax.cond(state.first, first_request, later_request)

        new_state = BFGSState(
            inverse_hessian=approx,
            grad=g_new,
            direction=direction,
            first=jnp.array(False),
        )
        return direction, new_state

    def done(self, context: OptContext) -> Bool[Array, ""]:
        return _objective_settled(context, self.tol)
