"""Log-barrier treatment of variable bounds.

The bounds lb <= x <= ub are folded into the objective as

    phi(x; mu) = f(x) - mu * sum_i log(x_i - lb_i) - mu * sum_i log(ub_i - x_i)

where the sums only run over finite bounds. phi grows without limit as any
variable approaches one of its bounds and is NaN outside the box, which the
line search recovers from by shortening the step. The barrier parameter mu
is annealed geometrically, once per outer iteration, so the barrier's
influence shrinks towards zero without ever vanishing.

The handler always works in minimisation form; the solver negates the
objective of maximisation problems before it reaches this module.
"""

from collections.abc import Sequence

import equinox as eqx
import jax.numpy as jnp
from beartype import beartype
from jaxtyping import Array, Float, jaxtyped

from nlpsolve_jax.types import Scalar, VariableBounds


@jaxtyped(typechecker=beartype)
def barrier_value(
    x: Float[Array, " n"],
    lower: Float[Array, " n"],
    upper: Float[Array, " n"],
    barrier_parameter: Scalar,
) -> Scalar:
    """Barrier term -mu * (sum log(x - lb) + sum log(ub - x)) over finite bounds."""
    # Infinite bounds contribute log(inf); mask them out after the fact.
    lower_terms = jnp.where(jnp.isfinite(lower), jnp.log(x - lower), 0.0)
    upper_terms = jnp.where(jnp.isfinite(upper), jnp.log(upper - x), 0.0)
    return -barrier_parameter * (jnp.sum(lower_terms) + jnp.sum(upper_terms))


@jaxtyped(typechecker=beartype)
def barrier_gradient(
    x: Float[Array, " n"],
    lower: Float[Array, " n"],
    upper: Float[Array, " n"],
    barrier_parameter: Scalar,
) -> Float[Array, " n"]:
    """Gradient of :func:`barrier_value` with respect to x."""
    lower_terms = jnp.where(jnp.isfinite(lower), 1.0 / (x - lower), 0.0)
    upper_terms = jnp.where(jnp.isfinite(upper), 1.0 / (upper - x), 0.0)
    return barrier_parameter * (upper_terms - lower_terms)


class BarrierBoundsHandler(eqx.Module):
    """Adapts objective values and gradients to respect variable bounds.

    Attributes:
        lower: Lower bound of every variable (``-inf`` when unbounded).
        upper: Upper bound of every variable (``+inf`` when unbounded).
        barrier_parameter: Current barrier weight mu.
        barrier_decrease_factor: Factor mu is multiplied by on each update.
    """

    lower: Float[Array, " n"]
    upper: Float[Array, " n"]
    barrier_parameter: Scalar
    barrier_decrease_factor: float = eqx.field(static=True)

    def __init__(
        self,
        bounds: Sequence[VariableBounds] | None = None,
        barrier_parameter: float | Scalar = 1e-6,
        barrier_decrease_factor: float = 0.5,
        *,
        lower: Float[Array, " n"] | None = None,
        upper: Float[Array, " n"] | None = None,
    ):
        if bounds is not None:
            lower = jnp.asarray([float(b.lb) for b in bounds])
            upper = jnp.asarray([float(b.ub) for b in bounds])
        if lower is None or upper is None:
            raise ValueError("Either bounds or both lower and upper must be given")
        self.lower = jnp.asarray(lower)
        self.upper = jnp.asarray(upper)
        self.barrier_parameter = jnp.asarray(barrier_parameter, dtype=self.lower.dtype)
        self.barrier_decrease_factor = float(barrier_decrease_factor)

    def adapted_objective_value(self, x: Float[Array, " n"], f: Scalar) -> Scalar:
        """Objective value plus the barrier term at x."""
        return f + barrier_value(x, self.lower, self.upper, self.barrier_parameter)

    def adapted_objective_gradient(
        self, x: Float[Array, " n"], grad_f: Float[Array, " n"]
    ) -> Float[Array, " n"]:
        """Objective gradient plus the barrier gradient at x."""
        return grad_f + barrier_gradient(
            x, self.lower, self.upper, self.barrier_parameter
        )

    def update_barrier_parameter(self) -> "BarrierBoundsHandler":
        """Return the handler with mu multiplied by the decrease factor."""
        return BarrierBoundsHandler(
            barrier_parameter=self.barrier_parameter * self.barrier_decrease_factor,
            barrier_decrease_factor=self.barrier_decrease_factor,
            lower=self.lower,
            upper=self.upper,
        )
