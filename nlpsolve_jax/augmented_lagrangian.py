"""Augmented Lagrangian treatment of general constraints.

For inequality constraints g(x) <= 0 with multipliers mu and equality
constraints h(x) = 0 with multipliers lam, the adapted objective is

    L(x) = f(x) + lam^T h + (c / 2) ||h||^2
           + sum_j (1 / 2c) * (max(0, mu_j + c g_j)^2 - mu_j^2)

with a fixed penalty coefficient c. After each accepted step the
multipliers are updated with the first-order rule

    mu  <- max(0, mu + c g)
    lam <- lam + c h

so that the multiplier estimates, rather than an ever growing penalty,
drive the iterates towards feasibility.
"""

import equinox as eqx
import jax.numpy as jnp
from beartype import beartype
from jaxtyping import Array, Float, jaxtyped

from nlpsolve_jax.types import Jacobian, Scalar, Vector
from nlpsolve_jax.utils import inner_product, norm2_sqr


@jaxtyped(typechecker=beartype)
def augmented_lagrangian_value(
    f: Scalar,
    g: Float[Array, " m_ineq"],
    h: Float[Array, " m_eq"],
    mu: Float[Array, " m_ineq"],
    lam: Float[Array, " m_eq"],
    c: float,
) -> Scalar:
    """Value of the augmented Lagrangian given the residuals at a point."""
    eq_terms = inner_product(lam, h) + 0.5 * c * norm2_sqr(h)
    shifted = jnp.maximum(0.0, mu + c * g)
    ineq_terms = jnp.sum(shifted**2 - mu**2) / (2.0 * c)
    return f + eq_terms + ineq_terms


@jaxtyped(typechecker=beartype)
def augmented_lagrangian_grad(
    grad_f: Float[Array, " n"],
    g: Float[Array, " m_ineq"],
    grad_g: Float[Array, "m_ineq n"],
    h: Float[Array, " m_eq"],
    grad_h: Float[Array, "m_eq n"],
    mu: Float[Array, " m_ineq"],
    lam: Float[Array, " m_eq"],
    c: float,
) -> Float[Array, " n"]:
    """Gradient of :func:`augmented_lagrangian_value` with respect to x."""
    shifted = jnp.maximum(0.0, mu + c * g)
    return grad_f + grad_g.T @ shifted + grad_h.T @ (lam + c * h)


class AugmentedLagrangianConstraintHandler(eqx.Module):
    """Multiplier estimates and penalty for the augmented Lagrangian.

    Attributes:
        mu: One multiplier per inequality constraint, never negative.
        lam: One multiplier per equality constraint.
        c: Penalty coefficient.
    """

    mu: Float[Array, " m_ineq"]
    lam: Float[Array, " m_eq"]
    c: float = eqx.field(static=True)

    @classmethod
    def initial(
        cls, num_ineq: int, num_eq: int, c: float = 1e9, dtype=None
    ) -> "AugmentedLagrangianConstraintHandler":
        """Handler with all multipliers set to zero."""
        return cls(
            mu=jnp.zeros((num_ineq,), dtype=dtype),
            lam=jnp.zeros((num_eq,), dtype=dtype),
            c=float(c),
        )

    def adapted_objective_value(
        self,
        f: Scalar,
        g: Float[Array, " m_ineq"],
        h: Float[Array, " m_eq"],
    ) -> Scalar:
        return augmented_lagrangian_value(f, g, h, self.mu, self.lam, self.c)

    def adapted_objective_grad(
        self,
        grad_f: Vector,
        g: Float[Array, " m_ineq"],
        grad_g: Jacobian,
        h: Float[Array, " m_eq"],
        grad_h: Jacobian,
    ) -> Vector:
        return augmented_lagrangian_grad(
            grad_f, g, grad_g, h, grad_h, self.mu, self.lam, self.c
        )

    def update_multipliers(
        self,
        g: Float[Array, " m_ineq"],
        h: Float[Array, " m_eq"],
    ) -> "AugmentedLagrangianConstraintHandler":
        """Return the handler with multipliers updated from the residuals."""
        return AugmentedLagrangianConstraintHandler(
            mu=jnp.maximum(0.0, self.mu + self.c * g),
            lam=self.lam + self.c * h,
            c=self.c,
        )

    def max_violation(
        self,
        g: Float[Array, " m_ineq"],
        h: Float[Array, " m_eq"],
    ) -> Scalar:
        """Largest constraint violation, zero when there are no constraints."""
        violations = jnp.concatenate([jnp.abs(h), jnp.maximum(0.0, g)])
        return jnp.max(violations, initial=0.0)
