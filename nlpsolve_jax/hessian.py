"""Dense BFGS inverse-Hessian approximation.

This module maintains an n x n symmetric approximation H to the inverse
Hessian of the adapted objective and updates it with the rank-2 BFGS
formula (Nocedal & Wright, eq. 6.17):

    H+ = H + (1/rho + q^T H q / rho^2) p p^T - (1/rho) (H q p^T + p q^T H)

where p is the step actually taken, q the change in gradient and
rho = p^T q.

The update is only well defined when the curvature rho is positive and not
negligible. Because the barrier parameter and the multipliers change between
iterations, the adapted objective seen by two consecutive gradients is not
the same function and rho can vanish or change sign. Such pairs are handled
as follows:

- |rho| <= curvature_tol * |p| |q| (this includes p = 0): the pair is
  skipped and H is kept.
- rho < 0: H would lose positive definiteness, so it is reset to the
  identity.
- The updated matrix has non-finite entries: H is reset to the identity.
"""

import equinox as eqx
import jax.numpy as jnp
from beartype import beartype
from jaxtyping import Array, Bool, Float, Int, jaxtyped


class InverseHessian(eqx.Module):
    """Dense inverse-Hessian approximation with update bookkeeping.

    Attributes:
        matrix: The symmetric n x n approximation H.
        num_skipped: Number of (p, q) pairs skipped for negligible curvature.
        num_resets: Number of times H was reset to the identity.
    """

    matrix: Float[Array, "n n"]
    num_skipped: Int[Array, ""]
    num_resets: Int[Array, ""]


def bfgs_init(n: int, dtype=None) -> InverseHessian:
    """Initialize the approximation to the n x n identity.

    Args:
        n: Dimension of the parameter space.
        dtype: Floating dtype of the matrix (default: JAX default float).

    Returns:
        An InverseHessian with H = I and zeroed counters.
    """
    return InverseHessian(
        matrix=jnp.eye(n, dtype=dtype),
        num_skipped=jnp.array(0),
        num_resets=jnp.array(0),
    )


@jaxtyped(typechecker=beartype)
def bfgs_direction(
    approx: InverseHessian,
    g: Float[Array, " n"],
) -> Float[Array, " n"]:
    """Quasi-Newton search direction -H g."""
    return -(approx.matrix @ g)


@jaxtyped(typechecker=beartype)
def curvature_is_negligible(
    p: Float[Array, " n"],
    q: Float[Array, " n"],
    curvature_tol: float = 1e-10,
) -> Bool[Array, ""]:
    """Whether p^T q is too small, relative to |p| |q|, to divide by."""
    rho = jnp.dot(p, q)
    scale = jnp.linalg.norm(p) * jnp.linalg.norm(q)
    return (jnp.abs(rho) <= curvature_tol * scale) | ~jnp.isfinite(rho)


@jaxtyped(typechecker=beartype)
def bfgs_update(
    approx: InverseHessian,
    p: Float[Array, " n"],
    q: Float[Array, " n"],
    curvature_tol: float = 1e-10,
) -> InverseHessian:
    """Apply the rank-2 BFGS inverse update for the pair (p, q).

    Args:
        approx: Current approximation.
        p: Step taken, ``alpha * d``.
        q: Gradient difference, ``g_new - g_old``.
        curvature_tol: Relative threshold below which p^T q counts as zero.

    Returns:
        The updated approximation. Degenerate pairs are skipped or reset
        the matrix to the identity as described in the module docstring.
    """
    H = approx.matrix
    identity = jnp.eye(H.shape[0], dtype=H.dtype)

    skip = curvature_is_negligible(p, q, curvature_tol)
    rho = jnp.dot(p, q)
    # Avoid 0 / 0 in the discarded branch.
    rho_safe = jnp.where(skip, 1.0, rho)

    Hq = H @ q
    qHq = jnp.dot(q, Hq)
    pp = jnp.outer(p, p)
    cross = jnp.outer(p, Hq) + jnp.outer(Hq, p)
    H_new = H + (1.0 / rho_safe + qHq / rho_safe**2) * pp - cross / rho_safe

    reset = ~skip & ((rho < 0.0) | ~jnp.all(jnp.isfinite(H_new)))
    H_new = jnp.where(reset, identity, H_new)
    H_new = jnp.where(skip, H, H_new)

    return InverseHessian(
        matrix=H_new,
        num_skipped=approx.num_skipped + skip.astype(approx.num_skipped.dtype),
        num_resets=approx.num_resets + reset.astype(approx.num_resets.dtype),
    )
