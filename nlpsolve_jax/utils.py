"""Vector primitives used throughout the solver.

All pairwise operations check that their operands have the same length and
raise :class:`IncompatibleLengthsError` otherwise. Shapes are static in JAX,
so the check also fires while tracing under ``jit``.
"""

import jax.numpy as jnp
from jaxtyping import Array, ArrayLike, Float


class IncompatibleLengthsError(ValueError):
    """Raised when two vectors of different lengths are combined."""


def _as_vectors(a: ArrayLike, b: ArrayLike) -> tuple[Array, Array]:
    a = jnp.asarray(a)
    b = jnp.asarray(b)
    if a.shape != b.shape:
        raise IncompatibleLengthsError(
            f"Incompatible vector lengths: {a.shape} and {b.shape}"
        )
    return a, b


def inner_product(a: ArrayLike, b: ArrayLike) -> Float[Array, ""]:
    a, b = _as_vectors(a, b)
    return jnp.dot(a, b)


def norm2_sqr(v: ArrayLike) -> Float[Array, ""]:
    v = jnp.asarray(v)
    return jnp.dot(v, v)


def norm2(v: ArrayLike) -> Float[Array, ""]:
    return jnp.sqrt(norm2_sqr(v))


def scaled(v: ArrayLike, s: ArrayLike) -> Float[Array, " n"]:
    return jnp.asarray(v) * s


def add(a: ArrayLike, b: ArrayLike) -> Float[Array, " n"]:
    a, b = _as_vectors(a, b)
    return a + b
